"""Host-side helpers: command execution, POSIX accounts, ownership and limits."""
from __future__ import annotations

from .accounts import AccountManager
from .limits import ResourceLimiter, cpu_max, memory_max, quota_args
from .ownership import OwnershipManager
from .runner import DEFAULT_TIMEOUT, CommandRunner

__all__ = [
    "AccountManager",
    "CommandRunner",
    "DEFAULT_TIMEOUT",
    "OwnershipManager",
    "ResourceLimiter",
    "cpu_max",
    "memory_max",
    "quota_args",
]
