"""Filesystem scanning, index rebuilding and service config regeneration."""
from __future__ import annotations

from .generator import GenerateOptions, GenerateResult, Generator
from .rebuilder import (
    ConsistencyReport,
    DatabaseReader,
    DatabaseWriter,
    Mismatch,
    MissingRecord,
    RebuildError,
    RebuildOptions,
    RebuildReport,
    Rebuilder,
)
from .scanner import DatabaseDiscovery, Scanner, ScanResult, TenantSnapshot, TLSInfo

__all__ = [
    "ConsistencyReport",
    "DatabaseDiscovery",
    "DatabaseReader",
    "DatabaseWriter",
    "GenerateOptions",
    "GenerateResult",
    "Generator",
    "Mismatch",
    "MissingRecord",
    "RebuildError",
    "RebuildOptions",
    "RebuildReport",
    "Rebuilder",
    "ScanResult",
    "Scanner",
    "TLSInfo",
    "TenantSnapshot",
]
