"""Enumerations for CLI exit codes."""
from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Exit codes shared by every ``owehost-cli`` command.

    Partial failures are reported inside the command output and still exit
    with ``OK``; only fatal conditions use ``FAILURE``.
    """

    OK = 0
    FAILURE = 1
