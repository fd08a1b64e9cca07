"""Error taxonomy shared by the store, the applier and the recovery pipeline."""
from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path


class OwehostError(RuntimeError):
    """Base class for every classified core error."""

    kind = "error"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"kind": self.kind, "message": str(self)}


class ValidationError(OwehostError):
    """Raised when a descriptor fails its invariants."""

    kind = "validation"

    def __init__(self, field: str, message: str) -> None:
        """Record the offending *field* alongside the message."""
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation including the field locator."""
        return {"kind": self.kind, "field": self.field, "message": self.message}


class NotFoundError(OwehostError):
    """Raised when a tenant or descriptor does not exist."""

    kind = "not_found"


class AlreadyExistsError(OwehostError):
    """Raised when a unique identifier is already taken."""

    kind = "already_exists"


class StorageError(OwehostError):
    """Raised when a filesystem operation fails."""

    kind = "io"


class CorruptError(OwehostError):
    """Raised when an existing file cannot be parsed or fails validation."""

    kind = "corrupt"

    def __init__(self, path: Path, message: str) -> None:
        """Keep the path of the corrupt file."""
        super().__init__(f"{path}: {message}")
        self.path = path


class OSExecError(OwehostError):
    """Raised when a child process fails."""

    kind = "os_exec"

    def __init__(
        self,
        argv: Sequence[str],
        message: str,
        *,
        returncode: int | None = None,
        output: str = "",
    ) -> None:
        """Capture the command line, exit status and output."""
        super().__init__(f"{' '.join(argv)}: {message}")
        self.argv = list(argv)
        self.returncode = returncode
        self.output = output


class OSExecTimeout(OSExecError):
    """Raised when a child process exceeds its wall-clock budget."""

    kind = "os_exec_timeout"


class AbortedError(OwehostError):
    """Raised when an operation observes a cancellation request."""

    kind = "aborted"


__all__ = [
    "AbortedError",
    "AlreadyExistsError",
    "CorruptError",
    "NotFoundError",
    "OSExecError",
    "OSExecTimeout",
    "OwehostError",
    "StorageError",
    "ValidationError",
]
