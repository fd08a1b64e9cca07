"""File helpers shared by the service providers."""
from __future__ import annotations

from pathlib import Path

from ..atomic import FILE_MODE, ensure_dir, write_bytes
from ..errors import StorageError


def write_if_changed(path: Path, content: bytes, *, mode: int = FILE_MODE) -> bool:
    """Atomically write *content* unless *path* already holds it; return whether it changed."""
    if path.is_file():
        try:
            if path.read_bytes() == content:
                return False
        except OSError:
            pass
    ensure_dir(path.parent)
    write_bytes(path, content, mode=mode)
    return True


def unlink(path: Path) -> bool:
    """Remove a file or symlink; return False when it was absent."""
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    except OSError as exc:
        raise StorageError(f"Failed to remove {path}: {exc}") from exc
    return True


__all__ = ["unlink", "write_if_changed"]
