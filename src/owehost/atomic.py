"""Atomic file writes for descriptors, certificates and generated configs.

Every write follows the same sequence: the payload goes to ``<path>.tmp``
created with the target mode, the temp file is flushed and fsynced, then
renamed over ``<path>``. A failure at any point unlinks the temp file and
leaves the previous content of ``<path>`` untouched.
"""
from __future__ import annotations

import json
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from .errors import AlreadyExistsError, CorruptError, NotFoundError, StorageError

DIR_MODE = 0o755
SSL_DIR_MODE = 0o700
FILE_MODE = 0o644
PRIVATE_FILE_MODE = 0o600
IMMUTABLE_FILE_MODE = 0o444


def dumps_json(payload: object) -> bytes:
    """Serialise *payload* with two-space indentation and LF line endings."""
    return json.dumps(payload, indent=2, ensure_ascii=False).encode("utf-8") + b"\n"


def ensure_dir(path: Path, mode: int = DIR_MODE) -> None:
    """Create *path* (and parents) if missing, setting *mode* on creation."""
    try:
        if path.is_dir():
            return
        path.mkdir(parents=True, exist_ok=True)
        os.chmod(path, mode)
    except OSError as exc:
        raise StorageError(f"Failed to create directory {path}: {exc}") from exc


def write_bytes(
    path: Path,
    data: bytes,
    *,
    mode: int = FILE_MODE,
    owner: tuple[int, int] | None = None,
    exclusive: bool = False,
) -> None:
    """Atomically replace *path* with *data*.

    ``exclusive`` refuses to replace an existing file: the temp file is
    linked into place instead of renamed, so a concurrent or repeated writer
    fails with :class:`AlreadyExistsError`.
    """
    tmp_path = path.with_name(path.name + ".tmp")
    try:
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
    except OSError as exc:
        raise StorageError(f"Failed to create {tmp_path}: {exc}") from exc
    try:
        try:
            with os.fdopen(fd, "wb") as handle:
                os.fchmod(handle.fileno(), mode)
                if owner is not None:
                    os.fchown(handle.fileno(), owner[0], owner[1])
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            if exclusive:
                os.link(tmp_path, path)
            else:
                os.replace(tmp_path, path)
        except FileExistsError as exc:
            raise AlreadyExistsError(f"Refusing to overwrite {path}") from exc
        except OSError as exc:
            raise StorageError(f"Failed to write {path}: {exc}") from exc
    finally:
        tmp_path.unlink(missing_ok=True)


def write_text(path: Path, text: str, *, mode: int = FILE_MODE) -> None:
    """Atomically replace *path* with UTF-8 *text*."""
    write_bytes(path, text.encode("utf-8"), mode=mode)


def write_json(
    path: Path,
    payload: Mapping[str, Any],
    *,
    mode: int = FILE_MODE,
    owner: tuple[int, int] | None = None,
    exclusive: bool = False,
) -> None:
    """Atomically write *payload* as pretty JSON to *path*."""
    write_bytes(path, dumps_json(payload), mode=mode, owner=owner, exclusive=exclusive)


def read_json(path: Path) -> dict[str, Any]:
    """Return the JSON object stored at *path*.

    Raises :class:`NotFoundError` when the file is absent and
    :class:`CorruptError` when it is not a JSON object.
    """
    try:
        raw = path.read_bytes()
    except FileNotFoundError as exc:
        raise NotFoundError(f"{path} does not exist") from exc
    except OSError as exc:
        raise StorageError(f"Failed to read {path}: {exc}") from exc
    try:
        data = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise CorruptError(path, f"invalid JSON ({exc})") from exc
    if not isinstance(data, dict):
        raise CorruptError(path, "expected a JSON object")
    return data


__all__ = [
    "DIR_MODE",
    "FILE_MODE",
    "IMMUTABLE_FILE_MODE",
    "PRIVATE_FILE_MODE",
    "SSL_DIR_MODE",
    "dumps_json",
    "ensure_dir",
    "read_json",
    "write_bytes",
    "write_json",
    "write_text",
]
