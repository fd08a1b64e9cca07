"""Ownership of the tenant tree."""
from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path

from ..errors import StorageError
from ..paths import GROUP_READABLE_DIRS, USER_OWNED_DIRS, Layout

GROUP_READABLE_MODE = 0o750

ChownFunc = Callable[[Path, int, int], None]


def _default_chown(path: Path, uid: int, gid: int) -> None:
    os.chown(path, uid, gid, follow_symlinks=False)


class OwnershipManager:
    """Hand the tenant's directories to its uid/gid.

    ``home``, ``web``, ``mail`` and ``tmp`` are chowned recursively to the
    tenant; ``logs`` and ``backups`` go to root with the tenant group and
    mode 0750. Failures are fatal and raise :class:`StorageError`.
    """

    def __init__(self, layout: Layout, *, chown: ChownFunc | None = None) -> None:
        """Bind to *layout*; *chown* replaces :func:`os.chown` when given."""
        self.layout = layout
        self._chown = chown or _default_chown

    def apply(self, tenant_id: int, uid: int, gid: int) -> None:
        """Apply ownership to every managed directory of *tenant_id*."""
        root = self.layout.tenant_path(tenant_id)
        for name in USER_OWNED_DIRS:
            self.chown_recursive(root / name, uid, gid)
        for name in GROUP_READABLE_DIRS:
            path = root / name
            self._change(path, 0, gid)
            try:
                path.chmod(GROUP_READABLE_MODE)
            except OSError as exc:
                raise StorageError(f"Failed to chmod {path}: {exc}") from exc

    def chown_recursive(self, path: Path, uid: int, gid: int) -> None:
        """Chown *path* and everything below it; modes are left unchanged."""
        if not path.exists():
            return
        self._change(path, uid, gid)
        for current, dirs, files in os.walk(path):
            base = Path(current)
            for name in (*dirs, *files):
                self._change(base / name, uid, gid)

    def _change(self, path: Path, uid: int, gid: int) -> None:
        try:
            self._chown(path, uid, gid)
        except OSError as exc:
            raise StorageError(f"Failed to chown {path}: {exc}") from exc


__all__ = ["ChownFunc", "GROUP_READABLE_MODE", "OwnershipManager"]
