"""Typed access to the tenant-level descriptors and the tenant skeleton.

The accounts root holds one ``a-<id>`` directory per tenant. Inside it the
identity, limits, status and metadata descriptors are small JSON documents
written through :mod:`owehost.atomic`. Writers of one tenant are serialised
through :class:`~owehost.locking.TenantLocks`; readers share the lock.
"""
from __future__ import annotations

import logging
import shutil
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any, TypeVar

from ..atomic import DIR_MODE, ensure_dir, read_json, write_json
from ..errors import CorruptError, NotFoundError, StorageError, ValidationError
from ..locking import CancelToken, TenantLocks, check_cancelled
from ..models import Identity, Limits, Metadata, Status, TenantRecord, plan_limits, timestamp
from ..paths import (
    IDENTITY_FILE,
    LIMITS_FILE,
    METADATA_FILE,
    MIN_TENANT_ID,
    STATUS_FILE,
    Layout,
    parse_tenant_dir_name,
)
from ..validators import (
    validate_identity,
    validate_limits,
    validate_metadata,
    validate_status,
)

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


def load_descriptor(
    path: Path,
    factory: Callable[[Mapping[str, Any]], T],
    validate: Callable[[T], None] | None = None,
) -> T:
    """Read *path* and build a descriptor, reporting schema violations as corruption.

    *validate* runs the invariant checks of the descriptor type; a descriptor
    that parses but breaks them is reported as corrupt too.
    """
    data = read_json(path)
    try:
        descriptor = factory(data)
        if validate is not None:
            validate(descriptor)
    except ValidationError as exc:
        raise CorruptError(path, str(exc)) from exc
    return descriptor


def load_optional(
    path: Path,
    factory: Callable[[Mapping[str, Any]], T],
    validate: Callable[[T], None] | None = None,
) -> T | None:
    """Like :func:`load_descriptor` but return ``None`` when *path* is absent."""
    try:
        return load_descriptor(path, factory, validate)
    except NotFoundError:
        return None


class TenantStore:
    """Read and write tenant descriptors under the accounts root."""

    def __init__(self, layout: Layout, locks: TenantLocks | None = None) -> None:
        """Bind the store to *layout*, sharing *locks* with other stores."""
        self.layout = layout
        self.locks = locks or TenantLocks()

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------
    def exists_tenant(self, tenant_id: int) -> bool:
        """Return True when the tenant directory exists."""
        return self.layout.tenant_path(tenant_id).is_dir()

    def list_tenants(self) -> list[int]:
        """Return the ids of every ``a-<id>`` directory, ascending."""
        root = self.layout.accounts_root
        try:
            entries = list(root.iterdir())
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise StorageError(f"Failed to read accounts root {root}: {exc}") from exc
        tenants: list[int] = []
        for entry in entries:
            tenant_id = parse_tenant_dir_name(entry.name)
            if tenant_id is None or not entry.is_dir():
                continue
            tenants.append(tenant_id)
        return sorted(tenants)

    def next_tenant_id(self) -> int:
        """Return one more than the highest tenant id, starting at 10001."""
        highest = MIN_TENANT_ID - 1
        for tenant_id in self.list_tenants():
            highest = max(highest, tenant_id)
        return highest + 1

    # ------------------------------------------------------------------
    # Descriptors
    # ------------------------------------------------------------------
    def _path(self, tenant_id: int, filename: str) -> Path:
        return self.layout.descriptor_path(tenant_id, filename)

    def read_identity(self, tenant_id: int) -> Identity:
        """Return the identity; raise :class:`NotFoundError` when absent."""
        with self.locks.read(tenant_id):
            try:
                return load_descriptor(
                    self._path(tenant_id, IDENTITY_FILE),
                    Identity.from_dict,
                    validate_identity,
                )
            except NotFoundError as exc:
                raise NotFoundError(f"Tenant {tenant_id} not found") from exc

    def read_limits(self, tenant_id: int) -> Limits | None:
        """Return the limits, or ``None`` when ``limits.json`` is absent."""
        with self.locks.read(tenant_id):
            return load_optional(
                self._path(tenant_id, LIMITS_FILE),
                Limits.from_dict,
                validate_limits,
            )

    def read_status(self, tenant_id: int) -> Status | None:
        """Return the status, or ``None`` when ``status.json`` is absent."""
        with self.locks.read(tenant_id):
            return load_optional(
                self._path(tenant_id, STATUS_FILE),
                Status.from_dict,
                validate_status,
            )

    def read_metadata(self, tenant_id: int) -> Metadata | None:
        """Return the metadata, or ``None`` when ``metadata.json`` is absent."""
        with self.locks.read(tenant_id):
            return load_optional(
                self._path(tenant_id, METADATA_FILE),
                Metadata.from_dict,
                validate_metadata,
            )

    def write_identity(self, tenant_id: int, identity: Identity) -> None:
        """Atomically write ``account.json``."""
        with self.locks.write(tenant_id):
            write_json(self._path(tenant_id, IDENTITY_FILE), identity.to_dict())

    def write_limits(self, tenant_id: int, limits: Limits) -> None:
        """Atomically write ``limits.json``."""
        with self.locks.write(tenant_id):
            write_json(self._path(tenant_id, LIMITS_FILE), limits.to_dict())

    def write_status(self, tenant_id: int, status: Status) -> None:
        """Atomically write ``status.json``."""
        with self.locks.write(tenant_id):
            write_json(self._path(tenant_id, STATUS_FILE), status.to_dict())

    def write_metadata(self, tenant_id: int, metadata: Metadata) -> None:
        """Atomically write ``metadata.json``, stamping ``updated_at``."""
        metadata.updated_at = timestamp()
        with self.locks.write(tenant_id):
            write_json(self._path(tenant_id, METADATA_FILE), metadata.to_dict())

    def read_tenant(self, tenant_id: int, *, cancel: CancelToken | None = None) -> TenantRecord:
        """Return the combined view; only the identity is required.

        Missing limits fall back to the preset of the tenant's plan, a
        missing status to an active one and missing metadata to empty.
        """
        check_cancelled(cancel, "read tenant")
        with self.locks.read(tenant_id):
            identity = self.read_identity(tenant_id)
            limits = self.read_limits(tenant_id) or plan_limits(identity.plan)
            status = self.read_status(tenant_id) or Status()
            metadata = self.read_metadata(tenant_id) or Metadata()
        return TenantRecord(identity=identity, limits=limits, status=status, metadata=metadata)

    # ------------------------------------------------------------------
    # Skeleton lifecycle
    # ------------------------------------------------------------------
    def create_tenant_skeleton(self, tenant_id: int, *, cancel: CancelToken | None = None) -> bool:
        """Create the tenant directory tree; return True when the root was new."""
        check_cancelled(cancel, "create skeleton")
        root = self.layout.tenant_path(tenant_id)
        with self.locks.write(tenant_id):
            created = not root.is_dir()
            ensure_dir(root, DIR_MODE)
            for path in self.layout.skeleton_paths(tenant_id):
                ensure_dir(path, DIR_MODE)
        if created:
            LOGGER.info("Created skeleton for tenant %s at %s", tenant_id, root)
        return created

    def delete_tenant_skeleton(self, tenant_id: int, *, cancel: CancelToken | None = None) -> bool:
        """Recursively remove the tenant directory; return False when already absent."""
        check_cancelled(cancel, "delete skeleton")
        root = self.layout.tenant_path(tenant_id)
        with self.locks.write(tenant_id):
            if not root.exists():
                return False
            try:
                shutil.rmtree(root)
            except OSError as exc:
                raise StorageError(f"Failed to remove {root}: {exc}") from exc
        LOGGER.info("Removed skeleton for tenant %s", tenant_id)
        return True


__all__ = ["TenantStore", "load_descriptor", "load_optional"]
