"""Database metadata kept in ``databases/meta.json``."""
from __future__ import annotations

import logging
import shutil
from pathlib import Path

from ..atomic import DIR_MODE, ensure_dir, write_json
from ..errors import AlreadyExistsError, NotFoundError, StorageError, ValidationError
from ..events.emitter import Emitter, record_safely
from ..locking import TenantLocks
from ..models import DatabaseInfo, DatabaseUser, timestamp
from ..paths import DATABASE_META_FILE, Layout
from ..validators import validate_database
from .store import load_optional

LOGGER = logging.getLogger(__name__)

# mariadb shares the mysql data directory.
ENGINE_DIRS = {"mysql": "mysql", "mariadb": "mysql", "postgres": "postgres"}


class DatabaseMeta:
    """In-memory form of ``databases/meta.json``."""

    def __init__(self, databases: list[DatabaseInfo] | None = None, updated_at: str = "") -> None:
        self.databases = databases or []
        self.updated_at = updated_at

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> DatabaseMeta:
        raw = data.get("databases") or []
        if not isinstance(raw, list):
            raise ValidationError("databases", "must be a list")
        updated_at = data.get("updated_at")
        return cls(
            [DatabaseInfo.from_dict(item) for item in raw],
            updated_at if isinstance(updated_at, str) else "",
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "databases": [info.to_dict() for info in self.databases],
            "updated_at": self.updated_at,
        }

    def find(self, name: str, engine: str) -> DatabaseInfo | None:
        for info in self.databases:
            if info.name == name and info.type == engine:
                return info
        return None


class DatabaseStore:
    """Track the databases of a tenant and their granted users."""

    def __init__(
        self,
        layout: Layout,
        locks: TenantLocks | None = None,
        *,
        emitter: Emitter | None = None,
    ) -> None:
        """Bind the store to *layout*."""
        self.layout = layout
        self.locks = locks or TenantLocks()
        self.emitter = emitter

    def meta_path(self, tenant_id: int) -> Path:
        """Return the path of ``databases/meta.json``."""
        return self.layout.databases_path(tenant_id) / DATABASE_META_FILE

    def data_dir(self, tenant_id: int, info: DatabaseInfo) -> Path:
        """Return ``databases/<engine dir>/<name>`` for *info*."""
        engine_dir = ENGINE_DIRS.get(info.type, info.type)
        return self.layout.databases_path(tenant_id) / engine_dir / info.name

    def read_meta(self, tenant_id: int) -> DatabaseMeta:
        """Return the meta document, empty when the file is absent."""
        with self.locks.read(tenant_id):
            meta = load_optional(self.meta_path(tenant_id), DatabaseMeta.from_dict)
        return meta or DatabaseMeta()

    def write_meta(self, tenant_id: int, meta: DatabaseMeta) -> None:
        """Atomically write the meta document, stamping ``updated_at``."""
        meta.updated_at = timestamp()
        with self.locks.write(tenant_id):
            ensure_dir(self.layout.databases_path(tenant_id), DIR_MODE)
            write_json(self.meta_path(tenant_id), meta.to_dict())

    # ------------------------------------------------------------------
    # Databases
    # ------------------------------------------------------------------
    def add_database(self, tenant_id: int, info: DatabaseInfo) -> DatabaseInfo:
        """Register *info* and create its data directory."""
        validate_database(info)
        with self.locks.write(tenant_id):
            meta = self.read_meta(tenant_id)
            if meta.find(info.name, info.type) is not None:
                raise AlreadyExistsError(f"Database {info.name} already exists")
            info.created_at = info.updated_at = timestamp()
            meta.databases.append(info)
            ensure_dir(self.data_dir(tenant_id, info), DIR_MODE)
            self.write_meta(tenant_id, meta)
        LOGGER.info("Registered %s database %s for tenant %s", info.type, info.name, tenant_id)
        record_safely(self.emitter, "database_created", tenant_id, info.name, info.type)
        return info

    def remove_database(self, tenant_id: int, name: str, engine: str = "mysql") -> None:
        """Unregister a database and remove its data directory."""
        with self.locks.write(tenant_id):
            meta = self.read_meta(tenant_id)
            info = meta.find(name, engine)
            if info is None:
                raise NotFoundError(f"Database {name} not found")
            meta.databases.remove(info)
            directory = self.data_dir(tenant_id, info)
            try:
                shutil.rmtree(directory)
            except FileNotFoundError:
                pass
            except OSError as exc:
                raise StorageError(f"Failed to remove {directory}: {exc}") from exc
            self.write_meta(tenant_id, meta)
        LOGGER.info("Removed %s database %s of tenant %s", engine, name, tenant_id)
        record_safely(self.emitter, "database_deleted", tenant_id, name)

    def get_database(self, tenant_id: int, name: str, engine: str = "mysql") -> DatabaseInfo:
        """Return one database entry."""
        info = self.read_meta(tenant_id).find(name, engine)
        if info is None:
            raise NotFoundError(f"Database {name} not found")
        return info

    def list_databases(self, tenant_id: int) -> list[DatabaseInfo]:
        """Return every registered database."""
        return list(self.read_meta(tenant_id).databases)

    def update_size(self, tenant_id: int, name: str, engine: str, size_mb: float) -> None:
        """Record the measured size of a database."""
        with self.locks.write(tenant_id):
            meta = self.read_meta(tenant_id)
            info = meta.find(name, engine)
            if info is None:
                raise NotFoundError(f"Database {name} not found")
            info.size_mb = size_mb
            info.updated_at = timestamp()
            self.write_meta(tenant_id, meta)

    def count(self, tenant_id: int, engine: str | None = None) -> int:
        """Return the number of databases, optionally of one engine."""
        databases = self.read_meta(tenant_id).databases
        if engine is None:
            return len(databases)
        return sum(1 for info in databases if info.type == engine)

    def total_size_mb(self, tenant_id: int) -> float:
        """Return the combined size of every database."""
        return sum(info.size_mb for info in self.read_meta(tenant_id).databases)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------
    def add_user(self, tenant_id: int, name: str, engine: str, user: DatabaseUser) -> None:
        """Grant *user* access to a database."""
        with self.locks.write(tenant_id):
            meta = self.read_meta(tenant_id)
            info = meta.find(name, engine)
            if info is None:
                raise NotFoundError(f"Database {name} not found")
            for existing in info.users:
                if existing.username == user.username and existing.host == user.host:
                    raise AlreadyExistsError(f"User {user.username}@{user.host} already exists")
            user.created_at = timestamp()
            info.users.append(user)
            info.updated_at = user.created_at
            self.write_meta(tenant_id, meta)

    def remove_user(
        self,
        tenant_id: int,
        name: str,
        engine: str,
        username: str,
        host: str = "localhost",
    ) -> None:
        """Revoke a user's access to a database."""
        with self.locks.write(tenant_id):
            meta = self.read_meta(tenant_id)
            info = meta.find(name, engine)
            if info is None:
                raise NotFoundError(f"Database {name} not found")
            remaining = [u for u in info.users if (u.username, u.host) != (username, host)]
            if len(remaining) == len(info.users):
                raise NotFoundError(f"User {username}@{host} not found")
            info.users = remaining
            info.updated_at = timestamp()
            self.write_meta(tenant_id, meta)


__all__ = ["DatabaseMeta", "DatabaseStore", "ENGINE_DIRS"]
