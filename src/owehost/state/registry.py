"""YAML index of tenants, domains, certificates and databases.

The index (``<registry_dir>/index.yml``) is a derived view of the
filesystem. The rebuild pipeline writes it and ``verify --index`` compares
it against a fresh scan, so both directions work without a relational
database.
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from ..atomic import ensure_dir, write_text
from ..models import CertificateMeta, Site, timestamp

if TYPE_CHECKING:
    from ..recovery.scanner import TenantSnapshot

INDEX_FILE = "index.yml"
INDEX_MODE = 0o640


class RegistryError(RuntimeError):
    """Raised when the index cannot be read or written."""


@dataclass(frozen=True)
class IndexedTenant:
    """The fields of a tenant record that consistency checks compare."""

    id: int
    name: str
    state: str

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"id": self.id, "name": self.name, "state": self.state}


@dataclass(frozen=True)
class IndexRegistry:
    """Read and update the YAML index."""

    root: Path

    def __post_init__(self) -> None:
        """Normalise the root path after initialisation."""
        object.__setattr__(self, "root", self.root.expanduser())

    @property
    def path(self) -> Path:
        """Return the location of ``index.yml``."""
        return self.root / INDEX_FILE

    # ------------------------------------------------------------------
    # Raw access
    # ------------------------------------------------------------------
    def read(self) -> dict[str, Any]:
        """Return the index document, empty when the file is missing."""
        if not self.path.exists():
            return {"tenants": []}
        try:
            data = yaml.safe_load(self.path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            raise RegistryError(f"Failed to parse registry file {self.path}: {exc}") from exc
        except OSError as exc:
            raise RegistryError(f"Failed to read registry file {self.path}: {exc}") from exc
        if data is None:
            return {"tenants": []}
        if not isinstance(data, Mapping) or not isinstance(data.get("tenants", []), list):
            raise RegistryError(f"Registry file {self.path} has an unexpected structure")
        tenants = [dict(entry) for entry in data.get("tenants", []) if isinstance(entry, Mapping)]
        return {"tenants": tenants}

    def write(self, payload: Mapping[str, object]) -> None:
        """Atomically replace the index with *payload*."""
        ensure_dir(self.root)
        text = yaml.safe_dump(dict(payload), sort_keys=False)
        write_text(self.path, text, mode=INDEX_MODE)

    def _entries(self) -> list[dict[str, Any]]:
        return self.read()["tenants"]

    def _save(self, entries: Iterable[dict[str, Any]]) -> None:
        ordered = sorted(entries, key=lambda entry: int(entry.get("id", 0)))
        self.write({"tenants": ordered})

    @staticmethod
    def _find(entries: list[dict[str, Any]], tenant_id: int) -> dict[str, Any] | None:
        for entry in entries:
            if entry.get("id") == tenant_id:
                return entry
        return None

    def _require(self, entries: list[dict[str, Any]], tenant_id: int) -> dict[str, Any]:
        entry = self._find(entries, tenant_id)
        if entry is None:
            raise RegistryError(f"Tenant {tenant_id} is not indexed")
        return entry

    # ------------------------------------------------------------------
    # Writer side
    # ------------------------------------------------------------------
    def upsert_tenant(self, snapshot: TenantSnapshot) -> None:
        """Add or refresh the record of a scanned tenant."""
        identity = snapshot.identity
        if identity is None:
            raise RegistryError(f"Tenant {snapshot.tenant_id} has no identity to index")
        entries = self._entries()
        entry = self._find(entries, snapshot.tenant_id)
        if entry is None:
            entry = {"id": snapshot.tenant_id, "domains": [], "tls": [], "databases": []}
            entries.append(entry)
        entry.update(
            {
                "name": identity.name,
                "state": identity.state,
                "plan": identity.plan,
                "owner": identity.owner,
                "uid": identity.uid,
                "gid": identity.gid,
                "updated_at": timestamp(),
            }
        )
        self._save(entries)

    def upsert_domain(self, tenant_id: int, site: Site) -> None:
        """Add or refresh a domain record."""
        record = {
            "domain": site.domain,
            "runtime": site.runtime,
            "ssl": site.ssl,
            "document_root": site.effective_document_root,
        }
        self._upsert_child(tenant_id, "domains", "domain", record)

    def upsert_tls(self, tenant_id: int, domain: str, meta: CertificateMeta | None) -> None:
        """Add or refresh the TLS record of *domain*."""
        record = {
            "domain": domain,
            "type": meta.type if meta else "unknown",
            "valid_until": meta.valid_until if meta else None,
        }
        self._upsert_child(tenant_id, "tls", "domain", record)

    def upsert_database(self, tenant_id: int, name: str, engine: str) -> None:
        """Add or refresh a database record."""
        self._upsert_child(tenant_id, "databases", "name", {"name": name, "engine": engine})

    def _upsert_child(
        self,
        tenant_id: int,
        collection: str,
        key: str,
        record: dict[str, Any],
    ) -> None:
        entries = self._entries()
        entry = self._require(entries, tenant_id)
        children = [
            child for child in entry.get(collection) or []
            if isinstance(child, Mapping) and child.get(key) != record[key]
        ]
        children.append(record)
        entry[collection] = sorted(children, key=lambda child: str(child.get(key)))
        self._save(entries)

    def delete_stale_records(self, tenant_id: int, current_domains: Iterable[str]) -> list[str]:
        """Drop domain records not in *current_domains*; return the removed names."""
        current = set(current_domains)
        entries = self._entries()
        entry = self._require(entries, tenant_id)
        kept: list[Any] = []
        removed: list[str] = []
        for child in entry.get("domains") or []:
            if isinstance(child, Mapping) and child.get("domain") in current:
                kept.append(child)
            else:
                removed.append(str(child.get("domain")) if isinstance(child, Mapping) else "?")
        if removed:
            entry["domains"] = kept
            self._save(entries)
        return removed

    def remove_tenant(self, tenant_id: int) -> bool:
        """Drop the record of a deleted tenant; return False when it was absent."""
        entries = self._entries()
        remaining = [entry for entry in entries if entry.get("id") != tenant_id]
        if len(remaining) == len(entries):
            return False
        self._save(remaining)
        return True

    # ------------------------------------------------------------------
    # Reader side
    # ------------------------------------------------------------------
    def get_tenant(self, tenant_id: int) -> IndexedTenant | None:
        """Return the indexed tenant, or ``None`` when absent."""
        entry = self._find(self._entries(), tenant_id)
        if entry is None:
            return None
        return IndexedTenant(
            id=tenant_id,
            name=str(entry.get("name", "")),
            state=str(entry.get("state", "")),
        )

    def domain_exists(self, tenant_id: int, domain: str) -> bool:
        """Return True when *domain* is indexed for the tenant."""
        return domain in self.list_domains(tenant_id)

    def list_domains(self, tenant_id: int) -> list[str]:
        """Return the indexed domains of the tenant."""
        entry = self._find(self._entries(), tenant_id)
        if entry is None:
            return []
        return [
            str(child["domain"]) for child in entry.get("domains") or []
            if isinstance(child, Mapping) and "domain" in child
        ]

    def list_tenants(self) -> list[int]:
        """Return every indexed tenant id."""
        return sorted(int(entry["id"]) for entry in self._entries() if "id" in entry)

    def snapshot(self) -> dict[str, Any]:
        """Return a deep copy of the whole index."""
        return deepcopy(self.read())


__all__ = ["INDEX_FILE", "IndexRegistry", "IndexedTenant", "RegistryError"]
