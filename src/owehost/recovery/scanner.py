"""Read the on-disk tenant trees back into memory without changing them."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from ..errors import CorruptError, NotFoundError, StorageError, ValidationError
from ..locking import CancelToken, check_cancelled
from ..models import CertificateMeta, CronJob, Identity, Limits, Site, Status
from ..paths import TLS_META_FILE, Layout
from ..state.certificates import CERT_FILE, CHAIN_FILE, KEY_FILE
from ..state.cron import CronStore
from ..state.databases import DatabaseStore
from ..state.sites import SiteStore
from ..state.store import TenantStore, load_optional
from ..validators import (
    validate_identity,
    validate_limits,
    validate_posix_ids,
    validate_site,
    validate_ssl_meta,
    validate_status,
)

LOGGER = logging.getLogger(__name__)

DATABASE_ENGINE_DIRS = ("mysql", "postgres")


@dataclass(slots=True)
class TLSInfo:
    """What a ``ssl/<domain>`` directory holds."""

    domain: str
    has_cert: bool = False
    has_key: bool = False
    has_chain: bool = False
    meta: CertificateMeta | None = None

    @property
    def complete(self) -> bool:
        """Return True when both the certificate and the key are present."""
        return self.has_cert and self.has_key

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "domain": self.domain,
            "has_cert": self.has_cert,
            "has_key": self.has_key,
            "has_chain": self.has_chain,
            "meta": self.meta.to_dict() if self.meta else None,
        }


@dataclass(slots=True)
class DatabaseDiscovery:
    """A database directory found under ``databases/<engine>/``."""

    name: str
    engine: str
    path: Path

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"name": self.name, "engine": self.engine, "path": str(self.path)}


@dataclass(slots=True)
class TenantSnapshot:
    """Everything the scanner found for one tenant."""

    tenant_id: int
    path: Path
    identity: Identity | None = None
    limits: Limits | None = None
    status: Status | None = None
    sites: list[Site] = field(default_factory=list)
    tls: list[TLSInfo] = field(default_factory=list)
    databases: list[DatabaseDiscovery] = field(default_factory=list)
    cron: list[CronJob] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        """Return True when the scan collected soft errors."""
        return bool(self.errors)

    @property
    def domains(self) -> list[str]:
        """Return the domains of the scanned sites."""
        return [site.domain for site in self.sites]

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "id": self.tenant_id,
            "path": str(self.path),
            "identity": self.identity.to_dict() if self.identity else None,
            "limits": self.limits.to_dict() if self.limits else None,
            "status": self.status.to_dict() if self.status else None,
            "sites": [site.to_dict() for site in self.sites],
            "tls": [entry.to_dict() for entry in self.tls],
            "databases": [entry.to_dict() for entry in self.databases],
            "cron_jobs": [job.to_dict() for job in self.cron],
            "has_errors": self.has_errors,
            "scan_errors": list(self.errors),
        }


@dataclass(slots=True)
class ScanResult:
    """Snapshots of every scanned tenant plus totals."""

    tenants: list[TenantSnapshot] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def total_sites(self) -> int:
        """Return the number of sites across all snapshots."""
        return sum(len(snapshot.sites) for snapshot in self.tenants)

    @property
    def total_tls(self) -> int:
        """Return the number of TLS directories across all snapshots."""
        return sum(len(snapshot.tls) for snapshot in self.tenants)

    @property
    def total_databases(self) -> int:
        """Return the number of database directories across all snapshots."""
        return sum(len(snapshot.databases) for snapshot in self.tenants)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "tenants": [snapshot.to_dict() for snapshot in self.tenants],
            "total_tenants": len(self.tenants),
            "total_sites": self.total_sites,
            "total_tls": self.total_tls,
            "total_databases": self.total_databases,
            "errors": list(self.errors),
        }


class Scanner:
    """Build :class:`TenantSnapshot` objects from the accounts root."""

    def __init__(
        self,
        layout: Layout,
        tenants: TenantStore,
        sites: SiteStore,
        databases: DatabaseStore,
        cron: CronStore,
    ) -> None:
        """Bind the scanner to the stores it reads through."""
        self.layout = layout
        self.tenants = tenants
        self.sites = sites
        self.databases = databases
        self.cron = cron

    def scan_all(self, *, cancel: CancelToken | None = None) -> ScanResult:
        """Scan every tenant; a failure to list the accounts root is fatal."""
        result = ScanResult()
        for tenant_id in self.tenants.list_tenants():
            check_cancelled(cancel, "scan")
            try:
                result.tenants.append(self.scan_tenant(tenant_id))
            except (NotFoundError, StorageError) as exc:
                result.errors.append(f"tenant {tenant_id}: {exc}")
        return result

    def scan_tenant(self, tenant_id: int, *, cancel: CancelToken | None = None) -> TenantSnapshot:
        """Scan one tenant, collecting unreadable pieces as soft errors."""
        check_cancelled(cancel, "scan tenant")
        path = self.layout.tenant_path(tenant_id)
        if not path.is_dir():
            raise NotFoundError(f"Tenant {tenant_id} not found")
        snapshot = TenantSnapshot(tenant_id=tenant_id, path=path)
        with self.tenants.locks.read(tenant_id):
            try:
                snapshot.identity = self.tenants.read_identity(tenant_id)
            except (NotFoundError, CorruptError, StorageError) as exc:
                snapshot.errors.append(f"identity: {exc}")
            try:
                snapshot.limits = self.tenants.read_limits(tenant_id)
            except (CorruptError, StorageError) as exc:
                snapshot.errors.append(f"limits: {exc}")
            try:
                snapshot.status = self.tenants.read_status(tenant_id)
            except (CorruptError, StorageError) as exc:
                snapshot.errors.append(f"status: {exc}")
            self._scan_sites(snapshot)
            self._scan_tls(snapshot)
            self._scan_databases(snapshot)
            snapshot.cron = self.cron.list_jobs(tenant_id)
        if snapshot.errors:
            LOGGER.debug("Scan of tenant %s collected %s errors", tenant_id, len(snapshot.errors))
        return snapshot

    def _scan_sites(self, snapshot: TenantSnapshot) -> None:
        for domain in self.sites.site_directories(snapshot.tenant_id):
            try:
                snapshot.sites.append(self.sites.read_site(snapshot.tenant_id, domain))
            except (NotFoundError, CorruptError, StorageError) as exc:
                snapshot.errors.append(f"site {domain}: {exc}")

    def _scan_tls(self, snapshot: TenantSnapshot) -> None:
        for directory in _subdirectories(snapshot.path / "ssl"):
            info = TLSInfo(
                domain=directory.name,
                has_cert=(directory / CERT_FILE).is_file(),
                has_key=(directory / KEY_FILE).is_file(),
                has_chain=(directory / CHAIN_FILE).is_file(),
            )
            try:
                info.meta = load_optional(
                    directory / TLS_META_FILE,
                    CertificateMeta.from_dict,
                    validate_ssl_meta,
                )
            except (CorruptError, StorageError) as exc:
                snapshot.errors.append(f"tls {info.domain}: {exc}")
            if info.has_cert != info.has_key:
                snapshot.errors.append(f"tls {info.domain}: partial key pair")
            snapshot.tls.append(info)

    def _scan_databases(self, snapshot: TenantSnapshot) -> None:
        try:
            meta = self.databases.read_meta(snapshot.tenant_id)
        except (CorruptError, StorageError) as exc:
            snapshot.errors.append(f"databases: {exc}")
            meta = None
        for engine_dir in DATABASE_ENGINE_DIRS:
            root = self.layout.databases_path(snapshot.tenant_id) / engine_dir
            for directory in _subdirectories(root):
                engine = engine_dir
                if meta is not None and meta.find(directory.name, "mariadb") is not None:
                    engine = "mariadb"
                snapshot.databases.append(
                    DatabaseDiscovery(name=directory.name, engine=engine, path=directory)
                )

    # ------------------------------------------------------------------
    # Integrity
    # ------------------------------------------------------------------
    def validate_integrity(self, snapshot: TenantSnapshot) -> list[str]:
        """Run the validators over a snapshot and report what is missing or invalid."""
        issues: list[str] = []
        if snapshot.identity is None:
            issues.append("missing account.json")
        else:
            try:
                validate_identity(snapshot.identity)
                validate_posix_ids(snapshot.identity, snapshot.tenant_id)
            except ValidationError as exc:
                issues.append(f"invalid identity: {exc}")
        if snapshot.limits is None:
            issues.append("missing limits.json")
        else:
            try:
                validate_limits(snapshot.limits)
            except ValidationError as exc:
                issues.append(f"invalid limits: {exc}")
        if snapshot.status is not None:
            try:
                validate_status(snapshot.status)
            except ValidationError as exc:
                issues.append(f"invalid status: {exc}")
        complete_tls = {info.domain for info in snapshot.tls if info.complete}
        for site in snapshot.sites:
            try:
                validate_site(site)
                self.sites.document_root_path(snapshot.tenant_id, site)
            except ValidationError as exc:
                issues.append(f"invalid site {site.domain}: {exc}")
            if site.ssl and site.domain not in complete_tls:
                issues.append(f"site {site.domain} has ssl enabled but no certificate")
        for info in snapshot.tls:
            if not info.complete:
                issues.append(f"incomplete SSL for {info.domain}")
        return issues


def _subdirectories(root: Path) -> list[Path]:
    try:
        return sorted(entry for entry in root.iterdir() if entry.is_dir())
    except FileNotFoundError:
        return []
    except OSError as exc:
        raise StorageError(f"Failed to read {root}: {exc}") from exc


__all__ = [
    "DatabaseDiscovery",
    "ScanResult",
    "Scanner",
    "TLSInfo",
    "TenantSnapshot",
]
