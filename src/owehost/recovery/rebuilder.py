"""Rebuild the derived index from the filesystem and check it for drift.

The filesystem is authoritative. :class:`Rebuilder` scans it and replays
every tenant into a :class:`DatabaseWriter` in a fixed order: the tenant,
then each domain, each TLS directory holding a key pair, each database,
and finally the removal of domain records that no longer exist on disk.
Per-resource failures are collected into the report instead of raised.
"""
from __future__ import annotations

import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Protocol

from ..errors import OwehostError, ValidationError
from ..events.emitter import Emitter, record_safely
from ..locking import CancelToken, check_cancelled
from ..models import CertificateMeta, Site, timestamp
from ..state.registry import IndexedTenant, RegistryError
from ..validators import validate_identity, validate_posix_ids
from .scanner import Scanner, ScanResult, TenantSnapshot

LOGGER = logging.getLogger(__name__)

WRITER_ERRORS = (OwehostError, RegistryError, OSError)


class DatabaseWriter(Protocol):
    """Sink for the records a rebuild produces."""

    def upsert_tenant(self, snapshot: TenantSnapshot) -> None: ...

    def upsert_domain(self, tenant_id: int, site: Site) -> None: ...

    def upsert_tls(self, tenant_id: int, domain: str, meta: CertificateMeta | None) -> None: ...

    def upsert_database(self, tenant_id: int, name: str, engine: str) -> None: ...

    def delete_stale_records(self, tenant_id: int, current_domains: Iterable[str]) -> object: ...


class DatabaseReader(Protocol):
    """Source compared against a fresh scan by :meth:`Rebuilder.verify_consistency`."""

    def get_tenant(self, tenant_id: int) -> IndexedTenant | None: ...

    def domain_exists(self, tenant_id: int, domain: str) -> bool: ...

    def list_domains(self, tenant_id: int) -> list[str]: ...

    def list_tenants(self) -> list[int]: ...


@dataclass(slots=True)
class RebuildOptions:
    """Knobs for a rebuild run."""

    dry_run: bool = False
    tenant_id: int | None = None
    skip_validation: bool = False
    force_overwrite: bool = False


@dataclass(slots=True)
class RebuildError:
    """A per-resource failure recorded by a rebuild."""

    tenant_id: int
    resource: str
    error: str

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"account_id": self.tenant_id, "resource": self.resource, "error": self.error}


@dataclass(slots=True)
class RebuildReport:
    """Outcome of :meth:`Rebuilder.rebuild`."""

    started_at: str = ""
    finished_at: str = ""
    duration_ms: int = 0
    dry_run: bool = False
    tenants_scanned: int = 0
    tenants_updated: int = 0
    sites_found: int = 0
    tls_found: int = 0
    databases_found: int = 0
    errors: list[RebuildError] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """Return True when no per-resource error was recorded."""
        return not self.errors

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "start_time": self.started_at,
            "end_time": self.finished_at,
            "duration_ms": self.duration_ms,
            "dry_run": self.dry_run,
            "accounts_scanned": self.tenants_scanned,
            "accounts_updated": self.tenants_updated,
            "sites_found": self.sites_found,
            "ssl_certs_found": self.tls_found,
            "databases_found": self.databases_found,
            "errors": [error.to_dict() for error in self.errors],
            "warnings": list(self.warnings),
        }


@dataclass(slots=True)
class Mismatch:
    """A field whose filesystem and index values differ."""

    type: str
    tenant_id: int
    fs_value: str
    index_value: str
    resource: str = ""

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        payload: dict[str, object] = {"type": self.type, "account_id": self.tenant_id}
        if self.resource:
            payload["resource"] = self.resource
        payload.update({"fs_value": self.fs_value, "index_value": self.index_value})
        return payload


@dataclass(slots=True)
class MissingRecord:
    """A record present on one side only."""

    type: str
    tenant_id: int
    name: str

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"type": self.type, "account_id": self.tenant_id, "name": self.name}


@dataclass(slots=True)
class ConsistencyReport:
    """Outcome of :meth:`Rebuilder.verify_consistency`."""

    timestamp: str = ""
    mismatches: list[Mismatch] = field(default_factory=list)
    missing_in_index: list[MissingRecord] = field(default_factory=list)
    missing_on_filesystem: list[MissingRecord] = field(default_factory=list)

    @property
    def consistent(self) -> bool:
        """Return True when both sides agree."""
        return not (self.mismatches or self.missing_in_index or self.missing_on_filesystem)

    @property
    def issue_count(self) -> int:
        """Return the number of reported differences."""
        return (
            len(self.mismatches)
            + len(self.missing_in_index)
            + len(self.missing_on_filesystem)
        )

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "timestamp": self.timestamp,
            "consistent": self.consistent,
            "mismatches": [item.to_dict() for item in self.mismatches],
            "missing_in_index": [item.to_dict() for item in self.missing_in_index],
            "missing_on_filesystem": [item.to_dict() for item in self.missing_on_filesystem],
        }


class Rebuilder:
    """Replay filesystem snapshots into an index."""

    def __init__(
        self,
        scanner: Scanner,
        *,
        writer: DatabaseWriter | None = None,
        emitter: Emitter | None = None,
    ) -> None:
        """Bind the rebuilder to *scanner* and an optional default *writer*."""
        self.scanner = scanner
        self.writer = writer
        self.emitter = emitter

    def _scan(self, options: RebuildOptions, cancel: CancelToken | None) -> ScanResult:
        if options.tenant_id is None:
            return self.scanner.scan_all(cancel=cancel)
        return ScanResult(tenants=[self.scanner.scan_tenant(options.tenant_id, cancel=cancel)])

    def rebuild(
        self,
        options: RebuildOptions | None = None,
        writer: DatabaseWriter | None = None,
        *,
        cancel: CancelToken | None = None,
    ) -> RebuildReport:
        """Scan and upsert every tenant, returning a report.

        A failure to scan (including a missing single tenant) is raised;
        everything after the scan is collected into the report.
        """
        options = options or RebuildOptions()
        writer = writer if writer is not None else self.writer
        report = RebuildReport(started_at=timestamp(), dry_run=options.dry_run)
        started = time.monotonic()
        self._config_event({"action": "rebuild_start", "dry_run": options.dry_run})

        scan = self._scan(options, cancel)
        report.tenants_scanned = len(scan.tenants)
        report.sites_found = scan.total_sites
        report.tls_found = scan.total_tls
        report.databases_found = scan.total_databases
        report.warnings.extend(scan.errors)

        for snapshot in scan.tenants:
            check_cancelled(cancel, "rebuild")
            if self._rebuild_tenant(snapshot, options, writer, report):
                report.tenants_updated += 1

        report.finished_at = timestamp()
        report.duration_ms = int((time.monotonic() - started) * 1000)
        self._config_event(
            {
                "action": "rebuild_complete",
                "accounts_updated": report.tenants_updated,
                "duration_ms": report.duration_ms,
                "errors": len(report.errors),
            }
        )
        LOGGER.info(
            "Rebuild scanned %s tenants, updated %s, %s errors",
            report.tenants_scanned,
            report.tenants_updated,
            len(report.errors),
        )
        return report

    def _rebuild_tenant(
        self,
        snapshot: TenantSnapshot,
        options: RebuildOptions,
        writer: DatabaseWriter | None,
        report: RebuildReport,
    ) -> bool:
        tenant_id = snapshot.tenant_id
        if not options.skip_validation:
            for issue in self.scanner.validate_integrity(snapshot):
                report.warnings.append(f"account {tenant_id}: {issue}")

        problem = self._identity_problem(snapshot)
        if problem and not (options.force_overwrite and snapshot.identity is not None):
            report.errors.append(RebuildError(tenant_id, "account", problem))
            return False
        if options.dry_run:
            return True
        if writer is None:
            return False

        try:
            writer.upsert_tenant(snapshot)
        except WRITER_ERRORS as exc:
            report.errors.append(RebuildError(tenant_id, "account", f"upsert failed: {exc}"))
            return False

        for site in snapshot.sites:
            try:
                writer.upsert_domain(tenant_id, site)
            except WRITER_ERRORS as exc:
                report.errors.append(RebuildError(tenant_id, f"domain:{site.domain}", str(exc)))
        for info in snapshot.tls:
            if not info.complete:
                continue
            try:
                writer.upsert_tls(tenant_id, info.domain, info.meta)
            except WRITER_ERRORS as exc:
                report.errors.append(RebuildError(tenant_id, f"ssl:{info.domain}", str(exc)))
        for database in snapshot.databases:
            try:
                writer.upsert_database(tenant_id, database.name, database.engine)
            except WRITER_ERRORS as exc:
                report.errors.append(
                    RebuildError(tenant_id, f"database:{database.name}", str(exc))
                )
        try:
            writer.delete_stale_records(tenant_id, snapshot.domains)
        except WRITER_ERRORS as exc:
            report.warnings.append(
                f"account {tenant_id}: failed to delete stale records: {exc}"
            )
        return True

    @staticmethod
    def _identity_problem(snapshot: TenantSnapshot) -> str | None:
        if snapshot.identity is None:
            return "missing account.json"
        try:
            validate_identity(snapshot.identity)
            validate_posix_ids(snapshot.identity, snapshot.tenant_id)
        except ValidationError as exc:
            return f"invalid identity: {exc}"
        return None

    def _config_event(self, data: dict[str, object]) -> None:
        record_safely(self.emitter, "config_changed", data)

    # ------------------------------------------------------------------
    # Consistency
    # ------------------------------------------------------------------
    def verify_consistency(
        self,
        reader: DatabaseReader,
        *,
        cancel: CancelToken | None = None,
    ) -> ConsistencyReport:
        """Compare a fresh scan with *reader* in both directions."""
        report = ConsistencyReport(timestamp=timestamp())
        scan = self.scanner.scan_all(cancel=cancel)
        scanned = {snapshot.tenant_id for snapshot in scan.tenants}
        for snapshot in scan.tenants:
            tenant_id = snapshot.tenant_id
            name = snapshot.identity.name if snapshot.identity else ""
            indexed = reader.get_tenant(tenant_id)
            if indexed is None:
                report.missing_in_index.append(MissingRecord("account", tenant_id, name))
                continue
            if snapshot.identity is not None:
                if snapshot.identity.state != indexed.state:
                    report.mismatches.append(
                        Mismatch("account_state", tenant_id, snapshot.identity.state, indexed.state)
                    )
                if snapshot.identity.name != indexed.name:
                    report.mismatches.append(
                        Mismatch("account_name", tenant_id, snapshot.identity.name, indexed.name)
                    )
            on_disk = set(snapshot.domains)
            for domain in sorted(on_disk):
                if not reader.domain_exists(tenant_id, domain):
                    report.missing_in_index.append(MissingRecord("domain", tenant_id, domain))
            for domain in reader.list_domains(tenant_id):
                if domain not in on_disk:
                    report.missing_on_filesystem.append(
                        MissingRecord("domain", tenant_id, domain)
                    )
        for tenant_id in reader.list_tenants():
            if tenant_id not in scanned:
                indexed = reader.get_tenant(tenant_id)
                name = indexed.name if indexed else ""
                report.missing_on_filesystem.append(MissingRecord("account", tenant_id, name))
        return report


__all__ = [
    "ConsistencyReport",
    "DatabaseReader",
    "DatabaseWriter",
    "Mismatch",
    "MissingRecord",
    "RebuildError",
    "RebuildOptions",
    "RebuildReport",
    "Rebuilder",
]
