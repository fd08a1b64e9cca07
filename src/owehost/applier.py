"""Idempotent reconciler from a desired tenant state to the filesystem and host.

:meth:`Applier.apply` walks a fixed list of phases: validate, skeleton,
POSIX user, descriptors, ownership, resource limits, event. A phase that
fails aborts the rest without undoing earlier phases; the next apply
converges again. Cgroup, quota and self-signed certificate problems are
warnings, everything else raises a classified :class:`OwehostError`.
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from .errors import AlreadyExistsError, CorruptError, NotFoundError, OwehostError, ValidationError
from .events.emitter import SYSTEM_ACTOR, Emitter
from .locking import CancelToken, TenantLocks, check_cancelled
from .models import Identity, Limits, Metadata, Site, Status, plan_limits, timestamp
from .oscontrol.accounts import AccountManager
from .oscontrol.limits import ResourceLimiter
from .oscontrol.ownership import OwnershipManager
from .paths import IDENTITY_FILE, Layout
from .providers.nginx import NginxProvider
from .providers.phpfpm import PhpFpmProvider
from .renderer import ConfigRenderer
from .state.certificates import CertificateStore
from .state.sites import SiteStore
from .state.store import TenantStore
from .tls import TLSError
from .validators import validate_desired, validate_domain, validate_posix_ids, validate_site

LOGGER = logging.getLogger(__name__)

DESIRED_KEYS = ("identity", "limits", "status", "metadata")


@dataclass(slots=True)
class DesiredState:
    """The parts of a tenant a caller wants to converge; ``None`` leaves a part alone."""

    identity: Identity | None = None
    limits: Limits | None = None
    status: Status | None = None
    metadata: Metadata | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DesiredState:
        """Build a desired state from ``{identity, limits, status, metadata}``."""
        if not isinstance(data, Mapping):
            raise ValidationError("desired", "expected an object")
        unknown = sorted(set(data) - set(DESIRED_KEYS))
        if unknown:
            raise ValidationError("desired", f"unknown keys: {', '.join(unknown)}")

        def part(key: str, factory: Callable[[Mapping[str, Any]], Any]) -> Any:
            value = data.get(key)
            if value is None:
                return None
            if not isinstance(value, Mapping):
                raise ValidationError(key, "expected an object")
            return factory(value)

        return cls(
            identity=part("identity", Identity.from_dict),
            limits=part("limits", Limits.from_dict),
            status=part("status", Status.from_dict),
            metadata=part("metadata", Metadata.from_dict),
        )

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            key: getattr(self, key).to_dict()
            for key in DESIRED_KEYS
            if getattr(self, key) is not None
        }


@dataclass(slots=True)
class ApplyResult:
    """Outcome of a successful :meth:`Applier.apply`."""

    tenant_id: int
    created: bool = False
    state: str = ""
    steps: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    event_id: str | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "tenant_id": self.tenant_id,
            "created": self.created,
            "state": self.state,
            "steps": list(self.steps),
            "warnings": list(self.warnings),
            "event_id": self.event_id,
        }


@dataclass(slots=True)
class SiteResult:
    """Outcome of :meth:`Applier.apply_site`."""

    tenant_id: int
    domain: str
    created: bool = False
    index_created: bool = False
    files: list[str] = field(default_factory=list)
    certificate: str | None = None
    warnings: list[str] = field(default_factory=list)
    event_id: str | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "tenant_id": self.tenant_id,
            "domain": self.domain,
            "created": self.created,
            "index_created": self.index_created,
            "files": list(self.files),
            "certificate": self.certificate,
            "warnings": list(self.warnings),
            "event_id": self.event_id,
        }


class Applier:
    """Converge tenants and their sites to a declared state."""

    def __init__(
        self,
        *,
        layout: Layout,
        tenants: TenantStore,
        sites: SiteStore,
        certificates: CertificateStore,
        renderer: ConfigRenderer,
        nginx: NginxProvider,
        phpfpm: PhpFpmProvider,
        accounts: AccountManager,
        ownership: OwnershipManager,
        limiter: ResourceLimiter,
        emitter: Emitter | None = None,
        manage_users: bool = True,
    ) -> None:
        """Wire the applier to its stores, providers and host helpers."""
        self.layout = layout
        self.tenants = tenants
        self.sites = sites
        self.certificates = certificates
        self.renderer = renderer
        self.nginx = nginx
        self.phpfpm = phpfpm
        self.accounts = accounts
        self.ownership = ownership
        self.limiter = limiter
        self.emitter = emitter
        self.manage_users = manage_users

    @property
    def locks(self) -> TenantLocks:
        """Return the per-tenant locks shared with the stores."""
        return self.tenants.locks

    # ------------------------------------------------------------------
    # Apply
    # ------------------------------------------------------------------
    def apply(
        self,
        tenant_id: int,
        desired: DesiredState,
        *,
        actor: str = SYSTEM_ACTOR,
        cancel: CancelToken | None = None,
    ) -> ApplyResult:
        """Reconcile *tenant_id* to *desired*.

        Creation is keyed on ``account.json`` being absent, so repeating an
        apply never records a second ``account.create`` event.
        """
        check_cancelled(cancel, "validate")
        validate_desired(desired.identity, desired.limits, desired.status, desired.metadata)
        if desired.identity is not None:
            validate_posix_ids(desired.identity, tenant_id)

        result = ApplyResult(tenant_id=tenant_id)
        with self.locks.write(tenant_id):
            result.created = not self.layout.descriptor_path(tenant_id, IDENTITY_FILE).exists()
            identity = self._target_identity(tenant_id, desired.identity, result.created)
            if result.created or identity.name != self._current_name(tenant_id):
                self._ensure_unique_name(tenant_id, identity.name)

            check_cancelled(cancel, "skeleton")
            self.tenants.create_tenant_skeleton(tenant_id)
            result.steps.append("skeleton")

            check_cancelled(cancel, "posix user")
            if self.manage_users:
                home = self.layout.home_path(tenant_id)
                if self.accounts.ensure_user(identity, home):
                    result.steps.append("posix-user")

            check_cancelled(cancel, "descriptors")
            self.tenants.write_identity(tenant_id, identity)
            limits = desired.limits
            if limits is None:
                limits = self.tenants.read_limits(tenant_id)
                if limits is None:
                    limits = plan_limits(identity.plan)
                    self.tenants.write_limits(tenant_id, limits)
            else:
                self.tenants.write_limits(tenant_id, limits)
            if desired.status is not None:
                self.tenants.write_status(tenant_id, desired.status)
            elif self.tenants.read_status(tenant_id) is None:
                self.tenants.write_status(tenant_id, Status())
            if desired.metadata is not None:
                self.tenants.write_metadata(tenant_id, desired.metadata)
            result.steps.append("descriptors")

            check_cancelled(cancel, "ownership")
            self.ownership.apply(tenant_id, identity.uid, identity.gid)
            result.steps.append("ownership")

            check_cancelled(cancel, "resource limits")
            result.warnings.extend(self.limiter.apply(tenant_id, identity.uid, limits))
            result.steps.append("limits")

            if identity.state == "pending":
                identity.state = "active"
                self.tenants.write_identity(tenant_id, identity)
            result.state = identity.state

        helper = "account_created" if result.created else "account_updated"
        result.event_id = self._emit(result.warnings, helper, tenant_id, identity.name, actor)
        LOGGER.info(
            "%s tenant %s (%s)",
            "Created" if result.created else "Reconciled",
            tenant_id,
            identity.name,
        )
        return result

    def _target_identity(
        self,
        tenant_id: int,
        supplied: Identity | None,
        created: bool,
    ) -> Identity:
        if supplied is None:
            if created:
                raise ValidationError("identity", f"required to create tenant {tenant_id}")
            return self.tenants.read_identity(tenant_id)
        identity = replace(supplied)
        if not identity.created_at:
            existing = None if created else self._existing_identity(tenant_id)
            if existing is not None and existing.created_at:
                identity.created_at = existing.created_at
            else:
                identity.created_at = timestamp()
        return identity

    def _existing_identity(self, tenant_id: int) -> Identity | None:
        try:
            return self.tenants.read_identity(tenant_id)
        except (NotFoundError, CorruptError):
            return None

    def _current_name(self, tenant_id: int) -> str | None:
        existing = self._existing_identity(tenant_id)
        return existing.name if existing else None

    def _ensure_unique_name(self, tenant_id: int, name: str) -> None:
        for other in self.tenants.list_tenants():
            if other == tenant_id:
                continue
            existing = self._existing_identity(other)
            if existing is not None and existing.name == name:
                raise AlreadyExistsError(f"Tenant name {name!r} is used by tenant {other}")

    # ------------------------------------------------------------------
    # Lifecycle transitions
    # ------------------------------------------------------------------
    def suspend(
        self,
        tenant_id: int,
        reason: str,
        actor: str = SYSTEM_ACTOR,
        *,
        cancel: CancelToken | None = None,
    ) -> Identity:
        """Suspend a tenant and record who did it."""
        check_cancelled(cancel, "suspend")
        with self.locks.write(tenant_id):
            identity = self._live_identity(tenant_id, "suspend")
            status = Status(
                suspended=True,
                reason=reason,
                suspended_at=timestamp(),
                suspended_by=actor,
            )
            identity.state = "suspended"
            self._transition(tenant_id, identity, status)
        self._emit([], "account_suspended", tenant_id, reason, actor)
        return identity

    def unsuspend(
        self,
        tenant_id: int,
        actor: str = SYSTEM_ACTOR,
        *,
        cancel: CancelToken | None = None,
    ) -> Identity:
        """Lift a suspension; the reason is cleared."""
        check_cancelled(cancel, "unsuspend")
        with self.locks.write(tenant_id):
            identity = self._live_identity(tenant_id, "unsuspend")
            identity.state = "active"
            self._transition(tenant_id, identity, Status(suspended=False))
        self._emit([], "account_unsuspended", tenant_id, actor)
        return identity

    def terminate(
        self,
        tenant_id: int,
        reason: str,
        actor: str = SYSTEM_ACTOR,
        *,
        cancel: CancelToken | None = None,
    ) -> Identity:
        """Lock a tenant for deletion; the POSIX user and data stay in place."""
        check_cancelled(cancel, "terminate")
        with self.locks.write(tenant_id):
            identity = self.tenants.read_identity(tenant_id)
            now = timestamp()
            status = Status(
                suspended=True,
                locked=True,
                reason=reason,
                suspended_at=now,
                suspended_by=actor,
                locked_at=now,
                locked_reason=reason,
            )
            identity.state = "terminated"
            self._transition(tenant_id, identity, status)
        self._emit([], "account_terminated", tenant_id, reason, actor)
        return identity

    def delete(
        self,
        tenant_id: int,
        actor: str = SYSTEM_ACTOR,
        *,
        cancel: CancelToken | None = None,
    ) -> bool:
        """Remove a tenant: POSIX user, cgroup, generated configs, then its directory.

        Missing pieces are skipped, so deleting twice is harmless. Return
        False when there was nothing left to remove.
        """
        check_cancelled(cancel, "delete")
        with self.locks.write(tenant_id):
            identity = self._existing_identity(tenant_id)
            if identity is not None and self.manage_users:
                self.accounts.remove_user(identity.name)
            cgroup_removed = self.limiter.remove_cgroup(tenant_id)
            check_cancelled(cancel, "delete configs")
            for domain in self.sites.site_directories(tenant_id):
                self.nginx.remove_site(tenant_id, domain)
                self.phpfpm.remove_pools(tenant_id, domain)
            removed = self.tenants.delete_tenant_skeleton(tenant_id)
        if identity is not None or removed:
            name = identity.name if identity is not None else ""
            self._emit([], "account_deleted", tenant_id, name, actor)
        return removed or cgroup_removed

    def _live_identity(self, tenant_id: int, action: str) -> Identity:
        identity = self.tenants.read_identity(tenant_id)
        if identity.state == "terminated":
            raise ValidationError(
                "identity.state",
                f"cannot {action} terminated tenant {tenant_id}",
            )
        return identity

    def _transition(self, tenant_id: int, identity: Identity, status: Status) -> None:
        self.tenants.write_status(tenant_id, status)
        self.tenants.write_identity(tenant_id, identity)
        LOGGER.info("Tenant %s is now %s", tenant_id, identity.state)

    # ------------------------------------------------------------------
    # Sites
    # ------------------------------------------------------------------
    def apply_site(
        self,
        tenant_id: int,
        site: Site,
        *,
        actor: str = SYSTEM_ACTOR,
        cancel: CancelToken | None = None,
    ) -> SiteResult:
        """Write a site, its default page and its service configs.

        nginx and PHP-FPM are not reloaded; callers batch reloads through
        the generator.
        """
        check_cancelled(cancel, "validate site")
        validate_site(site)
        result = SiteResult(tenant_id=tenant_id, domain=site.domain)
        with self.locks.write(tenant_id):
            identity = self.tenants.read_identity(tenant_id)
            self.sites.document_root_path(tenant_id, site)
            result.created = not self.sites.site_exists(tenant_id, site.domain)
            if result.created:
                self._ensure_domain_free(tenant_id, site.domain)

            check_cancelled(cancel, "site descriptor")
            self.sites.write_site(tenant_id, site)
            index = self.renderer.render_index(site.domain)
            result.index_created = self.sites.create_default_index(tenant_id, site, index)
            self.ownership.chown_recursive(
                self.layout.site_path(tenant_id, site.domain),
                identity.uid,
                identity.gid,
            )

            check_cancelled(cancel, "site configs")
            vhost = self.renderer.render_vhost(tenant_id, site)
            self.nginx.install_site(tenant_id, site.domain, vhost)
            result.files.append(str(self.nginx.available_path(tenant_id, site.domain)))
            version = site.php_version
            if version is not None:
                pool = self.renderer.render_pool(tenant_id, site)
                self.phpfpm.write_pool(version, tenant_id, site.domain, pool)
                result.files.append(str(self.phpfpm.pool_path(version, tenant_id, site.domain)))
            self.phpfpm.remove_stale_pools(tenant_id, site.domain, version)

            if site.ssl:
                check_cancelled(cancel, "site tls")
                result.certificate = self._ensure_certificate(
                    tenant_id,
                    site.domain,
                    result.warnings,
                )

        helper = "domain_added" if result.created else "domain_updated"
        result.event_id = self._emit(
            result.warnings,
            helper,
            tenant_id,
            site.domain,
            site.runtime,
            actor,
        )
        return result

    def delete_site(
        self,
        tenant_id: int,
        domain: str,
        *,
        actor: str = SYSTEM_ACTOR,
        cancel: CancelToken | None = None,
    ) -> bool:
        """Remove a site's symlink, config files, TLS material and directory."""
        validate_domain(domain)
        check_cancelled(cancel, "delete site")
        with self.locks.write(tenant_id):
            configs = self.nginx.remove_site(tenant_id, domain)
            pools = self.phpfpm.remove_pools(tenant_id, domain)
            tls = self.certificates.remove_certificate(tenant_id, domain)
            directory = self.sites.delete_site(tenant_id, domain)
        removed = configs or bool(pools) or tls or directory
        if removed:
            self._emit([], "domain_removed", tenant_id, domain, actor)
        return removed

    def _ensure_domain_free(self, tenant_id: int, domain: str) -> None:
        for other in self.tenants.list_tenants():
            if other != tenant_id and self.sites.site_exists(other, domain):
                raise AlreadyExistsError(f"Domain {domain} belongs to tenant {other}")

    def _ensure_certificate(self, tenant_id: int, domain: str, warnings: list[str]) -> str | None:
        try:
            meta = self.certificates.ensure_self_signed(tenant_id, domain)
        except (TLSError, OwehostError) as exc:
            message = f"self-signed certificate for {domain}: {exc}"
            LOGGER.warning("%s", message)
            warnings.append(message)
            return None
        if meta is None:
            return "existing"
        return meta.type

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------
    def _emit(self, warnings: list[str], helper: str, *args: Any) -> str | None:
        """Record an event through the named emitter helper; failures become warnings."""
        if self.emitter is None:
            return None
        try:
            event = getattr(self.emitter, helper)(*args)
        except OwehostError as exc:
            message = f"event not recorded: {exc}"
            LOGGER.warning("%s", message)
            warnings.append(message)
            return None
        return event.id


__all__ = ["Applier", "ApplyResult", "DesiredState", "SiteResult"]
