"""Regenerate host service configuration from the tenant trees.

Used for disaster recovery: users, cgroup files, nginx vhosts and PHP-FPM
pools are rebuilt from what the scanner finds, then the services are
reloaded. A failing ``nginx -t`` is fatal and suppresses the reload.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..errors import OSExecError, OwehostError
from ..events.emitter import Emitter, record_safely
from ..locking import CancelToken, check_cancelled
from ..oscontrol.accounts import AccountManager
from ..oscontrol.limits import ResourceLimiter
from ..paths import Layout, config_name, config_tenant_id
from ..providers.nginx import NginxProvider
from ..providers.phpfpm import PhpFpmProvider
from ..renderer import ConfigRenderer
from .scanner import Scanner, ScanResult, TenantSnapshot

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class GenerateOptions:
    """Knobs for :meth:`Generator.generate_all`."""

    dry_run: bool = False
    tenant_id: int | None = None
    skip_nginx: bool = False
    skip_phpfpm: bool = False
    skip_users: bool = False
    skip_cgroups: bool = False


@dataclass(slots=True)
class GenerateResult:
    """What a generator run wrote, or would write in dry-run mode."""

    dry_run: bool = False
    tenants_processed: int = 0
    users_ensured: int = 0
    cgroups_written: int = 0
    nginx_configs: list[str] = field(default_factory=list)
    phpfpm_pools: list[str] = field(default_factory=list)
    reloaded: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "dry_run": self.dry_run,
            "accounts_processed": self.tenants_processed,
            "users_ensured": self.users_ensured,
            "cgroups_written": self.cgroups_written,
            "nginx_configs": list(self.nginx_configs),
            "phpfpm_pools": list(self.phpfpm_pools),
            "reloaded": list(self.reloaded),
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }


class Generator:
    """Rewrite service configs for every scanned tenant and reload the services."""

    def __init__(
        self,
        *,
        layout: Layout,
        scanner: Scanner,
        renderer: ConfigRenderer,
        nginx: NginxProvider,
        phpfpm: PhpFpmProvider,
        accounts: AccountManager,
        limiter: ResourceLimiter,
        emitter: Emitter | None = None,
    ) -> None:
        """Bind the generator to the providers it drives."""
        self.layout = layout
        self.scanner = scanner
        self.renderer = renderer
        self.nginx = nginx
        self.phpfpm = phpfpm
        self.accounts = accounts
        self.limiter = limiter
        self.emitter = emitter

    def _scan(self, tenant_id: int | None, cancel: CancelToken | None) -> ScanResult:
        if tenant_id is None:
            return self.scanner.scan_all(cancel=cancel)
        return ScanResult(tenants=[self.scanner.scan_tenant(tenant_id, cancel=cancel)])

    def generate_all(
        self,
        options: GenerateOptions | None = None,
        *,
        cancel: CancelToken | None = None,
    ) -> GenerateResult:
        """Regenerate everything for the scanned tenants and reload services.

        Per-tenant failures are collected in ``errors``. Raises
        :class:`OSExecError` when ``nginx -t`` rejects the result.
        """
        options = options or GenerateOptions()
        result = GenerateResult(dry_run=options.dry_run)
        scan = self._scan(options.tenant_id, cancel)
        result.errors.extend(scan.errors)
        for snapshot in scan.tenants:
            check_cancelled(cancel, "generate")
            with self.scanner.tenants.locks.write(snapshot.tenant_id):
                self._generate_tenant(snapshot, options, result)
            result.tenants_processed += 1

        if options.dry_run:
            return result
        check_cancelled(cancel, "reload")
        if not options.skip_nginx:
            self.nginx.reload()
            result.reloaded.append("nginx")
        if not options.skip_phpfpm:
            outcome = self.phpfpm.reload_active()
            result.reloaded.extend(outcome.reloaded)
            result.warnings.extend(outcome.warnings)
        for service in result.reloaded:
            record_safely(self.emitter, "service_restarted", service)
        LOGGER.info(
            "Generated %s nginx configs and %s pools for %s tenants",
            len(result.nginx_configs),
            len(result.phpfpm_pools),
            result.tenants_processed,
        )
        return result

    def _generate_tenant(
        self,
        snapshot: TenantSnapshot,
        options: GenerateOptions,
        result: GenerateResult,
    ) -> None:
        tenant_id = snapshot.tenant_id
        identity = snapshot.identity
        if identity is None:
            result.errors.append(f"account {tenant_id}: missing account.json")
            return

        if not options.skip_users:
            if options.dry_run:
                result.users_ensured += 1
            else:
                try:
                    self.accounts.ensure_user(identity, self.layout.home_path(tenant_id))
                    result.users_ensured += 1
                except OSExecError as exc:
                    result.errors.append(f"account {tenant_id}: user {identity.name}: {exc}")

        if not options.skip_cgroups and snapshot.limits is not None:
            if options.dry_run:
                result.cgroups_written += 1
            else:
                warnings = self.limiter.apply_cgroup(tenant_id, snapshot.limits)
                result.warnings.extend(warnings)
                if not warnings:
                    result.cgroups_written += 1

        for site in snapshot.sites:
            try:
                if not options.skip_nginx:
                    content = self.renderer.render_vhost(tenant_id, site)
                    if not options.dry_run:
                        self.nginx.install_site(tenant_id, site.domain, content)
                    result.nginx_configs.append(config_name(tenant_id, site.domain))
                version = site.php_version
                if not options.skip_phpfpm and version is not None:
                    content = self.renderer.render_pool(tenant_id, site)
                    if not options.dry_run:
                        self.phpfpm.write_pool(version, tenant_id, site.domain, content)
                    result.phpfpm_pools.append(
                        str(self.phpfpm.pool_path(version, tenant_id, site.domain))
                    )
            except OwehostError as exc:
                result.errors.append(f"account {tenant_id}: site {site.domain}: {exc}")

    # ------------------------------------------------------------------
    # Stale configs
    # ------------------------------------------------------------------
    def expected_configs(self, scan: ScanResult | None = None) -> set[str]:
        """Return the vhost basenames the current filesystem calls for.

        Every directory under ``web/`` counts, whether or not its
        ``site.json`` parses.
        """
        scan = scan or self.scanner.scan_all()
        sites = self.scanner.sites
        return {
            config_name(snapshot.tenant_id, domain)
            for snapshot in scan.tenants
            for domain in sites.site_directories(snapshot.tenant_id)
        }

    def protected_tenants(self, scan: ScanResult) -> set[int]:
        """Return tenants whose configs cleanup must not touch.

        A tenant is protected when its scan collected errors or when its
        directory exists but could not be scanned at all.
        """
        scanned = {snapshot.tenant_id for snapshot in scan.tenants}
        protected = {snapshot.tenant_id for snapshot in scan.tenants if snapshot.has_errors}
        protected.update(
            tenant_id
            for tenant_id in self.scanner.tenants.list_tenants()
            if tenant_id not in scanned
        )
        return protected

    def cleanup_stale_configs(self, *, dry_run: bool = False) -> list[str]:
        """Remove vhosts whose site no longer exists; return their basenames.

        Both the ``sites-available`` file and its ``sites-enabled`` link are
        removed. Configs of tenants whose scan reported errors are left in
        place. With *dry_run* nothing is deleted.
        """
        scan = self.scanner.scan_all()
        expected = self.expected_configs(scan)
        protected = self.protected_tenants(scan)
        stale: list[str] = []
        for name in self.nginx.managed_configs():
            if name in expected:
                continue
            if config_tenant_id(name) in protected:
                LOGGER.warning("Keeping %s: the scan of its tenant reported errors", name)
                continue
            stale.append(name)
        if dry_run:
            return stale
        for name in stale:
            self.nginx.remove_config(name)
            LOGGER.info("Removed stale nginx config %s", name)
        return stale

    def generate_main_nginx_include(self, *, dry_run: bool = False) -> bool:
        """Write the nginx include that loads every tenant vhost; return True when changed."""
        content = self.renderer.render_include()
        if dry_run:
            return False
        return self.nginx.write_main_include(content)


__all__ = ["GenerateOptions", "GenerateResult", "Generator"]
