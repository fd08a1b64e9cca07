"""Wire the stores, providers and pipelines for one resolved configuration."""
from __future__ import annotations

from dataclasses import dataclass

from .applier import Applier
from .config import AppConfig
from .events import Emitter, EventPruner, EventStore
from .locking import LockManager, TenantLocks
from .oscontrol import AccountManager, CommandRunner, OwnershipManager, ResourceLimiter
from .oscontrol.ownership import ChownFunc
from .paths import Layout
from .providers import NginxProvider, PhpFpmProvider
from .recovery import Generator, Rebuilder, Scanner
from .renderer import ConfigRenderer
from .state import (
    AuthStore,
    CertificateStore,
    CronStore,
    DatabaseStore,
    IndexRegistry,
    SiteStore,
    TenantStore,
)
from .templates import TemplateEngine


@dataclass(slots=True)
class Services:
    """Everything a command needs, built once per invocation."""

    config: AppConfig
    layout: Layout
    locks: TenantLocks
    file_locks: LockManager
    runner: CommandRunner
    tenants: TenantStore
    sites: SiteStore
    certificates: CertificateStore
    databases: DatabaseStore
    cron: CronStore
    auth: AuthStore
    registry: IndexRegistry
    events: EventStore
    emitter: Emitter
    pruner: EventPruner
    templates: TemplateEngine
    renderer: ConfigRenderer
    nginx: NginxProvider
    phpfpm: PhpFpmProvider
    accounts: AccountManager
    ownership: OwnershipManager
    limiter: ResourceLimiter
    applier: Applier
    scanner: Scanner
    rebuilder: Rebuilder
    generator: Generator


def build_services(
    config: AppConfig,
    *,
    runner: CommandRunner | None = None,
    chown: ChownFunc | None = None,
    manage_users: bool = True,
) -> Services:
    """Return a :class:`Services` bundle for *config*.

    *runner* and *chown* replace the subprocess runner and :func:`os.chown`,
    which lets tests drive the whole stack without root.
    """
    layout = Layout.from_config(config)
    locks = TenantLocks()
    runner = runner or CommandRunner(timeout=config.exec_timeout)

    tenants = TenantStore(layout, locks)
    sites = SiteStore(layout, locks)
    events = EventStore(
        config.events_dir,
        config.alerts_dir,
        query_window_days=config.events.query_window_days,
    )
    emitter = Emitter(events, config.node_id)
    certificates = CertificateStore(
        layout,
        locks,
        self_signed_days=config.ssl.self_signed_days,
        emitter=emitter,
    )
    databases = DatabaseStore(layout, locks, emitter=emitter)
    cron = CronStore(layout, locks)
    registry = IndexRegistry(config.registry_dir)
    pruner = EventPruner(
        events,
        retention_days=config.events.retention_days,
        interval_hours=config.events.prune_interval_hours,
    )

    templates = TemplateEngine.with_overrides(config.templates_dir)
    renderer = ConfigRenderer(templates, layout)
    nginx = NginxProvider(layout, runner, nginx_bin=config.nginx.bin)
    phpfpm = PhpFpmProvider(
        layout,
        runner,
        versions=config.phpfpm.versions,
        systemctl_bin=config.phpfpm.systemctl_bin,
    )
    accounts = AccountManager(runner)
    ownership = OwnershipManager(layout, chown=chown)
    limiter = ResourceLimiter(
        layout,
        runner,
        filesystem=config.quota.filesystem,
        setquota_bin=config.quota.setquota_bin,
    )

    applier = Applier(
        layout=layout,
        tenants=tenants,
        sites=sites,
        certificates=certificates,
        renderer=renderer,
        nginx=nginx,
        phpfpm=phpfpm,
        accounts=accounts,
        ownership=ownership,
        limiter=limiter,
        emitter=emitter,
        manage_users=manage_users,
    )
    scanner = Scanner(layout, tenants, sites, databases, cron)
    rebuilder = Rebuilder(scanner, writer=registry, emitter=emitter)
    generator = Generator(
        layout=layout,
        scanner=scanner,
        renderer=renderer,
        nginx=nginx,
        phpfpm=phpfpm,
        accounts=accounts,
        limiter=limiter,
        emitter=emitter,
    )
    return Services(
        config=config,
        layout=layout,
        locks=locks,
        file_locks=LockManager(config.runtime_dir, default_timeout=config.lock_timeout),
        runner=runner,
        tenants=tenants,
        sites=sites,
        certificates=certificates,
        databases=databases,
        cron=cron,
        auth=AuthStore(layout, locks, emitter=emitter),
        registry=registry,
        events=events,
        emitter=emitter,
        pruner=pruner,
        templates=templates,
        renderer=renderer,
        nginx=nginx,
        phpfpm=phpfpm,
        accounts=accounts,
        ownership=ownership,
        limiter=limiter,
        applier=applier,
        scanner=scanner,
        rebuilder=rebuilder,
        generator=generator,
    )


__all__ = ["Services", "build_services"]
