"""Typer command line for the OweHost control-plane core.

The recovery commands (``scan``, ``rebuild``, ``generate``, ``verify`` and
``cleanup``) read the tenant trees back and repair what is derived from
them. The ``tenant``, ``site``, ``events`` and ``alerts`` groups drive the
applier and the audit log directly.
"""
from __future__ import annotations

import logging
import textwrap
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, NoReturn

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from .applier import DesiredState
from .config import AppConfig, ConfigError, load_config
from .errors import OSExecError, OwehostError, ValidationError
from .events import SYSTEM_ACTOR, EventFilter
from .exit_codes import ExitCode
from .locking import LockTimeoutError
from .logging import OperationScope, StructuredLogger
from .models import Site, utc_now
from .recovery import GenerateOptions, RebuildOptions, ScanResult, TenantSnapshot
from .services import Services, build_services
from .state import RegistryError
from .templates import TemplateError

console = Console()

FATAL_ERRORS = (OwehostError, LockTimeoutError, RegistryError, TemplateError)

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to owehost's YAML config file.",
)

JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit the result as JSON instead of a summary.",
)

DRY_RUN_OPTION = typer.Option(
    False,
    "--dry-run",
    help="Report what would change without touching the host.",
)

TENANT_OPTION = typer.Option(
    None,
    "--tenant",
    min=1,
    help="Limit the command to a single tenant id.",
)

ACTOR_OPTION = typer.Option(
    SYSTEM_ACTOR,
    "--actor",
    help="Who is performing the action; recorded in the audit log.",
)

FILE_OPTION = typer.Option(
    ...,
    "--file",
    "-f",
    exists=True,
    dir_okay=False,
    readable=True,
    help="YAML or JSON document to apply.",
)

TENANT_ARGUMENT = typer.Argument(..., min=1, help="Tenant id (directory a-<id>).")

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        OweHost control-plane core.

        The filesystem under the accounts root is the source of truth. These
        commands reconcile tenants against it, rebuild the derived index and
        regenerate nginx and PHP-FPM configuration from it.
        """
    ).strip(),
)
tenant_app = typer.Typer(help="Reconcile and transition tenants.")
site_app = typer.Typer(help="Manage the sites of a tenant.")
events_app = typer.Typer(help="Query and prune the audit event log.")
alerts_app = typer.Typer(help="Inspect and resolve security alerts.")

app.add_typer(tenant_app, name="tenant")
app.add_typer(site_app, name="site")
app.add_typer(events_app, name="events")
app.add_typer(alerts_app, name="alerts")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    services: Services
    logger: StructuredLogger


def _configure_verbose_logging() -> None:
    logger = logging.getLogger("owehost")
    if any(isinstance(handler, RichHandler) for handler in logger.handlers):
        return
    handler = RichHandler(console=Console(stderr=True), show_path=False)
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)


def _ensure_runtime(
    ctx: typer.Context,
    config_file: Path | None,
    verbose: bool = False,
) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    if verbose:
        _configure_verbose_logging()
    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=ExitCode.FAILURE) from exc
    runtime = RuntimeContext(
        config=config,
        services=build_services(config),
        logger=StructuredLogger(config.logs_dir),
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the owehost version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log debug output to stderr.",
    ),
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"owehost-cli {__version__}")
        raise typer.Exit(code=ExitCode.OK)

    _ensure_runtime(ctx, config_file, verbose)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=ExitCode.OK)


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------
def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.FAILURE,
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{message}[/red]")
    op.error(message, errors=list(errors or [message]), rc=rc)
    raise typer.Exit(code=rc)


def _load_document(path: Path) -> Mapping[str, Any]:
    """Return the mapping stored in a YAML or JSON file."""
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ValidationError("file", f"cannot read {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ValidationError("file", f"{path} must contain a mapping")
    return data


def _print_warnings(warnings: Sequence[str]) -> None:
    for warning in warnings:
        console.print(f"[yellow]warning[/yellow]: {warning}")


def _finish(op: OperationScope, message: str, *, changed: int, warnings: Sequence[str]) -> None:
    if warnings:
        op.warning(message, warnings=list(warnings), changed=changed)
    else:
        op.success(message, changed=changed)


# ----------------------------------------------------------------------
# Recovery commands
# ----------------------------------------------------------------------
def _scan(runtime: RuntimeContext, tenant_id: int | None) -> ScanResult:
    scanner = runtime.services.scanner
    if tenant_id is None:
        return scanner.scan_all()
    return ScanResult(tenants=[scanner.scan_tenant(tenant_id)])


def _render_scan(result: ScanResult, *, verbose: bool) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Tenant", style="bold")
    table.add_column("Name")
    table.add_column("State")
    table.add_column("Sites", justify="right")
    table.add_column("TLS", justify="right")
    table.add_column("Databases", justify="right")
    table.add_column("Cron", justify="right")
    table.add_column("Errors", justify="right")
    if not result.tenants:
        table.add_row("(none)", "", "", "", "", "", "", "")
    for snapshot in result.tenants:
        identity = snapshot.identity
        table.add_row(
            str(snapshot.tenant_id),
            identity.name if identity else "-",
            identity.state if identity else "-",
            str(len(snapshot.sites)),
            str(len(snapshot.tls)),
            str(len(snapshot.databases)),
            str(len(snapshot.cron)),
            str(len(snapshot.errors)),
        )
    console.print(table)
    console.print(
        f"{len(result.tenants)} tenants, {result.total_sites} sites, "
        f"{result.total_tls} TLS directories, {result.total_databases} databases"
    )
    if verbose:
        for snapshot in result.tenants:
            for domain in snapshot.domains:
                console.print(f"  a-{snapshot.tenant_id}: site {domain}")
            for error in snapshot.errors:
                console.print(f"  [yellow]a-{snapshot.tenant_id}[/yellow]: {error}")
    for error in result.errors:
        console.print(f"[yellow]warning[/yellow]: {error}")


@app.command()
def scan(
    ctx: typer.Context,
    tenant: int | None = TENANT_OPTION,
    json_output: bool = JSON_OPTION,
    verbose: bool = typer.Option(
        False,
        "--verbose",
        help="List the sites and scan errors of every tenant.",
    ),
) -> None:
    """Scan the accounts root without changing anything."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "scan",
        args={"tenant": tenant, "json": json_output, "verbose": verbose},
        target={"kind": "accounts", "tenant": tenant},
    ) as op:
        try:
            result = _scan(runtime, tenant)
        except FATAL_ERRORS as exc:
            _command_error(op, f"Scan failed: {exc}")
        if json_output:
            console.print_json(data=result.to_dict())
        else:
            _render_scan(result, verbose=verbose)
        op.success(
            f"Scanned {len(result.tenants)} tenants.",
            context={"tenants": len(result.tenants), "sites": result.total_sites},
        )


@app.command()
def rebuild(
    ctx: typer.Context,
    tenant: int | None = TENANT_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
    skip_validation: bool = typer.Option(
        False,
        "--skip-validation",
        help="Do not run the integrity checks over each tenant.",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        help="Index tenants even when their identity fails validation.",
    ),
    json_output: bool = JSON_OPTION,
) -> None:
    """Rebuild the registry index from the filesystem."""
    runtime = _get_runtime(ctx)
    options = RebuildOptions(
        dry_run=dry_run,
        tenant_id=tenant,
        skip_validation=skip_validation,
        force_overwrite=force,
    )
    with runtime.logger.operation(
        "rebuild",
        args={"tenant": tenant, "dry_run": dry_run, "skip_validation": skip_validation},
        target={"kind": "index", "path": str(runtime.services.registry.path)},
    ) as op:
        try:
            with runtime.services.file_locks.global_lock() as handle:
                op.set_lock_wait_ms(handle.wait_ms)
                report = runtime.services.rebuilder.rebuild(options)
        except FATAL_ERRORS as exc:
            _command_error(op, f"Rebuild failed: {exc}")
        errors = [f"{error.tenant_id} {error.resource}: {error.error}" for error in report.errors]
        if json_output:
            console.print_json(data=report.to_dict())
        else:
            prefix = "[yellow]Dry run[/yellow]: " if dry_run else ""
            console.print(
                f"{prefix}scanned {report.tenants_scanned} tenants, "
                f"updated {report.tenants_updated}, {report.sites_found} sites, "
                f"{report.tls_found} TLS, {report.databases_found} databases "
                f"in {report.duration_ms} ms"
            )
            for error in errors:
                console.print(f"[red]error[/red]: {error}")
            _print_warnings(report.warnings)
        message = f"Rebuilt {report.tenants_updated} of {report.tenants_scanned} tenants."
        if errors or report.warnings:
            op.warning(
                message,
                warnings=report.warnings,
                errors=errors,
                changed=0 if dry_run else report.tenants_updated,
            )
        else:
            op.success(message, changed=0 if dry_run else report.tenants_updated)


@app.command()
def generate(
    ctx: typer.Context,
    tenant: int | None = TENANT_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
    skip_nginx: bool = typer.Option(False, "--skip-nginx", help="Leave nginx alone."),
    skip_phpfpm: bool = typer.Option(False, "--skip-phpfpm", help="Leave PHP-FPM alone."),
    skip_users: bool = typer.Option(False, "--skip-users", help="Do not create POSIX users."),
    skip_cgroups: bool = typer.Option(False, "--skip-cgroups", help="Do not write cgroups."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Regenerate users, cgroups, nginx vhosts and PHP-FPM pools from the filesystem."""
    runtime = _get_runtime(ctx)
    options = GenerateOptions(
        dry_run=dry_run,
        tenant_id=tenant,
        skip_nginx=skip_nginx,
        skip_phpfpm=skip_phpfpm,
        skip_users=skip_users,
        skip_cgroups=skip_cgroups,
    )
    args = {
        "tenant": tenant,
        "dry_run": dry_run,
        "skip_nginx": skip_nginx,
        "skip_phpfpm": skip_phpfpm,
        "skip_users": skip_users,
        "skip_cgroups": skip_cgroups,
    }
    generator = runtime.services.generator
    with runtime.logger.operation("generate", args=args, target={"kind": "services"}) as op:
        try:
            with runtime.services.file_locks.global_lock() as handle:
                op.set_lock_wait_ms(handle.wait_ms)
                if not skip_nginx:
                    generator.generate_main_nginx_include(dry_run=dry_run)
                    op.add_step("nginx include")
                result = generator.generate_all(options)
        except OSExecError as exc:
            _command_error(op, f"Service configuration rejected: {exc}")
        except FATAL_ERRORS as exc:
            _command_error(op, f"Generate failed: {exc}")
        op.add_step("configs", detail=f"{len(result.nginx_configs)} nginx")
        if result.reloaded:
            op.add_step("reload", detail=", ".join(result.reloaded))
        if json_output:
            console.print_json(data=result.to_dict())
        else:
            prefix = "[yellow]Dry run[/yellow]: " if dry_run else ""
            console.print(
                f"{prefix}{result.tenants_processed} tenants, "
                f"{len(result.nginx_configs)} nginx configs, "
                f"{len(result.phpfpm_pools)} PHP-FPM pools"
            )
            if result.reloaded:
                console.print(f"Reloaded: {', '.join(result.reloaded)}")
            for error in result.errors:
                console.print(f"[red]error[/red]: {error}")
            _print_warnings(result.warnings)
        message = f"Generated configuration for {result.tenants_processed} tenants."
        changed = 0 if dry_run else len(result.nginx_configs) + len(result.phpfpm_pools)
        if result.errors or result.warnings:
            op.warning(message, warnings=result.warnings, errors=result.errors, changed=changed)
        else:
            op.success(message, changed=changed)


def _integrity_issues(runtime: RuntimeContext, result: ScanResult) -> list[str]:
    issues = list(result.errors)
    for snapshot in result.tenants:
        issues.extend(f"a-{snapshot.tenant_id}: {error}" for error in snapshot.errors)
        issues.extend(
            f"a-{snapshot.tenant_id}: {issue}"
            for issue in runtime.services.scanner.validate_integrity(snapshot)
        )
    return issues


@app.command()
def verify(
    ctx: typer.Context,
    index: bool = typer.Option(
        False,
        "--index",
        help="Also compare the registry index against the filesystem.",
    ),
    json_output: bool = JSON_OPTION,
) -> None:
    """Check every tenant for missing or invalid descriptors; exit 1 on any issue."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "verify",
        args={"index": index, "json": json_output},
        target={"kind": "accounts"},
    ) as op:
        try:
            result = runtime.services.scanner.scan_all()
            issues = _integrity_issues(runtime, result)
            consistency = None
            if index:
                consistency = runtime.services.rebuilder.verify_consistency(
                    runtime.services.registry
                )
        except FATAL_ERRORS as exc:
            _command_error(op, f"Verify failed: {exc}")

        index_issues: list[str] = []
        if consistency is not None:
            index_issues.extend(
                f"a-{item.tenant_id}: {item.type} differs "
                f"(filesystem {item.fs_value!r}, index {item.index_value!r})"
                for item in consistency.mismatches
            )
            index_issues.extend(
                f"a-{item.tenant_id}: {item.type} {item.name} missing from index"
                for item in consistency.missing_in_index
            )
            index_issues.extend(
                f"a-{item.tenant_id}: {item.type} {item.name} missing on filesystem"
                for item in consistency.missing_on_filesystem
            )
        all_issues = issues + index_issues

        if json_output:
            payload: dict[str, object] = {
                "tenants": len(result.tenants),
                "issues": all_issues,
                "ok": not all_issues,
            }
            if consistency is not None:
                payload["consistency"] = consistency.to_dict()
            console.print_json(data=payload)
        elif all_issues:
            for issue in all_issues:
                console.print(f"[red]issue[/red]: {issue}")
        else:
            console.print(f"[green]{len(result.tenants)} tenants verified, no issues.[/green]")

        if all_issues:
            message = f"Found {len(all_issues)} issues."
            op.error(message, errors=all_issues, rc=ExitCode.FAILURE)
            raise typer.Exit(code=ExitCode.FAILURE)
        op.success("No issues found.", context={"tenants": len(result.tenants)})


@app.command()
def cleanup(
    ctx: typer.Context,
    dry_run: bool = DRY_RUN_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Remove nginx configs whose site no longer exists."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "cleanup",
        args={"dry_run": dry_run, "json": json_output},
        target={"kind": "nginx", "path": str(runtime.services.layout.sites_available)},
    ) as op:
        try:
            with runtime.services.file_locks.global_lock() as handle:
                op.set_lock_wait_ms(handle.wait_ms)
                removed = runtime.services.generator.cleanup_stale_configs(dry_run=dry_run)
        except FATAL_ERRORS as exc:
            _command_error(op, f"Cleanup failed: {exc}")
        if json_output:
            console.print_json(data={"dry_run": dry_run, "removed": removed})
        elif not removed:
            console.print("No stale configs found.")
        else:
            verb = "Would remove" if dry_run else "Removed"
            for name in removed:
                console.print(f"{verb} {name}")
        op.success(
            f"{len(removed)} stale configs.",
            changed=0 if dry_run else len(removed),
            context={"removed": removed},
        )


@app.command("help")
def help_command(ctx: typer.Context) -> None:
    """Show this help message."""
    parent = ctx.parent or ctx
    console.print(parent.get_help())


# ----------------------------------------------------------------------
# Tenants
# ----------------------------------------------------------------------
@tenant_app.command("apply")
def tenant_apply(
    ctx: typer.Context,
    tenant_id: int = TENANT_ARGUMENT,
    file: Path = FILE_OPTION,
    actor: str = ACTOR_OPTION,
    skip_users: bool = typer.Option(
        False,
        "--skip-users",
        help="Do not create the POSIX user and group.",
    ),
    json_output: bool = JSON_OPTION,
) -> None:
    """Reconcile a tenant to the desired state in FILE."""
    runtime = _get_runtime(ctx)
    applier = runtime.services.applier
    applier.manage_users = not skip_users
    with runtime.logger.operation(
        "tenant apply",
        args={"file": str(file), "actor": actor, "skip_users": skip_users},
        target={"kind": "tenant", "id": tenant_id},
    ) as op:
        try:
            desired = DesiredState.from_dict(_load_document(file))
            with runtime.services.file_locks.mutate_tenants([tenant_id]) as bundle:
                op.set_lock_wait_ms(bundle.wait_ms)
                result = applier.apply(tenant_id, desired, actor=actor)
        except FATAL_ERRORS as exc:
            _command_error(op, f"Apply failed: {exc}")
        for step in result.steps:
            op.add_step(step)
        if json_output:
            console.print_json(data=result.to_dict())
        else:
            verb = "Created" if result.created else "Reconciled"
            console.print(f"{verb} tenant {tenant_id} ({result.state}).")
            _print_warnings(result.warnings)
        _finish(
            op,
            f"Applied tenant {tenant_id}.",
            changed=len(result.steps),
            warnings=result.warnings,
        )


@tenant_app.command("show")
def tenant_show(
    ctx: typer.Context,
    tenant_id: int = TENANT_ARGUMENT,
    json_output: bool = JSON_OPTION,
) -> None:
    """Show the descriptors of a tenant."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "tenant show",
        args={"json": json_output},
        target={"kind": "tenant", "id": tenant_id},
    ) as op:
        try:
            record = runtime.services.tenants.read_tenant(tenant_id)
            domains = runtime.services.sites.list_domains(tenant_id)
        except FATAL_ERRORS as exc:
            _command_error(op, str(exc))
        payload = record.to_dict()
        payload["domains"] = domains
        if json_output:
            console.print_json(data=payload)
        else:
            identity = record.identity
            table = Table(show_header=True, header_style="bold magenta")
            table.add_column("Field", style="bold")
            table.add_column("Value")
            table.add_row("id", str(identity.id))
            table.add_row("name", identity.name)
            table.add_row("state", identity.state)
            table.add_row("plan", identity.plan)
            table.add_row("owner", identity.owner)
            table.add_row("uid/gid", f"{identity.uid}/{identity.gid}")
            table.add_row("suspended", str(record.status.suspended).lower())
            table.add_row("domains", ", ".join(domains) or "(none)")
            console.print(table)
        op.success(f"Reported tenant {tenant_id}.")


def _transition_command(
    ctx: typer.Context,
    command: str,
    tenant_id: int,
    actor: str,
    reason: str | None,
    json_output: bool,
) -> None:
    runtime = _get_runtime(ctx)
    applier = runtime.services.applier
    with runtime.logger.operation(
        f"tenant {command}",
        args={"actor": actor, "reason": reason},
        target={"kind": "tenant", "id": tenant_id},
    ) as op:
        try:
            with runtime.services.file_locks.mutate_tenants([tenant_id]) as bundle:
                op.set_lock_wait_ms(bundle.wait_ms)
                if command == "suspend":
                    identity = applier.suspend(tenant_id, reason or "", actor)
                elif command == "terminate":
                    identity = applier.terminate(tenant_id, reason or "", actor)
                else:
                    identity = applier.unsuspend(tenant_id, actor)
        except FATAL_ERRORS as exc:
            _command_error(op, f"{command.capitalize()} failed: {exc}")
        if json_output:
            console.print_json(data=identity.to_dict())
        else:
            console.print(f"Tenant {tenant_id} is now {identity.state}.")
        op.success(f"Tenant {tenant_id} {identity.state}.", changed=1)


@tenant_app.command("suspend")
def tenant_suspend(
    ctx: typer.Context,
    tenant_id: int = TENANT_ARGUMENT,
    reason: str = typer.Option(..., "--reason", help="Why the tenant is suspended."),
    actor: str = ACTOR_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Suspend a tenant."""
    _transition_command(ctx, "suspend", tenant_id, actor, reason, json_output)


@tenant_app.command("unsuspend")
def tenant_unsuspend(
    ctx: typer.Context,
    tenant_id: int = TENANT_ARGUMENT,
    actor: str = ACTOR_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Lift the suspension of a tenant."""
    _transition_command(ctx, "unsuspend", tenant_id, actor, None, json_output)


@tenant_app.command("terminate")
def tenant_terminate(
    ctx: typer.Context,
    tenant_id: int = TENANT_ARGUMENT,
    reason: str = typer.Option(..., "--reason", help="Why the tenant is terminated."),
    actor: str = ACTOR_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Terminate a tenant; its data stays until it is deleted."""
    _transition_command(ctx, "terminate", tenant_id, actor, reason, json_output)


@tenant_app.command("delete")
def tenant_delete(
    ctx: typer.Context,
    tenant_id: int = TENANT_ARGUMENT,
    actor: str = ACTOR_OPTION,
    skip_users: bool = typer.Option(
        False,
        "--skip-users",
        help="Leave the POSIX user and group in place.",
    ),
) -> None:
    """Delete a tenant, its generated configs and its directory."""
    runtime = _get_runtime(ctx)
    applier = runtime.services.applier
    applier.manage_users = not skip_users
    with runtime.logger.operation(
        "tenant delete",
        args={"actor": actor, "skip_users": skip_users},
        target={"kind": "tenant", "id": tenant_id},
    ) as op:
        try:
            with runtime.services.file_locks.mutate_tenants([tenant_id]) as bundle:
                op.set_lock_wait_ms(bundle.wait_ms)
                removed = applier.delete(tenant_id, actor)
                runtime.services.registry.remove_tenant(tenant_id)
        except FATAL_ERRORS as exc:
            _command_error(op, f"Delete failed: {exc}")
        if removed:
            console.print(f"Deleted tenant {tenant_id}.")
            op.success(f"Deleted tenant {tenant_id}.", changed=1)
        else:
            console.print(f"Tenant {tenant_id} does not exist; nothing to do.")
            op.success(f"Tenant {tenant_id} already absent.")


@tenant_app.command("next-id")
def tenant_next_id(ctx: typer.Context) -> None:
    """Print the next free tenant id."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation("tenant next-id", target={"kind": "tenant"}) as op:
        try:
            next_id = runtime.services.tenants.next_tenant_id()
        except FATAL_ERRORS as exc:
            _command_error(op, str(exc))
        console.print(str(next_id))
        op.success(f"Next tenant id is {next_id}.")


# ----------------------------------------------------------------------
# Sites
# ----------------------------------------------------------------------
@site_app.command("apply")
def site_apply(
    ctx: typer.Context,
    tenant_id: int = TENANT_ARGUMENT,
    file: Path = FILE_OPTION,
    actor: str = ACTOR_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Create or update the site described in FILE."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "site apply",
        args={"file": str(file), "actor": actor},
        target={"kind": "tenant", "id": tenant_id},
    ) as op:
        try:
            site = Site.from_dict(_load_document(file))
            with runtime.services.file_locks.mutate_tenants([tenant_id]) as bundle:
                op.set_lock_wait_ms(bundle.wait_ms)
                result = runtime.services.applier.apply_site(tenant_id, site, actor=actor)
        except FATAL_ERRORS as exc:
            _command_error(op, f"Site apply failed: {exc}")
        if json_output:
            console.print_json(data=result.to_dict())
        else:
            verb = "Created" if result.created else "Updated"
            console.print(f"{verb} site {result.domain} for tenant {tenant_id}.")
            for path in result.files:
                console.print(f"  wrote {path}")
            _print_warnings(result.warnings)
        _finish(
            op,
            f"Applied site {result.domain}.",
            changed=len(result.files),
            warnings=result.warnings,
        )


@site_app.command("delete")
def site_delete(
    ctx: typer.Context,
    tenant_id: int = TENANT_ARGUMENT,
    domain: str = typer.Argument(..., help="Domain of the site to remove."),
    actor: str = ACTOR_OPTION,
) -> None:
    """Remove a site, its configs and its TLS material."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "site delete",
        args={"actor": actor},
        target={"kind": "site", "id": tenant_id, "domain": domain},
    ) as op:
        try:
            with runtime.services.file_locks.mutate_tenants([tenant_id]) as bundle:
                op.set_lock_wait_ms(bundle.wait_ms)
                removed = runtime.services.applier.delete_site(tenant_id, domain, actor=actor)
        except FATAL_ERRORS as exc:
            _command_error(op, f"Site delete failed: {exc}")
        if removed:
            console.print(f"Deleted site {domain}.")
            op.success(f"Deleted site {domain}.", changed=1)
        else:
            console.print(f"Site {domain} does not exist; nothing to do.")
            op.success(f"Site {domain} already absent.")


@site_app.command("list")
def site_list(
    ctx: typer.Context,
    tenant_id: int = TENANT_ARGUMENT,
    json_output: bool = JSON_OPTION,
) -> None:
    """List the sites of a tenant."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "site list",
        args={"json": json_output},
        target={"kind": "tenant", "id": tenant_id},
    ) as op:
        try:
            sites = runtime.services.sites.list_sites(tenant_id)
        except FATAL_ERRORS as exc:
            _command_error(op, str(exc))
        if json_output:
            console.print_json(data={"sites": [site.to_dict() for site in sites]})
            op.success("Reported sites as JSON.")
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Domain", style="bold")
        table.add_column("Runtime")
        table.add_column("SSL")
        table.add_column("Document root")
        if not sites:
            table.add_row("(none)", "", "", "")
        for site in sites:
            table.add_row(
                site.domain,
                site.runtime,
                "yes" if site.ssl else "no",
                site.effective_document_root,
            )
        console.print(table)
        op.success(f"Reported {len(sites)} sites.")


# ----------------------------------------------------------------------
# Events and alerts
# ----------------------------------------------------------------------
@events_app.command("list")
def events_list(
    ctx: typer.Context,
    tenant: int | None = TENANT_OPTION,
    event_type: str | None = typer.Option(None, "--type", help="Only this event type."),
    actor: str | None = typer.Option(None, "--actor", help="Only events by this actor."),
    result: str | None = typer.Option(None, "--result", help="success, failed or pending."),
    days: int | None = typer.Option(None, "--days", min=1, help="Look back this many days."),
    limit: int = typer.Option(50, "--limit", min=0, help="Maximum events; 0 for all."),
    offset: int = typer.Option(0, "--offset", min=0, help="Skip this many events."),
    json_output: bool = JSON_OPTION,
) -> None:
    """List audit events, newest first."""
    runtime = _get_runtime(ctx)
    criteria = EventFilter(
        tenant_id=tenant,
        type=event_type,
        actor=actor,
        result=result,
        start=utc_now() - timedelta(days=days) if days else None,
        limit=limit,
        offset=offset,
    )
    with runtime.logger.operation(
        "events list",
        args={"tenant": tenant, "type": event_type, "days": days, "limit": limit},
        target={"kind": "events"},
    ) as op:
        try:
            events = runtime.services.events.query(criteria)
        except FATAL_ERRORS as exc:
            _command_error(op, str(exc))
        if json_output:
            console.print_json(data={"events": [event.to_dict() for event in events]})
            op.success("Reported events as JSON.")
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Time", style="bold")
        table.add_column("Type")
        table.add_column("Tenant")
        table.add_column("Actor")
        table.add_column("Result")
        if not events:
            table.add_row("(none)", "", "", "", "")
        for event in events:
            table.add_row(
                event.timestamp,
                event.type,
                str(event.tenant_id) if event.tenant_id is not None else "-",
                event.actor,
                event.result,
            )
        console.print(table)
        op.success(f"Reported {len(events)} events.")


@events_app.command("stats")
def events_stats(
    ctx: typer.Context,
    days: int = typer.Option(7, "--days", min=1, help="Window in days."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Summarise the events of the last DAYS days."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "events stats",
        args={"days": days},
        target={"kind": "events"},
    ) as op:
        try:
            stats = runtime.services.events.stats(days)
        except FATAL_ERRORS as exc:
            _command_error(op, str(exc))
        if json_output:
            console.print_json(data=stats.to_dict())
        else:
            table = Table(show_header=True, header_style="bold magenta")
            table.add_column("Type", style="bold")
            table.add_column("Count", justify="right")
            for name, count in sorted(stats.by_type.items()):
                table.add_row(name, str(count))
            console.print(table)
            console.print(f"{stats.total} events; last at {stats.last_event_at or 'never'}")
        op.success(f"Reported {stats.total} events.")


@events_app.command("prune")
def events_prune(
    ctx: typer.Context,
    keep_days: int | None = typer.Option(
        None,
        "--keep-days",
        min=1,
        help="Keep this many days of events (default: events.retention_days).",
    ),
) -> None:
    """Delete day directories older than the retention window."""
    runtime = _get_runtime(ctx)
    keep = keep_days or runtime.config.events.retention_days
    with runtime.logger.operation(
        "events prune",
        args={"keep_days": keep},
        target={"kind": "events", "path": str(runtime.config.events_dir)},
    ) as op:
        try:
            removed = runtime.services.events.prune(keep)
        except FATAL_ERRORS as exc:
            _command_error(op, f"Prune failed: {exc}")
        console.print(f"Removed {removed} events older than {keep} days.")
        op.success(f"Pruned {removed} events.", changed=removed)


@alerts_app.command("list")
def alerts_list(
    ctx: typer.Context,
    show_all: bool = typer.Option(False, "--all", help="Include resolved alerts."),
    json_output: bool = JSON_OPTION,
) -> None:
    """List security alerts, newest first."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "alerts list",
        args={"all": show_all},
        target={"kind": "alerts"},
    ) as op:
        alerts = runtime.services.events.list_alerts(unresolved_only=not show_all)
        if json_output:
            console.print_json(data={"alerts": [alert.to_dict() for alert in alerts]})
            op.success("Reported alerts as JSON.")
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Id", style="bold")
        table.add_column("Severity")
        table.add_column("Type")
        table.add_column("Description")
        table.add_column("Resolved")
        if not alerts:
            table.add_row("(none)", "", "", "", "")
        for alert in alerts:
            table.add_row(
                alert.id,
                alert.severity,
                alert.type,
                alert.description,
                "yes" if alert.resolved else "no",
            )
        console.print(table)
        op.success(f"Reported {len(alerts)} alerts.")


@alerts_app.command("resolve")
def alerts_resolve(
    ctx: typer.Context,
    alert_id: str = typer.Argument(..., help="Alert id (alert_<hex>)."),
    actor: str = ACTOR_OPTION,
) -> None:
    """Mark an alert resolved."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "alerts resolve",
        args={"actor": actor},
        target={"kind": "alert", "id": alert_id},
    ) as op:
        try:
            alert = runtime.services.events.resolve_alert(alert_id, actor)
        except FATAL_ERRORS as exc:
            _command_error(op, str(exc))
        console.print(f"Resolved {alert.id} at {alert.resolved_at}.")
        op.success(f"Resolved {alert.id}.", changed=1)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "main"]
