"""Pure validation and sanitisation helpers for tenant descriptors.

Every validator raises :class:`~owehost.errors.ValidationError` carrying the
field locator of the first violation and returns ``None`` otherwise. None
of them touches the filesystem.
"""
from __future__ import annotations

import ipaddress
import re
from pathlib import PurePosixPath

from .config import SUPPORTED_PHP_VERSIONS
from .errors import ValidationError
from .models import (
    CERTIFICATE_TYPES,
    DATABASE_ENGINES,
    PLANS,
    TENANT_STATES,
    UNLIMITED,
    CertificateMeta,
    CronJob,
    DatabaseInfo,
    Identity,
    Limits,
    Metadata,
    NodeSettings,
    PHPSettings,
    PythonSettings,
    Redirect,
    Site,
    Status,
    parse_timestamp,
    runtime_version,
)
from .paths import UID_OFFSET

NAME_RE = re.compile(r"^[a-z][a-z0-9_]{2,31}$")
EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
NODE_RE = re.compile(r"^[a-z][a-z0-9-]{0,62}$")
OWNER_RE = re.compile(r"^(admin|reseller-[0-9]+|partner-[0-9]+)$")
DOMAIN_RE = re.compile(r"^([a-zA-Z0-9]([a-zA-Z0-9\-]{0,61}[a-zA-Z0-9])?\.)+[a-zA-Z]{2,}$")
SUBDOMAIN_RE = re.compile(r"^[a-zA-Z0-9]([a-zA-Z0-9\-]{0,61}[a-zA-Z0-9])?$")
DATABASE_NAME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9_]{0,63}$")
CRON_FIELD_RE = re.compile(r"^[0-9A-Za-z*/,?\-]+$")
CRON_MACROS = ("@hourly", "@daily", "@weekly", "@monthly", "@yearly", "@reboot")

MIN_POSIX_ID = 1000
MAX_DOMAIN_LENGTH = 253

RUNTIMES: tuple[str, ...] = (
    *(f"php-{version}" for version in SUPPORTED_PHP_VERSIONS),
    "nodejs-18",
    "nodejs-20",
    "nodejs-22",
    "python-3.10",
    "python-3.11",
    "python-3.12",
    "static",
)
NODE_VERSIONS = ("18", "20", "22")
PYTHON_VERSIONS = ("3.10", "3.11", "3.12")
REDIRECT_CODES = (301, 302, 307, 308)
_DOCROOT_FORBIDDEN = ("\\", ":", "*", "?", '"', "<", ">", "|")


def is_valid_plan(plan: str) -> bool:
    """Return True when *plan* names a known plan."""
    return plan.lower() in PLANS


def is_valid_state(state: str) -> bool:
    """Return True when *state* names a tenant lifecycle state."""
    return state.lower() in TENANT_STATES


def is_valid_runtime(runtime: str) -> bool:
    """Return True when *runtime* is one of the supported runtime tags."""
    return runtime in RUNTIMES


# ----------------------------------------------------------------------
# Tenant descriptors
# ----------------------------------------------------------------------
def validate_identity(identity: Identity) -> None:
    """Validate an identity descriptor."""
    if identity.id <= 0:
        raise ValidationError("identity.id", "must be a positive integer")
    if not NAME_RE.match(identity.name):
        raise ValidationError(
            "identity.name",
            "must be 3-32 lowercase alphanumeric characters starting with a letter",
        )
    if identity.uid < MIN_POSIX_ID:
        raise ValidationError("identity.uid", f"must be >= {MIN_POSIX_ID}")
    if identity.gid < MIN_POSIX_ID:
        raise ValidationError("identity.gid", f"must be >= {MIN_POSIX_ID}")
    if not is_valid_plan(identity.plan):
        raise ValidationError("identity.plan", f"must be one of {', '.join(PLANS)}")
    if not is_valid_state(identity.state):
        raise ValidationError("identity.state", f"must be one of {', '.join(TENANT_STATES)}")
    if identity.node and not NODE_RE.match(identity.node):
        raise ValidationError("identity.node", "invalid node identifier")
    if identity.owner and not OWNER_RE.match(identity.owner):
        raise ValidationError("identity.owner", "invalid owner identifier")


def validate_posix_ids(identity: Identity, tenant_id: int) -> None:
    """Ensure *identity* belongs to *tenant_id* and carries the derived uid/gid."""
    if identity.id != tenant_id:
        raise ValidationError("identity.id", f"does not match tenant {tenant_id}")
    expected = UID_OFFSET + tenant_id
    if identity.uid != expected:
        raise ValidationError("identity.uid", f"must equal {expected}")
    if identity.gid != expected:
        raise ValidationError("identity.gid", f"must equal {expected}")


def validate_limits(limits: Limits) -> None:
    """Validate resource limits; ``-1`` is accepted as unlimited everywhere."""
    if limits.disk_mb != UNLIMITED and limits.disk_mb < 100:
        raise ValidationError("limits.disk_mb", "must be at least 100 MB or -1 for unlimited")
    if limits.cpu_percent != UNLIMITED and not 1 <= limits.cpu_percent <= 400:
        raise ValidationError(
            "limits.cpu_percent", "must be between 1 and 400 percent or -1 for unlimited"
        )
    if limits.ram_mb != UNLIMITED and limits.ram_mb < 128:
        raise ValidationError("limits.ram_mb", "must be at least 128 MB or -1 for unlimited")
    if limits.domains != UNLIMITED and limits.domains < 1:
        raise ValidationError("limits.domains", "must be at least 1 or -1 for unlimited")
    for key in (
        "databases",
        "subdomains",
        "email_accounts",
        "ftp_accounts",
        "bandwidth_gb",
        "inodes",
    ):
        value = getattr(limits, key)
        if value != UNLIMITED and value < 0:
            raise ValidationError(f"limits.{key}", "must be non-negative or -1 for unlimited")


def validate_status(status: Status) -> None:
    """Validate a status descriptor."""
    for key in ("suspended_at", "locked_at"):
        value = getattr(status, key)
        if value is not None and parse_timestamp(value) is None:
            raise ValidationError(f"status.{key}", "must be an RFC 3339 timestamp")


def validate_metadata(metadata: Metadata) -> None:
    """Validate metadata; every field is optional."""
    if metadata.email and not EMAIL_RE.match(metadata.email):
        raise ValidationError("metadata.email", "invalid email address")


def validate_desired(
    identity: Identity | None = None,
    limits: Limits | None = None,
    status: Status | None = None,
    metadata: Metadata | None = None,
) -> None:
    """Validate every supplied part of a desired tenant state."""
    if identity is not None:
        validate_identity(identity)
    if limits is not None:
        validate_limits(limits)
    if status is not None:
        validate_status(status)
    if metadata is not None:
        validate_metadata(metadata)


def sanitize_name(name: str) -> str:
    """Return *name* reduced to a valid tenant name, or ``""`` when impossible."""
    result: list[str] = []
    for char in name.lower():
        if not result:
            if "a" <= char <= "z":
                result.append(char)
        elif ("a" <= char <= "z") or ("0" <= char <= "9") or char == "_":
            result.append(char)
    if len(result) < 3:
        return ""
    return "".join(result[:32])


# ----------------------------------------------------------------------
# Sites
# ----------------------------------------------------------------------
def validate_domain(domain: str, *, field: str = "site.domain") -> None:
    """Validate an RFC 1035 host name."""
    if not domain or len(domain) > MAX_DOMAIN_LENGTH or not DOMAIN_RE.match(domain):
        raise ValidationError(field, f"invalid domain name {domain!r}")


def validate_subdomain(label: str) -> None:
    """Validate a single subdomain label."""
    if not label:
        raise ValidationError("subdomain", "cannot be empty")
    if len(label) > 63:
        raise ValidationError("subdomain", "too long: max 63 characters")
    if not SUBDOMAIN_RE.match(label):
        raise ValidationError("subdomain", "invalid subdomain format")


def validate_document_root(document_root: str) -> None:
    """Reject absolute, traversing or oddly-charactered document roots."""
    if not document_root:
        return
    if ".." in document_root or document_root.startswith("/"):
        raise ValidationError("site.document_root", "must not contain path traversal")
    if any(char in document_root for char in _DOCROOT_FORBIDDEN):
        raise ValidationError("site.document_root", "contains forbidden characters")
    if PurePosixPath(document_root).is_absolute():
        raise ValidationError("site.document_root", "must be relative")


def validate_redirect(redirect: Redirect) -> None:
    """Validate a redirect rule."""
    if not redirect.source:
        raise ValidationError("site.redirects.source", "cannot be empty")
    if not redirect.target:
        raise ValidationError("site.redirects.target", "invalid redirect target URL")
    if redirect.code not in REDIRECT_CODES:
        raise ValidationError("site.redirects.code", "must be 301, 302, 307, or 308")


def validate_php_settings(settings: PHPSettings) -> None:
    """Validate a PHP settings block; an empty version follows the runtime tag."""
    if settings.version and settings.version not in SUPPORTED_PHP_VERSIONS:
        raise ValidationError("site.php_settings.version", "invalid PHP version")
    if not 0 <= settings.max_execution_time <= 3600:
        raise ValidationError(
            "site.php_settings.max_execution_time", "must be between 0 and 3600"
        )
    if not 0 <= settings.max_input_vars <= 100000:
        raise ValidationError("site.php_settings.max_input_vars", "must be between 0 and 100000")


def validate_node_settings(settings: NodeSettings) -> None:
    """Validate a Node.js settings block."""
    if settings.version and settings.version not in NODE_VERSIONS:
        raise ValidationError("site.node_settings.version", "invalid Node.js version")
    if not 1024 <= settings.port <= 65535:
        raise ValidationError("site.node_settings.port", "must be between 1024 and 65535")
    if not 0 <= settings.max_restarts <= 100:
        raise ValidationError("site.node_settings.max_restarts", "must be between 0 and 100")


def validate_python_settings(settings: PythonSettings) -> None:
    """Validate a Python settings block."""
    if settings.version and settings.version not in PYTHON_VERSIONS:
        raise ValidationError("site.python_settings.version", "invalid Python version")
    if not 1 <= settings.worker_count <= 64:
        raise ValidationError("site.python_settings.worker_count", "must be between 1 and 64")
    if settings.app_path:
        validate_document_root(settings.app_path)


def validate_site(site: Site) -> None:
    """Validate a site descriptor including its runtime settings block."""
    validate_domain(site.domain)
    if not is_valid_runtime(site.runtime):
        raise ValidationError("site.runtime", f"invalid runtime {site.runtime!r}")
    validate_document_root(site.document_root)
    for alias in site.aliases:
        validate_domain(alias, field="site.aliases")
    for redirect in site.redirects:
        validate_redirect(redirect)
    for code in site.error_pages:
        if not code.isdigit() or not 400 <= int(code) <= 599:
            raise ValidationError("site.error_pages", f"invalid status code {code!r}")
    for name in site.headers:
        if not name or any(char in name for char in " :\r\n"):
            raise ValidationError("site.headers", f"invalid header name {name!r}")

    settings = site.settings
    if settings is None:
        return
    if settings.kind != site.family:
        raise ValidationError(
            "site.settings", f"{settings.kind} settings do not match runtime {site.runtime}"
        )
    if isinstance(settings, PHPSettings):
        validate_php_settings(settings)
    elif isinstance(settings, NodeSettings):
        validate_node_settings(settings)
    elif isinstance(settings, PythonSettings):
        validate_python_settings(settings)
    if settings.version and settings.version != runtime_version(site.runtime):
        raise ValidationError(
            "site.settings.version",
            f"{settings.version} does not match runtime {site.runtime}",
        )


def sanitize_domain(domain: str) -> str:
    """Strip scheme, path, query, port and trailing dots; lowercase the result."""
    value = domain.strip().lower().strip(" .\t\n\r")
    for scheme in ("http://", "https://"):
        if value.startswith(scheme):
            value = value[len(scheme) :]
    for separator in ("/", "?"):
        index = value.find(separator)
        if index != -1:
            value = value[:index]
    host, sep, port = value.rpartition(":")
    if sep and host and port.isdigit():
        value = host
    return value.strip(".")


# ----------------------------------------------------------------------
# TLS, databases, cron
# ----------------------------------------------------------------------
def validate_ssl_meta(meta: CertificateMeta) -> None:
    """Validate a TLS meta descriptor; SANs may be domains or IP addresses."""
    validate_domain(meta.domain, field="ssl.domain")
    if meta.type not in CERTIFICATE_TYPES:
        raise ValidationError("ssl.type", f"must be one of {', '.join(CERTIFICATE_TYPES)}")
    for san in meta.sans:
        if DOMAIN_RE.match(san) and len(san) <= MAX_DOMAIN_LENGTH:
            continue
        try:
            ipaddress.ip_address(san)
        except ValueError as exc:
            raise ValidationError("ssl.sans", f"invalid SAN {san!r}") from exc


def validate_database_name(name: str) -> None:
    """Validate a database name."""
    if not DATABASE_NAME_RE.match(name):
        raise ValidationError("database.name", f"invalid database name {name!r}")


def validate_database(info: DatabaseInfo) -> None:
    """Validate a database entry."""
    validate_database_name(info.name)
    if info.type not in DATABASE_ENGINES:
        raise ValidationError("database.type", f"must be one of {', '.join(DATABASE_ENGINES)}")
    if info.size_mb < 0:
        raise ValidationError("database.size_mb", "must not be negative")
    for user in info.users:
        if not user.username:
            raise ValidationError("database.users.username", "cannot be empty")


def validate_cron_schedule(schedule: str) -> None:
    """Accept five-field expressions or one of the ``@`` macros."""
    if schedule in CRON_MACROS:
        return
    fields = schedule.split()
    if len(fields) != 5 or not all(CRON_FIELD_RE.match(item) for item in fields):
        raise ValidationError("cron.schedule", f"invalid schedule {schedule!r}")


def validate_cron_job(job: CronJob) -> None:
    """Validate a cron job descriptor."""
    if not job.id or "/" in job.id or job.id.startswith("."):
        raise ValidationError("cron.id", f"invalid job id {job.id!r}")
    validate_cron_schedule(job.schedule)
    if not job.command.strip():
        raise ValidationError("cron.command", "cannot be empty")


__all__ = [
    "NODE_VERSIONS",
    "PYTHON_VERSIONS",
    "REDIRECT_CODES",
    "RUNTIMES",
    "is_valid_plan",
    "is_valid_runtime",
    "is_valid_state",
    "sanitize_domain",
    "sanitize_name",
    "validate_cron_job",
    "validate_cron_schedule",
    "validate_database",
    "validate_database_name",
    "validate_desired",
    "validate_document_root",
    "validate_domain",
    "validate_identity",
    "validate_limits",
    "validate_metadata",
    "validate_node_settings",
    "validate_php_settings",
    "validate_posix_ids",
    "validate_python_settings",
    "validate_redirect",
    "validate_site",
    "validate_ssl_meta",
    "validate_status",
    "validate_subdomain",
]
