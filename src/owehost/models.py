"""Typed descriptors persisted in the tenant tree.

Each descriptor is a dataclass with a ``to_dict`` method producing the JSON
document written to disk and a ``from_dict`` constructor that ignores
unknown fields and raises :class:`~owehost.errors.ValidationError` when a
required field is missing or carries the wrong type.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any

from .errors import ValidationError

_MISSING: Any = object()

TENANT_STATES = ("active", "suspended", "terminated", "pending")
PLANS = ("starter", "standard", "premium", "enterprise")
UNLIMITED = -1


def utc_now() -> datetime:
    """Return the current UTC time truncated to seconds."""
    return datetime.now(tz=UTC).replace(microsecond=0)


def timestamp(moment: datetime | None = None) -> str:
    """Return an RFC 3339 timestamp with second resolution."""
    moment = moment or utc_now()
    return moment.astimezone(UTC).isoformat(timespec="seconds").replace("+00:00", "Z")


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an RFC 3339 timestamp, returning ``None`` when empty or invalid."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


class _Fields:
    """Typed accessors over a raw JSON mapping."""

    def __init__(self, data: Mapping[str, Any], label: str) -> None:
        if not isinstance(data, Mapping):
            raise ValidationError(label, "expected an object")
        self._data = data
        self._label = label

    def _missing(self, key: str) -> ValidationError:
        return ValidationError(f"{self._label}.{key}", "is required")

    def _wrong(self, key: str, expected: str) -> ValidationError:
        return ValidationError(f"{self._label}.{key}", f"must be {expected}")

    def get_int(self, key: str, default: int = _MISSING) -> int:
        value = self._data.get(key)
        if value is None:
            if default is _MISSING:
                raise self._missing(key)
            return default
        if isinstance(value, bool) or not isinstance(value, int):
            raise self._wrong(key, "an integer")
        return value

    def get_float(self, key: str, default: float = 0.0) -> float:
        value = self._data.get(key)
        if value is None:
            return default
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise self._wrong(key, "a number")
        return float(value)

    def get_str(self, key: str, default: str = _MISSING) -> str:
        value = self._data.get(key)
        if value is None:
            if default is _MISSING:
                raise self._missing(key)
            return default
        if not isinstance(value, str):
            raise self._wrong(key, "a string")
        return value

    def get_optional_str(self, key: str) -> str | None:
        value = self._data.get(key)
        if value is None:
            return None
        if not isinstance(value, str):
            raise self._wrong(key, "a string")
        return value

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self._data.get(key)
        if value is None:
            return default
        if not isinstance(value, bool):
            raise self._wrong(key, "a boolean")
        return value

    def get_str_list(self, key: str) -> list[str]:
        value = self._data.get(key)
        if value is None:
            return []
        if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
            raise self._wrong(key, "a list of strings")
        return list(value)

    def get_str_map(self, key: str) -> dict[str, str]:
        value = self._data.get(key)
        if value is None:
            return {}
        if not isinstance(value, Mapping):
            raise self._wrong(key, "an object")
        return {str(k): str(v) for k, v in value.items()}

    def get_mapping(self, key: str) -> Mapping[str, Any] | None:
        value = self._data.get(key)
        if value is None:
            return None
        if not isinstance(value, Mapping):
            raise self._wrong(key, "an object")
        return value

    def get_mapping_list(self, key: str) -> list[Mapping[str, Any]]:
        value = self._data.get(key)
        if value is None:
            return []
        if not isinstance(value, list) or not all(isinstance(item, Mapping) for item in value):
            raise self._wrong(key, "a list of objects")
        return list(value)


# ----------------------------------------------------------------------
# Tenant descriptors
# ----------------------------------------------------------------------
@dataclass(slots=True)
class Identity:
    """Immutable identity of a tenant (``account.json``)."""

    id: int
    name: str
    uid: int
    gid: int
    owner: str = "admin"
    plan: str = "starter"
    node: str = ""
    created_at: str = ""
    state: str = "pending"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Identity:
        """Build an identity from its JSON form."""
        fields = _Fields(data, "identity")
        return cls(
            id=fields.get_int("id"),
            name=fields.get_str("name"),
            uid=fields.get_int("uid"),
            gid=fields.get_int("gid"),
            owner=fields.get_str("owner", "admin"),
            plan=fields.get_str("plan", "starter"),
            node=fields.get_str("node", ""),
            created_at=fields.get_str("created_at", ""),
            state=fields.get_str("state", "pending"),
        )

    def to_dict(self) -> dict[str, object]:
        """Return the JSON form."""
        return {
            "id": self.id,
            "name": self.name,
            "uid": self.uid,
            "gid": self.gid,
            "owner": self.owner,
            "plan": self.plan,
            "node": self.node,
            "created_at": self.created_at,
            "state": self.state,
        }


@dataclass(slots=True)
class Limits:
    """Resource limits (``limits.json``); ``-1`` means unlimited."""

    disk_mb: int
    cpu_percent: int
    ram_mb: int
    databases: int
    domains: int
    subdomains: int
    email_accounts: int
    ftp_accounts: int
    bandwidth_gb: int
    inodes: int

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Limits:
        """Build limits from their JSON form."""
        fields = _Fields(data, "limits")
        return cls(
            disk_mb=fields.get_int("disk_mb"),
            cpu_percent=fields.get_int("cpu_percent"),
            ram_mb=fields.get_int("ram_mb"),
            databases=fields.get_int("databases"),
            domains=fields.get_int("domains"),
            subdomains=fields.get_int("subdomains"),
            email_accounts=fields.get_int("email_accounts"),
            ftp_accounts=fields.get_int("ftp_accounts"),
            bandwidth_gb=fields.get_int("bandwidth_gb"),
            inodes=fields.get_int("inodes"),
        )

    def to_dict(self) -> dict[str, object]:
        """Return the JSON form."""
        return {
            "disk_mb": self.disk_mb,
            "cpu_percent": self.cpu_percent,
            "ram_mb": self.ram_mb,
            "databases": self.databases,
            "domains": self.domains,
            "subdomains": self.subdomains,
            "email_accounts": self.email_accounts,
            "ftp_accounts": self.ftp_accounts,
            "bandwidth_gb": self.bandwidth_gb,
            "inodes": self.inodes,
        }


PLAN_PRESETS: dict[str, Limits] = {
    "starter": Limits(5120, 50, 512, 3, 5, 10, 10, 3, 50, 100000),
    "standard": Limits(10240, 100, 2048, 10, 20, 50, 50, 10, 200, 250000),
    "premium": Limits(51200, 200, 4096, 50, 100, 200, 200, 50, 1000, 500000),
    "enterprise": Limits(
        102400, 400, 8192, UNLIMITED, UNLIMITED, UNLIMITED,
        UNLIMITED, UNLIMITED, UNLIMITED, UNLIMITED,
    ),
}


def plan_limits(plan: str) -> Limits:
    """Return a copy of the preset for *plan*, falling back to ``starter``."""
    preset = PLAN_PRESETS.get(plan.lower(), PLAN_PRESETS["starter"])
    return replace(preset)


@dataclass(slots=True)
class Status:
    """Suspension and lock state (``status.json``)."""

    suspended: bool = False
    locked: bool = False
    reason: str | None = None
    suspended_at: str | None = None
    suspended_by: str | None = None
    locked_at: str | None = None
    locked_reason: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Status:
        """Build a status from its JSON form."""
        fields = _Fields(data, "status")
        return cls(
            suspended=fields.get_bool("suspended"),
            locked=fields.get_bool("locked"),
            reason=fields.get_optional_str("reason"),
            suspended_at=fields.get_optional_str("suspended_at"),
            suspended_by=fields.get_optional_str("suspended_by"),
            locked_at=fields.get_optional_str("locked_at"),
            locked_reason=fields.get_optional_str("locked_reason"),
        )

    def to_dict(self) -> dict[str, object]:
        """Return the JSON form, omitting unset optional fields."""
        payload: dict[str, object] = {"suspended": self.suspended, "locked": self.locked}
        for key in ("reason", "suspended_at", "suspended_by", "locked_at", "locked_reason"):
            value = getattr(self, key)
            if value is not None:
                payload[key] = value
        return payload


@dataclass(slots=True)
class Metadata:
    """Contact details and free-form annotations (``metadata.json``)."""

    email: str = ""
    contact_name: str = ""
    contact_phone: str = ""
    notes: str = ""
    tags: list[str] = field(default_factory=list)
    custom: dict[str, str] = field(default_factory=dict)
    updated_at: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Metadata:
        """Build metadata from its JSON form."""
        fields = _Fields(data, "metadata")
        return cls(
            email=fields.get_str("email", ""),
            contact_name=fields.get_str("contact_name", ""),
            contact_phone=fields.get_str("contact_phone", ""),
            notes=fields.get_str("notes", ""),
            tags=fields.get_str_list("tags"),
            custom=fields.get_str_map("custom"),
            updated_at=fields.get_str("updated_at", ""),
        )

    def to_dict(self) -> dict[str, object]:
        """Return the JSON form."""
        return {
            "email": self.email,
            "contact_name": self.contact_name,
            "contact_phone": self.contact_phone,
            "notes": self.notes,
            "tags": list(self.tags),
            "custom": dict(self.custom),
            "updated_at": self.updated_at,
        }


@dataclass(slots=True)
class Auth:
    """Panel credentials (``auth.json``)."""

    password_hash: str
    salt: str
    last_login: str | None = None
    login_count: int = 0
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Auth:
        """Build an auth descriptor from its JSON form."""
        fields = _Fields(data, "auth")
        return cls(
            password_hash=fields.get_str("password_hash"),
            salt=fields.get_str("salt"),
            last_login=fields.get_optional_str("last_login"),
            login_count=fields.get_int("login_count", 0),
            created_at=fields.get_str("created_at", ""),
            updated_at=fields.get_str("updated_at", ""),
        )

    def to_dict(self) -> dict[str, object]:
        """Return the JSON form."""
        return {
            "password_hash": self.password_hash,
            "salt": self.salt,
            "last_login": self.last_login,
            "login_count": self.login_count,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(slots=True)
class TenantRecord:
    """Combined view of the four tenant-level descriptors."""

    identity: Identity
    limits: Limits
    status: Status
    metadata: Metadata

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "identity": self.identity.to_dict(),
            "limits": self.limits.to_dict(),
            "status": self.status.to_dict(),
            "metadata": self.metadata.to_dict(),
        }


# ----------------------------------------------------------------------
# Sites and runtime settings
# ----------------------------------------------------------------------
@dataclass(slots=True)
class Redirect:
    """A single redirect rule of a site."""

    source: str
    target: str
    code: int = 301
    is_regex: bool = False
    is_wildcard: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Redirect:
        """Build a redirect from its JSON form."""
        fields = _Fields(data, "redirect")
        return cls(
            source=fields.get_str("source"),
            target=fields.get_str("target"),
            code=fields.get_int("code", 301),
            is_regex=fields.get_bool("is_regex"),
            is_wildcard=fields.get_bool("is_wildcard"),
        )

    def to_dict(self) -> dict[str, object]:
        """Return the JSON form."""
        return {
            "source": self.source,
            "target": self.target,
            "code": self.code,
            "is_regex": self.is_regex,
            "is_wildcard": self.is_wildcard,
        }


@dataclass(slots=True)
class PHPSettings:
    """Settings block for ``php-*`` runtimes."""

    kind = "php"

    version: str = ""
    max_execution_time: int = 300
    memory_limit: str = "256M"
    post_max_size: str = "64M"
    upload_max_filesize: str = "64M"
    max_input_vars: int = 5000
    display_errors: bool = False
    extensions: list[str] = field(default_factory=list)
    custom_ini: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PHPSettings:
        """Build PHP settings from their JSON form."""
        fields = _Fields(data, "php_settings")
        return cls(
            version=fields.get_str("version", ""),
            max_execution_time=fields.get_int("max_execution_time", 300),
            memory_limit=fields.get_str("memory_limit", "256M"),
            post_max_size=fields.get_str("post_max_size", "64M"),
            upload_max_filesize=fields.get_str("upload_max_filesize", "64M"),
            max_input_vars=fields.get_int("max_input_vars", 5000),
            display_errors=fields.get_bool("display_errors"),
            extensions=fields.get_str_list("extensions"),
            custom_ini=fields.get_str_map("custom_ini"),
        )

    def to_dict(self) -> dict[str, object]:
        """Return the JSON form."""
        return {
            "version": self.version,
            "max_execution_time": self.max_execution_time,
            "memory_limit": self.memory_limit,
            "post_max_size": self.post_max_size,
            "upload_max_filesize": self.upload_max_filesize,
            "max_input_vars": self.max_input_vars,
            "display_errors": self.display_errors,
            "extensions": list(self.extensions),
            "custom_ini": dict(self.custom_ini),
        }


@dataclass(slots=True)
class NodeSettings:
    """Settings block for ``nodejs-*`` runtimes."""

    kind = "nodejs"

    version: str = ""
    port: int = 3000
    start_command: str = "npm start"
    environment: dict[str, str] = field(default_factory=dict)
    auto_restart: bool = True
    max_restarts: int = 10
    watch_files: bool = False
    passenger_mode: bool = True

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> NodeSettings:
        """Build Node settings from their JSON form."""
        fields = _Fields(data, "node_settings")
        return cls(
            version=fields.get_str("version", ""),
            port=fields.get_int("port", 3000),
            start_command=fields.get_str("start_command", "npm start"),
            environment=fields.get_str_map("environment"),
            auto_restart=fields.get_bool("auto_restart", True),
            max_restarts=fields.get_int("max_restarts", 10),
            watch_files=fields.get_bool("watch_files"),
            passenger_mode=fields.get_bool("passenger_mode", True),
        )

    def to_dict(self) -> dict[str, object]:
        """Return the JSON form."""
        return {
            "version": self.version,
            "port": self.port,
            "start_command": self.start_command,
            "environment": dict(self.environment),
            "auto_restart": self.auto_restart,
            "max_restarts": self.max_restarts,
            "watch_files": self.watch_files,
            "passenger_mode": self.passenger_mode,
        }


@dataclass(slots=True)
class PythonSettings:
    """Settings block for ``python-*`` runtimes."""

    kind = "python"

    version: str = ""
    app_path: str = ""
    framework: str = ""
    environment: dict[str, str] = field(default_factory=dict)
    virtualenv: str = ""
    worker_count: int = 2

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PythonSettings:
        """Build Python settings from their JSON form."""
        fields = _Fields(data, "python_settings")
        return cls(
            version=fields.get_str("version", ""),
            app_path=fields.get_str("app_path", ""),
            framework=fields.get_str("framework", ""),
            environment=fields.get_str_map("environment"),
            virtualenv=fields.get_str("virtualenv", ""),
            worker_count=fields.get_int("worker_count", 2),
        )

    def to_dict(self) -> dict[str, object]:
        """Return the JSON form."""
        return {
            "version": self.version,
            "app_path": self.app_path,
            "framework": self.framework,
            "environment": dict(self.environment),
            "virtualenv": self.virtualenv,
            "worker_count": self.worker_count,
        }


RuntimeSettings = PHPSettings | NodeSettings | PythonSettings

SETTINGS_TYPES: dict[str, type[PHPSettings] | type[NodeSettings] | type[PythonSettings]] = {
    "php": PHPSettings,
    "nodejs": NodeSettings,
    "python": PythonSettings,
}
SETTINGS_KEYS = {
    "php": "php_settings",
    "nodejs": "node_settings",
    "python": "python_settings",
}


def runtime_family(runtime: str) -> str:
    """Return ``php``, ``nodejs``, ``python`` or ``static`` for *runtime*."""
    if runtime == "static":
        return "static"
    family, _, _ = runtime.partition("-")
    return family


def runtime_version(runtime: str) -> str:
    """Return the version suffix of *runtime* (empty for ``static``)."""
    _, _, version = runtime.partition("-")
    return version


@dataclass(slots=True)
class Site:
    """A site served for one domain of a tenant (``web/<domain>/site.json``)."""

    domain: str
    runtime: str = "static"
    ssl: bool = False
    ssl_redirect: bool = False
    document_root: str = ""
    aliases: list[str] = field(default_factory=list)
    redirects: list[Redirect] = field(default_factory=list)
    error_pages: dict[str, str] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    settings: RuntimeSettings | None = None
    created_at: str = ""
    updated_at: str = ""

    @property
    def family(self) -> str:
        """Return the runtime family tag."""
        return runtime_family(self.runtime)

    @property
    def effective_document_root(self) -> str:
        """Return the document root, defaulting to ``public``."""
        return self.document_root or "public"

    @property
    def php_version(self) -> str | None:
        """Return the PHP version serving this site, or ``None`` for non-PHP runtimes."""
        if self.family != "php":
            return None
        if isinstance(self.settings, PHPSettings) and self.settings.version:
            return self.settings.version
        return runtime_version(self.runtime)

    def resolved_settings(self) -> RuntimeSettings | None:
        """Return the settings block for the runtime, or its defaults when absent."""
        settings_type = SETTINGS_TYPES.get(self.family)
        if settings_type is None:
            return None
        if isinstance(self.settings, settings_type):
            return self.settings
        return settings_type()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Site:
        """Build a site from its JSON form.

        Only the settings block matching the runtime tag is read; blocks for
        other runtimes are ignored.
        """
        fields = _Fields(data, "site")
        runtime = fields.get_str("runtime", "static")
        settings: RuntimeSettings | None = None
        family = runtime_family(runtime)
        settings_key = SETTINGS_KEYS.get(family)
        if settings_key is not None:
            block = fields.get_mapping(settings_key)
            if block is not None:
                settings = SETTINGS_TYPES[family].from_dict(block)
        return cls(
            domain=fields.get_str("domain"),
            runtime=runtime,
            ssl=fields.get_bool("ssl"),
            ssl_redirect=fields.get_bool("ssl_redirect"),
            document_root=fields.get_str("document_root", ""),
            aliases=fields.get_str_list("aliases"),
            redirects=[Redirect.from_dict(item) for item in fields.get_mapping_list("redirects")],
            error_pages=fields.get_str_map("error_pages"),
            headers=fields.get_str_map("headers"),
            settings=settings,
            created_at=fields.get_str("created_at", ""),
            updated_at=fields.get_str("updated_at", ""),
        )

    def to_dict(self) -> dict[str, object]:
        """Return the JSON form."""
        payload: dict[str, object] = {
            "domain": self.domain,
            "runtime": self.runtime,
            "ssl": self.ssl,
            "ssl_redirect": self.ssl_redirect,
            "document_root": self.document_root,
            "aliases": list(self.aliases),
            "redirects": [redirect.to_dict() for redirect in self.redirects],
            "error_pages": dict(self.error_pages),
            "headers": dict(self.headers),
        }
        if self.settings is not None:
            payload[SETTINGS_KEYS[self.settings.kind]] = self.settings.to_dict()
        payload["created_at"] = self.created_at
        payload["updated_at"] = self.updated_at
        return payload


# ----------------------------------------------------------------------
# TLS, databases, cron
# ----------------------------------------------------------------------
CERTIFICATE_TYPES = ("letsencrypt", "custom", "self-signed")


@dataclass(slots=True)
class CertificateMeta:
    """Descriptor of the TLS material of one domain (``ssl/<domain>/meta.json``)."""

    domain: str
    type: str = "custom"
    issuer: str = ""
    subject: str = ""
    sans: list[str] = field(default_factory=list)
    valid_from: str | None = None
    valid_until: str | None = None
    auto_renew: bool = False
    last_renewed: str | None = None
    last_check: str | None = None
    renewal_error: str | None = None
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CertificateMeta:
        """Build certificate metadata from its JSON form."""
        fields = _Fields(data, "ssl")
        return cls(
            domain=fields.get_str("domain"),
            type=fields.get_str("type", "custom"),
            issuer=fields.get_str("issuer", ""),
            subject=fields.get_str("subject", ""),
            sans=fields.get_str_list("sans"),
            valid_from=fields.get_optional_str("valid_from"),
            valid_until=fields.get_optional_str("valid_until"),
            auto_renew=fields.get_bool("auto_renew"),
            last_renewed=fields.get_optional_str("last_renewed"),
            last_check=fields.get_optional_str("last_check"),
            renewal_error=fields.get_optional_str("renewal_error"),
            created_at=fields.get_str("created_at", ""),
            updated_at=fields.get_str("updated_at", ""),
        )

    def to_dict(self) -> dict[str, object]:
        """Return the JSON form."""
        return {
            "domain": self.domain,
            "type": self.type,
            "issuer": self.issuer,
            "subject": self.subject,
            "sans": list(self.sans),
            "valid_from": self.valid_from,
            "valid_until": self.valid_until,
            "auto_renew": self.auto_renew,
            "last_renewed": self.last_renewed,
            "last_check": self.last_check,
            "renewal_error": self.renewal_error,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


DATABASE_ENGINES = ("mysql", "postgres", "mariadb")


@dataclass(slots=True)
class DatabaseUser:
    """A user granted access to a database."""

    username: str
    host: str = "localhost"
    privileges: list[str] = field(default_factory=list)
    require_ssl: bool = False
    created_at: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DatabaseUser:
        """Build a database user from its JSON form."""
        fields = _Fields(data, "database_user")
        return cls(
            username=fields.get_str("username"),
            host=fields.get_str("host", "localhost"),
            privileges=fields.get_str_list("privileges"),
            require_ssl=fields.get_bool("require_ssl"),
            created_at=fields.get_str("created_at", ""),
        )

    def to_dict(self) -> dict[str, object]:
        """Return the JSON form."""
        return {
            "username": self.username,
            "host": self.host,
            "privileges": list(self.privileges),
            "require_ssl": self.require_ssl,
            "created_at": self.created_at,
        }


@dataclass(slots=True)
class DatabaseInfo:
    """One entry of ``databases/meta.json``."""

    name: str
    type: str = "mysql"
    charset: str = ""
    collation: str = ""
    size_mb: float = 0.0
    users: list[DatabaseUser] = field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DatabaseInfo:
        """Build a database entry from its JSON form."""
        fields = _Fields(data, "database")
        return cls(
            name=fields.get_str("name"),
            type=fields.get_str("type", "mysql"),
            charset=fields.get_str("charset", ""),
            collation=fields.get_str("collation", ""),
            size_mb=fields.get_float("size_mb"),
            users=[DatabaseUser.from_dict(item) for item in fields.get_mapping_list("users")],
            created_at=fields.get_str("created_at", ""),
            updated_at=fields.get_str("updated_at", ""),
        )

    def to_dict(self) -> dict[str, object]:
        """Return the JSON form."""
        return {
            "name": self.name,
            "type": self.type,
            "charset": self.charset,
            "collation": self.collation,
            "size_mb": self.size_mb,
            "users": [user.to_dict() for user in self.users],
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(slots=True)
class CronJob:
    """A scheduled command of a tenant (``cron/<id>.json``)."""

    id: str
    schedule: str
    command: str
    enabled: bool = True
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CronJob:
        """Build a cron job from its JSON form."""
        fields = _Fields(data, "cron")
        return cls(
            id=fields.get_str("id"),
            schedule=fields.get_str("schedule"),
            command=fields.get_str("command"),
            enabled=fields.get_bool("enabled", True),
            created_at=fields.get_str("created_at", ""),
            updated_at=fields.get_str("updated_at", ""),
        )

    def to_dict(self) -> dict[str, object]:
        """Return the JSON form."""
        return {
            "id": self.id,
            "schedule": self.schedule,
            "command": self.command,
            "enabled": self.enabled,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


__all__ = [
    "Auth",
    "CERTIFICATE_TYPES",
    "CertificateMeta",
    "CronJob",
    "DATABASE_ENGINES",
    "DatabaseInfo",
    "DatabaseUser",
    "Identity",
    "Limits",
    "Metadata",
    "NodeSettings",
    "PHPSettings",
    "PLANS",
    "PLAN_PRESETS",
    "PythonSettings",
    "Redirect",
    "RuntimeSettings",
    "SETTINGS_KEYS",
    "Site",
    "Status",
    "TENANT_STATES",
    "TenantRecord",
    "UNLIMITED",
    "parse_timestamp",
    "plan_limits",
    "runtime_family",
    "runtime_version",
    "timestamp",
    "utc_now",
]
