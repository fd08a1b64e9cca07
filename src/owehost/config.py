"""Configuration loader for owehost.

Configuration values are read from several sources, later sources winning:

1. Built-in defaults.
2. ``/etc/owehost/config.yml`` (or an override path).
3. Environment variables prefixed with ``OWEHOST_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export OWEHOST_ACCOUNTS_ROOT=/data/accounts
    export OWEHOST_NGINX__BIN=/usr/sbin/nginx

Values are coerced via PyYAML's ``safe_load`` so that booleans, numbers and
lists are parsed naturally. The resulting configuration is exposed as
immutable ``dataclasses``.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import cast

import yaml

ENV_PREFIX = "OWEHOST_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}

SUPPORTED_PHP_VERSIONS = ("7.4", "8.0", "8.1", "8.2", "8.3")


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class NginxConfig:
    """Locations of the nginx configuration trees."""

    sites_available: Path = Path("/etc/nginx/sites-available")
    sites_enabled: Path = Path("/etc/nginx/sites-enabled")
    conf_d: Path = Path("/etc/nginx/conf.d")
    bin: str = "nginx"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "sites_available": str(self.sites_available),
            "sites_enabled": str(self.sites_enabled),
            "conf_d": str(self.conf_d),
            "bin": self.bin,
        }


@dataclass(frozen=True)
class PhpFpmConfig:
    """PHP-FPM pool locations and the versions managed on this node."""

    root: Path = Path("/etc/php")
    socket_dir: Path = Path("/run/php")
    versions: tuple[str, ...] = SUPPORTED_PHP_VERSIONS
    systemctl_bin: str = "systemctl"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "root": str(self.root),
            "socket_dir": str(self.socket_dir),
            "versions": list(self.versions),
            "systemctl_bin": self.systemctl_bin,
        }


@dataclass(frozen=True)
class CgroupConfig:
    """Root of the per-tenant cgroup v2 hierarchy."""

    root: Path = Path("/sys/fs/cgroup/owehost")

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"root": str(self.root)}


@dataclass(frozen=True)
class QuotaConfig:
    """Disk quota settings."""

    filesystem: Path = Path("/srv")
    setquota_bin: str = "setquota"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"filesystem": str(self.filesystem), "setquota_bin": self.setquota_bin}


@dataclass(frozen=True)
class EventsConfig:
    """Event log retention and query defaults."""

    retention_days: int = 90
    prune_interval_hours: int = 6
    query_window_days: int = 30

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "retention_days": self.retention_days,
            "prune_interval_hours": self.prune_interval_hours,
            "query_window_days": self.query_window_days,
        }


@dataclass(frozen=True)
class SSLConfig:
    """TLS material defaults."""

    self_signed_days: int = 365
    expiry_warning_days: int = 30

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "self_signed_days": self.self_signed_days,
            "expiry_warning_days": self.expiry_warning_days,
        }


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for owehost."""

    config_file: Path
    accounts_root: Path
    base_dir: Path
    events_dir: Path
    alerts_dir: Path
    state_dir: Path
    registry_dir: Path
    logs_dir: Path
    runtime_dir: Path
    templates_dir: Path
    lock_timeout: float
    exec_timeout: float
    node_id: str
    nginx: NginxConfig
    phpfpm: PhpFpmConfig
    cgroups: CgroupConfig
    quota: QuotaConfig
    events: EventsConfig
    ssl: SSLConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "accounts_root": str(self.accounts_root),
            "base_dir": str(self.base_dir),
            "events_dir": str(self.events_dir),
            "alerts_dir": str(self.alerts_dir),
            "state_dir": str(self.state_dir),
            "registry_dir": str(self.registry_dir),
            "logs_dir": str(self.logs_dir),
            "runtime_dir": str(self.runtime_dir),
            "templates_dir": str(self.templates_dir),
            "lock_timeout": self.lock_timeout,
            "exec_timeout": self.exec_timeout,
            "node_id": self.node_id,
            "nginx": self.nginx.to_dict(),
            "phpfpm": self.phpfpm.to_dict(),
            "cgroups": self.cgroups.to_dict(),
            "quota": self.quota.to_dict(),
            "events": self.events.to_dict(),
            "ssl": self.ssl.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/owehost/config.yml",
    "accounts_root": "/srv/accounts",
    "base_dir": "/opt/owehost",
    "events_dir": None,  # derived from base_dir when absent
    "alerts_dir": None,  # derived from base_dir when absent
    "state_dir": "/var/lib/owehost",
    "registry_dir": None,  # derived from state_dir when absent
    "logs_dir": "/var/log/owehost",
    "runtime_dir": "/run/owehost",
    "templates_dir": "/etc/owehost/templates",
    "lock_timeout": 30.0,
    "exec_timeout": 30.0,
    "node_id": "node-1",
    "nginx": {
        "sites_available": "/etc/nginx/sites-available",
        "sites_enabled": "/etc/nginx/sites-enabled",
        "conf_d": "/etc/nginx/conf.d",
        "bin": "nginx",
    },
    "phpfpm": {
        "root": "/etc/php",
        "socket_dir": "/run/php",
        "versions": list(SUPPORTED_PHP_VERSIONS),
        "systemctl_bin": "systemctl",
    },
    "cgroups": {
        "root": "/sys/fs/cgroup/owehost",
    },
    "quota": {
        "filesystem": "/srv",
        "setquota_bin": "setquota",
    },
    "events": {
        "retention_days": 90,
        "prune_interval_hours": 6,
        "query_window_days": 30,
    },
    "ssl": {
        "self_signed_days": 365,
        "expiry_warning_days": 30,
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
_SECTION_KEYS: dict[str, set[str]] = {
    section: set(cast(Mapping[str, object], DEFAULTS[section]).keys())
    for section in ("nginx", "phpfpm", "cgroups", "quota", "events", "ssl")
}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in _SECTION_KEYS.items():
        mapping = _as_dict(raw.get(section), section)
        unknown = set(mapping.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    for key in ("lock_timeout", "exec_timeout"):
        value = raw.get(key)
        if value is not None:
            _expect_positive_float(value, key, default=30.0)

    phpfpm = _as_dict(raw.get("phpfpm"), "phpfpm")
    versions = phpfpm.get("versions")
    if versions is not None:
        for item in _as_sequence(versions, "phpfpm.versions"):
            if str(item) not in SUPPORTED_PHP_VERSIONS:
                allowed = ", ".join(SUPPORTED_PHP_VERSIONS)
                raise ConfigError(
                    f"Unsupported PHP version '{item}' in phpfpm.versions. Allowed: {allowed}."
                )


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    config_file = _to_path(raw["config_file"])
    base_dir = _to_path(raw.get("base_dir", "/opt/owehost"))
    state_dir = _to_path(raw.get("state_dir", "/var/lib/owehost"))

    events_value = raw.get("events_dir")
    events_dir = _to_path(events_value) if events_value else base_dir / "logs" / "events"
    alerts_value = raw.get("alerts_dir")
    alerts_dir = _to_path(alerts_value) if alerts_value else base_dir / "logs" / "alerts"
    registry_value = raw.get("registry_dir")
    registry_dir = _to_path(registry_value) if registry_value else state_dir / "registry"

    nginx_mapping = _as_dict(raw.get("nginx"), "nginx")
    nginx = NginxConfig(
        sites_available=_to_path(
            nginx_mapping.get("sites_available", "/etc/nginx/sites-available")
        ),
        sites_enabled=_to_path(nginx_mapping.get("sites_enabled", "/etc/nginx/sites-enabled")),
        conf_d=_to_path(nginx_mapping.get("conf_d", "/etc/nginx/conf.d")),
        bin=str(nginx_mapping.get("bin", "nginx")),
    )

    phpfpm_mapping = _as_dict(raw.get("phpfpm"), "phpfpm")
    versions_raw = phpfpm_mapping.get("versions", list(SUPPORTED_PHP_VERSIONS))
    phpfpm = PhpFpmConfig(
        root=_to_path(phpfpm_mapping.get("root", "/etc/php")),
        socket_dir=_to_path(phpfpm_mapping.get("socket_dir", "/run/php")),
        versions=tuple(str(item) for item in _as_sequence(versions_raw, "phpfpm.versions")),
        systemctl_bin=str(phpfpm_mapping.get("systemctl_bin", "systemctl")),
    )

    cgroups_mapping = _as_dict(raw.get("cgroups"), "cgroups")
    cgroups = CgroupConfig(root=_to_path(cgroups_mapping.get("root", "/sys/fs/cgroup/owehost")))

    quota_mapping = _as_dict(raw.get("quota"), "quota")
    quota = QuotaConfig(
        filesystem=_to_path(quota_mapping.get("filesystem", "/srv")),
        setquota_bin=str(quota_mapping.get("setquota_bin", "setquota")),
    )

    events_mapping = _as_dict(raw.get("events"), "events")
    events = EventsConfig(
        retention_days=_expect_positive_int(
            events_mapping.get("retention_days"), "events.retention_days", default=90
        ),
        prune_interval_hours=_expect_positive_int(
            events_mapping.get("prune_interval_hours"), "events.prune_interval_hours", default=6
        ),
        query_window_days=_expect_positive_int(
            events_mapping.get("query_window_days"), "events.query_window_days", default=30
        ),
    )

    ssl_mapping = _as_dict(raw.get("ssl"), "ssl")
    ssl = SSLConfig(
        self_signed_days=_expect_positive_int(
            ssl_mapping.get("self_signed_days"), "ssl.self_signed_days", default=365
        ),
        expiry_warning_days=_expect_positive_int(
            ssl_mapping.get("expiry_warning_days"), "ssl.expiry_warning_days", default=30
        ),
    )

    node_id = str(raw.get("node_id", "node-1")).strip()
    if not node_id:
        raise ConfigError("node_id must be a non-empty string.")

    return AppConfig(
        config_file=config_file,
        accounts_root=_to_path(raw.get("accounts_root", "/srv/accounts")),
        base_dir=base_dir,
        events_dir=events_dir,
        alerts_dir=alerts_dir,
        state_dir=state_dir,
        registry_dir=registry_dir,
        logs_dir=_to_path(raw.get("logs_dir", "/var/log/owehost")),
        runtime_dir=_to_path(raw.get("runtime_dir", "/run/owehost")),
        templates_dir=_to_path(raw.get("templates_dir", "/etc/owehost/templates")),
        lock_timeout=_expect_positive_float(raw.get("lock_timeout"), "lock_timeout", default=30.0),
        exec_timeout=_expect_positive_float(raw.get("exec_timeout"), "exec_timeout", default=30.0),
        node_id=node_id,
        nginx=nginx,
        phpfpm=phpfpm,
        cgroups=cgroups,
        quota=quota,
        events=events,
        ssl=ssl,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_positive_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        number = value
    elif isinstance(value, str):
        try:
            number = int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    else:
        raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")
    if number <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {number}.")
    return number


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(
            f"Expected {label} to be numeric. Got {type(value).__name__}."
        )
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "CgroupConfig",
    "ConfigError",
    "EventsConfig",
    "NginxConfig",
    "PhpFpmConfig",
    "QuotaConfig",
    "SSLConfig",
    "SUPPORTED_PHP_VERSIONS",
    "load_config",
]
