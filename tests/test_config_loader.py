"""Configuration loader tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from owehost.config import SUPPORTED_PHP_VERSIONS, AppConfig, ConfigError, load_config


def test_load_config_defaults_when_file_missing(tmp_path: Path) -> None:
    """Defaults apply when no config file is present."""
    config = load_config(config_file=tmp_path / "missing.yml", env={})

    assert isinstance(config, AppConfig)
    assert config.accounts_root == Path("/srv/accounts")
    assert config.events_dir == Path("/opt/owehost/logs/events")
    assert config.alerts_dir == Path("/opt/owehost/logs/alerts")
    assert config.registry_dir == Path("/var/lib/owehost/registry")
    assert config.nginx.sites_available == Path("/etc/nginx/sites-available")
    assert config.phpfpm.versions == SUPPORTED_PHP_VERSIONS
    assert config.cgroups.root == Path("/sys/fs/cgroup/owehost")
    assert config.events.retention_days == 90
    assert config.events.query_window_days == 30
    assert config.ssl.self_signed_days == 365
    assert config.lock_timeout == 30.0
    assert config.node_id == "node-1"


def test_load_config_reads_yaml_file(tmp_path: Path) -> None:
    """Values are loaded from the YAML config file."""
    cfg = tmp_path / "owehost.yml"
    cfg.write_text(
        f"accounts_root: {tmp_path / 'accounts'}\n"
        "base_dir: /data/owehost\n"
        "nginx:\n"
        "  bin: /usr/sbin/nginx\n"
        "phpfpm:\n"
        "  versions: ['8.2', '8.3']\n"
        "events:\n"
        "  retention_days: 14\n",
        encoding="utf-8",
    )

    config = load_config(config_file=cfg, env={})

    assert config.config_file == cfg
    assert config.accounts_root == tmp_path / "accounts"
    assert config.events_dir == Path("/data/owehost/logs/events")
    assert config.nginx.bin == "/usr/sbin/nginx"
    assert config.phpfpm.versions == ("8.2", "8.3")
    assert config.events.retention_days == 14


def test_env_overrides_take_precedence(tmp_path: Path) -> None:
    """Environment variables override defaults and file settings."""
    cfg = tmp_path / "owehost.yml"
    cfg.write_text("node_id: from-file\nlock_timeout: 10\n", encoding="utf-8")
    env = {
        "OWEHOST_NODE_ID": "from-env",
        "OWEHOST_NGINX__BIN": "/opt/nginx/sbin/nginx",
        "OWEHOST_EVENTS__QUERY_WINDOW_DAYS": "7",
        "OWEHOST_LOCK_TIMEOUT": "45",
        "UNRELATED": "ignored",
    }

    config = load_config(config_file=cfg, env=env)

    assert config.node_id == "from-env"
    assert config.nginx.bin == "/opt/nginx/sbin/nginx"
    assert config.events.query_window_days == 7
    assert config.lock_timeout == 45.0


def test_config_file_env_var_selects_file(tmp_path: Path) -> None:
    """OWEHOST_CONFIG_FILE points at the file and is not itself a setting."""
    cfg = tmp_path / "custom.yml"
    cfg.write_text("node_id: custom-node\n", encoding="utf-8")

    config = load_config(env={"OWEHOST_CONFIG_FILE": str(cfg)})

    assert config.config_file == cfg
    assert config.node_id == "custom-node"


def test_overrides_win_over_env(tmp_path: Path) -> None:
    """Programmatic overrides are applied last."""
    config = load_config(
        config_file=tmp_path / "missing.yml",
        env={"OWEHOST_NODE_ID": "env-node"},
        overrides={"node_id": "override-node", "registry_dir": str(tmp_path / "idx")},
    )

    assert config.node_id == "override-node"
    assert config.registry_dir == tmp_path / "idx"


def test_unknown_keys_raise(tmp_path: Path) -> None:
    """Unknown top-level and section keys are rejected."""
    cfg = tmp_path / "owehost.yml"
    cfg.write_text("unexpected: 1\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="unexpected"):
        load_config(config_file=cfg, env={})

    cfg.write_text("nginx:\n  listen: 80\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="nginx"):
        load_config(config_file=cfg, env={})


def test_unsupported_php_version_rejected(tmp_path: Path) -> None:
    """Only the supported PHP versions may be managed."""
    with pytest.raises(ConfigError, match="Unsupported PHP version"):
        load_config(
            config_file=tmp_path / "missing.yml",
            env={},
            overrides={"phpfpm": {"versions": ["5.6"]}},
        )


@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        ({"lock_timeout": 0}, "lock_timeout"),
        ({"events": {"retention_days": -1}}, "events.retention_days"),
        ({"node_id": "  "}, "node_id"),
    ],
)
def test_invalid_values_raise(
    tmp_path: Path,
    overrides: dict[str, object],
    message: str,
) -> None:
    """Non-positive numbers and blank node ids are configuration errors."""
    with pytest.raises(ConfigError, match=message):
        load_config(config_file=tmp_path / "missing.yml", env={}, overrides=overrides)


def test_top_level_must_be_mapping(tmp_path: Path) -> None:
    """A config file holding a list is rejected."""
    cfg = tmp_path / "owehost.yml"
    cfg.write_text("- a\n- b\n", encoding="utf-8")

    with pytest.raises(ConfigError, match="mapping"):
        load_config(config_file=cfg, env={})


def test_to_dict_is_serialisable(tmp_path: Path) -> None:
    """The resolved config renders paths as strings."""
    config = load_config(config_file=tmp_path / "missing.yml", env={})

    payload = config.to_dict()

    assert payload["accounts_root"] == "/srv/accounts"
    assert payload["nginx"]["bin"] == "nginx"  # type: ignore[index]
    assert payload["phpfpm"]["versions"] == list(SUPPORTED_PHP_VERSIONS)  # type: ignore[index]
