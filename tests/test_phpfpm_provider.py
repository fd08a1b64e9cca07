"""Tests for the PHP-FPM provider."""
from __future__ import annotations

import pytest

from owehost.config import AppConfig
from owehost.paths import Layout
from owehost.providers import PhpFpmProvider, service_name

from conftest import FakeRunner


@pytest.fixture
def layout(config: AppConfig) -> Layout:
    return Layout.from_config(config)


def test_pools_live_under_version_pool_dir(layout: Layout, fake_runner: FakeRunner) -> None:
    """Pools are written per version and stale versions can be cleared."""
    provider = PhpFpmProvider(layout, fake_runner, versions=("8.1", "8.2"))

    assert provider.write_pool("8.1", 1, "a.com", b"[pool]\n") is True
    assert provider.write_pool("8.1", 1, "a.com", b"[pool]\n") is False
    provider.write_pool("8.2", 1, "a.com", b"[pool]\n")

    path = layout.php_root / "8.1" / "fpm" / "pool.d" / "a-1-a.com.conf"
    assert path.read_bytes() == b"[pool]\n"
    assert provider.remove_stale_pools(1, "a.com", keep="8.2") == ["8.1"]
    assert provider.remove_pools(1, "a.com") == ["8.2"]
    assert provider.remove_pools(1, "a.com") == []


def test_reload_active_only_touches_running_units(
    layout: Layout,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Inactive versions are skipped."""
    runner = FakeRunner()
    calls: list[str] = []

    def fake_active(self: PhpFpmProvider, version: str) -> bool:
        calls.append(version)
        return version == "8.2"

    provider = PhpFpmProvider(layout, runner, versions=("8.1", "8.2"))
    monkeypatch.setattr(PhpFpmProvider, "is_active", fake_active)

    outcome = provider.reload_active()

    assert calls == ["8.1", "8.2"]
    assert outcome.reloaded == ["php8.2-fpm"]
    assert runner.calls == [["systemctl", "reload", "php8.2-fpm"]]


def test_reload_failures_become_warnings(layout: Layout) -> None:
    """A failing reload is reported, not raised."""
    runner = FakeRunner({("systemctl", "reload"): 1})
    provider = PhpFpmProvider(layout, runner, versions=("8.1",))

    outcome = provider.reload_active()

    assert outcome.reloaded == []
    assert outcome.warnings and outcome.warnings[0].startswith("php8.1-fpm reload:")
    assert outcome.to_dict()["warnings"] == outcome.warnings


def test_is_active_uses_systemctl(layout: Layout) -> None:
    """A non-zero ``is-active`` means the unit is not running."""
    runner = FakeRunner({("systemctl", "is-active"): 3})
    provider = PhpFpmProvider(layout, runner)

    assert provider.is_active("8.3") is False
    assert runner.calls == [["systemctl", "is-active", "php8.3-fpm"]]
    assert service_name("7.4") == "php7.4-fpm"
