"""Tests for service config regeneration and stale config cleanup."""
from __future__ import annotations

import pytest

from owehost.config import AppConfig
from owehost.errors import OSExecError
from owehost.events import EventFilter
from owehost.models import Site, plan_limits
from owehost.recovery import GenerateOptions
from owehost.services import Services, build_services

from conftest import ChownRecorder, FakeRunner, make_identity


def _restore(services: Services, tenant_id: int, name: str, *sites: Site) -> None:
    """Lay down descriptors the way a restored backup would."""
    services.tenants.create_tenant_skeleton(tenant_id)
    services.tenants.write_identity(tenant_id, make_identity(tenant_id, name, state="active"))
    services.tenants.write_limits(tenant_id, plan_limits("starter"))
    for site in sites:
        services.sites.write_site(tenant_id, site)


def test_generate_all_writes_and_reloads(services: Services, fake_runner: FakeRunner) -> None:
    """Vhosts, pools and cgroups are rebuilt, then nginx and PHP-FPM reload."""
    _restore(
        services,
        10001,
        "alice",
        Site(domain="a.example.com", runtime="php-8.2"),
        Site(domain="b.example.com"),
    )

    result = services.generator.generate_all()

    layout = services.layout
    assert result.errors == []
    assert result.tenants_processed == 1
    assert result.users_ensured == 1
    assert result.cgroups_written == 1
    assert result.nginx_configs == ["a-10001-a.example.com.conf", "a-10001-b.example.com.conf"]
    assert result.phpfpm_pools == [str(layout.pool_path("8.2", 10001, "a.example.com"))]
    assert layout.vhost_enabled(10001, "b.example.com").is_symlink()
    assert layout.pool_path("8.2", 10001, "a.example.com").is_file()
    assert result.reloaded == ["nginx", "php8.1-fpm", "php8.2-fpm"]
    test_index = fake_runner.calls.index(["nginx", "-t"])
    assert fake_runner.calls[test_index + 1] == ["nginx", "-s", "reload"]
    assert result.to_dict()["accounts_processed"] == 1


def test_generate_dry_run_touches_nothing(services: Services, fake_runner: FakeRunner) -> None:
    """A dry run reports what it would write without running anything."""
    _restore(services, 10001, "alice", Site(domain="a.example.com", runtime="php-8.1"))

    result = services.generator.generate_all(GenerateOptions(dry_run=True))

    assert result.dry_run is True
    assert result.nginx_configs == ["a-10001-a.example.com.conf"]
    assert len(result.phpfpm_pools) == 1
    assert result.reloaded == []
    assert fake_runner.calls == []
    assert not services.layout.vhost_available(10001, "a.example.com").exists()
    assert not services.layout.cgroup_path(10001).exists()


def test_failed_config_test_is_fatal(config: AppConfig) -> None:
    """A rejected nginx configuration raises and nothing is reloaded."""
    runner = FakeRunner({("nginx", "-t"): 1})
    services = build_services(config, runner=runner, chown=ChownRecorder(), manage_users=False)
    _restore(services, 10001, "alice", Site(domain="a.example.com"))

    with pytest.raises(OSExecError):
        services.generator.generate_all()

    assert ["nginx", "-s", "reload"] not in runner.calls
    assert "systemctl" not in runner.programs()


def test_generate_collects_tenant_errors(config: AppConfig) -> None:
    """Tenants without identity and failing user creation are reported, not raised."""
    runner = FakeRunner({"id": 1, "useradd": 1})
    services = build_services(config, runner=runner, chown=ChownRecorder(), manage_users=False)
    _restore(services, 10001, "alice", Site(domain="a.example.com"))
    services.tenants.create_tenant_skeleton(10002)

    result = services.generator.generate_all()

    assert result.tenants_processed == 2
    assert "account 10002: missing account.json" in result.errors
    assert any(error.startswith("account 10001: user alice: ") for error in result.errors)
    assert result.nginx_configs == ["a-10001-a.example.com.conf"]


def test_generate_skip_options(services: Services, fake_runner: FakeRunner) -> None:
    """Each part of the run can be switched off."""
    _restore(services, 10001, "alice", Site(domain="a.example.com", runtime="php-8.2"))

    result = services.generator.generate_all(
        GenerateOptions(skip_nginx=True, skip_phpfpm=True, skip_users=True, skip_cgroups=True)
    )

    assert result.nginx_configs == []
    assert result.phpfpm_pools == []
    assert result.users_ensured == 0
    assert result.cgroups_written == 0
    assert result.reloaded == []
    assert fake_runner.calls == []


def test_generate_single_tenant(services: Services) -> None:
    """Restricting the run to one tenant leaves the others alone."""
    _restore(services, 10001, "alice", Site(domain="a.example.com"))
    _restore(services, 10002, "bobby", Site(domain="b.example.com"))

    result = services.generator.generate_all(GenerateOptions(tenant_id=10002))

    assert result.nginx_configs == ["a-10002-b.example.com.conf"]
    assert not services.layout.vhost_available(10001, "a.example.com").exists()


def test_cleanup_stale_configs(services: Services) -> None:
    """Configs for sites that no longer exist are removed with their links."""
    _restore(services, 10001, "alice", Site(domain="x.example.com"))
    _restore(services, 10002, "bobby", Site(domain="z.example.com"))
    for tenant_id, domain in ((10001, "x"), (10001, "y"), (10002, "z")):
        services.nginx.install_site(tenant_id, f"{domain}.example.com", b"server {}\n")

    assert services.generator.cleanup_stale_configs(dry_run=True) == ["a-10001-y.example.com.conf"]
    assert services.layout.vhost_available(10001, "y.example.com").exists()

    removed = services.generator.cleanup_stale_configs()

    layout = services.layout
    assert removed == ["a-10001-y.example.com.conf"]
    assert not layout.vhost_available(10001, "y.example.com").exists()
    assert not layout.vhost_enabled(10001, "y.example.com").is_symlink()
    assert layout.vhost_enabled(10001, "x.example.com").is_symlink()
    assert layout.vhost_available(10002, "z.example.com").exists()
    assert services.generator.expected_configs() == {
        "a-10001-x.example.com.conf",
        "a-10002-z.example.com.conf",
    }


def test_main_include(services: Services) -> None:
    """The include is written once and points at sites-enabled."""
    layout = services.layout

    assert services.generator.generate_main_nginx_include(dry_run=True) is False
    assert not layout.main_include().exists()

    assert services.generator.generate_main_nginx_include() is True
    assert services.generator.generate_main_nginx_include() is False
    content = layout.main_include().read_text(encoding="utf-8")
    assert f"include {layout.sites_enabled}/a-*.conf;" in content


def test_generate_uses_the_tenant_home(config: AppConfig) -> None:
    """Recreated users get the same home directory a fresh apply gives them."""
    runner = FakeRunner({"id": 1})
    services = build_services(config, runner=runner, chown=ChownRecorder(), manage_users=False)
    _restore(services, 10001, "alice")

    services.generator.generate_all(
        GenerateOptions(skip_nginx=True, skip_phpfpm=True, skip_cgroups=True)
    )

    useradd = next(call for call in runner.calls if call[0] == "useradd")
    home = useradd[useradd.index("--home-dir") + 1]
    assert home == str(services.layout.tenant_path(10001) / "home")


def test_cleanup_keeps_configs_of_unreadable_sites(services: Services) -> None:
    """A site whose descriptor is corrupt keeps its live vhost."""
    _restore(services, 10001, "alice", Site(domain="acme.test"))
    services.nginx.install_site(10001, "acme.test", b"server {}\n")
    site_file = services.layout.site_path(10001, "acme.test") / "site.json"
    site_file.write_text("{broken", encoding="utf-8")

    assert services.generator.cleanup_stale_configs() == []
    assert services.layout.vhost_available(10001, "acme.test").exists()
    assert services.layout.vhost_enabled(10001, "acme.test").is_symlink()


def test_cleanup_skips_tenants_with_scan_errors(services: Services) -> None:
    """Stale-looking configs survive while their tenant's scan reports errors."""
    _restore(services, 10001, "alice", Site(domain="x.example.com"))
    services.nginx.install_site(10001, "gone.example.com", b"server {}\n")
    limits = services.layout.descriptor_path(10001, "limits.json")
    limits.write_text("{", encoding="utf-8")

    assert services.generator.cleanup_stale_configs() == []
    assert services.layout.vhost_available(10001, "gone.example.com").exists()

    services.tenants.write_limits(10001, plan_limits("starter"))
    assert services.generator.cleanup_stale_configs() == ["a-10001-gone.example.com.conf"]


def test_generate_records_service_restarts(services: Services) -> None:
    """Each reloaded service is audited; a dry run records nothing."""
    _restore(services, 10001, "alice", Site(domain="a.example.com", runtime="php-8.2"))

    services.generator.generate_all(GenerateOptions(dry_run=True))
    assert services.events.query(EventFilter(type="system.service.restart")) == []

    result = services.generator.generate_all()

    events = services.events.query(EventFilter(type="system.service.restart"))
    assert sorted(str(event.data["service"]) for event in events) == sorted(result.reloaded)
    assert {event.actor_type for event in events} == {"system"}
