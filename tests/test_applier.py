"""Tests for the tenant and site reconciler."""
from __future__ import annotations

import pytest

from owehost.applier import DesiredState
from owehost.config import AppConfig
from owehost.errors import (
    AbortedError,
    AlreadyExistsError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from owehost.events import EventFilter
from owehost.locking import CancelToken
from owehost.models import Limits, Metadata, PHPSettings, Site, Status, plan_limits
from owehost.services import Services, build_services

from conftest import ChownRecorder, FakeRunner, make_identity


def _create(services: Services, tenant_id: int = 10001, name: str = "alice") -> None:
    services.applier.apply(tenant_id, DesiredState(identity=make_identity(tenant_id, name)))


def _event_types(services: Services, tenant_id: int) -> list[str]:
    events = services.events.query(EventFilter(tenant_id=tenant_id))
    return sorted(event.type for event in events)


# ----------------------------------------------------------------------
# DesiredState
# ----------------------------------------------------------------------
def test_desired_state_from_dict() -> None:
    """Only the four known parts are accepted."""
    desired = DesiredState.from_dict(
        {"identity": make_identity(1, "alice").to_dict(), "metadata": {"notes": "vip"}}
    )

    assert desired.identity is not None
    assert desired.limits is None
    assert desired.metadata == Metadata(notes="vip")
    assert set(desired.to_dict()) == {"identity", "metadata"}

    with pytest.raises(ValidationError, match="unknown keys: sites"):
        DesiredState.from_dict({"sites": []})
    with pytest.raises(ValidationError):
        DesiredState.from_dict({"limits": "big"})


# ----------------------------------------------------------------------
# Tenants
# ----------------------------------------------------------------------
def test_first_apply_creates_tenant(services: Services, chown_recorder: ChownRecorder) -> None:
    """A new tenant gets a skeleton, descriptors, ownership, limits and an event."""
    result = services.applier.apply(10001, DesiredState(identity=make_identity(10001, "alice")))

    assert result.created is True
    assert result.steps == ["skeleton", "descriptors", "ownership", "limits"]
    assert result.state == "active"
    assert result.warnings == []
    record = services.tenants.read_tenant(10001)
    assert record.identity.state == "active"
    assert record.identity.created_at
    assert record.limits == plan_limits("starter")
    assert services.tenants.read_status(10001) == Status()
    root = services.layout.tenant_path(10001)
    assert (root / "home", 20001, 20001) in chown_recorder.calls
    assert (root / "logs", 0, 20001) in chown_recorder.calls
    assert services.layout.cgroup_path(10001).joinpath("cpu.max").is_file()

    events = services.events.query(EventFilter(tenant_id=10001))
    assert [event.type for event in events] == ["account.create"]
    assert events[0].data == {"account_name": "alice"}
    assert events[0].id == result.event_id


def test_reapply_is_idempotent(services: Services) -> None:
    """A second apply reconciles without a second creation event."""
    _create(services)
    created_at = services.tenants.read_identity(10001).created_at

    limits = plan_limits("premium")
    result = services.applier.apply(
        10001,
        DesiredState(identity=make_identity(10001, "alice", plan="premium"), limits=limits),
    )

    assert result.created is False
    identity = services.tenants.read_identity(10001)
    assert identity.created_at == created_at
    assert identity.plan == "premium"
    assert services.tenants.read_limits(10001) == limits
    assert _event_types(services, 10001) == ["account.create", "account.update"]


def test_apply_without_identity_only_for_existing(services: Services) -> None:
    """Existing tenants can be reconciled from disk; new ones need an identity."""
    with pytest.raises(ValidationError) as excinfo:
        services.applier.apply(10001, DesiredState())
    assert excinfo.value.field == "identity"
    assert not services.tenants.exists_tenant(10001)

    _create(services)
    result = services.applier.apply(10001, DesiredState(metadata=Metadata(email="a@b.co")))

    assert result.created is False
    assert services.tenants.read_metadata(10001).email == "a@b.co"  # type: ignore[union-attr]


def test_apply_rejects_invalid_desired_state(services: Services) -> None:
    """Validation runs before anything touches the disk."""
    wrong_uid = make_identity(10001, "alice", uid=5000)
    with pytest.raises(ValidationError):
        services.applier.apply(10001, DesiredState(identity=wrong_uid))
    bad_limits = Limits(1, 50, 512, 3, 5, 10, 10, 3, 50, 100000)
    with pytest.raises(ValidationError):
        services.applier.apply(
            10001,
            DesiredState(identity=make_identity(10001, "alice"), limits=bad_limits),
        )

    assert not services.tenants.exists_tenant(10001)


def test_tenant_names_are_unique(services: Services) -> None:
    """Two tenants cannot share a name."""
    _create(services, 10001, "alice")

    with pytest.raises(AlreadyExistsError):
        _create(services, 10002, "alice")


def test_apply_creates_posix_user_when_managed(config: AppConfig) -> None:
    """With user management on, a missing uid is created."""
    runner = FakeRunner({"id": 1})
    services = build_services(config, runner=runner, chown=ChownRecorder())

    result = services.applier.apply(10001, DesiredState(identity=make_identity(10001, "alice")))

    assert result.steps == ["skeleton", "posix-user", "descriptors", "ownership", "limits"]
    assert runner.programs()[:3] == ["id", "groupadd", "useradd"]
    useradd = runner.calls[2]
    assert useradd[useradd.index("--home-dir") + 1] == str(services.layout.home_path(10001))


def test_limit_failures_are_warnings(config: AppConfig) -> None:
    """setquota failing does not fail the apply."""
    services = build_services(
        config,
        runner=FakeRunner({"setquota": 1}),
        chown=ChownRecorder(),
        manage_users=False,
    )

    result = services.applier.apply(10001, DesiredState(identity=make_identity(10001, "alice")))

    assert result.state == "active"
    assert len(result.warnings) == 1
    assert "quota" in result.warnings[0]


def test_event_failure_is_a_warning(
    services: Services,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """The converged state is kept even when the event cannot be written."""

    def fail(event: object) -> None:
        raise StorageError("events disk full")

    monkeypatch.setattr(services.events, "save", fail)

    result = services.applier.apply(10001, DesiredState(identity=make_identity(10001, "alice")))

    assert result.event_id is None
    assert result.warnings == ["event not recorded: events disk full"]
    assert services.tenants.read_identity(10001).state == "active"


def test_cancelled_apply_changes_nothing(services: Services) -> None:
    """A cancelled token aborts before the first phase."""
    token = CancelToken()
    token.cancel()

    with pytest.raises(AbortedError):
        services.applier.apply(
            10001,
            DesiredState(identity=make_identity(10001, "alice")),
            cancel=token,
        )

    assert not services.tenants.exists_tenant(10001)


def test_suspend_unsuspend_terminate(services: Services) -> None:
    """Lifecycle transitions update identity state and status."""
    _create(services)

    services.applier.suspend(10001, "billing", "ops")
    status = services.tenants.read_status(10001)
    assert status is not None and status.suspended and status.suspended_by == "ops"
    assert services.tenants.read_identity(10001).state == "suspended"

    services.applier.unsuspend(10001, "ops")
    assert services.tenants.read_status(10001) == Status()
    assert services.tenants.read_identity(10001).state == "active"

    services.applier.terminate(10001, "abuse", "ops")
    status = services.tenants.read_status(10001)
    assert status is not None and status.locked and status.locked_reason == "abuse"
    with pytest.raises(ValidationError):
        services.applier.suspend(10001, "again", "ops")

    assert _event_types(services, 10001) == [
        "account.create",
        "account.suspend",
        "account.terminate",
        "account.unsuspend",
    ]


def test_transitions_require_tenant(services: Services) -> None:
    """Unknown tenants cannot be suspended."""
    with pytest.raises(NotFoundError):
        services.applier.suspend(10001, "billing")


def test_delete_removes_everything(services: Services) -> None:
    """Delete removes configs, cgroup and tree, and is harmless to repeat."""
    _create(services)
    services.applier.apply_site(10001, Site(domain="example.com", runtime="php-8.2"))

    assert services.applier.delete(10001, "ops") is True

    layout = services.layout
    assert not layout.tenant_path(10001).exists()
    assert not layout.cgroup_path(10001).exists()
    assert not layout.vhost_available(10001, "example.com").exists()
    assert not layout.pool_path("8.2", 10001, "example.com").exists()
    assert services.applier.delete(10001, "ops") is False
    assert "account.delete" in _event_types(services, 10001)


# ----------------------------------------------------------------------
# Sites
# ----------------------------------------------------------------------
def test_apply_site_writes_configs_and_index(
    services: Services,
    chown_recorder: ChownRecorder,
) -> None:
    """A PHP site gets a vhost, a pool, a default page and an event."""
    _create(services)
    site = Site(domain="example.com", runtime="php-8.2", settings=PHPSettings(version="8.2"))

    result = services.applier.apply_site(10001, site)

    layout = services.layout
    assert result.created is True
    assert result.index_created is True
    assert result.files == [
        str(layout.vhost_available(10001, "example.com")),
        str(layout.pool_path("8.2", 10001, "example.com")),
    ]
    assert layout.vhost_enabled(10001, "example.com").is_symlink()
    index = layout.site_path(10001, "example.com") / "public" / "index.html"
    assert "example.com" in index.read_text(encoding="utf-8")
    assert (index, 20001, 20001) in chown_recorder.calls
    assert "domain.add" in _event_types(services, 10001)


def test_reapply_site_switches_php_version(services: Services) -> None:
    """Changing the PHP version removes the old pool and keeps the content."""
    _create(services)
    services.applier.apply_site(10001, Site(domain="example.com", runtime="php-8.2"))
    index = services.layout.site_path(10001, "example.com") / "public" / "index.html"
    index.write_text("custom", encoding="utf-8")

    result = services.applier.apply_site(10001, Site(domain="example.com", runtime="php-8.1"))

    layout = services.layout
    assert result.created is False
    assert result.index_created is False
    assert index.read_text(encoding="utf-8") == "custom"
    assert layout.pool_path("8.1", 10001, "example.com").exists()
    assert not layout.pool_path("8.2", 10001, "example.com").exists()
    assert "domain.update" in _event_types(services, 10001)


def test_static_site_has_no_pool(services: Services) -> None:
    """Switching to a static runtime drops every pool."""
    _create(services)
    services.applier.apply_site(10001, Site(domain="example.com", runtime="php-8.2"))

    result = services.applier.apply_site(10001, Site(domain="example.com"))

    assert len(result.files) == 1
    assert not services.layout.pool_path("8.2", 10001, "example.com").exists()


def test_domain_belongs_to_one_tenant(services: Services) -> None:
    """A domain served by one tenant cannot be added to another."""
    _create(services, 10001, "alice")
    _create(services, 10002, "bobby")
    services.applier.apply_site(10001, Site(domain="example.com"))

    with pytest.raises(AlreadyExistsError):
        services.applier.apply_site(10002, Site(domain="example.com"))


def test_apply_site_requires_tenant(services: Services) -> None:
    """Sites need an existing tenant."""
    with pytest.raises(NotFoundError):
        services.applier.apply_site(10001, Site(domain="example.com"))


@pytest.mark.mutation_timeout
def test_ssl_site_gets_self_signed_certificate(services: Services) -> None:
    """SSL sites receive a placeholder certificate once."""
    _create(services)
    site = Site(domain="example.com", ssl=True, ssl_redirect=True)

    first = services.applier.apply_site(10001, site)
    second = services.applier.apply_site(10001, site)

    assert first.certificate == "self-signed"
    assert second.certificate == "existing"
    assert services.certificates.has_certificate(10001, "example.com")
    vhost = services.layout.vhost_available(10001, "example.com").read_text(encoding="utf-8")
    assert "return 301 https://" in vhost


def test_delete_site(services: Services) -> None:
    """Removing a site clears configs, pools, TLS and the directory."""
    _create(services)
    services.applier.apply_site(10001, Site(domain="example.com", runtime="php-8.2"))

    assert services.applier.delete_site(10001, "example.com") is True

    layout = services.layout
    assert not layout.site_path(10001, "example.com").exists()
    assert not layout.vhost_enabled(10001, "example.com").exists()
    assert not layout.pool_path("8.2", 10001, "example.com").exists()
    assert services.applier.delete_site(10001, "example.com") is False
    assert "domain.remove" in _event_types(services, 10001)


def test_invalid_document_root_writes_nothing(services: Services) -> None:
    """An escaping document root is rejected before the site directory exists."""
    _create(services)

    with pytest.raises(ValidationError):
        services.applier.apply_site(10001, Site(domain="acme.test", document_root="../etc"))

    assert not services.layout.site_path(10001, "acme.test").exists()
    assert not services.layout.vhost_available(10001, "acme.test").exists()


@pytest.mark.parametrize("domain", ["..", ".", "../../a-10002", "example.com/..", ""])
def test_delete_site_rejects_paths_outside_the_site(services: Services, domain: str) -> None:
    """Only a valid domain reaches the removal steps; the tenant tree survives."""
    _create(services)
    services.applier.apply_site(10001, Site(domain="example.com"))
    services.layout.tls_path(10001, "example.com").mkdir(parents=True)

    with pytest.raises(ValidationError):
        services.applier.delete_site(10001, domain)

    layout = services.layout
    assert layout.descriptor_path(10001, "account.json").is_file()
    assert layout.site_path(10001, "example.com").is_dir()
    assert layout.tls_path(10001, "example.com").is_dir()
    assert layout.vhost_enabled(10001, "example.com").is_symlink()
