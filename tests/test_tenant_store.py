"""Tests for tenant descriptors, the skeleton and site descriptors."""
from __future__ import annotations

import json

import pytest

from owehost.config import AppConfig
from owehost.errors import AbortedError, CorruptError, NotFoundError, ValidationError
from owehost.locking import CancelToken
from owehost.models import Limits, Metadata, PHPSettings, Site, Status, plan_limits
from owehost.paths import SKELETON_DIRS, Layout
from owehost.state import SiteStore, TenantStore

from conftest import make_identity


@pytest.fixture
def layout(config: AppConfig) -> Layout:
    return Layout.from_config(config)


@pytest.fixture
def store(layout: Layout) -> TenantStore:
    return TenantStore(layout)


@pytest.fixture
def sites(layout: Layout, store: TenantStore) -> SiteStore:
    return SiteStore(layout, store.locks)


def test_skeleton_lifecycle(store: TenantStore, layout: Layout) -> None:
    """Creating twice is idempotent and deleting removes the whole tree."""
    assert store.create_tenant_skeleton(10001) is True
    assert store.create_tenant_skeleton(10001) is False

    root = layout.tenant_path(10001)
    for relative in SKELETON_DIRS:
        assert (root / relative).is_dir()
    assert store.exists_tenant(10001)

    assert store.delete_tenant_skeleton(10001) is True
    assert store.delete_tenant_skeleton(10001) is False
    assert not root.exists()


def test_skeleton_honours_cancellation(store: TenantStore, layout: Layout) -> None:
    """A cancelled token stops skeleton creation before anything is written."""
    token = CancelToken()
    token.cancel()

    with pytest.raises(AbortedError):
        store.create_tenant_skeleton(10001, cancel=token)

    assert not layout.tenant_path(10001).exists()


def test_list_tenants_ignores_foreign_entries(store: TenantStore, layout: Layout) -> None:
    """Only ``a-<id>`` directories are tenants."""
    for name in ("a-10002", "a-10001", "a-x", "lost+found"):
        (layout.accounts_root / name).mkdir(parents=True)
    (layout.accounts_root / "a-10003").write_text("file", encoding="utf-8")

    assert store.list_tenants() == [10001, 10002]
    assert store.next_tenant_id() == 10003


def test_next_tenant_id_starts_at_minimum(store: TenantStore) -> None:
    """An empty accounts root hands out the first id."""
    assert store.list_tenants() == []
    assert store.next_tenant_id() == 10001


def test_descriptor_round_trip(store: TenantStore) -> None:
    """Every tenant-level descriptor reads back as written."""
    store.create_tenant_skeleton(10001)
    identity = make_identity(10001, "alice", plan="premium")
    store.write_identity(10001, identity)
    store.write_limits(10001, plan_limits("premium"))
    store.write_status(10001, Status(suspended=True, reason="billing"))
    store.write_metadata(10001, Metadata(email="alice@example.com", tags=["vip"]))

    record = store.read_tenant(10001)

    assert record.identity == identity
    assert record.limits == plan_limits("premium")
    assert record.status.reason == "billing"
    assert record.metadata.tags == ["vip"]
    assert record.metadata.updated_at


def test_read_tenant_fills_defaults(store: TenantStore) -> None:
    """Only the identity is required; the rest falls back to defaults."""
    store.create_tenant_skeleton(10001)
    store.write_identity(10001, make_identity(10001, "alice", plan="standard"))

    record = store.read_tenant(10001)

    assert record.limits == plan_limits("standard")
    assert record.status == Status()
    assert record.metadata == Metadata()
    assert store.read_limits(10001) is None


def test_missing_and_corrupt_descriptors(store: TenantStore, layout: Layout) -> None:
    """Absent identities are not found and schema violations are corruption."""
    with pytest.raises(NotFoundError):
        store.read_identity(10001)

    store.create_tenant_skeleton(10001)
    path = layout.tenant_path(10001) / "limits.json"
    path.write_text(json.dumps({"disk_mb": "lots"}), encoding="utf-8")

    with pytest.raises(CorruptError) as excinfo:
        store.read_limits(10001)
    assert excinfo.value.path == path


@pytest.mark.parametrize(
    ("filename", "reader", "payload"),
    [
        (
            "account.json",
            "read_identity",
            {"id": 10001, "name": "NOT VALID!", "uid": 5, "gid": 5, "state": "bogus"},
        ),
        ("limits.json", "read_limits", {**plan_limits("starter").to_dict(), "cpu_percent": 9000}),
        ("status.json", "read_status", {"suspended": True, "suspended_at": "yesterday"}),
        ("metadata.json", "read_metadata", {"email": "not-an-email"}),
    ],
)
def test_descriptors_breaking_invariants_are_corrupt(
    store: TenantStore,
    layout: Layout,
    filename: str,
    reader: str,
    payload: dict[str, object],
) -> None:
    """A descriptor that parses but fails validation is reported as corrupt."""
    store.create_tenant_skeleton(10001)
    path = layout.descriptor_path(10001, filename)
    path.write_text(json.dumps(payload), encoding="utf-8")

    with pytest.raises(CorruptError) as excinfo:
        getattr(store, reader)(10001)
    assert excinfo.value.path == path


def test_invalid_site_descriptor_is_corrupt(sites: SiteStore, layout: Layout) -> None:
    """A site.json with an unsupported runtime cannot be read back."""
    sites.write_site(10001, Site(domain="example.com"))
    path = layout.site_path(10001, "example.com") / "site.json"
    payload = json.loads(path.read_text(encoding="utf-8"))
    payload["runtime"] = "cobol-85"
    path.write_text(json.dumps(payload), encoding="utf-8")

    with pytest.raises(CorruptError):
        sites.read_site(10001, "example.com")
    assert sites.list_domains(10001) == []


def test_write_site_creates_directories_and_keeps_created_at(
    sites: SiteStore,
    layout: Layout,
) -> None:
    """Site writes create the tree and preserve the creation time."""
    site = Site(domain="example.com", runtime="php-8.2", settings=PHPSettings(version="8.2"))
    sites.write_site(10001, site)
    created = sites.read_site(10001, "example.com").created_at

    site_path = layout.site_path(10001, "example.com")
    for sub in ("public", "logs", "tmp", "cache"):
        assert (site_path / sub).is_dir()

    sites.write_site(10001, Site(domain="example.com", runtime="static"))
    again = sites.read_site(10001, "example.com")

    assert again.created_at == created
    assert again.runtime == "static"
    assert sites.list_domains(10001) == ["example.com"]


def test_document_root_may_not_escape(sites: SiteStore, layout: Layout) -> None:
    """A symlinked document root pointing outside the site is refused."""
    site_path = layout.site_path(10001, "example.com")
    site_path.mkdir(parents=True)
    outside = layout.accounts_root / "elsewhere"
    outside.mkdir()
    (site_path / "public").symlink_to(outside)

    with pytest.raises(ValidationError):
        sites.write_site(10001, Site(domain="example.com"))


def test_list_sites_skips_unreadable(sites: SiteStore, layout: Layout) -> None:
    """Directories without a valid descriptor are left out of the listing."""
    sites.write_site(10001, Site(domain="b.example.com"))
    sites.write_site(10001, Site(domain="a.example.com"))
    (layout.site_path(10001, "broken.com")).mkdir(parents=True)

    assert sites.list_domains(10001) == ["a.example.com", "b.example.com"]
    assert sites.site_directories(10001) == ["a.example.com", "b.example.com", "broken.com"]
    assert sites.delete_site(10001, "broken.com") is True
    assert sites.delete_site(10001, "broken.com") is False


def test_delete_site_stays_inside_web(sites: SiteStore, layout: Layout) -> None:
    """Names resolving outside ``web/`` are refused and nothing is removed."""
    sites.write_site(10001, Site(domain="example.com"))

    for name in ("..", "."):
        with pytest.raises(ValidationError):
            sites.delete_site(10001, name)

    assert layout.site_path(10001, "example.com").is_dir()


def test_default_index_only_for_empty_root(sites: SiteStore, layout: Layout) -> None:
    """The placeholder page never overwrites tenant content."""
    site = Site(domain="example.com")
    sites.write_site(10001, site)

    assert sites.create_default_index(10001, site, b"hello") is True
    assert sites.create_default_index(10001, site, b"other") is False

    index = layout.site_path(10001, "example.com") / "public" / "index.html"
    assert index.read_bytes() == b"hello"


def test_limits_from_store_are_limits(store: TenantStore) -> None:
    """Written limits keep their type."""
    store.create_tenant_skeleton(1)
    store.write_limits(1, Limits(100, 10, 128, 0, 1, 0, 0, 0, 0, 0))

    limits = store.read_limits(1)

    assert isinstance(limits, Limits)
    assert limits.ram_mb == 128
