"""Tests for the YAML index registry."""
from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from owehost.models import CertificateMeta, Site
from owehost.recovery import TenantSnapshot
from owehost.state import IndexRegistry, RegistryError

from conftest import make_identity


def _snapshot(tenant_id: int, name: str) -> TenantSnapshot:
    return TenantSnapshot(
        tenant_id=tenant_id,
        path=Path("/srv/accounts") / f"a-{tenant_id}",
        identity=make_identity(tenant_id, name, state="active"),
    )


def test_missing_index_reads_empty(tmp_path: Path) -> None:
    """An absent index is an empty tenant list."""
    registry = IndexRegistry(tmp_path / "registry")

    assert registry.read() == {"tenants": []}
    assert registry.list_tenants() == []
    assert registry.get_tenant(1) is None


def test_upsert_tenant_and_children(tmp_path: Path) -> None:
    """Tenant records collect domains, TLS and databases in sorted order."""
    registry = IndexRegistry(tmp_path / "registry")
    registry.upsert_tenant(_snapshot(2, "bob"))
    registry.upsert_tenant(_snapshot(1, "alice"))
    registry.upsert_domain(1, Site(domain="b.com", runtime="php-8.2"))
    registry.upsert_domain(1, Site(domain="a.com"))
    registry.upsert_domain(1, Site(domain="a.com", ssl=True))
    registry.upsert_tls(1, "a.com", CertificateMeta(domain="a.com", type="self-signed"))
    registry.upsert_database(1, "shop", "mysql")

    data = yaml.safe_load(registry.path.read_text(encoding="utf-8"))
    assert [entry["id"] for entry in data["tenants"]] == [1, 2]
    alice = data["tenants"][0]
    assert alice["name"] == "alice"
    assert alice["uid"] == 10001
    assert [child["domain"] for child in alice["domains"]] == ["a.com", "b.com"]
    assert alice["domains"][0]["ssl"] is True
    assert alice["tls"] == [{"domain": "a.com", "type": "self-signed", "valid_until": None}]
    assert alice["databases"] == [{"name": "shop", "engine": "mysql"}]
    assert registry.path.stat().st_mode & 0o777 == 0o640
    assert registry.get_tenant(1).state == "active"  # type: ignore[union-attr]
    assert registry.domain_exists(1, "b.com")


def test_children_require_indexed_tenant(tmp_path: Path) -> None:
    """Child records cannot be added for unknown tenants."""
    registry = IndexRegistry(tmp_path / "registry")

    with pytest.raises(RegistryError):
        registry.upsert_domain(9, Site(domain="a.com"))
    with pytest.raises(RegistryError):
        registry.upsert_tenant(TenantSnapshot(tenant_id=9, path=tmp_path))


def test_delete_stale_records_and_remove_tenant(tmp_path: Path) -> None:
    """Stale domains are returned and removed; tenants can be dropped."""
    registry = IndexRegistry(tmp_path / "registry")
    registry.upsert_tenant(_snapshot(1, "alice"))
    for domain in ("a.com", "b.com", "c.com"):
        registry.upsert_domain(1, Site(domain=domain))

    removed = registry.delete_stale_records(1, ["b.com"])

    assert removed == ["a.com", "c.com"]
    assert registry.list_domains(1) == ["b.com"]
    assert registry.delete_stale_records(1, ["b.com"]) == []
    assert registry.remove_tenant(1) is True
    assert registry.remove_tenant(1) is False


def test_malformed_index_raises(tmp_path: Path) -> None:
    """Unparseable or oddly shaped documents are registry errors."""
    registry = IndexRegistry(tmp_path)
    registry.path.write_text("tenants: {not: a list}\n", encoding="utf-8")

    with pytest.raises(RegistryError):
        registry.read()

    registry.path.write_text("tenants: [\n", encoding="utf-8")
    with pytest.raises(RegistryError):
        registry.read()
