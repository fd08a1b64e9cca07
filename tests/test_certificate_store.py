"""Tests for per-domain TLS material storage."""
from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from owehost.config import AppConfig
from owehost.errors import NotFoundError, ValidationError
from owehost.events import Emitter, EventStore
from owehost.models import CertificateMeta
from owehost.paths import Layout
from owehost.state import CertificateStore
from owehost.tls import TLSError, generate_self_signed


@pytest.fixture
def layout(config: AppConfig) -> Layout:
    return Layout.from_config(config)


@pytest.fixture
def store(layout: Layout) -> CertificateStore:
    return CertificateStore(layout, self_signed_days=10)


def _mode(path: object) -> int:
    return path.stat().st_mode & 0o777  # type: ignore[attr-defined]


@pytest.mark.mutation_timeout
def test_install_writes_material_with_modes(store: CertificateStore, layout: Layout) -> None:
    """Key pair, chain, full chain and meta are written with their modes."""
    cert, key = generate_self_signed("example.com", days=30)

    meta = store.install_certificate(1, "example.com", cert, key, b"CHAIN", auto_renew=True)

    directory = layout.tls_path(1, "example.com")
    assert _mode(directory) == 0o700
    assert _mode(directory / "cert.pem") == 0o644
    assert _mode(directory / "key.pem") == 0o600
    assert (directory / "chain.pem").read_bytes() == b"CHAIN"
    assert (directory / "fullchain.pem").read_bytes() == cert + b"CHAIN\n"
    assert meta.sans == ["example.com", "www.example.com"]
    assert meta.last_renewed is None
    assert store.read_meta(1, "example.com").auto_renew is True
    assert store.has_certificate(1, "example.com")


@pytest.mark.mutation_timeout
def test_reinstall_keeps_created_at_and_marks_renewal(store: CertificateStore) -> None:
    """Replacing material keeps the creation time and stamps the renewal."""
    cert, key = generate_self_signed("example.com", days=30)
    first = store.install_certificate(1, "example.com", cert, key)

    second = store.install_certificate(1, "example.com", cert, key)

    assert second.created_at == first.created_at
    assert second.last_renewed is not None


@pytest.mark.mutation_timeout
def test_mismatched_pair_writes_nothing(store: CertificateStore, layout: Layout) -> None:
    """A key that does not belong to the certificate is refused up front."""
    cert, _ = generate_self_signed("example.com", days=30)
    _, other_key = generate_self_signed("example.com", days=30)

    with pytest.raises(TLSError):
        store.install_certificate(1, "example.com", cert, other_key)

    assert not layout.tls_path(1, "example.com").exists()


@pytest.mark.mutation_timeout
def test_ensure_self_signed_reuses_existing(store: CertificateStore) -> None:
    """A placeholder is generated once and reused afterwards."""
    meta = store.ensure_self_signed(1, "example.com")

    assert meta is not None
    assert meta.type == "self-signed"
    assert store.ensure_self_signed(1, "example.com") is None


def test_expiring_only_reports_auto_renew(store: CertificateStore) -> None:
    """Certificates without auto-renew are never reported as expiring."""
    soon = (datetime.now(UTC) + timedelta(days=3)).isoformat().replace("+00:00", "Z")
    later = (datetime.now(UTC) + timedelta(days=90)).isoformat().replace("+00:00", "Z")
    store.write_meta(1, CertificateMeta(domain="a.com", auto_renew=True, valid_until=soon))
    store.write_meta(1, CertificateMeta(domain="b.com", auto_renew=False, valid_until=soon))
    store.write_meta(1, CertificateMeta(domain="c.com", auto_renew=True, valid_until=later))

    expiring = store.expiring_certificates(1, days=30)

    assert [meta.domain for meta in expiring] == ["a.com"]
    assert [meta.domain for meta in store.list_certificates(1)] == ["a.com", "b.com", "c.com"]


def test_remove_certificate(store: CertificateStore) -> None:
    """Removal deletes the domain directory once."""
    store.write_meta(1, CertificateMeta(domain="a.com"))

    assert store.remove_certificate(1, "a.com") is True
    assert store.remove_certificate(1, "a.com") is False
    with pytest.raises(NotFoundError):
        store.read_meta(1, "a.com")


def test_remove_certificate_stays_inside_ssl(store: CertificateStore, layout: Layout) -> None:
    """Names resolving outside ``ssl/`` are refused and nothing is removed."""
    store.write_meta(1, CertificateMeta(domain="a.com"))

    for name in ("..", "."):
        with pytest.raises(ValidationError):
            store.remove_certificate(1, name)

    assert layout.tls_path(1, "a.com").is_dir()


@pytest.mark.mutation_timeout
def test_install_then_replace_is_audited(layout: Layout, tmp_path: Path) -> None:
    """A first install is an installation; replacing existing material is a renewal."""
    events = EventStore(tmp_path / "events", tmp_path / "alerts")
    store = CertificateStore(layout, emitter=Emitter(events))
    cert, key = generate_self_signed("example.com", days=30)

    store.install_certificate(1, "example.com", cert, key, type="letsencrypt")
    store.install_certificate(1, "example.com", cert, key, type="letsencrypt")

    recorded = sorted(events.tenant_events(1), key=lambda event: event.type)
    assert [event.type for event in recorded] == ["ssl.install", "ssl.renew"]
    assert recorded[0].data == {"domain": "example.com", "ssl_type": "letsencrypt"}
    assert recorded[1].data == {"domain": "example.com"}
