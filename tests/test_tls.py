"""Unit tests for TLS helper utilities."""
from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from owehost.tls import (
    SELF_SIGNED_ORGANIZATION,
    TLSError,
    build_fullchain,
    check_key_pair,
    generate_self_signed,
    inspect_certificate,
)


@pytest.fixture(scope="module")
def pair() -> tuple[bytes, bytes]:
    return generate_self_signed(
        "example.com", days=30, now=datetime(2024, 1, 1, tzinfo=UTC)
    )


@pytest.mark.mutation_timeout
def test_self_signed_certificate_details(pair: tuple[bytes, bytes]) -> None:
    """Generated certificates cover the domain and its www alias."""
    cert_pem, key_pem = pair

    details = inspect_certificate(cert_pem)

    assert details.sans == ("example.com", "www.example.com")
    assert "CN=example.com" in details.subject
    assert SELF_SIGNED_ORGANIZATION in details.issuer
    assert details.not_valid_after - details.not_valid_before == timedelta(days=30, minutes=5)
    assert details.valid_until == "2024-01-31T00:00:00Z"
    check_key_pair(cert_pem, key_pem)


@pytest.mark.mutation_timeout
def test_ip_address_certificate() -> None:
    """An IP address is placed in an IP SAN."""
    cert_pem, _ = generate_self_signed("10.0.0.5", days=1)

    assert inspect_certificate(cert_pem).sans == ("10.0.0.5",)


@pytest.mark.mutation_timeout
def test_check_key_pair_rejects_mismatch(pair: tuple[bytes, bytes]) -> None:
    """A key from another pair does not match."""
    cert_pem, _ = pair
    _, other_key = generate_self_signed("other.com", days=1)

    with pytest.raises(TLSError, match="does not match"):
        check_key_pair(cert_pem, other_key)


def test_unparseable_material_raises() -> None:
    """Garbage input is reported as a TLS error."""
    with pytest.raises(TLSError):
        inspect_certificate(b"not a certificate")
    with pytest.raises(TLSError):
        check_key_pair(b"not a certificate", b"not a key")


def test_build_fullchain_terminates_parts() -> None:
    """Each part of the full chain ends with a newline."""
    assert build_fullchain(b"CERT", b"CHAIN") == b"CERT\nCHAIN\n"
    assert build_fullchain(b"CERT\n", None) == b"CERT\n"
