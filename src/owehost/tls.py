"""Certificate inspection and self-signed generation with ``cryptography``."""
from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Protocol, cast

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from .models import timestamp

SELF_SIGNED_ORGANIZATION = "OweHost Self-Signed"


class TLSError(RuntimeError):
    """Raised when certificate material cannot be parsed or generated."""


class PublicKeyProtocol(Protocol):
    """Protocol covering public keys exposing ``public_bytes``."""

    def public_bytes(
        self,
        *,
        encoding: serialization.Encoding,
        format: serialization.PublicFormat,
    ) -> bytes:
        """Return the public key bytes in the requested encoding/format."""


class PrivateKeyProtocol(Protocol):
    """Protocol for private keys that can provide a matching public key."""

    def public_key(self) -> PublicKeyProtocol:
        """Return the associated public key object."""


@dataclass(frozen=True)
class CertificateDetails:
    """Fields extracted from a certificate for the TLS meta descriptor."""

    issuer: str
    subject: str
    sans: tuple[str, ...]
    not_valid_before: datetime
    not_valid_after: datetime

    @property
    def valid_from(self) -> str:
        """Return the start of validity as an RFC 3339 string."""
        return timestamp(self.not_valid_before)

    @property
    def valid_until(self) -> str:
        """Return the end of validity as an RFC 3339 string."""
        return timestamp(self.not_valid_after)


def load_certificate(data: bytes) -> x509.Certificate:
    """Parse a PEM (or DER) certificate."""
    try:
        return x509.load_pem_x509_certificate(data)
    except ValueError:
        try:
            return x509.load_der_x509_certificate(data)
        except ValueError as exc:
            raise TLSError(f"Failed to parse certificate: {exc}") from exc


def load_private_key(data: bytes) -> PrivateKeyProtocol:
    """Parse an unencrypted PEM private key."""
    try:
        private_key = serialization.load_pem_private_key(data, password=None)
    except (ValueError, TypeError) as exc:
        raise TLSError(f"Failed to parse private key: {exc}") from exc
    return cast(PrivateKeyProtocol, private_key)


def public_keys_match(cert: x509.Certificate, private_key: PrivateKeyProtocol) -> bool:
    """Return True when *private_key* belongs to *cert*."""
    cert_bytes = cert.public_key().public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    key_bytes = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return cert_bytes == key_bytes


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)


def inspect_certificate(data: bytes) -> CertificateDetails:
    """Return issuer, subject, SANs and validity window of a certificate."""
    cert = load_certificate(data)
    try:
        extension = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        sans: list[str] = []
    else:
        names = extension.value
        sans = [str(name) for name in names.get_values_for_type(x509.DNSName)]
        sans.extend(str(address) for address in names.get_values_for_type(x509.IPAddress))
    not_before = getattr(cert, "not_valid_before_utc", None)
    not_after = getattr(cert, "not_valid_after_utc", None)
    if not isinstance(not_before, datetime) or not isinstance(not_after, datetime):
        not_before = _as_utc(cert.not_valid_before)
        not_after = _as_utc(cert.not_valid_after)
    return CertificateDetails(
        issuer=cert.issuer.rfc4514_string(),
        subject=cert.subject.rfc4514_string(),
        sans=tuple(sans),
        not_valid_before=not_before,
        not_valid_after=not_after,
    )


def check_key_pair(cert_pem: bytes, key_pem: bytes) -> None:
    """Raise :class:`TLSError` unless the certificate and key parse and match."""
    cert = load_certificate(cert_pem)
    key = load_private_key(key_pem)
    if not public_keys_match(cert, key):
        raise TLSError("Certificate does not match the provided key.")


def build_fullchain(cert_pem: bytes, chain_pem: bytes | None) -> bytes:
    """Concatenate certificate and chain, each terminated by a newline."""
    parts = [cert_pem if cert_pem.endswith(b"\n") else cert_pem + b"\n"]
    if chain_pem:
        parts.append(chain_pem if chain_pem.endswith(b"\n") else chain_pem + b"\n")
    return b"".join(parts)


def generate_self_signed(
    domain: str,
    *,
    days: int = 365,
    now: datetime | None = None,
) -> tuple[bytes, bytes]:
    """Return ``(cert_pem, key_pem)`` for a self-signed certificate covering *domain*."""
    now = now or datetime.now(UTC)
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name(
        [
            x509.NameAttribute(NameOID.COMMON_NAME, domain),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, SELF_SIGNED_ORGANIZATION),
        ]
    )
    alt_names: list[x509.GeneralName] = []
    try:
        alt_names.append(x509.IPAddress(ipaddress.ip_address(domain)))
    except ValueError:
        alt_names.append(x509.DNSName(domain))
        alt_names.append(x509.DNSName(f"www.{domain}"))
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=5))
        .not_valid_after(now + timedelta(days=days))
        .add_extension(x509.SubjectAlternativeName(alt_names), critical=False)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(
            x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]),
            critical=False,
        )
        .sign(key, hashes.SHA256())
    )
    cert_pem = certificate.public_bytes(serialization.Encoding.PEM)
    key_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return cert_pem, key_pem


__all__ = [
    "CertificateDetails",
    "SELF_SIGNED_ORGANIZATION",
    "TLSError",
    "build_fullchain",
    "check_key_pair",
    "generate_self_signed",
    "inspect_certificate",
    "load_certificate",
    "load_private_key",
    "public_keys_match",
]
