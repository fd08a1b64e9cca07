"""TLS material stored under ``ssl/<domain>/``."""
from __future__ import annotations

import logging
import shutil
from datetime import timedelta

from ..atomic import (
    FILE_MODE,
    PRIVATE_FILE_MODE,
    SSL_DIR_MODE,
    ensure_dir,
    write_bytes,
    write_json,
)
from ..errors import CorruptError, NotFoundError, StorageError, ValidationError
from ..events.emitter import Emitter, record_safely
from ..locking import TenantLocks
from ..models import CertificateMeta, parse_timestamp, timestamp, utc_now
from ..paths import TLS_META_FILE, Layout, is_direct_child
from ..tls import build_fullchain, check_key_pair, generate_self_signed, inspect_certificate
from ..validators import validate_ssl_meta
from .store import load_descriptor

LOGGER = logging.getLogger(__name__)

CERT_FILE = "cert.pem"
KEY_FILE = "key.pem"
CHAIN_FILE = "chain.pem"
FULLCHAIN_FILE = "fullchain.pem"


class CertificateStore:
    """Install, inspect and remove per-domain certificates of a tenant."""

    def __init__(
        self,
        layout: Layout,
        locks: TenantLocks | None = None,
        *,
        self_signed_days: int = 365,
        emitter: Emitter | None = None,
    ) -> None:
        """Bind the store to *layout*."""
        self.layout = layout
        self.locks = locks or TenantLocks()
        self.self_signed_days = self_signed_days
        self.emitter = emitter

    # ------------------------------------------------------------------
    # Meta descriptor
    # ------------------------------------------------------------------
    def read_meta(self, tenant_id: int, domain: str) -> CertificateMeta:
        """Return ``meta.json`` for *domain*; raise :class:`NotFoundError` when absent."""
        path = self.layout.tls_path(tenant_id, domain) / TLS_META_FILE
        with self.locks.read(tenant_id):
            try:
                return load_descriptor(path, CertificateMeta.from_dict, validate_ssl_meta)
            except NotFoundError as exc:
                raise NotFoundError(f"No certificate metadata for {domain}") from exc

    def write_meta(self, tenant_id: int, meta: CertificateMeta) -> None:
        """Validate and atomically write ``meta.json``."""
        validate_ssl_meta(meta)
        directory = self.layout.tls_path(tenant_id, meta.domain)
        with self.locks.write(tenant_id):
            ensure_dir(directory, SSL_DIR_MODE)
            meta.updated_at = timestamp()
            if not meta.created_at:
                meta.created_at = meta.updated_at
            write_json(directory / TLS_META_FILE, meta.to_dict())

    # ------------------------------------------------------------------
    # Material
    # ------------------------------------------------------------------
    def install_certificate(
        self,
        tenant_id: int,
        domain: str,
        cert: bytes,
        key: bytes,
        chain: bytes | None = None,
        *,
        type: str = "custom",
        auto_renew: bool = False,
    ) -> CertificateMeta:
        """Write the key pair, optional chain, fullchain and meta descriptor.

        The certificate and key must parse and match before anything is
        written. Issuer, subject, SANs and the validity window in the meta
        descriptor come from the certificate itself.
        """
        check_key_pair(cert, key)
        details = inspect_certificate(cert)
        directory = self.layout.tls_path(tenant_id, domain)
        now = timestamp()
        meta = CertificateMeta(
            domain=domain,
            type=type,
            issuer=details.issuer,
            subject=details.subject,
            sans=list(details.sans),
            valid_from=details.valid_from,
            valid_until=details.valid_until,
            auto_renew=auto_renew,
            last_check=now,
            created_at=now,
        )
        validate_ssl_meta(meta)
        with self.locks.write(tenant_id):
            ensure_dir(directory, SSL_DIR_MODE)
            try:
                previous = self.read_meta(tenant_id, domain)
            except (NotFoundError, CorruptError):
                previous = None
            if previous is not None:
                meta.created_at = previous.created_at or now
                meta.last_renewed = now
            write_bytes(directory / CERT_FILE, cert, mode=FILE_MODE)
            write_bytes(directory / KEY_FILE, key, mode=PRIVATE_FILE_MODE)
            if chain:
                write_bytes(directory / CHAIN_FILE, chain, mode=FILE_MODE)
            write_bytes(directory / FULLCHAIN_FILE, build_fullchain(cert, chain), mode=FILE_MODE)
            self.write_meta(tenant_id, meta)
        LOGGER.info("Installed %s certificate for %s (tenant %s)", type, domain, tenant_id)
        if previous is None:
            record_safely(self.emitter, "ssl_installed", tenant_id, domain, type)
        else:
            record_safely(self.emitter, "ssl_renewed", tenant_id, domain)
        return meta

    def ensure_self_signed(self, tenant_id: int, domain: str) -> CertificateMeta | None:
        """Generate a self-signed placeholder unless a key pair is already present.

        Return the new meta descriptor, or ``None`` when existing material
        was reused.
        """
        if self.has_certificate(tenant_id, domain):
            LOGGER.debug("Reusing certificate material for %s", domain)
            return None
        cert, key = generate_self_signed(domain, days=self.self_signed_days)
        return self.install_certificate(tenant_id, domain, cert, key, type="self-signed")

    def has_certificate(self, tenant_id: int, domain: str) -> bool:
        """Return True when both ``cert.pem`` and ``key.pem`` are regular files."""
        directory = self.layout.tls_path(tenant_id, domain)
        return (directory / CERT_FILE).is_file() and (directory / KEY_FILE).is_file()

    def list_certificates(self, tenant_id: int) -> list[CertificateMeta]:
        """Return the readable meta descriptors of the tenant, sorted by domain."""
        root = self.layout.tenant_path(tenant_id) / "ssl"
        try:
            domains = sorted(entry.name for entry in root.iterdir() if entry.is_dir())
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise StorageError(f"Failed to read {root}: {exc}") from exc
        certificates: list[CertificateMeta] = []
        for domain in domains:
            try:
                certificates.append(self.read_meta(tenant_id, domain))
            except (NotFoundError, CorruptError) as exc:
                LOGGER.debug("Skipping TLS directory %s: %s", domain, exc)
        return certificates

    def expiring_certificates(self, tenant_id: int, days: int) -> list[CertificateMeta]:
        """Return auto-renewing certificates that expire within *days*."""
        cutoff = utc_now() + timedelta(days=days)
        expiring: list[CertificateMeta] = []
        for meta in self.list_certificates(tenant_id):
            valid_until = parse_timestamp(meta.valid_until)
            if meta.auto_renew and valid_until is not None and valid_until < cutoff:
                expiring.append(meta)
        return expiring

    def remove_certificate(self, tenant_id: int, domain: str) -> bool:
        """Remove ``ssl/<domain>``; return False when it did not exist."""
        directory = self.layout.tls_path(tenant_id, domain)
        with self.locks.write(tenant_id):
            if not directory.exists():
                return False
            ssl = self.layout.tenant_path(tenant_id) / "ssl"
            if not is_direct_child(directory, ssl):
                raise ValidationError("ssl.domain", f"{domain!r} is not a directory of {ssl}")
            try:
                shutil.rmtree(directory)
            except OSError as exc:
                raise StorageError(f"Failed to remove {directory}: {exc}") from exc
        return True


__all__ = [
    "CERT_FILE",
    "CHAIN_FILE",
    "CertificateStore",
    "FULLCHAIN_FILE",
    "KEY_FILE",
]
