"""Filesystem-backed stores for tenant state."""
from __future__ import annotations

from .auth import AuthenticationError, AuthStore
from .certificates import CertificateStore
from .cron import CronStore
from .databases import DatabaseMeta, DatabaseStore
from .registry import IndexedTenant, IndexRegistry, RegistryError
from .sites import SiteStore
from .store import TenantStore, load_descriptor, load_optional

__all__ = [
    "AuthStore",
    "AuthenticationError",
    "CertificateStore",
    "CronStore",
    "DatabaseMeta",
    "DatabaseStore",
    "IndexRegistry",
    "IndexedTenant",
    "RegistryError",
    "SiteStore",
    "TenantStore",
    "load_descriptor",
    "load_optional",
]
