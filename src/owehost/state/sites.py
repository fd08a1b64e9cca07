"""Site descriptors stored under ``web/<domain>/site.json``."""
from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

from ..atomic import DIR_MODE, FILE_MODE, ensure_dir, write_bytes, write_json
from ..errors import CorruptError, NotFoundError, StorageError, ValidationError
from ..locking import TenantLocks
from ..models import Site, timestamp
from ..paths import SITE_FILE, SITE_SUBDIRS, Layout, is_direct_child
from ..validators import validate_site
from .store import load_descriptor

LOGGER = logging.getLogger(__name__)


class SiteStore:
    """Read and write the sites of a tenant."""

    def __init__(self, layout: Layout, locks: TenantLocks | None = None) -> None:
        """Bind the store to *layout*."""
        self.layout = layout
        self.locks = locks or TenantLocks()

    def site_exists(self, tenant_id: int, domain: str) -> bool:
        """Return True when ``web/<domain>`` exists."""
        return self.layout.site_path(tenant_id, domain).is_dir()

    def document_root_path(self, tenant_id: int, site: Site) -> Path:
        """Return the canonical document root, refusing paths that escape the site."""
        site_path = self.layout.site_path(tenant_id, site.domain)
        base = Path(os.path.realpath(site_path))
        candidate = Path(os.path.realpath(site_path / site.effective_document_root))
        if candidate != base and base not in candidate.parents:
            raise ValidationError(
                "site.document_root",
                f"{site.effective_document_root!r} escapes {site_path}",
            )
        return site_path / site.effective_document_root

    def read_site(self, tenant_id: int, domain: str) -> Site:
        """Return the site for *domain*; raise :class:`NotFoundError` when absent."""
        path = self.layout.site_path(tenant_id, domain) / SITE_FILE
        with self.locks.read(tenant_id):
            try:
                return load_descriptor(path, Site.from_dict, validate_site)
            except NotFoundError as exc:
                raise NotFoundError(f"Site {domain} not found for tenant {tenant_id}") from exc

    def write_site(self, tenant_id: int, site: Site) -> None:
        """Create the site directories and atomically write ``site.json``.

        ``created_at`` is preserved from an existing descriptor and
        ``updated_at`` is stamped on every write.
        """
        site_path = self.layout.site_path(tenant_id, site.domain)
        document_root = self.document_root_path(tenant_id, site)
        with self.locks.write(tenant_id):
            for directory in (site_path, document_root, *(site_path / sub for sub in SITE_SUBDIRS)):
                ensure_dir(directory, DIR_MODE)
            now = timestamp()
            if not site.created_at:
                try:
                    site.created_at = self.read_site(tenant_id, site.domain).created_at or now
                except (NotFoundError, CorruptError):
                    site.created_at = now
            site.updated_at = now
            write_json(site_path / SITE_FILE, site.to_dict())

    def delete_site(self, tenant_id: int, domain: str) -> bool:
        """Remove ``web/<domain>``; return False when it did not exist."""
        site_path = self.layout.site_path(tenant_id, domain)
        web = self.layout.tenant_path(tenant_id) / "web"
        with self.locks.write(tenant_id):
            if not site_path.exists():
                return False
            if not is_direct_child(site_path, web):
                raise ValidationError("site.domain", f"{domain!r} does not name a site of {web}")
            try:
                shutil.rmtree(site_path)
            except OSError as exc:
                raise StorageError(f"Failed to remove {site_path}: {exc}") from exc
        return True

    def list_sites(self, tenant_id: int) -> list[Site]:
        """Return every readable site of the tenant, sorted by domain.

        Directories without a parseable ``site.json`` are skipped.
        """
        sites: list[Site] = []
        for domain in self.site_directories(tenant_id):
            try:
                sites.append(self.read_site(tenant_id, domain))
            except (NotFoundError, CorruptError, StorageError) as exc:
                LOGGER.debug("Skipping site %s of tenant %s: %s", domain, tenant_id, exc)
        return sites

    def list_domains(self, tenant_id: int) -> list[str]:
        """Return the domains of the readable sites."""
        return [site.domain for site in self.list_sites(tenant_id)]

    def site_directories(self, tenant_id: int) -> list[str]:
        """Return the names of the directories under ``web/``, sorted."""
        web = self.layout.tenant_path(tenant_id) / "web"
        try:
            return sorted(entry.name for entry in web.iterdir() if entry.is_dir())
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise StorageError(f"Failed to read {web}: {exc}") from exc

    def create_default_index(self, tenant_id: int, site: Site, content: bytes) -> bool:
        """Write ``index.html`` only when the document root is empty."""
        document_root = self.document_root_path(tenant_id, site)
        with self.locks.write(tenant_id):
            ensure_dir(document_root, DIR_MODE)
            if any(document_root.iterdir()):
                return False
            write_bytes(document_root / "index.html", content, mode=FILE_MODE)
        return True


__all__ = ["SiteStore"]
