"""Nginx provider for tenant vhost files and the sites-enabled symlinks."""
from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

from ..errors import StorageError
from ..oscontrol.runner import CommandRunner
from ..paths import TENANT_PREFIX, Layout
from ._files import unlink, write_if_changed

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class NginxProvider:
    """Manage ``sites-available``/``sites-enabled`` entries and the nginx service.

    A site config is either absent or enabled: :meth:`install_site` writes
    the file and then links it, removing the file again when linking fails.
    """

    layout: Layout
    runner: CommandRunner
    nginx_bin: str = "nginx"

    def available_path(self, tenant_id: int, domain: str) -> Path:
        """Return the ``sites-available`` file of a site."""
        return self.layout.vhost_available(tenant_id, domain)

    def enabled_path(self, tenant_id: int, domain: str) -> Path:
        """Return the ``sites-enabled`` symlink of a site."""
        return self.layout.vhost_enabled(tenant_id, domain)

    def install_site(self, tenant_id: int, domain: str, content: bytes) -> bool:
        """Write the vhost and enable it; return True when the file changed."""
        path = self.available_path(tenant_id, domain)
        existed = path.exists()
        changed = write_if_changed(path, content)
        try:
            self.enable(tenant_id, domain)
        except StorageError:
            if not existed:
                path.unlink(missing_ok=True)
            raise
        if changed:
            LOGGER.info("Wrote nginx config %s", path)
        return changed

    def enable(self, tenant_id: int, domain: str) -> None:
        """Create the ``sites-enabled`` symlink for a site."""
        source = self.available_path(tenant_id, domain)
        target = self.enabled_path(tenant_id, domain)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            if target.is_symlink() or target.exists():
                try:
                    if target.resolve() == source.resolve():
                        return
                except FileNotFoundError:
                    # Broken symlink; replace it with a fresh one.
                    pass
                target.unlink()
            target.symlink_to(source)
        except OSError as exc:
            raise StorageError(f"Failed to enable {target}: {exc}") from exc

    def disable(self, tenant_id: int, domain: str) -> bool:
        """Remove the ``sites-enabled`` symlink of a site."""
        return unlink(self.enabled_path(tenant_id, domain))

    def remove_site(self, tenant_id: int, domain: str) -> bool:
        """Remove the symlink and then the config file; return True when anything went."""
        disabled = self.disable(tenant_id, domain)
        removed = unlink(self.available_path(tenant_id, domain))
        return disabled or removed

    def site_exists(self, tenant_id: int, domain: str) -> bool:
        """Return True when the rendered vhost exists."""
        return self.available_path(tenant_id, domain).exists()

    def is_enabled(self, tenant_id: int, domain: str) -> bool:
        """Return True when the site is linked into ``sites-enabled``."""
        target = self.enabled_path(tenant_id, domain)
        if not target.is_symlink():
            return False
        try:
            return target.resolve() == self.available_path(tenant_id, domain).resolve()
        except FileNotFoundError:
            return False

    # ------------------------------------------------------------------
    # Bulk operations
    # ------------------------------------------------------------------
    def managed_configs(self) -> list[str]:
        """Return the basenames of the tenant configs in ``sites-available``."""
        try:
            entries = list(self.layout.sites_available.iterdir())
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise StorageError(f"Failed to read {self.layout.sites_available}: {exc}") from exc
        return sorted(
            entry.name
            for entry in entries
            if entry.name.startswith(TENANT_PREFIX) and entry.name.endswith(".conf")
        )

    def remove_config(self, name: str) -> bool:
        """Remove a config by basename from both directories."""
        disabled = unlink(self.layout.sites_enabled / name)
        removed = unlink(self.layout.sites_available / name)
        return disabled or removed

    def write_main_include(self, content: bytes) -> bool:
        """Write the include file that loads every tenant vhost."""
        return write_if_changed(self.layout.main_include(), content)

    # ------------------------------------------------------------------
    # Service
    # ------------------------------------------------------------------
    def test_config(self) -> subprocess.CompletedProcess[str]:
        """Run ``nginx -t``; a non-zero exit raises :class:`OSExecError`."""
        return self.runner.run([self.nginx_bin, "-t"])

    def reload(self) -> subprocess.CompletedProcess[str]:
        """Validate the configuration and reload nginx.

        A failing configuration test raises before the reload is attempted.
        """
        self.test_config()
        result = self.runner.run([self.nginx_bin, "-s", "reload"])
        LOGGER.info("Reloaded nginx")
        return result


__all__ = ["NginxProvider"]
