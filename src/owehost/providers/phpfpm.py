"""PHP-FPM provider for per-site pools and the per-version services."""
from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from ..config import SUPPORTED_PHP_VERSIONS
from ..errors import OSExecError
from ..oscontrol.runner import CommandRunner
from ..paths import Layout
from ._files import unlink, write_if_changed

LOGGER = logging.getLogger(__name__)


def service_name(version: str) -> str:
    """Return the systemd unit of a PHP version (``php8.2-fpm``)."""
    return f"php{version}-fpm"


@dataclass(slots=True)
class PhpFpmReload:
    """Outcome of reloading the PHP-FPM services."""

    reloaded: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"reloaded": list(self.reloaded), "warnings": list(self.warnings)}


@dataclass(slots=True)
class PhpFpmProvider:
    """Write pool files and reload the PHP-FPM services that are running."""

    layout: Layout
    runner: CommandRunner
    versions: Sequence[str] = SUPPORTED_PHP_VERSIONS
    systemctl_bin: str = "systemctl"

    def pool_path(self, version: str, tenant_id: int, domain: str) -> Path:
        """Return the pool file of a site."""
        return self.layout.pool_path(version, tenant_id, domain)

    def write_pool(self, version: str, tenant_id: int, domain: str, content: bytes) -> bool:
        """Write the pool file; return True when it changed."""
        path = self.pool_path(version, tenant_id, domain)
        changed = write_if_changed(path, content)
        if changed:
            LOGGER.info("Wrote PHP-FPM pool %s", path)
        return changed

    def remove_pool(self, version: str, tenant_id: int, domain: str) -> bool:
        """Remove one pool file; return False when it was absent."""
        return unlink(self.pool_path(version, tenant_id, domain))

    def remove_pools(self, tenant_id: int, domain: str) -> list[str]:
        """Remove the site's pool under every managed version; return the versions hit."""
        return [
            version for version in self.versions if self.remove_pool(version, tenant_id, domain)
        ]

    def remove_stale_pools(self, tenant_id: int, domain: str, keep: str | None) -> list[str]:
        """Remove pools of the site under every version except *keep*."""
        return [
            version
            for version in self.versions
            if version != keep and self.remove_pool(version, tenant_id, domain)
        ]

    # ------------------------------------------------------------------
    # Services
    # ------------------------------------------------------------------
    def is_active(self, version: str) -> bool:
        """Return True when ``systemctl is-active`` reports the unit running."""
        try:
            return self.runner.succeeds([self.systemctl_bin, "is-active", service_name(version)])
        except OSExecError as exc:
            LOGGER.debug("Cannot query %s: %s", service_name(version), exc)
            return False

    def reload(self, version: str) -> None:
        """Reload one PHP-FPM service."""
        self.runner.run([self.systemctl_bin, "reload", service_name(version)])

    def reload_active(self) -> PhpFpmReload:
        """Reload every managed version whose unit is active; failures become warnings."""
        outcome = PhpFpmReload()
        for version in self.versions:
            if not self.is_active(version):
                continue
            try:
                self.reload(version)
            except OSExecError as exc:
                message = f"{service_name(version)} reload: {exc}"
                LOGGER.warning("%s", message)
                outcome.warnings.append(message)
            else:
                outcome.reloaded.append(service_name(version))
        return outcome


__all__ = ["PhpFpmProvider", "PhpFpmReload", "service_name"]
