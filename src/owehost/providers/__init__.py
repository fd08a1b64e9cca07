"""Service providers for the generated nginx and PHP-FPM configuration."""
from __future__ import annotations

from .nginx import NginxProvider
from .phpfpm import PhpFpmProvider, PhpFpmReload, service_name

__all__ = ["NginxProvider", "PhpFpmProvider", "PhpFpmReload", "service_name"]
