"""Render nginx vhosts and PHP-FPM pools from site descriptors.

The renderer is pure: it builds a deterministic context from the layout
and the descriptor, renders a template and returns bytes. Writing the
result and managing the sites-enabled symlink is the caller's job.
"""
from __future__ import annotations

from dataclasses import dataclass

from .errors import ValidationError
from .models import NodeSettings, PHPSettings, Redirect, Site
from .paths import Layout, pool_user
from .templates import TemplateEngine

VHOST_TEMPLATE = "nginx/site.conf.j2"
POOL_TEMPLATE = "phpfpm/pool.conf.j2"
INCLUDE_TEMPLATE = "nginx/include.conf.j2"
INDEX_TEMPLATE = "site/index.html.j2"


def _redirect_rule(redirect: Redirect) -> dict[str, object]:
    if redirect.is_regex:
        match = f"~ {redirect.source}"
    elif redirect.is_wildcard:
        match = f"^~ {redirect.source.rstrip('*')}"
    else:
        match = f"= {redirect.source}"
    return {"match": match, "code": redirect.code, "target": redirect.target}


def _quote_header(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


@dataclass(frozen=True)
class ConfigRenderer:
    """Render service configuration for the sites of a tenant."""

    templates: TemplateEngine
    layout: Layout

    def server_names(self, site: Site) -> str:
        """Return the ``server_name`` value: domain, www alias, then aliases."""
        names = [site.domain, f"www.{site.domain}"]
        names.extend(alias for alias in site.aliases if alias not in names)
        return " ".join(names)

    def php_socket(self, tenant_id: int, site: Site) -> str | None:
        """Return the FastCGI socket for PHP sites, ``None`` otherwise."""
        version = site.php_version
        if version is None:
            return None
        return str(self.layout.php_socket(version, tenant_id))

    def proxy_target(self, tenant_id: int, site: Site) -> str | None:
        """Return the upstream of Node and Python sites."""
        settings = site.resolved_settings()
        if isinstance(settings, NodeSettings):
            return f"http://127.0.0.1:{settings.port}"
        if site.family == "python":
            socket = self.layout.runtime_path(tenant_id) / f"{site.domain}.sock"
            return f"http://unix:{socket}"
        return None

    def vhost_context(self, tenant_id: int, site: Site) -> dict[str, object]:
        """Return the template context for the vhost of *site*."""
        site_path = self.layout.site_path(tenant_id, site.domain)
        return {
            "domain": site.domain,
            "tenant_id": tenant_id,
            "server_names": self.server_names(site),
            "site_path": str(site_path),
            "document_path": str(site_path / site.effective_document_root),
            "tls_path": str(self.layout.tls_path(tenant_id, site.domain)),
            "ssl": site.ssl,
            "ssl_redirect": site.ssl_redirect,
            "php_socket": self.php_socket(tenant_id, site),
            "proxy_target": self.proxy_target(tenant_id, site),
            "headers": [
                (name, _quote_header(value)) for name, value in sorted(site.headers.items())
            ],
            "error_pages": sorted(site.error_pages.items()),
            "redirects": [_redirect_rule(redirect) for redirect in site.redirects],
        }

    def render_vhost(self, tenant_id: int, site: Site) -> bytes:
        """Render the nginx server blocks for *site*."""
        text = self.templates.render_to_string(VHOST_TEMPLATE, self.vhost_context(tenant_id, site))
        return text.encode("utf-8")

    def pool_context(self, tenant_id: int, site: Site) -> dict[str, object]:
        """Return the template context for the FastCGI pool of *site*."""
        version = site.php_version
        if version is None:
            raise ValidationError("site.runtime", f"{site.runtime} does not use PHP-FPM")
        settings = site.resolved_settings()
        if not isinstance(settings, PHPSettings):
            settings = PHPSettings()
        user = pool_user(tenant_id)
        return {
            "domain": site.domain,
            "tenant_id": tenant_id,
            "pool_name": f"{user}-{site.domain}",
            "pool_user": user,
            "php_socket": str(self.layout.php_socket(version, tenant_id)),
            "tenant_path": str(self.layout.tenant_path(tenant_id)),
            "site_path": str(self.layout.site_path(tenant_id, site.domain)),
            "settings": settings,
            "custom_ini": sorted(settings.custom_ini.items()),
        }

    def render_pool(self, tenant_id: int, site: Site) -> bytes:
        """Render the PHP-FPM pool for a PHP site."""
        text = self.templates.render_to_string(POOL_TEMPLATE, self.pool_context(tenant_id, site))
        return text.encode("utf-8")

    def render_include(self) -> bytes:
        """Render the nginx include that loads every tenant vhost."""
        context = {"sites_enabled": str(self.layout.sites_enabled)}
        return self.templates.render_to_string(INCLUDE_TEMPLATE, context).encode("utf-8")

    def render_index(self, domain: str) -> bytes:
        """Render the placeholder ``index.html`` for a new site."""
        return self.templates.render_to_string(INDEX_TEMPLATE, {"domain": domain}).encode("utf-8")


__all__ = ["ConfigRenderer"]
