"""Deterministic on-disk layout for tenants and generated service configs."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from .config import AppConfig

TENANT_PREFIX = "a-"
MIN_TENANT_ID = 10001
UID_OFFSET = 10000

# Relative to the tenant root, parents before children.
SKELETON_DIRS: tuple[str, ...] = (
    "home",
    "web",
    "mail",
    "databases",
    "databases/mysql",
    "databases/postgres",
    "dns",
    "ssl",
    "cron",
    "runtime",
    "backups",
    "logs",
    "tmp",
)

# Directories handed to the tenant's POSIX user.
USER_OWNED_DIRS: tuple[str, ...] = ("home", "web", "mail", "tmp")
# Directories owned by root with the tenant group, mode 0750.
GROUP_READABLE_DIRS: tuple[str, ...] = ("logs", "backups")

SITE_SUBDIRS: tuple[str, ...] = ("logs", "tmp", "cache")
DEFAULT_DOCUMENT_ROOT = "public"

IDENTITY_FILE = "account.json"
LIMITS_FILE = "limits.json"
STATUS_FILE = "status.json"
METADATA_FILE = "metadata.json"
AUTH_FILE = "auth.json"
SITE_FILE = "site.json"
TLS_META_FILE = "meta.json"
DATABASE_META_FILE = "meta.json"


def tenant_dir_name(tenant_id: int) -> str:
    """Return the directory name for *tenant_id* (``a-<id>``)."""
    return f"{TENANT_PREFIX}{tenant_id}"


def parse_tenant_dir_name(name: str) -> int | None:
    """Return the tenant id encoded in *name*, or ``None`` for foreign entries."""
    if not name.startswith(TENANT_PREFIX):
        return None
    suffix = name[len(TENANT_PREFIX) :]
    if not suffix.isdigit() or suffix != str(int(suffix)):
        return None
    return int(suffix)


def posix_id_for(tenant_id: int) -> int:
    """Return the uid (and gid) assigned to *tenant_id*."""
    return UID_OFFSET + tenant_id


def pool_user(tenant_id: int) -> str:
    """Return the FastCGI pool user name (``a<id>``)."""
    return f"a{tenant_id}"


def config_name(tenant_id: int, domain: str) -> str:
    """Return the basename shared by the vhost and pool files of a site."""
    return f"{TENANT_PREFIX}{tenant_id}-{domain}.conf"


def config_tenant_id(name: str) -> int | None:
    """Return the tenant id encoded in a config basename, or ``None``."""
    if not name.startswith(TENANT_PREFIX):
        return None
    head, sep, _ = name[len(TENANT_PREFIX) :].partition("-")
    if not sep:
        return None
    return parse_tenant_dir_name(TENANT_PREFIX + head)


def is_direct_child(path: Path, parent: Path) -> bool:
    """Return True when *path* resolves to an entry directly inside *parent*."""
    return Path(os.path.realpath(path)).parent == Path(os.path.realpath(parent))


@dataclass(frozen=True)
class Layout:
    """Filesystem locations derived from the resolved configuration."""

    accounts_root: Path
    events_dir: Path
    alerts_dir: Path
    sites_available: Path
    sites_enabled: Path
    nginx_conf_d: Path
    php_root: Path
    php_socket_dir: Path
    cgroup_root: Path

    @classmethod
    def from_config(cls, config: AppConfig) -> Layout:
        """Build the layout for *config*."""
        return cls(
            accounts_root=config.accounts_root,
            events_dir=config.events_dir,
            alerts_dir=config.alerts_dir,
            sites_available=config.nginx.sites_available,
            sites_enabled=config.nginx.sites_enabled,
            nginx_conf_d=config.nginx.conf_d,
            php_root=config.phpfpm.root,
            php_socket_dir=config.phpfpm.socket_dir,
            cgroup_root=config.cgroups.root,
        )

    # ------------------------------------------------------------------
    # Tenant tree
    # ------------------------------------------------------------------
    def tenant_path(self, tenant_id: int) -> Path:
        """Return the root directory of *tenant_id*."""
        return self.accounts_root / tenant_dir_name(tenant_id)

    def descriptor_path(self, tenant_id: int, filename: str) -> Path:
        """Return the path of a tenant-level descriptor file."""
        return self.tenant_path(tenant_id) / filename

    def skeleton_paths(self, tenant_id: int) -> list[Path]:
        """Return every skeleton directory of *tenant_id*, parents first."""
        root = self.tenant_path(tenant_id)
        return [root / relative for relative in SKELETON_DIRS]

    def home_path(self, tenant_id: int) -> Path:
        """Return the home directory of the tenant's POSIX user."""
        return self.tenant_path(tenant_id) / "home"

    def site_path(self, tenant_id: int, domain: str) -> Path:
        """Return ``web/<domain>`` for the tenant."""
        return self.tenant_path(tenant_id) / "web" / domain

    def tls_path(self, tenant_id: int, domain: str) -> Path:
        """Return ``ssl/<domain>`` for the tenant."""
        return self.tenant_path(tenant_id) / "ssl" / domain

    def databases_path(self, tenant_id: int) -> Path:
        """Return the tenant's ``databases`` directory."""
        return self.tenant_path(tenant_id) / "databases"

    def cron_path(self, tenant_id: int) -> Path:
        """Return the tenant's ``cron`` directory."""
        return self.tenant_path(tenant_id) / "cron"

    def runtime_path(self, tenant_id: int) -> Path:
        """Return the tenant's ``runtime`` directory."""
        return self.tenant_path(tenant_id) / "runtime"

    # ------------------------------------------------------------------
    # Generated configuration
    # ------------------------------------------------------------------
    def vhost_available(self, tenant_id: int, domain: str) -> Path:
        """Return the nginx ``sites-available`` file for a site."""
        return self.sites_available / config_name(tenant_id, domain)

    def vhost_enabled(self, tenant_id: int, domain: str) -> Path:
        """Return the nginx ``sites-enabled`` symlink for a site."""
        return self.sites_enabled / config_name(tenant_id, domain)

    def pool_dir(self, version: str) -> Path:
        """Return the ``pool.d`` directory for a PHP version."""
        return self.php_root / version / "fpm" / "pool.d"

    def pool_path(self, version: str, tenant_id: int, domain: str) -> Path:
        """Return the FastCGI pool file for a site."""
        return self.pool_dir(version) / config_name(tenant_id, domain)

    def php_socket(self, version: str, tenant_id: int) -> Path:
        """Return the FastCGI socket shared by a tenant's pools of one version."""
        return self.php_socket_dir / f"php{version}-fpm-a{tenant_id}.sock"

    def cgroup_path(self, tenant_id: int) -> Path:
        """Return the cgroup directory of *tenant_id*."""
        return self.cgroup_root / f"account-{tenant_id}"

    def main_include(self) -> Path:
        """Return the nginx include file that pulls in every tenant vhost."""
        return self.nginx_conf_d / "owehost.conf"


__all__ = [
    "DEFAULT_DOCUMENT_ROOT",
    "GROUP_READABLE_DIRS",
    "Layout",
    "MIN_TENANT_ID",
    "SKELETON_DIRS",
    "TENANT_PREFIX",
    "UID_OFFSET",
    "USER_OWNED_DIRS",
    "config_name",
    "config_tenant_id",
    "is_direct_child",
    "parse_tenant_dir_name",
    "pool_user",
    "posix_id_for",
    "tenant_dir_name",
]
