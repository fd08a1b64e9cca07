"""Best-effort resource limits: cgroup v2 CPU/memory and disk quotas.

Neither subsystem is required for a tenant to be served, so every failure
is logged and returned as a warning instead of being raised.
"""
from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path

from ..atomic import DIR_MODE
from ..errors import OSExecError
from ..models import Limits
from ..paths import Layout
from .runner import CommandRunner

LOGGER = logging.getLogger(__name__)

CPU_PERIOD_US = 100000
QUOTA_GRACE = 1.1


def cpu_max(cpu_percent: int) -> str:
    """Return the ``cpu.max`` line for *cpu_percent* (100% is one full CPU)."""
    return f"{cpu_percent * 1000} {CPU_PERIOD_US}"


def memory_max(ram_mb: int) -> str:
    """Return the ``memory.max`` value in bytes."""
    return str(ram_mb * 1024 * 1024)


def quota_args(uid: int, limits: Limits, filesystem: Path) -> list[str]:
    """Return the ``setquota`` arguments for *limits*; ``-1`` inodes maps to 0 (no limit)."""
    soft = limits.disk_mb * 1024
    hard = int(limits.disk_mb * QUOTA_GRACE * 1024)
    inode_soft = max(limits.inodes, 0)
    inode_hard = int(inode_soft * QUOTA_GRACE)
    return [
        "-u",
        str(uid),
        str(soft),
        str(hard),
        str(inode_soft),
        str(inode_hard),
        str(filesystem),
    ]


@dataclass(slots=True)
class ResourceLimiter:
    """Write cgroup files and disk quotas for tenants."""

    layout: Layout
    runner: CommandRunner
    filesystem: Path = Path("/srv")
    setquota_bin: str = "setquota"

    def apply(self, tenant_id: int, uid: int, limits: Limits) -> list[str]:
        """Apply *limits*; return the warnings collected along the way."""
        warnings = self.apply_cgroup(tenant_id, limits)
        warning = self.apply_quota(uid, limits)
        if warning:
            warnings.append(warning)
        return warnings

    def apply_cgroup(self, tenant_id: int, limits: Limits) -> list[str]:
        """Write ``cpu.max`` and ``memory.max``; unlimited values are left alone."""
        values: dict[str, str] = {}
        if limits.cpu_percent > 0:
            values["cpu.max"] = cpu_max(limits.cpu_percent)
        if limits.ram_mb > 0:
            values["memory.max"] = memory_max(limits.ram_mb)
        if not values:
            return []
        path = self.layout.cgroup_path(tenant_id)
        try:
            path.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
        except OSError as exc:
            return [self._warn(f"cgroup {path}: {exc}")]
        warnings: list[str] = []
        for name, value in values.items():
            # cgroupfs does not support rename, so control files are written in place.
            try:
                (path / name).write_text(value, encoding="ascii")
            except OSError as exc:
                warnings.append(self._warn(f"cgroup {path / name}: {exc}"))
        return warnings

    def apply_quota(self, uid: int, limits: Limits) -> str | None:
        """Run ``setquota`` for *uid*; return a warning on failure."""
        if limits.disk_mb <= 0:
            return None
        argv = [self.setquota_bin, *quota_args(uid, limits, self.filesystem)]
        try:
            self.runner.run(argv)
        except OSExecError as exc:
            return self._warn(f"quota for uid {uid}: {exc}")
        return None

    def remove_cgroup(self, tenant_id: int) -> bool:
        """Remove the tenant's cgroup directory; return False when absent or busy."""
        path = self.layout.cgroup_path(tenant_id)
        if not path.exists():
            return False
        try:
            path.rmdir()
        except OSError:
            try:
                shutil.rmtree(path)
            except OSError as exc:
                self._warn(f"cgroup {path}: {exc}")
                return False
        return True

    @staticmethod
    def _warn(message: str) -> str:
        LOGGER.warning("Resource limit not applied: %s", message)
        return message


__all__ = ["ResourceLimiter", "cpu_max", "memory_max", "quota_args"]
