"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import os
import subprocess
from collections.abc import Collection, Sequence
from pathlib import Path

import pytest

from owehost.config import AppConfig, load_config
from owehost.errors import OSExecError
from owehost.models import Identity
from owehost.oscontrol import CommandRunner
from owehost.paths import posix_id_for
from owehost.services import Services, build_services


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip expensive tests during mutation runs."""
    if not os.environ.get("MUTANT_UNDER_TEST"):
        return
    skip_marker = pytest.mark.skip(reason="Skipped during mutation run to avoid timeouts.")
    for item in items:
        if "mutation_timeout" in item.keywords:
            item.add_marker(skip_marker)


class FakeRunner(CommandRunner):
    """Record commands instead of executing them.

    ``returncodes`` maps a program name, or a ``(program, first argument)``
    pair, to the exit status reported for it. Everything else exits 0.
    """

    def __init__(self, returncodes: dict[object, int] | None = None) -> None:
        """Initialise the runner with optional canned exit statuses."""
        super().__init__(timeout=5.0)
        self.calls: list[list[str]] = []
        self.returncodes: dict[object, int] = dict(returncodes or {})

    def run(
        self,
        argv: Sequence[str],
        *,
        ok_codes: Collection[int] = (0,),
        check: bool = True,
        timeout: float | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Record *argv* and report the configured exit status."""
        command = [str(part) for part in argv]
        self.calls.append(command)
        returncode = self.returncodes.get(command[0], 0)
        if len(command) > 1:
            returncode = self.returncodes.get((command[0], command[1]), returncode)
        if check and returncode not in ok_codes:
            raise OSExecError(
                command,
                f"failed (exit {returncode}): simulated failure",
                returncode=returncode,
            )
        return subprocess.CompletedProcess(command, returncode, stdout="", stderr="")

    def programs(self) -> list[str]:
        """Return the program name of every recorded call."""
        return [call[0] for call in self.calls]


class ChownRecorder:
    """Stand-in for :func:`os.chown` that remembers every call."""

    def __init__(self) -> None:
        """Start with no recorded calls."""
        self.calls: list[tuple[Path, int, int]] = []

    def __call__(self, path: Path, uid: int, gid: int) -> None:
        """Record the ownership change."""
        self.calls.append((path, uid, gid))

    def paths(self) -> set[Path]:
        """Return every path that was chowned."""
        return {path for path, _, _ in self.calls}


def config_values(root: Path) -> dict[str, object]:
    """Return configuration values placing every directory under *root*."""
    return {
        "accounts_root": str(root / "accounts"),
        "base_dir": str(root / "base"),
        "state_dir": str(root / "state"),
        "logs_dir": str(root / "logs"),
        "runtime_dir": str(root / "run"),
        "templates_dir": str(root / "templates"),
        "lock_timeout": 2.0,
        "node_id": "node-test",
        "nginx": {
            "sites_available": str(root / "nginx" / "sites-available"),
            "sites_enabled": str(root / "nginx" / "sites-enabled"),
            "conf_d": str(root / "nginx" / "conf.d"),
            "bin": "nginx",
        },
        "phpfpm": {
            "root": str(root / "php"),
            "socket_dir": str(root / "php-run"),
            "versions": ["8.1", "8.2"],
            "systemctl_bin": "systemctl",
        },
        "cgroups": {"root": str(root / "cgroup")},
        "quota": {"filesystem": str(root), "setquota_bin": "setquota"},
    }


def build_test_config(root: Path, **overrides: object) -> AppConfig:
    """Return a configuration whose every directory lives under *root*."""
    values = config_values(root)
    values.update(overrides)
    return load_config(config_file=root / "missing.yml", env={}, overrides=values)


def make_identity(tenant_id: int, name: str, /, **changes: object) -> Identity:
    """Return a valid identity for *tenant_id*."""
    posix_id = posix_id_for(tenant_id)
    identity = Identity(id=tenant_id, name=name, uid=posix_id, gid=posix_id)
    for key, value in changes.items():
        setattr(identity, key, value)
    return identity


@pytest.fixture
def config(tmp_path: Path) -> AppConfig:
    """Return a configuration rooted in a temporary directory."""
    return build_test_config(tmp_path)


@pytest.fixture
def fake_runner() -> FakeRunner:
    """Return a command runner that never executes anything."""
    return FakeRunner()


@pytest.fixture
def chown_recorder() -> ChownRecorder:
    """Return a chown replacement that records its calls."""
    return ChownRecorder()


@pytest.fixture
def services(
    config: AppConfig,
    fake_runner: FakeRunner,
    chown_recorder: ChownRecorder,
) -> Services:
    """Return the full service graph wired to the fakes."""
    return build_services(
        config,
        runner=fake_runner,
        chown=chown_recorder,
        manage_users=False,
    )
