"""Tests for the command runner, POSIX accounts, ownership and resource limits."""
from __future__ import annotations

import shutil
from pathlib import Path

import pytest

from owehost.config import AppConfig
from owehost.errors import OSExecError, OSExecTimeout, StorageError
from owehost.models import plan_limits
from owehost.oscontrol import (
    AccountManager,
    CommandRunner,
    OwnershipManager,
    ResourceLimiter,
    cpu_max,
    memory_max,
    quota_args,
)
from owehost.paths import Layout

from conftest import ChownRecorder, FakeRunner, make_identity

requires_sh = pytest.mark.skipif(shutil.which("sh") is None, reason="needs a POSIX shell")


@pytest.fixture
def layout(config: AppConfig) -> Layout:
    return Layout.from_config(config)


# ----------------------------------------------------------------------
# Runner
# ----------------------------------------------------------------------
@requires_sh
def test_runner_accepts_listed_exit_codes() -> None:
    """Exit statuses in ``ok_codes`` are success; others raise with output."""
    runner = CommandRunner(timeout=5.0)

    assert runner.run(["sh", "-c", "exit 6"], ok_codes=(0, 6)).returncode == 6
    with pytest.raises(OSExecError) as excinfo:
        runner.run(["sh", "-c", "echo broken >&2; exit 3"])

    assert excinfo.value.returncode == 3
    assert "broken" in str(excinfo.value)
    assert runner.succeeds(["sh", "-c", "exit 0"]) is True
    assert runner.succeeds(["sh", "-c", "exit 1"]) is False


@requires_sh
def test_runner_enforces_deadline() -> None:
    """Commands past the deadline raise a timeout error."""
    runner = CommandRunner(timeout=0.2)

    with pytest.raises(OSExecTimeout):
        runner.run(["sh", "-c", "sleep 5"])


def test_runner_reports_missing_binary() -> None:
    """A missing executable is an execution error, not a crash."""
    with pytest.raises(OSExecError, match="not found"):
        CommandRunner().run(["owehost-definitely-missing-binary"])


def test_dry_run_executes_nothing() -> None:
    """Dry-run mode reports success without running anything."""
    runner = CommandRunner(dry_run=True)

    assert runner.run(["owehost-definitely-missing-binary"]).returncode == 0
    with pytest.raises(ValueError):
        runner.run([])


# ----------------------------------------------------------------------
# Accounts
# ----------------------------------------------------------------------
def test_ensure_user_skips_existing_uid(fake_runner: FakeRunner) -> None:
    """When ``id`` resolves the uid, nothing is created."""
    manager = AccountManager(fake_runner)

    created = manager.ensure_user(make_identity(10001, "alice"), Path("/srv/accounts/a-10001"))

    assert created is False
    assert fake_runner.calls == [["id", "20001"]]


def test_ensure_user_creates_group_then_user() -> None:
    """A missing uid leads to groupadd followed by useradd."""
    runner = FakeRunner({"id": 1})
    manager = AccountManager(runner)

    created = manager.ensure_user(make_identity(10001, "alice"), Path("/srv/accounts/a-10001"))

    assert created is True
    assert runner.calls[1] == ["groupadd", "--gid", "20001", "alice"]
    assert runner.calls[2] == [
        "useradd",
        "--uid",
        "20001",
        "--gid",
        "20001",
        "--home-dir",
        "/srv/accounts/a-10001",
        "--shell",
        "/bin/bash",
        "--no-create-home",
        "alice",
    ]


def test_ensure_user_tolerates_existing_names() -> None:
    """Exit status 9 (already in use) is accepted from groupadd and useradd."""
    runner = FakeRunner({"id": 1, "groupadd": 9, "useradd": 9})

    assert AccountManager(runner).ensure_user(make_identity(1, "alice"), Path("/h")) is True


def test_remove_user_ignores_missing_entries() -> None:
    """userdel and groupdel exit 6 for unknown names, which is fine."""
    runner = FakeRunner({"userdel": 6, "groupdel": 6})

    AccountManager(runner).remove_user("alice")

    assert runner.programs() == ["userdel", "groupdel"]
    with pytest.raises(OSExecError):
        AccountManager(FakeRunner({"userdel": 1})).remove_user("alice")


# ----------------------------------------------------------------------
# Ownership
# ----------------------------------------------------------------------
def test_ownership_applies_user_and_group_dirs(layout: Layout) -> None:
    """User dirs are chowned recursively; logs and backups go to root:group 0750."""
    root = layout.tenant_path(1)
    for name in ("home", "web", "mail", "tmp", "logs", "backups"):
        (root / name).mkdir(parents=True)
    (root / "web" / "example.com").mkdir()
    (root / "web" / "example.com" / "index.html").write_text("hi", encoding="utf-8")
    recorder = ChownRecorder()

    OwnershipManager(layout, chown=recorder).apply(1, 10001, 10001)

    calls = {path: (uid, gid) for path, uid, gid in recorder.calls}
    assert calls[root / "web" / "example.com" / "index.html"] == (10001, 10001)
    assert calls[root / "home"] == (10001, 10001)
    assert calls[root / "logs"] == (0, 10001)
    assert (root / "backups").stat().st_mode & 0o777 == 0o750


def test_ownership_failure_is_fatal(layout: Layout) -> None:
    """chown errors surface as storage errors."""
    (layout.tenant_path(1) / "home").mkdir(parents=True)

    def deny(path: Path, uid: int, gid: int) -> None:
        raise PermissionError("denied")

    with pytest.raises(StorageError):
        OwnershipManager(layout, chown=deny).apply(1, 10001, 10001)


# ----------------------------------------------------------------------
# Limits
# ----------------------------------------------------------------------
def test_limit_conversions() -> None:
    """CPU, memory and quota values follow the kernel formats."""
    limits = plan_limits("starter")

    assert cpu_max(50) == "50000 100000"
    assert memory_max(512) == str(512 * 1048576)
    assert quota_args(10001, limits, Path("/srv")) == [
        "-u",
        "10001",
        str(5120 * 1024),
        str(int(5120 * 1.1 * 1024)),
        "100000",
        "110000",
        "/srv",
    ]


def test_unlimited_inodes_map_to_zero() -> None:
    """``-1`` inodes means no inode limit."""
    limits = plan_limits("enterprise")

    args = quota_args(1, limits, Path("/srv"))

    assert args[4:6] == ["0", "0"]


def test_apply_writes_cgroup_and_runs_setquota(layout: Layout, fake_runner: FakeRunner) -> None:
    """cgroup control files are written and setquota is invoked."""
    limiter = ResourceLimiter(layout, fake_runner, filesystem=Path("/srv"))

    warnings = limiter.apply(10001, 20001, plan_limits("starter"))

    cgroup = layout.cgroup_path(10001)
    assert warnings == []
    assert (cgroup / "cpu.max").read_text(encoding="ascii") == "50000 100000"
    assert (cgroup / "memory.max").read_text(encoding="ascii") == str(512 * 1048576)
    assert fake_runner.calls[0][:3] == ["setquota", "-u", "20001"]


def test_unlimited_values_are_left_alone(layout: Layout, fake_runner: FakeRunner) -> None:
    """Unlimited CPU, memory and disk write nothing."""
    limits = plan_limits("starter")
    limits.cpu_percent = limits.ram_mb = limits.disk_mb = -1
    limiter = ResourceLimiter(layout, fake_runner)

    assert limiter.apply(1, 10001, limits) == []
    assert not layout.cgroup_path(1).exists()
    assert fake_runner.calls == []


def test_quota_failure_is_a_warning(layout: Layout) -> None:
    """A failing setquota does not raise."""
    limiter = ResourceLimiter(layout, FakeRunner({"setquota": 1}))

    warnings = limiter.apply(1, 10001, plan_limits("starter"))

    assert len(warnings) == 1
    assert "quota for uid 10001" in warnings[0]


def test_remove_cgroup(layout: Layout, fake_runner: FakeRunner) -> None:
    """The cgroup directory is removed once."""
    limiter = ResourceLimiter(layout, fake_runner)
    limiter.apply_cgroup(1, plan_limits("starter"))

    assert limiter.remove_cgroup(1) is True
    assert limiter.remove_cgroup(1) is False
