"""Locking and cancellation primitives.

Two layers are provided:

* :class:`TenantLocks` serialises writers of one tenant inside the process
  while letting readers and other tenants proceed in parallel.
* :class:`LockManager` holds advisory ``fcntl`` file locks under the runtime
  directory so administrative commands on one node do not interleave.
"""
from __future__ import annotations

import fcntl
import json
import os
import threading
import time
from collections.abc import Iterable, Iterator
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO

from .errors import AbortedError
from .paths import tenant_dir_name

GLOBAL_LOCK_NAME = "owehost.lock"
_POLL_INTERVAL = 0.05


class LockTimeoutError(RuntimeError):
    """Raised when a lock cannot be acquired before the timeout."""


# ----------------------------------------------------------------------
# Cancellation
# ----------------------------------------------------------------------
class CancelToken:
    """Thread-safe cancellation flag checked at phase boundaries."""

    def __init__(self) -> None:
        """Create an un-cancelled token."""
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        """Return True once :meth:`cancel` has been called."""
        return self._event.is_set()

    def raise_if_cancelled(self, phase: str = "") -> None:
        """Raise :class:`AbortedError` when cancellation was requested."""
        if self._event.is_set():
            suffix = f" before {phase}" if phase else ""
            raise AbortedError(f"Operation cancelled{suffix}.")


def check_cancelled(token: CancelToken | None, phase: str = "") -> None:
    """Raise :class:`AbortedError` if *token* is set; ``None`` never cancels."""
    if token is not None:
        token.raise_if_cancelled(phase)


# ----------------------------------------------------------------------
# In-process tenant locks
# ----------------------------------------------------------------------
class _ReadWriteLock:
    """Reader/writer lock whose writer may re-enter and read on its own thread."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer: int | None = None
        self._depth = 0

    def acquire_read(self) -> None:
        me = threading.get_ident()
        with self._cond:
            while self._writer is not None and self._writer != me:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        me = threading.get_ident()
        with self._cond:
            if self._writer == me:
                self._depth += 1
                return
            while self._writer is not None or self._readers > 0:
                self._cond.wait()
            self._writer = me
            self._depth = 1

    def release_write(self) -> None:
        with self._cond:
            self._depth -= 1
            if self._depth == 0:
                self._writer = None
                self._cond.notify_all()


@dataclass
class _Entry:
    lock: _ReadWriteLock = field(default_factory=_ReadWriteLock)
    users: int = 0


class TenantLocks:
    """Keyed reader/writer locks, one per tenant id."""

    def __init__(self) -> None:
        """Create an empty lock map."""
        self._guard = threading.Lock()
        self._entries: dict[int, _Entry] = {}

    def _checkout(self, tenant_id: int) -> _Entry:
        with self._guard:
            entry = self._entries.get(tenant_id)
            if entry is None:
                entry = _Entry()
                self._entries[tenant_id] = entry
            entry.users += 1
            return entry

    def _checkin(self, tenant_id: int, entry: _Entry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0 and self._entries.get(tenant_id) is entry:
                del self._entries[tenant_id]

    @contextmanager
    def write(self, tenant_id: int) -> Iterator[None]:
        """Hold the exclusive side of *tenant_id*'s lock."""
        entry = self._checkout(tenant_id)
        entry.lock.acquire_write()
        try:
            yield
        finally:
            entry.lock.release_write()
            self._checkin(tenant_id, entry)

    @contextmanager
    def read(self, tenant_id: int) -> Iterator[None]:
        """Hold the shared side of *tenant_id*'s lock."""
        entry = self._checkout(tenant_id)
        entry.lock.acquire_read()
        try:
            yield
        finally:
            entry.lock.release_read()
            self._checkin(tenant_id, entry)

    def active(self) -> list[int]:
        """Return the tenant ids that currently have holders or waiters."""
        with self._guard:
            return sorted(self._entries)


# ----------------------------------------------------------------------
# Cross-invocation file locks
# ----------------------------------------------------------------------
@dataclass(slots=True)
class LockHandle:
    """An acquired file lock."""

    path: Path
    wait_ms: int
    _handle: IO[str] | None = None

    def release(self) -> None:
        """Release the lock; the lock file is kept for diagnostics."""
        if self._handle is None:
            return
        try:
            fcntl.flock(self._handle.fileno(), fcntl.LOCK_UN)
        finally:
            self._handle.close()
            self._handle = None


@dataclass(slots=True)
class LockBundle:
    """A set of file locks acquired together."""

    handles: list[LockHandle]

    @property
    def wait_ms(self) -> int:
        """Return the accumulated wait time."""
        return sum(handle.wait_ms for handle in self.handles)


class LockManager:
    """Acquire advisory file locks under the runtime directory."""

    def __init__(self, runtime_dir: Path, *, default_timeout: float = 30.0) -> None:
        """Remember the lock directory and default timeout."""
        self.runtime_dir = runtime_dir
        self.default_timeout = default_timeout

    def global_path(self) -> Path:
        """Return the node-wide lock path."""
        return self.runtime_dir / GLOBAL_LOCK_NAME

    def tenant_path(self, tenant_id: int) -> Path:
        """Return the lock path for *tenant_id*."""
        return self.runtime_dir / "tenants" / f"{tenant_dir_name(tenant_id)}.lock"

    @contextmanager
    def global_lock(self, *, timeout: float | None = None) -> Iterator[LockHandle]:
        """Hold the node-wide lock."""
        handle = self._acquire(self.global_path(), timeout)
        try:
            yield handle
        finally:
            handle.release()

    @contextmanager
    def tenant_lock(self, tenant_id: int, *, timeout: float | None = None) -> Iterator[LockHandle]:
        """Hold the lock of a single tenant."""
        handle = self._acquire(self.tenant_path(tenant_id), timeout)
        try:
            yield handle
        finally:
            handle.release()

    @contextmanager
    def mutate_tenants(
        self,
        tenant_ids: Iterable[int],
        *,
        timeout: float | None = None,
    ) -> Iterator[LockBundle]:
        """Acquire the global lock followed by each tenant lock in id order."""
        with ExitStack() as stack:
            handles = [stack.enter_context(self.global_lock(timeout=timeout))]
            for tenant_id in sorted(set(tenant_ids)):
                handles.append(stack.enter_context(self.tenant_lock(tenant_id, timeout=timeout)))
            yield LockBundle(handles)

    def _acquire(self, path: Path, timeout: float | None) -> LockHandle:
        limit = self.default_timeout if timeout is None else timeout
        path.parent.mkdir(parents=True, exist_ok=True)
        handle = path.open("a+", encoding="utf-8")
        started = time.monotonic()
        while True:
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() - started >= limit:
                    handle.close()
                    raise LockTimeoutError(
                        f"Timed out after {limit:.1f}s waiting for lock {path}."
                    ) from None
                time.sleep(_POLL_INTERVAL)
        wait_ms = int((time.monotonic() - started) * 1000)
        handle.seek(0)
        handle.truncate()
        handle.write(json.dumps({"pid": os.getpid(), "path": str(path)}))
        handle.flush()
        return LockHandle(path=path, wait_ms=wait_ms, _handle=handle)


__all__ = [
    "CancelToken",
    "LockBundle",
    "LockHandle",
    "LockManager",
    "LockTimeoutError",
    "TenantLocks",
    "check_cancelled",
]
