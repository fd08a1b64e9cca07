"""Background retention of the event log."""
from __future__ import annotations

import logging
import threading

from ..errors import OwehostError
from .store import EventStore

LOGGER = logging.getLogger(__name__)


class EventPruner:
    """Periodically remove day directories older than the retention window."""

    def __init__(
        self,
        store: EventStore,
        *,
        retention_days: int = 90,
        interval_hours: float = 6,
    ) -> None:
        """Configure the pruner; nothing runs until :meth:`start`."""
        if retention_days <= 0:
            raise ValueError("retention_days must be positive")
        if interval_hours <= 0:
            raise ValueError("interval_hours must be positive")
        self.store = store
        self.retention_days = retention_days
        self.interval = interval_hours * 3600
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        """Return True while the background thread is alive."""
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> int:
        """Prune once and return the number of events removed."""
        return self.store.prune(self.retention_days)

    def start(self) -> None:
        """Start the background thread; a second call is a no-op."""
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="owehost-event-pruner", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """Signal the thread to exit and wait for it."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.run_once()
            except OwehostError as exc:
                LOGGER.warning("Event pruning failed: %s", exc)
            self._stop.wait(self.interval)


__all__ = ["EventPruner"]
