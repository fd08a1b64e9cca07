"""Day-partitioned, append-only event log and the mutable alert store.

Events live at ``<events>/YYYY/MM/DD/HHMMSS-<type>-<id>.json`` with mode
0444. A file is linked into place exclusively, so an existing event is
never replaced. Alerts live flat in ``<alerts>/YYYY-MM-DD-HHMMSS-<id>.json``
and are rewritten when resolved.
"""
from __future__ import annotations

import logging
import shutil
import threading
from collections import Counter
from datetime import date, datetime, timedelta
from pathlib import Path

from ..atomic import FILE_MODE, IMMUTABLE_FILE_MODE, ensure_dir, read_json, write_json
from ..errors import CorruptError, NotFoundError, StorageError, ValidationError
from ..models import parse_timestamp, timestamp, utc_now
from .types import SECURITY_PREFIX, Alert, Event, EventFilter, EventStats

LOGGER = logging.getLogger(__name__)

DEFAULT_QUERY_WINDOW_DAYS = 30


def _day_parts(day: date) -> tuple[str, str, str]:
    return f"{day.year:04d}", f"{day.month:02d}", f"{day.day:02d}"


class EventStore:
    """Persist and query audit events and security alerts."""

    def __init__(
        self,
        events_dir: Path,
        alerts_dir: Path,
        *,
        query_window_days: int = DEFAULT_QUERY_WINDOW_DAYS,
    ) -> None:
        """Bind the store to its two directories."""
        self.events_dir = events_dir
        self.alerts_dir = alerts_dir
        self.query_window_days = query_window_days
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------
    def day_dir(self, day: date) -> Path:
        """Return the directory holding the events of *day*."""
        year, month, dom = _day_parts(day)
        return self.events_dir / year / month / dom

    def event_path(self, event: Event) -> Path:
        """Return the file an event is written to."""
        moment = event.moment
        if moment is None:
            raise ValidationError("event.timestamp", f"invalid timestamp {event.timestamp!r}")
        name = f"{moment.strftime('%H%M%S')}-{event.type}-{event.id}.json"
        return self.day_dir(moment.date()) / name

    def save(self, event: Event) -> Path:
        """Write *event*, assigning an id and timestamp when missing."""
        event.stamp()
        path = self.event_path(event)
        with self._lock:
            ensure_dir(path.parent)
            write_json(path, event.to_dict(), mode=IMMUTABLE_FILE_MODE, exclusive=True)
        LOGGER.debug("Recorded event %s (%s)", event.id, event.type)
        return path

    def _read_event(self, path: Path) -> Event | None:
        try:
            return Event.from_dict(read_json(path))
        except (NotFoundError, CorruptError, StorageError, ValidationError) as exc:
            LOGGER.debug("Skipping unreadable event %s: %s", path, exc)
            return None

    def _window(self, start: datetime | None, end: datetime | None) -> tuple[datetime, datetime]:
        end = end or utc_now()
        start = start or end - timedelta(days=self.query_window_days)
        return start, end

    def _iter_days(self, start: datetime, end: datetime) -> list[Path]:
        days: list[Path] = []
        day = start.date()
        while day <= end.date():
            directory = self.day_dir(day)
            if directory.is_dir():
                days.append(directory)
            day += timedelta(days=1)
        return days

    def query(self, criteria: EventFilter | None = None) -> list[Event]:
        """Return matching events, newest first, paginated by ``limit``/``offset``.

        Only day directories inside the time window are read.
        """
        criteria = criteria or EventFilter()
        start, end = self._window(criteria.start, criteria.end)
        window = EventFilter(
            tenant_id=criteria.tenant_id,
            type=criteria.type,
            actor=criteria.actor,
            actor_type=criteria.actor_type,
            result=criteria.result,
            request_id=criteria.request_id,
            start=start,
            end=end,
        )
        events: list[Event] = []
        for directory in self._iter_days(start, end):
            for path in sorted(directory.glob("*.json")):
                event = self._read_event(path)
                if event is not None and window.matches(event):
                    events.append(event)
        events.sort(key=lambda item: (item.timestamp, item.id), reverse=True)
        if criteria.offset > 0:
            events = events[criteria.offset :]
        if criteria.limit > 0:
            events = events[: criteria.limit]
        return events

    def get_event(self, event_id: str) -> Event:
        """Return the event with *event_id* from within the query window."""
        start, end = self._window(None, None)
        for directory in reversed(self._iter_days(start, end)):
            for path in directory.glob(f"*-{event_id}.json"):
                event = self._read_event(path)
                if event is not None and event.id == event_id:
                    return event
        raise NotFoundError(f"Event {event_id} not found")

    def stats(self, days: int = 7) -> EventStats:
        """Return totals and histograms for the last *days* days."""
        events = self.query(EventFilter(start=utc_now() - timedelta(days=days)))
        stats = EventStats(total=len(events))
        stats.by_type = dict(Counter(event.type for event in events))
        stats.by_result = dict(Counter(event.result for event in events))
        stats.by_actor_type = dict(Counter(event.actor_type for event in events))
        if events:
            stats.last_event_at = max(event.timestamp for event in events)
        return stats

    def tenant_events(self, tenant_id: int, limit: int = 50) -> list[Event]:
        """Return the most recent events of one tenant."""
        return self.query(EventFilter(tenant_id=tenant_id, limit=limit))

    def security_events(self, limit: int = 50) -> list[Event]:
        """Return the most recent ``security.*`` events."""
        matching = [event for event in self.query() if event.type.startswith(SECURITY_PREFIX)]
        return matching[:limit] if limit > 0 else matching

    def prune(self, keep_days: int) -> int:
        """Remove day directories older than *keep_days*; return the events removed.

        Month and year directories left empty are removed as well.
        """
        cutoff = (utc_now() - timedelta(days=keep_days)).date()
        removed = 0
        with self._lock:
            for year_dir in self._numeric_children(self.events_dir):
                for month_dir in self._numeric_children(year_dir):
                    for day_dir in self._numeric_children(month_dir):
                        try:
                            day = date(int(year_dir.name), int(month_dir.name), int(day_dir.name))
                        except ValueError:
                            continue
                        if day >= cutoff:
                            continue
                        removed += sum(1 for _ in day_dir.glob("*.json"))
                        try:
                            shutil.rmtree(day_dir)
                        except OSError as exc:
                            raise StorageError(f"Failed to prune {day_dir}: {exc}") from exc
                    self._remove_if_empty(month_dir)
                self._remove_if_empty(year_dir)
        if removed:
            LOGGER.info("Pruned %s events older than %s days", removed, keep_days)
        return removed

    @staticmethod
    def _numeric_children(directory: Path) -> list[Path]:
        try:
            return sorted(p for p in directory.iterdir() if p.is_dir() and p.name.isdigit())
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise StorageError(f"Failed to read {directory}: {exc}") from exc

    @staticmethod
    def _remove_if_empty(directory: Path) -> None:
        try:
            directory.rmdir()
        except OSError:
            return

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------
    def alert_path(self, alert: Alert) -> Path:
        """Return the file an alert is stored in."""
        moment = parse_timestamp(alert.timestamp)
        if moment is None:
            raise ValidationError("alert.timestamp", f"invalid timestamp {alert.timestamp!r}")
        return self.alerts_dir / f"{moment.strftime('%Y-%m-%d-%H%M%S')}-{alert.id}.json"

    def save_alert(self, alert: Alert) -> Alert:
        """Write a new alert, assigning an id and timestamp when missing."""
        alert.stamp()
        with self._lock:
            ensure_dir(self.alerts_dir)
            write_json(self.alert_path(alert), alert.to_dict(), mode=FILE_MODE)
        LOGGER.info("Raised %s alert %s: %s", alert.severity, alert.id, alert.description)
        return alert

    def _find_alert(self, alert_id: str) -> Path:
        matches = sorted(self.alerts_dir.glob(f"*-{alert_id}.json"))
        if not matches:
            raise NotFoundError(f"Alert {alert_id} not found")
        return matches[0]

    def get_alert(self, alert_id: str) -> Alert:
        """Return one alert."""
        path = self._find_alert(alert_id)
        try:
            return Alert.from_dict(read_json(path))
        except ValidationError as exc:
            raise CorruptError(path, str(exc)) from exc

    def list_alerts(self, *, unresolved_only: bool = True) -> list[Alert]:
        """Return alerts, newest first."""
        alerts: list[Alert] = []
        for path in sorted(self.alerts_dir.glob("*.json")):
            try:
                alert = Alert.from_dict(read_json(path))
            except (NotFoundError, CorruptError, StorageError, ValidationError) as exc:
                LOGGER.debug("Skipping unreadable alert %s: %s", path, exc)
                continue
            if unresolved_only and alert.resolved:
                continue
            alerts.append(alert)
        alerts.sort(key=lambda item: (item.timestamp, item.id), reverse=True)
        return alerts

    def resolve_alert(self, alert_id: str, actor: str) -> Alert:
        """Mark an alert resolved by *actor* and rewrite its file."""
        with self._lock:
            path = self._find_alert(alert_id)
            try:
                alert = Alert.from_dict(read_json(path))
            except ValidationError as exc:
                raise CorruptError(path, str(exc)) from exc
            alert.resolved = True
            alert.resolved_at = timestamp()
            alert.resolved_by = actor
            write_json(path, alert.to_dict(), mode=FILE_MODE)
        return alert


__all__ = ["DEFAULT_QUERY_WINDOW_DAYS", "EventStore"]
