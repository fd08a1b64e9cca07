"""Tests for the day-partitioned event log and the alert store."""
from __future__ import annotations

import json
import time
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from owehost.errors import AlreadyExistsError, CorruptError, NotFoundError, ValidationError
from owehost.events import (
    Alert,
    Event,
    EventFilter,
    EventPruner,
    EventResult,
    EventStore,
    EventType,
)
from owehost.models import timestamp


@pytest.fixture
def store(tmp_path: Path) -> EventStore:
    return EventStore(tmp_path / "events", tmp_path / "alerts", query_window_days=30)


def _ago(**delta: float) -> str:
    return timestamp(datetime.now(UTC) - timedelta(**delta))


def test_save_writes_immutable_day_partitioned_file(store: EventStore, tmp_path: Path) -> None:
    """Events land under YYYY/MM/DD with a read-only mode."""
    event = Event(
        type=EventType.ACCOUNT_CREATE,
        tenant_id=10001,
        timestamp="2024-03-05T14:07:09Z",
        id="evt_abc",
    )

    path = store.save(event)

    day = tmp_path / "events" / "2024" / "03" / "05"
    assert path == day / "140709-account.create-evt_abc.json"
    assert path.stat().st_mode & 0o777 == 0o444
    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["account_id"] == 10001
    assert payload["type"] == "account.create"
    assert payload["result"] == "success"


def test_existing_event_is_never_replaced(store: EventStore) -> None:
    """Saving the same id twice fails instead of overwriting."""
    event = Event(type="domain.add", timestamp="2024-03-05T14:07:09Z", id="evt_dup")
    store.save(event)

    with pytest.raises(AlreadyExistsError):
        store.save(Event(type="domain.add", timestamp="2024-03-05T14:07:09Z", id="evt_dup"))


def test_save_assigns_id_and_timestamp(store: EventStore) -> None:
    """Unstamped events get a fresh id and the current time."""
    event = Event(type=EventType.CONFIG_CHANGE)

    store.save(event)

    assert event.id.startswith("evt_")
    assert len(event.id) == 36
    assert event.timestamp.endswith("Z")
    assert store.get_event(event.id).type == "system.config.change"


def test_query_filters_sorts_and_paginates(store: EventStore) -> None:
    """Results are newest first and honour filters, offset and limit."""
    store.save(Event(type="domain.add", tenant_id=1, timestamp=_ago(hours=3)))
    store.save(Event(type="domain.add", tenant_id=2, timestamp=_ago(hours=2)))
    store.save(Event(type="account.update", tenant_id=1, timestamp=_ago(hours=1)))
    store.save(
        Event(type="domain.add", tenant_id=1, result=EventResult.FAILED, timestamp=_ago(minutes=5))
    )

    everything = store.query()
    assert [event.type for event in everything][:2] == ["domain.add", "account.update"]
    assert len(everything) == 4

    tenant_one = store.query(EventFilter(tenant_id=1, type=EventType.DOMAIN_ADD))
    assert len(tenant_one) == 2
    assert store.query(EventFilter(result="failed"))[0].tenant_id == 1
    assert len(store.query(EventFilter(limit=2, offset=1))) == 2
    assert len(store.tenant_events(1)) == 3


def test_query_window_excludes_old_events(store: EventStore) -> None:
    """Events older than the default window are only found with an explicit start."""
    store.save(Event(type="domain.add", timestamp=_ago(days=45)))
    store.save(Event(type="domain.add", timestamp=_ago(days=1)))

    assert len(store.query()) == 1
    since = datetime.now(UTC) - timedelta(days=60)
    assert len(store.query(EventFilter(start=since))) == 2


def test_unreadable_files_are_skipped(store: EventStore) -> None:
    """Garbage in a day directory does not break queries."""
    path = store.save(Event(type="domain.add", timestamp=_ago(minutes=1)))
    (path.parent / "junk.json").write_text("{not json", encoding="utf-8")

    assert len(store.query()) == 1


def test_stats_and_security_events(store: EventStore) -> None:
    """Stats count by type, result and actor type."""
    store.save(Event(type="security.login.failed", actor_type="user", result="failed"))
    store.save(Event(type="security.login.success", actor_type="user"))
    store.save(Event(type="account.create", actor_type="admin"))

    stats = store.stats(days=7).to_dict()

    assert stats["total_events"] == 3
    assert stats["by_result"] == {"failed": 1, "success": 2}
    assert stats["by_actor_type"] == {"admin": 1, "user": 2}
    assert stats["last_event_time"] is not None
    assert len(store.security_events()) == 2
    assert len(store.security_events(limit=1)) == 1


def test_prune_removes_old_days_and_empty_parents(store: EventStore, tmp_path: Path) -> None:
    """Day directories past retention go, as do emptied month and year directories."""
    store.save(Event(type="domain.add", timestamp="2001-01-01T00:00:00Z"))
    store.save(Event(type="domain.add", timestamp="2001-01-02T00:00:00Z"))
    recent = store.save(Event(type="domain.add", timestamp=_ago(minutes=1)))

    assert store.prune(90) == 2

    assert not (tmp_path / "events" / "2001").exists()
    assert recent.exists()


def test_pruner_validates_and_runs(store: EventStore) -> None:
    """The pruner rejects non-positive settings and prunes on demand."""
    with pytest.raises(ValueError):
        EventPruner(store, retention_days=0)
    with pytest.raises(ValueError):
        EventPruner(store, interval_hours=0)

    store.save(Event(type="domain.add", timestamp="2001-01-01T00:00:00Z"))
    pruner = EventPruner(store, retention_days=30, interval_hours=1)

    assert pruner.run_once() == 1


def test_pruner_thread_starts_and_stops(store: EventStore) -> None:
    """The background thread runs once immediately and stops on request."""
    store.save(Event(type="domain.add", timestamp="2001-01-01T00:00:00Z"))
    pruner = EventPruner(store, retention_days=30, interval_hours=24)

    pruner.start()
    pruner.start()
    assert pruner.running
    for _ in range(100):
        if not (store.events_dir / "2001").exists():
            break
        time.sleep(0.02)
    pruner.stop()

    assert not pruner.running
    assert not (store.events_dir / "2001").exists()


def test_alert_lifecycle(store: EventStore, tmp_path: Path) -> None:
    """Alerts are listed until resolved and then kept with resolution details."""
    alert = store.save_alert(
        Alert(type="brute_force", severity="high", description="Many failures", tenant_id=5)
    )

    files = list((tmp_path / "alerts").glob("*.json"))
    assert len(files) == 1
    assert files[0].name.endswith(f"-{alert.id}.json")
    assert alert.id.startswith("alert_")
    assert [item.id for item in store.list_alerts()] == [alert.id]

    resolved = store.resolve_alert(alert.id, "ops")

    assert resolved.resolved_by == "ops"
    assert store.list_alerts() == []
    assert store.list_alerts(unresolved_only=False)[0].resolved is True
    assert store.get_alert(alert.id).resolved_at is not None
    with pytest.raises(NotFoundError):
        store.get_alert("alert_missing")


def test_alert_severity_is_checked(store: EventStore, tmp_path: Path) -> None:
    """Unknown severities are refused when built and treated as corrupt when read."""
    with pytest.raises(ValidationError):
        Alert(type="port_scan", severity="urgent")

    alerts_dir = tmp_path / "alerts"
    alerts_dir.mkdir()
    payload = {
        "id": "alert_bogus",
        "type": "port_scan",
        "severity": "urgent",
        "timestamp": timestamp(),
    }
    (alerts_dir / "2026-01-01-000000-alert_bogus.json").write_text(
        json.dumps(payload),
        encoding="utf-8",
    )

    with pytest.raises(CorruptError):
        store.get_alert("alert_bogus")
    assert store.list_alerts() == []
