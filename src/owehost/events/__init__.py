"""Append-only audit events and security alerts."""
from __future__ import annotations

from .emitter import SYSTEM_ACTOR, Emitter, record_safely
from .pruner import EventPruner
from .store import DEFAULT_QUERY_WINDOW_DAYS, EventStore
from .types import (
    ALERT_SEVERITIES,
    SECURITY_PREFIX,
    Alert,
    Event,
    EventFilter,
    EventResult,
    EventStats,
    EventType,
    new_alert_id,
    new_event_id,
)

__all__ = [
    "ALERT_SEVERITIES",
    "Alert",
    "DEFAULT_QUERY_WINDOW_DAYS",
    "Emitter",
    "Event",
    "EventFilter",
    "EventPruner",
    "EventResult",
    "EventStats",
    "EventStore",
    "EventType",
    "SECURITY_PREFIX",
    "SYSTEM_ACTOR",
    "new_alert_id",
    "new_event_id",
    "record_safely",
]
