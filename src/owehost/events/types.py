"""Event, alert and filter types of the audit log."""
from __future__ import annotations

import secrets
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ..errors import ValidationError
from ..models import parse_timestamp, timestamp


class EventType(str, Enum):
    """Dotted event type namespace."""

    ACCOUNT_CREATE = "account.create"
    ACCOUNT_UPDATE = "account.update"
    ACCOUNT_SUSPEND = "account.suspend"
    ACCOUNT_UNSUSPEND = "account.unsuspend"
    ACCOUNT_TERMINATE = "account.terminate"
    ACCOUNT_DELETE = "account.delete"

    DOMAIN_ADD = "domain.add"
    DOMAIN_REMOVE = "domain.remove"
    DOMAIN_UPDATE = "domain.update"
    SUBDOMAIN_ADD = "subdomain.add"
    SUBDOMAIN_REMOVE = "subdomain.remove"

    DATABASE_CREATE = "database.create"
    DATABASE_DELETE = "database.delete"
    DATABASE_BACKUP = "database.backup"
    DATABASE_RESTORE = "database.restore"

    SSL_INSTALL = "ssl.install"
    SSL_RENEW = "ssl.renew"
    SSL_REMOVE = "ssl.remove"
    SSL_EXPIRING = "ssl.expiring"

    EMAIL_ACCOUNT_CREATE = "email.account.create"
    EMAIL_ACCOUNT_DELETE = "email.account.delete"
    EMAIL_FORWARDER_ADD = "email.forwarder.add"

    FTP_ACCOUNT_CREATE = "ftp.account.create"
    FTP_ACCOUNT_DELETE = "ftp.account.delete"

    BACKUP_START = "backup.start"
    BACKUP_COMPLETE = "backup.complete"
    BACKUP_FAILED = "backup.failed"
    RESTORE_START = "restore.start"
    RESTORE_COMPLETE = "restore.complete"

    LOGIN_SUCCESS = "security.login.success"
    LOGIN_FAILED = "security.login.failed"
    PASSWORD_CHANGE = "security.password.change"
    TWO_FACTOR_ENABLE = "security.2fa.enable"
    TWO_FACTOR_DISABLE = "security.2fa.disable"
    APIKEY_CREATE = "security.apikey.create"
    APIKEY_REVOKE = "security.apikey.revoke"

    CONFIG_CHANGE = "system.config.change"
    SERVICE_RESTART = "system.service.restart"
    NODE_JOIN = "system.node.join"
    NODE_LEAVE = "system.node.leave"

    CRON_JOB_CREATE = "cron.job.create"
    CRON_JOB_DELETE = "cron.job.delete"
    CRON_JOB_EXECUTE = "cron.job.execute"


class EventResult(str, Enum):
    """Outcome recorded on an event."""

    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"


SECURITY_PREFIX = "security."
ALERT_SEVERITIES = ("low", "medium", "high", "critical")


def new_event_id() -> str:
    """Return a fresh event id (``evt_<32 hex>``)."""
    return f"evt_{secrets.token_hex(16)}"


def new_alert_id() -> str:
    """Return a fresh alert id (``alert_<24 hex>``)."""
    return f"alert_{secrets.token_hex(12)}"


def _value(item: str | Enum) -> str:
    return str(item.value) if isinstance(item, Enum) else str(item)


def _require_str(data: Mapping[str, Any], key: str, label: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise ValidationError(f"{label}.{key}", "is required")
    return value


@dataclass(slots=True)
class Event:
    """An immutable audit record."""

    type: str
    actor: str = "system"
    actor_type: str = "system"
    tenant_id: int | None = None
    actor_ip: str = ""
    data: dict[str, Any] = field(default_factory=dict)
    result: str = EventResult.SUCCESS.value
    error: str = ""
    duration_ms: int = 0
    request_id: str = ""
    node_id: str = ""
    id: str = ""
    timestamp: str = ""

    def __post_init__(self) -> None:
        self.type = _value(self.type)
        self.result = _value(self.result)

    @property
    def moment(self) -> datetime | None:
        """Return the parsed timestamp."""
        return parse_timestamp(self.timestamp)

    def stamp(self) -> None:
        """Fill in the id and timestamp when they are not set yet."""
        if not self.id:
            self.id = new_event_id()
        if not self.timestamp:
            self.timestamp = timestamp()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Event:
        """Build an event from its JSON form."""
        if not isinstance(data, Mapping):
            raise ValidationError("event", "expected an object")
        tenant_id = data.get("account_id")
        payload = data.get("data")
        duration = data.get("duration_ms")
        return cls(
            id=_require_str(data, "id", "event"),
            type=_require_str(data, "type", "event"),
            timestamp=_require_str(data, "timestamp", "event"),
            tenant_id=tenant_id if isinstance(tenant_id, int) and tenant_id > 0 else None,
            actor=str(data.get("actor") or ""),
            actor_type=str(data.get("actor_type") or ""),
            actor_ip=str(data.get("actor_ip") or ""),
            data=dict(payload) if isinstance(payload, Mapping) else {},
            result=str(data.get("result") or EventResult.SUCCESS.value),
            error=str(data.get("error") or ""),
            duration_ms=duration if isinstance(duration, int) else 0,
            request_id=str(data.get("request_id") or ""),
            node_id=str(data.get("node_id") or ""),
        )

    def to_dict(self) -> dict[str, object]:
        """Return the JSON form; empty optional fields are omitted."""
        payload: dict[str, object] = {"id": self.id, "type": self.type}
        if self.tenant_id is not None:
            payload["account_id"] = self.tenant_id
        payload.update(
            {
                "actor": self.actor,
                "actor_type": self.actor_type,
            }
        )
        if self.actor_ip:
            payload["actor_ip"] = self.actor_ip
        payload.update(
            {
                "timestamp": self.timestamp,
                "data": dict(self.data),
                "result": self.result,
            }
        )
        if self.error:
            payload["error"] = self.error
        if self.duration_ms:
            payload["duration_ms"] = self.duration_ms
        if self.request_id:
            payload["request_id"] = self.request_id
        if self.node_id:
            payload["node_id"] = self.node_id
        return payload


@dataclass(slots=True)
class EventFilter:
    """Query parameters for :meth:`EventStore.query`.

    ``start``/``end`` bound the time window; when ``start`` is omitted the
    store's default query window applies.
    """

    tenant_id: int | None = None
    type: str | None = None
    actor: str | None = None
    actor_type: str | None = None
    result: str | None = None
    request_id: str | None = None
    start: datetime | None = None
    end: datetime | None = None
    limit: int = 0
    offset: int = 0

    def matches(self, event: Event) -> bool:
        """Return True when *event* satisfies every set criterion."""
        if self.tenant_id is not None and event.tenant_id != self.tenant_id:
            return False
        if self.type is not None and event.type != _value(self.type):
            return False
        if self.actor is not None and event.actor != self.actor:
            return False
        if self.actor_type is not None and event.actor_type != self.actor_type:
            return False
        if self.result is not None and event.result != _value(self.result):
            return False
        if self.request_id is not None and event.request_id != self.request_id:
            return False
        moment = event.moment
        if self.start is not None and (moment is None or moment < self.start):
            return False
        if self.end is not None and (moment is None or moment > self.end):
            return False
        return True


@dataclass(slots=True)
class EventStats:
    """Histogram of the events inside a window."""

    total: int = 0
    by_type: dict[str, int] = field(default_factory=dict)
    by_result: dict[str, int] = field(default_factory=dict)
    by_actor_type: dict[str, int] = field(default_factory=dict)
    last_event_at: str | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "total_events": self.total,
            "by_type": dict(sorted(self.by_type.items())),
            "by_result": dict(sorted(self.by_result.items())),
            "by_actor_type": dict(sorted(self.by_actor_type.items())),
            "last_event_time": self.last_event_at,
        }


@dataclass(slots=True)
class Alert:
    """A mutable security alert."""

    type: str
    severity: str = "medium"
    description: str = ""
    tenant_id: int | None = None
    data: dict[str, Any] = field(default_factory=dict)
    id: str = ""
    timestamp: str = ""
    resolved: bool = False
    resolved_at: str | None = None
    resolved_by: str | None = None

    def __post_init__(self) -> None:
        if self.severity not in ALERT_SEVERITIES:
            allowed = ", ".join(ALERT_SEVERITIES)
            raise ValidationError("alert.severity", f"must be one of {allowed}")

    def stamp(self) -> None:
        """Fill in the id and timestamp when they are not set yet."""
        if not self.id:
            self.id = new_alert_id()
        if not self.timestamp:
            self.timestamp = timestamp()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Alert:
        """Build an alert from its JSON form."""
        if not isinstance(data, Mapping):
            raise ValidationError("alert", "expected an object")
        tenant_id = data.get("account_id")
        payload = data.get("data")
        resolved_at = data.get("resolved_at")
        resolved_by = data.get("resolved_by")
        return cls(
            id=_require_str(data, "id", "alert"),
            type=_require_str(data, "type", "alert"),
            timestamp=_require_str(data, "timestamp", "alert"),
            severity=str(data.get("severity") or "medium"),
            description=str(data.get("description") or ""),
            tenant_id=tenant_id if isinstance(tenant_id, int) and tenant_id > 0 else None,
            data=dict(payload) if isinstance(payload, Mapping) else {},
            resolved=bool(data.get("resolved", False)),
            resolved_at=resolved_at if isinstance(resolved_at, str) else None,
            resolved_by=resolved_by if isinstance(resolved_by, str) else None,
        )

    def to_dict(self) -> dict[str, object]:
        """Return the JSON form."""
        payload: dict[str, object] = {
            "id": self.id,
            "type": self.type,
            "severity": self.severity,
        }
        if self.tenant_id is not None:
            payload["account_id"] = self.tenant_id
        payload.update(
            {
                "description": self.description,
                "data": dict(self.data),
                "timestamp": self.timestamp,
                "resolved": self.resolved,
            }
        )
        if self.resolved_at is not None:
            payload["resolved_at"] = self.resolved_at
        if self.resolved_by is not None:
            payload["resolved_by"] = self.resolved_by
        return payload


__all__ = [
    "ALERT_SEVERITIES",
    "Alert",
    "Event",
    "EventFilter",
    "EventResult",
    "EventStats",
    "EventType",
    "SECURITY_PREFIX",
    "new_alert_id",
    "new_event_id",
]
