"""Convenience API for recording events from the control plane."""
from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from ..errors import OwehostError
from .store import EventStore
from .types import Alert, Event, EventResult, EventType

LOGGER = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


def _actor_type(actor: str) -> str:
    return SYSTEM_ACTOR if actor == SYSTEM_ACTOR else "admin"


class Emitter:
    """Stamp events with the node id and hand them to an :class:`EventStore`.

    Emission happens after the state change it records. A failure to write
    the event is logged and swallowed by :meth:`emit_safely` so that the
    converged state is not reported as a failed operation.
    """

    def __init__(self, store: EventStore, node_id: str = "node-1") -> None:
        """Bind the emitter to *store*."""
        self.store = store
        self.node_id = node_id

    def emit(
        self,
        event_type: EventType | str,
        result: EventResult | str = EventResult.SUCCESS,
        *,
        tenant_id: int | None = None,
        actor: str = SYSTEM_ACTOR,
        actor_type: str = SYSTEM_ACTOR,
        actor_ip: str = "",
        request_id: str = "",
        data: Mapping[str, Any] | None = None,
        error: str = "",
        duration_ms: int = 0,
    ) -> Event:
        """Build, save and return an event."""
        event = Event(
            type=event_type,
            result=result,
            tenant_id=tenant_id,
            actor=actor,
            actor_type=actor_type,
            actor_ip=actor_ip,
            request_id=request_id,
            data=dict(data or {}),
            error=error,
            duration_ms=duration_ms,
            node_id=self.node_id,
        )
        self.store.save(event)
        return event

    def emit_safely(self, event_type: EventType | str, **kwargs: Any) -> Event | None:
        """Like :meth:`emit` but log instead of raising when the write fails."""
        try:
            return self.emit(event_type, **kwargs)
        except OwehostError as exc:
            name = getattr(event_type, "value", event_type)
            LOGGER.warning("Failed to record %s event: %s", name, exc)
            return None

    def emit_failed(self, event_type: EventType | str, error: str, **kwargs: Any) -> Event:
        """Record a failed operation."""
        return self.emit(event_type, EventResult.FAILED, error=error, **kwargs)

    def _tenant_event(
        self,
        event_type: EventType,
        tenant_id: int,
        actor: str,
        data: Mapping[str, Any] | None = None,
        *,
        actor_type: str | None = None,
    ) -> Event:
        return self.emit(
            event_type,
            tenant_id=tenant_id,
            actor=actor,
            actor_type=actor_type or _actor_type(actor),
            data=data,
        )

    # ------------------------------------------------------------------
    # Tenant lifecycle
    # ------------------------------------------------------------------
    def account_created(self, tenant_id: int, name: str, actor: str) -> Event:
        """Record the creation of a tenant."""
        data = {"account_name": name}
        return self._tenant_event(EventType.ACCOUNT_CREATE, tenant_id, actor, data)

    def account_updated(self, tenant_id: int, name: str, actor: str) -> Event:
        """Record a reconcile of an existing tenant."""
        data = {"account_name": name}
        return self._tenant_event(EventType.ACCOUNT_UPDATE, tenant_id, actor, data)

    def account_suspended(self, tenant_id: int, reason: str, actor: str) -> Event:
        """Record a suspension."""
        data = {"reason": reason}
        return self._tenant_event(EventType.ACCOUNT_SUSPEND, tenant_id, actor, data)

    def account_unsuspended(self, tenant_id: int, actor: str) -> Event:
        """Record the lifting of a suspension."""
        return self._tenant_event(EventType.ACCOUNT_UNSUSPEND, tenant_id, actor)

    def account_terminated(self, tenant_id: int, reason: str, actor: str) -> Event:
        """Record a termination."""
        data = {"reason": reason}
        return self._tenant_event(EventType.ACCOUNT_TERMINATE, tenant_id, actor, data)

    def account_deleted(self, tenant_id: int, name: str, actor: str) -> Event:
        """Record the removal of a tenant."""
        data = {"account_name": name}
        return self._tenant_event(EventType.ACCOUNT_DELETE, tenant_id, actor, data)

    # ------------------------------------------------------------------
    # Sites, certificates and databases
    # ------------------------------------------------------------------
    def domain_added(
        self,
        tenant_id: int,
        domain: str,
        runtime: str,
        actor: str = SYSTEM_ACTOR,
    ) -> Event:
        """Record a new site."""
        data = {"domain": domain, "runtime": runtime}
        return self._tenant_event(EventType.DOMAIN_ADD, tenant_id, actor, data)

    def domain_updated(
        self,
        tenant_id: int,
        domain: str,
        runtime: str,
        actor: str = SYSTEM_ACTOR,
    ) -> Event:
        """Record a reconcile of an existing site."""
        data = {"domain": domain, "runtime": runtime}
        return self._tenant_event(EventType.DOMAIN_UPDATE, tenant_id, actor, data)

    def domain_removed(self, tenant_id: int, domain: str, actor: str = SYSTEM_ACTOR) -> Event:
        """Record the removal of a site."""
        data = {"domain": domain}
        return self._tenant_event(EventType.DOMAIN_REMOVE, tenant_id, actor, data)

    def ssl_installed(
        self,
        tenant_id: int,
        domain: str,
        ssl_type: str,
        actor: str = SYSTEM_ACTOR,
    ) -> Event:
        """Record newly installed TLS material."""
        data = {"domain": domain, "ssl_type": ssl_type}
        return self._tenant_event(EventType.SSL_INSTALL, tenant_id, actor, data)

    def ssl_renewed(self, tenant_id: int, domain: str, actor: str = SYSTEM_ACTOR) -> Event:
        """Record a renewal."""
        data = {"domain": domain}
        return self._tenant_event(EventType.SSL_RENEW, tenant_id, actor, data)

    def database_created(
        self,
        tenant_id: int,
        name: str,
        engine: str,
        actor: str = SYSTEM_ACTOR,
    ) -> Event:
        """Record a new database."""
        data = {"database_name": name, "database_type": engine}
        return self._tenant_event(EventType.DATABASE_CREATE, tenant_id, actor, data)

    def database_deleted(self, tenant_id: int, name: str, actor: str = SYSTEM_ACTOR) -> Event:
        """Record a dropped database."""
        data = {"database_name": name}
        return self._tenant_event(EventType.DATABASE_DELETE, tenant_id, actor, data)

    # ------------------------------------------------------------------
    # Security
    # ------------------------------------------------------------------
    def login_success(self, tenant_id: int, username: str, actor_ip: str = "") -> Event:
        """Record a successful login."""
        return self.emit(
            EventType.LOGIN_SUCCESS,
            tenant_id=tenant_id,
            actor=username,
            actor_type="user",
            actor_ip=actor_ip,
            data={"username": username},
        )

    def login_failed(self, username: str, reason: str, actor_ip: str = "") -> Event:
        """Record a rejected login."""
        return self.emit_failed(
            EventType.LOGIN_FAILED,
            reason,
            actor=username,
            actor_type="user",
            actor_ip=actor_ip,
            data={"username": username, "reason": reason},
        )

    def password_changed(self, tenant_id: int, actor: str, actor_type: str = "user") -> Event:
        """Record a password change."""
        return self._tenant_event(
            EventType.PASSWORD_CHANGE,
            tenant_id,
            actor,
            actor_type=actor_type,
        )

    # ------------------------------------------------------------------
    # System
    # ------------------------------------------------------------------
    def config_changed(self, data: Mapping[str, Any], actor: str = SYSTEM_ACTOR) -> Event:
        """Record a configuration change such as a rebuild."""
        return self.emit(EventType.CONFIG_CHANGE, actor=actor, actor_type=SYSTEM_ACTOR, data=data)

    def service_restarted(self, service: str, actor: str = SYSTEM_ACTOR) -> Event:
        """Record a service reload or restart."""
        return self.emit(
            EventType.SERVICE_RESTART,
            actor=actor,
            actor_type=SYSTEM_ACTOR,
            data={"service": service},
        )

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------
    def security_alert(
        self,
        alert_type: str,
        severity: str,
        description: str,
        *,
        tenant_id: int | None = None,
        data: Mapping[str, Any] | None = None,
    ) -> Alert:
        """Raise a security alert."""
        alert = Alert(
            type=alert_type,
            severity=severity,
            description=description,
            tenant_id=tenant_id,
            data=dict(data or {}),
        )
        return self.store.save_alert(alert)


def record_safely(
    emitter: Emitter | None,
    helper: str,
    *args: Any,
    **kwargs: Any,
) -> Event | None:
    """Call the named :class:`Emitter` helper, logging instead of raising on failure.

    A missing *emitter* records nothing.
    """
    if emitter is None:
        return None
    try:
        return getattr(emitter, helper)(*args, **kwargs)
    except OwehostError as exc:
        LOGGER.warning("Failed to record %s event: %s", helper, exc)
        return None


__all__ = ["Emitter", "SYSTEM_ACTOR", "record_safely"]
