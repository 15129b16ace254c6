"""Alert lifecycle state machine.

    ACTIVE ──► ACKNOWLEDGED ──► RESOLVED
      │  ▲          │
      │  └───┐      ├─────────► ESCALATED ──► (ACKNOWLEDGED | RESOLVED | DISMISSED)
      │      │      │
      └──────┴──────┴─────────► DISMISSED

RESOLVED and DISMISSED are terminal. Every function takes an Alert and
returns an updated copy; an illegal transition raises InvalidTransitionError
before anything is built, so a rejected call leaves no trace.

acknowledged_at / resolved_at / escalated_at / dismissed_at are first-write-wins.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone

from alerting.enums import (
    AlertSeverity,
    AlertStatus,
    DeliveryStatus,
    NotificationMethod,
)
from alerting.errors import InvalidTransitionError
from alerting.records import (
    ActionEntry,
    Alert,
    AlertCreationRequest,
    EscalationEntry,
    NotificationEntry,
)

ACKNOWLEDGE = "acknowledge"
RESOLVE = "resolve"
ESCALATE = "escalate"
DISMISS = "dismiss"

# transition -> statuses it may start from
TRANSITIONS: dict[str, frozenset[AlertStatus]] = {
    ACKNOWLEDGE: frozenset({AlertStatus.active, AlertStatus.escalated}),
    RESOLVE: frozenset({AlertStatus.active, AlertStatus.acknowledged, AlertStatus.escalated}),
    ESCALATE: frozenset({AlertStatus.active, AlertStatus.acknowledged}),
    DISMISS: frozenset({AlertStatus.active, AlertStatus.acknowledged, AlertStatus.escalated}),
}

URGENT_SEVERITIES = frozenset({AlertSeverity.critical, AlertSeverity.emergency})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def can_transition(alert: Alert, transition: str) -> bool:
    return alert.status in TRANSITIONS[transition]


def _require(alert: Alert, transition: str) -> None:
    if not can_transition(alert, transition):
        raise InvalidTransitionError(transition, alert.status, alert.id)


def _action(action: str, actor: str, ts: datetime, details: str | None) -> ActionEntry:
    return ActionEntry(action=action, performed_by=actor, performed_at=ts, details=details or "")


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------

def create_alert(
    request: AlertCreationRequest,
    *,
    now: datetime | None = None,
    alert_id: str | None = None,
) -> Alert:
    """Build a fresh ACTIVE alert from a creation request."""
    return Alert(
        id=alert_id or str(uuid.uuid4()),
        tank_id=request.tank_id,
        type=request.type,
        category=request.category,
        severity=request.severity,
        status=AlertStatus.active,
        title=request.title,
        message=request.message,
        source=request.source,
        location=request.location,
        sensor_data=request.sensor_data,
        context=dict(request.context),
        created_at=now or _utcnow(),
        requires_acknowledgment=request.requires_acknowledgment,
        requires_resolution=request.requires_resolution,
        auto_escalate=request.auto_escalate,
        escalation_delay_seconds=request.escalation_delay_seconds,
    )


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

def acknowledge(
    alert: Alert,
    actor_id: str,
    notes: str | None = None,
    *,
    now: datetime | None = None,
) -> Alert:
    _require(alert, ACKNOWLEDGE)
    ts = now or _utcnow()
    merged_notes = alert.notes
    if notes:
        merged_notes = f"{alert.notes}\n{notes}" if alert.notes else notes
    return alert.model_copy(update={
        "status": AlertStatus.acknowledged,
        "acknowledged_by": alert.acknowledged_by or actor_id,
        "acknowledged_at": alert.acknowledged_at or ts,
        "acknowledgment_count": alert.acknowledgment_count + 1,
        "notes": merged_notes,
        "action_history": alert.action_history + (_action("acknowledged", actor_id, ts, notes),),
        "version": alert.version + 1,
    })


def resolve(
    alert: Alert,
    actor_id: str,
    resolution_notes: str | None = None,
    *,
    now: datetime | None = None,
) -> Alert:
    _require(alert, RESOLVE)
    ts = now or _utcnow()
    return alert.model_copy(update={
        "status": AlertStatus.resolved,
        "resolved_by": actor_id,
        "resolved_at": alert.resolved_at or ts,
        "resolution_notes": resolution_notes,
        "action_history": alert.action_history + (_action("resolved", actor_id, ts, resolution_notes),),
        "version": alert.version + 1,
    })


def escalate(
    alert: Alert,
    target_id: str,
    reason: str,
    *,
    actor_id: str | None = None,
    now: datetime | None = None,
) -> Alert:
    """Escalate one level. The action entry is attributed to actor_id, else the target."""
    _require(alert, ESCALATE)
    ts = now or _utcnow()
    level = alert.escalation_level + 1
    entry = EscalationEntry(level=level, escalated_to=target_id, escalated_at=ts, reason=reason)
    return alert.model_copy(update={
        "status": AlertStatus.escalated,
        "escalated_to": target_id,
        "escalated_at": alert.escalated_at or ts,
        "escalation_reason": reason,
        "escalation_level": level,
        "escalation_history": alert.escalation_history + (entry,),
        "action_history": alert.action_history + (
            _action("escalated", actor_id or target_id, ts, reason),
        ),
        "version": alert.version + 1,
    })


def dismiss(
    alert: Alert,
    actor_id: str,
    reason: str | None = None,
    *,
    now: datetime | None = None,
) -> Alert:
    _require(alert, DISMISS)
    ts = now or _utcnow()
    return alert.model_copy(update={
        "status": AlertStatus.dismissed,
        "dismissed_by": actor_id,
        "dismissed_at": alert.dismissed_at or ts,
        "action_history": alert.action_history + (_action("dismissed", actor_id, ts, reason),),
        "version": alert.version + 1,
    })


def record_notification(
    alert: Alert,
    method: NotificationMethod,
    recipient: str,
    delivery_status: DeliveryStatus,
    error: str | None = None,
    *,
    now: datetime | None = None,
) -> Alert:
    """Log a delivery outcome. Allowed in every status, status is unchanged."""
    entry = NotificationEntry(
        method=method,
        recipient=recipient,
        sent_at=now or _utcnow(),
        status=delivery_status,
        error=error,
    )
    return alert.model_copy(update={
        "notification_history": alert.notification_history + (entry,),
        "notification_count": alert.notification_count + 1,
        "version": alert.version + 1,
    })


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

def should_auto_escalate(alert: Alert, now: datetime) -> bool:
    if not alert.auto_escalate or alert.status != AlertStatus.active:
        return False
    return (now - alert.created_at).total_seconds() >= alert.escalation_delay_seconds


def is_urgent(alert: Alert) -> bool:
    return alert.severity in URGENT_SEVERITIES


def needs_immediate_attention(alert: Alert) -> bool:
    return alert.status == AlertStatus.active and (
        is_urgent(alert) or alert.requires_acknowledgment
    )


def _minutes_since(ts: datetime | None, now: datetime | None) -> int | None:
    if ts is None:
        return None
    return int(((now or _utcnow()) - ts).total_seconds() // 60)


def duration_minutes(alert: Alert, now: datetime | None = None) -> int:
    return _minutes_since(alert.created_at, now)


def time_since_acknowledgment(alert: Alert, now: datetime | None = None) -> int | None:
    return _minutes_since(alert.acknowledged_at, now)


def time_since_resolution(alert: Alert, now: datetime | None = None) -> int | None:
    return _minutes_since(alert.resolved_at, now)
