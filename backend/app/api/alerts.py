"""Alerts API: listing, details and lifecycle transitions.

Actor ids are opaque strings from the request body; authentication happens
in front of this service.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel

from alerting import lifecycle
from alerting.enums import (
    AlertCategory,
    AlertSeverity,
    AlertStatus,
    AlertType,
    DeliveryStatus,
    NotificationMethod,
)
from alerting.errors import (
    ConcurrencyConflictError,
    ConfigurationError,
    InvalidTransitionError,
    NotFoundError,
)
from alerting.records import Alert
from services.alert_service import AlertService

router = APIRouter(prefix="/api/alerts", tags=["alerts"])

UNFINISHED_STATUSES = (AlertStatus.active, AlertStatus.acknowledged, AlertStatus.escalated)


def get_alert_service(request: Request) -> AlertService:
    return request.app.state.alert_service


async def run_or_http(coro):
    """Await a service call, translating alerting errors into HTTP errors."""
    try:
        return await coro
    except NotFoundError as exc:
        raise HTTPException(404, str(exc))
    except InvalidTransitionError as exc:
        raise HTTPException(409, {
            "error": "invalid_transition",
            "transition": exc.transition,
            "current_status": exc.current_status.value,
            "reason": exc.reason,
            "message": str(exc),
        })
    except ConcurrencyConflictError as exc:
        raise HTTPException(409, {"error": "concurrent_update", "message": str(exc)})
    except ConfigurationError as exc:
        raise HTTPException(422, str(exc))


# ---------------------------------------------------------------------------
#  Schemas
# ---------------------------------------------------------------------------

class AlertOut(BaseModel):
    id: str
    tank_id: str | None
    type: AlertType
    category: AlertCategory
    severity: AlertSeverity
    status: AlertStatus
    title: str
    message: str
    location: str | None
    acknowledged_by: str | None
    acknowledged_at: datetime | None
    resolved_by: str | None
    resolved_at: datetime | None
    escalated_to: str | None
    escalated_at: datetime | None
    escalation_level: int
    acknowledgment_count: int
    notification_count: int
    requires_acknowledgment: bool
    requires_resolution: bool
    is_urgent: bool
    needs_immediate_attention: bool
    duration_minutes: int
    created_at: datetime


class AlertDetailOut(AlertOut):
    source: str | None
    sensor_data: dict[str, Any] | None
    context: dict[str, Any]
    notes: str | None
    resolution_notes: str | None
    escalation_reason: str | None
    dismissed_by: str | None
    dismissed_at: datetime | None
    action_history: list[dict[str, Any]]
    escalation_history: list[dict[str, Any]]
    notification_history: list[dict[str, Any]]
    auto_escalate: bool
    escalation_delay_seconds: int
    next_escalation_at: datetime | None
    notifications_enabled: bool
    notification_settings: dict[str, bool]
    time_since_acknowledgment: int | None
    time_since_resolution: int | None
    version: int


class AlertAcknowledge(BaseModel):
    actor_id: str
    notes: str | None = None


class AlertResolve(BaseModel):
    actor_id: str
    resolution_notes: str | None = None


class AlertEscalate(BaseModel):
    target_id: str
    reason: str
    actor_id: str | None = None


class AlertDismiss(BaseModel):
    actor_id: str
    reason: str | None = None


class NotificationIn(BaseModel):
    method: NotificationMethod
    recipient: str
    status: DeliveryStatus
    error: str | None = None


def _derived(alert: Alert, now: datetime) -> dict:
    return {
        "is_urgent": lifecycle.is_urgent(alert),
        "needs_immediate_attention": lifecycle.needs_immediate_attention(alert),
        "duration_minutes": lifecycle.duration_minutes(alert, now),
        "time_since_acknowledgment": lifecycle.time_since_acknowledgment(alert, now),
        "time_since_resolution": lifecycle.time_since_resolution(alert, now),
    }


def alert_out(alert: Alert) -> AlertOut:
    now = datetime.now(timezone.utc)
    return AlertOut.model_validate(alert.model_dump() | _derived(alert, now))


def alert_detail_out(alert: Alert) -> AlertDetailOut:
    now = datetime.now(timezone.utc)
    return AlertDetailOut.model_validate(alert.model_dump(mode="json") | _derived(alert, now))


# ---------------------------------------------------------------------------
#  GET /api/alerts
# ---------------------------------------------------------------------------

@router.get("", response_model=list[AlertOut])
async def list_alerts(
    status: AlertStatus | None = Query(None),
    tank_id: str | None = Query(None),
    limit: int = Query(100, le=500),
    offset: int = Query(0),
    service: AlertService = Depends(get_alert_service),
):
    alerts = await service.list_alerts(status=status, tank_id=tank_id, limit=limit, offset=offset)
    return [alert_out(a) for a in alerts]


# ---------------------------------------------------------------------------
#  GET /api/alerts/summary
# ---------------------------------------------------------------------------

@router.get("/summary")
async def alerts_summary(service: AlertService = Depends(get_alert_service)):
    """Counts by severity for alerts that still need someone (not resolved/dismissed)."""
    counts = await service.severity_counts(UNFINISHED_STATUSES)
    summary: dict[str, int] = {s.value: n for s, n in counts.items()}
    summary["total"] = sum(counts.values())
    summary["urgent"] = sum(counts[s] for s in lifecycle.URGENT_SEVERITIES)
    return summary


# ---------------------------------------------------------------------------
#  GET /api/alerts/{id}
# ---------------------------------------------------------------------------

@router.get("/{alert_id}", response_model=AlertDetailOut)
async def get_alert(alert_id: str, service: AlertService = Depends(get_alert_service)):
    return alert_detail_out(await run_or_http(service.get(alert_id)))


# ---------------------------------------------------------------------------
#  Transitions
# ---------------------------------------------------------------------------

@router.patch("/{alert_id}/acknowledge", response_model=AlertDetailOut)
async def acknowledge_alert(
    alert_id: str,
    data: AlertAcknowledge,
    service: AlertService = Depends(get_alert_service),
):
    alert = await run_or_http(service.acknowledge(alert_id, data.actor_id, data.notes))
    return alert_detail_out(alert)


@router.patch("/{alert_id}/resolve", response_model=AlertDetailOut)
async def resolve_alert(
    alert_id: str,
    data: AlertResolve,
    service: AlertService = Depends(get_alert_service),
):
    alert = await run_or_http(service.resolve(alert_id, data.actor_id, data.resolution_notes))
    return alert_detail_out(alert)


@router.patch("/{alert_id}/escalate", response_model=AlertDetailOut)
async def escalate_alert(
    alert_id: str,
    data: AlertEscalate,
    service: AlertService = Depends(get_alert_service),
):
    alert = await run_or_http(
        service.escalate(alert_id, data.target_id, data.reason, actor_id=data.actor_id)
    )
    return alert_detail_out(alert)


@router.patch("/{alert_id}/dismiss", response_model=AlertDetailOut)
async def dismiss_alert(
    alert_id: str,
    data: AlertDismiss,
    service: AlertService = Depends(get_alert_service),
):
    alert = await run_or_http(service.dismiss(alert_id, data.actor_id, data.reason))
    return alert_detail_out(alert)


@router.post("/{alert_id}/notifications", response_model=AlertDetailOut, status_code=201)
async def record_notification(
    alert_id: str,
    data: NotificationIn,
    service: AlertService = Depends(get_alert_service),
):
    alert = await run_or_http(
        service.record_notification(alert_id, data.method, data.recipient, data.status, data.error)
    )
    return alert_detail_out(alert)
