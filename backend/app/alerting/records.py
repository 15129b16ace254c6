"""Alerting records — immutable snapshots passed between evaluator, lifecycle and storage.

Records are frozen pydantic models. Lifecycle functions never mutate a record,
they return an updated copy (model_copy), so the caller decides when and how
the new state is persisted.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Literal, Union

from pydantic import BaseModel, Field, computed_field

from alerting.enums import (
    AlertCategory,
    AlertSeverity,
    AlertStatus,
    AlertType,
    DeliveryStatus,
    NotificationMethod,
)


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------

class TankConfiguration(BaseModel):
    """Snapshot of a tank's thresholds and flags for one evaluation call."""

    model_config = {"frozen": True, "allow_inf_nan": False}

    tank_id: str
    tank_number: str = ""
    location: str | None = None

    capacity: float
    current_level: float = 0.0
    current_pressure: float = 0.0
    pressure_unit: str = "psi"

    min_pressure: float
    max_pressure: float
    critical_pressure: float = 50.0
    refill_threshold: float | None = None  # percent; None -> global default

    min_temperature: float | None = None
    max_temperature: float | None = None
    min_humidity: float | None = None
    max_humidity: float | None = None

    is_leaking: bool = False
    is_damaged: bool = False
    leak_detection_enabled: bool = True
    temperature_monitoring_enabled: bool = True
    alerts_enabled: bool = True

    next_maintenance_date: datetime | None = None
    expiration_date: datetime | None = None


class Reading(BaseModel):
    model_config = {"frozen": True, "allow_inf_nan": False}

    tank_id: str
    level: float
    pressure: float
    temperature: float | None = None
    humidity: float | None = None
    timestamp: datetime


class SensorSnapshot(BaseModel):
    """Sensor values that triggered an alert, kept for traceability."""

    model_config = {"frozen": True}

    level: float | None = None
    fill_percentage: float | None = None
    pressure: float | None = None
    temperature: float | None = None
    humidity: float | None = None
    timestamp: datetime | None = None


# ---------------------------------------------------------------------------
# History entries (append-only, one model per kind)
# ---------------------------------------------------------------------------

class ActionEntry(BaseModel):
    model_config = {"frozen": True}

    kind: Literal["action"] = "action"
    action: str
    performed_by: str
    performed_at: datetime
    details: str = ""


class EscalationEntry(BaseModel):
    model_config = {"frozen": True}

    kind: Literal["escalation"] = "escalation"
    level: int
    escalated_to: str
    escalated_at: datetime
    reason: str = ""


class NotificationEntry(BaseModel):
    model_config = {"frozen": True}

    kind: Literal["notification"] = "notification"
    method: NotificationMethod
    recipient: str
    sent_at: datetime
    status: DeliveryStatus
    error: str | None = None


HistoryEntry = Union[ActionEntry, EscalationEntry, NotificationEntry]


class NotificationSettings(BaseModel):
    model_config = {"frozen": True}

    email: bool = True
    sms: bool = False
    push: bool = False
    in_app: bool = True
    voice: bool = False
    pager: bool = False

    def enabled_methods(self) -> list[NotificationMethod]:
        return [m for m in NotificationMethod if getattr(self, m.value)]


# ---------------------------------------------------------------------------
# Evaluator outputs
# ---------------------------------------------------------------------------

class ConditionVerdict(BaseModel):
    model_config = {"frozen": True}

    type: AlertType
    category: AlertCategory
    breached: bool
    severity: AlertSeverity | None = None
    title: str = ""
    message: str = ""
    sensor_data: SensorSnapshot | None = None
    context: dict[str, Any] = Field(default_factory=dict)


class AlertCreationRequest(BaseModel):
    model_config = {"frozen": True}

    tank_id: str | None
    type: AlertType
    category: AlertCategory
    severity: AlertSeverity
    title: str
    message: str
    source: str | None = None
    location: str | None = None
    sensor_data: SensorSnapshot | None = None
    context: dict[str, Any] = Field(default_factory=dict)

    requires_acknowledgment: bool = False
    requires_resolution: bool = False
    auto_escalate: bool = False
    escalation_delay_seconds: int = 300


# ---------------------------------------------------------------------------
# Alert
# ---------------------------------------------------------------------------

class Alert(BaseModel):
    model_config = {"frozen": True}

    id: str
    tank_id: str | None = None
    type: AlertType
    category: AlertCategory
    severity: AlertSeverity
    status: AlertStatus = AlertStatus.active

    title: str
    message: str
    source: str | None = None
    location: str | None = None
    sensor_data: SensorSnapshot | None = None
    context: dict[str, Any] = Field(default_factory=dict)
    notes: str | None = None

    created_at: datetime
    acknowledged_by: str | None = None
    acknowledged_at: datetime | None = None
    resolved_by: str | None = None
    resolved_at: datetime | None = None
    resolution_notes: str | None = None
    escalated_to: str | None = None
    escalated_at: datetime | None = None
    escalation_reason: str | None = None
    escalation_level: int = 0
    dismissed_by: str | None = None
    dismissed_at: datetime | None = None

    acknowledgment_count: int = 0
    notification_count: int = 0

    action_history: tuple[ActionEntry, ...] = ()
    escalation_history: tuple[EscalationEntry, ...] = ()
    notification_history: tuple[NotificationEntry, ...] = ()

    requires_acknowledgment: bool = False
    requires_resolution: bool = False
    auto_escalate: bool = False
    escalation_delay_seconds: int = 300
    notifications_enabled: bool = True
    notification_settings: NotificationSettings = Field(default_factory=NotificationSettings)

    version: int = 0

    @computed_field  # type: ignore[misc]
    @property
    def next_escalation_at(self) -> datetime | None:
        if not self.auto_escalate or self.status != AlertStatus.active:
            return None
        return self.created_at + timedelta(seconds=self.escalation_delay_seconds)

    @property
    def is_open(self) -> bool:
        return self.status in (AlertStatus.active, AlertStatus.escalated)
