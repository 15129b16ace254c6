"""Builders for records used across the test suite."""
from datetime import datetime, timedelta, timezone

from alerting import lifecycle
from alerting.enums import AlertCategory, AlertSeverity, AlertType
from alerting.records import AlertCreationRequest, Reading, TankConfiguration

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
TANK_ID = "tank-001"


def make_config(**overrides) -> TankConfiguration:
    data = dict(
        tank_id=TANK_ID,
        tank_number="O2-001",
        location="Ward B",
        capacity=100.0,
        current_level=80.0,
        current_pressure=1800.0,
        min_pressure=100.0,
        max_pressure=2200.0,
        critical_pressure=50.0,
        refill_threshold=20.0,
    )
    data.update(overrides)
    return TankConfiguration(**data)


def make_reading(**overrides) -> Reading:
    data = dict(tank_id=TANK_ID, level=80.0, pressure=1800.0, timestamp=NOW)
    data.update(overrides)
    return Reading(**data)


def make_request(**overrides) -> AlertCreationRequest:
    data = dict(
        tank_id=TANK_ID,
        type=AlertType.tank_low_level,
        category=AlertCategory.tank_monitoring,
        severity=AlertSeverity.high,
        title="Low Oxygen Level - Tank O2-001",
        message="Oxygen tank O2-001 is running low (15.0%)",
        requires_acknowledgment=True,
        auto_escalate=True,
        escalation_delay_seconds=300,
    )
    data.update(overrides)
    return AlertCreationRequest(**data)


def make_alert(created_at: datetime = NOW, alert_id: str | None = None, **overrides):
    return lifecycle.create_alert(make_request(**overrides), now=created_at, alert_id=alert_id)


def ago(seconds: float, now: datetime = NOW) -> datetime:
    return now - timedelta(seconds=seconds)
