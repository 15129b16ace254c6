"""Threshold evaluator — maps (TankConfiguration, Reading) to condition verdicts.

evaluate():  pure check of every enabled condition, breached or not
reconcile(): turns breached verdicts into AlertCreationRequests, skipping
             conditions that already have an open alert for the tank

Conditions (type -> severity):
  tank_low_level                 fill% <= refill threshold             HIGH
  tank_critical_level            fill% <= critical% or p <= critical p CRITICAL
  tank_low_pressure              p < min_pressure                      HIGH
  tank_high_pressure             p > max_pressure                      MEDIUM
  tank_temperature_out_of_range  t outside band                        MEDIUM
  environmental_hazard           humidity outside tank band            LOW
  tank_leak_detected             is_leaking flag                       CRITICAL
  tank_damage_detected           is_damaged flag                       HIGH
  tank_maintenance_due           next_maintenance_date <= reading time LOW
  tank_expired                   expiration_date <= reading time       HIGH
"""
from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Iterable

from pydantic import BaseModel

from alerting.enums import (
    OPEN_STATUSES,
    AlertCategory,
    AlertSeverity,
    AlertType,
)
from alerting.errors import ConfigurationError
from alerting.records import (
    Alert,
    AlertCreationRequest,
    ConditionVerdict,
    Reading,
    SensorSnapshot,
    TankConfiguration,
)

SOURCE = "threshold_evaluator"

# Severities that need an operator to acknowledge; these are the ones armed
# for auto-escalation when the policy allows it.
ACK_REQUIRED_SEVERITIES = frozenset({
    AlertSeverity.high,
    AlertSeverity.critical,
    AlertSeverity.emergency,
})


class EvaluationPolicy(BaseModel):
    """Global defaults. Per-tank configuration overrides them where it can."""

    model_config = {"frozen": True}

    default_refill_threshold: float = 15.0  # percent
    critical_level_percentage: float = 10.0
    min_temperature: float = -20.0
    max_temperature: float = 50.0
    escalation_delay_seconds: int = 300
    auto_escalate: bool = True

    @classmethod
    def from_settings(cls, settings) -> "EvaluationPolicy":
        return cls(
            default_refill_threshold=settings.LOW_LEVEL_ALERT_THRESHOLD,
            critical_level_percentage=settings.CRITICAL_LEVEL_PERCENTAGE,
            min_temperature=settings.TEMPERATURE_MIN_C,
            max_temperature=settings.TEMPERATURE_MAX_C,
            escalation_delay_seconds=settings.DEFAULT_ESCALATION_DELAY,
            auto_escalate=settings.AUTO_ESCALATION_ENABLED,
        )


DEFAULT_POLICY = EvaluationPolicy()


# ---------------------------------------------------------------------------
# Configuration checks
# ---------------------------------------------------------------------------

NUMERIC_FIELDS = (
    "capacity", "current_level", "current_pressure",
    "min_pressure", "max_pressure", "critical_pressure", "refill_threshold",
    "min_temperature", "max_temperature", "min_humidity", "max_humidity",
)


def validate_configuration(config: TankConfiguration) -> None:
    """Raise ConfigurationError for impossible configurations."""
    tid = config.tank_id
    for name in NUMERIC_FIELDS:
        value = getattr(config, name)
        if value is not None and not math.isfinite(value):
            raise ConfigurationError(f"Tank {tid}: {name} must be a finite number, got {value}", tid)
    if config.capacity <= 0:
        raise ConfigurationError(
            f"Tank {tid}: capacity must be positive, got {config.capacity}", tid
        )
    if config.min_pressure < 0 or config.critical_pressure < 0:
        raise ConfigurationError(f"Tank {tid}: pressure bounds must not be negative", tid)
    if config.min_pressure >= config.max_pressure:
        raise ConfigurationError(
            f"Tank {tid}: min_pressure ({config.min_pressure}) must be below "
            f"max_pressure ({config.max_pressure})",
            tid,
        )
    if config.refill_threshold is not None and not 0 <= config.refill_threshold <= 100:
        raise ConfigurationError(
            f"Tank {tid}: refill_threshold is a percentage, got {config.refill_threshold}", tid
        )
    _check_band(tid, "temperature", config.min_temperature, config.max_temperature)
    _check_band(tid, "humidity", config.min_humidity, config.max_humidity)


def _check_band(tank_id: str, name: str, low: float | None, high: float | None) -> None:
    if low is not None and high is not None and low >= high:
        raise ConfigurationError(
            f"Tank {tank_id}: min_{name} ({low}) must be below max_{name} ({high})", tank_id
        )


def _utc(ts: datetime) -> datetime:
    # naive timestamps are taken as UTC
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=timezone.utc)


def fill_percentage(level: float, capacity: float) -> float:
    if capacity <= 0:
        raise ConfigurationError(f"capacity must be positive, got {capacity}")
    return level / capacity * 100


# ---------------------------------------------------------------------------
# evaluate
# ---------------------------------------------------------------------------

def evaluate(
    config: TankConfiguration,
    reading: Reading,
    policy: EvaluationPolicy = DEFAULT_POLICY,
) -> list[ConditionVerdict]:
    """Check every enabled condition of a tank against a reading."""
    validate_configuration(config)
    if reading.tank_id != config.tank_id:
        raise ConfigurationError(
            f"Reading for tank {reading.tank_id} evaluated against "
            f"configuration of tank {config.tank_id}",
            config.tank_id,
        )
    if not config.alerts_enabled:
        return []

    label = config.tank_number or config.tank_id
    unit = config.pressure_unit
    fill = fill_percentage(reading.level, config.capacity)
    pressure = reading.pressure
    snapshot = SensorSnapshot(
        level=reading.level,
        fill_percentage=fill,
        pressure=pressure,
        temperature=reading.temperature,
        humidity=reading.humidity,
        timestamp=reading.timestamp,
    )

    def verdict(type_, category, breached, severity, title, message, **context):
        if not breached:
            return ConditionVerdict(type=type_, category=category, breached=False)
        return ConditionVerdict(
            type=type_,
            category=category,
            breached=True,
            severity=severity,
            title=title,
            message=message,
            sensor_data=snapshot,
            context=context,
        )

    verdicts: list[ConditionVerdict] = []

    # Level
    threshold = (
        config.refill_threshold
        if config.refill_threshold is not None
        else policy.default_refill_threshold
    )
    verdicts.append(verdict(
        AlertType.tank_low_level,
        AlertCategory.tank_monitoring,
        fill <= threshold,
        AlertSeverity.high,
        f"Low Oxygen Level - Tank {label}",
        f"Oxygen tank {label} is running low ({fill:.1f}%, refill threshold {threshold:.1f}%)",
        current_level=reading.level,
        capacity=config.capacity,
        fill_percentage=fill,
        refill_threshold=threshold,
    ))

    critical_by_level = fill <= policy.critical_level_percentage
    critical_by_pressure = pressure <= config.critical_pressure
    verdicts.append(verdict(
        AlertType.tank_critical_level,
        AlertCategory.tank_monitoring,
        critical_by_level or critical_by_pressure,
        AlertSeverity.critical,
        f"Critical Oxygen Level - Tank {label}",
        f"Oxygen tank {label} is critical ({fill:.1f}%, {pressure} {unit})",
        fill_percentage=fill,
        critical_level_percentage=policy.critical_level_percentage,
        pressure=pressure,
        critical_pressure=config.critical_pressure,
    ))

    # Pressure; min < max is validated above, so at most one side can breach
    verdicts.append(verdict(
        AlertType.tank_low_pressure,
        AlertCategory.tank_monitoring,
        pressure < config.min_pressure,
        AlertSeverity.high,
        f"Low Pressure - Tank {label}",
        f"Pressure in tank {label} is {pressure} {unit}, "
        f"{config.min_pressure - pressure:.1f} {unit} below minimum {config.min_pressure}",
        pressure=pressure,
        min_pressure=config.min_pressure,
        max_pressure=config.max_pressure,
        unit=unit,
    ))
    verdicts.append(verdict(
        AlertType.tank_high_pressure,
        AlertCategory.tank_monitoring,
        pressure > config.max_pressure,
        AlertSeverity.medium,
        f"High Pressure - Tank {label}",
        f"Pressure in tank {label} is {pressure} {unit}, "
        f"{pressure - config.max_pressure:.1f} {unit} above maximum {config.max_pressure}",
        pressure=pressure,
        min_pressure=config.min_pressure,
        max_pressure=config.max_pressure,
        unit=unit,
    ))

    # Environment
    temperature = reading.temperature
    if temperature is not None and config.temperature_monitoring_enabled:
        t_min = config.min_temperature if config.min_temperature is not None else policy.min_temperature
        t_max = config.max_temperature if config.max_temperature is not None else policy.max_temperature
        verdicts.append(verdict(
            AlertType.tank_temperature_out_of_range,
            AlertCategory.safety,
            temperature < t_min or temperature > t_max,
            AlertSeverity.medium,
            f"Temperature Anomaly - Tank {label}",
            f"Temperature at tank {label} is {temperature}°C, "
            f"outside safe range {t_min}..{t_max}°C",
            temperature=temperature,
            min_temperature=t_min,
            max_temperature=t_max,
        ))

    humidity = reading.humidity
    if humidity is not None and (config.min_humidity is not None or config.max_humidity is not None):
        too_dry = config.min_humidity is not None and humidity < config.min_humidity
        too_wet = config.max_humidity is not None and humidity > config.max_humidity
        verdicts.append(verdict(
            AlertType.environmental_hazard,
            AlertCategory.safety,
            too_dry or too_wet,
            AlertSeverity.low,
            f"Humidity Anomaly - Tank {label}",
            f"Humidity at tank {label} is {humidity}%, "
            f"outside range {config.min_humidity}..{config.max_humidity}%",
            humidity=humidity,
            min_humidity=config.min_humidity,
            max_humidity=config.max_humidity,
        ))

    # Flags
    if config.leak_detection_enabled:
        verdicts.append(verdict(
            AlertType.tank_leak_detected,
            AlertCategory.safety,
            config.is_leaking,
            AlertSeverity.critical,
            f"Leak Detected - Tank {label}",
            f"Tank {label} is leaking",
        ))
    verdicts.append(verdict(
        AlertType.tank_damage_detected,
        AlertCategory.safety,
        config.is_damaged,
        AlertSeverity.high,
        f"Damage Detected - Tank {label}",
        f"Tank {label} is damaged",
    ))

    # Service dates
    now = _utc(reading.timestamp)
    if config.next_maintenance_date is not None:
        verdicts.append(verdict(
            AlertType.tank_maintenance_due,
            AlertCategory.maintenance,
            _utc(config.next_maintenance_date) <= now,
            AlertSeverity.low,
            f"Maintenance Due - Tank {label}",
            f"Tank {label} was due for maintenance on {config.next_maintenance_date:%Y-%m-%d}",
            next_maintenance_date=config.next_maintenance_date.isoformat(),
        ))
    if config.expiration_date is not None:
        verdicts.append(verdict(
            AlertType.tank_expired,
            AlertCategory.safety,
            _utc(config.expiration_date) <= now,
            AlertSeverity.high,
            f"Tank Expired - Tank {label}",
            f"Tank {label} expired on {config.expiration_date:%Y-%m-%d} and must be taken out of service",
            expiration_date=config.expiration_date.isoformat(),
        ))

    return verdicts


# ---------------------------------------------------------------------------
# reconcile
# ---------------------------------------------------------------------------

def reconcile(
    tank_id: str,
    verdicts: Iterable[ConditionVerdict],
    open_alerts: Iterable[Alert],
    policy: EvaluationPolicy = DEFAULT_POLICY,
    *,
    location: str | None = None,
) -> list[AlertCreationRequest]:
    """Creation requests for breached conditions with no open alert yet."""
    already_open = {
        a.type for a in open_alerts
        if a.tank_id == tank_id and a.status in OPEN_STATUSES
    }
    requests: list[AlertCreationRequest] = []
    for v in verdicts:
        if not v.breached or v.type in already_open:
            continue
        already_open.add(v.type)
        needs_ack = v.severity in ACK_REQUIRED_SEVERITIES
        requests.append(AlertCreationRequest(
            tank_id=tank_id,
            type=v.type,
            category=v.category,
            severity=v.severity,
            title=v.title,
            message=v.message,
            source=SOURCE,
            location=location,
            sensor_data=v.sensor_data,
            context=v.context,
            requires_acknowledgment=needs_ack,
            auto_escalate=needs_ack and policy.auto_escalate,
            escalation_delay_seconds=policy.escalation_delay_seconds,
        ))
    return requests
