"""Canonical alert enumerations shared by the evaluator and the lifecycle."""
from __future__ import annotations

import enum


class AlertSeverity(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"
    emergency = "emergency"


class AlertStatus(str, enum.Enum):
    active = "active"
    acknowledged = "acknowledged"
    resolved = "resolved"
    escalated = "escalated"
    dismissed = "dismissed"


OPEN_STATUSES = frozenset({AlertStatus.active, AlertStatus.escalated})
TERMINAL_STATUSES = frozenset({AlertStatus.resolved, AlertStatus.dismissed})


class AlertType(str, enum.Enum):
    # Tank
    tank_low_pressure = "tank_low_pressure"
    tank_high_pressure = "tank_high_pressure"
    tank_low_level = "tank_low_level"
    tank_critical_level = "tank_critical_level"
    tank_leak_detected = "tank_leak_detected"
    tank_damage_detected = "tank_damage_detected"
    tank_temperature_out_of_range = "tank_temperature_out_of_range"
    tank_disconnected = "tank_disconnected"
    tank_maintenance_due = "tank_maintenance_due"
    tank_expired = "tank_expired"

    # System
    system_error = "system_error"
    system_offline = "system_offline"
    database_error = "database_error"
    network_error = "network_error"
    sensor_error = "sensor_error"
    communication_error = "communication_error"

    # Safety
    safety_violation = "safety_violation"
    unauthorized_access = "unauthorized_access"
    environmental_hazard = "environmental_hazard"
    fire_hazard = "fire_hazard"
    chemical_spill = "chemical_spill"

    # User
    user_login_failure = "user_login_failure"
    user_account_locked = "user_account_locked"
    user_permission_denied = "user_permission_denied"

    # Emergency
    emergency_situation = "emergency_situation"
    evacuation_required = "evacuation_required"
    medical_emergency = "medical_emergency"
    fire_alarm = "fire_alarm"
    security_breach = "security_breach"


class AlertCategory(str, enum.Enum):
    tank_monitoring = "tank_monitoring"
    system_monitoring = "system_monitoring"
    safety = "safety"
    security = "security"
    maintenance = "maintenance"
    emergency = "emergency"
    user_management = "user_management"


class NotificationMethod(str, enum.Enum):
    email = "email"
    sms = "sms"
    push = "push"
    in_app = "in_app"
    voice = "voice"
    pager = "pager"


class DeliveryStatus(str, enum.Enum):
    sent = "sent"
    delivered = "delivered"
    failed = "failed"


# Older device-level naming -> canonical type
LEGACY_TYPE_ALIASES: dict[str, AlertType] = {
    "low_oxygen_level": AlertType.tank_low_level,
    "high_pressure": AlertType.tank_high_pressure,
    "low_pressure": AlertType.tank_low_pressure,
    "temperature_anomaly": AlertType.tank_temperature_out_of_range,
    "device_offline": AlertType.tank_disconnected,
    "maintenance_due": AlertType.tank_maintenance_due,
    "emergency_shutdown": AlertType.emergency_situation,
}


def canonical_alert_type(value: str | AlertType) -> AlertType:
    """Resolve a canonical or legacy type name. Unknown names raise ValueError."""
    if isinstance(value, AlertType):
        return value
    alias = LEGACY_TYPE_ALIASES.get(value)
    if alias is not None:
        return alias
    return AlertType(value)
