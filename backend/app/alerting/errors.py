"""Alerting error taxonomy.

Raised by the core and by the persistence layer; never swallowed internally.
The API layer translates them into HTTP responses.
"""
from __future__ import annotations


class AlertingError(Exception):
    """Base class for all alerting errors."""


class ConfigurationError(AlertingError):
    """Tank configuration is malformed or physically impossible."""

    def __init__(self, message: str, tank_id: str | None = None):
        super().__init__(message)
        self.tank_id = tank_id


class InvalidTransitionError(AlertingError):
    """Requested lifecycle transition is not allowed from the current status."""

    def __init__(
        self,
        transition: str,
        current_status,
        alert_id: str | None = None,
        reason: str | None = None,
    ):
        status = getattr(current_status, "value", current_status)
        message = f"Cannot {transition} alert in status '{status}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.transition = transition
        self.current_status = current_status
        self.alert_id = alert_id
        self.reason = reason


class NotFoundError(AlertingError):
    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class ConcurrencyConflictError(AlertingError):
    """Stored alert changed between read and write; retry from a fresh read."""

    def __init__(self, alert_id: str, expected_version: int | None = None):
        super().__init__(f"Alert {alert_id} was modified concurrently")
        self.alert_id = alert_id
        self.expected_version = expected_version
