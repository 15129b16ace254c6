"""
Pytest configuration and shared fixtures.

In-memory repositories follow the same contract as the SQLAlchemy ones:
create() refuses a second open alert per (tank, type), save() is a
compare-and-swap on version and, like the unique index, refuses to leave a
second open alert for (tank, type).
"""

from unittest.mock import AsyncMock

import pytest

from alerting.enums import OPEN_STATUSES
from alerting.errors import ConcurrencyConflictError, NotFoundError
from services.alert_service import AlertService

from factories import make_config


class InMemoryAlertRepository:

    def __init__(self):
        self.alerts = {}

    async def get(self, alert_id):
        try:
            return self.alerts[alert_id]
        except KeyError:
            raise NotFoundError("Alert", alert_id)

    async def find_open_alert(self, tank_id, alert_type):
        for a in self.alerts.values():
            if a.tank_id == tank_id and a.type == alert_type and a.status in OPEN_STATUSES:
                return a
        return None

    async def list_open_for_tank(self, tank_id):
        return [a for a in self.alerts.values() if a.tank_id == tank_id and a.status in OPEN_STATUSES]

    async def list_open(self):
        return [a for a in self.alerts.values() if a.status in OPEN_STATUSES]

    async def list_alerts(self, status=None, tank_id=None, limit=100, offset=0):
        found = [
            a for a in self.alerts.values()
            if (status is None or a.status == status) and (tank_id is None or a.tank_id == tank_id)
        ]
        found.sort(key=lambda a: a.created_at, reverse=True)
        return found[offset:offset + limit]

    async def create(self, draft):
        if draft.tank_id is not None and await self.find_open_alert(draft.tank_id, draft.type):
            return None
        self.alerts[draft.id] = draft
        return draft

    async def save(self, alert, *, expected_version=None):
        if expected_version is None:
            expected_version = alert.version - 1
        stored = await self.get(alert.id)
        if stored.version != expected_version:
            raise ConcurrencyConflictError(alert.id, expected_version)
        if alert.tank_id is not None and alert.status in OPEN_STATUSES:
            other = await self.find_open_alert(alert.tank_id, alert.type)
            if other is not None and other.id != alert.id:
                raise ConcurrencyConflictError(alert.id, expected_version)
        self.alerts[alert.id] = alert
        return alert

    async def count_by_severity(self, statuses):
        counts = {}
        for a in self.alerts.values():
            if a.status in statuses:
                counts[a.severity] = counts.get(a.severity, 0) + 1
        return counts


class InMemoryTankRepository:

    def __init__(self, *configs):
        self.configs = {c.tank_id: c for c in configs}
        self.readings = []
        self.alerted = {}

    async def get_configuration(self, tank_id):
        try:
            return self.configs[tank_id]
        except KeyError:
            raise NotFoundError("Tank", tank_id)

    async def apply_reading(self, reading):
        config = await self.get_configuration(reading.tank_id)
        self.configs[reading.tank_id] = config.model_copy(update={
            "current_level": reading.level,
            "current_pressure": reading.pressure,
        })
        self.readings.append(reading)

    async def list_configurations(self):
        return sorted(self.configs.values(), key=lambda c: c.tank_number)

    async def mark_alerted(self, tank_id, at):
        self.alerted[tank_id] = at

    async def delete(self, tank_id):
        await self.get_configuration(tank_id)
        del self.configs[tank_id]


@pytest.fixture
def alert_repo():
    return InMemoryAlertRepository()


@pytest.fixture
def tank_repo():
    return InMemoryTankRepository(make_config())


@pytest.fixture
def redis():
    """Mock Redis client; only publish() is used by the service."""
    client = AsyncMock()
    client.publish = AsyncMock(return_value=1)
    return client


@pytest.fixture
def service(alert_repo, tank_repo, redis):
    return AlertService(alert_repo, tank_repo, redis=redis, channel="alerts:updates")
