"""Tests for EscalationScheduler cycles."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from alerting import lifecycle
from alerting.enums import AlertStatus, AlertType
from alerting.errors import ConcurrencyConflictError
from services.escalation_scheduler import EscalationScheduler

from factories import make_alert


def overdue(**overrides):
    created = datetime.now(timezone.utc) - timedelta(minutes=10)
    return make_alert(created_at=created, **overrides)


@pytest.mark.asyncio
async def test_escalates_overdue_active_alerts(service, alert_repo):
    stale = await alert_repo.create(overdue())
    fresh = await alert_repo.create(make_alert(
        created_at=datetime.now(timezone.utc), type=AlertType.tank_low_pressure,
    ))

    scheduler = EscalationScheduler(service, target_id="supervisor", interval=1)
    escalated = await scheduler.check_cycle()

    assert [a.id for a in escalated] == [stale.id]
    stored = await alert_repo.get(stale.id)
    assert stored.status == AlertStatus.escalated
    assert stored.escalated_to == "supervisor"
    assert stored.escalation_level == 1
    assert stored.escalation_reason == "Auto-escalated: not acknowledged within 300s"
    assert stored.action_history[-1].performed_by == "system"
    assert (await alert_repo.get(fresh.id)).status == AlertStatus.active


@pytest.mark.asyncio
async def test_escalated_alert_is_not_escalated_again(service, alert_repo):
    await alert_repo.create(overdue())
    scheduler = EscalationScheduler(service, target_id="supervisor")

    assert len(await scheduler.check_cycle()) == 1
    assert await scheduler.check_cycle() == []


@pytest.mark.asyncio
async def test_acknowledged_alert_is_left_alone(service, alert_repo):
    alert = await alert_repo.create(overdue())
    await service.acknowledge(alert.id, "opA")

    assert await EscalationScheduler(service).check_cycle() == []


@pytest.mark.asyncio
async def test_conflict_on_one_alert_does_not_stop_cycle():
    first, second = overdue(), overdue(type=AlertType.tank_leak_detected)
    service = AsyncMock()
    service.due_for_escalation.return_value = [first, second]
    service.escalate.side_effect = [
        ConcurrencyConflictError(first.id, 0),
        lifecycle.escalate(second, "supervisor", "auto"),
    ]

    escalated = await EscalationScheduler(service, target_id="supervisor").check_cycle()

    assert [a.id for a in escalated] == [second.id]
    assert service.escalate.await_count == 2


@pytest.mark.asyncio
async def test_stop_ends_loop(service):
    scheduler = EscalationScheduler(service, interval=0)

    async def one_cycle():
        await scheduler.stop()
        return []

    scheduler.check_cycle = AsyncMock(side_effect=one_cycle)

    await scheduler.start()

    scheduler.check_cycle.assert_awaited_once()
