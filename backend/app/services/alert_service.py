"""AlertService — runs the alerting core against repositories.

process_reading(): configuration -> evaluate -> reconcile -> create, serialized
per tank so "no open alert for (tank, type), then create" cannot interleave
with another evaluation of the same tank in this process. Across processes
the repository's unique index gives the same guarantee.

acknowledge / resolve / escalate / dismiss / record_notification: serialized
per alert id, fresh read, lifecycle function, compare-and-swap save.

Every persisted change is published to Redis `alerts:updates`.
"""
from __future__ import annotations

import asyncio
import json
import logging
import weakref
from datetime import datetime, timezone

from redis.asyncio import Redis
from redis.exceptions import RedisError

from alerting import lifecycle, tank_status
from alerting.enums import OPEN_STATUSES, AlertSeverity, AlertStatus, DeliveryStatus, NotificationMethod
from alerting.errors import InvalidTransitionError
from alerting.evaluator import DEFAULT_POLICY, EvaluationPolicy, evaluate, reconcile
from alerting.records import Alert, Reading
from alerting.tank_status import TankStatistics
from services.repositories import AlertRepository, TankRepository

logger = logging.getLogger("o2watch.alert_service")

PUBLISHED_FIELDS = {
    "id", "tank_id", "type", "category", "severity", "status", "title",
    "message", "location", "created_at", "acknowledged_by", "acknowledged_at",
    "resolved_by", "resolved_at", "escalated_to", "escalated_at",
    "escalation_level", "acknowledgment_count", "notification_count",
}


class AlertService:

    def __init__(
        self,
        alerts: AlertRepository,
        tanks: TankRepository,
        policy: EvaluationPolicy = DEFAULT_POLICY,
        redis: Redis | None = None,
        channel: str = "alerts:updates",
    ):
        self.alerts = alerts
        self.tanks = tanks
        self.policy = policy
        self.redis = redis
        self.channel = channel
        # entries vanish once no caller holds or waits on the lock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    # ------------------------------------------------------------------
    # Readings
    # ------------------------------------------------------------------

    async def process_reading(self, reading: Reading) -> list[Alert]:
        """Evaluate a reading and persist alerts for newly breached conditions."""
        config = await self.tanks.get_configuration(reading.tank_id)
        # ConfigurationError surfaces here, before anything is written
        verdicts = evaluate(config, reading, self.policy)
        await self.tanks.apply_reading(reading)

        created: list[Alert] = []
        async with self._lock(f"tank:{reading.tank_id}"):
            open_alerts = await self.alerts.list_open_for_tank(reading.tank_id)
            requests = reconcile(
                reading.tank_id, verdicts, open_alerts, self.policy,
                location=config.location,
            )
            for request in requests:
                alert = await self.alerts.create(lifecycle.create_alert(request))
                if alert is None:
                    logger.info(
                        "Alert suppressed (already open): tank=%s type=%s",
                        reading.tank_id, request.type.value,
                    )
                    continue
                logger.info(
                    "Alert created: tank=%s type=%s severity=%s id=%s",
                    alert.tank_id, alert.type.value, alert.severity.value, alert.id,
                )
                created.append(alert)

        if created:
            await self.tanks.mark_alerted(reading.tank_id, created[-1].created_at)
            for alert in created:
                await self._publish(alert, "created")
        return created

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _transition(self, alert_id: str, transition: str, action: str, apply) -> Alert:
        async with self._lock(alert_id):
            current = await self.alerts.get(alert_id)
            try:
                updated = apply(current)
            except InvalidTransitionError as exc:
                logger.warning("Rejected %s on alert %s: %s", transition, alert_id, exc)
                raise
            if updated.is_open and not current.is_open and updated.tank_id:
                # acknowledged -> escalated reopens; a newer alert may already hold the slot
                async with self._lock(f"tank:{updated.tank_id}"):
                    await self._ensure_slot_free(current, transition)
                    saved = await self.alerts.save(updated, expected_version=current.version)
            else:
                saved = await self.alerts.save(updated, expected_version=current.version)
        logger.info(
            "Alert %s: id=%s status=%s level=%d",
            action, alert_id, saved.status.value, saved.escalation_level,
        )
        await self._publish(saved, action)
        return saved

    async def _ensure_slot_free(self, alert: Alert, transition: str) -> None:
        other = await self.alerts.find_open_alert(alert.tank_id, alert.type)
        if other is None or other.id == alert.id:
            return
        exc = InvalidTransitionError(
            transition, alert.status, alert.id,
            reason=f"alert {other.id} is already open for tank {alert.tank_id} ({alert.type.value})",
        )
        logger.warning("Rejected %s on alert %s: %s", transition, alert.id, exc)
        raise exc

    async def acknowledge(self, alert_id: str, actor_id: str, notes: str | None = None) -> Alert:
        return await self._transition(
            alert_id, lifecycle.ACKNOWLEDGE, "acknowledged",
            lambda a: lifecycle.acknowledge(a, actor_id, notes),
        )

    async def resolve(
        self, alert_id: str, actor_id: str, resolution_notes: str | None = None
    ) -> Alert:
        return await self._transition(
            alert_id, lifecycle.RESOLVE, "resolved",
            lambda a: lifecycle.resolve(a, actor_id, resolution_notes),
        )

    async def escalate(
        self,
        alert_id: str,
        target_id: str,
        reason: str,
        actor_id: str | None = None,
    ) -> Alert:
        return await self._transition(
            alert_id, lifecycle.ESCALATE, "escalated",
            lambda a: lifecycle.escalate(a, target_id, reason, actor_id=actor_id),
        )

    async def dismiss(self, alert_id: str, actor_id: str, reason: str | None = None) -> Alert:
        return await self._transition(
            alert_id, lifecycle.DISMISS, "dismissed",
            lambda a: lifecycle.dismiss(a, actor_id, reason),
        )

    async def record_notification(
        self,
        alert_id: str,
        method: NotificationMethod,
        recipient: str,
        delivery_status: DeliveryStatus,
        error: str | None = None,
    ) -> Alert:
        return await self._transition(
            alert_id, "notify", "notified",
            lambda a: lifecycle.record_notification(a, method, recipient, delivery_status, error),
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get(self, alert_id: str) -> Alert:
        return await self.alerts.get(alert_id)

    async def list_alerts(
        self,
        status: AlertStatus | None = None,
        tank_id: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Alert]:
        return await self.alerts.list_alerts(status=status, tank_id=tank_id, limit=limit, offset=offset)

    async def severity_counts(self, statuses=None) -> dict[AlertSeverity, int]:
        """Open (or the given statuses') alerts per severity, zero-filled."""
        counts = await self.alerts.count_by_severity(statuses or OPEN_STATUSES)
        return {severity: counts.get(severity, 0) for severity in AlertSeverity}

    async def tank_statistics(self, now: datetime | None = None) -> TankStatistics:
        now = now or datetime.now(timezone.utc)
        return tank_status.tank_statistics(await self.tanks.list_configurations(), now, self.policy)

    async def tanks_requiring_attention(self, now: datetime | None = None):
        now = now or datetime.now(timezone.utc)
        configs = await self.tanks.list_configurations()
        return tank_status.tanks_requiring_attention(configs, now, self.policy)

    async def delete_tank(self, tank_id: str) -> None:
        await self.tanks.delete(tank_id)

    async def due_for_escalation(self, now: datetime | None = None) -> list[Alert]:
        now = now or datetime.now(timezone.utc)
        return [a for a in await self.alerts.list_open() if lifecycle.should_auto_escalate(a, now)]

    # ------------------------------------------------------------------
    async def _publish(self, alert: Alert, action: str) -> None:
        if self.redis is None:
            return
        payload = {
            "type": "tank_alert",
            "action": action,
            "alert": alert.model_dump(mode="json", include=PUBLISHED_FIELDS),
        }
        try:
            await self.redis.publish(self.channel, json.dumps(payload, default=str))
        except RedisError as exc:
            logger.error("Failed to publish alert %s (%s): %s", alert.id, action, exc)
