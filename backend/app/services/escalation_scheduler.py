"""EscalationScheduler — background auto-escalation of unacknowledged alerts.

Runs every ESCALATION_CHECK_INTERVAL seconds:
1. Asks AlertService for open alerts whose escalation delay has passed
2. Escalates each one to AUTO_ESCALATION_TARGET
A rejected transition or a concurrent update on one alert is logged and the
cycle moves on; the next cycle re-reads fresh state.
"""

from __future__ import annotations

import asyncio
import logging

from config import settings
from alerting.errors import ConcurrencyConflictError, InvalidTransitionError, NotFoundError
from alerting.records import Alert
from services.alert_service import AlertService

logger = logging.getLogger("o2watch.escalation_scheduler")


class EscalationScheduler:
    """Background task: escalates ACTIVE alerts past their escalation delay."""

    def __init__(
        self,
        service: AlertService,
        target_id: str = settings.AUTO_ESCALATION_TARGET,
        interval: float = settings.ESCALATION_CHECK_INTERVAL,
    ):
        self.service = service
        self.target_id = target_id
        self.interval = interval
        self._running = False

    async def start(self) -> None:
        self._running = True
        logger.info(
            "EscalationScheduler started (check every %ss, target=%s)",
            self.interval, self.target_id,
        )

        while self._running:
            try:
                await self.check_cycle()
            except Exception as exc:
                logger.error("EscalationScheduler cycle error: %s", exc, exc_info=True)
            await asyncio.sleep(self.interval)

    async def stop(self) -> None:
        self._running = False
        logger.info("EscalationScheduler stopped")

    # ------------------------------------------------------------------
    async def check_cycle(self) -> list[Alert]:
        escalated: list[Alert] = []
        for alert in await self.service.due_for_escalation():
            reason = (
                f"Auto-escalated: not acknowledged within "
                f"{alert.escalation_delay_seconds}s"
            )
            try:
                escalated.append(
                    await self.service.escalate(alert.id, self.target_id, reason, actor_id="system")
                )
            except (InvalidTransitionError, ConcurrencyConflictError, NotFoundError) as exc:
                logger.warning("Auto-escalation skipped for alert %s: %s", alert.id, exc)
        if escalated:
            logger.info("Auto-escalated %d alert(s)", len(escalated))
        return escalated
