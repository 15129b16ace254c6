"""Fleet views over stored tank state: which tanks need attention, and totals.

Both re-run the threshold evaluator against each tank's last stored level and
pressure, so "needs attention" means exactly "a reading like this would breach
something", including overdue maintenance and expiry.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable

from pydantic import BaseModel

from alerting.enums import AlertType
from alerting.errors import ConfigurationError
from alerting.evaluator import DEFAULT_POLICY, EvaluationPolicy, evaluate, fill_percentage
from alerting.records import Reading, TankConfiguration

logger = logging.getLogger("o2watch.tank_status")

INVALID_CONFIGURATION = "invalid_configuration"


class TankStatistics(BaseModel):
    model_config = {"frozen": True}

    total_tanks: int = 0
    alerting_tanks: int = 0
    low_level_tanks: int = 0
    maintenance_due: int = 0
    expired_tanks: int = 0
    leaking_tanks: int = 0
    damaged_tanks: int = 0
    requiring_attention: int = 0
    average_fill_percentage: float = 0.0


def attention_reasons(
    config: TankConfiguration,
    now: datetime,
    policy: EvaluationPolicy = DEFAULT_POLICY,
) -> list[str]:
    """Condition types the tank's stored state currently breaches.

    Tanks with alerts switched off are still checked. A configuration the
    evaluator rejects is itself a reason.
    """
    reading = Reading(
        tank_id=config.tank_id,
        level=config.current_level,
        pressure=config.current_pressure,
        timestamp=now,
    )
    try:
        verdicts = evaluate(config.model_copy(update={"alerts_enabled": True}), reading, policy)
    except ConfigurationError as exc:
        logger.warning("Tank %s flagged for attention: %s", config.tank_id, exc)
        return [INVALID_CONFIGURATION]
    return [v.type.value for v in verdicts if v.breached]


def tanks_requiring_attention(
    configs: Iterable[TankConfiguration],
    now: datetime,
    policy: EvaluationPolicy = DEFAULT_POLICY,
) -> list[tuple[TankConfiguration, list[str]]]:
    flagged = []
    for config in configs:
        reasons = attention_reasons(config, now, policy)
        if reasons:
            flagged.append((config, reasons))
    return flagged


def tank_statistics(
    configs: Iterable[TankConfiguration],
    now: datetime,
    policy: EvaluationPolicy = DEFAULT_POLICY,
) -> TankStatistics:
    configs = list(configs)
    if not configs:
        return TankStatistics()

    counts = dict.fromkeys(
        ("low_level", "maintenance", "expired", "attention", "fill_tanks"), 0
    )
    fill_total = 0.0
    for config in configs:
        reasons = attention_reasons(config, now, policy)
        counts["attention"] += bool(reasons)
        counts["low_level"] += AlertType.tank_low_level.value in reasons
        counts["maintenance"] += AlertType.tank_maintenance_due.value in reasons
        counts["expired"] += AlertType.tank_expired.value in reasons
        if config.capacity > 0:
            fill_total += fill_percentage(config.current_level, config.capacity)
            counts["fill_tanks"] += 1

    return TankStatistics(
        total_tanks=len(configs),
        alerting_tanks=sum(c.alerts_enabled for c in configs),
        low_level_tanks=counts["low_level"],
        maintenance_due=counts["maintenance"],
        expired_tanks=counts["expired"],
        leaking_tanks=sum(c.is_leaking for c in configs),
        damaged_tanks=sum(c.is_damaged for c in configs),
        requiring_attention=counts["attention"],
        average_fill_percentage=(
            round(fill_total / counts["fill_tanks"], 1) if counts["fill_tanks"] else 0.0
        ),
    )
