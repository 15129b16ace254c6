"""Persistence for tanks and alerts.

The alerting core only sees the AlertRepository / TankRepository protocols.
SQLAlchemy implementations below keep the two guarantees the core relies on:

- create() is atomic with the duplicate check: an open alert for the same
  (tank, type) makes it return None, backed by the partial unique index
- save() is a compare-and-swap on `version`; a lost update raises
  ConcurrencyConflictError
  (so does a save the unique index refuses)
"""
from __future__ import annotations

import logging
from typing import Protocol

from pydantic import ValidationError
from sqlalchemy import and_, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from alerting.enums import OPEN_STATUSES, AlertSeverity, AlertStatus, AlertType
from alerting.errors import ConcurrencyConflictError, ConfigurationError, NotFoundError
from alerting.evaluator import fill_percentage
from alerting.records import Alert, Reading, TankConfiguration
from models.alert import AlertRow
from models.tank import OxygenTank

logger = logging.getLogger("o2watch.repositories")

JSON_FIELDS = {
    "sensor_data",
    "context",
    "action_history",
    "escalation_history",
    "notification_history",
    "notification_settings",
}
COMPUTED_FIELDS = {"next_escalation_at"}


class AlertRepository(Protocol):
    async def get(self, alert_id: str) -> Alert: ...
    async def find_open_alert(self, tank_id: str, alert_type: AlertType) -> Alert | None: ...
    async def list_open_for_tank(self, tank_id: str) -> list[Alert]: ...
    async def list_open(self) -> list[Alert]: ...
    async def list_alerts(
        self,
        status: AlertStatus | None = None,
        tank_id: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Alert]: ...
    async def create(self, draft: Alert) -> Alert | None: ...
    async def save(self, alert: Alert, *, expected_version: int | None = None) -> Alert: ...
    async def count_by_severity(self, statuses) -> dict[AlertSeverity, int]: ...


class TankRepository(Protocol):
    async def get_configuration(self, tank_id: str) -> TankConfiguration: ...
    async def apply_reading(self, reading: Reading) -> None: ...
    async def list_configurations(self) -> list[TankConfiguration]: ...
    async def mark_alerted(self, tank_id: str, at) -> None: ...
    async def delete(self, tank_id: str) -> None: ...


# ---------------------------------------------------------------------------
# Row <-> record
# ---------------------------------------------------------------------------

def alert_to_values(alert: Alert) -> dict:
    """Column values for an AlertRow. JSON columns get JSON-safe dumps."""
    values = alert.model_dump(exclude=JSON_FIELDS | COMPUTED_FIELDS)
    values.update(alert.model_dump(mode="json", include=JSON_FIELDS))
    return values


def alert_from_row(row: AlertRow) -> Alert:
    data = {name: getattr(row, name) for name in Alert.model_fields}
    for name in ("action_history", "escalation_history", "notification_history"):
        data[name] = data[name] or []
    data["context"] = data["context"] or {}
    if data["notification_settings"] is None:
        del data["notification_settings"]
    return Alert.model_validate(data)


def tank_configuration(tank: OxygenTank) -> TankConfiguration:
    try:
        return _tank_configuration(tank)
    except ValidationError as exc:
        raise ConfigurationError(f"Tank {tank.id} has invalid configuration: {exc}", tank.id) from exc


def _tank_configuration(tank: OxygenTank) -> TankConfiguration:
    return TankConfiguration(
        tank_id=tank.id,
        tank_number=tank.tank_number,
        location=tank.location,
        capacity=tank.capacity,
        current_level=tank.current_level,
        current_pressure=tank.current_pressure,
        pressure_unit=tank.pressure_unit,
        min_pressure=tank.min_pressure,
        max_pressure=tank.max_pressure,
        critical_pressure=tank.critical_pressure,
        refill_threshold=tank.refill_threshold,
        min_temperature=tank.min_temperature,
        max_temperature=tank.max_temperature,
        min_humidity=tank.min_humidity,
        max_humidity=tank.max_humidity,
        is_leaking=tank.is_leaking,
        is_damaged=tank.is_damaged,
        leak_detection_enabled=tank.leak_detection_enabled,
        temperature_monitoring_enabled=tank.temperature_monitoring_enabled,
        alerts_enabled=tank.alerts_enabled,
        next_maintenance_date=tank.next_maintenance_date,
        expiration_date=tank.expiration_date,
    )


# ---------------------------------------------------------------------------
# SQLAlchemy implementations
# ---------------------------------------------------------------------------

class SqlAlchemyAlertRepository:

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get(self, alert_id: str) -> Alert:
        async with self.session_factory() as session:
            row = await session.get(AlertRow, alert_id)
            if row is None:
                raise NotFoundError("Alert", alert_id)
            return alert_from_row(row)

    @staticmethod
    def _open_stmt(tank_id: str):
        return select(AlertRow).where(
            and_(
                AlertRow.tank_id == tank_id,
                AlertRow.status.in_(list(OPEN_STATUSES)),
            )
        )

    async def find_open_alert(self, tank_id: str, alert_type: AlertType) -> Alert | None:
        async with self.session_factory() as session:
            stmt = self._open_stmt(tank_id).where(AlertRow.type == alert_type)
            result = await session.execute(stmt)
            row = result.scalars().first()
            return alert_from_row(row) if row else None

    async def list_open_for_tank(self, tank_id: str) -> list[Alert]:
        async with self.session_factory() as session:
            result = await session.execute(self._open_stmt(tank_id))
            return [alert_from_row(r) for r in result.scalars().all()]

    async def list_open(self) -> list[Alert]:
        async with self.session_factory() as session:
            stmt = (
                select(AlertRow)
                .where(AlertRow.status.in_(list(OPEN_STATUSES)))
                .order_by(AlertRow.created_at)
            )
            result = await session.execute(stmt)
            return [alert_from_row(r) for r in result.scalars().all()]

    async def list_alerts(
        self,
        status: AlertStatus | None = None,
        tank_id: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Alert]:
        stmt = select(AlertRow)
        if status is not None:
            stmt = stmt.where(AlertRow.status == status)
        if tank_id is not None:
            stmt = stmt.where(AlertRow.tank_id == tank_id)
        stmt = stmt.order_by(AlertRow.created_at.desc()).offset(offset).limit(limit)
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [alert_from_row(r) for r in result.scalars().all()]

    async def create(self, draft: Alert) -> Alert | None:
        """Insert an ACTIVE alert unless one is already open for (tank, type)."""
        async with self.session_factory() as session:
            if draft.tank_id is not None:
                stmt = self._open_stmt(draft.tank_id).where(AlertRow.type == draft.type)
                existing = (await session.execute(stmt)).scalars().first()
                if existing is not None:
                    return None
            session.add(AlertRow(**alert_to_values(draft)))
            try:
                await session.commit()
            except IntegrityError:
                # Lost the race against another evaluator on the same tank
                await session.rollback()
                logger.info(
                    "Duplicate open alert suppressed by index: tank=%s type=%s",
                    draft.tank_id, draft.type.value,
                )
                return None
        return draft

    async def save(self, alert: Alert, *, expected_version: int | None = None) -> Alert:
        """Replace the stored alert if its version is still `expected_version`."""
        if expected_version is None:
            expected_version = alert.version - 1
        values = alert_to_values(alert)
        values.pop("id")
        stmt = (
            update(AlertRow)
            .where(and_(AlertRow.id == alert.id, AlertRow.version == expected_version))
            .values(**values)
        )
        async with self.session_factory() as session:
            try:
                result = await session.execute(stmt)
            except IntegrityError as exc:
                # reopening would give (tank, type) a second open alert
                await session.rollback()
                logger.warning("Save refused by open-alert index: id=%s tank=%s type=%s",
                               alert.id, alert.tank_id, alert.type.value)
                raise ConcurrencyConflictError(alert.id, expected_version) from exc
            if result.rowcount == 0:
                await session.rollback()
                if await session.get(AlertRow, alert.id) is None:
                    raise NotFoundError("Alert", alert.id)
                raise ConcurrencyConflictError(alert.id, expected_version)
            await session.commit()
        return alert

    async def count_by_severity(self, statuses) -> dict[AlertSeverity, int]:
        stmt = (
            select(AlertRow.severity, func.count())
            .where(AlertRow.status.in_(list(statuses)))
            .group_by(AlertRow.severity)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return {AlertSeverity(severity): count for severity, count in result.all()}


class SqlAlchemyTankRepository:

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def _get_row(self, session: AsyncSession, tank_id: str) -> OxygenTank:
        tank = await session.get(OxygenTank, tank_id)
        if tank is None:
            raise NotFoundError("Tank", tank_id)
        return tank

    async def get_configuration(self, tank_id: str) -> TankConfiguration:
        async with self.session_factory() as session:
            return tank_configuration(await self._get_row(session, tank_id))

    async def apply_reading(self, reading: Reading) -> None:
        async with self.session_factory() as session:
            tank = await self._get_row(session, reading.tank_id)
            tank.current_level = reading.level
            tank.current_pressure = reading.pressure
            tank.fill_percentage = fill_percentage(reading.level, tank.capacity)
            if reading.temperature is not None:
                tank.temperature = reading.temperature
            if reading.humidity is not None:
                tank.humidity = reading.humidity
            tank.last_reading_at = reading.timestamp
            await session.commit()

    async def mark_alerted(self, tank_id: str, at) -> None:
        async with self.session_factory() as session:
            tank = await self._get_row(session, tank_id)
            tank.last_alert_at = at
            await session.commit()

    async def list_configurations(self) -> list[TankConfiguration]:
        async with self.session_factory() as session:
            result = await session.execute(select(OxygenTank).order_by(OxygenTank.tank_number))
            return [tank_configuration(t) for t in result.scalars().all()]

    async def delete(self, tank_id: str) -> None:
        async with self.session_factory() as session:
            tank = await self._get_row(session, tank_id)
            await session.delete(tank)
            await session.commit()
        logger.info("Tank deleted: id=%s", tank_id)
