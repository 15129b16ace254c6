"""Oxygen tank — configuration thresholds plus the last reading received."""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Float, String
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, TimestampMixin, UuidPkMixin


class OxygenTank(UuidPkMixin, TimestampMixin, Base):
    __tablename__ = "oxygen_tanks"

    tank_number: Mapped[str] = mapped_column(String(50), unique=True)
    name: Mapped[str] = mapped_column(String(100))
    location: Mapped[str] = mapped_column(String(100))

    capacity: Mapped[float] = mapped_column(Float)            # liters
    current_level: Mapped[float] = mapped_column(Float, default=0.0)
    fill_percentage: Mapped[float] = mapped_column(Float, default=0.0)
    current_pressure: Mapped[float] = mapped_column(Float, default=0.0)
    pressure_unit: Mapped[str] = mapped_column(String(10), default="psi")

    max_pressure: Mapped[float] = mapped_column(Float, default=2200.0)
    min_pressure: Mapped[float] = mapped_column(Float, default=100.0)
    critical_pressure: Mapped[float] = mapped_column(Float, default=50.0)
    refill_threshold: Mapped[float | None] = mapped_column(Float, default=None)  # percent

    min_temperature: Mapped[float | None] = mapped_column(Float, default=None)
    max_temperature: Mapped[float | None] = mapped_column(Float, default=None)
    min_humidity: Mapped[float | None] = mapped_column(Float, default=None)
    max_humidity: Mapped[float | None] = mapped_column(Float, default=None)
    temperature: Mapped[float | None] = mapped_column(Float, default=None)
    humidity: Mapped[float | None] = mapped_column(Float, default=None)

    is_leaking: Mapped[bool] = mapped_column(default=False)
    is_damaged: Mapped[bool] = mapped_column(default=False)
    leak_detection_enabled: Mapped[bool] = mapped_column(default=True)
    temperature_monitoring_enabled: Mapped[bool] = mapped_column(default=True)
    alerts_enabled: Mapped[bool] = mapped_column(default=True)

    next_maintenance_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    expiration_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )

    last_reading_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    last_alert_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )

    def __repr__(self) -> str:
        return f"<OxygenTank {self.tank_number} @ {self.location}>"
