"""Tank alert — persistent form of alerting.records.Alert.

History lists are JSON columns, each element a dumped history entry.
`version` is bumped on every lifecycle change and checked on save
(compare-and-swap). The partial unique index keeps at most one open alert
per (tank, type).
"""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, text
from sqlalchemy.dialects.postgresql import JSON
from sqlalchemy.orm import Mapped, mapped_column

from alerting.enums import AlertCategory, AlertSeverity, AlertStatus, AlertType
from models.base import Base, UuidPkMixin

OPEN_STATUS_SQL = "status IN ('active', 'escalated')"


class AlertRow(UuidPkMixin, Base):
    __tablename__ = "alerts"

    __table_args__ = (
        Index("ix_alerts_status", "status"),
        Index("ix_alerts_severity", "severity"),
        Index("ix_alerts_type", "type"),
        Index("ix_alerts_tank_created", "tank_id", "created_at"),
        Index(
            "uq_alerts_open_tank_type",
            "tank_id", "type",
            unique=True,
            postgresql_where=text(OPEN_STATUS_SQL),
            sqlite_where=text(OPEN_STATUS_SQL),
        ),
    )

    tank_id: Mapped[str | None] = mapped_column(
        ForeignKey("oxygen_tanks.id", ondelete="SET NULL"), default=None
    )

    type: Mapped[AlertType]
    category: Mapped[AlertCategory]
    severity: Mapped[AlertSeverity]
    status: Mapped[AlertStatus] = mapped_column(default=AlertStatus.active)

    title: Mapped[str] = mapped_column(String(255))
    message: Mapped[str] = mapped_column(Text)
    source: Mapped[str | None] = mapped_column(String(100), default=None)
    location: Mapped[str | None] = mapped_column(String(100), default=None)
    sensor_data: Mapped[dict | None] = mapped_column(JSON, default=None)
    context: Mapped[dict | None] = mapped_column(JSON, default=None)
    notes: Mapped[str | None] = mapped_column(Text, default=None)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    acknowledged_by: Mapped[str | None] = mapped_column(String(100), default=None)
    acknowledged_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    resolved_by: Mapped[str | None] = mapped_column(String(100), default=None)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    resolution_notes: Mapped[str | None] = mapped_column(Text, default=None)
    escalated_to: Mapped[str | None] = mapped_column(String(100), default=None)
    escalated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    escalation_reason: Mapped[str | None] = mapped_column(Text, default=None)
    escalation_level: Mapped[int] = mapped_column(default=0)
    dismissed_by: Mapped[str | None] = mapped_column(String(100), default=None)
    dismissed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)

    acknowledgment_count: Mapped[int] = mapped_column(default=0)
    notification_count: Mapped[int] = mapped_column(default=0)

    action_history: Mapped[list] = mapped_column(JSON, default=list)
    escalation_history: Mapped[list] = mapped_column(JSON, default=list)
    notification_history: Mapped[list] = mapped_column(JSON, default=list)

    requires_acknowledgment: Mapped[bool] = mapped_column(default=False)
    requires_resolution: Mapped[bool] = mapped_column(default=False)
    auto_escalate: Mapped[bool] = mapped_column(default=False)
    escalation_delay_seconds: Mapped[int] = mapped_column(default=300)
    notifications_enabled: Mapped[bool] = mapped_column(default=True)
    notification_settings: Mapped[dict | None] = mapped_column(JSON, default=None)

    version: Mapped[int] = mapped_column(default=0)

    def __repr__(self) -> str:
        return f"<AlertRow {self.type.value} {self.status.value} tank={self.tank_id}>"
