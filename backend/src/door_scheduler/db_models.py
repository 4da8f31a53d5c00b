"""SQLAlchemy ORM models for doors, schedules, recurrence patterns, and the action log."""

from __future__ import annotations

from datetime import UTC, date, datetime, time

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UTCDateTime(TypeDecorator[datetime]):
    """Stores instants as naive UTC and hands them back timezone-aware."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value
        return value.astimezone(UTC).replace(tzinfo=None)

    def process_result_value(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class Base(DeclarativeBase):
    """Declarative base for ORM models."""


class DoorModel(Base):
    """Local mirror of a door from the external system of record."""

    __tablename__ = "doors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    device_id: Mapped[int] = mapped_column(Integer, unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    controller_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    controller_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    controller_group_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    last_sync_time: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class ScheduleModel(Base):
    """ORM model representing one unlock window for one door."""

    __tablename__ = "schedules"
    __table_args__ = (
        CheckConstraint("end_time > start_time", name="ck_schedules_end_after_start"),
        Index("ix_schedules_active_start", "is_active", "start_time"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    door_id: Mapped[int] = mapped_column(
        ForeignKey("doors.id", ondelete="CASCADE"), nullable=False, index=True
    )
    label: Mapped[str | None] = mapped_column(String(255), nullable=True)
    start_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    end_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    recurrence_type: Mapped[str] = mapped_column(String(32), nullable=False, default="none")
    source: Mapped[str] = mapped_column(String(32), nullable=False, default="manual")
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class RecurrencePatternModel(Base):
    """A rule that materializes schedules on a weekly, biweekly, or monthly cadence."""

    __tablename__ = "recurrence_patterns"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    unlock_time: Mapped[time] = mapped_column(Time, nullable=False)
    lock_time: Mapped[time] = mapped_column(Time, nullable=False)
    recurrence_type: Mapped[str] = mapped_column(String(20), nullable=False)
    day_of_week: Mapped[int | None] = mapped_column(Integer, nullable=True)
    day_of_month: Mapped[int | None] = mapped_column(Integer, nullable=True)
    week_interval: Mapped[int | None] = mapped_column(Integer, nullable=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    generate_weeks_ahead: Mapped[int] = mapped_column(Integer, nullable=False, default=4)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    created_by: Mapped[str | None] = mapped_column(String(100), nullable=True)


class RecurrencePatternDoorModel(Base):
    """Join between a pattern and a door with optional per-door times."""

    __tablename__ = "recurrence_pattern_doors"
    __table_args__ = (
        UniqueConstraint("pattern_id", "door_id", name="uq_pattern_door"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pattern_id: Mapped[int] = mapped_column(
        ForeignKey("recurrence_patterns.id", ondelete="CASCADE"), nullable=False
    )
    door_id: Mapped[int] = mapped_column(
        ForeignKey("doors.id", ondelete="CASCADE"), nullable=False
    )
    custom_unlock_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    custom_lock_time: Mapped[time | None] = mapped_column(Time, nullable=True)


class RecurrenceInstanceModel(Base):
    """Marker recording that a pattern already produced a schedule for a door and date."""

    __tablename__ = "recurrence_instances"
    __table_args__ = (
        UniqueConstraint(
            "pattern_id", "door_id", "scheduled_date", name="uq_instance_pattern_door_date"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pattern_id: Mapped[int] = mapped_column(
        ForeignKey("recurrence_patterns.id", ondelete="CASCADE"), nullable=False
    )
    schedule_id: Mapped[int] = mapped_column(
        ForeignKey("schedules.id", ondelete="CASCADE"), nullable=False
    )
    door_id: Mapped[int] = mapped_column(Integer, nullable=False)
    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False)
    generated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class ActionLogModel(Base):
    """Immutable audit row for one attempted unlock/lock command."""

    __tablename__ = "action_log"
    __table_args__ = (
        Index(
            "ix_action_log_lookup", "schedule_id", "door_id", "action", "timestamp"
        ),
        Index("ix_action_log_door_time", "door_id", "timestamp"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    schedule_id: Mapped[int | None] = mapped_column(
        ForeignKey("schedules.id", ondelete="SET NULL"), nullable=True
    )
    door_id: Mapped[int] = mapped_column(
        ForeignKey("doors.id", ondelete="RESTRICT"), nullable=False
    )
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    triggered_by: Mapped[str] = mapped_column(String(50), nullable=False)
    response_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    response_body: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
