"""Repositories and helpers for door unlock schedules."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import Protocol

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session, sessionmaker

from .database import get_session_factory
from .db_models import ScheduleModel
from .doors import DoorInactiveError, DoorNotFoundError, DoorRepository

# Utility ---------------------------------------------------------------------


def _now() -> datetime:
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class ScheduleStatus(StrEnum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    SUPERSEDED = "superseded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in {
            ScheduleStatus.COMPLETED,
            ScheduleStatus.SUPERSEDED,
            ScheduleStatus.FAILED,
        }


class ScheduleSource(StrEnum):
    MANUAL = "manual"
    RECURRING = "recurring"
    EXTERNAL_IMPORT = "external-import"


class ScheduleValidationError(ValueError):
    """Raised when a schedule window is malformed."""


@dataclass(frozen=True)
class Schedule:
    """An instruction to keep one door unlocked over ``[start_time, end_time)``."""

    id: int
    door_id: int
    label: str | None
    start_time: datetime
    end_time: datetime
    recurrence_type: str
    source: ScheduleSource
    priority: int
    is_active: bool
    status: ScheduleStatus
    created_at: datetime
    created_by: str | None = None
    updated_at: datetime | None = None

    def in_effect(self, now: datetime) -> bool:
        return self.start_time <= now < self.end_time

    def expired(self, now: datetime) -> bool:
        return self.end_time <= now


@dataclass(frozen=True)
class ScheduleDraft:
    """Values needed to create a schedule."""

    door_id: int
    start_time: datetime
    end_time: datetime
    label: str | None = None
    recurrence_type: str = "none"
    source: ScheduleSource = ScheduleSource.MANUAL
    priority: int = 0
    created_by: str | None = None


def validate_window(start_time: datetime, end_time: datetime) -> None:
    if ensure_utc(end_time) <= ensure_utc(start_time):
        raise ScheduleValidationError("End time must be after start time.")


def _model_to_schedule(model: ScheduleModel) -> Schedule:
    return Schedule(
        id=model.id,
        door_id=model.door_id,
        label=model.label,
        start_time=model.start_time,
        end_time=model.end_time,
        recurrence_type=model.recurrence_type,
        source=ScheduleSource(model.source),
        priority=model.priority,
        is_active=bool(model.is_active),
        status=ScheduleStatus(model.status),
        created_at=model.created_at,
        created_by=model.created_by,
        updated_at=model.updated_at,
    )


def draft_to_model(draft: ScheduleDraft, *, created_at: datetime) -> ScheduleModel:
    validate_window(draft.start_time, draft.end_time)
    return ScheduleModel(
        door_id=draft.door_id,
        label=draft.label,
        start_time=ensure_utc(draft.start_time),
        end_time=ensure_utc(draft.end_time),
        recurrence_type=draft.recurrence_type,
        source=draft.source.value,
        priority=draft.priority,
        is_active=True,
        status=ScheduleStatus.PENDING.value,
        created_by=draft.created_by,
        created_at=created_at,
    )


# Repository protocol ---------------------------------------------------------


class ScheduleRepository(Protocol):
    """Abstraction used by the router, the expander, and the scheduler loop."""

    def list(
        self,
        *,
        door_id: int | None = None,
        start_from: datetime | None = None,
        end_until: datetime | None = None,
        is_active: bool | None = None,
        source: str | None = None,
    ) -> list[Schedule]:
        ...

    def get(self, schedule_id: int) -> Schedule | None:
        ...

    def create(self, draft: ScheduleDraft) -> Schedule:
        ...

    def delete(self, schedule_id: int) -> bool:
        ...

    def list_in_effect(self, now: datetime) -> list[Schedule]:
        ...

    def list_expired(self, now: datetime) -> list[Schedule]:
        ...

    def has_overriding_schedule(self, schedule: Schedule, now: datetime) -> bool:
        ...

    def retire(self, schedule_id: int, status: ScheduleStatus) -> None:
        ...

    def mark_status(self, schedule_id: int, status: ScheduleStatus) -> None:
        ...


# SQLAlchemy repository -------------------------------------------------------


class SQLScheduleRepository(ScheduleRepository):
    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def _session(self) -> Session:
        return self._session_factory()

    def list(
        self,
        *,
        door_id: int | None = None,
        start_from: datetime | None = None,
        end_until: datetime | None = None,
        is_active: bool | None = None,
        source: str | None = None,
    ) -> list[Schedule]:
        with self._session() as session:
            stmt = select(ScheduleModel)
            if door_id is not None:
                stmt = stmt.where(ScheduleModel.door_id == door_id)
            if start_from is not None:
                stmt = stmt.where(ScheduleModel.start_time >= ensure_utc(start_from))
            if end_until is not None:
                stmt = stmt.where(ScheduleModel.end_time <= ensure_utc(end_until))
            if is_active is not None:
                stmt = stmt.where(ScheduleModel.is_active == is_active)
            if source:
                stmt = stmt.where(ScheduleModel.source == source)
            rows = session.execute(stmt.order_by(ScheduleModel.start_time)).scalars().all()
            return [_model_to_schedule(row) for row in rows]

    def get(self, schedule_id: int) -> Schedule | None:
        with self._session() as session:
            row = session.get(ScheduleModel, schedule_id)
            return _model_to_schedule(row) if row else None

    def create(self, draft: ScheduleDraft) -> Schedule:
        model = draft_to_model(draft, created_at=_now())
        with self._session() as session:
            session.add(model)
            session.commit()
            session.refresh(model)
            return _model_to_schedule(model)

    def delete(self, schedule_id: int) -> bool:
        with self._session() as session:
            result = session.execute(
                delete(ScheduleModel).where(ScheduleModel.id == schedule_id)
            )
            session.commit()
            return bool(result.rowcount)

    def list_in_effect(self, now: datetime) -> list[Schedule]:
        now = ensure_utc(now)
        with self._session() as session:
            rows = (
                session.execute(
                    select(ScheduleModel)
                    .where(
                        ScheduleModel.is_active.is_(True),
                        ScheduleModel.start_time <= now,
                        ScheduleModel.end_time > now,
                    )
                    .order_by(ScheduleModel.start_time, ScheduleModel.id)
                )
                .scalars()
                .all()
            )
            return [_model_to_schedule(row) for row in rows]

    def list_expired(self, now: datetime) -> list[Schedule]:
        now = ensure_utc(now)
        with self._session() as session:
            rows = (
                session.execute(
                    select(ScheduleModel)
                    .where(
                        ScheduleModel.is_active.is_(True),
                        ScheduleModel.end_time <= now,
                    )
                    .order_by(ScheduleModel.end_time, ScheduleModel.id)
                )
                .scalars()
                .all()
            )
            return [_model_to_schedule(row) for row in rows]

    def has_overriding_schedule(self, schedule: Schedule, now: datetime) -> bool:
        """True when another in-effect schedule on the door has priority >= this one."""
        now = ensure_utc(now)
        with self._session() as session:
            row = session.execute(
                select(ScheduleModel.id)
                .where(
                    ScheduleModel.door_id == schedule.door_id,
                    ScheduleModel.id != schedule.id,
                    ScheduleModel.is_active.is_(True),
                    ScheduleModel.start_time <= now,
                    ScheduleModel.end_time > now,
                    ScheduleModel.priority >= schedule.priority,
                )
                .limit(1)
            ).first()
            return row is not None

    def retire(self, schedule_id: int, status: ScheduleStatus) -> None:
        if not status.is_terminal:
            raise ValueError(f"Cannot retire a schedule with non-terminal status {status}.")
        with self._session() as session:
            session.execute(
                update(ScheduleModel)
                .where(ScheduleModel.id == schedule_id)
                .values(is_active=False, status=status.value, updated_at=_now())
            )
            session.commit()

    def mark_status(self, schedule_id: int, status: ScheduleStatus) -> None:
        with self._session() as session:
            session.execute(
                update(ScheduleModel)
                .where(ScheduleModel.id == schedule_id)
                .values(status=status.value, updated_at=_now())
            )
            session.commit()


# Services --------------------------------------------------------------------


def create_schedule(
    draft: ScheduleDraft,
    *,
    doors: DoorRepository,
    schedules: ScheduleRepository,
) -> Schedule:
    """Validate a request-originated schedule and persist it."""
    validate_window(draft.start_time, draft.end_time)
    door = doors.get(draft.door_id)
    if door is None:
        raise DoorNotFoundError(f"Door {draft.door_id} not found.")
    if not door.is_active:
        raise DoorInactiveError(f"Door {draft.door_id} is not active.")
    return schedules.create(draft)


# Repository factory ----------------------------------------------------------


def get_schedule_repository() -> ScheduleRepository:
    """Return the configured schedule repository."""
    return SQLScheduleRepository(get_session_factory())
