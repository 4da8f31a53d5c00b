"""Recurrence patterns and the expander that materializes them into schedules."""

from __future__ import annotations

import calendar
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time, timedelta
from enum import StrEnum
from typing import Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from .database import get_session_factory
from .db_models import (
    DoorModel,
    RecurrenceInstanceModel,
    RecurrencePatternDoorModel,
    RecurrencePatternModel,
    ScheduleModel,
)
from .gateway.utils import logger
from .schedules import ScheduleSource, ScheduleStatus

DEFAULT_WEEKS_AHEAD = 4


def _utcnow() -> datetime:
    return datetime.now(UTC)


def resolve_timezone(name: str | None) -> ZoneInfo:
    """Return the named zone, falling back to UTC when it is unknown."""
    tz_name = (name or "UTC").strip() or "UTC"
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone {}; defaulting to UTC.", tz_name)
        return ZoneInfo("UTC")


class RecurrenceType(StrEnum):
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"


class PatternValidationError(ValueError):
    """Raised when a recurrence pattern cannot generate schedules."""


@dataclass(frozen=True)
class PatternDoor:
    door_id: int
    custom_unlock_time: time | None = None
    custom_lock_time: time | None = None


@dataclass(frozen=True)
class RecurrencePattern:
    """A repeating rule that generates unlock schedules for a set of doors.

    ``day_of_week`` uses Monday=0 through Sunday=6. ``week_interval`` applies to
    biweekly patterns and defaults to 2 there.
    """

    id: int | None
    event_name: str
    unlock_time: time
    lock_time: time
    recurrence_type: RecurrenceType
    start_date: date
    day_of_week: int | None = None
    day_of_month: int | None = None
    week_interval: int | None = None
    end_date: date | None = None
    generate_weeks_ahead: int = DEFAULT_WEEKS_AHEAD
    priority: int = 0
    is_active: bool = True
    description: str | None = None
    doors: tuple[PatternDoor, ...] = field(default_factory=tuple)
    created_at: datetime | None = None
    created_by: str | None = None

    @property
    def effective_week_interval(self) -> int:
        if self.recurrence_type == RecurrenceType.WEEKLY:
            return 1
        return max(self.week_interval or 2, 1)


def validate_pattern(pattern: RecurrencePattern) -> None:
    if not pattern.event_name or not pattern.event_name.strip():
        raise PatternValidationError("Event name is required.")
    if pattern.recurrence_type in (RecurrenceType.WEEKLY, RecurrenceType.BIWEEKLY):
        if pattern.day_of_week is None or not 0 <= pattern.day_of_week <= 6:
            raise PatternValidationError(
                "Weekly and biweekly patterns need a day of week between 0 and 6."
            )
    if pattern.recurrence_type == RecurrenceType.MONTHLY:
        if pattern.day_of_month is None or not 1 <= pattern.day_of_month <= 31:
            raise PatternValidationError(
                "Monthly patterns need a day of month between 1 and 31."
            )
    if pattern.week_interval is not None and pattern.week_interval < 1:
        raise PatternValidationError("Week interval must be at least 1.")
    if pattern.end_date is not None and pattern.end_date < pattern.start_date:
        raise PatternValidationError("End date cannot be before start date.")
    if pattern.generate_weeks_ahead < 1:
        raise PatternValidationError("Generation horizon must be at least one week.")
    if not pattern.doors:
        raise PatternValidationError("At least one door is required.")
    door_ids = [door.door_id for door in pattern.doors]
    if len(set(door_ids)) != len(door_ids):
        raise PatternValidationError("A door can only be listed once per pattern.")


# Occurrence rules ------------------------------------------------------------


def _clamped_day(year: int, month: int, day: int) -> date:
    return date(year, month, min(day, calendar.monthrange(year, month)[1]))


def _next_weekly(pattern: RecurrencePattern, from_date: date) -> date | None:
    if pattern.day_of_week is None:
        return None
    days_until = (pattern.day_of_week - from_date.weekday()) % 7
    candidate = from_date + timedelta(days=days_until)
    interval = pattern.effective_week_interval
    if interval > 1:
        weeks_since_start = (candidate - pattern.start_date).days // 7
        remainder = weeks_since_start % interval
        if remainder:
            candidate += timedelta(days=7 * (interval - remainder))
    return candidate


def _next_monthly(pattern: RecurrencePattern, from_date: date) -> date | None:
    if pattern.day_of_month is None:
        return None
    candidate = _clamped_day(from_date.year, from_date.month, pattern.day_of_month)
    if candidate <= from_date:
        year, month = (
            (from_date.year + 1, 1)
            if from_date.month == 12
            else (from_date.year, from_date.month + 1)
        )
        candidate = _clamped_day(year, month, pattern.day_of_month)
    return candidate


def next_occurrence(pattern: RecurrencePattern, from_date: date) -> date | None:
    """Return the first occurrence of ``pattern`` on or after ``from_date``.

    Weekly and biweekly patterns offer ``from_date`` itself when it falls on the
    pattern's weekday. Monthly patterns only offer dates strictly after
    ``from_date``.
    """
    if not pattern.is_active:
        return None
    if pattern.end_date is not None and from_date > pattern.end_date:
        return None
    if from_date < pattern.start_date:
        from_date = pattern.start_date

    if pattern.recurrence_type in (RecurrenceType.WEEKLY, RecurrenceType.BIWEEKLY):
        candidate = _next_weekly(pattern, from_date)
    elif pattern.recurrence_type == RecurrenceType.MONTHLY:
        candidate = _next_monthly(pattern, from_date)
    else:
        return None

    if candidate is None:
        return None
    if pattern.end_date is not None and candidate > pattern.end_date:
        return None
    return candidate


def iter_occurrences(
    pattern: RecurrencePattern, start: date, until: date
) -> Iterable[date]:
    """Yield occurrences between ``start`` and ``until`` inclusive."""
    cursor = start
    while cursor <= until:
        occurrence = next_occurrence(pattern, cursor)
        if occurrence is None or occurrence > until:
            return
        yield occurrence
        cursor = occurrence + timedelta(days=1)


# Storage ---------------------------------------------------------------------


@dataclass(frozen=True)
class InstanceWindow:
    """The concrete unlock window for one door on one occurrence date."""

    door_id: int
    start_time: datetime
    end_time: datetime


def _model_to_pattern(
    model: RecurrencePatternModel, doors: Iterable[RecurrencePatternDoorModel]
) -> RecurrencePattern:
    return RecurrencePattern(
        id=model.id,
        event_name=model.event_name,
        description=model.description,
        unlock_time=model.unlock_time,
        lock_time=model.lock_time,
        recurrence_type=RecurrenceType(model.recurrence_type),
        day_of_week=model.day_of_week,
        day_of_month=model.day_of_month,
        week_interval=model.week_interval,
        start_date=model.start_date,
        end_date=model.end_date,
        generate_weeks_ahead=model.generate_weeks_ahead,
        priority=model.priority,
        is_active=bool(model.is_active),
        created_at=model.created_at,
        created_by=model.created_by,
        doors=tuple(
            PatternDoor(
                door_id=row.door_id,
                custom_unlock_time=row.custom_unlock_time,
                custom_lock_time=row.custom_lock_time,
            )
            for row in doors
        ),
    )


class RecurrencePatternRepository(Protocol):
    def create(self, pattern: RecurrencePattern) -> RecurrencePattern:
        ...

    def list(self, *, is_active: bool | None = None) -> list[RecurrencePattern]:
        ...

    def get(self, pattern_id: int) -> RecurrencePattern | None:
        ...

    def delete(self, pattern_id: int, *, delete_generated_schedules: bool = False) -> bool:
        ...

    def list_active(self) -> list[RecurrencePattern]:
        ...

    def generated_dates(self, pattern_id: int, start: date, end: date) -> set[date]:
        ...

    def materialize(
        self,
        pattern: RecurrencePattern,
        scheduled_date: date,
        windows: list[InstanceWindow],
    ) -> int:
        ...


class SQLRecurrencePatternRepository(RecurrencePatternRepository):
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    def _load(self, session: Session, model: RecurrencePatternModel) -> RecurrencePattern:
        doors = (
            session.execute(
                select(RecurrencePatternDoorModel)
                .where(RecurrencePatternDoorModel.pattern_id == model.id)
                .order_by(RecurrencePatternDoorModel.id)
            )
            .scalars()
            .all()
        )
        return _model_to_pattern(model, doors)

    def create(self, pattern: RecurrencePattern) -> RecurrencePattern:
        validate_pattern(pattern)
        with self._session_factory() as session:
            door_ids = [door.door_id for door in pattern.doors]
            known = set(
                session.execute(
                    select(DoorModel.id).where(DoorModel.id.in_(door_ids))
                ).scalars()
            )
            missing = sorted(set(door_ids) - known)
            if missing:
                raise PatternValidationError(f"Unknown door ids: {missing}")

            model = RecurrencePatternModel(
                event_name=pattern.event_name.strip(),
                description=pattern.description,
                unlock_time=pattern.unlock_time,
                lock_time=pattern.lock_time,
                recurrence_type=pattern.recurrence_type.value,
                day_of_week=pattern.day_of_week,
                day_of_month=pattern.day_of_month,
                week_interval=pattern.week_interval,
                start_date=pattern.start_date,
                end_date=pattern.end_date,
                generate_weeks_ahead=pattern.generate_weeks_ahead,
                priority=pattern.priority,
                is_active=pattern.is_active,
                created_at=pattern.created_at or self._clock(),
                created_by=pattern.created_by,
            )
            session.add(model)
            session.flush()
            for door in pattern.doors:
                session.add(
                    RecurrencePatternDoorModel(
                        pattern_id=model.id,
                        door_id=door.door_id,
                        custom_unlock_time=door.custom_unlock_time,
                        custom_lock_time=door.custom_lock_time,
                    )
                )
            session.commit()
            return self._load(session, model)

    def list(self, *, is_active: bool | None = None) -> list[RecurrencePattern]:
        with self._session_factory() as session:
            stmt = select(RecurrencePatternModel)
            if is_active is not None:
                stmt = stmt.where(RecurrencePatternModel.is_active == is_active)
            rows = session.execute(stmt.order_by(RecurrencePatternModel.id)).scalars().all()
            return [self._load(session, row) for row in rows]

    def get(self, pattern_id: int) -> RecurrencePattern | None:
        with self._session_factory() as session:
            row = session.get(RecurrencePatternModel, pattern_id)
            return self._load(session, row) if row else None

    def delete(self, pattern_id: int, *, delete_generated_schedules: bool = False) -> bool:
        """Remove a pattern; its generated schedules survive unless asked otherwise."""
        with self._session_factory() as session:
            model = session.get(RecurrencePatternModel, pattern_id)
            if model is None:
                return False
            if delete_generated_schedules:
                schedule_ids = select(RecurrenceInstanceModel.schedule_id).where(
                    RecurrenceInstanceModel.pattern_id == pattern_id
                )
                session.execute(
                    delete(ScheduleModel).where(ScheduleModel.id.in_(schedule_ids))
                )
            session.execute(
                delete(RecurrenceInstanceModel).where(
                    RecurrenceInstanceModel.pattern_id == pattern_id
                )
            )
            session.execute(
                delete(RecurrencePatternDoorModel).where(
                    RecurrencePatternDoorModel.pattern_id == pattern_id
                )
            )
            session.delete(model)
            session.commit()
            return True

    def list_active(self) -> list[RecurrencePattern]:
        return self.list(is_active=True)

    def generated_dates(self, pattern_id: int, start: date, end: date) -> set[date]:
        with self._session_factory() as session:
            rows = session.execute(
                select(RecurrenceInstanceModel.scheduled_date)
                .where(
                    RecurrenceInstanceModel.pattern_id == pattern_id,
                    RecurrenceInstanceModel.scheduled_date >= start,
                    RecurrenceInstanceModel.scheduled_date <= end,
                )
                .distinct()
            ).scalars()
            return set(rows)

    def materialize(
        self,
        pattern: RecurrencePattern,
        scheduled_date: date,
        windows: list[InstanceWindow],
    ) -> int:
        """Insert one schedule and marker per window in a single transaction.

        Returns the number of schedules created, or 0 when another writer already
        generated this date.
        """
        if pattern.id is None:
            raise ValueError("Pattern must be persisted before generating schedules.")
        generated_at = self._clock()
        with self._session_factory() as session:
            try:
                for window in windows:
                    schedule = ScheduleModel(
                        door_id=window.door_id,
                        label=pattern.event_name,
                        start_time=window.start_time,
                        end_time=window.end_time,
                        recurrence_type=pattern.recurrence_type.value,
                        source=ScheduleSource.RECURRING.value,
                        priority=pattern.priority,
                        is_active=True,
                        status=ScheduleStatus.PENDING.value,
                        created_by=pattern.created_by,
                        created_at=generated_at,
                    )
                    session.add(schedule)
                    session.flush()
                    session.add(
                        RecurrenceInstanceModel(
                            pattern_id=pattern.id,
                            schedule_id=schedule.id,
                            door_id=window.door_id,
                            scheduled_date=scheduled_date,
                            generated_at=generated_at,
                        )
                    )
                session.commit()
            except IntegrityError:
                session.rollback()
                logger.bind(pattern_id=pattern.id, scheduled_date=str(scheduled_date)).info(
                    "Occurrence already generated by another writer; skipping."
                )
                return 0
        return len(windows)


def get_recurrence_pattern_repository() -> RecurrencePatternRepository:
    return SQLRecurrencePatternRepository(get_session_factory())


# Expander --------------------------------------------------------------------


class RecurrenceExpander:
    """Materializes active patterns into schedule rows on a rolling horizon."""

    def __init__(
        self,
        patterns: RecurrencePatternRepository,
        *,
        timezone: ZoneInfo | str = "UTC",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._patterns = patterns
        self._tz = timezone if isinstance(timezone, ZoneInfo) else resolve_timezone(timezone)
        self._clock = clock

    @property
    def timezone(self) -> ZoneInfo:
        return self._tz

    def window_for(
        self, pattern: RecurrencePattern, door: PatternDoor, day: date
    ) -> InstanceWindow:
        """Convert the site-local times for ``day`` into a UTC window."""
        unlock_at = door.custom_unlock_time or pattern.unlock_time
        lock_at = door.custom_lock_time or pattern.lock_time
        start_local = datetime.combine(day, unlock_at, tzinfo=self._tz)
        end_day = day if lock_at > unlock_at else day + timedelta(days=1)
        end_local = datetime.combine(end_day, lock_at, tzinfo=self._tz)
        return InstanceWindow(
            door_id=door.door_id,
            start_time=start_local.astimezone(UTC),
            end_time=end_local.astimezone(UTC),
        )

    def generate_instances_for_pattern(
        self,
        pattern: RecurrencePattern,
        today: date | None = None,
        *,
        now: datetime | None = None,
    ) -> int:
        """Materialize occurrences up to the pattern horizon.

        Windows that already ended at ``now`` are not created; a date whose
        windows have all ended is left without a marker.
        """
        if not pattern.doors:
            logger.warning("Pattern {} has no doors assigned; skipping.", pattern.event_name)
            return 0
        if pattern.id is None:
            raise ValueError("Pattern must be persisted before generating schedules.")

        current = now or self._clock()
        start = today or current.astimezone(self._tz).date()
        horizon = start + timedelta(days=pattern.generate_weeks_ahead * 7)
        existing = self._patterns.generated_dates(pattern.id, start, horizon)

        generated = 0
        for occurrence in iter_occurrences(pattern, start, horizon):
            if occurrence in existing:
                continue
            windows = [
                window
                for window in (
                    self.window_for(pattern, door, occurrence) for door in pattern.doors
                )
                if window.end_time > current
            ]
            if not windows:
                logger.bind(pattern_id=pattern.id, scheduled_date=str(occurrence)).debug(
                    "Occurrence already over; not generated."
                )
                continue
            generated += self._patterns.materialize(pattern, occurrence, windows)
        return generated

    def generate_all(self, today: date | None = None, *, now: datetime | None = None) -> int:
        """Run generation for every active pattern, isolating per-pattern failures."""
        current = now or self._clock()
        start = today or current.astimezone(self._tz).date()
        patterns = self._patterns.list_active()
        if not patterns:
            logger.debug("No active recurrence patterns found.")
            return 0

        total = 0
        for pattern in patterns:
            try:
                generated = self.generate_instances_for_pattern(pattern, start, now=current)
            except Exception:
                logger.bind(pattern_id=pattern.id).exception(
                    "Failed to generate instances for pattern {}.", pattern.event_name
                )
                continue
            total += generated
            if generated:
                logger.bind(pattern_id=pattern.id, generated=generated).info(
                    "Generated schedule instances for pattern {}.", pattern.event_name
                )
        if total:
            logger.bind(generated=total).info("Recurrence generation finished.")
        return total

