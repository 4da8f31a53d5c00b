"""Background scheduler that reconciles door schedules against the gateway."""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from functools import lru_cache

from pydantic import BaseModel, Field

from .action_log import ActionKind, ActionLogRepository, TriggerSource, get_action_log_repository
from .doors import Door, DoorRepository, get_door_repository
from .gateway.client import GatewayActionClient, get_gateway_client
from .gateway.config import load_env_file
from .gateway.utils import logger
from .recurrence import RecurrenceExpander, get_recurrence_pattern_repository, resolve_timezone
from .schedules import (
    Schedule,
    ScheduleRepository,
    ScheduleStatus,
    ensure_utc,
    get_schedule_repository,
)
from .services import perform_door_action

_ENV_FIELDS = {
    "check_interval_seconds": "DOOR_SCHEDULER_CHECK_INTERVAL_SECONDS",
    "lock_grace_minutes": "DOOR_SCHEDULER_LOCK_GRACE_MINUTES",
    "reassert_minutes": "DOOR_SCHEDULER_REASSERT_MINUTES",
    "generate_weeks_ahead": "DOOR_SCHEDULER_GENERATE_WEEKS_AHEAD",
    "timezone": "DOOR_SCHEDULER_TIMEZONE",
    "enabled": "DOOR_SCHEDULER_ENABLED",
}


class SchedulerSettings(BaseModel):
    """Tunables for the reconciliation loop."""

    check_interval_seconds: int = Field(default=30, gt=0)
    lock_grace_minutes: int = Field(default=5, gt=0)
    reassert_minutes: int = Field(default=2, gt=0)
    generate_weeks_ahead: int = Field(default=4, gt=0)
    timezone: str = Field(default="UTC")
    enabled: bool = Field(default=True)

    @classmethod
    def load(cls) -> SchedulerSettings:
        load_env_file()
        values: dict[str, str] = {}
        for name, env_key in _ENV_FIELDS.items():
            raw = os.getenv(env_key)
            if raw is not None and raw.strip():
                values[name] = raw.strip()
        return cls(**values)

    @property
    def lock_grace(self) -> timedelta:
        return timedelta(minutes=self.lock_grace_minutes)

    @property
    def reassert_interval(self) -> timedelta:
        return timedelta(minutes=self.reassert_minutes)


@lru_cache
def get_scheduler_settings() -> SchedulerSettings:
    return SchedulerSettings.load()


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class TickSummary:
    unlocked: int = 0
    locked: int = 0
    superseded: int = 0
    skipped: int = 0
    failed: int = 0
    generated: int = 0

    @property
    def changed(self) -> bool:
        return any((self.unlocked, self.locked, self.superseded, self.failed, self.generated))


@dataclass
class ScheduleExecutor:
    """Runs reconciliation ticks on a fixed interval in a single background task.

    Collaborators left as ``None`` are resolved from the process-wide factories
    on first use.
    """

    settings: SchedulerSettings = field(default_factory=get_scheduler_settings)
    schedules: ScheduleRepository | None = None
    doors: DoorRepository | None = None
    action_log: ActionLogRepository | None = None
    gateway: GatewayActionClient | None = None
    expander: RecurrenceExpander | None = None
    clock: Callable[[], datetime] = _utcnow
    last_recurrence_check: date | None = None
    _task: asyncio.Task[None] | None = field(default=None, init=False)
    _stop_event: asyncio.Event | None = field(default=None, init=False)

    def __post_init__(self) -> None:
        if self.schedules is None:
            self.schedules = get_schedule_repository()
        if self.doors is None:
            self.doors = get_door_repository()
        if self.action_log is None:
            self.action_log = get_action_log_repository()
        if self.expander is None:
            self.expander = RecurrenceExpander(
                get_recurrence_pattern_repository(),
                timezone=resolve_timezone(self.settings.timezone),
                clock=self.clock,
            )

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _gateway(self) -> GatewayActionClient:
        if self.gateway is None:
            self.gateway = get_gateway_client()
        return self.gateway

    # Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        if self.is_running:
            return
        self._stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run())
        logger.info(
            "Schedule executor started (interval={}s).", self.settings.check_interval_seconds
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        if self._stop_event is not None:
            self._stop_event.set()
        try:
            await self._task
        finally:
            self._task = None
        logger.info("Schedule executor stopped.")

    async def _run(self) -> None:
        assert self._stop_event is not None
        while not self._stop_event.is_set():
            try:
                await asyncio.shield(asyncio.to_thread(self.evaluate_once))
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Schedule executor iteration failed.")
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self.settings.check_interval_seconds
                )
            except TimeoutError:
                continue

    # Tick ------------------------------------------------------------------

    def evaluate_once(self, *, now: datetime | None = None) -> TickSummary:
        """Run one reconciliation pass: daily generation, then unlock, then lock."""
        current = ensure_utc(now or self.clock())
        summary = TickSummary()
        summary.generated = self._maybe_generate(current)
        self._unlock_phase(current, summary)
        self._lock_phase(current, summary)
        if summary.changed:
            logger.bind(**vars(summary)).info("Reconciliation tick finished.")
        return summary

    def _maybe_generate(self, now: datetime) -> int:
        assert self.expander is not None
        local_today = now.astimezone(self.expander.timezone).date()
        if self.last_recurrence_check == local_today:
            return 0
        try:
            generated = self.expander.generate_all(local_today, now=now)
        except Exception:
            logger.exception("Daily recurrence generation failed; retrying next tick.")
            return 0
        self.last_recurrence_check = local_today
        return generated

    def _resolve_door(self, schedule: Schedule) -> Door | None:
        assert self.doors is not None
        door = self.doors.get(schedule.door_id)
        if door is None or not door.is_active:
            logger.bind(schedule_id=schedule.id, door_id=schedule.door_id).warning(
                "Door missing or inactive for schedule; skipping."
            )
            return None
        return door

    def _unlock_phase(self, now: datetime, summary: TickSummary) -> None:
        assert self.schedules is not None and self.action_log is not None
        for schedule in self.schedules.list_in_effect(now):
            try:
                door = self._resolve_door(schedule)
                if door is None:
                    summary.skipped += 1
                    continue
                last_unlock = self.action_log.latest_success_at(
                    schedule.id, schedule.door_id, ActionKind.UNLOCK
                )
                if last_unlock is not None and now - last_unlock <= self.settings.reassert_interval:
                    summary.skipped += 1
                    continue
                entry = perform_door_action(
                    door,
                    ActionKind.UNLOCK,
                    triggered_by=TriggerSource.SCHEDULE,
                    client=self._gateway(),
                    log_repo=self.action_log,
                    schedule_id=schedule.id,
                    timestamp=now,
                )
                if not entry.success:
                    summary.failed += 1
                    continue
                summary.unlocked += 1
                if schedule.status == ScheduleStatus.PENDING:
                    self.schedules.mark_status(schedule.id, ScheduleStatus.ACTIVE)
            except Exception:
                summary.failed += 1
                logger.bind(schedule_id=schedule.id).exception(
                    "Failed to process unlock for schedule."
                )

    def _lock_phase(self, now: datetime, summary: TickSummary) -> None:
        assert self.schedules is not None and self.action_log is not None
        for schedule in self.schedules.list_expired(now):
            log = logger.bind(schedule_id=schedule.id, door_id=schedule.door_id)
            try:
                door = self._resolve_door(schedule)
                if door is None:
                    self.schedules.retire(schedule.id, ScheduleStatus.FAILED)
                    summary.skipped += 1
                    continue
                last_lock = self.action_log.latest_success_at(
                    schedule.id, schedule.door_id, ActionKind.LOCK
                )
                if last_lock is not None and now - last_lock <= self.settings.lock_grace:
                    self.schedules.retire(schedule.id, ScheduleStatus.COMPLETED)
                    summary.skipped += 1
                    continue
                if self.schedules.has_overriding_schedule(schedule, now):
                    self.schedules.retire(schedule.id, ScheduleStatus.SUPERSEDED)
                    summary.superseded += 1
                    log.info("Schedule superseded by an overlapping schedule; lock not sent.")
                    continue
                entry = perform_door_action(
                    door,
                    ActionKind.LOCK,
                    triggered_by=TriggerSource.SCHEDULE,
                    client=self._gateway(),
                    log_repo=self.action_log,
                    schedule_id=schedule.id,
                    timestamp=now,
                )
                status = ScheduleStatus.COMPLETED if entry.success else ScheduleStatus.FAILED
                self.schedules.retire(schedule.id, status)
                if entry.success:
                    summary.locked += 1
                else:
                    summary.failed += 1
                log.info("Schedule retired as {}.", status.value)
            except Exception:
                summary.failed += 1
                log.exception("Failed to process lock for schedule.")


@lru_cache
def get_schedule_executor() -> ScheduleExecutor:
    """Return the process-wide executor shared by the app lifespan and health checks."""
    return ScheduleExecutor()
