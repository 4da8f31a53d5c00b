"""Pydantic models for the door scheduler FastAPI backend."""

from __future__ import annotations

from datetime import UTC, date, datetime, time
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _to_camel(string: str) -> str:
    first, *rest = string.split("_")
    return first + "".join(word.capitalize() for word in rest)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=_to_camel, populate_by_name=True)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


# ---------------------------------------------------------------------------
# Doors


class DoorOut(CamelModel):
    id: int
    device_id: int
    name: str
    controller_id: int | None = None
    controller_name: str | None = None
    controller_group_id: int | None = None
    is_active: bool
    last_sync_time: datetime | None = None


class DoorListResponse(CamelModel):
    doors: list[DoorOut]


class DoorSyncResponse(CamelModel):
    success: bool
    added: int = Field(..., ge=0)
    updated: int = Field(..., ge=0)
    deactivated: int = Field(..., ge=0)
    error_message: str | None = None
    sync_time: datetime


class DoorActionRequest(CamelModel):
    action: str = Field(..., min_length=1)


# ---------------------------------------------------------------------------
# Schedules


class ScheduleOut(CamelModel):
    id: int
    door_id: int
    label: str | None = None
    start_time: datetime
    end_time: datetime
    recurrence_type: str
    source: str
    priority: int
    is_active: bool
    status: str
    created_by: str | None = None
    created_at: datetime
    updated_at: datetime | None = None


class ScheduleListResponse(CamelModel):
    schedules: list[ScheduleOut]


class ScheduleCreateRequest(CamelModel):
    door_id: int
    start_time: datetime
    end_time: datetime
    label: str | None = Field(default=None, max_length=255)
    priority: int = 0
    source: Literal["manual", "external-import"] = "manual"
    created_by: str | None = None

    @field_validator("start_time", "end_time")
    @classmethod
    def _normalize_instant(cls, value: datetime) -> datetime:
        return _as_utc(value)


# ---------------------------------------------------------------------------
# Action log and health


class ActionLogOut(CamelModel):
    id: int
    schedule_id: int | None = None
    door_id: int
    action: Literal["UNLOCK", "LOCK"]
    timestamp: datetime
    success: bool
    triggered_by: str
    response_code: int | None = None
    response_body: str | None = None
    error_message: str | None = None


class ActionLogListResponse(CamelModel):
    entries: list[ActionLogOut]
    total: int = Field(..., ge=0)
    limit: int = Field(..., ge=1)
    offset: int = Field(..., ge=0)


class HealthResponse(CamelModel):
    status: Literal["healthy", "degraded"]
    database: bool
    gateway_authenticated: bool
    scheduler_running: bool
    uptime_seconds: float = Field(..., ge=0)
    version: str
    timestamp: datetime


# ---------------------------------------------------------------------------
# Recurrence patterns


class PatternDoorIn(CamelModel):
    door_id: int
    custom_unlock_time: time | None = None
    custom_lock_time: time | None = None


class PatternDoorOut(PatternDoorIn):
    pass


class RecurrencePatternCreateRequest(CamelModel):
    event_name: str = Field(..., min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=500)
    unlock_time: time
    lock_time: time
    recurrence_type: Literal["weekly", "biweekly", "monthly"]
    day_of_week: int | None = Field(default=None, ge=0, le=6)
    day_of_month: int | None = Field(default=None, ge=1, le=31)
    week_interval: int | None = Field(default=None, ge=1)
    start_date: date
    end_date: date | None = None
    generate_weeks_ahead: int | None = Field(default=None, ge=1, le=52)
    priority: int = 0
    is_active: bool = True
    created_by: str | None = Field(default=None, max_length=100)
    doors: list[PatternDoorIn] = Field(default_factory=list)


class RecurrencePatternOut(CamelModel):
    id: int
    event_name: str
    description: str | None = None
    unlock_time: time
    lock_time: time
    recurrence_type: str
    day_of_week: int | None = None
    day_of_month: int | None = None
    week_interval: int | None = None
    start_date: date
    end_date: date | None = None
    generate_weeks_ahead: int
    priority: int
    is_active: bool
    created_at: datetime | None = None
    created_by: str | None = None
    doors: list[PatternDoorOut] = Field(default_factory=list)
    generated_count: int | None = None


class RecurrencePatternListResponse(CamelModel):
    patterns: list[RecurrencePatternOut]


class GenerationResponse(CamelModel):
    generated: int = Field(..., ge=0)
