"""API router exposing the door scheduling endpoints."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, Request, Response, status
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from . import __version__, schemas
from .action_log import ActionLogEntry, get_action_log_repository
from .database import create_session
from .doors import (
    Door,
    DoorDeletionBlockedError,
    DoorInactiveError,
    DoorNotFoundError,
    get_door_repository,
)
from .gateway.client import get_gateway_client
from .gateway.utils import logger
from .recurrence import (
    PatternDoor,
    PatternValidationError,
    RecurrenceExpander,
    RecurrencePattern,
    RecurrenceType,
    get_recurrence_pattern_repository,
    resolve_timezone,
)
from .schedule_executor import get_scheduler_settings
from .schedules import (
    Schedule,
    ScheduleDraft,
    ScheduleSource,
    ScheduleValidationError,
    create_schedule as create_schedule_service,
    get_schedule_repository,
)
from .services import run_manual_action
from .topology import get_door_source, sync_doors

router = APIRouter(prefix="/api", tags=["doors"])

_STARTED_AT = datetime.now(UTC)


def _door_to_schema(door: Door) -> schemas.DoorOut:
    return schemas.DoorOut(
        id=door.id,
        device_id=door.device_id,
        name=door.name,
        controller_id=door.controller_id,
        controller_name=door.controller_name,
        controller_group_id=door.controller_group_id,
        is_active=door.is_active,
        last_sync_time=door.last_sync_time,
    )


def _schedule_to_schema(schedule: Schedule) -> schemas.ScheduleOut:
    return schemas.ScheduleOut(
        id=schedule.id,
        door_id=schedule.door_id,
        label=schedule.label,
        start_time=schedule.start_time,
        end_time=schedule.end_time,
        recurrence_type=schedule.recurrence_type,
        source=schedule.source.value,
        priority=schedule.priority,
        is_active=schedule.is_active,
        status=schedule.status.value,
        created_by=schedule.created_by,
        created_at=schedule.created_at,
        updated_at=schedule.updated_at,
    )


def _entry_to_schema(entry: ActionLogEntry) -> schemas.ActionLogOut:
    return schemas.ActionLogOut(
        id=entry.id,
        schedule_id=entry.schedule_id,
        door_id=entry.door_id,
        action=entry.action.value,
        timestamp=entry.timestamp,
        success=entry.success,
        triggered_by=entry.triggered_by.value,
        response_code=entry.response_code,
        response_body=entry.response_body,
        error_message=entry.error_message,
    )


def _pattern_to_schema(
    pattern: RecurrencePattern, generated: int | None = None
) -> schemas.RecurrencePatternOut:
    return schemas.RecurrencePatternOut(
        id=pattern.id,
        event_name=pattern.event_name,
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
        created_at=pattern.created_at,
        created_by=pattern.created_by,
        doors=[
            schemas.PatternDoorOut(
                door_id=door.door_id,
                custom_unlock_time=door.custom_unlock_time,
                custom_lock_time=door.custom_lock_time,
            )
            for door in pattern.doors
        ],
        generated_count=generated,
    )


def _build_expander() -> RecurrenceExpander:
    settings = get_scheduler_settings()
    return RecurrenceExpander(
        get_recurrence_pattern_repository(),
        timezone=resolve_timezone(settings.timezone),
    )


# ---------------------------------------------------------------------------
# Health


def _database_available() -> bool:
    try:
        with create_session() as session:
            session.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Database health check failed.")
        return False
    return True


@router.get("/health", response_model=schemas.HealthResponse, tags=["health"])
def health_detail(request: Request) -> schemas.HealthResponse:
    executor = getattr(request.app.state, "executor", None)
    database_ok = _database_available()
    now = datetime.now(UTC)
    return schemas.HealthResponse(
        status="healthy" if database_ok else "degraded",
        database=database_ok,
        gateway_authenticated=get_gateway_client().is_authenticated(),
        scheduler_running=bool(executor and executor.is_running),
        uptime_seconds=(now - _STARTED_AT).total_seconds(),
        version=__version__,
        timestamp=now,
    )


@router.get(
    "/health/schedule-actions",
    response_model=schemas.ActionLogListResponse,
    tags=["health"],
)
def list_schedule_actions(
    door_id: Annotated[int | None, Query(alias="doorId")] = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> schemas.ActionLogListResponse:
    log_repo = get_action_log_repository()
    entries = log_repo.list_recent(door_id=door_id, limit=limit, offset=offset)
    return schemas.ActionLogListResponse(
        entries=[_entry_to_schema(entry) for entry in entries],
        total=log_repo.count(door_id=door_id),
        limit=limit,
        offset=offset,
    )


# ---------------------------------------------------------------------------
# Schedules


@router.get("/schedules", response_model=schemas.ScheduleListResponse)
def list_schedules(
    door_id: Annotated[int | None, Query(alias="doorId")] = None,
    start_date: Annotated[datetime | None, Query(alias="startDate")] = None,
    end_date: Annotated[datetime | None, Query(alias="endDate")] = None,
    is_active: Annotated[bool | None, Query(alias="isActive")] = None,
    source: Annotated[str | None, Query()] = None,
) -> schemas.ScheduleListResponse:
    schedules = get_schedule_repository().list(
        door_id=door_id,
        start_from=start_date,
        end_until=end_date,
        is_active=is_active,
        source=source,
    )
    return schemas.ScheduleListResponse(
        schedules=[_schedule_to_schema(schedule) for schedule in schedules]
    )


@router.get("/schedules/{schedule_id}", response_model=schemas.ScheduleOut)
def get_schedule(schedule_id: int) -> schemas.ScheduleOut:
    schedule = get_schedule_repository().get(schedule_id)
    if schedule is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail="Schedule not found.")
    return _schedule_to_schema(schedule)


@router.post(
    "/schedules",
    response_model=schemas.ScheduleOut,
    status_code=status.HTTP_201_CREATED,
)
def create_schedule(payload: schemas.ScheduleCreateRequest) -> schemas.ScheduleOut:
    draft = ScheduleDraft(
        door_id=payload.door_id,
        start_time=payload.start_time,
        end_time=payload.end_time,
        label=payload.label,
        source=ScheduleSource(payload.source),
        priority=payload.priority,
        created_by=payload.created_by,
    )
    try:
        schedule = create_schedule_service(
            draft,
            doors=get_door_repository(),
            schedules=get_schedule_repository(),
        )
    except DoorNotFoundError as exc:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except (DoorInactiveError, ScheduleValidationError) as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    logger.bind(schedule_id=schedule.id, door_id=schedule.door_id).info("Schedule created.")
    return _schedule_to_schema(schedule)


@router.delete("/schedules/{schedule_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_schedule(schedule_id: int) -> Response:
    if not get_schedule_repository().delete(schedule_id):
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail="Schedule not found.")
    logger.bind(schedule_id=schedule_id).info("Schedule deleted.")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Doors


@router.get("/doors", response_model=schemas.DoorListResponse)
def list_doors(
    is_active: Annotated[bool | None, Query(alias="isActive")] = None,
    controller_id: Annotated[int | None, Query(alias="controllerId")] = None,
) -> schemas.DoorListResponse:
    doors = get_door_repository().list(is_active=is_active, controller_id=controller_id)
    return schemas.DoorListResponse(doors=[_door_to_schema(door) for door in doors])


@router.post("/doors/sync", response_model=schemas.DoorSyncResponse)
def sync_door_topology() -> schemas.DoorSyncResponse:
    result = sync_doors(get_door_source(), get_door_repository())
    return schemas.DoorSyncResponse(
        success=result.success,
        added=result.added,
        updated=result.updated,
        deactivated=result.deactivated,
        error_message=result.error_message,
        sync_time=result.sync_time,
    )


@router.get("/doors/{door_id}", response_model=schemas.DoorOut)
def get_door(door_id: int) -> schemas.DoorOut:
    door = get_door_repository().get(door_id)
    if door is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail="Door not found.")
    return _door_to_schema(door)


@router.delete("/doors/{door_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_door(door_id: int) -> Response:
    try:
        deleted = get_door_repository().delete(door_id)
    except DoorDeletionBlockedError as exc:
        raise HTTPException(status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if not deleted:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail="Door not found.")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/doors/{door_id}/test-action", response_model=schemas.ActionLogOut)
def test_door_action(
    door_id: int, payload: schemas.DoorActionRequest
) -> schemas.ActionLogOut:
    try:
        entry = run_manual_action(
            door_id,
            payload.action,
            doors=get_door_repository(),
            client=get_gateway_client(),
            log_repo=get_action_log_repository(),
        )
    except DoorNotFoundError as exc:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return _entry_to_schema(entry)


# ---------------------------------------------------------------------------
# Recurrence patterns


@router.get("/recurrence-patterns", response_model=schemas.RecurrencePatternListResponse)
def list_recurrence_patterns(
    is_active: Annotated[bool | None, Query(alias="isActive")] = None,
) -> schemas.RecurrencePatternListResponse:
    patterns = get_recurrence_pattern_repository().list(is_active=is_active)
    return schemas.RecurrencePatternListResponse(
        patterns=[_pattern_to_schema(pattern) for pattern in patterns]
    )


@router.post("/recurrence-patterns/generate", response_model=schemas.GenerationResponse)
def generate_recurrence_instances() -> schemas.GenerationResponse:
    return schemas.GenerationResponse(generated=_build_expander().generate_all())


@router.get(
    "/recurrence-patterns/{pattern_id}", response_model=schemas.RecurrencePatternOut
)
def get_recurrence_pattern(pattern_id: int) -> schemas.RecurrencePatternOut:
    pattern = get_recurrence_pattern_repository().get(pattern_id)
    if pattern is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail="Pattern not found.")
    return _pattern_to_schema(pattern)


@router.post(
    "/recurrence-patterns",
    response_model=schemas.RecurrencePatternOut,
    status_code=status.HTTP_201_CREATED,
)
def create_recurrence_pattern(
    payload: schemas.RecurrencePatternCreateRequest,
) -> schemas.RecurrencePatternOut:
    settings = get_scheduler_settings()
    candidate = RecurrencePattern(
        id=None,
        event_name=payload.event_name,
        description=payload.description,
        unlock_time=payload.unlock_time,
        lock_time=payload.lock_time,
        recurrence_type=RecurrenceType(payload.recurrence_type),
        day_of_week=payload.day_of_week,
        day_of_month=payload.day_of_month,
        week_interval=payload.week_interval,
        start_date=payload.start_date,
        end_date=payload.end_date,
        generate_weeks_ahead=payload.generate_weeks_ahead or settings.generate_weeks_ahead,
        priority=payload.priority,
        is_active=payload.is_active,
        created_by=payload.created_by,
        doors=tuple(
            PatternDoor(
                door_id=door.door_id,
                custom_unlock_time=door.custom_unlock_time,
                custom_lock_time=door.custom_lock_time,
            )
            for door in payload.doors
        ),
    )
    try:
        pattern = get_recurrence_pattern_repository().create(candidate)
    except PatternValidationError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    try:
        generated = _build_expander().generate_instances_for_pattern(pattern)
    except Exception:
        logger.bind(pattern_id=pattern.id).exception(
            "Initial generation failed; instances will be created on a later run."
        )
        generated = 0
    logger.bind(pattern_id=pattern.id, generated=generated).info(
        "Recurrence pattern created."
    )
    return _pattern_to_schema(pattern, generated)


@router.delete(
    "/recurrence-patterns/{pattern_id}", status_code=status.HTTP_204_NO_CONTENT
)
def delete_recurrence_pattern(
    pattern_id: int,
    delete_schedules: Annotated[bool, Query(alias="deleteSchedules")] = False,
) -> Response:
    deleted = get_recurrence_pattern_repository().delete(
        pattern_id, delete_generated_schedules=delete_schedules
    )
    if not deleted:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail="Pattern not found.")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
