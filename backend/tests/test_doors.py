"""Tests for door storage, schedule creation, and restrict-on-delete."""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError

from door_scheduler.action_log import ActionKind, ActionLogEntry, TriggerSource
from door_scheduler.db_models import DoorModel
from door_scheduler.doors import (
    DoorDeletionBlockedError,
    DoorInactiveError,
    DoorNotFoundError,
)
from door_scheduler.schedules import (
    ScheduleDraft,
    ScheduleStatus,
    ScheduleValidationError,
    create_schedule,
)

START = datetime(2025, 5, 1, 9, 0, tzinfo=UTC)


def _log_for(action_log_repo, door):
    action_log_repo.record(
        ActionLogEntry(
            id=None,
            schedule_id=None,
            door_id=door.id,
            action=ActionKind.UNLOCK,
            timestamp=START,
            success=True,
            triggered_by=TriggerSource.MANUAL,
        )
    )


def test_save_upserts_by_device_id(door_repo, front_door):
    updated = door_repo.save(replace(front_door, id=None, name="  Main Entrance "))

    assert updated.id == front_door.id
    assert updated.name == "Main Entrance"
    assert len(door_repo.list()) == 1


def test_list_filters_active_doors(door_repo, front_door, side_door):
    door_repo.save(replace(side_door, is_active=False))

    assert [door.name for door in door_repo.list(is_active=True)] == ["Front Door"]
    assert len(door_repo.list(controller_id=1)) == 2


def test_delete_door_with_audit_rows_is_blocked(door_repo, action_log_repo, front_door):
    _log_for(action_log_repo, front_door)

    with pytest.raises(DoorDeletionBlockedError):
        door_repo.delete(front_door.id)

    assert door_repo.get(front_door.id) is not None
    assert action_log_repo.count(door_id=front_door.id) == 1


def test_database_restricts_door_deletion(session_factory, action_log_repo, front_door):
    _log_for(action_log_repo, front_door)

    with session_factory() as session:
        with pytest.raises(IntegrityError):
            session.execute(delete(DoorModel).where(DoorModel.id == front_door.id))
            session.commit()
        session.rollback()


def test_delete_door_without_history_cascades_schedules(door_repo, schedule_repo, side_door):
    schedule_repo.create(
        ScheduleDraft(door_id=side_door.id, start_time=START, end_time=START + timedelta(hours=1))
    )

    assert door_repo.delete(side_door.id) is True
    assert door_repo.get(side_door.id) is None
    assert schedule_repo.list() == []
    assert door_repo.delete(side_door.id) is False


def test_create_schedule_rejects_inverted_window(door_repo, schedule_repo, front_door):
    draft = ScheduleDraft(door_id=front_door.id, start_time=START, end_time=START)

    with pytest.raises(ScheduleValidationError):
        create_schedule(draft, doors=door_repo, schedules=schedule_repo)
    with pytest.raises(ScheduleValidationError):
        schedule_repo.create(draft)
    assert schedule_repo.list() == []


def test_create_schedule_checks_door(door_repo, schedule_repo, front_door):
    with pytest.raises(DoorNotFoundError):
        create_schedule(
            ScheduleDraft(door_id=999, start_time=START, end_time=START + timedelta(hours=1)),
            doors=door_repo,
            schedules=schedule_repo,
        )

    door_repo.save(replace(front_door, is_active=False))
    with pytest.raises(DoorInactiveError):
        create_schedule(
            ScheduleDraft(door_id=front_door.id, start_time=START, end_time=START + timedelta(hours=1)),
            doors=door_repo,
            schedules=schedule_repo,
        )


def test_naive_datetimes_are_treated_as_utc(door_repo, schedule_repo, front_door):
    schedule = create_schedule(
        ScheduleDraft(
            door_id=front_door.id,
            start_time=datetime(2025, 5, 1, 9, 0),
            end_time=datetime(2025, 5, 1, 10, 0),
        ),
        doors=door_repo,
        schedules=schedule_repo,
    )

    assert schedule.start_time == START
    assert schedule.status == ScheduleStatus.PENDING
    assert schedule.is_active is True


def test_overriding_schedule_query(schedule_repo, front_door, side_door):
    now = START + timedelta(hours=1)
    expired = schedule_repo.create(
        ScheduleDraft(door_id=front_door.id, start_time=START, end_time=now, priority=3)
    )
    assert schedule_repo.has_overriding_schedule(expired, now) is False

    schedule_repo.create(
        ScheduleDraft(
            door_id=side_door.id, start_time=START, end_time=now + timedelta(hours=1), priority=9
        )
    )
    assert schedule_repo.has_overriding_schedule(expired, now) is False

    other = schedule_repo.create(
        ScheduleDraft(
            door_id=front_door.id, start_time=START, end_time=now + timedelta(hours=1), priority=3
        )
    )
    assert schedule_repo.has_overriding_schedule(expired, now) is True

    schedule_repo.retire(other.id, ScheduleStatus.COMPLETED)
    assert schedule_repo.has_overriding_schedule(expired, now) is False


def test_retire_requires_terminal_status(schedule_repo, front_door):
    schedule = schedule_repo.create(
        ScheduleDraft(door_id=front_door.id, start_time=START, end_time=START + timedelta(hours=1))
    )

    with pytest.raises(ValueError):
        schedule_repo.retire(schedule.id, ScheduleStatus.ACTIVE)

    schedule_repo.retire(schedule.id, ScheduleStatus.SUPERSEDED)
    retired = schedule_repo.get(schedule.id)
    assert retired.is_active is False
    assert retired.updated_at is not None
    assert schedule_repo.list(is_active=True) == []
