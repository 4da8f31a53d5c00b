"""Tests for the action log repository and shared action execution."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from door_scheduler.action_log import ActionKind, ActionLogEntry, TriggerSource
from door_scheduler.doors import Door, DoorInactiveError, DoorNotFoundError
from door_scheduler.schedules import ScheduleDraft
from door_scheduler.services import parse_action, perform_door_action, run_manual_action

BASE = datetime(2025, 6, 1, 12, 0, tzinfo=UTC)


def _entry(door_id, *, schedule_id=None, action=ActionKind.UNLOCK, at=BASE, success=True):
    return ActionLogEntry(
        id=None,
        schedule_id=schedule_id,
        door_id=door_id,
        action=action,
        timestamp=at,
        success=success,
        triggered_by=TriggerSource.SCHEDULE if schedule_id else TriggerSource.MANUAL,
    )


def test_latest_success_ignores_failures_and_other_actions(
    action_log_repo, schedule_repo, front_door
):
    schedule = schedule_repo.create(
        ScheduleDraft(door_id=front_door.id, start_time=BASE, end_time=BASE + timedelta(hours=1))
    )
    sid = schedule.id
    action_log_repo.record(_entry(front_door.id, schedule_id=sid, at=BASE))
    action_log_repo.record(
        _entry(front_door.id, schedule_id=sid, at=BASE + timedelta(minutes=5), success=False)
    )
    action_log_repo.record(
        _entry(front_door.id, schedule_id=sid, action=ActionKind.LOCK, at=BASE + timedelta(minutes=9))
    )
    action_log_repo.record(_entry(front_door.id, at=BASE + timedelta(minutes=10)))

    latest = action_log_repo.latest_success_at(sid, front_door.id, ActionKind.UNLOCK)

    assert latest == BASE
    assert latest.tzinfo is not None
    assert action_log_repo.latest_success_at(sid, front_door.id, ActionKind.LOCK) == BASE + timedelta(
        minutes=9
    )
    assert action_log_repo.latest_success_at(sid + 1, front_door.id, ActionKind.UNLOCK) is None


def test_list_recent_is_newest_first_with_pagination(action_log_repo, front_door, side_door):
    for minute in range(5):
        action_log_repo.record(_entry(front_door.id, at=BASE + timedelta(minutes=minute)))
    action_log_repo.record(_entry(side_door.id, at=BASE + timedelta(hours=1)))

    page = action_log_repo.list_recent(door_id=front_door.id, limit=2, offset=1)

    assert [entry.timestamp for entry in page] == [
        BASE + timedelta(minutes=3),
        BASE + timedelta(minutes=2),
    ]
    assert action_log_repo.count(door_id=front_door.id) == 5
    assert action_log_repo.count() == 6
    assert action_log_repo.list_recent(limit=1)[0].door_id == side_door.id


def test_perform_door_action_records_gateway_outcome(action_log_repo, gateway, front_door):
    entry = perform_door_action(
        front_door,
        ActionKind.LOCK,
        triggered_by=TriggerSource.SYSTEM,
        client=gateway,
        log_repo=action_log_repo,
        timestamp=BASE,
    )

    assert gateway.calls == [(101, "lock")]
    assert entry.id is not None
    assert entry.success is True
    assert entry.response_code == 200
    assert entry.response_body == "OK"
    assert entry.triggered_by == TriggerSource.SYSTEM
    assert entry.timestamp == BASE


def test_perform_door_action_records_exceptions(action_log_repo, gateway, front_door):
    gateway.raise_for[101] = TimeoutError("gateway timed out")

    entry = perform_door_action(
        front_door,
        ActionKind.UNLOCK,
        triggered_by=TriggerSource.MANUAL,
        client=gateway,
        log_repo=action_log_repo,
    )

    assert entry.success is False
    assert entry.error_message == "gateway timed out"
    assert entry.response_code is None
    assert action_log_repo.count() == 1


def test_manual_action_validates_door_and_action(action_log_repo, door_repo, gateway, front_door):
    entry = run_manual_action(
        front_door.id, "Unlock", doors=door_repo, client=gateway, log_repo=action_log_repo
    )
    assert entry.triggered_by == TriggerSource.MANUAL
    assert entry.schedule_id is None

    with pytest.raises(DoorNotFoundError):
        run_manual_action(999, "lock", doors=door_repo, client=gateway, log_repo=action_log_repo)
    with pytest.raises(ValueError, match="Unsupported action"):
        run_manual_action(
            front_door.id, "open", doors=door_repo, client=gateway, log_repo=action_log_repo
        )

    door_repo.save(
        Door(id=None, device_id=555, name="Retired Door", is_active=False)
    )
    retired = door_repo.get_by_device_id(555)
    with pytest.raises(DoorInactiveError):
        run_manual_action(retired.id, "lock", doors=door_repo, client=gateway, log_repo=action_log_repo)


def test_parse_action_accepts_any_case():
    assert parse_action(" lock ") is ActionKind.LOCK
    assert parse_action("UNLOCK") is ActionKind.UNLOCK
