from __future__ import annotations

from datetime import UTC, datetime

import pytest

from door_scheduler.action_log import SQLActionLogRepository
from door_scheduler.database import configure_database
from door_scheduler.doors import Door, SQLAlchemyDoorRepository
from door_scheduler.gateway.client import GatewayResponse
from door_scheduler.recurrence import SQLRecurrencePatternRepository
from door_scheduler.schedules import SQLScheduleRepository


class StubGateway:
    """Records gateway calls and answers with a canned outcome."""

    def __init__(self) -> None:
        self.calls: list[tuple[int, str]] = []
        self.success = True
        self.status_code = 200
        self.failing_devices: set[int] = set()
        self.raise_for: dict[int, Exception] = {}
        self.authenticated = True

    def execute_action(self, device_id: int, action: str) -> GatewayResponse:
        self.calls.append((device_id, action))
        if device_id in self.raise_for:
            raise self.raise_for[device_id]
        if not self.success or device_id in self.failing_devices:
            return GatewayResponse(
                success=False,
                status_code=500,
                response_body="boom",
                error_message="HTTP 500: Internal Server Error",
            )
        return GatewayResponse(success=True, status_code=self.status_code, response_body="OK")

    def authenticate(self) -> bool:
        return self.authenticated

    def is_authenticated(self) -> bool:
        return self.authenticated

    def close(self) -> None:
        pass


@pytest.fixture
def session_factory():
    return configure_database("sqlite://")


@pytest.fixture
def door_repo(session_factory):
    return SQLAlchemyDoorRepository(session_factory)


@pytest.fixture
def schedule_repo(session_factory):
    return SQLScheduleRepository(session_factory)


@pytest.fixture
def action_log_repo(session_factory):
    return SQLActionLogRepository(session_factory)


@pytest.fixture
def pattern_repo(session_factory):
    return SQLRecurrencePatternRepository(session_factory)


@pytest.fixture
def front_door(door_repo) -> Door:
    return door_repo.save(
        Door(
            id=None,
            device_id=101,
            name="Front Door",
            controller_id=1,
            controller_name="Lobby Controller",
            last_sync_time=datetime(2025, 1, 1, tzinfo=UTC),
        )
    )


@pytest.fixture
def side_door(door_repo) -> Door:
    return door_repo.save(Door(id=None, device_id=102, name="Side Door", controller_id=1))


@pytest.fixture
def gateway() -> StubGateway:
    return StubGateway()
