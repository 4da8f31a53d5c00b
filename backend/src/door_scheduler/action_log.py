"""Append-only action log used for auditing and scheduler idempotency."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Protocol

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from .database import get_session_factory
from .db_models import ActionLogModel


class ActionKind(StrEnum):
    UNLOCK = "UNLOCK"
    LOCK = "LOCK"

    @property
    def gateway_action(self) -> str:
        return self.value.lower()


class TriggerSource(StrEnum):
    SCHEDULE = "Schedule"
    MANUAL = "Manual"
    SYSTEM = "System"


@dataclass(frozen=True)
class ActionLogEntry:
    """Represents one attempted unlock/lock command. Never mutated after insert."""

    id: int | None
    schedule_id: int | None
    door_id: int
    action: ActionKind
    timestamp: datetime
    success: bool
    triggered_by: TriggerSource
    response_code: int | None = None
    response_body: str | None = None
    error_message: str | None = None


def _model_to_entry(row: ActionLogModel) -> ActionLogEntry:
    return ActionLogEntry(
        id=row.id,
        schedule_id=row.schedule_id,
        door_id=row.door_id,
        action=ActionKind(row.action),
        timestamp=row.timestamp,
        success=bool(row.success),
        triggered_by=TriggerSource(row.triggered_by),
        response_code=row.response_code,
        response_body=row.response_body,
        error_message=row.error_message,
    )


class ActionLogRepository(Protocol):
    """Storage abstraction for action log entries."""

    def record(self, entry: ActionLogEntry) -> ActionLogEntry:
        ...

    def latest_success_at(
        self, schedule_id: int, door_id: int, action: ActionKind
    ) -> datetime | None:
        ...

    def list_recent(
        self, *, door_id: int | None = None, limit: int = 100, offset: int = 0
    ) -> list[ActionLogEntry]:
        ...

    def count(self, *, door_id: int | None = None) -> int:
        ...

    def list_for_schedule(self, schedule_id: int) -> list[ActionLogEntry]:
        ...


class SQLActionLogRepository(ActionLogRepository):
    """SQLAlchemy-backed action log; every record commits immediately."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def record(self, entry: ActionLogEntry) -> ActionLogEntry:
        model = ActionLogModel(
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
        with self._session_factory() as session:
            session.add(model)
            session.commit()
            session.refresh(model)
            return _model_to_entry(model)

    def latest_success_at(
        self, schedule_id: int, door_id: int, action: ActionKind
    ) -> datetime | None:
        """Timestamp of the newest successful action for a schedule/door pair."""
        with self._session_factory() as session:
            return session.execute(
                select(func.max(ActionLogModel.timestamp)).where(
                    ActionLogModel.schedule_id == schedule_id,
                    ActionLogModel.door_id == door_id,
                    ActionLogModel.action == action.value,
                    ActionLogModel.success.is_(True),
                )
            ).scalar_one_or_none()

    def list_recent(
        self, *, door_id: int | None = None, limit: int = 100, offset: int = 0
    ) -> list[ActionLogEntry]:
        with self._session_factory() as session:
            stmt = select(ActionLogModel)
            if door_id is not None:
                stmt = stmt.where(ActionLogModel.door_id == door_id)
            stmt = (
                stmt.order_by(ActionLogModel.timestamp.desc(), ActionLogModel.id.desc())
                .offset(offset)
                .limit(limit)
            )
            rows = session.execute(stmt).scalars().all()
            return [_model_to_entry(row) for row in rows]

    def count(self, *, door_id: int | None = None) -> int:
        with self._session_factory() as session:
            stmt = select(func.count()).select_from(ActionLogModel)
            if door_id is not None:
                stmt = stmt.where(ActionLogModel.door_id == door_id)
            return int(session.execute(stmt).scalar_one())

    def list_for_schedule(self, schedule_id: int) -> list[ActionLogEntry]:
        with self._session_factory() as session:
            rows = (
                session.execute(
                    select(ActionLogModel)
                    .where(ActionLogModel.schedule_id == schedule_id)
                    .order_by(ActionLogModel.timestamp, ActionLogModel.id)
                )
                .scalars()
                .all()
            )
            return [_model_to_entry(row) for row in rows]


def get_action_log_repository() -> ActionLogRepository:
    """Return the configured action log repository."""
    return SQLActionLogRepository(get_session_factory())


__all__ = [
    "ActionKind",
    "ActionLogEntry",
    "ActionLogRepository",
    "SQLActionLogRepository",
    "TriggerSource",
    "get_action_log_repository",
]
