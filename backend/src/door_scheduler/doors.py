"""Door reference data with repository abstractions."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from .database import get_session_factory
from .db_models import ActionLogModel, DoorModel


class DoorNotFoundError(LookupError):
    """Raised when a referenced door does not exist."""


class DoorInactiveError(ValueError):
    """Raised when a door exists but is excluded from scheduling."""


class DoorDeletionBlockedError(RuntimeError):
    """Raised when deleting a door would orphan its audit trail."""


@dataclass(frozen=True)
class Door:
    """Represents a controllable physical access point."""

    id: int | None
    device_id: int
    name: str
    controller_id: int | None = None
    controller_name: str | None = None
    controller_group_id: int | None = None
    is_active: bool = True
    last_sync_time: datetime | None = None


def _model_to_door(row: DoorModel) -> Door:
    return Door(
        id=row.id,
        device_id=row.device_id,
        name=row.name,
        controller_id=row.controller_id,
        controller_name=row.controller_name,
        controller_group_id=row.controller_group_id,
        is_active=bool(row.is_active),
        last_sync_time=row.last_sync_time,
    )


class DoorRepository(Protocol):
    """Port defining operations for reading and mirroring doors."""

    def list(
        self, *, is_active: bool | None = None, controller_id: int | None = None
    ) -> list[Door]:
        ...

    def get(self, door_id: int) -> Door | None:
        ...

    def get_by_device_id(self, device_id: int) -> Door | None:
        ...

    def save(self, door: Door) -> Door:
        ...

    def delete(self, door_id: int) -> bool:
        ...


class SQLAlchemyDoorRepository(DoorRepository):
    """Adapter that serves doors from the SQL database."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def list(
        self, *, is_active: bool | None = None, controller_id: int | None = None
    ) -> list[Door]:
        with self._session_factory() as session:
            stmt = select(DoorModel)
            if is_active is not None:
                stmt = stmt.where(DoorModel.is_active == is_active)
            if controller_id is not None:
                stmt = stmt.where(DoorModel.controller_id == controller_id)
            stmt = stmt.order_by(DoorModel.controller_id, DoorModel.name)
            rows = session.execute(stmt).scalars().all()
            return [_model_to_door(row) for row in rows]

    def get(self, door_id: int) -> Door | None:
        with self._session_factory() as session:
            row = session.get(DoorModel, door_id)
            return _model_to_door(row) if row else None

    def get_by_device_id(self, device_id: int) -> Door | None:
        with self._session_factory() as session:
            row = (
                session.execute(
                    select(DoorModel).where(DoorModel.device_id == device_id)
                )
                .scalars()
                .first()
            )
            return _model_to_door(row) if row else None

    def save(self, door: Door) -> Door:
        """Insert a door or update the row sharing its device id."""
        with self._session_factory() as session:
            instance = (
                session.execute(
                    select(DoorModel).where(DoorModel.device_id == door.device_id)
                )
                .scalars()
                .first()
            )
            if instance is None:
                instance = DoorModel(device_id=door.device_id)
                session.add(instance)
            instance.name = door.name.strip()
            instance.controller_id = door.controller_id
            instance.controller_name = door.controller_name
            instance.controller_group_id = door.controller_group_id
            instance.is_active = door.is_active
            instance.last_sync_time = door.last_sync_time
            session.commit()
            return _model_to_door(instance)

    def delete(self, door_id: int) -> bool:
        with self._session_factory() as session:
            instance = session.get(DoorModel, door_id)
            if instance is None:
                return False
            log_count = session.execute(
                select(func.count())
                .select_from(ActionLogModel)
                .where(ActionLogModel.door_id == door_id)
            ).scalar_one()
            if log_count:
                raise DoorDeletionBlockedError(
                    f"Door {door_id} has {log_count} action log entries and cannot be deleted."
                )
            session.delete(instance)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise DoorDeletionBlockedError(
                    f"Door {door_id} is still referenced and cannot be deleted."
                ) from exc
            return True


def get_door_repository() -> DoorRepository:
    """Return the configured door repository."""
    return SQLAlchemyDoorRepository(get_session_factory())
