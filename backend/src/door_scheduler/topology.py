"""Read-only mirror of the door topology kept by the external system of record."""

from __future__ import annotations

import json
import os
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol

from sqlalchemy import create_engine, text

from .doors import Door, DoorRepository
from .gateway.config import load_env_file
from .gateway.utils import logger

_TOPOLOGY_QUERY = text(
    """
    SELECT d.DeviceID AS device_id,
           d.DeviceName AS name,
           d.ControllerID AS controller_id,
           d.Active AS is_active,
           c.ControllerName AS controller_name,
           c.ControllerGroupID AS controller_group_id
    FROM HW_Devices d
    LEFT JOIN HW_Controllers c ON c.ControllerID = d.ControllerID
    WHERE d.Active = 1
    """
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class ExternalDoor:
    device_id: int
    name: str
    controller_id: int | None = None
    controller_name: str | None = None
    controller_group_id: int | None = None
    is_active: bool = True


@dataclass
class DoorSyncResult:
    added: int = 0
    updated: int = 0
    deactivated: int = 0
    success: bool = False
    error_message: str | None = None
    sync_time: datetime = field(default_factory=_utcnow)


class DoorSource(Protocol):
    def fetch_doors(self) -> list[ExternalDoor]:
        ...


def _optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    return int(value)


def external_door_from_mapping(payload: Mapping[str, Any]) -> ExternalDoor:
    """Build an :class:`ExternalDoor` from camelCase or snake_case keys."""

    def pick(*keys: str) -> Any:
        for key in keys:
            if key in payload:
                return payload[key]
        return None

    device_id = pick("deviceId", "device_id")
    name = pick("name", "deviceName", "device_name")
    if device_id is None or not name:
        raise ValueError(f"Door entry requires a device id and name: {dict(payload)!r}")
    active = pick("isActive", "is_active")
    return ExternalDoor(
        device_id=int(device_id),
        name=str(name).strip(),
        controller_id=_optional_int(pick("controllerId", "controller_id")),
        controller_name=pick("controllerName", "controller_name"),
        controller_group_id=_optional_int(pick("controllerGroupId", "controller_group_id")),
        is_active=True if active is None else bool(active),
    )


class JsonDoorSource(DoorSource):
    """Door list stored as a JSON array (or ``{"doors": [...]}``) on disk."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    def fetch_doors(self) -> list[ExternalDoor]:
        with self._path.open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
        if isinstance(payload, Mapping):
            payload = payload.get("doors", [])
        return [external_door_from_mapping(item) for item in payload]


class StaticDoorSource(DoorSource):
    def __init__(self, doors: Iterable[ExternalDoor | Mapping[str, Any]]) -> None:
        self._doors = [
            door if isinstance(door, ExternalDoor) else external_door_from_mapping(door)
            for door in doors
        ]

    def fetch_doors(self) -> list[ExternalDoor]:
        return list(self._doors)


class SqlDoorSource(DoorSource):
    """Reads active devices and their controllers from the HW_Devices tables."""

    def __init__(self, url: str) -> None:
        self._url = url

    def fetch_doors(self) -> list[ExternalDoor]:
        engine = create_engine(self._url)
        try:
            with engine.connect() as connection:
                rows = connection.execute(_TOPOLOGY_QUERY).mappings().all()
        finally:
            engine.dispose()
        doors = [external_door_from_mapping(row) for row in rows]
        logger.info("Retrieved {} doors from the topology database.", len(doors))
        return doors


def get_door_source() -> DoorSource | None:
    """Return the configured topology source, preferring the database."""
    load_env_file()
    db_url = os.getenv("DOOR_TOPOLOGY_DB_URL")
    if db_url:
        return SqlDoorSource(db_url)
    file_path = os.getenv("DOOR_TOPOLOGY_FILE")
    if file_path:
        return JsonDoorSource(file_path)
    return None


def sync_doors(
    source: DoorSource | None,
    repository: DoorRepository,
    *,
    deactivate_missing: bool = True,
    clock: Callable[[], datetime] = _utcnow,
) -> DoorSyncResult:
    """Mirror ``source`` into ``repository``; never deletes doors.

    Active doors absent from the source are deactivated unless
    ``deactivate_missing`` is false (used when seeding).
    """
    result = DoorSyncResult(sync_time=clock())
    if source is None:
        result.error_message = "No door topology source configured."
        logger.warning(result.error_message)
        return result

    try:
        incoming = source.fetch_doors()
        existing = {door.device_id: door for door in repository.list()}
        sync_time = result.sync_time

        for external in incoming:
            current = existing.get(external.device_id)
            repository.save(
                Door(
                    id=current.id if current else None,
                    device_id=external.device_id,
                    name=external.name,
                    controller_id=external.controller_id,
                    controller_name=external.controller_name,
                    controller_group_id=external.controller_group_id,
                    is_active=external.is_active,
                    last_sync_time=sync_time,
                )
            )
            if current is None:
                result.added += 1
                logger.bind(device_id=external.device_id).info(
                    "Adding new door {}.", external.name
                )
            else:
                result.updated += 1

        incoming_ids = {door.device_id for door in incoming}
        stale = [
            door
            for door in existing.values()
            if deactivate_missing and door.is_active and door.device_id not in incoming_ids
        ]
        for door in stale:
            repository.save(replace(door, is_active=False, last_sync_time=sync_time))
            result.deactivated += 1
            logger.bind(device_id=door.device_id).warning(
                "Deactivating door {} missing from the topology source.", door.name
            )
    except Exception as exc:
        logger.exception("Door sync failed.")
        result.error_message = str(exc)
        return result

    result.success = True
    logger.info(
        "Door sync complete: added={}, updated={}, deactivated={}.",
        result.added,
        result.updated,
        result.deactivated,
    )
    return result
