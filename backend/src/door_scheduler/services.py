"""Service helpers shared by the scheduler loop and the FastAPI endpoints."""

from __future__ import annotations

from datetime import UTC, datetime

from .action_log import ActionKind, ActionLogEntry, ActionLogRepository, TriggerSource
from .doors import Door, DoorInactiveError, DoorNotFoundError, DoorRepository
from .gateway.client import GatewayActionClient, GatewayResponse
from .gateway.utils import logger


def _now() -> datetime:
    return datetime.now(UTC)


def parse_action(value: str) -> ActionKind:
    """Map ``"unlock"``/``"lock"`` (any case) onto an :class:`ActionKind`."""
    try:
        return ActionKind(value.strip().upper())
    except ValueError as exc:
        raise ValueError(f"Unsupported action {value!r}; expected 'unlock' or 'lock'.") from exc


def perform_door_action(
    door: Door,
    action: ActionKind,
    *,
    triggered_by: TriggerSource,
    client: GatewayActionClient,
    log_repo: ActionLogRepository,
    schedule_id: int | None = None,
    timestamp: datetime | None = None,
) -> ActionLogEntry:
    """Send ``action`` for ``door`` to the gateway and record exactly one log row.

    The row is written even when the gateway call raises; the exception text is
    stored as the error message and the entry is marked unsuccessful.
    """
    log = logger.bind(
        schedule_id=schedule_id,
        door_id=door.id,
        device_id=door.device_id,
        action=action.value,
    )
    response: GatewayResponse | None = None
    error_message: str | None = None
    try:
        response = client.execute_action(door.device_id, action.gateway_action)
    except Exception as exc:
        error_message = str(exc) or exc.__class__.__name__
        log.exception("Gateway call raised for door {}.", door.name)
    finally:
        entry = log_repo.record(
            ActionLogEntry(
                id=None,
                schedule_id=schedule_id,
                door_id=door.id,
                action=action,
                timestamp=timestamp or _now(),
                success=bool(response and response.success),
                triggered_by=triggered_by,
                response_code=response.status_code if response else None,
                response_body=response.response_body if response else None,
                error_message=(response.error_message if response else error_message),
            )
        )

    if entry.success:
        log.info("{} issued for door {}.", action.value, door.name)
    else:
        log.warning(
            "{} failed for door {}: {}", action.value, door.name, entry.error_message
        )
    return entry


def run_manual_action(
    door_id: int,
    action: str,
    *,
    doors: DoorRepository,
    client: GatewayActionClient,
    log_repo: ActionLogRepository,
) -> ActionLogEntry:
    """Operator-triggered unlock/lock that bypasses idempotency and priority checks."""
    kind = parse_action(action)
    door = doors.get(door_id)
    if door is None:
        raise DoorNotFoundError(f"Door {door_id} not found.")
    if not door.is_active:
        raise DoorInactiveError(f"Door {door_id} is not active.")
    return perform_door_action(
        door,
        kind,
        triggered_by=TriggerSource.MANUAL,
        client=client,
        log_repo=log_repo,
    )
