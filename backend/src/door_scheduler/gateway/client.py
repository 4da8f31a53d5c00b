"""Gateway action client issuing unlock/lock commands for doors."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from functools import lru_cache
from typing import Literal

from .config import GatewaySettings, get_gateway_settings
from .session import GatewayError, GatewaySession
from .utils import gateway_logger as logger, suppress_insecure_request_warning

LOCK_UNLOCK_PATH = "/Dashboard/LockUnlockDoor"
GATEWAY_ACTIONS = ("unlock", "lock")

GatewayAction = Literal["unlock", "lock"]


@dataclass(frozen=True)
class GatewayResponse:
    """Outcome of one logical gateway action, including retries."""

    success: bool
    status_code: int | None = None
    response_body: str | None = None
    error_message: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


def _action_form(device_id: int, action: str) -> list[tuple[str, str]]:
    button = "btnUnlockDoor" if action == "unlock" else "btnLockDoor"
    return [
        (button, "true"),
        ("s", ""),
        ("s", ""),
        ("ReadersSelectedList", str(device_id)),
        ("X-Requested-With", "XMLHttpRequest"),
    ]


class GatewayActionClient:
    """Executes door actions with session handling and fixed-delay retries."""

    def __init__(
        self,
        session: GatewaySession,
        *,
        retry_attempts: int = 3,
        retry_delay_seconds: float = 5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.session = session
        self.retry_attempts = max(retry_attempts, 1)
        self.retry_delay_seconds = retry_delay_seconds
        self._sleep = sleep

    def authenticate(self) -> bool:
        return self.session.authenticate()

    def is_authenticated(self) -> bool:
        return self.session.is_authenticated()

    def unlock(self, device_id: int) -> GatewayResponse:
        return self.execute_action(device_id, "unlock")

    def lock(self, device_id: int) -> GatewayResponse:
        return self.execute_action(device_id, "lock")

    def _headers(self) -> dict[str, str]:
        base = self.session.base_url
        return {
            "Accept": "*/*",
            "X-Requested-With": "XMLHttpRequest",
            "Origin": base,
            "Referer": f"{base}/Dashboard",
        }

    def execute_action(self, device_id: int, action: str) -> GatewayResponse:
        """Send one unlock/lock command; never raises for gateway failures."""
        action = action.lower()
        if action not in GATEWAY_ACTIONS:
            raise ValueError(f"Unsupported gateway action: {action!r}")

        if not self.session.ensure_authenticated():
            return GatewayResponse(
                success=False,
                status_code=401,
                error_message="Failed to authenticate to gateway",
            )

        last_status: int | None = None
        last_body: str | None = None
        for attempt in range(1, self.retry_attempts + 1):
            log = logger.bind(
                device_id=device_id,
                action=action,
                attempt=attempt,
                max_attempts=self.retry_attempts,
            )
            log.info("Executing gateway action")
            generation = self.session.generation
            try:
                response = self.session.request(
                    "POST",
                    LOCK_UNLOCK_PATH,
                    data=_action_form(device_id, action),
                    headers=self._headers(),
                )
            except GatewayError as exc:
                log.opt(exception=exc).error("Gateway action raised a transport error")
                if attempt >= self.retry_attempts:
                    return GatewayResponse(success=False, error_message=str(exc))
                self._sleep(self.retry_delay_seconds)
                continue

            last_status = response.status_code
            last_body = response.text
            if response.status_code == 401:
                log.warning("Gateway rejected the session (401); re-authenticating")
                self.session.refresh(generation)
                continue

            if response.ok:
                log.info("Gateway action succeeded")
                return GatewayResponse(
                    success=True,
                    status_code=response.status_code,
                    response_body=response.text,
                )

            log.bind(status_code=response.status_code).warning(
                "Gateway action failed: {}", response.text
            )
            if attempt < self.retry_attempts:
                self._sleep(self.retry_delay_seconds)
            else:
                return GatewayResponse(
                    success=False,
                    status_code=response.status_code,
                    response_body=response.text,
                    error_message=f"HTTP {response.status_code}: {response.reason}",
                )

        return GatewayResponse(
            success=False,
            status_code=last_status,
            response_body=last_body,
            error_message="Max retry attempts exceeded",
        )

    def close(self) -> None:
        self.session.close()


def build_gateway_client(settings: GatewaySettings) -> GatewayActionClient:
    """Create a client and its session from settings."""
    suppress_insecure_request_warning(settings.verify_ssl)
    session = GatewaySession(
        settings.base_url,
        username=settings.username,
        password=settings.password,
        verify_ssl=settings.verify_ssl,
        timeout=settings.timeout_seconds,
        session_timeout=timedelta(minutes=settings.session_minutes),
    )
    return GatewayActionClient(
        session,
        retry_attempts=settings.retry_attempts,
        retry_delay_seconds=settings.retry_delay_seconds,
    )


@lru_cache
def get_gateway_client() -> GatewayActionClient:
    """Return the single gateway client shared by the loop and request handlers."""
    return build_gateway_client(get_gateway_settings())
