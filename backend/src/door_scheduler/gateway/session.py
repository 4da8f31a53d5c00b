"""Process-wide authenticated session for the access-control gateway."""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from datetime import UTC, datetime, timedelta
from threading import Lock
from typing import Any

import requests  # type: ignore[import-untyped]
from requests import Response, Session

from .utils import gateway_logger as logger

LOGIN_PATH = "/"


class GatewayError(RuntimeError):
    """Raised when an HTTP request to the gateway cannot be completed."""


def _utcnow() -> datetime:
    return datetime.now(UTC)


class GatewaySession:
    """Owns the gateway cookie jar and serializes logins across callers.

    The scheduler loop and request handlers share one instance. Logins happen
    under a single lock, and ``generation`` increases on every successful
    login so that callers who observed a rejected session can tell whether
    somebody else has already refreshed it.
    """

    def __init__(
        self,
        base_url: str,
        *,
        username: str,
        password: str,
        verify_ssl: bool = True,
        timeout: int = 30,
        session_timeout: timedelta = timedelta(minutes=30),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.username = username
        self.password = password
        self.verify_ssl = verify_ssl
        self.timeout = timeout
        self.session_timeout = session_timeout
        self._clock = clock
        self._session: Session | None = None
        self._auth_lock = Lock()
        self._last_auth: datetime | None = None
        self._generation = 0

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def last_authenticated_at(self) -> datetime | None:
        return self._last_auth

    def establish_connection(self) -> Session:
        """Initialize (or reuse) a requests.Session carrying the gateway cookies."""
        if self._session is not None:
            return self._session

        session = requests.Session()
        session.verify = self.verify_ssl
        self._session = session
        return session

    def request(
        self,
        method: str,
        path: str,
        *,
        data: Mapping[str, Any] | Sequence[tuple[str, str]] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Response:
        """Send a request with the shared cookie jar; transport errors raise GatewayError."""
        session = self.establish_connection()
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            return session.request(
                method=method.upper(),
                url=url,
                data=data,
                headers=dict(headers or {}),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise GatewayError(f"Gateway request to {url} failed: {exc}") from exc

    def is_authenticated(self) -> bool:
        """Return True while the last successful login is within the session timeout."""
        last_auth = self._last_auth
        if last_auth is None:
            return False
        elapsed = self._clock() - last_auth
        if elapsed >= self.session_timeout:
            logger.bind(elapsed=str(elapsed), timeout=str(self.session_timeout)).info(
                "Gateway session timeout detected"
            )
            return False
        return True

    def authenticate(self) -> bool:
        """Log in unconditionally and return whether the gateway accepted it."""
        with self._auth_lock:
            return self._login()

    def ensure_authenticated(self) -> bool:
        """Log in only if no valid session exists; concurrent callers wait for one login."""
        if self.is_authenticated():
            return True
        with self._auth_lock:
            if self.is_authenticated():
                return True
            logger.info("Gateway session expired or missing; re-authenticating")
            return self._login()

    def refresh(self, seen_generation: int) -> bool:
        """Re-login after a rejected request unless another caller already did."""
        with self._auth_lock:
            if self._generation != seen_generation and self.is_authenticated():
                logger.bind(generation=self._generation).debug(
                    "Gateway session already refreshed by another caller"
                )
                return True
            self._last_auth = None
            return self._login()

    def invalidate(self) -> None:
        with self._auth_lock:
            self._last_auth = None

    def _login(self) -> bool:
        logger.bind(base_url=self.base_url).info("Authenticating to access-control gateway")
        try:
            response = self.request(
                "POST",
                LOGIN_PATH,
                data={
                    "UserName": self.username,
                    "Password": self.password,
                    "LoginType": "1",
                },
            )
        except GatewayError:
            logger.exception("Exception during gateway authentication")
            return False

        if not response.ok:
            logger.bind(status_code=response.status_code).error(
                "Gateway authentication failed: {}", response.reason
            )
            return False

        self._last_auth = self._clock()
        self._generation += 1
        logger.bind(status_code=response.status_code).info(
            "Gateway authentication successful"
        )
        return True

    def close(self) -> None:
        """Close the underlying session if it was created."""
        if self._session is not None:
            self._session.close()
            self._session = None
        self._last_auth = None
