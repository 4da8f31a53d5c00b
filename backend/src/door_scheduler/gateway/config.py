"""Configuration helpers for the access-control gateway client."""

from __future__ import annotations

import os
from collections.abc import Iterable
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from loguru import logger

DEFAULT_BASE_URL = "http://localhost:8080"


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _parse_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}.") from exc
    if value < 0:
        raise RuntimeError(f"{name} must not be negative, got {value}.")
    return value


def _candidate_env_paths(start: Path) -> Iterable[Path]:
    """Yield plausible .env locations from closest to farthest."""
    override = os.environ.get("DOOR_SCHEDULER_ENV_FILE")
    if override:
        yield Path(override).expanduser()

    for directory in (start, *start.parents):
        yield directory / ".env"


def _discover_env_path() -> Path | None:
    """Return the first .env path that exists, if any."""
    package_dir = Path(__file__).resolve().parent
    for candidate in _candidate_env_paths(package_dir):
        if candidate.exists():
            return candidate
    return None


def load_env_file(path: Path | None = None) -> None:
    """Populate os.environ with values from a .env file if present."""
    env_path = path or _discover_env_path()
    if env_path is None or not env_path.exists():
        logger.debug("No .env file discovered for configuration")
        return

    logger.bind(path=str(env_path)).info("Loading environment variables from .env")
    for raw_line in env_path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue

        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        # Respect existing environment variables so runtime overrides win.
        os.environ.setdefault(key, value)


@dataclass(frozen=True)
class GatewaySettings:
    """Typed accessors for gateway configuration derived from the environment."""

    base_url: str
    username: str
    password: str
    verify_ssl: bool
    timeout_seconds: int
    retry_attempts: int
    retry_delay_seconds: int
    session_minutes: int

    @classmethod
    def from_env(cls) -> GatewaySettings:
        load_env_file()

        base_url = os.environ.get("DOOR_GATEWAY_BASE_URL", DEFAULT_BASE_URL)
        verify_ssl_env = os.environ.get("DOOR_GATEWAY_VERIFY_SSL")
        verify_ssl = (
            _parse_bool(verify_ssl_env) if verify_ssl_env is not None else False
        )
        retry_attempts = max(_parse_int("DOOR_GATEWAY_RETRY_ATTEMPTS", 3), 1)

        settings = cls(
            base_url=base_url.rstrip("/"),
            username=os.environ.get("DOOR_GATEWAY_USERNAME", "admin"),
            password=os.environ.get("DOOR_GATEWAY_PASSWORD", ""),
            verify_ssl=verify_ssl,
            timeout_seconds=_parse_int("DOOR_GATEWAY_TIMEOUT_SECONDS", 30),
            retry_attempts=retry_attempts,
            retry_delay_seconds=_parse_int("DOOR_GATEWAY_RETRY_DELAY_SECONDS", 5),
            session_minutes=_parse_int("DOOR_GATEWAY_SESSION_MINUTES", 30),
        )
        if not settings.password:
            logger.warning("DOOR_GATEWAY_PASSWORD is empty; gateway logins will likely fail")

        logger.bind(
            base_url=settings.base_url,
            verify_ssl=settings.verify_ssl,
            retry_attempts=settings.retry_attempts,
        ).info("Gateway configuration loaded from environment")
        return settings


@lru_cache
def get_gateway_settings() -> GatewaySettings:
    """Return cached gateway settings."""
    return GatewaySettings.from_env()
