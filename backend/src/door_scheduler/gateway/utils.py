"""Loguru and urllib3 setup shared by the scheduler service and the gateway client.

Every record carries a ``component`` extra so scheduler and gateway output can be
told apart in one stream. Gateway modules log through :data:`gateway_logger`.
"""

from __future__ import annotations

import os
import sys

import urllib3
from loguru import logger
from urllib3.exceptions import InsecureRequestWarning

DEFAULT_COMPONENT = "door-scheduler"

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<magenta>{extra[component]}</magenta> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)

_TRUTHY = {"1", "true", "yes", "on"}
_configured = False


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in _TRUTHY


def configure_logging(*, force: bool = False, level: str | None = None) -> None:
    """Install the single stderr sink used by the API, the loop and the CLIs.

    ``DOOR_SCHEDULER_LOG_LEVEL`` and ``DOOR_SCHEDULER_LOG_DIAGNOSE`` are read
    on each (re)configuration; ``level`` overrides the former.
    """
    global _configured
    if _configured and not force:
        return

    logger.remove()
    logger.configure(extra={"component": DEFAULT_COMPONENT})
    logger.add(
        sys.stderr,
        level=(level or os.getenv("DOOR_SCHEDULER_LOG_LEVEL", "INFO")).upper(),
        format=LOG_FORMAT,
        backtrace=False,
        diagnose=_env_flag("DOOR_SCHEDULER_LOG_DIAGNOSE"),
        colorize=None,
    )
    _configured = True


def suppress_insecure_request_warning(verify_ssl: bool) -> None:
    """Mute urllib3's per-request warning when the gateway uses a self-signed certificate."""
    if verify_ssl:
        return
    urllib3.disable_warnings(InsecureRequestWarning)
    gateway_logger.warning("TLS verification disabled for the access-control gateway")


gateway_logger = logger.bind(component="gateway")

configure_logging()

__all__ = [
    "configure_logging",
    "gateway_logger",
    "logger",
    "suppress_insecure_request_warning",
]
