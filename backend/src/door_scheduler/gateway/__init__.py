"""Client for the access-control gateway that executes door commands."""

from __future__ import annotations

from .client import GatewayActionClient, GatewayResponse, get_gateway_client
from .session import GatewayError, GatewaySession

__all__ = [
    "GatewayActionClient",
    "GatewayError",
    "GatewayResponse",
    "GatewaySession",
    "get_gateway_client",
]
