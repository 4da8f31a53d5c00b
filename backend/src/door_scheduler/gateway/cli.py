"""Command-line helpers for issuing ad-hoc gateway commands."""

from __future__ import annotations

import argparse
import json
from collections.abc import Iterable

from .client import GatewayActionClient, GatewayResponse, build_gateway_client
from .config import get_gateway_settings
from .utils import configure_logging, gateway_logger as logger

configure_logging()


def _create_client() -> GatewayActionClient:
    return build_gateway_client(get_gateway_settings())


def _dump_json(data: object, *, print_fn=print) -> None:
    print_fn(json.dumps(data, indent=2, default=str))


def _response_record(device_id: int, action: str, response: GatewayResponse) -> dict[str, object]:
    return {
        "deviceId": device_id,
        "action": action,
        "success": response.success,
        "statusCode": response.status_code,
        "errorMessage": response.error_message,
        "timestamp": response.timestamp.isoformat(),
    }


def run_action(
    device_id: int,
    action: str,
    *,
    client: GatewayActionClient | None = None,
    print_fn=print,
) -> GatewayResponse:
    """Send one unlock/lock command and print the outcome."""
    owns_client = client is None
    client = client or _create_client()
    logger.bind(device_id=device_id, action=action).info("Issuing {} from CLI", action)
    try:
        response = client.execute_action(device_id, action)
    finally:
        if owns_client:
            client.close()
    _dump_json(_response_record(device_id, action, response), print_fn=print_fn)
    if not response.success:
        raise SystemExit(f"Gateway {action} failed: {response.error_message}")
    return response


def login(*, client: GatewayActionClient | None = None, print_fn=print) -> bool:
    """Authenticate against the gateway to verify credentials."""
    owns_client = client is None
    client = client or _create_client()
    try:
        ok = client.authenticate()
    finally:
        if owns_client:
            client.close()
    if not ok:
        raise SystemExit("Gateway authentication failed.")
    print_fn("Authenticated to gateway.")
    return ok


def main(argv: Iterable[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Issue commands to the door gateway.")
    sub = parser.add_subparsers(dest="command", required=True)

    for action in ("unlock", "lock"):
        action_parser = sub.add_parser(action, help=f"{action.capitalize()} a door by device id.")
        action_parser.add_argument("device_id", type=int, help="Gateway device identifier.")
    sub.add_parser("login", help="Verify gateway credentials.")

    args = parser.parse_args(list(argv) if argv is not None else None)
    if args.command == "login":
        login()
        return
    run_action(args.device_id, args.command)


__all__ = ["login", "main", "run_action"]
