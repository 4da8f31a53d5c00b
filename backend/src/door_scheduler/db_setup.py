"""Utility CLI for creating, seeding, and maintaining the scheduler database."""

from __future__ import annotations

import argparse
import sys

from .database import configure_database, get_database_settings, get_engine
from .db_models import Base
from .defaults import DEFAULT_DOORS
from .doors import get_door_repository
from .gateway.utils import configure_logging
from .recurrence import RecurrenceExpander, get_recurrence_pattern_repository, resolve_timezone
from .schedule_executor import get_scheduler_settings
from .topology import DoorSource, JsonDoorSource, StaticDoorSource, get_door_source, sync_doors

configure_logging()


def init_db() -> None:
    """Create database tables if they do not already exist."""
    Base.metadata.create_all(get_engine())
    print("Database tables ensured.")


def _run_sync(source: DoorSource | None, *, deactivate_missing: bool = True) -> None:
    result = sync_doors(
        source, get_door_repository(), deactivate_missing=deactivate_missing
    )
    if not result.success:
        raise SystemExit(f"Door sync failed: {result.error_message}")
    print(
        f"Door sync complete: added={result.added}, updated={result.updated}, "
        f"deactivated={result.deactivated}."
    )


def seed_db(*, doors_file: str | None = None) -> None:
    """Seed doors from a JSON topology file or the bundled sample list."""
    source: DoorSource
    if doors_file:
        source = JsonDoorSource(doors_file)
    else:
        source = StaticDoorSource(DEFAULT_DOORS)
    _run_sync(source, deactivate_missing=False)


def sync_door_topology() -> None:
    source = get_door_source()
    if source is None:
        raise SystemExit("Set DOOR_TOPOLOGY_DB_URL or DOOR_TOPOLOGY_FILE to sync doors.")
    _run_sync(source)


def generate_instances() -> int:
    """Run recurrence generation once for every active pattern."""
    settings = get_scheduler_settings()
    expander = RecurrenceExpander(
        get_recurrence_pattern_repository(),
        timezone=resolve_timezone(settings.timezone),
    )
    generated = expander.generate_all()
    print(f"Generated {generated} schedule instances.")
    return generated


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Manage the door scheduler database.")
    parser.add_argument(
        "--db-url",
        help="Database URL (defaults to DOOR_SCHEDULER_DB_URL).",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init", help="Create database tables.")
    seed_parser = sub.add_parser("seed", help="Seed the database with doors.")
    seed_parser.add_argument(
        "--doors-file",
        help="JSON file with the doors to load (default: bundled sample doors).",
    )
    sub.add_parser("sync-doors", help="Mirror doors from the configured topology source.")
    sub.add_parser("generate", help="Generate schedules from active recurrence patterns.")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    if args.db_url:
        configure_database(args.db_url, echo=get_database_settings().echo)

    if args.command == "init":
        init_db()
    elif args.command == "seed":
        seed_db(doors_file=args.doors_file)
    elif args.command == "sync-doors":
        sync_door_topology()
    elif args.command == "generate":
        generate_instances()
    else:
        raise SystemExit(f"Unknown command: {args.command}")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    main(sys.argv[1:])
