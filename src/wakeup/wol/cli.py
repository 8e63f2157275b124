"""Command-line helpers for devices, wake requests, and wake schedules."""

from __future__ import annotations

import argparse
import json
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path

from .. import services
from ..database import get_engine, is_database_configured
from ..errors import NotFoundError, ValidationError
from ..recurrence import (
    WEEKDAYS,
    bitmap_from_days,
    describe_days,
    next_fire_instant,
    normalize_days_bitmap,
)
from .config import settings
from .devices import get_device_repository
from .utils import configure_logging, logger

configure_logging()


def _dump_json(data: object, *, print_fn=print) -> None:
    formatted = json.dumps(data, indent=2, sort_keys=True, default=str)
    print_fn(formatted)


def _format_timestamp(value: datetime | None) -> str:
    if value is None:
        return "never"
    return value.astimezone(settings.tzinfo()).strftime("%Y-%m-%d %H:%M:%S %Z")


def _parse_time(value: str) -> tuple[int, int]:
    try:
        hour_text, minute_text = value.split(":", 1)
        return int(hour_text), int(minute_text)
    except ValueError as exc:
        raise ValidationError(f"Time must look like HH:MM, got {value!r}.") from exc


def _parse_days(value: str | None) -> int:
    if not value:
        return WEEKDAYS
    return bitmap_from_days(part for part in value.split(",") if part.strip())


def list_devices(*, print_fn=print) -> None:
    """Print every registered device with its last successful wake."""
    devices = get_device_repository().list_all()
    if not devices:
        print_fn("No devices registered.")
        return
    print_fn(f"Found {len(devices)} device(s):")
    for device in devices:
        print_fn(
            f" - {device.name} [{device.id}] {device.mac} "
            f"last seen: {_format_timestamp(device.last_seen_at)}"
        )


def wake(device_id: str, *, print_fn=print) -> bool:
    result = services.wake_now(device_id)
    for attempt in result.attempts:
        state = "sent" if attempt.success else "failed"
        print_fn(f" - {attempt.target}: {state}")
    if result.success:
        print_fn(f"Wake packet sent to {result.device.name}.")
    else:
        print_fn("Failed to send wake packet.")
    return result.success


def status(device_id: str, *, print_fn=print) -> bool:
    record = services.check_device_status(device_id)
    state = "ONLINE" if record["online"] else "OFFLINE"
    print_fn(f"{device_id}: {state}")
    return record["online"]


def list_schedules(device_id: str | None = None, *, print_fn=print) -> None:
    schedules = services.list_schedules(device_id)
    if not schedules:
        print_fn("No schedules found.")
        return
    for schedule in schedules:
        record = services.schedule_record(schedule)
        state = "enabled" if schedule.enabled else "disabled"
        next_fire = (
            record["next_fire_at"].isoformat() if record["next_fire_at"] else "-"
        )
        print_fn(
            f" - {schedule.id} device={schedule.device_id} "
            f"{record['label']} ({state}) next={next_fire}"
        )


def show_next(
    time_of_day: str,
    days: str | None = None,
    *,
    now: datetime | None = None,
    print_fn=print,
) -> datetime | None:
    """Print the next fire instant for a time and comma-separated day list."""
    hour, minute = _parse_time(time_of_day)
    bitmap = normalize_days_bitmap(_parse_days(days))
    fire_at = next_fire_instant(hour, minute, bitmap, now or settings.now())
    if fire_at is None:
        print_fn("No upcoming occurrence.")
    else:
        print_fn(f"{describe_days(bitmap)} at {hour:02d}:{minute:02d} -> {fire_at.isoformat()}")
    return fire_at


def reconcile(*, print_fn=print) -> int:
    rearmed = services.reconcile_schedules()
    print_fn(f"Re-armed {rearmed} schedule(s).")
    return rearmed


def export_configuration(output: str | None = None, *, print_fn=print) -> None:
    data = services.export_configuration()
    if output is None:
        _dump_json(data, print_fn=print_fn)
        return
    Path(output).write_text(
        json.dumps(data, indent=2, sort_keys=True, default=str), encoding="utf-8"
    )
    print_fn(
        f"Exported {len(data['devices'])} device(s) and "
        f"{len(data['schedules'])} schedule(s) to {output}."
    )


def import_configuration(path: str, *, print_fn=print) -> None:
    try:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ValidationError(f"Unable to read {path}: {exc}") from exc
    summary = services.import_configuration(payload)
    print_fn(
        f"Imported {summary['devices']} device(s) and {summary['schedules']} "
        f"schedule(s); {summary['armed']} timer(s) armed."
    )


def init_db(*, print_fn=print) -> None:
    """Create database tables if they do not already exist."""
    if not is_database_configured():
        raise SystemExit(
            "WAKEUP_DB_URL is not set or WAKEUP_DB_MODE is memory; "
            "cannot run database commands."
        )
    if get_engine() is None:
        raise SystemExit("Unable to create engine for configured database URL.")
    print_fn("Database tables ensured.")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="wakeup",
        description="Send Wake-on-LAN packets and manage recurring wake schedules.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("devices", help="List registered devices.")

    wake_parser = commands.add_parser("wake", help="Wake a device now.")
    wake_parser.add_argument("device_id")

    status_parser = commands.add_parser("status", help="Probe device reachability.")
    status_parser.add_argument("device_id")

    schedules_parser = commands.add_parser("schedules", help="List wake schedules.")
    schedules_parser.add_argument("--device", dest="device_id")

    next_parser = commands.add_parser(
        "next", help="Show when a schedule would fire next."
    )
    next_parser.add_argument("time", help="Time of day as HH:MM.")
    next_parser.add_argument(
        "--days",
        help="Comma-separated day names (mon,tue,...). Defaults to weekdays.",
    )

    commands.add_parser("reconcile", help="Re-arm every enabled schedule.")

    export_parser = commands.add_parser("export", help="Export devices and schedules.")
    export_parser.add_argument("-o", "--output", help="Write to a file instead of stdout.")

    import_parser = commands.add_parser("import", help="Import devices and schedules.")
    import_parser.add_argument("path")

    commands.add_parser("init-db", help="Create the SQL schema.")
    return parser


def main(argv: Iterable[str] | None = None, *, print_fn=print) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    logger.bind(command=args.command).debug("Running CLI command")

    try:
        if args.command == "devices":
            list_devices(print_fn=print_fn)
        elif args.command == "wake":
            return 0 if wake(args.device_id, print_fn=print_fn) else 1
        elif args.command == "status":
            return 0 if status(args.device_id, print_fn=print_fn) else 1
        elif args.command == "schedules":
            list_schedules(args.device_id, print_fn=print_fn)
        elif args.command == "next":
            show_next(args.time, args.days, print_fn=print_fn)
        elif args.command == "reconcile":
            reconcile(print_fn=print_fn)
        elif args.command == "export":
            export_configuration(args.output, print_fn=print_fn)
        elif args.command == "import":
            import_configuration(args.path, print_fn=print_fn)
        elif args.command == "init-db":
            init_db(print_fn=print_fn)
    except NotFoundError as exc:
        logger.bind(command=args.command).warning("{}", exc)
        raise SystemExit(str(exc)) from exc
    except ValidationError as exc:
        logger.bind(command=args.command).warning("{}", exc)
        raise SystemExit(f"Invalid input: {exc}") from exc
    return 0


__all__ = [
    "export_configuration",
    "import_configuration",
    "init_db",
    "list_devices",
    "list_schedules",
    "main",
    "reconcile",
    "show_next",
    "status",
    "wake",
]
