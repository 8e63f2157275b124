"""Next-occurrence arithmetic for weekly wake schedules.

Days are encoded as a 7-bit mask using :meth:`datetime.date.weekday`
numbering: bit 0 is Monday and bit 6 is Sunday.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, time, timedelta

from .errors import ValidationError

MONDAY = 1 << 0
TUESDAY = 1 << 1
WEDNESDAY = 1 << 2
THURSDAY = 1 << 3
FRIDAY = 1 << 4
SATURDAY = 1 << 5
SUNDAY = 1 << 6

WEEKDAYS = MONDAY | TUESDAY | WEDNESDAY | THURSDAY | FRIDAY
EVERY_DAY = WEEKDAYS | SATURDAY | SUNDAY
DEFAULT_DAYS_BITMAP = MONDAY

DAY_NAMES = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")

# Small buffer so a schedule re-armed right at its minute does not fire again.
REFIRE_BUFFER = timedelta(seconds=1)
MAX_LOOKAHEAD_DAYS = 8


def is_day_set(days_bitmap: int, weekday: int) -> bool:
    return bool(days_bitmap & (1 << weekday))


def normalize_days_bitmap(days_bitmap: int) -> int:
    """Validate ``days_bitmap`` and map an empty mask to the default day."""
    if days_bitmap < 0 or days_bitmap > EVERY_DAY:
        raise ValidationError(
            f"days_bitmap must be between 0 and {EVERY_DAY}, got {days_bitmap}."
        )
    return days_bitmap or DEFAULT_DAYS_BITMAP


def validate_time_of_day(hour: int, minute: int) -> None:
    if not 0 <= hour <= 23:
        raise ValidationError(f"hour must be between 0 and 23, got {hour}.")
    if not 0 <= minute <= 59:
        raise ValidationError(f"minute must be between 0 and 59, got {minute}.")


def days_from_bitmap(days_bitmap: int) -> list[int]:
    """Return the weekday indexes (0=Monday) set in ``days_bitmap``."""
    return [index for index in range(7) if is_day_set(days_bitmap, index)]


def bitmap_from_days(days: Iterable[int | str]) -> int:
    """Build a mask from weekday indexes or three-letter day names."""
    lookup = {name.lower(): index for index, name in enumerate(DAY_NAMES)}
    bitmap = 0
    for day in days:
        if isinstance(day, str):
            index = lookup.get(day.strip().lower()[:3])
            if index is None:
                raise ValidationError(f"Unknown day name: {day!r}")
        else:
            index = day
            if not 0 <= index <= 6:
                raise ValidationError(f"Weekday index out of range: {day}")
        bitmap |= 1 << index
    return bitmap


def describe_days(days_bitmap: int) -> str:
    if days_bitmap & EVERY_DAY == EVERY_DAY:
        return "Every day"
    if days_bitmap & EVERY_DAY == WEEKDAYS:
        return "Weekdays"
    return ", ".join(DAY_NAMES[index] for index in days_from_bitmap(days_bitmap))


def next_fire_instant(
    hour: int, minute: int, days_bitmap: int, now: datetime
) -> datetime | None:
    """Return the next instant matching ``hour:minute`` on a day in the mask.

    The candidate starts today at ``hour:minute:00`` in ``now``'s timezone. If
    that is not strictly more than one second in the future the search starts
    tomorrow, then walks forward one day at a time for at most eight days.
    Returns ``None`` when the mask is empty.
    """
    if not days_bitmap & EVERY_DAY:
        return None

    tz = now.tzinfo
    wall_clock = time(hour, minute)
    day = now.date()
    candidate = datetime.combine(day, wall_clock, tzinfo=tz)
    if candidate <= now + REFIRE_BUFFER:
        day += timedelta(days=1)

    for _ in range(MAX_LOOKAHEAD_DAYS):
        if is_day_set(days_bitmap, day.weekday()):
            return datetime.combine(day, wall_clock, tzinfo=tz)
        day += timedelta(days=1)
    return None


__all__ = [
    "MONDAY",
    "TUESDAY",
    "WEDNESDAY",
    "THURSDAY",
    "FRIDAY",
    "SATURDAY",
    "SUNDAY",
    "WEEKDAYS",
    "EVERY_DAY",
    "DEFAULT_DAYS_BITMAP",
    "bitmap_from_days",
    "days_from_bitmap",
    "describe_days",
    "is_day_set",
    "next_fire_instant",
    "normalize_days_bitmap",
    "validate_time_of_day",
]
