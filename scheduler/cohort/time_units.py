import logging
from datetime import datetime, timedelta, timezone
from typing import NamedTuple

from scheduler.cohort.intervals import Interval

logger = logging.getLogger(__name__)

MINUTES_IN_HOUR = 60
HOURS_IN_DAY = 24
DAYS_IN_WEEK = 7
DEFAULT_UNIT_MINUTES = 15

DAY_LETTERS = ["M", "T", "W", "R", "F", "S", "U"]


class DayTime(NamedTuple):
    day: int
    hour: int
    minute: int


def _check_unit_minutes(unit_minutes: int) -> None:
    if unit_minutes <= 0 or MINUTES_IN_HOUR % unit_minutes:
        raise ValueError(f"Unit length must divide an hour, got {unit_minutes} minutes")


def units_per_week(unit_minutes: int = DEFAULT_UNIT_MINUTES) -> int:
    _check_unit_minutes(unit_minutes)
    return DAYS_IN_WEEK * HOURS_IN_DAY * MINUTES_IN_HOUR // unit_minutes


def minutes_to_units(minutes: int, unit_minutes: int = DEFAULT_UNIT_MINUTES) -> int:
    _check_unit_minutes(unit_minutes)
    units, remainder = divmod(minutes, unit_minutes)
    if remainder:
        raise ValueError(
            f"Expected time availability to be aligned to {unit_minutes} minute blocks,"
            f" got {minutes} minutes"
        )
    return units


def day_time_to_unit(
    day: int, hour: int, minute: int, unit_minutes: int = DEFAULT_UNIT_MINUTES
) -> int:
    """Convert a weekly day/hour/minute (Monday is day 0) to a unit index."""
    if not 0 <= day < DAYS_IN_WEEK:
        raise ValueError(f"Day must be in 0..{DAYS_IN_WEEK - 1}, got {day}")
    if not 0 <= hour < HOURS_IN_DAY or not 0 <= minute < MINUTES_IN_HOUR:
        raise ValueError(f"Invalid time of day {hour}:{minute:02d}")
    minutes = (day * HOURS_IN_DAY + hour) * MINUTES_IN_HOUR + minute
    return minutes_to_units(minutes, unit_minutes)


def unit_to_day_time(unit: int, unit_minutes: int = DEFAULT_UNIT_MINUTES) -> DayTime:
    _check_unit_minutes(unit_minutes)
    total_minutes = unit * unit_minutes
    day, minutes_in_day = divmod(total_minutes, HOURS_IN_DAY * MINUTES_IN_HOUR)
    hour, minute = divmod(minutes_in_day, MINUTES_IN_HOUR)
    return DayTime(day, hour, minute)


def format_day_time(unit: int, unit_minutes: int = DEFAULT_UNIT_MINUTES) -> str:
    """Render a unit like "M09:30". A unit at the very end of the week renders on day 7."""
    day, hour, minute = unit_to_day_time(unit, unit_minutes)
    day_letter = DAY_LETTERS[day] if day < DAYS_IN_WEEK else f"+{day}"
    return f"{day_letter}{hour:02d}:{minute:02d}"


def clamp_to_week(start: int, end: int, week_length: int) -> Interval:
    """Resolve an interval that wraps past the end of the week.

    The end is clamped to the week boundary rather than split into two
    intervals. Ending exactly at the start of the week (e.g. "U23:30 M00:00")
    loses nothing; anything later is cut off and logged.
    """
    if end >= start:
        return Interval(start, end)
    if end != 0:
        logger.warning(
            "Interval [%d, %d) wraps past the end of the week; clamping end to %d",
            start,
            end,
            week_length,
        )
    return Interval(start, week_length)


def this_monday_utc(moment: datetime) -> datetime:
    """Midnight UTC on the Monday of the UTC week containing `moment`."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    monday = moment - timedelta(days=moment.weekday())
    return monday.replace(hour=0, minute=0, second=0, microsecond=0)


def unit_to_datetime(
    unit: int, anchor: datetime, unit_minutes: int = DEFAULT_UNIT_MINUTES
) -> datetime:
    return anchor + timedelta(minutes=unit * unit_minutes)
