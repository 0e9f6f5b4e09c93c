"""Billable-hours calculation for shifts.

Shift forms collect two clock times and an unpaid break. When the end time
is not after the start time the shift is taken to cross midnight, so an
overnight shift never needs a second date field.

Limitation: two clock times cannot describe a shift longer than 24 hours.
Datetime pairs further apart than ``max_hours`` are rejected rather than
wrapped or extended.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Optional, Tuple, Union

from shiftlane.config import DEFAULT_MAX_SHIFT_HOURS, DEFAULT_TIME_INCREMENT_MINUTES
from shiftlane.errors import InvalidShiftWindow, InvalidTimeGranularity

logger = logging.getLogger(__name__)

ClockValue = Union[time, datetime]

MINUTES_PER_DAY = 24 * 60


def validate_increment(
    value: ClockValue,
    field_name: str = "time",
    increment: int = DEFAULT_TIME_INCREMENT_MINUTES,
) -> None:
    """Reject clock values that are not on an ``increment``-minute boundary.

    Raises:
        InvalidTimeGranularity: If minutes are off-grid or seconds are set.
    """
    if not isinstance(value, (time, datetime)):
        raise InvalidShiftWindow(
            f"{field_name} must be a time or datetime, got {type(value).__name__}"
        )
    if value.minute % increment != 0 or value.second != 0 or value.microsecond != 0:
        raise InvalidTimeGranularity(
            f"{field_name} {value.isoformat()} is not on a {increment}-minute boundary",
            detail=f"minute must be one of {list(range(0, 60, increment))}",
        )


def _validate_break(break_minutes: int) -> int:
    if isinstance(break_minutes, bool) or not isinstance(break_minutes, int):
        raise InvalidShiftWindow(
            f"break_minutes must be an integer, got {type(break_minutes).__name__}"
        )
    if break_minutes < 0:
        raise InvalidShiftWindow(f"break_minutes cannot be negative, got {break_minutes}")
    return break_minutes


def _minute_of_day(value: time) -> int:
    return value.hour * 60 + value.minute


def gross_minutes(
    start: ClockValue,
    end: ClockValue,
    max_hours: int = DEFAULT_MAX_SHIFT_HOURS,
) -> int:
    """Minutes between start and end, wrapping past midnight when end <= start.

    ``start`` and ``end`` are both clock times or both timezone-aware
    datetimes. Datetimes are compared as instants (so DST changes count
    real elapsed time).
    """
    if isinstance(start, datetime) and isinstance(end, datetime):
        if start.tzinfo is None or end.tzinfo is None:
            raise InvalidShiftWindow("start and end must be timezone-aware datetimes")
        delta = end.astimezone(timezone.utc) - start.astimezone(timezone.utc)
        minutes = int(delta.total_seconds() // 60)
    elif isinstance(start, time) and isinstance(end, time):
        minutes = _minute_of_day(end) - _minute_of_day(start)
    else:
        raise InvalidShiftWindow("start and end must both be times or both be datetimes")

    if minutes <= 0:
        minutes += MINUTES_PER_DAY

    if minutes <= 0 or minutes > max_hours * 60:
        raise InvalidShiftWindow(
            f"shift window of {minutes} minutes is outside 0-{max_hours} hours",
            detail="shifts longer than a day cannot be expressed with two clock times",
        )
    return minutes


def compute_billable_hours(
    start: ClockValue,
    end: ClockValue,
    break_minutes: int = 0,
    *,
    increment: int = DEFAULT_TIME_INCREMENT_MINUTES,
    max_hours: int = DEFAULT_MAX_SHIFT_HOURS,
) -> float:
    """Convert a start, an end and an unpaid break into billable hours.

    Args:
        start: Start clock time (or aware datetime).
        end: End clock time (or aware datetime). ``end <= start`` means
            the shift crosses midnight.
        break_minutes: Unpaid break length in minutes.
        increment: Required clock granularity in minutes.
        max_hours: Longest window accepted.

    Returns:
        Non-negative billable hours. A break longer than the shift yields 0.

    Raises:
        InvalidTimeGranularity: If either time is off the increment grid.
        InvalidShiftWindow: If the inputs cannot describe a shift.
    """
    validate_increment(start, "start", increment)
    validate_increment(end, "end", increment)
    _validate_break(break_minutes)

    gross = gross_minutes(start, end, max_hours)
    return max(0.0, (gross - break_minutes) / 60)


def resolve_window(
    day: date,
    start: time,
    end: time,
    tz: Optional[tzinfo] = None,
) -> Tuple[datetime, datetime]:
    """Build aware start/end instants from a date and two clock times.

    The end rolls into the next day when it is not after the start.
    """
    tz = tz or timezone.utc
    start_dt = datetime.combine(day, start, tzinfo=tz)
    end_dt = datetime.combine(day, end, tzinfo=tz)
    if end_dt <= start_dt:
        end_dt += timedelta(days=1)
    return start_dt, end_dt


def snap_to_increment(
    value: datetime,
    increment: int = DEFAULT_TIME_INCREMENT_MINUTES,
) -> datetime:
    """Round a datetime to the nearest ``increment``-minute boundary.

    Halfway values round up, matching the settlement time adjuster.
    """
    floored = value.replace(second=0, microsecond=0) - timedelta(
        minutes=value.minute % increment
    )
    offset = value - floored
    if offset * 2 >= timedelta(minutes=increment):
        return floored + timedelta(minutes=increment)
    return floored
