"""Validation of externally supplied shift payloads.

Drafts arriving as JSON (API bodies, CLI ``--json`` files) are checked
against JSON Schema before they are turned into dataclasses. Clock
granularity and window rules are enforced afterwards by the duration
calculator so the caller gets the precise engine error.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from jsonschema import Draft7Validator

from shiftlane.shifts.models import ShiftDraft

logger = logging.getLogger(__name__)

_CLOCK_PATTERN = r"^([01][0-9]|2[0-3]):[0-5][0-9]$"
_DATE_PATTERN = r"^[0-9]{4}-[0-9]{2}-[0-9]{2}$"

SHIFT_DRAFT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "role": {"type": "string", "minLength": 1, "maxLength": 100},
        "start": {"type": "string", "minLength": 1},
        "end": {"type": "string", "minLength": 1},
        "date": {"type": "string", "pattern": _DATE_PATTERN},
        "start_time": {"type": "string", "pattern": _CLOCK_PATTERN},
        "end_time": {"type": "string", "pattern": _CLOCK_PATTERN},
        "timezone": {"type": "string", "minLength": 1},
        "hourly_rate": {"type": "number", "exclusiveMinimum": 0},
        "break_minutes": {"type": "integer", "minimum": 0},
        "location": {"type": "string", "maxLength": 500},
        "description": {"type": ["string", "null"], "maxLength": 5000},
        "uniform": {"type": ["string", "null"], "maxLength": 500},
        "requirements": {"type": "array", "items": {"type": "string"}, "maxItems": 50},
        "is_priority": {"type": "boolean"},
    },
    "required": ["role", "hourly_rate"],
    "additionalProperties": False,
    "anyOf": [
        {"required": ["start", "end"]},
        {"required": ["date", "start_time", "end_time"]},
    ],
}

CHANGE_REQUEST_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "start": {"type": "string", "minLength": 1},
        "end": {"type": "string", "minLength": 1},
        "break_minutes": {"type": "integer", "minimum": 0},
    },
    "required": ["start", "end"],
    "additionalProperties": False,
}

Draft7Validator.check_schema(SHIFT_DRAFT_SCHEMA)
Draft7Validator.check_schema(CHANGE_REQUEST_SCHEMA)

_VALIDATORS = {
    "shift_draft": Draft7Validator(SHIFT_DRAFT_SCHEMA),
    "change_request": Draft7Validator(CHANGE_REQUEST_SCHEMA),
}


def validate_payload(kind: str, payload: Any) -> Dict[str, Any]:
    """Check a payload against one of the registered schemas.

    Raises:
        ValueError: Naming the first failing path.
    """
    if not isinstance(payload, dict):
        raise ValueError(f"{kind} must be an object, got {type(payload).__name__}")
    validator = _VALIDATORS[kind]
    errors = sorted(validator.iter_errors(payload), key=lambda err: list(err.path))
    if errors:
        first = errors[0]
        path = ".".join(str(part) for part in first.path) or "(root)"
        raise ValueError(f"Schema validation failed at {path}: {first.message}")
    return dict(payload)


def parse_datetime(value: str, field_name: str) -> datetime:
    """Parse an ISO-8601 instant; a UTC offset is required."""
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as e:
        raise ValueError(f"{field_name} is not an ISO-8601 datetime: {value!r}") from e
    if parsed.tzinfo is None:
        raise ValueError(f"{field_name} must include a UTC offset: {value!r}")
    return parsed


def _resolve_tz(name: str):
    if name.upper() in ("UTC", "Z"):
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone: {name!r}") from e


def _window(data: Dict[str, Any]) -> Tuple[datetime, datetime]:
    if "start" in data:
        start = parse_datetime(data["start"], "start")
        end = parse_datetime(data["end"], "end")
    else:
        tz = _resolve_tz(data.get("timezone", "UTC"))
        day = date.fromisoformat(data["date"])
        start = datetime.combine(day, time.fromisoformat(data["start_time"]), tzinfo=tz)
        end = datetime.combine(day, time.fromisoformat(data["end_time"]), tzinfo=tz)
    if end <= start:
        # Overnight: the end clock time belongs to the next day
        end = end + timedelta(days=1)
    return start, end


def validate_shift_draft(payload: Any) -> ShiftDraft:
    """Validate a JSON shift draft and build a :class:`ShiftDraft`.

    The window is either ``start``/``end`` ISO instants or a ``date`` with
    ``start_time``/``end_time`` clock strings and an optional ``timezone``.
    """
    data = validate_payload("shift_draft", payload)
    start, end = _window(data)
    draft = ShiftDraft(
        role=data["role"].strip(),
        start=start,
        end=end,
        hourly_rate=float(data["hourly_rate"]),
        break_minutes=data.get("break_minutes", 0),
        location=data.get("location", ""),
        description=data.get("description"),
        uniform=data.get("uniform"),
        requirements=list(data.get("requirements", [])),
        is_priority=data.get("is_priority", False),
    )
    logger.debug("Validated shift draft for role %s starting %s", draft.role, start.isoformat())
    return draft


def validate_change_request(payload: Any) -> Tuple[datetime, datetime, int]:
    """Validate a change request body into ``(start, end, break_minutes)``."""
    data = validate_payload("change_request", payload)
    start, end = _window(data)
    return start, end, data.get("break_minutes", 0)
