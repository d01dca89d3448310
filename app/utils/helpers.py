"""Shared parsing helpers for dates and shop-floor clock times.

parse_date:            returns None on bad input (query strings, filters)
parse_date_input:      raises ValueError on bad input (request bodies)
parse_clock_time:      "HH:MM[:SS]" -> datetime.time, None when unparsable
normalize_clock_time:  clamps a clock string to canonical "HH:MM"
parse_datetime_input:  ISO date-time for record corrections
"""
import logging
from datetime import date, datetime, time

logger = logging.getLogger(__name__)


def parse_date(value):
    """Parse a date string (ISO or DD.MM.YYYY) to a date object.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD (ISO format)
    - YYYY-MM-DDTHH:MM:SS (datetime ISO → .date())
    - DD.MM.YYYY (European format used on the shop-floor terminals)
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d.%m.%Y").date()
    except (ValueError, TypeError):
        return None


def parse_date_input(value):
    """Parse a date string, raising ValueError on bad input.

    Same as parse_date() but raises ValueError instead of returning None.
    Used where callers turn ValueError into a 400 response.
    """
    if not value:
        return None
    parsed = parse_date(value)
    if parsed is None:
        raise ValueError("Invalid date format. Use YYYY-MM-DD or DD.MM.YYYY.")
    return parsed


def parse_datetime_input(value):
    """Parse an ISO date-time string, raising ValueError on bad input."""
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except (ValueError, TypeError) as exc:
        raise ValueError(f"Invalid date-time '{value}'. Use ISO 8601 (YYYY-MM-DDTHH:MM[:SS]).") from exc


def _split_clock(value) -> list[str] | None:
    if value is None:
        return None
    parts = str(value).strip().split(":")
    if len(parts) < 2:
        return None
    return parts


def parse_clock_time(value):
    """Parse "HH:MM" or "HH:MM:SS" into a ``datetime.time``.

    Returns None for empty, malformed or out-of-range input (hour 0-23,
    minute 0-59, second 0-59). ``time`` instances pass through.
    """
    if isinstance(value, time):
        return value
    parts = _split_clock(value)
    if parts is None or len(parts) > 3:
        return None
    try:
        hour, minute = int(parts[0]), int(parts[1])
        second = int(parts[2]) if len(parts) == 3 else 0
    except ValueError:
        return None
    if not (0 <= hour <= 23 and 0 <= minute <= 59 and 0 <= second <= 59):
        return None
    return time(hour, minute, second)


def normalize_clock_time(value):
    """Clamp a clock string to canonical "HH:MM".

    Hour is clamped to [0, 23] and minute to [0, 59]; non-numeric components
    become 0. Seconds are dropped. Strings without at least one ":" cannot be
    interpreted and are returned stripped but otherwise unchanged.
    """
    if value is None:
        return None
    parts = _split_clock(value)
    if parts is None:
        return str(value).strip()

    def _to_int(raw: str) -> int:
        try:
            return int(raw.strip())
        except ValueError:
            return 0

    hour = max(0, min(23, _to_int(parts[0])))
    minute = max(0, min(59, _to_int(parts[1])))
    return f"{hour:02d}:{minute:02d}"
