from __future__ import annotations

import re
from datetime import date, datetime, timedelta


DATE_KEY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def date_key(d: date | datetime) -> str:
    """Render the local wall-clock calendar day of ``d`` as ``YYYY-MM-DD``."""
    return f"{d.year:04d}-{d.month:02d}-{d.day:02d}"


def _component(parts: list[str], index: int) -> int | None:
    if index >= len(parts):
        return None
    try:
        return int(parts[index])
    except (TypeError, ValueError):
        return None


def parse_date_key(key: str | None) -> datetime:
    """
    Parse a date key into a naive datetime at local midnight.

    Never raises: a missing or invalid month or day falls back to 1, an
    unreadable year falls back to 1970.
    """
    parts = str(key or "").strip().split("-")
    year = _component(parts, 0)
    month = _component(parts, 1)
    day = _component(parts, 2)

    if year is None or not 1 <= year <= 9999:
        year = 1970
    if month is None or not 1 <= month <= 12:
        month = 1
    if day is None or day < 1:
        day = 1
    try:
        return datetime(year, month, day)
    except ValueError:
        return datetime(year, month, 1)


def is_valid_date_key(key: str | None) -> bool:
    if not isinstance(key, str) or not DATE_KEY_RE.match(key):
        return False
    try:
        datetime.strptime(key, "%Y-%m-%d")
    except ValueError:
        return False
    return True


def is_valid_time(value: str | None) -> bool:
    return isinstance(value, str) and bool(TIME_RE.match(value))


def parse_time(value: str) -> tuple[int, int]:
    match = TIME_RE.match(value or "")
    if not match:
        raise ValueError(f"Invalid time (expected HH:MM): {value!r}")
    return int(match.group(1)), int(match.group(2))


def shift_date_key(key: str, offset_days: int) -> str:
    return date_key(parse_date_key(key) + timedelta(days=int(offset_days)))


def start_of_week_key(key: str) -> str:
    """Return the key of the Monday of the week containing ``key``."""
    d = parse_date_key(key)
    return date_key(d - timedelta(days=d.weekday()))


def date_keys_window(start_key: str, days: int) -> list[str]:
    return [shift_date_key(start_key, offset) for offset in range(max(int(days), 0))]


def combine_date_time(key: str, time_value: str) -> datetime:
    """Naive local instant for ``key`` at ``HH:MM``; raises ValueError on bad input."""
    if not is_valid_date_key(key):
        raise ValueError(f"Invalid date key: {key!r}")
    hour, minute = parse_time(time_value)
    return parse_date_key(key).replace(hour=hour, minute=minute)


def format_planner_date(key: str) -> str:
    if not is_valid_date_key(key):
        return key
    d = parse_date_key(key)
    return f"{d.strftime('%a')}, {d.strftime('%b')} {d.day}"
