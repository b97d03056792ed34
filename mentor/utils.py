"""Shared utility functions used across mentor modules."""
from __future__ import annotations

import json
from datetime import UTC, date, datetime
from typing import Any

_MISSING = object()


def json_parse(value: str | None, default: Any = _MISSING) -> Any:
    """Safely parse a JSON string, returning *default* on failure.

    If no default is given, returns ``{}`` on parse error.
    """
    try:
        return json.loads(value or "")
    except (json.JSONDecodeError, TypeError):
        return {} if default is _MISSING else default


def json_ids(value: str | None) -> set[str]:
    """Parse a JSON list of ids into a set."""
    return {str(v) for v in json_parse(value, [])}


def dump_ids(ids: set[str] | list[str]) -> str:
    return json.dumps(sorted(ids))


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in SQLite DateTime columns."""
    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def iso_day(value: date | datetime | str) -> str:
    """Normalize a calendar date to its ISO ``YYYY-MM-DD`` key."""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return date.fromisoformat(value.strip()).isoformat()
