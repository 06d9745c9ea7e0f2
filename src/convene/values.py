"""Normalization of values on their way into and out of the Store."""

import json
from datetime import date, datetime, time
from typing import Any


def normalize_date(value) -> str | None:
    """Return an ISO ``YYYY-MM-DD`` string for a date, datetime or string."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return date.fromisoformat(str(value)[:10]).isoformat()


def normalize_time(value) -> str | None:
    """Return an ``HH:MM:SS`` string; ``"9:30"`` and ``time(9, 30)`` both give ``"09:30:00"``."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        value = value.time()
    if isinstance(value, time):
        return value.replace(microsecond=0).isoformat()
    parts = [int(p) for p in str(value).strip().split(":")]
    while len(parts) < 3:
        parts.append(0)
    return time(parts[0], parts[1], parts[2]).isoformat()


def encode_json(value) -> str | None:
    """Serialize structured values; strings are stored as given."""
    if value is None or isinstance(value, str):
        return value
    return json.dumps(value)


def decode_json(value, default: Any = None) -> Any:
    if value is None or value == "":
        return default
    if isinstance(value, (dict, list)):
        return value
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        return default


def hydrate_bools(row: dict | None, *columns: str) -> dict | None:
    if row is None:
        return None
    for column in columns:
        if column in row and row[column] is not None:
            row[column] = bool(row[column])
    return row


def hydrate_times(row: dict | None, *columns: str) -> dict | None:
    if row is None:
        return None
    for column in columns:
        if row.get(column) is not None:
            row[column] = normalize_time(row[column])
    return row


def hydrate_dates(row: dict | None, *columns: str) -> dict | None:
    if row is None:
        return None
    for column in columns:
        if row.get(column) is not None:
            row[column] = normalize_date(row[column])
    return row


def placeholders(values) -> str:
    return ", ".join(["%s"] * len(values))
