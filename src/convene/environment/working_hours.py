"""
Working hours of an environment.

Two stored formats are understood:

    keyed:  {"mon": {"start": "09:00", "end": "17:00", "closed": false}, ...}
    list:   [{"day": 1, "start": "09:00", "end": "17:00"}, ...]   (0 = Sunday)

The list format allows several ranges per day (split shifts). Ranges are
half-open: a time equal to a range's end is outside it. Empty, missing or
unrecognised configuration places no restriction.
"""

from datetime import date

from convene.values import decode_json, normalize_date, normalize_time

DAY_KEYS = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")


def _day_index(day) -> int:
    d = date.fromisoformat(normalize_date(day))
    return (d.weekday() + 1) % 7


def _parse(hours):
    hours = decode_json(hours, None)
    if isinstance(hours, dict) and any(k in DAY_KEYS for k in hours):
        return "keyed", hours
    if isinstance(hours, list) and hours and all(isinstance(h, dict) and "day" in h for h in hours):
        return "list", hours
    return None, None


def get_day_ranges(day, hours) -> list[dict]:
    """Open ranges for the given date as [{"start", "end"}], in stored order."""
    fmt, parsed = _parse(hours)
    index = _day_index(day)
    if fmt == "keyed":
        entry = parsed.get(DAY_KEYS[index])
        if not entry or entry.get("closed") or not entry.get("start") or not entry.get("end"):
            return []
        return [{"start": entry["start"], "end": entry["end"]}]
    if fmt == "list":
        return [
            {"start": h["start"], "end": h["end"]}
            for h in parsed
            if int(h["day"]) == index and h.get("start") and h.get("end")
        ]
    return []


def is_working_day(day, hours) -> bool:
    fmt, parsed = _parse(hours)
    index = _day_index(day)
    if fmt == "keyed":
        entry = parsed.get(DAY_KEYS[index])
        return bool(entry) and not entry.get("closed")
    if fmt == "list":
        return any(int(h["day"]) == index for h in parsed)
    return True


def is_within_working_hours(day, time, hours) -> bool:
    """True when time falls inside one of the day's ranges."""
    fmt, parsed = _parse(hours)
    if fmt is None:
        return True
    if not is_working_day(day, parsed):
        return False
    if fmt == "keyed":
        entry = parsed[DAY_KEYS[_day_index(day)]]
        if not entry.get("start") or not entry.get("end"):
            return True

    t = normalize_time(time)
    return any(
        normalize_time(r["start"]) <= t < normalize_time(r["end"])
        for r in get_day_ranges(day, parsed)
    )


def fits_working_hours(day, start, end, hours) -> bool:
    """True when the whole interval [start, end) lies inside a single range."""
    if not is_within_working_hours(day, start, hours):
        return False
    ranges = get_day_ranges(day, hours)
    if not ranges:
        return True
    s, e = normalize_time(start), normalize_time(end)
    return any(
        normalize_time(r["start"]) <= s and e <= normalize_time(r["end"]) for r in ranges
    )
