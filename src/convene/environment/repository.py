import logging
from typing import Callable, Optional

from convene.cache import MemoryCache
from convene.context import utcnow
from convene.values import decode_json, encode_json, hydrate_dates, normalize_date

logger = logging.getLogger(__name__)


class EnvironmentRepository:
    """
    Repository for bookable environments (rooms, labs, courts) and their
    holidays. Working hours are stored as JSON on the environment row.
    """

    TABLE = "environments"
    HOLIDAYS_TABLE = "environment_holidays"
    CACHE_GROUP = "environments"
    FIELDS = ("schedule_id", "name", "description", "capacity", "working_hours", "status")

    def __init__(self, store, cache=None, clock: Callable = utcnow):
        self.store = store
        self.cache = cache if cache is not None else MemoryCache()
        self.clock = clock

    def get_by_id(self, environment_id: int) -> Optional[dict]:
        key = f"id_{environment_id}"
        cached, found = self.cache.get(self.CACHE_GROUP, key)
        if found:
            return cached

        row = self.store.get_row(f"SELECT * FROM {self.TABLE} WHERE id = %s", (environment_id,))
        if row is None:
            return None
        row["working_hours"] = decode_json(row.get("working_hours"), None)
        self.cache.set(self.CACHE_GROUP, key, row)
        return row

    def get_all(self, schedule_id: int | None = None, status: str | None = None) -> list[dict]:
        clauses, params = [], []
        if schedule_id is not None:
            clauses.append("schedule_id = %s")
            params.append(schedule_id)
        if status:
            clauses.append("status = %s")
            params.append(status)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self.store.get_results(
            f"SELECT * FROM {self.TABLE}{where} ORDER BY name ASC", tuple(params)
        )
        for row in rows:
            row["working_hours"] = decode_json(row.get("working_hours"), None)
        return rows

    def get_working_hours(self, environment_id: int):
        environment = self.get_by_id(environment_id)
        return environment["working_hours"] if environment else None

    def lock(self, environment_id: int) -> bool:
        """
        Lock the environment row until the surrounding transaction ends.

        Bookings on one environment are serialized through this lock, so a
        booking inserted by another caller after our conflict check cannot
        slip past it. Returns False when the environment does not exist.
        """
        return (
            self.store.get_var(
                f"SELECT id FROM {self.TABLE} WHERE id = %s FOR UPDATE", (environment_id,)
            )
            is not None
        )

    def create(self, data: dict) -> Optional[int]:
        row = {k: data[k] for k in self.FIELDS if k in data}
        if not row.get("name"):
            logger.debug("Environment create rejected: name is required")
            return None
        row.setdefault("status", "active")
        row.setdefault("capacity", 1)
        row["working_hours"] = encode_json(row.get("working_hours"))
        row["created_at"] = self.clock()
        return self.store.insert(self.TABLE, row)

    def update(self, environment_id: int, data: dict) -> bool:
        row = {k: data[k] for k in self.FIELDS if k in data}
        if not row:
            return False
        if "working_hours" in row:
            row["working_hours"] = encode_json(row["working_hours"])
        row["updated_at"] = self.clock()
        if self.store.update(self.TABLE, row, {"id": environment_id}) is None:
            return False
        self.cache.delete(self.CACHE_GROUP, f"id_{environment_id}")
        return True

    def delete(self, environment_id: int) -> bool:
        self.store.delete(self.HOLIDAYS_TABLE, {"environment_id": environment_id})
        result = self.store.delete(self.TABLE, {"id": environment_id})
        self.cache.delete(self.CACHE_GROUP, f"id_{environment_id}")
        return result is not None

    # Holidays

    def get_holidays(self, environment_id: int, start_date=None, end_date=None) -> list[dict]:
        query = f"SELECT * FROM {self.HOLIDAYS_TABLE} WHERE environment_id = %s"
        params = [environment_id]
        if start_date:
            query += " AND holiday_date >= %s"
            params.append(normalize_date(start_date))
        if end_date:
            query += " AND holiday_date <= %s"
            params.append(normalize_date(end_date))
        query += " ORDER BY holiday_date ASC"
        return [
            hydrate_dates(r, "holiday_date")
            for r in self.store.get_results(query, tuple(params))
        ]

    def is_holiday(self, environment_id: int, day) -> bool:
        day = normalize_date(day)
        key = f"holiday_{environment_id}_{day}"
        cached, found = self.cache.get(self.CACHE_GROUP, key)
        if found:
            return cached

        count = self.store.get_var(
            f"SELECT COUNT(*) FROM {self.HOLIDAYS_TABLE} "
            "WHERE environment_id = %s AND holiday_date = %s",
            (environment_id, day),
        )
        result = int(count or 0) > 0
        self.cache.set(self.CACHE_GROUP, key, result)
        return result

    def add_holiday(self, environment_id: int, day, description: str = "") -> Optional[int]:
        day = normalize_date(day)
        holiday_id = self.store.insert(
            self.HOLIDAYS_TABLE,
            {"environment_id": environment_id, "holiday_date": day, "description": description},
        )
        self.cache.delete(self.CACHE_GROUP, f"holiday_{environment_id}_{day}")
        return holiday_id

    def remove_holiday(self, environment_id: int, day) -> bool:
        day = normalize_date(day)
        result = self.store.delete(
            self.HOLIDAYS_TABLE, {"environment_id": environment_id, "holiday_date": day}
        )
        self.cache.delete(self.CACHE_GROUP, f"holiday_{environment_id}_{day}")
        return result is not None
