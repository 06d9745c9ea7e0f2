import logging
import secrets
import string
from typing import Callable, Optional

from convene.cache import MemoryCache
from convene.context import anonymous_actor, utcnow
from convene.values import (
    hydrate_dates,
    hydrate_times,
    normalize_date,
    normalize_time,
    placeholders,
)

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = ("confirmed", "pending")

# status -> statuses it may move to
TRANSITIONS = {
    "pending": ("confirmed", "cancelled"),
    "confirmed": ("completed", "cancelled", "no_show"),
    "completed": (),
    "cancelled": (),
    "no_show": (),
}

VALIDATION_CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_validation_code(length: int = 12) -> str:
    return "".join(secrets.choice(VALIDATION_CODE_ALPHABET) for _ in range(length))


def _hydrate(row: dict | None) -> dict | None:
    row = hydrate_dates(row, "appointment_date")
    return hydrate_times(row, "start_time", "end_time")


class AppointmentRepository:
    """
    Repository for self-scheduled appointments on a calendar.

    Appointments have no audience scope; a slot is free while fewer than
    max_per_slot active (pending or confirmed) appointments start at it.
    """

    TABLE = "appointments"
    CACHE_GROUP = "appointments"
    FIELDS = (
        "calendar_id",
        "user_id",
        "appointment_date",
        "start_time",
        "end_time",
        "name",
        "email",
        "phone",
        "notes",
        "confirmation_token",
        "validation_code",
        "created_at",
    )

    def __init__(
        self,
        store,
        cache=None,
        clock: Callable = utcnow,
        actor: Callable[[], int] = anonymous_actor,
    ):
        self.store = store
        self.cache = cache if cache is not None else MemoryCache()
        self.clock = clock
        self.actor = actor

    # Reads

    def find_by_id(self, appointment_id: int) -> Optional[dict]:
        key = f"id_{appointment_id}"
        cached, found = self.cache.get(self.CACHE_GROUP, key)
        if found:
            return cached

        row = self.store.get_row(f"SELECT * FROM {self.TABLE} WHERE id = %s", (appointment_id,))
        if row is None:
            return None
        row = _hydrate(row)
        self.cache.set(self.CACHE_GROUP, key, row)
        return row

    def find_by_calendar(self, calendar_id: int, limit: int = 0, offset: int = 0) -> list[dict]:
        query = (
            f"SELECT * FROM {self.TABLE} WHERE calendar_id = %s "
            "ORDER BY appointment_date DESC, start_time DESC"
        )
        params = [calendar_id]
        if limit > 0:
            query += " LIMIT %s OFFSET %s"
            params += [limit, offset]
        return [_hydrate(r) for r in self.store.get_results(query, tuple(params))]

    def find_by_user(self, user_id: int, statuses: tuple | list | None = None, limit: int = 0) -> list[dict]:
        query = f"SELECT * FROM {self.TABLE} WHERE user_id = %s"
        params = [user_id]
        if statuses:
            query += f" AND status IN ({placeholders(statuses)})"
            params += list(statuses)
        query += " ORDER BY appointment_date DESC, start_time DESC"
        if limit > 0:
            query += " LIMIT %s"
            params.append(limit)
        return [_hydrate(r) for r in self.store.get_results(query, tuple(params))]

    def find_by_confirmation_token(self, token: str) -> Optional[dict]:
        if not token:
            return None
        return _hydrate(
            self.store.get_row(f"SELECT * FROM {self.TABLE} WHERE confirmation_token = %s", (token,))
        )

    def find_by_validation_code(self, code: str) -> Optional[dict]:
        if not code:
            return None
        return _hydrate(
            self.store.get_row(
                f"SELECT * FROM {self.TABLE} WHERE validation_code = %s", (code.strip().upper(),)
            )
        )

    def get_appointments_by_date(
        self,
        calendar_id: int,
        appointment_date,
        statuses: tuple | list = ACTIVE_STATUSES,
        for_update: bool = False,
    ) -> list[dict]:
        query = (
            f"SELECT * FROM {self.TABLE} WHERE calendar_id = %s AND appointment_date = %s "
            f"AND status IN ({placeholders(statuses)}) ORDER BY start_time ASC"
        )
        if for_update:
            query += " FOR UPDATE"
        params = (calendar_id, normalize_date(appointment_date), *statuses)
        return [_hydrate(r) for r in self.store.get_results(query, params)]

    def get_appointments_by_date_range(
        self,
        calendar_id: int,
        start_date,
        end_date,
        statuses: tuple | list = ACTIVE_STATUSES,
    ) -> list[dict]:
        query = (
            f"SELECT * FROM {self.TABLE} WHERE calendar_id = %s "
            "AND appointment_date BETWEEN %s AND %s "
            f"AND status IN ({placeholders(statuses)}) "
            "ORDER BY appointment_date ASC, start_time ASC"
        )
        params = (calendar_id, normalize_date(start_date), normalize_date(end_date), *statuses)
        return [_hydrate(r) for r in self.store.get_results(query, params)]

    def is_slot_available(
        self,
        calendar_id: int,
        appointment_date,
        time,
        max_per_slot: int = 1,
        for_update: bool = False,
    ) -> bool:
        query = (
            f"SELECT id FROM {self.TABLE} WHERE calendar_id = %s AND appointment_date = %s "
            f"AND start_time = %s AND status IN ({placeholders(ACTIVE_STATUSES)})"
        )
        if for_update:
            query += " FOR UPDATE"
        taken = self.store.get_col(
            query,
            (calendar_id, normalize_date(appointment_date), normalize_time(time), *ACTIVE_STATUSES),
        )
        return len(taken) < max_per_slot

    def get_booking_counts_by_date_range(
        self,
        calendar_id: int,
        start_date,
        end_date,
        statuses: tuple | list = ACTIVE_STATUSES,
    ) -> dict[str, int]:
        """Number of appointments per date, for dates that have any."""
        rows = self.store.get_results(
            f"SELECT appointment_date, COUNT(*) AS total FROM {self.TABLE} "
            "WHERE calendar_id = %s AND appointment_date BETWEEN %s AND %s "
            f"AND status IN ({placeholders(statuses)}) "
            "GROUP BY appointment_date ORDER BY appointment_date ASC",
            (calendar_id, normalize_date(start_date), normalize_date(end_date), *statuses),
        )
        return {normalize_date(r["appointment_date"]): int(r["total"]) for r in rows or []}

    def get_statistics(self, calendar_id: int, start_date=None, end_date=None) -> dict[str, int]:
        query = (
            "SELECT COUNT(*) AS total, "
            "SUM(CASE WHEN status = 'pending' THEN 1 ELSE 0 END) AS pending, "
            "SUM(CASE WHEN status = 'confirmed' THEN 1 ELSE 0 END) AS confirmed, "
            "SUM(CASE WHEN status = 'completed' THEN 1 ELSE 0 END) AS completed, "
            "SUM(CASE WHEN status = 'cancelled' THEN 1 ELSE 0 END) AS cancelled, "
            "SUM(CASE WHEN status = 'no_show' THEN 1 ELSE 0 END) AS no_show "
            f"FROM {self.TABLE} WHERE calendar_id = %s"
        )
        params = [calendar_id]
        # A range filter needs both ends.
        if start_date and end_date:
            query += " AND appointment_date BETWEEN %s AND %s"
            params += [normalize_date(start_date), normalize_date(end_date)]
        row = self.store.get_row(query, tuple(params)) or {}
        keys = ("total", "pending", "confirmed", "completed", "cancelled", "no_show")
        return {k: int(row.get(k) or 0) for k in keys}

    # Writes

    def create_appointment(self, data: dict) -> Optional[int]:
        """Create a pending appointment with a confirmation token and validation code."""
        row = {k: data[k] for k in self.FIELDS if k in data}
        row["appointment_date"] = normalize_date(row.get("appointment_date"))
        row["start_time"] = normalize_time(row.get("start_time"))
        if row.get("end_time"):
            row["end_time"] = normalize_time(row["end_time"])
        row.setdefault("confirmation_token", secrets.token_hex(32))
        row["validation_code"] = (row.get("validation_code") or self._unique_validation_code()).upper()
        row.setdefault("created_at", self.clock())
        row["status"] = "pending"
        return self.store.insert(self.TABLE, row)

    def confirm(self, appointment_id: int, approved_by: int | None = None) -> bool:
        now = self.clock()
        return self._transition(
            appointment_id, "confirmed", {"approved_by": approved_by, "approved_at": now}
        )

    def mark_completed(self, appointment_id: int) -> bool:
        return self._transition(appointment_id, "completed", {"completed_at": self.clock()})

    def mark_no_show(self, appointment_id: int) -> bool:
        return self._transition(appointment_id, "no_show", {})

    def cancel(
        self, appointment_id: int, cancelled_by: int | None = None, reason: str | None = None
    ) -> bool:
        return self._transition(
            appointment_id,
            "cancelled",
            {
                "cancelled_by": cancelled_by if cancelled_by is not None else self.actor(),
                "cancelled_at": self.clock(),
                "cancellation_reason": reason,
            },
        )

    def mark_reminder_sent(self, appointment_id: int) -> bool:
        result = self.store.update(
            self.TABLE, {"reminder_sent_at": self.clock()}, {"id": appointment_id}
        )
        self.cache.delete(self.CACHE_GROUP, f"id_{appointment_id}")
        return result is not None

    # Helpers

    def _transition(self, appointment_id: int, status: str, extra: dict) -> bool:
        current = self.store.get_var(
            f"SELECT status FROM {self.TABLE} WHERE id = %s", (appointment_id,)
        )
        if current is None:
            return False
        if status not in TRANSITIONS.get(current, ()):
            logger.info(
                "Appointment %s cannot move from %s to %s", appointment_id, current, status
            )
            return False

        row = {"status": status, **extra, "updated_at": self.clock()}
        result = self.store.update(self.TABLE, row, {"id": appointment_id})
        self.cache.delete(self.CACHE_GROUP, f"id_{appointment_id}")
        return result is not None

    def _unique_validation_code(self) -> str:
        while True:
            code = generate_validation_code()
            taken = self.store.get_var(
                f"SELECT COUNT(*) FROM {self.TABLE} WHERE validation_code = %s", (code,)
            )
            if not taken:
                return code
