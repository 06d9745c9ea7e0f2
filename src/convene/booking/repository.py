import logging
from typing import Callable, Optional

from convene.booking.associations import (
    BOOKING_CACHE_GROUP,
    BookingAssociationRepository,
    booking_cache_key,
)
from convene.booking.conflicts import hydrate_booking
from convene.cache import MemoryCache
from convene.context import anonymous_actor, utcnow
from convene.values import normalize_date, normalize_time

logger = logging.getLogger(__name__)


class AudienceBookingRepository:
    """
    Repository for audience bookings of an environment.

    A booking is active until cancelled; cancellation is terminal. Target
    audiences and users live in junction tables managed through
    BookingAssociationRepository.
    """

    TABLE = "audience_bookings"
    CACHE_GROUP = BOOKING_CACHE_GROUP
    FIELDS = (
        "environment_id",
        "booking_date",
        "start_time",
        "end_time",
        "description",
        "booking_type",
        "is_all_day",
    )
    REQUIRED = ("environment_id", "booking_date", "start_time", "end_time", "description")

    def __init__(
        self,
        store,
        cache=None,
        associations: BookingAssociationRepository | None = None,
        clock: Callable = utcnow,
        actor: Callable[[], int] = anonymous_actor,
    ):
        self.store = store
        self.cache = cache if cache is not None else MemoryCache()
        self.associations = associations or BookingAssociationRepository(store, self.cache)
        self.clock = clock
        self.actor = actor

    # Reads

    def get_by_id(self, booking_id: int) -> Optional[dict]:
        """Get a booking with its target 'audiences' (rows) and 'users' (ids)."""
        key = booking_cache_key(self.cache, booking_id)
        cached, found = self.cache.get(self.CACHE_GROUP, key)
        if found:
            return cached

        row = self.store.get_row(f"SELECT * FROM {self.TABLE} WHERE id = %s", (booking_id,))
        if row is None:
            return None

        booking = hydrate_booking(row)
        booking["audiences"] = self.associations.get_booking_audiences(booking_id)
        booking["users"] = self.associations.get_booking_users(booking_id)
        self.cache.set(self.CACHE_GROUP, key, booking)
        return booking

    def get_all(
        self,
        environment_id: int | None = None,
        schedule_id: int | None = None,
        booking_date=None,
        start_date=None,
        end_date=None,
        status: str | None = None,
        booking_type: str | None = None,
        created_by: int | None = None,
        limit: int = 0,
        offset: int = 0,
    ) -> list[dict]:
        join, where, params = self._filters(
            environment_id, schedule_id, booking_date, start_date, end_date,
            status, booking_type, created_by,
        )
        query = (
            f"SELECT b.* FROM {self.TABLE} b{join}{where} "
            "ORDER BY b.booking_date ASC, b.start_time ASC"
        )
        if limit > 0:
            query += " LIMIT %s OFFSET %s"
            params += [limit, offset]
        return [hydrate_booking(r) for r in self.store.get_results(query, tuple(params))]

    def count(
        self,
        environment_id: int | None = None,
        schedule_id: int | None = None,
        booking_date=None,
        start_date=None,
        end_date=None,
        status: str | None = None,
        booking_type: str | None = None,
        created_by: int | None = None,
    ) -> int:
        join, where, params = self._filters(
            environment_id, schedule_id, booking_date, start_date, end_date,
            status, booking_type, created_by,
        )
        total = self.store.get_var(f"SELECT COUNT(*) FROM {self.TABLE} b{join}{where}", tuple(params))
        return int(total or 0)

    def get_by_date(
        self, booking_date, environment_id: int | None = None, status: str = "active"
    ) -> list[dict]:
        return self.get_all(environment_id=environment_id, booking_date=booking_date, status=status)

    def get_by_date_range(
        self, start_date, end_date, environment_id: int | None = None, status: str | None = None
    ) -> list[dict]:
        return self.get_all(
            environment_id=environment_id, start_date=start_date, end_date=end_date, status=status
        )

    def get_by_creator(self, user_id: int, limit: int = 0) -> list[dict]:
        return self.get_all(created_by=user_id, limit=limit)

    def get_by_participant(
        self, user_id: int, start_date=None, end_date=None, status: str | None = "active"
    ) -> list[dict]:
        """
        Bookings that reach user_id, directly or through membership of one
        of the booking's target audiences.
        """
        query = (
            f"SELECT DISTINCT b.* FROM {self.TABLE} b "
            "LEFT JOIN booking_users bu ON bu.booking_id = b.id "
            "LEFT JOIN booking_audiences ba ON ba.booking_id = b.id "
            "LEFT JOIN audience_members am ON am.audience_id = ba.audience_id "
            "WHERE (bu.user_id = %s OR am.user_id = %s)"
        )
        params = [user_id, user_id]
        if status:
            query += " AND b.status = %s"
            params.append(status)
        if start_date:
            query += " AND b.booking_date >= %s"
            params.append(normalize_date(start_date))
        if end_date:
            query += " AND b.booking_date <= %s"
            params.append(normalize_date(end_date))
        query += " ORDER BY b.booking_date ASC, b.start_time ASC"
        return [hydrate_booking(r) for r in self.store.get_results(query, tuple(params))]

    # Writes

    def create(self, data: dict) -> Optional[int]:
        """
        Create an active booking and its audience/user links.

        Returns the new id, or None when a required field is missing, the
        interval is empty, or the insert fails.
        """
        missing = [k for k in self.REQUIRED if not data.get(k)]
        if missing:
            logger.debug("Booking create rejected: missing %s", ", ".join(missing))
            return None

        row = {k: data[k] for k in self.FIELDS if k in data}
        row["booking_date"] = normalize_date(row["booking_date"])
        row["start_time"] = normalize_time(row["start_time"])
        row["end_time"] = normalize_time(row["end_time"])
        if row["end_time"] <= row["start_time"]:
            logger.debug(
                "Booking create rejected: end %s is not after start %s",
                row["end_time"],
                row["start_time"],
            )
            return None

        row.setdefault("booking_type", "audience")
        row["is_all_day"] = bool(row.get("is_all_day", False))
        row["status"] = "active"
        row["created_by"] = self.actor()
        row["created_at"] = self.clock()

        booking_id = self.store.insert(self.TABLE, row)
        if booking_id is None:
            return None

        if data.get("audience_ids"):
            self.associations.set_booking_audiences(booking_id, data["audience_ids"])
        if data.get("user_ids"):
            self.associations.set_booking_users(booking_id, data["user_ids"])
        return booking_id

    def update(self, booking_id: int, data: dict) -> bool:
        """
        Update a booking.

        audience_ids and user_ids replace the booking's links. Protected
        columns (id, status, created_by, created_at, cancellation data) are
        ignored; an update that leaves no columns to write still succeeds.
        """
        if "audience_ids" in data:
            self.associations.set_booking_audiences(booking_id, data["audience_ids"] or [])
        if "user_ids" in data:
            self.associations.set_booking_users(booking_id, data["user_ids"] or [])

        row = {k: data[k] for k in self.FIELDS if k in data}
        if not row:
            return True

        if "booking_date" in row:
            row["booking_date"] = normalize_date(row["booking_date"])
        for column in ("start_time", "end_time"):
            if column in row:
                row[column] = normalize_time(row[column])
        if "is_all_day" in row:
            row["is_all_day"] = bool(row["is_all_day"])
        row["updated_at"] = self.clock()

        result = self.store.update(self.TABLE, row, {"id": booking_id})
        self.forget(booking_id)
        return result is not None

    def cancel(self, booking_id: int, reason: str) -> bool:
        """Cancel an active booking. A reason is required."""
        if not reason or not reason.strip():
            logger.debug("Booking %s cancel rejected: reason is required", booking_id)
            return False

        booking = self.get_by_id(booking_id)
        if booking is None or booking["status"] != "active":
            return False

        now = self.clock()
        result = self.store.update(
            self.TABLE,
            {
                "status": "cancelled",
                "cancelled_by": self.actor(),
                "cancelled_at": now,
                "cancellation_reason": reason.strip(),
                "updated_at": now,
            },
            {"id": booking_id},
        )
        self.forget(booking_id)
        return result is not None

    def delete(self, booking_id: int) -> bool:
        """Delete a booking after its audience and user links."""
        self.associations.delete_booking_links(booking_id)
        result = self.store.delete(self.TABLE, {"id": booking_id})
        self.forget(booking_id)
        return result is not None

    def forget(self, booking_id: int) -> None:
        """Drop the cached record of booking_id."""
        self.associations.forget(booking_id)

    # Helpers

    def _filters(
        self, environment_id, schedule_id, booking_date, start_date, end_date,
        status, booking_type, created_by,
    ) -> tuple[str, str, list]:
        join = ""
        clauses, params = [], []
        if environment_id:
            clauses.append("b.environment_id = %s")
            params.append(environment_id)
        if schedule_id:
            join = " INNER JOIN environments e ON e.id = b.environment_id"
            clauses.append("e.schedule_id = %s")
            params.append(schedule_id)
        if booking_date:
            clauses.append("b.booking_date = %s")
            params.append(normalize_date(booking_date))
        if start_date:
            clauses.append("b.booking_date >= %s")
            params.append(normalize_date(start_date))
        if end_date:
            clauses.append("b.booking_date <= %s")
            params.append(normalize_date(end_date))
        if status:
            clauses.append("b.status = %s")
            params.append(status)
        if booking_type:
            clauses.append("b.booking_type = %s")
            params.append(booking_type)
        if created_by:
            clauses.append("b.created_by = %s")
            params.append(created_by)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        return join, where, params
