"""
Booking conflict detection.

Two axes are checked: time overlap of active bookings on one environment and
date, and same-day bookings that target any of the same audiences.

Callers that go on to write should pass for_update=True inside
store.transaction() so the rows they decided on stay locked until commit.
"""

import logging

from convene.values import (
    hydrate_bools,
    hydrate_dates,
    hydrate_times,
    normalize_date,
    normalize_time,
    placeholders,
)

logger = logging.getLogger(__name__)

BOOKINGS_TABLE = "audience_bookings"

# existing contains the new interval, new start inside existing, new end inside existing
OVERLAP_CLAUSE = (
    "((start_time < %s AND end_time > %s)"
    " OR (start_time >= %s AND start_time < %s)"
    " OR (end_time > %s AND end_time <= %s))"
)


def overlaps(existing_start, existing_end, start, end) -> bool:
    """The three overlap predicates of OVERLAP_CLAUSE, evaluated in Python."""
    es, ee = normalize_time(existing_start), normalize_time(existing_end)
    s, e = normalize_time(start), normalize_time(end)
    return (es < e and ee > s) or (es >= s and es < e) or (ee > s and ee <= e)


def overlaps_canonical(existing_start, existing_end, start, end) -> bool:
    """Half-open interval intersection."""
    es, ee = normalize_time(existing_start), normalize_time(existing_end)
    s, e = normalize_time(start), normalize_time(end)
    return es < e and s < ee


def hydrate_booking(row: dict | None) -> dict | None:
    row = hydrate_dates(row, "booking_date")
    row = hydrate_times(row, "start_time", "end_time")
    return hydrate_bools(row, "is_all_day")


class ConflictDetector:
    def __init__(self, store):
        self.store = store

    def get_conflicts(
        self,
        environment_id: int,
        booking_date,
        start_time,
        end_time,
        exclude_booking_id: int | None = None,
        for_update: bool = False,
    ) -> list[dict]:
        """
        Active bookings on (environment_id, booking_date) overlapping [start_time, end_time).

        Args:
            exclude_booking_id: Booking left out of the check, used when a
                booking is checked against its own new time window
            for_update: Lock the matched rows; the result set is unchanged
        """
        start, end = normalize_time(start_time), normalize_time(end_time)
        query = (
            f"SELECT * FROM {BOOKINGS_TABLE} "
            "WHERE environment_id = %s AND booking_date = %s AND status = %s "
            f"AND {OVERLAP_CLAUSE}"
        )
        params = [
            environment_id,
            normalize_date(booking_date),
            "active",
            end, start,
            start, end,
            start, end,
        ]
        if exclude_booking_id:
            query += " AND id != %s"
            params.append(exclude_booking_id)
        query += " ORDER BY start_time ASC"
        if for_update:
            query += " FOR UPDATE"

        conflicts = [hydrate_booking(r) for r in self.store.get_results(query, tuple(params))]
        if conflicts:
            logger.debug(
                "%d conflict(s) for environment %s on %s %s-%s",
                len(conflicts), environment_id, booking_date, start, end,
            )
        return conflicts

    def get_audience_same_day_bookings(
        self,
        booking_date,
        audience_ids: list[int],
        exclude_booking_id: int | None = None,
    ) -> list[dict]:
        """Active bookings on booking_date that target any of audience_ids."""
        if not audience_ids:
            return []

        query = (
            f"SELECT DISTINCT b.* FROM {BOOKINGS_TABLE} b "
            "INNER JOIN booking_audiences ba ON ba.booking_id = b.id "
            f"WHERE ba.audience_id IN ({placeholders(audience_ids)}) "
            "AND b.booking_date = %s AND b.status = %s"
        )
        params = [*audience_ids, normalize_date(booking_date), "active"]
        if exclude_booking_id:
            query += " AND b.id != %s"
            params.append(exclude_booking_id)
        query += " ORDER BY b.start_time ASC"
        return [hydrate_booking(r) for r in self.store.get_results(query, tuple(params))]

    def is_slot_available(
        self,
        environment_id: int,
        booking_date,
        time,
        capacity: int = 1,
        for_update: bool = False,
    ) -> bool:
        """True while fewer than capacity active bookings start at (booking_date, time)."""
        query = (
            f"SELECT id FROM {BOOKINGS_TABLE} "
            "WHERE environment_id = %s AND booking_date = %s AND start_time = %s AND status = %s"
        )
        if for_update:
            query += " FOR UPDATE"
        taken = self.store.get_col(
            query,
            (environment_id, normalize_date(booking_date), normalize_time(time), "active"),
        )
        return len(taken) < capacity
