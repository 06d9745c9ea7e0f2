import logging

from convene.booking.conflicts import ConflictDetector
from convene.booking.repository import AudienceBookingRepository
from convene.environment.repository import EnvironmentRepository
from convene.environment.working_hours import fits_working_hours
from convene.values import normalize_date

logger = logging.getLogger(__name__)


class BookingService:
    """
    Schedules audience bookings.

    The environment row is locked before the conflict check and the insert
    runs in the same Store transaction, so bookings on one environment are
    serialized and two callers cannot both see a free slot and both book it.

    When schedules are wired, an environment on a schedule is only bookable
    by users the schedule lets book, allow_conflicts only takes effect for
    users who may override conflicts, and cancelling another user's booking
    needs the cancel-others permission. Environments without a schedule are
    open to everyone.
    """

    def __init__(
        self,
        store,
        bookings: AudienceBookingRepository,
        conflicts: ConflictDetector,
        environments: EnvironmentRepository,
        activity=None,
        schedules=None,
    ):
        self.store = store
        self.bookings = bookings
        self.conflicts = conflicts
        self.environments = environments
        self.activity = activity
        self.schedules = schedules

    def schedule(self, data: dict, allow_conflicts: bool = False) -> dict:
        """
        Create a booking unless it is blocked.

        Returns a dict with:
            booking_id: new id, or None when nothing was created
            error: None, or one of environment_not_found, forbidden, holiday,
                outside_working_hours, conflict, invalid
            conflicts: overlapping active bookings on the environment
            audience_conflicts: same-day bookings of the target audiences,
                reported but never blocking
        """
        with self.store.transaction():
            result = self._check(data, None, allow_conflicts)
            if result["error"]:
                return result

            booking_id = self.bookings.create(data)
            if booking_id is None:
                result["error"] = "invalid"
                return result
            result["booking_id"] = booking_id

        self._record("booking_created", booking_id, data, result)
        return result

    def reschedule(self, booking_id: int, changes: dict, allow_conflicts: bool = False) -> dict:
        """Move an existing booking, checking the new window against every other booking."""
        booking = self.bookings.get_by_id(booking_id)
        if booking is None or booking["status"] != "active":
            return self._result(error="not_found")

        data = {
            "environment_id": booking["environment_id"],
            "booking_date": booking["booking_date"],
            "start_time": booking["start_time"],
            "end_time": booking["end_time"],
            "is_all_day": booking["is_all_day"],
            "audience_ids": [a["id"] for a in booking["audiences"]],
            **changes,
        }
        with self.store.transaction():
            result = self._check(data, booking_id, allow_conflicts)
            if result["error"]:
                return result
            updated = self.bookings.update(booking_id, changes)

        # A read between the in-transaction eviction and commit may have cached the old row.
        self.bookings.forget(booking_id)
        if not updated:
            result["error"] = "invalid"
            return result
        result["booking_id"] = booking_id

        self._record("booking_rescheduled", booking_id, changes, result)
        return result

    def cancel(self, booking_id: int, reason: str) -> bool:
        """Cancel a booking. Another user's booking needs the cancel-others permission."""
        booking = self.bookings.get_by_id(booking_id)
        if booking is None:
            return False

        actor = self.bookings.actor()
        if booking["created_by"] != actor:
            schedule_id = self._schedule_of(booking["environment_id"])
            if schedule_id and not self.schedules.user_can_cancel_others(schedule_id, actor):
                logger.warning(
                    "User %s may not cancel booking %s created by %s",
                    actor, booking_id, booking["created_by"],
                )
                return False

        cancelled = self.bookings.cancel(booking_id, reason)
        if cancelled and self.activity is not None:
            self.activity.log(
                "booking_cancelled",
                user_id=actor,
                object_type="booking",
                object_id=booking_id,
                context={"reason": reason},
            )
        return cancelled

    # Helpers

    def _check(self, data: dict, exclude_booking_id: int | None, allow_conflicts: bool) -> dict:
        environment_id = data.get("environment_id")
        if not environment_id or not self.environments.lock(environment_id):
            return self._result(error="environment_not_found")
        environment = self.environments.get_by_id(environment_id)
        if environment is None:
            return self._result(error="environment_not_found")

        actor = self.bookings.actor()
        schedule_id = environment.get("schedule_id") if self.schedules is not None else None
        if schedule_id and not self.schedules.user_can_book(schedule_id, actor):
            logger.warning("User %s may not book on schedule %s", actor, schedule_id)
            return self._result(error="forbidden")

        booking_date = data.get("booking_date")
        if not booking_date or not data.get("start_time") or not data.get("end_time"):
            return self._result(error="invalid")

        booking_date = normalize_date(booking_date)
        if self.environments.is_holiday(environment_id, booking_date):
            return self._result(error="holiday")
        if not data.get("is_all_day") and not fits_working_hours(
            booking_date, data["start_time"], data["end_time"], environment["working_hours"]
        ):
            return self._result(error="outside_working_hours")

        result = self._result()
        result["conflicts"] = self.conflicts.get_conflicts(
            environment_id,
            booking_date,
            data["start_time"],
            data["end_time"],
            exclude_booking_id=exclude_booking_id,
            for_update=True,
        )
        result["audience_conflicts"] = self.conflicts.get_audience_same_day_bookings(
            booking_date, data.get("audience_ids") or [], exclude_booking_id=exclude_booking_id
        )
        if result["conflicts"]:
            logger.info(
                "Booking on environment %s at %s %s-%s overlaps %d booking(s)",
                environment_id, booking_date, data["start_time"], data["end_time"],
                len(result["conflicts"]),
            )
            if allow_conflicts and schedule_id and not self.schedules.user_can_override_conflicts(
                schedule_id, actor
            ):
                logger.warning("User %s may not override conflicts on schedule %s", actor, schedule_id)
                allow_conflicts = False
            if not allow_conflicts:
                result["error"] = "conflict"
        return result

    def _schedule_of(self, environment_id: int) -> int | None:
        if self.schedules is None:
            return None
        environment = self.environments.get_by_id(environment_id)
        return environment.get("schedule_id") if environment else None

    @staticmethod
    def _result(error: str | None = None) -> dict:
        return {"booking_id": None, "error": error, "conflicts": [], "audience_conflicts": []}

    def _record(self, action: str, booking_id: int, data: dict, result: dict) -> None:
        if self.activity is None:
            return
        self.activity.log(
            action,
            level="warning" if result["conflicts"] else "info",
            user_id=self.bookings.actor(),
            object_type="booking",
            object_id=booking_id,
            context={
                "environment_id": data.get("environment_id"),
                "booking_date": data.get("booking_date"),
                "conflicts": [c["id"] for c in result["conflicts"]],
            },
        )
