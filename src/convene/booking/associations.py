from typing import Optional

from convene.cache import MemoryCache, versioned_key
from convene.values import hydrate_bools

BOOKING_CACHE_GROUP = "audience_bookings"


def booking_cache_key(cache, booking_id: int) -> str:
    """
    Cache key of a booking record.

    The record embeds its target audience rows, so the key is versioned and
    every audience write orphans it.
    """
    return versioned_key(cache, BOOKING_CACHE_GROUP, f"id_{booking_id}")


class BookingAssociationRepository:
    """
    Junction rows linking a booking to the audiences and the individual users
    it targets. Every mutation drops the booking's cached record.
    """

    AUDIENCES_TABLE = "booking_audiences"
    USERS_TABLE = "booking_users"

    def __init__(self, store, cache=None):
        self.store = store
        self.cache = cache if cache is not None else MemoryCache()

    # Audiences

    def add_booking_audience(self, booking_id: int, audience_id: int) -> Optional[int]:
        link_id = self.store.insert(
            self.AUDIENCES_TABLE, {"booking_id": booking_id, "audience_id": audience_id}
        )
        self.forget(booking_id)
        return link_id

    def remove_booking_audience(self, booking_id: int, audience_id: int) -> bool:
        result = self.store.delete(
            self.AUDIENCES_TABLE, {"booking_id": booking_id, "audience_id": audience_id}
        )
        self.forget(booking_id)
        return result is not None

    def get_booking_audiences(self, booking_id: int) -> list[dict]:
        rows = self.store.get_results(
            f"SELECT a.* FROM audiences a INNER JOIN {self.AUDIENCES_TABLE} ba "
            "ON ba.audience_id = a.id WHERE ba.booking_id = %s ORDER BY a.name ASC",
            (booking_id,),
        )
        return [hydrate_bools(r, "allow_self_join") for r in rows]

    def set_booking_audiences(self, booking_id: int, audience_ids: list[int]) -> bool:
        """Replace the booking's audiences with exactly audience_ids."""
        if self.store.delete(self.AUDIENCES_TABLE, {"booking_id": booking_id}) is None:
            return False
        for audience_id in dict.fromkeys(audience_ids):
            self.store.insert(
                self.AUDIENCES_TABLE, {"booking_id": booking_id, "audience_id": audience_id}
            )
        self.forget(booking_id)
        return True

    # Users

    def add_booking_user(self, booking_id: int, user_id: int) -> Optional[int]:
        link_id = self.store.insert(self.USERS_TABLE, {"booking_id": booking_id, "user_id": user_id})
        self.forget(booking_id)
        return link_id

    def remove_booking_user(self, booking_id: int, user_id: int) -> bool:
        result = self.store.delete(self.USERS_TABLE, {"booking_id": booking_id, "user_id": user_id})
        self.forget(booking_id)
        return result is not None

    def get_booking_users(self, booking_id: int) -> list[int]:
        users = self.store.get_col(
            f"SELECT user_id FROM {self.USERS_TABLE} WHERE booking_id = %s ORDER BY user_id",
            (booking_id,),
        )
        return [int(u) for u in users]

    def set_booking_users(self, booking_id: int, user_ids: list[int]) -> bool:
        """Replace the booking's users with exactly user_ids."""
        if self.store.delete(self.USERS_TABLE, {"booking_id": booking_id}) is None:
            return False
        for user_id in dict.fromkeys(user_ids):
            self.store.insert(self.USERS_TABLE, {"booking_id": booking_id, "user_id": user_id})
        self.forget(booking_id)
        return True

    def delete_booking_links(self, booking_id: int) -> bool:
        audiences = self.store.delete(self.AUDIENCES_TABLE, {"booking_id": booking_id})
        users = self.store.delete(self.USERS_TABLE, {"booking_id": booking_id})
        self.forget(booking_id)
        return audiences is not None and users is not None

    def delete_user_links(self, user_id: int) -> int:
        """Remove user_id from every booking. Returns the number of links removed."""
        bookings = self.store.get_col(
            f"SELECT booking_id FROM {self.USERS_TABLE} WHERE user_id = %s", (user_id,)
        )
        removed = self.store.delete(self.USERS_TABLE, {"user_id": user_id})
        for booking_id in bookings:
            self.forget(booking_id)
        return removed or 0

    def forget(self, booking_id: int) -> None:
        self.cache.delete(BOOKING_CACHE_GROUP, booking_cache_key(self.cache, booking_id))
