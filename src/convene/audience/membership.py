import logging
from typing import Callable, Optional

from convene.cache import MemoryCache, versioned_key
from convene.context import utcnow
from convene.values import hydrate_bools, placeholders

logger = logging.getLogger(__name__)


class MembershipRepository:
    """
    Repository for audience membership edges.

    Membership is explicit: a user belongs to an audience only through a row
    in audience_members. Hierarchy-aware reads (include_children,
    include_parents) expand over the tree at query time.
    """

    TABLE = "audience_members"
    CACHE_GROUP = "user_audiences"

    def __init__(self, store, audiences, cache=None, clock: Callable = utcnow):
        self.store = store
        self.audiences = audiences
        self.cache = cache if cache is not None else MemoryCache()
        self.clock = clock

    def is_member(self, audience_id: int, user_id: int) -> bool:
        count = self.store.get_var(
            f"SELECT COUNT(*) FROM {self.TABLE} WHERE audience_id = %s AND user_id = %s",
            (audience_id, user_id),
        )
        return int(count or 0) > 0

    def add_member(self, audience_id: int, user_id: int) -> Optional[int]:
        """Add a membership edge. Returns the new row id, or None if it already exists."""
        if self.is_member(audience_id, user_id):
            logger.debug("User %s is already a member of audience %s", user_id, audience_id)
            return None

        member_id = self.store.insert(
            self.TABLE,
            {"audience_id": audience_id, "user_id": user_id, "created_at": self.clock()},
        )
        if member_id is not None:
            self._forget_user(user_id)
        return member_id

    def remove_member(self, audience_id: int, user_id: int) -> bool:
        """Remove a membership edge. Removing a missing edge succeeds."""
        result = self.store.delete(self.TABLE, {"audience_id": audience_id, "user_id": user_id})
        if result is None:
            return False
        self._forget_user(user_id)
        return True

    def get_members(self, audience_id: int, include_children: bool = False) -> list[int]:
        """Distinct user ids, optionally across every descendant audience too."""
        audience_ids = self._scope(audience_id, include_children)
        users = self.store.get_col(
            f"SELECT DISTINCT user_id FROM {self.TABLE} "
            f"WHERE audience_id IN ({placeholders(audience_ids)}) ORDER BY user_id",
            tuple(audience_ids),
        )
        return [int(u) for u in users]

    def get_member_count(self, audience_id: int, include_children: bool = False) -> int:
        audience_ids = self._scope(audience_id, include_children)
        count = self.store.get_var(
            f"SELECT COUNT(DISTINCT user_id) FROM {self.TABLE} "
            f"WHERE audience_id IN ({placeholders(audience_ids)})",
            tuple(audience_ids),
        )
        return int(count or 0)

    def bulk_add_members(self, audience_id: int, user_ids: list[int]) -> int:
        """Returns the number of edges actually created."""
        return sum(1 for u in user_ids if self.add_member(audience_id, u) is not None)

    def bulk_remove_members(self, audience_id: int, user_ids: list[int]) -> int:
        return sum(1 for u in user_ids if self.remove_member(audience_id, u))

    def set_members(self, audience_id: int, user_ids: list[int]) -> bool:
        """
        Replace the member set of audience_id with exactly user_ids.

        Returns False when any edge could not be written; the edges that were
        written stay in place.
        """
        previous = self.get_members(audience_id)
        if self.store.delete(self.TABLE, {"audience_id": audience_id}) is None:
            return False
        for user_id in previous:
            self._forget_user(user_id)
        failed = [u for u in dict.fromkeys(user_ids) if self.add_member(audience_id, u) is None]
        if failed:
            logger.warning(
                "Could not add users %s to audience %s while replacing its members", failed, audience_id
            )
            return False
        return True

    def get_user_audiences(self, user_id: int, include_parents: bool = False) -> list[dict]:
        """
        Audiences user_id belongs to, sorted by name.

        With include_parents, every ancestor of each direct audience is added;
        the result holds each audience once.
        """
        key = self._user_key(user_id, include_parents)
        cached, found = self.cache.get(self.CACHE_GROUP, key)
        if found:
            return cached

        rows = self.store.get_results(
            f"SELECT a.* FROM audiences a INNER JOIN {self.TABLE} m ON m.audience_id = a.id "
            "WHERE m.user_id = %s ORDER BY a.name ASC",
            (user_id,),
        )
        audiences = {r["id"]: hydrate_bools(r, "allow_self_join") for r in rows}

        if include_parents:
            for audience_id in list(audiences):
                for ancestor in self.audiences.get_ancestors(audience_id):
                    audiences.setdefault(ancestor["id"], ancestor)

        result = sorted(audiences.values(), key=lambda a: (a["name"], a["id"]))
        self.cache.set(self.CACHE_GROUP, key, result)
        return result

    def delete_user_memberships(self, user_id: int) -> int:
        """Remove every membership of user_id. Returns the number removed."""
        removed = self.store.delete(self.TABLE, {"user_id": user_id})
        self._forget_user(user_id)
        return removed or 0

    # Helpers

    def _scope(self, audience_id: int, include_children: bool) -> list[int]:
        if not include_children:
            return [audience_id]
        return [audience_id] + self.audiences.get_descendant_ids(audience_id)

    def _user_key(self, user_id: int, include_parents: bool) -> str:
        return versioned_key(self.cache, self.CACHE_GROUP, f"user_aud_{user_id}_{int(include_parents)}")

    def _forget_user(self, user_id: int) -> None:
        for include_parents in (False, True):
            self.cache.delete(self.CACHE_GROUP, self._user_key(user_id, include_parents))
