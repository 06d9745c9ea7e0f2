import logging
from typing import Callable, Optional

from convene.cache import MemoryCache, bump_version, versioned_key
from convene.config import config
from convene.context import anonymous_actor, utcnow
from convene.values import hydrate_bools, placeholders

logger = logging.getLogger(__name__)

ROOT = 0


class AudienceRepository:
    """
    Repository for the audience tree.
    Encapsulates all SQL for the audiences table and the recursive
    operations over it (ancestor chains, descendant sets, cascading delete).
    """

    TABLE = "audiences"
    MEMBERS_TABLE = "audience_members"
    FIELDS_TABLE = "custom_fields"
    CACHE_GROUP = "audiences"
    FIELDS_CACHE_GROUP = "custom_fields"
    FIELDS = ("name", "description", "color", "parent_id", "status", "allow_self_join")

    def __init__(
        self,
        store,
        cache=None,
        clock: Callable = utcnow,
        actor: Callable[[], int] = anonymous_actor,
        max_depth: int | None = None,
    ):
        self.store = store
        self.cache = cache if cache is not None else MemoryCache()
        self.clock = clock
        self.actor = actor
        self.max_depth = max_depth or config.max_hierarchy_depth

    # Reads

    def get_by_id(self, audience_id: int) -> Optional[dict]:
        """Get an audience by ID, cache first."""
        key = f"id_{audience_id}"
        cached, found = self.cache.get(self.CACHE_GROUP, key)
        if found:
            return cached

        row = self.store.get_row(f"SELECT * FROM {self.TABLE} WHERE id = %s", (audience_id,))
        if row is None:
            return None

        row = hydrate_bools(row, "allow_self_join")
        self.cache.set(self.CACHE_GROUP, key, row)
        return row

    def get_all(
        self,
        parent_id: int | None = None,
        status: str | None = None,
        limit: int = 0,
        offset: int = 0,
    ) -> list[dict]:
        """
        List audiences ordered by name.

        Args:
            parent_id: ROOT (0) for top-level audiences, an id for its
                direct children, None for no filter
            status: Optional status filter
            limit: Page size, 0 for no limit
            offset: Rows to skip when limit is set
        """
        where, params = self._filters(parent_id, status)
        query = f"SELECT * FROM {self.TABLE}{where} ORDER BY name ASC"
        if limit > 0:
            query += " LIMIT %s OFFSET %s"
            params += [limit, offset]
        rows = self.store.get_results(query, tuple(params))
        return [hydrate_bools(r, "allow_self_join") for r in rows]

    def count(self, parent_id: int | None = None, status: str | None = None) -> int:
        key = versioned_key(self.cache, self.CACHE_GROUP, f"count_{parent_id}_{status}")
        cached, found = self.cache.get(self.CACHE_GROUP, key)
        if found:
            return cached

        where, params = self._filters(parent_id, status)
        total = int(self.store.get_var(f"SELECT COUNT(*) FROM {self.TABLE}{where}", tuple(params)) or 0)
        self.cache.set(self.CACHE_GROUP, key, total)
        return total

    def get_parents(self, status: str | None = None) -> list[dict]:
        """Top-level audiences."""
        return self.get_all(parent_id=ROOT, status=status)

    def get_children(self, parent_id: int, status: str | None = None) -> list[dict]:
        return self.get_all(parent_id=parent_id, status=status)

    def get_hierarchical(self, status: str | None = None) -> list[dict]:
        """Top-level audiences, each with its direct children under 'children'."""
        roots = self.get_parents(status)
        for root in roots:
            root["children"] = self.get_children(root["id"], status)
        return roots

    def get_ancestors(self, audience_id: int) -> list[dict]:
        """
        Chain from the root down to audience_id, inclusive.

        A parent reference that loops back or runs deeper than max_depth ends
        the walk; the chain collected so far is returned.
        """
        chain = []
        visited = set()
        current = self.get_by_id(audience_id)
        while current is not None:
            if current["id"] in visited or len(chain) >= self.max_depth:
                logger.warning(
                    "Ancestor walk from audience %s stopped at %s", audience_id, current["id"]
                )
                break
            visited.add(current["id"])
            chain.append(current)
            if not current.get("parent_id"):
                break
            current = self.get_by_id(current["parent_id"])
        chain.reverse()
        return chain

    def get_descendant_ids(self, audience_id: int) -> list[int]:
        """All audience ids below audience_id, breadth first."""
        descendants = []
        visited = {audience_id}
        frontier = [audience_id]
        depth = 0
        while frontier and depth < self.max_depth:
            children = self.store.get_col(
                f"SELECT id FROM {self.TABLE} WHERE parent_id IN ({placeholders(frontier)}) "
                "ORDER BY id",
                tuple(frontier),
            )
            frontier = []
            for child in children:
                if child not in visited:
                    visited.add(child)
                    frontier.append(child)
            descendants.extend(frontier)
            depth += 1
        return descendants

    def search(self, term: str, limit: int = 20) -> list[dict]:
        """Case-insensitive substring match on name."""
        term = (term or "").strip().lower()
        key = versioned_key(self.cache, self.CACHE_GROUP, f"search_{term}_{limit}")
        cached, found = self.cache.get(self.CACHE_GROUP, key)
        if found:
            return cached

        escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        rows = self.store.get_results(
            f"SELECT * FROM {self.TABLE} WHERE LOWER(name) LIKE %s ESCAPE '\\' "
            "ORDER BY name ASC LIMIT %s",
            (f"%{escaped}%", limit),
        )
        rows = [hydrate_bools(r, "allow_self_join") for r in rows]
        self.cache.set(self.CACHE_GROUP, key, rows)
        return rows

    # Writes

    def create(self, data: dict) -> Optional[int]:
        """Create an audience. Returns the new id, or None."""
        row = {k: data[k] for k in self.FIELDS if k in data}
        if not row.get("name"):
            logger.debug("Audience create rejected: name is required")
            return None

        row.setdefault("color", config.default_audience_color)
        row.setdefault("status", "active")
        row["parent_id"] = row.get("parent_id") or None
        row["allow_self_join"] = bool(row.get("allow_self_join", False))
        row["created_by"] = self.actor()
        row["created_at"] = self.clock()

        audience_id = self.store.insert(self.TABLE, row)
        if audience_id is None:
            return None

        self._invalidate_listings()
        return audience_id

    def update(self, audience_id: int, data: dict) -> bool:
        """
        Update an audience.

        id, created_by and created_at are never updated. Returns False when
        nothing updatable remains, when the new parent would create a cycle,
        or when the write fails.
        """
        row = {k: data[k] for k in self.FIELDS if k in data}
        if not row:
            logger.debug("Audience %s update skipped: no updatable fields", audience_id)
            return False

        if "parent_id" in row:
            row["parent_id"] = row["parent_id"] or None
            if row["parent_id"] is not None and (
                row["parent_id"] == audience_id
                or row["parent_id"] in self.get_descendant_ids(audience_id)
            ):
                logger.warning(
                    "Audience %s update rejected: parent %s would create a cycle",
                    audience_id,
                    row["parent_id"],
                )
                return False
        if "allow_self_join" in row:
            row["allow_self_join"] = bool(row["allow_self_join"])
        row["updated_at"] = self.clock()

        if self.store.update(self.TABLE, row, {"id": audience_id}) is None:
            return False

        self.cache.delete(self.CACHE_GROUP, f"id_{audience_id}")
        self._invalidate_listings()
        return True

    def delete(self, audience_id: int) -> bool:
        """
        Delete an audience and everything below it.

        Children go first; for each node its custom fields and memberships
        are removed before the row itself. Returns False if any audience row
        delete fails.
        """
        ok = self._delete_subtree(audience_id, set())
        self._invalidate_listings()
        return ok

    def _delete_subtree(self, audience_id: int, visited: set) -> bool:
        visited.add(audience_id)
        ok = True
        children = self.store.get_col(
            f"SELECT id FROM {self.TABLE} WHERE parent_id = %s ORDER BY id", (audience_id,)
        )
        for child in children:
            if child not in visited:
                ok = self._delete_subtree(child, visited) and ok

        field_ids = self.store.get_col(
            f"SELECT id FROM {self.FIELDS_TABLE} WHERE audience_id = %s", (audience_id,)
        )
        for field_id in field_ids:
            self.store.delete(self.FIELDS_TABLE, {"id": field_id})
            self.cache.delete(self.FIELDS_CACHE_GROUP, f"id_{field_id}")
        self.store.delete(self.MEMBERS_TABLE, {"audience_id": audience_id})
        if self.store.delete(self.TABLE, {"id": audience_id}) is None:
            logger.error("Failed to delete audience %s", audience_id)
            ok = False
        self.cache.delete(self.CACHE_GROUP, f"id_{audience_id}")
        return ok

    def cascade_self_join(self, parent_id: int, allow_self_join: bool) -> int:
        """Copy allow_self_join onto the direct children of parent_id."""
        children = self.store.get_col(
            f"SELECT id FROM {self.TABLE} WHERE parent_id = %s", (parent_id,)
        )
        affected = self.store.run(
            f"UPDATE {self.TABLE} SET allow_self_join = %s WHERE parent_id = %s",
            (bool(allow_self_join), parent_id),
        )
        for child in children:
            self.cache.delete(self.CACHE_GROUP, f"id_{child}")
        self._invalidate_listings()
        return affected

    # Helpers

    def _filters(self, parent_id, status) -> tuple[str, list]:
        clauses, params = [], []
        if parent_id == ROOT:
            clauses.append("parent_id IS NULL")
        elif parent_id is not None:
            clauses.append("parent_id = %s")
            params.append(parent_id)
        if status:
            clauses.append("status = %s")
            params.append(status)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, params

    def _invalidate_listings(self) -> None:
        bump_version(self.cache, self.CACHE_GROUP)
        # Per-user audience lists and booking records embed audience rows.
        bump_version(self.cache, "user_audiences")
        bump_version(self.cache, "audience_bookings")
