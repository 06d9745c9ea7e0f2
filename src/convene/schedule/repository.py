import logging
from typing import Callable, Optional

from convene.cache import MemoryCache
from convene.context import anonymous_actor, no_admins, utcnow
from convene.values import hydrate_bools

logger = logging.getLogger(__name__)

VISIBILITIES = ("public", "private")
PERMISSION_FLAGS = ("can_book", "can_cancel_others", "can_override_conflicts")
DEFAULT_PERMISSIONS = {"can_book": True, "can_cancel_others": False, "can_override_conflicts": False}


class ScheduleRepository:
    """
    Repository for audience schedules and per-user schedule permissions.

    A schedule groups environments and decides who may book them, cancel
    other users' bookings on them, and book over a conflict. Users for whom
    is_admin() is true hold every permission.
    """

    TABLE = "audience_schedules"
    PERMISSIONS_TABLE = "audience_schedule_permissions"
    CACHE_GROUP = "audience_schedules"
    FIELDS = (
        "name",
        "description",
        "environment_label",
        "visibility",
        "future_days_limit",
        "notify_on_booking",
        "notify_on_cancellation",
        "include_ics",
        "email_template_booking",
        "email_template_cancellation",
        "status",
    )
    BOOL_FIELDS = ("notify_on_booking", "notify_on_cancellation", "include_ics")
    ORDER_COLUMNS = ("name", "status", "visibility", "created_at", "id")

    def __init__(
        self,
        store,
        cache=None,
        clock: Callable = utcnow,
        actor: Callable[[], int] = anonymous_actor,
        is_admin: Callable[[int], bool] = no_admins,
    ):
        self.store = store
        self.cache = cache if cache is not None else MemoryCache()
        self.clock = clock
        self.actor = actor
        self.is_admin = is_admin

    # Reads

    def get_by_id(self, schedule_id: int) -> Optional[dict]:
        key = f"id_{schedule_id}"
        cached, found = self.cache.get(self.CACHE_GROUP, key)
        if found:
            return cached

        row = self.store.get_row(f"SELECT * FROM {self.TABLE} WHERE id = %s", (schedule_id,))
        if row is None:
            return None
        row = hydrate_bools(row, *self.BOOL_FIELDS)
        self.cache.set(self.CACHE_GROUP, key, row)
        return row

    def get_all(
        self,
        status: str | None = None,
        visibility: str | None = None,
        order_by: str = "name",
        limit: int = 0,
        offset: int = 0,
    ) -> list[dict]:
        where, params = self._filters(status, visibility)
        if order_by not in self.ORDER_COLUMNS:
            order_by = "name"
        query = f"SELECT * FROM {self.TABLE}{where} ORDER BY {order_by} ASC, id ASC"
        if limit > 0:
            query += " LIMIT %s OFFSET %s"
            params += [limit, offset]
        rows = self.store.get_results(query, tuple(params))
        return [hydrate_bools(r, *self.BOOL_FIELDS) for r in rows]

    def count(self, status: str | None = None, visibility: str | None = None) -> int:
        where, params = self._filters(status, visibility)
        return int(self.store.get_var(f"SELECT COUNT(*) FROM {self.TABLE}{where}", tuple(params)) or 0)

    def get_by_user_access(self, user_id: int) -> list[dict]:
        """Active schedules that are public or that user_id holds a permission row on."""
        rows = self.store.get_results(
            f"SELECT s.* FROM {self.TABLE} s "
            f"LEFT JOIN {self.PERMISSIONS_TABLE} p ON p.schedule_id = s.id AND p.user_id = %s "
            "WHERE s.status = 'active' AND (s.visibility = 'public' OR p.user_id IS NOT NULL) "
            "ORDER BY s.name ASC",
            (user_id,),
        )
        return [hydrate_bools(r, *self.BOOL_FIELDS) for r in rows]

    # Writes

    def create(self, data: dict) -> Optional[int]:
        """Create a schedule. Returns the new id, or None."""
        row = {k: data[k] for k in self.FIELDS if k in data}
        if not row.get("name"):
            logger.debug("Schedule create rejected: name is required")
            return None

        if row.get("visibility") not in VISIBILITIES:
            row["visibility"] = "private"
        row["notify_on_booking"] = bool(row.get("notify_on_booking", True))
        row["notify_on_cancellation"] = bool(row.get("notify_on_cancellation", True))
        row["include_ics"] = bool(row.get("include_ics", False))
        row.setdefault("status", "active")
        row["created_by"] = self.actor()
        row["created_at"] = self.clock()
        return self.store.insert(self.TABLE, row)

    def update(self, schedule_id: int, data: dict) -> bool:
        """Update a schedule. id, created_by and created_at are never updated."""
        row = {k: data[k] for k in self.FIELDS if k in data}
        if not row:
            logger.debug("Schedule %s update skipped: no updatable fields", schedule_id)
            return False

        if "visibility" in row and row["visibility"] not in VISIBILITIES:
            row["visibility"] = "private"
        for column in self.BOOL_FIELDS:
            if column in row:
                row[column] = bool(row[column])
        row["updated_at"] = self.clock()

        if self.store.update(self.TABLE, row, {"id": schedule_id}) is None:
            return False
        self.cache.delete(self.CACHE_GROUP, f"id_{schedule_id}")
        return True

    def delete(self, schedule_id: int) -> bool:
        """Delete a schedule after its permission rows."""
        self.store.delete(self.PERMISSIONS_TABLE, {"schedule_id": schedule_id})
        result = self.store.delete(self.TABLE, {"id": schedule_id})
        self.cache.delete(self.CACHE_GROUP, f"id_{schedule_id}")
        return result is not None

    # Permissions

    def get_user_permissions(self, schedule_id: int, user_id: int) -> Optional[dict]:
        row = self.store.get_row(
            f"SELECT * FROM {self.PERMISSIONS_TABLE} WHERE schedule_id = %s AND user_id = %s",
            (schedule_id, user_id),
        )
        return hydrate_bools(row, *PERMISSION_FLAGS)

    def get_all_permissions(self, schedule_id: int) -> list[dict]:
        rows = self.store.get_results(
            f"SELECT * FROM {self.PERMISSIONS_TABLE} WHERE schedule_id = %s ORDER BY user_id",
            (schedule_id,),
        )
        return [hydrate_bools(r, *PERMISSION_FLAGS) for r in rows]

    def set_user_permissions(self, schedule_id: int, user_id: int, flags: dict) -> bool:
        """
        Grant flags to user_id on schedule_id.

        A new permission row takes DEFAULT_PERMISSIONS for any flag not
        given; an existing row only changes the flags given.
        """
        existing = self.get_user_permissions(schedule_id, user_id)
        if existing is not None:
            row = {f: bool(flags[f]) for f in PERMISSION_FLAGS if f in flags}
            if not row:
                return True
            return self.store.update(self.PERMISSIONS_TABLE, row, {"id": existing["id"]}) is not None

        row = {f: bool(flags.get(f, DEFAULT_PERMISSIONS[f])) for f in PERMISSION_FLAGS}
        row.update(schedule_id=schedule_id, user_id=user_id, created_at=self.clock())
        return self.store.insert(self.PERMISSIONS_TABLE, row) is not None

    def remove_user_permissions(self, schedule_id: int, user_id: int) -> bool:
        result = self.store.delete(
            self.PERMISSIONS_TABLE, {"schedule_id": schedule_id, "user_id": user_id}
        )
        return result is not None

    def delete_user_permissions(self, user_id: int) -> int:
        """Remove user_id from every schedule. Returns the number of rows removed."""
        return self.store.delete(self.PERMISSIONS_TABLE, {"user_id": user_id}) or 0

    def user_can_book(self, schedule_id: int, user_id: int) -> bool:
        if self.is_admin(user_id):
            return True
        schedule = self.get_by_id(schedule_id)
        if schedule is None or schedule["status"] != "active":
            return False
        return self._has_flag(schedule_id, user_id, "can_book")

    def user_can_cancel_others(self, schedule_id: int, user_id: int) -> bool:
        if self.is_admin(user_id):
            return True
        return self._has_flag(schedule_id, user_id, "can_cancel_others")

    def user_can_override_conflicts(self, schedule_id: int, user_id: int) -> bool:
        if self.is_admin(user_id):
            return True
        return self._has_flag(schedule_id, user_id, "can_override_conflicts")

    def get_environment_label(self, schedule, singular: bool = False) -> str:
        """The schedule's own label for its environments, else the default one."""
        if isinstance(schedule, int):
            schedule = self.get_by_id(schedule)
        label = schedule.get("environment_label") if schedule else None
        return label or ("Environment" if singular else "Environments")

    # Helpers

    def _has_flag(self, schedule_id: int, user_id: int, flag: str) -> bool:
        permissions = self.get_user_permissions(schedule_id, user_id)
        return bool(permissions and permissions[flag])

    @staticmethod
    def _filters(status, visibility) -> tuple[str, list]:
        clauses, params = [], []
        if status:
            clauses.append("status = %s")
            params.append(status)
        if visibility:
            clauses.append("visibility = %s")
            params.append(visibility)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, params
