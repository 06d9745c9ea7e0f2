import logging
from typing import Callable, Optional

from convene.context import anonymous_actor, utcnow
from convene.values import hydrate_bools, hydrate_dates, normalize_date, placeholders

logger = logging.getLogger(__name__)

STATUSES = ("draft", "active", "expired", "closed")
OPEN_SUBMISSION_STATUSES = ("pending", "in_progress")


class ReregistrationRepository:
    """
    Repository for re-registration campaigns.

    A campaign asks the members of an audience, and of every audience below
    it, to confirm their data between start_date and end_date. A campaign on
    an ancestor applies to every audience under it.
    """

    TABLE = "reregistrations"
    SUBMISSIONS_TABLE = "reregistration_submissions"
    FIELDS = (
        "title",
        "audience_id",
        "start_date",
        "end_date",
        "auto_approve",
        "email_invitation_enabled",
        "email_reminder_enabled",
        "email_confirmation_enabled",
        "reminder_days",
        "status",
    )
    BOOL_FIELDS = (
        "auto_approve",
        "email_invitation_enabled",
        "email_reminder_enabled",
        "email_confirmation_enabled",
    )
    ORDER_COLUMNS = ("title", "start_date", "end_date", "status", "created_at")

    def __init__(
        self,
        store,
        audiences,
        memberships,
        clock: Callable = utcnow,
        actor: Callable[[], int] = anonymous_actor,
    ):
        self.store = store
        self.audiences = audiences
        self.memberships = memberships
        self.clock = clock
        self.actor = actor

    # Reads

    def get_by_id(self, reregistration_id: int) -> Optional[dict]:
        row = self.store.get_row(f"SELECT * FROM {self.TABLE} WHERE id = %s", (reregistration_id,))
        return self._hydrate(row)

    def get_all(
        self,
        audience_id: int | None = None,
        status: str | None = None,
        search: str | None = None,
        order_by: str = "created_at",
        descending: bool = True,
        limit: int = 0,
        offset: int = 0,
    ) -> list[dict]:
        """Campaigns with their audience_name and audience_color."""
        where, params = self._filters(audience_id, status, search)
        if order_by not in self.ORDER_COLUMNS:
            order_by = "created_at"
        direction = "DESC" if descending else "ASC"
        query = (
            "SELECT r.*, a.name AS audience_name, a.color AS audience_color "
            f"FROM {self.TABLE} r LEFT JOIN audiences a ON a.id = r.audience_id"
            f"{where} ORDER BY r.{order_by} {direction}, r.id {direction}"
        )
        if limit > 0:
            query += " LIMIT %s OFFSET %s"
            params += [limit, offset]
        return [self._hydrate(r) for r in self.store.get_results(query, tuple(params))]

    def count(self, audience_id: int | None = None, status: str | None = None) -> int:
        where, params = self._filters(audience_id, status, None)
        return int(
            self.store.get_var(f"SELECT COUNT(*) FROM {self.TABLE} r{where}", tuple(params)) or 0
        )

    def get_active_for_audience(self, audience_id: int) -> list[dict]:
        """Active campaigns on audience_id or on any of its ancestors, earliest start first."""
        audience_ids = [a["id"] for a in self.audiences.get_ancestors(audience_id)]
        if not audience_ids:
            return []
        rows = self.store.get_results(
            f"SELECT * FROM {self.TABLE} WHERE audience_id IN ({placeholders(audience_ids)}) "
            "AND status = 'active' ORDER BY start_date ASC, id ASC",
            tuple(audience_ids),
        )
        return [self._hydrate(r) for r in rows]

    def get_active_for_user(self, user_id: int) -> list[dict]:
        """Active campaigns reaching any audience of user_id, each once."""
        campaigns = {}
        for audience in self.memberships.get_user_audiences(user_id):
            for campaign in self.get_active_for_audience(audience["id"]):
                campaigns.setdefault(campaign["id"], campaign)
        return list(campaigns.values())

    def get_affected_audience_ids(self, audience_id: int) -> list[int]:
        return [audience_id] + self.audiences.get_descendant_ids(audience_id)

    def get_affected_user_ids(self, audience_id: int) -> list[int]:
        """Members of audience_id and of every audience below it."""
        return self.memberships.get_members(audience_id, include_children=True)

    # Writes

    def create(self, data: dict) -> Optional[int]:
        """
        Create a campaign, in draft unless a valid status is given.

        Returns the new id, or None when title, audience or dates are missing
        or end_date is before start_date.
        """
        row = {k: data[k] for k in self.FIELDS if k in data}
        if not all(row.get(k) for k in ("title", "audience_id", "start_date", "end_date")):
            logger.debug("Re-registration create rejected: title, audience and dates are required")
            return None

        row["title"] = row["title"].strip()
        row["start_date"] = normalize_date(row["start_date"])
        row["end_date"] = normalize_date(row["end_date"])
        if row["end_date"] < row["start_date"]:
            logger.debug(
                "Re-registration create rejected: end %s is before start %s",
                row["end_date"],
                row["start_date"],
            )
            return None

        for column in self.BOOL_FIELDS:
            row[column] = bool(row.get(column, False))
        row["reminder_days"] = int(row.get("reminder_days") or 7)
        if row.get("status") not in STATUSES:
            row["status"] = "draft"
        row["created_by"] = self.actor()
        row["created_at"] = self.clock()
        return self.store.insert(self.TABLE, row)

    def update(self, reregistration_id: int, data: dict) -> bool:
        """Update a campaign. Unknown columns are ignored and an unknown status is rejected."""
        row = {k: data[k] for k in self.FIELDS if k in data}
        if not row:
            return False
        if "status" in row and row["status"] not in STATUSES:
            logger.warning(
                "Re-registration %s update rejected: unknown status %r", reregistration_id, row["status"]
            )
            return False

        if "title" in row:
            row["title"] = (row["title"] or "").strip()
        for column in ("start_date", "end_date"):
            if column in row:
                row[column] = normalize_date(row[column])
        for column in self.BOOL_FIELDS:
            if column in row:
                row[column] = bool(row[column])
        row["updated_at"] = self.clock()
        return self.store.update(self.TABLE, row, {"id": reregistration_id}) is not None

    def delete(self, reregistration_id: int) -> bool:
        """Delete a campaign after its submissions."""
        self.store.delete(self.SUBMISSIONS_TABLE, {"reregistration_id": reregistration_id})
        return self.store.delete(self.TABLE, {"id": reregistration_id}) is not None

    def expire_overdue(self) -> int:
        """
        Move active campaigns whose end_date has passed to expired, along
        with their pending and in-progress submissions.

        Returns the number of campaigns expired.
        """
        now = self.clock()
        today = normalize_date(now)
        overdue = self.store.get_col(
            f"SELECT id FROM {self.TABLE} WHERE status = 'active' AND end_date < %s ORDER BY id",
            (today,),
        )

        expired = 0
        for reregistration_id in overdue:
            if self.store.update(
                self.TABLE, {"status": "expired", "updated_at": now}, {"id": reregistration_id}
            ) is None:
                continue
            self.store.run(
                f"UPDATE {self.SUBMISSIONS_TABLE} SET status = 'expired', updated_at = %s "
                f"WHERE reregistration_id = %s AND status IN ({placeholders(OPEN_SUBMISSION_STATUSES)})",
                (now, reregistration_id, *OPEN_SUBMISSION_STATUSES),
            )
            expired += 1

        if expired:
            logger.info("Expired %d overdue re-registration campaign(s)", expired)
        return expired

    # Helpers

    def _hydrate(self, row: dict | None) -> dict | None:
        row = hydrate_bools(row, *self.BOOL_FIELDS)
        return hydrate_dates(row, "start_date", "end_date")

    @staticmethod
    def _filters(audience_id, status, search) -> tuple[str, list]:
        clauses, params = [], []
        if audience_id:
            clauses.append("r.audience_id = %s")
            params.append(audience_id)
        if status:
            clauses.append("r.status = %s")
            params.append(status)
        if search:
            escaped = search.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            clauses.append("LOWER(r.title) LIKE %s ESCAPE '\\'")
            params.append(f"%{escaped.lower()}%")
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, params
