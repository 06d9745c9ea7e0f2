import logging
import re
from typing import Callable, Optional

from convene.cache import MemoryCache
from convene.context import utcnow
from convene.values import encode_json, hydrate_bools

logger = logging.getLogger(__name__)

FIELD_TYPES = (
    "text",
    "number",
    "date",
    "select",
    "dependent_select",
    "checkbox",
    "textarea",
    "working_hours",
)

VALIDATION_FORMATS = ("cpf", "email", "phone", "rf", "custom_regex")


def slugify_key(label: str) -> str:
    """'Phone Number (mobile)' -> 'phone_number_mobile'"""
    key = re.sub(r"[^a-z0-9]+", "_", (label or "").lower()).strip("_")
    return key or "field"


class CustomFieldRepository:
    """
    Repository for custom fields attached to audiences.

    A field defined on an audience applies to every audience below it; reads
    that resolve inheritance walk the ancestor chain root first.
    """

    TABLE = "custom_fields"
    CACHE_GROUP = "custom_fields"
    FIELDS = (
        "audience_id",
        "field_key",
        "field_label",
        "field_type",
        "field_options",
        "validation_rules",
        "is_required",
        "sort_order",
        "is_active",
    )
    BOOL_FIELDS = ("is_required", "is_active")

    def __init__(self, store, audiences, memberships, cache=None, clock: Callable = utcnow):
        self.store = store
        self.audiences = audiences
        self.memberships = memberships
        self.cache = cache if cache is not None else MemoryCache()
        self.clock = clock

    # Reads

    def get_by_id(self, field_id: int) -> Optional[dict]:
        key = f"id_{field_id}"
        cached, found = self.cache.get(self.CACHE_GROUP, key)
        if found:
            return cached

        row = self.store.get_row(f"SELECT * FROM {self.TABLE} WHERE id = %s", (field_id,))
        if row is None:
            return None
        row = hydrate_bools(row, *self.BOOL_FIELDS)
        self.cache.set(self.CACHE_GROUP, key, row)
        return row

    def get_by_audience(self, audience_id: int, active_only: bool = True) -> list[dict]:
        """Fields defined directly on audience_id, in display order."""
        query = f"SELECT * FROM {self.TABLE} WHERE audience_id = %s"
        params = [audience_id]
        if active_only:
            query += " AND is_active = %s"
            params.append(True)
        query += " ORDER BY sort_order ASC, id ASC"
        rows = self.store.get_results(query, tuple(params))
        return [hydrate_bools(r, *self.BOOL_FIELDS) for r in rows]

    def count_by_audience(self, audience_id: int, active_only: bool = False) -> int:
        query = f"SELECT COUNT(*) FROM {self.TABLE} WHERE audience_id = %s"
        params = [audience_id]
        if active_only:
            query += " AND is_active = %s"
            params.append(True)
        return int(self.store.get_var(query, tuple(params)) or 0)

    def get_by_audience_with_ancestors(self, audience_id: int) -> list[dict]:
        """
        Active fields that apply to audience_id, root audience first.

        Each field is tagged with source_audience_id and source_audience_name,
        the audience that defines it.
        """
        fields = []
        for audience in self.audiences.get_ancestors(audience_id):
            for field in self.get_by_audience(audience["id"]):
                field["source_audience_id"] = audience["id"]
                field["source_audience_name"] = audience["name"]
                fields.append(field)
        return fields

    def get_all_for_user(self, user_id: int) -> list[dict]:
        """Fields that apply to user_id through any of their audiences, each once."""
        fields = {}
        for audience in self.memberships.get_user_audiences(user_id):
            for field in self.get_by_audience_with_ancestors(audience["id"]):
                fields.setdefault(field["id"], field)
        return list(fields.values())

    # Writes

    def create(self, data: dict) -> Optional[int]:
        """Create a field. Returns the new id, or None."""
        row = {k: data[k] for k in self.FIELDS if k in data}
        if not row.get("audience_id") or not row.get("field_label"):
            logger.debug("Custom field create rejected: audience_id and field_label are required")
            return None

        if not row.get("field_key"):
            row["field_key"] = self._unique_key(row["audience_id"], slugify_key(row["field_label"]))
        row["field_type"] = self._field_type(row.get("field_type"))
        row["field_options"] = encode_json(row.get("field_options"))
        row["validation_rules"] = encode_json(row.get("validation_rules"))
        row["is_required"] = bool(row.get("is_required", False))
        row["is_active"] = bool(row.get("is_active", True))
        row["sort_order"] = int(row.get("sort_order") or 0)
        row["created_at"] = self.clock()

        return self.store.insert(self.TABLE, row)

    def update(self, field_id: int, data: dict) -> bool:
        """
        Update a field. id and created_at are never updated.

        A blank field_key is derived from the label again, unique within the
        field's audience.
        """
        row = {k: data[k] for k in self.FIELDS if k in data}
        if not row:
            logger.debug("Custom field %s update skipped: no updatable fields", field_id)
            return False

        if "field_key" in row and not row["field_key"]:
            current = self.get_by_id(field_id)
            if current is None:
                return False
            label = row.get("field_label") or current["field_label"]
            audience_id = row.get("audience_id") or current["audience_id"]
            row["field_key"] = self._unique_key(audience_id, slugify_key(label), exclude_id=field_id)

        if "field_type" in row:
            row["field_type"] = self._field_type(row["field_type"])
        for column in ("field_options", "validation_rules"):
            if column in row:
                row[column] = encode_json(row[column])
        for column in self.BOOL_FIELDS:
            if column in row:
                row[column] = bool(row[column])
        row["updated_at"] = self.clock()

        if self.store.update(self.TABLE, row, {"id": field_id}) is None:
            return False
        self.cache.delete(self.CACHE_GROUP, f"id_{field_id}")
        return True

    def delete(self, field_id: int) -> bool:
        result = self.store.delete(self.TABLE, {"id": field_id})
        self.cache.delete(self.CACHE_GROUP, f"id_{field_id}")
        return result is not None

    def deactivate(self, field_id: int) -> bool:
        return self.update(field_id, {"is_active": False})

    def reactivate(self, field_id: int) -> bool:
        return self.update(field_id, {"is_active": True})

    def reorder(self, ordered_ids: list[int]) -> bool:
        """Set sort_order to each field's position in ordered_ids."""
        for position, field_id in enumerate(ordered_ids):
            self.store.update(self.TABLE, {"sort_order": position}, {"id": field_id})
            self.cache.delete(self.CACHE_GROUP, f"id_{field_id}")
        return True

    # Helpers

    @staticmethod
    def _field_type(value) -> str:
        return value if value in FIELD_TYPES else "text"

    def _unique_key(self, audience_id: int, base: str, exclude_id: int = 0) -> str:
        key, suffix = base, 2
        while self.store.get_var(
            f"SELECT COUNT(*) FROM {self.TABLE} "
            "WHERE audience_id = %s AND field_key = %s AND id <> %s",
            (audience_id, key, exclude_id),
        ):
            key = f"{base}_{suffix}"
            suffix += 1
        return key
