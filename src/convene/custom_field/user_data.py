import json
from typing import Any, Callable

from convene.context import utcnow
from convene.values import decode_json


def field_data_key(field_id: int) -> str:
    return f"field_{field_id}"


class UserFieldDataRepository:
    """
    Per-user custom field values, one JSON object per user keyed by
    ``field_<id>``. Values are stored as given; no type validation.
    """

    TABLE = "user_field_data"

    def __init__(self, store, clock: Callable = utcnow):
        self.store = store
        self.clock = clock

    def get_user_data(self, user_id: int) -> dict:
        raw = self.store.get_var(f"SELECT data FROM {self.TABLE} WHERE user_id = %s", (user_id,))
        data = decode_json(raw, {})
        return data if isinstance(data, dict) else {}

    def save_user_data(self, user_id: int, values: dict) -> bool:
        """Merge values into the user's stored data."""
        exists = self.store.get_var(
            f"SELECT COUNT(*) FROM {self.TABLE} WHERE user_id = %s", (user_id,)
        )
        data = self.get_user_data(user_id)
        data.update(values)
        row = {"data": json.dumps(data), "updated_at": self.clock()}

        if exists:
            result = self.store.update(self.TABLE, row, {"user_id": user_id})
        else:
            result = self.store.insert(self.TABLE, {"user_id": user_id, **row})
        return result is not None

    def get_user_field_value(self, user_id: int, field_id: int) -> Any:
        return self.get_user_data(user_id).get(field_data_key(field_id))

    def set_user_field_value(self, user_id: int, field_id: int, value: Any) -> bool:
        return self.save_user_data(user_id, {field_data_key(field_id): value})

    def delete_user_data(self, user_id: int) -> bool:
        return self.store.delete(self.TABLE, {"user_id": user_id}) is not None
