"""
Buffered activity log.

Events are queued in memory and written to the activity_log table in one
pass when the buffer fills or on flush(). Writing is fire-and-forget: a
failed flush is reported through logging and the events are dropped.
"""

import json
import logging
from typing import Callable

from convene.config import config
from convene.context import utcnow

logger = logging.getLogger(__name__)

LEVELS = ("info", "warning", "error", "debug")


class ActivityLog:
    TABLE = "activity_log"

    def __init__(
        self,
        store,
        clock: Callable = utcnow,
        enabled: bool | None = None,
        buffer_size: int | None = None,
    ):
        self.store = store
        self.clock = clock
        self.enabled = config.activity_log_enabled if enabled is None else enabled
        self.buffer_size = buffer_size or config.activity_log_buffer_size
        self.buffer: list[dict] = []

    def log(
        self,
        action: str,
        level: str = "info",
        user_id: int | None = None,
        context: dict | None = None,
        object_type: str | None = None,
        object_id: int | None = None,
    ) -> None:
        if not self.enabled:
            return
        if level not in LEVELS:
            level = "info"

        self.buffer.append(
            {
                "level": level,
                "action": action,
                "user_id": user_id,
                "object_type": object_type,
                "object_id": object_id,
                "context": json.dumps(context, default=str) if context else None,
                "created_at": self.clock(),
            }
        )
        if len(self.buffer) >= self.buffer_size:
            self.flush()

    def flush(self) -> int:
        """Write buffered events. Returns the number written."""
        events, self.buffer = self.buffer, []
        written = 0
        for event in events:
            try:
                if self.store.insert(self.TABLE, event) is not None:
                    written += 1
            except Exception:
                logger.exception("Activity log flush failed for %s", event["action"])
        if written < len(events):
            logger.warning("Dropped %d activity event(s)", len(events) - written)
        return written

    def disable(self) -> None:
        self.enabled = False

    def enable(self) -> None:
        self.enabled = True

    def get_recent(self, limit: int = 50, user_id: int | None = None) -> list[dict]:
        query = f"SELECT * FROM {self.TABLE}"
        params = []
        if user_id is not None:
            query += " WHERE user_id = %s"
            params.append(user_id)
        query += " ORDER BY id DESC LIMIT %s"
        params.append(limit)
        return self.store.get_results(query, tuple(params))
