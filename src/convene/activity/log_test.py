"""
Tests for the buffered ActivityLog.

Run with: CONVENE_ENV=test pytest src/convene/activity/log_test.py -v
"""

import json

import pytest

from convene.activity.log import ActivityLog
from convene.conftest import NOW


@pytest.fixture
def activity(store, clock):
    return ActivityLog(store, clock, enabled=True, buffer_size=3)


class TestLog:
    """Tests for ActivityLog.log()"""

    def test_buffers_until_full(self, activity, store):
        activity.log("audience_created", user_id=7)
        activity.log("audience_updated", user_id=7)

        assert len(activity.buffer) == 2
        assert store.get_var("SELECT COUNT(*) FROM activity_log") == 0

    def test_flushes_when_full(self, activity, store):
        for action in ("a", "b", "c"):
            activity.log(action)

        assert activity.buffer == []
        assert store.get_var("SELECT COUNT(*) FROM activity_log") == 3

    @pytest.mark.parametrize(
        "level,expected", [("warning", "warning"), ("debug", "debug"), ("fatal", "info")]
    )
    def test_levels(self, activity, level, expected):
        activity.log("x", level=level)

        assert activity.buffer[0]["level"] == expected

    def test_event_shape(self, activity):
        activity.log(
            "booking_created", user_id=7, object_type="booking", object_id=12, context={"day": NOW.date()}
        )

        event = activity.buffer[0]
        assert event["object_type"] == "booking"
        assert event["object_id"] == 12
        assert json.loads(event["context"]) == {"day": "2025-03-10"}
        assert event["created_at"] == NOW

    def test_disabled(self, activity):
        activity.disable()
        activity.log("ignored")

        assert activity.buffer == []

        activity.enable()
        activity.log("kept")
        assert [e["action"] for e in activity.buffer] == ["kept"]


class TestFlush:
    """Tests for ActivityLog.flush() / get_recent()"""

    def test_flush_writes_and_empties(self, activity):
        activity.log("a", user_id=1)
        activity.log("b", user_id=2)

        assert activity.flush() == 2
        assert activity.buffer == []
        assert [e["action"] for e in activity.get_recent()] == ["b", "a"]

    def test_flush_empty(self, activity):
        assert activity.flush() == 0

    def test_failed_writes_are_dropped_and_reported(self, spy_store, clock, caplog):
        activity = ActivityLog(spy_store, clock, enabled=True, buffer_size=10)
        spy_store.insert.return_value = None
        activity.log("a")
        activity.log("b")

        assert activity.flush() == 0
        assert activity.buffer == []
        assert "Dropped 2 activity event(s)" in caplog.text

    def test_store_errors_do_not_escape(self, spy_store, clock):
        activity = ActivityLog(spy_store, clock, enabled=True, buffer_size=10)
        spy_store.insert.side_effect = RuntimeError("connection reset")
        activity.log("a")

        assert activity.flush() == 0

    def test_recent_by_user(self, activity):
        activity.log("a", user_id=1)
        activity.log("b", user_id=2)
        activity.flush()

        assert [e["action"] for e in activity.get_recent(user_id=1)] == ["a"]
        assert len(activity.get_recent(limit=1)) == 1
