"""
Pytest configuration and shared fixtures.

Tests are co-located with implementation files using the *_test.py suffix.
This file provides fixtures available to all tests in the package.

Repository tests run against SqliteStore, an in-memory implementation of the
Store contract, so the SQL the repositories issue is executed for real
without a PostgreSQL server. PostgresStore itself is covered in db_test.py.
"""

import os

# Set environment BEFORE importing any app modules
os.environ["CONVENE_ENV"] = "test"

import logging
import re
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime, time, timezone
from unittest.mock import MagicMock

import pytest

from convene.app import create_app
from convene.cache import MemoryCache
from convene.config import Config

logger = logging.getLogger(__name__)

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)  # a Monday
ACTOR_ID = 7

# Weekday hours used by the sample environment
OFFICE_HOURS = {
    "mon": {"start": "08:00", "end": "18:00", "closed": False},
    "tue": {"start": "08:00", "end": "18:00", "closed": False},
    "wed": {"start": "08:00", "end": "18:00", "closed": False},
    "thu": {"start": "08:00", "end": "18:00", "closed": False},
    "fri": {"start": "08:00", "end": "18:00", "closed": False},
    "sat": {"closed": True},
    "sun": {"closed": True},
}

SQLITE_SCHEMA = """
CREATE TABLE audiences (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    description TEXT,
    color TEXT NOT NULL DEFAULT '#3788d8',
    parent_id INTEGER,
    status TEXT NOT NULL DEFAULT 'active',
    allow_self_join INTEGER NOT NULL DEFAULT 0,
    created_by INTEGER NOT NULL DEFAULT 0,
    created_at TEXT,
    updated_at TEXT
);
CREATE TABLE audience_members (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    audience_id INTEGER NOT NULL,
    user_id INTEGER NOT NULL,
    created_at TEXT,
    UNIQUE (audience_id, user_id)
);
CREATE TABLE custom_fields (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    audience_id INTEGER NOT NULL,
    field_key TEXT NOT NULL,
    field_label TEXT NOT NULL,
    field_type TEXT NOT NULL DEFAULT 'text',
    field_options TEXT,
    validation_rules TEXT,
    is_required INTEGER NOT NULL DEFAULT 0,
    sort_order INTEGER NOT NULL DEFAULT 0,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT,
    updated_at TEXT,
    UNIQUE (audience_id, field_key)
);
CREATE TABLE user_field_data (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL UNIQUE,
    data TEXT NOT NULL DEFAULT '{}',
    updated_at TEXT
);
CREATE TABLE environments (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    schedule_id INTEGER,
    name TEXT NOT NULL,
    description TEXT,
    capacity INTEGER NOT NULL DEFAULT 1,
    working_hours TEXT,
    status TEXT NOT NULL DEFAULT 'active',
    created_at TEXT,
    updated_at TEXT
);
CREATE TABLE environment_holidays (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    environment_id INTEGER NOT NULL,
    holiday_date TEXT NOT NULL,
    description TEXT,
    UNIQUE (environment_id, holiday_date)
);
CREATE TABLE audience_bookings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    environment_id INTEGER NOT NULL,
    booking_date TEXT NOT NULL,
    start_time TEXT NOT NULL,
    end_time TEXT NOT NULL,
    description TEXT NOT NULL,
    booking_type TEXT NOT NULL DEFAULT 'audience',
    is_all_day INTEGER NOT NULL DEFAULT 0,
    status TEXT NOT NULL DEFAULT 'active',
    created_by INTEGER NOT NULL DEFAULT 0,
    created_at TEXT,
    updated_at TEXT,
    cancelled_by INTEGER,
    cancelled_at TEXT,
    cancellation_reason TEXT
);
CREATE TABLE booking_audiences (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    booking_id INTEGER NOT NULL,
    audience_id INTEGER NOT NULL,
    UNIQUE (booking_id, audience_id)
);
CREATE TABLE booking_users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    booking_id INTEGER NOT NULL,
    user_id INTEGER NOT NULL,
    UNIQUE (booking_id, user_id)
);
CREATE TABLE appointments (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    calendar_id INTEGER NOT NULL,
    user_id INTEGER,
    appointment_date TEXT NOT NULL,
    start_time TEXT NOT NULL,
    end_time TEXT,
    status TEXT NOT NULL DEFAULT 'pending',
    name TEXT,
    email TEXT,
    phone TEXT,
    notes TEXT,
    confirmation_token TEXT,
    validation_code TEXT,
    created_at TEXT,
    updated_at TEXT,
    approved_by INTEGER,
    approved_at TEXT,
    cancelled_by INTEGER,
    cancelled_at TEXT,
    cancellation_reason TEXT,
    completed_at TEXT,
    reminder_sent_at TEXT
);
CREATE TABLE audience_schedules (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    description TEXT,
    environment_label TEXT,
    visibility TEXT NOT NULL DEFAULT 'private',
    future_days_limit INTEGER,
    notify_on_booking INTEGER NOT NULL DEFAULT 1,
    notify_on_cancellation INTEGER NOT NULL DEFAULT 1,
    include_ics INTEGER NOT NULL DEFAULT 0,
    email_template_booking TEXT,
    email_template_cancellation TEXT,
    status TEXT NOT NULL DEFAULT 'active',
    created_by INTEGER NOT NULL DEFAULT 0,
    created_at TEXT,
    updated_at TEXT
);
CREATE TABLE audience_schedule_permissions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    schedule_id INTEGER NOT NULL,
    user_id INTEGER NOT NULL,
    can_book INTEGER NOT NULL DEFAULT 1,
    can_cancel_others INTEGER NOT NULL DEFAULT 0,
    can_override_conflicts INTEGER NOT NULL DEFAULT 0,
    created_at TEXT,
    UNIQUE (schedule_id, user_id)
);
CREATE TABLE reregistrations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    audience_id INTEGER NOT NULL,
    start_date TEXT NOT NULL,
    end_date TEXT NOT NULL,
    auto_approve INTEGER NOT NULL DEFAULT 0,
    email_invitation_enabled INTEGER NOT NULL DEFAULT 0,
    email_reminder_enabled INTEGER NOT NULL DEFAULT 0,
    email_confirmation_enabled INTEGER NOT NULL DEFAULT 0,
    reminder_days INTEGER NOT NULL DEFAULT 7,
    status TEXT NOT NULL DEFAULT 'draft',
    created_by INTEGER NOT NULL DEFAULT 0,
    created_at TEXT,
    updated_at TEXT
);
CREATE TABLE reregistration_submissions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    reregistration_id INTEGER NOT NULL,
    user_id INTEGER NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    data TEXT,
    submitted_at TEXT,
    created_at TEXT,
    updated_at TEXT,
    UNIQUE (reregistration_id, user_id)
);
CREATE TABLE activity_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    level TEXT NOT NULL DEFAULT 'info',
    action TEXT NOT NULL,
    user_id INTEGER,
    object_type TEXT,
    object_id INTEGER,
    context TEXT,
    created_at TEXT
);
"""

# =============================================================================
# SQLite Store
# =============================================================================


class SqliteStore:
    """The Store contract over an in-memory SQLite database."""

    def __init__(self):
        self.conn = sqlite3.connect(":memory:", isolation_level=None)
        self.conn.row_factory = sqlite3.Row
        self.conn.executescript(SQLITE_SCHEMA)

    def close(self) -> None:
        self.conn.close()

    @staticmethod
    def _sql(query: str) -> str:
        query = re.sub(r"\s+FOR UPDATE\b", "", query)
        return query.replace("%s", "?")

    @staticmethod
    def _params(params) -> tuple:
        return tuple(
            p.isoformat() if isinstance(p, (date, time, datetime)) else p for p in params or ()
        )

    def _execute(self, query: str, params=()) -> sqlite3.Cursor:
        return self.conn.execute(self._sql(query), self._params(params))

    def get_row(self, query, params=()):
        row = self._execute(query, params).fetchone()
        return dict(row) if row is not None else None

    def get_results(self, query, params=()):
        return [dict(r) for r in self._execute(query, params).fetchall()]

    def get_col(self, query, params=()):
        return [r[0] for r in self._execute(query, params).fetchall()]

    def get_var(self, query, params=()):
        row = self._execute(query, params).fetchone()
        return row[0] if row is not None else None

    def insert(self, table, data):
        columns = ", ".join(data)
        marks = ", ".join(["%s"] * len(data))
        try:
            cur = self._execute(f"INSERT INTO {table} ({columns}) VALUES ({marks})", tuple(data.values()))
        except sqlite3.Error:
            logger.exception("Write to %s failed", table)
            return None
        return cur.lastrowid

    def update(self, table, data, where):
        assignments = ", ".join(f"{c} = %s" for c in data)
        conditions = " AND ".join(f"{c} = %s" for c in where)
        try:
            cur = self._execute(
                f"UPDATE {table} SET {assignments} WHERE {conditions}",
                tuple(data.values()) + tuple(where.values()),
            )
        except sqlite3.Error:
            logger.exception("Write to %s failed", table)
            return None
        return cur.rowcount

    def delete(self, table, where):
        conditions = " AND ".join(f"{c} = %s" for c in where)
        try:
            cur = self._execute(f"DELETE FROM {table} WHERE {conditions}", tuple(where.values()))
        except sqlite3.Error:
            logger.exception("Write to %s failed", table)
            return None
        return cur.rowcount

    def run(self, query, params=()):
        return self._execute(query, params).rowcount

    @contextmanager
    def transaction(self):
        if self.conn.in_transaction:
            yield self
            return
        self.conn.execute("BEGIN")
        try:
            yield self
        except Exception:
            self.conn.execute("ROLLBACK")
            raise
        else:
            self.conn.execute("COMMIT")


# =============================================================================
# Store Fixtures
# =============================================================================


@pytest.fixture
def store():
    """Provide an empty in-memory Store."""
    store = SqliteStore()
    yield store
    store.close()


@pytest.fixture
def spy_store(store):
    """The Store wrapped in a mock that records every call and still executes it."""
    return MagicMock(wraps=store)


@pytest.fixture
def cache():
    return MemoryCache()


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def actor():
    return lambda: ACTOR_ID


@pytest.fixture
def test_config() -> Config:
    return Config(
        environment="test",
        database_url="postgresql://localhost:5432/convene_test",
        redis_url="redis://localhost:6379/15",
        cache_backend="memory",
        activity_log_buffer_size=5,
    )


# =============================================================================
# Repository Fixtures
# =============================================================================


@pytest.fixture
def app(store, cache, clock, actor, test_config):
    """Provide a fully wired App on the in-memory Store."""
    return create_app(config=test_config, store=store, cache=cache, clock=clock, actor=actor)


@pytest.fixture
def audience_repo(app):
    return app.audiences


@pytest.fixture
def membership_repo(app):
    return app.memberships


@pytest.fixture
def custom_field_repo(app):
    return app.custom_fields


@pytest.fixture
def user_data_repo(app):
    return app.user_field_data


@pytest.fixture
def environment_repo(app):
    return app.environments


@pytest.fixture
def booking_repo(app):
    return app.bookings


@pytest.fixture
def conflict_detector(app):
    return app.conflicts


@pytest.fixture
def appointment_repo(app):
    return app.appointments


@pytest.fixture
def schedule_repo(app):
    return app.schedules


@pytest.fixture
def reregistration_repo(app):
    return app.reregistrations


# =============================================================================
# Seed Data Fixtures
# =============================================================================


@pytest.fixture
def audience_tree(audience_repo) -> dict:
    """
    Create a three level tree plus an unrelated root.

        Engineering
          Backend
            Payments
        Sales
    """
    root = audience_repo.create({"name": "Engineering"})
    mid = audience_repo.create({"name": "Backend", "parent_id": root})
    leaf = audience_repo.create({"name": "Payments", "parent_id": mid})
    other = audience_repo.create({"name": "Sales"})
    return {"root": root, "mid": mid, "leaf": leaf, "other": other}


@pytest.fixture
def sample_schedule(schedule_repo) -> int:
    """Create an active private schedule the acting user may book on."""
    schedule_id = schedule_repo.create({"name": "Labs", "environment_label": "Lab"})
    schedule_repo.set_user_permissions(schedule_id, ACTOR_ID, {"can_book": True})
    return schedule_id


@pytest.fixture
def sample_environment(environment_repo, sample_schedule) -> int:
    """Create an environment on the sample schedule, open 08:00-18:00 on weekdays."""
    return environment_repo.create(
        {"name": "Lab 1", "schedule_id": sample_schedule, "working_hours": OFFICE_HOURS}
    )


@pytest.fixture
def sample_booking(booking_repo, sample_environment, audience_tree) -> int:
    """Create an active 09:00-10:00 booking on 2025-03-10 for the Backend audience."""
    return booking_repo.create(
        {
            "environment_id": sample_environment,
            "booking_date": "2025-03-10",
            "start_time": "09:00",
            "end_time": "10:00",
            "description": "Sprint planning",
            "audience_ids": [audience_tree["mid"]],
            "user_ids": [501],
        }
    )
