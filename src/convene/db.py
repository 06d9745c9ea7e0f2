"""
Database access for convene.

Module-level helpers open a psycopg connection per call and return rows as
dicts. PostgresStore wraps them in the Store contract the repositories use:

    get_row / get_results / get_col / get_var   reads, exceptions propagate
    insert(table, data)                          new id, or None on failure
    update(table, data, where)                   affected rows, None on failure
    delete(table, where)                         affected rows, None on failure
    run(query, params)                           affected rows
    transaction()                                context manager

Zero affected rows is a successful outcome (0), distinct from failure (None).

While a connection override is set (tests), or while the current context is
inside PostgresStore.transaction(), every helper runs on that connection and
leaves commit/rollback to whoever opened it. The transaction connection is
held in a ContextVar, so other threads and tasks keep their own connections.
"""

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Iterator, Protocol

import psycopg
from psycopg import sql
from psycopg.rows import dict_row

from convene.config import config

logger = logging.getLogger(__name__)

# =============================================================================
# Connection Override
# =============================================================================

_connection_override: psycopg.Connection | None = None


def set_connection_override(conn: psycopg.Connection) -> None:
    """Route every helper through conn until clear_connection_override()."""
    global _connection_override
    _connection_override = conn


def clear_connection_override() -> None:
    global _connection_override
    _connection_override = None


def get_connection_override() -> psycopg.Connection | None:
    return _connection_override


_transaction_connection: ContextVar[psycopg.Connection | None] = ContextVar(
    "convene_transaction_connection", default=None
)


def get_active_connection() -> psycopg.Connection | None:
    """The override connection, else the current context's transaction connection."""
    if _connection_override is not None:
        return _connection_override
    return _transaction_connection.get()


# =============================================================================
# Connection Management
# =============================================================================


@contextmanager
def get_connection(database_url: str | None = None):
    """
    Yield a connection.

    Without an active connection a fresh one is opened, committed on
    success, rolled back on error and closed. An active connection is
    yielded untouched.
    """
    active = get_active_connection()
    if active is not None:
        yield active
        return

    conn = psycopg.connect(database_url or config.database_url)
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


@contextmanager
def get_cursor(database_url: str | None = None):
    """Yield a dict_row cursor on get_connection()."""
    with get_connection(database_url) as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            yield cur


# =============================================================================
# Query Helpers
# =============================================================================


def execute(query, params: tuple = None, database_url: str | None = None) -> int:
    """Run a statement and return the affected row count."""
    with get_cursor(database_url) as cur:
        cur.execute(query, params)
        return cur.rowcount


def fetch_one(query, params: tuple = None, database_url: str | None = None) -> dict[str, Any] | None:
    with get_cursor(database_url) as cur:
        cur.execute(query, params)
        return cur.fetchone()


def fetch_all(query, params: tuple = None, database_url: str | None = None) -> list[dict[str, Any]]:
    with get_cursor(database_url) as cur:
        cur.execute(query, params)
        return cur.fetchall()


# =============================================================================
# Store
# =============================================================================


class Store(Protocol):
    def get_row(self, query: str, params: tuple = ()) -> dict | None: ...

    def get_results(self, query: str, params: tuple = ()) -> list[dict]: ...

    def get_col(self, query: str, params: tuple = ()) -> list: ...

    def get_var(self, query: str, params: tuple = ()) -> Any: ...

    def insert(self, table: str, data: dict) -> int | None: ...

    def update(self, table: str, data: dict, where: dict) -> int | None: ...

    def delete(self, table: str, where: dict) -> int | None: ...

    def run(self, query: str, params: tuple = ()) -> int: ...

    def transaction(self): ...


def _where_clause(where: dict) -> sql.Composed:
    return sql.SQL(" AND ").join(
        sql.SQL("{} = %s").format(sql.Identifier(column)) for column in where
    )


class PostgresStore:
    """Store backed by PostgreSQL through the module query helpers."""

    def __init__(self, database_url: str | None = None):
        self.database_url = database_url or config.database_url

    def get_row(self, query: str, params: tuple = ()) -> dict | None:
        return fetch_one(query, params, self.database_url)

    def get_results(self, query: str, params: tuple = ()) -> list[dict]:
        return fetch_all(query, params, self.database_url)

    def get_col(self, query: str, params: tuple = ()) -> list:
        with get_connection(self.database_url) as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                return [row[0] for row in cur.fetchall()]

    def get_var(self, query: str, params: tuple = ()) -> Any:
        with get_connection(self.database_url) as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                row = cur.fetchone()
                return row[0] if row else None

    def insert(self, table: str, data: dict) -> int | None:
        query = sql.SQL("INSERT INTO {} ({}) VALUES ({}) RETURNING id").format(
            sql.Identifier(table),
            sql.SQL(", ").join(map(sql.Identifier, data)),
            sql.SQL(", ").join(sql.Placeholder() * len(data)),
        )
        return self._write(table, query, tuple(data.values()), returning=True)

    def update(self, table: str, data: dict, where: dict) -> int | None:
        query = sql.SQL("UPDATE {} SET {} WHERE {}").format(
            sql.Identifier(table),
            sql.SQL(", ").join(sql.SQL("{} = %s").format(sql.Identifier(c)) for c in data),
            _where_clause(where),
        )
        return self._write(table, query, tuple(data.values()) + tuple(where.values()))

    def delete(self, table: str, where: dict) -> int | None:
        query = sql.SQL("DELETE FROM {} WHERE {}").format(
            sql.Identifier(table), _where_clause(where)
        )
        return self._write(table, query, tuple(where.values()))

    def run(self, query: str, params: tuple = ()) -> int:
        return execute(query, params, self.database_url)

    def _write(self, table: str, query, params: tuple, returning: bool = False) -> int | None:
        # A savepoint keeps an enclosing transaction usable after a failed write.
        with get_connection(self.database_url) as conn:
            try:
                with conn.transaction():
                    with conn.cursor(row_factory=dict_row) as cur:
                        cur.execute(query, params)
                        if returning:
                            return cur.fetchone()["id"]
                        return cur.rowcount
            except psycopg.Error:
                logger.exception("Write to %s failed", table)
                return None

    @contextmanager
    def transaction(self) -> Iterator["PostgresStore"]:
        """
        Run the enclosed Store calls on one connection, in one transaction.

        Nested use opens a savepoint on the already active connection.
        """
        active = get_active_connection()
        if active is not None:
            with active.transaction():
                yield self
            return

        conn = psycopg.connect(self.database_url)
        token = _transaction_connection.set(conn)
        try:
            with conn.transaction():
                yield self
        finally:
            _transaction_connection.reset(token)
            conn.close()
