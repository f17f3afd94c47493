"""
storage.py - The storage capability used by the query engine.

Runs parameterized SQL against named tables and returns rows as
plain dicts. Statements execute on a worker thread so the event
loop never blocks on SQLite; a lock serializes access to the
shared connection.
"""

import asyncio
import logging
import re
import sqlite3
import threading
import time
from typing import Any, Callable, Sequence

from pocketlite.db.connection import create_connection
from pocketlite.errors import DatabaseError, InvalidRequestError

logger = logging.getLogger("pocketlite.db")

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def is_identifier(name: str) -> bool:
    return bool(_IDENTIFIER_RE.match(name or ""))


def quote_identifier(name: str) -> str:
    """
    Quote a collection or field name for use as SQL text.

    Only plain identifiers are accepted; anything else is rejected
    before it can reach the database.
    """
    if not is_identifier(name):
        raise InvalidRequestError(f"Invalid identifier: {name!r}", field="name", value=name)
    return f'"{name}"'


class SQLiteStorage:
    """Async facade over a single SQLite connection."""

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    @property
    def db_path(self) -> str:
        return self._db_path

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = create_connection(self._db_path)
        return self._conn

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    async def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        """Run a query and return every row as a dict."""
        return await self._run_in_executor(self._fetch_all, sql, tuple(params))

    async def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> dict[str, Any] | None:
        rows = await self.fetch_all(sql, params)
        return rows[0] if rows else None

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Run a statement and return the affected row count."""
        return await self._run_in_executor(self._execute, sql, tuple(params))

    async def execute_script(self, script: str) -> None:
        await self._run_in_executor(self._execute_script, script)

    async def ping(self) -> float:
        """Round-trip a trivial query; returns latency in milliseconds."""
        start = time.perf_counter()
        await self.fetch_all("SELECT 1")
        return (time.perf_counter() - start) * 1000

    def _fetch_all(self, sql: str, params: tuple) -> list[dict[str, Any]]:
        with self._lock:
            try:
                cursor = self.connection.execute(sql, params)
                return [dict(row) for row in cursor.fetchall()]
            except sqlite3.Error as e:
                raise DatabaseError(str(e), operation="query", sql=sql) from e

    def _execute(self, sql: str, params: tuple) -> int:
        with self._lock:
            try:
                return self.connection.execute(sql, params).rowcount
            except sqlite3.Error as e:
                raise DatabaseError(str(e), operation="execute", sql=sql) from e

    def _execute_script(self, script: str) -> None:
        with self._lock:
            try:
                self.connection.executescript(script)
            except sqlite3.Error as e:
                raise DatabaseError(str(e), operation="script") from e

    async def _run_in_executor(self, func: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)
