"""
connection.py - SQLite database connection management.

Opens the single shared connection used by SQLiteStorage. File-backed
databases get their parent directory created and run in WAL mode so
readers are not blocked by the writer.
"""

import logging
import os
import sqlite3

from pocketlite.config import SQLITE_PRAGMAS
from pocketlite.errors import DatabaseError

logger = logging.getLogger("pocketlite.db")

MEMORY_PATH = ":memory:"


def create_connection(db_path: str) -> sqlite3.Connection:
    """
    Open a configured connection.

    Statements autocommit and rows come back as sqlite3.Row. The
    connection may be used from worker threads; SQLiteStorage
    serializes access to it.

    Raises:
        DatabaseError: If the file cannot be opened or a PRAGMA fails
    """
    if db_path != MEMORY_PATH:
        parent = os.path.dirname(os.path.abspath(db_path))
        os.makedirs(parent, exist_ok=True)

    try:
        conn = sqlite3.connect(db_path, isolation_level=None, check_same_thread=False)
    except sqlite3.Error as e:
        raise DatabaseError(f"Cannot open database {db_path}: {e}", operation="connect") from e

    conn.row_factory = sqlite3.Row
    for pragma, value in SQLITE_PRAGMAS.items():
        statement = f"PRAGMA {pragma} = {value}"
        try:
            conn.execute(statement)
        except sqlite3.Error as e:
            conn.close()
            raise DatabaseError(f"Failed to apply {statement}: {e}", operation="pragma", sql=statement) from e

    logger.debug(f"Opened SQLite connection to {db_path}")
    return conn
