"""
migrations.py - Database initialization.

Creates the metadata tables, registers collection schemas and
installs the sample dataset. Every function here is idempotent.
"""

import json
import logging
from typing import Any, Mapping, Sequence

from pocketlite.db.schema import (
    ALL_SCHEMA_STATEMENTS,
    SAMPLE_COLLECTIONS,
    SAMPLE_ROWS,
    SAMPLE_TABLES,
)
from pocketlite.db.storage import SQLiteStorage, quote_identifier
from pocketlite.utils.ids import current_timestamp

logger = logging.getLogger("pocketlite.db")


async def initialize_metadata_tables(storage: SQLiteStorage) -> None:
    """Create _collections and _settings if they do not exist."""
    await storage.execute_script("\n".join(ALL_SCHEMA_STATEMENTS))


async def register_collection(
    storage: SQLiteStorage,
    collection_id: str,
    name: str,
    fields: Sequence[Mapping[str, Any]],
    collection_type: str = "base",
) -> None:
    """Insert or replace one collection's metadata row."""
    now = current_timestamp()
    await storage.execute(
        "INSERT OR REPLACE INTO _collections (id, name, type, fields, created, updated) "
        "VALUES (?, ?, ?, ?, ?, ?)",
        (collection_id, name, collection_type, json.dumps(list(fields)), now, now),
    )


async def install_sample_data(storage: SQLiteStorage) -> dict[str, int]:
    """
    Create the demo collections with relation metadata and rows.

    Returns:
        Number of rows per collection
    """
    await initialize_metadata_tables(storage)
    await storage.execute_script(SAMPLE_TABLES)

    for collection in SAMPLE_COLLECTIONS:
        await register_collection(
            storage,
            collection["id"],
            collection["name"],
            collection["fields"],
            collection.get("type", "base"),
        )

    now = current_timestamp()
    counts = {}
    for table, rows in SAMPLE_ROWS.items():
        for row in rows:
            values = {"created": now, "updated": now, **row}
            columns = ", ".join(quote_identifier(key) for key in values)
            placeholders = ", ".join("?" for _ in values)
            await storage.execute(
                f"INSERT OR IGNORE INTO {quote_identifier(table)} ({columns}) VALUES ({placeholders})",
                list(values.values()),
            )
        counts[table] = len(rows)

    logger.info(f"Installed sample data: {counts}")
    return counts
