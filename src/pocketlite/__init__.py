"""
pocketlite - PocketBase-compatible records API over SQLite

Filter/sort/expand translation into parameterized SQL, record CRUD
against runtime-named collections, batch requests, and realtime
change notifications over server-sent events.
"""

__version__ = "0.1.0"

from pocketlite.catalog import SchemaCatalog
from pocketlite.config import ServerConfig
from pocketlite.db.storage import SQLiteStorage
from pocketlite.errors import (
    DatabaseError,
    InvalidRequestError,
    NotFoundError,
    PocketliteError,
    UpstreamError,
)
from pocketlite.expand import ExpandResolver
from pocketlite.query import FilterTranslator, SortTranslator
from pocketlite.realtime import RealtimeRegistry
from pocketlite.records import RecordService

__all__ = [
    # Core
    "ServerConfig",
    "SQLiteStorage",
    "SchemaCatalog",
    "FilterTranslator",
    "SortTranslator",
    "ExpandResolver",
    "RecordService",
    "RealtimeRegistry",
    # Errors
    "PocketliteError",
    "NotFoundError",
    "InvalidRequestError",
    "UpstreamError",
    "DatabaseError",
]
