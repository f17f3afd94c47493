"""
catalog.py - In-memory collection schema catalog.

Loads collection metadata from the _collections table and answers
relation questions: is field F on collection C a relation, and to
which collection does it point?

The catalog is read-mostly. Each load builds a complete snapshot
and swaps it in with a single assignment, so concurrent readers see
either the old snapshot or the new one, never a partial state.
"""

import json
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Mapping

from pocketlite.config import COLLECTIONS_TABLE
from pocketlite.db.storage import SQLiteStorage
from pocketlite.errors import DatabaseError

logger = logging.getLogger("pocketlite.catalog")

RELATION_TYPE = "relation"


@dataclass(frozen=True)
class FieldSchema:
    name: str
    type: str
    collection_id: str | None = None
    max_select: int | None = None
    options: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_relation(self) -> bool:
        return self.type == RELATION_TYPE

    @property
    def is_multiple(self) -> bool:
        return self.max_select is not None and self.max_select > 1

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FieldSchema":
        max_select = data.get("maxSelect")
        return cls(
            name=data["name"],
            type=data.get("type", "text"),
            collection_id=data.get("collectionId"),
            max_select=int(max_select) if max_select is not None else None,
            options={k: v for k, v in data.items() if k not in ("name", "type")},
        )


@dataclass(frozen=True)
class CollectionSchema:
    id: str
    name: str
    fields: tuple[FieldSchema, ...]
    type: str = "base"

    def get_field(self, name: str) -> FieldSchema | None:
        for f in self.fields:
            if f.name == name:
                return f
        return None


@dataclass(frozen=True)
class RelationInfo:
    """Where a relation field points and how many ids it holds."""

    collection: str
    multiple: bool = False


@dataclass(frozen=True)
class _Snapshot:
    by_name: Mapping[str, CollectionSchema]
    id_to_name: Mapping[str, str]


_EMPTY = _Snapshot(by_name={}, id_to_name={})


def _parse_fields(raw: Any) -> tuple[FieldSchema, ...]:
    fields = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
    if isinstance(fields, Mapping):
        # {"fieldName": {...}} form
        fields = [{"name": name, **spec} for name, spec in fields.items()]
    return tuple(FieldSchema.from_dict(f) for f in fields or [])


class SchemaCatalog:
    """Collection metadata, loaded once and refreshed explicitly."""

    def __init__(self, storage: SQLiteStorage, table: str = COLLECTIONS_TABLE):
        self._storage = storage
        self._table = table
        self._snapshot = _EMPTY
        self._initialized = False
        self._lock = threading.Lock()

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """
        Load all collection metadata.

        Idempotent: a second call without refresh() is a no-op.

        Raises:
            DatabaseError: If the metadata table is missing or malformed
        """
        if self._initialized:
            return
        snapshot = await self._load()
        with self._lock:
            self._snapshot = snapshot
            self._initialized = True
        logger.info(f"Schema catalog initialized with {len(snapshot.by_name)} collections")

    async def refresh(self) -> None:
        """Reload everything; readers keep the old snapshot until the swap."""
        snapshot = await self._load()
        with self._lock:
            self._snapshot = snapshot
            self._initialized = True
        logger.info(f"Schema catalog refreshed with {len(snapshot.by_name)} collections")

    async def _load(self) -> _Snapshot:
        rows = await self._storage.fetch_all(f"SELECT * FROM {self._table}")
        by_name: dict[str, CollectionSchema] = {}
        id_to_name: dict[str, str] = {}
        for row in rows:
            try:
                schema = CollectionSchema(
                    id=row["id"],
                    name=row["name"],
                    type=row.get("type") or "base",
                    fields=_parse_fields(row.get("fields")),
                )
            except (KeyError, TypeError, ValueError) as e:
                raise DatabaseError(
                    f"Malformed collection metadata: {e}",
                    operation="load_catalog",
                ) from e
            by_name[schema.name] = schema
            id_to_name[schema.id] = schema.name
        return _Snapshot(by_name=by_name, id_to_name=id_to_name)

    def get_collection(self, name: str) -> CollectionSchema | None:
        return self._snapshot.by_name.get(name)

    def list_collections(self) -> list[CollectionSchema]:
        return list(self._snapshot.by_name.values())

    def get_relation_target(self, collection: str, field_name: str) -> str | None:
        """Name of the collection a relation field points to, if known."""
        info = self.get_relation(collection, field_name)
        return info.collection if info else None

    def get_relation(self, collection: str, field_name: str) -> RelationInfo | None:
        snapshot = self._snapshot
        schema = snapshot.by_name.get(collection)
        if schema is None:
            return None
        f = schema.get_field(field_name)
        if f is None or not f.is_relation or not f.collection_id:
            return None
        target = snapshot.id_to_name.get(f.collection_id)
        if target is None:
            return None
        return RelationInfo(collection=target, multiple=f.is_multiple)

    def is_relation_field(self, collection: str, field_name: str) -> bool:
        schema = self._snapshot.by_name.get(collection)
        if schema is None:
            return False
        f = schema.get_field(field_name)
        return f is not None and f.is_relation

    def list_relation_fields(self, collection: str) -> list[str]:
        schema = self._snapshot.by_name.get(collection)
        if schema is None:
            return []
        return [f.name for f in schema.fields if f.is_relation]
