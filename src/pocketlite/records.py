"""
records.py - The record query engine.

Serves list/get/create/update/delete against dynamically named
collections. Filter, sort and expand requests are translated by the
query package and the expand resolver; every successful mutation is
reported to the change listener (the realtime registry) in commit
order, from the task that performed the write.
"""

import asyncio
import logging
import math
import time
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping

from pocketlite.blobs import BlobStore
from pocketlite.config import (
    DEFAULT_PAGE,
    DEFAULT_PER_PAGE,
    RESERVED_RECORD_KEYS,
    SKIPPED_TOTAL,
)
from pocketlite.db.storage import SQLiteStorage, quote_identifier
from pocketlite.errors import InvalidRequestError, NotFoundError
from pocketlite.expand import ExpandResolver
from pocketlite.metrics import MetricsRegistry
from pocketlite.query.filter import FilterTranslator
from pocketlite.query.sort import SortTranslator
from pocketlite.utils.codec import decode_row, encode_fields
from pocketlite.utils.ids import current_timestamp, generate_id

logger = logging.getLogger("pocketlite.records")

Record = dict[str, Any]
ChangeListener = Callable[[str, str, Record], Any]


@dataclass(frozen=True)
class UploadedFile:
    """A file part of a create/update request."""

    field: str
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


@dataclass
class ListResult:
    page: int
    per_page: int
    total_items: int
    total_pages: int
    items: list[Record] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "page": self.page,
            "perPage": self.per_page,
            "totalItems": self.total_items,
            "totalPages": self.total_pages,
            "items": self.items,
        }


@dataclass
class _WriteLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    holders: int = 0


def stored_filename(original: str) -> str:
    """Unique storage name for an uploaded file."""
    original = original.replace("/", "_").replace("\\", "_") or "file.bin"
    return f"{int(time.time() * 1000)}_{generate_id(6)}_{original}"


def file_path(collection: str, record_id: str, filename: str) -> str:
    return f"{collection}/{record_id}/{filename}"


class RecordService:
    """
    Record CRUD over the storage capability.

    Args:
        storage: Storage capability
        expand_resolver: Resolver used for `expand` on reads
        blob_store: Where file parts of create/update requests go
        on_change: Called as on_change(collection, action, record)
            after each committed create/update/delete
        strict_delete: Raise NotFoundError when deleting a missing id
            instead of treating it as a no-op
    """

    def __init__(
        self,
        storage: SQLiteStorage,
        expand_resolver: ExpandResolver,
        blob_store: BlobStore | None = None,
        on_change: ChangeListener | None = None,
        metrics: MetricsRegistry | None = None,
        strict_delete: bool = False,
        filter_translator: FilterTranslator | None = None,
        sort_translator: SortTranslator | None = None,
    ):
        self._storage = storage
        self._expand = expand_resolver
        self._blobs = blob_store
        self._on_change = on_change
        self._metrics = metrics or MetricsRegistry()
        self._strict_delete = strict_delete
        self._filter = filter_translator or FilterTranslator()
        self._sort = sort_translator or SortTranslator()
        self._write_locks: dict[tuple[str, str], _WriteLock] = {}

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_records(
        self,
        collection: str,
        page: int = DEFAULT_PAGE,
        per_page: int = DEFAULT_PER_PAGE,
        filter: str | None = None,
        sort: str | None = None,
        expand: str | None = None,
        skip_total: bool = False,
    ) -> ListResult:
        if page < 1:
            raise InvalidRequestError("page must be at least 1", field="page", value=page)
        if per_page < 1:
            raise InvalidRequestError("perPage must be positive", field="perPage", value=per_page)

        with self._track("list", collection):
            table = quote_identifier(collection)
            where = self._filter.translate(filter)
            order_by = self._sort.translate(sort)

            sql = f"SELECT * FROM {table}"
            if where:
                sql += f" WHERE {where.sql}"
            if order_by:
                sql += f" ORDER BY {order_by}"
            sql += " LIMIT ? OFFSET ?"
            params = [*where.values, per_page, (page - 1) * per_page]

            if skip_total:
                rows = await self._storage.fetch_all(sql, params)
                total_items = total_pages = SKIPPED_TOTAL
            else:
                count_sql = f"SELECT COUNT(*) AS count FROM {table}"
                if where:
                    count_sql += f" WHERE {where.sql}"
                rows, count_rows = await asyncio.gather(
                    self._storage.fetch_all(sql, params),
                    self._storage.fetch_all(count_sql, where.values),
                )
                total_items = int(count_rows[0]["count"])
                total_pages = math.ceil(total_items / per_page)

            items = [decode_row(row, collection) for row in rows]
            await self._expand.resolve(items, collection, expand)

        return ListResult(
            page=page,
            per_page=per_page,
            total_items=total_items,
            total_pages=total_pages,
            items=items,
        )

    async def get_record(self, collection: str, record_id: str, expand: str | None = None) -> Record:
        """
        Point lookup by id.

        Raises:
            NotFoundError: If the id is empty or has no row
        """
        with self._track("get", collection):
            record = await self._fetch(collection, record_id)
            if record is None:
                raise NotFoundError(collection=collection, record_id=record_id)
            await self._expand.resolve([record], collection, expand)
        return record

    async def _fetch(self, collection: str, record_id: str) -> Record | None:
        if not record_id:
            return None
        row = await self._storage.fetch_one(
            f"SELECT * FROM {quote_identifier(collection)} WHERE id = ?", (record_id,)
        )
        return decode_row(row, collection) if row is not None else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_record(
        self,
        collection: str,
        fields: Mapping[str, Any],
        files: Iterable[UploadedFile] = (),
        expand: str | None = None,
    ) -> Record:
        """Insert a record with a generated id and matching created/updated stamps."""
        with self._track("create", collection):
            table = quote_identifier(collection)
            record_id = generate_id()
            now = current_timestamp()

            values = {"id": record_id, "created": now, "updated": now}
            values.update(_client_fields(fields))
            await self._attach_files(collection, record_id, values, files)

            stored = encode_fields(values)
            columns = ", ".join(quote_identifier(key) for key in stored)
            placeholders = ", ".join("?" for _ in stored)
            async with self._record_lock(collection, record_id):
                await self._storage.execute(
                    f"INSERT INTO {table} ({columns}) VALUES ({placeholders})",
                    list(stored.values()),
                )

                record = await self._fetch(collection, record_id)
                if record is None:
                    raise NotFoundError(collection=collection, record_id=record_id)
                self._notify(collection, "create", record)
            return await self._expanded_copy(record, collection, expand)

    async def update_record(
        self,
        collection: str,
        record_id: str,
        fields: Mapping[str, Any],
        files: Iterable[UploadedFile] = (),
        expand: str | None = None,
    ) -> Record:
        """
        Update a record and refresh its `updated` stamp.

        Null values are stored as empty strings, which is how a client
        clears a file or text field.

        Raises:
            NotFoundError: If no row has the id after the write
        """
        with self._track("update", collection):
            table = quote_identifier(collection)
            if not record_id:
                raise NotFoundError(collection=collection, record_id=record_id)

            values = {
                key: "" if value is None else value
                for key, value in _client_fields(fields).items()
            }
            await self._attach_files(collection, record_id, values, files)

            async with self._record_lock(collection, record_id):
                values["updated"] = current_timestamp()
                stored = encode_fields(values)
                assignments = ", ".join(f"{quote_identifier(key)} = ?" for key in stored)
                await self._storage.execute(
                    f"UPDATE {table} SET {assignments} WHERE id = ?",
                    [*stored.values(), record_id],
                )

                record = await self._fetch(collection, record_id)
                if record is None:
                    raise NotFoundError(collection=collection, record_id=record_id)
                self._notify(collection, "update", record)
            return await self._expanded_copy(record, collection, expand)

    async def delete_record(self, collection: str, record_id: str) -> bool:
        """
        Delete a record by id.

        The row is read first so the delete notification can carry it.
        Returns whether a row was removed.

        Raises:
            NotFoundError: In strict mode, if no row has the id
        """
        with self._track("delete", collection):
            table = quote_identifier(collection)
            async with self._record_lock(collection, record_id):
                existing = None
                if self._on_change is not None or self._strict_delete:
                    existing = await self._fetch(collection, record_id)
                    if existing is None and self._strict_delete:
                        raise NotFoundError(collection=collection, record_id=record_id)

                deleted = await self._storage.execute(f"DELETE FROM {table} WHERE id = ?", (record_id,))
                if existing is not None:
                    self._notify(collection, "delete", existing)
            return deleted > 0

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _attach_files(
        self,
        collection: str,
        record_id: str,
        values: dict[str, Any],
        files: Iterable[UploadedFile],
    ) -> None:
        for upload in files:
            if self._blobs is None:
                raise InvalidRequestError("File uploads are not configured", field=upload.field)
            name = stored_filename(upload.filename)
            await self._blobs.put(
                file_path(collection, record_id, name), upload.content, upload.content_type
            )
            current = values.get(upload.field)
            if current in (None, ""):
                values[upload.field] = name
            elif isinstance(current, list):
                current.append(name)
            else:
                values[upload.field] = [current, name]

    async def _expanded_copy(self, record: Record, collection: str, expand: str | None) -> Record:
        if not expand:
            return record
        response = dict(record)
        await self._expand.resolve([response], collection, expand)
        return response

    @asynccontextmanager
    async def _record_lock(self, collection: str, record_id: str):
        """
        Serialize write, read-back and notify for one record, so
        listeners see its changes in commit order and each change
        carries its own state.
        """
        key = (collection, record_id)
        entry = self._write_locks.get(key)
        if entry is None:
            entry = self._write_locks[key] = _WriteLock()
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0:
                del self._write_locks[key]

    def _notify(self, collection: str, action: str, record: Record) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change(collection, action, record)
        except Exception:
            # Delivery is best-effort; the committed write stands.
            logger.exception(f"Change listener failed for {action} on {collection}/{record.get('id')}")

    @contextmanager
    def _track(self, operation: str, collection: str):
        with self._metrics.record_latency.time(operation=operation):
            yield
        self._metrics.record_operations.inc(operation=operation, collection=collection)


def _client_fields(fields: Mapping[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in fields.items() if k not in RESERVED_RECORD_KEYS}
