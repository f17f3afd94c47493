"""
expand.py - Resolves PocketBase `expand` requests.

Expand syntax examples:
- "authorId"                      single relation field
- "authorId,categoryId"           several relations
- "postId.authorId"               nested expansion (post -> author)
- "comments(created:desc)"        relation fetched in a given order
- "comments(-created,title).authorId"

Resolution attaches related rows under record["expand"][field],
either as one record or as a list depending on the relation's
cardinality. A path that cannot be resolved is logged and skipped;
it never fails the read it was requested on.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

from pocketlite.catalog import RelationInfo
from pocketlite.db.storage import SQLiteStorage, quote_identifier
from pocketlite.errors import PocketliteError
from pocketlite.query.sort import SortTranslator
from pocketlite.relations import RelationLookup
from pocketlite.utils.codec import decode_row

logger = logging.getLogger("pocketlite.expand")

Record = dict[str, Any]


@dataclass(frozen=True)
class ExpandPath:
    """One comma-separated entry of an expand expression."""

    field: str
    sort: Optional[str] = None
    rest: Optional[str] = None

    @classmethod
    def parse(cls, path: str) -> "ExpandPath":
        path = path.strip()
        head, *tail = _split_outside_parens(path, ".", maxsplit=1)
        rest = tail[0] if tail else None
        head = head.strip()
        sort = None
        if head.endswith(")") and "(" in head:
            head, _, sort = head[:-1].partition("(")
            sort = sort.strip() or None
        return cls(field=head.strip(), sort=sort, rest=rest.strip() if rest else None)


def _split_outside_parens(text: str, sep: str, maxsplit: int = -1) -> list[str]:
    parts = []
    depth = 0
    start = 0
    for i, ch in enumerate(text):
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth = max(depth - 1, 0)
        elif ch == sep and depth == 0:
            parts.append(text[start:i])
            start = i + 1
            if len(parts) == maxsplit:
                break
    parts.append(text[start:])
    return parts


def split_expand(expression: str) -> list[str]:
    """Split on top-level commas; commas inside a per-level sort are kept."""
    return [p.strip() for p in _split_outside_parens(expression, ",") if p.strip()]


def normalize_sort(sort: str) -> str:
    """Accept "created:desc" as well as PocketBase's "-created"."""
    parts = []
    for part in sort.split(","):
        part = part.strip()
        field, _, direction = part.partition(":")
        if direction.strip().lower() == "desc":
            parts.append(f"-{field.strip()}")
        else:
            parts.append(field.strip())
    return ",".join(parts)


def parse_relation_ids(value: Any) -> list[str]:
    """Relation ids held by a field: a list, a JSON array, or comma-separated text."""
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value if v]
    if isinstance(value, str):
        if value.startswith("["):
            try:
                decoded = json.loads(value)
            except ValueError:
                decoded = None
            if isinstance(decoded, list):
                return [str(v) for v in decoded if v]
        return [part.strip() for part in value.split(",") if part.strip()]
    return [str(value)]


class ExpandResolver:
    """Attaches related records to a batch of records."""

    def __init__(
        self,
        storage: SQLiteStorage,
        relations: RelationLookup,
        sort_translator: SortTranslator | None = None,
    ):
        self._storage = storage
        self._relations = relations
        self._sort = sort_translator or SortTranslator()

    async def resolve(self, records: list[Record], collection: str, expand: str | None) -> list[Record]:
        """
        Resolve every path of an expand expression.

        Records are mutated in place and also returned.
        """
        if not records or not expand:
            return records

        for path in split_expand(expand):
            try:
                await self._resolve_path(records, collection, ExpandPath.parse(path))
            except PocketliteError as e:
                logger.warning(f"Failed to expand {collection}.{path}: {e}")
        return records

    async def _resolve_path(self, records: list[Record], collection: str, path: ExpandPath) -> None:
        relation = self._relations.lookup(collection, path.field)
        if relation is None:
            logger.warning(f"No relation info found for {collection}.{path.field}")
            return

        foreign_ids = self._collect_foreign_ids(records, path.field, relation)
        if not foreign_ids:
            return

        related = await self._fetch_related(relation.collection, foreign_ids, path.sort)
        by_id = {row["id"]: row for row in related}

        for record in records:
            if relation.multiple:
                ids = parse_relation_ids(record.get(path.field))
                if not ids:
                    continue
                # The record's own id order wins over the fetch order
                matched = [by_id[i] for i in ids if i in by_id]
                record.setdefault("expand", {})[path.field] = matched
            else:
                foreign_id = record.get(path.field)
                if isinstance(foreign_id, str) and foreign_id in by_id:
                    record.setdefault("expand", {})[path.field] = by_id[foreign_id]

        if path.rest:
            await self._resolve_nested(records, path, relation)

    async def _resolve_nested(self, records: list[Record], path: ExpandPath, relation: RelationInfo) -> None:
        # Gather every expanded value into one batch; rows shared by several
        # parents are resolved once and the change is visible through all of them.
        batch: list[Record] = []
        seen: set[int] = set()
        for record in records:
            value = record.get("expand", {}).get(path.field)
            if value is None:
                continue
            for child in value if isinstance(value, list) else [value]:
                if id(child) not in seen:
                    seen.add(id(child))
                    batch.append(child)

        await self._resolve_path(batch, relation.collection, ExpandPath.parse(path.rest))

    def _collect_foreign_ids(self, records: list[Record], field: str, relation: RelationInfo) -> list[str]:
        ids: dict[str, None] = {}
        for record in records:
            value = record.get(field)
            if not value:
                continue
            if relation.multiple:
                for foreign_id in parse_relation_ids(value):
                    ids[foreign_id] = None
            elif isinstance(value, str):
                ids[value] = None
        return list(ids)

    async def _fetch_related(self, collection: str, ids: list[str], sort: str | None) -> list[Record]:
        placeholders = ", ".join("?" for _ in ids)
        sql = f"SELECT * FROM {quote_identifier(collection)} WHERE id IN ({placeholders})"
        if sort:
            order_by = self._sort.translate(normalize_sort(sort))
            if order_by:
                sql += f" ORDER BY {order_by}"
        rows = await self._storage.fetch_all(sql, ids)
        return [decode_row(row, collection) for row in rows]
