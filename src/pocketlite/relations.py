"""
relations.py - Strategies that tell the expand resolver where a field points.

The catalog is authoritative. When it has no entry, a naming
convention may stand in: `authorId` / `author_id` is taken to be a
single relation to `authors`, and `tagIds` / `tag_ids` a multiple
relation to `tags`. The strategies are kept apart from the resolver
so the fallback can be disabled or replaced on its own.
"""

import re
from typing import Optional, Protocol, Sequence

from pocketlite.catalog import RelationInfo, SchemaCatalog

IRREGULAR_PLURALS = {
    "person": "people",
    "child": "children",
    "category": "categories",
    "man": "men",
    "woman": "women",
    "mouse": "mice",
}

_SINGLE_SUFFIX_RE = re.compile(r"^(?P<base>\w+?)(?:Id|_id)$")
_MULTIPLE_SUFFIX_RE = re.compile(r"^(?P<base>\w+?)(?:Ids|_ids)$")


def pluralize(word: str) -> str:
    """English plural of a collection base name."""
    irregular = IRREGULAR_PLURALS.get(word.lower())
    if irregular is not None:
        return irregular
    if word.endswith("y"):
        return word[:-1] + "ies"
    if word.endswith(("s", "x", "ch", "sh")):
        return word + "es"
    return word + "s"


class RelationStrategy(Protocol):
    """Protocol for relation lookup strategies."""

    @property
    def name(self) -> str:
        ...

    def lookup(self, collection: str, field: str) -> Optional[RelationInfo]:
        """Relation info for the field, or None when this strategy cannot tell."""
        ...


class CatalogRelationStrategy:
    """Relation info from the schema catalog."""

    def __init__(self, catalog: SchemaCatalog):
        self._catalog = catalog

    @property
    def name(self) -> str:
        return "catalog"

    def lookup(self, collection: str, field: str) -> Optional[RelationInfo]:
        return self._catalog.get_relation(collection, field)


class NamingConventionStrategy:
    """Relation info inferred from `...Id` / `..._id` field names."""

    @property
    def name(self) -> str:
        return "naming_convention"

    def lookup(self, collection: str, field: str) -> Optional[RelationInfo]:
        match = _MULTIPLE_SUFFIX_RE.match(field)
        if match:
            return RelationInfo(collection=pluralize(match.group("base")), multiple=True)
        match = _SINGLE_SUFFIX_RE.match(field)
        if match:
            return RelationInfo(collection=pluralize(match.group("base")), multiple=False)
        return None


class RelationLookup:
    """Tries each strategy in order; the first answer wins."""

    def __init__(self, strategies: Sequence[RelationStrategy]):
        self._strategies = list(strategies)

    @classmethod
    def for_catalog(cls, catalog: SchemaCatalog, heuristics: bool = True) -> "RelationLookup":
        strategies: list[RelationStrategy] = [CatalogRelationStrategy(catalog)]
        if heuristics:
            strategies.append(NamingConventionStrategy())
        return cls(strategies)

    def lookup(self, collection: str, field: str) -> Optional[RelationInfo]:
        for strategy in self._strategies:
            info = strategy.lookup(collection, field)
            if info is not None:
                return info
        return None
