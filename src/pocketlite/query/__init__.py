"""Translation of PocketBase filter and sort expressions into SQL."""

from pocketlite.query.filter import FilterClause, FilterTranslator
from pocketlite.query.sort import SortTranslator

__all__ = ["FilterClause", "FilterTranslator", "SortTranslator"]
