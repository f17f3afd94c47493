"""
sort.py - PocketBase sort expressions to SQL ORDER BY clauses.

    "created"        -> "created ASC"
    "-created,title" -> "created DESC, title ASC"
"""

from pocketlite.db.storage import is_identifier
from pocketlite.errors import InvalidRequestError

RANDOM_SORT = "@random"


class SortTranslator:
    """Translates PocketBase sort syntax into an ORDER BY clause body."""

    def translate(self, expression: str | None) -> str:
        """
        Translate a sort expression.

        Returns an empty string for empty input; callers must then
        omit ORDER BY entirely.
        """
        if not expression:
            return ""

        parts = []
        for field in expression.split(","):
            field = field.strip()
            if not field:
                continue
            if field == RANDOM_SORT:
                parts.append("RANDOM()")
                continue

            direction = "ASC"
            if field.startswith("-"):
                field, direction = field[1:], "DESC"
            elif field.startswith("+"):
                field = field[1:]

            if not is_identifier(field):
                raise InvalidRequestError(f"Invalid sort field: {field!r}", field="sort", value=field)
            parts.append(f"{field} {direction}")

        return ", ".join(parts)
