"""
codec.py - Field conversion between records and storage rows.

Array (and object) values are persisted as JSON text and decoded
back on every read path: list, get, post-create and post-update
fetches, and expand fetches.
"""

import json
from typing import Any, Mapping


def encode_value(value: Any) -> Any:
    """Serialize a single field value for storage."""
    if isinstance(value, (list, tuple, dict)):
        # Stored unescaped so LIKE patterns built from filter text match
        return json.dumps(list(value) if isinstance(value, tuple) else value, ensure_ascii=False)
    return value


def encode_fields(fields: Mapping[str, Any]) -> dict[str, Any]:
    return {key: encode_value(value) for key, value in fields.items()}


def decode_value(value: Any) -> Any:
    """Decode a stored value, turning JSON arrays/objects back into Python values."""
    if not isinstance(value, str) or not value or value[0] not in "[{":
        return value
    try:
        decoded = json.loads(value)
    except ValueError:
        # Not JSON, leave as string
        return value
    return decoded if isinstance(decoded, (list, dict)) else value


def decode_row(row: Mapping[str, Any], collection: str | None = None) -> dict[str, Any]:
    """
    Build a record from a storage row.

    Decodes serialized arrays and, when a collection is given,
    attaches collectionName for client convenience.
    """
    record = {key: decode_value(value) for key, value in row.items()}
    if collection is not None:
        record["collectionName"] = collection
    return record
