"""
errors.py - Domain-specific exceptions for pocketlite.

Every error carries the HTTP status it surfaces as and renders the
PocketBase error body {code, message, data}. Diagnostic details go
into `context`, which shows up in logs but never in responses.
"""

from typing import Any

_MAX_SQL_IN_CONTEXT = 200


def _compact(**details: Any) -> dict[str, Any]:
    return {key: value for key, value in details.items() if value is not None}


class PocketliteError(Exception):
    """Base exception for all pocketlite errors."""

    status: int = 400

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = dict(context or {})

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{key}={value!r}" for key, value in self.context.items())
        return f"{self.message} [{details}]"

    def data(self) -> dict[str, Any]:
        """Per-field details for the response body."""
        return {}

    def to_payload(self) -> dict[str, Any]:
        return {"code": self.status, "message": self.message, "data": self.data()}


class NotFoundError(PocketliteError):
    """A record, realtime client or file does not exist."""

    status = 404

    def __init__(
        self,
        message: str = "The requested resource wasn't found.",
        collection: str | None = None,
        record_id: str | None = None,
    ) -> None:
        super().__init__(message, _compact(collection=collection, record_id=record_id))
        self.collection = collection
        self.record_id = record_id


class InvalidRequestError(PocketliteError):
    """
    The request is malformed.

    Covers missing body fields, bad subscription payloads, unparseable
    batch URLs and unsupported batch methods. When the offending field
    is known it is reported under `data`, the way PocketBase reports
    validation failures.
    """

    status = 400

    def __init__(self, message: str, field: str | None = None, value: Any = None) -> None:
        shown = repr(value)[:100] if value is not None else None
        super().__init__(message, _compact(field=field, value=shown))
        self.field = field
        self.value = value

    def data(self) -> dict[str, Any]:
        if self.field is None:
            return {}
        return {self.field: {"code": "validation_invalid_value", "message": self.message}}


class UpstreamError(PocketliteError):
    """A collaborator (storage, blob store) failed for reasons opaque to this layer."""

    status = 400


class DatabaseError(UpstreamError):
    """
    A storage statement failed.

    Missing tables and columns surface here.
    """

    def __init__(
        self, message: str, operation: str | None = None, sql: str | None = None
    ) -> None:
        if sql is not None and len(sql) > _MAX_SQL_IN_CONTEXT:
            shown_sql = sql[:_MAX_SQL_IN_CONTEXT] + "..."
        else:
            shown_sql = sql
        super().__init__(message, _compact(operation=operation, sql=shown_sql))
        self.operation = operation
        self.sql = sql


class BlobStoreError(UpstreamError):
    """The blob store rejected a put/get/delete."""

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message, _compact(path=path))
        self.path = path
