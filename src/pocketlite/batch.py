"""
batch.py - Batch orchestrator.

Replays a list of synthetic record requests against the record
service, one after another, collecting a {status, body} entry for
each. Items are independent: a failing item is reported in place and
the rest still run. There is no cross-item transaction.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence
from urllib.parse import parse_qs, urlsplit

from pocketlite.errors import InvalidRequestError, PocketliteError
from pocketlite.records import RecordService, UploadedFile

logger = logging.getLogger("pocketlite.batch")

_RECORDS_URL_RE = re.compile(r"^(?:/api)?/collections/(?P<collection>[^/]+)/records(?:/(?P<record_id>[^/?]+))?/?$")


@dataclass(frozen=True)
class BatchTarget:
    collection: str
    record_id: str | None
    query: Mapping[str, str]


def parse_batch_url(url: str) -> BatchTarget:
    """
    Extract the collection, optional record id and query parameters.

    Raises:
        InvalidRequestError: If the URL is not a records URL
    """
    parts = urlsplit(url or "")
    match = _RECORDS_URL_RE.match(parts.path)
    if match is None:
        raise InvalidRequestError(f"Invalid batch request URL: {url}", field="url", value=url)
    query = {key: values[-1] for key, values in parse_qs(parts.query).items()}
    return BatchTarget(
        collection=match.group("collection"),
        record_id=match.group("record_id"),
        query=query,
    )


@dataclass
class BatchRequest:
    method: str
    url: str
    body: dict[str, Any] = field(default_factory=dict)
    files: list[UploadedFile] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any, files: Sequence[UploadedFile] = ()) -> "BatchRequest":
        if not isinstance(data, Mapping):
            raise InvalidRequestError("Batch request must be an object", field="requests", value=data)
        body = data.get("body") or {}
        if not isinstance(body, Mapping):
            raise InvalidRequestError("Batch request body must be an object", field="body", value=body)
        return cls(
            method=str(data.get("method", "")).upper(),
            url=str(data.get("url", "")),
            body=dict(body),
            files=list(files),
        )


@dataclass
class BatchResult:
    status: int
    body: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status, "body": self.body}


class BatchOrchestrator:
    """Runs batch requests in order against a RecordService."""

    def __init__(self, records: RecordService):
        self._records = records

    async def execute(self, requests: Sequence[BatchRequest]) -> list[BatchResult]:
        results = []
        for index, request in enumerate(requests):
            try:
                result = await self._execute_one(request)
            except PocketliteError as e:
                logger.info(f"Batch item {index} ({request.method} {request.url}) failed: {e}")
                result = BatchResult(status=e.status, body=e.to_payload())
            except Exception as e:
                logger.exception(f"Batch item {index} ({request.method} {request.url}) failed")
                result = BatchResult(status=400, body={"code": 400, "message": str(e), "data": {}})
            results.append(result)
        logger.info(f"Executed batch of {len(requests)} request(s)")
        return results

    async def _execute_one(self, request: BatchRequest) -> BatchResult:
        target = parse_batch_url(request.url)
        expand = target.query.get("expand")
        method = request.method

        if method == "POST":
            record = await self._records.create_record(
                target.collection, request.body, request.files, expand=expand
            )
            return BatchResult(status=200, body=record)

        if method == "PUT":
            record_id = target.record_id or request.body.get("id")
            if record_id:
                record = await self._records.update_record(
                    target.collection, record_id, request.body, request.files, expand=expand
                )
            else:
                record = await self._records.create_record(
                    target.collection, request.body, request.files, expand=expand
                )
            return BatchResult(status=200, body=record)

        if method in ("PATCH", "DELETE"):
            if not target.record_id:
                raise InvalidRequestError(f"{method} requires a record id", field="url", value=request.url)
            if method == "PATCH":
                record = await self._records.update_record(
                    target.collection, target.record_id, request.body, request.files, expand=expand
                )
                return BatchResult(status=200, body=record)
            await self._records.delete_record(target.collection, target.record_id)
            return BatchResult(status=204, body=None)

        raise InvalidRequestError(f"Unsupported batch method: {method or '(none)'}", field="method", value=method)
