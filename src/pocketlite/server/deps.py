"""
deps.py - Application collaborators and request helpers for the routers.
"""

import json
from dataclasses import dataclass
from typing import Any

from fastapi import Request

from pocketlite.batch import BatchOrchestrator
from pocketlite.blobs import BlobStore
from pocketlite.catalog import SchemaCatalog
from pocketlite.config import ServerConfig
from pocketlite.db.storage import SQLiteStorage
from pocketlite.errors import InvalidRequestError
from pocketlite.forms import flatten_form
from pocketlite.metrics import HealthChecker, MetricsRegistry
from pocketlite.realtime import RealtimeRegistry
from pocketlite.records import RecordService, UploadedFile
from pocketlite.settings_store import SettingsStore

FORM_CONTENT_TYPES = ("multipart/form-data", "application/x-www-form-urlencoded")


@dataclass
class Services:
    """Everything a request handler may need, built once per app."""

    config: ServerConfig
    storage: SQLiteStorage
    catalog: SchemaCatalog
    registry: RealtimeRegistry
    records: RecordService
    batch: BatchOrchestrator
    blobs: BlobStore
    settings: SettingsStore
    metrics: MetricsRegistry
    health: HealthChecker


def get_services(request: Request) -> Services:
    return request.app.state.services


def is_form_request(request: Request) -> bool:
    content_type = request.headers.get("content-type", "")
    return content_type.startswith(FORM_CONTENT_TYPES)


async def read_json_body(request: Request) -> Any:
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        return json.loads(raw)
    except ValueError as e:
        raise InvalidRequestError(f"Invalid JSON body: {e}", field="body") from e


async def read_record_body(request: Request) -> tuple[dict[str, Any], list[UploadedFile]]:
    """Fields and file parts of a create/update request, JSON or multipart."""
    if is_form_request(request):
        form = await request.form()
        return await flatten_form(form.multi_items())

    body = await read_json_body(request)
    if not isinstance(body, dict):
        raise InvalidRequestError("Record body must be an object", field="body", value=body)
    return body, []
