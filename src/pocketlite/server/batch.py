"""
batch.py - Batch endpoint.

Accepts either a JSON body {"requests": [...]} or multipart form data
whose "@jsonPayload" field holds that JSON and whose file fields are
named "requests.{i}.{field}".
"""

import json

from fastapi import APIRouter, Depends, Request

from pocketlite.batch import BatchRequest
from pocketlite.errors import InvalidRequestError
from pocketlite.forms import flatten_form, group_batch_files
from pocketlite.server.deps import Services, get_services, is_form_request, read_json_body

router = APIRouter(prefix="/api/batch", tags=["batch"])

JSON_PAYLOAD_FIELD = "@jsonPayload"


async def _read_batch(request: Request) -> list[BatchRequest]:
    files_by_index = {}
    if is_form_request(request):
        form = await request.form()
        raw = form.get(JSON_PAYLOAD_FIELD)
        if not isinstance(raw, str):
            raise InvalidRequestError(f"Missing {JSON_PAYLOAD_FIELD} field", field=JSON_PAYLOAD_FIELD)
        try:
            payload = json.loads(raw)
        except ValueError as e:
            raise InvalidRequestError(f"Invalid {JSON_PAYLOAD_FIELD}: {e}", field=JSON_PAYLOAD_FIELD) from e
        items = [(k, v) for k, v in form.multi_items() if k != JSON_PAYLOAD_FIELD]
        _, files = await flatten_form(items)
        files_by_index = group_batch_files(files)
    else:
        payload = await read_json_body(request)

    requests = payload.get("requests") if isinstance(payload, dict) else None
    if not isinstance(requests, list):
        raise InvalidRequestError("requests must be a list", field="requests", value=requests)
    return [
        BatchRequest.from_dict(item, files_by_index.get(index, ()))
        for index, item in enumerate(requests)
    ]


@router.post("")
async def execute_batch(request: Request, services: Services = Depends(get_services)):
    requests = await _read_batch(request)
    results = await services.batch.execute(requests)
    return [result.to_dict() for result in results]
