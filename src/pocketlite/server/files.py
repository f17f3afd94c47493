"""
files.py - Record file endpoints.
"""

import logging
import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.responses import RedirectResponse

from pocketlite.errors import InvalidRequestError, NotFoundError
from pocketlite.records import file_path, stored_filename
from pocketlite.server.deps import Services, get_services

logger = logging.getLogger("pocketlite.server.files")

router = APIRouter(prefix="/api/files", tags=["files"])


def file_url(collection: str, record_id: str, filename: str) -> str:
    return f"/api/files/{collection}/{record_id}/{filename}"


@router.post("/token")
async def file_token():
    """Short-lived opaque token for protected file access."""
    return {"token": secrets.token_urlsafe(24)}


@router.get("/{collection}/{record_id}/{filename}")
async def get_file(
    collection: str,
    record_id: str,
    filename: str,
    download: Optional[str] = Query(None),
    services: Services = Depends(get_services),
):
    await services.records.get_record(collection, record_id)
    path = file_path(collection, record_id, filename)

    if download is not None:
        url = await services.blobs.presigned_url(path)
        if url is not None:
            return RedirectResponse(url, status_code=status.HTTP_302_FOUND)

    content, content_type = await services.blobs.get(path)
    disposition = "attachment" if download is not None else "inline"
    return Response(
        content=content,
        media_type=content_type,
        headers={"Content-Disposition": f'{disposition}; filename="{filename}"'},
    )


@router.post("/{collection}/{record_id}")
async def upload_file(
    collection: str,
    record_id: str,
    request: Request,
    services: Services = Depends(get_services),
):
    await services.records.get_record(collection, record_id)
    form = await request.form()
    upload = form.get("file")
    if upload is None or isinstance(upload, str):
        raise InvalidRequestError("Missing file field", field="file")

    content = await upload.read()
    content_type = upload.content_type or "application/octet-stream"
    name = stored_filename(upload.filename or "file.bin")
    await services.blobs.put(file_path(collection, record_id, name), content, content_type)
    logger.info(f"Uploaded {name} ({len(content)} bytes) to {collection}/{record_id}")
    return {
        "filename": name,
        "size": len(content),
        "type": content_type,
        "url": file_url(collection, record_id, name),
    }


@router.delete("/{collection}/{record_id}/{filename}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_file(
    collection: str,
    record_id: str,
    filename: str,
    services: Services = Depends(get_services),
):
    if not await services.blobs.delete(file_path(collection, record_id, filename)):
        raise NotFoundError(f"File not found: {filename}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
