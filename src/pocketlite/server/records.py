"""
records.py - Record CRUD endpoints.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status

from pocketlite.config import DEFAULT_PAGE, DEFAULT_PER_PAGE
from pocketlite.server.deps import Services, get_services, read_record_body

router = APIRouter(prefix="/api/collections/{collection}/records", tags=["records"])


@router.get("")
async def list_records(
    collection: str,
    page: int = Query(DEFAULT_PAGE),
    per_page: int = Query(DEFAULT_PER_PAGE, alias="perPage"),
    filter: Optional[str] = Query(None),
    sort: Optional[str] = Query(None),
    expand: Optional[str] = Query(None),
    skip_total: bool = Query(False, alias="skipTotal"),
    services: Services = Depends(get_services),
):
    result = await services.records.list_records(
        collection,
        page=page,
        per_page=per_page,
        filter=filter,
        sort=sort,
        expand=expand,
        skip_total=skip_total,
    )
    return result.to_dict()


@router.get("/{record_id}")
async def get_record(
    collection: str,
    record_id: str,
    expand: Optional[str] = Query(None),
    services: Services = Depends(get_services),
):
    return await services.records.get_record(collection, record_id, expand=expand)


@router.post("")
async def create_record(
    collection: str,
    request: Request,
    expand: Optional[str] = Query(None),
    services: Services = Depends(get_services),
):
    fields, files = await read_record_body(request)
    return await services.records.create_record(collection, fields, files, expand=expand)


@router.patch("/{record_id}")
async def update_record(
    collection: str,
    record_id: str,
    request: Request,
    expand: Optional[str] = Query(None),
    services: Services = Depends(get_services),
):
    fields, files = await read_record_body(request)
    return await services.records.update_record(collection, record_id, fields, files, expand=expand)


@router.delete("/{record_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_record(
    collection: str,
    record_id: str,
    services: Services = Depends(get_services),
):
    await services.records.delete_record(collection, record_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
