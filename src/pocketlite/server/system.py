"""
system.py - Health, settings, metrics and catalog endpoints.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from pocketlite.server.deps import Services, get_services, read_json_body

router = APIRouter(prefix="/api", tags=["system"])


@router.get("/health")
async def health(services: Services = Depends(get_services)):
    status = await services.health.check_all()
    if status.healthy:
        return {"code": 200, "message": "API is healthy.", "data": {"canBackup": False}}
    return JSONResponse(
        status_code=500,
        content={"code": 500, "message": "API is unhealthy.", "data": status.checks},
    )


@router.get("/settings")
async def get_settings(services: Services = Depends(get_services)):
    return await services.settings.load()


@router.patch("/settings")
async def update_settings(request: Request, services: Services = Depends(get_services)):
    return await services.settings.update(await read_json_body(request))


@router.get("/metrics", response_class=PlainTextResponse)
async def metrics(services: Services = Depends(get_services)):
    return services.metrics.export_prometheus()


@router.post("/catalog/refresh")
async def refresh_catalog(services: Services = Depends(get_services)):
    """Reload collection metadata changed while the server runs."""
    await services.catalog.refresh()
    return {"collections": len(services.catalog.list_collections())}
