"""
app.py - FastAPI application factory.

Collaborators (storage, catalog, realtime registry, record service,
...) are constructed once per application and kept on app.state.
The lifespan initializes them before traffic is served and shuts the
realtime registry down on exit.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from pocketlite import __version__
from pocketlite.batch import BatchOrchestrator
from pocketlite.blobs import create_blob_store
from pocketlite.catalog import SchemaCatalog
from pocketlite.config import ServerConfig
from pocketlite.db.migrations import initialize_metadata_tables
from pocketlite.db.storage import SQLiteStorage
from pocketlite.errors import PocketliteError, UpstreamError
from pocketlite.expand import ExpandResolver
from pocketlite.metrics import HealthChecker, MetricsRegistry
from pocketlite.realtime import RealtimeRegistry
from pocketlite.records import RecordService
from pocketlite.relations import RelationLookup
from pocketlite.server import batch, files, realtime, records, system
from pocketlite.server.deps import Services
from pocketlite.settings_store import SettingsStore

logger = logging.getLogger("pocketlite.server")


def build_services(config: ServerConfig) -> Services:
    """Wire the collaborators for one application instance."""
    metrics = MetricsRegistry()
    storage = SQLiteStorage(config.db_path)
    catalog = SchemaCatalog(storage)
    registry = RealtimeRegistry(
        heartbeat_interval=config.heartbeat_interval,
        stale_after=config.stale_after,
        metrics=metrics,
    )
    blobs = create_blob_store(
        config.upload_dir,
        s3_bucket=config.s3_bucket,
        s3_region=config.s3_region,
        s3_endpoint_url=config.s3_endpoint_url,
    )
    expand = ExpandResolver(
        storage,
        RelationLookup.for_catalog(catalog, heuristics=config.relation_heuristics),
    )
    record_service = RecordService(
        storage,
        expand,
        blob_store=blobs,
        on_change=registry.broadcast,
        metrics=metrics,
        strict_delete=config.strict_delete,
    )

    health = HealthChecker()

    async def check_database() -> dict:
        latency = await storage.ping()
        return {"healthy": True, "message": f"Database reachable ({latency:.1f}ms)"}

    health.register_check("database", check_database)
    health.register_check(
        "disk",
        lambda: HealthChecker.check_disk(os.path.dirname(os.path.abspath(config.db_path)), 99),
    )

    return Services(
        config=config,
        storage=storage,
        catalog=catalog,
        registry=registry,
        records=record_service,
        batch=BatchOrchestrator(record_service),
        blobs=blobs,
        settings=SettingsStore(storage),
        metrics=metrics,
        health=health,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    services: Services = app.state.services
    logger.info(f"Starting pocketlite with DB: {services.config.db_path}")
    await initialize_metadata_tables(services.storage)
    await services.catalog.initialize()
    services.registry.start()
    try:
        yield
    finally:
        await services.registry.shutdown()
        services.storage.close()
        logger.info("pocketlite stopped")


def _error_response(status_code: int, message: str, data: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"code": status_code, "message": message, "data": data or {}},
    )


def install_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(PocketliteError)
    async def pocketlite_exception_handler(request: Request, exc: PocketliteError):
        if isinstance(exc, UpstreamError):
            logger.warning(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=exc.status, content=exc.to_payload())

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        data = {}
        for error in exc.errors():
            name = str(error["loc"][-1]) if error.get("loc") else "body"
            data[name] = {"code": "validation_invalid_value", "message": error.get("msg", "")}
        return _error_response(400, "Failed to process the request.", data)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return _error_response(exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception")
        return _error_response(500, "Something went wrong while processing your request.")


def create_app(config: Optional[ServerConfig] = None) -> FastAPI:
    """Build the application; configuration defaults to the environment."""
    config = config or ServerConfig.from_env()

    app = FastAPI(title="pocketlite", version=__version__, lifespan=lifespan)
    app.state.services = build_services(config)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_exception_handlers(app)

    for router in (records.router, realtime.router, batch.router, files.router, system.router):
        app.include_router(router)
    return app
