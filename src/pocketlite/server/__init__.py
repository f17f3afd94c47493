"""HTTP surface: FastAPI application and routers."""

from pocketlite.server.app import build_services, create_app

__all__ = ["build_services", "create_app"]
