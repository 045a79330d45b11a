"""FastAPI application factory."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from mosqos.config.logging import setup_logging
from mosqos.config.settings import get_settings
from mosqos.exceptions import (
    DataLayerError,
    MembershipRequiredError,
    PermissionGroupNotFound,
    SystemGroupError,
    UnknownPermissionError,
)
from mosqos.web.dependencies import AccessServices, build_services, get_services
from mosqos.web.health import check_health
from mosqos.web.middleware import RequestIDMiddleware
from mosqos.web.routes.access import router as access_router
from mosqos.web.routes.auth import router as auth_router
from mosqos.web.routes.permissions import router as permissions_router

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from mosqos.config.settings import Settings

logger = structlog.get_logger(__name__)

# Domain errors that reach the HTTP layer unhandled, with the status they map to
_ERROR_STATUS: dict[type[Exception], int] = {
    PermissionGroupNotFound: 404,
    SystemGroupError: 409,
    UnknownPermissionError: 422,
    MembershipRequiredError: 422,
    DataLayerError: 503,
}


def _error_detail(exc: Exception) -> str:
    if isinstance(exc, UnknownPermissionError):
        return f"Unknown permission: {exc.args[0]}" if exc.args else "Unknown permission"
    if isinstance(exc, PermissionGroupNotFound):
        return "Permission group not found"
    if isinstance(exc, MembershipRequiredError):
        return "Principal is not a member of this organization"
    if isinstance(exc, DataLayerError):
        return "Access store unavailable"
    return str(exc)


async def _prepare_store(services: AccessServices) -> None:
    if services.settings.use_database:
        from mosqos.storage.database import init_db

        await init_db()
    else:
        from mosqos.storage.seed import seed_dev_data

        await seed_dev_data(services.store, services.groups)  # type: ignore[arg-type]


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()
    setup_logging(log_level=settings.log_level, json_output=not settings.debug)
    services = build_services(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await _prepare_store(services)
        logger.info("app_started", env=settings.env)
        yield

    app = FastAPI(
        title="MosqOS Access",
        description="Role resolution, permission aggregation and access guards",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = services

    async def domain_error_handler(request: Request, exc: Exception) -> JSONResponse:
        status = next(code for cls, code in _ERROR_STATUS.items() if isinstance(exc, cls))
        if status >= 500:
            logger.error("request_failed", path=request.url.path, error=str(exc))
        return JSONResponse(status_code=status, content={"detail": _error_detail(exc)})

    for exc_class in _ERROR_STATUS:
        app.add_exception_handler(exc_class, domain_error_handler)

    app.add_middleware(RequestIDMiddleware)

    app.include_router(auth_router)
    app.include_router(access_router)
    app.include_router(permissions_router)

    @app.get("/api/health")
    async def health_check(
        services: AccessServices = Depends(get_services),
    ) -> dict[str, object]:
        return await check_health(services)

    logger.info("app_created")
    return app
