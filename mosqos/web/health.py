"""Health check endpoint logic."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

if TYPE_CHECKING:
    from mosqos.web.dependencies import AccessServices

logger = structlog.get_logger(__name__)


async def check_health(services: AccessServices) -> dict[str, object]:
    """Return application health status, probing the database when one is configured."""
    settings = services.settings
    result: dict[str, object] = {
        "status": "healthy",
        "version": "0.1.0",
        "env": settings.env,
        "database": "disabled",
    }
    if not settings.use_database:
        return result

    from mosqos.storage.database import get_engine

    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        result["database"] = "connected"
    except (SQLAlchemyError, OSError) as exc:
        logger.warning("health_check_db_failed", error=str(exc))
        result["database"] = "unavailable"
        result["status"] = "degraded"

    return result
