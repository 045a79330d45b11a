"""FastAPI dependency injection and shared state."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import structlog
from fastapi import Request

from mosqos.access.guards import GuardEvaluator, GuardPaths
from mosqos.access.identity import IdentityCache
from mosqos.config.settings import Settings
from mosqos.storage.repositories.access_store import AccessStore, InMemoryAccessStore
from mosqos.storage.repositories.permission_groups import PermissionGroupRepository
from mosqos.web.auth.session import SessionAuth

logger = structlog.get_logger(__name__)


@dataclass
class AccessServices:
    """Process-wide collaborators, attached to ``app.state`` by the app factory."""

    settings: Settings
    store: AccessStore
    groups: Any  # PermissionGroupRepository | DatabasePermissionGroupRepository
    cache: IdentityCache
    evaluator: GuardEvaluator
    paths: GuardPaths
    sessions: SessionAuth


def _create_store_and_groups(settings: Settings, cache: IdentityCache) -> tuple[AccessStore, Any]:
    """Create the appropriate access store and group repository based on settings."""
    if settings.use_database:
        from mosqos.storage.database import get_engine
        from mosqos.storage.repositories.db_access_store import DatabaseAccessStore
        from mosqos.storage.repositories.db_permission_groups import (
            DatabasePermissionGroupRepository,
        )

        engine = get_engine()
        return (
            DatabaseAccessStore(engine),
            DatabasePermissionGroupRepository(engine, on_change=cache.invalidate_many),
        )
    store = InMemoryAccessStore()
    return store, PermissionGroupRepository(store, on_change=cache.invalidate_many)


def build_services(settings: Settings) -> AccessServices:
    cache = IdentityCache(ttl_seconds=settings.identity_cache_ttl_seconds)
    store, groups = _create_store_and_groups(settings, cache)
    paths = GuardPaths.from_settings(settings)
    evaluator = GuardEvaluator(store, paths=paths, dev_mode=settings.dev_mode, cache=cache)
    logger.info(
        "access_services_built",
        backend="database" if settings.use_database else "memory",
        env=settings.env,
    )
    return AccessServices(
        settings=settings,
        store=store,
        groups=groups,
        cache=cache,
        evaluator=evaluator,
        paths=paths,
        sessions=SessionAuth(settings.secret_key, max_age=settings.session_max_age),
    )


def get_services(request: Request) -> AccessServices:
    return request.app.state.services
