"""Shared test fixtures."""

from __future__ import annotations

import os

# Dev/test mode must be set before settings are first read
os.environ.setdefault("ENV", "test")
os.environ.setdefault("SECRET_KEY", "test-secret")

from datetime import UTC, datetime

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine
from sqlmodel import SQLModel

import mosqos.models.database  # noqa: F401  register tables on the metadata
from mosqos.config.settings import Settings, get_settings
from mosqos.models.domain import Organization, Principal
from mosqos.storage.repositories.access_store import InMemoryAccessStore
from mosqos.storage.seed import seed_dev_data
from mosqos.types import OrganizationStatus, Relation
from mosqos.web.app import create_app

VERIFIED_AT = datetime(2024, 1, 1, tzinfo=UTC)


@pytest.fixture(autouse=True)
def _fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def world() -> InMemoryAccessStore:
    """A small tenant landscape.

    Organizations: ``acme`` (approved, active), ``beta`` (pending),
    ``gamma`` (approved, deactivated).
    Principals: ``admin`` (platform admin, no memberships), ``owner``
    (owner of acme), ``delegate`` (delegate of acme), ``member`` (member of
    acme and beta), ``stranger`` (nothing), ``unverified`` (member of acme,
    email not confirmed).
    """
    store = InMemoryAccessStore()
    store.add_organization(
        Organization(id="org-acme", name="Acme", slug="acme", status=OrganizationStatus.APPROVED)
    )
    store.add_organization(
        Organization(id="org-beta", name="Beta", slug="beta", status=OrganizationStatus.PENDING)
    )
    store.add_organization(
        Organization(
            id="org-gamma",
            name="Gamma",
            slug="gamma",
            status=OrganizationStatus.APPROVED,
            is_active=False,
        )
    )
    for name in ("admin", "owner", "delegate", "member", "stranger"):
        store.add_principal(
            Principal(id=f"p-{name}", email=f"{name}@example.com", email_verified_at=VERIFIED_AT)
        )
    store.add_principal(Principal(id="p-unverified", email="unverified@example.com"))

    store.grant_platform_admin("p-admin")
    store.add_relation("p-owner", "org-acme", Relation.OWNER)
    store.add_relation("p-delegate", "org-acme", Relation.DELEGATE)
    store.add_relation("p-member", "org-acme", Relation.MEMBER)
    store.add_relation("p-member", "org-beta", Relation.MEMBER)
    store.add_relation("p-unverified", "org-acme", Relation.MEMBER)
    return store


@pytest.fixture()
async def async_engine():
    """In-memory SQLite engine with all tables created."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def app():
    """Create a fresh app instance backed by the in-memory store."""
    return create_app(Settings(env="test", secret_key="test-secret", use_database=False))


@pytest.fixture()
async def client(app):
    """An AsyncClient against the app with the dev accounts seeded."""
    services = app.state.services
    await seed_dev_data(services.store, services.groups)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
