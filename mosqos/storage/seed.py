"""Development seed data for the in-memory store.

Mirrors the three dev accounts of the hosted app: a platform admin, the owner
(imam) of the demo masjid, and an ordinary member of it.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog

from mosqos.config.settings import DEV_ORG_SLUG
from mosqos.models.domain import Organization, Principal
from mosqos.types import OrganizationStatus, Relation

if TYPE_CHECKING:
    from mosqos.storage.repositories.access_store import InMemoryAccessStore
    from mosqos.storage.repositories.permission_groups import PermissionGroupRepository

logger = structlog.get_logger(__name__)

DEV_ORG_ID = "00000000-0000-0000-0000-000000000001"
DEV_ADMIN_ID = "00000000-0000-0000-0000-00000000000a"
DEV_IMAM_ID = "00000000-0000-0000-0000-00000000000b"
DEV_MEMBER_ID = "00000000-0000-0000-0000-00000000000c"


async def seed_dev_data(store: InMemoryAccessStore, groups: PermissionGroupRepository) -> None:
    """Populate ``store`` with the dev organization and accounts (idempotent)."""
    if DEV_ORG_ID in store.organizations:
        return
    verified = datetime.now(UTC)
    store.add_organization(
        Organization(
            id=DEV_ORG_ID,
            name="Green Lane Masjid",
            slug=DEV_ORG_SLUG,
            status=OrganizationStatus.APPROVED,
            is_active=True,
        )
    )
    for principal_id, email in (
        (DEV_ADMIN_ID, "admin@mosqos.com"),
        (DEV_IMAM_ID, "imam@mosqos.com"),
        (DEV_MEMBER_ID, "member@mosqos.com"),
    ):
        store.add_principal(Principal(id=principal_id, email=email, email_verified_at=verified))
    store.grant_platform_admin(DEV_ADMIN_ID)
    store.add_relation(DEV_IMAM_ID, DEV_ORG_ID, Relation.OWNER)
    store.add_relation(DEV_MEMBER_ID, DEV_ORG_ID, Relation.MEMBER)

    seeded = await groups.seed_default_groups(DEV_ORG_ID)
    viewers = next(g for g in seeded if g.name == "Viewers")
    await groups.assign(DEV_ORG_ID, viewers.id, DEV_MEMBER_ID)
    logger.info("dev_data_seeded", organization=DEV_ORG_SLUG)
