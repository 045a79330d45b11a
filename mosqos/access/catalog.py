"""Permission catalog: the closed set of permission keys and system group templates.

Keys have the form ``module:action``. The catalog is static; organizations
receive copies of the system templates as their immutable system groups.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from mosqos.exceptions import UnknownPermissionError
from mosqos.types import PermissionModule

_MODULE_ACTIONS: dict[PermissionModule, tuple[str, ...]] = {
    PermissionModule.MEMBERS: ("view", "create", "edit", "delete", "export", "import"),
    PermissionModule.HOUSEHOLDS: ("view", "create", "edit", "delete"),
    PermissionModule.DONATIONS: ("view", "create", "edit", "delete", "export", "refund"),
    PermissionModule.FUNDS: ("view", "create", "edit", "delete", "transfer"),
    PermissionModule.PLEDGES: ("view", "create", "edit", "delete"),
    PermissionModule.EDUCATION: ("view", "create", "edit", "delete", "enroll", "grades"),
    PermissionModule.CASES: ("view", "create", "edit", "delete", "assign", "close"),
    PermissionModule.UMRAH: ("view", "create", "edit", "delete", "manage"),
    PermissionModule.QURBANI: ("view", "create", "edit", "delete", "manage"),
    PermissionModule.SERVICES: ("view", "create", "edit", "delete", "schedule"),
    PermissionModule.ANNOUNCEMENTS: ("view", "create", "edit", "delete", "publish"),
    PermissionModule.REPORTS: ("view", "financial", "membership", "export"),
    PermissionModule.SETTINGS: ("view", "edit", "billing", "integrations"),
    PermissionModule.PERMISSIONS: ("view", "manage"),
}

ALL_PERMISSIONS: frozenset[str] = frozenset(
    f"{module.value}:{action}" for module, actions in _MODULE_ACTIONS.items() for action in actions
)

PERMISSIONS_VIEW = "permissions:view"
PERMISSIONS_MANAGE = "permissions:manage"


@dataclass(frozen=True, slots=True)
class SystemGroupTemplate:
    """A global, immutable permission group copied into every organization."""

    name: str
    description: str
    permission_keys: frozenset[str]


def all_permission_keys() -> frozenset[str]:
    return ALL_PERMISSIONS


def require_key(key: str) -> str:
    """Return ``key`` if it is in the catalog, else raise ``UnknownPermissionError``."""
    if key not in ALL_PERMISSIONS:
        raise UnknownPermissionError(key)
    return key


def is_known_key(key: str) -> bool:
    return key in ALL_PERMISSIONS


def keys_for_module(module: PermissionModule | str) -> frozenset[str]:
    module = PermissionModule(module)
    return frozenset(f"{module.value}:{action}" for action in _MODULE_ACTIONS[module])


def _keys_for_modules(*modules: PermissionModule) -> frozenset[str]:
    return frozenset().union(*(keys_for_module(m) for m in modules))


SYSTEM_GROUP_TEMPLATES: tuple[SystemGroupTemplate, ...] = (
    SystemGroupTemplate(
        name="Administrators",
        description="Full administrative access to all modules",
        permission_keys=ALL_PERMISSIONS,
    ),
    SystemGroupTemplate(
        name="Finance Team",
        description="Access to financial modules (donations, funds, pledges, reports)",
        permission_keys=_keys_for_modules(
            PermissionModule.DONATIONS,
            PermissionModule.FUNDS,
            PermissionModule.PLEDGES,
            PermissionModule.REPORTS,
        ),
    ),
    SystemGroupTemplate(
        name="Education Team",
        description="Access to education module",
        permission_keys=keys_for_module(PermissionModule.EDUCATION),
    ),
    SystemGroupTemplate(
        name="Viewers",
        description="Read-only access to basic information",
        permission_keys=frozenset(k for k in ALL_PERMISSIONS if k.endswith(":view")),
    ),
)


def system_group_templates() -> tuple[SystemGroupTemplate, ...]:
    return SYSTEM_GROUP_TEMPLATES


def validate_keys(keys: Iterable[str]) -> frozenset[str]:
    """Return ``keys`` as a frozenset, raising on the first key outside the catalog."""
    return frozenset(require_key(k) for k in keys)
