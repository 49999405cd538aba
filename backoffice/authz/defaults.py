"""
Default access-control composition: statements, system roles, organization roles.

`build_access_control()` is called once at process start; any inconsistency
between the tables below fails the startup instead of a request.
"""

from __future__ import annotations

from backoffice.authz.engine import AuthorizationEngine
from backoffice.authz.roles import RoleRegistry
from backoffice.authz.statements import StatementRegistry
from backoffice.schemas.common import OrganizationRole, SystemRole

DEFAULT_STATEMENTS: dict[str, tuple[str, ...]] = {
    "user": ("create", "read", "update", "delete", "list", "ban", "unban"),
    "session": ("list", "revoke", "delete"),
    "organization": ("create", "read", "update", "delete", "list"),
    "organization:member": ("create", "read", "update", "delete", "list"),
    "organization:invitation": ("create", "read", "update", "delete", "list"),
}

SYSTEM_ROLE_GRANTS: dict[SystemRole, dict[str, tuple[str, ...]]] = {
    # admin is filled in with every declared action at build time
    SystemRole.ADMIN: {},
    SystemRole.USER: {},
}

ORGANIZATION_ROLE_GRANTS: dict[OrganizationRole, dict[str, tuple[str, ...]]] = {
    OrganizationRole.OWNER: {
        "user": ("create", "read", "update", "list"),
        "organization": ("read", "update", "list"),
        "organization:member": ("create", "read", "update", "delete", "list"),
        "organization:invitation": ("create", "read", "update", "delete", "list"),
    },
    OrganizationRole.SUPERVISOR: {
        "user": ("read", "update", "list"),
        "organization": ("read",),
        "organization:member": ("read", "list"),
        "organization:invitation": ("create", "read", "list"),
    },
    OrganizationRole.EMPLOYEE: {
        "user": ("read", "list"),
        "organization": ("read",),
        "organization:member": ("read", "list"),
    },
}


def build_role_registry(
    statements: dict[str, tuple[str, ...]] | None = None,
) -> RoleRegistry:
    registry = StatementRegistry(statements or DEFAULT_STATEMENTS)
    roles = RoleRegistry(registry)

    for role, grants in SYSTEM_ROLE_GRANTS.items():
        if role == SystemRole.ADMIN:
            grants = {r: registry.ordered_actions(r) for r in registry.resources()}
        roles.define_role(role, grants, kind="system")

    for role, grants in ORGANIZATION_ROLE_GRANTS.items():
        roles.define_role(role, grants, kind="organization")

    return roles.seal()


def build_access_control() -> AuthorizationEngine:
    """Compose and validate the default statements and roles into an engine."""
    return AuthorizationEngine(build_role_registry())
