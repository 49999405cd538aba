"""
Authorization decision engine.

`authorize()` is a pure function of the actor, the static role configuration
and at most one membership lookup that the caller performs beforehand and
passes in through `OrganizationScope`. It never raises for a denial and never
touches the database, so every rule here is testable without one.

Rules, in order:
1. a system admin is allowed everything (total bypass of org checks);
2. an unauthenticated actor is denied;
3. org-scoped checks use only the actor's role *in that organization*;
4. system-scoped checks use the actor's system role; deny by default.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Optional

from backoffice.authz.roles import RoleRegistry
from backoffice.schemas.common import OrganizationRole, SystemRole

REASON_ADMIN_BYPASS = "system admin bypass"
REASON_UNAUTHENTICATED = "unauthenticated"
REASON_ORG_NOT_FOUND = "organization not found"
REASON_NOT_A_MEMBER = "not a member"
REASON_ROLE_INSUFFICIENT = "role insufficient"
REASON_GRANTED = "granted by role"


@dataclass(frozen=True)
class Actor:
    """Resolved identity for one request. Immutable for the request's lifetime."""

    user_id: uuid.UUID
    system_role: Optional[SystemRole]
    active_organization_id: Optional[uuid.UUID] = None
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.system_role == SystemRole.ADMIN


@dataclass(frozen=True)
class OrganizationScope:
    """The target organization plus the actor's role in it (None = no membership)."""

    organization_id: uuid.UUID
    member_role: Optional[OrganizationRole] = None
    organization_exists: bool = True


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str

    def __bool__(self) -> bool:
        return self.allowed


class AuthorizationEngine:
    def __init__(self, roles: RoleRegistry):
        self.roles = roles

    def authorize(
        self,
        actor: Optional[Actor],
        resource: str,
        action: str,
        scope: Optional[OrganizationScope] = None,
    ) -> Decision:
        if actor is not None and actor.system_role == SystemRole.ADMIN:
            return Decision(True, REASON_ADMIN_BYPASS)

        if actor is None or actor.system_role is None:
            return Decision(False, REASON_UNAUTHENTICATED)

        if scope is not None:
            if not scope.organization_exists:
                return Decision(False, REASON_ORG_NOT_FOUND)
            if scope.member_role is None:
                return Decision(False, REASON_NOT_A_MEMBER)
            if self.roles.grants_action(scope.member_role, resource, action):
                return Decision(True, REASON_GRANTED)
            return Decision(False, REASON_ROLE_INSUFFICIENT)

        if self.roles.grants_action(actor.system_role, resource, action):
            return Decision(True, REASON_GRANTED)
        return Decision(False, REASON_ROLE_INSUFFICIENT)
