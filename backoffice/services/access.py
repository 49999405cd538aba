"""
Glue between the pure authorization engine and persistence.

Services call `authorize_in_org()` / `authorize_system()` which perform the one
membership lookup the engine needs, ask the engine, and turn a denial into an
AuthorizationDenied stop.
"""

from __future__ import annotations

import uuid
from typing import Optional

import structlog
from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from backoffice.authz import (
    Actor,
    AuthorizationEngine,
    Decision,
    OrganizationScope,
    assigner_role,
    role_assignment_allowed,
)
from backoffice.authz.policy import AnyRole
from backoffice.core.errors import AuthorizationDenied, OrganizationNotFoundError
from backoffice.models.membership import Membership
from backoffice.models.organization import Organization
from backoffice.schemas.common import OrganizationRole

log = structlog.get_logger()


async def get_membership(
    user_id: uuid.UUID, organization_id: uuid.UUID, session: AsyncSession
) -> Optional[Membership]:
    result = await session.execute(
        select(Membership).where(
            Membership.user_id == user_id,
            Membership.organization_id == organization_id,
        )
    )
    return result.scalar_one_or_none()


async def get_organization(
    organization_id: uuid.UUID, session: AsyncSession, *, lock: bool = False
) -> Optional[Organization]:
    """Load an organization; `lock=True` takes a row lock for the rest of the transaction.

    Every membership mutation locks its organization first so that owner
    counting and membership upserts are serialized per organization.
    """
    stmt = select(Organization).where(Organization.id == organization_id)
    if lock:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def count_owners(organization_id: uuid.UUID, session: AsyncSession) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(Membership)
        .where(
            Membership.organization_id == organization_id,
            Membership.role == OrganizationRole.OWNER.value,
        )
    )
    return result.scalar_one()


async def load_scope(
    actor: Actor,
    organization_id: uuid.UUID,
    session: AsyncSession,
    *,
    lock: bool = False,
) -> tuple[Optional[Organization], OrganizationScope]:
    """Resolve the organization and the actor's role in it."""
    org = await get_organization(organization_id, session, lock=lock)
    if org is None:
        return None, OrganizationScope(organization_id, organization_exists=False)

    membership = await get_membership(actor.user_id, organization_id, session)
    role = OrganizationRole(membership.role) if membership else None
    return org, OrganizationScope(organization_id, member_role=role)


def require(
    decision: Decision,
    actor: Actor,
    resource: str,
    action: str,
    organization_id: Optional[uuid.UUID] = None,
) -> None:
    """Raise AuthorizationDenied for a denied decision."""
    if decision.allowed:
        return
    log.info(
        "authz.denied",
        user_id=str(actor.user_id) if actor else None,
        resource=resource,
        action=action,
        org_id=str(organization_id) if organization_id else None,
        reason=decision.reason,
    )
    raise AuthorizationDenied(decision.reason)


def require_assignment(
    actor: Actor,
    member_role: Optional[OrganizationRole],
    target_role: AnyRole,
    resource: str,
    action: str,
    organization_id: Optional[uuid.UUID] = None,
) -> None:
    """Raise AuthorizationDenied unless the actor's role may assign `target_role`."""
    creator = assigner_role(actor.system_role, member_role)
    if role_assignment_allowed(creator, target_role):
        return
    creator_name = creator.value if creator else "none"
    reason = f"role insufficient: {creator_name} cannot assign {target_role.value}"
    require(Decision(False, reason), actor, resource, action, organization_id)


async def authorize_in_org(
    actor: Actor,
    resource: str,
    action: str,
    organization_id: uuid.UUID,
    session: AsyncSession,
    *,
    engine: AuthorizationEngine,
    lock: bool = False,
) -> tuple[Organization, OrganizationScope]:
    """Authorize an org-scoped action; returns the organization and the actor's scope."""
    org, scope = await load_scope(actor, organization_id, session, lock=lock)
    decision = engine.authorize(actor, resource, action, scope)
    require(decision, actor, resource, action, organization_id)
    if org is None:
        # Only a system admin gets here: the bypass does not conjure organizations.
        raise OrganizationNotFoundError("Organization not found")
    return org, scope


def authorize_system(
    actor: Actor,
    resource: str,
    action: str,
    *,
    engine: AuthorizationEngine,
) -> None:
    require(engine.authorize(actor, resource, action), actor, resource, action)
