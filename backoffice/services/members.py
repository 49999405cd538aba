"""
Membership service - listing, removal, leaving and role changes.

Every mutation locks the organization row before counting owners, so two
concurrent "remove the last owner" / "demote the last owner" requests cannot
both pass the check.
"""

from __future__ import annotations

import uuid

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from backoffice.authz import Actor, AuthorizationEngine
from backoffice.core.errors import (
    LastOwnerRemovalError,
    MembershipNotFoundError,
    OrganizationNotFoundError,
)
from backoffice.models.base import utcnow
from backoffice.models.membership import Membership
from backoffice.models.user import User
from backoffice.schemas.common import OrganizationRole
from backoffice.services.access import (
    authorize_in_org,
    count_owners,
    get_membership,
    get_organization,
    require_assignment,
)

log = structlog.get_logger()


async def _ensure_not_last_owner(membership: Membership, session: AsyncSession) -> None:
    if membership.role != OrganizationRole.OWNER.value:
        return
    if await count_owners(membership.organization_id, session) <= 1:
        log.info(
            "membership.last_owner_protected",
            org_id=str(membership.organization_id),
            user_id=str(membership.user_id),
        )
        raise LastOwnerRemovalError()


async def list_members(
    actor: Actor,
    organization_id: uuid.UUID,
    session: AsyncSession,
    *,
    engine: AuthorizationEngine,
) -> list[dict]:
    """List all members of an organization with their user info."""
    await authorize_in_org(
        actor, "organization:member", "list", organization_id, session, engine=engine
    )
    result = await session.execute(
        select(User, Membership)
        .join(Membership, Membership.user_id == User.id)
        .where(Membership.organization_id == organization_id)
        .order_by(Membership.joined_at.desc())
    )
    return [
        {
            "user_id": user.id,
            "email": user.email,
            "name": user.name,
            "role": membership.role,
            "joined_at": membership.joined_at,
        }
        for user, membership in result.all()
    ]


async def remove_member(
    actor: Actor,
    organization_id: uuid.UUID,
    user_id: uuid.UUID,
    session: AsyncSession,
    *,
    engine: AuthorizationEngine,
) -> None:
    """Remove a member (organization:member:delete). The last owner cannot be removed."""
    await authorize_in_org(
        actor,
        "organization:member",
        "delete",
        organization_id,
        session,
        engine=engine,
        lock=True,
    )
    membership = await get_membership(user_id, organization_id, session)
    if membership is None:
        raise MembershipNotFoundError("User is not a member of this organization")

    await _ensure_not_last_owner(membership, session)
    await session.delete(membership)
    await session.flush()

    log.info(
        "membership.removed",
        org_id=str(organization_id),
        user_id=str(user_id),
        by=str(actor.user_id),
    )


async def leave_organization(
    actor: Actor,
    organization_id: uuid.UUID,
    session: AsyncSession,
) -> None:
    """The actor removes their own membership. The last owner cannot leave."""
    org = await get_organization(organization_id, session, lock=True)
    if org is None:
        raise OrganizationNotFoundError("Organization not found")
    membership = await get_membership(actor.user_id, organization_id, session)
    if membership is None:
        raise MembershipNotFoundError("You are not a member of this organization")

    await _ensure_not_last_owner(membership, session)
    await session.delete(membership)
    await session.flush()

    log.info("membership.left", org_id=str(organization_id), user_id=str(actor.user_id))


async def change_role(
    actor: Actor,
    organization_id: uuid.UUID,
    user_id: uuid.UUID,
    new_role: OrganizationRole,
    session: AsyncSession,
    *,
    engine: AuthorizationEngine,
) -> Membership:
    """Change a member's role in place (organization:member:update + assignment policy)."""
    new_role = OrganizationRole(new_role)
    _, scope = await authorize_in_org(
        actor,
        "organization:member",
        "update",
        organization_id,
        session,
        engine=engine,
        lock=True,
    )
    require_assignment(
        actor, scope.member_role, new_role, "organization:member", "update", organization_id
    )

    membership = await get_membership(user_id, organization_id, session)
    if membership is None:
        raise MembershipNotFoundError("User is not a member of this organization")
    if membership.role == new_role.value:
        return membership

    if new_role != OrganizationRole.OWNER:
        await _ensure_not_last_owner(membership, session)

    previous = membership.role
    membership.role = new_role.value
    membership.updated_at = utcnow()
    session.add(membership)
    await session.flush()

    log.info(
        "membership.role_changed",
        org_id=str(organization_id),
        user_id=str(user_id),
        previous=previous,
        role=new_role.value,
        by=str(actor.user_id),
    )
    return membership
