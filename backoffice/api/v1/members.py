"""
Membership API endpoints.

GET    /api/v1/orgs/{org_id}/members             - List members
PATCH  /api/v1/orgs/{org_id}/members/{user_id}   - Change a member's role
DELETE /api/v1/orgs/{org_id}/members/{user_id}   - Remove a member
POST   /api/v1/orgs/{org_id}/leave               - Leave the organization
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.authz import Actor, AuthorizationEngine
from backoffice.core.auth import get_actor, get_engine
from backoffice.core.database import get_session
from backoffice.schemas.members import (
    MemberListResponse,
    MemberResponse,
    MemberRoleUpdateRequest,
    MembershipResponse,
)
from backoffice.services import members as member_service

router = APIRouter()


@router.get("/{org_id}/members", response_model=MemberListResponse)
async def list_members(
    org_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    engine: AuthorizationEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_session),
):
    items = await member_service.list_members(actor, org_id, session, engine=engine)
    return MemberListResponse(data=[MemberResponse(**item) for item in items])


@router.patch("/{org_id}/members/{user_id}", response_model=MembershipResponse)
async def change_member_role(
    org_id: uuid.UUID,
    user_id: uuid.UUID,
    body: MemberRoleUpdateRequest,
    actor: Actor = Depends(get_actor),
    engine: AuthorizationEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_session),
):
    membership = await member_service.change_role(
        actor, org_id, user_id, body.role, session, engine=engine
    )
    return MembershipResponse.model_validate(membership)


@router.delete("/{org_id}/members/{user_id}", status_code=204)
async def remove_member(
    org_id: uuid.UUID,
    user_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    engine: AuthorizationEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_session),
):
    await member_service.remove_member(actor, org_id, user_id, session, engine=engine)


@router.post("/{org_id}/leave", status_code=204)
async def leave_org(
    org_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
):
    await member_service.leave_organization(actor, org_id, session)
