"""
Invitation API endpoints.

GET    /api/v1/orgs/{org_id}/invitations      - List pending invitations
POST   /api/v1/orgs/{org_id}/invitations      - Invite a member
POST   /api/v1/invitations/{id}/accept        - Accept as the signed-in recipient
DELETE /api/v1/invitations/{id}               - Revoke a pending invitation
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.authz import Actor, AuthorizationEngine
from backoffice.core.auth import get_actor, get_dispatcher, get_engine
from backoffice.core.database import get_session
from backoffice.core.email import EmailDispatcher
from backoffice.schemas.invitations import (
    InvitationAcceptResponse,
    InvitationCreateRequest,
    InvitationCreateResponse,
    InvitationListResponse,
    InvitationResponse,
)
from backoffice.services import invitations as invitation_service

router_scoped = APIRouter()
router_global = APIRouter()


@router_scoped.get("/{org_id}/invitations", response_model=InvitationListResponse)
async def list_invitations(
    org_id: uuid.UUID,
    include_inactive: bool = Query(False),
    actor: Actor = Depends(get_actor),
    engine: AuthorizationEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_session),
):
    items = await invitation_service.list_invitations(
        actor, org_id, session, engine=engine, include_inactive=include_inactive
    )
    return InvitationListResponse(data=[InvitationResponse.model_validate(i) for i in items])


@router_scoped.post(
    "/{org_id}/invitations", response_model=InvitationCreateResponse, status_code=201
)
async def invite_member(
    org_id: uuid.UUID,
    body: InvitationCreateRequest,
    actor: Actor = Depends(get_actor),
    engine: AuthorizationEngine = Depends(get_engine),
    dispatcher: EmailDispatcher = Depends(get_dispatcher),
    session: AsyncSession = Depends(get_session),
):
    """Invite by email. `email_sent=false` means the invitation exists but mail failed."""
    result = await invitation_service.invite_member(
        actor,
        org_id,
        body.email,
        body.role,
        session,
        engine=engine,
        dispatcher=dispatcher,
        resend=body.resend,
    )
    return InvitationCreateResponse(
        invitation=InvitationResponse.model_validate(result.invitation),
        email_sent=result.email_sent,
        resent=result.resent,
    )


@router_global.post("/{invitation_id}/accept", response_model=InvitationAcceptResponse)
async def accept_invitation(
    invitation_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
):
    result = await invitation_service.accept_invitation(actor, invitation_id, session)
    invitation = result.invitation
    return InvitationAcceptResponse(
        invitation=InvitationResponse.model_validate(invitation),
        organization_id=invitation.organization_id,
        role=result.membership.role if result.membership else invitation.role,
        already_accepted=result.already_accepted,
    )


@router_global.delete("/{invitation_id}", response_model=InvitationResponse)
async def revoke_invitation(
    invitation_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    engine: AuthorizationEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_session),
):
    invitation = await invitation_service.revoke_invitation(
        actor, invitation_id, session, engine=engine
    )
    return InvitationResponse.model_validate(invitation)
