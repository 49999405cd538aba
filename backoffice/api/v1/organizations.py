"""
Organization API endpoints.

GET    /api/v1/orgs            - List orgs visible to the actor
POST   /api/v1/orgs            - Create an org with its owner (system admin)
GET    /api/v1/orgs/{org_id}   - Get org details
PATCH  /api/v1/orgs/{org_id}   - Rename (slug never changes)
DELETE /api/v1/orgs/{org_id}   - Delete org, memberships and invitations
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.authz import Actor, AuthorizationEngine
from backoffice.core.auth import get_actor, get_dispatcher, get_engine
from backoffice.core.database import get_session
from backoffice.core.email import EmailDispatcher
from backoffice.schemas.common import Pagination
from backoffice.schemas.organizations import (
    OrgCreateRequest,
    OrgCreateResponse,
    OrgListItem,
    OrgListResponse,
    OrgResponse,
    OrgUpdateRequest,
)
from backoffice.services import organizations as org_service

router = APIRouter()


@router.get("", response_model=OrgListResponse)
async def list_orgs(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_actor),
    engine: AuthorizationEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_session),
):
    items, total = await org_service.list_organizations(
        actor, session, engine=engine, limit=limit, offset=offset
    )
    return OrgListResponse(
        data=[OrgListItem(**item) for item in items],
        pagination=Pagination(limit=limit, offset=offset, total=total),
    )


@router.post("", response_model=OrgCreateResponse, status_code=201)
async def create_org(
    body: OrgCreateRequest,
    actor: Actor = Depends(get_actor),
    engine: AuthorizationEngine = Depends(get_engine),
    dispatcher: EmailDispatcher = Depends(get_dispatcher),
    session: AsyncSession = Depends(get_session),
):
    """Create an organization whose only initial member is the designated owner."""
    if body.owner_user_id is not None:
        org, _ = await org_service.create_organization_with_owner(
            actor, body.name, body.owner_user_id, session, engine=engine
        )
        return OrgCreateResponse(organization=OrgResponse.model_validate(org))

    org, result = await org_service.create_organization_with_owner_invitation(
        actor, body.name, body.owner_email, session, engine=engine, dispatcher=dispatcher
    )
    return OrgCreateResponse(
        organization=OrgResponse.model_validate(org),
        owner_invitation_id=result.invitation.id,
        email_sent=result.email_sent,
    )


@router.get("/{org_id}", response_model=OrgResponse)
async def get_org(
    org_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    engine: AuthorizationEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_session),
):
    org = await org_service.get_organization_details(actor, org_id, session, engine=engine)
    return OrgResponse.model_validate(org)


@router.patch("/{org_id}", response_model=OrgResponse)
async def update_org(
    org_id: uuid.UUID,
    body: OrgUpdateRequest,
    actor: Actor = Depends(get_actor),
    engine: AuthorizationEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_session),
):
    org = await org_service.rename_organization(actor, org_id, body.name, session, engine=engine)
    return OrgResponse.model_validate(org)


@router.delete("/{org_id}", status_code=204)
async def delete_org(
    org_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    engine: AuthorizationEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_session),
):
    await org_service.delete_organization(actor, org_id, session, engine=engine)
