"""
User administration endpoints.

Creation is system scope, or organization scope when `organization_id` is given.

GET    /api/v1/users                 - List users
POST   /api/v1/users                 - Create a user and send a sign-in link
GET    /api/v1/users/{user_id}       - Get a user
POST   /api/v1/users/{user_id}/ban   - Ban
POST   /api/v1/users/{user_id}/unban - Unban
"""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.authz import Actor, AuthorizationEngine
from backoffice.core.auth import get_actor, get_dispatcher, get_engine
from backoffice.core.database import get_session
from backoffice.core.email import EmailDispatcher
from backoffice.schemas.common import Pagination
from backoffice.schemas.users import (
    UserCreateRequest,
    UserCreateResponse,
    UserListResponse,
    UserResponse,
)
from backoffice.services import users as user_service

router = APIRouter()


@router.get("", response_model=UserListResponse)
async def list_users(
    search: Optional[str] = Query(None, max_length=100),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_actor),
    engine: AuthorizationEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_session),
):
    users, total = await user_service.list_users(
        actor, session, engine=engine, search=search, limit=limit, offset=offset
    )
    return UserListResponse(
        data=[UserResponse.model_validate(u) for u in users],
        pagination=Pagination(limit=limit, offset=offset, total=total),
    )


@router.post("", response_model=UserCreateResponse, status_code=201)
async def create_user(
    body: UserCreateRequest,
    actor: Actor = Depends(get_actor),
    engine: AuthorizationEngine = Depends(get_engine),
    dispatcher: EmailDispatcher = Depends(get_dispatcher),
    session: AsyncSession = Depends(get_session),
):
    result = await user_service.create_user(
        actor,
        body.email,
        body.name,
        session,
        engine=engine,
        dispatcher=dispatcher,
        system_role=body.role,
        organization_id=body.organization_id,
    )
    return UserCreateResponse(
        user=UserResponse.model_validate(result.user), email_sent=result.email_sent
    )


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    engine: AuthorizationEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_session),
):
    user = await user_service.get_user(actor, user_id, session, engine=engine)
    return UserResponse.model_validate(user)


@router.post("/{user_id}/ban", response_model=UserResponse)
async def ban_user(
    user_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    engine: AuthorizationEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_session),
):
    user = await user_service.set_user_banned(actor, user_id, True, session, engine=engine)
    return UserResponse.model_validate(user)


@router.post("/{user_id}/unban", response_model=UserResponse)
async def unban_user(
    user_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    engine: AuthorizationEngine = Depends(get_engine),
    session: AsyncSession = Depends(get_session),
):
    user = await user_service.set_user_banned(actor, user_id, False, session, engine=engine)
    return UserResponse.model_validate(user)
