"""
One-time link endpoints.

POST /auth/magic-link          - Email a sign-in link
GET  /auth/magic-link/verify   - Exchange a sign-in link for a session cookie
POST /auth/password-reset      - Email a password reset link
"""

from __future__ import annotations

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.core.auth import SESSION_EXPIRE, create_jwt, get_dispatcher
from backoffice.core.config import get_settings
from backoffice.core.database import get_session
from backoffice.core.email import EmailDispatcher, EmailPurpose
from backoffice.core.errors import Unauthenticated
from backoffice.schemas.users import (
    LinkSentResponse,
    MagicLinkRequest,
    PasswordResetRequest,
    UserResponse,
)
from backoffice.services import links as link_service
from backoffice.services import users as user_service

log = structlog.get_logger()
router = APIRouter()


@router.post("/magic-link", response_model=LinkSentResponse)
async def request_magic_link(
    body: MagicLinkRequest,
    dispatcher: EmailDispatcher = Depends(get_dispatcher),
):
    sent = await link_service.send_magic_link(
        body.email, dispatcher, callback_url=body.callback_url
    )
    return LinkSentResponse(status=sent)


@router.get("/magic-link/verify", response_model=UserResponse)
async def verify_magic_link(
    token: str,
    response: Response,
    callbackURL: Optional[str] = None,
    session: AsyncSession = Depends(get_session),
):
    """Spend a sign-in link and set the session cookie.

    An invitee without an account is signed up here.
    """
    settings = get_settings()
    email = await link_service.consume_link_token(token, EmailPurpose.MAGIC_LINK, session)
    user = await user_service.get_user_by_email(email, session)
    if user is None:
        user = await user_service.provision_invited_user(email, session)
    if user is None or user.banned:
        raise Unauthenticated("No active account for this link")

    session_token, _ = create_jwt(user.id)
    response.set_cookie(
        key=settings.session_cookie_name,
        value=session_token,
        httponly=True,
        secure=not settings.debug,
        samesite="lax",
        path="/",
        max_age=int(SESSION_EXPIRE.total_seconds()),
    )
    log.info("auth.magic_link_verified", user_id=str(user.id))
    return UserResponse.model_validate(user)


@router.post("/password-reset", response_model=LinkSentResponse)
async def request_password_reset(
    body: PasswordResetRequest,
    dispatcher: EmailDispatcher = Depends(get_dispatcher),
    session: AsyncSession = Depends(get_session),
):
    sent = await link_service.request_password_reset(body.email, session, dispatcher)
    return LinkSentResponse(status=sent)
