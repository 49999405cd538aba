"""
Actor resolution for the HTTP layer.

Session tokens are signed JWTs minted after a verified magic link. Each
request's token (Bearer header or session cookie) is verified, the user is
loaded and an immutable `Actor` is produced for the authorization engine.
This module also provides the FastAPI dependencies that hand the request the
engine and email dispatcher built once at startup.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
import structlog
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.authz import Actor, AuthorizationEngine
from backoffice.core.config import get_settings
from backoffice.core.database import get_session
from backoffice.core.email import EmailDispatcher
from backoffice.core.errors import Unauthenticated
from backoffice.models.user import User
from backoffice.schemas.common import SystemRole

log = structlog.get_logger()

SESSION_EXPIRE = timedelta(days=7)


# ---------------------------------------------------------------------------
# JWT
# ---------------------------------------------------------------------------

def create_jwt(
    user_id: uuid.UUID,
    active_org: Optional[uuid.UUID] = None,
    *,
    expires_delta: timedelta | None = None,
) -> tuple[str, str]:
    """Create a signed session JWT. Returns (token, jti)."""
    settings = get_settings()
    jti = str(uuid.uuid4())
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "active_org": str(active_org) if active_org else None,
        "iat": now,
        "exp": now + (expires_delta or SESSION_EXPIRE),
        "jti": jti,
    }
    token = jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)
    return token, jti


def decode_jwt(token: str) -> dict:
    """Decode and verify a JWT. Raises jwt.PyJWTError on failure."""
    settings = get_settings()
    return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])


# ---------------------------------------------------------------------------
# Actor resolution
# ---------------------------------------------------------------------------

def _token_from_request(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip()
    return request.cookies.get(get_settings().session_cookie_name)


async def resolve_actor(token: str, session: AsyncSession) -> Actor:
    """Verify a session token and build the request's Actor."""
    try:
        payload = decode_jwt(token)
        user_id = uuid.UUID(payload["sub"])
        active_org = payload.get("active_org")
        active_org_id = uuid.UUID(active_org) if active_org else None
    except (jwt.PyJWTError, KeyError, ValueError):
        raise Unauthenticated("Invalid or expired session")

    user = await session.get(User, user_id)
    if user is None:
        raise Unauthenticated("User not found")
    if user.banned:
        log.info("auth.banned_user_rejected", user_id=str(user.id))
        raise Unauthenticated("User is banned")

    return Actor(
        user_id=user.id,
        system_role=SystemRole(user.role) if user.role else None,
        active_organization_id=active_org_id,
        email=user.email,
    )


async def get_actor(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> Actor:
    """Main authentication dependency."""
    token = _token_from_request(request)
    if not token:
        raise Unauthenticated("Authentication required")
    actor = await resolve_actor(token, session)
    request.state.actor = actor
    return actor


def get_engine(request: Request) -> AuthorizationEngine:
    return request.app.state.authz


def get_dispatcher(request: Request) -> EmailDispatcher:
    return request.app.state.email
