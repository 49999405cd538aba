"""
One-time links: magic sign-in links and password resets.

Links carry a short-lived signed token (default 15 minutes). This expiry is
unrelated to the multi-day organization invitation expiry. A token is spent
by `consume_link_token`, which records its jti; a second use is rejected.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import urlencode

import jwt
import structlog
from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from backoffice.core.config import Settings, get_settings
from backoffice.core.email import EmailDispatcher, EmailPurpose
from backoffice.core.errors import LinkExpiredError, Unauthenticated
from backoffice.models.base import utcnow
from backoffice.models.link_token import ConsumedLinkToken
from backoffice.models.user import User
from backoffice.services.invitations import normalize_email

log = structlog.get_logger()

LINK_PATHS = {
    EmailPurpose.MAGIC_LINK: "/auth/magic-link/verify",
    EmailPurpose.PASSWORD_RESET: "/reset-password",
}


def issue_link_token(
    email: str,
    purpose: EmailPurpose,
    expires_in: Optional[timedelta] = None,
    settings: Optional[Settings] = None,
) -> str:
    settings = settings or get_settings()
    now = datetime.now(timezone.utc)
    expires_in = expires_in or timedelta(minutes=settings.magic_link_expire_minutes)
    payload = {
        "sub": email,
        "purpose": EmailPurpose(purpose).value,
        "iat": now,
        "exp": now + expires_in,
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def _decode_link_token(token: str, purpose: EmailPurpose, settings: Settings) -> dict:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise LinkExpiredError("Link has expired; request a new one")
    except jwt.PyJWTError:
        raise Unauthenticated("Invalid link")
    if payload.get("purpose") != EmailPurpose(purpose).value:
        raise Unauthenticated("Invalid link")
    if not payload.get("sub") or not payload.get("jti"):
        raise Unauthenticated("Invalid link")
    return payload


def verify_link_token(
    token: str, purpose: EmailPurpose, settings: Optional[Settings] = None
) -> str:
    """Return the email a link token was issued to. Does not spend the token."""
    settings = settings or get_settings()
    return _decode_link_token(token, EmailPurpose(purpose), settings)["sub"]


async def consume_link_token(
    token: str,
    purpose: EmailPurpose,
    session: AsyncSession,
    settings: Optional[Settings] = None,
) -> str:
    """Verify a link token and mark it used. Returns the email it was issued to.

    Raises Unauthenticated when the token was already consumed.
    """
    settings = settings or get_settings()
    purpose = EmailPurpose(purpose)
    payload = _decode_link_token(token, purpose, settings)
    jti = payload["jti"]

    if await session.get(ConsumedLinkToken, jti) is not None:
        log.warning("link.reused", purpose=purpose.value, jti=jti)
        raise Unauthenticated("Link has already been used")

    session.add(
        ConsumedLinkToken(
            jti=jti,
            purpose=purpose.value,
            email=payload["sub"],
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )
    )
    try:
        await session.flush()
    except IntegrityError as exc:
        # Lost a race with a concurrent use of the same link.
        raise Unauthenticated("Link has already been used") from exc
    return payload["sub"]


async def purge_consumed_link_tokens(session: AsyncSession) -> int:
    """Drop consumed-token records whose tokens have expired anyway."""
    result = await session.execute(
        delete(ConsumedLinkToken).where(ConsumedLinkToken.expires_at <= utcnow())
    )
    await session.flush()
    return result.rowcount or 0


def build_link(
    token: str,
    purpose: EmailPurpose,
    callback_url: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> str:
    settings = settings or get_settings()
    params = {"token": token}
    if callback_url:
        params["callbackURL"] = callback_url
    return f"{settings.app_url.rstrip('/')}{LINK_PATHS[purpose]}?{urlencode(params)}"


async def _send_link(
    email: str,
    purpose: EmailPurpose,
    dispatcher: EmailDispatcher,
    callback_url: Optional[str],
    settings: Settings,
) -> bool:
    token = issue_link_token(email, purpose, settings=settings)
    url = build_link(token, purpose, callback_url, settings)
    try:
        sent = await dispatcher.send(email, url, purpose, settings.magic_link_expire_minutes)
    except Exception:
        log.exception("link.send_failed", purpose=purpose.value, to=email)
        return False
    if sent:
        log.info("link.sent", purpose=purpose.value, to=email)
    else:
        log.warning("link.send_failed", purpose=purpose.value, to=email)
    return sent


async def send_magic_link(
    email: str,
    dispatcher: EmailDispatcher,
    *,
    callback_url: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> bool:
    settings = settings or get_settings()
    return await _send_link(
        normalize_email(email), EmailPurpose.MAGIC_LINK, dispatcher, callback_url, settings
    )


async def request_password_reset(
    email: str,
    session: AsyncSession,
    dispatcher: EmailDispatcher,
    *,
    settings: Optional[Settings] = None,
) -> bool:
    """Send a reset link if the account exists.

    Unknown addresses report success without sending anything, so the
    response never reveals whether an account exists.
    """
    settings = settings or get_settings()
    email = normalize_email(email)
    result = await session.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    if user is None or user.banned:
        log.info("link.reset_skipped", to=email)
        return True
    return await _send_link(email, EmailPurpose.PASSWORD_RESET, dispatcher, None, settings)
