"""
User administration - creating, banning and listing backoffice users.

Credentials live outside this core: a new user is onboarded by sending a
magic sign-in link, never by setting a password here.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Optional

import structlog
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from backoffice.authz import Actor, AuthorizationEngine
from backoffice.core.config import Settings
from backoffice.core.email import EmailDispatcher
from backoffice.core.errors import (
    ConflictError,
    UserAlreadyExistsError,
    UserNotFoundError,
    ValidationError,
)
from backoffice.models.user import User
from backoffice.schemas.common import SystemRole
from backoffice.services.access import authorize_in_org, authorize_system, require_assignment
from backoffice.services.invitations import has_pending_invitation, normalize_email
from backoffice.services.links import send_magic_link

log = structlog.get_logger()


@dataclass
class UserCreated:
    user: User
    email_sent: bool


def _clean_user_name(name: str) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("User name is required")
    if len(name) > 100:
        raise ValidationError("User name must be at most 100 characters")
    return name


async def get_user_by_email(email: str, session: AsyncSession) -> Optional[User]:
    result = await session.execute(select(User).where(User.email == normalize_email(email)))
    return result.scalar_one_or_none()


async def _insert_user(
    email: str, name: str, role: SystemRole, session: AsyncSession
) -> User:
    if await get_user_by_email(email, session) is not None:
        raise UserAlreadyExistsError(f"A user with email {email} already exists")
    user = User(email=email, name=name, role=role.value)
    session.add(user)
    try:
        await session.flush()
    except IntegrityError as exc:
        raise UserAlreadyExistsError(f"A user with email {email} already exists") from exc
    return user


async def create_user(
    actor: Actor,
    email: str,
    name: str,
    session: AsyncSession,
    *,
    engine: AuthorizationEngine,
    dispatcher: EmailDispatcher,
    system_role: SystemRole = SystemRole.USER,
    organization_id: Optional[uuid.UUID] = None,
    settings: Optional[Settings] = None,
) -> UserCreated:
    """Create a user and send them a magic sign-in link.

    Without `organization_id` this needs the system-wide user:create grant.
    With it, the actor's role in that organization is checked instead, so an
    owner can create accounts for the people they onboard. Only a system
    admin may create another admin. A failed send is reported in the result;
    the user is still created.
    """
    system_role = SystemRole(system_role)
    if organization_id is None:
        authorize_system(actor, "user", "create", engine=engine)
    else:
        await authorize_in_org(actor, "user", "create", organization_id, session, engine=engine)
    if system_role == SystemRole.ADMIN:
        require_assignment(actor, None, system_role, "user", "create", organization_id)

    email = normalize_email(email)
    user = await _insert_user(email, _clean_user_name(name), system_role, session)
    log.info(
        "user.created",
        user_id=str(user.id),
        role=system_role.value,
        by=str(actor.user_id),
    )

    sent = await send_magic_link(email, dispatcher, settings=settings)
    return UserCreated(user=user, email_sent=sent)


async def provision_invited_user(email: str, session: AsyncSession) -> Optional[User]:
    """Sign up an invitee on their first magic-link sign-in.

    Only an address holding an effectively pending invitation gets an
    account; anyone else gets None.
    """
    email = normalize_email(email)
    if not await has_pending_invitation(email, session):
        return None
    user = await _insert_user(email, email.split("@")[0], SystemRole.USER, session)
    log.info("user.provisioned_from_invitation", user_id=str(user.id))
    return user


async def get_user(
    actor: Actor,
    user_id: uuid.UUID,
    session: AsyncSession,
    *,
    engine: AuthorizationEngine,
) -> User:
    if actor is None or actor.user_id != user_id:
        authorize_system(actor, "user", "read", engine=engine)
    user = await session.get(User, user_id)
    if user is None:
        raise UserNotFoundError("User not found")
    return user


async def set_user_banned(
    actor: Actor,
    user_id: uuid.UUID,
    banned: bool,
    session: AsyncSession,
    *,
    engine: AuthorizationEngine,
) -> User:
    """Ban or unban a user. Banned users fail actor resolution on every request."""
    authorize_system(actor, "user", "ban" if banned else "unban", engine=engine)
    if banned and actor.user_id == user_id:
        raise ValidationError("You cannot ban yourself")

    user = await session.get(User, user_id)
    if user is None:
        raise UserNotFoundError("User not found")
    if user.banned == banned:
        return user

    user.banned = banned
    session.add(user)
    await session.flush()
    log.info("user.banned" if banned else "user.unbanned", user_id=str(user.id), by=str(actor.user_id))
    return user


async def list_users(
    actor: Actor,
    session: AsyncSession,
    *,
    engine: AuthorizationEngine,
    search: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[User], int]:
    """Paginated user directory, optionally filtered by email or name substring."""
    authorize_system(actor, "user", "list", engine=engine)

    stmt = select(User)
    count_stmt = select(func.count()).select_from(User)
    if search:
        pattern = f"%{search.strip().lower()}%"
        condition = or_(User.email.like(pattern), func.lower(User.name).like(pattern))
        stmt = stmt.where(condition)
        count_stmt = count_stmt.where(condition)

    total = (await session.execute(count_stmt)).scalar_one()
    result = await session.execute(
        stmt.order_by(User.created_at.desc()).limit(limit).offset(offset)
    )
    return list(result.scalars().all()), total


async def create_first_admin(email: str, name: str, session: AsyncSession) -> User:
    """Bootstrap the first system admin. Refuses once any admin exists."""
    existing = await session.execute(
        select(func.count()).select_from(User).where(User.role == SystemRole.ADMIN.value)
    )
    if existing.scalar_one() > 0:
        raise ConflictError("An admin already exists; use the admin panel to add more")

    user = await _insert_user(
        normalize_email(email), _clean_user_name(name), SystemRole.ADMIN, session
    )
    log.info("user.first_admin_created", user_id=str(user.id))
    return user
