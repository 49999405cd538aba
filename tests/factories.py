"""Row factories shared by the service and API tests."""

from __future__ import annotations

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.authz import Actor
from backoffice.models.membership import Membership
from backoffice.models.organization import Organization
from backoffice.models.user import User
from backoffice.schemas.common import OrganizationRole, SystemRole


async def make_user(
    session: AsyncSession,
    email: str,
    role: SystemRole = SystemRole.USER,
    name: Optional[str] = None,
    banned: bool = False,
) -> User:
    user = User(email=email, name=name or email.split("@")[0], role=role.value, banned=banned)
    session.add(user)
    await session.flush()
    return user


async def make_org(
    session: AsyncSession, name: str = "Acme", slug: Optional[str] = None
) -> Organization:
    org = Organization(name=name, slug=slug or f"{name.lower()}-1")
    session.add(org)
    await session.flush()
    return org


async def add_member(
    session: AsyncSession, org: Organization, user: User, role: OrganizationRole
) -> Membership:
    membership = Membership(user_id=user.id, organization_id=org.id, role=role.value)
    session.add(membership)
    await session.flush()
    return membership


def actor_for(user: User, active_org=None) -> Actor:
    return Actor(
        user_id=user.id,
        system_role=SystemRole(user.role),
        active_organization_id=active_org,
        email=user.email,
    )


class FailingDispatcher:
    """Email provider that is down."""

    def __init__(self):
        self.attempts = 0

    async def send(self, email, url, purpose, expires_in_minutes) -> bool:
        self.attempts += 1
        return False
