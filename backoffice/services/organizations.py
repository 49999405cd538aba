"""
Organization service - creation with a designated owner, listing, rename, deletion.

Creating an organization is a two-step write (organization row, then the
owner's membership). The creating admin is never inserted as a member. If the
second step fails the organization is deleted again before the error leaves
this module, so no ownerless organization is ever committed.
"""

from __future__ import annotations

import re
import time
import uuid
from typing import Optional

import structlog
from sqlalchemy import delete, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from backoffice.authz import Actor, AuthorizationEngine
from backoffice.core.config import Settings
from backoffice.core.email import EmailDispatcher
from backoffice.core.errors import (
    DependencyFailure,
    OrganizationCreationFailedError,
    SlugConflictError,
    UserNotFoundError,
    ValidationError,
)
from backoffice.models.base import utcnow
from backoffice.models.invitation import Invitation
from backoffice.models.membership import Membership
from backoffice.models.organization import Organization
from backoffice.models.user import User
from backoffice.schemas.common import OrganizationRole
from backoffice.services.access import authorize_in_org, authorize_system
from backoffice.services.invitations import (
    InvitationResult,
    create_invitation,
    normalize_email,
    notify_invitation_created,
)

log = structlog.get_logger()

SLUG_BASE_MAX_LENGTH = 50


def slugify(name: str) -> str:
    """URL-safe base slug: lowercase ascii letters, digits and single hyphens."""
    base = name.lower()
    base = re.sub(r"[^a-z0-9\s-]", "", base)
    base = re.sub(r"\s+", "-", base)
    base = re.sub(r"-+", "-", base).strip("-")
    return base[:SLUG_BASE_MAX_LENGTH].rstrip("-") or "org"


def generate_slug(name: str, now_ms: Optional[int] = None) -> str:
    """Base slug plus a millisecond timestamp disambiguator, e.g. `acme-1718000000000`."""
    if now_ms is None:
        now_ms = time.time_ns() // 1_000_000
    return f"{slugify(name)}-{now_ms}"


def _clean_name(name: str) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Organization name is required")
    if len(name) > 100:
        raise ValidationError("Organization name must be at most 100 characters")
    return name


async def _insert_organization(name: str, session: AsyncSession) -> Organization:
    slug = generate_slug(name)
    existing = await session.execute(select(Organization).where(Organization.slug == slug))
    if existing.scalar_one_or_none():
        raise SlugConflictError(f"Organization slug '{slug}' is already taken")

    org = Organization(name=name, slug=slug)
    session.add(org)
    try:
        await session.flush()
    except IntegrityError as exc:
        raise SlugConflictError(f"Organization slug '{slug}' is already taken") from exc
    return org


async def _add_owner_membership(
    org: Organization, owner_id: uuid.UUID, session: AsyncSession
) -> Membership:
    membership = Membership(
        user_id=owner_id,
        organization_id=org.id,
        role=OrganizationRole.OWNER.value,
    )
    session.add(membership)
    await session.flush()
    return membership


async def _discard_organization(org: Organization, session: AsyncSession) -> None:
    """Compensating action for a half-created organization."""
    try:
        await session.delete(org)
        await session.flush()
    except SQLAlchemyError:
        # The failed flush left the transaction unusable; rolling it back
        # discards the uncommitted organization just the same.
        await session.rollback()
    log.warning("org.creation_rolled_back", org_id=str(org.id), slug=org.slug)


async def create_organization_with_owner(
    actor: Actor,
    name: str,
    owner_user_id: uuid.UUID,
    session: AsyncSession,
    *,
    engine: AuthorizationEngine,
) -> tuple[Organization, Membership]:
    """Create an organization whose sole initial member is the designated owner."""
    authorize_system(actor, "organization", "create", engine=engine)
    name = _clean_name(name)

    owner = await session.get(User, owner_user_id)
    if owner is None:
        raise UserNotFoundError("Designated owner does not exist")
    if owner.banned:
        raise ValidationError("A banned user cannot own an organization")

    org = await _insert_organization(name, session)
    try:
        membership = await _add_owner_membership(org, owner.id, session)
    except (SQLAlchemyError, DependencyFailure) as exc:
        await _discard_organization(org, session)
        raise OrganizationCreationFailedError(
            "Organization could not be created with its owner; nothing was saved"
        ) from exc

    log.info(
        "org.created",
        org_id=str(org.id),
        slug=org.slug,
        owner=str(owner.id),
        creator=str(actor.user_id),
    )
    return org, membership


async def create_organization_with_owner_invitation(
    actor: Actor,
    name: str,
    owner_email: str,
    session: AsyncSession,
    *,
    engine: AuthorizationEngine,
    dispatcher: EmailDispatcher,
    settings: Optional[Settings] = None,
) -> tuple[Organization, InvitationResult]:
    """Create an organization and invite its future owner by email.

    The organization has no members until the owner accepts.
    """
    authorize_system(actor, "organization", "create", engine=engine)
    name = _clean_name(name)
    owner_email = normalize_email(owner_email)

    org = await _insert_organization(name, session)
    try:
        invitation = await create_invitation(
            org.id, owner_email, OrganizationRole.OWNER, actor.user_id, session, settings
        )
    except (SQLAlchemyError, DependencyFailure) as exc:
        await _discard_organization(org, session)
        raise OrganizationCreationFailedError(
            "Organization could not be created with its owner invitation; nothing was saved"
        ) from exc

    log.info(
        "org.created",
        org_id=str(org.id),
        slug=org.slug,
        owner_invitation=str(invitation.id),
        creator=str(actor.user_id),
    )
    sent = await notify_invitation_created(invitation, dispatcher, settings)
    return org, InvitationResult(invitation=invitation, email_sent=sent)


async def list_organizations(
    actor: Actor,
    session: AsyncSession,
    *,
    engine: AuthorizationEngine,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[dict], int]:
    """Admins see every organization; everyone else sees their memberships."""
    member_count = (
        select(func.count())
        .select_from(Membership)
        .where(Membership.organization_id == Organization.id)
        .correlate(Organization)
        .scalar_subquery()
    )

    if engine.authorize(actor, "organization", "list").allowed:
        total = (await session.execute(select(func.count()).select_from(Organization))).scalar_one()
        result = await session.execute(
            select(Organization, member_count)
            .order_by(Organization.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        items = [_org_item(org, None, count) for org, count in result.all()]
        return items, total

    base = (
        select(Organization, Membership.role, member_count)
        .join(Membership, Membership.organization_id == Organization.id)
        .where(Membership.user_id == actor.user_id)
    )
    total = (
        await session.execute(
            select(func.count())
            .select_from(Membership)
            .where(Membership.user_id == actor.user_id)
        )
    ).scalar_one()
    result = await session.execute(
        base.order_by(Organization.created_at.desc()).limit(limit).offset(offset)
    )
    items = [_org_item(org, role, count) for org, role, count in result.all()]
    return items, total


def _org_item(org: Organization, role: Optional[str], member_count: int) -> dict:
    return {
        "id": org.id,
        "name": org.name,
        "slug": org.slug,
        "created_at": org.created_at,
        "role": role,
        "member_count": member_count,
    }


async def get_organization_details(
    actor: Actor,
    organization_id: uuid.UUID,
    session: AsyncSession,
    *,
    engine: AuthorizationEngine,
) -> Organization:
    org, _ = await authorize_in_org(
        actor, "organization", "read", organization_id, session, engine=engine
    )
    return org


async def rename_organization(
    actor: Actor,
    organization_id: uuid.UUID,
    name: str,
    session: AsyncSession,
    *,
    engine: AuthorizationEngine,
) -> Organization:
    """Change the display name. The slug is immutable."""
    org, _ = await authorize_in_org(
        actor, "organization", "update", organization_id, session, engine=engine
    )
    org.name = _clean_name(name)
    org.updated_at = utcnow()
    session.add(org)
    await session.flush()

    log.info("org.renamed", org_id=str(org.id), slug=org.slug)
    return org


async def delete_organization(
    actor: Actor,
    organization_id: uuid.UUID,
    session: AsyncSession,
    *,
    engine: AuthorizationEngine,
) -> None:
    """Delete an organization together with its memberships and invitations."""
    org, _ = await authorize_in_org(
        actor, "organization", "delete", organization_id, session, engine=engine, lock=True
    )
    await session.execute(delete(Invitation).where(Invitation.organization_id == org.id))
    await session.execute(delete(Membership).where(Membership.organization_id == org.id))
    await session.delete(org)
    await session.flush()

    log.info("org.deleted", org_id=str(org.id), slug=org.slug, by=str(actor.user_id))
