"""
Invitation service - the pending -> accepted / expired / revoked lifecycle.

Expiry is lazy: a pending invitation past its `expires_at` is treated as
expired whenever it is read, but storage is only rewritten by the explicit
sweep in `backoffice.tasks.invitation_sweep`.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import structlog
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from backoffice.authz import Actor, AuthorizationEngine
from backoffice.core.config import Settings, get_settings
from backoffice.core.email import EmailDispatcher, EmailPurpose
from backoffice.core.errors import (
    AuthorizationDenied,
    DependencyFailure,
    DuplicatePendingInvitationError,
    InvalidInvitationTransitionError,
    InvitationExpiredError,
    InvitationNotFoundError,
    InvitationRevokedError,
    LastOwnerRemovalError,
    ValidationError,
)
from backoffice.models.base import as_utc, utcnow
from backoffice.models.invitation import Invitation
from backoffice.models.membership import Membership
from backoffice.schemas.common import (
    INVITATION_TRANSITIONS,
    InvitationStatus,
    OrganizationRole,
)
from backoffice.services.access import (
    authorize_in_org,
    count_owners,
    get_membership,
    get_organization,
    require_assignment,
)

log = structlog.get_logger()


@dataclass(frozen=True)
class InvitationCreated:
    """Event handed to the email dispatcher after an invitation is written."""

    email: str
    organization_id: uuid.UUID
    invitation_url: str
    expires_in_minutes: int


@dataclass
class InvitationResult:
    invitation: Invitation
    email_sent: bool
    resent: bool = False


@dataclass
class AcceptResult:
    invitation: Invitation
    membership: Optional[Membership]
    already_accepted: bool = False


def normalize_email(email: str) -> str:
    email = (email or "").strip().lower()
    if "@" not in email:
        raise ValidationError(f"invalid email address '{email}'")
    return email


def is_expired(invitation: Invitation, now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    return (
        invitation.status == InvitationStatus.PENDING.value
        and now > as_utc(invitation.expires_at)
    )


def effective_status(invitation: Invitation, now: Optional[datetime] = None) -> InvitationStatus:
    """Stored status with lazy expiry applied."""
    if is_expired(invitation, now):
        return InvitationStatus.EXPIRED
    return InvitationStatus(invitation.status)


def _transition(invitation: Invitation, target: InvitationStatus) -> None:
    current = InvitationStatus(invitation.status)
    if target not in INVITATION_TRANSITIONS[current]:
        raise InvalidInvitationTransitionError(
            f"Cannot move invitation from '{current.value}' to '{target.value}'"
        )
    invitation.status = target.value


def invitation_url(invitation_id: uuid.UUID, settings: Optional[Settings] = None) -> str:
    settings = settings or get_settings()
    return f"{settings.app_url.rstrip('/')}/accept-invitation/{invitation_id}"


async def find_pending_invitation(
    organization_id: uuid.UUID,
    email: str,
    session: AsyncSession,
    now: Optional[datetime] = None,
) -> Optional[Invitation]:
    """The effectively pending invitation for (email, organization), if any."""
    now = now or utcnow()
    result = await session.execute(
        select(Invitation)
        .where(
            Invitation.organization_id == organization_id,
            Invitation.email == email,
            Invitation.status == InvitationStatus.PENDING.value,
            Invitation.expires_at > now,
        )
        .order_by(Invitation.created_at.desc())
    )
    return result.scalars().first()


async def has_pending_invitation(
    email: str, session: AsyncSession, now: Optional[datetime] = None
) -> bool:
    """True if `email` holds an effectively pending invitation in any organization."""
    now = now or utcnow()
    result = await session.execute(
        select(Invitation.id)
        .where(
            Invitation.email == normalize_email(email),
            Invitation.status == InvitationStatus.PENDING.value,
            Invitation.expires_at > now,
        )
        .limit(1)
    )
    return result.first() is not None


async def create_invitation(
    organization_id: uuid.UUID,
    email: str,
    role: OrganizationRole,
    inviter_id: Optional[uuid.UUID],
    session: AsyncSession,
    settings: Optional[Settings] = None,
) -> Invitation:
    """Insert a pending invitation. Callers have already authorized the inviter."""
    settings = settings or get_settings()
    now = utcnow()
    invitation = Invitation(
        organization_id=organization_id,
        email=email,
        role=OrganizationRole(role).value,
        status=InvitationStatus.PENDING.value,
        inviter_id=inviter_id,
        created_at=now,
        expires_at=now + timedelta(days=settings.invitation_expire_days),
    )
    session.add(invitation)
    await session.flush()
    return invitation


async def notify_invitation_created(
    invitation: Invitation,
    dispatcher: EmailDispatcher,
    settings: Optional[Settings] = None,
) -> bool:
    """Hand the invitation to the email dispatcher.

    Never raises for a failed send: the invitation is already written and
    must survive whatever the dispatcher does.
    """
    settings = settings or get_settings()
    event = InvitationCreated(
        email=invitation.email,
        organization_id=invitation.organization_id,
        invitation_url=invitation_url(invitation.id, settings),
        expires_in_minutes=settings.invitation_expire_days * 24 * 60,
    )
    try:
        sent = await dispatcher.send(
            event.email, event.invitation_url, EmailPurpose.INVITATION, event.expires_in_minutes
        )
    except DependencyFailure as exc:
        log.warning("invitation.email_failed", invitation_id=str(invitation.id), error=exc.message)
        return False
    except Exception:
        log.exception("invitation.email_failed", invitation_id=str(invitation.id))
        return False
    if not sent:
        log.warning("invitation.email_failed", invitation_id=str(invitation.id))
    return sent


async def invite_member(
    actor: Actor,
    organization_id: uuid.UUID,
    email: str,
    role: OrganizationRole,
    session: AsyncSession,
    *,
    engine: AuthorizationEngine,
    dispatcher: EmailDispatcher,
    resend: bool = False,
    settings: Optional[Settings] = None,
) -> InvitationResult:
    """Invite `email` into an organization with `role`.

    Requires organization:invitation:create in the organization and that the
    actor's role may assign `role`. With `resend=True` an existing pending
    invitation for the same role gets a fresh expiry instead of a duplicate.
    """
    settings = settings or get_settings()
    role = OrganizationRole(role)
    email = normalize_email(email)

    _, scope = await authorize_in_org(
        actor, "organization:invitation", "create", organization_id, session, engine=engine
    )
    require_assignment(
        actor, scope.member_role, role, "organization:invitation", "create", organization_id
    )

    existing = await find_pending_invitation(organization_id, email, session)
    if existing is not None:
        if not resend or existing.role != role.value:
            raise DuplicatePendingInvitationError(
                f"A pending invitation for {email} already exists; revoke it or resend it"
            )
        existing.expires_at = utcnow() + timedelta(days=settings.invitation_expire_days)
        session.add(existing)
        await session.flush()
        log.info("invitation.resent", invitation_id=str(existing.id), org_id=str(organization_id))
        sent = await notify_invitation_created(existing, dispatcher, settings)
        return InvitationResult(invitation=existing, email_sent=sent, resent=True)

    invitation = await create_invitation(
        organization_id, email, role, actor.user_id, session, settings
    )
    log.info(
        "invitation.created",
        invitation_id=str(invitation.id),
        org_id=str(organization_id),
        role=role.value,
        inviter=str(actor.user_id),
    )
    sent = await notify_invitation_created(invitation, dispatcher, settings)
    return InvitationResult(invitation=invitation, email_sent=sent)


async def accept_invitation(
    actor: Actor,
    invitation_id: uuid.UUID,
    session: AsyncSession,
) -> AcceptResult:
    """Accept an invitation on behalf of the actor.

    Idempotent for already-accepted invitations. Expired invitations fail
    without touching storage.
    """
    invitation = await session.get(Invitation, invitation_id)
    if invitation is None:
        raise InvitationNotFoundError("Invitation not found")

    if not actor.email or actor.email.strip().lower() != invitation.email:
        raise AuthorizationDenied("invitation was issued to a different email address")

    # Serialize with other membership mutations in this organization, then
    # re-read the invitation so a concurrent accept is observed.
    org = await get_organization(invitation.organization_id, session, lock=True)
    if org is None:
        raise InvitationNotFoundError("Invitation not found")
    await session.refresh(invitation)

    status = InvitationStatus(invitation.status)
    if status == InvitationStatus.ACCEPTED:
        membership = await get_membership(actor.user_id, invitation.organization_id, session)
        return AcceptResult(invitation=invitation, membership=membership, already_accepted=True)
    if status == InvitationStatus.REVOKED:
        raise InvitationRevokedError("Invitation has been revoked")
    if effective_status(invitation) == InvitationStatus.EXPIRED:
        raise InvitationExpiredError("Invitation has expired; ask for a new invitation")

    role = OrganizationRole(invitation.role)
    membership = await get_membership(actor.user_id, invitation.organization_id, session)
    if membership is None:
        membership = Membership(
            user_id=actor.user_id,
            organization_id=invitation.organization_id,
            role=role.value,
        )
    else:
        if (
            membership.role == OrganizationRole.OWNER.value
            and role != OrganizationRole.OWNER
            and await count_owners(invitation.organization_id, session) <= 1
        ):
            raise LastOwnerRemovalError()
        membership.role = role.value
        membership.updated_at = utcnow()
    session.add(membership)

    _transition(invitation, InvitationStatus.ACCEPTED)
    session.add(invitation)
    await session.flush()

    log.info(
        "invitation.accepted",
        invitation_id=str(invitation.id),
        org_id=str(invitation.organization_id),
        user_id=str(actor.user_id),
        role=role.value,
    )
    return AcceptResult(invitation=invitation, membership=membership)


async def revoke_invitation(
    actor: Actor,
    invitation_id: uuid.UUID,
    session: AsyncSession,
    *,
    engine: AuthorizationEngine,
) -> Invitation:
    """Revoke a pending invitation (organization:invitation:delete)."""
    invitation = await session.get(Invitation, invitation_id)
    if invitation is None:
        raise InvitationNotFoundError("Invitation not found")

    await authorize_in_org(
        actor,
        "organization:invitation",
        "delete",
        invitation.organization_id,
        session,
        engine=engine,
    )
    if effective_status(invitation) == InvitationStatus.EXPIRED:
        raise InvalidInvitationTransitionError("Cannot revoke an expired invitation")

    _transition(invitation, InvitationStatus.REVOKED)
    session.add(invitation)
    await session.flush()
    log.info("invitation.revoked", invitation_id=str(invitation.id), by=str(actor.user_id))
    return invitation


async def list_invitations(
    actor: Actor,
    organization_id: uuid.UUID,
    session: AsyncSession,
    *,
    engine: AuthorizationEngine,
    include_inactive: bool = False,
) -> list[Invitation]:
    """List an organization's invitations; by default only effectively pending ones."""
    await authorize_in_org(
        actor, "organization:invitation", "list", organization_id, session, engine=engine
    )
    stmt = select(Invitation).where(Invitation.organization_id == organization_id)
    if not include_inactive:
        stmt = stmt.where(
            Invitation.status == InvitationStatus.PENDING.value,
            Invitation.expires_at > utcnow(),
        )
    result = await session.execute(stmt.order_by(Invitation.created_at.desc()))
    return list(result.scalars().all())


async def expire_stale_invitations(
    session: AsyncSession, now: Optional[datetime] = None
) -> int:
    """Persist the lazy expiry: flip pending invitations past their expiry to expired."""
    now = now or utcnow()
    result = await session.execute(
        update(Invitation)
        .where(
            Invitation.status == InvitationStatus.PENDING.value,
            Invitation.expires_at < now,
        )
        .values(status=InvitationStatus.EXPIRED.value)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0
