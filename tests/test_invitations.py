"""
Tests for the invitation lifecycle.

Tests cover:
- Inviting with the role assignment policy enforced
- Acceptance: single membership, idempotency, email matching
- Lazy expiry on accept and on listing, plus the explicit sweep
- Revocation and resend
- Email dispatch failures leave the invitation in place
- Onboarding a new organization owner end to end
"""

from __future__ import annotations

import uuid
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func
from sqlmodel import select

from backoffice.core.email import EmailPurpose
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
from backoffice.models.base import utcnow
from backoffice.models.invitation import Invitation
from backoffice.models.membership import Membership
from backoffice.schemas.common import InvitationStatus, OrganizationRole
from backoffice.services import invitations as invitation_service
from backoffice.services.invitations import (
    accept_invitation,
    create_invitation,
    effective_status,
    expire_stale_invitations,
    invite_member,
    list_invitations,
    normalize_email,
    revoke_invitation,
)
from backoffice.services.organizations import create_organization_with_owner_invitation

from .factories import actor_for, add_member, make_user


async def _membership_rows(session, org_id, user_id) -> list[Membership]:
    result = await session.execute(
        select(Membership).where(
            Membership.organization_id == org_id, Membership.user_id == user_id
        )
    )
    return list(result.scalars().all())


async def _expire(session, invitation: Invitation) -> None:
    invitation.expires_at = utcnow() - timedelta(minutes=1)
    session.add(invitation)
    await session.flush()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class TestHelpers:
    def test_normalize_email(self):
        assert normalize_email("  Alice@Example.COM ") == "alice@example.com"

    def test_normalize_email_rejects_garbage(self):
        with pytest.raises(ValidationError):
            normalize_email("not-an-email")

    def test_invitation_url(self):
        inv_id = uuid.uuid4()
        assert invitation_service.invitation_url(inv_id).endswith(f"/accept-invitation/{inv_id}")


# ---------------------------------------------------------------------------
# Inviting
# ---------------------------------------------------------------------------

class TestInviteMember:
    async def test_owner_invites_supervisor(self, session, authz, dispatcher, org_with_owner):
        org, owner = org_with_owner
        result = await invite_member(
            actor_for(owner), org.id, "Bob@Example.com", OrganizationRole.SUPERVISOR,
            session, engine=authz, dispatcher=dispatcher,
        )
        assert result.email_sent is True
        assert result.invitation.email == "bob@example.com"
        assert result.invitation.status == InvitationStatus.PENDING.value
        assert result.invitation.inviter_id == owner.id

        sent = dispatcher.sent[0]
        assert sent["email"] == "bob@example.com"
        assert sent["purpose"] == EmailPurpose.INVITATION
        assert str(result.invitation.id) in sent["url"]
        assert sent["expires_in_minutes"] == 7 * 24 * 60

    async def test_owner_cannot_invite_owner(self, session, authz, dispatcher, org_with_owner):
        org, owner = org_with_owner
        with pytest.raises(AuthorizationDenied, match="owner cannot assign owner"):
            await invite_member(
                actor_for(owner), org.id, "x@example.com", OrganizationRole.OWNER,
                session, engine=authz, dispatcher=dispatcher,
            )
        assert len(dispatcher.sent) == 0

    async def test_employee_cannot_invite(self, session, authz, dispatcher, org_with_owner):
        org, _ = org_with_owner
        employee = await make_user(session, "emp@example.com")
        await add_member(session, org, employee, OrganizationRole.EMPLOYEE)
        with pytest.raises(AuthorizationDenied, match="role insufficient"):
            await invite_member(
                actor_for(employee), org.id, "x@example.com", OrganizationRole.EMPLOYEE,
                session, engine=authz, dispatcher=dispatcher,
            )

    async def test_non_member_cannot_invite(self, session, authz, dispatcher, org_with_owner):
        org, _ = org_with_owner
        outsider = await make_user(session, "out@example.com")
        with pytest.raises(AuthorizationDenied, match="not a member"):
            await invite_member(
                actor_for(outsider), org.id, "x@example.com", OrganizationRole.EMPLOYEE,
                session, engine=authz, dispatcher=dispatcher,
            )

    async def test_duplicate_pending_rejected(self, session, authz, dispatcher, org_with_owner):
        org, owner = org_with_owner
        actor = actor_for(owner)
        await invite_member(
            actor, org.id, "bob@example.com", OrganizationRole.EMPLOYEE,
            session, engine=authz, dispatcher=dispatcher,
        )
        with pytest.raises(DuplicatePendingInvitationError):
            await invite_member(
                actor, org.id, "BOB@example.com", OrganizationRole.EMPLOYEE,
                session, engine=authz, dispatcher=dispatcher,
            )

    async def test_resend_extends_expiry(self, session, authz, dispatcher, org_with_owner):
        org, owner = org_with_owner
        actor = actor_for(owner)
        first = await invite_member(
            actor, org.id, "bob@example.com", OrganizationRole.EMPLOYEE,
            session, engine=authz, dispatcher=dispatcher,
        )
        first.invitation.expires_at = utcnow() + timedelta(hours=1)
        await session.flush()

        again = await invite_member(
            actor, org.id, "bob@example.com", OrganizationRole.EMPLOYEE,
            session, engine=authz, dispatcher=dispatcher, resend=True,
        )
        assert again.resent is True
        assert again.invitation.id == first.invitation.id
        assert again.invitation.expires_at > utcnow() + timedelta(days=6)
        assert len(dispatcher.sent) == 2

    async def test_resend_with_different_role_conflicts(
        self, session, authz, dispatcher, org_with_owner
    ):
        org, owner = org_with_owner
        actor = actor_for(owner)
        await invite_member(
            actor, org.id, "bob@example.com", OrganizationRole.EMPLOYEE,
            session, engine=authz, dispatcher=dispatcher,
        )
        with pytest.raises(DuplicatePendingInvitationError):
            await invite_member(
                actor, org.id, "bob@example.com", OrganizationRole.SUPERVISOR,
                session, engine=authz, dispatcher=dispatcher, resend=True,
            )

    async def test_expired_invitation_does_not_block_new_one(
        self, session, authz, dispatcher, org_with_owner
    ):
        org, owner = org_with_owner
        actor = actor_for(owner)
        old = await invite_member(
            actor, org.id, "bob@example.com", OrganizationRole.EMPLOYEE,
            session, engine=authz, dispatcher=dispatcher,
        )
        await _expire(session, old.invitation)
        new = await invite_member(
            actor, org.id, "bob@example.com", OrganizationRole.EMPLOYEE,
            session, engine=authz, dispatcher=dispatcher,
        )
        assert new.invitation.id != old.invitation.id

    async def test_email_failure_keeps_invitation(
        self, session, authz, failing_dispatcher, org_with_owner
    ):
        org, owner = org_with_owner
        result = await invite_member(
            actor_for(owner), org.id, "bob@example.com", OrganizationRole.EMPLOYEE,
            session, engine=authz, dispatcher=failing_dispatcher,
        )
        assert result.email_sent is False
        assert failing_dispatcher.attempts == 1
        stored = await session.get(Invitation, result.invitation.id)
        assert stored.status == InvitationStatus.PENDING.value

    async def test_unexpected_dispatcher_error_keeps_invitation(
        self, session, authz, org_with_owner
    ):
        org, owner = org_with_owner
        broken = AsyncMock()
        broken.send.side_effect = RuntimeError("boom")

        result = await invite_member(
            actor_for(owner), org.id, "bob@example.com", OrganizationRole.EMPLOYEE,
            session, engine=authz, dispatcher=broken,
        )
        assert result.email_sent is False
        broken.send.assert_awaited_once()
        stored = await session.get(Invitation, result.invitation.id)
        assert stored.status == InvitationStatus.PENDING.value

    async def test_admin_invites_without_membership(self, session, authz, dispatcher, admin, org_with_owner):
        org, _ = org_with_owner
        result = await invite_member(
            actor_for(admin), org.id, "second-owner@example.com", OrganizationRole.OWNER,
            session, engine=authz, dispatcher=dispatcher,
        )
        assert result.invitation.role == OrganizationRole.OWNER.value
        assert await _membership_rows(session, org.id, admin.id) == []


# ---------------------------------------------------------------------------
# Accepting
# ---------------------------------------------------------------------------

class TestAcceptInvitation:
    async def test_accept_creates_membership(self, session, org_with_owner):
        org, owner = org_with_owner
        bob = await make_user(session, "bob@example.com")
        inv = await create_invitation(org.id, "bob@example.com", OrganizationRole.EMPLOYEE, owner.id, session)

        result = await accept_invitation(actor_for(bob), inv.id, session)
        assert result.already_accepted is False
        assert result.membership.role == OrganizationRole.EMPLOYEE.value
        assert result.invitation.status == InvitationStatus.ACCEPTED.value

    async def test_sequential_accepts_keep_single_membership(self, session, org_with_owner):
        org, owner = org_with_owner
        bob = await make_user(session, "bob@example.com")
        first = await create_invitation(org.id, "bob@example.com", OrganizationRole.EMPLOYEE, owner.id, session)
        second = await create_invitation(org.id, "bob@example.com", OrganizationRole.SUPERVISOR, owner.id, session)

        await accept_invitation(actor_for(bob), first.id, session)
        await accept_invitation(actor_for(bob), second.id, session)

        rows = await _membership_rows(session, org.id, bob.id)
        assert len(rows) == 1
        assert rows[0].role == OrganizationRole.SUPERVISOR.value

    async def test_reinvited_member_changes_role_on_accept(
        self, session, authz, dispatcher, org_with_owner
    ):
        org, owner = org_with_owner
        bob = await make_user(session, "bob@example.com")
        await add_member(session, org, bob, OrganizationRole.EMPLOYEE)

        result = await invite_member(
            actor_for(owner), org.id, "bob@example.com", OrganizationRole.SUPERVISOR,
            session, engine=authz, dispatcher=dispatcher,
        )
        await accept_invitation(actor_for(bob), result.invitation.id, session)

        rows = await _membership_rows(session, org.id, bob.id)
        assert [r.role for r in rows] == [OrganizationRole.SUPERVISOR.value]

    async def test_expired_accept_leaves_storage_pending(self, session, org_with_owner):
        org, owner = org_with_owner
        bob = await make_user(session, "bob@example.com")
        inv = await create_invitation(org.id, "bob@example.com", OrganizationRole.EMPLOYEE, owner.id, session)
        await _expire(session, inv)

        with pytest.raises(InvitationExpiredError):
            await accept_invitation(actor_for(bob), inv.id, session)

        stored = await session.get(Invitation, inv.id)
        assert stored.status == InvitationStatus.PENDING.value
        assert effective_status(stored) == InvitationStatus.EXPIRED
        assert await _membership_rows(session, org.id, bob.id) == []

    async def test_email_mismatch_denied(self, session, org_with_owner):
        org, owner = org_with_owner
        mallory = await make_user(session, "mallory@example.com")
        inv = await create_invitation(org.id, "bob@example.com", OrganizationRole.EMPLOYEE, owner.id, session)
        with pytest.raises(AuthorizationDenied):
            await accept_invitation(actor_for(mallory), inv.id, session)

    async def test_unknown_invitation(self, session, org_with_owner):
        _, owner = org_with_owner
        with pytest.raises(InvitationNotFoundError):
            await accept_invitation(actor_for(owner), uuid.uuid4(), session)

    async def test_revoked_cannot_be_accepted(self, session, authz, org_with_owner):
        org, owner = org_with_owner
        bob = await make_user(session, "bob@example.com")
        inv = await create_invitation(org.id, "bob@example.com", OrganizationRole.EMPLOYEE, owner.id, session)
        await revoke_invitation(actor_for(owner), inv.id, session, engine=authz)
        with pytest.raises(InvitationRevokedError):
            await accept_invitation(actor_for(bob), inv.id, session)

    async def test_accept_cannot_demote_sole_owner(self, session, org_with_owner):
        org, owner = org_with_owner
        inv = await create_invitation(org.id, owner.email, OrganizationRole.EMPLOYEE, None, session)
        with pytest.raises(LastOwnerRemovalError):
            await accept_invitation(actor_for(owner), inv.id, session)
        rows = await _membership_rows(session, org.id, owner.id)
        assert rows[0].role == OrganizationRole.OWNER.value


# ---------------------------------------------------------------------------
# Revocation, listing and the sweep
# ---------------------------------------------------------------------------

class TestRevokeAndList:
    async def test_supervisor_cannot_revoke(self, session, authz, org_with_owner):
        org, owner = org_with_owner
        sup = await make_user(session, "sup@example.com")
        await add_member(session, org, sup, OrganizationRole.SUPERVISOR)
        inv = await create_invitation(org.id, "x@example.com", OrganizationRole.EMPLOYEE, owner.id, session)
        with pytest.raises(AuthorizationDenied):
            await revoke_invitation(actor_for(sup), inv.id, session, engine=authz)

    async def test_revoke_accepted_is_invalid(self, session, authz, org_with_owner):
        org, owner = org_with_owner
        bob = await make_user(session, "bob@example.com")
        inv = await create_invitation(org.id, "bob@example.com", OrganizationRole.EMPLOYEE, owner.id, session)
        await accept_invitation(actor_for(bob), inv.id, session)
        with pytest.raises(InvalidInvitationTransitionError):
            await revoke_invitation(actor_for(owner), inv.id, session, engine=authz)

    async def test_revoke_expired_is_invalid(self, session, authz, org_with_owner):
        org, owner = org_with_owner
        inv = await create_invitation(org.id, "x@example.com", OrganizationRole.EMPLOYEE, owner.id, session)
        await _expire(session, inv)
        with pytest.raises(InvalidInvitationTransitionError):
            await revoke_invitation(actor_for(owner), inv.id, session, engine=authz)

    async def test_list_hides_expired_and_terminal(self, session, authz, org_with_owner):
        org, owner = org_with_owner
        live = await create_invitation(org.id, "a@example.com", OrganizationRole.EMPLOYEE, owner.id, session)
        stale = await create_invitation(org.id, "b@example.com", OrganizationRole.EMPLOYEE, owner.id, session)
        revoked = await create_invitation(org.id, "c@example.com", OrganizationRole.EMPLOYEE, owner.id, session)
        await _expire(session, stale)
        await revoke_invitation(actor_for(owner), revoked.id, session, engine=authz)

        pending = await list_invitations(actor_for(owner), org.id, session, engine=authz)
        assert [i.id for i in pending] == [live.id]

        everything = await list_invitations(
            actor_for(owner), org.id, session, engine=authz, include_inactive=True
        )
        assert {i.id for i in everything} == {live.id, stale.id, revoked.id}

    async def test_employee_cannot_list(self, session, authz, org_with_owner):
        org, _ = org_with_owner
        emp = await make_user(session, "emp@example.com")
        await add_member(session, org, emp, OrganizationRole.EMPLOYEE)
        with pytest.raises(AuthorizationDenied):
            await list_invitations(actor_for(emp), org.id, session, engine=authz)

    async def test_sweep_persists_expiry(self, session, org_with_owner):
        org, owner = org_with_owner
        live = await create_invitation(org.id, "a@example.com", OrganizationRole.EMPLOYEE, owner.id, session)
        stale = await create_invitation(org.id, "b@example.com", OrganizationRole.EMPLOYEE, owner.id, session)
        await _expire(session, stale)
        stale_id, live_id = stale.id, live.id

        assert await expire_stale_invitations(session) == 1
        session.expire_all()
        assert (await session.get(Invitation, stale_id)).status == InvitationStatus.EXPIRED.value
        assert (await session.get(Invitation, live_id)).status == InvitationStatus.PENDING.value


# ---------------------------------------------------------------------------
# Onboarding a new organization
# ---------------------------------------------------------------------------

class TestOrganizationOnboarding:
    async def test_admin_creates_org_by_inviting_owner(self, session, authz, dispatcher, admin):
        org, result = await create_organization_with_owner_invitation(
            actor_for(admin), "Acme", "alice@x.com", session,
            engine=authz, dispatcher=dispatcher,
        )
        assert org.slug.startswith("acme-")
        assert org.slug[len("acme-"):].isdigit()

        invitations = (
            await session.execute(select(Invitation).where(Invitation.organization_id == org.id))
        ).scalars().all()
        assert len(invitations) == 1
        assert invitations[0].role == OrganizationRole.OWNER.value
        assert invitations[0].email == "alice@x.com"
        assert invitations[0].status == InvitationStatus.PENDING.value

        members = await session.execute(
            select(func.count()).select_from(Membership).where(Membership.organization_id == org.id)
        )
        assert members.scalar_one() == 0
        assert result.email_sent is True

    async def test_owner_accepts_and_reaccept_is_noop(self, session, authz, dispatcher, admin):
        org, result = await create_organization_with_owner_invitation(
            actor_for(admin), "Acme", "alice@x.com", session,
            engine=authz, dispatcher=dispatcher,
        )
        alice = await make_user(session, "alice@x.com")

        accepted = await accept_invitation(actor_for(alice), result.invitation.id, session)
        assert accepted.invitation.status == InvitationStatus.ACCEPTED.value
        assert accepted.membership.role == OrganizationRole.OWNER.value

        again = await accept_invitation(actor_for(alice), result.invitation.id, session)
        assert again.already_accepted is True
        assert len(await _membership_rows(session, org.id, alice.id)) == 1

    async def test_supervisor_cannot_invite_owner(self, session, authz, dispatcher, admin):
        org, result = await create_organization_with_owner_invitation(
            actor_for(admin), "Acme", "alice@x.com", session,
            engine=authz, dispatcher=dispatcher,
        )
        alice = await make_user(session, "alice@x.com")
        await accept_invitation(actor_for(alice), result.invitation.id, session)

        bob_invite = await invite_member(
            actor_for(alice), org.id, "bob@x.com", OrganizationRole.SUPERVISOR,
            session, engine=authz, dispatcher=dispatcher,
        )
        bob = await make_user(session, "bob@x.com")
        await accept_invitation(actor_for(bob), bob_invite.invitation.id, session)

        with pytest.raises(AuthorizationDenied, match="supervisor cannot assign owner"):
            await invite_member(
                actor_for(bob), org.id, "carol@x.com", OrganizationRole.OWNER,
                session, engine=authz, dispatcher=dispatcher,
            )
        # Bob may still invite employees
        ok = await invite_member(
            actor_for(bob), org.id, "carol@x.com", OrganizationRole.EMPLOYEE,
            session, engine=authz, dispatcher=dispatcher,
        )
        assert ok.invitation.role == OrganizationRole.EMPLOYEE.value

    async def test_dispatcher_exception_is_reported(self, session, authz, admin):
        broken = AsyncMock()
        broken.send.side_effect = DependencyFailure("smtp down")
        org, result = await create_organization_with_owner_invitation(
            actor_for(admin), "Acme", "alice@x.com", session,
            engine=authz, dispatcher=broken,
        )
        assert result.email_sent is False
        assert (await session.get(Invitation, result.invitation.id)) is not None
