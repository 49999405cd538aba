"""
Tests for membership management and last-owner protection.
"""

from __future__ import annotations

import pytest

from backoffice.core.errors import (
    AuthorizationDenied,
    InvariantViolation,
    LastOwnerRemovalError,
    MembershipNotFoundError,
)
from backoffice.services.access import get_membership
from backoffice.services.members import (
    change_role,
    leave_organization,
    list_members,
    remove_member,
)
from backoffice.schemas.common import OrganizationRole

from .factories import actor_for, add_member, make_user


# ---------------------------------------------------------------------------
# Last-owner protection
# ---------------------------------------------------------------------------

class TestLastOwnerProtection:
    async def test_remove_sole_owner_fails(self, session, authz, admin, org_with_owner):
        org, owner = org_with_owner
        with pytest.raises(InvariantViolation) as exc_info:
            await remove_member(actor_for(admin), org.id, owner.id, session, engine=authz)
        assert str(exc_info.value) == "cannot remove the only owner, assign a new owner first"
        assert await get_membership(owner.id, org.id, session) is not None

    async def test_demote_sole_owner_fails(self, session, authz, admin, org_with_owner):
        org, owner = org_with_owner
        with pytest.raises(LastOwnerRemovalError):
            await change_role(
                actor_for(admin), org.id, owner.id, OrganizationRole.SUPERVISOR,
                session, engine=authz,
            )
        membership = await get_membership(owner.id, org.id, session)
        assert membership.role == OrganizationRole.OWNER.value

    async def test_sole_owner_cannot_leave(self, session, org_with_owner):
        org, owner = org_with_owner
        with pytest.raises(LastOwnerRemovalError):
            await leave_organization(actor_for(owner), org.id, session)

    async def test_second_owner_lifts_protection(self, session, authz, admin, org_with_owner):
        org, owner = org_with_owner
        second = await make_user(session, "second@example.com")
        await add_member(session, org, second, OrganizationRole.OWNER)

        await change_role(
            actor_for(admin), org.id, owner.id, OrganizationRole.SUPERVISOR,
            session, engine=authz,
        )
        assert (await get_membership(owner.id, org.id, session)).role == "supervisor"

        # Now `second` is the only owner again
        with pytest.raises(LastOwnerRemovalError):
            await remove_member(actor_for(admin), org.id, second.id, session, engine=authz)

    async def test_remove_one_of_two_owners(self, session, authz, admin, org_with_owner):
        org, owner = org_with_owner
        second = await make_user(session, "second@example.com")
        await add_member(session, org, second, OrganizationRole.OWNER)

        await remove_member(actor_for(admin), org.id, owner.id, session, engine=authz)
        assert await get_membership(owner.id, org.id, session) is None


# ---------------------------------------------------------------------------
# Removal and role changes
# ---------------------------------------------------------------------------

class TestMemberManagement:
    async def test_owner_removes_employee(self, session, authz, org_with_owner):
        org, owner = org_with_owner
        emp = await make_user(session, "emp@example.com")
        await add_member(session, org, emp, OrganizationRole.EMPLOYEE)

        await remove_member(actor_for(owner), org.id, emp.id, session, engine=authz)
        assert await get_membership(emp.id, org.id, session) is None

    async def test_supervisor_cannot_remove(self, session, authz, org_with_owner):
        org, owner = org_with_owner
        sup = await make_user(session, "sup@example.com")
        await add_member(session, org, sup, OrganizationRole.SUPERVISOR)
        with pytest.raises(AuthorizationDenied):
            await remove_member(actor_for(sup), org.id, owner.id, session, engine=authz)

    async def test_remove_non_member(self, session, authz, org_with_owner):
        org, owner = org_with_owner
        stranger = await make_user(session, "stranger@example.com")
        with pytest.raises(MembershipNotFoundError):
            await remove_member(actor_for(owner), org.id, stranger.id, session, engine=authz)

    async def test_owner_promotes_employee_to_supervisor(self, session, authz, org_with_owner):
        org, owner = org_with_owner
        emp = await make_user(session, "emp@example.com")
        await add_member(session, org, emp, OrganizationRole.EMPLOYEE)

        membership = await change_role(
            actor_for(owner), org.id, emp.id, OrganizationRole.SUPERVISOR,
            session, engine=authz,
        )
        assert membership.role == OrganizationRole.SUPERVISOR.value

    async def test_owner_cannot_promote_to_owner(self, session, authz, org_with_owner):
        org, owner = org_with_owner
        emp = await make_user(session, "emp@example.com")
        await add_member(session, org, emp, OrganizationRole.EMPLOYEE)
        with pytest.raises(AuthorizationDenied, match="owner cannot assign owner"):
            await change_role(
                actor_for(owner), org.id, emp.id, OrganizationRole.OWNER,
                session, engine=authz,
            )

    async def test_same_role_is_noop(self, session, authz, admin, org_with_owner):
        org, owner = org_with_owner
        membership = await change_role(
            actor_for(admin), org.id, owner.id, OrganizationRole.OWNER, session, engine=authz
        )
        assert membership.role == OrganizationRole.OWNER.value

    async def test_member_leaves(self, session, org_with_owner):
        org, _ = org_with_owner
        emp = await make_user(session, "emp@example.com")
        await add_member(session, org, emp, OrganizationRole.EMPLOYEE)

        await leave_organization(actor_for(emp), org.id, session)
        assert await get_membership(emp.id, org.id, session) is None


class TestListMembers:
    async def test_lists_members_with_user_info(self, session, authz, org_with_owner):
        org, owner = org_with_owner
        emp = await make_user(session, "emp@example.com", name="Emp Loyee")
        await add_member(session, org, emp, OrganizationRole.EMPLOYEE)

        items = await list_members(actor_for(emp), org.id, session, engine=authz)
        by_email = {item["email"]: item for item in items}
        assert set(by_email) == {"owner@example.com", "emp@example.com"}
        assert by_email["emp@example.com"]["name"] == "Emp Loyee"
        assert by_email["owner@example.com"]["role"] == "owner"

    async def test_outsider_cannot_list(self, session, authz, org_with_owner):
        org, _ = org_with_owner
        outsider = await make_user(session, "out@example.com")
        with pytest.raises(AuthorizationDenied, match="not a member"):
            await list_members(actor_for(outsider), org.id, session, engine=authz)
