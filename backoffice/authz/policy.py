"""
Role assignment policy: which role may create, invite or assign which role.

Checked in addition to resource/action authorization. A supervisor holds the
organization:invitation:create grant but may still only invite employees.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional, Union

from backoffice.schemas.common import OrganizationRole, SystemRole

AnyRole = Union[SystemRole, OrganizationRole]

ASSIGNABLE_ROLES: dict[str, frozenset[str]] = {
    SystemRole.ADMIN.value: frozenset(
        {
            SystemRole.ADMIN.value,
            OrganizationRole.OWNER.value,
            OrganizationRole.SUPERVISOR.value,
            OrganizationRole.EMPLOYEE.value,
        }
    ),
    OrganizationRole.OWNER.value: frozenset(
        {OrganizationRole.SUPERVISOR.value, OrganizationRole.EMPLOYEE.value}
    ),
    OrganizationRole.SUPERVISOR.value: frozenset({OrganizationRole.EMPLOYEE.value}),
    OrganizationRole.EMPLOYEE.value: frozenset(),
}


def _value(role: Union[str, Enum, None]) -> Optional[str]:
    if role is None:
        return None
    return role.value if isinstance(role, Enum) else role


def role_assignment_allowed(
    creator_role: Union[AnyRole, str, None],
    target_role: Union[AnyRole, str],
) -> bool:
    """True if a holder of `creator_role` may create or assign `target_role`."""
    allowed = ASSIGNABLE_ROLES.get(_value(creator_role), frozenset())
    return _value(target_role) in allowed


def assigner_role(
    system_role: Optional[SystemRole],
    member_role: Optional[OrganizationRole],
) -> Optional[AnyRole]:
    """Resolve the role an actor assigns with: system admin first, then org membership."""
    if system_role == SystemRole.ADMIN:
        return SystemRole.ADMIN
    return member_role
