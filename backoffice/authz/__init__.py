"""
Authorization core: statements, roles, the decision engine and the role
assignment policy.

Usage:
    from backoffice.authz import Actor, OrganizationScope, build_access_control

    engine = build_access_control()
    decision = engine.authorize(actor, "organization:invitation", "create",
                                OrganizationScope(org_id, member_role))
    if not decision:
        ...  # decision.reason is safe to show to the caller
"""

from .defaults import build_access_control, build_role_registry
from .engine import Actor, AuthorizationEngine, Decision, OrganizationScope
from .policy import assigner_role, role_assignment_allowed
from .roles import RoleRegistry
from .statements import StatementRegistry

__all__ = [
    "Actor",
    "AuthorizationEngine",
    "Decision",
    "OrganizationScope",
    "RoleRegistry",
    "StatementRegistry",
    "assigner_role",
    "build_access_control",
    "build_role_registry",
    "role_assignment_allowed",
]
