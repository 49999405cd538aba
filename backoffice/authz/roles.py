"""
Role definitions: named bundles of statement grants.

System roles and organization roles live in two disjoint namespaces. Roles are
registered during startup composition, validated against the statement
registry, and the registry is sealed before it is handed to the engine.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from enum import Enum
from types import MappingProxyType
from typing import Literal, Union

from backoffice.authz.statements import StatementRegistry
from backoffice.core.errors import (
    AccessControlConfigError,
    DuplicateRoleNameError,
    UndeclaredActionError,
    UnknownRoleError,
)

RoleKind = Literal["system", "organization"]
RoleName = Union[str, Enum]
Grants = Mapping[str, frozenset[str]]


def _name(role: RoleName) -> str:
    return role.value if isinstance(role, Enum) else role


class RoleRegistry:
    def __init__(self, statements: StatementRegistry):
        self.statements = statements
        self._roles: dict[str, Grants] = {}
        self._kinds: dict[str, RoleKind] = {}
        self._sealed = False

    def define_role(
        self,
        name: RoleName,
        grants: Mapping[str, Iterable[str]],
        *,
        kind: RoleKind,
    ) -> Grants:
        """Register a role after validating every (resource, action) pair."""
        if self._sealed:
            raise AccessControlConfigError(
                f"cannot define role '{_name(name)}': role registry is sealed"
            )
        role = _name(name)
        if role in self._roles:
            raise DuplicateRoleNameError(
                f"role '{role}' is already defined as a {self._kinds[role]} role"
            )

        validated: dict[str, frozenset[str]] = {}
        for resource, actions in grants.items():
            declared = self.statements.get_actions(resource)
            actions = frozenset(actions)
            undeclared = sorted(actions - declared)
            if undeclared:
                raise UndeclaredActionError(
                    f"role '{role}' grants undeclared actions on '{resource}': "
                    f"{', '.join(undeclared)}"
                )
            if actions:
                validated[resource] = actions

        frozen = MappingProxyType(validated)
        self._roles[role] = frozen
        self._kinds[role] = kind
        return frozen

    def seal(self) -> "RoleRegistry":
        self._sealed = True
        return self

    def get_grants(self, name: RoleName) -> Grants:
        try:
            return self._roles[_name(name)]
        except KeyError:
            raise UnknownRoleError(f"unknown role '{_name(name)}'") from None

    def kind_of(self, name: RoleName) -> RoleKind:
        try:
            return self._kinds[_name(name)]
        except KeyError:
            raise UnknownRoleError(f"unknown role '{_name(name)}'") from None

    def grants_action(self, name: RoleName, resource: str, action: str) -> bool:
        """True if the role grants `action` on `resource`; unknown roles grant nothing."""
        grants = self._roles.get(_name(name))
        if grants is None:
            return False
        return action in grants.get(resource, frozenset())

    def roles(self, kind: RoleKind | None = None) -> tuple[str, ...]:
        return tuple(r for r, k in self._kinds.items() if kind is None or k == kind)
