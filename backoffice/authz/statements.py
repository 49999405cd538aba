"""
Permission statement registry.

A statement declares, per resource, the vocabulary of actions that roles may
be granted. The registry is built once at startup and is read-only afterwards.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from types import MappingProxyType

from backoffice.core.errors import InvalidStatementError, UnknownResourceError


class StatementRegistry:
    """Resource -> ordered, duplicate-free action vocabulary."""

    def __init__(self, statements: Mapping[str, Iterable[str]]):
        declared: dict[str, tuple[str, ...]] = {}
        for resource, actions in statements.items():
            actions = tuple(actions)
            if not resource:
                raise InvalidStatementError("resource name must not be empty")
            if not actions:
                raise InvalidStatementError(f"resource '{resource}' declares no actions")
            duplicates = sorted({a for a in actions if actions.count(a) > 1})
            if duplicates:
                raise InvalidStatementError(
                    f"resource '{resource}' declares duplicate actions: {', '.join(duplicates)}"
                )
            declared[resource] = actions
        self._statements = MappingProxyType(declared)

    def get_actions(self, resource: str) -> frozenset[str]:
        """Return the declared actions for `resource`.

        Raises UnknownResourceError if the resource was never declared.
        """
        try:
            return frozenset(self._statements[resource])
        except KeyError:
            raise UnknownResourceError(f"unknown resource '{resource}'") from None

    def ordered_actions(self, resource: str) -> tuple[str, ...]:
        self.get_actions(resource)
        return self._statements[resource]

    def resources(self) -> tuple[str, ...]:
        return tuple(self._statements)

    def declares(self, resource: str, action: str) -> bool:
        return action in self._statements.get(resource, ())

    def __contains__(self, resource: str) -> bool:
        return resource in self._statements
