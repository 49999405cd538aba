"""
Error taxonomy for the backoffice core.

Every business-rule stop raised by a service derives from BackofficeError and
carries a stable machine code plus the HTTP status the API layer renders it
with. Routine authorization denials are *values* (see authz.engine.Decision);
they only become AuthorizationDenied once a service decides to stop.
"""

from __future__ import annotations


class BackofficeError(Exception):
    """Base class for expected, user-facing failures."""

    code = "BACKOFFICE_ERROR"
    status = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "status": self.status}


# ---------------------------------------------------------------------------
# Taxonomy roots
# ---------------------------------------------------------------------------

class AuthorizationDenied(BackofficeError):
    code = "AUTHORIZATION_DENIED"
    status = 403


class Unauthenticated(BackofficeError):
    code = "UNAUTHENTICATED"
    status = 401


class ValidationError(BackofficeError):
    code = "VALIDATION_ERROR"
    status = 422


class NotFoundError(BackofficeError):
    code = "NOT_FOUND"
    status = 404


class ConflictError(BackofficeError):
    code = "CONFLICT"
    status = 409


class ExpiredError(BackofficeError):
    code = "EXPIRED"
    status = 410


class InvariantViolation(BackofficeError):
    code = "INVARIANT_VIOLATION"
    status = 409


class DependencyFailure(BackofficeError):
    code = "DEPENDENCY_FAILURE"
    status = 503


# ---------------------------------------------------------------------------
# Concrete errors
# ---------------------------------------------------------------------------

class OrganizationNotFoundError(NotFoundError):
    code = "ORGANIZATION_NOT_FOUND"


class UserNotFoundError(NotFoundError):
    code = "USER_NOT_FOUND"


class MembershipNotFoundError(NotFoundError):
    code = "MEMBERSHIP_NOT_FOUND"


class InvitationNotFoundError(NotFoundError):
    code = "INVITATION_NOT_FOUND"


class SlugConflictError(ConflictError):
    code = "SLUG_CONFLICT"


class DuplicatePendingInvitationError(ConflictError):
    code = "DUPLICATE_PENDING_INVITATION"


class UserAlreadyExistsError(ConflictError):
    code = "USER_ALREADY_EXISTS"


class InvalidInvitationTransitionError(ConflictError):
    code = "INVALID_INVITATION_TRANSITION"


class InvitationRevokedError(ConflictError):
    code = "INVITATION_REVOKED"


class InvitationExpiredError(ExpiredError):
    code = "INVITATION_EXPIRED"


class LinkExpiredError(ExpiredError):
    code = "LINK_EXPIRED"


class LastOwnerRemovalError(InvariantViolation):
    code = "LAST_OWNER_REMOVAL"

    def __init__(self, message: str = "cannot remove the only owner, assign a new owner first"):
        super().__init__(message)


class OrganizationCreationFailedError(DependencyFailure):
    code = "ORGANIZATION_CREATION_FAILED"


# ---------------------------------------------------------------------------
# Startup-time access-control configuration errors
# ---------------------------------------------------------------------------

class AccessControlConfigError(Exception):
    """Raised while composing statements and roles; never at request time."""


class InvalidStatementError(AccessControlConfigError):
    pass


class UnknownResourceError(AccessControlConfigError):
    pass


class UndeclaredActionError(AccessControlConfigError):
    pass


class DuplicateRoleNameError(AccessControlConfigError):
    pass


class UnknownRoleError(AccessControlConfigError):
    pass
