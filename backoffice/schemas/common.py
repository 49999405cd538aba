from enum import Enum

from pydantic import BaseModel


class SystemRole(str, Enum):
    ADMIN = "admin"
    USER = "user"


class OrganizationRole(str, Enum):
    OWNER = "owner"
    SUPERVISOR = "supervisor"
    EMPLOYEE = "employee"


class InvitationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    EXPIRED = "expired"
    REVOKED = "revoked"


# Valid state transitions for the invitation lifecycle
INVITATION_TRANSITIONS: dict[InvitationStatus, list[InvitationStatus]] = {
    InvitationStatus.PENDING: [
        InvitationStatus.ACCEPTED,
        InvitationStatus.EXPIRED,
        InvitationStatus.REVOKED,
    ],
    InvitationStatus.ACCEPTED: [],
    InvitationStatus.EXPIRED: [],
    InvitationStatus.REVOKED: [],
}


class Pagination(BaseModel):
    limit: int
    offset: int
    total: int


class ErrorBody(BaseModel):
    code: str
    message: str
    status: int


class ErrorResponse(BaseModel):
    error: ErrorBody
