from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from backoffice.schemas.common import InvitationStatus, OrganizationRole


class InvitationCreateRequest(BaseModel):
    email: EmailStr
    role: OrganizationRole = OrganizationRole.EMPLOYEE
    resend: bool = Field(
        default=False, description="Extend an existing pending invitation instead of failing"
    )


class InvitationResponse(BaseModel):
    id: uuid.UUID
    organization_id: uuid.UUID
    email: str
    role: OrganizationRole
    status: InvitationStatus
    inviter_id: Optional[uuid.UUID] = None
    created_at: datetime
    expires_at: datetime

    model_config = {"from_attributes": True}


class InvitationCreateResponse(BaseModel):
    invitation: InvitationResponse
    email_sent: bool
    resent: bool = False


class InvitationListResponse(BaseModel):
    data: list[InvitationResponse]


class InvitationAcceptResponse(BaseModel):
    invitation: InvitationResponse
    organization_id: uuid.UUID
    role: OrganizationRole
    already_accepted: bool = False
