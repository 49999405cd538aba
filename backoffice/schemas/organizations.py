"""
Organization request/response schemas.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, model_validator

from backoffice.schemas.common import Pagination


class OrgCreateRequest(BaseModel):
    """Create an organization with either an existing owner or an invited one."""

    name: str = Field(..., min_length=1, max_length=100, description="Organization display name")
    owner_user_id: Optional[uuid.UUID] = Field(
        default=None, description="Existing user who becomes the sole owner"
    )
    owner_email: Optional[EmailStr] = Field(
        default=None, description="Invite this address as owner instead"
    )

    @model_validator(mode="after")
    def exactly_one_owner(self) -> "OrgCreateRequest":
        if (self.owner_user_id is None) == (self.owner_email is None):
            raise ValueError("Provide exactly one of owner_user_id or owner_email")
        return self


class OrgUpdateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class OrgResponse(BaseModel):
    id: uuid.UUID
    name: str
    slug: str
    created_at: datetime

    model_config = {"from_attributes": True}


class OrgCreateResponse(BaseModel):
    organization: OrgResponse
    owner_invitation_id: Optional[uuid.UUID] = None
    email_sent: Optional[bool] = None


class OrgListItem(BaseModel):
    id: uuid.UUID
    name: str
    slug: str
    created_at: datetime
    role: Optional[str] = None
    member_count: int = 0


class OrgListResponse(BaseModel):
    data: list[OrgListItem]
    pagination: Pagination
