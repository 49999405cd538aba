from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel

from backoffice.schemas.common import OrganizationRole


class MemberResponse(BaseModel):
    user_id: uuid.UUID
    email: str
    name: str
    role: OrganizationRole
    joined_at: datetime


class MemberListResponse(BaseModel):
    data: list[MemberResponse]


class MemberRoleUpdateRequest(BaseModel):
    role: OrganizationRole


class MembershipResponse(BaseModel):
    user_id: uuid.UUID
    organization_id: uuid.UUID
    role: OrganizationRole
    joined_at: datetime

    model_config = {"from_attributes": True}
