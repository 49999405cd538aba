"""
User administration and one-time link schemas.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from backoffice.schemas.common import Pagination, SystemRole


class UserCreateRequest(BaseModel):
    email: EmailStr
    name: str = Field(..., min_length=1, max_length=100)
    role: SystemRole = SystemRole.USER
    organization_id: Optional[uuid.UUID] = None


class UserResponse(BaseModel):
    id: uuid.UUID
    email: str
    name: str
    role: Optional[SystemRole] = None
    banned: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class UserCreateResponse(BaseModel):
    user: UserResponse
    email_sent: bool


class UserListResponse(BaseModel):
    data: list[UserResponse]
    pagination: Pagination


class MagicLinkRequest(BaseModel):
    email: EmailStr
    callback_url: Optional[str] = Field(default=None, alias="callbackURL")

    model_config = {"populate_by_name": True}


class PasswordResetRequest(BaseModel):
    email: EmailStr


class LinkSentResponse(BaseModel):
    status: bool
