"""User model (the slice of the external user store this core reads and writes)."""

from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import UUIDMixin, utcnow


class User(UUIDMixin, SQLModel, table=True):
    __tablename__ = "users"

    email: str = Field(unique=True, index=True, nullable=False)  # stored lowercased
    name: str = Field(nullable=False)
    role: Optional[str] = Field(default="user")  # system role: admin | user
    banned: bool = Field(default=False, nullable=False)
    created_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_type=sa.DateTime(timezone=True),
    )
