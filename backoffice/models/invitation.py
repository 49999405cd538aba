"""Organization invitation model."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import UUIDMixin, utcnow


class Invitation(UUIDMixin, SQLModel, table=True):
    __tablename__ = "invitations"
    __table_args__ = (
        sa.Index("ix_invitations_org_email_status", "organization_id", "email", "status"),
    )

    organization_id: uuid.UUID = Field(
        foreign_key="organizations.id", nullable=False, index=True, ondelete="CASCADE"
    )
    email: str = Field(nullable=False)  # stored lowercased
    role: str = Field(nullable=False)  # owner | supervisor | employee
    status: str = Field(default="pending", nullable=False)
    inviter_id: Optional[uuid.UUID] = Field(
        default=None, foreign_key="users.id", ondelete="SET NULL"
    )
    created_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_type=sa.DateTime(timezone=True),
    )
    expires_at: datetime = Field(nullable=False, sa_type=sa.DateTime(timezone=True))
