"""Consumed one-time link tokens, keyed by the token's jti."""

from datetime import datetime

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import utcnow


class ConsumedLinkToken(SQLModel, table=True):
    __tablename__ = "consumed_link_tokens"

    jti: str = Field(primary_key=True)
    purpose: str = Field(nullable=False)
    email: str = Field(nullable=False)
    consumed_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_type=sa.DateTime(timezone=True),
    )
    # Rows past this point can be purged: the token itself no longer verifies.
    expires_at: datetime = Field(nullable=False, index=True, sa_type=sa.DateTime(timezone=True))
