"""Organization model."""

from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UUIDMixin


class Organization(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "organizations"

    name: str = Field(nullable=False, index=True)
    # Generated once at creation; renames never touch it.
    slug: str = Field(unique=True, nullable=False, index=True)
