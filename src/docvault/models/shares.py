"""FileShare model: a bounded capability granting access to one file.

Provides ``FileShareBase`` (non-table) and ``FileShare`` (concrete table).
Only ``link`` shares carry a ``share_code``; passwords are stored as
passlib hashes.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from docvault.models.lifecycle import is_past, utcnow


class ShareType(str, Enum):
    LINK = "link"
    USER = "user"
    PUBLIC = "public"


class FileShareBase(SQLModel):
    """Base fields for a file share. Subclass with ``table=True`` for a concrete table."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    file_id: str = Field(index=True)
    created_by: str = Field(index=True)
    share_type: str = Field(default=ShareType.LINK.value, max_length=16, index=True)
    share_code: str | None = Field(default=None, unique=True, max_length=32)
    expires_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )
    access_count: int = Field(default=0)
    max_access_count: int | None = Field(default=None)
    can_download: bool = Field(default=True)
    can_comment: bool = Field(default=False)
    can_edit: bool = Field(default=False)
    password_hash: str | None = Field(default=None, max_length=255)
    description: str | None = Field(default=None)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )

    @property
    def has_password(self) -> bool:
        return self.password_hash is not None

    def is_expired(self, now: datetime | None = None) -> bool:
        return is_past(self.expires_at, now)

    def is_access_limit_reached(self) -> bool:
        if self.max_access_count is None:
            return False
        return self.access_count >= self.max_access_count

    def is_valid(self, now: datetime | None = None) -> bool:
        """The only state in which the share may be redeemed."""
        return self.is_active and not self.is_expired(now) and not self.is_access_limit_reached()


class FileShare(FileShareBase, table=True):
    """Default share table: ``file_shares``."""

    __tablename__ = "file_shares"
