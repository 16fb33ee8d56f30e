"""FileRecord model: metadata for a stored blob.

Provides ``FileRecordBase`` (non-table) and ``FileRecord`` (concrete table).
The bytes themselves live in a ``BlobStore`` under ``storage_key``.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Index
from sqlmodel import Field

from docvault.models.lifecycle import SoftDeleteFields, is_past, utcnow


class FileRecordBase(SoftDeleteFields):
    """Base fields for a file record. Subclass with ``table=True`` for a concrete table."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    name: str = Field(max_length=255)
    """Generated unique name used inside the storage key."""
    original_name: str = Field(max_length=255)
    """Display name, as uploaded or as later renamed."""
    storage_key: str = Field(unique=True, max_length=1000)
    size_bytes: int = Field(default=0, sa_type=BigInteger)  # type: ignore[invalid-argument-type]
    mime_type: str = Field(default="application/octet-stream", max_length=100)
    extension: str = Field(default="bin", max_length=10)
    checksum: str = Field(max_length=64)
    owner_id: str = Field(index=True)
    folder_id: str | None = Field(default=None, index=True)
    is_public: bool = Field(default=False)
    description: str | None = Field(default=None)
    tags: str = Field(default="")
    """Comma-delimited tag list; see ``split_tags``/``join_tags``."""
    download_count: int = Field(default=0)
    last_access_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )
    version: int = Field(default=1)
    expires_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )

    def is_expired(self, now: datetime | None = None) -> bool:
        return is_past(self.expires_at, now)


class FileRecord(FileRecordBase, table=True):
    """Default file table: ``files``."""

    __tablename__ = "files"
    __table_args__ = (Index("ix_files_owner_checksum", "owner_id", "checksum"),)
