"""Folder model: one node of a per-owner folder hierarchy.

Provides ``FolderBase`` (non-table) and ``Folder`` (concrete table).
Subclass ``FolderBase`` with ``table=True`` and a custom ``__tablename__``
to use a different table name.

``path`` and ``level`` are denormalized from the parent chain and are kept
consistent by ``FolderService``, which rewrites the whole subtree when a
folder is renamed or moved.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Index, text
from sqlmodel import Field

from docvault.models.lifecycle import SoftDeleteFields, utcnow


class FolderBase(SoftDeleteFields):
    """Base fields for a folder record. Subclass with ``table=True`` for a concrete table."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    name: str = Field(max_length=255)
    path: str = Field(index=True)
    parent_id: str | None = Field(default=None, index=True)
    parent_key: str = Field(default="")
    """Parent id, or ``""`` for roots. Backs the sibling-name unique index."""
    level: int = Field(default=0)
    owner_id: str = Field(index=True)
    is_public: bool = Field(default=False)
    description: str | None = Field(default=None)
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )

    @property
    def is_root(self) -> bool:
        return self.parent_id is None


class Folder(FolderBase, table=True):
    """Default folder table: ``folders``."""

    __tablename__ = "folders"
    __table_args__ = (
        Index(
            "uq_folders_active_sibling_name",
            "owner_id",
            "parent_key",
            "name",
            unique=True,
            sqlite_where=text("state = 'active'"),
            postgresql_where=text("state = 'active'"),
        ),
    )
