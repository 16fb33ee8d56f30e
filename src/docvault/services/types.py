"""Result types: Page, FolderNode, FolderStats, FileStats, etc."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from docvault.models.files import FileRecordBase

T = TypeVar("T")


@dataclass
class Page(Generic[T]):
    """One page of an ordered listing."""

    items: list[T]
    total: int
    page: int
    page_size: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.page_size) if self.total else 0

    @property
    def has_next(self) -> bool:
        return self.page < self.pages


@dataclass
class FolderNode:
    """A folder in an assembled tree."""

    id: str
    name: str
    path: str
    level: int
    is_public: bool
    children: list[FolderNode] = field(default_factory=list)


@dataclass
class FolderStats:
    """Counts over the direct children of a folder."""

    file_count: int
    subfolder_count: int
    total_size: int


@dataclass
class FileStats:
    """Aggregates over an owner's active files."""

    total_files: int
    total_size: int
    recent_uploads: list[FileRecordBase] = field(default_factory=list)
    file_types: dict[str, int] = field(default_factory=dict)
    """Active file counts keyed by MIME major type (``image``, ``text``, ...)."""


@dataclass
class ShareStats:
    """Aggregates over the shares a user created."""

    total_shares: int
    active_shares: int
    expired_shares: int
    total_access: int


@dataclass
class BootstrapResult:
    """Rows created by an RBAC bootstrap run (zero on a re-run)."""

    roles_created: int = 0
    permissions_created: int = 0
    grants_created: int = 0
