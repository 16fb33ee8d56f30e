"""VaultConfig and DuplicatePolicy."""

from __future__ import annotations

import string
from dataclasses import dataclass
from enum import Enum


class DuplicatePolicy(str, Enum):
    """What an upload does when the owner already stores identical content."""

    REPORT = "report"
    REJECT = "reject"


@dataclass(frozen=True)
class VaultConfig:
    """Configuration shared by every service of a vault instance."""

    max_folder_depth: int = 10
    """Deepest allowed folder level; roots are level 0."""

    share_code_length: int = 16
    """Length of generated share codes for ``link`` shares."""

    share_code_alphabet: str = string.ascii_uppercase + string.ascii_lowercase + string.digits
    """Characters share codes are drawn from."""

    max_share_access_count: int = 1_000_000
    """Upper bound accepted for a share's ``max_access_count``."""

    default_page_size: int = 20
    """Page size used when a list call does not pass one."""

    max_page_size: int = 100
    """Largest page size a list call may request."""

    recent_uploads_limit: int = 10
    """How many uploads ``file_stats`` reports as recent."""

    search_result_limit: int = 100
    """Most results a single ``search_files`` call returns."""

    duplicate_policy: DuplicatePolicy = DuplicatePolicy.REPORT
    """``REPORT`` logs duplicate content and accepts it; ``REJECT`` raises a conflict."""

    purge_blobs_on_delete: bool = False
    """If True, ``delete_file`` also removes the bytes from the blob store (best effort)."""

    password_schemes: tuple[str, ...] = ("pbkdf2_sha256",)
    """passlib schemes used to hash share passwords; the first is the default."""

    def __post_init__(self) -> None:
        if self.max_folder_depth < 0:
            raise ValueError("max_folder_depth must be >= 0")
        if self.share_code_length < 8 or self.share_code_length > 32:
            raise ValueError("share_code_length must be between 8 and 32")
        if len(set(self.share_code_alphabet)) < 16:
            raise ValueError("share_code_alphabet needs at least 16 distinct characters")
        if self.max_share_access_count < 1:
            raise ValueError("max_share_access_count must be >= 1")
        if not 1 <= self.default_page_size <= self.max_page_size:
            raise ValueError("default_page_size must be between 1 and max_page_size")
        if self.recent_uploads_limit < 0:
            raise ValueError("recent_uploads_limit must be >= 0")
        if self.search_result_limit < 1:
            raise ValueError("search_result_limit must be >= 1")
        if not self.password_schemes:
            raise ValueError("password_schemes cannot be empty")
