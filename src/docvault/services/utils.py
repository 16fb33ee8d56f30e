"""Name validation, tag and path helpers, key and code generation."""

from __future__ import annotations

import hashlib
import posixpath
import re
import secrets
import time
from collections.abc import Iterable

from docvault.exceptions import ValidationError

MAX_NAME_LENGTH = 255
MAX_DESCRIPTION_LENGTH = 1000
MAX_EXTENSION_LENGTH = 10
MAX_MIME_TYPE_LENGTH = 100
DEFAULT_EXTENSION = "bin"
DEFAULT_MIME_TYPE = "application/octet-stream"
TAG_DELIMITER = ","

ROLE_CODE_RE = re.compile(r"^[A-Za-z0-9_]{1,50}$")
PERMISSION_CODE_RE = re.compile(r"^[A-Za-z0-9_:]{1,100}$")

# =============================================================================
# Names
# =============================================================================


def validate_folder_name(name: str | None) -> str:
    """Return the stripped folder name or raise ``ValidationError``.

    Names become path segments, so separators and dot segments are rejected.
    """
    name = (name or "").strip()
    if not name:
        raise ValidationError("Folder name cannot be empty")
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(f"Folder name cannot exceed {MAX_NAME_LENGTH} characters")
    if "/" in name or "\\" in name:
        raise ValidationError("Folder name cannot contain path separators")
    if name in (".", ".."):
        raise ValidationError(f"Invalid folder name: {name}")
    if "\x00" in name:
        raise ValidationError("Folder name cannot contain null bytes")
    return name


def validate_file_name(name: str | None) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("File name cannot be empty")
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(f"File name cannot exceed {MAX_NAME_LENGTH} characters")
    if "\x00" in name:
        raise ValidationError("File name cannot contain null bytes")
    return name


def validate_description(description: str | None) -> str | None:
    if description is not None and len(description) > MAX_DESCRIPTION_LENGTH:
        raise ValidationError(
            f"Description cannot exceed {MAX_DESCRIPTION_LENGTH} characters"
        )
    return description


def validate_role_code(code: str) -> str:
    if not ROLE_CODE_RE.match(code or ""):
        raise ValidationError(
            "Role code may only contain letters, digits and underscores (1-50 chars)"
        )
    return code


def validate_permission_code(code: str) -> str:
    if not PERMISSION_CODE_RE.match(code or ""):
        raise ValidationError(
            "Permission code may only contain letters, digits, underscores and colons"
            " (1-100 chars)"
        )
    return code


def permission_code(resource: str, action: str) -> str:
    """Build the ``resource:action`` permission code."""
    return f"{resource}:{action}"


# =============================================================================
# Folder paths
# =============================================================================


def join_folder_path(parent_path: str | None, name: str) -> str:
    """Materialized path of *name* under *parent_path* (``None`` for roots).

    Examples:
        join_folder_path(None, "Docs") -> "/Docs"
        join_folder_path("/Docs", "Reports") -> "/Docs/Reports"
    """
    if not parent_path or parent_path == "/":
        return f"/{name}"
    return f"{parent_path}/{name}"


# =============================================================================
# Tags
# =============================================================================


def split_tags(tags: str | None) -> list[str]:
    """Split a delimited tag string, dropping blanks.

    Examples:
        split_tags("a, b,,c") -> ["a", "b", "c"]
        split_tags(None) -> []
    """
    if not tags:
        return []
    return [t.strip() for t in tags.split(TAG_DELIMITER) if t.strip()]


def join_tags(tags: str | Iterable[str] | None) -> str:
    """Normalize tags into the stored delimited form, de-duplicated in order."""
    if tags is None:
        return ""
    items = split_tags(tags) if isinstance(tags, str) else [t.strip() for t in tags]
    seen: dict[str, None] = {}
    for tag in items:
        if not tag:
            continue
        if TAG_DELIMITER in tag:
            raise ValidationError(f"Tag cannot contain {TAG_DELIMITER!r}: {tag}")
        seen.setdefault(tag, None)
    return TAG_DELIMITER.join(seen)


# =============================================================================
# Content and storage keys
# =============================================================================


def compute_checksum(data: bytes) -> str:
    """Return the sha256 hex digest of *data*."""
    return hashlib.sha256(data).hexdigest()


def file_extension(original_name: str) -> str:
    """Lowercase extension of *original_name* without the dot.

    Falls back to ``bin`` when there is none or it is too long to store.
    """
    ext = posixpath.splitext(original_name.strip())[1][1:].lower()
    if not ext or len(ext) > MAX_EXTENSION_LENGTH:
        return DEFAULT_EXTENSION
    return ext


def generate_unique_name(extension: str) -> str:
    """Time + random name, e.g. ``1760867400123-9f2c4e1ab03d77c5.pdf``."""
    return f"{int(time.time() * 1000)}-{secrets.token_hex(8)}.{extension}"


def storage_key_for(folder_id: str | None, unique_name: str) -> str:
    """Blob key ``{scope}/{unique_name}`` where scope is ``root`` or ``folder-<id>``."""
    scope = f"folder-{folder_id}" if folder_id else "root"
    return f"{scope}/{unique_name}"


def generate_share_code(length: int, alphabet: str) -> str:
    return "".join(secrets.choice(alphabet) for _ in range(length))


def format_file_size(size_bytes: int) -> str:
    """Human readable size.

    Examples:
        format_file_size(512) -> "512.00 B"
        format_file_size(1536) -> "1.50 KB"
    """
    units = ["B", "KB", "MB", "GB", "TB"]
    size = float(size_bytes)
    unit = 0
    while size >= 1024 and unit < len(units) - 1:
        size /= 1024
        unit += 1
    return f"{size:.2f} {units[unit]}"
