"""Domain services: stateless, session-per-call, flush-never-commit."""

from docvault.services.access import (
    ADMIN_ROLE,
    SYSTEM_PERMISSIONS,
    SYSTEM_ROLES,
    USER_ROLE,
    USER_ROLE_PERMISSIONS,
    AccessControlService,
    PermissionSpec,
    can_access,
    require_owner,
)
from docvault.services.files import FileService
from docvault.services.folders import FolderService
from docvault.services.sharing import ShareService
from docvault.services.types import (
    BootstrapResult,
    FileStats,
    FolderNode,
    FolderStats,
    Page,
    ShareStats,
)
from docvault.services.utils import format_file_size

__all__ = [
    "ADMIN_ROLE",
    "SYSTEM_PERMISSIONS",
    "SYSTEM_ROLES",
    "USER_ROLE",
    "USER_ROLE_PERMISSIONS",
    "AccessControlService",
    "BootstrapResult",
    "FileService",
    "FileStats",
    "FolderNode",
    "FolderService",
    "FolderStats",
    "Page",
    "PermissionSpec",
    "ShareService",
    "ShareStats",
    "can_access",
    "format_file_size",
    "require_owner",
]
