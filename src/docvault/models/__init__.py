"""SQLModel database models for docvault."""

from docvault.models.files import FileRecord, FileRecordBase
from docvault.models.folders import Folder, FolderBase
from docvault.models.lifecycle import LifecycleState, as_utc, utcnow
from docvault.models.rbac import (
    Permission,
    PermissionBase,
    Role,
    RoleBase,
    RolePermission,
    RolePermissionBase,
    UserRole,
    UserRoleBase,
)
from docvault.models.shares import FileShare, FileShareBase, ShareType

__all__ = [
    "FileRecord",
    "FileRecordBase",
    "FileShare",
    "FileShareBase",
    "Folder",
    "FolderBase",
    "LifecycleState",
    "Permission",
    "PermissionBase",
    "Role",
    "RoleBase",
    "RolePermission",
    "RolePermissionBase",
    "ShareType",
    "UserRole",
    "UserRoleBase",
    "as_utc",
    "utcnow",
]
