"""docvault: folders, files, role-based access and share links over SQL.

An async library core; an HTTP layer and authentication live elsewhere.
"""

__version__ = "0.1.0"

from docvault._vault import DocVault
from docvault.blobs import BlobStore, LocalDiskBlobStore, MemoryBlobStore
from docvault.config import DuplicatePolicy, VaultConfig
from docvault.exceptions import (
    BlobNotFoundError,
    BlobStoreError,
    ConflictError,
    DocVaultError,
    ErrorKind,
    FileExpiredError,
    ForbiddenError,
    GoneError,
    NotFoundError,
    SharePasswordError,
    ShareUnavailableError,
    StorageError,
    ValidationError,
)
from docvault.models import (
    FileRecord,
    FileShare,
    Folder,
    LifecycleState,
    Permission,
    Role,
    RolePermission,
    ShareType,
    UserRole,
)
from docvault.services import (
    BootstrapResult,
    FileStats,
    FolderNode,
    FolderStats,
    Page,
    ShareStats,
    format_file_size,
)

__all__ = [
    "BlobNotFoundError",
    "BlobStore",
    "BlobStoreError",
    "BootstrapResult",
    "ConflictError",
    "DocVault",
    "DocVaultError",
    "DuplicatePolicy",
    "ErrorKind",
    "FileExpiredError",
    "FileRecord",
    "FileShare",
    "FileStats",
    "Folder",
    "FolderNode",
    "FolderStats",
    "ForbiddenError",
    "GoneError",
    "LifecycleState",
    "LocalDiskBlobStore",
    "MemoryBlobStore",
    "NotFoundError",
    "Page",
    "Permission",
    "Role",
    "RolePermission",
    "ShareStats",
    "ShareType",
    "SharePasswordError",
    "ShareUnavailableError",
    "StorageError",
    "UserRole",
    "ValidationError",
    "__version__",
    "format_file_size",
]
