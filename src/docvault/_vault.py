"""DocVault: async facade wiring models, services and the blob store."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from docvault.config import VaultConfig
from docvault.exceptions import ConflictError, StorageError
from docvault.models import (
    FileRecord,
    FileShare,
    Folder,
    Permission,
    Role,
    RolePermission,
    UserRole,
)
from docvault.models.shares import ShareType
from docvault.services import AccessControlService, FileService, FolderService, ShareService
from docvault.services.dialect import get_dialect

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable
    from datetime import datetime

    from passlib.context import CryptContext
    from sqlalchemy.ext.asyncio import AsyncEngine

    from docvault.blobs.protocol import BlobStore
    from docvault.models import (
        FileRecordBase,
        FileShareBase,
        FolderBase,
        PermissionBase,
        RoleBase,
        RolePermissionBase,
        UserRoleBase,
    )
    from docvault.services import (
        BootstrapResult,
        FileStats,
        FolderNode,
        FolderStats,
        Page,
        ShareStats,
    )

logger = logging.getLogger(__name__)

_STORAGE_FAILURE = "Storage operation failed"


class DocVault:
    """Document vault: folders, files, RBAC and share links in one object.

    Construct once per process and pass it around. Every public method runs
    in its own session and transaction: committed on success, rolled back
    on any error.

    Errors raised by the services reach the caller unchanged. Unique
    constraint violations surface as ``ConflictError``; any other database
    or blob store failure is logged and re-raised as an opaque
    ``StorageError``.

    Usage::

        vault = DocVault(engine, MemoryBlobStore())
        await vault.create_tables()
        await vault.bootstrap()
        folder = await vault.create_folder("Docs", owner_id="u1")
    """

    def __init__(
        self,
        engine: AsyncEngine,
        blob_store: BlobStore,
        config: VaultConfig | None = None,
        *,
        folder_model: type[FolderBase] = Folder,
        file_model: type[FileRecordBase] = FileRecord,
        share_model: type[FileShareBase] = FileShare,
        role_model: type[RoleBase] = Role,
        permission_model: type[PermissionBase] = Permission,
        role_permission_model: type[RolePermissionBase] = RolePermission,
        user_role_model: type[UserRoleBase] = UserRole,
        password_context: CryptContext | None = None,
    ) -> None:
        self.engine = engine
        self.blob_store = blob_store
        self.config = config or VaultConfig()
        self.dialect = get_dialect(engine)
        self._session_factory = async_sessionmaker(
            engine, class_=AsyncSession, expire_on_commit=False
        )
        self._models = (
            folder_model,
            file_model,
            share_model,
            role_model,
            permission_model,
            role_permission_model,
            user_role_model,
        )

        self.folders = FolderService(folder_model, file_model, self.config)
        self.files = FileService(file_model, folder_model, blob_store, self.config)
        self.access = AccessControlService(
            role_model,
            permission_model,
            role_permission_model,
            user_role_model,
            dialect=self.dialect,
        )
        self.shares = ShareService(share_model, file_model, self.config, password_context)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def create_tables(self) -> None:
        """Create every table the vault uses (no-op for existing ones)."""
        tables = [model.__table__ for model in self._models]  # type: ignore[attr-defined]
        async with self.engine.begin() as conn:
            metadata = tables[0].metadata
            await conn.run_sync(metadata.create_all, tables=tables)

    async def close(self) -> None:
        await self.engine.dispose()

    async def __aenter__(self) -> DocVault:
        return self

    async def __aexit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        await self.close()

    # =========================================================================
    # Session management
    # =========================================================================

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """One unit of work: commit on success, roll back on error."""
        session = self._session_factory()
        try:
            yield session
            await session.commit()
        except IntegrityError as e:
            await self._rollback(session)
            logger.info("Unique constraint rejected write: %s", e.orig)
            raise ConflictError("Operation conflicts with an existing record") from e
        except (SQLAlchemyError, StorageError) as e:
            await self._rollback(session)
            logger.error("Storage failure: %s", e, exc_info=True)
            raise StorageError(_STORAGE_FAILURE) from e
        except BaseException:
            await self._rollback(session)
            raise
        finally:
            await session.close()

    @staticmethod
    async def _rollback(session: AsyncSession) -> None:
        try:
            await session.rollback()
        except Exception:
            logger.warning("Rollback failed", exc_info=True)

    # =========================================================================
    # Folders
    # =========================================================================

    async def create_folder(
        self,
        name: str,
        owner_id: str,
        parent_id: str | None = None,
        *,
        is_public: bool = False,
        description: str | None = None,
    ) -> FolderBase:
        async with self.session() as session:
            return await self.folders.create_folder(
                session, name, owner_id, parent_id, is_public=is_public, description=description
            )

    async def update_folder(
        self,
        folder_id: str,
        actor_id: str,
        *,
        name: str | None = None,
        description: str | None = None,
        is_public: bool | None = None,
    ) -> FolderBase:
        async with self.session() as session:
            return await self.folders.update_folder(
                session,
                folder_id,
                actor_id,
                name=name,
                description=description,
                is_public=is_public,
            )

    async def move_folder(
        self, folder_id: str, actor_id: str, new_parent_id: str | None
    ) -> FolderBase:
        async with self.session() as session:
            return await self.folders.move_folder(session, folder_id, actor_id, new_parent_id)

    async def delete_folder(self, folder_id: str, actor_id: str) -> None:
        async with self.session() as session:
            await self.folders.delete_folder(session, folder_id, actor_id)

    async def restore_folder(self, folder_id: str, actor_id: str) -> FolderBase:
        async with self.session() as session:
            return await self.folders.restore_folder(session, folder_id, actor_id)

    async def get_folder(self, folder_id: str, viewer_id: str | None) -> FolderBase:
        async with self.session() as session:
            return await self.folders.get_folder(session, folder_id, viewer_id)

    async def list_root_folders(
        self, owner_id: str, page: int = 1, page_size: int | None = None
    ) -> Page[FolderBase]:
        async with self.session() as session:
            return await self.folders.list_root_folders(session, owner_id, page, page_size)

    async def list_subfolders(
        self,
        parent_id: str,
        viewer_id: str | None,
        page: int = 1,
        page_size: int | None = None,
    ) -> Page[FolderBase]:
        async with self.session() as session:
            return await self.folders.list_subfolders(
                session, parent_id, viewer_id, page, page_size
            )

    async def list_folder_trash(self, owner_id: str) -> list[FolderBase]:
        async with self.session() as session:
            return await self.folders.list_trash(session, owner_id)

    async def build_tree(self, owner_id: str) -> list[FolderNode]:
        async with self.session() as session:
            return await self.folders.build_tree(session, owner_id)

    async def folder_stats(self, folder_id: str, viewer_id: str | None) -> FolderStats:
        async with self.session() as session:
            return await self.folders.folder_stats(session, folder_id, viewer_id)

    # =========================================================================
    # Files
    # =========================================================================

    async def upload_file(
        self,
        data: bytes,
        original_name: str,
        owner_id: str,
        *,
        mime_type: str | None = None,
        size: int | None = None,
        folder_id: str | None = None,
        is_public: bool = False,
        description: str | None = None,
        tags: str | Iterable[str] | None = None,
        expires_at: datetime | None = None,
    ) -> FileRecordBase:
        async with self.session() as session:
            return await self.files.upload_file(
                session,
                data,
                original_name,
                owner_id,
                mime_type=mime_type,
                size=size,
                folder_id=folder_id,
                is_public=is_public,
                description=description,
                tags=tags,
                expires_at=expires_at,
            )

    async def find_duplicates(self, owner_id: str, checksum: str) -> list[FileRecordBase]:
        async with self.session() as session:
            return await self.files.find_duplicates(session, owner_id, checksum)

    async def download_file(
        self, file_id: str, viewer_id: str | None
    ) -> tuple[bytes, FileRecordBase]:
        async with self.session() as session:
            return await self.files.download_file(session, file_id, viewer_id)

    async def get_file(self, file_id: str, viewer_id: str | None) -> FileRecordBase:
        async with self.session() as session:
            return await self.files.get_file(session, file_id, viewer_id)

    async def list_user_files(
        self, owner_id: str, page: int = 1, page_size: int | None = None
    ) -> Page[FileRecordBase]:
        async with self.session() as session:
            return await self.files.list_user_files(session, owner_id, page, page_size)

    async def list_folder_files(
        self,
        folder_id: str,
        viewer_id: str | None,
        page: int = 1,
        page_size: int | None = None,
    ) -> Page[FileRecordBase]:
        async with self.session() as session:
            return await self.files.list_folder_files(
                session, folder_id, viewer_id, page, page_size
            )

    async def search_files(
        self,
        principal_id: str,
        query: str,
        *,
        mime_type: str | None = None,
        extension: str | None = None,
        tags: str | Iterable[str] | None = None,
        include_public: bool = False,
    ) -> list[FileRecordBase]:
        async with self.session() as session:
            return await self.files.search_files(
                session,
                principal_id,
                query,
                mime_type=mime_type,
                extension=extension,
                tags=tags,
                include_public=include_public,
            )

    async def list_files(
        self,
        owner_id: str,
        *,
        folder_id: str | None = None,
        root_only: bool = False,
        is_public: bool | None = None,
        search: str | None = None,
        mime_type: str | None = None,
        extension: str | None = None,
        tags: str | Iterable[str] | None = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        page: int = 1,
        page_size: int | None = None,
    ) -> Page[FileRecordBase]:
        async with self.session() as session:
            return await self.files.list_files(
                session,
                owner_id,
                folder_id=folder_id,
                root_only=root_only,
                is_public=is_public,
                search=search,
                mime_type=mime_type,
                extension=extension,
                tags=tags,
                sort_by=sort_by,
                sort_order=sort_order,
                page=page,
                page_size=page_size,
            )

    async def list_file_trash(self, owner_id: str) -> list[FileRecordBase]:
        async with self.session() as session:
            return await self.files.list_trash(session, owner_id)

    async def update_file(
        self,
        file_id: str,
        actor_id: str,
        *,
        name: str | None = None,
        description: str | None = None,
        tags: str | Iterable[str] | None = None,
        is_public: bool | None = None,
        expires_at: datetime | None = None,
        clear_expiry: bool = False,
    ) -> FileRecordBase:
        async with self.session() as session:
            return await self.files.update_file(
                session,
                file_id,
                actor_id,
                name=name,
                description=description,
                tags=tags,
                is_public=is_public,
                expires_at=expires_at,
                clear_expiry=clear_expiry,
            )

    async def delete_file(self, file_id: str, actor_id: str) -> None:
        async with self.session() as session:
            await self.files.delete_file(session, file_id, actor_id)

    async def restore_file(self, file_id: str, actor_id: str) -> FileRecordBase:
        async with self.session() as session:
            return await self.files.restore_file(session, file_id, actor_id)

    async def file_stats(self, owner_id: str) -> FileStats:
        async with self.session() as session:
            return await self.files.file_stats(session, owner_id)

    # =========================================================================
    # Access control
    # =========================================================================

    async def bootstrap(self, granted_by: str = "system") -> BootstrapResult:
        """Ensure the system roles, permission catalog and default grants exist."""
        async with self.session() as session:
            return await self.access.bootstrap(session, granted_by)

    async def create_role(
        self, code: str, name: str, *, description: str = "", level: int = 0
    ) -> RoleBase:
        async with self.session() as session:
            return await self.access.create_role(
                session, code, name, description=description, level=level
            )

    async def create_permission(
        self,
        code: str,
        name: str,
        resource: str,
        action: str,
        module: str,
        *,
        description: str = "",
    ) -> PermissionBase:
        async with self.session() as session:
            return await self.access.create_permission(
                session, code, name, resource, action, module, description=description
            )

    async def get_role(self, role_id: str) -> RoleBase:
        async with self.session() as session:
            return await self.access.get_role(session, role_id)

    async def get_permission(self, permission_id: str) -> PermissionBase:
        async with self.session() as session:
            return await self.access.get_permission(session, permission_id)

    async def list_roles(self, *, include_inactive: bool = False) -> list[RoleBase]:
        async with self.session() as session:
            return await self.access.list_roles(session, include_inactive=include_inactive)

    async def list_permissions(self, *, module: str | None = None) -> list[PermissionBase]:
        async with self.session() as session:
            return await self.access.list_permissions(session, module=module)

    async def delete_role(self, role_id: str) -> None:
        async with self.session() as session:
            await self.access.delete_role(session, role_id)

    async def assign_permission_to_role(
        self, role_id: str, permission_id: str, granted_by: str
    ) -> RolePermissionBase:
        async with self.session() as session:
            return await self.access.assign_permission_to_role(
                session, role_id, permission_id, granted_by
            )

    async def assign_role_to_user(
        self,
        user_id: str,
        role_id: str,
        assigned_by: str,
        *,
        expires_at: datetime | None = None,
    ) -> UserRoleBase:
        async with self.session() as session:
            return await self.access.assign_role_to_user(
                session, user_id, role_id, assigned_by, expires_at=expires_at
            )

    async def revoke_permission_from_role(self, role_id: str, permission_id: str) -> None:
        async with self.session() as session:
            await self.access.revoke_permission_from_role(session, role_id, permission_id)

    async def revoke_role_from_user(self, user_id: str, role_id: str) -> None:
        async with self.session() as session:
            await self.access.revoke_role_from_user(session, user_id, role_id)

    async def deactivate_user_role(self, user_id: str, role_id: str) -> UserRoleBase:
        async with self.session() as session:
            return await self.access.deactivate_user_role(session, user_id, role_id)

    async def check_permission(self, user_id: str, resource: str, action: str) -> bool:
        async with self.session() as session:
            return await self.access.check_permission(session, user_id, resource, action)

    async def check_role(self, user_id: str, role_code: str) -> bool:
        async with self.session() as session:
            return await self.access.check_role(session, user_id, role_code)

    async def get_user_roles(self, user_id: str) -> list[RoleBase]:
        async with self.session() as session:
            return await self.access.get_user_roles(session, user_id)

    async def get_user_permissions(self, user_id: str) -> list[PermissionBase]:
        async with self.session() as session:
            return await self.access.get_user_permissions(session, user_id)

    async def get_role_permissions(self, role_id: str) -> list[PermissionBase]:
        async with self.session() as session:
            return await self.access.get_role_permissions(session, role_id)

    # =========================================================================
    # Shares
    # =========================================================================

    async def create_share(
        self,
        file_id: str,
        creator_id: str,
        *,
        share_type: ShareType | str = ShareType.LINK,
        expiry_days: int | None = None,
        max_access_count: int | None = None,
        can_download: bool = True,
        can_comment: bool = False,
        can_edit: bool = False,
        password: str | None = None,
        description: str | None = None,
    ) -> FileShareBase:
        async with self.session() as session:
            return await self.shares.create_share(
                session,
                file_id,
                creator_id,
                share_type=share_type,
                expiry_days=expiry_days,
                max_access_count=max_access_count,
                can_download=can_download,
                can_comment=can_comment,
                can_edit=can_edit,
                password=password,
                description=description,
            )

    async def resolve_share(
        self, code: str, password: str | None = None
    ) -> tuple[FileShareBase, FileRecordBase]:
        async with self.session() as session:
            return await self.shares.resolve_share(session, code, password)

    async def access_share(
        self, code: str, password: str | None = None
    ) -> tuple[FileShareBase, FileRecordBase]:
        async with self.session() as session:
            return await self.shares.access_share(session, code, password)

    async def update_share(
        self,
        share_id: str,
        actor_id: str,
        *,
        expiry_days: int | None = None,
        max_access_count: int | None = None,
        can_download: bool | None = None,
        can_comment: bool | None = None,
        can_edit: bool | None = None,
        password: str | None = None,
        description: str | None = None,
        is_active: bool | None = None,
    ) -> FileShareBase:
        async with self.session() as session:
            return await self.shares.update_share(
                session,
                share_id,
                actor_id,
                expiry_days=expiry_days,
                max_access_count=max_access_count,
                can_download=can_download,
                can_comment=can_comment,
                can_edit=can_edit,
                password=password,
                description=description,
                is_active=is_active,
            )

    async def revoke_share(self, share_id: str, actor_id: str) -> None:
        async with self.session() as session:
            await self.shares.revoke_share(session, share_id, actor_id)

    async def delete_share(self, share_id: str, actor_id: str) -> None:
        async with self.session() as session:
            await self.shares.delete_share(session, share_id, actor_id)

    async def list_user_shares(
        self, creator_id: str, page: int = 1, page_size: int | None = None
    ) -> Page[FileShareBase]:
        async with self.session() as session:
            return await self.shares.list_user_shares(session, creator_id, page, page_size)

    async def list_file_shares(self, file_id: str, viewer_id: str) -> list[FileShareBase]:
        async with self.session() as session:
            return await self.shares.list_file_shares(session, file_id, viewer_id)

    async def share_stats(self, user_id: str) -> ShareStats:
        async with self.session() as session:
            return await self.shares.share_stats(session, user_id)
