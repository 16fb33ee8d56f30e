"""FolderService: per-owner folder hierarchy.

Stateless service that receives the folder and file models at construction
and a session at call time. Validation reads and the mutating writes of an
operation share the caller's transaction; the partial unique index on
active sibling names settles races the pre-checks cannot see.

``path`` and ``level`` are cached on every row. Renames and moves rewrite
the whole subtree in the same transaction, so descendants never keep a
stale path.
"""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from typing import TYPE_CHECKING

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from docvault.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from docvault.models.lifecycle import LifecycleState, utcnow

from .access import can_access, require_owner
from .paging import fetch_page
from .types import FolderNode, FolderStats, Page
from .utils import join_folder_path, validate_description, validate_folder_name

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from docvault.config import VaultConfig
    from docvault.models.files import FileRecordBase
    from docvault.models.folders import FolderBase

logger = logging.getLogger(__name__)

_ACTIVE = LifecycleState.ACTIVE.value
_DELETED = LifecycleState.DELETED.value


class FolderService:
    """Folder creation, rename, move, deletion and tree assembly."""

    def __init__(
        self,
        folder_model: type[FolderBase],
        file_model: type[FileRecordBase],
        config: VaultConfig,
    ) -> None:
        self._folder_model = folder_model
        self._file_model = file_model
        self._config = config

    # ------------------------------------------------------------------
    # Lookup helpers
    # ------------------------------------------------------------------

    async def _load(self, session: AsyncSession, folder_id: str) -> FolderBase | None:
        """Load a folder row (any state), locking it on dialects that support it."""
        model = self._folder_model
        result = await session.execute(
            select(model).where(model.id == folder_id).with_for_update()
        )
        return result.scalar_one_or_none()

    async def _load_active(
        self, session: AsyncSession, folder_id: str, label: str = "Folder"
    ) -> FolderBase:
        folder = await self._load(session, folder_id)
        if folder is None or folder.is_deleted:
            raise NotFoundError(f"{label} not found: {folder_id}")
        return folder

    async def _load_owned(
        self, session: AsyncSession, folder_id: str, actor_id: str, action: str
    ) -> FolderBase:
        folder = await self._load_active(session, folder_id)
        require_owner(folder, actor_id, f"Only the owner can {action} this folder")
        return folder

    async def _sibling_exists(
        self,
        session: AsyncSession,
        owner_id: str,
        parent_key: str,
        name: str,
        exclude_id: str | None = None,
    ) -> bool:
        model = self._folder_model
        query = select(model.id).where(
            model.owner_id == owner_id,
            model.parent_key == parent_key,
            model.name == name,
            model.state == _ACTIVE,
        )
        if exclude_id is not None:
            query = query.where(model.id != exclude_id)
        result = await session.execute(query.limit(1))
        return result.first() is not None

    async def _subtree(self, session: AsyncSession, folder: FolderBase) -> list[FolderBase]:
        """All descendants of *folder* (any state), parents before children.

        Built from the parent links rather than path prefixes, so it stays
        correct even when a deleted and an active folder share a path.
        """
        model = self._folder_model
        result = await session.execute(select(model).where(model.owner_id == folder.owner_id))
        children: dict[str, list[FolderBase]] = defaultdict(list)
        for row in result.scalars().all():
            if row.parent_id is not None:
                children[row.parent_id].append(row)

        ordered: list[FolderBase] = []
        seen = {folder.id}
        queue = deque([folder.id])
        while queue:
            for child in children.get(queue.popleft(), []):
                if child.id in seen:
                    continue
                seen.add(child.id)
                ordered.append(child)
                queue.append(child.id)
        return ordered

    async def _count_children(self, session: AsyncSession, folder_id: str) -> tuple[int, int]:
        """Return ``(active_subfolders, active_files)`` directly inside *folder_id*."""
        fm = self._folder_model
        subfolders = await session.execute(
            select(func.count(fm.id)).where(fm.parent_id == folder_id, fm.state == _ACTIVE)
        )
        files = await session.execute(
            select(func.count(self._file_model.id)).where(
                self._file_model.folder_id == folder_id,
                self._file_model.state == _ACTIVE,
            )
        )
        return subfolders.scalar_one(), files.scalar_one()

    @staticmethod
    async def _flush_sibling_guard(session: AsyncSession, name: str) -> None:
        try:
            await session.flush()
        except IntegrityError as e:
            raise ConflictError(f"A folder named {name!r} already exists here") from e

    def _relink_subtree(
        self, folder: FolderBase, subtree: list[FolderBase]
    ) -> None:
        """Recompute path and level of *subtree* from *folder* downwards."""
        by_id = {folder.id: folder}
        now = utcnow()
        for node in subtree:
            parent = by_id[node.parent_id]  # type: ignore[index]
            node.path = join_folder_path(parent.path, node.name)
            node.level = parent.level + 1
            node.updated_at = now
            by_id[node.id] = node

    # ------------------------------------------------------------------
    # Create / update / move / delete
    # ------------------------------------------------------------------

    async def create_folder(
        self,
        session: AsyncSession,
        name: str,
        owner_id: str,
        parent_id: str | None = None,
        *,
        is_public: bool = False,
        description: str | None = None,
    ) -> FolderBase:
        """Create a folder. Only the parent's owner may add children to it."""
        name = validate_folder_name(name)
        description = validate_description(description)

        level = 0
        parent_path: str | None = None
        if parent_id is not None:
            parent = await self._load_active(session, parent_id, "Parent folder")
            if parent.owner_id != owner_id:
                raise ForbiddenError("Only the owner can create subfolders in this folder")
            level = parent.level + 1
            parent_path = parent.path
            if level > self._config.max_folder_depth:
                raise ValidationError(
                    f"Folder depth cannot exceed {self._config.max_folder_depth} levels"
                )

        parent_key = parent_id or ""
        if await self._sibling_exists(session, owner_id, parent_key, name):
            raise ConflictError(f"A folder named {name!r} already exists here")

        folder = self._folder_model(
            name=name,
            path=join_folder_path(parent_path, name),
            parent_id=parent_id,
            parent_key=parent_key,
            level=level,
            owner_id=owner_id,
            is_public=is_public,
            description=description,
        )
        session.add(folder)
        await self._flush_sibling_guard(session, name)
        logger.info("Created folder %s at %s for %s", folder.id, folder.path, owner_id)
        return folder

    async def update_folder(
        self,
        session: AsyncSession,
        folder_id: str,
        actor_id: str,
        *,
        name: str | None = None,
        description: str | None = None,
        is_public: bool | None = None,
    ) -> FolderBase:
        """Rename and/or change description and visibility. ``None`` leaves a field as is."""
        folder = await self._load_owned(session, folder_id, actor_id, "modify")

        if name is not None:
            name = validate_folder_name(name)
            if name != folder.name:
                if await self._sibling_exists(
                    session, folder.owner_id, folder.parent_key, name, exclude_id=folder.id
                ):
                    raise ConflictError(f"A folder named {name!r} already exists here")
                subtree = await self._subtree(session, folder)
                parent_path = folder.path.rsplit("/", 1)[0] or None
                folder.name = name
                folder.path = join_folder_path(parent_path, name)
                self._relink_subtree(folder, subtree)

        if description is not None:
            folder.description = validate_description(description)
        if is_public is not None:
            folder.is_public = is_public

        folder.updated_at = utcnow()
        await self._flush_sibling_guard(session, folder.name)
        logger.info("Updated folder %s", folder.id)
        return folder

    async def move_folder(
        self,
        session: AsyncSession,
        folder_id: str,
        actor_id: str,
        new_parent_id: str | None,
    ) -> FolderBase:
        """Move a folder under *new_parent_id*, or to the root when ``None``."""
        folder = await self._load_owned(session, folder_id, actor_id, "move")
        if new_parent_id == folder.id:
            raise ValidationError("Cannot move a folder into itself")

        subtree = await self._subtree(session, folder)
        new_level = 0
        if new_parent_id is not None:
            target = await self._load_active(session, new_parent_id, "Target folder")
            if target.owner_id != actor_id:
                raise ForbiddenError("Cannot move into a folder you do not own")
            if any(node.id == target.id for node in subtree):
                raise ValidationError("Cannot move a folder into its own subfolder")
            new_level = target.level + 1
            parent_path: str | None = target.path
        else:
            parent_path = None

        depth_below = max((node.level - folder.level for node in subtree), default=0)
        if new_level + depth_below > self._config.max_folder_depth:
            raise ValidationError(
                f"Move would exceed the maximum folder depth of "
                f"{self._config.max_folder_depth} levels"
            )

        parent_key = new_parent_id or ""
        if await self._sibling_exists(
            session, folder.owner_id, parent_key, folder.name, exclude_id=folder.id
        ):
            raise ConflictError(
                f"A folder named {folder.name!r} already exists in the destination"
            )

        folder.parent_id = new_parent_id
        folder.parent_key = parent_key
        folder.level = new_level
        folder.path = join_folder_path(parent_path, folder.name)
        folder.updated_at = utcnow()
        self._relink_subtree(folder, subtree)

        await self._flush_sibling_guard(session, folder.name)
        logger.info("Moved folder %s to %s", folder.id, new_parent_id or "root")
        return folder

    async def delete_folder(self, session: AsyncSession, folder_id: str, actor_id: str) -> None:
        """Soft-delete an empty folder. Nothing is deleted recursively."""
        folder = await self._load_owned(session, folder_id, actor_id, "delete")
        subfolders, files = await self._count_children(session, folder.id)
        if subfolders:
            raise ConflictError("Folder still contains subfolders; delete them first")
        if files:
            raise ConflictError("Folder still contains files; delete them first")

        folder.mark_deleted(actor_id)
        folder.updated_at = utcnow()
        await session.flush()
        logger.info("Deleted folder %s by %s", folder.id, actor_id)

    async def restore_folder(
        self, session: AsyncSession, folder_id: str, actor_id: str
    ) -> FolderBase:
        """Bring a soft-deleted folder back. Its parent must be active."""
        folder = await self._load(session, folder_id)
        if folder is None:
            raise NotFoundError(f"Folder not found: {folder_id}")
        require_owner(folder, actor_id, "Only the owner can restore this folder")
        if not folder.is_deleted:
            raise ValidationError("Folder is not deleted")
        if folder.parent_id is not None:
            parent = await self._load(session, folder.parent_id)
            if parent is None or parent.is_deleted:
                raise ValidationError("Parent folder is deleted; restore it first")
        if await self._sibling_exists(
            session, folder.owner_id, folder.parent_key, folder.name, exclude_id=folder.id
        ):
            raise ConflictError(f"A folder named {folder.name!r} already exists here")

        folder.mark_active()
        folder.updated_at = utcnow()
        await self._flush_sibling_guard(session, folder.name)
        logger.info("Restored folder %s", folder.id)
        return folder

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_folder(
        self, session: AsyncSession, folder_id: str, viewer_id: str | None
    ) -> FolderBase:
        folder = await session.get(self._folder_model, folder_id)
        if folder is None or folder.is_deleted:
            raise NotFoundError(f"Folder not found: {folder_id}")
        if not can_access(folder, viewer_id):
            raise ForbiddenError("You do not have access to this folder")
        return folder

    async def list_root_folders(
        self,
        session: AsyncSession,
        owner_id: str,
        page: int = 1,
        page_size: int | None = None,
    ) -> Page[FolderBase]:
        model = self._folder_model
        query = (
            select(model)
            .where(
                model.owner_id == owner_id,
                model.parent_id.is_(None),  # type: ignore[union-attr]
                model.state == _ACTIVE,
            )
            .order_by(model.name)
        )
        return await fetch_page(session, query, page, page_size, self._config)

    async def list_subfolders(
        self,
        session: AsyncSession,
        parent_id: str,
        viewer_id: str | None,
        page: int = 1,
        page_size: int | None = None,
    ) -> Page[FolderBase]:
        parent = await self.get_folder(session, parent_id, viewer_id)
        model = self._folder_model
        query = (
            select(model)
            .where(model.parent_id == parent.id, model.state == _ACTIVE)
            .order_by(model.name)
        )
        return await fetch_page(session, query, page, page_size, self._config)

    async def list_trash(self, session: AsyncSession, owner_id: str) -> list[FolderBase]:
        """Soft-deleted folders of *owner_id*, most recently deleted first."""
        model = self._folder_model
        result = await session.execute(
            select(model)
            .where(model.owner_id == owner_id, model.state == _DELETED)
            .order_by(model.deleted_at.desc())  # type: ignore[union-attr]
        )
        return list(result.scalars().all())

    async def build_tree(self, session: AsyncSession, owner_id: str) -> list[FolderNode]:
        """Assemble the owner's active folders into a forest.

        One query, then two linear passes over an id -> node map: create
        every node, then attach each to its parent. A node whose parent is
        missing (deleted, or not in this owner's set) becomes a root.
        """
        model = self._folder_model
        result = await session.execute(
            select(model)
            .where(model.owner_id == owner_id, model.state == _ACTIVE)
            .order_by(model.level, model.name)
        )
        folders = result.scalars().all()

        nodes: dict[str, FolderNode] = {
            f.id: FolderNode(
                id=f.id, name=f.name, path=f.path, level=f.level, is_public=f.is_public
            )
            for f in folders
        }
        roots: list[FolderNode] = []
        for f in folders:
            node = nodes[f.id]
            parent = nodes.get(f.parent_id) if f.parent_id else None
            if parent is not None:
                parent.children.append(node)
            else:
                roots.append(node)
        return roots

    async def folder_stats(
        self, session: AsyncSession, folder_id: str, viewer_id: str | None
    ) -> FolderStats:
        """Counts and total size over direct children only."""
        folder = await self.get_folder(session, folder_id, viewer_id)
        subfolders, files = await self._count_children(session, folder.id)
        fm = self._file_model
        size = await session.execute(
            select(func.coalesce(func.sum(fm.size_bytes), 0)).where(
                fm.folder_id == folder.id, fm.state == _ACTIVE
            )
        )
        return FolderStats(file_count=files, subfolder_count=subfolders, total_size=size.scalar_one())
