"""FileService: file metadata lifecycle on top of a blob store."""

from __future__ import annotations

import logging
from collections import Counter
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select

from docvault.config import DuplicatePolicy
from docvault.exceptions import (
    BlobStoreError,
    ConflictError,
    FileExpiredError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from docvault.models.lifecycle import LifecycleState, as_utc, utcnow

from .access import can_access, require_owner
from .paging import fetch_page
from .types import FileStats, Page
from .utils import (
    DEFAULT_MIME_TYPE,
    MAX_MIME_TYPE_LENGTH,
    TAG_DELIMITER,
    compute_checksum,
    file_extension,
    generate_unique_name,
    join_tags,
    split_tags,
    storage_key_for,
    validate_description,
    validate_file_name,
)

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from sqlalchemy import ColumnElement
    from sqlalchemy.ext.asyncio import AsyncSession

    from docvault.blobs.protocol import BlobStore
    from docvault.config import VaultConfig
    from docvault.models.files import FileRecordBase
    from docvault.models.folders import FolderBase

logger = logging.getLogger(__name__)

_ACTIVE = LifecycleState.ACTIVE.value
_DELETED = LifecycleState.DELETED.value

_SORTABLE = frozenset(
    {"created_at", "updated_at", "original_name", "size_bytes", "download_count"}
)


def _has_tag(column: Any, tag: str) -> ColumnElement[bool]:
    """Match one whole tag inside a delimited tag column."""
    sep = TAG_DELIMITER
    return or_(
        column == tag,
        column.startswith(f"{tag}{sep}", autoescape=True),
        column.endswith(f"{sep}{tag}", autoescape=True),
        column.contains(f"{sep}{tag}{sep}", autoescape=True),
    )


class FileService:
    """Upload, download, listing, update and soft delete of file records.

    Bytes go to the injected ``BlobStore``; metadata goes to the session.
    """

    def __init__(
        self,
        file_model: type[FileRecordBase],
        folder_model: type[FolderBase],
        blob_store: BlobStore,
        config: VaultConfig,
    ) -> None:
        self._file_model = file_model
        self._folder_model = folder_model
        self._blobs = blob_store
        self._config = config

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _get_active(self, session: AsyncSession, file_id: str) -> FileRecordBase:
        record = await session.get(self._file_model, file_id)
        if record is None or record.is_deleted:
            raise NotFoundError(f"File not found: {file_id}")
        return record

    async def _get_owned(
        self, session: AsyncSession, file_id: str, actor_id: str, action: str
    ) -> FileRecordBase:
        record = await self._get_active(session, file_id)
        require_owner(record, actor_id, f"Only the owner can {action} this file")
        return record

    async def _load_folder(
        self, session: AsyncSession, folder_id: str, *, lock: bool = False
    ) -> FolderBase | None:
        """Load a folder row; with *lock*, hold it against a concurrent delete."""
        model = self._folder_model
        query = select(model).where(model.id == folder_id)
        if lock:
            query = query.with_for_update()
        result = await session.execute(query)
        return result.scalar_one_or_none()

    async def _get_accessible_folder(
        self,
        session: AsyncSession,
        folder_id: str,
        principal_id: str | None,
        *,
        lock: bool = False,
    ) -> FolderBase:
        folder = await self._load_folder(session, folder_id, lock=lock)
        if folder is None or folder.is_deleted:
            raise NotFoundError(f"Folder not found: {folder_id}")
        if not can_access(folder, principal_id):
            raise ForbiddenError("You do not have access to this folder")
        return folder

    async def _discard_blob(self, key: str) -> None:
        try:
            await self._blobs.delete(key)
        except BlobStoreError:
            logger.warning("Failed to clean up blob %s", key, exc_info=True)

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    async def find_duplicates(
        self, session: AsyncSession, owner_id: str, checksum: str
    ) -> list[FileRecordBase]:
        """Active files of *owner_id* whose content hashes to *checksum*."""
        model = self._file_model
        result = await session.execute(
            select(model)
            .where(model.owner_id == owner_id, model.checksum == checksum, model.state == _ACTIVE)
            .order_by(model.created_at)
        )
        return list(result.scalars().all())

    async def upload_file(
        self,
        session: AsyncSession,
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
        """Store *data* in the blob store and record its metadata.

        Duplicate content for the same owner is handled by
        ``VaultConfig.duplicate_policy``: ``REPORT`` logs and accepts it,
        ``REJECT`` raises ``ConflictError`` before anything is written.
        """
        original_name = validate_file_name(original_name)
        description = validate_description(description)
        if size is not None and size != len(data):
            raise ValidationError(f"Declared size {size} does not match {len(data)} bytes received")
        mime_type = (mime_type or DEFAULT_MIME_TYPE).strip()
        if len(mime_type) > MAX_MIME_TYPE_LENGTH:
            raise ValidationError(f"MIME type cannot exceed {MAX_MIME_TYPE_LENGTH} characters")
        stored_tags = join_tags(tags)

        if folder_id is not None:
            await self._get_accessible_folder(session, folder_id, owner_id, lock=True)

        checksum = compute_checksum(data)
        duplicates = await self.find_duplicates(session, owner_id, checksum)
        if duplicates:
            if self._config.duplicate_policy is DuplicatePolicy.REJECT:
                raise ConflictError(
                    f"Identical content already uploaded as {duplicates[0].original_name!r}"
                )
            logger.info(
                "Upload %r by %s duplicates existing file %s",
                original_name, owner_id, duplicates[0].id,
            )

        extension = file_extension(original_name)
        unique_name = generate_unique_name(extension)
        key = storage_key_for(folder_id, unique_name)

        await self._blobs.put(
            key,
            data,
            {"Content-Type": mime_type, "Original-Name": original_name, "Owner-Id": owner_id},
        )

        record = self._file_model(
            name=unique_name,
            original_name=original_name,
            storage_key=key,
            size_bytes=len(data),
            mime_type=mime_type,
            extension=extension,
            checksum=checksum,
            owner_id=owner_id,
            folder_id=folder_id,
            is_public=is_public,
            description=description,
            tags=stored_tags,
            expires_at=as_utc(expires_at),
        )
        session.add(record)
        try:
            await session.flush()
        except SQLAlchemyError:
            await self._discard_blob(key)
            raise

        logger.info("Uploaded file %s (%s, %d bytes) for %s", record.id, key, len(data), owner_id)
        return record

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_file(
        self, session: AsyncSession, file_id: str, viewer_id: str | None
    ) -> FileRecordBase:
        record = await self._get_active(session, file_id)
        if not can_access(record, viewer_id):
            raise ForbiddenError("You do not have access to this file")
        return record

    async def download_file(
        self, session: AsyncSession, file_id: str, viewer_id: str | None
    ) -> tuple[bytes, FileRecordBase]:
        """Fetch bytes, then count the download.

        A failed fetch raises before the counter is touched. The increment is
        done in SQL so concurrent downloads do not overwrite each other.
        """
        record = await self._get_active(session, file_id)
        if record.is_expired():
            raise FileExpiredError(f"File has expired: {file_id}")
        if not can_access(record, viewer_id):
            raise ForbiddenError("You do not have access to this file")

        data = await self._blobs.get(record.storage_key)

        model = self._file_model
        await session.execute(
            update(model)
            .where(model.id == record.id)
            .values(download_count=model.download_count + 1, last_access_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await session.refresh(record, attribute_names=["download_count", "last_access_at"])
        logger.info("File %s downloaded by %s", record.id, viewer_id)
        return data, record

    async def list_user_files(
        self,
        session: AsyncSession,
        owner_id: str,
        page: int = 1,
        page_size: int | None = None,
    ) -> Page[FileRecordBase]:
        model = self._file_model
        query = (
            select(model)
            .where(model.owner_id == owner_id, model.state == _ACTIVE)
            .order_by(model.created_at.desc())  # type: ignore[union-attr]
        )
        return await fetch_page(session, query, page, page_size, self._config)

    async def list_folder_files(
        self,
        session: AsyncSession,
        folder_id: str,
        viewer_id: str | None,
        page: int = 1,
        page_size: int | None = None,
    ) -> Page[FileRecordBase]:
        """Files in a folder the viewer can see: their own, plus public ones."""
        folder = await self._get_accessible_folder(session, folder_id, viewer_id)
        model = self._file_model
        visible = model.is_public.is_(True)  # type: ignore[union-attr]
        if viewer_id is not None:
            visible = or_(model.owner_id == viewer_id, visible)
        query = (
            select(model)
            .where(model.folder_id == folder.id, model.state == _ACTIVE, visible)
            .order_by(model.created_at.desc())  # type: ignore[union-attr]
        )
        return await fetch_page(session, query, page, page_size, self._config)

    def _filters(
        self,
        *,
        mime_type: str | None,
        extension: str | None,
        tags: str | Iterable[str] | None,
    ) -> list[ColumnElement[bool]]:
        model = self._file_model
        clauses: list[ColumnElement[bool]] = []
        if mime_type:
            mime = model.mime_type.icontains(mime_type.strip(), autoescape=True)  # type: ignore[union-attr]
            clauses.append(mime)
        if extension:
            clauses.append(model.extension == extension.strip().lstrip(".").lower())
        wanted = split_tags(join_tags(tags))
        if wanted:
            clauses.append(or_(*(_has_tag(model.tags, tag) for tag in wanted)))
        return clauses

    async def search_files(
        self,
        session: AsyncSession,
        principal_id: str,
        query: str,
        *,
        mime_type: str | None = None,
        extension: str | None = None,
        tags: str | Iterable[str] | None = None,
        include_public: bool = False,
    ) -> list[FileRecordBase]:
        """Keyword search over stored name, display name, description and tags.

        Matching is case-insensitive. Results are the principal's own files,
        plus public files of others when *include_public* is set, newest
        first and capped at ``VaultConfig.search_result_limit``.
        """
        term = (query or "").strip()
        if not term:
            raise ValidationError("Search query cannot be empty")
        model = self._file_model
        keyword = or_(
            *(
                column.icontains(term, autoescape=True)  # type: ignore[union-attr]
                for column in (model.name, model.original_name, model.description, model.tags)
            )
        )
        visible = model.owner_id == principal_id
        if include_public:
            visible = or_(visible, model.is_public.is_(True))  # type: ignore[union-attr]
        result = await session.execute(
            select(model)
            .where(
                model.state == _ACTIVE,
                visible,
                keyword,
                *self._filters(mime_type=mime_type, extension=extension, tags=tags),
            )
            .order_by(model.created_at.desc())  # type: ignore[union-attr]
            .limit(self._config.search_result_limit)
        )
        return list(result.scalars().all())

    async def list_files(
        self,
        session: AsyncSession,
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
        """Filtered, sorted listing of an owner's active files.

        *folder_id* limits the listing to one folder and *root_only* to files
        outside any folder. *sort_by* is one of ``created_at``,
        ``updated_at``, ``original_name``, ``size_bytes`` or
        ``download_count``.
        """
        if folder_id is not None and root_only:
            raise ValidationError("Pass either folder_id or root_only, not both")
        if sort_by not in _SORTABLE:
            raise ValidationError(f"Cannot sort files by {sort_by!r}")
        order = sort_order.lower()
        if order not in ("asc", "desc"):
            raise ValidationError("sort_order must be 'asc' or 'desc'")

        model = self._file_model
        query = select(model).where(
            model.owner_id == owner_id,
            model.state == _ACTIVE,
            *self._filters(mime_type=mime_type, extension=extension, tags=tags),
        )
        if folder_id is not None:
            query = query.where(model.folder_id == folder_id)
        elif root_only:
            query = query.where(model.folder_id.is_(None))  # type: ignore[union-attr]
        if is_public is not None:
            query = query.where(model.is_public == is_public)
        term = (search or "").strip()
        if term:
            query = query.where(
                or_(
                    *(
                        column.icontains(term, autoescape=True)  # type: ignore[union-attr]
                        for column in (model.name, model.original_name, model.description)
                    )
                )
            )

        sort_column = getattr(model, sort_by)
        primary = sort_column.asc() if order == "asc" else sort_column.desc()
        query = query.order_by(primary, model.id)
        return await fetch_page(session, query, page, page_size, self._config)

    async def list_trash(self, session: AsyncSession, owner_id: str) -> list[FileRecordBase]:
        model = self._file_model
        result = await session.execute(
            select(model)
            .where(model.owner_id == owner_id, model.state == _DELETED)
            .order_by(model.deleted_at.desc())  # type: ignore[union-attr]
        )
        return list(result.scalars().all())

    async def file_stats(self, session: AsyncSession, owner_id: str) -> FileStats:
        model = self._file_model
        active = (model.owner_id == owner_id, model.state == _ACTIVE)
        totals = await session.execute(
            select(func.count(model.id), func.coalesce(func.sum(model.size_bytes), 0)).where(
                *active
            )
        )
        total_files, total_size = totals.one()
        recent = await session.execute(
            select(model)
            .where(*active)
            .order_by(model.created_at.desc())  # type: ignore[union-attr]
            .limit(self._config.recent_uploads_limit)
        )
        mime_types = await session.execute(select(model.mime_type).where(*active))
        file_types = Counter(
            mime.split("/", 1)[0] or "unknown" for mime in mime_types.scalars().all()
        )
        return FileStats(
            total_files=total_files,
            total_size=total_size,
            recent_uploads=list(recent.scalars().all()),
            file_types=dict(file_types),
        )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def update_file(
        self,
        session: AsyncSession,
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
        """Update display metadata. ``None`` leaves a field untouched.

        ``name`` renames the display name (``original_name``); the storage
        key never changes. ``clear_expiry`` removes an expiry, and cannot be
        combined with ``expires_at``.
        """
        if clear_expiry and expires_at is not None:
            raise ValidationError("Pass either expires_at or clear_expiry, not both")
        record = await self._get_owned(session, file_id, actor_id, "modify")
        if name is not None:
            record.original_name = validate_file_name(name)
        if description is not None:
            record.description = validate_description(description)
        if tags is not None:
            record.tags = join_tags(tags)
        if is_public is not None:
            record.is_public = is_public
        if expires_at is not None:
            record.expires_at = as_utc(expires_at)
        elif clear_expiry:
            record.expires_at = None
        record.updated_at = utcnow()
        await session.flush()
        logger.info("Updated file %s", record.id)
        return record

    async def delete_file(self, session: AsyncSession, file_id: str, actor_id: str) -> None:
        """Soft delete. Bytes are removed only when ``purge_blobs_on_delete`` is set."""
        record = await self._get_owned(session, file_id, actor_id, "delete")
        record.mark_deleted(actor_id)
        record.updated_at = utcnow()
        await session.flush()
        if self._config.purge_blobs_on_delete:
            await self._discard_blob(record.storage_key)
        logger.info("Deleted file %s by %s", record.id, actor_id)

    async def restore_file(
        self, session: AsyncSession, file_id: str, actor_id: str
    ) -> FileRecordBase:
        record = await session.get(self._file_model, file_id)
        if record is None:
            raise NotFoundError(f"File not found: {file_id}")
        require_owner(record, actor_id, "Only the owner can restore this file")
        if not record.is_deleted:
            raise ValidationError("File is not deleted")
        if record.folder_id is not None:
            folder = await self._load_folder(session, record.folder_id, lock=True)
            if folder is None or folder.is_deleted:
                raise ValidationError("Containing folder is deleted; restore it first")
        record.mark_active()
        record.updated_at = utcnow()
        await session.flush()
        logger.info("Restored file %s", record.id)
        return record
