"""ShareService: bounded, revocable share links for single files."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from passlib.context import CryptContext
from sqlalchemy import or_, update
from sqlmodel import select

from docvault.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    SharePasswordError,
    ShareUnavailableError,
    ValidationError,
)
from docvault.models.lifecycle import utcnow
from docvault.models.shares import ShareType

from .access import can_access
from .paging import fetch_page
from .types import Page, ShareStats
from .utils import generate_share_code, validate_description

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from docvault.config import VaultConfig
    from docvault.models.files import FileRecordBase
    from docvault.models.shares import FileShareBase

logger = logging.getLogger(__name__)

_CODE_ATTEMPTS = 5


class ShareService:
    """Create, redeem and manage file shares.

    Only ``link`` shares carry a redeemable code. Passwords are hashed with
    a passlib ``CryptContext`` built from ``VaultConfig.password_schemes``
    unless one is supplied.
    """

    def __init__(
        self,
        share_model: type[FileShareBase],
        file_model: type[FileRecordBase],
        config: VaultConfig,
        password_context: CryptContext | None = None,
    ) -> None:
        self._share_model = share_model
        self._file_model = file_model
        self._config = config
        self._passwords = password_context or CryptContext(
            schemes=list(config.password_schemes), deprecated="auto"
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _expiry_from_days(self, expiry_days: int) -> datetime | None:
        if expiry_days < 0:
            raise ValidationError("expiry_days cannot be negative")
        if expiry_days == 0:
            return None
        return utcnow() + timedelta(days=expiry_days)

    def _check_cap(self, max_access_count: int) -> int:
        limit = self._config.max_share_access_count
        if not 1 <= max_access_count <= limit:
            raise ValidationError(f"max_access_count must be between 1 and {limit}")
        return max_access_count

    def _hash_password(self, password: str) -> str:
        return self._passwords.hash(password)

    async def _unused_code(self, session: AsyncSession) -> str:
        model = self._share_model
        for _ in range(_CODE_ATTEMPTS):
            code = generate_share_code(
                self._config.share_code_length, self._config.share_code_alphabet
            )
            result = await session.execute(select(model.id).where(model.share_code == code))
            if result.first() is None:
                return code
        raise ConflictError("Could not allocate a unique share code")

    async def _get_owned(
        self, session: AsyncSession, share_id: str, actor_id: str, action: str
    ) -> FileShareBase:
        share = await session.get(self._share_model, share_id)
        if share is None:
            raise NotFoundError(f"Share not found: {share_id}")
        if share.created_by != actor_id:
            raise ForbiddenError(f"Only the creator can {action} this share")
        return share

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_share(
        self,
        session: AsyncSession,
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
        try:
            kind = ShareType(share_type)
        except ValueError:
            raise ValidationError(f"Unknown share type: {share_type!r}") from None

        record = await session.get(self._file_model, file_id)
        if record is None or record.is_deleted:
            raise NotFoundError(f"File not found: {file_id}")
        if not can_access(record, creator_id):
            raise ForbiddenError("You do not have permission to share this file")

        share = self._share_model(
            file_id=record.id,
            created_by=creator_id,
            share_type=kind.value,
            share_code=await self._unused_code(session) if kind is ShareType.LINK else None,
            expires_at=self._expiry_from_days(expiry_days) if expiry_days is not None else None,
            max_access_count=(
                self._check_cap(max_access_count) if max_access_count is not None else None
            ),
            can_download=can_download,
            can_comment=can_comment,
            can_edit=can_edit,
            password_hash=self._hash_password(password) if password else None,
            description=validate_description(description),
        )
        session.add(share)
        await session.flush()
        logger.info("Created %s share %s for file %s", kind.value, share.id, record.id)
        return share

    # ------------------------------------------------------------------
    # Redeem
    # ------------------------------------------------------------------

    async def resolve_share(
        self, session: AsyncSession, code: str, password: str | None = None
    ) -> tuple[FileShareBase, FileRecordBase]:
        """Validate *code* (and *password*) without counting an access.

        Checks run in order: unknown code, unusable share (inactive,
        expired, capped), wrong password, missing file.
        """
        model = self._share_model
        result = await session.execute(select(model).where(model.share_code == code))
        share = result.scalars().first()
        if share is None:
            raise NotFoundError("Share not found")
        if not share.is_valid():
            raise ShareUnavailableError("Share is no longer available")
        if share.password_hash is not None and not (
            password and self._passwords.verify(password, share.password_hash)
        ):
            raise SharePasswordError("Incorrect share password")

        record = await session.get(self._file_model, share.file_id)
        if record is None or record.is_deleted:
            raise NotFoundError(f"File not found: {share.file_id}")
        return share, record

    async def access_share(
        self, session: AsyncSession, code: str, password: str | None = None
    ) -> tuple[FileShareBase, FileRecordBase]:
        """Resolve *code* and count one redemption.

        The increment is guarded in SQL so a share capped at N is redeemed
        at most N times regardless of concurrent callers.
        """
        share, record = await self.resolve_share(session, code, password)

        model = self._share_model
        now = utcnow()
        result = await session.execute(
            update(model)
            .where(
                model.id == share.id,
                model.is_active.is_(True),  # type: ignore[union-attr]
                or_(
                    model.max_access_count.is_(None),  # type: ignore[union-attr]
                    model.access_count < model.max_access_count,
                ),
                or_(model.expires_at.is_(None), model.expires_at > now),  # type: ignore[union-attr]
            )
            .values(access_count=model.access_count + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:  # type: ignore[attr-defined]
            raise ShareUnavailableError("Share is no longer available")

        await session.refresh(share, attribute_names=["access_count", "updated_at"])
        logger.info("Share %s redeemed (%d)", share.id, share.access_count)
        return share, record

    # ------------------------------------------------------------------
    # Manage
    # ------------------------------------------------------------------

    async def update_share(
        self,
        session: AsyncSession,
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
        """Partial update. ``None`` leaves a field untouched.

        ``expiry_days=0`` clears the expiry, ``max_access_count=0`` clears
        the cap and ``password=""`` clears the password.
        """
        share = await self._get_owned(session, share_id, actor_id, "modify")

        if expiry_days is not None:
            share.expires_at = self._expiry_from_days(expiry_days)
        if max_access_count is not None:
            share.max_access_count = (
                None if max_access_count == 0 else self._check_cap(max_access_count)
            )
        if password is not None:
            share.password_hash = self._hash_password(password) if password else None
        if description is not None:
            share.description = validate_description(description)
        if can_download is not None:
            share.can_download = can_download
        if can_comment is not None:
            share.can_comment = can_comment
        if can_edit is not None:
            share.can_edit = can_edit
        if is_active is not None:
            share.is_active = is_active

        share.updated_at = utcnow()
        await session.flush()
        logger.info("Updated share %s", share.id)
        return share

    async def revoke_share(self, session: AsyncSession, share_id: str, actor_id: str) -> None:
        share = await self._get_owned(session, share_id, actor_id, "revoke")
        share.is_active = False
        share.updated_at = utcnow()
        await session.flush()
        logger.info("Revoked share %s", share.id)

    async def delete_share(self, session: AsyncSession, share_id: str, actor_id: str) -> None:
        share = await self._get_owned(session, share_id, actor_id, "delete")
        await session.delete(share)
        await session.flush()
        logger.info("Deleted share %s", share_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def list_user_shares(
        self,
        session: AsyncSession,
        creator_id: str,
        page: int = 1,
        page_size: int | None = None,
    ) -> Page[FileShareBase]:
        model = self._share_model
        query = (
            select(model)
            .where(model.created_by == creator_id)
            .order_by(model.created_at.desc())  # type: ignore[union-attr]
        )
        return await fetch_page(session, query, page, page_size, self._config)

    async def list_file_shares(
        self, session: AsyncSession, file_id: str, viewer_id: str
    ) -> list[FileShareBase]:
        """All shares of a file the viewer owns or that is public."""
        record = await session.get(self._file_model, file_id)
        if record is None or record.is_deleted:
            raise NotFoundError(f"File not found: {file_id}")
        if not can_access(record, viewer_id):
            raise ForbiddenError("You do not have permission to view shares of this file")
        model = self._share_model
        result = await session.execute(
            select(model)
            .where(model.file_id == record.id)
            .order_by(model.created_at.desc())  # type: ignore[union-attr]
        )
        return list(result.scalars().all())

    async def share_stats(self, session: AsyncSession, user_id: str) -> ShareStats:
        """Counts over every share *user_id* created.

        ``active_shares`` counts shares currently redeemable;
        ``expired_shares`` counts shares past their expiry.
        """
        model = self._share_model
        result = await session.execute(select(model).where(model.created_by == user_id))
        shares = list(result.scalars().all())
        now = utcnow()
        return ShareStats(
            total_shares=len(shares),
            active_shares=sum(1 for s in shares if s.is_valid(now)),
            expired_shares=sum(1 for s in shares if s.is_expired(now)),
            total_access=sum(s.access_count for s in shares),
        )
