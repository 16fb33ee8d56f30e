"""Tests for ShareService: creation, redemption, caps, passwords and stats."""

from __future__ import annotations

import string
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest

from docvault.blobs import MemoryBlobStore
from docvault.config import VaultConfig
from docvault.exceptions import (
    ForbiddenError,
    NotFoundError,
    SharePasswordError,
    ShareUnavailableError,
    ValidationError,
)
from docvault.models import FileRecord, FileShare, Folder
from docvault.services.files import FileService
from docvault.services.sharing import ShareService

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession


@pytest.fixture
def files() -> FileService:
    return FileService(FileRecord, Folder, MemoryBlobStore(), VaultConfig())


@pytest.fixture
def shares() -> ShareService:
    return ShareService(FileShare, FileRecord, VaultConfig())


@pytest.fixture
async def record(files: FileService, async_session: AsyncSession) -> FileRecord:
    return await files.upload_file(async_session, b"report", "report.pdf", "u1")


# ---------------------------------------------------------------------------
# create_share
# ---------------------------------------------------------------------------


class TestCreateShare:
    async def test_link_share(
        self, shares: ShareService, record: FileRecord, async_session: AsyncSession
    ):
        share = await shares.create_share(async_session, record.id, "u1")
        assert share.share_type == "link"
        assert share.share_code is not None
        assert len(share.share_code) == 16
        assert set(share.share_code) <= set(string.ascii_letters + string.digits)
        assert share.access_count == 0
        assert share.can_download and not share.can_edit
        assert share.expires_at is None

    async def test_user_share_has_no_code(
        self, shares: ShareService, record: FileRecord, async_session: AsyncSession
    ):
        share = await shares.create_share(async_session, record.id, "u1", share_type="user")
        assert share.share_code is None

    async def test_unknown_type(
        self, shares: ShareService, record: FileRecord, async_session: AsyncSession
    ):
        with pytest.raises(ValidationError):
            await shares.create_share(async_session, record.id, "u1", share_type="email")

    async def test_expiry_days(
        self, shares: ShareService, record: FileRecord, async_session: AsyncSession
    ):
        share = await shares.create_share(async_session, record.id, "u1", expiry_days=7)
        delta = share.expires_at - datetime.now(UTC)
        assert timedelta(days=6, hours=23) < delta <= timedelta(days=7)

    async def test_password_is_hashed(
        self, shares: ShareService, record: FileRecord, async_session: AsyncSession
    ):
        share = await shares.create_share(async_session, record.id, "u1", password="s3cret")
        assert share.has_password
        assert share.password_hash != "s3cret"
        assert "s3cret" not in share.password_hash

    async def test_missing_file(self, shares: ShareService, async_session: AsyncSession):
        with pytest.raises(NotFoundError):
            await shares.create_share(async_session, "nope", "u1")

    async def test_private_file_of_other(
        self, shares: ShareService, record: FileRecord, async_session: AsyncSession
    ):
        with pytest.raises(ForbiddenError):
            await shares.create_share(async_session, record.id, "u2")

    async def test_public_file_of_other(
        self, shares: ShareService, files: FileService, async_session: AsyncSession
    ):
        public = await files.upload_file(async_session, b"p", "p.txt", "u1", is_public=True)
        share = await shares.create_share(async_session, public.id, "u2")
        assert share.created_by == "u2"

    @pytest.mark.parametrize("cap", [0, -1, 1_000_001])
    async def test_bad_cap(
        self, shares: ShareService, record: FileRecord, async_session: AsyncSession, cap: int
    ):
        with pytest.raises(ValidationError):
            await shares.create_share(async_session, record.id, "u1", max_access_count=cap)


# ---------------------------------------------------------------------------
# resolve_share / access_share
# ---------------------------------------------------------------------------


class TestRedeem:
    async def test_resolve_does_not_count(
        self, shares: ShareService, record: FileRecord, async_session: AsyncSession
    ):
        share = await shares.create_share(async_session, record.id, "u1")
        found, file = await shares.resolve_share(async_session, share.share_code)
        assert found.id == share.id
        assert file.id == record.id
        assert found.access_count == 0

    async def test_unknown_code(self, shares: ShareService, async_session: AsyncSession):
        with pytest.raises(NotFoundError):
            await shares.resolve_share(async_session, "NOPE")

    async def test_cap_of_one(
        self, shares: ShareService, record: FileRecord, async_session: AsyncSession
    ):
        share = await shares.create_share(async_session, record.id, "u1", max_access_count=1)
        redeemed, _ = await shares.access_share(async_session, share.share_code)
        assert redeemed.access_count == 1
        with pytest.raises(ShareUnavailableError):
            await shares.access_share(async_session, share.share_code)

    async def test_cap_of_n(
        self, shares: ShareService, record: FileRecord, async_session: AsyncSession
    ):
        share = await shares.create_share(async_session, record.id, "u1", max_access_count=3)
        for expected in (1, 2, 3):
            redeemed, _ = await shares.access_share(async_session, share.share_code)
            assert redeemed.access_count == expected
        with pytest.raises(ShareUnavailableError):
            await shares.access_share(async_session, share.share_code)

    async def test_expired_even_with_password(
        self, shares: ShareService, record: FileRecord, async_session: AsyncSession
    ):
        share = await shares.create_share(async_session, record.id, "u1", password="pw")
        share.expires_at = datetime.now(UTC) - timedelta(seconds=1)
        await async_session.flush()
        with pytest.raises(ShareUnavailableError):
            await shares.access_share(async_session, share.share_code, "pw")

    async def test_revoked(
        self, shares: ShareService, record: FileRecord, async_session: AsyncSession
    ):
        share = await shares.create_share(async_session, record.id, "u1")
        await shares.revoke_share(async_session, share.id, "u1")
        assert share.is_active is False
        with pytest.raises(ShareUnavailableError):
            await shares.resolve_share(async_session, share.share_code)

    async def test_password(
        self, shares: ShareService, record: FileRecord, async_session: AsyncSession
    ):
        share = await shares.create_share(async_session, record.id, "u1", password="pw")
        with pytest.raises(SharePasswordError):
            await shares.access_share(async_session, share.share_code)
        with pytest.raises(SharePasswordError):
            await shares.access_share(async_session, share.share_code, "wrong")
        redeemed, _ = await shares.access_share(async_session, share.share_code, "pw")
        assert redeemed.access_count == 1

    async def test_unavailable_before_password(
        self, shares: ShareService, record: FileRecord, async_session: AsyncSession
    ):
        share = await shares.create_share(async_session, record.id, "u1", password="pw")
        await shares.revoke_share(async_session, share.id, "u1")
        with pytest.raises(ShareUnavailableError):
            await shares.resolve_share(async_session, share.share_code, "wrong")

    async def test_deleted_file(
        self,
        shares: ShareService,
        files: FileService,
        record: FileRecord,
        async_session: AsyncSession,
    ):
        share = await shares.create_share(async_session, record.id, "u1")
        await files.delete_file(async_session, record.id, "u1")
        with pytest.raises(NotFoundError):
            await shares.access_share(async_session, share.share_code)


# ---------------------------------------------------------------------------
# update / revoke / delete
# ---------------------------------------------------------------------------


class TestManage:
    async def test_update_fields(
        self, shares: ShareService, record: FileRecord, async_session: AsyncSession
    ):
        share = await shares.create_share(async_session, record.id, "u1")
        updated = await shares.update_share(
            async_session,
            share.id,
            "u1",
            expiry_days=3,
            max_access_count=5,
            can_edit=True,
            description="for review",
        )
        assert updated.expires_at is not None
        assert updated.max_access_count == 5
        assert updated.can_edit is True
        assert updated.can_download is True
        assert updated.description == "for review"

    async def test_update_clears(
        self, shares: ShareService, record: FileRecord, async_session: AsyncSession
    ):
        share = await shares.create_share(
            async_session, record.id, "u1", expiry_days=1, max_access_count=2, password="pw"
        )
        updated = await shares.update_share(
            async_session, share.id, "u1", expiry_days=0, max_access_count=0, password=""
        )
        assert updated.expires_at is None
        assert updated.max_access_count is None
        assert not updated.has_password
        await shares.resolve_share(async_session, share.share_code)

    async def test_update_reactivates(
        self, shares: ShareService, record: FileRecord, async_session: AsyncSession
    ):
        share = await shares.create_share(async_session, record.id, "u1")
        await shares.revoke_share(async_session, share.id, "u1")
        await shares.update_share(async_session, share.id, "u1", is_active=True)
        await shares.resolve_share(async_session, share.share_code)

    async def test_update_not_creator(
        self, shares: ShareService, record: FileRecord, async_session: AsyncSession
    ):
        share = await shares.create_share(async_session, record.id, "u1")
        with pytest.raises(ForbiddenError):
            await shares.update_share(async_session, share.id, "u2", can_edit=True)

    async def test_update_missing(self, shares: ShareService, async_session: AsyncSession):
        with pytest.raises(NotFoundError):
            await shares.update_share(async_session, "nope", "u1", can_edit=True)

    async def test_delete(
        self, shares: ShareService, record: FileRecord, async_session: AsyncSession
    ):
        share = await shares.create_share(async_session, record.id, "u1")
        code = share.share_code
        await shares.delete_share(async_session, share.id, "u1")
        with pytest.raises(NotFoundError):
            await shares.resolve_share(async_session, code)

    async def test_revoke_not_creator(
        self, shares: ShareService, record: FileRecord, async_session: AsyncSession
    ):
        share = await shares.create_share(async_session, record.id, "u1")
        with pytest.raises(ForbiddenError):
            await shares.revoke_share(async_session, share.id, "u2")


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


class TestQueries:
    async def test_list_user_shares(
        self, shares: ShareService, record: FileRecord, async_session: AsyncSession
    ):
        for _ in range(3):
            await shares.create_share(async_session, record.id, "u1")
        page = await shares.list_user_shares(async_session, "u1", page_size=2)
        assert page.total == 3
        assert len(page.items) == 2
        assert (await shares.list_user_shares(async_session, "u2")).total == 0

    async def test_list_file_shares(
        self, shares: ShareService, record: FileRecord, async_session: AsyncSession
    ):
        await shares.create_share(async_session, record.id, "u1")
        await shares.create_share(async_session, record.id, "u1", share_type="public")
        listed = await shares.list_file_shares(async_session, record.id, "u1")
        assert len(listed) == 2
        with pytest.raises(ForbiddenError):
            await shares.list_file_shares(async_session, record.id, "u2")

    async def test_share_stats(
        self, shares: ShareService, record: FileRecord, async_session: AsyncSession
    ):
        capped = await shares.create_share(async_session, record.id, "u1", max_access_count=1)
        await shares.access_share(async_session, capped.share_code)
        expired = await shares.create_share(async_session, record.id, "u1")
        expired.expires_at = datetime.now(UTC) - timedelta(days=1)
        live = await shares.create_share(async_session, record.id, "u1")
        await shares.access_share(async_session, live.share_code)
        await shares.access_share(async_session, live.share_code)

        stats = await shares.share_stats(async_session, "u1")
        assert stats.total_shares == 3
        assert stats.active_shares == 1
        assert stats.expired_shares == 1
        assert stats.total_access == 3
