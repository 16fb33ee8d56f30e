"""Tests for database models: tables, defaults, constraints and state helpers."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import inspect
from sqlalchemy.exc import IntegrityError

from docvault.models import (
    FileShare,
    Folder,
    LifecycleState,
    Role,
    RolePermission,
    UserRole,
    as_utc,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession


# ---------------------------------------------------------------------------
# Table creation
# ---------------------------------------------------------------------------


class TestTableCreation:
    async def test_tables_exist(self, async_engine: AsyncEngine):
        async with async_engine.connect() as conn:
            names = await conn.run_sync(lambda c: inspect(c).get_table_names())
        for table in (
            "folders",
            "files",
            "roles",
            "permissions",
            "role_permissions",
            "user_roles",
            "file_shares",
        ):
            assert table in names


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    def test_folder_defaults(self):
        folder = Folder(name="Docs", path="/Docs", owner_id="u1")
        assert folder.id
        assert folder.state == LifecycleState.ACTIVE.value
        assert not folder.is_deleted
        assert folder.is_root

    def test_mark_deleted_and_active(self):
        folder = Folder(name="Docs", path="/Docs", owner_id="u1")
        folder.mark_deleted("u1")
        assert folder.is_deleted
        assert folder.deleted_by == "u1"
        assert folder.deleted_at is not None
        folder.mark_active()
        assert not folder.is_deleted
        assert folder.deleted_at is None
        assert folder.deleted_by is None

    def test_as_utc(self):
        naive = datetime(2024, 1, 1, 12, 0)
        assert as_utc(naive).tzinfo is UTC
        assert as_utc(None) is None

    @pytest.mark.parametrize("offset_hours", [8, -5])
    def test_as_utc_converts_offsets(self, offset_hours: int):
        local = datetime(2024, 1, 1, 12, 0, tzinfo=timezone(timedelta(hours=offset_hours)))
        converted = as_utc(local)
        assert converted.tzinfo is UTC
        assert converted == local
        assert converted.hour == 12 - offset_hours


# ---------------------------------------------------------------------------
# Constraints
# ---------------------------------------------------------------------------


class TestConstraints:
    async def test_active_sibling_names_unique(self, async_session: AsyncSession):
        async_session.add(Folder(name="Docs", path="/Docs", owner_id="u1"))
        await async_session.flush()
        async_session.add(Folder(name="Docs", path="/Docs", owner_id="u1"))
        with pytest.raises(IntegrityError):
            await async_session.flush()

    async def test_deleted_sibling_does_not_conflict(self, async_session: AsyncSession):
        first = Folder(name="Docs", path="/Docs", owner_id="u1")
        first.mark_deleted("u1")
        async_session.add(first)
        async_session.add(Folder(name="Docs", path="/Docs", owner_id="u1"))
        await async_session.flush()

    async def test_role_code_unique(self, async_session: AsyncSession):
        async_session.add(Role(code="editor", name="Editor"))
        await async_session.flush()
        async_session.add(Role(code="editor", name="Other"))
        with pytest.raises(IntegrityError):
            await async_session.flush()

    async def test_grant_pair_unique(self, async_session: AsyncSession):
        async_session.add(RolePermission(role_id="r", permission_id="p"))
        await async_session.flush()
        async_session.add(RolePermission(role_id="r", permission_id="p"))
        with pytest.raises(IntegrityError):
            await async_session.flush()


# ---------------------------------------------------------------------------
# State helpers
# ---------------------------------------------------------------------------


class TestStateHelpers:
    def test_user_role_effective(self):
        now = datetime.now(UTC)
        assert UserRole(user_id="u", role_id="r").is_effective(now)
        expired = UserRole(user_id="u", role_id="r", expires_at=now - timedelta(seconds=1))
        assert expired.is_expired(now)
        assert not expired.is_effective(now)
        inactive = UserRole(user_id="u", role_id="r", is_active=False)
        assert not inactive.is_effective(now)

    def test_system_role_not_deletable(self):
        assert not Role(code="admin", name="Admin", is_system=True).can_be_deleted()
        assert Role(code="x", name="X").can_be_deleted()

    def test_share_validity(self):
        now = datetime.now(UTC)
        share = FileShare(file_id="f", created_by="u1", share_code="C")
        assert share.is_valid(now)
        assert not share.has_password

        share.max_access_count = 2
        share.access_count = 2
        assert share.is_access_limit_reached()
        assert not share.is_valid(now)

        share.max_access_count = None
        share.expires_at = now - timedelta(minutes=1)
        assert share.is_expired(now)
        assert not share.is_valid(now)

        share.expires_at = None
        share.is_active = False
        assert not share.is_valid(now)
