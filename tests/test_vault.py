"""Tests for the DocVault facade: transactions, error translation, scenarios."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest

from docvault import (
    ConflictError,
    DocVault,
    ErrorKind,
    LocalDiskBlobStore,
    MemoryBlobStore,
    ShareUnavailableError,
    StorageError,
    ValidationError,
)
from docvault.exceptions import BlobStoreError
from docvault.models import Role

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine


class BrokenReads(MemoryBlobStore):
    async def get(self, key: str) -> bytes:
        raise BlobStoreError(f"cannot read {key} from /srv/blobs")


# ---------------------------------------------------------------------------
# Lifecycle and transactions
# ---------------------------------------------------------------------------


class TestTransactions:
    async def test_create_tables_is_idempotent(self, vault: DocVault):
        await vault.create_tables()
        folder = await vault.create_folder("Docs", "u1")
        assert folder.path == "/Docs"

    async def test_commit_persists(self, vault: DocVault):
        folder = await vault.create_folder("Docs", "u1")
        fetched = await vault.get_folder(folder.id, "u1")
        assert fetched.id == folder.id

    async def test_error_rolls_back(self, vault: DocVault):
        with pytest.raises(ValidationError):
            async with vault.session() as session:
                await vault.folders.create_folder(session, "Docs", "u1")
                raise ValidationError("abort")
        page = await vault.list_root_folders("u1")
        assert page.total == 0

    async def test_integrity_error_becomes_conflict(self, vault: DocVault):
        with pytest.raises(ConflictError) as exc_info:
            async with vault.session() as session:
                session.add(Role(code="dup", name="A"))
                session.add(Role(code="dup", name="B"))
        assert exc_info.value.kind is ErrorKind.CONFLICT
        assert await vault.list_roles() == []

    async def test_domain_errors_pass_through(self, vault: DocVault):
        await vault.create_folder("Docs", "u1")
        with pytest.raises(ConflictError, match="already exists"):
            await vault.create_folder("Docs", "u1")

    async def test_storage_failure_is_opaque(self, async_engine: AsyncEngine, caplog):
        vault = DocVault(async_engine, BrokenReads())
        record = await vault.upload_file(b"data", "a.txt", "u1")
        with pytest.raises(StorageError) as exc_info:
            await vault.download_file(record.id, "u1")
        assert exc_info.value.message == "Storage operation failed"
        assert "/srv/blobs" not in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, BlobStoreError)
        assert "Storage failure" in caplog.text

        fresh = await vault.get_file(record.id, "u1")
        assert fresh.download_count == 0

    async def test_context_manager_closes(self, async_engine: AsyncEngine):
        async with DocVault(async_engine, MemoryBlobStore()) as vault:
            assert vault.dialect == "sqlite"


# ---------------------------------------------------------------------------
# End-to-end scenarios
# ---------------------------------------------------------------------------


class TestScenarios:
    async def test_move_into_own_subfolder(self, vault: DocVault):
        docs = await vault.create_folder("Docs", "1")
        reports = await vault.create_folder("Reports", "1", docs.id)
        with pytest.raises(ValidationError, match="own subfolder"):
            await vault.move_folder(docs.id, "1", reports.id)

        unchanged = await vault.get_folder(docs.id, "1")
        assert unchanged.parent_id is None
        assert unchanged.path == "/Docs"

    async def test_single_use_share(self, vault: DocVault):
        record = await vault.upload_file(b"payload", "f.bin", "1")
        share = await vault.create_share(record.id, "1", max_access_count=1)

        redeemed, file = await vault.access_share(share.share_code)
        assert redeemed.access_count == 1
        assert file.id == record.id

        with pytest.raises(ShareUnavailableError) as exc_info:
            await vault.access_share(share.share_code)
        assert exc_info.value.kind is ErrorKind.GONE

    async def test_expired_role_assignment(self, vault: DocVault):
        role = await vault.create_role("R", "Role R")
        perm = await vault.create_permission("file:delete", "Delete", "file", "delete", "file")
        await vault.assign_permission_to_role(role.id, perm.id, "admin")
        await vault.assign_role_to_user(
            "U", role.id, "admin", expires_at=datetime.now(UTC) - timedelta(seconds=1)
        )
        assert await vault.check_permission("U", "file", "delete") is False

    async def test_bootstrap_then_check(self, vault: DocVault):
        first = await vault.bootstrap()
        assert first.roles_created == 2
        again = await vault.bootstrap()
        assert again.grants_created == 0

        roles = {r.code: r for r in await vault.list_roles()}
        await vault.assign_role_to_user("u1", roles["user"].id, "system")
        assert await vault.check_permission("u1", "folder", "create")
        assert not await vault.check_permission("u1", "role", "delete")

    async def test_file_lifecycle(self, vault: DocVault, blobs: MemoryBlobStore):
        docs = await vault.create_folder("Docs", "u1")
        record = await vault.upload_file(
            b"hello", "hello.txt", "u1", folder_id=docs.id, tags="greeting"
        )
        assert record.storage_key in blobs

        data, downloaded = await vault.download_file(record.id, "u1")
        assert data == b"hello"
        assert downloaded.download_count == 1

        stats = await vault.folder_stats(docs.id, "u1")
        assert stats.file_count == 1
        assert stats.total_size == 5

        with pytest.raises(ConflictError):
            await vault.delete_folder(docs.id, "u1")

        await vault.delete_file(record.id, "u1")
        await vault.delete_folder(docs.id, "u1")
        assert [f.id for f in await vault.list_folder_trash("u1")] == [docs.id]
        assert [f.id for f in await vault.list_file_trash("u1")] == [record.id]

    async def test_rename_cascade_persists(self, vault: DocVault):
        docs = await vault.create_folder("Docs", "u1")
        reports = await vault.create_folder("Reports", "u1", docs.id)
        await vault.update_folder(docs.id, "u1", name="Papers")

        reloaded = await vault.get_folder(reports.id, "u1")
        assert reloaded.path == "/Papers/Reports"

        tree = await vault.build_tree("u1")
        assert tree[0].name == "Papers"
        assert tree[0].children[0].path == "/Papers/Reports"

    async def test_search_and_filtered_listing(self, vault: DocVault):
        docs = await vault.create_folder("Docs", "u1")
        report = await vault.upload_file(
            b"r", "report.pdf", "u1", folder_id=docs.id, tags=["finance", "q3"]
        )
        await vault.upload_file(b"n", "notes.txt", "u1", mime_type="text/plain")

        found = await vault.search_files("u1", "pdf", tags="finance")
        assert [f.id for f in found] == [report.id]

        page = await vault.list_files("u1", folder_id=docs.id, sort_by="original_name")
        assert [f.id for f in page.items] == [report.id]

        stats = await vault.file_stats("u1")
        assert stats.file_types == {"application": 1, "text": 1}

    async def test_password_share_across_sessions(self, vault: DocVault):
        record = await vault.upload_file(b"x", "x.txt", "u1")
        share = await vault.create_share(record.id, "u1", password="open sesame")
        resolved, _ = await vault.resolve_share(share.share_code, "open sesame")
        assert resolved.access_count == 0

        stats = await vault.share_stats("u1")
        assert stats.total_shares == 1
        assert stats.active_shares == 1

    async def test_local_disk_store(self, async_engine: AsyncEngine, tmp_path):
        vault = DocVault(async_engine, LocalDiskBlobStore(tmp_path))
        record = await vault.upload_file(b"on disk", "d.txt", "u1")
        assert (tmp_path / record.storage_key).read_bytes() == b"on disk"
        data, _ = await vault.download_file(record.id, "u1")
        assert data == b"on disk"
