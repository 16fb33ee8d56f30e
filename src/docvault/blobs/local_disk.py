"""LocalDiskBlobStore: blobs as files under a root directory."""

from __future__ import annotations

import asyncio
import contextlib
import json
import os
import tempfile
from pathlib import Path

from docvault.exceptions import BlobNotFoundError, BlobStoreError

METADATA_SUFFIX = ".meta.json"


class LocalDiskBlobStore:
    """Stores each blob as a file under ``root_dir``, metadata in a sidecar.

    Security: ``_resolve_key()`` keeps every key inside ``root_dir``,
    rejecting absolute keys, ``..`` segments and symlinked components.
    """

    def __init__(self, root_dir: Path | str) -> None:
        self.root_dir = Path(root_dir).resolve()

        if not self.root_dir.exists():
            raise FileNotFoundError(f"Blob directory does not exist: {self.root_dir}")
        if not self.root_dir.is_dir():
            raise NotADirectoryError(f"Blob path is not a directory: {self.root_dir}")

    # =========================================================================
    # Key Resolution & Security
    # =========================================================================

    def _resolve_key(self, key: str) -> Path:
        rel = key.replace("\\", "/").strip()
        if not rel or rel.startswith("/") or "\x00" in rel:
            raise BlobStoreError(f"Invalid blob key: {key!r}")
        parts = rel.split("/")
        if any(part in ("", ".", "..") for part in parts):
            raise BlobStoreError(f"Invalid blob key: {key!r}")
        if parts[-1].endswith(METADATA_SUFFIX):
            raise BlobStoreError(f"Invalid blob key: {key!r}")

        current = self.root_dir
        for part in parts:
            current = current / part
            if current.is_symlink():
                raise BlobStoreError(f"Symlinks not allowed in blob key: {key!r}")

        resolved = (self.root_dir / rel).resolve()
        try:
            resolved.relative_to(self.root_dir)
        except ValueError:
            raise BlobStoreError(f"Blob key escapes the store root: {key!r}") from None
        return resolved

    @staticmethod
    def _sidecar(path: Path) -> Path:
        return path.with_name(path.name + METADATA_SUFFIX)

    @staticmethod
    def _atomic_write(target: Path, payload: bytes) -> None:
        fd, tmp_path = tempfile.mkstemp(dir=str(target.parent), suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(payload)
            Path(tmp_path).replace(target)
        except Exception:
            with contextlib.suppress(OSError):
                Path(tmp_path).unlink()
            raise

    # =========================================================================
    # BlobStore
    # =========================================================================

    async def put(self, key: str, data: bytes, metadata: dict[str, str] | None = None) -> None:
        """Write *data* atomically via tempfile + replace, then its metadata."""
        resolved = self._resolve_key(key)
        meta = json.dumps(metadata or {}, sort_keys=True).encode("utf-8")

        def _put() -> None:
            resolved.parent.mkdir(parents=True, exist_ok=True)
            self._atomic_write(resolved, data)
            self._atomic_write(self._sidecar(resolved), meta)

        try:
            await asyncio.to_thread(_put)
        except OSError as e:
            raise BlobStoreError(f"Failed to write blob {key}: {e}") from e

    async def get(self, key: str) -> bytes:
        resolved = self._resolve_key(key)
        try:
            return await asyncio.to_thread(resolved.read_bytes)
        except FileNotFoundError:
            raise BlobNotFoundError(f"Blob not found: {key}") from None
        except OSError as e:
            raise BlobStoreError(f"Failed to read blob {key}: {e}") from e

    async def metadata(self, key: str) -> dict[str, str]:
        resolved = self._resolve_key(key)

        def _read() -> dict[str, str]:
            if not resolved.is_file():
                raise BlobNotFoundError(f"Blob not found: {key}")
            sidecar = self._sidecar(resolved)
            if not sidecar.is_file():
                return {}
            return json.loads(sidecar.read_text("utf-8"))

        try:
            return await asyncio.to_thread(_read)
        except (OSError, ValueError) as e:
            raise BlobStoreError(f"Failed to read metadata for {key}: {e}") from e

    async def delete(self, key: str) -> None:
        resolved = self._resolve_key(key)

        def _delete() -> None:
            resolved.unlink()
            with contextlib.suppress(FileNotFoundError):
                self._sidecar(resolved).unlink()

        try:
            await asyncio.to_thread(_delete)
        except FileNotFoundError:
            raise BlobNotFoundError(f"Blob not found: {key}") from None
        except OSError as e:
            raise BlobStoreError(f"Failed to delete blob {key}: {e}") from e
