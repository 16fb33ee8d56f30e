"""MemoryBlobStore: dict-backed store for tests and embedding."""

from __future__ import annotations

from docvault.exceptions import BlobNotFoundError


class MemoryBlobStore:
    """Keeps bytes and metadata in process memory."""

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}
        self._metadata: dict[str, dict[str, str]] = {}

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)

    async def metadata(self, key: str) -> dict[str, str]:
        if key not in self._data:
            raise BlobNotFoundError(f"Blob not found: {key}")
        return dict(self._metadata.get(key, {}))

    async def put(self, key: str, data: bytes, metadata: dict[str, str] | None = None) -> None:
        self._data[key] = bytes(data)
        self._metadata[key] = dict(metadata or {})

    async def get(self, key: str) -> bytes:
        try:
            return self._data[key]
        except KeyError:
            raise BlobNotFoundError(f"Blob not found: {key}") from None

    async def delete(self, key: str) -> None:
        if key not in self._data:
            raise BlobNotFoundError(f"Blob not found: {key}")
        del self._data[key]
        self._metadata.pop(key, None)
