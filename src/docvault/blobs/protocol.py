"""BlobStore protocol: where file bytes live.

Keys are ``{scope}/{unique-name}`` strings produced by the file service.
Implementations raise ``BlobNotFoundError`` for unknown keys and
``BlobStoreError`` for any other storage failure.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class BlobStore(Protocol):
    """Minimal async byte store keyed by opaque strings."""

    async def put(self, key: str, data: bytes, metadata: dict[str, str] | None = None) -> None:
        """Store *data* under *key*, replacing any previous value."""
        ...

    async def get(self, key: str) -> bytes:
        """Return the bytes stored under *key*."""
        ...

    async def delete(self, key: str) -> None:
        """Remove *key*. Missing keys raise ``BlobNotFoundError``."""
        ...
