"""Abstract base class for raw upload storage."""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementation: FilesystemBlobStore (docintel/providers/storage/)
class IBlobStore(ABC):
    """Contract for storing uploaded bytes until extraction."""

    @abstractmethod
    async def put(self, tenant_id: str, key: str, filename: str, data: bytes) -> str:
        """Store *data* and return the path used to fetch it later."""

    @abstractmethod
    async def get(self, path: str) -> bytes:
        """Return stored bytes.

        Raises
        ------
        docintel.utils.errors.BlobNotFoundError
            If nothing is stored at *path*.
        """

    @abstractmethod
    async def delete(self, path: str) -> None:
        """Remove stored bytes; no-op when missing."""
