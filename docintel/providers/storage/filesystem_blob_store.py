"""Filesystem blob store for raw uploads.

Bytes are written under ``<root>/<tenant>/<key>/<filename>``.  Tenant ids
and filenames are sanitised so a crafted name cannot escape the root.
Blocking file I/O runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import re
from pathlib import Path

import structlog

from docintel.interfaces.blob_store import IBlobStore
from docintel.utils.errors import BlobNotFoundError

logger = structlog.get_logger(logger_name=__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def _safe_component(value: str, fallback: str) -> str:
    cleaned = _UNSAFE_CHARS.sub("_", Path(value).name).strip("._")
    return cleaned or fallback


class FilesystemBlobStore(IBlobStore):
    """Blob store rooted at a local directory."""

    def __init__(self, root: str | Path = "data/blobs") -> None:
        self._root = Path(root).resolve()

    async def put(self, tenant_id: str, key: str, filename: str, data: bytes) -> str:
        target = (
            self._root
            / _safe_component(tenant_id, "tenant")
            / _safe_component(key, "blob")
            / _safe_component(filename, "upload")
        )
        await asyncio.to_thread(self._write, target, data)
        logger.debug("blob_stored", path=str(target), size_bytes=len(data))
        return str(target.relative_to(self._root))

    async def get(self, path: str) -> bytes:
        target = self._resolve(path)
        try:
            return await asyncio.to_thread(target.read_bytes)
        except FileNotFoundError as exc:
            raise BlobNotFoundError(
                message=f"No blob stored at {path}",
                provider_name=self.get_provider_name(),
            ) from exc

    async def delete(self, path: str) -> None:
        target = self._resolve(path)
        await asyncio.to_thread(target.unlink, missing_ok=True)

    def get_provider_name(self) -> str:
        return "filesystem_blobs"

    @staticmethod
    def _write(target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_suffix(target.suffix + ".tmp")
        tmp.write_bytes(data)
        tmp.replace(target)

    def _resolve(self, path: str) -> Path:
        target = (self._root / path).resolve()
        if not target.is_relative_to(self._root):
            raise BlobNotFoundError(
                message=f"Blob path escapes the store root: {path}",
                provider_name=self.get_provider_name(),
            )
        return target
