"""SQLite-backed document metadata store.

Persists :class:`~docintel.models.document.Document` records with
``aiosqlite``.  ``(tenant_id, checksum)`` carries a UNIQUE constraint, so
two concurrent uploads of the same bytes cannot both create a record.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from docintel.interfaces.document_store import IDocumentStore
from docintel.models.document import Document, DocumentStatus, utcnow
from docintel.utils.errors import DocumentNotFoundError, DuplicateDocumentError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/docintel.db")

_CREATE_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS documents (
    id            TEXT    PRIMARY KEY,
    tenant_id     TEXT    NOT NULL,
    filename      TEXT    NOT NULL,
    mime_type     TEXT    NOT NULL,
    size_bytes    INTEGER NOT NULL,
    checksum      TEXT    NOT NULL,
    status        TEXT    NOT NULL,
    language      TEXT    NOT NULL,
    blob_path     TEXT    NOT NULL,
    chunk_count   INTEGER,
    text_length   INTEGER,
    error_reason  TEXT,
    error_stage   TEXT,
    created_at    TEXT    NOT NULL,
    updated_at    TEXT    NOT NULL,
    UNIQUE(tenant_id, checksum)
);
"""

_CREATE_INDICES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_documents_tenant ON documents(tenant_id, created_at);",
    "CREATE INDEX IF NOT EXISTS idx_documents_tenant_status ON documents(tenant_id, status);",
]

_COLUMNS = (
    "id, tenant_id, filename, mime_type, size_bytes, checksum, status, language, "
    "blob_path, chunk_count, text_length, error_reason, error_stage, created_at, updated_at"
)

_INSERT_SQL = f"INSERT INTO documents ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);"

_UPDATE_SQL = """\
UPDATE documents
SET filename = ?, mime_type = ?, size_bytes = ?, status = ?, language = ?, blob_path = ?,
    chunk_count = ?, text_length = ?, error_reason = ?, error_stage = ?, updated_at = ?
WHERE id = ? AND tenant_id = ?;
"""


class SQLiteDocumentStore(IDocumentStore):
    """SQLite-backed document persistence."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    async def initialize(self) -> None:
        """Create the documents table and indices if they don't exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute("PRAGMA journal_mode=WAL;")
            await db.execute(_CREATE_TABLE_SQL)
            for idx_sql in _CREATE_INDICES_SQL:
                await db.execute(idx_sql)
            await db.commit()
        logger.info("document_store_initialized", path=str(self._db_path))

    async def create(self, document: Document) -> Document:
        try:
            async with aiosqlite.connect(str(self._db_path), timeout=30) as db:
                await db.execute(_INSERT_SQL, _to_row(document))
                await db.commit()
        except aiosqlite.IntegrityError as exc:
            existing = await self.get_by_checksum(document.tenant_id, document.checksum)
            raise DuplicateDocumentError(
                message=f"Tenant {document.tenant_id} already has a document with this checksum",
                provider_name=self.get_provider_name(),
                existing_id=existing.id if existing else None,
            ) from exc
        logger.info(
            "document_created",
            document_id=document.id,
            tenant_id=document.tenant_id,
            filename=document.filename,
        )
        return document

    async def get(self, document_id: str, tenant_id: str) -> Document | None:
        return await self._fetch_one(
            f"SELECT {_COLUMNS} FROM documents WHERE id = ? AND tenant_id = ?",
            (document_id, tenant_id),
        )

    async def get_by_checksum(self, tenant_id: str, checksum: str) -> Document | None:
        return await self._fetch_one(
            f"SELECT {_COLUMNS} FROM documents WHERE tenant_id = ? AND checksum = ?",
            (tenant_id, checksum),
        )

    async def update(self, document: Document) -> Document:
        document = document.model_copy(update={"updated_at": utcnow()})
        async with aiosqlite.connect(str(self._db_path), timeout=30) as db:
            cursor = await db.execute(
                _UPDATE_SQL,
                (
                    document.filename,
                    document.mime_type,
                    document.size_bytes,
                    document.status.value,
                    document.language,
                    document.blob_path,
                    document.chunk_count,
                    document.text_length,
                    document.error_reason,
                    document.error_stage.value if document.error_stage else None,
                    document.updated_at.isoformat(),
                    document.id,
                    document.tenant_id,
                ),
            )
            await db.commit()
            updated = cursor.rowcount
        if updated == 0:
            raise DocumentNotFoundError(
                message=f"Document {document.id} not found for tenant {document.tenant_id}",
                provider_name=self.get_provider_name(),
            )
        logger.debug(
            "document_updated",
            document_id=document.id,
            status=document.status.value,
        )
        return document

    async def query_by_tenant(
        self,
        tenant_id: str,
        status: DocumentStatus | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        sql = f"SELECT {_COLUMNS} FROM documents WHERE tenant_id = ?"
        params: list[Any] = [tenant_id]
        if status is not None:
            sql += " AND status = ?"
            params.append(status.value)
        sql += " ORDER BY created_at DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        async with aiosqlite.connect(str(self._db_path), timeout=30) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(sql, params)
            rows = await cursor.fetchall()
        return [_from_row(dict(r)) for r in rows]

    def get_provider_name(self) -> str:
        return "sqlite_documents"

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _fetch_one(self, sql: str, params: tuple[Any, ...]) -> Document | None:
        async with aiosqlite.connect(str(self._db_path), timeout=30) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(sql, params)
            row = await cursor.fetchone()
        return _from_row(dict(row)) if row else None


def _to_row(document: Document) -> tuple[Any, ...]:
    return (
        document.id,
        document.tenant_id,
        document.filename,
        document.mime_type,
        document.size_bytes,
        document.checksum,
        document.status.value,
        document.language,
        document.blob_path,
        document.chunk_count,
        document.text_length,
        document.error_reason,
        document.error_stage.value if document.error_stage else None,
        document.created_at.isoformat(),
        document.updated_at.isoformat(),
    )


def _from_row(row: dict[str, Any]) -> Document:
    row["created_at"] = datetime.fromisoformat(row["created_at"])
    row["updated_at"] = datetime.fromisoformat(row["updated_at"])
    return Document.model_validate(row)
