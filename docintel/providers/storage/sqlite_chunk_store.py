"""SQLite-backed chunk store.

Chunk records are keyed by ``(document_id, chunk_index)`` and written with
``ON CONFLICT ... DO UPDATE``, so re-embedding a chunk overwrites its row.
Embeddings are stored as JSON arrays.
"""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from docintel.interfaces.chunk_store import IChunkStore
from docintel.models.document import Chunk, ChunkFailure

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/docintel.db")

_CREATE_TABLES_SQL = [
    """\
CREATE TABLE IF NOT EXISTS chunks (
    document_id  TEXT    NOT NULL,
    chunk_index  INTEGER NOT NULL,
    tenant_id    TEXT    NOT NULL,
    text         TEXT    NOT NULL,
    embedding    TEXT    NOT NULL,
    created_at   TEXT    NOT NULL,
    PRIMARY KEY (document_id, chunk_index)
);
""",
    """\
CREATE TABLE IF NOT EXISTS chunk_failures (
    document_id  TEXT    NOT NULL,
    chunk_index  INTEGER NOT NULL,
    reason       TEXT    NOT NULL,
    created_at   TEXT    NOT NULL,
    PRIMARY KEY (document_id, chunk_index)
);
""",
]

_UPSERT_CHUNK_SQL = """\
INSERT INTO chunks (document_id, chunk_index, tenant_id, text, embedding, created_at)
VALUES (?, ?, ?, ?, ?, ?)
ON CONFLICT(document_id, chunk_index)
DO UPDATE SET tenant_id  = excluded.tenant_id,
              text       = excluded.text,
              embedding  = excluded.embedding,
              created_at = excluded.created_at;
"""

_UPSERT_FAILURE_SQL = """\
INSERT INTO chunk_failures (document_id, chunk_index, reason, created_at)
VALUES (?, ?, ?, ?)
ON CONFLICT(document_id, chunk_index)
DO UPDATE SET reason = excluded.reason, created_at = excluded.created_at;
"""


class SQLiteChunkStore(IChunkStore):
    """SQLite-backed chunk and chunk-failure persistence."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    async def initialize(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute("PRAGMA journal_mode=WAL;")
            for sql in _CREATE_TABLES_SQL:
                await db.execute(sql)
            await db.commit()
        logger.info("chunk_store_initialized", path=str(self._db_path))

    async def upsert_chunk(self, chunk: Chunk) -> None:
        async with aiosqlite.connect(str(self._db_path), timeout=30) as db:
            await db.execute(
                _UPSERT_CHUNK_SQL,
                (
                    chunk.document_id,
                    chunk.chunk_index,
                    chunk.tenant_id,
                    chunk.text,
                    json.dumps(chunk.embedding),
                    chunk.created_at.isoformat(),
                ),
            )
            await db.commit()

    async def get_chunks(self, document_id: str) -> list[Chunk]:
        async with aiosqlite.connect(str(self._db_path), timeout=30) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT document_id, chunk_index, tenant_id, text, embedding, created_at "
                "FROM chunks WHERE document_id = ? ORDER BY chunk_index",
                (document_id,),
            )
            rows = await cursor.fetchall()
        return [_chunk_from_row(dict(r)) for r in rows]

    async def count_chunks(self, document_id: str) -> int:
        async with aiosqlite.connect(str(self._db_path), timeout=30) as db:
            cursor = await db.execute(
                "SELECT COUNT(*) FROM chunks WHERE document_id = ?", (document_id,)
            )
            row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def delete_chunks_from(self, document_id: str, first_index: int) -> int:
        async with aiosqlite.connect(str(self._db_path), timeout=30) as db:
            cursor = await db.execute(
                "DELETE FROM chunks WHERE document_id = ? AND chunk_index >= ?",
                (document_id, first_index),
            )
            await db.commit()
            deleted = cursor.rowcount
        if deleted:
            logger.info(
                "stale_chunks_deleted",
                document_id=document_id,
                first_index=first_index,
                deleted_count=deleted,
            )
        return deleted

    async def record_failure(self, failure: ChunkFailure) -> None:
        async with aiosqlite.connect(str(self._db_path), timeout=30) as db:
            await db.execute(
                _UPSERT_FAILURE_SQL,
                (
                    failure.document_id,
                    failure.chunk_index,
                    failure.reason,
                    failure.created_at.isoformat(),
                ),
            )
            await db.commit()
        logger.info(
            "chunk_failure_recorded",
            document_id=failure.document_id,
            chunk_index=failure.chunk_index,
        )

    async def get_failures(self, document_id: str) -> list[ChunkFailure]:
        async with aiosqlite.connect(str(self._db_path), timeout=30) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT document_id, chunk_index, reason, created_at "
                "FROM chunk_failures WHERE document_id = ? ORDER BY chunk_index",
                (document_id,),
            )
            rows = await cursor.fetchall()
        failures = []
        for r in rows:
            row = dict(r)
            row["created_at"] = datetime.fromisoformat(row["created_at"])
            failures.append(ChunkFailure.model_validate(row))
        return failures

    async def clear_failures(self, document_id: str) -> None:
        async with aiosqlite.connect(str(self._db_path), timeout=30) as db:
            await db.execute("DELETE FROM chunk_failures WHERE document_id = ?", (document_id,))
            await db.commit()

    def get_provider_name(self) -> str:
        return "sqlite_chunks"


def _chunk_from_row(row: dict[str, Any]) -> Chunk:
    row["embedding"] = json.loads(row["embedding"])
    row["created_at"] = datetime.fromisoformat(row["created_at"])
    return Chunk.model_validate(row)
