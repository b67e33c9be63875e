"""SQLite-backed durable job queue.

Each job is one row.  Leasing sets ``state = 'leased'`` and pushes
``visible_at`` forward by the visibility timeout; a lease that is never
settled simply expires and the job is delivered again.  Jobs that finish
are deleted; dead-lettered jobs stay with ``state = 'dead'`` until an
operator requeues them.

A partial unique index on ``dedup_key`` over live (non-dead) rows makes
``enqueue`` idempotent for keyed jobs such as ``index:{document_id}``.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite
import structlog

from docintel.interfaces.job_queue import IJobQueue
from docintel.models.jobs import DeadLetter, Job, JobStage, QueuedJob, parse_job

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/docintel.db")

_CREATE_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS jobs (
    id           TEXT    PRIMARY KEY,
    stage        TEXT    NOT NULL,
    payload      TEXT    NOT NULL,
    dedup_key    TEXT,
    state        TEXT    NOT NULL DEFAULT 'pending',
    attempt      INTEGER NOT NULL DEFAULT 0,
    visible_at   REAL    NOT NULL,
    enqueued_at  TEXT    NOT NULL,
    last_error   TEXT,
    failed_at    TEXT
);
"""

_CREATE_INDICES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_jobs_visible ON jobs(state, stage, visible_at);",
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_jobs_dedup ON jobs(dedup_key) "
    "WHERE dedup_key IS NOT NULL AND state != 'dead';",
]

_INSERT_SQL = """\
INSERT OR IGNORE INTO jobs (id, stage, payload, dedup_key, state, attempt, visible_at, enqueued_at)
VALUES (?, ?, ?, ?, 'pending', 0, ?, ?);
"""


def _now_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


class SQLiteJobQueue(IJobQueue):
    """At-least-once job queue persisted in SQLite."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    async def initialize(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute("PRAGMA journal_mode=WAL;")
            await db.execute(_CREATE_TABLE_SQL)
            for idx_sql in _CREATE_INDICES_SQL:
                await db.execute(idx_sql)
            await db.commit()
        logger.info("job_queue_initialized", path=str(self._db_path))

    # ------------------------------------------------------------------
    # Producing
    # ------------------------------------------------------------------

    async def enqueue(
        self,
        job: Job,
        dedup_key: str | None = None,
        delay: float = 0.0,
    ) -> str | None:
        ids = await self._insert([(job, dedup_key)], delay)
        return ids[0]

    async def enqueue_many(self, jobs: Iterable[tuple[Job, str | None]]) -> list[str | None]:
        return await self._insert(list(jobs), 0.0)

    async def _insert(self, jobs: list[tuple[Job, str | None]], delay: float) -> list[str | None]:
        if not jobs:
            return []
        visible_at = time.time() + delay
        enqueued_at = _now_iso()
        ids: list[str | None] = []
        async with aiosqlite.connect(str(self._db_path), timeout=30) as db:
            for job, dedup_key in jobs:
                job_id = str(uuid.uuid4())
                cursor = await db.execute(
                    _INSERT_SQL,
                    (job_id, job.stage, job.model_dump_json(), dedup_key, visible_at, enqueued_at),
                )
                if cursor.rowcount == 1:
                    ids.append(job_id)
                else:
                    logger.debug("job_deduplicated", stage=job.stage, dedup_key=dedup_key)
                    ids.append(None)
            await db.commit()
        logger.debug("jobs_enqueued", count=sum(1 for i in ids if i), requested=len(jobs))
        return ids

    # ------------------------------------------------------------------
    # Consuming
    # ------------------------------------------------------------------

    async def dequeue(
        self,
        stages: Iterable[JobStage],
        visibility_timeout: float,
    ) -> QueuedJob | None:
        stage_values = [JobStage(s).value for s in stages]
        if not stage_values:
            return None
        placeholders = ", ".join("?" for _ in stage_values)
        now = time.time()

        async with aiosqlite.connect(str(self._db_path), timeout=30) as db:
            db.row_factory = aiosqlite.Row
            # IMMEDIATE takes the write lock up front so two workers cannot
            # lease the same row.
            await db.execute("BEGIN IMMEDIATE")
            cursor = await db.execute(
                "SELECT id, payload, attempt, enqueued_at, last_error FROM jobs "
                f"WHERE state IN ('pending', 'leased') AND stage IN ({placeholders}) "
                "AND visible_at <= ? ORDER BY visible_at, enqueued_at LIMIT 1",
                (*stage_values, now),
            )
            row = await cursor.fetchone()
            if row is None:
                await db.commit()
                return None
            attempt = int(row["attempt"]) + 1
            await db.execute(
                "UPDATE jobs SET state = 'leased', attempt = ?, visible_at = ? WHERE id = ?",
                (attempt, now + visibility_timeout, row["id"]),
            )
            await db.commit()

        return QueuedJob(
            job_id=row["id"],
            job=parse_job(row["payload"]),
            attempt=attempt,
            enqueued_at=datetime.fromisoformat(row["enqueued_at"]),
            last_error=row["last_error"],
        )

    async def ack(self, job_id: str) -> None:
        async with aiosqlite.connect(str(self._db_path), timeout=30) as db:
            await db.execute("DELETE FROM jobs WHERE id = ?", (job_id,))
            await db.commit()

    async def retry(self, job_id: str, delay: float, error: str) -> None:
        async with aiosqlite.connect(str(self._db_path), timeout=30) as db:
            await db.execute(
                "UPDATE jobs SET state = 'pending', visible_at = ?, last_error = ? WHERE id = ?",
                (time.time() + delay, error, job_id),
            )
            await db.commit()

    async def dead_letter(self, job_id: str, reason: str) -> None:
        async with aiosqlite.connect(str(self._db_path), timeout=30) as db:
            await db.execute(
                "UPDATE jobs SET state = 'dead', last_error = ?, failed_at = ? WHERE id = ?",
                (reason, _now_iso(), job_id),
            )
            await db.commit()
        logger.warning("job_dead_lettered", job_id=job_id, reason=reason)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def list_dead_letters(self, stage: JobStage | None = None) -> list[DeadLetter]:
        sql = "SELECT id, payload, attempt, last_error, failed_at FROM jobs WHERE state = 'dead'"
        params: tuple[str, ...] = ()
        if stage is not None:
            sql += " AND stage = ?"
            params = (JobStage(stage).value,)
        sql += " ORDER BY failed_at"
        async with aiosqlite.connect(str(self._db_path), timeout=30) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(sql, params)
            rows = await cursor.fetchall()
        return [
            DeadLetter(
                job_id=r["id"],
                job=parse_job(r["payload"]),
                attempt=r["attempt"],
                reason=r["last_error"] or "",
                failed_at=datetime.fromisoformat(r["failed_at"]),
            )
            for r in rows
        ]

    async def requeue_dead_letter(self, job_id: str) -> bool:
        try:
            async with aiosqlite.connect(str(self._db_path), timeout=30) as db:
                cursor = await db.execute(
                    "UPDATE jobs SET state = 'pending', attempt = 0, visible_at = ?, "
                    "failed_at = NULL WHERE id = ? AND state = 'dead'",
                    (time.time(), job_id),
                )
                await db.commit()
                requeued = cursor.rowcount == 1
        except aiosqlite.IntegrityError:
            logger.warning("requeue_skipped_live_duplicate", job_id=job_id)
            return False
        if requeued:
            logger.info("dead_letter_requeued", job_id=job_id)
        return requeued

    async def stats(self) -> dict[str, dict[str, int]]:
        async with aiosqlite.connect(str(self._db_path), timeout=30) as db:
            cursor = await db.execute(
                "SELECT stage, state, COUNT(*) FROM jobs GROUP BY stage, state"
            )
            rows = await cursor.fetchall()
        counts: dict[str, dict[str, int]] = {stage.value: {} for stage in JobStage}
        for stage, state, count in rows:
            counts.setdefault(stage, {})[state] = int(count)
        return counts

    def get_provider_name(self) -> str:
        return "sqlite_queue"
