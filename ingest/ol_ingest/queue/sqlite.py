"""
SQLite-backed durable job queue.

Stores jobs in a single SQLite file so the queue survives restarts. The
primary key on the job id gives deduplication for free: enqueueing uses
INSERT OR IGNORE and reports whether a row was written.

Invariants:
    - One row per job id, retained until remove() evicts it
    - Reservation is a single IMMEDIATE transaction (select + mark active)
    - connect() returns jobs left active by a crashed worker to waiting

How to change safely:
    - Schema migrations must be backward compatible
    - Keep every multi-statement write inside one transaction
    - Test with concurrent workers before raising worker concurrency

Table schema:
    jobs:
        - queue TEXT
        - id TEXT
        - name TEXT
        - payload_json TEXT
        - state TEXT
        - attempts_made INTEGER
        - max_attempts INTEGER
        - failed_reason TEXT
        - created_at INTEGER (Unix ms)
        - available_at INTEGER (Unix ms)
        - finished_at INTEGER (Unix ms)
        - exhausted INTEGER (1 if it failed on a retryable error)
        - PRIMARY KEY (queue, id)
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional

from .base import (
    Job,
    JobSpec,
    JobState,
    QueueConnectionError,
    QueueSerializationError,
    RetryPolicy,
    now_ms,
)

logger = logging.getLogger(__name__)


class SqliteJobQueue:
    """Durable JobQueue stored in SQLite.

    Thread safety:
        Each operation opens its own connection. Writers are serialized
        by an asyncio lock within the process and by SQLite locking across
        processes.

    Example:
        >>> queue = SqliteJobQueue("/var/lib/ol-ingest/queue.db")
        >>> await queue.connect()
        >>> await queue.enqueue("version", {"version": 7}, job_id="__version__7")
    """

    SCHEMA_VERSION = 2

    def __init__(
        self,
        path: str,
        name: str = "ol-version-v7",
        retry_policy: RetryPolicy | None = None,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the queue.

        Args:
            path: SQLite database file
            name: Queue name, several queues may share one file
            retry_policy: Retry behaviour for failed attempts
            busy_timeout_ms: SQLite busy timeout
        """
        self.path = Path(path)
        self.name = name
        self.retry_policy = retry_policy or RetryPolicy()
        self.busy_timeout_ms = busy_timeout_ms
        self._connected = False
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._connected

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        self.path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(self.path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            yield conn
        finally:
            conn.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS jobs (
                queue TEXT NOT NULL,
                id TEXT NOT NULL,
                name TEXT NOT NULL,
                payload_json TEXT NOT NULL DEFAULT '{}',
                state TEXT NOT NULL,
                attempts_made INTEGER NOT NULL DEFAULT 0,
                max_attempts INTEGER NOT NULL,
                failed_reason TEXT,
                created_at INTEGER NOT NULL,
                available_at INTEGER NOT NULL,
                finished_at INTEGER,
                exhausted INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY (queue, id)
            );

            CREATE INDEX IF NOT EXISTS idx_jobs_available
                ON jobs(queue, state, available_at, created_at);

            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, strftime('%s', 'now') * 1000);
        """)
        self._migrate(conn)

    def _migrate(self, conn: sqlite3.Connection) -> None:
        columns = {row["name"] for row in conn.execute("PRAGMA table_info(jobs)")}
        if "exhausted" not in columns:
            # Version 1 files predate requeue_exhausted()
            conn.execute("ALTER TABLE jobs ADD COLUMN exhausted INTEGER NOT NULL DEFAULT 0")
        conn.execute(
            "INSERT OR IGNORE INTO schema_version (version, applied_at) VALUES (?, ?)",
            (self.SCHEMA_VERSION, now_ms()),
        )

    async def connect(self) -> None:
        """Create the schema and recover orphaned active jobs."""
        async with self._lock:
            with self._get_connection() as conn:
                self._create_schema(conn)
                cursor = conn.execute(
                    "UPDATE jobs SET state = ? WHERE queue = ? AND state = ?",
                    (JobState.WAITING.value, self.name, JobState.ACTIVE.value),
                )
                recovered = cursor.rowcount

        self._connected = True
        logger.info(
            "SqliteJobQueue connected",
            extra={"queue": self.name, "path": str(self.path), "recovered_jobs": recovered},
        )

    async def close(self) -> None:
        self._connected = False
        logger.debug("SqliteJobQueue closed", extra={"queue": self.name})

    def _check_connected(self) -> None:
        if not self._connected:
            raise QueueConnectionError("Not connected")

    def _row_to_job(self, row: sqlite3.Row) -> Job:
        try:
            payload = json.loads(row["payload_json"])
        except json.JSONDecodeError as e:
            raise QueueSerializationError(f"Corrupt payload for job {row['id']}: {e}")

        return Job(
            id=row["id"],
            name=row["name"],
            payload=payload,
            state=JobState(row["state"]),
            attempts_made=row["attempts_made"],
            max_attempts=row["max_attempts"],
            failed_reason=row["failed_reason"],
            created_at_ms=row["created_at"],
            available_at_ms=row["available_at"],
            finished_at_ms=row["finished_at"],
            exhausted=bool(row["exhausted"]),
        )

    def _insert(self, conn: sqlite3.Connection, job: Job) -> bool:
        cursor = conn.execute(
            """
            INSERT OR IGNORE INTO jobs (queue, id, name, payload_json, state,
                                        attempts_made, max_attempts, created_at, available_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                self.name,
                job.id,
                job.name,
                job.payload_json(),
                job.state.value,
                job.attempts_made,
                job.max_attempts,
                job.created_at_ms,
                job.available_at_ms,
            ),
        )
        return cursor.rowcount == 1

    async def enqueue(
        self,
        name: str,
        payload: Optional[Dict[str, Any]] = None,
        job_id: Optional[str] = None,
    ) -> Optional[Job]:
        self._check_connected()
        job = Job.from_spec(JobSpec(name, payload or {}, job_id), self.retry_policy.max_attempts)

        async with self._lock:
            with self._get_connection() as conn:
                added = self._insert(conn, job)

        if not added:
            return None

        logger.debug("Job enqueued", extra={"queue": self.name, "job_id": job.id, "job_name": name})
        return job

    async def enqueue_bulk(self, specs: List[JobSpec]) -> int:
        self._check_connected()
        jobs = [Job.from_spec(spec, self.retry_policy.max_attempts) for spec in specs]

        async with self._lock:
            with self._get_connection() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    added = sum(1 for job in jobs if self._insert(conn, job))
                    conn.execute("COMMIT")
                except Exception:
                    conn.execute("ROLLBACK")
                    raise
        return added

    async def reserve(self) -> Optional[Job]:
        self._check_connected()
        now = now_ms()

        async with self._lock:
            with self._get_connection() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    row = conn.execute(
                        """
                        SELECT * FROM jobs
                        WHERE queue = ? AND state IN (?, ?) AND available_at <= ?
                        ORDER BY available_at, created_at, rowid
                        LIMIT 1
                        """,
                        (self.name, JobState.WAITING.value, JobState.DELAYED.value, now),
                    ).fetchone()

                    if row is None:
                        conn.execute("COMMIT")
                        return None

                    conn.execute(
                        """
                        UPDATE jobs SET state = ?, attempts_made = attempts_made + 1
                        WHERE queue = ? AND id = ?
                        """,
                        (JobState.ACTIVE.value, self.name, row["id"]),
                    )
                    conn.execute("COMMIT")
                except Exception:
                    conn.execute("ROLLBACK")
                    raise

        job = self._row_to_job(row)
        job.state = JobState.ACTIVE
        job.attempts_made += 1
        return job

    async def complete(self, job: Job) -> None:
        self._check_connected()
        async with self._lock:
            with self._get_connection() as conn:
                conn.execute(
                    "UPDATE jobs SET state = ?, finished_at = ? WHERE queue = ? AND id = ?",
                    (JobState.COMPLETED.value, now_ms(), self.name, job.id),
                )

    async def fail(self, job: Job, reason: str, retryable: bool) -> JobState:
        self._check_connected()
        async with self._lock:
            with self._get_connection() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    row = conn.execute(
                        "SELECT attempts_made, max_attempts FROM jobs WHERE queue = ? AND id = ?",
                        (self.name, job.id),
                    ).fetchone()
                    if row is None:
                        conn.execute("COMMIT")
                        return JobState.FAILED

                    now = now_ms()
                    if retryable and row["attempts_made"] < row["max_attempts"]:
                        state = JobState.DELAYED
                        conn.execute(
                            """
                            UPDATE jobs SET state = ?, failed_reason = ?, available_at = ?
                            WHERE queue = ? AND id = ?
                            """,
                            (
                                state.value,
                                reason,
                                now + self.retry_policy.delay_ms(row["attempts_made"]),
                                self.name,
                                job.id,
                            ),
                        )
                    else:
                        state = JobState.FAILED
                        conn.execute(
                            """
                            UPDATE jobs SET state = ?, failed_reason = ?, finished_at = ?,
                                            exhausted = ?
                            WHERE queue = ? AND id = ?
                            """,
                            (state.value, reason, now, int(retryable), self.name, job.id),
                        )
                    conn.execute("COMMIT")
                except Exception:
                    conn.execute("ROLLBACK")
                    raise
        return state

    async def requeue_exhausted(self, name: Optional[str] = None) -> int:
        self._check_connected()
        query = """
            UPDATE jobs SET state = ?, attempts_made = 0, exhausted = 0,
                            available_at = ?, finished_at = NULL
            WHERE queue = ? AND state = ? AND exhausted = 1
        """
        params: list[Any] = [JobState.WAITING.value, now_ms(), self.name, JobState.FAILED.value]
        if name is not None:
            query += " AND name = ?"
            params.append(name)

        async with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute(query, params)
                requeued = cursor.rowcount

        if requeued:
            logger.info("Requeued exhausted jobs", extra={"queue": self.name, "requeued": requeued})
        return requeued

    async def get_job(self, job_id: str) -> Optional[Job]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM jobs WHERE queue = ? AND id = ?",
                (self.name, job_id),
            ).fetchone()
        return self._row_to_job(row) if row else None

    async def remove(self, job_id: str) -> bool:
        async with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute(
                    "DELETE FROM jobs WHERE queue = ? AND id = ?",
                    (self.name, job_id),
                )
                return cursor.rowcount == 1

    async def counts(self) -> Dict[JobState, int]:
        result = {state: 0 for state in JobState}
        with self._get_connection() as conn:
            for row in conn.execute(
                "SELECT state, COUNT(*) AS n FROM jobs WHERE queue = ? GROUP BY state",
                (self.name,),
            ):
                result[JobState(row["state"])] = row["n"]
        return result
