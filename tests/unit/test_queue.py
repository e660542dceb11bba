"""
Unit tests for the job queue backends.

Both backends run the same contract tests. Tests cover:
- Connection lifecycle
- Deduplication by job id
- Reservation order
- Retry, backoff and terminal failure
- Requeue of jobs that exhausted their attempts
- Recovery of active jobs
- Durability of the sqlite backend
"""

import sqlite3
import tempfile
from pathlib import Path

import pytest

from ingest.ol_ingest.config import QueueBackend, QueueConfig
from ingest.ol_ingest.queue import (
    InMemoryJobQueue,
    JobSpec,
    JobState,
    QueueConnectionError,
    RetryPolicy,
    SqliteJobQueue,
    create_job_queue,
    version_job_id,
)


class TestRetryPolicy:
    def test_exponential_delay(self):
        policy = RetryPolicy(max_attempts=3, backoff_ms=1000)

        assert policy.delay_ms(1) == 1000
        assert policy.delay_ms(2) == 2000
        assert policy.delay_ms(3) == 4000

    def test_version_job_id(self):
        assert version_job_id(0) == "__version__0"
        assert version_job_id(123) == "__version__123"


class TestJobQueueContract:
    """Contract tests run against every backend."""

    @pytest.fixture
    def data_dir(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture(params=["memory", "sqlite"])
    async def queue(self, request, data_dir):
        policy = RetryPolicy(max_attempts=3, backoff_ms=1000)
        if request.param == "memory":
            q = InMemoryJobQueue(retry_policy=policy)
        else:
            q = SqliteJobQueue(str(Path(data_dir) / "queue.db"), retry_policy=policy)
        await q.connect()
        yield q
        await q.close()

    @pytest.mark.asyncio
    async def test_requires_connection(self):
        queue = InMemoryJobQueue()
        with pytest.raises(QueueConnectionError):
            await queue.enqueue("version", {"version": 1})

    @pytest.mark.asyncio
    async def test_enqueue_and_get(self, queue):
        job = await queue.enqueue("version", {"version": 3}, job_id=version_job_id(3))

        assert job is not None
        assert job.state == JobState.WAITING

        stored = await queue.get_job("__version__3")
        assert stored.name == "version"
        assert stored.payload == {"version": 3}

    @pytest.mark.asyncio
    async def test_duplicate_id_is_noop(self, queue):
        first = await queue.enqueue("version", {"version": 3}, job_id="__version__3")
        second = await queue.enqueue("version", {"version": 99}, job_id="__version__3")

        assert first is not None
        assert second is None
        assert (await queue.get_job("__version__3")).payload == {"version": 3}

    @pytest.mark.asyncio
    async def test_generated_ids_are_unique(self, queue):
        a = await queue.enqueue("fetchLatestVersion")
        b = await queue.enqueue("fetchLatestVersion")

        assert a.id != b.id

    @pytest.mark.asyncio
    async def test_enqueue_bulk_counts_new_jobs(self, queue):
        await queue.enqueue("version", {"version": 1}, job_id=version_job_id(1))

        added = await queue.enqueue_bulk(
            [JobSpec("version", {"version": v}, version_job_id(v)) for v in range(4)]
        )

        assert added == 3
        counts = await queue.counts()
        assert counts[JobState.WAITING] == 4

    @pytest.mark.asyncio
    async def test_reserve_in_enqueue_order(self, queue):
        for v in (5, 2, 9):
            await queue.enqueue("version", {"version": v}, job_id=version_job_id(v))

        reserved = [await queue.reserve() for _ in range(3)]

        assert [j.payload["version"] for j in reserved] == [5, 2, 9]
        assert all(j.state == JobState.ACTIVE for j in reserved)
        assert all(j.attempts_made == 1 for j in reserved)
        assert await queue.reserve() is None

    @pytest.mark.asyncio
    async def test_complete(self, queue):
        await queue.enqueue("version", {"version": 1}, job_id="__version__1")
        job = await queue.reserve()

        await queue.complete(job)

        stored = await queue.get_job("__version__1")
        assert stored.state == JobState.COMPLETED
        assert stored.finished_at_ms is not None
        # Completed jobs are retained, so the id stays deduplicated
        assert await queue.enqueue("version", {"version": 1}, job_id="__version__1") is None

    @pytest.mark.asyncio
    async def test_retryable_failure_is_delayed(self, queue):
        await queue.enqueue("version", {"version": 1}, job_id="__version__1")
        job = await queue.reserve()

        state = await queue.fail(job, "boom", retryable=True)

        assert state == JobState.DELAYED
        stored = await queue.get_job("__version__1")
        assert stored.failed_reason == "boom"
        assert stored.available_at_ms > job.created_at_ms
        # Backoff keeps it out of reach for now
        assert await queue.reserve() is None

    @pytest.mark.asyncio
    async def test_terminal_failure(self, queue):
        await queue.enqueue("version", {"version": 1}, job_id="__version__1")
        job = await queue.reserve()

        state = await queue.fail(job, "unsupported", retryable=False)

        assert state == JobState.FAILED
        assert (await queue.counts())[JobState.FAILED] == 1

    @pytest.mark.asyncio
    async def test_remove_allows_reenqueue(self, queue):
        await queue.enqueue("version", {"version": 1}, job_id="__version__1")

        assert await queue.remove("__version__1")
        assert not await queue.remove("__version__1")
        assert await queue.enqueue("version", {"version": 1}, job_id="__version__1") is not None

    @pytest.mark.asyncio
    async def test_active_jobs_recovered_on_connect(self, queue):
        await queue.enqueue("version", {"version": 1}, job_id="__version__1")
        await queue.reserve()

        await queue.close()
        await queue.connect()

        job = await queue.reserve()
        assert job is not None
        assert job.id == "__version__1"
        assert job.attempts_made == 2


class TestRequeueExhausted:
    """requeue_exhausted() on every backend, with a single-attempt policy."""

    @pytest.fixture
    def data_dir(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture(params=["memory", "sqlite"])
    async def queue(self, request, data_dir):
        policy = RetryPolicy(max_attempts=1)
        if request.param == "memory":
            q = InMemoryJobQueue(retry_policy=policy)
        else:
            q = SqliteJobQueue(str(Path(data_dir) / "queue.db"), retry_policy=policy)
        await q.connect()
        yield q
        await q.close()

    async def _fail(self, queue, job_id, retryable, name="version"):
        await queue.enqueue(name, {}, job_id=job_id)
        job = await queue.reserve()
        assert job.id == job_id
        return await queue.fail(job, "node unavailable", retryable=retryable)

    @pytest.mark.asyncio
    async def test_exhausted_job_is_requeued(self, queue):
        assert await self._fail(queue, "__version__1", retryable=True) == JobState.FAILED
        assert (await queue.get_job("__version__1")).exhausted

        assert await queue.requeue_exhausted() == 1

        job = await queue.reserve()
        assert job.id == "__version__1"
        assert job.attempts_made == 1
        assert not job.exhausted

    @pytest.mark.asyncio
    async def test_terminal_failure_stays_failed(self, queue):
        await self._fail(queue, "__version__1", retryable=False)

        assert await queue.requeue_exhausted() == 0
        assert (await queue.get_job("__version__1")).state == JobState.FAILED
        assert await queue.reserve() is None

    @pytest.mark.asyncio
    async def test_requeue_by_name(self, queue):
        await self._fail(queue, "__version__1", retryable=True)
        await self._fail(queue, "other", retryable=True, name="fetchLatestVersion")

        assert await queue.requeue_exhausted("version") == 1

        counts = await queue.counts()
        assert counts[JobState.WAITING] == 1
        assert counts[JobState.FAILED] == 1

    @pytest.mark.asyncio
    async def test_requeue_is_idempotent(self, queue):
        await self._fail(queue, "__version__1", retryable=True)

        assert await queue.requeue_exhausted() == 1
        assert await queue.requeue_exhausted() == 0


class TestInMemoryRetries:
    """Attempt cap, using the testing helper to skip backoff."""

    @pytest.mark.asyncio
    async def test_attempts_are_capped(self):
        queue = InMemoryJobQueue(retry_policy=RetryPolicy(max_attempts=3, backoff_ms=10))
        await queue.connect()
        await queue.enqueue("version", {"version": 1}, job_id="__version__1")

        states = []
        for _ in range(3):
            queue.make_available()
            job = await queue.reserve()
            states.append(await queue.fail(job, "load failed", retryable=True))

        assert states == [JobState.DELAYED, JobState.DELAYED, JobState.FAILED]
        queue.make_available()
        assert await queue.reserve() is None

    @pytest.mark.asyncio
    async def test_single_attempt_policy(self):
        queue = InMemoryJobQueue(retry_policy=RetryPolicy(max_attempts=1))
        await queue.connect()
        await queue.enqueue("version", {"version": 1}, job_id="__version__1")
        job = await queue.reserve()

        assert await queue.fail(job, "x", retryable=True) == JobState.FAILED


class TestSqliteJobQueue:
    """Durability tests for SqliteJobQueue."""

    @pytest.fixture
    def db_path(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            yield str(Path(tmpdir) / "nested" / "queue.db")

    @pytest.mark.asyncio
    async def test_jobs_survive_new_instance(self, db_path):
        first = SqliteJobQueue(db_path)
        await first.connect()
        await first.enqueue_bulk(
            [JobSpec("version", {"version": v}, version_job_id(v)) for v in range(3)]
        )
        await first.close()

        second = SqliteJobQueue(db_path)
        await second.connect()

        assert second.path.exists()
        assert (await second.counts())[JobState.WAITING] == 3
        assert await second.enqueue("version", {"version": 0}, job_id="__version__0") is None

    @pytest.mark.asyncio
    async def test_queues_share_file_independently(self, db_path):
        a = SqliteJobQueue(db_path, name="a")
        b = SqliteJobQueue(db_path, name="b")
        await a.connect()
        await b.connect()

        await a.enqueue("version", {"version": 1}, job_id="__version__1")
        assert await b.enqueue("version", {"version": 1}, job_id="__version__1") is not None

        assert (await a.counts())[JobState.WAITING] == 1
        assert (await b.counts())[JobState.WAITING] == 1

    @pytest.mark.asyncio
    async def test_attempt_cap_persisted(self, db_path):
        queue = SqliteJobQueue(db_path, retry_policy=RetryPolicy(max_attempts=1))
        await queue.connect()
        await queue.enqueue("version", {"version": 1}, job_id="__version__1")
        job = await queue.reserve()

        assert await queue.fail(job, "x", retryable=True) == JobState.FAILED
        assert (await queue.get_job("__version__1")).max_attempts == 1

    @pytest.mark.asyncio
    async def test_exhausted_flag_persisted(self, db_path):
        queue = SqliteJobQueue(db_path, retry_policy=RetryPolicy(max_attempts=1))
        await queue.connect()
        await queue.enqueue("version", {"version": 1}, job_id="__version__1")
        await queue.fail(await queue.reserve(), "x", retryable=True)

        reopened = SqliteJobQueue(db_path)
        await reopened.connect()

        assert await reopened.requeue_exhausted() == 1

    @pytest.mark.asyncio
    async def test_version_one_file_is_migrated(self, db_path):
        Path(db_path).parent.mkdir(parents=True)
        conn = sqlite3.connect(db_path)
        conn.executescript("""
            CREATE TABLE schema_version (version INTEGER PRIMARY KEY, applied_at INTEGER NOT NULL);
            INSERT INTO schema_version VALUES (1, 0);
            CREATE TABLE jobs (
                queue TEXT NOT NULL, id TEXT NOT NULL, name TEXT NOT NULL,
                payload_json TEXT NOT NULL DEFAULT '{}', state TEXT NOT NULL,
                attempts_made INTEGER NOT NULL DEFAULT 0, max_attempts INTEGER NOT NULL,
                failed_reason TEXT, created_at INTEGER NOT NULL, available_at INTEGER NOT NULL,
                finished_at INTEGER, PRIMARY KEY (queue, id)
            );
            INSERT INTO jobs VALUES ('ol-version-v7', '__version__1', 'version', '{"version": 1}',
                                     'failed', 3, 3, 'old', 0, 0, 0);
        """)
        conn.close()

        queue = SqliteJobQueue(db_path)
        await queue.connect()

        job = await queue.get_job("__version__1")
        assert job.state == JobState.FAILED
        assert not job.exhausted
        assert await queue.requeue_exhausted() == 0


class TestCreateJobQueue:
    def test_memory_backend(self):
        queue = create_job_queue(QueueConfig(backend=QueueBackend.MEMORY, max_attempts=5))

        assert isinstance(queue, InMemoryJobQueue)
        assert queue.retry_policy.max_attempts == 5

    def test_sqlite_backend(self):
        queue = create_job_queue(
            QueueConfig(backend=QueueBackend.SQLITE, sqlite_path="/tmp/q.db", name="x")
        )

        assert isinstance(queue, SqliteJobQueue)
        assert queue.name == "x"
