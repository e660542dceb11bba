"""
Job dispatcher for version ingestion.

The dispatcher pulls jobs from the queue and routes them by name:

    fetchLatestVersion -> VersionScheduler.tick()
    version            -> IngestPipeline.ingest_version(payload["version"])
    anything else      -> InvalidJobNameError (terminal)

It is also the single boundary where errors become job outcomes. An
IngestError carries its own retryable flag; any other exception is logged
with its traceback and retried within the job's attempt cap. Nothing
raised by a job ends the worker loop.

Invariants:
    - Each job runs under job_timeout_seconds
    - A job is settled (complete or fail) exactly once per reservation
    - Completed fetchLatestVersion jobs are removed, not retained
    - Workers share no mutable state besides counters

How to change safely:
    - New job names need a branch in dispatch() and a producer
    - Test outcome mapping with the in-memory queue before deploying
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from ..errors import IngestError, InvalidJobNameError, JobTimeoutError, LoadError
from ..pipeline.ingest import IngestPipeline, IngestResult
from ..queue.base import Job, JobQueue, JobState
from ..scheduler.scheduler import FETCH_LATEST_VERSION_JOB, VERSION_JOB, VersionScheduler

logger = logging.getLogger(__name__)


@dataclass
class JobOutcome:
    """How a job ended.

    Attributes:
        job: The job as reserved
        state: Queue state after settling (COMPLETED, DELAYED or FAILED)
        result: Handler result on success
        error: Error on failure
    """

    job: Job
    state: JobState
    result: Any = None
    error: IngestError | None = None

    @property
    def success(self) -> bool:
        return self.state == JobState.COMPLETED


class JobDispatcher:
    """Consumes queued jobs and runs them through the pipeline.

    Thread safety:
        Runs `concurrency` worker coroutines on one event loop. Jobs for
        distinct versions are independent, so workers need no locking.

    Example:
        >>> dispatcher = JobDispatcher(queue, pipeline, scheduler)
        >>> await dispatcher.start()  # Runs until stopped
    """

    def __init__(
        self,
        queue: JobQueue,
        pipeline: IngestPipeline,
        scheduler: VersionScheduler,
        concurrency: int = 1,
        job_timeout_seconds: float = 60.0,
        poll_interval_ms: int = 500,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be positive")

        self.queue = queue
        self.pipeline = pipeline
        self.scheduler = scheduler
        self.concurrency = concurrency
        self.job_timeout_seconds = job_timeout_seconds
        self.poll_interval_ms = poll_interval_ms

        self._running = False
        self._processed_count = 0
        self._failed_count = 0
        self._retried_count = 0

    async def dispatch(self, job: Job) -> Any:
        """Route a job to its handler by name."""
        if job.name == VERSION_JOB:
            return await self._process_version(job)
        if job.name == FETCH_LATEST_VERSION_JOB:
            return await self.scheduler.tick()
        raise InvalidJobNameError(job.name)

    async def _process_version(self, job: Job) -> IngestResult:
        try:
            version = int(job.payload["version"])
        except (KeyError, TypeError, ValueError) as e:
            raise IngestError(f"Invalid version payload {job.payload!r}: {e}") from e

        logger.debug("Processing version", extra={"version": version, "job_id": job.id})
        return await self.pipeline.ingest_version(version)

    async def process_job(self, job: Job) -> JobOutcome:
        """Run one reserved job and settle it on the queue."""
        try:
            result = await asyncio.wait_for(self.dispatch(job), timeout=self.job_timeout_seconds)
        except asyncio.TimeoutError:
            error: IngestError = JobTimeoutError(
                f"Job exceeded {self.job_timeout_seconds}s",
                version=job.payload.get("version"),
            )
        except IngestError as e:
            error = e
        except Exception as e:
            logger.error(f"Unexpected error in job {job.id}: {e}", exc_info=True)
            error = IngestError(f"{type(e).__name__}: {e}", version=job.payload.get("version"))
            error.retryable = True
        else:
            if job.name == FETCH_LATEST_VERSION_JOB:
                # Tick ids are unique per tick, nothing deduplicates against them
                await self.queue.remove(job.id)
            else:
                await self.queue.complete(job)
            self._processed_count += 1
            return JobOutcome(job=job, state=JobState.COMPLETED, result=result)

        state = await self.queue.fail(job, str(error), error.retryable)
        self._log_failure(job, error, state)
        return JobOutcome(job=job, state=state, error=error)

    def _log_failure(self, job: Job, error: IngestError, state: JobState) -> None:
        extra = {
            "job_id": job.id,
            "job_name": job.name,
            "version": error.version,
            "code": error.code,
            "attempt": job.attempts_made,
            "max_attempts": job.max_attempts,
            "error": error.message,
        }

        if state == JobState.DELAYED:
            self._retried_count += 1
            logger.info("Job failed, will retry", extra=extra)
            return

        self._failed_count += 1
        if isinstance(error, LoadError) and error.retryable:
            logger.error(
                "Load failing persistently, check the event table schema",
                extra={**extra, "alert": True},
            )
        elif isinstance(error, InvalidJobNameError):
            logger.error("Invalid job name", extra=extra)
        else:
            logger.warning("Job failed", extra=extra)

    async def run_once(self) -> JobOutcome | None:
        """Reserve and process a single job, if one is available."""
        job = await self.queue.reserve()
        if job is None:
            return None
        return await self.process_job(job)

    async def drain(self, max_jobs: int | None = None) -> list[JobOutcome]:
        """Process available jobs until the queue has none ready."""
        outcomes: list[JobOutcome] = []
        while max_jobs is None or len(outcomes) < max_jobs:
            outcome = await self.run_once()
            if outcome is None:
                break
            outcomes.append(outcome)
        return outcomes

    async def _worker(self, worker_id: int) -> None:
        while self._running:
            try:
                outcome = await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Worker {worker_id} queue error: {e}", exc_info=True)
                outcome = None

            if outcome is None:
                await asyncio.sleep(self.poll_interval_ms / 1000)

    async def start(self) -> None:
        """Start the worker loops. Runs until stop() is called."""
        if self._running:
            logger.warning("Dispatcher already running")
            return

        self._running = True
        logger.info("Starting dispatcher", extra={"concurrency": self.concurrency})

        try:
            await asyncio.gather(*(self._worker(i) for i in range(self.concurrency)))
        except asyncio.CancelledError:
            logger.info("Dispatcher cancelled")
        finally:
            self._running = False

    async def stop(self) -> None:
        self._running = False
        logger.info("Stopping dispatcher")

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "processed_count": self._processed_count,
            "failed_count": self._failed_count,
            "retried_count": self._retried_count,
        }
