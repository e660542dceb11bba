"""
In-memory job queue implementation for testing.

This module provides a simple in-memory queue backend for:
- Unit tests
- Integration tests
- Local development without a queue database

Invariants:
    - All data is lost on process exit
    - Same dedup and retry semantics as the sqlite backend
    - Safe for concurrent use from multiple coroutines

How to change safely:
    - Keep interface compatible with the JobQueue protocol
    - Add testing helpers at the bottom, never in the protocol methods
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional

from .base import (
    Job,
    JobSpec,
    JobState,
    QueueConnectionError,
    RetryPolicy,
    now_ms,
)

logger = logging.getLogger(__name__)


class InMemoryJobQueue:
    """In-memory implementation of JobQueue for testing.

    Jobs are stored in insertion order in a dict keyed by id, so dedup is
    a membership test and reservation order follows enqueue order.

    Example:
        >>> queue = InMemoryJobQueue()
        >>> await queue.connect()
        >>> await queue.enqueue("version", {"version": 3}, job_id="__version__3")
        >>> job = await queue.reserve()
        >>> await queue.complete(job)
    """

    def __init__(
        self,
        name: str = "ol-version-v7",
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self.name = name
        self.retry_policy = retry_policy or RetryPolicy()
        self._jobs: Dict[str, Job] = {}
        self._connected = False
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """Connect and return orphaned active jobs to waiting."""
        async with self._lock:
            for job in self._jobs.values():
                if job.state == JobState.ACTIVE:
                    job.state = JobState.WAITING
        self._connected = True
        logger.debug("InMemoryJobQueue connected", extra={"queue": self.name})

    async def close(self) -> None:
        """Close the queue. Jobs are kept so a reconnect sees them."""
        self._connected = False
        logger.debug("InMemoryJobQueue closed", extra={"queue": self.name})

    def _check_connected(self) -> None:
        if not self._connected:
            raise QueueConnectionError("Not connected")

    async def enqueue(
        self,
        name: str,
        payload: Optional[Dict[str, Any]] = None,
        job_id: Optional[str] = None,
    ) -> Optional[Job]:
        self._check_connected()
        job = Job.from_spec(JobSpec(name, payload or {}, job_id), self.retry_policy.max_attempts)
        job.payload_json()

        async with self._lock:
            if job.id in self._jobs:
                return None
            self._jobs[job.id] = job

        logger.debug("Job enqueued", extra={"queue": self.name, "job_id": job.id, "job_name": name})
        return replace(job)

    async def enqueue_bulk(self, specs: List[JobSpec]) -> int:
        self._check_connected()
        jobs = [Job.from_spec(spec, self.retry_policy.max_attempts) for spec in specs]
        for job in jobs:
            job.payload_json()

        added = 0
        async with self._lock:
            for job in jobs:
                if job.id in self._jobs:
                    continue
                self._jobs[job.id] = job
                added += 1
        return added

    async def reserve(self) -> Optional[Job]:
        self._check_connected()
        now = now_ms()

        async with self._lock:
            candidates = [
                job
                for job in self._jobs.values()
                if job.state in (JobState.WAITING, JobState.DELAYED) and job.available_at_ms <= now
            ]
            if not candidates:
                return None

            job = min(candidates, key=lambda j: (j.available_at_ms, j.created_at_ms))
            job.state = JobState.ACTIVE
            job.attempts_made += 1
            return replace(job)

    async def complete(self, job: Job) -> None:
        self._check_connected()
        async with self._lock:
            stored = self._jobs.get(job.id)
            if stored is None:
                return
            stored.state = JobState.COMPLETED
            stored.finished_at_ms = now_ms()

    async def fail(self, job: Job, reason: str, retryable: bool) -> JobState:
        self._check_connected()
        async with self._lock:
            stored = self._jobs.get(job.id)
            if stored is None:
                return JobState.FAILED

            stored.failed_reason = reason
            if retryable and stored.attempts_made < stored.max_attempts:
                stored.state = JobState.DELAYED
                stored.available_at_ms = now_ms() + self.retry_policy.delay_ms(stored.attempts_made)
            else:
                stored.state = JobState.FAILED
                stored.finished_at_ms = now_ms()
                stored.exhausted = retryable
            return stored.state

    async def requeue_exhausted(self, name: Optional[str] = None) -> int:
        self._check_connected()
        now = now_ms()
        requeued = 0

        async with self._lock:
            for job in self._jobs.values():
                if job.state != JobState.FAILED or not job.exhausted:
                    continue
                if name is not None and job.name != name:
                    continue
                job.state = JobState.WAITING
                job.attempts_made = 0
                job.exhausted = False
                job.available_at_ms = now
                job.finished_at_ms = None
                requeued += 1
        return requeued

    async def get_job(self, job_id: str) -> Optional[Job]:
        job = self._jobs.get(job_id)
        return replace(job) if job else None

    async def remove(self, job_id: str) -> bool:
        async with self._lock:
            return self._jobs.pop(job_id, None) is not None

    async def counts(self) -> Dict[JobState, int]:
        result = {state: 0 for state in JobState}
        for job in self._jobs.values():
            result[job.state] += 1
        return result

    # Testing helpers

    def get_all_jobs(self) -> List[Job]:
        """Get all jobs in enqueue order (testing helper)."""
        return [replace(job) for job in self._jobs.values()]

    def job_ids(self) -> List[str]:
        """Get all job ids in enqueue order (testing helper)."""
        return list(self._jobs)

    def make_available(self) -> None:
        """Clear retry delays so delayed jobs can be reserved now (testing helper)."""
        for job in self._jobs.values():
            if job.state == JobState.DELAYED:
                job.available_at_ms = 0
