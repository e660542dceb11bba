"""
Base protocol and types for the durable job queue.

This module defines the JobQueue protocol that all backends implement,
along with jobs, their lifecycle states, the retry policy and queue errors.

Invariants:
    - A job id is unique for as long as the job is retained in any state;
      enqueueing an existing id is a no-op
    - Delivery is at-least-once: a reserved job that is never settled is
      handed out again after a restart
    - A failed attempt is retried only if the error is retryable and the
      job has attempts left
    - A job that ran out of attempts on a retryable error is marked
      exhausted; requeue_exhausted() returns it to waiting with a fresh
      attempt count

How to change safely:
    - Protocol changes require updating all implementations
    - Keep dedup semantics identical across backends, the scheduler relies on it
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from abc import abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..config import QueueConfig

logger = logging.getLogger(__name__)


class QueueError(Exception):
    """Base exception for queue operations."""
    pass


class QueueConnectionError(QueueError):
    """Queue backend is not connected."""
    pass


class QueueSerializationError(QueueError):
    """Failed to serialize/deserialize a job payload."""
    pass


class JobState(Enum):
    """Job lifecycle states."""

    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


def now_ms() -> int:
    return int(time.time() * 1000)


def version_job_id(version: int) -> str:
    """Deterministic job id for a ledger version."""
    return f"__version__{version}"


@dataclass(frozen=True)
class RetryPolicy:
    """Retry behaviour for failed attempts.

    Attributes:
        max_attempts: Total attempts including the first one
        backoff_ms: Base delay; attempt n waits backoff_ms * 2**(n-1)
    """

    max_attempts: int = 3
    backoff_ms: int = 1000

    def delay_ms(self, attempts_made: int) -> int:
        return self.backoff_ms * (2 ** max(attempts_made - 1, 0))


@dataclass(frozen=True)
class JobSpec:
    """A job to be enqueued."""

    name: str
    payload: Dict[str, Any] = field(default_factory=dict)
    job_id: Optional[str] = None


@dataclass
class Job:
    """A unit of scheduled work.

    Attributes:
        id: Unique job id (deterministic for version jobs)
        name: Job kind, e.g. "version" or "fetchLatestVersion"
        payload: Job data
        state: Current lifecycle state
        attempts_made: Attempts started so far
        max_attempts: Attempt cap from the retry policy
        failed_reason: Last failure message
        created_at_ms: Enqueue time
        available_at_ms: Earliest time the job may be reserved
        finished_at_ms: Completion or terminal failure time
        exhausted: Failed on a retryable error after its last attempt
    """

    id: str
    name: str
    payload: Dict[str, Any]
    state: JobState = JobState.WAITING
    attempts_made: int = 0
    max_attempts: int = 3
    failed_reason: Optional[str] = None
    created_at_ms: int = field(default_factory=now_ms)
    available_at_ms: int = 0
    finished_at_ms: Optional[int] = None
    exhausted: bool = False

    @classmethod
    def from_spec(cls, spec: JobSpec, max_attempts: int) -> Job:
        now = now_ms()
        return cls(
            id=spec.job_id or uuid.uuid4().hex,
            name=spec.name,
            payload=dict(spec.payload),
            max_attempts=max_attempts,
            created_at_ms=now,
            available_at_ms=now,
        )

    @property
    def attempts_left(self) -> int:
        return max(self.max_attempts - self.attempts_made, 0)

    def payload_json(self) -> str:
        try:
            return json.dumps(self.payload, separators=(",", ":"))
        except (TypeError, ValueError) as e:
            raise QueueSerializationError(f"Job payload is not JSON serializable: {e}")

    def __str__(self) -> str:
        return f"Job(id={self.id}, name={self.name}, state={self.state.value})"


@runtime_checkable
class JobQueue(Protocol):
    """Protocol for job queue backends.

    Dedup contract:
        - enqueue() with an id already present in any state returns None
          and leaves the existing job untouched

    Delivery contract:
        - reserve() hands out the oldest available job and marks it active
        - complete()/fail() settle an active job
        - Active jobs found on connect() are returned to waiting
        - A terminal failure stays failed; an exhausted one waits for
          requeue_exhausted()
    """

    @abstractmethod
    async def connect(self) -> None:
        """Connect to the backend. Must be called before other operations."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release backend resources."""
        ...

    @abstractmethod
    async def enqueue(
        self,
        name: str,
        payload: Optional[Dict[str, Any]] = None,
        job_id: Optional[str] = None,
    ) -> Optional[Job]:
        """Add a job unless its id already exists.

        Returns:
            The new Job, or None if an existing job has the same id
        """
        ...

    @abstractmethod
    async def enqueue_bulk(self, specs: List[JobSpec]) -> int:
        """Add many jobs in one operation.

        Returns:
            Number of jobs actually added (duplicates are skipped)
        """
        ...

    @abstractmethod
    async def reserve(self) -> Optional[Job]:
        """Take the next available job, or None if there is none."""
        ...

    @abstractmethod
    async def complete(self, job: Job) -> None:
        """Mark an active job completed."""
        ...

    @abstractmethod
    async def fail(self, job: Job, reason: str, retryable: bool) -> JobState:
        """Record a failed attempt.

        Returns:
            DELAYED if the job will be retried, FAILED otherwise
        """
        ...

    @abstractmethod
    async def requeue_exhausted(self, name: Optional[str] = None) -> int:
        """Return exhausted failed jobs to waiting with a fresh attempt count.

        Args:
            name: Only requeue jobs with this name

        Returns:
            Number of jobs requeued
        """
        ...

    @abstractmethod
    async def get_job(self, job_id: str) -> Optional[Job]:
        """Look up a job by id."""
        ...

    @abstractmethod
    async def remove(self, job_id: str) -> bool:
        """Evict a job so its id can be enqueued again."""
        ...

    @abstractmethod
    async def counts(self) -> Dict[JobState, int]:
        """Number of jobs per state."""
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether currently connected to the backend."""
        ...


def create_job_queue(config: "QueueConfig") -> JobQueue:
    """Factory function to create a job queue from configuration.

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import QueueBackend
    from .memory import InMemoryJobQueue
    from .sqlite import SqliteJobQueue

    policy = RetryPolicy(max_attempts=config.max_attempts, backoff_ms=config.backoff_ms)

    if config.backend == QueueBackend.SQLITE:
        return SqliteJobQueue(
            path=config.sqlite_path,
            name=config.name,
            retry_policy=policy,
            busy_timeout_ms=config.busy_timeout_ms,
        )
    elif config.backend == QueueBackend.MEMORY:
        return InMemoryJobQueue(name=config.name, retry_policy=policy)
    else:
        raise ValueError(f"Unsupported queue backend: {config.backend}")
