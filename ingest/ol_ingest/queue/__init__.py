"""
Durable job queue for version ingestion.

This module provides a pluggable queue interface supporting:
- SQLite (durable, single host)
- In-memory (for testing)

Invariants:
    - Job ids deduplicate: at most one retained job per id
    - Delivery is at-least-once, handlers must tolerate redelivery
    - Failed attempts are retried only for retryable errors, up to max_attempts
"""

from .base import (
    Job,
    JobQueue,
    JobSpec,
    JobState,
    QueueConnectionError,
    QueueError,
    RetryPolicy,
    create_job_queue,
    version_job_id,
)
from .memory import InMemoryJobQueue
from .sqlite import SqliteJobQueue

__all__ = [
    # Protocol and types
    "JobQueue",
    "Job",
    "JobSpec",
    "JobState",
    "RetryPolicy",
    "QueueError",
    "QueueConnectionError",
    "version_job_id",
    # Factory
    "create_job_queue",
    # Implementations
    "SqliteJobQueue",
    "InMemoryJobQueue",
]
