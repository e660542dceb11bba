"""
Version discovery and backfill scheduling.

Invariants:
    - Version jobs use deterministic ids, so resubmission is a no-op
    - Every version up to an observed head is either queued or already known
"""

from .cursor import CursorStore, InMemoryCursorStore, SqliteCursorStore
from .scheduler import (
    FETCH_LATEST_VERSION_JOB,
    VERSION_JOB,
    ScanMode,
    ScheduleResult,
    VersionScheduler,
)

__all__ = [
    "VersionScheduler",
    "ScheduleResult",
    "ScanMode",
    "VERSION_JOB",
    "FETCH_LATEST_VERSION_JOB",
    "CursorStore",
    "InMemoryCursorStore",
    "SqliteCursorStore",
]
