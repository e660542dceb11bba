"""
Version scheduler.

Keeps the queue populated with one "version" job per ledger version up to
the node's head. It runs on a fixed timer: each tick enqueues a
fetchLatestVersion job, and the dispatcher calls back into
fetch_latest_version() to do the actual work.

Two scan modes:
    - FULL: submit every version in [0, head] on every tick and let the
      queue drop the ids it already holds. Simple, linear in head.
    - CURSOR: submit only (cursor, head]; the cursor advances to head once
      every batch was accepted. A missing cursor triggers a full rescan.

Invariants:
    - No job is submitted for a version above the observed head
    - The head version itself is always submitted first
    - The cursor never moves past a range that was not fully queued
    - A failed head lookup skips the tick without enqueueing anything
    - Version jobs that ran out of attempts on a retryable error are
      requeued on every pass

How to change safely:
    - Job ids must stay "__version__{v}", dedup depends on it
    - Keep enqueue batches bounded, each is one queue transaction
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..chain.base import ChainClient
from ..errors import ChainClientError
from ..queue.base import JobQueue, JobSpec, version_job_id
from .cursor import CursorStore, InMemoryCursorStore

logger = logging.getLogger(__name__)

VERSION_JOB = "version"
FETCH_LATEST_VERSION_JOB = "fetchLatestVersion"


class ScanMode(Enum):
    FULL = "full"
    CURSOR = "cursor"


@dataclass
class ScheduleResult:
    """What one fetch_latest_version() run did.

    Attributes:
        head_version: Head observed on the node
        range_start: First version of the submitted range
        submitted: Version jobs offered to the queue
        enqueued: Jobs the queue actually added (the rest were duplicates)
        requeued: Exhausted version jobs returned to waiting
    """

    head_version: int
    range_start: int
    submitted: int
    enqueued: int
    requeued: int = 0


class VersionScheduler:
    """Derives version jobs from the chain head and submits them.

    Example:
        >>> scheduler = VersionScheduler(chain, queue)
        >>> result = await scheduler.fetch_latest_version()
        >>> await scheduler.start()  # repeat timer, runs until stopped
    """

    def __init__(
        self,
        chain: ChainClient,
        queue: JobQueue,
        cursor_store: CursorStore | None = None,
        scan_mode: ScanMode = ScanMode.CURSOR,
        interval_seconds: float = 10.0,
        batch_size: int = 1000,
        cursor_name: str = "ol-version-v7",
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be positive")

        self.chain = chain
        self.queue = queue
        self.cursor_store = cursor_store or InMemoryCursorStore()
        self.scan_mode = scan_mode
        self.interval_seconds = interval_seconds
        self.batch_size = batch_size
        self.cursor_name = cursor_name

        self._running = False
        self._ticks = 0
        self._skipped_ticks = 0
        self._last_head: int | None = None

    async def _range_start(self) -> int:
        if self.scan_mode == ScanMode.FULL:
            return 0

        cursor = await self.cursor_store.get(self.cursor_name)
        if cursor is None:
            logger.info("No scheduling cursor, rescanning from version 0")
            return 0
        return cursor + 1

    async def fetch_latest_version(self) -> ScheduleResult:
        """Submit version jobs up to the current head.

        Raises:
            ChainClientError: If the head cannot be read (nothing submitted)
            QueueError: If the queue rejects a batch (cursor not advanced)
        """
        head = await self.chain.get_head_version()

        enqueued = 0
        if await self.queue.enqueue(VERSION_JOB, {"version": head}, job_id=version_job_id(head)):
            enqueued += 1

        start = await self._range_start()
        submitted = 1
        for batch_start in range(start, head + 1, self.batch_size):
            batch_end = min(batch_start + self.batch_size, head + 1)
            specs = [
                JobSpec(VERSION_JOB, {"version": v}, version_job_id(v))
                for v in range(batch_start, batch_end)
            ]
            enqueued += await self.queue.enqueue_bulk(specs)
            submitted += len(specs)

        if self.scan_mode == ScanMode.CURSOR:
            await self.cursor_store.advance(self.cursor_name, head)

        requeued = await self.queue.requeue_exhausted(VERSION_JOB)

        self._last_head = head
        logger.info(
            "Scheduled versions",
            extra={
                "head_version": head,
                "range_start": start,
                "submitted": submitted,
                "enqueued": enqueued,
                "requeued": requeued,
            },
        )
        return ScheduleResult(
            head_version=head,
            range_start=start,
            submitted=submitted,
            enqueued=enqueued,
            requeued=requeued,
        )

    async def tick(self) -> ScheduleResult | None:
        """Run one scheduling pass; a chain failure skips the tick."""
        self._ticks += 1
        try:
            return await self.fetch_latest_version()
        except ChainClientError as e:
            self._skipped_ticks += 1
            logger.warning("Skipping tick, head version unavailable", extra={"error": str(e)})
            return None

    async def trigger(self) -> None:
        """Enqueue a repeat fetchLatestVersion job for the current tick."""
        tick_ms = int(time.time() * 1000)
        await self.queue.enqueue(
            FETCH_LATEST_VERSION_JOB,
            job_id=f"__{FETCH_LATEST_VERSION_JOB}__{tick_ms}",
        )

    async def start(self) -> None:
        """Start the repeat timer. Runs until stop() is called."""
        if self._running:
            logger.warning("Scheduler already running")
            return

        self._running = True
        logger.info(
            "Starting scheduler",
            extra={"interval_seconds": self.interval_seconds, "scan_mode": self.scan_mode.value},
        )

        try:
            while self._running:
                try:
                    await self.trigger()
                except Exception as e:
                    logger.error(f"Failed to enqueue {FETCH_LATEST_VERSION_JOB}: {e}", exc_info=True)
                await asyncio.sleep(self.interval_seconds)
        except asyncio.CancelledError:
            logger.info("Scheduler cancelled")
        finally:
            self._running = False

    async def stop(self) -> None:
        self._running = False
        logger.info("Stopping scheduler")

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "ticks": self._ticks,
            "skipped_ticks": self._skipped_ticks,
            "last_head": self._last_head,
        }
