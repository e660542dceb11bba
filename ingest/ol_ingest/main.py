"""
Ingestion service - Main entry point.

This module starts the ingestion service with all components:
- Chain client (full node REST API)
- Columnar store (ClickHouse event table)
- Job queue (durable version jobs)
- Scheduler loop (head version -> version jobs)
- Dispatcher loop (version jobs -> event table)

Usage:
    python -m ingest.ol_ingest.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - The event table exists before the first job is dispatched
    - Graceful shutdown lets in-flight jobs settle or be recovered on restart
    - Scheduler and dispatcher share one queue instance

How to change safely:
    - Add new components with enable/disable flags
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

import json_log_formatter

from .chain import ChainClient, HttpChainClient
from .config import IngestConfig, QueueBackend
from .pipeline import EventLoader, IngestPipeline
from .queue import JobQueue, create_job_queue
from .scheduler import CursorStore, InMemoryCursorStore, SqliteCursorStore, VersionScheduler
from .store import ColumnarStore, create_columnar_store
from .worker import JobDispatcher

logger = logging.getLogger(__name__)


def setup_logging(config: IngestConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Service configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def create_cursor_store(config: IngestConfig) -> CursorStore:
    """The cursor lives next to the queue so both survive restarts together."""
    if config.queue.backend == QueueBackend.SQLITE:
        return SqliteCursorStore(
            path=config.queue.sqlite_path,
            busy_timeout_ms=config.queue.busy_timeout_ms,
        )
    return InMemoryCursorStore()


class IngestService:
    """Ingestion service orchestrator.

    Manages the lifecycle of all service components:
    - Chain client, columnar store and job queue connections
    - Event table schema
    - Background loops (scheduler, dispatcher)

    Attributes:
        config: Service configuration
        chain: Chain client instance
        store: Columnar store instance
        queue: Job queue instance
        scheduler: Version scheduler
        dispatcher: Job dispatcher

    Example:
        >>> service = IngestService()
        >>> await service.start()
        >>> # Service is running
        >>> await service.stop()
    """

    def __init__(
        self,
        config: IngestConfig | None = None,
        chain: ChainClient | None = None,
        store: ColumnarStore | None = None,
        queue: JobQueue | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            config: Optional configuration (loaded from env if not provided)
            chain: Optional chain client (built from config if not provided)
            store: Optional columnar store (built from config if not provided)
            queue: Optional job queue (built from config if not provided)
        """
        self.config = config or IngestConfig.from_env()
        self.chain: ChainClient = chain or HttpChainClient(self.config.chain)
        self.store: ColumnarStore = store or create_columnar_store(self.config)
        self.queue: JobQueue = queue or create_job_queue(self.config.queue)

        self.scheduler = VersionScheduler(
            chain=self.chain,
            queue=self.queue,
            cursor_store=create_cursor_store(self.config),
            scan_mode=self.config.scheduler.scan_mode,
            interval_seconds=self.config.scheduler.interval_seconds,
            batch_size=self.config.scheduler.batch_size,
            cursor_name=self.config.queue.name,
        )
        self.pipeline = IngestPipeline(
            chain=self.chain,
            loader=EventLoader(self.store, table=self.config.clickhouse.event_table),
            policy=self.config.disposition.to_policy(),
        )
        self.dispatcher = JobDispatcher(
            queue=self.queue,
            pipeline=self.pipeline,
            scheduler=self.scheduler,
            concurrency=self.config.worker.concurrency,
            job_timeout_seconds=self.config.worker.job_timeout_seconds,
            poll_interval_ms=self.config.worker.poll_interval_ms,
        )

        self._running = False
        self._shutdown_event = asyncio.Event()
        self._tasks: list[asyncio.Task] = []

    async def connect(self) -> None:
        """Connect all backends and make sure the event table exists."""
        await self.queue.connect()
        logger.info("Job queue connected")

        await self.store.connect()
        await self.store.ensure_schema(
            self.config.clickhouse.event_table,
            dedup=self.config.clickhouse.dedup,
        )

        await self.chain.connect()

    async def start(self) -> None:
        """Start the service and all components."""
        if self._running:
            logger.warning("Service already running")
            return

        logger.info("Starting ingestion service")
        self.config.log_config()

        try:
            await self.connect()

            if self.config.scheduler.enabled:
                self._tasks.append(asyncio.create_task(self.scheduler.start()))
            else:
                logger.info("Scheduler disabled, consuming existing jobs only")

            self._tasks.append(asyncio.create_task(self.dispatcher.start()))

            self._running = True
            logger.info("Ingestion service started successfully")

            # Wait for shutdown signal
            await self._shutdown_event.wait()

        except Exception as e:
            logger.error(f"Service startup failed: {e}", exc_info=True)
            await self._close_backends()
            raise

    async def stop(self) -> None:
        """Stop the service gracefully."""
        if not self._running:
            return

        logger.info("Stopping ingestion service")

        await self.scheduler.stop()
        await self.dispatcher.stop()

        for task in self._tasks:
            task.cancel()

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        await self._close_backends()

        self._running = False
        logger.info(
            "Ingestion service stopped",
            extra={"dispatcher": self.dispatcher.stats, "scheduler": self.scheduler.stats},
        )

    async def _close_backends(self) -> None:
        await self.chain.close()
        await self.store.close()
        await self.queue.close()

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def main() -> None:
    """Main entry point."""
    # Load configuration
    try:
        config = IngestConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    service = IngestService(config)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        service.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        loop.run_until_complete(service.start())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(service.stop())
        loop.close()


if __name__ == "__main__":
    main()
