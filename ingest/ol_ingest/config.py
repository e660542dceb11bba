"""
Configuration management for the ingestion service.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Production deployments MUST set explicit values for NODE_URL and CLICKHOUSE_URL
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Deprecate settings by logging warnings but continuing to support them
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import TypeVar

from .chain.base import TransactionKind
from .pipeline.classifier import DispositionPolicy
from .scheduler.scheduler import ScanMode

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Enum)


class QueueBackend(Enum):
    """Supported job queue backends."""

    SQLITE = "sqlite"
    MEMORY = "memory"


class StoreBackend(Enum):
    """Supported columnar store backends."""

    CLICKHOUSE = "clickhouse"
    MEMORY = "memory"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def _env_enum(enum_cls: type[E], name: str, default: str) -> E:
    value = os.getenv(name, default).lower()
    try:
        return enum_cls(value)
    except ValueError:
        choices = ", ".join(member.value for member in enum_cls)
        raise ValueError(f"Invalid {name} '{value}'. Must be one of: {choices}")


@dataclass(frozen=True)
class ChainConfig:
    """Full node connection.

    Attributes:
        node_url: REST API base URL, including the /v1 prefix
        timeout_seconds: Per-request timeout
        max_connections: Connection pool size
    """

    node_url: str = "http://localhost:8080/v1"
    timeout_seconds: float = 10.0
    max_connections: int = 10

    @classmethod
    def from_env(cls) -> ChainConfig:
        """Load configuration from environment variables."""
        return cls(
            node_url=os.getenv("NODE_URL", "http://localhost:8080/v1"),
            timeout_seconds=float(os.getenv("NODE_TIMEOUT_SECONDS", "10")),
            max_connections=int(os.getenv("NODE_MAX_CONNECTIONS", "10")),
        )


@dataclass(frozen=True)
class ClickHouseConfig:
    """ClickHouse HTTP interface configuration.

    Attributes:
        url: HTTP interface URL
        database: Database holding the event table
        username: ClickHouse user
        password: ClickHouse password (optional)
        event_table: Destination table for events
        dedup: Create the table with a dedup key on the event's natural key
        timeout_seconds: Per-request timeout
    """

    url: str = "http://localhost:8123"
    database: str = "default"
    username: str = "default"
    password: str | None = None
    event_table: str = "event_v7"
    dedup: bool = True
    timeout_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> ClickHouseConfig:
        """Load configuration from environment variables."""
        return cls(
            url=os.getenv("CLICKHOUSE_URL", "http://localhost:8123"),
            database=os.getenv("CLICKHOUSE_DATABASE", "default"),
            username=os.getenv("CLICKHOUSE_USERNAME", "default"),
            password=os.getenv("CLICKHOUSE_PASSWORD"),
            event_table=os.getenv("CLICKHOUSE_EVENT_TABLE", "event_v7"),
            dedup=_env_bool("CLICKHOUSE_DEDUP", "true"),
            timeout_seconds=float(os.getenv("CLICKHOUSE_TIMEOUT_SECONDS", "30")),
        )


@dataclass(frozen=True)
class QueueConfig:
    """Job queue configuration.

    Attributes:
        backend: Queue backend
        name: Queue name
        sqlite_path: Database file for the sqlite backend (also holds the cursor)
        max_attempts: Attempts per job including the first
        backoff_ms: Base retry delay, doubled per attempt
        busy_timeout_ms: SQLite busy timeout
    """

    backend: QueueBackend = QueueBackend.SQLITE
    name: str = "ol-version-v7"
    sqlite_path: str = "/var/lib/ol-ingest/queue.db"
    max_attempts: int = 3
    backoff_ms: int = 1000
    busy_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> QueueConfig:
        """Load configuration from environment variables."""
        return cls(
            backend=_env_enum(QueueBackend, "QUEUE_BACKEND", "sqlite"),
            name=os.getenv("QUEUE_NAME", "ol-version-v7"),
            sqlite_path=os.getenv("QUEUE_SQLITE_PATH", "/var/lib/ol-ingest/queue.db"),
            max_attempts=int(os.getenv("QUEUE_MAX_ATTEMPTS", "3")),
            backoff_ms=int(os.getenv("QUEUE_BACKOFF_MS", "1000")),
            busy_timeout_ms=int(os.getenv("QUEUE_BUSY_TIMEOUT_MS", "5000")),
        )


@dataclass(frozen=True)
class SchedulerConfig:
    """Version scheduler configuration.

    Attributes:
        enabled: Whether the repeat timer runs in this process
        interval_seconds: Seconds between fetchLatestVersion jobs
        scan_mode: cursor (incremental) or full (rescan from 0 every tick)
        batch_size: Version jobs per bulk enqueue
    """

    enabled: bool = True
    interval_seconds: float = 10.0
    scan_mode: ScanMode = ScanMode.CURSOR
    batch_size: int = 1000

    @classmethod
    def from_env(cls) -> SchedulerConfig:
        """Load configuration from environment variables."""
        return cls(
            enabled=_env_bool("SCHEDULER_ENABLED", "true"),
            interval_seconds=float(os.getenv("SCHEDULER_INTERVAL_SECONDS", "10")),
            scan_mode=_env_enum(ScanMode, "SCHEDULER_SCAN_MODE", "cursor"),
            batch_size=int(os.getenv("SCHEDULER_BATCH_SIZE", "1000")),
        )


@dataclass(frozen=True)
class WorkerConfig:
    """Dispatcher configuration.

    Attributes:
        concurrency: Worker coroutines
        job_timeout_seconds: Deadline per job
        poll_interval_ms: Sleep when the queue has nothing ready
    """

    concurrency: int = 1
    job_timeout_seconds: float = 60.0
    poll_interval_ms: int = 500

    @classmethod
    def from_env(cls) -> WorkerConfig:
        """Load configuration from environment variables."""
        return cls(
            concurrency=int(os.getenv("WORKER_CONCURRENCY", "1")),
            job_timeout_seconds=float(os.getenv("WORKER_JOB_TIMEOUT_SECONDS", "60")),
            poll_interval_ms=int(os.getenv("WORKER_POLL_INTERVAL_MS", "500")),
        )


_DISPOSITION_ENV = {
    TransactionKind.GENESIS: "DISPOSITION_GENESIS",
    TransactionKind.BLOCK_METADATA: "DISPOSITION_BLOCK_METADATA",
    TransactionKind.STATE_CHECKPOINT: "DISPOSITION_STATE_CHECKPOINT",
    TransactionKind.USER: "DISPOSITION_USER",
    TransactionKind.UNKNOWN: "DISPOSITION_UNKNOWN",
}


@dataclass(frozen=True)
class DispositionConfig:
    """Job outcome per transaction kind (complete, fail or retry).

    Attributes:
        dispositions: Mapping of transaction kind to disposition name
    """

    dispositions: dict[TransactionKind, str] = field(
        default_factory=lambda: {kind: "fail" for kind in TransactionKind}
    )

    @classmethod
    def from_env(cls) -> DispositionConfig:
        """Load configuration from environment variables."""
        return cls(
            dispositions={kind: os.getenv(env, "fail") for kind, env in _DISPOSITION_ENV.items()}
        )

    def to_policy(self) -> DispositionPolicy:
        return DispositionPolicy.from_names(self.dispositions)


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class IngestConfig:
    """Complete service configuration.

    This aggregates all configuration sections and provides validation.

    Attributes:
        store_backend: Which columnar store to use
        chain: Full node configuration
        clickhouse: ClickHouse configuration (if store_backend is CLICKHOUSE)
        queue: Job queue configuration
        scheduler: Scheduler configuration
        worker: Dispatcher configuration
        disposition: Per-kind job outcomes
        observability: Logging configuration
    """

    store_backend: StoreBackend = StoreBackend.CLICKHOUSE
    chain: ChainConfig = field(default_factory=ChainConfig)
    clickhouse: ClickHouseConfig = field(default_factory=ClickHouseConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    worker: WorkerConfig = field(default_factory=WorkerConfig)
    disposition: DispositionConfig = field(default_factory=DispositionConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> IngestConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        config = cls(
            store_backend=_env_enum(StoreBackend, "STORE_BACKEND", "clickhouse"),
            chain=ChainConfig.from_env(),
            clickhouse=ClickHouseConfig.from_env(),
            queue=QueueConfig.from_env(),
            scheduler=SchedulerConfig.from_env(),
            worker=WorkerConfig.from_env(),
            disposition=DispositionConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.chain.node_url:
            raise ValueError("NODE_URL is required")

        if self.store_backend == StoreBackend.CLICKHOUSE:
            if not self.clickhouse.url:
                raise ValueError("CLICKHOUSE_URL is required when STORE_BACKEND=clickhouse")
            if not self.clickhouse.event_table:
                raise ValueError("CLICKHOUSE_EVENT_TABLE is required when STORE_BACKEND=clickhouse")

        if self.queue.backend == QueueBackend.SQLITE and not self.queue.sqlite_path:
            raise ValueError("QUEUE_SQLITE_PATH is required when QUEUE_BACKEND=sqlite")

        if self.queue.max_attempts < 1:
            raise ValueError("QUEUE_MAX_ATTEMPTS must be at least 1")
        if self.worker.concurrency < 1:
            raise ValueError("WORKER_CONCURRENCY must be at least 1")
        if self.scheduler.batch_size < 1:
            raise ValueError("SCHEDULER_BATCH_SIZE must be at least 1")
        if self.scheduler.interval_seconds <= 0:
            raise ValueError("SCHEDULER_INTERVAL_SECONDS must be positive")

        # Raises on unknown disposition names
        self.disposition.to_policy()

        if self.queue.backend == QueueBackend.MEMORY:
            logger.warning("QUEUE_BACKEND=memory: queued jobs are lost on restart")

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Ingest configuration loaded",
            extra={
                "node_url": self.chain.node_url,
                "store_backend": self.store_backend.value,
                "clickhouse_url": self.clickhouse.url
                if self.store_backend == StoreBackend.CLICKHOUSE
                else None,
                "clickhouse_database": self.clickhouse.database,
                "event_table": self.clickhouse.event_table,
                "clickhouse_password_set": self.clickhouse.password is not None,
                "queue_backend": self.queue.backend.value,
                "queue_name": self.queue.name,
                "max_attempts": self.queue.max_attempts,
                "scan_mode": self.scheduler.scan_mode.value,
                "scheduler_interval_seconds": self.scheduler.interval_seconds,
                "worker_concurrency": self.worker.concurrency,
                "dispositions": {k.value: v for k, v in self.disposition.dispositions.items()},
                "log_level": self.observability.log_level,
            },
        )
