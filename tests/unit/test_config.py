"""
Unit tests for environment configuration.

Tests cover:
- Defaults
- Parsing of every section
- Validation errors
"""

import logging

import pytest

from ingest.ol_ingest.chain import TransactionKind
from ingest.ol_ingest.config import (
    IngestConfig,
    QueueBackend,
    StoreBackend,
)
from ingest.ol_ingest.pipeline import Disposition
from ingest.ol_ingest.scheduler import ScanMode

ENV_VARS = [
    "NODE_URL",
    "STORE_BACKEND",
    "CLICKHOUSE_URL",
    "CLICKHOUSE_DATABASE",
    "CLICKHOUSE_PASSWORD",
    "CLICKHOUSE_EVENT_TABLE",
    "CLICKHOUSE_DEDUP",
    "QUEUE_BACKEND",
    "QUEUE_SQLITE_PATH",
    "QUEUE_MAX_ATTEMPTS",
    "SCHEDULER_SCAN_MODE",
    "SCHEDULER_INTERVAL_SECONDS",
    "SCHEDULER_BATCH_SIZE",
    "WORKER_CONCURRENCY",
    "DISPOSITION_GENESIS",
    "DISPOSITION_USER",
]


class TestIngestConfig:
    """Tests for IngestConfig.from_env()."""

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        for name in ENV_VARS:
            monkeypatch.delenv(name, raising=False)

    def test_defaults(self):
        config = IngestConfig.from_env()

        assert config.chain.node_url == "http://localhost:8080/v1"
        assert config.store_backend == StoreBackend.CLICKHOUSE
        assert config.clickhouse.event_table == "event_v7"
        assert config.clickhouse.dedup is True
        assert config.queue.backend == QueueBackend.SQLITE
        assert config.queue.name == "ol-version-v7"
        assert config.queue.max_attempts == 3
        assert config.scheduler.scan_mode == ScanMode.CURSOR
        assert config.scheduler.interval_seconds == 10.0
        assert config.worker.concurrency == 1

        policy = config.disposition.to_policy()
        assert all(policy.for_kind(kind) == Disposition.FAIL for kind in TransactionKind)

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("NODE_URL", "http://node:8080/v1")
        monkeypatch.setenv("STORE_BACKEND", "memory")
        monkeypatch.setenv("CLICKHOUSE_DEDUP", "false")
        monkeypatch.setenv("QUEUE_BACKEND", "MEMORY")
        monkeypatch.setenv("QUEUE_MAX_ATTEMPTS", "1")
        monkeypatch.setenv("SCHEDULER_SCAN_MODE", "full")
        monkeypatch.setenv("SCHEDULER_BATCH_SIZE", "50")
        monkeypatch.setenv("WORKER_CONCURRENCY", "4")
        monkeypatch.setenv("DISPOSITION_GENESIS", "complete")
        monkeypatch.setenv("DISPOSITION_USER", "retry")

        config = IngestConfig.from_env()

        assert config.chain.node_url == "http://node:8080/v1"
        assert config.store_backend == StoreBackend.MEMORY
        assert config.clickhouse.dedup is False
        assert config.queue.backend == QueueBackend.MEMORY
        assert config.queue.max_attempts == 1
        assert config.scheduler.scan_mode == ScanMode.FULL
        assert config.scheduler.batch_size == 50
        assert config.worker.concurrency == 4

        policy = config.disposition.to_policy()
        assert policy.for_kind(TransactionKind.GENESIS) == Disposition.COMPLETE
        assert policy.for_kind(TransactionKind.USER) == Disposition.RETRY
        assert policy.for_kind(TransactionKind.BLOCK_METADATA) == Disposition.FAIL

    def test_invalid_backend(self, monkeypatch):
        monkeypatch.setenv("QUEUE_BACKEND", "redis")

        with pytest.raises(ValueError, match="QUEUE_BACKEND"):
            IngestConfig.from_env()

    def test_invalid_scan_mode(self, monkeypatch):
        monkeypatch.setenv("SCHEDULER_SCAN_MODE", "sometimes")

        with pytest.raises(ValueError, match="SCHEDULER_SCAN_MODE"):
            IngestConfig.from_env()

    def test_invalid_disposition(self, monkeypatch):
        monkeypatch.setenv("DISPOSITION_GENESIS", "ignore")

        with pytest.raises(ValueError, match="Invalid disposition"):
            IngestConfig.from_env()

    @pytest.mark.parametrize(
        "name,value,message",
        [
            ("QUEUE_MAX_ATTEMPTS", "0", "QUEUE_MAX_ATTEMPTS"),
            ("WORKER_CONCURRENCY", "0", "WORKER_CONCURRENCY"),
            ("SCHEDULER_BATCH_SIZE", "0", "SCHEDULER_BATCH_SIZE"),
            ("SCHEDULER_INTERVAL_SECONDS", "0", "SCHEDULER_INTERVAL_SECONDS"),
            ("NODE_URL", "", "NODE_URL"),
            ("CLICKHOUSE_URL", "", "CLICKHOUSE_URL"),
        ],
    )
    def test_validation(self, monkeypatch, name, value, message):
        monkeypatch.setenv(name, value)

        with pytest.raises(ValueError, match=message):
            IngestConfig.from_env()

    def test_log_config_redacts_password(self, monkeypatch, caplog):
        monkeypatch.setenv("CLICKHOUSE_PASSWORD", "hunter2")
        config = IngestConfig.from_env()

        with caplog.at_level(logging.INFO, logger="ingest.ol_ingest.config"):
            config.log_config()

        record = caplog.records[-1]
        assert record.clickhouse_password_set is True
        assert "hunter2" not in str(record.__dict__)
