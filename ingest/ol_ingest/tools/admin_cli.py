"""
Admin CLI tool for the ingestion service.

Usage:
    ol-ingest-admin init-schema
    ol-ingest-admin enqueue --from 0 --to 1000
    ol-ingest-admin counts
    ol-ingest-admin ingest 42
    ol-ingest-admin export --from 0 --to 1000 --output events.parquet

Invariants:
    - Reads the same environment variables as the service
    - Non-zero exit code on any failure
    - enqueue never duplicates jobs that are already retained

How to change safely:
    - Add new commands, don't modify existing ones
    - Keep output format stable for scripts
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import dataclass
from typing import Any

from ..chain import ChainClient, HttpChainClient
from ..config import IngestConfig
from ..errors import IngestError
from ..pipeline import EventCollection, EventLoader, IngestPipeline, IngestResult, classify
from ..queue import JobQueue, JobSpec, create_job_queue, version_job_id
from ..scheduler import VERSION_JOB
from ..store import ColumnarStore, create_columnar_store

logger = logging.getLogger(__name__)


@dataclass
class ExportResult:
    rows: int
    missing_versions: int
    written: bool


class AdminCLI:
    """Operator commands against the configured backends.

    Backends are built from configuration unless injected, and each
    command connects what it needs and closes it again.

    Example:
        >>> cli = AdminCLI(IngestConfig.from_env())
        >>> await cli.enqueue_range(0, 1000)
        1001
    """

    def __init__(
        self,
        config: IngestConfig,
        chain: ChainClient | None = None,
        store: ColumnarStore | None = None,
        queue: JobQueue | None = None,
    ) -> None:
        self.config = config
        self.chain: ChainClient = chain or HttpChainClient(config.chain)
        self.store: ColumnarStore = store or create_columnar_store(config)
        self.queue: JobQueue = queue or create_job_queue(config.queue)

    async def init_schema(self) -> str:
        table = self.config.clickhouse.event_table
        await self.store.connect()
        try:
            await self.store.ensure_schema(table, dedup=self.config.clickhouse.dedup)
        finally:
            await self.store.close()
        return table

    async def enqueue_range(self, start: int, end: int) -> int:
        """Queue version jobs for [start, end]; returns how many were new."""
        if start < 0 or end < start:
            raise ValueError(f"Invalid version range {start}..{end}")

        batch_size = self.config.scheduler.batch_size
        added = 0
        await self.queue.connect()
        try:
            for batch_start in range(start, end + 1, batch_size):
                batch_end = min(batch_start + batch_size, end + 1)
                added += await self.queue.enqueue_bulk(
                    [
                        JobSpec(VERSION_JOB, {"version": v}, version_job_id(v))
                        for v in range(batch_start, batch_end)
                    ]
                )
        finally:
            await self.queue.close()
        return added

    async def counts(self) -> dict[str, int]:
        await self.queue.connect()
        try:
            counts = await self.queue.counts()
        finally:
            await self.queue.close()
        return {state.value: count for state, count in counts.items()}

    async def ingest(self, version: int) -> IngestResult:
        """Run one version end to end without touching the queue.

        Raises:
            IngestError: With the same outcome a worker would record
        """
        pipeline = IngestPipeline(
            chain=self.chain,
            loader=EventLoader(self.store, table=self.config.clickhouse.event_table),
            policy=self.config.disposition.to_policy(),
        )
        await self.chain.connect()
        await self.store.connect()
        try:
            return await pipeline.ingest_version(version)
        finally:
            await self.chain.close()
            await self.store.close()

    async def export_range(self, start: int, end: int, output: str) -> ExportResult:
        """Write the events of versions [start, end] to a Parquet file.

        Versions the node has no transaction for are counted and skipped.

        Raises:
            ValueError: On an invalid range
            IngestError: If a transaction cannot be fetched or encoded
        """
        if start < 0 or end < start:
            raise ValueError(f"Invalid version range {start}..{end}")

        collection = EventCollection()
        missing = 0
        await self.chain.connect()
        try:
            for version in range(start, end + 1):
                transactions = await self.chain.get_transactions(start=version, limit=1)
                if not transactions:
                    missing += 1
                    continue
                classification = classify(transactions[0])
                if classification.extract:
                    collection.push_events(
                        classification.version,
                        classification.timestamp,
                        classification.events,
                    )
        finally:
            await self.chain.close()

        written = collection.to_parquet(output)
        return ExportResult(rows=len(collection), missing_versions=missing, written=written)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="ol-ingest administration tool")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-schema", help="Create the event table if missing")

    enqueue_parser = subparsers.add_parser("enqueue", help="Queue version jobs for a range")
    enqueue_parser.add_argument(
        "--from", dest="start", type=int, required=True, help="First version (inclusive)"
    )
    enqueue_parser.add_argument(
        "--to", dest="end", type=int, required=True, help="Last version (inclusive)"
    )

    subparsers.add_parser("counts", help="Show job counts per state")

    ingest_parser = subparsers.add_parser("ingest", help="Ingest a single version inline")
    ingest_parser.add_argument("version", type=int, help="Ledger version")

    export_parser = subparsers.add_parser("export", help="Write a version range to Parquet")
    export_parser.add_argument(
        "--from", dest="start", type=int, required=True, help="First version (inclusive)"
    )
    export_parser.add_argument(
        "--to", dest="end", type=int, required=True, help="Last version (inclusive)"
    )
    export_parser.add_argument("--output", required=True, help="Parquet file to write")

    return parser


def run(args: argparse.Namespace, cli: AdminCLI) -> int:
    """Execute a parsed command; returns the process exit code."""
    if args.command == "init-schema":
        table = asyncio.run(cli.init_schema())
        print(f"Event table {table} is ready")
        return 0

    if args.command == "enqueue":
        try:
            added = asyncio.run(cli.enqueue_range(args.start, args.end))
        except ValueError as e:
            print(str(e), file=sys.stderr)
            return 1
        total = args.end - args.start + 1
        print(f"Enqueued {added} of {total} version job(s), {total - added} already queued")
        return 0

    if args.command == "counts":
        counts = asyncio.run(cli.counts())
        print(json.dumps(counts, indent=2, sort_keys=True))
        return 0

    if args.command == "ingest":
        try:
            result = asyncio.run(cli.ingest(args.version))
        except IngestError as e:
            outcome = "retryable" if e.retryable else "terminal"
            print(f"Version {args.version} failed ({outcome}): {e}", file=sys.stderr)
            return 1
        summary: dict[str, Any] = {
            "version": result.version,
            "kind": result.kind,
            "rows_loaded": result.rows_loaded,
        }
        print(json.dumps(summary))
        return 0

    if args.command == "export":
        try:
            exported = asyncio.run(cli.export_range(args.start, args.end, args.output))
        except (ValueError, IngestError) as e:
            print(f"Export failed: {e}", file=sys.stderr)
            return 1
        if not exported.written:
            print(f"No events in versions {args.start}..{args.end}, nothing written")
        else:
            print(f"Exported {exported.rows} event(s) to {args.output}")
        if exported.missing_versions:
            print(f"{exported.missing_versions} version(s) not found on the node", file=sys.stderr)
        return 0

    print(f"Unknown command: {args.command}", file=sys.stderr)
    return 2


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for the admin tool."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    try:
        config = IngestConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    sys.exit(run(args, AdminCLI(config)))


if __name__ == "__main__":
    main()
