"""
Bulk loader: encoded rows to one atomic store insert.

Serializes a transaction's EncodedRows to CSV and hands the payload to the
columnar store as a single load. There is no per-row error
handling: a bad row fails the whole transaction.

Invariants:
    - One load call per transaction, never split
    - An empty row list is a successful no-op and does not reach the store
"""

from __future__ import annotations

import csv
import io
import logging
import time
from dataclasses import dataclass
from typing import Sequence

from ..errors import LoadError
from ..store.base import ColumnarStore
from .encoder import EncodedRow

logger = logging.getLogger(__name__)


def serialize_rows(rows: Sequence[EncodedRow]) -> str:
    """Render rows as CSV with standard quoting and \\n line endings."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    for row in rows:
        writer.writerow(row.to_csv_row())
    return buffer.getvalue()


@dataclass
class LoadResult:
    version: int
    rows: int
    duration_ms: float = 0.0
    skipped: bool = False


class EventLoader:
    """Loads encoded event rows into the event table.

    Example:
        >>> loader = EventLoader(store, table="event_v7")
        >>> await loader.load(version, rows)
    """

    def __init__(self, store: ColumnarStore, table: str = "event_v7") -> None:
        self.store = store
        self.table = table

    async def load(self, version: int, rows: Sequence[EncodedRow]) -> LoadResult:
        """Load all rows of one transaction.

        Raises:
            LoadError: If the store rejects the batch
        """
        if not rows:
            logger.debug("No events to load", extra={"version": version})
            return LoadResult(version=version, rows=0, skipped=True)

        payload = serialize_rows(rows)
        start = time.monotonic()
        try:
            await self.store.bulk_load(self.table, payload)
        except LoadError as e:
            if e.version is None:
                e.version = version
            raise

        duration_ms = (time.monotonic() - start) * 1000
        logger.debug(
            "Loaded events",
            extra={"version": version, "rows": len(rows), "duration_ms": round(duration_ms, 2)},
        )
        return LoadResult(version=version, rows=len(rows), duration_ms=duration_ms)
