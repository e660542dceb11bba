"""
In-memory columnar store for testing.

Parses the same CSV payload the ClickHouse store sends and applies the same
column conversions in Python, including the address reinterpretation, so
tests can assert on stored values without a server.

Invariants:
    - A payload is validated completely before any row is stored
    - With dedup enabled, rows with an already stored DEDUP_KEY are dropped

How to change safely:
    - Keep conversions identical to render_insert_query in clickhouse.py
"""

from __future__ import annotations

import asyncio
import csv
import io
import logging
from typing import Any, Dict, List

from ..errors import LoadError
from .base import (
    ADDRESS_COLUMNS,
    ADDRESS_HEX_LENGTH,
    COLUMN_NAMES,
    DEDUP_KEY,
    EVENT_COLUMNS,
    address_to_uint256,
)

logger = logging.getLogger(__name__)


class InMemoryColumnarStore:
    """In-memory implementation of ColumnarStore for testing.

    Example:
        >>> store = InMemoryColumnarStore()
        >>> await store.connect()
        >>> await store.ensure_schema("event_v7")
        >>> await store.bulk_load("event_v7", payload)
        >>> store.get_rows("event_v7")
    """

    def __init__(self) -> None:
        self._tables: Dict[str, List[Dict[str, Any]]] = {}
        self._dedup: Dict[str, bool] = {}
        self._connected = False
        self._lock = asyncio.Lock()
        self.load_calls = 0

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        self._connected = True

    async def close(self) -> None:
        self._connected = False

    async def ensure_schema(self, table: str, dedup: bool = True) -> None:
        self._tables.setdefault(table, [])
        self._dedup.setdefault(table, dedup)

    def _convert_row(self, line_no: int, values: List[str]) -> Dict[str, Any]:
        if len(values) != len(EVENT_COLUMNS):
            raise LoadError(
                f"Row {line_no}: expected {len(EVENT_COLUMNS)} columns, got {len(values)}"
            )

        row: Dict[str, Any] = {}
        for (name, source, _), value in zip(EVENT_COLUMNS, values):
            try:
                if name in ADDRESS_COLUMNS:
                    if len(value) != ADDRESS_HEX_LENGTH:
                        raise ValueError(f"expected {ADDRESS_HEX_LENGTH} hex chars")
                    row[name] = address_to_uint256(value)
                elif source == "UInt64":
                    number = int(value)
                    if not 0 <= number < 2**64:
                        raise ValueError("out of UInt64 range")
                    row[name] = number
                else:
                    row[name] = value
            except ValueError as e:
                raise LoadError(f"Row {line_no}: cannot parse {name}={value!r}: {e}") from e
        return row

    async def bulk_load(self, table: str, payload: str) -> int:
        if not self._connected:
            raise LoadError("Store is not connected")
        if table not in self._tables:
            raise LoadError(f"Table {table} doesn't exist")

        self.load_calls += 1
        reader = csv.reader(io.StringIO(payload))
        rows = [self._convert_row(i, values) for i, values in enumerate(reader, start=1)]

        async with self._lock:
            stored = self._tables[table]
            if self._dedup[table]:
                seen = {tuple(r[k] for k in DEDUP_KEY) for r in stored}
                for row in rows:
                    key = tuple(row[k] for k in DEDUP_KEY)
                    if key not in seen:
                        seen.add(key)
                        stored.append(row)
            else:
                stored.extend(rows)

        logger.debug("Loaded rows", extra={"table": table, "rows": len(rows)})
        return len(rows)

    # Testing helpers

    def get_rows(self, table: str) -> List[Dict[str, Any]]:
        """All stored rows in insertion order (testing helper)."""
        return [dict(row) for row in self._tables.get(table, [])]

    def row_count(self, table: str) -> int:
        """Number of stored rows (testing helper)."""
        return len(self._tables.get(table, []))

    def column(self, table: str, name: str) -> List[Any]:
        """Values of one column (testing helper)."""
        if name not in COLUMN_NAMES:
            raise KeyError(name)
        return [row[name] for row in self._tables.get(table, [])]
