"""
Columnar store backends for ingested events.

This module provides:
- ClickHouse over HTTP (production)
- In-memory (for testing)
- The event table layout and the address reinterpretation helpers
"""

from .base import (
    ADDRESS_HEX_LENGTH,
    COLUMN_NAMES,
    EVENT_COLUMNS,
    ColumnarStore,
    address_to_uint256,
    create_columnar_store,
    uint256_to_address,
)
from .clickhouse import ClickHouseStore, render_create_table, render_insert_query
from .memory import InMemoryColumnarStore

__all__ = [
    "ColumnarStore",
    "ClickHouseStore",
    "InMemoryColumnarStore",
    "create_columnar_store",
    "EVENT_COLUMNS",
    "COLUMN_NAMES",
    "ADDRESS_HEX_LENGTH",
    "address_to_uint256",
    "uint256_to_address",
    "render_insert_query",
    "render_create_table",
]
