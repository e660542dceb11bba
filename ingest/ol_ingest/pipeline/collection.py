"""
Columnar event collections and Parquet output.

An EventCollection accumulates encoded events from many transactions as
one list per column and turns them into an Arrow table. It is the batch
counterpart of the loader: the loader ships one transaction's rows to the
store, a collection gathers a range of versions into a single file.

Invariants:
    - Every column has the same length
    - Rows keep push order
    - Addresses are stored as fixed 32-byte binary, decoded from the
      encoder's 64-char hex
    - An empty collection writes no file

How to change safely:
    - Keep EVENT_SCHEMA in step with EncodedRow and EVENT_COLUMNS
    - Readers depend on the column order, append new columns at the end
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

import pyarrow as pa
import pyarrow.parquet as pq

from ..chain.base import Event
from ..store.base import ADDRESS_BYTES
from .encoder import EncodedRow, encode_events

logger = logging.getLogger(__name__)

EVENT_SCHEMA = pa.schema(
    [
        pa.field("version", pa.uint64()),
        pa.field("timestamp", pa.uint64()),
        pa.field("creation_number", pa.uint64()),
        pa.field("account_address", pa.binary(ADDRESS_BYTES)),
        pa.field("sequence_number", pa.uint64()),
        pa.field("module_address", pa.binary(ADDRESS_BYTES)),
        pa.field("module_name", pa.string()),
        pa.field("struct_name", pa.string()),
        pa.field("data", pa.string()),
    ]
)


class EventCollection:
    """Column buffers for encoded events.

    Example:
        >>> collection = EventCollection()
        >>> collection.push_events(version, timestamp, transaction.events)
        >>> collection.to_parquet("/tmp/events.parquet")
    """

    def __init__(self) -> None:
        self.version: list[int] = []
        self.timestamp: list[int] = []
        self.creation_number: list[int] = []
        self.account_address: list[bytes] = []
        self.sequence_number: list[int] = []
        self.module_address: list[bytes] = []
        self.module_name: list[str] = []
        self.struct_name: list[str] = []
        self.data: list[str] = []

    def __len__(self) -> int:
        return len(self.version)

    def push(self, rows: Iterable[EncodedRow]) -> int:
        """Append encoded rows. Returns the number appended."""
        added = 0
        for row in rows:
            self.version.append(row.version)
            self.timestamp.append(row.timestamp)
            self.creation_number.append(row.creation_number)
            self.account_address.append(bytes.fromhex(row.account_address))
            self.sequence_number.append(row.sequence_number)
            self.module_address.append(bytes.fromhex(row.module_address))
            self.module_name.append(row.module_name)
            self.struct_name.append(row.struct_name)
            self.data.append(row.data)
            added += 1
        return added

    def push_events(self, version: int, timestamp: int, events: Iterable[Event]) -> int:
        """Encode a transaction's events and append them.

        Raises:
            EncodingError: If any event cannot be encoded; nothing is appended
        """
        return self.push(encode_events(version, timestamp, events))

    def to_arrow_table(self) -> pa.Table:
        arrays = {
            "version": self.version,
            "timestamp": self.timestamp,
            "creation_number": self.creation_number,
            "account_address": self.account_address,
            "sequence_number": self.sequence_number,
            "module_address": self.module_address,
            "module_name": self.module_name,
            "struct_name": self.struct_name,
            "data": self.data,
        }
        return pa.Table.from_pydict(arrays, schema=EVENT_SCHEMA)

    def to_parquet(self, path: str | Path, compression: str = "snappy") -> bool:
        """Write the collection to a Parquet file.

        Returns:
            False if the collection is empty and no file was written
        """
        if not self.version:
            return False

        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        pq.write_table(self.to_arrow_table(), str(path), compression=compression)
        logger.info("Wrote event collection", extra={"path": str(path), "rows": len(self)})
        return True
