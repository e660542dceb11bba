"""
Columnar store protocol and the event table layout.

The event table is fed one transaction at a time from a CSV payload whose
columns are declared here. Address columns travel as 64-character hex text
and are stored as UInt256 after byte reversal:

    stored = reinterpretAsUInt256(reverse(unhex(address)))

reinterpretAsUInt256 reads its input little-endian: the first byte of the
reversed string (the last address byte) is the least significant one.
address_to_uint256 and uint256_to_address reproduce that convention so
addresses can be round-tripped in Python.

Invariants:
    - One bulk_load call is one atomic insert: all rows or none
    - EVENT_COLUMNS order matches EncodedRow.to_csv_row()
    - Address hex is exactly ADDRESS_HEX_LENGTH characters

How to change safely:
    - Column changes must be applied to the encoder, both stores and the DDL
    - Never change the byte-reversal convention without migrating stored data
"""

from __future__ import annotations

from abc import abstractmethod
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..config import IngestConfig

ADDRESS_BYTES = 32
ADDRESS_HEX_LENGTH = ADDRESS_BYTES * 2

# (name, type in the CSV payload, type in the table)
EVENT_COLUMNS: tuple[tuple[str, str, str], ...] = (
    ("version", "UInt64", "UInt64"),
    ("timestamp", "UInt64", "UInt64"),
    ("creation_number", "UInt64", "UInt64"),
    ("account_address", "String", "UInt256"),
    ("sequence_number", "UInt64", "UInt64"),
    ("module_address", "String", "UInt256"),
    ("module_name", "String", "String"),
    ("struct_name", "String", "String"),
    ("data", "String", "String"),
)

ADDRESS_COLUMNS = frozenset(name for name, source, target in EVENT_COLUMNS if target == "UInt256")

COLUMN_NAMES = tuple(name for name, _, _ in EVENT_COLUMNS)

# Natural key of an event, used for deduplication
DEDUP_KEY = ("account_address", "creation_number", "sequence_number")


def address_to_uint256(address_hex: str) -> int:
    """Reinterpret a 64-char hex address the way the store does.

    Mirrors reinterpretAsUInt256(reverse(unhex(address))) in the insert
    statement: the first address byte ends up most significant.

    Raises:
        ValueError: If the text is not exactly 32 bytes of hex
    """
    raw = bytes.fromhex(address_hex)
    if len(raw) != ADDRESS_BYTES:
        raise ValueError(f"Address must be {ADDRESS_BYTES} bytes, got {len(raw)}")
    # reverse(), then reinterpretAsUInt256 (little-endian)
    return int.from_bytes(raw[::-1], "little")


def uint256_to_address(value: int) -> str:
    """Recover the upper-case 64-char hex address from a stored integer."""
    return value.to_bytes(ADDRESS_BYTES, "little")[::-1].hex().upper()


@runtime_checkable
class ColumnarStore(Protocol):
    """Protocol for columnar store backends.

    Atomicity contract:
        - bulk_load() inserts every row of the payload or none of them
        - A rejected payload raises LoadError
    """

    @abstractmethod
    async def connect(self) -> None:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    @abstractmethod
    async def ensure_schema(self, table: str, dedup: bool = True) -> None:
        """Create the event table if it does not exist."""
        ...

    @abstractmethod
    async def bulk_load(self, table: str, payload: str) -> int:
        """Load a CSV payload of EVENT_COLUMNS rows into table.

        Returns:
            Number of rows in the payload
        """
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        ...


def create_columnar_store(config: "IngestConfig") -> ColumnarStore:
    """Factory function to create a columnar store from configuration.

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import StoreBackend
    from .clickhouse import ClickHouseStore
    from .memory import InMemoryColumnarStore

    if config.store_backend == StoreBackend.CLICKHOUSE:
        return ClickHouseStore(config.clickhouse)
    elif config.store_backend == StoreBackend.MEMORY:
        return InMemoryColumnarStore()
    else:
        raise ValueError(f"Unsupported store backend: {config.store_backend}")
