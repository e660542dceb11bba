"""
Event encoder: chain events to load-ready rows.

A pure transform from (version, timestamp, events) to EncodedRow tuples
in the exact column order of the event table. Address-like values are
normalized here so the loader can rely on fixed-width hex.

Invariants:
    - Output order and length equal input order and length
    - account_address and module_address are 64 upper-case hex characters
    - data is compact JSON text, keys in payload order

How to change safely:
    - Any new column must be added to EVENT_COLUMNS in store/base.py too
    - Never drop events silently; raise EncodingError instead
"""

from __future__ import annotations

import json
import string
from dataclasses import dataclass
from typing import Any, Iterable

from ..chain.base import Event
from ..errors import EncodingError
from ..store.base import ADDRESS_HEX_LENGTH

_HEX_DIGITS = frozenset(string.hexdigits)


@dataclass(frozen=True)
class EventTypePath:
    """Decomposed address::module::struct path.

    module_address is prefix-stripped and upper-cased but not padded.
    """

    module_address: str
    module_name: str
    struct_name: str


@dataclass(frozen=True)
class EncodedRow:
    """One event flattened onto the event table columns."""

    version: int
    timestamp: int
    creation_number: int
    account_address: str
    sequence_number: int
    module_address: str
    module_name: str
    struct_name: str
    data: str

    def to_csv_row(self) -> list[Any]:
        return [
            self.version,
            self.timestamp,
            self.creation_number,
            self.account_address,
            self.sequence_number,
            self.module_address,
            self.module_name,
            self.struct_name,
            self.data,
        ]


def strip_hex_prefix(value: str) -> str:
    if value[:2] in ("0x", "0X"):
        return value[2:]
    return value


def normalize_hex(value: str, version: int | None = None) -> str:
    """Strip the 0x prefix, upper-case and validate a hex string.

    Raises:
        EncodingError: If the value is empty, not hex or wider than 32 bytes
    """
    digits = strip_hex_prefix(value).upper()
    if not digits or not _HEX_DIGITS.issuperset(digits):
        raise EncodingError(f"Not a hex address: {value!r}", version=version)
    if len(digits) > ADDRESS_HEX_LENGTH:
        raise EncodingError(
            f"Address wider than {ADDRESS_HEX_LENGTH} hex chars: {value!r}",
            version=version,
        )
    return digits


def pad_address(value: str, version: int | None = None) -> str:
    """Normalize an address to exactly 64 upper-case hex characters."""
    return normalize_hex(value, version).rjust(ADDRESS_HEX_LENGTH, "0")


def split_event_type(event_type: str, version: int | None = None) -> EventTypePath:
    """Split address::module::struct; the struct part may itself contain ::.

    Raises:
        EncodingError: If the path has fewer than three non-empty parts
    """
    module_address, sep, rest = event_type.partition("::")
    module_name, sep2, struct_name = rest.partition("::")
    if not (sep and sep2 and module_address and module_name and struct_name):
        raise EncodingError(f"Malformed event type: {event_type!r}", version=version)

    return EventTypePath(
        module_address=normalize_hex(module_address, version),
        module_name=module_name,
        struct_name=struct_name,
    )


def encode_data(data: Any, version: int | None = None) -> str:
    try:
        return json.dumps(data, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise EncodingError(f"Event data is not JSON serializable: {e}", version=version) from e


def encode_event(version: int, timestamp: int, event: Event) -> EncodedRow:
    path = split_event_type(event.type, version)
    return EncodedRow(
        version=version,
        timestamp=timestamp,
        creation_number=event.guid.creation_number,
        account_address=pad_address(event.guid.account_address, version),
        sequence_number=event.sequence_number,
        module_address=path.module_address.rjust(ADDRESS_HEX_LENGTH, "0"),
        module_name=path.module_name,
        struct_name=path.struct_name,
        data=encode_data(event.data, version),
    )


def encode_events(version: int, timestamp: int, events: Iterable[Event]) -> list[EncodedRow]:
    """Encode a transaction's events in order.

    Raises:
        EncodingError: On the first event that cannot be encoded; no
            partial result is returned
    """
    return [encode_event(version, timestamp, event) for event in events]
