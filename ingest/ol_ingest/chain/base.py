"""
Chain client protocol and ledger types.

This module defines the ChainClient protocol every node adapter implements,
plus the typed view of node responses the rest of the pipeline works with:
events and the closed set of transaction variants.

Invariants:
    - Transaction is a closed union, every variant has a TransactionKind
    - Numeric fields arriving as decimal strings are parsed to int here
    - Malformed transactions raise EncodingError, never a bare KeyError
    - Events keep node order

How to change safely:
    - A new chain transaction kind needs a TransactionKind member, a
      dataclass, a branch in parse_transaction and entries in the
      classifier and disposition tables (both check coverage on import)
    - Keep parsing lenient for fields the pipeline does not read
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, Union, runtime_checkable

from ..errors import ChainClientError, EncodingError


class TransactionKind(Enum):
    """Transaction variants known to the ingestion core."""

    GENESIS = "genesis_transaction"
    BLOCK_METADATA = "block_metadata_transaction"
    STATE_CHECKPOINT = "state_checkpoint_transaction"
    USER = "user_transaction"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class EventGuid:
    """Globally unique event handle."""

    creation_number: int
    account_address: str


@dataclass(frozen=True)
class Event:
    """A single on-chain event.

    Attributes:
        type: Fully qualified path, address::module::struct
        guid: Event handle
        sequence_number: Position within the handle's stream
        data: Opaque structured payload
    """

    type: str
    guid: EventGuid
    sequence_number: int
    data: Any

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Event:
        """Create from the node's JSON representation.

        Raises:
            ValueError: If required fields are missing or not numeric
        """
        try:
            guid = data["guid"]
            return cls(
                type=data["type"],
                guid=EventGuid(
                    creation_number=int(guid["creation_number"]),
                    account_address=guid["account_address"],
                ),
                sequence_number=int(data["sequence_number"]),
                data=data.get("data"),
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"Malformed event: {e}") from e


@dataclass(frozen=True)
class GenesisTransaction:
    version: int
    events: tuple[Event, ...] = ()
    kind: TransactionKind = field(default=TransactionKind.GENESIS, init=False)


@dataclass(frozen=True)
class BlockMetadataTransaction:
    version: int
    timestamp: int
    events: tuple[Event, ...] = ()
    epoch: int | None = None
    round: int | None = None
    proposer: str | None = None
    kind: TransactionKind = field(default=TransactionKind.BLOCK_METADATA, init=False)


@dataclass(frozen=True)
class StateCheckpointTransaction:
    version: int
    timestamp: int
    kind: TransactionKind = field(default=TransactionKind.STATE_CHECKPOINT, init=False)


@dataclass(frozen=True)
class UserTransaction:
    version: int
    timestamp: int
    sender: str
    events: tuple[Event, ...] = ()
    kind: TransactionKind = field(default=TransactionKind.USER, init=False)


@dataclass(frozen=True)
class UnknownTransaction:
    """Any transaction type the node reports that this core does not know."""

    version: int
    type: str
    kind: TransactionKind = field(default=TransactionKind.UNKNOWN, init=False)


Transaction = Union[
    GenesisTransaction,
    BlockMetadataTransaction,
    StateCheckpointTransaction,
    UserTransaction,
    UnknownTransaction,
]


def transaction_type_name(transaction: Transaction) -> str:
    """Return the node's type tag for a transaction."""
    if isinstance(transaction, UnknownTransaction):
        return transaction.type
    return transaction.kind.value


def _events(data: dict[str, Any]) -> tuple[Event, ...]:
    return tuple(Event.from_dict(e) for e in data.get("events") or [])


def _optional_int(value: Any) -> int | None:
    return int(value) if value is not None else None


def parse_transaction(data: dict[str, Any], version_hint: int | None = None) -> Transaction:
    """Map a node transaction object onto the Transaction union.

    Every parse failure is a terminal EncodingError carrying the version.

    Args:
        data: Transaction JSON as returned by /transactions
        version_hint: Version requested, reported when data has none

    Returns:
        The matching variant, UnknownTransaction for unrecognized types

    Raises:
        EncodingError: If the object or one of its events is malformed
    """
    if not isinstance(data, dict):
        raise EncodingError(
            f"Malformed transaction: expected an object, got {type(data).__name__}",
            version=version_hint,
        )

    tx_type = data.get("type")
    if not tx_type or "version" not in data:
        raise EncodingError(
            f"Malformed transaction: missing type or version in {sorted(data)}",
            version=version_hint,
        )

    try:
        version = int(data["version"])
    except (TypeError, ValueError) as e:
        raise EncodingError(f"Malformed transaction version: {e}", version=version_hint) from e

    try:
        return _parse_variant(tx_type, version, data)
    except (KeyError, TypeError, ValueError) as e:
        raise EncodingError(f"Malformed {tx_type} at {version}: {e}", version=version) from e


def _parse_variant(tx_type: str, version: int, data: dict[str, Any]) -> Transaction:
    if tx_type == TransactionKind.GENESIS.value:
        return GenesisTransaction(version=version, events=_events(data))

    if tx_type == TransactionKind.BLOCK_METADATA.value:
        return BlockMetadataTransaction(
            version=version,
            timestamp=int(data["timestamp"]),
            events=_events(data),
            epoch=_optional_int(data.get("epoch")),
            round=_optional_int(data.get("round")),
            proposer=data.get("proposer"),
        )

    if tx_type == TransactionKind.STATE_CHECKPOINT.value:
        return StateCheckpointTransaction(version=version, timestamp=int(data["timestamp"]))

    if tx_type == TransactionKind.USER.value:
        return UserTransaction(
            version=version,
            timestamp=int(data["timestamp"]),
            sender=data.get("sender", ""),
            events=_events(data),
        )

    return UnknownTransaction(version=version, type=tx_type)


@dataclass(frozen=True)
class LedgerInfo:
    """Subset of the node's ledger info response."""

    chain_id: int
    epoch: int
    ledger_version: int
    ledger_timestamp: int

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LedgerInfo:
        try:
            return cls(
                chain_id=int(data.get("chain_id", 0)),
                epoch=int(data.get("epoch", 0)),
                ledger_version=int(data["ledger_version"]),
                ledger_timestamp=int(data.get("ledger_timestamp", 0)),
            )
        except (KeyError, ValueError, TypeError) as e:
            raise ChainClientError(f"Malformed ledger info: {e}") from e


@runtime_checkable
class ChainClient(Protocol):
    """Protocol for node adapters.

    Implementations are long-lived and shared; they are constructed once
    and passed to the scheduler and the pipeline.

    Error contract:
        - Transport failures and non-success responses raise ChainClientError
        - An empty result is not an error; callers decide what it means
    """

    @abstractmethod
    async def connect(self) -> None:
        """Open the underlying connection pool."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the underlying connection pool."""
        ...

    @abstractmethod
    async def get_ledger_info(self) -> LedgerInfo:
        """Fetch the node's current ledger info."""
        ...

    @abstractmethod
    async def get_head_version(self) -> int:
        """Return the highest version currently known to the node."""
        ...

    @abstractmethod
    async def get_transactions(self, start: int, limit: int = 1) -> list[Transaction]:
        """Fetch up to limit transactions starting at version start."""
        ...

    @abstractmethod
    async def view(
        self,
        function: str,
        type_arguments: list[str] | None = None,
        arguments: list[Any] | None = None,
    ) -> list[Any]:
        """Call a read-only Move view function (module::function)."""
        ...
