"""
Transaction classifier and disposition policy.

Classification decides what is extracted from a transaction (phase one).
The disposition policy decides how the job ends once extraction and load
are done (phase two). Keeping them apart lets a kind have its events loaded
while the job is still reported as unsupported, and lets operators change
that outcome per kind without touching the pipeline.

Invariants:
    - Every TransactionKind has an extraction rule and a disposition
      (checked at import time and when a policy is built)
    - Genesis events carry the synthetic timestamp 0

How to change safely:
    - Add the new kind to both tables in the same change
    - Flipping a kind to COMPLETE makes its jobs succeed; make sure the
      store deduplicates or retries are capped first
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Mapping

from ..chain.base import (
    BlockMetadataTransaction,
    Event,
    GenesisTransaction,
    Transaction,
    TransactionKind,
    transaction_type_name,
)

GENESIS_TIMESTAMP = 0


class Disposition(Enum):
    """How a job ends after its transaction was processed."""

    COMPLETE = "complete"
    FAIL = "fail"
    RETRY = "retry"


@dataclass(frozen=True)
class Classification:
    """Result of classifying one transaction.

    Attributes:
        kind: Transaction variant
        type_name: Node type tag, kept for error messages
        version: Ledger version
        timestamp: Timestamp to stamp on extracted events (µs)
        events: Events to encode and load
        extract: Whether events are extracted for this kind at all
    """

    kind: TransactionKind
    type_name: str
    version: int
    timestamp: int
    events: tuple[Event, ...] = ()
    extract: bool = False


def _genesis(tx: GenesisTransaction) -> Classification:
    return Classification(
        kind=tx.kind,
        type_name=transaction_type_name(tx),
        version=tx.version,
        timestamp=GENESIS_TIMESTAMP,
        events=tx.events,
        extract=True,
    )


def _block_metadata(tx: BlockMetadataTransaction) -> Classification:
    return Classification(
        kind=tx.kind,
        type_name=transaction_type_name(tx),
        version=tx.version,
        timestamp=tx.timestamp,
        events=tx.events,
        extract=True,
    )


def _no_extraction(tx: Transaction) -> Classification:
    return Classification(
        kind=tx.kind,
        type_name=transaction_type_name(tx),
        version=tx.version,
        timestamp=getattr(tx, "timestamp", 0),
    )


_CLASSIFIERS: Mapping[TransactionKind, Callable[..., Classification]] = {
    TransactionKind.GENESIS: _genesis,
    TransactionKind.BLOCK_METADATA: _block_metadata,
    TransactionKind.STATE_CHECKPOINT: _no_extraction,
    TransactionKind.USER: _no_extraction,
    TransactionKind.UNKNOWN: _no_extraction,
}

_missing = set(TransactionKind) - set(_CLASSIFIERS)
if _missing:
    raise RuntimeError(f"No classifier for transaction kinds: {sorted(k.value for k in _missing)}")


def classify(transaction: Transaction) -> Classification:
    """Classify a transaction and select the events to ingest."""
    return _CLASSIFIERS[transaction.kind](transaction)


def _default_dispositions() -> dict[TransactionKind, Disposition]:
    return {kind: Disposition.FAIL for kind in TransactionKind}


@dataclass(frozen=True)
class DispositionPolicy:
    """Per-kind job outcome after extraction.

    The default fails every kind terminally, so genesis and block metadata
    transactions get their events loaded and their jobs still end failed.
    """

    dispositions: Mapping[TransactionKind, Disposition] = field(
        default_factory=_default_dispositions
    )

    def __post_init__(self) -> None:
        missing = set(TransactionKind) - set(self.dispositions)
        if missing:
            raise ValueError(
                f"Disposition missing for transaction kinds: {sorted(k.value for k in missing)}"
            )

    def for_kind(self, kind: TransactionKind) -> Disposition:
        return self.dispositions[kind]

    @classmethod
    def from_names(cls, names: Mapping[TransactionKind, str]) -> DispositionPolicy:
        """Build from config strings such as {"genesis": "fail"}.

        Raises:
            ValueError: If a value is not a Disposition name
        """
        dispositions = _default_dispositions()
        for kind, name in names.items():
            try:
                dispositions[kind] = Disposition(name.lower())
            except ValueError:
                raise ValueError(
                    f"Invalid disposition '{name}' for {kind.value}. "
                    f"Must be one of: {', '.join(d.value for d in Disposition)}"
                )
        return cls(dispositions)
