"""
Chain client adapter for 0L/Aptos full nodes.

This module provides:
- The ChainClient protocol shared by the scheduler and the pipeline
- Typed transaction variants and events parsed from node JSON
- An httpx-based client for the node REST API

Invariants:
    - The client is constructed once and injected, never looked up globally
    - Transport failures are ChainClientError (transient)
"""

from .base import (
    BlockMetadataTransaction,
    ChainClient,
    Event,
    EventGuid,
    GenesisTransaction,
    LedgerInfo,
    StateCheckpointTransaction,
    Transaction,
    TransactionKind,
    UnknownTransaction,
    UserTransaction,
    parse_transaction,
    transaction_type_name,
)
from .http import HttpChainClient

__all__ = [
    "ChainClient",
    "HttpChainClient",
    "LedgerInfo",
    "Event",
    "EventGuid",
    "Transaction",
    "TransactionKind",
    "GenesisTransaction",
    "BlockMetadataTransaction",
    "StateCheckpointTransaction",
    "UserTransaction",
    "UnknownTransaction",
    "parse_transaction",
    "transaction_type_name",
]
