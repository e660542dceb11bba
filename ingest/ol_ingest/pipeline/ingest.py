"""
Per-version ingestion: fetch, classify, encode, load, settle.

The pipeline runs in two explicit phases:

    1. load_events(): extract and load whatever the classifier selected
    2. settle(): apply the disposition policy to decide the job outcome

Both phases are separately callable so each can be tested on its own, and
so the dispatcher can run a version end to end with ingest_version().

Invariants:
    - Nothing is loaded for kinds the classifier does not extract
    - settle() runs only after a successful load
    - Errors leave as IngestError subclasses
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..chain.base import ChainClient, Transaction
from ..errors import EncodingError, TransactionNotFoundError, UnsupportedTransactionTypeError
from .classifier import Classification, Disposition, DispositionPolicy, classify
from .encoder import encode_events
from .loader import EventLoader, LoadResult

logger = logging.getLogger(__name__)


@dataclass
class IngestResult:
    """Outcome of a version that ingested successfully."""

    version: int
    kind: str
    rows_loaded: int


class IngestPipeline:
    """Runs a single ledger version through classifier, encoder and loader.

    Attributes:
        chain: Injected chain client
        loader: Event loader bound to the event table
        policy: Per-kind disposition table
    """

    def __init__(
        self,
        chain: ChainClient,
        loader: EventLoader,
        policy: DispositionPolicy | None = None,
    ) -> None:
        self.chain = chain
        self.loader = loader
        self.policy = policy or DispositionPolicy()

    async def fetch_transaction(self, version: int) -> Transaction:
        """Fetch exactly the transaction at version.

        Raises:
            TransactionNotFoundError: If the node has nothing at version yet
            ChainClientError: On transport failure
            EncodingError: If the node returned a malformed transaction
        """
        transactions = await self.chain.get_transactions(start=version, limit=1)
        if not transactions:
            raise TransactionNotFoundError(version)
        return transactions[0]

    async def load_events(self, classification: Classification) -> LoadResult:
        """Phase one: encode and load the selected events."""
        if not classification.extract:
            return LoadResult(version=classification.version, rows=0, skipped=True)

        rows = encode_events(classification.version, classification.timestamp, classification.events)
        return await self.loader.load(classification.version, rows)

    def settle(self, classification: Classification, load: LoadResult) -> IngestResult:
        """Phase two: turn the disposition into a result or an error.

        Raises:
            UnsupportedTransactionTypeError: For FAIL and RETRY dispositions
        """
        disposition = self.policy.for_kind(classification.kind)
        if disposition == Disposition.COMPLETE:
            return IngestResult(
                version=classification.version,
                kind=classification.type_name,
                rows_loaded=load.rows,
            )

        raise UnsupportedTransactionTypeError(
            classification.type_name,
            version=classification.version,
            retryable=disposition == Disposition.RETRY,
        )

    async def ingest_transaction(self, transaction: Transaction) -> IngestResult:
        classification = classify(transaction)
        logger.debug(
            "Classified transaction",
            extra={
                "version": classification.version,
                "kind": classification.type_name,
                "events": len(classification.events),
            },
        )

        try:
            load = await self.load_events(classification)
        except EncodingError as e:
            if e.version is None:
                e.version = classification.version
            raise

        return self.settle(classification, load)

    async def ingest_version(self, version: int) -> IngestResult:
        """Fetch and ingest the transaction at version."""
        transaction = await self.fetch_transaction(version)
        return await self.ingest_transaction(transaction)
