"""
Shared fixtures for ol-ingest tests.

FakeChainClient stands in for a full node: tests place transactions at
versions and move the head, and can make calls fail or hang.
"""

import asyncio
from typing import Any

import pytest

from ingest.ol_ingest.chain.base import Event, EventGuid, LedgerInfo, Transaction
from ingest.ol_ingest.errors import ChainClientError


def make_event(
    account_address: str = "0x1",
    creation_number: int = 0,
    sequence_number: int = 0,
    type: str = "0x1::coin::DepositEvent",
    data: Any = None,
) -> Event:
    return Event(
        type=type,
        guid=EventGuid(creation_number=creation_number, account_address=account_address),
        sequence_number=sequence_number,
        data={"amount": "100"} if data is None else data,
    )


class FakeChainClient:
    """In-process ChainClient with scripted responses."""

    def __init__(self) -> None:
        self.head = 0
        self.transactions: dict[int, Transaction] = {}
        self.head_error: Exception | None = None
        self.transaction_error: Exception | None = None
        self.delay_seconds = 0.0
        self.requests: list[tuple[int, int]] = []
        self.connected = False

    def add(self, transaction: Transaction) -> None:
        self.transactions[transaction.version] = transaction
        self.head = max(self.head, transaction.version)

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def connect(self) -> None:
        self.connected = True

    async def close(self) -> None:
        self.connected = False

    async def get_ledger_info(self) -> LedgerInfo:
        return LedgerInfo(chain_id=1, epoch=1, ledger_version=self.head, ledger_timestamp=0)

    async def get_head_version(self) -> int:
        if self.head_error is not None:
            raise self.head_error
        return self.head

    async def get_transactions(self, start: int, limit: int = 1) -> list[Transaction]:
        self.requests.append((start, limit))
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        if self.transaction_error is not None:
            raise self.transaction_error
        return [
            self.transactions[v] for v in range(start, start + limit) if v in self.transactions
        ]

    async def view(self, function, type_arguments=None, arguments=None) -> list[Any]:
        raise ChainClientError(f"view {function} not scripted")


@pytest.fixture
def chain():
    """Fake node with no transactions and head 0."""
    return FakeChainClient()
