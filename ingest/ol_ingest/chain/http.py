"""
HTTP chain client for Aptos-style full node REST APIs.

Uses httpx's async client with a single pooled connection per process.
All transport errors and non-2xx responses surface as ChainClientError so
the dispatcher can treat them as transient. A malformed transaction in a
well-formed response raises EncodingError, which is terminal.

How to change safely:
    - Keep timeouts bounded, a hung node call holds a worker slot
    - Test against a node of the same API version before deploying
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..errors import ChainClientError
from .base import LedgerInfo, Transaction, parse_transaction

logger = logging.getLogger(__name__)


class HttpChainClient:
    """ChainClient implementation over the node REST API.

    Attributes:
        config: ChainConfig with node URL and timeouts

    Example:
        >>> client = HttpChainClient(ChainConfig(node_url="http://node:8080/v1"))
        >>> await client.connect()
        >>> head = await client.get_head_version()
        >>> txs = await client.get_transactions(start=head, limit=1)
    """

    def __init__(
        self,
        config: Any,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: ChainConfig instance
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.config = config
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def connect(self) -> None:
        if self._client is not None:
            return

        self._client = httpx.AsyncClient(
            base_url=self.config.node_url.rstrip("/"),
            timeout=httpx.Timeout(self.config.timeout_seconds),
            limits=httpx.Limits(max_connections=self.config.max_connections),
            headers={"Accept": "application/json"},
            transport=self._transport,
        )
        logger.info("Chain client connected", extra={"node_url": self.config.node_url})

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.debug("Chain client closed")

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        if self._client is None:
            raise ChainClientError("Chain client is not connected")

        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise ChainClientError(f"Node request timed out: {method} {path}") from e
        except httpx.HTTPError as e:
            raise ChainClientError(f"Node request failed: {method} {path}: {e}") from e

        if response.status_code >= 400:
            raise ChainClientError(
                f"Node returned {response.status_code} for {method} {path}: {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise ChainClientError(f"Node returned invalid JSON for {method} {path}") from e

    async def get_ledger_info(self) -> LedgerInfo:
        data = await self._request("GET", "/")
        return LedgerInfo.from_dict(data)

    async def get_head_version(self) -> int:
        info = await self.get_ledger_info()
        return info.ledger_version

    async def get_transactions(self, start: int, limit: int = 1) -> list[Transaction]:
        """Fetch transactions by version.

        Args:
            start: First version to return
            limit: Maximum number of transactions

        Returns:
            Parsed transactions, possibly empty

        Raises:
            ChainClientError: On transport failure or unparseable body
            EncodingError: If a returned transaction is malformed
        """
        data = await self._request(
            "GET",
            "/transactions",
            params={"start": start, "limit": limit},
        )
        if not isinstance(data, list):
            raise ChainClientError(
                f"Expected a list of transactions, got {type(data).__name__}",
                version=start,
            )

        return [parse_transaction(item, version_hint=start + i) for i, item in enumerate(data)]

    async def view(
        self,
        function: str,
        type_arguments: list[str] | None = None,
        arguments: list[Any] | None = None,
    ) -> list[Any]:
        data = await self._request(
            "POST",
            "/view",
            json={
                "function": function,
                "type_arguments": type_arguments or [],
                "arguments": arguments or [],
            },
        )
        if not isinstance(data, list):
            raise ChainClientError(f"Expected a list from view {function}")
        return data
