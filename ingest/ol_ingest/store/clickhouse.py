"""
ClickHouse columnar store over the HTTP interface.

Each load is a single INSERT ... SELECT statement reading the CSV payload
through the input() table function, so the hex-to-UInt256 reinterpretation
happens server-side and the whole payload is inserted as one block.

How to change safely:
    - Keep the statement single, splitting it breaks per-transaction atomicity
    - Check max_insert_block_size if transactions can carry very many events
    - Test DDL changes against a scratch database first
"""

from __future__ import annotations

import logging
import re
from typing import Any

import httpx

from ..errors import LoadError
from .base import ADDRESS_COLUMNS, COLUMN_NAMES, DEDUP_KEY, EVENT_COLUMNS

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def quote_identifier(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid ClickHouse identifier: {name!r}")
    return f'"{name}"'


def render_insert_query(table: str) -> str:
    """Build the set-based load statement for the event table.

    The payload itself is not part of the statement; it is sent as the
    request body and read via input().
    """
    columns = ", ".join(quote_identifier(name) for name in COLUMN_NAMES)
    projections = ", ".join(
        f"reinterpretAsUInt256(reverse(unhex({quote_identifier(name)})))"
        if name in ADDRESS_COLUMNS
        else quote_identifier(name)
        for name in COLUMN_NAMES
    )
    structure = ", ".join(f"{name} {source}" for name, source, _ in EVENT_COLUMNS)
    return (
        f"INSERT INTO {quote_identifier(table)} ({columns}) "
        f"SELECT {projections} FROM input('{structure}') FORMAT CSV"
    )


def render_create_table(table: str, dedup: bool = True) -> str:
    """Build the DDL for the event table.

    With dedup the table collapses re-loaded events on their natural key,
    which makes retried loads harmless after background merges.
    """
    columns = ",\n    ".join(
        f"{quote_identifier(name)} {target}" for name, _, target in EVENT_COLUMNS
    )
    if dedup:
        engine = "ReplacingMergeTree"
        order_by = ", ".join(quote_identifier(name) for name in DEDUP_KEY)
    else:
        engine = "MergeTree"
        order_by = ", ".join(quote_identifier(name) for name in ("version", "creation_number"))
    return (
        f"CREATE TABLE IF NOT EXISTS {quote_identifier(table)} (\n    {columns}\n)\n"
        f"ENGINE = {engine}\nORDER BY ({order_by})"
    )


class ClickHouseStore:
    """ColumnarStore implementation for ClickHouse.

    Attributes:
        config: ClickHouseConfig with URL, credentials and timeouts

    Example:
        >>> store = ClickHouseStore(ClickHouseConfig(url="http://localhost:8123"))
        >>> await store.connect()
        >>> await store.ensure_schema("event_v7")
        >>> await store.bulk_load("event_v7", payload)
    """

    def __init__(
        self,
        config: Any,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            config: ClickHouseConfig instance
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

        headers = {"X-ClickHouse-User": self.config.username}
        if self.config.password:
            headers["X-ClickHouse-Key"] = self.config.password

        self._client = httpx.AsyncClient(
            base_url=self.config.url.rstrip("/"),
            timeout=httpx.Timeout(self.config.timeout_seconds),
            headers=headers,
            transport=self._transport,
        )
        logger.info(
            "ClickHouse store connected",
            extra={"url": self.config.url, "database": self.config.database},
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.debug("ClickHouse store closed")

    async def command(self, query: str, body: str | None = None) -> str:
        """Run a statement, optionally streaming body as its input data.

        Raises:
            LoadError: If the request fails or ClickHouse reports an error
        """
        if self._client is None:
            raise LoadError("ClickHouse store is not connected")

        params = {
            "database": self.config.database,
            "wait_end_of_query": "1",
        }
        if body is None:
            request_kwargs: dict[str, Any] = {"content": query}
        else:
            params["query"] = query
            request_kwargs = {"content": body.encode("utf-8")}

        try:
            response = await self._client.post("/", params=params, **request_kwargs)
        except httpx.HTTPError as e:
            raise LoadError(f"ClickHouse request failed: {e}") from e

        if response.status_code != 200:
            raise LoadError(
                f"ClickHouse returned {response.status_code}: {response.text[:500]}",
                details={"status_code": response.status_code},
            )
        return response.text

    async def ensure_schema(self, table: str, dedup: bool = True) -> None:
        await self.command(render_create_table(table, dedup=dedup))
        logger.info("Event table ready", extra={"table": table, "dedup": dedup})

    async def bulk_load(self, table: str, payload: str) -> int:
        rows = payload.count("\n")
        await self.command(render_insert_query(table), body=payload)
        return rows
