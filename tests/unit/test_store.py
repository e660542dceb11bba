"""
Unit tests for the columnar stores.

Tests cover:
- Address <-> UInt256 conversion
- In-memory store atomicity and deduplication
- ClickHouse statement rendering
- ClickHouse HTTP requests (httpx.MockTransport)
"""

import httpx
import pytest

from ingest.ol_ingest.config import ClickHouseConfig, IngestConfig, StoreBackend
from ingest.ol_ingest.errors import LoadError
from ingest.ol_ingest.pipeline.encoder import encode_events
from ingest.ol_ingest.pipeline.loader import serialize_rows
from ingest.ol_ingest.store import (
    ClickHouseStore,
    InMemoryColumnarStore,
    address_to_uint256,
    create_columnar_store,
    render_create_table,
    render_insert_query,
    uint256_to_address,
)
from tests.conftest import make_event

ADDRESS = "00" * 31 + "01"


class TestAddressConversion:
    """Byte-reversed reinterpretation of addresses."""

    def test_round_trip(self):
        for address in (ADDRESS, "AB" * 32, "0123456789ABCDEF" * 4):
            assert uint256_to_address(address_to_uint256(address)) == address

    def test_lowercase_input_round_trips_uppercase(self):
        assert uint256_to_address(address_to_uint256("ab" * 32)) == "AB" * 32

    def test_reverse_then_little_endian(self):
        """reverse() + little-endian read gives the address's big-endian value."""
        assert address_to_uint256(ADDRESS) == 1
        assert address_to_uint256("01" + "00" * 31) == 1 << 248

    def test_wrong_width_rejected(self):
        with pytest.raises(ValueError):
            address_to_uint256("01")


class TestInMemoryColumnarStore:
    """Tests for InMemoryColumnarStore."""

    @pytest.fixture
    async def store(self):
        store = InMemoryColumnarStore()
        await store.connect()
        await store.ensure_schema("event_v7")
        return store

    def _payload(self, version=1, events=None):
        events = events or [make_event(sequence_number=i) for i in range(3)]
        return serialize_rows(encode_events(version, 100, events))

    @pytest.mark.asyncio
    async def test_bulk_load_converts_columns(self, store):
        count = await store.bulk_load("event_v7", self._payload())

        assert count == 3
        row = store.get_rows("event_v7")[0]
        assert row["version"] == 1
        assert row["timestamp"] == 100
        assert row["account_address"] == 1
        assert row["module_address"] == 1
        assert row["module_name"] == "coin"
        assert row["data"] == '{"amount":"100"}'
        assert uint256_to_address(row["account_address"]) == ADDRESS

    @pytest.mark.asyncio
    async def test_malformed_row_loads_nothing(self, store):
        good = self._payload()
        bad_line = good.splitlines()[0].replace(ADDRESS, "ZZ" * 32)

        with pytest.raises(LoadError):
            await store.bulk_load("event_v7", good + bad_line + "\n")

        assert store.row_count("event_v7") == 0

    @pytest.mark.asyncio
    async def test_short_address_rejected(self, store):
        line = self._payload().splitlines()[0].replace(ADDRESS, "01")

        with pytest.raises(LoadError, match="account_address"):
            await store.bulk_load("event_v7", line + "\n")

    @pytest.mark.asyncio
    async def test_wrong_column_count_rejected(self, store):
        with pytest.raises(LoadError, match="expected 9 columns"):
            await store.bulk_load("event_v7", "1,2,3\n")

    @pytest.mark.asyncio
    async def test_dedup_on_natural_key(self, store):
        payload = self._payload()

        await store.bulk_load("event_v7", payload)
        await store.bulk_load("event_v7", payload)

        assert store.row_count("event_v7") == 3
        assert store.load_calls == 2

    @pytest.mark.asyncio
    async def test_without_dedup_duplicates_kept(self):
        store = InMemoryColumnarStore()
        await store.connect()
        await store.ensure_schema("raw", dedup=False)
        payload = self._payload()

        await store.bulk_load("raw", payload)
        await store.bulk_load("raw", payload)

        assert store.row_count("raw") == 6

    @pytest.mark.asyncio
    async def test_missing_table(self):
        store = InMemoryColumnarStore()
        await store.connect()

        with pytest.raises(LoadError, match="doesn't exist"):
            await store.bulk_load("event_v7", self._payload())

    @pytest.mark.asyncio
    async def test_requires_connection(self):
        store = InMemoryColumnarStore()

        with pytest.raises(LoadError, match="not connected"):
            await store.bulk_load("event_v7", self._payload())

    @pytest.mark.asyncio
    async def test_column_helper(self, store):
        await store.bulk_load("event_v7", self._payload())

        assert store.column("event_v7", "sequence_number") == [0, 1, 2]
        with pytest.raises(KeyError):
            store.column("event_v7", "nope")


class TestClickHouseStatements:
    """Tests for rendered SQL."""

    def test_insert_query(self):
        query = render_insert_query("event_v7")

        assert query.startswith('INSERT INTO "event_v7" ("version", "timestamp"')
        assert 'reinterpretAsUInt256(reverse(unhex("account_address")))' in query
        assert 'reinterpretAsUInt256(reverse(unhex("module_address")))' in query
        assert "FROM input('version UInt64, timestamp UInt64" in query
        assert "account_address String" in query
        assert query.endswith("FORMAT CSV")

    def test_create_table_with_dedup(self):
        ddl = render_create_table("event_v7")

        assert 'CREATE TABLE IF NOT EXISTS "event_v7"' in ddl
        assert '"account_address" UInt256' in ddl
        assert "ENGINE = ReplacingMergeTree" in ddl
        assert 'ORDER BY ("account_address", "creation_number", "sequence_number")' in ddl

    def test_create_table_without_dedup(self):
        ddl = render_create_table("event_v7", dedup=False)

        assert "ENGINE = MergeTree" in ddl
        assert 'ORDER BY ("version", "creation_number")' in ddl

    def test_invalid_identifier(self):
        with pytest.raises(ValueError):
            render_insert_query("event; DROP TABLE x")


class TestClickHouseStore:
    """Tests for ClickHouseStore over a mock transport."""

    @pytest.fixture
    def config(self):
        return ClickHouseConfig(url="http://clickhouse:8123", database="ol", password="secret")

    @pytest.mark.asyncio
    async def test_bulk_load_sends_payload_as_body(self, config):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, text="")

        store = ClickHouseStore(config, transport=httpx.MockTransport(handler))
        await store.connect()
        payload = serialize_rows(encode_events(1, 100, [make_event(), make_event(sequence_number=1)]))

        count = await store.bulk_load("event_v7", payload)

        assert count == 2
        request = requests[0]
        assert request.method == "POST"
        assert request.url.params["database"] == "ol"
        assert request.url.params["query"] == render_insert_query("event_v7")
        assert request.content.decode() == payload
        assert request.headers["X-ClickHouse-User"] == "default"
        assert request.headers["X-ClickHouse-Key"] == "secret"
        await store.close()

    @pytest.mark.asyncio
    async def test_ensure_schema_sends_ddl_as_body(self, config):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200)

        store = ClickHouseStore(config, transport=httpx.MockTransport(handler))
        await store.connect()

        await store.ensure_schema("event_v7", dedup=True)

        assert "query" not in requests[0].url.params
        assert requests[0].content.decode() == render_create_table("event_v7", dedup=True)

    @pytest.mark.asyncio
    async def test_server_error_is_load_error(self, config):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="Code: 27. DB::Exception: Cannot parse input")

        store = ClickHouseStore(config, transport=httpx.MockTransport(handler))
        await store.connect()

        with pytest.raises(LoadError) as exc_info:
            await store.bulk_load("event_v7", "x\n")

        assert exc_info.value.retryable
        assert exc_info.value.details["status_code"] == 500
        assert "Cannot parse input" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_transport_error_is_load_error(self, config):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        store = ClickHouseStore(config, transport=httpx.MockTransport(handler))
        await store.connect()

        with pytest.raises(LoadError, match="request failed"):
            await store.command("SELECT 1")

    @pytest.mark.asyncio
    async def test_not_connected(self, config):
        store = ClickHouseStore(config)

        with pytest.raises(LoadError, match="not connected"):
            await store.command("SELECT 1")


class TestCreateColumnarStore:
    def test_memory(self):
        store = create_columnar_store(IngestConfig(store_backend=StoreBackend.MEMORY))
        assert isinstance(store, InMemoryColumnarStore)

    def test_clickhouse(self):
        store = create_columnar_store(IngestConfig())
        assert isinstance(store, ClickHouseStore)
