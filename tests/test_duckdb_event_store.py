"""
Tests for the DuckDB event store.

Uses real DuckDB (in-memory) for accurate testing.
"""

from datetime import datetime

import pytest

from site_analytics.backends import DuckDBConfig, DuckDBEventStore, EventRecord
from site_analytics.exceptions import StorageConnectionError, StorageIOError


class TestDuckDBInitialization:
    """Tests for DuckDB store initialization."""

    @pytest.mark.asyncio
    async def test_create_with_defaults(self):
        """Store creates with default configuration."""
        store = await DuckDBEventStore.create()
        assert store._initialized is True
        await store.close()

    @pytest.mark.asyncio
    async def test_config_from_env(self, monkeypatch, tmp_path):
        """DB path is read from the environment."""
        path = tmp_path / "events.duckdb"
        monkeypatch.setenv("SITE_ANALYTICS_DUCKDB_PATH", str(path))

        store = await DuckDBEventStore.create(DuckDBConfig.from_env())
        await store.close()

        assert path.exists()

    @pytest.mark.asyncio
    async def test_context_manager(self):
        """Store opens and closes as an async context manager."""
        store = DuckDBEventStore(DuckDBConfig(db_path=":memory:"))
        async with store:
            assert store.conn is not None
        assert store.conn is None

    @pytest.mark.asyncio
    async def test_closed_store_rejects_queries(self):
        store = await DuckDBEventStore.create(DuckDBConfig(db_path=":memory:"))
        await store.close()

        with pytest.raises(StorageConnectionError):
            await store.query("SELECT 1")


class TestDuckDBEvents:
    """Tests for inserting and querying events."""

    @pytest.mark.asyncio
    async def test_insert_counts_rows(self, event_store):
        event = EventRecord(
            site_id=1, session_id="s", user_id="u", timestamp=datetime(2024, 1, 1), pathname="/"
        )

        assert await event_store.insert_events([event, event]) == 2
        assert await event_store.insert_events([]) == 0

    @pytest.mark.asyncio
    async def test_query_with_named_params(self, seeded_event_store):
        rows = await seeded_event_store.query(
            "SELECT DISTINCT session_id FROM events WHERE site_id = $site_id AND country = $c "
            "ORDER BY session_id",
            {"site_id": 1, "c": "US"},
        )

        assert rows == [{"session_id": "s1"}]

    @pytest.mark.asyncio
    async def test_url_parameters_stored_as_json(self, seeded_event_store):
        rows = await seeded_event_store.query(
            "SELECT DISTINCT json_extract_string(url_parameters, '$.\"utm_source\"') AS source "
            "FROM events WHERE session_id = $s",
            {"s": "s1"},
        )

        assert rows == [{"source": "newsletter"}]

    @pytest.mark.asyncio
    async def test_timestamps_round_trip_naive_utc(self, seeded_event_store):
        rows = await seeded_event_store.query(
            'SELECT MIN("timestamp") AS first_seen FROM events WHERE session_id = $s',
            {"s": "s3"},
        )

        assert rows == [{"first_seen": datetime(2024, 6, 14, 9, 0)}]

    @pytest.mark.asyncio
    async def test_invalid_sql_raises_storage_error(self, event_store):
        with pytest.raises(StorageIOError) as exc_info:
            await event_store.query("SELECT no_such_column FROM events")

        assert exc_info.value.operation == "query"
