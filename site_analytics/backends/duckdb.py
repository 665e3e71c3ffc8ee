"""
DuckDB event store.

DuckDB is the column store the compiled predicates run against: one wide
``events`` table, append-mostly, scanned by site and time. All DuckDB calls
are blocking, so they run in a worker thread on a per-call cursor.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from collections.abc import Mapping, Sequence
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

import duckdb

from ..exceptions import StorageConnectionError, StorageIOError
from .base import EventRecord, EventStore

logger = logging.getLogger(__name__)


# =============================================================================
# Column Definitions - Centralized for consistency and maintainability
# =============================================================================

EVENT_COLUMNS = (
    "site_id",
    "session_id",
    "user_id",
    "identified_user_id",
    "timestamp",
    "type",
    "event_name",
    "pathname",
    "hostname",
    "querystring",
    "page_title",
    "referrer",
    "channel",
    "browser",
    "browser_version",
    "operating_system",
    "operating_system_version",
    "language",
    "country",
    "region",
    "city",
    "lat",
    "lon",
    "screen_width",
    "screen_height",
    "device_type",
    "url_parameters",
)

_CREATE_EVENTS_SQL = """
CREATE TABLE IF NOT EXISTS events (
    site_id INTEGER NOT NULL,
    session_id VARCHAR NOT NULL,
    user_id VARCHAR NOT NULL,
    identified_user_id VARCHAR,
    "timestamp" TIMESTAMP NOT NULL,
    type VARCHAR NOT NULL,
    event_name VARCHAR,
    pathname VARCHAR,
    hostname VARCHAR,
    querystring VARCHAR,
    page_title VARCHAR,
    referrer VARCHAR,
    channel VARCHAR,
    browser VARCHAR,
    browser_version VARCHAR,
    operating_system VARCHAR,
    operating_system_version VARCHAR,
    language VARCHAR,
    country VARCHAR,
    region VARCHAR,
    city VARCHAR,
    lat DOUBLE,
    lon DOUBLE,
    screen_width INTEGER,
    screen_height INTEGER,
    device_type VARCHAR,
    url_parameters JSON
)
"""


@dataclass
class DuckDBConfig:
    """Configuration for the DuckDB event store."""

    db_path: str | Path = ":memory:"  # Use :memory: for in-memory database

    @classmethod
    def from_env(cls) -> DuckDBConfig:
        """Create config from environment variables."""
        return cls(db_path=os.environ.get("SITE_ANALYTICS_DUCKDB_PATH", ":memory:"))


class DuckDBEventStore(EventStore):
    """
    DuckDB-backed event store.

    Features:
    - File-based or in-memory database
    - Named ``$param`` binding for every compiled query
    - Rows returned as dicts keyed by column name
    """

    def __init__(self, config: DuckDBConfig):
        self.config = config
        self.conn: Any = None  # DuckDB connection (using Any due to type stub limitations)
        self._initialized = False

    @classmethod
    async def create(cls, config: DuckDBConfig | None = None) -> DuckDBEventStore:
        """Create and initialize the store."""
        if config is None:
            config = DuckDBConfig.from_env()

        store = cls(config)
        await store.initialize()
        return store

    async def initialize(self) -> None:
        """Initialize DuckDB connection and schema."""
        if self._initialized:
            return

        def _init() -> None:
            self.conn = duckdb.connect(str(self.config.db_path))

            # Stored timestamps are UTC; now() must compare in UTC too.
            try:
                self.conn.execute("SET TimeZone = 'UTC'")
            except duckdb.Error as e:
                logger.warning(f"Could not pin DuckDB session time zone to UTC: {e}")

            self.conn.execute(_CREATE_EVENTS_SQL)
            self.conn.execute(
                'CREATE INDEX IF NOT EXISTS idx_events_site_time ON events(site_id, "timestamp")'
            )

        try:
            await asyncio.to_thread(_init)
            self._initialized = True
            logger.info(f"DuckDB event store initialized: {self.config.db_path}")
        except Exception as e:
            raise StorageConnectionError(str(self.config.db_path), e) from e

    async def close(self) -> None:
        """Close DuckDB connection."""
        if self.conn:
            await asyncio.to_thread(self.conn.close)
            self.conn = None

        self._initialized = False

    def _require_connection(self) -> Any:
        if self.conn is None:
            raise StorageConnectionError(str(self.config.db_path))
        return self.conn

    @staticmethod
    def _event_row(event: EventRecord) -> tuple[Any, ...]:
        values = asdict(event)
        values["url_parameters"] = json.dumps(event.url_parameters or {})
        return tuple(values[column] for column in EVENT_COLUMNS)

    async def insert_events(self, events: Sequence[EventRecord]) -> int:
        """Append events to the events table."""
        if not events:
            return 0

        conn = self._require_connection()
        columns = ", ".join(f'"{c}"' for c in EVENT_COLUMNS)
        placeholders = ", ".join("?" for _ in EVENT_COLUMNS)
        sql = f"INSERT INTO events ({columns}) VALUES ({placeholders})"
        rows = [self._event_row(event) for event in events]

        def _insert() -> int:
            cursor = conn.cursor()
            try:
                cursor.executemany(sql, rows)
            finally:
                cursor.close()
            return len(rows)

        try:
            return await asyncio.to_thread(_insert)
        except duckdb.Error as e:
            logger.error("insert_events failed: %s", e, exc_info=True)
            raise StorageIOError("insert_events", str(self.config.db_path), e) from e

    async def query(self, sql: str, params: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
        """Run a read query with named parameters."""
        conn = self._require_connection()
        bound = dict(params) if params else None

        def _query() -> list[dict[str, Any]]:
            cursor = conn.cursor()
            try:
                cursor.execute(sql, bound)
                columns = [d[0] for d in cursor.description or ()]
                return [dict(zip(columns, row)) for row in cursor.fetchall()]
            finally:
                cursor.close()

        try:
            rows = await asyncio.to_thread(_query)
        except duckdb.Error as e:
            logger.error("query failed: %s", e, exc_info=True)
            raise StorageIOError("query", str(self.config.db_path), e) from e

        logger.debug("query returned %d row(s)", len(rows))
        return rows
