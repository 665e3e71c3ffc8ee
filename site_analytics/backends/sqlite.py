"""
SQLite trait store.

Holds one row per identified user and site, with the user's traits as a
JSON object. Used by TraitEnricher for its single batched lookup.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Collection, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import aiosqlite

from ..exceptions import StorageConnectionError, StorageIOError
from .base import TraitStore

logger = logging.getLogger(__name__)

_CREATE_PROFILES_SQL = """
CREATE TABLE IF NOT EXISTS user_profiles (
    site_id INTEGER NOT NULL,
    user_id TEXT NOT NULL,
    traits TEXT NOT NULL DEFAULT '{}',
    updated_at TEXT DEFAULT (datetime('now')),
    PRIMARY KEY (site_id, user_id)
)
"""


@dataclass
class SQLiteConfig:
    """Configuration for the SQLite trait store."""

    db_path: str | Path = ":memory:"

    @classmethod
    def from_env(cls) -> SQLiteConfig:
        """Create config from environment variables."""
        return cls(db_path=os.environ.get("SITE_ANALYTICS_SQLITE_PATH", ":memory:"))


def _decode_traits(raw: Any, user_id: str) -> dict[str, Any]:
    """Traits that are not a JSON object read back as an empty mapping."""
    if raw is None:
        return {}
    try:
        traits = json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        logger.warning(f"Ignoring malformed traits for user {user_id}")
        return {}
    return traits if isinstance(traits, dict) else {}


class SQLiteTraitStore(TraitStore):
    """
    aiosqlite-backed user profile store.

    Features:
    - Single file (or in-memory) database
    - One ``IN (...)`` query per batch lookup
    """

    def __init__(self, config: SQLiteConfig):
        self.config = config
        self.conn: aiosqlite.Connection | None = None
        self._initialized = False

    @classmethod
    async def create(cls, config: SQLiteConfig | None = None) -> SQLiteTraitStore:
        """Create and initialize the store."""
        if config is None:
            config = SQLiteConfig.from_env()

        store = cls(config)
        await store.initialize()
        return store

    async def initialize(self) -> None:
        """Initialize SQLite connection and schema."""
        if self._initialized:
            return

        try:
            self.conn = await aiosqlite.connect(str(self.config.db_path))
            await self.conn.execute(_CREATE_PROFILES_SQL)
            await self.conn.commit()
            self._initialized = True
            logger.info(f"SQLite trait store initialized: {self.config.db_path}")
        except Exception as e:
            raise StorageConnectionError(str(self.config.db_path), e) from e

    async def close(self) -> None:
        """Close SQLite connection."""
        if self.conn:
            await self.conn.close()
            self.conn = None

        self._initialized = False

    def _require_connection(self) -> aiosqlite.Connection:
        if self.conn is None:
            raise StorageConnectionError(str(self.config.db_path))
        return self.conn

    async def upsert_profile(self, site_id: int, user_id: str, traits: Mapping[str, Any]) -> None:
        """Create or replace the traits of one identified user."""
        conn = self._require_connection()
        try:
            await conn.execute(
                """
                INSERT INTO user_profiles (site_id, user_id, traits)
                VALUES (?, ?, ?)
                ON CONFLICT (site_id, user_id) DO UPDATE SET
                    traits = excluded.traits,
                    updated_at = datetime('now')
                """,
                (int(site_id), user_id, json.dumps(dict(traits))),
            )
            await conn.commit()
        except aiosqlite.Error as e:
            logger.error("upsert_profile failed: %s", e, exc_info=True)
            raise StorageIOError("upsert_profile", str(self.config.db_path), e) from e

    async def get_traits(
        self, site_id: int, user_ids: Collection[str]
    ) -> dict[str, dict[str, Any]]:
        """Fetch traits for many users of one site in one query."""
        ids = list(dict.fromkeys(user_ids))
        if not ids:
            return {}

        conn = self._require_connection()
        placeholders = ", ".join("?" for _ in ids)
        sql = (
            "SELECT user_id, traits FROM user_profiles "
            f"WHERE site_id = ? AND user_id IN ({placeholders})"
        )

        try:
            async with conn.execute(sql, (int(site_id), *ids)) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            logger.error("get_traits failed: %s", e, exc_info=True)
            raise StorageIOError("get_traits", str(self.config.db_path), e) from e

        return {user_id: _decode_traits(raw, user_id) for user_id, raw in rows}
