"""
Shared test configuration and fixtures.

Stores are real: DuckDB and SQLite, both in-memory. The seeded event set
is small enough to reason about by hand:

    site 1
      s1  u1 / alice   2024-06-15 10:00-10:06  US Chrome   /news/a, /news/b, signup
      s2  u2           2024-06-15 11:00-11:10  DE Firefox  /news/a, /blog/x
      s3  u3 / bob     2024-06-14 09:00-09:05  FR Chrome   /news/a/deep, /news/b
    site 2
      s9  u9           2024-06-15 10:00        US Chrome   /news/a
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Mapping
from datetime import UTC, datetime
from typing import Any

import pytest

from site_analytics.backends import (
    DuckDBConfig,
    DuckDBEventStore,
    EventRecord,
    SQLiteConfig,
    SQLiteTraitStore,
    TraitStore,
)

logger = logging.getLogger(__name__)

FIXED_NOW = datetime(2024, 6, 15, 12, 0, 0, 250000, tzinfo=UTC)


def _event(session_id: str, user_id: str, at: datetime, **fields: Any) -> EventRecord:
    site_id = fields.pop("site_id", 1)
    return EventRecord(
        site_id=site_id, session_id=session_id, user_id=user_id, timestamp=at, **fields
    )


def seed_events() -> list[EventRecord]:
    """Events used by the store and service tests."""
    s1 = {
        "identified_user_id": "alice",
        "country": "US",
        "browser": "Chrome",
        "lat": 40.7128,
        "lon": -74.006,
        "url_parameters": {"utm_source": "newsletter"},
    }
    s2 = {"country": "DE", "browser": "Firefox", "lat": 52.52, "lon": 13.405}
    s3 = {"identified_user_id": "bob", "country": "FR", "browser": "Chrome", "lat": 48.8566, "lon": 2.3522}

    return [
        _event("s1", "u1", datetime(2024, 6, 15, 10, 0), pathname="/news/a", **s1),
        _event("s1", "u1", datetime(2024, 6, 15, 10, 5), pathname="/news/b", **s1),
        _event(
            "s1",
            "u1",
            datetime(2024, 6, 15, 10, 6),
            type="custom_event",
            event_name="signup",
            pathname="/news/b",
            **s1,
        ),
        _event("s2", "u2", datetime(2024, 6, 15, 11, 0), pathname="/news/a", **s2),
        _event("s2", "u2", datetime(2024, 6, 15, 11, 10), pathname="/blog/x", **s2),
        _event("s3", "u3", datetime(2024, 6, 14, 9, 0), pathname="/news/a/deep", **s3),
        _event("s3", "u3", datetime(2024, 6, 14, 9, 5), pathname="/news/b", **s3),
        _event(
            "s9",
            "u9",
            datetime(2024, 6, 15, 10, 0),
            site_id=2,
            pathname="/news/a",
            country="US",
            browser="Chrome",
        ),
    ]


class CountingTraitStore(TraitStore):
    """In-memory trait store that records every lookup."""

    def __init__(self, profiles: Mapping[tuple[int, str], dict[str, Any]] | None = None):
        self.profiles = dict(profiles or {})
        self.calls: list[tuple[int, list[str]]] = []
        self.fail_with: Exception | None = None

    async def initialize(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def upsert_profile(self, site_id: int, user_id: str, traits: Mapping[str, Any]) -> None:
        self.profiles[(site_id, user_id)] = dict(traits)

    async def get_traits(
        self, site_id: int, user_ids: Collection[str]
    ) -> dict[str, dict[str, Any]]:
        self.calls.append((site_id, list(user_ids)))
        if self.fail_with is not None:
            raise self.fail_with
        return {
            user_id: self.profiles[(site_id, user_id)]
            for user_id in user_ids
            if (site_id, user_id) in self.profiles
        }


@pytest.fixture
def fixed_now() -> datetime:
    """The instant tests compile their time ranges against."""
    return FIXED_NOW


@pytest.fixture
async def event_store():
    """Fixture providing an initialized, empty in-memory DuckDB store."""
    store = await DuckDBEventStore.create(DuckDBConfig(db_path=":memory:"))
    yield store
    await store.close()


@pytest.fixture
async def seeded_event_store(event_store):
    """Fixture providing the DuckDB store loaded with ``seed_events()``."""
    await event_store.insert_events(seed_events())
    return event_store


@pytest.fixture
async def trait_store():
    """Fixture providing an initialized in-memory SQLite trait store."""
    store = await SQLiteTraitStore.create(SQLiteConfig(db_path=":memory:"))
    yield store
    await store.close()


@pytest.fixture
def counting_trait_store() -> CountingTraitStore:
    return CountingTraitStore(
        {
            (1, "alice"): {"plan": "pro", "email": "alice@example.com"},
            (2, "alice"): {"plan": "free"},
        }
    )
