"""
Abstract base classes for the stores the query layer talks to.

- EventStore: the column store holding raw tracking events
- TraitStore: the relational store holding identified-user profiles
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Collection, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass
class EventRecord:
    """A raw tracking event as written by the ingestion pipeline."""

    site_id: int
    session_id: str
    user_id: str
    timestamp: datetime  # naive UTC
    type: str = "pageview"  # "pageview", "custom_event", ...
    pathname: str | None = None
    event_name: str | None = None
    identified_user_id: str | None = None
    hostname: str | None = None
    querystring: str | None = None
    page_title: str | None = None
    referrer: str | None = None
    channel: str | None = None
    browser: str | None = None
    browser_version: str | None = None
    operating_system: str | None = None
    operating_system_version: str | None = None
    language: str | None = None
    country: str | None = None
    region: str | None = None
    city: str | None = None
    lat: float | None = None
    lon: float | None = None
    screen_width: int | None = None
    screen_height: int | None = None
    device_type: str | None = None
    url_parameters: dict[str, str] = field(default_factory=dict)


class EventStore(ABC):
    """Query interface of the column store.

    Implementations accept SQL with ``$name`` placeholders plus a mapping of
    parameter values and return rows as self-describing dicts.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Open connections and ensure the schema exists."""

    @abstractmethod
    async def close(self) -> None:
        """Release connections."""

    @abstractmethod
    async def insert_events(self, events: Sequence[EventRecord]) -> int:
        """Append events, returning how many were written."""

    @abstractmethod
    async def query(self, sql: str, params: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
        """Run a read query and return its rows.

        Raises:
            StorageIOError: If the store rejects or fails the query.
        """

    async def __aenter__(self) -> EventStore:
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


class TraitStore(ABC):
    """Lookup interface of the user-profile store."""

    @abstractmethod
    async def initialize(self) -> None:
        """Open connections and ensure the schema exists."""

    @abstractmethod
    async def close(self) -> None:
        """Release connections."""

    @abstractmethod
    async def upsert_profile(self, site_id: int, user_id: str, traits: Mapping[str, Any]) -> None:
        """Create or replace the traits of one identified user."""

    @abstractmethod
    async def get_traits(
        self, site_id: int, user_ids: Collection[str]
    ) -> dict[str, dict[str, Any]]:
        """Fetch traits for many users of one site in a single round trip.

        Users without a profile are absent from the result.

        Raises:
            StorageIOError: If the store is unavailable.
        """

    async def __aenter__(self) -> TraitStore:
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
