"""
Store abstraction layer.

Provides abstract interfaces for the two stores the query layer reads:
the DuckDB event store and the SQLite user-profile (trait) store.
"""

from .base import EventRecord, EventStore, TraitStore
from .duckdb import DuckDBConfig, DuckDBEventStore
from .sqlite import SQLiteConfig, SQLiteTraitStore

__all__ = [
    # Protocol ABCs
    "EventStore",
    "TraitStore",
    # Records
    "EventRecord",
    # Implementations
    "DuckDBEventStore",
    "DuckDBConfig",
    "SQLiteTraitStore",
    "SQLiteConfig",
]
