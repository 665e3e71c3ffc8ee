"""
Site Analytics

Query layer of a web-analytics dashboard.

Provides:
- Filter compilation (dimension, URL parameter, session and identity filters)
- Time-range compilation against one captured instant per request
- Wildcard and prefix/depth page grouping
- Result normalization and batched user-trait enrichment
- DuckDB event store and SQLite trait store

Usage:

    >>> from site_analytics import AnalyticsService, TimeRangeSpec, parse_filters
    >>> service = await AnalyticsService.create()
    >>> counts = await service.pageview_counts(
    ...     site_id=1,
    ...     prefix="/blog",
    ...     depth=1,
    ...     filters=parse_filters('[{"parameter": "country", "type": "equals", "value": ["US"]}]'),
    ...     time_range=TimeRangeSpec(past_minutes_start=60, past_minutes_end=0),
    ... )

Compilers on their own:

    from site_analytics.query import FilterCompiler, TimeRangeCompiler, capture_now

    now = capture_now()
    time = TimeRangeCompiler(now).compile(time_range)
    filters = FilterCompiler().compile(specs, site_id, time)
"""

# Stores
from .backends import (
    DuckDBConfig,
    DuckDBEventStore,
    EventRecord,
    EventStore,
    SQLiteConfig,
    SQLiteTraitStore,
    TraitStore,
)
from .config import AnalyticsSettings

# Exceptions
from .exceptions import (
    AnalyticsError,
    QueryCompilationError,
    StorageConnectionError,
    StorageIOError,
    ValidationError,
)

# Query compilation
from .query import (
    CompiledQuery,
    FilterCompiler,
    FilterSpec,
    FilterType,
    Fragment,
    TimeRangeCompiler,
    TimeRangeSpec,
    build_prefix_regex,
    capture_now,
    parse_filters,
    pattern_to_regex,
    previous_period,
)

# Results
from .results import ResultNormalizer, TraitEnricher, normalize_results
from .service import AnalyticsService, path_pattern_condition

__version__ = "0.1.0"

__all__ = [
    # Service
    "AnalyticsService",
    "AnalyticsSettings",
    "path_pattern_condition",
    # Query compilation
    "FilterSpec",
    "FilterType",
    "TimeRangeSpec",
    "FilterCompiler",
    "TimeRangeCompiler",
    "Fragment",
    "CompiledQuery",
    "parse_filters",
    "capture_now",
    "previous_period",
    "pattern_to_regex",
    "build_prefix_regex",
    # Results
    "ResultNormalizer",
    "TraitEnricher",
    "normalize_results",
    # Stores
    "EventStore",
    "TraitStore",
    "EventRecord",
    "DuckDBEventStore",
    "DuckDBConfig",
    "SQLiteTraitStore",
    "SQLiteConfig",
    # Exceptions
    "AnalyticsError",
    "ValidationError",
    "QueryCompilationError",
    "StorageIOError",
    "StorageConnectionError",
]
