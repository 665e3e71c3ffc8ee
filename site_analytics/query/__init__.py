"""
Query compilation for the events store.

This module provides:
- FilterSpec / TimeRangeSpec: request-scoped filter and time inputs
- TimeRangeCompiler: time range -> timestamp predicate
- FilterCompiler: filters -> conjunctive predicate with session subqueries
- pattern_to_regex / build_prefix_regex: wildcard paths -> anchored regexes

Usage:
    from site_analytics.query import (
        FilterCompiler,
        TimeRangeCompiler,
        TimeRangeSpec,
        capture_now,
        parse_filters,
    )

    now = capture_now()
    time = TimeRangeCompiler(now).compile(TimeRangeSpec.from_params(request.query))
    filters = FilterCompiler().compile(parse_filters(request.query["filters"]), site_id, time)
"""

from .compiler import (
    COORDINATE_TOLERANCE,
    PARAMETER_STRATEGIES,
    ColumnStrategy,
    FilterCompiler,
    IdentityUnionStrategy,
    ParameterStrategy,
    SessionEventStrategy,
    SessionPathStrategy,
    SessionScope,
    ToleranceRangeStrategy,
    UrlParameterStrategy,
)
from .expressions import (
    EMPTY_FRAGMENT,
    CompiledQuery,
    Fragment,
    SQLRenderer,
    merge_params,
    render_fragment,
)
from .patterns import build_prefix_regex, pattern_to_regex
from .schema import site_condition
from .time_range import (
    DateRange,
    PastMinutesRange,
    TimeRangeCompiler,
    capture_now,
    previous_period,
    resolve_time_range,
)
from .types import (
    FILTER_PARAMETERS,
    FilterSpec,
    FilterType,
    TimeRangeSpec,
    is_known_parameter,
    parse_filters,
)

__all__ = [
    # Types
    "FilterSpec",
    "FilterType",
    "TimeRangeSpec",
    "FILTER_PARAMETERS",
    "is_known_parameter",
    "parse_filters",
    # Time ranges
    "TimeRangeCompiler",
    "DateRange",
    "PastMinutesRange",
    "capture_now",
    "previous_period",
    "resolve_time_range",
    # Filters
    "FilterCompiler",
    "ParameterStrategy",
    "ColumnStrategy",
    "UrlParameterStrategy",
    "SessionEventStrategy",
    "SessionPathStrategy",
    "IdentityUnionStrategy",
    "ToleranceRangeStrategy",
    "SessionScope",
    "PARAMETER_STRATEGIES",
    "COORDINATE_TOLERANCE",
    # Rendering
    "Fragment",
    "EMPTY_FRAGMENT",
    "CompiledQuery",
    "SQLRenderer",
    "merge_params",
    "render_fragment",
    "site_condition",
    # Patterns
    "pattern_to_regex",
    "build_prefix_regex",
]
