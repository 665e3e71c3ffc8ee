"""Tests for filter compilation.

Exact SQL is asserted here; tests/test_service.py checks the same filters
against real DuckDB rows.
"""

from __future__ import annotations

from datetime import datetime

import pytest

from site_analytics.exceptions import ValidationError
from site_analytics.query import (
    FILTER_PARAMETERS,
    PARAMETER_STRATEGIES,
    FilterCompiler,
    FilterSpec,
    FilterType,
    TimeRangeCompiler,
    TimeRangeSpec,
)


def spec(parameter: str, filter_type: str, *values: str) -> FilterSpec:
    return FilterSpec(parameter=parameter, type=FilterType(filter_type), value=tuple(values))


@pytest.fixture
def compiler() -> FilterCompiler:
    return FilterCompiler()


class TestStrategyTable:
    """Tests for the parameter -> strategy mapping."""

    def test_every_parameter_has_a_strategy(self) -> None:
        assert set(PARAMETER_STRATEGIES) == FILTER_PARAMETERS

    def test_unknown_parameter_rejected(self, compiler: FilterCompiler) -> None:
        with pytest.raises(ValidationError):
            compiler.compile([spec("favourite_color", "equals", "blue")], site_id=1)

    def test_no_filters_is_empty_fragment(self, compiler: FilterCompiler) -> None:
        fragment = compiler.compile([], site_id=1)

        assert fragment.sql == ""
        assert fragment.params == {}


class TestColumnFilters:
    """Tests for plain and computed column filters."""

    def test_equals_values_are_ored(self, compiler: FilterCompiler) -> None:
        fragment = compiler.compile([spec("country", "equals", "US", "DE")], site_id=1)

        assert fragment.sql == "AND (country = $f1 OR country = $f2)"
        assert fragment.params == {"f1": "US", "f2": "DE"}

    def test_not_equals_values_are_anded(self, compiler: FilterCompiler) -> None:
        """Excluding US and DE drops both."""
        fragment = compiler.compile([spec("country", "not_equals", "US", "DE")], site_id=1)

        assert fragment.sql == (
            "AND (country IS DISTINCT FROM $f1 AND country IS DISTINCT FROM $f2)"
        )

    def test_contains_wraps_value(self, compiler: FilterCompiler) -> None:
        fragment = compiler.compile([spec("pathname", "contains", "blog")], site_id=1)

        assert fragment.sql == "AND pathname LIKE $f1"
        assert fragment.params == {"f1": "%blog%"}

    def test_not_contains(self, compiler: FilterCompiler) -> None:
        fragment = compiler.compile(
            [spec("page_title", "not_contains", "draft", "test")], site_id=1
        )

        assert fragment.sql == (
            "AND (coalesce(page_title, '') NOT LIKE $f1"
            " AND coalesce(page_title, '') NOT LIKE $f2)"
        )
        assert fragment.params == {"f1": "%draft%", "f2": "%test%"}

    def test_multiple_filters_are_anded(self, compiler: FilterCompiler) -> None:
        fragment = compiler.compile(
            [spec("country", "equals", "US"), spec("browser", "equals", "Chrome")], site_id=1
        )

        assert fragment.sql == "AND country = $f1 AND browser = $f2"
        assert fragment.params == {"f1": "US", "f2": "Chrome"}

    def test_values_are_never_inlined(self, compiler: FilterCompiler) -> None:
        hostile = "x' OR 1=1 --"
        fragment = compiler.compile([spec("city", "equals", hostile)], site_id=1)

        assert hostile not in fragment.sql
        assert fragment.params == {"f1": hostile}

    @pytest.mark.parametrize(
        "parameter,expression",
        [
            ("dimensions", "concat(CAST(screen_width AS VARCHAR), 'x'"),
            ("browser_version", "concat(CAST(browser AS VARCHAR), ' '"),
            ("operating_system_version", "'Windows 10/11'"),
            ("city", "concat(CAST(region AS VARCHAR), '-'"),
            ("referrer", "regexp_extract(referrer"),
        ],
    )
    def test_computed_columns(self, compiler: FilterCompiler, parameter: str, expression: str) -> None:
        fragment = compiler.compile([spec(parameter, "equals", "v")], site_id=1)

        assert expression in fragment.sql
        assert fragment.sql.endswith("= $f1")


class TestUrlParameterFilters:
    """Tests for utm_* and url_param:<name> filters."""

    def test_utm_parameter(self, compiler: FilterCompiler) -> None:
        fragment = compiler.compile([spec("utm_source", "equals", "google")], site_id=1)

        assert fragment.sql == (
            "AND json_extract_string(url_parameters, '$.\"utm_source\"') = $f1"
        )
        assert fragment.params == {"f1": "google"}

    def test_custom_url_parameter(self, compiler: FilterCompiler) -> None:
        fragment = compiler.compile([spec("url_param:ref", "contains", "partner")], site_id=1)

        assert fragment.sql == "AND json_extract_string(url_parameters, '$.\"ref\"') LIKE $f1"
        assert fragment.params == {"f1": "%partner%"}

    def test_invalid_url_parameter_name_rejected(self, compiler: FilterCompiler) -> None:
        with pytest.raises(ValidationError):
            compiler.compile([spec("url_param:a'b", "equals", "x")], site_id=1)


class TestIdentityFilter:
    """Tests for the user_id filter (device id or identified id)."""

    def test_equals_matches_either_id(self, compiler: FilterCompiler) -> None:
        fragment = compiler.compile([spec("user_id", "equals", "abc")], site_id=1)

        assert fragment.sql == "AND (user_id = $f1 OR identified_user_id = $f1)"
        assert fragment.params == {"f1": "abc"}

    def test_not_equals_requires_both_to_differ(self, compiler: FilterCompiler) -> None:
        fragment = compiler.compile([spec("user_id", "not_equals", "abc")], site_id=1)

        assert fragment.sql == (
            "AND (user_id IS DISTINCT FROM $f1 AND identified_user_id IS DISTINCT FROM $f1)"
        )
        assert fragment.params == {"f1": "abc"}

    def test_multiple_values(self, compiler: FilterCompiler) -> None:
        fragment = compiler.compile([spec("user_id", "equals", "a", "b")], site_id=1)

        assert fragment.sql == (
            "AND ((user_id = $f1 OR identified_user_id = $f1) "
            "OR (user_id = $f2 OR identified_user_id = $f2))"
        )


class TestCoordinateFilters:
    """Tests for lat/lon tolerance matching."""

    def test_equals_is_a_tolerance_window(self, compiler: FilterCompiler) -> None:
        fragment = compiler.compile([spec("lat", "equals", "40.7128")], site_id=1)

        assert fragment.sql == "AND (lat >= 40.7118 AND lat <= 40.7138)"
        assert fragment.params == {}

    def test_not_equals_is_outside_window(self, compiler: FilterCompiler) -> None:
        fragment = compiler.compile([spec("lon", "not_equals", "-74.006")], site_id=1)

        assert fragment.sql == "AND (lon < -74.007 OR lon > -74.005 OR lon IS NULL)"

    @pytest.mark.parametrize("value", ["north", "1; DROP TABLE events", "nan", "inf", ""])
    def test_non_numeric_rejected(self, compiler: FilterCompiler, value: str) -> None:
        with pytest.raises(ValidationError):
            compiler.compile([spec("lat", "equals", value)], site_id=1)

    def test_contains_rejected(self, compiler: FilterCompiler) -> None:
        with pytest.raises(ValidationError):
            compiler.compile([spec("lat", "contains", "40")], site_id=1)


class TestSessionFilters:
    """Tests for event_name, entry_page and exit_page."""

    def test_event_name_selects_sessions(self, compiler: FilterCompiler) -> None:
        fragment = compiler.compile([spec("event_name", "equals", "signup")], site_id=7)

        assert fragment.sql == (
            "AND session_id IN (SELECT DISTINCT session_id FROM events "
            "WHERE site_id = $site_id AND event_name = $f1)"
        )
        assert fragment.params == {"site_id": 7, "f1": "signup"}

    def test_event_name_exclusion_drops_matching_sessions(self, compiler: FilterCompiler) -> None:
        fragment = compiler.compile(
            [spec("event_name", "not_equals", "signup", "purchase")], site_id=7
        )

        assert fragment.sql == (
            "AND session_id NOT IN (SELECT DISTINCT session_id FROM events "
            "WHERE site_id = $site_id AND (event_name = $f1 OR event_name = $f2))"
        )

    def test_entry_page(self, compiler: FilterCompiler) -> None:
        fragment = compiler.compile([spec("entry_page", "equals", "/landing")], site_id=1)

        assert fragment.sql == (
            "AND session_id IN (SELECT session_id FROM ("
            'SELECT session_id, arg_min(pathname, "timestamp") AS entry_pathname '
            "FROM events WHERE site_id = $site_id GROUP BY session_id"
            ") AS entry_pathnames WHERE entry_pathname = $f1)"
        )
        assert fragment.params == {"site_id": 1, "f1": "/landing"}

    def test_exit_page_uses_last_pathname(self, compiler: FilterCompiler) -> None:
        fragment = compiler.compile([spec("exit_page", "not_equals", "/a", "/b")], site_id=1)

        assert 'arg_max(pathname, "timestamp") AS exit_pathname' in fragment.sql
        assert fragment.sql.startswith("AND session_id IN (")
        assert fragment.sql.endswith(
            "WHERE exit_pathname IS DISTINCT FROM $f1 AND exit_pathname IS DISTINCT FROM $f2)"
        )

    def test_subqueries_share_the_time_range(
        self, compiler: FilterCompiler, fixed_now: datetime
    ) -> None:
        """Session subqueries look at the same window as the outer query."""
        time = TimeRangeCompiler(fixed_now).compile(
            TimeRangeSpec(past_minutes_start=30, past_minutes_end=0)
        )
        fragment = compiler.compile([spec("event_name", "equals", "signup")], site_id=1, time=time)

        assert fragment.sql == (
            "AND session_id IN (SELECT DISTINCT session_id FROM events "
            'WHERE site_id = $site_id AND "timestamp" > $time_start '
            'AND "timestamp" <= $time_end AND event_name = $f1)'
        )
        assert fragment.params["time_start"] == time.params["time_start"]
        assert fragment.params["time_end"] == time.params["time_end"]
