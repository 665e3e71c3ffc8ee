"""
Analytics query service.

Runs the full request pipeline for the dashboard's queries:

1. capture one instant for the request
2. compile the time range and the filters against it
3. execute the assembled query on the event store
4. normalize the rows, and enrich them with user traits where wanted

HTTP wiring stays outside; handlers call these coroutines with already
parsed FilterSpecs and TimeRangeSpecs.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from .backends.base import EventStore, TraitStore
from .backends.duckdb import DuckDBEventStore
from .backends.sqlite import SQLiteTraitStore
from .config import AnalyticsSettings
from .exceptions import ValidationError
from .logging_utils import QueryLoggerAdapter
from .query.compiler import FilterCompiler
from .query.expressions import (
    Call,
    CompiledQuery,
    Compare,
    Expression,
    Param,
    Raw,
    merge_params,
    render_fragment,
)
from .query.patterns import build_prefix_regex, pattern_to_regex
from .query.schema import EVENT_TYPE, IDENTIFIED_USER_ID, PATHNAME, SITE_PARAM
from .query.time_range import TimeRangeCompiler, capture_now, previous_period
from .query.types import FilterSpec, TimeRangeSpec
from .results.normalizer import FieldKind, ResultNormalizer
from .results.traits import TraitEnricher

logger = logging.getLogger(__name__)

MAX_LIMIT = 1000

# Columns the service queries produce.
RESULT_SCHEMA = {
    "pageviews": FieldKind.NUMBER,
    "sessions": FieldKind.NUMBER,
    "users": FieldKind.NUMBER,
    PATHNAME: FieldKind.TEXT,
}


def path_pattern_condition(pattern: str) -> Expression:
    """Pathname matches a wildcard pattern (``/blog/*``, ``/docs/**``)."""
    return Call("regexp_matches", (Raw(PATHNAME), Param(pattern_to_regex(pattern))))


def prefix_condition(prefix: str, depth: int | None) -> Expression:
    """Pathname lies under ``prefix``, exactly ``depth`` segments deep if given."""
    return Call("regexp_matches", (Raw(PATHNAME), Param(build_prefix_regex(prefix, depth))))


def pageviews_only() -> Expression:
    return Compare(Raw(EVENT_TYPE), "=", Param("pageview"))


class AnalyticsService:
    """Answers dashboard queries for one event store.

    Example:
        >>> service = await AnalyticsService.create(AnalyticsSettings.from_env())
        >>> counts = await service.pageview_counts(1, "/news", depth=1)
        >>> counts
        {'/news/today': 12, '/news/archive': 3}
    """

    def __init__(
        self,
        events: EventStore,
        traits: TraitStore | None = None,
        normalizer: ResultNormalizer | None = None,
        filter_compiler: FilterCompiler | None = None,
    ) -> None:
        self.events = events
        self.traits = traits
        self.normalizer = normalizer or ResultNormalizer(RESULT_SCHEMA)
        self.filter_compiler = filter_compiler or FilterCompiler()
        self.enricher = TraitEnricher(traits) if traits is not None else None

    @classmethod
    async def create(cls, settings: AnalyticsSettings | None = None) -> AnalyticsService:
        """Open both stores from settings and build a service over them."""
        if settings is None:
            settings = AnalyticsSettings.from_env()

        events = await DuckDBEventStore.create(settings.duckdb)
        try:
            traits = await SQLiteTraitStore.create(settings.sqlite)
        except Exception:
            await events.close()
            raise
        return cls(events, traits)

    async def close(self) -> None:
        await self.events.close()
        if self.traits is not None:
            await self.traits.close()

    # =========================================================================
    # Query assembly
    # =========================================================================

    def build_where(
        self,
        site_id: int,
        filters: Sequence[FilterSpec] = (),
        time_range: TimeRangeSpec | None = None,
        now: datetime | None = None,
        conditions: Sequence[Expression] = (),
    ) -> CompiledQuery:
        """Build ``WHERE site_id = $site_id <conditions> <time> <filters>``.

        Raises:
            ValidationError: If the time range or a filter is invalid.
        """
        time = TimeRangeCompiler(now).compile(time_range)
        compiled_filters = self.filter_compiler.compile(filters, site_id, time)
        extra = render_fragment(conditions, prefix="q")

        sql = " ".join(
            part
            for part in (f"WHERE site_id = ${SITE_PARAM}", extra.sql, time.sql, compiled_filters.sql)
            if part
        )
        params = merge_params(
            {SITE_PARAM: int(site_id)}, extra.params, time.params, compiled_filters.params
        )
        return CompiledQuery(sql=sql, params=params)

    async def execute(self, query: CompiledQuery) -> list[dict[str, Any]]:
        """Run a compiled query and normalize its rows."""
        rows = await self.events.query(query.sql, query.params)
        return self.normalizer.normalize(rows)

    # =========================================================================
    # Dashboard queries
    # =========================================================================

    async def pageview_counts(
        self,
        site_id: int,
        prefix: str,
        depth: int | None = None,
        filters: Sequence[FilterSpec] = (),
        time_range: TimeRangeSpec | None = None,
        now: datetime | None = None,
    ) -> dict[str, int]:
        """Pageviews per pathname under ``prefix`` (optionally at an exact depth)."""
        if not prefix:
            raise ValidationError("prefix", "is required")

        log = QueryLoggerAdapter(logger, {"site_id": site_id, "query": "pageview_counts"})
        where = self.build_where(
            site_id,
            filters,
            time_range,
            now,
            conditions=(pageviews_only(), prefix_condition(prefix, depth)),
        )
        query = CompiledQuery(
            sql=(
                f"SELECT {PATHNAME}, COUNT(*) AS pageviews FROM events {where.sql} "
                f"GROUP BY {PATHNAME} ORDER BY pageviews DESC, {PATHNAME}"
            ),
            params=where.params,
        )
        log.debug("Executing %s", query)

        with log.timed() as stats:
            rows = await self.execute(query)
            stats["rows"] = len(rows)
        return {row[PATHNAME]: row["pageviews"] for row in rows}

    async def overview(
        self,
        site_id: int,
        filters: Sequence[FilterSpec] = (),
        time_range: TimeRangeSpec | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """Session, pageview and visitor totals."""
        where = self.build_where(site_id, filters, time_range, now)
        query = CompiledQuery(
            sql=(
                "SELECT COUNT(DISTINCT session_id) AS sessions, "
                "COUNT(*) FILTER (WHERE type = 'pageview') AS pageviews, "
                "COUNT(DISTINCT user_id) AS users "
                f"FROM events {where.sql}"
            ),
            params=where.params,
        )
        logger.debug("Executing overview for site %s: %s", site_id, query)
        rows = await self.execute(query)
        return rows[0] if rows else {"sessions": 0, "pageviews": 0, "users": 0}

    async def overview_comparison(
        self,
        site_id: int,
        filters: Sequence[FilterSpec] = (),
        time_range: TimeRangeSpec | None = None,
        now: datetime | None = None,
    ) -> dict[str, dict[str, Any] | None]:
        """Overview for the requested period and the period before it.

        Both periods are compiled against the same captured instant.
        """
        if now is None:
            now = capture_now()

        previous = previous_period(time_range)
        if previous is None:
            return {
                "current": await self.overview(site_id, filters, time_range, now),
                "previous": None,
            }

        current_totals, previous_totals = await asyncio.gather(
            self.overview(site_id, filters, time_range, now),
            self.overview(site_id, filters, previous, now),
        )
        return {"current": current_totals, "previous": previous_totals}

    async def identified_users(
        self,
        site_id: int,
        filters: Sequence[FilterSpec] = (),
        time_range: TimeRangeSpec | None = None,
        limit: int = 50,
        now: datetime | None = None,
    ) -> list[dict[str, Any]]:
        """Identified users with their session/pageview counts and traits."""
        if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= MAX_LIMIT:
            raise ValidationError("limit", f"must be an integer between 1 and {MAX_LIMIT}", limit)

        log = QueryLoggerAdapter(logger, {"site_id": site_id, "query": "identified_users"})
        where = self.build_where(
            site_id,
            filters,
            time_range,
            now,
            conditions=(Compare(Raw(IDENTIFIED_USER_ID), "!=", Param("")),),
        )
        query = CompiledQuery(
            sql=(
                f"SELECT {IDENTIFIED_USER_ID}, "
                "COUNT(DISTINCT session_id) AS sessions, "
                "COUNT(*) FILTER (WHERE type = 'pageview') AS pageviews, "
                'MAX("timestamp") AS last_seen '
                f"FROM events {where.sql} "
                f"GROUP BY {IDENTIFIED_USER_ID} "
                f"ORDER BY sessions DESC, {IDENTIFIED_USER_ID} "
                f"LIMIT {limit}"
            ),
            params=where.params,
        )
        log.debug("Executing %s", query)

        with log.timed() as stats:
            rows = await self.execute(query)
            stats["rows"] = len(rows)
        if self.enricher is None:
            return rows
        return await self.enricher.enrich(rows, site_id)
