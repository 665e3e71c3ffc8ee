"""
Filter compiler: FilterSpecs -> one conjunctive predicate fragment.

Each filter parameter maps to a strategy in ``PARAMETER_STRATEGIES``:

- ``ColumnStrategy``: plain column or computed column expression
- ``UrlParameterStrategy``: lookup in the per-event URL parameter map
- ``SessionEventStrategy``: sessions containing a matching event
- ``SessionPathStrategy``: sessions whose entry/exit page matches
- ``IdentityUnionStrategy``: device id or identified user id
- ``ToleranceRangeStrategy``: numeric match within a fixed tolerance

Filters are ANDed. Values of one filter are ORed for ``equals``/``contains``
and ANDed for ``not_equals``/``not_contains``, so excluding X and Y drops
both instead of keeping everything. Exclusions treat NULL as a value that
matches nothing: a row with no region passes ``region != X``.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from ..exceptions import ValidationError
from .expressions import (
    EMPTY_FRAGMENT,
    And,
    Call,
    Compare,
    Expression,
    Fragment,
    InSubquery,
    IsNull,
    Number,
    Or,
    Param,
    Raw,
    Select,
    conjoin,
    render_fragment,
    sql_string_literal,
)
from .schema import (
    EVENT_NAME,
    EVENTS_TABLE,
    IDENTIFIED_USER_ID,
    PATHNAME,
    SESSION_ID,
    TIMESTAMP,
    URL_PARAMETERS,
    USER_ID,
    site_condition,
)
from .types import URL_PARAM_NAME, FilterSpec, FilterType, url_parameter_name

logger = logging.getLogger(__name__)

COORDINATE_TOLERANCE = Decimal("0.001")

# Computed column expressions (DuckDB dialect).
REFERRER_DOMAIN = (
    "regexp_replace("
    "regexp_extract(referrer, '^(?:[A-Za-z][A-Za-z0-9+.-]*://)?([^/:?#]+)', 1), "
    "'^www\\.', '')"
)
DIMENSIONS = "concat(CAST(screen_width AS VARCHAR), 'x', CAST(screen_height AS VARCHAR))"
REGION_CITY = "concat(CAST(region AS VARCHAR), '-', CAST(city AS VARCHAR))"
BROWSER_WITH_VERSION = "concat(CAST(browser AS VARCHAR), ' ', CAST(browser_version AS VARCHAR))"
_OS_WITH_VERSION = (
    "concat(CAST(operating_system AS VARCHAR), ' ', CAST(operating_system_version AS VARCHAR))"
)
# Windows 11 reports itself as Windows 10; the two are indistinguishable.
OS_WITH_VERSION = (
    f"CASE WHEN {_OS_WITH_VERSION} = 'Windows 10' THEN 'Windows 10/11' "
    f"ELSE {_OS_WITH_VERSION} END"
)


def _literal(filter_type: FilterType, value: str) -> Param:
    return Param(f"%{value}%" if filter_type.is_pattern else value)


def _compare(column: Expression, filter_type: FilterType, param: Param) -> Expression:
    """Compare one value, null-safely for exclusions."""
    if filter_type is FilterType.NOT_EQUALS:
        return Compare(column, "IS DISTINCT FROM", param)
    if filter_type is FilterType.NOT_CONTAINS:
        return Compare(Call("coalesce", (column, Raw("''"))), filter_type.operator, param)
    return Compare(column, filter_type.operator, param)


def _junction(filter_type: FilterType, items: Sequence[Expression]) -> Expression:
    """Combine per-value conditions: AND for exclusions, OR otherwise."""
    if len(items) == 1:
        return items[0]
    return And(tuple(items)) if filter_type.negated else Or(tuple(items))


@dataclass(frozen=True)
class SessionScope:
    """Site and time restriction applied inside session subqueries."""

    site_id: int
    time: Expression | None = None

    def where(self, *conditions: Expression) -> Expression:
        return conjoin([site_condition(self.site_id), self.time, *conditions])


class ParameterStrategy(ABC):
    """Builds the condition for one filter parameter."""

    @abstractmethod
    def build(self, spec: FilterSpec, scope: SessionScope) -> Expression:
        """Return the condition selecting rows that pass ``spec``."""


@dataclass(frozen=True)
class ColumnStrategy(ParameterStrategy):
    """Compare a column (or computed expression) with each value."""

    expression: str

    def build(self, spec: FilterSpec, scope: SessionScope) -> Expression:
        column = Raw(self.expression)
        return _junction(
            spec.type,
            [_compare(column, spec.type, _literal(spec.type, v)) for v in spec.value],
        )


class UrlParameterStrategy(ColumnStrategy):
    """Compare one entry of the event's URL query parameters."""

    def __init__(self, name: str) -> None:
        if not URL_PARAM_NAME.match(name):
            raise ValidationError("filters.parameter", "invalid URL parameter name", name)
        path = sql_string_literal(f'$."{name}"')
        super().__init__(f"json_extract_string({URL_PARAMETERS}, {path})")


@dataclass(frozen=True)
class SessionEventStrategy(ParameterStrategy):
    """Keep whole sessions that contain a matching event.

    Every pageview of a qualifying session stays in the result, not just
    the matching event rows. Exclusions keep the sessions that contain no
    matching event at all.
    """

    column: str = EVENT_NAME

    def build(self, spec: FilterSpec, scope: SessionScope) -> Expression:
        positive = spec.type.positive
        match = _junction(
            positive,
            [Compare(Raw(self.column), positive.operator, _literal(positive, v)) for v in spec.value],
        )
        sessions = Select(
            columns=(SESSION_ID,),
            source=EVENTS_TABLE,
            where=scope.where(match),
            distinct=True,
        )
        return InSubquery(SESSION_ID, sessions, negated=spec.type.negated)


@dataclass(frozen=True)
class SessionPathStrategy(ParameterStrategy):
    """Match the first (entry) or last (exit) pathname of each session."""

    aggregate: str  # "arg_min" for entry, "arg_max" for exit
    alias: str

    def build(self, spec: FilterSpec, scope: SessionScope) -> Expression:
        per_session = Select(
            columns=(SESSION_ID, f"{self.aggregate}({PATHNAME}, {TIMESTAMP}) AS {self.alias}"),
            source=EVENTS_TABLE,
            where=scope.where(),
            group_by=(SESSION_ID,),
            alias=f"{self.alias}s",
        )
        column = Raw(self.alias)
        matching = Select(
            columns=(SESSION_ID,),
            source=per_session,
            where=_junction(
                spec.type,
                [_compare(column, spec.type, _literal(spec.type, v)) for v in spec.value],
            ),
        )
        return InSubquery(SESSION_ID, matching)


@dataclass(frozen=True)
class IdentityUnionStrategy(ParameterStrategy):
    """A visitor is referenced by device fingerprint or by identified id.

    Inclusion matches either id; exclusion requires both to differ.
    """

    columns: tuple[str, ...] = (USER_ID, IDENTIFIED_USER_ID)

    def build(self, spec: FilterSpec, scope: SessionScope) -> Expression:
        conditions: list[Expression] = []
        for value in spec.value:
            param = _literal(spec.type, value)
            per_column = tuple(_compare(Raw(c), spec.type, param) for c in self.columns)
            conditions.append(And(per_column) if spec.type.negated else Or(per_column))
        return _junction(spec.type, conditions)


@dataclass(frozen=True)
class ToleranceRangeStrategy(ParameterStrategy):
    """Numeric equality relaxed to ``[value - tolerance, value + tolerance]``."""

    column: str
    tolerance: Decimal = COORDINATE_TOLERANCE

    def build(self, spec: FilterSpec, scope: SessionScope) -> Expression:
        if spec.type.is_pattern:
            raise ValidationError(
                f"filters.{spec.parameter}", "only equals/not_equals apply to coordinates"
            )

        column = Raw(self.column)
        conditions: list[Expression] = []
        for value in spec.value:
            target = self._parse(spec.parameter, value)
            low = Number(target - self.tolerance)
            high = Number(target + self.tolerance)
            if spec.type.negated:
                conditions.append(
                    Or((Compare(column, "<", low), Compare(column, ">", high), IsNull(column)))
                )
            else:
                conditions.append(And((Compare(column, ">=", low), Compare(column, "<=", high))))
        return _junction(spec.type, conditions)

    @staticmethod
    def _parse(parameter: str, value: str) -> Decimal:
        try:
            number = Decimal(value.strip())
        except InvalidOperation:
            raise ValidationError(f"filters.{parameter}", "must be numeric", value) from None
        if not number.is_finite():
            raise ValidationError(f"filters.{parameter}", "must be a finite number", value)
        return number


PARAMETER_STRATEGIES: dict[str, ParameterStrategy] = {
    "browser": ColumnStrategy("browser"),
    "browser_version": ColumnStrategy(BROWSER_WITH_VERSION),
    "operating_system": ColumnStrategy("operating_system"),
    "operating_system_version": ColumnStrategy(OS_WITH_VERSION),
    "language": ColumnStrategy("language"),
    "country": ColumnStrategy("country"),
    "region": ColumnStrategy("region"),
    "city": ColumnStrategy(REGION_CITY),
    "lat": ToleranceRangeStrategy("lat"),
    "lon": ToleranceRangeStrategy("lon"),
    "device_type": ColumnStrategy("device_type"),
    "dimensions": ColumnStrategy(DIMENSIONS),
    "referrer": ColumnStrategy(REFERRER_DOMAIN),
    "channel": ColumnStrategy("channel"),
    "hostname": ColumnStrategy("hostname"),
    "pathname": ColumnStrategy(PATHNAME),
    "page_title": ColumnStrategy("page_title"),
    "querystring": ColumnStrategy("querystring"),
    "event_name": SessionEventStrategy(),
    "entry_page": SessionPathStrategy("arg_min", "entry_pathname"),
    "exit_page": SessionPathStrategy("arg_max", "exit_pathname"),
    "user_id": IdentityUnionStrategy(),
}


class FilterCompiler:
    """Compiles a list of FilterSpecs for one site.

    Usage:
        time = TimeRangeCompiler(now).compile(time_range)
        filters = FilterCompiler().compile(specs, site_id, time)
        sql = f"... WHERE site_id = $site_id {time.sql} {filters.sql}"
        params = merge_params(time.params, filters.params, {"site_id": site_id})
    """

    def __init__(self, strategies: Mapping[str, ParameterStrategy] | None = None) -> None:
        self.strategies = dict(PARAMETER_STRATEGIES if strategies is None else strategies)

    def resolve(self, parameter: str) -> ParameterStrategy:
        """Find the strategy for a parameter.

        Raises:
            ValidationError: If the parameter is unknown.
        """
        strategy = self.strategies.get(parameter)
        if strategy is not None:
            return strategy

        name = url_parameter_name(parameter)
        if name is not None:
            return UrlParameterStrategy(name)

        raise ValidationError("filters.parameter", "unknown filter parameter", parameter)

    def conditions(
        self,
        filters: Sequence[FilterSpec],
        site_id: int,
        time: Fragment | Expression | None = None,
    ) -> list[Expression]:
        """Build one condition per filter, in input order."""
        time_condition = time.condition if isinstance(time, Fragment) else time
        scope = SessionScope(site_id=int(site_id), time=time_condition)
        return [self.resolve(spec.parameter).build(spec, scope) for spec in filters]

    def compile(
        self,
        filters: Sequence[FilterSpec],
        site_id: int,
        time: Fragment | Expression | None = None,
    ) -> Fragment:
        """Compile filters into an ``AND``-led fragment (empty for no filters).

        Session subqueries are scoped to ``site_id`` and to the time
        condition, so they only look at the events the outer query sees.
        """
        if not filters:
            return EMPTY_FRAGMENT

        fragment = render_fragment(self.conditions(filters, site_id, time), prefix="f")
        logger.debug("Compiled %d filter(s): %s", len(filters), fragment.sql)
        return fragment
