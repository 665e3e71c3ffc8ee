"""
Predicate expression tree and its SQL renderer.

Compilers build small trees of ``Compare``/``And``/``Or``/``InSubquery``
nodes; ``SQLRenderer`` turns a tree into DuckDB SQL. Every user-supplied
literal is a ``Param`` and is rendered as a named placeholder (``$name``),
so the rendered text only ever contains trusted column expressions, numbers
that were parsed beforehand, and placeholder names.

A rendered predicate is a ``Fragment``: empty, or starting with ``AND `` so
fragments can be appended to a ``WHERE`` clause in any order.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from ..exceptions import QueryCompilationError

COMPARISON_OPERATORS = frozenset(
    {"=", "!=", "<", "<=", ">", ">=", "LIKE", "NOT LIKE", "IS DISTINCT FROM"}
)


class Expression(ABC):
    """A node of a predicate tree."""

    @abstractmethod
    def render(self, renderer: SQLRenderer) -> str:
        """Render this node to SQL, binding parameters on the renderer."""


@dataclass(frozen=True)
class Raw(Expression):
    """Trusted SQL text: a column reference or a computed column expression."""

    sql: str

    def render(self, renderer: SQLRenderer) -> str:
        return self.sql


@dataclass(frozen=True, eq=False)
class Param(Expression):
    """A bound literal.

    Unnamed params get a generated name; named params (``time_start``,
    ``site_id``) keep theirs so separately rendered fragments can share them.
    The same Param node rendered twice binds once.
    """

    value: Any
    name: str | None = None

    def render(self, renderer: SQLRenderer) -> str:
        return renderer.bind(self)


@dataclass(frozen=True)
class Number(Expression):
    """A numeric literal inlined as a bare number."""

    value: Decimal

    def render(self, renderer: SQLRenderer) -> str:
        return format(self.value, "f")


@dataclass(frozen=True)
class CurrentTimestamp(Expression):
    """The store's own clock, as a UTC timestamp."""

    def render(self, renderer: SQLRenderer) -> str:
        return "CAST(now() AS TIMESTAMP)"


@dataclass(frozen=True)
class Compare(Expression):
    left: Expression
    op: str
    right: Expression

    def __post_init__(self) -> None:
        if self.op not in COMPARISON_OPERATORS:
            raise QueryCompilationError(f"Unsupported comparison operator: {self.op}")

    def render(self, renderer: SQLRenderer) -> str:
        return f"{self.left.render(renderer)} {self.op} {self.right.render(renderer)}"


@dataclass(frozen=True)
class IsNull(Expression):
    operand: Expression

    def render(self, renderer: SQLRenderer) -> str:
        return f"{self.operand.render(renderer)} IS NULL"


@dataclass(frozen=True)
class Call(Expression):
    """A function call whose name is trusted, e.g. ``regexp_matches``."""

    function: str
    args: tuple[Expression, ...]

    def render(self, renderer: SQLRenderer) -> str:
        return f"{self.function}({', '.join(a.render(renderer) for a in self.args)})"


@dataclass(frozen=True)
class And(Expression):
    items: tuple[Expression, ...]

    def render(self, renderer: SQLRenderer) -> str:
        return _render_junction(self.items, " AND ", renderer)


@dataclass(frozen=True)
class Or(Expression):
    items: tuple[Expression, ...]

    def render(self, renderer: SQLRenderer) -> str:
        return _render_junction(self.items, " OR ", renderer)


def _render_junction(items: tuple[Expression, ...], joiner: str, renderer: SQLRenderer) -> str:
    if len(items) == 1:
        return items[0].render(renderer)
    return "(" + joiner.join(item.render(renderer) for item in items) + ")"


@dataclass(frozen=True)
class Select(Expression):
    """A minimal SELECT used for session-scoped subqueries."""

    columns: tuple[str, ...]
    source: str | Select
    where: Expression | None = None
    group_by: tuple[str, ...] = ()
    distinct: bool = False
    alias: str | None = None

    def render(self, renderer: SQLRenderer) -> str:
        parts = ["SELECT DISTINCT" if self.distinct else "SELECT", ", ".join(self.columns)]
        if isinstance(self.source, Select):
            alias = self.source.alias or "derived"
            parts.append(f"FROM ({self.source.render(renderer)}) AS {alias}")
        else:
            parts.append(f"FROM {self.source}")
        if self.where is not None:
            parts.append(f"WHERE {renderer.render_condition(self.where)}")
        if self.group_by:
            parts.append(f"GROUP BY {', '.join(self.group_by)}")
        return " ".join(parts)


@dataclass(frozen=True)
class InSubquery(Expression):
    column: str
    query: Select
    negated: bool = False

    def render(self, renderer: SQLRenderer) -> str:
        keyword = "NOT IN" if self.negated else "IN"
        return f"{self.column} {keyword} ({self.query.render(renderer)})"


def conjoin(items: Iterable[Expression | None]) -> Expression | None:
    """AND together the non-empty items (None when nothing is left)."""
    kept: list[Expression] = []
    for item in items:
        if item is None:
            continue
        if isinstance(item, And):
            kept.extend(item.items)
        else:
            kept.append(item)
    if not kept:
        return None
    return kept[0] if len(kept) == 1 else And(tuple(kept))


def sql_string_literal(text: str) -> str:
    """Quote text as a SQL string literal.

    Only used for values that are already validated against a strict
    pattern (JSON paths for URL parameter names); user literals are bound.
    """
    return "'" + text.replace("'", "''") + "'"


class SQLRenderer:
    """Renders expression trees, collecting named parameters.

    Usage:
        renderer = SQLRenderer(prefix="f")
        sql = renderer.render(expr)
        # Execute: store.query(sql, renderer.params)
    """

    def __init__(self, prefix: str = "p") -> None:
        self.prefix = prefix
        self.params: dict[str, Any] = {}
        self._bound: dict[int, str] = {}
        self._counter = 0

    def _next_name(self) -> str:
        """Generate a unique parameter name."""
        while True:
            self._counter += 1
            name = f"{self.prefix}{self._counter}"
            if name not in self.params:
                return name

    def bind(self, param: Param) -> str:
        key = id(param)
        if key in self._bound:
            return f"${self._bound[key]}"

        if param.name is not None:
            name = param.name
            if name in self.params and self.params[name] != param.value:
                raise QueryCompilationError(
                    f"Parameter ${name} bound to conflicting values", parameter=name
                )
        else:
            name = self._next_name()

        self.params[name] = param.value
        self._bound[key] = name
        return f"${name}"

    def render(self, expr: Expression) -> str:
        return expr.render(self)

    def render_condition(self, expr: Expression) -> str:
        """Render a WHERE-level condition; a top-level AND needs no parentheses."""
        if isinstance(expr, And):
            return " AND ".join(item.render(self) for item in expr.items)
        return expr.render(self)


@dataclass(frozen=True)
class Fragment:
    """A rendered predicate fragment.

    Attributes:
        sql: Empty, or ``AND <condition> [AND <condition> ...]``
        params: Named parameters the SQL references
        condition: The tree the SQL was rendered from (for re-embedding
            in subqueries)
    """

    sql: str = ""
    params: Mapping[str, Any] = field(default_factory=dict)
    condition: Expression | None = None

    def __bool__(self) -> bool:
        return bool(self.sql)

    def __str__(self) -> str:
        """Return fragment with parameters for debugging."""
        param_str = ", ".join(f"${k}={v!r}" for k, v in self.params.items())
        return f"{self.sql}\nParameters: {param_str}"


EMPTY_FRAGMENT = Fragment()


def render_fragment(conditions: Iterable[Expression | None], prefix: str = "p") -> Fragment:
    """Render conditions as one ``AND``-led fragment."""
    items = [c for c in conditions if c is not None]
    if not items:
        return EMPTY_FRAGMENT

    renderer = SQLRenderer(prefix)
    sql = "AND " + " AND ".join(renderer.render(c) for c in items)
    return Fragment(sql=sql, params=dict(renderer.params), condition=conjoin(items))


def merge_params(*sources: Mapping[str, Any]) -> dict[str, Any]:
    """Merge parameter maps of fragments that go into one query."""
    merged: dict[str, Any] = {}
    for source in sources:
        for name, value in source.items():
            if name in merged and merged[name] != value:
                raise QueryCompilationError(
                    f"Parameter ${name} bound to conflicting values", parameter=name
                )
            merged[name] = value
    return merged


@dataclass
class CompiledQuery:
    """A complete parameterized query ready for an EventStore.

    Attributes:
        sql: The SQL text with $name placeholders
        params: Values for the placeholders
    """

    sql: str
    params: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        """Return formatted query for debugging."""
        param_str = ", ".join(f"${k}={v!r}" for k, v in self.params.items())
        return f"{self.sql}\nParameters: {param_str}"
