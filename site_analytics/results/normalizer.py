"""
Result normalization.

Column stores hand back wide integers and aggregates as strings so that
JSON consumers do not lose precision. The dashboard wants numbers for
counts and ratios, but identifiers must stay exactly as stored: a session
id like ``00123`` or a 20-digit user id would be corrupted by a numeric
round trip.

``ResultNormalizer`` decides per field from a declared schema; fields the
schema does not mention fall back to "numeric if it parses as a number".
A declared numeric field that does not parse is kept as-is and logged.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class FieldKind(Enum):
    """How the normalizer treats a result field."""

    IDENTIFIER = "identifier"  # never coerced
    TEXT = "text"  # never coerced
    NUMBER = "number"  # coerced; a value that does not parse is logged
    AUTO = "auto"  # coerced when the value parses (default for undeclared fields)


IDENTIFIER_FIELDS = frozenset({"session_id", "user_id", "identified_user_id", "effective_user_id"})

DEFAULT_SCHEMA: dict[str, FieldKind] = {name: FieldKind.IDENTIFIER for name in IDENTIFIER_FIELDS}

# Decimal integers, decimals and exponent forms; no hex, no inf/nan.
_NUMERIC = re.compile(r"^\s*[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?\s*$")
_INTEGER = re.compile(r"^\s*[+-]?\d+\s*$")


def parse_number(value: str) -> int | float | None:
    """Parse a string that is entirely a number, else None."""
    if not _NUMERIC.match(value):
        return None
    if _INTEGER.match(value):
        return int(value)
    return float(value)


class ResultNormalizer:
    """Coerces numeric-looking strings in result rows.

    Example:
        >>> ResultNormalizer().normalize([{"session_id": "00123", "count": "42"}])
        [{'session_id': '00123', 'count': 42}]
    """

    def __init__(self, schema: Mapping[str, FieldKind] | None = None) -> None:
        self.schema = dict(DEFAULT_SCHEMA)
        if schema:
            self.schema.update(schema)

    def kind(self, field: str) -> FieldKind:
        return self.schema.get(field, FieldKind.AUTO)

    def normalize_value(self, field: str, value: Any) -> Any:
        if self.kind(field) in (FieldKind.IDENTIFIER, FieldKind.TEXT):
            return value
        # None, booleans and store-typed numbers pass through
        if not isinstance(value, str) or value == "":
            return value
        number = parse_number(value)
        if number is None:
            if self.kind(field) is FieldKind.NUMBER:
                logger.warning("Numeric field %s holds non-numeric value %r", field, value)
            return value
        return number

    def normalize_row(self, row: Mapping[str, Any]) -> dict[str, Any]:
        return {field: self.normalize_value(field, value) for field, value in row.items()}

    def normalize(self, rows: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
        """Return new rows with numeric fields coerced; input rows are untouched."""
        return [self.normalize_row(row) for row in rows]


def normalize_results(rows: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
    """Normalize rows with the default schema.

    Convenience function for simple use cases.
    """
    return ResultNormalizer().normalize(rows)
