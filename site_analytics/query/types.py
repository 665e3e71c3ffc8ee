"""
Filter and time-range specifications.

These are the request-scoped inputs of the query compilers. ``parse_filters``
and ``TimeRangeSpec.from_params`` are the boundary validators: whatever they
return is structurally well-formed, so the compilers only deal with
semantics.
"""

from __future__ import annotations

import json
import math
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..exceptions import ValidationError


class FilterType(str, Enum):
    """How a filter compares the parameter against its values."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"

    @property
    def operator(self) -> str:
        """SQL comparison operator for this filter type."""
        return _OPERATORS[self]

    @property
    def negated(self) -> bool:
        """Exclusion filters combine their values with AND instead of OR."""
        return self in (FilterType.NOT_EQUALS, FilterType.NOT_CONTAINS)

    @property
    def is_pattern(self) -> bool:
        return self in (FilterType.CONTAINS, FilterType.NOT_CONTAINS)

    @property
    def positive(self) -> FilterType:
        """The inclusion counterpart (``not_equals`` -> ``equals``)."""
        if self is FilterType.NOT_EQUALS:
            return FilterType.EQUALS
        if self is FilterType.NOT_CONTAINS:
            return FilterType.CONTAINS
        return self


_OPERATORS = {
    FilterType.EQUALS: "=",
    FilterType.NOT_EQUALS: "!=",
    FilterType.CONTAINS: "LIKE",
    FilterType.NOT_CONTAINS: "NOT LIKE",
}


# Parameters with a fixed meaning. URL query parameters (utm_* and
# url_param:<name>) are open-ended and recognized by prefix.
FILTER_PARAMETERS = frozenset(
    {
        "browser",
        "browser_version",
        "operating_system",
        "operating_system_version",
        "language",
        "country",
        "region",
        "city",
        "lat",
        "lon",
        "device_type",
        "dimensions",
        "referrer",
        "channel",
        "hostname",
        "pathname",
        "page_title",
        "querystring",
        "event_name",
        "entry_page",
        "exit_page",
        "user_id",
    }
)

UTM_PREFIX = "utm_"
URL_PARAM_PREFIX = "url_param:"
URL_PARAM_NAME = re.compile(r"^[A-Za-z0-9_.\-]{1,128}$")


def url_parameter_name(parameter: str) -> str | None:
    """Return the URL query-parameter name a filter parameter refers to, if any."""
    if parameter.startswith(URL_PARAM_PREFIX):
        return parameter[len(URL_PARAM_PREFIX):]
    if parameter.startswith(UTM_PREFIX):
        return parameter
    return None


def is_known_parameter(parameter: str) -> bool:
    """Check a parameter against the fixed set and the URL-parameter forms."""
    if parameter in FILTER_PARAMETERS:
        return True
    name = url_parameter_name(parameter)
    return name is not None and bool(URL_PARAM_NAME.match(name))


@dataclass(frozen=True)
class FilterSpec:
    """A single user-supplied filter.

    Attributes:
        parameter: Filter parameter name (see FILTER_PARAMETERS)
        type: Comparison type
        value: Values to compare against, never empty
    """

    parameter: str
    type: FilterType
    value: tuple[str, ...]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FilterSpec:
        """Validate one raw filter object and build a FilterSpec."""
        if not isinstance(data, Mapping):
            raise ValidationError("filters", "each filter must be an object")

        extra = set(data) - {"parameter", "type", "value"}
        if extra:
            raise ValidationError("filters", f"unexpected fields: {', '.join(sorted(extra))}")

        parameter = data.get("parameter")
        if not isinstance(parameter, str) or not is_known_parameter(parameter):
            raise ValidationError("filters.parameter", "unknown filter parameter", parameter)

        try:
            filter_type = FilterType(data.get("type"))
        except ValueError:
            raise ValidationError("filters.type", "unknown filter type", data.get("type")) from None

        values = data.get("value")
        if isinstance(values, str) or not isinstance(values, Sequence) or not values:
            raise ValidationError("filters.value", "must be a non-empty list of strings")
        if not all(isinstance(v, str) for v in values):
            raise ValidationError("filters.value", "must be a non-empty list of strings")

        return cls(parameter=parameter, type=filter_type, value=tuple(values))


def parse_filters(raw: str | bytes | Sequence[Any] | None) -> list[FilterSpec]:
    """Parse the ``filters`` request payload.

    Accepts the JSON text sent by the dashboard or an already-decoded list.
    An absent or empty payload means "no filters".

    Raises:
        ValidationError: If the payload is not a list of well-formed filters.
    """
    if raw is None or raw == "" or raw == b"":
        return []

    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValidationError("filters", f"not valid JSON: {e.msg}") from e

    if not isinstance(raw, Sequence) or isinstance(raw, (str, bytes)):
        raise ValidationError("filters", "must be a list")

    return [FilterSpec.from_dict(item) for item in raw]


@dataclass(frozen=True)
class TimeRangeSpec:
    """Requested time range: an absolute date range or a past-minutes window.

    Exactly one variant (or none, meaning unrestricted) may be supplied.
    Consistency is checked by TimeRangeCompiler, not here, so a spec can be
    built from raw request values first and rejected with a precise reason.
    """

    start_date: str | None = None
    end_date: str | None = None
    time_zone: str | None = None
    past_minutes_start: float | None = None
    past_minutes_end: float | None = None

    @property
    def has_dates(self) -> bool:
        return self.start_date is not None or self.end_date is not None

    @property
    def has_past_minutes(self) -> bool:
        return self.past_minutes_start is not None or self.past_minutes_end is not None

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> TimeRangeSpec:
        """Build a spec from query-string style values.

        Empty strings count as absent and past-minutes values may arrive as
        strings.
        """

        def text(key: str) -> str | None:
            value = params.get(key)
            if value is None or value == "":
                return None
            return str(value)

        return cls(
            start_date=text("start_date"),
            end_date=text("end_date"),
            time_zone=text("time_zone"),
            past_minutes_start=_minutes(params.get("past_minutes_start"), "past_minutes_start"),
            past_minutes_end=_minutes(params.get("past_minutes_end"), "past_minutes_end"),
        )


def _minutes(value: Any, field: str) -> float | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(field, "must be a number", value)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(field, "must be a number", value) from None
    if not math.isfinite(number):
        raise ValidationError(field, "must be a finite number", value)
    return int(number) if number.is_integer() else number
