"""
Time-range compilation.

Turns a TimeRangeSpec into a predicate on the event timestamp. Timestamps
in the event store are naive UTC, so every bound computed here is converted
to UTC and stripped of tzinfo before it is bound.

"Now" is captured once per logical request (``capture_now``) and handed to
``TimeRangeCompiler``; every compilation done with that compiler (current
and previous period, several panels of one dashboard) sees the same
instant.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..exceptions import ValidationError
from .expressions import (
    EMPTY_FRAGMENT,
    And,
    Compare,
    CurrentTimestamp,
    Expression,
    Fragment,
    Param,
    Raw,
    render_fragment,
)
from .schema import TIMESTAMP
from .types import TimeRangeSpec

logger = logging.getLogger(__name__)

_DATE_FORMAT = re.compile(r"^\d{4}-\d{2}-\d{2}$")

TIME_START_PARAM = "time_start"
TIME_END_PARAM = "time_end"
_OUT_OF_RANGE = "outside the supported calendar range"


def capture_now() -> datetime:
    """The instant a logical request is answered at (timezone-aware UTC)."""
    return datetime.now(UTC)


@dataclass(frozen=True)
class DateRange:
    """Validated absolute range; both dates inclusive, in ``zone``."""

    start: date
    end: date
    zone: ZoneInfo


@dataclass(frozen=True)
class PastMinutesRange:
    """Validated relative window ``(now - start, now - end]``."""

    start: float
    end: float


def resolve_time_range(spec: TimeRangeSpec | None) -> DateRange | PastMinutesRange | None:
    """Validate a spec and return the variant it selects.

    A time zone on its own is not a partial range: the dashboard sends it
    with every request, including past-minutes and unrestricted ones.

    Raises:
        ValidationError: If both variants are present, a variant is partial,
            a value is malformed, or a range is empty or inverted.
    """
    if spec is None:
        return None

    if spec.has_dates and spec.has_past_minutes:
        raise ValidationError(
            "time_range", "cannot combine start_date/end_date with past_minutes_start/end"
        )

    if spec.has_dates:
        if not (spec.start_date and spec.end_date and spec.time_zone):
            raise ValidationError(
                "time_range", "start_date, end_date and time_zone must be supplied together"
            )
        start = _parse_date(spec.start_date, "start_date")
        end = _parse_date(spec.end_date, "end_date")
        if start > end:
            raise ValidationError("start_date", "must not be after end_date", spec.start_date)
        return DateRange(start=start, end=end, zone=_parse_zone(spec.time_zone))

    if spec.has_past_minutes:
        start, end = spec.past_minutes_start, spec.past_minutes_end
        if start is None or end is None:
            raise ValidationError(
                "time_range", "past_minutes_start and past_minutes_end must be supplied together"
            )
        if any(isinstance(v, float) and not math.isfinite(v) for v in (start, end)):
            raise ValidationError("time_range", "past minutes must be finite numbers")
        if start < 0 or end < 0:
            raise ValidationError("time_range", "past minutes must not be negative")
        if start <= end:
            raise ValidationError(
                "past_minutes_start", "must be greater than past_minutes_end", start
            )
        return PastMinutesRange(start=start, end=end)

    return None


def _parse_date(value: str, field: str) -> date:
    if not _DATE_FORMAT.match(value):
        raise ValidationError(field, "must be a YYYY-MM-DD date", value)
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError(field, "is not a valid calendar date", value) from None


def _parse_zone(value: str) -> ZoneInfo:
    try:
        return ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError("time_zone", "unknown time zone", value) from None


def _utc_naive(moment: datetime) -> datetime:
    return moment.astimezone(UTC).replace(tzinfo=None)


def _start_of_day(day: date, zone: ZoneInfo) -> datetime:
    return _utc_naive(datetime.combine(day, time.min, tzinfo=zone))


class TimeRangeCompiler:
    """Compiles TimeRangeSpecs against one captured instant.

    Example:
        >>> compiler = TimeRangeCompiler(capture_now())
        >>> fragment = compiler.compile(TimeRangeSpec(past_minutes_start=30, past_minutes_end=0))
        >>> fragment.sql
        'AND ("timestamp" > $time_start AND "timestamp" <= $time_end)'
    """

    def __init__(self, now: datetime | None = None) -> None:
        if now is None:
            now = capture_now()
        elif now.tzinfo is None:
            now = now.replace(tzinfo=UTC)
        self.now = now

    def condition(self, spec: TimeRangeSpec | None) -> Expression | None:
        """Build the timestamp condition, or None when unrestricted."""
        resolved = resolve_time_range(spec)

        if isinstance(resolved, DateRange):
            return self._date_condition(resolved)
        if isinstance(resolved, PastMinutesRange):
            return self._past_minutes_condition(resolved)
        return None

    def compile(self, spec: TimeRangeSpec | None) -> Fragment:
        """Compile a spec into an ``AND``-led fragment (empty when unrestricted)."""
        condition = self.condition(spec)
        if condition is None:
            return EMPTY_FRAGMENT
        fragment = render_fragment([condition], prefix="t")
        logger.debug("Compiled time range: %s", fragment.sql)
        return fragment

    def _date_condition(self, resolved: DateRange) -> Expression:
        try:
            lower = Param(_start_of_day(resolved.start, resolved.zone), name=TIME_START_PARAM)
        except OverflowError:
            raise ValidationError("start_date", _OUT_OF_RANGE, str(resolved.start)) from None

        # A range ending today stops at the store's clock instead of the
        # end of the day, so "today" never reports ahead of real time.
        today = self.now.astimezone(resolved.zone).date()
        if resolved.end == today:
            upper: Expression = CurrentTimestamp()
        else:
            try:
                end_of_range = _start_of_day(resolved.end + timedelta(days=1), resolved.zone)
            except OverflowError:
                raise ValidationError("end_date", _OUT_OF_RANGE, str(resolved.end)) from None
            upper = Param(end_of_range, name=TIME_END_PARAM)

        return And(
            (
                Compare(Raw(TIMESTAMP), ">=", lower),
                Compare(Raw(TIMESTAMP), "<", upper),
            )
        )

    def _past_minutes_condition(self, resolved: PastMinutesRange) -> Expression:
        try:
            start = _utc_naive(self.now - timedelta(minutes=resolved.start)).replace(microsecond=0)
            end = _utc_naive(self.now - timedelta(minutes=resolved.end)).replace(microsecond=0)
        except OverflowError:
            raise ValidationError("past_minutes_start", _OUT_OF_RANGE, resolved.start) from None
        return And(
            (
                Compare(Raw(TIMESTAMP), ">", Param(start, name=TIME_START_PARAM)),
                Compare(Raw(TIMESTAMP), "<=", Param(end, name=TIME_END_PARAM)),
            )
        )


def previous_period(spec: TimeRangeSpec | None) -> TimeRangeSpec | None:
    """The equally long period immediately before ``spec``.

    Date ranges shift back by their length in days; past-minutes windows
    shift back by their width. Returns None for an unrestricted spec.
    """
    resolved = resolve_time_range(spec)

    if isinstance(resolved, DateRange):
        length = resolved.end - resolved.start + timedelta(days=1)
        try:
            start = resolved.start - length
        except OverflowError:
            raise ValidationError("start_date", _OUT_OF_RANGE, spec.start_date) from None
        return TimeRangeSpec(
            start_date=start.isoformat(),
            end_date=(resolved.end - length).isoformat(),
            time_zone=spec.time_zone,
        )

    if isinstance(resolved, PastMinutesRange):
        width = resolved.start - resolved.end
        return TimeRangeSpec(
            past_minutes_start=resolved.start + width,
            past_minutes_end=resolved.start,
        )

    return None
