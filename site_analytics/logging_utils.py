"""
Structured logging for the query service.

Dashboard queries are served from containers whose log pipeline expects one
JSON object per line. Query context passed through ``extra`` (site id, query
name, row count, duration) becomes top-level keys of that object, so a slow
panel can be found by filtering on ``query`` and ``duration_ms``.
"""

from __future__ import annotations

import json
import logging
import sys
import time
from collections.abc import Iterator, MutableMapping
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any

SERVICE_NAME = "site_analytics"

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
    "taskName",
}


def _json_safe(value: Any) -> Any:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value


class StructuredJsonFormatter(logging.Formatter):
    """
    One-line JSON formatter.

    Output fields:
    - timestamp: record creation time, ISO 8601 in UTC
    - level, logger, message
    - service: always ``site_analytics``
    - exception: formatted traceback, when present
    - any context passed through ``extra``
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "service": SERVICE_NAME,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        entry.update(
            (key, _json_safe(value))
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        )
        return json.dumps(entry, default=str)


_TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def configure_structured_logging(
    level: int | str = logging.INFO,
    logger_name: str | None = None,
    json_output: bool = True,
) -> logging.Logger:
    """
    Send a logger's records to stdout.

    Args:
        level: Logging level (default: INFO)
        logger_name: Logger to configure (default: root logger)
        json_output: JSON lines when True, plain text for local runs

    Returns:
        The configured logger. Handlers it already had are replaced.
    """
    logger = logging.getLogger(logger_name)
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        StructuredJsonFormatter() if json_output else logging.Formatter(_TEXT_FORMAT)
    )
    logger.addHandler(handler)
    logger.setLevel(level)
    return logger


def get_analytics_logger(name: str) -> logging.Logger:
    """Logger named ``site_analytics.<name>`` (e.g. ``service``, ``duckdb``)."""
    return logging.getLogger(f"{SERVICE_NAME}.{name}")


class QueryLoggerAdapter(logging.LoggerAdapter):
    """
    Adds query context to every record logged while answering one request.

    Example:
        >>> log = QueryLoggerAdapter(logger, {"site_id": 42, "query": "overview"})
        >>> with log.timed() as stats:
        ...     rows = await store.query(sql, params)
        ...     stats["rows"] = len(rows)
    """

    def process(
        self, msg: str, kwargs: MutableMapping[str, Any]
    ) -> tuple[str, MutableMapping[str, Any]]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs

    @contextmanager
    def timed(self, level: int = logging.INFO) -> Iterator[dict[str, Any]]:
        """Log one "query finished" record with ``duration_ms``.

        Keys the caller puts into the yielded dict (such as ``rows``) are
        added to the record. Nothing is logged if the block raises.
        """
        stats: dict[str, Any] = {}
        started = time.perf_counter()
        yield stats
        stats["duration_ms"] = round((time.perf_counter() - started) * 1000, 2)
        self.log(level, "%s finished", self.extra.get("query", "query"), extra=stats)
