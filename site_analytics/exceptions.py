"""
Custom exceptions for the analytics query layer.

Compilers, stores and the query service raise these so that route handlers
can answer with ``error.status_code`` and ``error.to_dict()`` without
inspecting driver-specific exception types: validation problems are the
client's fault (400), everything else is the server's.
"""

from typing import Any


class AnalyticsError(Exception):
    """Base exception for all analytics errors."""

    status_code = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Error body for an HTTP response."""
        return {"error": type(self).__name__, "message": self.message, **self.details}


class ValidationError(AnalyticsError):
    """A filter, time range or grouping argument is malformed."""

    status_code = 400

    def __init__(self, field: str, reason: str, value: object | None = None):
        details: dict[str, Any] = {"field": field, "reason": reason}
        if value is not None:
            details["value"] = value if isinstance(value, (str, int, float)) else repr(value)
        super().__init__(f"Invalid {field}: {reason}", details)
        self.field = field
        self.reason = reason
        self.value = value


class QueryCompilationError(AnalyticsError):
    """Predicate fragments cannot be combined into one query."""

    def __init__(self, message: str, parameter: str | None = None):
        super().__init__(message, {"parameter": parameter} if parameter else None)
        self.parameter = parameter


class StorageIOError(AnalyticsError):
    """A read or write against the event or trait store failed."""

    status_code = 503

    def __init__(self, operation: str, path: str | None = None, cause: Exception | None = None):
        details: dict[str, Any] = {"operation": operation}
        if path:
            details["store"] = path
        reason = f" ({type(cause).__name__})" if cause else ""
        super().__init__(f"{operation} failed{reason}", details)
        self.operation = operation
        self.path = path
        self.cause = cause


class StorageConnectionError(AnalyticsError):
    """A store could not be opened, or was used after close().

    Named StorageConnectionError so it does not shadow the builtin.
    """

    status_code = 503

    def __init__(self, endpoint: str, cause: Exception | None = None):
        super().__init__(
            f"Store unavailable: {endpoint}" + (f" ({cause})" if cause else ""),
            {"store": endpoint},
        )
        self.endpoint = endpoint
        self.cause = cause
