"""Tests for the error hierarchy's HTTP mapping."""

from __future__ import annotations

from site_analytics.exceptions import (
    AnalyticsError,
    QueryCompilationError,
    StorageConnectionError,
    StorageIOError,
    ValidationError,
)


class TestErrorMapping:
    def test_validation_is_client_error(self) -> None:
        error = ValidationError("depth", "must be a positive integer", 0)

        assert error.status_code == 400
        assert error.to_dict() == {
            "error": "ValidationError",
            "message": "Invalid depth: must be a positive integer",
            "field": "depth",
            "reason": "must be a positive integer",
            "value": 0,
        }

    def test_storage_errors_are_unavailable(self) -> None:
        cause = RuntimeError("disk full")

        io_error = StorageIOError("query", ":memory:", cause)
        connection_error = StorageConnectionError("/data/events.duckdb", cause)

        assert io_error.status_code == 503
        assert io_error.message == "query failed (RuntimeError)"
        assert io_error.details == {"operation": "query", "store": ":memory:"}
        assert connection_error.status_code == 503
        assert connection_error.cause is cause

    def test_compilation_error_is_server_error(self) -> None:
        error = QueryCompilationError("conflict", parameter="time_start")

        assert isinstance(error, AnalyticsError)
        assert error.status_code == 500
        assert error.details == {"parameter": "time_start"}
