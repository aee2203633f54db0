"""Application exception classes."""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorCode(StrEnum):
    """Machine-readable error codes surfaced to callers."""

    NOT_FOUND = "NOT_FOUND"
    SEARCH_FAILED = "SEARCH_FAILED"
    NO_FORECAST = "NO_FORECAST"
    FORECAST_FAILED = "FORECAST_FAILED"
    RANKING_FAILED = "RANKING_FAILED"
    COMPLEXITY_EXCEEDED = "COMPLEXITY_EXCEEDED"


class ConfigError(Exception):
    """Raised when configuration is invalid or incomplete."""


class FetchError(Exception):
    """Raised when a provider request fails or returns malformed data."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class QueryError(Exception):
    """Raised by the query orchestrator with a stable code and message."""

    def __init__(self, code: ErrorCode, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code.value, "message": self.message}
