from __future__ import annotations


class QueryError(Exception):
    """Raised when a single datasource query cannot be answered."""

    def __init__(self, message: str, *, status: int = 400) -> None:
        super().__init__(message)
        self.message = message
        self.status = status


class ValidationError(QueryError):
    """Raised when a query or the plugin settings fail validation."""


class ExecutionError(QueryError):
    """Raised when a call to Step Functions fails."""


class ArnParseError(ValueError):
    """Raised when an ARN string cannot be parsed."""


class SettingsError(ValueError):
    """Raised when datasource instance settings are malformed."""
