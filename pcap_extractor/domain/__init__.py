"""Domain layer definitions."""

from .queries import (
    ACTION_REQUEST,
    ACTION_STATUS,
    CheckHealthResult,
    ExecutionStatus,
    HealthStatus,
    QueryModel,
    StepFunctionInput,
    parse_query,
)

__all__ = [
    "ACTION_REQUEST",
    "ACTION_STATUS",
    "CheckHealthResult",
    "ExecutionStatus",
    "HealthStatus",
    "QueryModel",
    "StepFunctionInput",
    "parse_query",
]
