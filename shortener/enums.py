"""Shared enums for the URL shortener application.

This module defines the status labels used for health checks, metrics and logging.
Using enums instead of string literals provides type safety and prevents typos.
"""

from enum import StrEnum

__all__ = ["HealthStatus", "RequestStatus", "CacheStatus", "AllocationOutcome", "ClickWriteStatus"]


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    DISABLED = "disabled"


class RequestStatus(StrEnum):
    """Request status values for metrics and logging."""

    SUCCESS = "success"
    NOT_FOUND = "not_found"


class CacheStatus(StrEnum):
    """Cache status values for metrics."""

    HIT = "true"
    MISS = "false"


class AllocationOutcome(StrEnum):
    """Result labels for allocation metrics."""

    CREATED = "created"
    DEDUPLICATED = "deduplicated"
    INVALID_INPUT = "invalid_input"
    CONFLICT = "conflict"
    GENERATION_EXHAUSTED = "generation_exhausted"
    TRANSIENT_CONFLICT = "transient_conflict"


class ClickWriteStatus(StrEnum):
    """Outcome of a background click write."""

    RECORDED = "recorded"
    FAILED = "failed"
