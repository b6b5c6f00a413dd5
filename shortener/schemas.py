"""Pydantic schemas for request/response validation in the URL shortener.

This module defines Pydantic models for API input validation and output serialization,
ensuring type safety and automatic OpenAPI documentation generation.

Schema Hierarchy
=================
::
    URLCreate (Input)
    ├─ url: str (syntactically valid URL)
    ├─ customCode: str | None (format and length checked by the allocation engine)
    ├─ description: str | None
    └─ expiresAt: datetime | None

    URLCreatedResponse (Output)
    ├─ shortCode, shortUrl, originalUrl, createdAt
    └─ expiresAt

    URLListResponse (Output)
    ├─ data: [URLSummary]
    └─ pagination: Pagination

    SystemSummary / TrendsResponse / MappingDetail (Analytics output)

    CachedMappingPayload (Redis, snake_case)

How to Use
===========
**Step 1 — Input validation**::
    @router.post("/api/shorten")
    async def shorten_url(payload: URLCreate):
        # payload is already validated
        ...

**Step 2 — Response serialization**::
    return URLCreatedResponse(
        short_code=mapping.short_code,
        short_url=f"{settings.BASE_URL}/{mapping.short_code}",
        original_url=mapping.original_url,
        created_at=mapping.created_at,
    )

Key Behaviours
===============
- URL validation uses the validators library for RFC compliance.
- JSON field names are camelCase; Python attributes stay snake_case.
- All datetime fields are timezone-aware on output.
- Models are configured for ORM attribute mapping.

Classes:
    URLCreate:  Input schema for URL shortening requests.
    URLCreatedResponse:  Output schema for created URLs.
    URLSummary / URLListResponse / Pagination:  Listing output.
    DeletionConfirmation:  Output of a deactivation.
    SystemSummary / TrendsResponse / MappingDetail:  Analytics output.
    HealthResponse:  Output schema for health checks.
    ErrorResponse:  Body of every error response.
    CachedMappingPayload:  Redis payload for redirect lookups.
"""

import datetime

import validators
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from shortener.enums import HealthStatus
from shortener.models import as_utc

__all__ = [
    "AccessEntry",
    "AccessSummary",
    "CachedMappingPayload",
    "CountedItem",
    "DeletionConfirmation",
    "ErrorDetail",
    "ErrorResponse",
    "HealthResponse",
    "MappingBrief",
    "MappingDetail",
    "MappingStats",
    "Pagination",
    "SystemSummary",
    "TrendBucket",
    "TrendsResponse",
    "URLCreate",
    "URLCreatedResponse",
    "URLListResponse",
    "URLSummary",
]


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    @field_validator("*", mode="after", check_fields=False)
    @classmethod
    def ensure_utc(cls, v):
        if isinstance(v, datetime.datetime):
            return as_utc(v)
        return v


class URLCreate(CamelModel):
    url: str
    custom_code: str | None = None
    description: str | None = None
    expires_at: datetime.datetime | None = None

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("URL is required")
        if not validators.url(v):
            raise ValueError("Invalid URL provided")
        return v

    @field_validator("description")
    @classmethod
    def validate_description(cls, v: str | None) -> str | None:
        if v is None:
            return None
        return v.strip() or None


class URLCreatedResponse(CamelModel):
    short_code: str
    short_url: str
    original_url: str
    created_at: datetime.datetime
    expires_at: datetime.datetime | None = None


class URLSummary(CamelModel):
    short_code: str
    original_url: str
    description: str | None = None
    click_count: int
    is_active: bool
    created_at: datetime.datetime
    last_accessed_at: datetime.datetime | None = None
    expires_at: datetime.datetime | None = None


class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    pages: int


class URLListResponse(CamelModel):
    data: list[URLSummary]
    pagination: Pagination


class DeletionConfirmation(CamelModel):
    short_code: str
    deactivated_at: datetime.datetime


class MappingBrief(CamelModel):
    short_code: str
    original_url: str
    click_count: int
    created_at: datetime.datetime


class SystemSummary(CamelModel):
    total_active: int
    total_clicks: int
    average_clicks_per_mapping: float
    top_by_clicks: list[MappingBrief]
    most_recent: list[MappingBrief]
    generated_at: datetime.datetime


class TrendBucket(CamelModel):
    date: datetime.date
    creations: int
    clicks: int


class TrendsResponse(CamelModel):
    days: int
    start_date: datetime.date
    end_date: datetime.date
    total_creations: int
    total_clicks: int
    buckets: list[TrendBucket]


class AccessEntry(CamelModel):
    timestamp: datetime.datetime
    user_agent: str
    ip_address: str
    referer: str


class CountedItem(CamelModel):
    item: str
    count: int


class MappingStats(CamelModel):
    total_clicks: int
    last_accessed_at: datetime.datetime | None = None
    created_at: datetime.datetime
    expires_at: datetime.datetime | None = None
    is_expired: bool
    days_old: int
    avg_clicks_per_day: float


class AccessSummary(CamelModel):
    unique_user_agents: int
    unique_ip_addresses: int
    top_user_agents: list[CountedItem]
    top_ip_addresses: list[CountedItem]


class MappingDetail(CamelModel):
    short_code: str
    original_url: str
    description: str | None = None
    stats: MappingStats
    recent_accesses: list[AccessEntry]
    summary: AccessSummary


class HealthResponse(BaseModel):
    status: HealthStatus
    database: HealthStatus
    cache: HealthStatus


class ErrorDetail(BaseModel):
    field: str
    message: str


class ErrorResponse(BaseModel):
    error: str
    details: list[ErrorDetail] | None = None


class CachedMappingPayload(BaseModel):
    """Redis cache payload for a redirect lookup."""

    id: int
    short_code: str
    original_url: str
    owner_id: str | None = None
    description: str | None = None
    click_count: int = Field(0, ge=0)
    last_accessed_at: datetime.datetime | None = None
    expires_at: datetime.datetime | None = None
    is_active: bool
    created_at: datetime.datetime
    updated_at: datetime.datetime

    model_config = {"from_attributes": True}
