"""URL Shortener Service Layer - Core Business Logic

This module wires the shortening core to a request: one mapping store over the
request's database session, shared with the allocation engine, the redirect
tracker and the analytics aggregator. Deletion and listing live here directly.

Architecture Overview
==================
::
    ┌─────────────────────────────────────────────────────────────┐
    │                 URLShorteningService                        │
    │  ┌─────────────────┐  ┌─────────────────┐  ┌──────────────┐ │
    │  │ AllocationEngine│  │ RedirectTracker │  │  Analytics   │ │
    │  │ • Dedup         │  │ • Lookup        │  │  Aggregator  │ │
    │  │ • Custom codes  │  │ • Expiry check  │  │ • Summary    │ │
    │  │ • Bounded retry │  │ • Click submit  │  │ • Trends     │ │
    │  └────────┬────────┘  └───┬─────────┬───┘  └──────┬───────┘ │
    └───────────┼───────────────┼─────────┼─────────────┼─────────┘
                ▼               ▼         ▼             ▼
    ┌───────────────────────────────┐ ┌───────────┐ ┌─────────────┐
    │ SQLMappingStore (request      │ │  Redis    │ │ClickRecorder│
    │ session)                      │ │  cache    │ │(own session)│
    └───────────────────────────────┘ └───────────┘ └─────────────┘

How to Use
===========
**Step 1 — Build from the request context**::
    service = URLShorteningService.from_context(ctx)

**Step 2 — Create and resolve**::
    mapping = await service.create_short_url(URLCreate(url="https://example.com"))
    mapping = await service.resolve(mapping.short_code, AccessMetadata(user_agent="curl"))

**Step 3 — Manage**::
    items, pagination = await service.list_urls(page=1, limit=20)
    confirmation = await service.deactivate("abc123", requester_id="user-1")

Key Behaviours
===============
- Deletion is always soft: the row stays, ``is_active`` flips to false and the
  cached redirect is invalidated.
- Ownership failures look exactly like missing codes.
- Listing is newest first with ``limit`` clamped to ``LIST_MAX_LIMIT``.
"""

import math
import time
from typing import TYPE_CHECKING

from prometheus_client import Counter, Histogram

from shortener.allocation import AllocationEngine, AllocationRequest
from shortener.analytics import AnalyticsAggregator
from shortener.codegen import CodeGenerator
from shortener.enums import RequestStatus
from shortener.errors import ShortenerError
from shortener.models import URLMapping, utcnow
from shortener.schemas import DeletionConfirmation, Pagination, URLCreate
from shortener.store import MappingFilter, SQLMappingStore
from shortener.tracker import AccessMetadata, RedirectTracker

if TYPE_CHECKING:
    from shortener.dependencies import RequestContext

__all__ = ["URLShorteningService"]

DEACTIVATION_REQUESTS_TOTAL = Counter(
    "url_shortener_deactivation_requests_total",
    "Total URL deactivation requests",
    ["status"],
)
URL_CREATION_DURATION = Histogram(
    "url_shortener_creation_duration_seconds",
    "Time taken to handle URL creation requests",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)


class URLShorteningService:
    """Per-request facade over the shortening core.

    Example:
        >>> service = URLShorteningService.from_context(ctx)
        >>> mapping = await service.create_short_url(URLCreate(url="https://example.com"))
        >>> print(service.short_url_for(mapping.short_code))
    """

    def __init__(self, ctx: "RequestContext"):
        self._ctx = ctx
        self._settings = ctx.settings
        self._logger = ctx.logger
        self._cache = ctx.cache
        self._store = SQLMappingStore(ctx.database)
        self._generator = CodeGenerator.from_settings(self._settings)
        self._engine = AllocationEngine(self._store, self._generator, self._settings, self._logger)
        self._tracker = RedirectTracker(self._store, ctx.recorder, self._cache, self._logger)
        self._analytics = AnalyticsAggregator(self._store, self._settings)

    @classmethod
    def from_context(cls, ctx: "RequestContext") -> "URLShorteningService":
        return cls(ctx)

    @property
    def analytics(self) -> AnalyticsAggregator:
        return self._analytics

    def short_url_for(self, short_code: str) -> str:
        return f"{self._settings.BASE_URL.rstrip('/')}/{short_code}"

    async def create_short_url(self, payload: URLCreate, owner_id: str | None = None) -> URLMapping:
        start_time = time.perf_counter()
        try:
            return await self._engine.allocate(
                payload.url,
                AllocationRequest(
                    custom_code=payload.custom_code,
                    description=payload.description,
                    expires_at=payload.expires_at,
                    owner_id=owner_id,
                ),
            )
        finally:
            URL_CREATION_DURATION.observe(time.perf_counter() - start_time)

    async def resolve(self, short_code: str, access: AccessMetadata | None = None) -> URLMapping:
        return await self._tracker.resolve(short_code, access)

    async def list_urls(
        self,
        page: int = 1,
        limit: int | None = None,
        active_only: bool = True,
        owner_id: str | None = None,
    ) -> tuple[list[URLMapping], Pagination]:
        page = max(1, page)
        limit = max(1, min(self._settings.LIST_MAX_LIMIT, limit or self._settings.LIST_DEFAULT_LIMIT))

        items, total = await self._store.list_page(
            MappingFilter(active_only=active_only, owner_id=owner_id), page, limit
        )
        return items, Pagination(page=page, limit=limit, total=total, pages=math.ceil(total / limit))

    async def deactivate(self, short_code: str, requester_id: str | None = None) -> DeletionConfirmation:
        """Soft-delete ``short_code``.

        Raises:
            ShortenerError: NOT_FOUND when the code is absent, already inactive,
                or owned by someone other than ``requester_id``.
        """
        mapping = await self._store.find_by_code(short_code)
        if mapping is None or not mapping.is_active:
            DEACTIVATION_REQUESTS_TOTAL.labels(status=RequestStatus.NOT_FOUND).inc()
            self._logger.warning(f"Short URL not found or inactive: {short_code}")
            raise ShortenerError.not_found()

        if not mapping.is_visible_to(requester_id):
            DEACTIVATION_REQUESTS_TOTAL.labels(status=RequestStatus.NOT_FOUND).inc()
            self._logger.warning(
                f"Unauthorized delete attempt for {short_code}",
                extra={"operation": "deactivate", "short_code": short_code, "requester_id": requester_id},
            )
            raise ShortenerError.not_found()

        # Retire the cache entry first so no refill can land after the commit.
        invalidated = self._cache is None or await self._cache.invalidate(short_code)

        if not await self._store.deactivate(mapping.id):
            DEACTIVATION_REQUESTS_TOTAL.labels(status=RequestStatus.NOT_FOUND).inc()
            self._logger.warning(f"Short URL already deactivated by a concurrent request: {short_code}")
            raise ShortenerError.not_found()

        if not invalidated and not await self._cache.invalidate(short_code):
            self._logger.error(
                f"Cached redirect for {short_code} may outlive its deactivation",
                extra={"operation": "deactivate", "short_code": short_code},
            )

        DEACTIVATION_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
        self._logger.info(f"Short URL deactivated: {short_code}")
        return DeletionConfirmation(short_code=short_code, deactivated_at=utcnow())
