"""FastAPI route definitions for the URL shortener REST API.

This module provides all HTTP endpoints with proper dependency injection and
response serialization. Core failures are raised as ``ShortenerError`` and
turned into JSON by the handlers registered in ``shortener.main``.

API Endpoint Overview
=====================
::
    GET    /health
    POST   /api/shorten                 URLCreate → 201 URLCreatedResponse
    GET    /api/urls                    ?page&limit&activeOnly&mine
    DELETE /api/urls/:short_code        soft delete, owner only
    GET    /api/analytics               ?mine
    GET    /api/analytics/trends/:days  days clamped to [1, 365]
    GET    /api/analytics/:short_code
    GET    /:short_code                 302 → original URL

Request Flow Diagram
====================
::
    ┌──────────────┐     ┌─────────────────┐     ┌──────────────────────┐
    │ HTTP request │────►│ RequestContext  │────►│ URLShorteningService │
    └──────────────┘     │ (session, ip,   │     └──────────┬───────────┘
                         │  UA, user id)   │                │
                         └─────────────────┘      ShortenerError?
                                                   ┌────────┴────────┐
                                                   ▼                 ▼
                                            exception handler    response model
                                            {error, details}     (camelCase JSON)

How to Use
===========
**Step 1 — Import and include router**::
    from shortener.routes import router
    app.include_router(router)

**Step 2 — Access endpoints**::
    # Shorten URL
    POST http://localhost:8000/api/shorten
    {"url": "https://example.com", "customCode": "docs"}

    # Redirect
    GET http://localhost:8000/docs123

    # Analytics for one code, as its owner
    GET http://localhost:8000/api/analytics/docs123
    X-User-Id: user-1

Key Behaviours
===============
- All endpoints use async/await for non-blocking I/O.
- The redirect answers 302 and never waits for the click write.
- Missing, inactive, expired and not-owned codes all answer the same 404.
- The requester identity comes from the ``X-User-Id`` header set by the auth gateway.
"""

from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse
from sqlalchemy import text

from shortener.dependencies import RequestContext, get_request_context, get_url_service
from shortener.enums import HealthStatus
from shortener.schemas import (
    DeletionConfirmation,
    HealthResponse,
    MappingDetail,
    SystemSummary,
    TrendsResponse,
    URLCreate,
    URLCreatedResponse,
    URLListResponse,
    URLSummary,
)
from shortener.url_service import URLShorteningService

__all__ = ["router"]

router = APIRouter()


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(ctx: RequestContext = Depends(get_request_context)) -> HealthResponse:
    ctx.logger.info("Health check requested")
    db_status = HealthStatus.HEALTHY
    cache_status = HealthStatus.DISABLED

    try:
        await ctx.database.execute(text("SELECT 1"))
        ctx.logger.debug("Database health check passed")
    except Exception as e:
        ctx.logger.error(f"Database health check failed: {e}")
        db_status = HealthStatus.UNHEALTHY

    if ctx.cache is not None:
        try:
            await ctx.cache.client.ping()
            cache_status = HealthStatus.HEALTHY
            ctx.logger.debug("Cache health check passed")
        except Exception as e:
            ctx.logger.error(f"Cache health check failed: {e}")
            cache_status = HealthStatus.UNHEALTHY

    status = (
        HealthStatus.HEALTHY
        if db_status is HealthStatus.HEALTHY and cache_status is not HealthStatus.UNHEALTHY
        else HealthStatus.UNHEALTHY
    )

    ctx.logger.info(f"Health check completed: {status.value}")
    return HealthResponse(status=status, database=db_status, cache=cache_status)


@router.post("/api/shorten", response_model=URLCreatedResponse, status_code=201, tags=["urls"])
async def shorten_url(
    payload: URLCreate,
    ctx: RequestContext = Depends(get_request_context),
    service: URLShorteningService = Depends(get_url_service),
) -> URLCreatedResponse:
    ctx.add_tag("url_creation")
    ctx.logger.info(
        f"URL shortening requested: {payload.url[:50]}",
        extra={"operation": "create_short_url", "custom_code": payload.custom_code},
    )

    mapping = await service.create_short_url(payload, owner_id=ctx.user_id)

    ctx.logger.info(
        f"URL shortened successfully: {mapping.short_code}",
        extra={"operation": "create_short_url", "short_code": mapping.short_code, "duration_ms": ctx.get_duration()},
    )
    return URLCreatedResponse(
        short_code=mapping.short_code,
        short_url=service.short_url_for(mapping.short_code),
        original_url=mapping.original_url,
        created_at=mapping.created_at,
        expires_at=mapping.expires_at,
    )


@router.get("/api/urls", response_model=URLListResponse, tags=["urls"])
async def list_urls(
    page: int = Query(1, ge=1),
    limit: int | None = Query(None, ge=1),
    active_only: bool = Query(True, alias="activeOnly"),
    mine: bool = Query(False),
    ctx: RequestContext = Depends(get_request_context),
    service: URLShorteningService = Depends(get_url_service),
) -> URLListResponse:
    ctx.logger.debug(f"Fetching URLs page={page} limit={limit}")
    owner_id = ctx.user_id if mine else None
    items, pagination = await service.list_urls(page=page, limit=limit, active_only=active_only, owner_id=owner_id)
    return URLListResponse(data=[URLSummary.model_validate(item) for item in items], pagination=pagination)


@router.delete("/api/urls/{short_code}", response_model=DeletionConfirmation, tags=["urls"])
async def delete_url(
    short_code: str,
    ctx: RequestContext = Depends(get_request_context),
    service: URLShorteningService = Depends(get_url_service),
) -> DeletionConfirmation:
    ctx.logger.info(f"Delete requested for short code: {short_code}")
    return await service.deactivate(short_code, requester_id=ctx.user_id)


@router.get("/api/analytics", response_model=SystemSummary, tags=["analytics"])
async def system_analytics(
    mine: bool = Query(False),
    ctx: RequestContext = Depends(get_request_context),
    service: URLShorteningService = Depends(get_url_service),
) -> SystemSummary:
    ctx.logger.debug("System analytics requested")
    return await service.analytics.system_summary(owner_id=ctx.user_id if mine else None)


@router.get("/api/analytics/trends/{days}", response_model=TrendsResponse, tags=["analytics"])
async def usage_trends(
    days: int,
    ctx: RequestContext = Depends(get_request_context),
    service: URLShorteningService = Depends(get_url_service),
) -> TrendsResponse:
    ctx.logger.debug(f"Usage trends requested for {days} days")
    return await service.analytics.trends(days)


@router.get("/api/analytics/{short_code}", response_model=MappingDetail, tags=["analytics"])
async def url_analytics(
    short_code: str,
    ctx: RequestContext = Depends(get_request_context),
    service: URLShorteningService = Depends(get_url_service),
) -> MappingDetail:
    ctx.logger.debug(f"Analytics requested for short code: {short_code}")
    return await service.analytics.detail(short_code, owner_id=ctx.user_id)


@router.get("/{short_code}", tags=["redirect"])
async def redirect_to_url(
    short_code: str,
    ctx: RequestContext = Depends(get_request_context),
    service: URLShorteningService = Depends(get_url_service),
) -> RedirectResponse:
    ctx.add_tag("redirect")
    ctx.logger.debug(
        f"Redirect requested for short code: {short_code}",
        extra={"operation": "redirect", "short_code": short_code},
    )

    mapping = await service.resolve(short_code, ctx.access_metadata())

    ctx.logger.info(
        f"Redirect successful: {short_code} -> {mapping.original_url[:50]}",
        extra={"operation": "redirect", "short_code": short_code, "duration_ms": ctx.get_duration()},
    )
    return RedirectResponse(url=mapping.original_url, status_code=302)
