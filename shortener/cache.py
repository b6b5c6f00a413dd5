"""Redirect caching for the URL shortener.

This module provides ``MappingCache``, a cache-aside layer in front of the
redirect lookup. The Redis client itself is owned by the ``ServiceManager``.

Flow Diagram — Cached Redirect Lookup
=====================================
::
    ┌─────────────┐
    │ GET url:code │
    └──────┬──────┘
    HIT?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌──────────────┐
│ Mapping │  │ Re-check     │
│ store   │  │ active flag  │
│ lookup  │  │ and expiry   │
└────┬────┘  └──────────────┘
     ▼
┌─────────┐
│ SET NX  │
│ (TTL ≤  │
│ expiry) │
└─────────┘

How to Use
===========
**Step 1 — Build a cache around the shared client**::
    cache = MappingCache(manager.cache_client, ttl_seconds=settings.CACHE_TTL_SECONDS)

**Step 2 — Read through it**::
    mapping = await cache.get("abc123")

**Step 3 — Invalidate on deactivation**::
    await cache.invalidate("abc123")

Key Behaviours
===============
- Cached payloads carry ``is_active`` and ``expires_at``; callers re-check both on every hit.
- TTL never outlives the mapping's expiry.
- Non-redirectable mappings are never written to the cache.
- Refills use ``SET NX``; invalidation overwrites the key with a retired marker
  for one TTL, so a lookup that read the row before a delete cannot re-cache it.
- Redis failures are logged and treated as a miss; the mapping store stays authoritative.
  ``invalidate`` reports failure through its return value instead of raising.

Classes:
    MappingCache:  Redirect lookup cache keyed by short code.
"""

import logging
import math

import redis.asyncio as redis
from prometheus_client import Counter
from pydantic import ValidationError

from shortener.models import URLMapping, as_utc, utcnow
from shortener.schemas import CachedMappingPayload

__all__ = ["RETIRED_MARKER", "MappingCache"]

logger = logging.getLogger("shortener")

RETIRED_MARKER = "retired"

CACHE_OPERATIONS_TOTAL = Counter(
    "url_shortener_cache_operations_total",
    "Redis cache operations for redirect lookups",
    ["operation", "status"],
)


class MappingCache:
    KEY_PREFIX = "url"

    def __init__(self, client: redis.Redis, ttl_seconds: int = 3600) -> None:
        self._client = client
        self._ttl_seconds = ttl_seconds

    @property
    def client(self) -> redis.Redis:
        return self._client

    @classmethod
    def key_for(cls, short_code: str) -> str:
        return f"{cls.KEY_PREFIX}:{short_code}"

    async def get(self, short_code: str) -> URLMapping | None:
        try:
            cached = await self._client.get(self.key_for(short_code))
        except redis.RedisError as exc:
            CACHE_OPERATIONS_TOTAL.labels(operation="get", status="error").inc()
            logger.warning(f"Cache read failed for {short_code}: {exc}")
            return None

        if not cached:
            CACHE_OPERATIONS_TOTAL.labels(operation="get", status="miss").inc()
            return None
        if cached == RETIRED_MARKER:
            CACHE_OPERATIONS_TOTAL.labels(operation="get", status="retired").inc()
            return None

        try:
            payload = CachedMappingPayload.model_validate_json(cached)
        except ValidationError as exc:
            CACHE_OPERATIONS_TOTAL.labels(operation="get", status="error").inc()
            logger.error(f"Cache deserialization error for {short_code}: {exc}")
            return None

        CACHE_OPERATIONS_TOTAL.labels(operation="get", status="hit").inc()
        return URLMapping(**payload.model_dump())

    async def set(self, mapping: URLMapping) -> None:
        ttl = self._ttl_for(mapping)
        if ttl <= 0:
            return
        payload = CachedMappingPayload.model_validate(mapping)
        try:
            written = await self._client.set(
                self.key_for(mapping.short_code), payload.model_dump_json(), ex=ttl, nx=True
            )
        except redis.RedisError as exc:
            CACHE_OPERATIONS_TOTAL.labels(operation="set", status="error").inc()
            logger.warning(f"Cache write failed for {mapping.short_code}: {exc}")
            return
        if not written:
            # Key already held, usually the retired marker of a concurrent delete.
            CACHE_OPERATIONS_TOTAL.labels(operation="set", status="skipped").inc()
            return
        CACHE_OPERATIONS_TOTAL.labels(operation="set", status="ok").inc()

    async def invalidate(self, short_code: str) -> bool:
        """Replace the cached entry with the retired marker.

        Returns ``False`` when Redis could not be reached; the caller decides
        whether to try again.
        """
        try:
            await self._client.set(self.key_for(short_code), RETIRED_MARKER, ex=self._ttl_seconds)
        except redis.RedisError as exc:
            CACHE_OPERATIONS_TOTAL.labels(operation="invalidate", status="error").inc()
            logger.error(f"Cache invalidation failed for {short_code}: {exc}")
            return False
        CACHE_OPERATIONS_TOTAL.labels(operation="invalidate", status="ok").inc()
        return True

    def _ttl_for(self, mapping: URLMapping) -> int:
        if not mapping.is_redirectable():
            return 0
        expires_at = as_utc(mapping.expires_at)
        if expires_at is None:
            return self._ttl_seconds
        remaining = math.floor((expires_at - utcnow()).total_seconds())
        return min(self._ttl_seconds, remaining)
