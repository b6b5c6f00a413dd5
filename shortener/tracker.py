"""Redirect tracking: resolve a short code and record the click off the hot path.

Flow Diagram — resolve()
========================
::
    ┌─────────────┐
    │  GET /:code  │
    └──────┬──────┘
           ▼
    ┌─────────────┐  hit   ┌──────────────────────┐
    │ Redis cache  ├──────►│ re-check active flag  │
    └──────┬──────┘        │ and expiry            │
      miss │               └──────────┬───────────┘
           ▼                          │
    ┌─────────────┐                   │
    │ Mapping store│ active, unexpired │
    └──────┬──────┘                   │
           ▼                          ▼
    ┌─────────────────────────────────────┐
    │ ClickRecorder.submit()  (new task)   │──► UPDATE click_count + INSERT access log
    └──────┬──────────────────────────────┘      in its own session, later
           ▼
    ┌─────────────┐
    │ 302 redirect │  pre-increment mapping, never waits for the write
    └─────────────┘

Key Behaviours
===============
- Absent, inactive and expired codes all fail with the same NOT_FOUND error.
- Missing user agent, IP address or referer are recorded as "Unknown".
- A failed click write is logged and counted, never retried and never raised.
- Click counts are eventually consistent: a read right after a redirect may be stale.
"""

import asyncio
import datetime
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from prometheus_client import Counter, Histogram
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shortener.cache import MappingCache
from shortener.config import SHORT_CODE_MAX_LENGTH
from shortener.enums import CacheStatus, ClickWriteStatus, RequestStatus
from shortener.errors import ShortenerError
from shortener.models import UNKNOWN, URLMapping, utcnow
from shortener.store import AccessRecord, MappingStore, SQLMappingStore

__all__ = ["AccessMetadata", "ClickRecorder", "RedirectTracker"]

logger = logging.getLogger("shortener")

REDIRECT_REQUESTS_TOTAL = Counter(
    "url_shortener_redirect_requests_total",
    "Total URL redirect requests",
    ["status", "cache_hit"],
)
REDIRECT_LOOKUP_DURATION = Histogram(
    "url_shortener_redirect_lookup_duration_seconds",
    "Time taken to resolve short codes",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25],
)
CLICK_WRITES_TOTAL = Counter(
    "url_shortener_click_writes_total",
    "Background click writes by outcome",
    ["status"],
)
CLICK_WRITE_DURATION = Histogram(
    "url_shortener_click_write_duration_seconds",
    "Time taken by background click writes",
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
)


@dataclass(frozen=True)
class AccessMetadata:
    user_agent: str | None = None
    ip_address: str | None = None
    referer: str | None = None

    def to_record(self, timestamp: datetime.datetime) -> AccessRecord:
        return AccessRecord(
            timestamp=timestamp,
            user_agent=(self.user_agent or UNKNOWN)[:512],
            ip_address=(self.ip_address or UNKNOWN)[:64],
            referer=(self.referer or UNKNOWN)[:2048],
        )


class ClickRecorder:
    """Owns background click writes for the whole process.

    Every submitted write runs as its own task with its own database session,
    so it may finish after the redirect response has been sent. ``drain()``
    waits for outstanding writes and is called at shutdown.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        store_factory: Callable[[AsyncSession], MappingStore] = SQLMappingStore,
    ) -> None:
        self._session_factory = session_factory
        self._store_factory = store_factory
        self._pending: set[asyncio.Task[bool]] = set()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def submit(self, mapping_id: int, short_code: str, record: AccessRecord) -> asyncio.Task[bool]:
        task = asyncio.create_task(self._record(mapping_id, short_code, record), name=f"record-click:{short_code}")
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _record(self, mapping_id: int, short_code: str, record: AccessRecord) -> bool:
        start_time = time.perf_counter()
        try:
            async with self._session_factory() as session:
                recorded = await self._store_factory(session).atomic_increment_and_log(mapping_id, 1, record)
        except Exception as exc:
            CLICK_WRITES_TOTAL.labels(status=ClickWriteStatus.FAILED).inc()
            logger.error(
                f"Failed to record URL access for {short_code}: {exc}",
                extra={"operation": "record_access", "short_code": short_code},
            )
            return False

        CLICK_WRITE_DURATION.observe(time.perf_counter() - start_time)
        if not recorded:
            CLICK_WRITES_TOTAL.labels(status=ClickWriteStatus.FAILED).inc()
            logger.warning(f"Mapping {short_code} vanished before its access was recorded")
            return False

        CLICK_WRITES_TOTAL.labels(status=ClickWriteStatus.RECORDED).inc()
        logger.debug(f"URL access recorded for {short_code}")
        return True


class RedirectTracker:
    def __init__(
        self,
        store: MappingStore,
        recorder: ClickRecorder,
        cache: MappingCache | None = None,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
        clock: Callable[[], datetime.datetime] = utcnow,
    ) -> None:
        self._store = store
        self._recorder = recorder
        self._cache = cache
        self._logger = logger or logging.getLogger("shortener")
        self._clock = clock

    async def resolve(self, short_code: str, access: AccessMetadata | None = None) -> URLMapping:
        """Return the redirectable mapping for ``short_code`` and schedule its click write.

        The returned mapping carries the click count as read, before this
        redirect is counted.

        Raises:
            ShortenerError: NOT_FOUND when the code is absent, inactive or expired.
        """
        start_time = time.perf_counter()
        now = self._clock()

        mapping, cache_status = await self._lookup(short_code, now)
        REDIRECT_LOOKUP_DURATION.observe(time.perf_counter() - start_time)

        if mapping is None or not mapping.is_redirectable(now):
            REDIRECT_REQUESTS_TOTAL.labels(status=RequestStatus.NOT_FOUND, cache_hit=cache_status).inc()
            self._logger.warning(f"Short code not found or expired: {short_code}")
            raise ShortenerError.not_found()

        self._recorder.submit(mapping.id, mapping.short_code, (access or AccessMetadata()).to_record(now))
        REDIRECT_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS, cache_hit=cache_status).inc()
        return mapping

    async def _lookup(self, short_code: str, now: datetime.datetime) -> tuple[URLMapping | None, CacheStatus]:
        if not short_code or len(short_code) > SHORT_CODE_MAX_LENGTH or not short_code.isalnum():
            return None, CacheStatus.MISS

        if self._cache is not None:
            cached = await self._cache.get(short_code)
            if cached is not None:
                return cached, CacheStatus.HIT

        mapping = await self._store.find_active_by_code(short_code, now)
        if mapping is not None and self._cache is not None:
            await self._cache.set(mapping)
        return mapping, CacheStatus.MISS
