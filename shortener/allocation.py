"""Allocation engine: turns a long URL into a mapping with a unique short code.

Flow Diagram — allocate()
=========================
::
    ┌──────────────────┐
    │ Normalize URL     │  trim + lower-case, length check
    │ Validate expiry   │  strictly in the future
    └────────┬─────────┘
             ▼
    ┌──────────────────┐   found   ┌──────────────────┐
    │ Active mapping    ├──────────►│ Return it as-is   │
    │ for this URL?     │           │ (dedup)           │
    └────────┬─────────┘           └──────────────────┘
             │ none
             ▼
    ┌──────────────────┐  custom   ┌──────────────────┐
    │ Custom code?      ├──────────►│ Taken → CONFLICT  │
    └────────┬─────────┘           └──────────────────┘
             │ generated
             ▼
    ┌──────────────────┐
    │ ≤ N candidates,   │  all taken → GENERATION_EXHAUSTED
    │ first free wins   │
    └────────┬─────────┘
             ▼
    ┌──────────────────┐  unique violation → retry from the top,
    │ INSERT            │  then TRANSIENT_CONFLICT
    └──────────────────┘

Key Behaviours
===============
- Dedup ignores custom code, description and owner of the second request.
- An active mapping that has already expired is retired during dedup so the URL
  gets a working code and still has a single active row.
- The candidate loop is bounded by ``CODE_GENERATION_MAX_ATTEMPTS`` no matter
  how long the caller is willing to wait.
- Two callers racing on the same new URL may both insert; the duplicate URL row
  is tolerated, a duplicate short code is not.
"""

import datetime
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from prometheus_client import Counter, Histogram

from shortener.codegen import CodeGenerator
from shortener.config import Settings
from shortener.enums import AllocationOutcome
from shortener.errors import ShortenerError, UniquenessConflict
from shortener.models import URLMapping, as_utc, utcnow
from shortener.store import MappingStore

__all__ = ["AllocationEngine", "AllocationRequest", "normalize_url"]

ALLOCATIONS_TOTAL = Counter(
    "url_shortener_allocations_total",
    "Allocation requests by outcome",
    ["outcome"],
)
ALLOCATION_DURATION = Histogram(
    "url_shortener_allocation_duration_seconds",
    "Time taken to allocate short codes",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)
CODE_GENERATION_ATTEMPTS = Histogram(
    "url_shortener_code_generation_attempts",
    "Candidates drawn before a free short code was found",
    buckets=[1, 2, 3, 5, 10, 20],
)


def normalize_url(url: str) -> str:
    return url.strip().lower()


@dataclass(frozen=True)
class AllocationRequest:
    custom_code: str | None = None
    description: str | None = None
    expires_at: datetime.datetime | None = None
    owner_id: str | None = None


class AllocationEngine:
    def __init__(
        self,
        store: MappingStore,
        generator: CodeGenerator,
        settings: Settings,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
        clock: Callable[[], datetime.datetime] = utcnow,
    ) -> None:
        self._store = store
        self._generator = generator
        self._settings = settings
        self._logger = logger or logging.getLogger("shortener")
        self._clock = clock

    async def allocate(self, original_url: str, request: AllocationRequest | None = None) -> URLMapping:
        """Return the active mapping for ``original_url``, creating one if needed.

        Raises:
            ShortenerError: INVALID_INPUT, CONFLICT, GENERATION_EXHAUSTED or
                TRANSIENT_CONFLICT. Store failures other than a short-code
                uniqueness violation propagate unchanged.
        """
        request = request or AllocationRequest()
        start_time = time.perf_counter()
        retries_left = self._settings.ALLOCATION_CONFLICT_RETRIES

        try:
            while True:
                try:
                    mapping, outcome = await self._allocate_once(original_url, request)
                    break
                except UniquenessConflict as exc:
                    if request.custom_code:
                        self._logger.warning(f"Lost insert race for custom code: {exc.short_code}")
                        raise ShortenerError.conflict(request.custom_code) from exc
                    if retries_left <= 0:
                        self._logger.error(
                            f"Insert conflict persisted for generated code: {exc.short_code}",
                            extra={"operation": "allocate", "short_code": exc.short_code},
                        )
                        raise ShortenerError.transient_conflict() from exc
                    retries_left -= 1
                    self._logger.warning(f"Insert conflict for generated code {exc.short_code}, retrying allocation")
        except ShortenerError as exc:
            ALLOCATIONS_TOTAL.labels(outcome=AllocationOutcome(exc.kind.value)).inc()
            ALLOCATION_DURATION.observe(time.perf_counter() - start_time)
            raise

        ALLOCATIONS_TOTAL.labels(outcome=outcome).inc()
        ALLOCATION_DURATION.observe(time.perf_counter() - start_time)
        return mapping

    async def _allocate_once(
        self, original_url: str, request: AllocationRequest
    ) -> tuple[URLMapping, AllocationOutcome]:
        normalized = self._validated_url(original_url)
        now = self._clock()
        expires_at = as_utc(request.expires_at)
        if expires_at is not None and expires_at <= now:
            raise ShortenerError.invalid_input("expiresAt", "Expiration date must be in the future")

        # Dedup wins over whatever custom code the second caller asked for.
        existing = await self._find_live_mapping(normalized, now)
        if existing is not None:
            self._logger.info(
                f"Duplicate URL found, returning existing short code: {existing.short_code}",
                extra={"operation": "allocate", "short_code": existing.short_code},
            )
            return existing, AllocationOutcome.DEDUPLICATED

        if request.custom_code is not None and not self._generator.is_valid_custom_code(request.custom_code):
            raise ShortenerError.invalid_input(
                "customCode",
                f"Custom code must be alphanumeric and between {self._generator.custom_min_length} "
                f"and {self._generator.custom_max_length} characters",
            )
        if request.description and len(request.description) > self._settings.DESCRIPTION_MAX_LENGTH:
            raise ShortenerError.invalid_input(
                "description", f"Description cannot exceed {self._settings.DESCRIPTION_MAX_LENGTH} characters"
            )

        if request.custom_code:
            short_code = request.custom_code
            if await self._store.find_by_code(short_code) is not None:
                self._logger.warning(f"Custom short code already exists: {short_code}")
                raise ShortenerError.conflict(short_code)
        else:
            short_code = await self._generate_unique_code()

        mapping = URLMapping(
            short_code=short_code,
            original_url=normalized,
            owner_id=request.owner_id,
            description=request.description,
            expires_at=expires_at,
            is_active=True,
            click_count=0,
            created_at=now,
            updated_at=now,
        )
        mapping = await self._store.insert(mapping)
        self._logger.info(
            f"Short URL created: {short_code}",
            extra={"operation": "allocate", "short_code": short_code, "original_url": normalized[:100]},
        )
        return mapping, AllocationOutcome.CREATED

    def _validated_url(self, original_url: str) -> str:
        normalized = normalize_url(original_url or "")
        if not normalized:
            raise ShortenerError.invalid_input("url", "URL is required")
        if len(normalized) > self._settings.MAX_URL_LENGTH:
            raise ShortenerError.invalid_input(
                "url", f"URL cannot exceed {self._settings.MAX_URL_LENGTH} characters"
            )
        return normalized

    async def _find_live_mapping(self, normalized: str, now: datetime.datetime) -> URLMapping | None:
        while True:
            existing = await self._store.find_active_by_url(normalized)
            if existing is None or not existing.is_expired(now):
                return existing
            self._logger.info(f"Retiring expired mapping before re-allocation: {existing.short_code}")
            await self._store.deactivate(existing.id)

    async def _generate_unique_code(self) -> str:
        max_attempts = self._settings.CODE_GENERATION_MAX_ATTEMPTS
        for attempt in range(1, max_attempts + 1):
            candidate = self._generator.generate()
            if await self._store.find_by_code(candidate) is None:
                CODE_GENERATION_ATTEMPTS.observe(attempt)
                return candidate
            self._logger.debug(f"Short code collision detected, retrying (attempt {attempt})")

        self._logger.error(
            f"Short code generation exhausted after {max_attempts} attempts",
            extra={"operation": "allocate", "attempts": max_attempts},
        )
        raise ShortenerError.generation_exhausted(max_attempts)
