"""Optimized dependency injection with singleton service manager.

This module provides a centralized way to inject database, cache and
click-recording dependencies with consistent naming across all API endpoints,
using a singleton pattern for shared resources to minimize per-request overhead.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

import redis.asyncio as redis
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shortener.cache import MappingCache
from shortener.config import Settings, get_settings
from shortener.database import async_session, get_db
from shortener.tracker import AccessMetadata, ClickRecorder
from shortener.url_service import URLShorteningService

# Upstream auth gateway sets this header; the core never authenticates.
USER_ID_HEADER = "x-user-id"


# ============================================================================
# SINGLETON SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Singleton service manager for shared resources.

    This class manages shared resources that don't need to be created per request:
    settings, the logger, the Redis redirect cache and the click recorder that
    owns background writes.
    """

    _instance: Optional["ServiceManager"] = None
    _initialized: bool = False

    def __new__(cls) -> "ServiceManager":
        """Implement singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(
        self,
        settings: Settings | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        cache_client: redis.Redis | None = None,
    ) -> None:
        """Initialize shared resources once at startup."""
        if not self._initialized:
            self.settings = settings or get_settings()
            self.logger = self._setup_logger()
            self.session_factory = session_factory or async_session
            self.cache_client = cache_client
            if self.cache_client is None and self.settings.CACHE_ENABLED:
                self.cache_client = await self._setup_redis()
            self.cache = (
                MappingCache(self.cache_client, self.settings.CACHE_TTL_SECONDS)
                if self.cache_client is not None
                else None
            )
            self.recorder = ClickRecorder(self.session_factory)
            self._initialized = True

    def _setup_logger(self) -> logging.Logger:
        """Setup logger once."""
        logger = logging.getLogger("shortener")
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)
        logger.setLevel(self.settings.LOG_LEVEL.upper())
        return logger

    async def _setup_redis(self) -> redis.Redis:
        """Setup Redis client once."""
        return redis.from_url(self.settings.REDIS_URL, encoding="utf-8", decode_responses=True)

    async def cleanup(self) -> None:
        """Drain pending click writes and release shared resources at shutdown."""
        if not self._initialized:
            return
        await self.recorder.drain()
        if self.cache_client is not None:
            await self.cache_client.aclose()
        self._initialized = False


# Global singleton instance
_service_manager = ServiceManager()


# ============================================================================
# LIGHTWEIGHT REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Request context with tracking and shared resource access.

    Attributes:
        database: Async database session (only per-request resource)
        service_manager: Singleton service manager with shared resources
        request_id: Unique identifier for this request
        trace_id: Correlation ID for distributed tracing
        user_agent: Client user agent string
        client_ip: Client IP address
        referer: Referer header, if any
        user_id: Requester identity forwarded by the auth gateway
        start_time: Request start timestamp
        tags: Request tags for categorization
    """

    database: AsyncSession
    service_manager: ServiceManager
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    trace_id: Optional[str] = None
    user_agent: Optional[str] = None
    client_ip: Optional[str] = None
    referer: Optional[str] = None
    user_id: Optional[str] = None
    start_time: float = field(default_factory=lambda: time.time())
    tags: list[str] = field(default_factory=list)

    @property
    def cache(self) -> MappingCache | None:
        """Get shared redirect cache, or None when caching is disabled."""
        return self.service_manager.cache

    @property
    def recorder(self) -> ClickRecorder:
        return self.service_manager.recorder

    @property
    def logger(self) -> logging.LoggerAdapter:
        """Get shared logger with request context."""
        return logging.LoggerAdapter(
            self.service_manager.logger,
            {
                "request_id": self.request_id,
                "trace_id": self.trace_id or self.request_id,
                "client_ip": self.client_ip,
                "user_agent": self.user_agent,
                "tags": ",".join(self.tags),
            },
        )

    @property
    def settings(self) -> Settings:
        """Get shared settings."""
        return self.service_manager.settings

    def access_metadata(self) -> AccessMetadata:
        return AccessMetadata(user_agent=self.user_agent, ip_address=self.client_ip, referer=self.referer)

    def add_tag(self, tag: str) -> None:
        """Add a tag to the request context."""
        if tag not in self.tags:
            self.tags.append(tag)

    def get_duration(self) -> float:
        """Get request duration in milliseconds."""
        return (time.time() - self.start_time) * 1000


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


async def get_service_manager() -> ServiceManager:
    """Get the singleton service manager, initializing it on first use."""
    if not _service_manager.initialized:
        await _service_manager.initialize()
    return _service_manager


async def get_request_context(
    request: Request,
    db: AsyncSession = Depends(get_db),
    manager: ServiceManager = Depends(get_service_manager),
) -> RequestContext:
    """Build the request context from the incoming request.

    Args:
        request: FastAPI Request object for extracting client info
        db: Database session (only per-request resource)
        manager: Singleton service manager with shared resources

    Returns:
        RequestContext: Context for the request
    """
    return RequestContext(
        database=db,
        service_manager=manager,
        trace_id=request.headers.get("x-trace-id"),
        user_agent=request.headers.get("user-agent"),
        client_ip=request.client.host if request.client else None,
        referer=request.headers.get("referer"),
        user_id=request.headers.get(USER_ID_HEADER) or None,
    )


def get_url_service(ctx: RequestContext = Depends(get_request_context)) -> URLShorteningService:
    """Create URL service from the request context."""
    return URLShorteningService.from_context(ctx)
