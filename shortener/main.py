"""FastAPI application entry point for the URL shortener service.

This module configures and initializes the FastAPI application with middleware,
lifecycle management, error handlers and route registration.

Application Lifecycle Diagram
===========================
::
    startup                               shutdown
    ┌─────────────┐                       ┌──────────────────────┐
    │ init_db()    │                       │ drain click writes    │
    └──────┬──────┘                       └──────────┬───────────┘
           ▼                                         ▼
    ┌─────────────┐                       ┌──────────────────────┐
    │ ServiceMgr   │                       │ close Redis client    │
    │ initialize() │                       └──────────┬───────────┘
    └─────────────┘                                  ▼
                                          ┌──────────────────────┐
                                          │ close_db()            │
                                          └──────────────────────┘

How to Use
===========
**Step 1 — Run with uvicorn**::
    uvicorn shortener.main:app --host 0.0.0.0 --port 8000 --reload

**Step 2 — Access interactive docs**::
    http://localhost:8000/docs

**Step 3 — Make API calls**::
    curl -X POST http://localhost:8000/api/shorten \
         -H "Content-Type: application/json" \
         -d '{"url": "https://example.com"}'

Key Behaviours
===============
- Database tables are created automatically on startup.
- Pending click writes are awaited before shutdown completes.
- Every core error becomes ``{"error": ..., "details": [...]}`` with the status of its kind.
- Request validation errors answer 400 in the same shape, one detail per field.
- Prometheus metrics are exposed at /metrics.
"""

__all__ = ["app"]

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from shortener.config import get_settings
from shortener.database import close_db, init_db
from shortener.dependencies import _service_manager
from shortener.errors import ShortenerError
from shortener.routes import router
from shortener.schemas import ErrorDetail, ErrorResponse

settings = get_settings()
logger = logging.getLogger("shortener")

VALUE_ERROR_PREFIX = "Value error, "


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    await init_db()
    await _service_manager.initialize()
    yield
    # Shutdown
    await _service_manager.cleanup()
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="URL shortener with click tracking and analytics",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ShortenerError)
async def handle_shortener_error(request: Request, exc: ShortenerError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"Request failed: {request.method} {request.url.path}: {exc}")
    else:
        logger.warning(f"Request rejected: {request.method} {request.url.path}: {exc}")

    body = ErrorResponse(
        error=exc.message,
        details=[ErrorDetail(field=d.field, message=d.message) for d in exc.details] or None,
    )
    headers = {"Retry-After": "1"} if exc.kind.retryable else None
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(exclude_none=True), headers=headers)


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ())]
        message = str(error.get("msg", "Invalid value")).removeprefix(VALUE_ERROR_PREFIX)
        details.append(ErrorDetail(field=location[-1] if location else "request", message=message))

    logger.warning(f"Validation error: {request.method} {request.url.path}")
    body = ErrorResponse(error="Validation error", details=details)
    return JSONResponse(status_code=400, content=body.model_dump())


Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=False,
    should_respect_env_var=False,
).instrument(app).expose(app)

app.include_router(router)
