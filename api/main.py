"""
api/main.py -- FastAPI application entry point for WorkBridge Accounts.

Run with:      uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan handles startup (store, notifier, lifecycle, purge task) and
shutdown (cancel purge task, drain notifier, close DB engine) symmetrically.

Error mapping: every component failure is an AccountError subclass. A single
handler turns its `code` into a status and the shared ErrorResponse envelope.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from accounts.lifecycle import build_lifecycle
from accounts.notify import build_notifier
from accounts.store import AccountStore
from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.users import router as users_router
from core.config import get_settings
from core.errors import (
    AccountError,
    AlreadyConsumed,
    AlreadyPending,
    AlreadyVerified,
    EmailTaken,
    Expired,
    InvalidToken,
    Mismatch,
    NotFound,
    Transient,
    ValidationFailed,
)

__version__ = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("workbridge.api")

settings = get_settings()

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval: int) -> None:
    """Delete expired OTP records and stale verification tokens every `interval` seconds.

    Expiry is also checked lazily on every read, so this loop only reclaims
    storage. The purge itself is blocking DB work and runs in a worker thread.
    A failed pass is logged and retried on the next tick.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            otp_count, token_count = await asyncio.to_thread(app.state.lifecycle.purge_expired)
        except AccountError as exc:
            logger.warning("Purge pass failed: %s", exc.message)
            continue
        if otp_count or token_count:
            logger.info("Purged %d OTP record(s) and %d verification token(s)", otp_count, token_count)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Store first -- creates tables; everything else reads through it.
      2. Notifier second -- owns a thread pool that must be drained on exit.
      3. Lifecycle third -- wires store, notifier and settings together.
      4. Purge task last -- references app.state.lifecycle.
    """
    logger.info("WorkBridge Accounts API starting up")
    app.state.settings = settings
    app.state.store = AccountStore(settings.database_url, timeout=settings.db_timeout_seconds)
    logger.info("Account store initialized")
    app.state.notifier = build_notifier(settings)
    app.state.lifecycle = build_lifecycle(settings, app.state.store, app.state.notifier)
    app.state.purge_task = None
    if settings.purge_interval_seconds > 0:
        app.state.purge_task = asyncio.create_task(_purge_loop(app, settings.purge_interval_seconds))

    yield

    if app.state.purge_task is not None:
        app.state.purge_task.cancel()
    app.state.notifier.close()
    app.state.store.close()
    logger.info("WorkBridge Accounts API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="WorkBridge Accounts API",
    description="Account lifecycle for the WorkBridge job board: signup, email verification, "
    "sessions and OTP password reset.",
    version=__version__,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    # The confirmation path carries a live token; log the route, not the secret.
    path = request.url.path
    if path.startswith("/api/v1/users/confirmation/") and path != "/api/v1/users/confirmation/resend":
        path = "/api/v1/users/confirmation/<token>"
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(users_router, prefix="/api/v1", tags=["Users"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------

_STATUS_BY_ERROR: dict[type[AccountError], int] = {
    ValidationFailed: 422,
    EmailTaken: 409,
    Mismatch: 401,
    InvalidToken: 401,
    NotFound: 404,
    AlreadyConsumed: 409,
    AlreadyVerified: 409,
    AlreadyPending: 409,
    Expired: 410,
    Transient: 503,
}

_TRANSIENT_RETRY_AFTER = 1  # seconds


def status_for(exc: AccountError) -> int:
    """Return the HTTP status for an AccountError (500 for an unmapped subclass)."""
    for error_type, status in _STATUS_BY_ERROR.items():
        if isinstance(exc, error_type):
            return status
    return 500


@app.exception_handler(AccountError)
async def account_error_handler(request: Request, exc: AccountError) -> JSONResponse:
    """Map component failures to HTTP. Transient adds Retry-After so clients back off."""
    status = status_for(exc)
    response = JSONResponse(
        status_code=status,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message)).model_dump(),
    )
    if isinstance(exc, Transient):
        logger.warning("Transient failure on %s %s: %s", request.method, request.url.path, exc.message)
        response.headers["Retry-After"] = str(_TRANSIENT_RETRY_AFTER)
    if isinstance(exc, (Mismatch, InvalidToken)):
        response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Plain def: SlowAPIMiddleware calls this handler directly, without awaiting it.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or path params fail validation.

    The offending input values are left out: they may be passwords.
    """
    fields = [".".join(str(part) for part in err.get("loc", ())) for err in exc.errors()]
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=", ".join(fields) or None,
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict (see accounts/dependencies.py),
    use it directly as the error field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=exc.headers,
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# No rate limit applied -- health checks from load balancers and monitoring
# systems must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> JSONResponse:
    """Return liveness plus a database round-trip. 503 when the database is unreachable."""
    try:
        db_ok = request.app.state.store.ping()
    except Transient:
        db_ok = False
    body = HealthResponse(
        status="healthy" if db_ok else "degraded",
        version=__version__,
        components={"app": "ok", "database": "ok" if db_ok else "unavailable"},
    )
    return JSONResponse(status_code=200 if db_ok else 503, content=body.model_dump())
