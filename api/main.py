"""
api/main.py -- FastAPI application entry point for AniVault.

Exposes account sessions and cached, rate-limited anime metadata over HTTP.

Run with:  uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan handles startup (stores, signer, ledger, session manager, outbound
limiter, gateway, housekeeping task) and shutdown (cancel task, close
connections) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.anime import router as anime_router
from api.routes.v1.auth import router as auth_router
from auth.dependencies import get_current_user
from auth.errors import AuthError
from auth.ledger import RefreshTokenLedger
from auth.models import User
from auth.notifier import LoggingNotifier
from auth.sessions import SessionManager
from auth.store import UserStore
from auth.tokens import TokenSigner
from cache.store import ResponseCache
from core.config import get_settings
from core.gateway import CacheAsideGateway, GatewayError, UpstreamThrottled
from core.jikan import JikanClient
from core.ratelimit import OutboundRateLimiter

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("anivault.api")

settings = get_settings()

# ---------------------------------------------------------------------------
# Background housekeeping task
# ---------------------------------------------------------------------------


async def _housekeeping_loop(app: FastAPI, interval: float) -> None:
    """Sweep dead refresh tokens and purge expired cache rows every interval.

    Runs as a background asyncio task started in lifespan startup.
    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly. A failed pass is logged
    and retried on the next tick.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            removed = await asyncio.to_thread(app.state.ledger.sweep)
            purged = await asyncio.to_thread(app.state.cache.purge_expired)
            logger.info("Housekeeping: %d refresh tokens, %d cache entries removed", removed, purged)
        except Exception:
            logger.exception("Housekeeping pass failed")


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown.

    Startup order matters:
      1. Credential store, signer, ledger, session manager -- auth stack.
      2. Cache, outbound limiter, gateway, Jikan client -- metadata stack.
         Exactly one limiter per process: the upstream quota is global.
      3. Housekeeping task last -- references ledger and cache.
    """
    logger.info("AniVault API starting up")

    app.state.user_store = UserStore(settings.database_url)
    signer = TokenSigner(settings.secret_key)
    app.state.ledger = RefreshTokenLedger(app.state.user_store, settings.refresh_token_expire_seconds)
    # Dev mode logs verification codes; production has no transport configured here.
    notifier = LoggingNotifier() if settings.debug else None
    app.state.sessions = SessionManager(
        app.state.user_store,
        signer,
        app.state.ledger,
        access_lifetime_seconds=settings.access_token_expire_seconds,
        notifier=notifier,
        email_verification_required=settings.email_verification_required,
        verification_code_ttl_seconds=settings.verification_code_ttl_seconds,
    )
    logger.info(
        "Auth initialized (email_verification_required=%s, notifier=%s)",
        settings.email_verification_required,
        type(notifier).__name__ if notifier else "none",
    )

    app.state.cache = ResponseCache(settings.jikan_cache_db, ttl=settings.jikan_cache_ttl)
    app.state.gateway = CacheAsideGateway(
        app.state.cache,
        OutboundRateLimiter(settings.jikan_max_per_second, settings.jikan_max_per_minute),
        timeout=settings.jikan_timeout_seconds,
        throttle_backoff=settings.jikan_throttle_backoff_seconds,
    )
    app.state.jikan = JikanClient(app.state.gateway, settings.jikan_base_url)
    logger.info(
        "Gateway initialized (%d/s, %d/min, cache ttl %ds)",
        settings.jikan_max_per_second,
        settings.jikan_max_per_minute,
        settings.jikan_cache_ttl,
    )

    app.state.housekeeping_task = asyncio.create_task(_housekeeping_loop(app, settings.sweep_interval_seconds))

    yield

    # Shutdown
    app.state.housekeeping_task.cancel()
    app.state.gateway.close()
    app.state.cache.close()
    app.state.user_store.close()
    logger.info("AniVault API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="AniVault API",
    description="Anime tracking backend: account sessions and cached anime metadata from Jikan.",
    version=VERSION,
    lifespan=lifespan,
    # Disable built-in /docs and /redoc so we can add auth protection.
    # Auth-protected equivalents are registered below.
    docs_url=None,
    redoc_url=None,
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
    allow_methods=["GET", "POST", "PUT"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler. Wall-clock time before and after call_next gives the latency.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(anime_router, prefix="/api/v1", tags=["Anime"])


# ---------------------------------------------------------------------------
# Auth-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(user: User = Depends(get_current_user)):
    """Swagger UI -- requires authentication."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="AniVault API")


@app.get("/redoc", include_in_schema=False)
async def redoc(user: User = Depends(get_current_user)):
    """ReDoc UI -- requires authentication."""
    return get_redoc_html(openapi_url="/openapi.json", title="AniVault API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render session errors with the status and code carried by the exception."""
    response = _error(exc.status, exc.code, exc.message)
    if exc.status == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    """502 for upstream failures; 503 + Retry-After when the upstream keeps throttling."""
    response = _error(exc.status, exc.code, exc.message)
    if isinstance(exc, UpstreamThrottled):
        response.headers["Retry-After"] = str(exc.retry_after)
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Retry-After tells clients exactly how many seconds to wait before retrying.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return _error(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it -- str(dict) produces a Python repr,
    not JSON.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    response = _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))
    for name, value in (exc.headers or {}).items():
        response.headers[name] = value
    return response


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and credential-store reachability."""
    components = {"app": "ok"}
    try:
        with request.app.state.user_store.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        components["database"] = "ok"
    except SQLAlchemyError:
        logger.exception("Health check: database unreachable")
        components["database"] = "error"
    status = "healthy" if all(v == "ok" for v in components.values()) else "degraded"
    return HealthResponse(status=status, version=VERSION, components=components)
