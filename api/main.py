"""
api/main.py -- FastAPI application entry point for authgate.

Run with:      uvicorn asgi:app --reload
               python main.py serve

Middleware stack (outermost to innermost):
  1. log_requests      -- method, path, status, latency, client
  2. SlowAPIMiddleware -- enforces per-route rate limits from api.limiter

Lifespan builds the AuthContext (settings, store, metrics, lockout limiter)
once at startup and closes the store on shutdown. Route handlers receive it
through auth.dependencies.get_auth_context.

Every response, errors included, is rendered by api.encoder so callback
wrapping and ?pls200 apply uniformly.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.encoder import encode, encode_error
from api.limiter import limiter
from api.routes.v1.tokens import router as tokens_router
from auth.context import AuthContext
from auth.errors import AuthError, Internal, MalformedRequest, RateLimited
from core.config import get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("authgate.api")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the shared auth handles on startup and release them on shutdown."""
    logger.info("authgate API starting up")
    settings = get_settings()
    app.state.auth = AuthContext.create(settings)
    logger.info("Auth store initialized")

    yield

    app.state.auth.close()
    logger.info("authgate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="authgate API",
    description="Bearer token resolution, privilege gating, and password login.",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


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

app.include_router(tokens_router, prefix="/api/v1", tags=["Tokens"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same {"code", "message"} envelope through the
# encoder so clients parse every outcome the same way.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> Response:
    """Render an auth outcome raised from a dependency (privilege gate, resolver)."""
    return encode_error(request, exc)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """Return the 429 outcome when the per-IP limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = encode(request, {"code": 429, "message": RateLimited.message}, 429)
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> Response:
    """A body that is not JSON or has wrongly typed fields is a malformed request."""
    logger.info("Malformed request on %s: %s", request.url.path, exc.errors())
    return encode_error(request, MalformedRequest())


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> Response:
    """Render routing-level errors (404 unknown path, 405) in the same envelope."""
    response = encode(request, {"code": exc.status_code, "message": str(exc.detail)}, exc.status_code)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> Response:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return encode_error(request, Internal())
