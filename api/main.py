"""
api/main.py -- FastAPI application entry point for BlogAuth.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware     -- adds CORS headers for the blog frontend origins
  2. SlowAPIMiddleware  -- slowapi hook for app-wide limits (none configured);
                           the login limit is checked by its route decorator

Lifespan builds the store and the SessionService (with its hasher, codec and
mailer) on startup and disposes the store on shutdown. Nothing is constructed
at import time, so tests can swap the lifespan for one with in-memory stores.

Error handling:
  AuthError is translated to the shared ErrorResponse envelope using the
  _ERROR_STATUS / _ERROR_MESSAGES tables below -- the service never knows
  HTTP status codes. Unexpected exceptions are logged with a traceback and
  answered with an opaque 500.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.mailer import ResetMailer
from auth.passwords import BcryptHasher
from auth.sessions import SessionService
from auth.store import UserStore
from auth.tokens import TokenCodec
from core.config import get_settings
from core.errors import AuthError, ErrorKind

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("blogauth.api")

# ---------------------------------------------------------------------------
# Error kind -> HTTP status / client message
# ---------------------------------------------------------------------------

_ERROR_STATUS: dict[ErrorKind, int] = {
    ErrorKind.ALREADY_EXISTS: 422,
    ErrorKind.INVALID_CREDENTIALS: 401,
    ErrorKind.ACCESS_TOKEN_REQUIRED: 401,
    ErrorKind.INVALID_TOKEN: 401,
    ErrorKind.ACCESS_TOKEN_EXPIRED: 401,
    ErrorKind.INVALID_REFRESH_TOKEN: 401,
    ErrorKind.REFRESH_TOKEN_EXPIRED: 401,
    ErrorKind.INVALID_RESET_TOKEN: 401,
    ErrorKind.RESET_TOKEN_EXPIRED: 401,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.TOO_MANY_REQUESTS: 429,
    ErrorKind.EMAIL_SEND_FAILED: 500,
    ErrorKind.OPERATION_FAILED: 500,
    ErrorKind.TEMPORARILY_UNAVAILABLE: 503,
}

_ERROR_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.ALREADY_EXISTS: "User with that email or phone already exists.",
    ErrorKind.INVALID_CREDENTIALS: "Invalid credentials.",
    ErrorKind.ACCESS_TOKEN_REQUIRED: "Access token required.",
    ErrorKind.INVALID_TOKEN: "Invalid token.",
    ErrorKind.ACCESS_TOKEN_EXPIRED: "Access token has expired.",
    ErrorKind.INVALID_REFRESH_TOKEN: "Invalid refresh token.",
    ErrorKind.REFRESH_TOKEN_EXPIRED: "Refresh token has expired. Please log in again.",
    ErrorKind.INVALID_RESET_TOKEN: "Invalid reset token.",
    ErrorKind.RESET_TOKEN_EXPIRED: "Reset token has expired. Please request a new one.",
    ErrorKind.NOT_FOUND: "User not found.",
    ErrorKind.TOO_MANY_REQUESTS: "Too many login attempts. Please try again later.",
    ErrorKind.EMAIL_SEND_FAILED: "Failed to send email. Please try again later.",
    ErrorKind.OPERATION_FAILED: "An unexpected error occurred.",
    ErrorKind.TEMPORARILY_UNAVAILABLE: "Service temporarily unavailable. Please retry.",
}


def _error_response(kind: ErrorKind, status_code: int | None = None, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code or _ERROR_STATUS[kind],
        content=ErrorResponse(
            error=ErrorDetail(code=kind.value, message=_ERROR_MESSAGES[kind], detail=detail)
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Lifespan -- startup / shutdown
# ---------------------------------------------------------------------------


def build_session_service(store: UserStore) -> SessionService:
    """Wire a SessionService from settings around an existing store."""
    settings = get_settings()
    return SessionService(
        store=store,
        hasher=BcryptHasher(rounds=settings.bcrypt_rounds),
        codec=TokenCodec(settings.secret_key, algorithm=settings.jwt_algorithm),
        mailer=ResetMailer(settings),
        settings=settings,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the credential store and session service; dispose on shutdown."""
    settings = get_settings()
    logger.info("BlogAuth API starting up")
    app.state.user_store = UserStore(db_url=settings.database_url)
    app.state.session_service = build_session_service(app.state.user_store)
    logger.info(
        "Auth initialized (smtp_configured=%s, login limit=%s)",
        settings.smtp_configured,
        settings.login_rate_limit,
    )

    yield

    app.state.user_store.close()
    logger.info("BlogAuth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="BlogAuth API",
    description="Registration, sign-in, token refresh and password reset for the blog application.",
    version=__version__,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
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

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Translate a domain failure into its status code and envelope.

    exc.detail stays server-side: it can say which check failed (bad
    signature vs revoked version), which clients have no business knowing.
    """
    if exc.detail:
        logger.info("%s %s -> %s (%s)", request.method, request.url.path, exc.kind.value, exc.detail)
    return _error_response(exc.kind)


def _seconds_until_reset(request: Request) -> int:
    """Seconds left in the client's current throttle window, clamped to [1, window].

    slowapi records the tripped limit and its storage key on
    request.state.view_rate_limit before raising.
    """
    window = get_settings().login_throttle_window_seconds
    tripped = getattr(request.state, "view_rate_limit", None)
    if not tripped:
        return window
    limit_item, key_args = tripped
    reset_at = request.app.state.limiter.limiter.get_window_stats(limit_item, *key_args)[0]
    return max(1, min(window, int(reset_at - time.time()) + 1))


def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when the login throttle trips.

    Sync so SlowAPIMiddleware can call it directly as well as through
    Starlette's exception middleware.
    """
    logger.warning("Login throttle exceeded for %s", request.client.host if request.client else "unknown")
    response = _error_response(ErrorKind.TOO_MANY_REQUESTS, detail=str(exc.detail))
    response.headers["Retry-After"] = str(_seconds_until_reset(request))
    return response


app.add_exception_handler(RateLimitExceeded, rate_limit_handler)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when the request body fails validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for FastAPI/Starlette HTTP exceptions (404 routes, 405s)."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
    )


@app.exception_handler(OperationalError)
async def storage_unavailable_handler(request: Request, exc: OperationalError) -> JSONResponse:
    """Database locked / unreachable / timed out: retryable, not an auth failure."""
    logger.error("Storage unavailable on %s %s: %s", request.method, request.url.path, exc)
    response = _error_response(ErrorKind.TEMPORARILY_UNAVAILABLE)
    response.headers["Retry-After"] = "1"
    return response


@app.exception_handler(TimeoutError)
async def timeout_handler(request: Request, exc: TimeoutError) -> JSONResponse:
    logger.error("Timeout on %s %s", request.method, request.url.path)
    response = _error_response(ErrorKind.TEMPORARILY_UNAVAILABLE)
    response.headers["Retry-After"] = "1"
    return response


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(ErrorKind.OPERATION_FAILED)


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable.
# No rate limit -- load balancer checks must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and database reachability."""
    try:
        request.app.state.user_store.ping()
        database = "ok"
    except SQLAlchemyError:
        logger.exception("Health check: database unreachable")
        database = "error"
    return HealthResponse(version=__version__, components={"app": "ok", "database": database})
