"""
api/main.py -- FastAPI application entry point for Wayfarer.

Exposes tours, users, reviews and bookings over JSON. The server-rendered
pages in web/ are mounted onto this same app by asgi.py.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  4. limit_json_body       -- rejects JSON bodies over 10 kB
  5. log_requests          -- one log line per request with latency

Lifespan builds every collaborator once (stores, frozen AuthConfig, email
sender, image store, checkout gateway) and parks it on app.state.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.bookings import router as bookings_router
from api.routes.v1.bookings import webhook_router
from api.routes.v1.reviews import router as reviews_router
from api.routes.v1.tours import router as tours_router
from api.routes.v1.users import router as users_router
from auth.dependencies import protect
from auth.models import User
from auth.service import AuthService
from auth.store import UserStore
from core.config import AuthConfig, get_settings
from core.errors import AppError
from mail.sender import build_sender
from media.images import ImageStore
from payments.checkout import CheckoutGateway
from tours.store import TourStore

VERSION = "1.0.0"
MAX_JSON_BODY_BYTES = 10 * 1024

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("wayfarer.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build shared collaborators on startup, dispose them on shutdown.

    AuthConfig is frozen here and never rebuilt, so every request sees the
    same signing secret, token lifetime, and lockout threshold.
    """
    settings = get_settings()
    logger.info("Wayfarer starting up (environment=%s)", settings.environment)
    app.state.settings = settings
    app.state.auth_config = AuthConfig.from_settings(settings)
    app.state.user_store = UserStore(settings.database_url)
    app.state.tour_store = TourStore(settings.database_url)
    app.state.mailer = build_sender(settings)
    app.state.auth_service = AuthService(app.state.user_store, app.state.auth_config, app.state.mailer)
    app.state.images = ImageStore(settings.media_root)
    app.state.checkout = CheckoutGateway(settings.stripe_secret_key, settings.stripe_webhook_secret)
    logger.info("Stores initialized (database=%s)", settings.database_url.split("@")[-1])

    yield

    app.state.tour_store.close()
    app.state.user_store.close()
    logger.info("Wayfarer shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Wayfarer API",
    description="Tours, reviews, bookings, and accounts for the Wayfarer booking site.",
    version=VERSION,
    lifespan=lifespan,
    # Built-in docs are replaced by auth-protected routes below.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[_settings.public_url],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


@app.middleware("http")
async def limit_json_body(request: Request, call_next):
    """Reject JSON bodies larger than 10 kB before they are parsed."""
    if request.headers.get("content-type", "").startswith("application/json"):
        length = request.headers.get("content-length")
        if length and length.isdigit() and int(length) > MAX_JSON_BODY_BYTES:
            return JSONResponse(
                status_code=413,
                content=ErrorResponse(
                    error=ErrorDetail(code="payload_too_large", message="Request body too large.")
                ).model_dump(),
            )
    return await call_next(request)


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

app.include_router(users_router, prefix="/api/v1", tags=["Users"])
app.include_router(tours_router, prefix="/api/v1", tags=["Tours"])
app.include_router(reviews_router, prefix="/api/v1", tags=["Reviews"])
app.include_router(bookings_router, prefix="/api/v1", tags=["Bookings"])
app.include_router(webhook_router, tags=["Bookings"])
# Web UI router is mounted by asgi.py, not here.
# api/ and web/ are independent layers -- only the top-level asgi.py imports both.


# ---------------------------------------------------------------------------
# Auth-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(user: User = Depends(protect)):
    """Swagger UI -- requires authentication."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="Wayfarer API")


@app.get("/redoc", include_in_schema=False)
async def redoc(user: User = Depends(protect)):
    """ReDoc UI -- requires authentication."""
    return get_redoc_html(openapi_url="/openapi.json", title="Wayfarer API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# /api/* gets the JSON ErrorResponse envelope. Every other path is a browser
# page: if asgi.py installed app.state.error_renderer, errors render as HTML.
# ---------------------------------------------------------------------------


# Paths answered in JSON even when an HTML error renderer is installed.
JSON_PATH_PREFIXES = ("/api", "/webhook-checkout")


def _wants_page(request: Request) -> bool:
    path = request.url.path
    if path.startswith(JSON_PATH_PREFIXES):
        return False
    return getattr(request.app.state, "error_renderer", None) is not None


def _error_response(request: Request, status_code: int, code: str, message: str, detail: str | None = None):
    if _wants_page(request):
        return request.app.state.error_renderer(request, status_code, message)
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            status="fail" if status_code < 500 else "error",
            error=ErrorDetail(code=code, message=message, detail=detail),
        ).model_dump(),
    )


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    """Map an AppError to its status and code.

    Non-operational errors (a collaborator failed) are logged with the
    traceback and the client gets a generic message.
    """
    if exc.is_operational:
        return _error_response(request, exc.status_code, exc.code, exc.message, exc.detail)
    logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message, exc_info=exc)
    return _error_response(request, exc.status_code, exc.code, "Something went wrong. Please try again later.")


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):
    """A unique constraint fired: duplicate email, tour name, or review."""
    logger.info("Integrity error on %s %s: %s", request.method, request.url.path, exc.orig)
    return _error_response(
        request, 409, "duplicate_field", "Duplicate field value. Please use another value!"
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests from this IP, please try again in an hour!",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Return 422 with structured error when request body or query params fail validation."""
    return _error_response(request, 422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Structured error for FastAPI/Starlette HTTP exceptions (404 on unknown routes, etc.)."""
    if isinstance(exc.detail, dict):
        if _wants_page(request):
            return request.app.state.error_renderer(request, exc.status_code, exc.detail.get("message", ""))
        return JSONResponse(
            status_code=exc.status_code,
            content={"status": "fail" if exc.status_code < 500 else "error", "error": exc.detail},
        )
    message = str(exc.detail)
    if exc.status_code == 404:
        message = f"Can't find {request.url.path} on this server!"
    return _error_response(request, exc.status_code, f"http_{exc.status_code}", message)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(request, 500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint (no rate limit -- monitors must not be throttled)
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=VERSION)
