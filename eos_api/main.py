"""
main.py — EOS accountability API entry point.

Start with: uvicorn eos_api.main:app --reload --port 8000
"""
import logging
import os
import subprocess
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from starlette.exceptions import HTTPException as StarletteHTTPException

from eos_api.config import settings
from eos_api.errors import EOSError, InsufficientFunds

# ---------------------------------------------------------------------------
# Logging: configured before anything else
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan: startup & shutdown hooks
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:
      1. Run Alembic migrations
      2. Connect Redis (optional: sweep lock and SMS cooldown degrade to no-ops)
      3. Build payment and messaging gateways
    Shutdown:
      1. Close Redis pool
    """
    # --- 1. Database: run Alembic migrations ---
    package_dir = os.path.dirname(os.path.abspath(__file__))
    result = subprocess.run(
        [sys.executable, "-m", "alembic", "upgrade", "head"],
        capture_output=True,
        text=True,
        cwd=package_dir,
    )
    if result.returncode != 0:
        logger.error("Alembic migration failed:\n%s", result.stderr)
        raise RuntimeError(f"Alembic migration failed: {result.stderr}")
    msg = result.stdout.strip() or "No pending migrations"
    logger.info("Alembic: %s", msg)

    # --- 2. Redis ---
    from eos_api.cache import create_redis_pool

    app.state.redis = None
    if settings.redis_url:
        try:
            app.state.redis = await create_redis_pool()
        except (RedisError, OSError) as exc:
            logger.warning("Redis unavailable, continuing without coordination: %s", exc)

    # --- 3. External gateways ---
    from eos_api.gateways import build_messaging_gateway, build_payment_gateway

    app.state.payments = build_payment_gateway()
    app.state.messaging = build_messaging_gateway()

    logger.info("EOS API v%s starting up", settings.app_version)
    yield

    # --- Shutdown ---
    if app.state.redis is not None:
        await app.state.redis.aclose()
        logger.info("Redis connection pool closed")
    logger.info("EOS API shutting down")


# ---------------------------------------------------------------------------
# FastAPI application instance
# ---------------------------------------------------------------------------
app = FastAPI(
    title="EOS Accountability API",
    version=settings.app_version,
    description=(
        "Daily fitness objectives backed by a monetary pledge. Missed deadlines "
        "move the pledge to a chosen recipient or to charity."
    ),
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# CORS middleware: restricted to frontend origins from settings
# ---------------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Error response helper
# ---------------------------------------------------------------------------
def _make_error_response(
    code: str,
    message: str,
    details: list[dict[str, Any]] | None = None,
    status_code: int = 500,
    **extra: Any,
) -> JSONResponse:
    """Build a standard {error: {code, message, details}} response."""
    body = {
        "error": {
            "code": code,
            "message": message,
            "details": details or [],
            **extra,
        }
    }
    return JSONResponse(status_code=status_code, content=body)


# ---------------------------------------------------------------------------
# Global exception handlers: registered BEFORE routers
# ---------------------------------------------------------------------------
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """
    Converts Pydantic / FastAPI 422 validation errors to standard format.
    Returns ALL field violations in one response.
    """
    details = []
    for error in exc.errors():
        # Dot-notation field path, excluding the top-level 'body' loc
        field = ".".join(str(loc) for loc in error["loc"] if loc != "body")
        details.append({"field": field or None, "issue": error["msg"]})
    return _make_error_response(
        code="VALIDATION_ERROR",
        message="Request validation failed",
        details=details,
        status_code=422,
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    code_map = {
        400: "BAD_REQUEST",
        401: "UNAUTHORIZED",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
        409: "CONFLICT",
        422: "VALIDATION_ERROR",
        429: "RATE_LIMITED",
    }
    code = code_map.get(exc.status_code, f"HTTP_{exc.status_code}")
    return _make_error_response(
        code=code,
        message=str(exc.detail),
        status_code=exc.status_code,
    )


@app.exception_handler(EOSError)
async def domain_error_handler(request: Request, exc: EOSError) -> JSONResponse:
    """Domain errors carry their own status and code (see errors.py)."""
    extra = {}
    if isinstance(exc, InsufficientFunds):
        extra["availableCents"] = exc.available_cents
    if exc.status_code >= 500:
        logger.warning("Upstream failure on %s %s: %s", request.method, request.url.path, exc.message)
    return _make_error_response(
        code=exc.code,
        message=exc.message,
        details=exc.details,
        status_code=exc.status_code,
        **extra,
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """
    Catch-all for unexpected errors.
    DEBUG=true  → includes exception type & message in details (dev only).
    DEBUG=false → generic message; full traceback logged server-side only.
    """
    logger.error(
        "Unhandled exception on %s %s",
        request.method,
        request.url.path,
        exc_info=True,
    )
    if settings.debug:
        details = [{"issue": f"{type(exc).__name__}: {exc}"}]
        message = "An unexpected error occurred (debug details included)"
    else:
        details = []
        message = "An unexpected error occurred"
    return _make_error_response(
        code="INTERNAL_ERROR",
        message=message,
        details=details,
        status_code=500,
    )


# ---------------------------------------------------------------------------
# Health endpoint (no auth required)
# ---------------------------------------------------------------------------
@app.get("/health", tags=["System"])
async def health_check() -> dict:
    return {
        "ok": True,
        "status": "ok",
        "version": settings.app_version,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
from eos_api.services.ledger.routes import router as ledger_router  # noqa: E402
from eos_api.services.objectives.routes import router as objectives_router  # noqa: E402
from eos_api.services.recipients.routes import router as recipients_router  # noqa: E402
from eos_api.services.users.routes import router as users_router  # noqa: E402

app.include_router(users_router)
app.include_router(objectives_router)
app.include_router(recipients_router)
app.include_router(ledger_router)
