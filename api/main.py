"""
api/main.py -- FastAPI application entry point for AuthPair.

Run with:  uvicorn api.main:app --reload

Wiring:
  wire_auth() builds the whole auth core from explicit settings: one SQLAlchemy
  engine, one RefreshTokenStore, and per principal kind a PrincipalStore, a
  TokenCodec and an AuthService. Everything lands on app.state:

    app.state.engine                     -- shared SQLAlchemy engine
    app.state.refresh_tokens             -- RefreshTokenStore
    app.state.codecs[kind.name]          -- TokenCodec (read by the access guard)
    app.state.auth_services[kind.name]   -- AuthService (read by route handlers)

  Tests call wire_auth() from their own lifespan with an in-memory database.

Lifespan handles startup (wiring, expired-token purge task) and shutdown
(cancel purge task, dispose engine) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.engine import Engine
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import build_auth_router
from api.routes.v1.employees import router as employees_router
from auth.errors import AuthError
from auth.kinds import EMPLOYEE, KINDS, USER
from auth.service import AuthService
from auth.store import PrincipalStore, RefreshTokenStore, create_store_engine
from auth.tokens import TokenCodec
from core.config import Settings, get_settings

__version__ = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("authpair.api")

_PURGE_INTERVAL_SECONDS = 6 * 60 * 60


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def wire_auth(app: FastAPI, settings: Settings, engine: Engine) -> None:
    """Build stores, codecs and services for every principal kind and attach them to app.state."""
    refresh_tokens = RefreshTokenStore(engine)
    app.state.engine = engine
    app.state.refresh_tokens = refresh_tokens
    app.state.codecs = {}
    app.state.auth_services = {}
    for kind in KINDS.values():
        codec = TokenCodec(kind, settings.token_settings(kind.name))
        app.state.codecs[kind.name] = codec
        app.state.auth_services[kind.name] = AuthService(
            kind=kind,
            codec=codec,
            principals=PrincipalStore(engine, kind.name),
            refresh_tokens=refresh_tokens,
            bcrypt_rounds=settings.bcrypt_rounds,
        )


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Delete expired refresh token records every 6 hours.

    The purge runs in a worker thread because the store is synchronous.
    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(_PURGE_INTERVAL_SECONDS)
        await asyncio.to_thread(app.state.refresh_tokens.purge_expired)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime."""
    settings = get_settings()
    logger.info("AuthPair API starting up")
    engine = create_store_engine(settings.database_url)
    wire_auth(app, settings, engine)
    app.state.refresh_tokens.purge_expired()
    logger.info("Auth initialized (kinds=%s)", ", ".join(app.state.auth_services))
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    await asyncio.gather(app.state.purge_task, return_exceptions=True)
    engine.dispose()
    logger.info("AuthPair API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="AuthPair API",
    description="Access / refresh token issuance for users and employees.",
    version=__version__,
    lifespan=lifespan,
)


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

app.include_router(build_auth_router(USER), prefix="/api/v1/auth", tags=["Auth"])
app.include_router(build_auth_router(EMPLOYEE), prefix="/api/v1/employee-auth", tags=["Employee Auth"])
app.include_router(employees_router, prefix="/api/v1", tags=["Employees"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map the auth core's error taxonomy onto HTTP status codes."""
    response = _error_response(exc.status_code, exc.code, exc.message)
    if exc.status_code == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with structured error when the request body fails shape validation."""
    return _error_response(400, "validation_error", "Invalid payload.", str(exc.errors()))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Return a structured error for all HTTP exceptions, including unmatched routes (404) and methods (405)."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors, including store faults.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"], response_model=HealthResponse)
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and a database connectivity check."""
    database = "ok"
    try:
        with request.app.state.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Health check: database unreachable")
        database = "error"
    status = "healthy" if database == "ok" else "degraded"
    return HealthResponse(status=status, version=__version__, components={"app": "ok", "database": database})
