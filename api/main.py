"""
api/main.py -- FastAPI application entry point for the contacts account service.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware -- adds CORS headers for allowed browser origins
  2. log_requests   -- one log line per request with status and latency

Lifespan builds the collaborators once at startup (settings, store, token
issuer, mailer, avatar pipeline) and wires them into a single AccountService
on app.state.accounts. Settings validation runs here, so a missing or weak
SECRET_KEY stops the process before it serves a request.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from api.models import ErrorResponse, HealthResponse
from api.routes.v1.users import router as users_router
from auth.avatars import AvatarPipeline
from auth.errors import AccountError, InternalError
from auth.mailer import Mailer
from auth.service import AccountService
from auth.store import AccountStore
from auth.tokens import TokenConfig, TokenIssuer
from core.config import get_settings

VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("contactsauth.api")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


def build_account_service() -> AccountService:
    """Assemble the AccountService from Settings. Raises if settings are invalid."""
    settings = get_settings()
    store = AccountStore(settings.database_url) if settings.database_url else AccountStore()
    return AccountService(
        store=store,
        tokens=TokenIssuer(TokenConfig.from_settings(settings)),
        mailer=Mailer(settings.sendgrid_api_key, settings.mail_from, settings.base_url),
        avatars=AvatarPipeline(
            avatars_dir=settings.avatars_dir,
            tmp_dir=settings.upload_tmp_dir,
            size=settings.avatar_size,
            max_bytes=settings.max_avatar_bytes,
            allowed_extensions=settings.allowed_avatar_extensions,
        ),
        default_subscription=settings.default_subscription,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create shared resources on startup and release them on shutdown."""
    logger.info("Contacts account API starting up")
    accounts = build_account_service()
    app.state.accounts = accounts
    logger.info("Accounts initialized (mail mode=%s, avatars=%s)", accounts.mailer.mode, accounts.avatars.avatars_dir)

    yield

    accounts.mailer.close()
    accounts.store.close()
    logger.info("Contacts account API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Contacts Account API",
    description="Signup, email verification, bearer-token sessions and avatars for the contacts service.",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000"],
    allow_methods=["GET", "POST", "PATCH"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)


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

app.include_router(users_router, prefix="/api/v1/users", tags=["Users"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same {status, message} envelope so clients can
# parse errors uniformly.
# ---------------------------------------------------------------------------


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(status=status_code, message=message).model_dump(),
    )


@app.exception_handler(AccountError)
async def account_error_handler(request: Request, exc: AccountError) -> JSONResponse:
    """Map the auth.errors taxonomy to HTTP responses.

    InternalError details go to the log only; the client gets the generic message.
    """
    if isinstance(exc, InternalError):
        logger.error("Internal error on %s %s: %s", request.method, request.url.path, exc.message)
    return _error(exc.status_code, exc.public_message)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 (not FastAPI's default 422) naming the first invalid field."""
    errors = exc.errors()
    if not errors:
        return _error(400, "Request validation failed")
    first = errors[0]
    field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
    message = first.get("msg", "Invalid value")
    return _error(400, f"{field}: {message}" if field else message)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Covers route-level HTTPExceptions and Starlette's own 404/405 responses."""
    return _error(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors.

    The raw exception is logged, never returned. Exposing internal stack
    traces to clients leaks implementation details.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "Internal server error")


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=VERSION)
