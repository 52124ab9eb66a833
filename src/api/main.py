"""Play Entitlements API — FastAPI application.

Usage:
    uvicorn src.api.main:app --host 0.0.0.0 --port 8000
"""
from __future__ import annotations

import logging

from src.logging_config import setup_logging
setup_logging()
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from src.db.engine import dispose_engine, get_engine, session_scope
from src.db.tables import Base
from src.errors import StoreError
from config.settings import settings

API_VERSION = "1.0.0"

# ── Sentry Error Tracking ────────────────────────
if settings.SENTRY_DSN:
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
    from sentry_sdk.integrations.logging import LoggingIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.SENTRY_ENVIRONMENT,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        integrations=[
            FastApiIntegration(),
            SqlalchemyIntegration(),
            LoggingIntegration(level=logging.WARNING, event_level=logging.ERROR),
        ],
        # Purchase tokens and Firebase ID tokens travel in requests
        send_default_pii=False,
        before_send=lambda event, hint: (
            {**event, "request": {**event.get("request", {}), "cookies": None, "headers": None}}
            if "request" in event else event
        ),
    )

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Validate config and create tables on startup; drain the pool on shutdown."""
    from src.startup_checks import validate_settings
    validate_settings()

    # Import all tables so they're registered with Base.metadata
    import src.db.subscription_tables  # noqa: F401
    try:
        async with get_engine().begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables ready")
    except (StoreError, SQLAlchemyError, OSError):
        logger.exception("Database unavailable at startup — store calls will fail until it recovers")

    yield

    logger.info("Shutting down — draining connections...")
    await dispose_engine()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Play Entitlements API",
    version=API_VERSION,
    description="Links Google Play purchase tokens to Firebase users and answers premium checks",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Request ID tracing
from src.middleware.request_id import RequestIDMiddleware
app.add_middleware(RequestIDMiddleware)


# --- Subscription routes ---
from src.api.subscriptions import router as subscriptions_router
app.include_router(subscriptions_router)


@app.get("/health")
async def health():
    """Deep health check — validates DB connectivity."""
    try:
        async with session_scope() as session:
            await session.execute(text("SELECT 1"))
        db_status = "connected"
    except (StoreError, SQLAlchemyError, OSError):
        db_status = "error"
    status = "ok" if db_status == "connected" else "degraded"
    return {"status": status, "db": db_status, "version": API_VERSION}


@app.get("/ready")
async def readiness():
    """Readiness probe for orchestrators (Cloud Run, K8s).

    Returns 503 if not ready to serve traffic.
    """
    try:
        async with session_scope() as session:
            await session.execute(text("SELECT 1"))
    except (StoreError, SQLAlchemyError, OSError):
        return JSONResponse(status_code=503, content={"ready": False, "reason": "database unavailable"})
    return {"ready": True}


# --- Structured Error Responses ---

from fastapi import Request as FastAPIRequest
from fastapi.exceptions import RequestValidationError


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: FastAPIRequest, exc: RequestValidationError):
    """Return clean, structured validation errors instead of raw Pydantic output."""
    errors = []
    for err in exc.errors():
        field = " → ".join(str(loc) for loc in err["loc"]) if err.get("loc") else "unknown"
        errors.append({"field": field, "message": err["msg"]})
    return JSONResponse(status_code=422, content={
        "error": "validation_error",
        "message": "Invalid request data",
        "details": errors,
    })


@app.exception_handler(HTTPException)
async def http_error_handler(request: FastAPIRequest, exc: HTTPException):
    """Consistent error envelope for all HTTP errors."""
    return JSONResponse(status_code=exc.status_code, content={
        "error": exc.detail if isinstance(exc.detail, str) else "error",
        "message": exc.detail,
    })


@app.exception_handler(Exception)
async def unhandled_error_handler(request: FastAPIRequest, exc: Exception):
    """Catch-all for unhandled exceptions — never leak stack traces."""
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={
        "error": "internal_error",
        "message": "Something went wrong. Please try again.",
    })


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("src.api.main:app", host=settings.API_HOST, port=settings.API_PORT)
