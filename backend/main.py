# main.py — Kanban API application
# Features:
# - Request correlation IDs and per-request logging
# - Security headers
# - Uniform {message} error bodies
# - Periodic overdue-deadline scan
# - All routers registered under /api/v1

import os
import json
import uuid
import time
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from database import init_db, close_db, get_db_context, get_db_session
from errors import AppError, InternalError
from notification_service import run_overdue_check
from telemetry import setup_telemetry, span

# Logging
logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
)
logger = logging.getLogger("kanban")

APP_VERSION = "1.0.0"
OVERDUE_CHECK_INTERVAL_MINUTES = float(os.getenv("OVERDUE_CHECK_INTERVAL_MINUTES", "60"))


def _check_startup_config():
    """Warn about insecure configuration; never blocks startup."""
    warnings = []

    jwt_key = os.getenv("JWT_SECRET_KEY", "")
    if not jwt_key or len(jwt_key) < 32:
        warnings.append("JWT_SECRET_KEY is not set or shorter than 32 characters")

    if os.getenv("ENVIRONMENT") == "production" and os.getenv("SESSION_COOKIE_SECURE", "false").lower() != "true":
        warnings.append("SESSION_COOKIE_SECURE is off in production; session cookies will be sent over plain HTTP")

    for w in warnings:
        logger.warning(w)

    return len(warnings) == 0


async def _overdue_loop(interval_minutes: float):
    """Run the deadline scan forever, one pass per interval"""
    while True:
        await asyncio.sleep(interval_minutes * 60)
        try:
            with span("overdue_check"):
                async with get_db_context() as db:
                    summary = await run_overdue_check(db)
            logger.info(f"Scheduled overdue check: {summary}")
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Scheduled overdue check failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting Kanban API v{APP_VERSION}...")
    await init_db()
    _check_startup_config()
    # No-op unless OTEL_EXPORTER_OTLP_ENDPOINT is set
    setup_telemetry(app)

    overdue_task = None
    if OVERDUE_CHECK_INTERVAL_MINUTES > 0:
        overdue_task = asyncio.create_task(_overdue_loop(OVERDUE_CHECK_INTERVAL_MINUTES))
        logger.info(f"Overdue check scheduled every {OVERDUE_CHECK_INTERVAL_MINUTES:g} minute(s)")
    yield
    logger.info("Shutting down Kanban API...")
    if overdue_task:
        overdue_task.cancel()
        try:
            await overdue_task
        except asyncio.CancelledError:
            pass
    await close_db()


app = FastAPI(
    title="Kanban",
    description="Multi-user Kanban boards with role-based sharing and an audit trail",
    version=APP_VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ============================================================
# CORS
# ============================================================

ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS",
        "http://localhost:3000,http://localhost:5173"
    ).split(",")
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID", "X-Correlation-ID"],
    expose_headers=["X-Request-ID", "X-Correlation-ID"],
)


# ============================================================
# MIDDLEWARE: Correlation IDs + Timing
# ============================================================

@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    correlation_id = request.headers.get("X-Correlation-ID", request_id)
    request.state.request_id = request_id
    request.state.correlation_id = correlation_id

    start = time.perf_counter()
    response = await call_next(request)
    duration = time.perf_counter() - start

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Correlation-ID"] = correlation_id
    response.headers["X-Response-Time"] = f"{duration:.4f}s"

    logger.info(
        f"{request.method} {request.url.path} -> {response.status_code} "
        f"({duration:.3f}s) [rid={request_id[:8]}]"
    )
    return response


# ============================================================
# MIDDLEWARE: Security Headers
# ============================================================

@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Permissions-Policy"] = "camera=(), microphone=(), geolocation=()"
    if os.getenv("ENVIRONMENT") == "production":
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response


# ============================================================
# EXCEPTION HANDLERS
# ============================================================

def _request_id(request: Request):
    return getattr(request.state, "request_id", None)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    # Sanitise errors to ensure JSON serialisability
    errors = []
    for err in exc.errors():
        clean_err = {
            "type": str(err.get("type", "unknown")),
            "loc": list(err.get("loc", [])),
            "msg": str(err.get("msg", "")),
        }
        if "input" in err:
            try:
                json.dumps(err["input"])
                clean_err["input"] = err["input"]
            except (TypeError, ValueError):
                clean_err["input"] = str(err["input"])
        errors.append(clean_err)

    return JSONResponse(
        status_code=400,
        content={"message": "Invalid request", "errors": errors, "request_id": _request_id(request)},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):
    logger.warning(f"Integrity error on {request.method} {request.url.path}: {exc.orig}")
    return JSONResponse(status_code=409, content={"message": "Conflicts with existing data"})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={**InternalError().to_dict(), "request_id": _request_id(request)},
    )


# ============================================================
# ROUTERS
# ============================================================

from routers import (
    auth, users, portfolios, boards, lists, cards, labels,
    comments, checklists, members, notifications, dashboard, admin,
)

app.include_router(auth.router)
app.include_router(users.router)
app.include_router(portfolios.router)
app.include_router(boards.router)
app.include_router(lists.router)
app.include_router(cards.router)
app.include_router(labels.router)
app.include_router(comments.router)
app.include_router(checklists.router)
app.include_router(members.router)
app.include_router(notifications.router)
app.include_router(dashboard.router)
app.include_router(admin.router)


# ============================================================
# HEALTH & ROOT
# ============================================================

@app.get("/health")
async def health_check():
    """Health check with database connectivity verification"""
    db_status = "unknown"
    try:
        async for db in get_db_session():
            await db.execute(text("SELECT 1"))
            db_status = "connected"
            break
    except Exception as e:
        db_status = f"error: {str(e)[:100]}"

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "version": APP_VERSION,
        "environment": os.getenv("ENVIRONMENT", "development"),
        "database": db_status,
    }


@app.get("/")
async def root():
    return {
        "name": "Kanban",
        "version": APP_VERSION,
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000)),
        reload=os.getenv("ENVIRONMENT") != "production",
    )
