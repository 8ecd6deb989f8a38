"""
Opinion Sync Engine
===================
Keeps the relational primary store and the Redis replica consistent for
projects, opinions and tasks, and guards them with archive, protection and
quota rules.
"""

import time
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError

from app.api.envelope import engine_error_envelope, error_envelope
from app.api.routes.sync import router as sync_router
from app.core.config import get_settings
from app.core.correlation import (
    get_correlation_id,
    get_request_id,
    new_correlation_id,
    new_request_id,
    set_correlation_id,
    set_request_id,
)
from app.core.database import init_db
from app.core.errors import SyncEngineError
from app.core.logging import get_logger, setup_logging
from app.schemas import HealthResponse
from app.services.registry import get_registry

settings = get_settings()
logger = get_logger("main")

_start_time = time.time()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup & shutdown lifecycle."""

    # ── Startup ──
    setup_logging()
    logger.info("app_starting", app=settings.app_name, env=settings.app_env)

    problems = settings.validate_limits()
    if problems:
        logger.error("invalid_limit_settings", problems=problems)
        raise RuntimeError("; ".join(problems))

    await init_db()
    logger.info("database_initialized")

    registry = get_registry()
    logger.info("app_ready")

    yield

    # ── Shutdown ──
    await registry.close()
    logger.info("app_shutdown")


app = FastAPI(
    title=settings.app_name,
    description="Cross-store consistency and protection engine for opinion projects.",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)


# ── Request Logging Middleware ──

@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all incoming requests with timing."""
    request_id = request.headers.get("x-request-id") or new_request_id()
    correlation_id = request.headers.get("x-correlation-id") or new_correlation_id()
    set_request_id(request_id)
    set_correlation_id(correlation_id)
    structlog.contextvars.bind_contextvars(request_id=request_id, correlation_id=correlation_id)
    start = time.time()
    response = None
    try:
        response = await call_next(request)
        return response
    finally:
        elapsed = round((time.time() - start) * 1000, 2)
        if response is not None:
            response.headers["x-request-id"] = request_id
            response.headers["x-correlation-id"] = correlation_id
            status_code = response.status_code
        else:
            status_code = 500

        if request.url.path not in ["/health", "/docs", "/redoc", "/openapi.json"]:
            logger.info(
                "http_request",
                method=request.method,
                path=request.url.path,
                status=status_code,
                elapsed_ms=elapsed,
                request_id=get_request_id(),
                correlation_id=get_correlation_id(),
            )

        structlog.contextvars.clear_contextvars()
        set_request_id("")
        set_correlation_id("")


# ── Exception Handlers ──

@app.exception_handler(SyncEngineError)
async def sync_engine_exception_handler(request: Request, exc: SyncEngineError):
    if exc.status_code >= 500:
        logger.error("engine_error", path=request.url.path, code=exc.code, error=exc.message)
    else:
        logger.info("engine_rejection", path=request.url.path, code=exc.code)
    return engine_error_envelope(exc, meta={"path": request.url.path})


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    logger.warning(
        "http_exception",
        path=request.url.path,
        status_code=exc.status_code,
        detail=str(exc.detail),
    )
    return error_envelope(
        code="HTTP_ERROR",
        message="Request failed",
        status_code=exc.status_code,
        details=exc.detail,
        meta={"path": request.url.path},
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning("validation_error", path=request.url.path, errors=exc.errors())
    return error_envelope(
        code="VALIDATION_ERROR",
        message="Validation failed",
        status_code=400,
        details={"errors": jsonable_errors(exc)},
        meta={"path": request.url.path},
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"field": ".".join(str(part) for part in item.get("loc", ())), "message": str(item.get("msg", ""))}
        for item in exc.errors()
    ]


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        error=str(exc),
        error_type=type(exc).__name__,
    )
    return error_envelope(
        code="INTERNAL_ERROR",
        message="Internal server error",
        status_code=500,
        meta={"path": request.url.path},
    )


# ── Register Routers ──

app.include_router(sync_router, prefix="/api/v1")


# ── Health Check ──

@app.get("/health", response_model=HealthResponse, tags=["System"])
async def health_check():
    """System health check endpoint."""
    return HealthResponse(
        status="ok",
        version="1.0.0",
        uptime_seconds=round(time.time() - _start_time, 2),
    )
