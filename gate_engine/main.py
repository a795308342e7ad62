"""Deliverability Gate Engine: FastAPI application entry point."""

import signal
import uuid
from contextlib import asynccontextmanager

# configure_structlog MUST be called before all other gate_engine imports;
# structlog caches the processor chain on first use.
from gate_engine.core.logging import configure_structlog
from gate_engine.core.config import get_settings as _get_settings_early

_early_settings = _get_settings_early()
configure_structlog(
    log_level="DEBUG" if _early_settings.debug else "INFO",
    json_logs=not _early_settings.debug,
)

import redis.exceptions
import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from gate_engine.api.routes import api_router
from gate_engine.core.config import get_settings
from gate_engine.core.exceptions import (
    BaselineNotFoundError,
    GateEngineError,
    GateLockTimeoutError,
    GateStateConflictError,
    UnknownGateTypeError,
)
from gate_engine.db import close_db, close_redis, init_db, init_redis
from gate_engine.middleware.correlation import get_correlation_id, setup_correlation_middleware

logger = structlog.get_logger(__name__)

_ERROR_STATUS: dict[type[GateEngineError], int] = {
    UnknownGateTypeError: 400,
    BaselineNotFoundError: 404,
    GateStateConflictError: 409,
    GateLockTimeoutError: 409,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    app.state.shutting_down = False

    def handle_sigterm(signum, frame):
        app.state.shutting_down = True
        logger.info("sigterm_received", action="health_check_503_draining_connections")

    signal.signal(signal.SIGTERM, handle_sigterm)

    settings = get_settings()
    logger.info("startup_begin", app_name=settings.app_name, debug=settings.debug)

    await init_db()
    logger.info("db_initialized")

    # Redis only backs job locks; the API serves without it
    try:
        await init_redis()
        logger.info("redis_initialized")
    except (redis.exceptions.RedisError, OSError) as e:
        logger.warning("redis_unavailable", error=str(e), error_type=type(e).__name__)

    yield

    logger.info("shutdown_begin")
    await close_redis()
    await close_db()
    logger.info("shutdown_complete")


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Global handler for HTTPException with debug_id tracking."""
    debug_id = str(uuid.uuid4())

    logger.error(
        "http_exception",
        status_code=exc.status_code,
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        detail=exc.detail,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "debug_id": debug_id},
    )


async def gate_engine_exception_handler(request: Request, exc: GateEngineError) -> JSONResponse:
    """Map domain errors that escape a route to their HTTP status."""
    debug_id = str(uuid.uuid4())
    status_code = _ERROR_STATUS.get(type(exc), 500)

    logger.error(
        "gate_engine_exception",
        status_code=status_code,
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        error=str(exc),
        error_type=type(exc).__name__,
    )

    detail = str(exc) if status_code < 500 else "Internal server error"
    return JSONResponse(status_code=status_code, content={"detail": detail, "debug_id": debug_id})


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global handler for unhandled errors. Logs the traceback, returns a generic 500."""
    debug_id = str(uuid.uuid4())

    logger.error(
        "unhandled_exception",
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
    )

    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "debug_id": debug_id},
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Deliverability gates and revenue baselines for merchant email programs",
        version="0.1.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_correlation_middleware(app)

    app.exception_handler(HTTPException)(http_exception_handler)
    app.exception_handler(GateEngineError)(gate_engine_exception_handler)
    app.exception_handler(Exception)(generic_exception_handler)

    app.include_router(api_router, prefix="/api")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "gate_engine.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
