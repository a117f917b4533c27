"""
FastAPI application entry point.

Administrative HTTP interface: thin wrappers over JobRepository and
ConfigRepository.
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from queuectl import __version__
from queuectl.api.routes import config_router, dlq_router, health_router, jobs_router
from queuectl.config import get_settings
from queuectl.db import close_db, create_schema, get_engine, init_db
from queuectl.errors import NotFoundError, StoreError, ValidationError
from queuectl.observability.logging import setup_logging
from queuectl.observability.metrics import setup_metrics
from queuectl.observability.tracing import instrument_fastapi, instrument_sqlalchemy, setup_tracing
from queuectl.types.api import ErrorResponse

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    # Startup
    setup_logging()
    setup_metrics()
    setup_tracing()
    await init_db()
    await create_schema()
    instrument_sqlalchemy(get_engine())

    logger.info("Application started")

    yield

    # Shutdown
    await close_db()
    logger.info("Application shutdown")


def _error_response(status_code: int, error: str, exc: Exception) -> JSONResponse:
    body = ErrorResponse(error=error, detail=str(exc))
    return JSONResponse(status_code=status_code, content=body.model_dump())


def register_exception_handlers(app: FastAPI) -> None:
    """Map queue errors to HTTP responses."""

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError) -> JSONResponse:
        return _error_response(status.HTTP_400_BAD_REQUEST, "validation_error", exc)

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        return _error_response(status.HTTP_404_NOT_FOUND, "not_found", exc)

    @app.exception_handler(StoreError)
    async def handle_store_error(request: Request, exc: StoreError) -> JSONResponse:
        logger.error("Store error handling request", extra={"path": request.url.path, "error": str(exc)})
        return _error_response(status.HTTP_503_SERVICE_UNAVAILABLE, "store_error", exc)


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        FastAPI: The configured application instance.
    """
    app = FastAPI(
        title="queuectl API",
        description="Administrative API for a persistent background job queue",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    register_exception_handlers(app)

    # Include routers
    app.include_router(health_router)
    app.include_router(jobs_router)
    app.include_router(dlq_router)
    app.include_router(config_router)

    # Instrument with OpenTelemetry
    instrument_fastapi(app)

    return app


def run(host: str | None = None, port: int | None = None) -> None:
    """Run the API server."""
    settings = get_settings()
    app = create_app()

    uvicorn.run(
        app,
        host=host or settings.api_host,
        port=port or settings.api_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
