"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from geotrigger.api.routes import executions, reconciliation, rules, wallets
from geotrigger.core.config import get_settings
from geotrigger.core.errors import ConflictAlreadyTerminal, GeoTriggerError
from geotrigger.core.logging import get_logger, setup_logging
from geotrigger.engine.factory import build_orchestrator, build_sweeper
from geotrigger.schemas.common import ErrorResponse
from geotrigger.storage.redis_client import close_redis_pool, get_redis, init_redis_pool

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager."""
    settings = get_settings()

    # Startup
    setup_logging()
    logger.info("Starting application", app_name=settings.app_name, version=settings.app_version)

    await init_redis_pool()
    redis = get_redis()
    app.state.orchestrator = build_orchestrator(redis)
    app.state.sweeper = build_sweeper(redis)
    logger.info("Execution core initialized")

    yield

    # Shutdown
    logger.info("Shutting down application")
    await app.state.orchestrator.close()
    await close_redis_pool()
    logger.info("Redis connection pool closed")


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Geo-triggered smart contract execution lifecycle",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(executions.router, prefix="/api/v1")
    app.include_router(rules.router, prefix="/api/v1")
    app.include_router(reconciliation.router, prefix="/api/v1")
    app.include_router(wallets.router, prefix="/api/v1")

    # Error response handlers
    @app.exception_handler(ConflictAlreadyTerminal)
    async def terminal_conflict_handler(
        request: Request,
        exc: ConflictAlreadyTerminal,
    ) -> JSONResponse:
        # A transition on a finished attempt is a no-op, not a failure
        logger.info("No-op transition on terminal attempt", path=request.url.path, **exc.detail())
        return JSONResponse(
            status_code=200,
            content={
                "code": 0,
                "message": exc.message,
                "data": {**exc.detail(), "changed": False},
            },
        )

    @app.exception_handler(GeoTriggerError)
    async def lifecycle_error_handler(request: Request, exc: GeoTriggerError) -> JSONResponse:
        logger.info(
            "Request failed",
            path=request.url.path,
            status_code=exc.status_code,
            error=exc.code,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(
                code=exc.status_code,
                message=exc.message,
                data=exc.detail(),
            ).model_dump(mode="json"),
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        detail = exc.detail
        content = ErrorResponse(
            code=exc.status_code,
            message=detail if isinstance(detail, str) else "HTTP error",
            data=None if isinstance(detail, str) else detail,
        )
        return JSONResponse(status_code=exc.status_code, content=content.model_dump(mode="json"))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content=ErrorResponse(
                code=422,
                message="Validation error",
                data=jsonable_errors(exc),
            ).model_dump(mode="json"),
        )

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "Unhandled exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
        )
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                code=500,
                message="Internal server error",
                data=str(exc) if settings.debug else None,
            ).model_dump(mode="json"),
        )

    # Health check endpoint
    @app.get("/health")
    async def health_check() -> dict:
        """Health check endpoint."""
        return {"status": "ok", "version": settings.app_version}

    @app.get("/metrics")
    async def metrics() -> Response:
        """Prometheus metrics."""
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    """Validation errors without non-serializable context objects."""
    return [
        {key: value for key, value in error.items() if key != "ctx"}
        for error in exc.errors()
    ]


# Application instance for uvicorn
app = create_app()
