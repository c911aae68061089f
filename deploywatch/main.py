"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from deploywatch import __version__
from deploywatch.api.middleware import RequestLoggingMiddleware
from deploywatch.api.v1.router import router as v1_router
from deploywatch.config import settings
from deploywatch.core.exceptions import DeployWatchError
from deploywatch.core.reconciler import Reconciler, ReconciliationLoop
from deploywatch.services.docker_client import get_docker_client
from deploywatch.services.redis_client import close_redis
from deploywatch.services.registry import get_registry
from deploywatch.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    configure_logging()
    logger.info(
        "application.starting",
        version=__version__,
        environment=settings.app_env,
    )

    # One reconciler serves both the timer and operator-triggered passes
    loop = ReconciliationLoop(Reconciler(get_registry(), get_docker_client()))
    app.state.reconciliation_loop = loop
    if settings.reconcile_enabled:
        loop.start()

    yield

    # Shutdown
    await loop.stop()
    await get_docker_client().aclose()
    await close_redis()
    logger.info("application.shutdown")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="DeployWatch API",
        description="Live deploy progress, container log streaming and registry reconciliation",
        version=__version__,
        docs_url="/docs" if settings.app_debug else None,
        redoc_url="/redoc" if settings.app_debug else None,
        lifespan=lifespan,
    )

    # Add middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.is_development else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    # Register exception handlers
    @app.exception_handler(DeployWatchError)
    async def deploywatch_error_handler(
        request: Request, exc: DeployWatchError
    ) -> JSONResponse:
        """Handle application-specific errors."""
        if exc.status_code >= 500:
            logger.warning(
                "request.failed",
                error=exc.message,
                code=type(exc).__name__,
                path=request.url.path,
            )
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": {
                    "code": type(exc).__name__.upper(),
                    "message": exc.message,
                    "details": exc.details,
                }
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected errors."""
        logger.error(
            "unhandled_exception",
            error=str(exc),
            path=request.url.path,
            exc_info=True,
        )

        if settings.is_development:
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "error": {
                        "code": "INTERNAL_ERROR",
                        "message": str(exc),
                        "type": type(exc).__name__,
                    }
                },
            )

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": {
                    "code": "INTERNAL_ERROR",
                    "message": "An unexpected error occurred",
                }
            },
        )

    # Include routers
    app.include_router(v1_router)

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "deploywatch.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.is_development,
    )
