"""FastAPI application for Taskhook."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from taskhook import __version__
from taskhook.config import Settings
from taskhook.exceptions import ConfigurationError, NotFoundError, TaskhookError
from taskhook.logging import configure_logging, get_logger
from taskhook.service import TaskhookService

from .router import router, set_service

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifespan.

    Creates the TaskhookService on startup. On shutdown, in-flight
    deliveries finish their current attempt and the HTTP client is closed.
    """
    settings: Settings = app.state.settings

    configure_logging(level=settings.log_level, format=settings.log_format)
    logger.info("Starting Taskhook API", log_level=settings.log_level, env=settings.env)

    service = TaskhookService.create(settings)
    set_service(service)

    yield

    await service.close()
    set_service(None)


def register_exception_handlers(app: FastAPI) -> None:
    """Map Taskhook errors to HTTP responses."""

    @app.exception_handler(NotFoundError)
    async def not_found_error_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        """Handle not found errors with 404 status."""
        logger.info(
            "Resource not found",
            resource_type=exc.resource_type,
            resource_id=exc.resource_id,
            path=str(request.url),
        )
        return JSONResponse(status_code=404, content=exc.to_dict())

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(
        request: Request, exc: ConfigurationError
    ) -> JSONResponse:
        """Handle unusable webhook configuration with 422 status."""
        logger.warning("Webhook misconfigured", error=exc.message, path=str(request.url))
        return JSONResponse(status_code=422, content=exc.to_dict())

    @app.exception_handler(TaskhookError)
    async def taskhook_error_handler(request: Request, exc: TaskhookError) -> JSONResponse:
        """Handle all other Taskhook errors with 500 status."""
        logger.error("Taskhook error", error=exc.message, code=exc.code, path=str(request.url))
        return JSONResponse(status_code=500, content=exc.to_dict())


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create a FastAPI application.

    Args:
        settings: Optional settings. Uses environment if None.

    Returns:
        Configured FastAPI application.

    Example:
        ```python
        from taskhook.api import create_app

        app = create_app()
        # Run with: uvicorn taskhook.api:app --reload
        ```
    """
    if settings is None:
        settings = Settings()

    app = FastAPI(
        title="Taskhook",
        description="Signed webhook notifications for task-lifecycle events.",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.settings = settings

    register_exception_handlers(app)
    app.include_router(router)

    return app


# Default app instance for uvicorn
app = create_app()


def main() -> None:
    """Serve the default app with uvicorn."""
    import uvicorn

    uvicorn.run("taskhook.api:app", host="0.0.0.0", port=8000)
