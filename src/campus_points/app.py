from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from campus_points import __version__
from campus_points.core.settings import settings
from campus_points.db.session import engine
from .api.errors import register_error_handlers
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing


APP_VERSION = __version__


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "Campus points API starting",
        environment=settings.environment,
        points_timezone=settings.points_timezone,
    )
    try:
        yield
    finally:
        await engine.dispose()
        logger.info("Campus points API stopped")


def create_app() -> FastAPI:
    """Application factory for the campus points service."""
    configure_logging(
        service_name="campus-points",
        environment=settings.environment,
        version=APP_VERSION,
        level=settings.log_level,
    )

    app = FastAPI(
        title="Campus Points API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    configure_tracing(
        app,
        service_name="campus-points",
        service_version=APP_VERSION,
        environment=settings.environment,
        enabled=settings.tracing_enabled,
    )

    register_error_handlers(app)
    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app
