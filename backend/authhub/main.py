"""authhub - FastAPI Application Factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from authhub.api import api_router
from authhub.api.health import router as health_router
from authhub.core.config import Settings, get_settings
from authhub.core.lifespan import shutdown, startup
from authhub.core.logging import get_logger
from authhub.middleware import RequestAuthenticatorMiddleware

logger = get_logger("main")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler for startup/shutdown."""
        logger.info(f"Starting {settings.app_name} v{settings.app_version}")
        await startup(app, settings)

        yield

        logger.info("Shutting down...")
        await shutdown(app)

    app = FastAPI(
        title=settings.app_name,
        description="JWT token issuance, validation and revocation service",
        version=settings.app_version,
        lifespan=lifespan,
        # OpenAPI docs are only served with AUTHHUB_DEBUG=true
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
    )
    app.state.settings = settings

    # Resolves bearer tokens into request.state.principal; never rejects a request
    app.add_middleware(
        RequestAuthenticatorMiddleware,
        resolve_timeout=(
            settings.centralized_timeout if settings.enable_centralized_service else None
        ),
    )

    # CORS middleware - MUST be outermost (added last in Starlette LIFO order)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=[
            "Authorization",
            "Content-Type",
            "Accept",
            "X-API-Key",
        ],
    )

    # Prometheus metrics (before routers so /metrics endpoint is registered first)
    if settings.enable_metrics:
        from prometheus_fastapi_instrumentator import Instrumentator

        Instrumentator(
            excluded_handlers=["/health", "/metrics"],
        ).instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)

    app.include_router(health_router)  # Health at root level
    app.include_router(api_router)  # /api/v1/auth and /api/v1/jwt

    # Root endpoint
    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint with API information."""
        return {
            "name": settings.app_name,
            "version": settings.app_version,
        }

    return app


def run() -> None:
    """Console entry point: serve the application with uvicorn."""
    uvicorn.run("authhub.main:app", host="0.0.0.0", port=8080)


# Application instance
app = create_app()
