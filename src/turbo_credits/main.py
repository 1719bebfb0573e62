"""FastAPI application factory and main entry point."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from turbo_credits import __version__
from turbo_credits.api.v1 import api_router
from turbo_credits.core.config import get_settings
from turbo_credits.infrastructure.backend import CreditBackendClient
from turbo_credits.services.transaction import (
    TransactionStatusStore,
    TransactionTracker,
    build_adapters,
)

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    """Apply the configured log level to the root logger."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager for startup/shutdown events."""
    # Startup
    settings = get_settings()
    configure_logging(settings.log_level)
    app.state.settings = settings

    store = TransactionStatusStore(
        finality_timeout=settings.finality_timeout,
        history_size=settings.history_size,
    )
    backend = CreditBackendClient(settings.api_url)
    app.state.store = store
    app.state.backend = backend
    app.state.tracker = TransactionTracker(
        store, build_adapters(settings), backend=backend, settings=settings
    )
    logger.info(f"{settings.app_name} {__version__} started ({settings.environment})")

    yield

    # Shutdown
    await app.state.tracker.teardown()
    await backend.close()


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=__version__,
        description="Cross-chain credit purchase tracker API",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register routes
    register_routes(app)

    return app


def register_routes(app: FastAPI) -> None:
    """Register all application routes."""
    settings = get_settings()

    # Include API router
    app.include_router(api_router, prefix=settings.api_v1_prefix)

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint for load balancers and monitoring."""
        store = getattr(app.state, "store", None)
        return {
            "status": "healthy",
            "version": __version__,
            "active_purchase": store is not None and store.current is not None,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.get(f"{settings.api_v1_prefix}/", tags=["API"])
    async def api_root():
        """API root endpoint with application info."""
        return {
            "name": settings.app_name,
            "version": __version__,
            "environment": settings.environment,
            "docs_url": "/docs" if settings.debug else "Disabled in production",
        }


# Create application instance
app = create_app()
