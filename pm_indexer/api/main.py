"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import structlog

from pm_indexer.config import settings
from pm_indexer.api.errors import register_exception_handlers
from pm_indexer.api.middleware.auth import AdminAuthMiddleware
from pm_indexer.api.routes import admin, alerts, health, markets, search, trending, watchlists
from pm_indexer.utils.logging import configure_logging
from pm_indexer.workers.scheduler import start_scheduler_thread, stop_scheduler_thread

configure_logging()

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start and stop background work with the app."""
    logger.info(
        "pm_indexer_startup",
        environment=settings.environment,
        database_url=settings.database_url.split("@")[1] if "@" in settings.database_url else "***",
        auto_sync=settings.enable_auto_sync,
    )
    start_scheduler_thread()
    yield
    stop_scheduler_thread()
    logger.info("pm_indexer_shutdown")


def create_app(admin_limiter=None, admin_api_key=None) -> FastAPI:
    """Build the API application."""
    app = FastAPI(
        title="Prediction Market Indexer API",
        description="Semantic search over Polymarket and Kalshi markets",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )

    # Add admin authentication middleware
    app.add_middleware(AdminAuthMiddleware, limiter=admin_limiter, api_key=admin_api_key)

    register_exception_handlers(app)

    # Include routers
    app.include_router(health.router, prefix="/v1", tags=["Health"])
    app.include_router(search.router, prefix="/v1", tags=["Search"])
    app.include_router(markets.router, prefix="/v1/markets", tags=["Markets"])
    app.include_router(trending.router, prefix="/v1", tags=["Trending"])
    app.include_router(watchlists.router, prefix="/v1/watchlists", tags=["Watchlists"])
    app.include_router(alerts.router, prefix="/v1/alerts", tags=["Alerts"])
    app.include_router(admin.router, prefix="/v1/admin", tags=["Admin"])

    @app.get("/")
    def root():
        """Root endpoint."""
        return {
            "service": "Prediction Market Indexer API",
            "version": "1.0.0",
            "docs": "/docs",
            "health": "/v1/health",
        }

    return app


app = create_app()
