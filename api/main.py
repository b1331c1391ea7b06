"""
FastAPI application initialization
"""

from fastapi import FastAPI
import httpx
from api.routes import health, stats, sync
from core.config import settings
from core.database import async_session_maker
from core.exceptions import AuthError
from core.logging import setup_logging
import logging
from api.middleware import RequestContextMiddleware
from ingestion.auth_manager import AuthManager, ProviderCredentials
from ingestion.cancellation import RunRegistry
from ingestion.client import ProviderClient
from ingestion.scheduler import SyncScheduler

# Configure logging
setup_logging()

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Aircraft Sync API",
    description="Backend service that syncs and enriches aircraft listings from the provider",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(RequestContextMiddleware)

# Include routers
app.include_router(health.router)
app.include_router(sync.router)
app.include_router(stats.router)


@app.on_event("startup")
async def startup_event():
    """Application startup event"""
    logger.info("Starting Aircraft Sync API")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")

    app.state.run_registry = RunRegistry()
    app.state.http_client = httpx.AsyncClient(timeout=settings.PROVIDER_TIMEOUT_SECONDS)
    app.state.provider_client = None
    app.state.scheduler = None

    try:
        credentials = ProviderCredentials.from_settings()
    except AuthError as e:
        logger.warning(f"Provider sync disabled: {e.message}")
        return

    auth_manager = AuthManager(app.state.http_client, credentials)
    app.state.provider_client = ProviderClient.from_settings(app.state.http_client, auth_manager)

    # Start Scheduler
    if settings.SCHEDULER_ENABLED:
        app.state.scheduler = SyncScheduler(
            app.state.provider_client,
            app.state.run_registry,
            async_session_maker,
        )
        app.state.scheduler.start()


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event"""
    logger.info("Shutting down Aircraft Sync API")
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler is not None:
        scheduler.stop()

    registry = getattr(app.state, "run_registry", None)
    if registry is not None:
        for run_id in registry.active_run_ids:
            registry.cancel(run_id, reason="application shutdown")

    http_client = getattr(app.state, "http_client", None)
    if http_client is not None:
        await http_client.aclose()


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Aircraft Sync API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "sync": "/sync",
            "runs": "/sync/runs",
            "stats": "/stats"
        }
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api.main:app", host=settings.API_HOST, port=settings.API_PORT)
