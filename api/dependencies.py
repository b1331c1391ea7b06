"""
FastAPI dependencies shared by the route modules
"""

from fastapi import HTTPException, Request
from core.database import get_session
from ingestion.cancellation import RunRegistry
from ingestion.client import ProviderClient


async def get_db():
    """Yield a database session for one request"""
    async for session in get_session():
        yield session


def get_provider_client(request: Request) -> ProviderClient:
    client = getattr(request.app.state, "provider_client", None)
    if client is None:
        raise HTTPException(status_code=502, detail="Provider credentials are not configured")
    return client


def get_run_registry(request: Request) -> RunRegistry:
    registry = getattr(request.app.state, "run_registry", None)
    if registry is None:
        registry = RunRegistry()
        request.app.state.run_registry = registry
    return registry
