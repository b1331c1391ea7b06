"""
Health check endpoint with database and sync run status
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from api.dependencies import get_db, get_run_registry
from ingestion.cancellation import RunRegistry
from ingestion.sync_log import SyncRunLog
from models.base import SyncType
from schemas.api import HealthCheckResponse, SyncRunSummary
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(
    db: AsyncSession = Depends(get_db),
    registry: RunRegistry = Depends(get_run_registry),
):
    """
    Health check endpoint.

    Returns:
    - Database connectivity status
    - The active sync run, if any
    - The latest run per sync type
    """

    # Check database connectivity
    db_connected = False

    try:
        await db.execute(text("SELECT 1"))
        db_connected = True
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Database connection failed: {str(e)}")

    active_run = None
    last_runs = {}

    if db_connected:
        run_log = SyncRunLog(db)
        try:
            active = await run_log.active_run()
            if active is not None:
                active_run = SyncRunSummary.model_validate(active)

            for sync_type in SyncType:
                runs = await run_log.recent(limit=1, sync_type=sync_type)
                if runs:
                    last_runs[sync_type.value] = SyncRunSummary.model_validate(runs[0])
        except SQLAlchemyError as e:
            logger.error(f"Failed to fetch sync runs: {str(e)}")

    # Status calculation is handled by the validator in HealthCheckResponse
    return HealthCheckResponse(
        database_connected=db_connected,
        sync_running=registry.busy or active_run is not None,
        active_run=active_run,
        last_runs=last_runs,
    )
