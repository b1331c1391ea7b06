"""
Sync trigger, run history and cancellation endpoints
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from api.dependencies import get_db, get_provider_client, get_run_registry
from core.exceptions import (
    AuthError,
    SyncAlreadyRunningError,
    SyncCancelledError,
    SyncException,
    TransportError,
)
from ingestion.cancellation import RunRegistry
from ingestion.client import ProviderClient
from ingestion.runner import SyncOptions, SyncRunner
from ingestion.sync_log import SyncRunLog
from models.base import SyncType
from schemas.api import (
    SyncCancelResponse,
    SyncRunListResponse,
    SyncRunResponse,
    SyncRunSummary,
    SyncTriggerRequest,
)
from typing import Optional
import uuid
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/sync", tags=["Sync"])


def _error_detail(e: SyncException, run_id: Optional[uuid.UUID]) -> dict:
    return {
        "error": type(e).__name__,
        "message": e.message,
        "run_id": str(run_id) if run_id else None,
        "context": e.context,
    }


@router.post("", response_model=SyncRunResponse)
async def trigger_sync(
    request: Request,
    body: SyncTriggerRequest,
    db: AsyncSession = Depends(get_db),
    client: ProviderClient = Depends(get_provider_client),
    registry: RunRegistry = Depends(get_run_registry),
):
    """
    Run one sync to completion.

    Status codes:
    - 200: run finished as COMPLETED or COMPLETED_WITH_ERRORS
    - 409: another run is active
    - 502: authentication or bulk export failure (run logged as FAILED)
    - 504: run cancelled or past its deadline (run logged as FAILED)
    """
    request_id = getattr(request.state, "request_id", f"req_{uuid.uuid4().hex[:12]}")
    logger.info(f"[{request_id}] POST /sync - type={body.sync_type.value}, force_refresh={body.force_refresh}")

    runner = SyncRunner(db, client, registry=registry)
    options = SyncOptions(
        sync_type=body.sync_type,
        filters=body.filters,
        force_refresh=body.force_refresh,
        max_pages=body.max_pages,
        deadline_seconds=body.deadline_seconds,
        aircraft_ids=body.aircraft_ids,
        limit=body.limit,
        triggered_by="api",
    )

    try:
        result = await runner.run(options)
    except SyncAlreadyRunningError as e:
        raise HTTPException(status_code=409, detail=_error_detail(e, None))
    except SyncCancelledError as e:
        raise HTTPException(status_code=504, detail=_error_detail(e, runner.run_log.run_id))
    except (AuthError, TransportError) as e:
        raise HTTPException(status_code=502, detail=_error_detail(e, runner.run_log.run_id))
    except SyncException as e:
        raise HTTPException(status_code=500, detail=_error_detail(e, runner.run_log.run_id))

    run = await runner.run_log.get(result["run_id"])
    return SyncRunResponse.model_validate(run)


@router.get("/runs", response_model=SyncRunListResponse)
async def list_runs(
    limit: int = Query(20, ge=1, le=200, description="Number of runs to return"),
    sync_type: Optional[SyncType] = Query(None, description="Filter by sync type"),
    db: AsyncSession = Depends(get_db),
):
    """Most recent sync runs, newest first"""
    runs = await SyncRunLog(db).recent(limit=limit, sync_type=sync_type)
    return SyncRunListResponse(
        runs=[SyncRunSummary.model_validate(run) for run in runs],
        total=len(runs),
    )


@router.get("/runs/{run_id}", response_model=SyncRunResponse)
async def get_run(run_id: str, db: AsyncSession = Depends(get_db)):
    run = await SyncRunLog(db).get(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail=f"Sync run {run_id} not found")
    return SyncRunResponse.model_validate(run)


@router.post("/{run_id}/cancel", response_model=SyncCancelResponse)
async def cancel_run(run_id: str, registry: RunRegistry = Depends(get_run_registry)):
    """Cancel an in-flight run; it stops at the next page or batch boundary"""
    if not registry.cancel(run_id, reason="cancelled via API"):
        raise HTTPException(status_code=404, detail=f"Sync run {run_id} is not active")
    logger.info(f"Cancellation requested for sync run {run_id}")
    return SyncCancelResponse(run_id=run_id, cancelled=True)
