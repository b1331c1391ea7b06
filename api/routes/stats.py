"""
Aircraft and sync run statistics endpoint
"""
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, and_
from api.dependencies import get_db
from schemas.api import StatsResponse, SyncRunSummary
from models.aircraft import Aircraft, AircraftImage
from models.base import SyncStatus
from models.sync_run import SyncRun
import uuid
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Statistics"])


@router.get("/stats", response_model=StatsResponse)
async def get_stats(
    request: Request,
    limit: int = Query(10, ge=1, le=100, description="Number of recent runs to return"),
    db: AsyncSession = Depends(get_db)
):
    """
    Get aircraft and sync statistics.

    Returns:
    - Aircraft totals (all, for sale, enriched, with real images)
    - Sync run totals and average duration
    - Recent sync run history
    """
    request_id = getattr(request.state, "request_id", f"req_{uuid.uuid4().hex[:12]}")

    logger.info(f"[{request_id}] GET /stats")

    # ========== Aircraft ==========

    total_aircraft = (await db.execute(
        select(func.count()).select_from(Aircraft)
    )).scalar() or 0

    for_sale = (await db.execute(
        select(func.count()).select_from(Aircraft).where(Aircraft.for_sale.is_(True))
    )).scalar() or 0

    enriched = (await db.execute(
        select(func.count()).select_from(Aircraft).where(Aircraft.last_enriched_at.isnot(None))
    )).scalar() or 0

    with_images = (await db.execute(
        select(func.count(func.distinct(AircraftImage.aircraft_id))).where(
            AircraftImage.is_placeholder.is_(False)
        )
    )).scalar() or 0

    by_status_result = await db.execute(
        select(Aircraft.status, func.count()).group_by(Aircraft.status)
    )
    aircraft_by_status = {status.value: count for status, count in by_status_result.all()}

    # ========== Sync Runs ==========

    runs_by_status_result = await db.execute(
        select(SyncRun.status, func.count()).group_by(SyncRun.status)
    )
    runs_by_status = {status.value: count for status, count in runs_by_status_result.all()}
    total_runs = sum(runs_by_status.values())

    successful = (SyncStatus.COMPLETED, SyncStatus.COMPLETED_WITH_ERRORS)

    last_success = (await db.execute(
        select(func.max(SyncRun.completed_at)).where(SyncRun.status.in_(successful))
    )).scalar()

    last_failure = (await db.execute(
        select(func.max(SyncRun.completed_at)).where(SyncRun.status == SyncStatus.FAILED)
    )).scalar()

    # Average run duration
    avg_duration = (await db.execute(
        select(func.avg(SyncRun.sync_duration_ms)).where(
            and_(
                SyncRun.status.in_(successful),
                SyncRun.sync_duration_ms.isnot(None)
            )
        )
    )).scalar()

    # ========== Recent Sync Runs ==========

    recent_runs_result = await db.execute(
        select(SyncRun)
        .order_by(SyncRun.started_at.desc(), SyncRun.id.desc())
        .limit(limit)
    )
    recent_runs = [SyncRunSummary.model_validate(run) for run in recent_runs_result.scalars().all()]

    logger.info(
        f"[{request_id}] Stats: {total_aircraft} aircraft, {total_runs} runs"
    )

    return StatsResponse(
        total_aircraft=total_aircraft,
        aircraft_for_sale=for_sale,
        aircraft_enriched=enriched,
        aircraft_with_images=with_images,
        aircraft_by_status=aircraft_by_status,
        total_runs=total_runs,
        runs_by_status=runs_by_status,
        last_success_at=last_success,
        last_failure_at=last_failure,
        avg_sync_duration_ms=round(float(avg_duration), 2) if avg_duration is not None else None,
        recent_runs=recent_runs,
    )
