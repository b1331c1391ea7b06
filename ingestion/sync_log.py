"""
Sync run log: the append-only record of every sync execution
"""

import logging
import time
import uuid
from datetime import timedelta
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.exceptions import SyncStateError
from models.base import SyncStatus, SyncType, TERMINAL_STATUSES, utcnow
from models.sync_run import SyncRun

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (SyncStatus.PENDING, SyncStatus.STARTED)


class SyncRunLog:
    """
    Track one sync run through its state machine.

    STARTED -> COMPLETED | FAILED | COMPLETED_WITH_ERRORS, exactly once.
    Counts and duration are written only at the terminal transition.

    The run row is re-read by primary key before the terminal write because a
    record-level rollback earlier in the run expires every instance held by
    the shared session.
    """

    def __init__(self, db_session: AsyncSession):
        self.db = db_session
        self.run_pk: Optional[int] = None
        self.run_id: Optional[uuid.UUID] = None
        self.status: Optional[SyncStatus] = None
        self._started_monotonic: Optional[float] = None

    async def start(
        self,
        sync_type: SyncType,
        triggered_by: str = "api",
        config_snapshot: Optional[Dict[str, Any]] = None,
    ) -> SyncRun:
        """Create the run row as STARTED and commit so readers see it"""
        run = SyncRun(
            run_id=uuid.uuid4(),
            sync_type=sync_type,
            status=SyncStatus.STARTED,
            triggered_by=triggered_by,
            started_at=utcnow(),
            config_snapshot=config_snapshot,
        )
        self.db.add(run)
        await self.db.commit()

        self.run_pk = run.id
        self.run_id = run.run_id
        self.status = SyncStatus.STARTED
        self._started_monotonic = time.monotonic()

        logger.info(f"Sync run {self.run_id} started ({sync_type.value}, by {triggered_by})")
        return run

    async def complete(
        self,
        records_processed: int = 0,
        records_created: int = 0,
        records_updated: int = 0,
        records_unchanged: int = 0,
        records_failed: int = 0,
        error_details: Optional[List[Dict[str, Any]]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> SyncRun:
        """Finish a run; COMPLETED_WITH_ERRORS when any record-level error occurred"""
        status = SyncStatus.COMPLETED_WITH_ERRORS if records_failed > 0 else SyncStatus.COMPLETED
        return await self._finish(
            status,
            records_processed=records_processed,
            records_created=records_created,
            records_updated=records_updated,
            records_unchanged=records_unchanged,
            records_failed=records_failed,
            error_message=f"{records_failed} records failed" if records_failed else None,
            error_details=error_details,
            metadata=metadata,
        )

    async def fail(
        self,
        error_message: str,
        records_processed: int = 0,
        records_created: int = 0,
        records_updated: int = 0,
        records_unchanged: int = 0,
        records_failed: int = 0,
        error_details: Optional[List[Dict[str, Any]]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> SyncRun:
        """Finish a run after a pipeline-fatal error"""
        return await self._finish(
            SyncStatus.FAILED,
            records_processed=records_processed,
            records_created=records_created,
            records_updated=records_updated,
            records_unchanged=records_unchanged,
            records_failed=records_failed,
            error_message=error_message,
            error_details=error_details,
            metadata=metadata,
        )

    async def _finish(self, status: SyncStatus, **fields) -> SyncRun:
        if self.run_pk is None:
            raise SyncStateError("Sync run was never started")
        if self.status in TERMINAL_STATUSES:
            raise SyncStateError(
                "Sync run already finished",
                context={"run_id": str(self.run_id), "status": self.status.value}
            )

        run = await self.db.get(SyncRun, self.run_pk)
        if run is None:
            raise SyncStateError("Sync run row disappeared", context={"run_id": str(self.run_id)})
        if run.status in TERMINAL_STATUSES:
            raise SyncStateError(
                "Sync run already finished",
                context={"run_id": str(self.run_id), "status": run.status.value}
            )

        metadata = fields.pop("metadata")
        run.status = status
        run.completed_at = utcnow()
        run.sync_duration_ms = self.elapsed_ms
        for name, value in fields.items():
            setattr(run, name, value)
        if metadata is not None:
            run.run_metadata = metadata

        await self.db.commit()
        self.status = status

        logger.info(
            f"Sync run {self.run_id} {status.value} in {run.sync_duration_ms} ms "
            f"(processed={run.records_processed}, created={run.records_created}, "
            f"updated={run.records_updated}, failed={run.records_failed})"
        )
        return run

    @property
    def elapsed_ms(self) -> int:
        if self._started_monotonic is None:
            return 0
        return int((time.monotonic() - self._started_monotonic) * 1000)

    # ------------------------------------------------------------------
    # Read surface
    # ------------------------------------------------------------------

    async def active_run(self, stale_after_minutes: Optional[int] = None) -> Optional[SyncRun]:
        """Most recent non-terminal run that is not older than the stale timeout"""
        minutes = stale_after_minutes or settings.STALE_RUN_TIMEOUT_MINUTES
        cutoff = utcnow() - timedelta(minutes=minutes)
        result = await self.db.execute(
            select(SyncRun)
            .where(SyncRun.status.in_(ACTIVE_STATUSES), SyncRun.started_at >= cutoff)
            .order_by(SyncRun.started_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def recent(self, limit: int = 20, sync_type: Optional[SyncType] = None) -> List[SyncRun]:
        query = select(SyncRun).order_by(SyncRun.started_at.desc(), SyncRun.id.desc()).limit(limit)
        if sync_type is not None:
            query = query.where(SyncRun.sync_type == sync_type)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get(self, run_id: Union[str, uuid.UUID]) -> Optional[SyncRun]:
        if not isinstance(run_id, uuid.UUID):
            try:
                run_id = uuid.UUID(str(run_id))
            except ValueError:
                return None
        result = await self.db.execute(select(SyncRun).where(SyncRun.run_id == run_id))
        return result.scalar_one_or_none()
