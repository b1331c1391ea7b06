import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.config import settings
from core.exceptions import SyncAlreadyRunningError, SyncException
from ingestion.cancellation import RunRegistry
from ingestion.client import ProviderClient
from ingestion.runner import SyncOptions, SyncRunner
from models.base import SyncType

logger = logging.getLogger(__name__)


class SyncScheduler:
    def __init__(
        self,
        client: ProviderClient,
        registry: RunRegistry,
        session_maker: async_sessionmaker,
        interval_minutes: Optional[int] = None,
        sync_type: SyncType = SyncType.COMPREHENSIVE,
    ):
        self.scheduler = AsyncIOScheduler()
        self.client = client
        self.registry = registry
        self.SessionLocal = session_maker
        self.interval_minutes = interval_minutes or settings.SYNC_INTERVAL_MINUTES
        self.sync_type = sync_type

    async def run_sync_job(self):
        """Job to run one scheduled sync"""
        logger.info("Scheduler: Starting sync job")
        async with self.SessionLocal() as session:
            try:
                runner = SyncRunner(session, self.client, registry=self.registry)
                result = await runner.run(SyncOptions(sync_type=self.sync_type, triggered_by="scheduler"))
                logger.info(f"Scheduler: Sync job finished with status {result['status']}")
            except SyncAlreadyRunningError:
                logger.info("Scheduler: Sync already running, skipping this tick")
            except SyncException as e:
                logger.error(f"Scheduler: Sync job failed - {e}")

    def start(self):
        """Start the scheduler"""
        self.scheduler.add_job(
            self.run_sync_job,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id="sync_job",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        logger.info(f"Sync Scheduler started (every {self.interval_minutes} minutes)")

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("Sync Scheduler stopped")
