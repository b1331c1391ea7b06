# ============================================================================
# File: ingestion/runner.py
# Description: Sync orchestrator with run accounting and failure policy
# ============================================================================
"""
Sync Runner - Orchestrates authenticate, fetch, normalize, enrich, reconcile.

This module provides sync orchestration with:
- A single-flight run guard shared by every trigger surface
- Fatal vs. record-level error policy
- Cancellation and deadline checks at every page and batch boundary
- Exactly one terminal sync run transition per run
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.exceptions import (
    AuthError,
    SyncAlreadyRunningError,
    SyncCancelledError,
    SyncException,
    TransportError,
    ValidationError,
)
from ingestion.cancellation import CancellationToken, RunRegistry
from ingestion.client import ProviderClient
from ingestion.enrichment.orchestrator import EnrichmentOrchestrator
from ingestion.extractors.bulk_fetcher import BulkFetcher
from ingestion.loaders.reconciler import Reconciler, ReconcileStats
from ingestion.sync_log import SyncRunLog
from ingestion.transformers.normalizer import AircraftNormalizer
from models.aircraft import Aircraft
from models.base import SyncType, utcnow
from schemas.aircraft import CanonicalAircraft

logger = logging.getLogger(__name__)

MAX_ERROR_DETAILS = 100


@dataclass
class SyncOptions:
    sync_type: SyncType = SyncType.COMPREHENSIVE
    filters: Dict[str, Any] = field(default_factory=dict)
    force_refresh: bool = False
    max_pages: Optional[int] = None
    deadline_seconds: Optional[float] = None
    aircraft_ids: List[int] = field(default_factory=list)
    limit: int = 100
    triggered_by: str = "api"

    def snapshot(self) -> Dict[str, Any]:
        return {
            "sync_type": self.sync_type.value,
            "filters": self.filters,
            "force_refresh": self.force_refresh,
            "max_pages": self.max_pages,
            "deadline_seconds": self.deadline_seconds,
            "aircraft_ids": self.aircraft_ids,
            "limit": self.limit,
        }


class SyncRunner:
    """
    Sync orchestrator.

    Responsibilities:
    - Orchestrate authenticate → fetch → normalize → enrich → reconcile
    - Refuse to start while another run is active
    - Treat auth, pagination and cancellation failures as fatal
    - Count record-level failures without aborting the run
    - Record the run's terminal state and counts
    """

    def __init__(
        self,
        db_session: AsyncSession,
        client: ProviderClient,
        registry: Optional[RunRegistry] = None,
        fetcher: Optional[BulkFetcher] = None,
        normalizer: Optional[AircraftNormalizer] = None,
        enricher: Optional[EnrichmentOrchestrator] = None,
        run_log: Optional[SyncRunLog] = None,
    ):
        self.db = db_session
        self.client = client
        self.registry = registry or RunRegistry()
        self.fetcher = fetcher or BulkFetcher(client)
        self.normalizer = normalizer or AircraftNormalizer()
        self.enricher = enricher or EnrichmentOrchestrator(client)
        self.run_log = run_log or SyncRunLog(db_session)

    async def run(self, options: Optional[SyncOptions] = None) -> Dict[str, Any]:
        """
        Run one sync to completion.

        Returns:
            Dictionary with run statistics:
            - run_id, status
            - records_fetched, records_processed, records_created,
              records_updated, records_unchanged, records_failed
            - pages_fetched, enrichment_errors, duration_ms
            - error_details (if any)

        Raises:
            SyncAlreadyRunningError: Another run is active (nothing is logged)
            AuthError: Login failed (run logged as FAILED)
            TransportError: A bulk export page failed (run logged as FAILED)
            SyncCancelledError: Cancelled or deadline exceeded (run logged as FAILED)
            SyncException: Unexpected error (run logged as FAILED)
        """
        options = options or SyncOptions()
        self.registry.claim()
        try:
            active = await self.run_log.active_run()
            if active is not None:
                raise SyncAlreadyRunningError(
                    "Sync is already running",
                    context={"run_id": str(active.run_id), "started_at": active.started_at.isoformat()}
                )
            return await self._run(options)
        finally:
            self.registry.release()

    async def _run(self, options: SyncOptions) -> Dict[str, Any]:
        deadline = options.deadline_seconds or settings.SYNC_DEADLINE_SECONDS
        cancellation = CancellationToken(deadline_seconds=deadline)

        await self.run_log.start(
            options.sync_type,
            triggered_by=options.triggered_by,
            config_snapshot=options.snapshot(),
        )
        run_id = str(self.run_log.run_id)
        self.registry.register(run_id, cancellation)

        records_fetched = 0
        normalization_failures = 0
        stats = ReconcileStats()
        error_details: List[Dict[str, Any]] = []
        enrichment_errors: Dict[str, int] = {}
        enrichment_aircraft_errors = 0
        metadata: Dict[str, Any] = {"pages_fetched": 0}

        def counts() -> Dict[str, Any]:
            return {
                "records_processed": stats.processed + normalization_failures,
                "records_created": stats.created,
                "records_updated": stats.updated,
                "records_unchanged": stats.unchanged,
                "records_failed": stats.failed + normalization_failures,
                "error_details": (error_details + stats.error_details)[:MAX_ERROR_DETAILS] or None,
                "metadata": {
                    **metadata,
                    "records_fetched": records_fetched,
                    "enrichment_errors": enrichment_errors,
                    "enrichment_aircraft_errors": enrichment_aircraft_errors,
                    "force_refresh": options.force_refresh,
                },
            }

        try:
            # --------------------------------------------------
            # PHASE 1: AUTHENTICATION
            # --------------------------------------------------
            await self.client.auth_manager.get_valid_token()

            # --------------------------------------------------
            # PHASE 2: SOURCE RECORDS
            # --------------------------------------------------
            if options.sync_type == SyncType.ENRICHMENT:
                aircraft, errors = await self._load_stored_aircraft(options)
                records_fetched = len(aircraft) + len(errors)
            else:
                if options.max_pages:
                    self.fetcher.max_pages = options.max_pages
                raw_records = await self.fetcher.fetch_all(options.filters, cancellation)
                records_fetched = len(raw_records)
                metadata["pages_fetched"] = self.fetcher.pages_fetched
                metadata["hit_page_ceiling"] = self.fetcher.hit_page_ceiling

                # --------------------------------------------------
                # PHASE 3: NORMALIZATION
                # --------------------------------------------------
                aircraft, errors = self.normalizer.normalize_many(raw_records)
                del raw_records

            normalization_failures = len(errors)
            error_details.extend(errors)
            logger.info(
                f"Normalization complete: {len(aircraft)} succeeded, "
                f"{normalization_failures} failed"
            )

            # --------------------------------------------------
            # PHASE 4: ENRICHMENT + RECONCILIATION (BATCHED)
            # --------------------------------------------------
            reconciler = Reconciler(self.db, force_refresh=options.force_refresh)
            online = options.sync_type in (SyncType.COMPREHENSIVE, SyncType.ENRICHMENT)
            total_batches = (len(aircraft) + self.enricher.batch_size - 1) // self.enricher.batch_size
            index = 0

            async for batch, result in self.enricher.iter_batches(aircraft, cancellation, online=online):
                index += 1
                enrichment_aircraft_errors += result.aircraft_errors
                for name, count in result.category_errors.items():
                    enrichment_errors[name] = enrichment_errors.get(name, 0) + count

                stats.add(await reconciler.reconcile_batch(list(zip(batch, result.bundles)), cancellation))

                logger.info(
                    f"Batch {index}/{total_batches}: created={stats.created}, "
                    f"updated={stats.updated}, unchanged={stats.unchanged}, failed={stats.failed}"
                )

            # --------------------------------------------------
            # PHASE 5: FINALIZE SYNC RUN
            # --------------------------------------------------
            run = await self.run_log.complete(**counts())

        except (AuthError, TransportError, SyncCancelledError) as e:
            logger.error(
                f"Sync pipeline failed: {e.message}",
                extra={"error_context": e.to_dict()}
            )
            await self.db.rollback()
            await self.run_log.fail(e.message, **counts())
            raise

        except Exception as e:
            logger.exception("Unexpected error in sync pipeline")
            await self.db.rollback()
            await self.run_log.fail(str(e), **counts())
            raise SyncException(
                "Unexpected error in sync pipeline",
                context={
                    "run_id": run_id,
                    "records_fetched": records_fetched,
                    "records_processed": stats.processed,
                },
                original_exception=e
            )

        finally:
            self.registry.unregister(run_id)

        result = {
            "run_id": run_id,
            "status": run.status.value,
            "records_fetched": records_fetched,
            "records_processed": run.records_processed,
            "records_created": run.records_created,
            "records_updated": run.records_updated,
            "records_unchanged": run.records_unchanged,
            "records_failed": run.records_failed,
            "pages_fetched": metadata["pages_fetched"],
            "enrichment_errors": enrichment_errors,
            "duration_ms": run.sync_duration_ms,
        }
        if run.error_details:
            result["error_details"] = run.error_details

        logger.info(
            f"Sync run completed: {result['status']} - Fetched: {records_fetched}, "
            f"Created: {result['records_created']}, Updated: {result['records_updated']}, "
            f"Failed: {result['records_failed']}"
        )
        return result

    async def _load_stored_aircraft(self, options: SyncOptions):
        """Stored aircraft to re-enrich: explicit ids, else never or stale enriched"""
        query = select(Aircraft).where(Aircraft.provider_aircraft_id.isnot(None))
        if options.aircraft_ids:
            query = query.where(Aircraft.provider_aircraft_id.in_(options.aircraft_ids))
        else:
            cutoff = utcnow() - timedelta(days=settings.ENRICHMENT_STALE_DAYS)
            query = query.where(or_(
                Aircraft.last_enriched_at.is_(None),
                Aircraft.last_enriched_at < cutoff,
            ))
        query = query.order_by(Aircraft.last_enriched_at.asc().nulls_first()).limit(options.limit)

        result = await self.db.execute(query)
        stored = result.scalars().all()

        aircraft: List[CanonicalAircraft] = []
        errors: List[Dict[str, Any]] = []
        for row in stored:
            try:
                if row.raw_data:
                    aircraft.append(self.normalizer.normalize(row.raw_data))
                else:
                    aircraft.append(CanonicalAircraft(
                        provider_aircraft_id=row.provider_aircraft_id,
                        registration=row.registration,
                        serial_number=row.serial_number,
                        manufacturer=row.manufacturer,
                        model=row.model,
                    ))
            except ValidationError as e:
                errors.append({
                    "phase": "normalization",
                    "aircraft_id": row.id,
                    "error_type": type(e).__name__,
                    "error_message": e.message,
                })

        logger.info(f"Selected {len(aircraft)} stored aircraft for enrichment")
        return aircraft, errors
