"""
Reconcile canonical aircraft into the store with identity resolution (idempotency)
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select, delete, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from core.exceptions import (
    PersistenceError,
    ReconciliationConflictError,
    ValidationError,
)
from ingestion.cancellation import CancellationToken
from models.aircraft import Aircraft, AircraftEnrichment, AircraftImage
from models.base import utcnow
from schemas.aircraft import CanonicalAircraft, IDENTITY_FIELDS
from schemas.enrichment import EnrichmentBundle

logger = logging.getLogger(__name__)

# Enrichment categories folded into the specifications blob
SPECIFICATION_CATEGORIES = (
    "airframe",
    "engines",
    "apu",
    "avionics",
    "additional_equipment",
    "interior",
    "exterior",
    "maintenance",
)

# Canonical fields that are not plain columns on Aircraft
NON_COLUMN_FIELDS = {"photos", "contact_info"}


@dataclass
class UpsertOutcome:
    aircraft_id: str
    created: bool = False
    updated: bool = False

    @property
    def unchanged(self) -> bool:
        return not self.created and not self.updated


@dataclass
class ReconcileStats:
    processed: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0
    error_details: List[Dict[str, Any]] = field(default_factory=list)

    def add(self, other: "ReconcileStats") -> None:
        self.processed += other.processed
        self.created += other.created
        self.updated += other.updated
        self.unchanged += other.unchanged
        self.failed += other.failed
        self.error_details.extend(other.error_details)


def merge_blob(existing: Optional[Dict[str, Any]], incoming: Dict[str, Any]) -> Dict[str, Any]:
    """Shallow merge: incoming keys overwrite, None never erases a stored key"""
    merged = dict(existing or {})
    merged.update({k: v for k, v in incoming.items() if v is not None})
    return merged


def compute_content_hash(record: CanonicalAircraft, bundle: Optional[EnrichmentBundle]) -> str:
    """SHA-256 over the canonical record and fetched enrichment documents"""
    payload: Dict[str, Any] = {"record": record.model_dump(mode="json")}
    if bundle is not None:
        payload["categories"] = bundle.categories
        payload["images"] = [image.model_dump() for image in bundle.images]
    encoded = json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


class Reconciler:
    """
    Create-or-update canonical aircraft with idempotent semantics.

    Ensures:
    - Identity resolved by provider id, then registration, then serial number
    - Ambiguous identities are surfaced as ReconciliationConflictError
    - Unchanged records are not rewritten unless force_refresh is set
    - JSON blobs are shallow-merged under an optimistic version check
    - One record per transaction; a failed record never rolls back others
    """

    def __init__(
        self,
        db_session: AsyncSession,
        force_refresh: bool = False,
        max_merge_attempts: int = 3,
    ):
        self.db = db_session
        self.force_refresh = force_refresh
        self.max_merge_attempts = max_merge_attempts

    # ------------------------------------------------------------------
    # Identity resolution
    # ------------------------------------------------------------------

    async def resolve_identity(self, record: CanonicalAircraft) -> Optional[Aircraft]:
        """
        Find the stored aircraft that represents `record`.

        A row matched through a key is a candidate unless it carries a
        different value for a higher-priority key that the record also has
        (it is then a different aircraft sharing, say, a reassigned
        registration). The first candidate wins; a second distinct
        candidate is a conflict.

        Raises:
            ReconciliationConflictError: Two different stored rows qualify
        """
        keys = record.identity_keys
        candidates: List[Tuple[str, Aircraft]] = []
        seen = set()

        for position, (key, value) in enumerate(keys.items()):
            result = await self.db.execute(
                select(Aircraft)
                .where(getattr(Aircraft, key) == value)
                .order_by(Aircraft.created_at)
            )
            higher_keys = [k for k in IDENTITY_FIELDS[:IDENTITY_FIELDS.index(key)] if k in keys]

            for row in result.scalars().all():
                if row.id in seen:
                    continue
                if any(
                    getattr(row, k) is not None and getattr(row, k) != keys[k]
                    for k in higher_keys
                ):
                    continue
                seen.add(row.id)
                candidates.append((key, row))

        if not candidates:
            return None

        if len(candidates) > 1:
            raise ReconciliationConflictError(
                "Identity keys match different stored aircraft",
                context={
                    "record": record.display_key,
                    "matches": {row.id: key for key, row in candidates},
                }
            )

        return candidates[0][1]

    # ------------------------------------------------------------------
    # Upsert
    # ------------------------------------------------------------------

    async def upsert(
        self,
        record: CanonicalAircraft,
        bundle: Optional[EnrichmentBundle] = None,
    ) -> UpsertOutcome:
        """
        Create or update one aircraft and commit.

        Raises:
            ReconciliationConflictError: Ambiguous identity
            PersistenceError: Store write failed (after optimistic retries)
        """
        for attempt in range(1, self.max_merge_attempts + 1):
            try:
                return await self._upsert_once(record, bundle)

            except StaleDataError as e:
                await self.db.rollback()
                if attempt == self.max_merge_attempts:
                    raise PersistenceError(
                        "Concurrent update kept winning the merge",
                        context={
                            "operation": "UPDATE",
                            "aircraft": record.display_key,
                            "attempts": attempt,
                        },
                        original_exception=e
                    )
                logger.warning(
                    f"Concurrent update on {record.display_key}; "
                    f"re-merging (attempt {attempt + 1}/{self.max_merge_attempts})"
                )

            except ReconciliationConflictError:
                await self.db.rollback()
                raise

            except SQLAlchemyError as e:
                await self.db.rollback()
                raise PersistenceError(
                    "Failed to write aircraft",
                    context={"aircraft": record.display_key},
                    original_exception=e
                )

    async def _upsert_once(
        self,
        record: CanonicalAircraft,
        bundle: Optional[EnrichmentBundle],
    ) -> UpsertOutcome:
        existing = await self.resolve_identity(record)
        now = utcnow()
        content_hash = compute_content_hash(record, bundle)

        if existing is None:
            aircraft = Aircraft(**self._columns(record))
            aircraft.specifications = self._specifications(record, bundle)
            aircraft.features = self._features(bundle)
            aircraft.market_data = self._market_data(record, bundle)
            aircraft.contact_info = self._contact_info(record, bundle)
            if bundle is not None and bundle.attempted:
                aircraft.tech_summary = bundle.tech_summary.model_dump()
                aircraft.last_enriched_at = now
            aircraft.content_hash = content_hash
            aircraft.last_synced_at = now
            self.db.add(aircraft)
            await self.db.flush()

            await self._write_enrichments(aircraft.id, bundle, now)
            await self._write_images(aircraft.id, bundle)
            await self.db.commit()

            logger.debug(f"Created aircraft {aircraft.id} ({record.display_key})")
            return UpsertOutcome(aircraft_id=aircraft.id, created=True)

        if existing.content_hash == content_hash and not self.force_refresh:
            existing.last_synced_at = now
            await self.db.commit()
            return UpsertOutcome(aircraft_id=existing.id)

        for name, value in self._columns(record).items():
            if name in IDENTITY_FIELDS and value is None:
                continue
            setattr(existing, name, value)

        existing.specifications = merge_blob(existing.specifications, self._specifications(record, bundle))
        existing.features = merge_blob(existing.features, self._features(bundle))
        existing.market_data = merge_blob(existing.market_data, self._market_data(record, bundle))
        existing.contact_info = merge_blob(existing.contact_info, self._contact_info(record, bundle))
        if bundle is not None and bundle.attempted:
            existing.tech_summary = bundle.tech_summary.model_dump()
            existing.last_enriched_at = now
        existing.content_hash = content_hash
        existing.last_synced_at = now
        await self.db.flush()

        await self._write_enrichments(existing.id, bundle, now)
        await self._write_images(existing.id, bundle)
        await self.db.commit()

        logger.debug(f"Updated aircraft {existing.id} ({record.display_key})")
        return UpsertOutcome(aircraft_id=existing.id, updated=True)

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    async def reconcile_batch(
        self,
        items: Sequence[Tuple[CanonicalAircraft, Optional[EnrichmentBundle]]],
        cancellation: Optional[CancellationToken] = None,
    ) -> ReconcileStats:
        """
        Upsert a batch, isolating per-record failures.

        Returns:
            ReconcileStats with counts and per-record error details
        """
        stats = ReconcileStats()

        for record, bundle in items:
            if cancellation is not None:
                cancellation.check(stage="reconcile")

            stats.processed += 1
            try:
                outcome = await self.upsert(record, bundle)
            except (PersistenceError, ValidationError) as e:
                stats.failed += 1
                error_detail = {
                    "phase": "reconciliation",
                    "aircraft": record.display_key,
                    "error_type": type(e).__name__,
                    "error_message": e.message,
                }
                if isinstance(e, ReconciliationConflictError):
                    error_detail["matches"] = e.context.get("matches")
                stats.error_details.append(error_detail)
                logger.error(
                    f"Reconciliation failed for {record.display_key}: {e.message}",
                    extra={"error_context": e.to_dict()}
                )
                continue

            if outcome.created:
                stats.created += 1
            elif outcome.updated:
                stats.updated += 1
            else:
                stats.unchanged += 1

        return stats

    # ------------------------------------------------------------------
    # Field mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _columns(record: CanonicalAircraft) -> Dict[str, Any]:
        return record.model_dump(exclude=NON_COLUMN_FIELDS)

    @staticmethod
    def _specifications(record: CanonicalAircraft, bundle: Optional[EnrichmentBundle]) -> Dict[str, Any]:
        specs: Dict[str, Any] = {
            "year_manufactured": record.year_manufactured,
            "year_delivered": record.year_delivered,
            "total_time_hours": record.total_time_hours,
            "estimated_aftt": record.estimated_aftt,
            "engine_serials": record.engine_serials or None,
            "avionics": record.avionics,
            "passengers": record.passengers,
        }
        if bundle is not None:
            for category in SPECIFICATION_CATEGORIES:
                specs[category] = bundle.get(category)
        return specs

    @staticmethod
    def _features(bundle: Optional[EnrichmentBundle]) -> Dict[str, Any]:
        if bundle is None or not bundle.attempted:
            return {}
        return {
            "features": bundle.get("features"),
            "tech_summary": bundle.tech_summary.model_dump(),
        }

    @staticmethod
    def _market_data(record: CanonicalAircraft, bundle: Optional[EnrichmentBundle]) -> Dict[str, Any]:
        return {
            "asking_price": record.asking_price,
            "for_sale": record.for_sale,
            "market_status": record.market_status,
            "status": record.status.value,
            "exclusive": record.exclusive,
            "leased": record.leased,
            "date_listed": record.date_listed.isoformat() if record.date_listed else None,
            "provider_status": bundle.get("status") if bundle is not None else None,
        }

    @staticmethod
    def _contact_info(record: CanonicalAircraft, bundle: Optional[EnrichmentBundle]) -> Dict[str, Any]:
        contacts: Dict[str, Any] = dict(record.contact_info)
        if bundle is not None:
            contacts["relationships"] = bundle.get("relationships")
        return contacts

    # ------------------------------------------------------------------
    # Child rows
    # ------------------------------------------------------------------

    async def _write_enrichments(self, aircraft_id: str, bundle: Optional[EnrichmentBundle], now) -> None:
        """Upsert one row per fetched category; categories not fetched are left alone"""
        if bundle is None or not bundle.categories:
            return

        result = await self.db.execute(
            select(AircraftEnrichment).where(AircraftEnrichment.aircraft_id == aircraft_id)
        )
        stored = {row.category: row for row in result.scalars().all()}

        for category, payload in bundle.categories.items():
            row = stored.get(category)
            if row is None:
                self.db.add(AircraftEnrichment(
                    aircraft_id=aircraft_id,
                    category=category,
                    payload=payload,
                    fetched_at=now,
                ))
            else:
                row.payload = payload
                row.fetched_at = now

    async def _write_images(self, aircraft_id: str, bundle: Optional[EnrichmentBundle]) -> None:
        """Replace the ordered image list; a placeholder never replaces real images"""
        if bundle is None or not bundle.images:
            return

        if not bundle.has_real_images:
            real_images = await self.db.scalar(
                select(func.count()).select_from(AircraftImage).where(
                    AircraftImage.aircraft_id == aircraft_id,
                    AircraftImage.is_placeholder.is_(False),
                )
            )
            if real_images:
                return

        await self.db.execute(
            delete(AircraftImage).where(AircraftImage.aircraft_id == aircraft_id)
        )
        for image in bundle.images:
            self.db.add(AircraftImage(aircraft_id=aircraft_id, **image.model_dump()))
