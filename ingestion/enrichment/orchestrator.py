"""
Per-aircraft enrichment fan-out across the provider sub-resource endpoints.

For every aircraft the eleven category endpoints and the pictures endpoint
are requested concurrently. Aircraft are processed in fixed-size batches;
batches run one after another with a pacing delay so that at most
`batch_size * 12` requests are in flight.

Failure isolation:
    A failed category request only removes that category from the bundle.
    An unexpected failure while enriching one aircraft only empties that
    aircraft's bundle. Neither aborts siblings.
"""

import asyncio
import base64
import logging
from datetime import date, datetime, timezone
from html import escape
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

from pydantic import ValidationError as PydanticValidationError

from core.config import settings
from core.exceptions import AuthError, SyncException, TransportError, ValidationError
from ingestion.cancellation import CancellationToken
from ingestion.client import ProviderClient
from ingestion.transformers.normalizer import to_num, to_year
from schemas.aircraft import CanonicalAircraft
from schemas.enrichment import (
    ENRICHMENT_CATEGORIES,
    IMAGES_CATEGORY,
    EnrichmentBundle,
    EnrichmentResult,
    ImageRecord,
    TechSummary,
)

logger = logging.getLogger(__name__)

# Category name -> provider endpoint
CATEGORY_ENDPOINTS = {
    "status": "getStatus",
    "airframe": "getAirframe",
    "engines": "getEngine",
    "apu": "getApu",
    "avionics": "getAvionics",
    "features": "getFeatures",
    "additional_equipment": "getAdditionalEquipment",
    "interior": "getInterior",
    "exterior": "getExterior",
    "maintenance": "getMaintenance",
    "relationships": "getCompanyrelationships",
    IMAGES_CATEGORY: "getPictures",
}

# Envelope keys the provider wraps single-category documents in
ENVELOPE_KEYS = ("responseid", "responsestatus")

# Error statuses that only mean the aircraft has nothing in this category
NO_DATA_MARKERS = ("NO DATA", "NO RECORDS", "NO RESULTS", "NOT FOUND")

PICTURE_LIST_KEYS = ("pictures", "images", "aircraftpictures")
PICTURE_URL_KEYS = ("url", "imageurl", "imageUrl", "pictureurl")


def category_path(category: str, aircraft_id: int) -> str:
    return f"/api/Aircraft/{CATEGORY_ENDPOINTS[category]}/{aircraft_id}/{{security_token}}"


def _unwrap(payload: Any) -> Any:
    """Drop the provider's response envelope; empty documents become None"""
    if isinstance(payload, dict):
        if any(key in payload for key in ENVELOPE_KEYS):
            status = str(payload.get("responsestatus", ""))
            upper = status.upper()
            if "ERROR" in upper:
                if any(marker in upper for marker in NO_DATA_MARKERS):
                    return None
                raise ValidationError(
                    "Provider reported an error for category",
                    context={"responsestatus": status[:200]}
                )
            payload = {k: v for k, v in payload.items() if k not in ENVELOPE_KEYS}
            # A single remaining key holds the actual document
            if len(payload) == 1:
                payload = next(iter(payload.values()))
    if payload in (None, "", [], {}):
        return None
    return payload


# ============================================================================
# Technical summary
# ============================================================================

def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def count_engines(engines: Any) -> int:
    if isinstance(engines, list):
        return len(engines)
    if isinstance(engines, dict):
        nested = engines.get("engines")
        if isinstance(nested, list):
            return len(nested)
        return 1 if engines else 0
    return 0


def days_until_maintenance(maintenance: Any, today: Optional[date] = None) -> Optional[int]:
    data = _as_dict(maintenance)
    days = to_num(data.get("nextDueDays"))
    if days is not None:
        return int(days)
    due = data.get("nextDueDate")
    if isinstance(due, str) and due.strip():
        try:
            due_date = datetime.fromisoformat(due.strip().replace("Z", "+00:00")).date()
        except ValueError:
            return None
        today = today or datetime.now(timezone.utc).date()
        return (due_date - today).days
    return None


def build_tech_summary(categories: Dict[str, Any], today: Optional[date] = None) -> TechSummary:
    """Derive the technical summary from whatever categories succeeded; never raises"""
    avionics = _as_dict(categories.get("avionics"))
    features = categories.get("features")

    suite = avionics.get("suite") or avionics.get("primary")

    if isinstance(features, list):
        features_count = len(features)
    elif isinstance(features, dict):
        features_count = len(features)
    else:
        features_count = 0

    return TechSummary(
        engines=count_engines(categories.get("engines")),
        avionics_suite=str(suite) if suite else None,
        maintenance_due_in_days=days_until_maintenance(categories.get("maintenance"), today),
        interior_year=to_year(_as_dict(categories.get("interior")).get("year")),
        exterior_year=to_year(_as_dict(categories.get("exterior")).get("year")),
        features_count=features_count,
    )


# ============================================================================
# Images
# ============================================================================

def placeholder_image(manufacturer: str, model: str) -> ImageRecord:
    """SVG data URI so consumers always have at least one image to render"""
    label = escape(f"{manufacturer} {model} - Image Not Available")
    svg = (
        '<svg xmlns="http://www.w3.org/2000/svg" width="400" height="300" viewBox="0 0 400 300">'
        '<rect width="400" height="300" fill="#e5e7eb"/>'
        '<text x="200" y="150" font-family="Arial, sans-serif" font-size="16" '
        f'fill="#6b7280" text-anchor="middle" dominant-baseline="middle">{label}</text>'
        "</svg>"
    )
    encoded = base64.b64encode(svg.encode("utf-8")).decode("ascii")
    return ImageRecord(
        url=f"data:image/svg+xml;base64,{encoded}",
        image_type="placeholder",
        caption=f"{manufacturer} {model}",
        is_hero=True,
        is_placeholder=True,
        sort_order=0,
    )


def provider_images(payload: Any, label: Any) -> List[ImageRecord]:
    """Image records from a pictures payload; malformed entries are skipped"""
    if isinstance(payload, dict):
        for key in PICTURE_LIST_KEYS:
            if isinstance(payload.get(key), list):
                payload = payload[key]
                break
    if not isinstance(payload, list):
        return []

    images = []
    skipped = 0
    for item in payload:
        if isinstance(item, str):
            url, image_type, thumbnail = item, None, None
        elif isinstance(item, dict):
            url = next((item[k] for k in PICTURE_URL_KEYS if item.get(k)), None)
            image_type = item.get("type")
            thumbnail = item.get("thumbnailUrl") or item.get("thumbnailurl")
        else:
            skipped += 1
            continue
        if not isinstance(url, str) or not url.strip():
            skipped += 1
            continue
        if not isinstance(image_type, str) or not image_type.strip():
            image_type = None
        index = len(images)
        try:
            images.append(ImageRecord(
                url=url.strip(),
                thumbnail_url=thumbnail if isinstance(thumbnail, str) and thumbnail else None,
                image_type=image_type or ("exterior" if index == 0 else "other"),
                caption=f"Aircraft {label} - Image {index + 1}",
                is_hero=index == 0,
                sort_order=index,
            ))
        except PydanticValidationError:
            skipped += 1

    if skipped:
        logger.warning(f"Skipped {skipped} malformed picture entries for aircraft {label}")
    return images


def resolve_images(aircraft: CanonicalAircraft, payload: Any) -> Tuple[List[ImageRecord], str]:
    """Provider pictures, else listing photos, else a placeholder"""
    label = aircraft.provider_aircraft_id or aircraft.registration or aircraft.serial_number

    images = provider_images(payload, label)
    if images:
        return images, "provider"

    images = provider_images(aircraft.photos, label)
    if images:
        return images, "listing"

    return [placeholder_image(aircraft.manufacturer, aircraft.model)], "placeholder"


# ============================================================================
# Orchestrator
# ============================================================================

class EnrichmentOrchestrator:
    """
    Fetch enrichment bundles for batches of aircraft.

    Features:
    - Twelve concurrent requests per aircraft, all aircraft of a batch concurrent
    - Sequential batches with a pacing delay
    - Per-category and per-aircraft error counters
    - Cancellation checked between batches
    """

    def __init__(
        self,
        client: ProviderClient,
        batch_size: Optional[int] = None,
        batch_delay: Optional[float] = None,
        request_retries: int = 1,
    ):
        self.client = client
        self.batch_size = batch_size or settings.ENRICHMENT_BATCH_SIZE
        self.batch_delay = settings.BATCH_DELAY_SECONDS if batch_delay is None else batch_delay
        self.request_retries = request_retries

    async def _fetch_category(self, category: str, aircraft_id: int) -> Any:
        payload = await self.client.request_json(
            "GET",
            category_path(category, aircraft_id),
            allow_not_found=True,
            max_retries=self.request_retries,
        )
        return _unwrap(payload)

    async def enrich_one(self, aircraft: CanonicalAircraft) -> EnrichmentBundle:
        """
        Enrich a single aircraft.

        Raises:
            AuthError: No session could be obtained (affects every aircraft)
        """
        bundle = EnrichmentBundle()
        images_payload = None

        if aircraft.provider_aircraft_id is not None:
            bundle.attempted = True
            names = list(ENRICHMENT_CATEGORIES) + [IMAGES_CATEGORY]
            results = await asyncio.gather(
                *(self._fetch_category(name, aircraft.provider_aircraft_id) for name in names),
                return_exceptions=True,
            )

            for name, result in zip(names, results):
                if isinstance(result, AuthError):
                    raise result
                if isinstance(result, (TransportError, ValidationError)):
                    bundle.failed_categories.append(name)
                    logger.warning(
                        f"Enrichment category '{name}' failed for aircraft "
                        f"{aircraft.provider_aircraft_id}: {result.message}"
                    )
                    continue
                if isinstance(result, BaseException):
                    raise result
                if name == IMAGES_CATEGORY:
                    images_payload = result
                elif result is not None:
                    bundle.categories[name] = result

        bundle.tech_summary = build_tech_summary(bundle.categories)
        bundle.images, bundle.image_source = resolve_images(aircraft, images_payload)
        return bundle

    async def _enrich_isolated(self, aircraft: CanonicalAircraft) -> Tuple[EnrichmentBundle, bool]:
        try:
            return await self.enrich_one(aircraft), False
        except AuthError:
            raise
        except (SyncException, ValueError, TypeError, KeyError) as e:
            logger.error(
                f"Enrichment failed for aircraft {aircraft.display_key}: {e}",
                extra={"error_context": e.to_dict() if isinstance(e, SyncException) else {"error": str(e)}}
            )
            return self.offline_bundle(aircraft), True

    @staticmethod
    def offline_bundle(aircraft: CanonicalAircraft) -> EnrichmentBundle:
        """Bundle without provider calls: only the image fallback chain"""
        bundle = EnrichmentBundle()
        bundle.images, bundle.image_source = resolve_images(aircraft, None)
        return bundle

    async def iter_batches(
        self,
        aircraft: Sequence[CanonicalAircraft],
        cancellation: Optional[CancellationToken] = None,
        online: bool = True,
    ) -> AsyncIterator[Tuple[Sequence[CanonicalAircraft], EnrichmentResult]]:
        """
        Yield `(batch, result)` for sequential fixed-size batches.

        Cancellation is checked before each batch. With `online=False` no
        provider calls are made and every bundle comes from `offline_bundle`.
        The pacing delay runs between online batches, after the consumer has
        handled the previous one.

        Raises:
            AuthError: Session could not be obtained
            SyncCancelledError: Cancelled or past deadline between batches
        """
        total = (len(aircraft) + self.batch_size - 1) // self.batch_size

        for index in range(total):
            if cancellation is not None:
                cancellation.check(stage=f"enrichment_batch_{index + 1}")

            batch = aircraft[index * self.batch_size:(index + 1) * self.batch_size]
            if not online:
                yield batch, EnrichmentResult(bundles=[self.offline_bundle(a) for a in batch])
                continue

            yield batch, await self.enrich_batch(batch)

            if index < total - 1 and self.batch_delay:
                await asyncio.sleep(self.batch_delay)

    async def enrich(
        self,
        aircraft: Sequence[CanonicalAircraft],
        cancellation: Optional[CancellationToken] = None,
    ) -> EnrichmentResult:
        """
        Enrich aircraft in sequential batches.

        Returns:
            EnrichmentResult with bundles in input order and error counters

        Raises:
            AuthError: Session could not be obtained
            SyncCancelledError: Cancelled or past deadline between batches
        """
        result = EnrichmentResult()
        async for _, batch_result in self.iter_batches(aircraft, cancellation):
            result.merge(batch_result)
        return result

    async def enrich_batch(self, batch: Sequence[CanonicalAircraft]) -> EnrichmentResult:
        """Enrich one batch concurrently"""
        logger.info(f"Enriching batch of {len(batch)} aircraft")
        # Every sibling settles before a fatal error is re-raised
        outcomes = await asyncio.gather(
            *(self._enrich_isolated(a) for a in batch),
            return_exceptions=True,
        )
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome

        result = EnrichmentResult()
        for bundle, failed in outcomes:
            result.bundles.append(bundle)
            if failed:
                result.aircraft_errors += 1
            if bundle.attempted:
                result.requests_made += len(CATEGORY_ENDPOINTS)
            for name in bundle.failed_categories:
                result.category_errors[name] = result.category_errors.get(name, 0) + 1

        logger.info(
            f"Batch enriched: {len(batch)} aircraft, "
            f"{sum(result.category_errors.values())} category failures, "
            f"{result.aircraft_errors} aircraft failures"
        )
        return result
