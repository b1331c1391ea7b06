"""
Pydantic schemas for data validation and serialization.

This package defines Pydantic models used between pipeline stages and
at the API boundary:

Schemas:
    aircraft: CanonicalAircraft, the normalized record every stage after
        the normalizer works with
    enrichment: Enrichment bundles, images and the derived tech summary
    api: API endpoint request/response schemas

Features:
    - Automatic data validation
    - Blank strings coerced to absent values
    - JSON serialization for content hashing and raw record storage
    - OpenAPI schema generation for FastAPI

Usage:
    from schemas.aircraft import CanonicalAircraft
    from schemas.enrichment import EnrichmentBundle
    from schemas.api import SyncTriggerRequest, SyncRunResponse

Example:
    aircraft = CanonicalAircraft(
        provider_aircraft_id=1001,
        manufacturer="Gulfstream",
        model="G650",
        year=2015,
        raw_data={"id": 1001},
    )

    assert aircraft.identity_keys == {"provider_aircraft_id": 1001}
"""

__all__ = [
    "CanonicalAircraft",
    "EnrichmentBundle",
    "EnrichmentResult",
    "ImageRecord",
    "TechSummary",
    "SyncTriggerRequest",
    "SyncRunResponse",
    "SyncRunListResponse",
    "HealthCheckResponse",
    "StatsResponse",
]
