"""
Aircraft sync pipeline components.

This package contains every stage of a provider sync:

Modules:
    auth_manager: Provider login and single-flight token refresh
    client: Authenticated, rate-limited HTTP client with retries and a circuit breaker
    rate_limiter: Token bucket with jitter shared by all provider requests
    cancellation: Cancellation tokens with deadlines and the in-process run registry
    sync_log: Sync run state machine (STARTED -> one terminal state)
    runner: Sync orchestrator that coordinates every phase
    scheduler: APScheduler integration for periodic syncs

Subpackages:
    extractors: Paginated bulk export fetcher
    transformers: Coercion helpers and the canonical aircraft normalizer
    enrichment: Per-aircraft category fan-out, tech summary and image fallback
    loaders: Identity resolution and idempotent create-or-update

Architecture:
    A sync run follows five phases:

    1. Authenticate - Obtain a bearer and security token pair
    2. Fetch - Page through the bulk export until a short page or the ceiling
    3. Normalize - Coerce raw rows into CanonicalAircraft records
    4. Enrich - Fetch eleven categories plus pictures per aircraft, in batches
    5. Reconcile - Match each record to a stored aircraft and create or update it

    Authentication and pagination failures abort the run. Enrichment failures
    are isolated per category and per aircraft. Reconciliation failures are
    counted per record.

Usage:
    from ingestion.auth_manager import AuthManager, ProviderCredentials
    from ingestion.client import ProviderClient
    from ingestion.runner import SyncRunner, SyncOptions

Example:
    auth = AuthManager(http_client, ProviderCredentials.from_settings())
    client = ProviderClient.from_settings(http_client, auth)

    runner = SyncRunner(session, client)
    result = await runner.run(SyncOptions(sync_type=SyncType.COMPREHENSIVE))

    print(f"Created {result['records_created']} aircraft")

Error Handling:
    All components raise exceptions from core.exceptions so that callers
    can separate run-fatal errors from record-level ones.
"""

__all__ = [
    "AuthManager",
    "ProviderClient",
    "RateLimiter",
    "CancellationToken",
    "RunRegistry",
    "BulkFetcher",
    "AircraftNormalizer",
    "EnrichmentOrchestrator",
    "Reconciler",
    "SyncRunLog",
    "SyncRunner",
    "SyncOptions",
    "SyncScheduler",
]
