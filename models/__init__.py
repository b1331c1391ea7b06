"""
SQLAlchemy ORM models for database tables.

This package defines the database schema using SQLAlchemy ORM models:

Models:
    base: Base declarative class, shared enums (SyncType, SyncStatus,
        AircraftStatus) and the portable JSON column type
    aircraft: Canonical aircraft, per-category enrichment rows, images
    sync_run: Append-only sync run log

Database Schema:
    All models inherit from the Base declarative class. JSON columns use
    JSONB on PostgreSQL and fall back to JSON on other dialects so the
    test suite can run against SQLite.

Usage:
    from models.aircraft import Aircraft, AircraftImage, AircraftEnrichment
    from models.sync_run import SyncRun
    from models.base import SyncStatus, SyncType

Relationships:
    - Aircraft → AircraftImage (one-to-many, ordered, one hero)
    - Aircraft → AircraftEnrichment (one row per enrichment category)
"""

__all__ = [
    "Base",
    "SyncType",
    "SyncStatus",
    "AircraftStatus",
    "Aircraft",
    "AircraftEnrichment",
    "AircraftImage",
    "SyncRun",
]
