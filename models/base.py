from datetime import datetime, timezone
from sqlalchemy import JSON
from sqlalchemy.orm import declarative_base
from sqlalchemy.dialects.postgresql import JSONB
import enum

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    """Timezone-aware current UTC time used for all persisted timestamps."""
    return datetime.now(timezone.utc)


# ============================================================================
# ENUMS
# ============================================================================

class SyncType(str, enum.Enum):
    """Kind of sync run"""
    BULK = "BULK"                    # bulk export only
    COMPREHENSIVE = "COMPREHENSIVE"  # bulk export + enrichment
    ENRICHMENT = "ENRICHMENT"        # re-enrich stored aircraft


class SyncStatus(str, enum.Enum):
    """Sync run status"""
    PENDING = "PENDING"
    STARTED = "STARTED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    COMPLETED_WITH_ERRORS = "COMPLETED_WITH_ERRORS"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    SyncStatus.COMPLETED,
    SyncStatus.FAILED,
    SyncStatus.COMPLETED_WITH_ERRORS,
})


class AircraftStatus(str, enum.Enum):
    """Listing status of an aircraft"""
    AVAILABLE = "AVAILABLE"
    SOLD = "SOLD"
    UNDER_CONTRACT = "UNDER_CONTRACT"
    MAINTENANCE = "MAINTENANCE"
    INSPECTION = "INSPECTION"
    WITHDRAWN = "WITHDRAWN"
