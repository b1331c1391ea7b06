from sqlalchemy import Column, BigInteger, String, Enum, DateTime, Integer, Text, Index, Uuid
import uuid
from models.base import Base, JSONType, SyncType, SyncStatus, utcnow


class SyncRun(Base):
    """
    Append-only log of sync executions.

    Purpose:
    - The only facility external callers use to observe pipeline health
    - Audit trail of every trigger (API, scheduler, CLI)
    - Error tracking and debugging

    Lifecycle:
    - Inserted as STARTED when a trigger is accepted
    - Moved exactly once to COMPLETED, FAILED or COMPLETED_WITH_ERRORS
    - Counts and duration are written only at that terminal transition
    """
    __tablename__ = "sync_runs"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    run_id = Column(Uuid(as_uuid=True), default=uuid.uuid4, unique=True, nullable=False, index=True)

    sync_type = Column(Enum(SyncType), nullable=False, index=True)
    status = Column(Enum(SyncStatus), default=SyncStatus.PENDING, nullable=False, index=True)
    triggered_by = Column(String(50), nullable=True)

    # Timestamps
    started_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    sync_duration_ms = Column(Integer, nullable=True)

    # Statistics
    records_processed = Column(Integer, default=0)
    records_created = Column(Integer, default=0)
    records_updated = Column(Integer, default=0)
    records_unchanged = Column(Integer, default=0)
    records_failed = Column(Integer, default=0)

    # Error tracking
    error_message = Column(Text, nullable=True)
    error_details = Column(JSONType, nullable=True)

    # Configuration snapshot
    config_snapshot = Column(JSONType, nullable=True)

    # Pages fetched, enrichment error counters, etc.
    run_metadata = Column("metadata", JSONType, nullable=True)

    __table_args__ = (
        Index("idx_sync_run_type_started", "sync_type", "started_at"),
        Index("idx_sync_run_status", "status", "started_at"),
    )
