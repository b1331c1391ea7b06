"""
Pydantic schemas for API request/response models
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Optional, List, Dict, Any
from datetime import datetime
from models.base import SyncStatus, SyncType, utcnow


# ============================================================================
# Sync Trigger Schemas
# ============================================================================

class SyncTriggerRequest(BaseModel):
    """Body of POST /sync"""
    sync_type: SyncType = Field(default=SyncType.COMPREHENSIVE, description="BULK, COMPREHENSIVE or ENRICHMENT")
    filters: Dict[str, Any] = Field(default_factory=dict, description="Bulk export filter overrides")
    force_refresh: bool = Field(default=False, description="Rewrite records even when unchanged")
    max_pages: Optional[int] = Field(None, ge=1, le=500, description="Page ceiling for this run")
    deadline_seconds: Optional[float] = Field(None, gt=0, description="Abort the run after this many seconds")
    aircraft_ids: List[int] = Field(default_factory=list, description="Provider ids to re-enrich (enrichment only)")
    limit: int = Field(default=100, ge=1, le=5000, description="Maximum aircraft to re-enrich (enrichment only)")

    @field_validator("aircraft_ids")
    @classmethod
    def validate_aircraft_ids(cls, v):
        if any(i <= 0 for i in v):
            raise ValueError("aircraft_ids must be positive")
        return v

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "sync_type": "COMPREHENSIVE",
                "filters": {"forsale": "Y"},
                "force_refresh": False,
                "max_pages": 10,
                "deadline_seconds": 3600,
            }
        }
    )


class SyncRunSummary(BaseModel):
    run_id: str
    sync_type: SyncType
    status: SyncStatus
    triggered_by: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    sync_duration_ms: Optional[int] = None
    records_processed: int = 0
    records_created: int = 0
    records_updated: int = 0
    records_unchanged: int = 0
    records_failed: int = 0
    error_message: Optional[str] = None

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)

    @field_validator("run_id", mode="before")
    @classmethod
    def stringify_run_id(cls, v):
        return str(v)

    @field_validator(
        "records_processed", "records_created", "records_updated",
        "records_unchanged", "records_failed", mode="before"
    )
    @classmethod
    def zero_for_missing(cls, v):
        return v or 0


class SyncRunResponse(SyncRunSummary):
    """Full sync run including error details and run metadata"""
    error_details: Optional[List[Dict[str, Any]]] = None
    config_snapshot: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="run_metadata")

    model_config = ConfigDict(
        from_attributes=True,
        use_enum_values=True,
        json_schema_extra={
            "example": {
                "run_id": "550e8400-e29b-41d4-a716-446655440000",
                "sync_type": "COMPREHENSIVE",
                "status": "COMPLETED_WITH_ERRORS",
                "triggered_by": "api",
                "started_at": "2024-01-15T10:00:00Z",
                "completed_at": "2024-01-15T10:42:10Z",
                "sync_duration_ms": 2530120,
                "records_processed": 2450,
                "records_created": 12,
                "records_updated": 311,
                "records_unchanged": 2125,
                "records_failed": 2,
                "error_message": "2 records failed",
                "metadata": {"pages_fetched": 2, "records_fetched": 2450},
            }
        }
    )


class SyncRunListResponse(BaseModel):
    runs: List[SyncRunSummary]
    total: int


class SyncCancelResponse(BaseModel):
    run_id: str
    cancelled: bool


# ============================================================================
# Health Check Schemas
# ============================================================================

class HealthCheckResponse(BaseModel):
    """Health check response model"""
    status: str = Field(default="healthy", description="Overall system status: healthy, degraded, unhealthy")
    timestamp: datetime = Field(default_factory=utcnow)
    database_connected: bool
    sync_running: bool = False
    active_run: Optional[SyncRunSummary] = None
    last_runs: Dict[str, SyncRunSummary] = Field(default_factory=dict, description="Latest run per sync type")

    @model_validator(mode="after")
    def determine_status(self):
        """Determine overall health status"""
        if not self.database_connected:
            self.status = "unhealthy"
        elif any(run.status == SyncStatus.FAILED.value for run in self.last_runs.values()):
            self.status = "degraded"
        else:
            self.status = "healthy"
        return self

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "healthy",
                "timestamp": "2024-01-15T10:30:00Z",
                "database_connected": True,
                "sync_running": False,
                "last_runs": {
                    "COMPREHENSIVE": {
                        "run_id": "550e8400-e29b-41d4-a716-446655440000",
                        "sync_type": "COMPREHENSIVE",
                        "status": "COMPLETED",
                        "records_processed": 2450,
                    }
                },
            }
        }
    )


# ============================================================================
# Statistics Schemas
# ============================================================================

class StatsResponse(BaseModel):
    """Statistics response model"""
    timestamp: datetime = Field(default_factory=utcnow)

    # Aircraft statistics
    total_aircraft: int
    aircraft_for_sale: int
    aircraft_enriched: int
    aircraft_with_images: int
    aircraft_by_status: Dict[str, int] = Field(default_factory=dict)

    # Sync run statistics
    total_runs: int
    runs_by_status: Dict[str, int] = Field(default_factory=dict)
    last_success_at: Optional[datetime] = None
    last_failure_at: Optional[datetime] = None
    avg_sync_duration_ms: Optional[float] = None

    recent_runs: List[SyncRunSummary] = Field(default_factory=list)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "timestamp": "2024-01-15T10:30:00Z",
                "total_aircraft": 2450,
                "aircraft_for_sale": 1200,
                "aircraft_enriched": 2301,
                "aircraft_with_images": 2450,
                "aircraft_by_status": {"AVAILABLE": 1200, "SOLD": 1250},
                "total_runs": 14,
                "runs_by_status": {"COMPLETED": 12, "FAILED": 2},
                "avg_sync_duration_ms": 2530120.5,
            }
        }
    )


# ============================================================================
# Error Response Schema
# ============================================================================

class ErrorResponse(BaseModel):
    """Standard error response"""
    error: str
    detail: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": "SyncAlreadyRunningError",
                "detail": "Sync is already running",
                "timestamp": "2024-01-15T10:30:00Z"
            }
        }
    )
