"""Health check models."""

from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, Field


class DatabaseHealth(BaseModel):
    """Database connectivity.

    Attributes:
        status: Connection status
        type: Database type (duckdb or postgresql)
        response_time_ms: Time taken by the patient count query
        patient_count: Number of stored patients, when connected
    """
    status: Literal["connected", "disconnected"]
    type: str
    response_time_ms: Optional[float] = Field(None, description="Database response time in milliseconds")
    patient_count: Optional[int] = None


class ClinicalFieldHealth(BaseModel):
    """Result of a read-only decode pass over all stored clinical fields."""
    status: Literal["clean", "corrupted", "unknown"]
    fields_scanned: int = 0
    corrupted_fields: int = 0
    corrupted_patients: list[int] = Field(default_factory=list)


class HealthResponse(BaseModel):
    status: Literal["healthy", "degraded", "unhealthy"]
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    version: str
    database: DatabaseHealth
    clinical_fields: Optional[ClinicalFieldHealth] = None
