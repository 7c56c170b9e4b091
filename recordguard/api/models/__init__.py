"""API Pydantic models."""

from recordguard.api.models.health import ClinicalFieldHealth, DatabaseHealth, HealthResponse
from recordguard.api.models.patients import (
    ClinicalUpdateResponse,
    PatientListResponse,
    PatientResponse,
    WriteRejectedResponse,
)

__all__ = [
    "ClinicalFieldHealth",
    "ClinicalUpdateResponse",
    "DatabaseHealth",
    "HealthResponse",
    "PatientListResponse",
    "PatientResponse",
    "WriteRejectedResponse",
]
