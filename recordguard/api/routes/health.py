"""Health check endpoint."""

import logging
import time
from datetime import datetime, timezone

from fastapi import APIRouter, Query

from recordguard import __version__
from recordguard.api.dependencies import GuardDep, StorageDep
from recordguard.api.models.health import ClinicalFieldHealth, DatabaseHealth, HealthResponse
from recordguard.domain.auditor import IntegrityAuditor
from recordguard.domain.codec import SafeCodec
from recordguard.domain.guardrails import IntegrityMetrics
from recordguard.domain.ports import PatientStoragePort, StorageError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["health"])


def _db_type(storage: PatientStoragePort) -> str:
    return {"DuckDBAdapter": "duckdb", "PostgreSQLAdapter": "postgresql"}.get(type(storage).__name__, "unknown")


def check_database_health(storage: PatientStoragePort) -> DatabaseHealth:
    """Check connectivity by counting patients."""
    start_time = time.time()
    result = storage.count_patient_records()
    if not result.is_success():
        logger.warning(f"Database health check failed: {result.error}")
        return DatabaseHealth(status="disconnected", type=_db_type(storage))
    return DatabaseHealth(
        status="connected",
        type=_db_type(storage),
        response_time_ms=round((time.time() - start_time) * 1000, 2),
        patient_count=result.value,
    )


def check_clinical_fields(storage: PatientStoragePort, codec: SafeCodec) -> ClinicalFieldHealth:
    """Decode every stored clinical field without changing anything.

    Events are counted on a private IntegrityMetrics; the process-wide
    counters are left untouched.
    """
    try:
        report = IntegrityAuditor(storage, codec=codec, metrics=IntegrityMetrics()).scan()
    except StorageError as e:
        logger.warning(f"Clinical field check failed: {e}")
        return ClinicalFieldHealth(status="unknown")
    return ClinicalFieldHealth(
        status="corrupted" if report.corrupted_fields else "clean",
        fields_scanned=report.total_fields_scanned,
        corrupted_fields=report.corrupted_fields,
        corrupted_patients=[p.patient_id for p in report.corrupted_patients],
    )


@router.get("/health", response_model=HealthResponse)
def health_check(
    storage: StorageDep,
    guard: GuardDep,
    integrity: bool = Query(True, description="Also decode every stored clinical field")
) -> HealthResponse:
    """Report database connectivity and whether stored clinical fields decode.

    Status is "unhealthy" when the database is unreachable and "degraded"
    when any stored clinical field is corrupted.
    """
    db_health = check_database_health(storage)
    if db_health.status == "disconnected":
        return HealthResponse(status="unhealthy", version=__version__, database=db_health)

    clinical = check_clinical_fields(storage, guard.codec) if integrity else None
    overall_status = "degraded" if clinical and clinical.status != "clean" else "healthy"
    return HealthResponse(
        status=overall_status,
        timestamp=datetime.now(timezone.utc),
        version=__version__,
        database=db_health,
        clinical_fields=clinical,
    )
