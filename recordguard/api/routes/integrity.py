"""Integrity scan and metrics endpoints."""

import logging

from fastapi import APIRouter, Query

from recordguard.api.dependencies import MetricsDep, SettingsDep, StorageDep
from recordguard.domain.auditor import IntegrityReport
from recordguard.main import run_integrity_scan

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/integrity", tags=["integrity"])


@router.post("/scan", response_model=IntegrityReport)
def scan(
    storage: StorageDep,
    app_settings: SettingsDep,
    repair: bool = Query(False, description="Reset corrupted fields to their default (destructive)")
) -> IntegrityReport:
    """Run one audit pass now.

    With repair=true every corrupted field is reset to its kind default and
    the report action is "reset-to-default".
    """
    logger.info(f"Integrity {'repair' if repair else 'scan'} requested via API")
    return run_integrity_scan(repair=repair, storage=storage, app_settings=app_settings)


@router.get("/metrics")
def metrics(integrity_metrics: MetricsDep) -> dict:
    """Integrity event counters per kind since process start or last reset."""
    return integrity_metrics.snapshot()
