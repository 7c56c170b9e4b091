"""Dependency injection for the API.

Storage and the Request-Boundary Guard are built once per process from
configuration. Tests replace them through app.dependency_overrides.
"""

import logging
from functools import lru_cache
from typing import Annotated

from fastapi import Depends

from recordguard.domain.guard import RequestBoundaryGuard
from recordguard.domain.guardrails import IntegrityMetrics, get_integrity_metrics
from recordguard.domain.ports import PatientStoragePort
from recordguard.domain.services import PatientRecordService
from recordguard.infrastructure.settings import Settings, settings
from recordguard.main import create_guard, create_storage_adapter

logger = logging.getLogger(__name__)


def get_settings() -> Settings:
    return settings


@lru_cache()
def get_storage_adapter() -> PatientStoragePort:
    """Return the configured storage adapter (cached)."""
    logger.debug(f"Creating storage adapter for {settings.db_config.db_type}")
    return create_storage_adapter(settings.db_config)


@lru_cache()
def get_guard() -> RequestBoundaryGuard:
    return create_guard(settings)


def get_metrics() -> IntegrityMetrics:
    return get_integrity_metrics()


StorageDep = Annotated[PatientStoragePort, Depends(get_storage_adapter)]
GuardDep = Annotated[RequestBoundaryGuard, Depends(get_guard)]
MetricsDep = Annotated[IntegrityMetrics, Depends(get_metrics)]
SettingsDep = Annotated[Settings, Depends(get_settings)]


def get_patient_service(storage: StorageDep, guard: GuardDep) -> PatientRecordService:
    return PatientRecordService(storage, guard=guard)


PatientServiceDep = Annotated[PatientRecordService, Depends(get_patient_service)]
