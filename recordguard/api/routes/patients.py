"""Patient endpoints.

Every clinical write passes through the Request-Boundary Guard inside
PatientRecordService; reads never fail because one stored field is corrupted.
"""

import logging
from typing import Any

from fastapi import APIRouter, Body, HTTPException

from recordguard.api.dependencies import PatientServiceDep
from recordguard.api.models.patients import (
    ClinicalUpdateResponse,
    PatientListResponse,
    PatientResponse,
    WriteRejectedResponse,
)
from recordguard.domain.kinds import ALL_KINDS
from recordguard.domain.patients import PatientRegistration

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/patients", tags=["patients"])

_REJECTION = {400: {"model": WriteRejectedResponse, "description": "Unparseable clinical data"}}


@router.post("", response_model=PatientResponse, status_code=201, responses=_REJECTION)
def register_patient(registration: PatientRegistration, service: PatientServiceDep) -> PatientResponse:
    """Register a patient; absent clinical sub-records are stored as defaults."""
    patient_id = service.register(registration)
    return PatientResponse.from_details(service.get_patient(patient_id))


@router.get("", response_model=PatientListResponse)
def list_patients(service: PatientServiceDep) -> PatientListResponse:
    patients = [PatientResponse.from_details(details) for details in service.list_patients()]
    return PatientListResponse(
        patients=patients,
        total=len(patients),
        patients_with_corruption=sum(1 for p in patients if p.corrupted_fields),
    )


@router.get("/{patient_id}", response_model=PatientResponse)
def get_patient(patient_id: int, service: PatientServiceDep) -> PatientResponse:
    return PatientResponse.from_details(service.get_patient(patient_id))


@router.patch("/{patient_id}/clinical", response_model=ClinicalUpdateResponse, responses=_REJECTION)
def update_clinical_fields(
    patient_id: int,
    service: PatientServiceDep,
    payload: dict[str, Any] = Body(..., description="Clinical sub-records keyed by camelCase kind name")
) -> ClinicalUpdateResponse:
    """Overwrite the supplied clinical sub-records of one patient."""
    known_keys = {kind.wire_key for kind in ALL_KINDS} | {kind.column_name for kind in ALL_KINDS}
    if not known_keys.intersection(payload):
        raise HTTPException(status_code=400, detail="No clinical fields supplied")

    updated = service.update_clinical_fields(patient_id, payload)
    return ClinicalUpdateResponse.build(service.get_patient(patient_id), updated)
