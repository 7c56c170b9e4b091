"""Patient request/response models.

Responses use the clinic UI's camelCase keys. Clinical sub-records are
returned as decoded payloads; kinds whose stored value was corrupted are
replaced by their default and listed in `corruptedFields`.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from recordguard.domain.kinds import ClinicalSubRecordKind
from recordguard.domain.services import PatientDetails


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PatientResponse(_CamelModel):
    id: int
    name: str
    guardian_name: Optional[str] = None
    address: Optional[str] = None
    age: Optional[int] = None
    sex: Optional[str] = None
    occupation: Optional[str] = None
    mobile_number: Optional[str] = None
    chief_complaints: Optional[str] = None
    medical_history: Optional[dict[str, Any]] = None
    physical_generals: Optional[dict[str, Any]] = None
    menstrual_history: Optional[dict[str, Any]] = None
    food_and_habit: Optional[dict[str, Any]] = None
    corrupted_fields: list[str] = Field(default_factory=list, description="Kinds replaced by defaults")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_details(cls, details: PatientDetails) -> "PatientResponse":
        patient = details.patient
        attributes = dict(patient.attributes)
        clinical = {
            kind.column_name: decoded.payload
            for kind, decoded in details.clinical.fields.items()
        }
        return cls(
            id=patient.patient_id,
            name=patient.name,
            sex=patient.sex,
            corrupted_fields=[kind.wire_key for kind in details.corrupted_kinds],
            **{k: v for k, v in attributes.items() if k in cls.model_fields},
            **clinical,
        )


class PatientListResponse(_CamelModel):
    patients: list[PatientResponse]
    total: int
    patients_with_corruption: int = 0


class ClinicalUpdateResponse(_CamelModel):
    patient: PatientResponse
    updated_fields: list[str]

    @classmethod
    def build(cls, details: PatientDetails, kinds: list[ClinicalSubRecordKind]) -> "ClinicalUpdateResponse":
        return cls(
            patient=PatientResponse.from_details(details),
            updated_fields=[kind.wire_key for kind in kinds],
        )


class FieldErrorDetail(BaseModel):
    field: Optional[str]
    path: Optional[str] = None
    issue: str
    message: str
    offset: Optional[int] = None


class WriteRejectedResponse(BaseModel):
    """400 body for a write rejected by the clinical-data policy."""
    error: str = "Invalid clinical data"
    detail: str
    fields: list[str]
    errors: list[FieldErrorDetail]
