"""Patient Record Service.

Orchestrates patient registration, clinical-field updates and reads on top
of the storage port and the Request-Boundary Guard. This is the only place
where clinical sub-records are written during normal operation, so every
write goes through the guard's policy before storage is touched.

Architecture:
    - Domain service; storage and guard are injected
    - Expected storage failures arrive as Result objects and are raised as
      the matching RecordGuardError for the API layer to map
"""

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

from recordguard.domain.guard import PatientClinicalView, RequestBoundaryGuard
from recordguard.domain.kinds import ClinicalSubRecordKind
from recordguard.domain.patients import PatientRegistration
from recordguard.domain.ports import (
    PatientStoragePort,
    RecordGuardError,
    Result,
    StorageError,
    StoredPatient,
    WriteRejectedError,
)

logger = logging.getLogger(__name__)


@dataclass
class PatientDetails:
    """A stored patient with its clinical fields decoded for a response."""

    patient: StoredPatient
    clinical: PatientClinicalView

    @property
    def corrupted_kinds(self) -> list[ClinicalSubRecordKind]:
        return self.clinical.corrupted_kinds


class PatientRecordService:
    """Registers, updates and reads patients through the integrity guard.

    Example Usage:
        ```python
        service = PatientRecordService(storage)
        patient_id = service.register({"name": "Asha", "sex": "Female", ...})
        service.update_clinical_fields(patient_id, {"foodAndHabit": {"foodHabit": "Veg"}})
        details = service.get_patient(patient_id)
        ```
    """

    def __init__(self, storage: PatientStoragePort, guard: Optional[RequestBoundaryGuard] = None):
        self.storage = storage
        self.guard = guard or RequestBoundaryGuard()

    def register(self, registration: Union[PatientRegistration, Mapping[str, Any]]) -> int:
        """Create a patient with all four clinical fields populated.

        Kinds the caller did not supply are stored as their default.

        Returns:
            int: The new patient identifier

        Raises:
            pydantic.ValidationError: If the demographics are invalid
            WriteRejectedError: If any clinical field is unparseable
            StorageError: If the insert fails
        """
        if not isinstance(registration, PatientRegistration):
            registration = PatientRegistration.model_validate(registration)

        try:
            encoded = self.guard.prepare_write(
                registration.clinical_payload(),
                sex=registration.sex.value,
                fill_missing=True
            )
        except WriteRejectedError as e:
            self._audit_rejection(e, record_id=None, operation="register")
            raise

        patient_id = _unwrap(
            self.storage.create_patient_record(registration.demographics(), encoded),
            "create_patient_record"
        )
        self.storage.log_audit_event(
            event_type="PATIENT_CREATED",
            record_id=str(patient_id),
            details={"kinds": [kind.wire_key for kind in encoded]}
        )
        logger.info(f"Registered patient {patient_id}")
        return patient_id

    def update_clinical_fields(self, patient_id: int, payload: Mapping[str, Any]) -> list[ClinicalSubRecordKind]:
        """Overwrite the clinical fields present in `payload`.

        Each kind is written with its own single-field update. Nothing is
        written when the guard rejects any kind.

        Returns:
            list[ClinicalSubRecordKind]: The kinds that were written

        Raises:
            PatientNotFoundError: If the patient does not exist
            WriteRejectedError: If any supplied clinical field is unparseable
        """
        patient = _unwrap(self.storage.get_patient_record(patient_id), "get_patient_record")

        try:
            encoded = self.guard.prepare_write(payload, sex=patient.sex)
        except WriteRejectedError as e:
            self._audit_rejection(e, record_id=str(patient_id), operation="update")
            raise

        for kind, value in encoded.items():
            _unwrap(self.storage.update_encoded_field(patient_id, kind, value), "update_encoded_field")

        if encoded:
            self.storage.log_audit_event(
                event_type="CLINICAL_FIELD_UPDATED",
                record_id=str(patient_id),
                details={"kinds": [kind.wire_key for kind in encoded]}
            )
            logger.info(f"Updated {len(encoded)} clinical field(s) for patient {patient_id}")
        return list(encoded)

    def get_patient(self, patient_id: int) -> PatientDetails:
        """Read one patient; corrupted fields are replaced by defaults and flagged.

        Raises:
            PatientNotFoundError: If the patient does not exist
        """
        patient = _unwrap(self.storage.get_patient_record(patient_id), "get_patient_record")
        return PatientDetails(patient=patient, clinical=self.guard.read_patient(patient))

    def list_patients(self) -> list[PatientDetails]:
        return [
            PatientDetails(patient=patient, clinical=self.guard.read_patient(patient))
            for patient in self.storage.list_patient_records()
        ]

    def _audit_rejection(self, error: WriteRejectedError, record_id: Optional[str], operation: str) -> None:
        self.storage.log_audit_event(
            event_type="WRITE_REJECTED",
            record_id=record_id,
            details={
                "operation": operation,
                "fields": error.fields,
                "issues": [e.issue.value for e in error.errors],
            }
        )


def _unwrap(result: Result, operation: str) -> Any:
    """Return a successful Result's value or raise its error."""
    if result.is_success():
        return result.value
    if isinstance(result.exception, RecordGuardError):
        raise result.exception
    raise StorageError(result.error or "Storage operation failed", operation=operation)
