"""Request-Boundary Guard.

The policy layer between the HTTP handlers and the integrity core. On the
way in it normalizes and encodes clinical sub-records and rejects a write
before any persistence call when the payload holds unparseable clinical data.
On the way out it decodes each stored field independently, substituting the
kind default for corrupted fields so one bad column never fails a response.

Security Impact:
    - Corrupted bytes never reach storage (write path) or a client (read path)
    - Every ParseFailure and CorruptionError is logged and counted
    - Log events carry offsets and bounded excerpts only

Architecture:
    - Domain service composed from SchemaValidator and SafeCodec
    - Emits diagnostics through logging and IntegrityMetrics
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from recordguard.domain.clinical_records import ClinicalSubRecord, absent_value, default_record
from recordguard.domain.codec import SafeCodec
from recordguard.domain.guardrails import IntegrityEvent, IntegrityMetrics, get_integrity_metrics
from recordguard.domain.kinds import ALL_KINDS, ClinicalSubRecordKind, is_female
from recordguard.domain.ports import (
    CorruptionError,
    EncodingInvariantViolation,
    Result,
    StoredPatient,
    ValidationError,
    ValidationIssue,
    WriteRejectedError,
)
from recordguard.domain.validator import SchemaValidator

logger = logging.getLogger(__name__)

# Marker for "caller did not supply the patient's sex"
_SEX_UNKNOWN = object()


@dataclass
class DecodedField:
    """One stored field as prepared for a response.

    Attributes:
        kind: The clinical sub-record kind
        record: The decoded record, the substituted default, or None (absent)
        corrupted: True when the stored value failed to decode
        error: The CorruptionError when corrupted
    """

    kind: ClinicalSubRecordKind
    record: Optional[ClinicalSubRecord]
    corrupted: bool = False
    error: Optional[CorruptionError] = None

    @property
    def payload(self) -> Optional[dict]:
        return self.record.to_payload() if self.record is not None else None


@dataclass
class PatientClinicalView:
    """All four decoded fields of one patient."""

    patient_id: int
    fields: dict[ClinicalSubRecordKind, DecodedField] = field(default_factory=dict)

    @property
    def corrupted_kinds(self) -> list[ClinicalSubRecordKind]:
        return [kind for kind, decoded in self.fields.items() if decoded.corrupted]

    def payloads(self) -> dict[str, Optional[dict]]:
        return {kind.wire_key: decoded.payload for kind, decoded in self.fields.items()}


class RequestBoundaryGuard:
    """Applies validation and encoding policy at the API boundary.

    Parameters:
        validator: Schema Validator (a default one is created when omitted)
        codec: Safe Codec (shares the validator when omitted)
        reject_parse_failures: Treat ParseFailure as fatal for writes
        metrics: Counter sink for integrity events

    Example Usage:
        ```python
        guard = RequestBoundaryGuard()
        encoded = guard.prepare_write(request_json, sex="Female")
        storage.create_patient_record(demographics, encoded)

        view = guard.read_patient(stored_patient)
        view.corrupted_kinds
        ```
    """

    def __init__(
        self,
        validator: Optional[SchemaValidator] = None,
        codec: Optional[SafeCodec] = None,
        reject_parse_failures: bool = True,
        metrics: Optional[IntegrityMetrics] = None
    ):
        self.validator = validator or (codec.validator if codec else SchemaValidator())
        self.codec = codec or SafeCodec(validator=self.validator)
        self.reject_parse_failures = reject_parse_failures
        self.metrics = metrics or get_integrity_metrics()

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def validate_and_encode(
        self,
        kind: ClinicalSubRecordKind,
        raw_input: Any,
        sex: Any
    ) -> Result[Optional[str]]:
        """Normalize and encode one kind for persistence.

        Parameters:
            kind: The clinical sub-record kind
            raw_input: Loosely-typed value from the request
            sex: The owning patient's sex

        Returns:
            Result[Optional[str]]: The EncodedField (None for absent), or a
            failure carrying the ValidationError when policy rejects the
            input or the encoding is oversized

        Raises:
            EncodingInvariantViolation: Internal error; never persisted
        """
        result = self.validator.normalize(kind, raw_input, sex)

        for warning in result.warnings:
            self._report_validation_warning(warning)

        parse_failure = result.parse_failure
        if parse_failure is not None and self.reject_parse_failures:
            return Result.failure_result(
                parse_failure,
                error_type="ValidationError",
                error_details=parse_failure.to_dict()
            )

        try:
            encoded = self.codec.encode(result.record)
        except ValidationError as e:
            self._report_validation_warning(e)
            return Result.failure_result(e, error_type="ValidationError", error_details=e.to_dict())
        except EncodingInvariantViolation:
            self.metrics.record(IntegrityEvent.ENCODING_VIOLATION, kind)
            raise

        return Result.success_result(encoded)

    def prepare_write(
        self,
        payload: Mapping[str, Any],
        sex: Any,
        fill_missing: bool = False
    ) -> dict[ClinicalSubRecordKind, Optional[str]]:
        """Validate and encode every clinical kind in a write payload.

        Kinds are looked up by wire key (e.g. "medicalHistory") or column name.
        All kinds are checked before anything is returned, so a rejection
        names every offending field at once.

        Parameters:
            payload: Request body (may also hold non-clinical keys)
            sex: The owning patient's sex
            fill_missing: Also encode defaults for kinds absent from payload
                (used at registration, where all four kinds are populated)

        Returns:
            dict: EncodedField per kind present (or all kinds if fill_missing)

        Raises:
            WriteRejectedError: If any kind failed under the write policy
            EncodingInvariantViolation: Internal error; nothing may be persisted
        """
        encoded: dict[ClinicalSubRecordKind, Optional[str]] = {}
        errors: list[ValidationError] = []

        for kind in ALL_KINDS:
            if kind.wire_key in payload:
                raw = payload[kind.wire_key]
            elif kind.column_name in payload:
                raw = payload[kind.column_name]
            elif fill_missing:
                raw = None
            else:
                continue

            result = self.validate_and_encode(kind, raw, sex)
            if result.is_success():
                encoded[kind] = result.value
            else:
                errors.append(result.exception)

        if errors:
            for error in errors:
                self.metrics.record(IntegrityEvent.REJECTED_WRITE, error.kind)
            rejection = WriteRejectedError(errors)
            logger.warning(
                f"Rejected write: {rejection}",
                extra={"extra_fields": {"event": "write_rejected", "fields": rejection.fields}}
            )
            raise rejection

        return encoded

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def decode_for_response(
        self,
        kind: ClinicalSubRecordKind,
        encoded: Optional[str],
        sex: Any = _SEX_UNKNOWN,
        patient_id: Optional[int] = None
    ) -> DecodedField:
        """Decode one stored field for a response, never raising on corruption.

        Parameters:
            kind: The clinical sub-record kind
            encoded: The stored EncodedField (None/empty means no data)
            sex: The owning patient's sex; when given, MenstrualHistory is
                gated and a corrupted field falls back to the sex-aware default
            patient_id: Included in diagnostics only

        Returns:
            DecodedField: The record and whether the stored value was corrupted
        """
        sex_known = sex is not _SEX_UNKNOWN

        try:
            outcome = self.codec.decode_with_anomalies(encoded, kind)
        except CorruptionError as e:
            self.metrics.record(IntegrityEvent.CORRUPTION, kind)
            logger.error(
                f"CORRUPTION ALERT: patient {patient_id} has corrupted {kind.wire_key}: {e}",
                extra={"extra_fields": {
                    "event": "corruption_detected",
                    "kind": kind.wire_key,
                    "patient_id": patient_id,
                    "offset": e.offset,
                    "excerpt": e.excerpt,
                    "patterns": e.patterns,
                }}
            )
            fallback = default_record(kind, sex) if sex_known else absent_value(kind)
            return DecodedField(kind=kind, record=fallback, corrupted=True, error=e)

        if outcome.anomalies:
            self.metrics.record(IntegrityEvent.DECODE_ANOMALY, kind, len(outcome.anomalies))
        record = outcome.record
        if sex_known and kind.is_sex_gated and not is_female(sex):
            record = None
        elif sex_known and kind.is_sex_gated and record is None:
            record = default_record(kind, sex)
        return DecodedField(kind=kind, record=record)

    def read_patient(self, patient: StoredPatient) -> PatientClinicalView:
        """Decode all four fields of a stored patient independently."""
        view = PatientClinicalView(patient_id=patient.patient_id)
        for kind in ALL_KINDS:
            view.fields[kind] = self.decode_for_response(
                kind,
                patient.encoded_fields.get(kind),
                sex=patient.sex,
                patient_id=patient.patient_id
            )
        return view

    # ------------------------------------------------------------------

    def _report_validation_warning(self, warning: ValidationError) -> None:
        if warning.issue is ValidationIssue.PARSE_FAILURE:
            self.metrics.record(IntegrityEvent.PARSE_FAILURE, warning.kind)
            logger.warning(
                f"INCOMING DATA CORRUPTION DETECTED: {warning}",
                extra={"extra_fields": {
                    "event": "parse_failure",
                    "kind": warning.kind.wire_key,
                    "offset": warning.offset,
                    "excerpt": warning.excerpt,
                }}
            )
        elif warning.issue is ValidationIssue.OVERSIZED:
            self.metrics.record(IntegrityEvent.OVERSIZED, warning.kind)
            logger.warning(
                f"Oversized clinical field: {warning}",
                extra={"extra_fields": {"event": "oversized_field", "kind": warning.kind.wire_key}}
            )
        else:
            self.metrics.record(IntegrityEvent.SCHEMA_MISMATCH, warning.kind)
            logger.info(
                f"Coerced clinical field: {warning}",
                extra={"extra_fields": {
                    "event": "schema_mismatch",
                    "kind": warning.kind.wire_key,
                    "path": warning.field,
                }}
            )
