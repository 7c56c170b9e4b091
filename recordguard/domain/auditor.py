"""Integrity Auditor for persisted clinical fields.

Scans every stored patient, decodes each of the four EncodedFields with the
Safe Codec and classifies it as clean or corrupted. In repair mode each
corrupted field is reset to its kind default with one single-field update.

Security Impact:
    - Repair is destructive; reports list every affected patient/kind pair
      so an operator can recover data manually before scheduling a repair
    - Every repair write is appended to the storage audit trail

Architecture:
    - Each run is self-contained: no state is carried between runs beyond
      what is in storage, so runs can be scheduled externally (cron)
    - Idempotent per field: a repaired field decodes cleanly on the next run,
      and an interrupted repair pass is safe to resume
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field

from recordguard.domain.clinical_records import default_record
from recordguard.domain.codec import SafeCodec
from recordguard.domain.guardrails import IntegrityEvent, IntegrityMetrics, get_integrity_metrics
from recordguard.domain.kinds import ALL_KINDS, ClinicalSubRecordKind
from recordguard.domain.ports import CorruptionError, PatientStoragePort, StoredPatient

logger = logging.getLogger(__name__)


class AuditAction(str, Enum):
    """What an audit run did to corrupted fields."""

    NONE = "none"
    RESET_TO_DEFAULT = "reset-to-default"


class FieldStatus(str, Enum):
    CLEAN = "Clean"
    CORRUPTED = "Corrupted"


class FieldFinding(BaseModel):
    """Diagnostics for one corrupted field."""

    kind: ClinicalSubRecordKind
    reason: str = Field(..., description="invalid_json, non_object_root, non_finite_number or nesting_too_deep")
    message: str
    offset: Optional[int] = Field(None, description="Character offset of the parse failure")
    excerpt: Optional[str] = Field(None, description="Bounded excerpt around the failure")
    patterns: list[str] = Field(default_factory=list, description="Corruption pattern hints")
    repaired: bool = False
    repair_error: Optional[str] = None


class CorruptedPatient(BaseModel):
    """A patient with at least one corrupted field."""

    patient_id: int
    name: str
    corrupted_fields: list[ClinicalSubRecordKind]
    findings: list[FieldFinding]


class IntegrityReport(BaseModel):
    """Result of one audit run. Emitted as output only, never persisted."""

    timestamp: datetime
    action: AuditAction
    total_patients: int = 0
    total_fields_scanned: int = 0
    corrupted_fields: int = 0
    fixed_fields: int = 0
    repair_failures: int = 0
    anomalous_fields: int = Field(0, description="Fields decoded with auto-corrected values")
    corrupted_patients: list[CorruptedPatient] = Field(default_factory=list)
    status: Literal["CLEAN", "CORRUPTED", "FIXED", "PARTIAL"] = "CLEAN"
    duration_seconds: float = 0.0


@dataclass
class _RepairJob:
    patient: StoredPatient
    finding: FieldFinding


class IntegrityAuditor:
    """Scans stored patients for corrupted clinical fields.

    Parameters:
        storage: Persistence collaborator (read-only listing, single-field update)
        codec: Safe Codec used for the decode path and repair encoding
        metrics: Counter sink for corruption and repair events
        repair_workers: Number of concurrent repair writes (1 = sequential)

    Example Usage:
        ```python
        auditor = IntegrityAuditor(storage)
        report = auditor.scan()                 # read-only
        if report.corrupted_fields:
            report = auditor.scan_and_repair()  # destructive
        ```
    """

    def __init__(
        self,
        storage: PatientStoragePort,
        codec: Optional[SafeCodec] = None,
        metrics: Optional[IntegrityMetrics] = None,
        repair_workers: int = 1
    ):
        self.storage = storage
        self.codec = codec or SafeCodec()
        self.metrics = metrics or get_integrity_metrics()
        self.repair_workers = max(1, repair_workers)

    def scan(self) -> IntegrityReport:
        """Classify every stored field without changing anything."""
        return self._run(repair=False)

    def scan_and_repair(self) -> IntegrityReport:
        """Classify every stored field and reset corrupted ones to their default."""
        return self._run(repair=True)

    def classify_field(
        self,
        kind: ClinicalSubRecordKind,
        encoded: Optional[str]
    ) -> tuple[FieldStatus, Optional[FieldFinding], int]:
        """Classify one stored field.

        Returns:
            tuple: (status, finding when corrupted, number of auto-corrected anomalies)
        """
        try:
            outcome = self.codec.decode_with_anomalies(encoded, kind)
        except CorruptionError as e:
            finding = FieldFinding(
                kind=kind,
                reason=e.reason,
                message=str(e),
                offset=e.offset,
                excerpt=e.excerpt,
                patterns=e.patterns,
            )
            return FieldStatus.CORRUPTED, finding, 0
        return FieldStatus.CLEAN, None, len(outcome.anomalies)

    def _run(self, repair: bool) -> IntegrityReport:
        started = time.monotonic()
        action = AuditAction.RESET_TO_DEFAULT if repair else AuditAction.NONE
        report = IntegrityReport(timestamp=datetime.now(timezone.utc), action=action)
        logger.info(f"Starting integrity {'repair' if repair else 'scan'}")

        jobs: list[_RepairJob] = []
        for patient in self.storage.list_patient_records():
            report.total_patients += 1
            findings = []
            for kind in ALL_KINDS:
                report.total_fields_scanned += 1
                status, finding, anomalies = self.classify_field(kind, patient.encoded_fields.get(kind))
                if anomalies:
                    report.anomalous_fields += 1
                    self.metrics.record(IntegrityEvent.DECODE_ANOMALY, kind, anomalies)
                if status is FieldStatus.CORRUPTED:
                    self.metrics.record(IntegrityEvent.CORRUPTION, kind)
                    logger.warning(
                        f"Corruption found: patient {patient.patient_id} - {kind.wire_key}: {finding.message}",
                        extra={"extra_fields": {
                            "event": "corruption_detected",
                            "kind": kind.wire_key,
                            "patient_id": patient.patient_id,
                            "offset": finding.offset,
                            "patterns": finding.patterns,
                        }}
                    )
                    findings.append(finding)

            if findings:
                report.corrupted_fields += len(findings)
                report.corrupted_patients.append(CorruptedPatient(
                    patient_id=patient.patient_id,
                    name=patient.name,
                    corrupted_fields=[f.kind for f in findings],
                    findings=findings,
                ))
                if repair:
                    jobs.extend(_RepairJob(patient=patient, finding=f) for f in findings)

        if jobs:
            self._apply_repairs(jobs)
            report.fixed_fields = sum(1 for job in jobs if job.finding.repaired)
            report.repair_failures = len(jobs) - report.fixed_fields

        if report.corrupted_fields == 0:
            report.status = "CLEAN"
        elif not repair:
            report.status = "CORRUPTED"
        elif report.repair_failures == 0:
            report.status = "FIXED"
        else:
            report.status = "PARTIAL"

        report.duration_seconds = round(time.monotonic() - started, 3)
        logger.info(
            f"Integrity {'repair' if repair else 'scan'} complete: "
            f"{report.total_patients} patients, {report.corrupted_fields} corrupted fields, "
            f"{report.fixed_fields} fixed, status {report.status}"
        )
        return report

    def _apply_repairs(self, jobs: list[_RepairJob]) -> None:
        if self.repair_workers == 1:
            for job in jobs:
                self._repair(job)
            return

        # Concurrent across patients only; one patient's kinds share a row
        by_patient: dict[int, list[_RepairJob]] = {}
        for job in jobs:
            by_patient.setdefault(job.patient.patient_id, []).append(job)

        def repair_patient(patient_jobs: list[_RepairJob]) -> None:
            for job in patient_jobs:
                self._repair(job)

        with ThreadPoolExecutor(max_workers=self.repair_workers) as executor:
            list(executor.map(repair_patient, by_patient.values()))

    def _repair(self, job: _RepairJob) -> None:
        patient, finding = job.patient, job.finding
        kind = finding.kind
        replacement = self.codec.encode(default_record(kind, patient.sex))

        result = self.storage.update_encoded_field(patient.patient_id, kind, replacement)
        if not result.is_success():
            finding.repair_error = result.error
            logger.error(
                f"Failed to repair patient {patient.patient_id} - {kind.wire_key}: {result.error}"
            )
            return

        finding.repaired = True
        self.metrics.record(IntegrityEvent.REPAIR, kind)
        logger.info(
            f"Reset corrupted {kind.wire_key} to default for patient {patient.patient_id}",
            extra={"extra_fields": {
                "event": "integrity_repair",
                "kind": kind.wire_key,
                "patient_id": patient.patient_id,
            }}
        )
        self.storage.log_audit_event(
            event_type="INTEGRITY_REPAIR",
            record_id=str(patient.patient_id),
            details={
                "kind": kind.wire_key,
                "action": AuditAction.RESET_TO_DEFAULT.value,
                "reason": finding.reason,
                "offset": finding.offset,
                "patterns": finding.patterns,
            }
        )
