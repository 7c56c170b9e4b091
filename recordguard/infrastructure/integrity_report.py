"""Integrity Report output.

Writes an IntegrityReport to a JSON file and prints a human-readable summary.
Reports are operator output only; nothing here is read back by the pipeline.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from recordguard.domain.auditor import AuditAction, IntegrityReport
from recordguard.domain.ports import Result


def default_report_path(report_dir: str, timestamp: Optional[datetime] = None) -> Path:
    """Return reports/integrity_report_<YYYYmmdd_HHMMSS>.json under report_dir."""
    timestamp = timestamp or datetime.now(timezone.utc)
    return Path(report_dir) / f"integrity_report_{timestamp.strftime('%Y%m%d_%H%M%S')}.json"


def save_integrity_report(
    report: IntegrityReport,
    output_path: Optional[str] = None,
    report_dir: str = "reports"
) -> Result[str]:
    """Save a report as JSON.

    Parameters:
        report: The report to save
        output_path: Target file; defaults to a timestamped file in report_dir
        report_dir: Directory for the default file name

    Returns:
        Result[str]: The path written, or a failure
    """
    output_file = Path(output_path) if output_path else default_report_path(report_dir, report.timestamp)
    try:
        output_file.parent.mkdir(parents=True, exist_ok=True)
        output_file.write_text(report.model_dump_json(indent=2), encoding="utf-8")
    except OSError as e:
        return Result.failure_result(
            OSError(f"Failed to save report to {output_file}: {str(e)}"),
            error_type="OSError"
        )
    return Result.success_result(str(output_file))


def print_integrity_report_summary(report: IntegrityReport) -> None:
    """Print a human-readable summary of an integrity report."""
    print("=" * 70)
    print("INTEGRITY REPORT - Clinical Field Corruption")
    print("=" * 70)
    print(f"\nTimestamp: {report.timestamp.isoformat()}")
    print(f"Action: {report.action.value}")
    print(f"Patients scanned: {report.total_patients}")
    print(f"Fields scanned: {report.total_fields_scanned}")
    print(f"Corrupted fields: {report.corrupted_fields}")
    if report.action is AuditAction.RESET_TO_DEFAULT:
        print(f"Fields reset to default: {report.fixed_fields}")
        if report.repair_failures:
            print(f"Repair failures: {report.repair_failures}")
    if report.anomalous_fields:
        print(f"Fields with auto-corrected values: {report.anomalous_fields}")

    if report.corrupted_patients:
        print("\nCorrupted patients:")
        for patient in report.corrupted_patients:
            print(f"  Patient {patient.patient_id} ({patient.name}):")
            for finding in patient.findings:
                location = f" at offset {finding.offset}" if finding.offset is not None else ""
                patterns = f" [{', '.join(finding.patterns)}]" if finding.patterns else ""
                print(f"    - {finding.kind.wire_key}: {finding.reason}{location}{patterns}")
                if finding.excerpt:
                    print(f"      {finding.excerpt!r}")
    else:
        print("\nAll clinical fields decode cleanly.")

    print(f"\nStatus: {report.status}")
    print("=" * 70)
