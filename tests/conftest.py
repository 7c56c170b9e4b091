"""Shared fixtures for the Record-Guard test suite."""

import json
import logging

import pytest

from recordguard.adapters.storage.duckdb_adapter import DuckDBAdapter
from recordguard.domain.codec import SafeCodec
from recordguard.domain.guard import RequestBoundaryGuard
from recordguard.domain.guardrails import IntegrityMetrics
from recordguard.domain.kinds import ALL_KINDS, ClinicalSubRecordKind
from recordguard.domain.validator import SchemaValidator


@pytest.fixture
def validator():
    return SchemaValidator()


@pytest.fixture
def codec(validator):
    return SafeCodec(validator=validator)


@pytest.fixture
def metrics():
    """A private metrics instance so counts do not leak between tests."""
    return IntegrityMetrics()


@pytest.fixture
def guard(codec, metrics):
    return RequestBoundaryGuard(codec=codec, metrics=metrics)


@pytest.fixture
def storage():
    """In-memory DuckDB storage with the schema applied."""
    adapter = DuckDBAdapter(db_path=":memory:")
    result = adapter.initialize_schema()
    assert result.is_success(), result.error
    yield adapter
    adapter.close()


@pytest.fixture
def demographics():
    """Factory for the demographic columns of a stored patient."""
    def _make(name: str = "Asha Rao", sex: str = "Female", **overrides):
        values = {
            "name": name,
            "guardian_name": "Ravi Rao",
            "address": "12 Lake Road",
            "age": 34,
            "sex": sex,
            "occupation": "Accountant",
            "mobile_number": "+91 98450 12345",
            "chief_complaints": "Recurring headache",
        }
        values.update(overrides)
        return values
    return _make


@pytest.fixture
def registration_payload():
    """Factory for a camelCase registration request body."""
    def _make(**overrides):
        payload = {
            "name": "Asha Rao",
            "guardianName": "Ravi Rao",
            "address": "12 Lake Road",
            "age": 34,
            "sex": "Female",
            "occupation": "Accountant",
            "mobileNumber": "+91 98450 12345",
            "chiefComplaints": "Recurring headache",
        }
        payload.update(overrides)
        return payload
    return _make


@pytest.fixture
def encode_defaults(codec):
    """Encode the registration defaults of every kind for a given sex."""
    from recordguard.domain.clinical_records import default_record

    def _encode(sex: str = "Female"):
        return {kind: codec.encode(default_record(kind, sex)) for kind in ALL_KINDS}
    return _encode


@pytest.fixture
def seed_patient(storage, demographics, encode_defaults):
    """Insert a patient directly into storage, bypassing the guard.

    Keyword overrides are raw stored values per kind, which allows seeding
    corrupted fields.
    """
    def _seed(name: str = "Asha Rao", sex: str = "Female", fields=None):
        encoded = encode_defaults(sex)
        for kind, value in (fields or {}).items():
            encoded[ClinicalSubRecordKind(kind)] = value
        result = storage.create_patient_record(demographics(name=name, sex=sex), encoded)
        assert result.is_success(), result.error
        return result.value
    return _seed


def audit_rows(storage, event_type=None):
    """Read audit_log rows from a DuckDB adapter as dicts."""
    query = "SELECT event_type, record_id, details, severity FROM audit_log"
    params = []
    if event_type:
        query += " WHERE event_type = ?"
        params.append(event_type)
    rows = storage._get_connection().execute(query + " ORDER BY event_timestamp", params).fetchall()
    return [
        {
            "event_type": row[0],
            "record_id": row[1],
            "details": json.loads(row[2]) if row[2] else None,
            "severity": row[3],
        }
        for row in rows
    ]


@pytest.fixture
def read_audit_log(storage):
    def _read(event_type=None):
        return audit_rows(storage, event_type)
    return _read


@pytest.fixture
def restore_root_logger():
    """Undo setup_logging calls made by the code under test."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def db_file(tmp_path):
    return tmp_path / "clinic.duckdb"


@pytest.fixture
def seed_db_file(db_file, demographics, encode_defaults):
    """Insert a patient into the DuckDB file, closing the connection afterwards."""
    def _seed(name: str = "Asha Rao", sex: str = "Female", fields=None):
        encoded = encode_defaults(sex)
        for kind, value in (fields or {}).items():
            encoded[ClinicalSubRecordKind(kind)] = value
        with DuckDBAdapter(db_path=str(db_file)) as adapter:
            result = adapter.create_patient_record(demographics(name=name, sex=sex), encoded)
        assert result.is_success(), result.error
        return result.value
    return _seed


@pytest.fixture
def read_db_file(db_file):
    def _read(patient_id: int):
        with DuckDBAdapter(db_path=str(db_file)) as adapter:
            return adapter.get_patient_record(patient_id).value
    return _read


@pytest.fixture
def file_settings(db_file, tmp_path, monkeypatch):
    """Point the process-wide settings at the DuckDB file.

    Reports are not saved unless a test asks for it.
    """
    from recordguard.infrastructure.config_manager import DatabaseConfig
    from recordguard.infrastructure.settings import settings

    monkeypatch.setattr(settings, "_db_config", DatabaseConfig(db_path=str(db_file)))
    monkeypatch.setattr(settings, "save_integrity_report", False)
    monkeypatch.setattr(settings, "integrity_report_dir", str(tmp_path / "reports"))
    monkeypatch.setattr(settings, "repair_workers", 1)
    monkeypatch.setattr(settings, "json_logs", False)
    return settings
