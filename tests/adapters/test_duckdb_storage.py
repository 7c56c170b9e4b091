"""Tests for the DuckDB storage adapter and the versioned migrations.

Uses real in-memory and temporary-file DuckDB databases.
"""

import pytest

from recordguard.adapters.storage.duckdb_adapter import DuckDBAdapter
from recordguard.adapters.storage.migrations import (
    MIGRATIONS,
    PATIENT_SELECT_COLUMNS,
    Migration,
    audit_severity,
    pending_migrations,
    row_to_stored_patient,
)
from recordguard.domain.kinds import ALL_KINDS, ClinicalSubRecordKind
from recordguard.domain.ports import PatientNotFoundError, StorageError
from recordguard.infrastructure.config_manager import DatabaseConfig

FOOD = ClinicalSubRecordKind.FOOD_AND_HABIT
MENSTRUAL = ClinicalSubRecordKind.MENSTRUAL_HISTORY


class TestMigrations:
    """Test the migration list and helpers."""

    def test_versions_are_strictly_increasing(self):
        versions = [m.version for m in MIGRATIONS]
        assert versions == sorted(set(versions))

    def test_pending_migrations(self):
        assert [m.version for m in pending_migrations([])] == [m.version for m in MIGRATIONS]
        assert [m.version for m in pending_migrations([1, 2])] == [m.version for m in MIGRATIONS if m.version > 2]
        assert pending_migrations([m.version for m in MIGRATIONS]) == []

    def test_unknown_dialect(self):
        with pytest.raises(ValueError):
            Migration(1, "x", (), ()).statements("sqlite")

    def test_audit_severity(self):
        assert audit_severity("INTEGRITY_REPAIR") == "WARNING"
        assert audit_severity("WRITE_REJECTED") == "WARNING"
        assert audit_severity("PATIENT_CREATED") == "INFO"

    def test_row_mapping(self):
        row = [7, "Asha", None, "12 Lake Road", 34, "Female", None, "123", "Headache",
               "{}", None, "", '{"foodHabit":"Veg"}', None, None]
        patient = row_to_stored_patient(row)

        assert len(row) == len(PATIENT_SELECT_COLUMNS)
        assert patient.patient_id == 7
        assert patient.sex == "Female"
        assert patient.encoded_fields[FOOD] == '{"foodHabit":"Veg"}'
        assert patient.encoded_fields[MENSTRUAL] == ""
        assert patient.attributes["age"] == 34
        assert "name" not in patient.attributes


class TestSchema:
    """Test schema initialization."""

    def test_initialize_records_every_migration(self, storage):
        versions = storage._get_connection().execute(
            "SELECT version FROM schema_migrations ORDER BY version"
        ).fetchall()
        assert [v[0] for v in versions] == [m.version for m in MIGRATIONS]

    def test_initialize_is_idempotent(self, storage):
        assert storage.initialize_schema().is_success()
        count = storage._get_connection().execute("SELECT COUNT(*) FROM schema_migrations").fetchone()[0]
        assert count == len(MIGRATIONS)

    def test_schema_is_applied_lazily(self, demographics):
        adapter = DuckDBAdapter(db_path=":memory:")
        try:
            assert adapter.count_patient_records().value == 0
        finally:
            adapter.close()

    def test_file_database_survives_reopen(self, tmp_path, demographics, encode_defaults):
        db_file = str(tmp_path / "clinic.duckdb")
        adapter = DuckDBAdapter(db_path=db_file)
        patient_id = adapter.create_patient_record(demographics(), encode_defaults()).value
        adapter.close()

        reopened = DuckDBAdapter(db_path=db_file)
        try:
            assert reopened.initialize_schema().is_success()
            assert reopened.get_patient_record(patient_id).value.name == "Asha Rao"
        finally:
            reopened.close()


class TestConstruction:
    """Test adapter configuration."""

    def test_from_config(self):
        adapter = DuckDBAdapter(db_config=DatabaseConfig(db_type="duckdb"))
        assert adapter.db_path == ":memory:"

    def test_rejects_postgresql_config(self):
        config = DatabaseConfig(db_type="postgresql", host="localhost", database="clinic")
        with pytest.raises(StorageError):
            DuckDBAdapter(db_config=config)

    def test_missing_directory(self, tmp_path):
        with pytest.raises(StorageError):
            DuckDBAdapter(db_path=str(tmp_path / "missing" / "clinic.duckdb"))


class TestPatientRecords:
    """Test the storage port operations."""

    def test_create_and_get(self, storage, demographics, encode_defaults):
        encoded = encode_defaults("Female")
        result = storage.create_patient_record(demographics(), encoded)

        assert result.is_success()
        patient = storage.get_patient_record(result.value).value
        assert patient.name == "Asha Rao"
        assert patient.attributes["mobile_number"] == "+91 98450 12345"
        assert patient.attributes["created_at"] is not None
        assert dict(patient.encoded_fields) == encoded

    def test_ids_are_sequential(self, storage, seed_patient):
        first = seed_patient(name="A")
        second = seed_patient(name="B")
        assert second == first + 1

    def test_absent_kind_is_stored_as_null(self, storage, seed_patient):
        patient_id = seed_patient(sex="Male")
        assert storage.get_patient_record(patient_id).value.encoded_fields[MENSTRUAL] is None

    def test_get_unknown_patient(self, storage):
        result = storage.get_patient_record(12345)
        assert result.is_failure()
        assert result.error_type == "PatientNotFoundError"
        assert isinstance(result.exception, PatientNotFoundError)

    def test_update_single_field(self, storage, seed_patient):
        patient_id = seed_patient()
        before = storage.get_patient_record(patient_id).value

        result = storage.update_encoded_field(patient_id, FOOD, '{"foodHabit":"Vegan","addictions":""}')

        after = storage.get_patient_record(patient_id).value
        assert result.is_success()
        assert after.encoded_fields[FOOD] == '{"foodHabit":"Vegan","addictions":""}'
        for kind in ALL_KINDS:
            if kind is not FOOD:
                assert after.encoded_fields[kind] == before.encoded_fields[kind]
        assert after.attributes["updated_at"] is not None

    def test_update_to_null(self, storage, seed_patient):
        patient_id = seed_patient()
        storage.update_encoded_field(patient_id, MENSTRUAL, None)
        assert storage.get_patient_record(patient_id).value.encoded_fields[MENSTRUAL] is None

    def test_update_unknown_patient(self, storage):
        result = storage.update_encoded_field(999, FOOD, "{}")
        assert result.is_failure()
        assert isinstance(result.exception, PatientNotFoundError)

    def test_list_in_id_order(self, storage, seed_patient):
        ids = [seed_patient(name=f"P{i}") for i in range(3)]
        assert [p.patient_id for p in storage.list_patient_records()] == ids

    def test_list_streams_in_batches(self, storage, seed_patient, monkeypatch):
        monkeypatch.setattr("recordguard.adapters.storage.duckdb_adapter._FETCH_BATCH_SIZE", 2)
        for i in range(5):
            seed_patient(name=f"P{i}")
        assert len(list(storage.list_patient_records())) == 5

    def test_count(self, storage, seed_patient):
        seed_patient()
        seed_patient()
        assert storage.count_patient_records().value == 2

    def test_audit_event(self, storage, read_audit_log):
        result = storage.log_audit_event("INTEGRITY_REPAIR", "5", {"kind": "foodAndHabit"})

        assert result.is_success()
        entries = read_audit_log()
        assert entries == [{
            "event_type": "INTEGRITY_REPAIR",
            "record_id": "5",
            "details": {"kind": "foodAndHabit"},
            "severity": "WARNING",
        }]

    def test_context_manager_closes(self):
        with DuckDBAdapter(db_path=":memory:") as adapter:
            adapter.initialize_schema()
        assert adapter._connection is None

    def test_operations_fail_cleanly_after_schema_error(self, monkeypatch):
        adapter = DuckDBAdapter(db_path=":memory:")
        monkeypatch.setattr(
            "recordguard.adapters.storage.duckdb_adapter.pending_migrations",
            lambda applied: [Migration(99, "broken", ("CREATE TABLE (",), ())],
        )
        try:
            result = adapter.count_patient_records()
            assert result.is_failure()
            assert result.error_type == "StorageError"
            with pytest.raises(StorageError):
                list(adapter.list_patient_records())
        finally:
            adapter.close()
