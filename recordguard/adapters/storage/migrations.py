"""Patient store schema and versioned migrations.

Every schema change is an entry in MIGRATIONS with a strictly increasing
version. Adapters apply the pending entries in order, each in its own
transaction, and record the version in the append-only `schema_migrations`
table, so initialize_schema can run on every start.

Security Impact:
    - Column names used in dynamic SQL come only from the constants below
      and from ClinicalSubRecordKind.column_name, never from input
"""

from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Sequence

from recordguard.domain.kinds import ALL_KINDS
from recordguard.domain.ports import StoredPatient

DEMOGRAPHIC_COLUMNS: tuple[str, ...] = (
    "name",
    "guardian_name",
    "address",
    "age",
    "sex",
    "occupation",
    "mobile_number",
    "chief_complaints",
)

CLINICAL_COLUMNS: tuple[str, ...] = tuple(kind.column_name for kind in ALL_KINDS)

PATIENT_SELECT_COLUMNS: tuple[str, ...] = (
    ("id",) + DEMOGRAPHIC_COLUMNS + CLINICAL_COLUMNS + ("created_at", "updated_at")
)

SCHEMA_MIGRATIONS_DDL = {
    "duckdb": """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version INTEGER PRIMARY KEY,
            description VARCHAR NOT NULL,
            applied_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
    """,
    "postgresql": """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version INTEGER PRIMARY KEY,
            description VARCHAR(255) NOT NULL,
            applied_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
    """,
}


@dataclass(frozen=True)
class Migration:
    """One schema change, with its SQL for each supported dialect."""

    version: int
    description: str
    duckdb: tuple[str, ...]
    postgresql: tuple[str, ...]

    def statements(self, dialect: str) -> tuple[str, ...]:
        if dialect not in ("duckdb", "postgresql"):
            raise ValueError(f"Unsupported SQL dialect: {dialect}")
        return getattr(self, dialect)


MIGRATIONS: tuple[Migration, ...] = (
    Migration(
        version=1,
        description="create patients table",
        duckdb=(
            "CREATE SEQUENCE IF NOT EXISTS patients_id_seq START 1",
            """
            CREATE TABLE IF NOT EXISTS patients (
                id INTEGER PRIMARY KEY DEFAULT nextval('patients_id_seq'),
                name VARCHAR NOT NULL,
                guardian_name VARCHAR,
                address VARCHAR,
                age INTEGER,
                sex VARCHAR,
                occupation VARCHAR,
                mobile_number VARCHAR,
                chief_complaints VARCHAR,
                medical_history TEXT,
                physical_generals TEXT,
                menstrual_history TEXT,
                food_and_habit TEXT,
                created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP
            )
            """,
        ),
        postgresql=(
            """
            CREATE TABLE IF NOT EXISTS patients (
                id SERIAL PRIMARY KEY,
                name VARCHAR(255) NOT NULL,
                guardian_name VARCHAR(255),
                address TEXT,
                age INTEGER CHECK (age IS NULL OR (age BETWEEN 1 AND 150)),
                sex VARCHAR(16),
                occupation VARCHAR(255),
                mobile_number VARCHAR(32),
                chief_complaints TEXT,
                medical_history TEXT,
                physical_generals TEXT,
                menstrual_history TEXT,
                food_and_habit TEXT,
                created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP
            )
            """,
        ),
    ),
    Migration(
        version=2,
        description="create audit_log table",
        duckdb=(
            """
            CREATE TABLE IF NOT EXISTS audit_log (
                audit_id VARCHAR PRIMARY KEY,
                event_type VARCHAR NOT NULL,
                event_timestamp TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
                record_id VARCHAR,
                details VARCHAR,
                severity VARCHAR
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_audit_event_type ON audit_log(event_type)",
            "CREATE INDEX IF NOT EXISTS idx_audit_record_id ON audit_log(record_id)",
        ),
        postgresql=(
            """
            CREATE TABLE IF NOT EXISTS audit_log (
                audit_id VARCHAR(36) PRIMARY KEY,
                event_type VARCHAR(50) NOT NULL,
                event_timestamp TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
                record_id VARCHAR(64),
                details JSONB,
                severity VARCHAR(20)
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_audit_event_type ON audit_log(event_type)",
            "CREATE INDEX IF NOT EXISTS idx_audit_record_id ON audit_log(record_id)",
            "CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_log(event_timestamp)",
        ),
    ),
    Migration(
        version=3,
        description="index patients by name",
        # DuckDB ART indexes turn updates into delete+insert; keep patients unindexed there
        duckdb=(),
        postgresql=(
            "CREATE INDEX IF NOT EXISTS idx_patients_name ON patients(name)",
        ),
    ),
)


def pending_migrations(applied: Iterable[int]) -> list[Migration]:
    """Return the migrations not yet applied, in version order."""
    done = set(applied)
    return sorted((m for m in MIGRATIONS if m.version not in done), key=lambda m: m.version)


AUDIT_SEVERITY = {
    "INTEGRITY_REPAIR": "WARNING",
    "WRITE_REJECTED": "WARNING",
}


def audit_severity(event_type: str) -> str:
    return AUDIT_SEVERITY.get(event_type, "INFO")


def row_to_stored_patient(row: Sequence[Any]) -> StoredPatient:
    """Map a row selected with PATIENT_SELECT_COLUMNS to a StoredPatient."""
    values = dict(zip(PATIENT_SELECT_COLUMNS, row))
    attributes: Mapping[str, Any] = {
        column: values[column]
        for column in DEMOGRAPHIC_COLUMNS + ("created_at", "updated_at")
        if column not in ("name", "sex")
    }
    return StoredPatient(
        patient_id=int(values["id"]),
        name=values["name"],
        sex=values["sex"],
        encoded_fields={kind: values[kind.column_name] for kind in ALL_KINDS},
        attributes=attributes,
    )
