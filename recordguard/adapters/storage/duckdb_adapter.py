"""DuckDB Storage Adapter.

Implements PatientStoragePort on DuckDB, for single-node deployments and for
tests (in-memory). Clinical sub-records are stored as TEXT, one column per
kind, exactly as produced by the Safe Codec.

Security Impact:
    - Values are always bound as parameters; column names come from
      ClinicalSubRecordKind only
    - Every integrity repair and rejected write is written to the
      append-only audit_log table

Architecture:
    - Implements PatientStoragePort (Hexagonal Architecture)
    - One connection per adapter, one cursor per operation, so repair
      writes may be issued from several threads
"""

import json
import logging
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, Mapping, Optional

import duckdb

from recordguard.adapters.storage.migrations import (
    DEMOGRAPHIC_COLUMNS,
    PATIENT_SELECT_COLUMNS,
    SCHEMA_MIGRATIONS_DDL,
    audit_severity,
    pending_migrations,
    row_to_stored_patient,
)
from recordguard.domain.kinds import ALL_KINDS, ClinicalSubRecordKind
from recordguard.domain.ports import (
    PatientNotFoundError,
    PatientStoragePort,
    Result,
    StorageError,
    StoredPatient,
)
from recordguard.infrastructure.config_manager import DatabaseConfig

logger = logging.getLogger(__name__)

_FETCH_BATCH_SIZE = 500


class DuckDBAdapter(PatientStoragePort):
    """DuckDB implementation of PatientStoragePort.

    Parameters:
        db_config: DatabaseConfig from the configuration manager (preferred)
        db_path: Path to the database file, or ':memory:'

    Example Usage:
        ```python
        adapter = DuckDBAdapter(db_path=":memory:")
        adapter.initialize_schema()
        result = adapter.create_patient_record({"name": "Asha", "sex": "Female"}, encoded)
        ```
    """

    def __init__(self, db_config: Optional[DatabaseConfig] = None, db_path: Optional[str] = None):
        if db_config:
            if db_config.db_type != "duckdb":
                raise StorageError(
                    f"DatabaseConfig type '{db_config.db_type}' does not match DuckDB adapter",
                    operation="__init__"
                )
            self.db_path = db_config.db_path or ":memory:"
        else:
            self.db_path = db_path or ":memory:"

        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._initialized = False

        if self.db_path != ":memory:":
            db_path_obj = Path(self.db_path)
            if not db_path_obj.parent.exists():
                raise StorageError(
                    f"Database directory does not exist: {db_path_obj.parent}",
                    operation="__init__"
                )

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            try:
                self._connection = duckdb.connect(self.db_path)
                logger.info(f"Connected to DuckDB database: {self.db_path}")
            except Exception as e:
                raise StorageError(
                    f"Failed to connect to DuckDB: {str(e)}",
                    operation="connect",
                    details={"db_path": self.db_path}
                )
        return self._connection

    @contextmanager
    def _cursor(self) -> Iterator[duckdb.DuckDBPyConnection]:
        """Yield a cursor (a thread-local duplicate of the connection)."""
        if not self._initialized:
            init_result = self.initialize_schema()
            if not init_result.is_success():
                raise StorageError(init_result.error, operation="initialize_schema")
        cursor = self._get_connection().cursor()
        try:
            yield cursor
        finally:
            cursor.close()

    def initialize_schema(self) -> Result[None]:
        """Apply pending migrations. Safe to call on every start.

        Returns:
            Result[None]: Success, or failure naming the migration that failed
        """
        try:
            conn = self._get_connection()
            conn.execute(SCHEMA_MIGRATIONS_DDL["duckdb"])
            applied = [row[0] for row in conn.execute("SELECT version FROM schema_migrations").fetchall()]

            for migration in pending_migrations(applied):
                conn.execute("BEGIN TRANSACTION")
                try:
                    for statement in migration.statements("duckdb"):
                        conn.execute(statement)
                    conn.execute(
                        "INSERT INTO schema_migrations (version, description, applied_at) VALUES (?, ?, ?)",
                        [migration.version, migration.description, datetime.now()]
                    )
                    conn.execute("COMMIT")
                except Exception:
                    conn.execute("ROLLBACK")
                    raise
                logger.info(f"Applied migration {migration.version}: {migration.description}")

            self._initialized = True
            logger.info("Database schema initialized successfully")
            return Result.success_result(None)

        except Exception as e:
            error_msg = f"Failed to initialize schema: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="initialize_schema"),
                error_type="StorageError"
            )

    def list_patient_records(self) -> Iterator[StoredPatient]:
        query = f"SELECT {', '.join(PATIENT_SELECT_COLUMNS)} FROM patients ORDER BY id"
        try:
            with self._cursor() as cur:
                cur.execute(query)
                while True:
                    rows = cur.fetchmany(_FETCH_BATCH_SIZE)
                    if not rows:
                        break
                    for row in rows:
                        yield row_to_stored_patient(row)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(
                f"Failed to list patient records: {str(e)}",
                operation="list_patient_records"
            ) from e

    def get_patient_record(self, patient_id: int) -> Result[StoredPatient]:
        query = f"SELECT {', '.join(PATIENT_SELECT_COLUMNS)} FROM patients WHERE id = ?"
        try:
            with self._cursor() as cur:
                row = cur.execute(query, [patient_id]).fetchone()
        except Exception as e:
            return self._failure(f"Failed to fetch patient {patient_id}: {str(e)}", "get_patient_record")

        if row is None:
            return Result.failure_result(
                PatientNotFoundError(patient_id, operation="get_patient_record"),
                error_type="PatientNotFoundError",
                error_details={"patient_id": patient_id}
            )
        return Result.success_result(row_to_stored_patient(row))

    def create_patient_record(
        self,
        demographics: Mapping[str, Any],
        encoded_fields: Mapping[ClinicalSubRecordKind, Optional[str]]
    ) -> Result[int]:
        columns = [c for c in DEMOGRAPHIC_COLUMNS if c in demographics]
        values = [demographics[c] for c in columns]
        for kind in ALL_KINDS:
            columns.append(kind.column_name)
            values.append(encoded_fields.get(kind))
        columns.append("created_at")
        values.append(datetime.now())

        placeholders = ", ".join("?" for _ in columns)
        query = f"INSERT INTO patients ({', '.join(columns)}) VALUES ({placeholders}) RETURNING id"
        try:
            with self._cursor() as cur:
                patient_id = cur.execute(query, values).fetchone()[0]
        except StorageError as e:
            return Result.failure_result(e, error_type="StorageError")
        except Exception as e:
            return self._failure(f"Failed to create patient record: {str(e)}", "create_patient_record")

        logger.debug(f"Created patient record {patient_id}")
        return Result.success_result(int(patient_id))

    def update_encoded_field(
        self,
        patient_id: int,
        kind: ClinicalSubRecordKind,
        value: Optional[str]
    ) -> Result[int]:
        column = ClinicalSubRecordKind(kind).column_name
        query = f"UPDATE patients SET {column} = ?, updated_at = ? WHERE id = ? RETURNING id"
        try:
            with self._cursor() as cur:
                row = cur.execute(query, [value, datetime.now(), patient_id]).fetchone()
        except Exception as e:
            return self._failure(
                f"Failed to update {column} for patient {patient_id}: {str(e)}",
                "update_encoded_field"
            )

        if row is None:
            return Result.failure_result(
                PatientNotFoundError(patient_id, operation="update_encoded_field"),
                error_type="PatientNotFoundError",
                error_details={"patient_id": patient_id, "kind": column}
            )
        return Result.success_result(patient_id)

    def count_patient_records(self) -> Result[int]:
        try:
            with self._cursor() as cur:
                count = cur.execute("SELECT COUNT(*) FROM patients").fetchone()[0]
        except Exception as e:
            return self._failure(f"Failed to count patients: {str(e)}", "count_patient_records")
        return Result.success_result(int(count))

    def log_audit_event(
        self,
        event_type: str,
        record_id: Optional[str],
        details: Optional[dict] = None
    ) -> Result[str]:
        audit_id = str(uuid.uuid4())
        try:
            with self._cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO audit_log (
                        audit_id, event_type, event_timestamp, record_id, details, severity
                    ) VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    [
                        audit_id,
                        event_type,
                        datetime.now(),
                        record_id,
                        json.dumps(details, default=str) if details else None,
                        audit_severity(event_type),
                    ]
                )
        except Exception as e:
            return self._failure(f"Failed to log audit event: {str(e)}", "log_audit_event")

        logger.debug(f"Logged audit event: {event_type} (ID: {audit_id})")
        return Result.success_result(audit_id)

    def close(self) -> None:
        """Close the connection and release resources."""
        if self._connection is not None:
            try:
                self._connection.close()
                logger.info("Closed DuckDB connection")
            except Exception as e:
                logger.warning(f"Error closing connection: {str(e)}")
            finally:
                self._connection = None
                self._initialized = False

    @staticmethod
    def _failure(error_msg: str, operation: str) -> Result:
        logger.error(error_msg, exc_info=True)
        return Result.failure_result(
            StorageError(error_msg, operation=operation),
            error_type="StorageError"
        )
