"""PostgreSQL Storage Adapter.

Implements PatientStoragePort on PostgreSQL for production deployments.
Clinical sub-records are stored as TEXT, one column per kind. Each port
operation borrows one pooled connection and commits (or rolls back) before
returning it, so every single-field update is its own atomic transaction.

Security Impact:
    - Values are bound as parameters and column names are composed with
      psycopg2.sql.Identifier from ClinicalSubRecordKind only
    - Connection credentials are never logged
    - SSL connections supported (sslmode defaults to 'prefer')

Architecture:
    - Implements PatientStoragePort (Hexagonal Architecture)
    - ThreadedConnectionPool, safe for concurrent repair writes
"""

import logging
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, Mapping, Optional

import psycopg2
from psycopg2 import pool, sql
from psycopg2.extras import Json

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

_SELECT_PATIENTS = sql.SQL("SELECT {columns} FROM patients").format(
    columns=sql.SQL(", ").join(sql.Identifier(c) for c in PATIENT_SELECT_COLUMNS)
)


class PostgreSQLAdapter(PatientStoragePort):
    """PostgreSQL implementation of PatientStoragePort.

    Parameters:
        db_config: DatabaseConfig from the configuration manager (preferred)
        connection_string: postgresql:// URL, used when db_config is omitted

    Example Usage:
        ```python
        from recordguard.infrastructure.config_manager import get_database_config

        adapter = PostgreSQLAdapter(db_config=get_database_config())
        adapter.initialize_schema()
        for patient in adapter.list_patient_records():
            ...
        ```
    """

    def __init__(self, db_config: Optional[DatabaseConfig] = None, connection_string: Optional[str] = None):
        self._connection_pool: Optional[pool.ThreadedConnectionPool] = None
        self._initialized = False
        self._schema_lock = threading.Lock()

        if db_config:
            if db_config.db_type != "postgresql":
                raise StorageError(
                    f"DatabaseConfig type '{db_config.db_type}' does not match PostgreSQL adapter",
                    operation="__init__"
                )
            if db_config.connection_string:
                self.connection_params: dict[str, Any] = {
                    "dsn": db_config.connection_string.get_secret_value()
                }
            else:
                if not (db_config.host and db_config.database):
                    raise StorageError(
                        "PostgreSQL DatabaseConfig requires host and database",
                        operation="__init__"
                    )
                self.connection_params = {
                    "host": db_config.host,
                    "port": db_config.port or 5432,
                    "database": db_config.database,
                    "user": db_config.username,
                    "sslmode": db_config.ssl_mode or "prefer",
                }
                if db_config.password:
                    self.connection_params["password"] = db_config.password.get_secret_value()
            self.connection_params["connect_timeout"] = db_config.connect_timeout
            self.pool_min = db_config.pool_min
            self.pool_max = max(db_config.pool_max, db_config.pool_min)
        elif connection_string:
            self.connection_params = {"dsn": connection_string}
            self.pool_min, self.pool_max = 1, 5
        else:
            raise StorageError(
                "PostgreSQL adapter requires either db_config or connection_string",
                operation="__init__"
            )

    def _get_connection_pool(self) -> pool.ThreadedConnectionPool:
        if self._connection_pool is None:
            try:
                self._connection_pool = pool.ThreadedConnectionPool(
                    minconn=self.pool_min,
                    maxconn=self.pool_max,
                    **self.connection_params
                )
                logger.info("Created PostgreSQL connection pool")
            except psycopg2.Error as e:
                raise StorageError(
                    f"Failed to create PostgreSQL connection pool: {str(e)}",
                    operation="connect",
                    details={"host": self.connection_params.get("host", "N/A")}
                )
        return self._connection_pool

    @contextmanager
    def _connection(self, initialize: bool = True):
        """Borrow a pooled connection for one transaction.

        Commits when the block exits normally, rolls back on error and always
        returns the connection to the pool.
        """
        if initialize and not self._initialized:
            init_result = self.initialize_schema()
            if not init_result.is_success():
                raise StorageError(init_result.error, operation="initialize_schema")

        connection_pool = self._get_connection_pool()
        try:
            conn = connection_pool.getconn()
        except psycopg2.Error as e:
            raise StorageError(f"Failed to get connection from pool: {str(e)}", operation="get_connection")

        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            try:
                connection_pool.putconn(conn)
            except psycopg2.Error as e:
                logger.warning(f"Error returning connection to pool: {str(e)}")

    def initialize_schema(self) -> Result[None]:
        """Apply pending migrations, once per adapter instance.

        Each migration and its schema_migrations row commit together.
        """
        if self._initialized:
            return Result.success_result(None)

        with self._schema_lock:
            if self._initialized:
                return Result.success_result(None)
            try:
                with self._connection(initialize=False) as conn:
                    with conn.cursor() as cur:
                        cur.execute(SCHEMA_MIGRATIONS_DDL["postgresql"])
                        cur.execute("SELECT version FROM schema_migrations")
                        applied = [row[0] for row in cur.fetchall()]

                for migration in pending_migrations(applied):
                    with self._connection(initialize=False) as conn:
                        with conn.cursor() as cur:
                            for statement in migration.statements("postgresql"):
                                cur.execute(statement)
                            cur.execute(
                                "INSERT INTO schema_migrations (version, description, applied_at) "
                                "VALUES (%s, %s, %s) ON CONFLICT (version) DO NOTHING",
                                [migration.version, migration.description, datetime.now()]
                            )
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
        query = _SELECT_PATIENTS + sql.SQL(" ORDER BY id")
        try:
            with self._connection() as conn:
                # Named cursor: rows stream from the server in batches
                with conn.cursor(name=f"patients_{uuid.uuid4().hex}") as cur:
                    cur.itersize = _FETCH_BATCH_SIZE
                    cur.execute(query)
                    while True:
                        rows = cur.fetchmany(_FETCH_BATCH_SIZE)
                        if not rows:
                            break
                        for row in rows:
                            yield row_to_stored_patient(row)
        except StorageError:
            raise
        except psycopg2.Error as e:
            raise StorageError(
                f"Failed to list patient records: {str(e)}",
                operation="list_patient_records"
            ) from e

    def get_patient_record(self, patient_id: int) -> Result[StoredPatient]:
        query = _SELECT_PATIENTS + sql.SQL(" WHERE id = %s")
        try:
            with self._connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(query, [patient_id])
                    row = cur.fetchone()
        except (StorageError, psycopg2.Error) as e:
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

        query = sql.SQL("INSERT INTO patients ({columns}) VALUES ({values}) RETURNING id").format(
            columns=sql.SQL(", ").join(sql.Identifier(c) for c in columns),
            values=sql.SQL(", ").join(sql.Placeholder() for _ in columns),
        )
        try:
            with self._connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(query, values)
                    patient_id = cur.fetchone()[0]
        except (StorageError, psycopg2.Error) as e:
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
        query = sql.SQL("UPDATE patients SET {column} = %s, updated_at = %s WHERE id = %s RETURNING id").format(
            column=sql.Identifier(column)
        )
        try:
            with self._connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(query, [value, datetime.now(), patient_id])
                    row = cur.fetchone()
        except (StorageError, psycopg2.Error) as e:
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
            with self._connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT COUNT(*) FROM patients")
                    count = cur.fetchone()[0]
        except (StorageError, psycopg2.Error) as e:
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
            with self._connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        """
                        INSERT INTO audit_log (
                            audit_id, event_type, event_timestamp, record_id, details, severity
                        ) VALUES (%s, %s, %s, %s, %s, %s)
                        """,
                        [
                            audit_id,
                            event_type,
                            datetime.now(),
                            record_id,
                            Json(details) if details else None,
                            audit_severity(event_type),
                        ]
                    )
        except (StorageError, psycopg2.Error) as e:
            return self._failure(f"Failed to log audit event: {str(e)}", "log_audit_event")

        logger.debug(f"Logged audit event: {event_type} (ID: {audit_id})")
        return Result.success_result(audit_id)

    def close(self) -> None:
        """Close the connection pool and release resources."""
        if self._connection_pool is not None:
            try:
                self._connection_pool.closeall()
                logger.info("Closed PostgreSQL connection pool")
            except psycopg2.Error as e:
                logger.warning(f"Error closing connection pool: {str(e)}")
            finally:
                self._connection_pool = None
                self._initialized = False

    @staticmethod
    def _failure(error_msg: str, operation: str) -> Result:
        logger.error(error_msg, exc_info=True)
        return Result.failure_result(
            StorageError(error_msg, operation=operation),
            error_type="StorageError"
        )
