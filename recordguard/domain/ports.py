"""Domain Ports - Result Type, Error Taxonomy and the Storage Contract.

This module defines the abstract contract the persistence collaborator must
implement, the Result type used to report expected failures without raising,
and the exception hierarchy shared by every component of the integrity
pipeline.

Security Impact:
    - Exceptions carry bounded diagnostic excerpts, never full stored payloads
    - Storage adapters only ever receive strings produced by the Safe Codec
    - Column names are resolved from ClinicalSubRecordKind, never from input

Architecture:
    - Pure abstract interfaces with zero infrastructure dependencies
    - Adapters (DuckDB, PostgreSQL) implement PatientStoragePort
    - The domain core receives its storage through constructor injection
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, Iterator, Mapping, Optional, TypeVar, Union

from recordguard.domain.kinds import ClinicalSubRecordKind

# Type variable for Result generic
T = TypeVar('T')


# ============================================================================
# Result Type for Success/Failure Communication
# ============================================================================

@dataclass(frozen=True)
class Result(Generic[T]):
    """Result type for communicating success or failure without exceptions.

    Storage adapters and the boundary guard return Result objects for
    expected failures (missing patient, rejected payload) so that callers
    can branch on the outcome and keep processing other records.

    Attributes:
        success: True if the operation succeeded, False otherwise
        value: The successful result value (only present if success=True)
        error: Error message (only present if success=False)
        error_type: Type of error (ValidationError, StorageError, etc.)
        error_details: Additional error context (kind, patient_id, etc.)
        exception: The originating exception, when there was one

    Example:
        ```python
        result = guard.validate_and_encode(kind, raw, sex)
        if result.is_success():
            storage.update_encoded_field(patient_id, kind, result.value)
        else:
            log_error(result.error, result.error_details)
        ```
    """

    success: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    error_details: Optional[dict] = None
    exception: Optional[Exception] = field(default=None, compare=False, repr=False)

    @classmethod
    def success_result(cls, value: T) -> 'Result[T]':
        """Create a successful result.

        Parameters:
            value: The successful result value

        Returns:
            Result: Success result with the value
        """
        return cls(
            success=True,
            value=value,
            error=None,
            error_type=None,
            error_details=None
        )

    @classmethod
    def failure_result(
        cls,
        error: Union[str, Exception],
        error_type: Optional[str] = None,
        error_details: Optional[dict] = None
    ) -> 'Result[T]':
        """Create a failure result.

        Parameters:
            error: Error message or exception
            error_type: Type of error (e.g., "ValidationError", "StorageError")
            error_details: Additional context (kind, patient_id, etc.)

        Returns:
            Result: Failure result with error information
        """
        error_message = str(error) if isinstance(error, Exception) else error
        error_type_name = error_type or (type(error).__name__ if isinstance(error, Exception) else "UnknownError")

        return cls(
            success=False,
            value=None,
            error=error_message,
            error_type=error_type_name,
            error_details=error_details or {},
            exception=error if isinstance(error, Exception) else None
        )

    def is_success(self) -> bool:
        """Check if result is successful."""
        return self.success

    def is_failure(self) -> bool:
        """Check if result is a failure."""
        return not self.success


# ============================================================================
# Custom Exception Hierarchy
# ============================================================================

class RecordGuardError(Exception):
    """Base exception for all integrity-pipeline errors."""
    pass


class ValidationIssue(str, Enum):
    """Categories of recoverable validation problems."""

    PARSE_FAILURE = "ParseFailure"
    SCHEMA_MISMATCH = "SchemaMismatch"
    OVERSIZED = "Oversized"


class ValidationError(RecordGuardError):
    """Raised or reported when clinical input cannot be used as given.

    A ValidationError is recoverable: the Schema Validator always produces a
    usable record alongside it. Whether it is fatal is a boundary policy
    decision (the write path rejects ParseFailure by default).

    Attributes:
        kind: The clinical sub-record kind being validated
        issue: ParseFailure, SchemaMismatch or Oversized
        field: Dotted wire path of the offending field, when field-specific
        offset: Character offset of a parse failure, when available
        excerpt: Short excerpt of the input around the failure
    """

    def __init__(
        self,
        message: str,
        kind: Optional[ClinicalSubRecordKind] = None,
        issue: ValidationIssue = ValidationIssue.SCHEMA_MISMATCH,
        field: Optional[str] = None,
        offset: Optional[int] = None,
        excerpt: Optional[str] = None
    ):
        super().__init__(message)
        self.kind = kind
        self.issue = issue
        self.field = field
        self.offset = offset
        self.excerpt = excerpt

    def to_dict(self) -> dict:
        return {
            "field": self.kind.wire_key if self.kind else None,
            "path": self.field,
            "issue": self.issue.value,
            "message": str(self),
            "offset": self.offset,
        }


class CorruptionError(RecordGuardError):
    """Raised by decode when a persisted EncodedField cannot be read back.

    Attributes:
        kind: The clinical sub-record kind of the field
        offset: Character offset where parsing failed (None when unknown)
        excerpt: Bounded excerpt of the stored text around the offset
        patterns: Corruption pattern hints (see recordguard.domain.diagnostics)
        reason: Short machine-readable reason (invalid_json, non_object_root)
    """

    def __init__(
        self,
        message: str,
        kind: ClinicalSubRecordKind,
        offset: Optional[int] = None,
        excerpt: Optional[str] = None,
        patterns: Optional[list[str]] = None,
        reason: str = "invalid_json"
    ):
        super().__init__(message)
        self.kind = kind
        self.offset = offset
        self.excerpt = excerpt
        self.patterns = patterns or []
        self.reason = reason

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.wire_key,
            "reason": self.reason,
            "message": str(self),
            "offset": self.offset,
            "excerpt": self.excerpt,
            "patterns": list(self.patterns),
        }


class EncodingInvariantViolation(RecordGuardError):
    """Raised when encode produces output that does not decode back to its input.

    This is never expected for a normalized record and indicates a bug in the
    Schema Validator or the codec. The encoded value must not be persisted.
    """

    def __init__(self, message: str, kind: Optional[ClinicalSubRecordKind] = None):
        super().__init__(message)
        self.kind = kind


class WriteRejectedError(RecordGuardError):
    """Raised when the write policy rejects a payload before any persistence.

    Attributes:
        errors: The ValidationErrors that caused the rejection, one per field
    """

    def __init__(self, errors: list[ValidationError]):
        fields = ", ".join(sorted({e.kind.wire_key for e in errors if e.kind}))
        super().__init__(f"Invalid clinical data in: {fields}")
        self.errors = errors

    @property
    def fields(self) -> list[str]:
        return sorted({e.kind.wire_key for e in self.errors if e.kind})


class StorageError(RecordGuardError):
    """Raised when the persistence collaborator fails.

    Attributes:
        operation: The storage operation that failed
        details: Additional error context (never contains credentials)
    """

    def __init__(self, message: str, operation: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message)
        self.operation = operation
        self.details = details or {}


class PatientNotFoundError(StorageError):
    """Raised when a patient identifier does not exist in storage."""

    def __init__(self, patient_id: int, operation: Optional[str] = None):
        super().__init__(
            f"Patient not found: {patient_id}",
            operation=operation,
            details={"patient_id": patient_id}
        )
        self.patient_id = patient_id


# ============================================================================
# Storage Contract
# ============================================================================

@dataclass(frozen=True)
class StoredPatient:
    """A patient row as read from storage.

    Attributes:
        patient_id: Numeric patient identifier
        name: Patient name
        sex: Stored sex value (not validated, may be unrecognized)
        encoded_fields: Raw EncodedField per kind (None when the column is NULL)
        attributes: Remaining demographic columns (age, address, contact, ...)
    """

    patient_id: int
    name: str
    sex: Optional[str]
    encoded_fields: Mapping[ClinicalSubRecordKind, Optional[str]]
    attributes: Mapping[str, Any] = field(default_factory=dict)


class PatientStoragePort(ABC):
    """Abstract contract for the patient record store.

    The integrity core treats persistence as a key/value record store keyed
    by patient identifier. Every mutation the core performs is a single-field
    update, so atomicity is delegated to the store's single-row update.

    Key Principles:
        - Streaming: list_patient_records yields rows one by one
        - Single-field writes: update_encoded_field touches one column only
        - Scoped acquisition: adapters acquire and release a connection per
          operation, and the port itself is a context manager

    Example Usage:
        ```python
        with DuckDBAdapter(db_path="data/clinic.duckdb") as storage:
            for patient in storage.list_patient_records():
                ...
        ```
    """

    @abstractmethod
    def initialize_schema(self) -> Result[None]:
        """Create tables and apply pending migrations (idempotent)."""
        pass

    @abstractmethod
    def list_patient_records(self) -> Iterator[StoredPatient]:
        """Yield every patient with its raw encoded fields.

        Raises:
            StorageError: If the listing query fails
        """
        pass

    @abstractmethod
    def get_patient_record(self, patient_id: int) -> Result[StoredPatient]:
        """Fetch a single patient. Fails with PatientNotFoundError when absent."""
        pass

    @abstractmethod
    def create_patient_record(
        self,
        demographics: Mapping[str, Any],
        encoded_fields: Mapping[ClinicalSubRecordKind, Optional[str]]
    ) -> Result[int]:
        """Insert a patient and return its new numeric identifier.

        Parameters:
            demographics: Column values for name, age, sex, contact, etc.
            encoded_fields: EncodedField per kind (None stores NULL)
        """
        pass

    @abstractmethod
    def update_encoded_field(
        self,
        patient_id: int,
        kind: ClinicalSubRecordKind,
        value: Optional[str]
    ) -> Result[int]:
        """Atomically replace one EncodedField of one patient.

        Returns:
            Result[int]: The patient identifier, or PatientNotFoundError
        """
        pass

    @abstractmethod
    def count_patient_records(self) -> Result[int]:
        """Return the number of stored patients."""
        pass

    @abstractmethod
    def log_audit_event(
        self,
        event_type: str,
        record_id: Optional[str],
        details: Optional[dict] = None
    ) -> Result[str]:
        """Append an event to the audit trail.

        Parameters:
            event_type: Type of event (e.g., 'INTEGRITY_REPAIR', 'WRITE_REJECTED')
            record_id: Identifier of the affected patient (if applicable)
            details: Additional event metadata (no raw clinical payloads)
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connections and release resources."""
        pass

    def __enter__(self) -> 'PatientStoragePort':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
