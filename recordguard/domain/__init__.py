"""Domain layer for Record-Guard.

The integrity core: clinical sub-record schemas, the Schema Validator, the
Safe Codec, the Integrity Auditor and the Request-Boundary Guard. Nothing in
this package performs I/O except through PatientStoragePort.
"""

from .auditor import IntegrityAuditor, IntegrityReport
from .clinical_records import (
    ClinicalSubRecord,
    FoodAndHabit,
    MedicalHistory,
    MenstrualHistory,
    PhysicalGenerals,
)
from .codec import SafeCodec
from .guard import RequestBoundaryGuard
from .kinds import ClinicalSubRecordKind, Sex
from .validator import SchemaValidator

__all__ = [
    "ClinicalSubRecord",
    "ClinicalSubRecordKind",
    "FoodAndHabit",
    "IntegrityAuditor",
    "IntegrityReport",
    "MedicalHistory",
    "MenstrualHistory",
    "PhysicalGenerals",
    "RequestBoundaryGuard",
    "SafeCodec",
    "SchemaValidator",
    "Sex",
]
