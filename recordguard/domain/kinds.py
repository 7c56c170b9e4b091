"""Clinical sub-record kinds and patient sex.

Each patient row owns four serialized clinical sub-records, one column per
kind. This module is the single source of truth for the kind names, their
wire keys (the camelCase names used by the clinic UI and stored payloads)
and their storage column names.
"""

from enum import Enum
from typing import Any, Optional


class ClinicalSubRecordKind(str, Enum):
    """The four structured clinical sub-records stored per patient."""

    MEDICAL_HISTORY = "medicalHistory"
    PHYSICAL_GENERALS = "physicalGenerals"
    MENSTRUAL_HISTORY = "menstrualHistory"
    FOOD_AND_HABIT = "foodAndHabit"

    @property
    def wire_key(self) -> str:
        """Key used for this kind in request and response payloads."""
        return self.value

    @property
    def column_name(self) -> str:
        """Storage column holding the encoded field for this kind."""
        return _COLUMN_NAMES[self]

    @property
    def is_sex_gated(self) -> bool:
        return self is ClinicalSubRecordKind.MENSTRUAL_HISTORY

    @classmethod
    def from_wire_key(cls, key: str) -> "ClinicalSubRecordKind":
        """Resolve a kind from its wire key or its column name.

        Raises:
            ValueError: If the key names no known kind
        """
        for kind in cls:
            if key in (kind.value, kind.column_name):
                return kind
        raise ValueError(f"Unknown clinical sub-record kind: {key}")


_COLUMN_NAMES = {
    ClinicalSubRecordKind.MEDICAL_HISTORY: "medical_history",
    ClinicalSubRecordKind.PHYSICAL_GENERALS: "physical_generals",
    ClinicalSubRecordKind.MENSTRUAL_HISTORY: "menstrual_history",
    ClinicalSubRecordKind.FOOD_AND_HABIT: "food_and_habit",
}

ALL_KINDS: tuple[ClinicalSubRecordKind, ...] = tuple(ClinicalSubRecordKind)


class Sex(str, Enum):
    """Patient sex as captured at registration."""

    MALE = "Male"
    FEMALE = "Female"
    OTHER = "Other"


def is_female(sex: Any) -> bool:
    """Return True only for an exact Female sex value.

    Unknown, missing or differently-cased values are treated as not Female,
    so sex-gated kinds stay absent unless the patient is positively Female.
    """
    if isinstance(sex, Sex):
        return sex is Sex.FEMALE
    return sex == Sex.FEMALE.value


def parse_sex(value: Any) -> Optional[Sex]:
    """Parse a stored sex value, returning None when it is not recognized."""
    if isinstance(value, Sex):
        return value
    try:
        return Sex(value)
    except ValueError:
        return None
