"""Patient registration model.

Validates the demographic part of a registration request. The four clinical
sub-records are accepted as loosely-typed values and are deliberately not
validated here: they go through the Request-Boundary Guard, which applies the
write policy and produces the EncodedFields.

Security Impact:
    - Required demographics are trimmed and must be non-empty
    - Mobile numbers are restricted to digits and phone punctuation
    - Unknown request keys are ignored, never persisted
"""

import re
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from recordguard.domain.kinds import ALL_KINDS, Sex

MOBILE_NUMBER_PATTERN = re.compile(r"^[0-9\-+()\s]+$")


class PatientRegistration(BaseModel):
    """A new patient as submitted by the clinic front desk.

    Parameters:
        name: Patient name (required)
        guardian_name: Guardian or relative name
        address: Postal address (required)
        age: Age in years, 1 to 150
        sex: Male, Female or Other
        occupation: Occupation
        mobile_number: Contact number (digits, spaces, + - ( ) only)
        chief_complaints: Presenting complaints (required)
        medical_history, physical_generals, menstrual_history, food_and_habit:
            Clinical sub-records as objects, JSON strings, or omitted
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    name: str = Field(..., max_length=255, description="Patient name")
    guardian_name: Optional[str] = Field(None, max_length=255)
    address: str = Field(..., description="Postal address")
    age: int = Field(..., ge=1, le=150, description="Age in years")
    sex: Sex
    occupation: Optional[str] = Field(None, max_length=255)
    mobile_number: str = Field(..., max_length=32)
    chief_complaints: str = Field(..., description="Presenting complaints")

    medical_history: Any = None
    physical_generals: Any = None
    menstrual_history: Any = None
    food_and_habit: Any = None

    @field_validator("name", "address", "chief_complaints", "mobile_number")
    @classmethod
    def require_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be empty")
        return v

    @field_validator("mobile_number")
    @classmethod
    def validate_mobile_number(cls, v: str) -> str:
        if not MOBILE_NUMBER_PATTERN.match(v):
            raise ValueError("Mobile number contains invalid characters")
        return v

    @field_validator("guardian_name", "occupation")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None

    def demographics(self) -> dict[str, Any]:
        """Return the demographic column values for storage."""
        return {
            "name": self.name,
            "guardian_name": self.guardian_name,
            "address": self.address,
            "age": self.age,
            "sex": self.sex.value,
            "occupation": self.occupation,
            "mobile_number": self.mobile_number,
            "chief_complaints": self.chief_complaints,
        }

    def clinical_payload(self) -> dict[str, Any]:
        """Return the raw clinical sub-records keyed by wire key."""
        return {kind.wire_key: getattr(self, kind.column_name) for kind in ALL_KINDS}
