"""Clinical Sub-Record Schemas.

This module defines the canonical shape of the four structured clinical
sub-records (medical history, physical generals, menstrual history, food and
habit): their fields, value types and defaults. Every record that reaches the
Safe Codec is an instance of one of these models, so a normalized record
always satisfies its kind's schema exactly.

Security Impact:
    - Unknown keys in client input are dropped, never persisted
    - Wrong-typed values are replaced field-by-field with schema defaults
    - Booleans are canonicalized so stored payloads only ever hold true/false

Architecture:
    - Pure domain models (Pydantic V2) with zero infrastructure dependencies
    - Python attributes are snake_case; wire and storage keys are camelCase
    - Coercion runs in a model_validator(mode="before") and reports every
      substitution through the validation context instead of raising
"""

from dataclasses import dataclass
from typing import Any, ClassVar, Literal, Mapping, Optional, get_args, get_origin

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, model_validator
from pydantic.alias_generators import to_camel

from recordguard.domain.kinds import ClinicalSubRecordKind, is_female

YesNo = Literal["No", "Yes"]

_TRUE_TOKENS = frozenset({"true", "yes", "on", "1"})
_FALSE_TOKENS = frozenset({"false", "no", "off", "0"})

# Sentinel for "this field could not be coerced, use its default"
_USE_DEFAULT = object()


@dataclass(frozen=True)
class FieldIssue:
    """A single field that was replaced by its default during coercion.

    Attributes:
        path: Dotted wire path of the field (e.g. "pastHistory.allergy")
        expected: Expected value type ("boolean", "text", "enum", "object")
        received: Python type name of the rejected value
    """

    path: str
    expected: str
    received: str

    @property
    def message(self) -> str:
        detail = f"expected {self.expected}, got {self.received}; default used"
        return f"{self.path}: {detail}" if self.path else detail


class _ClinicalModel(BaseModel):
    """Shared configuration for clinical models and their nested groups."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )


# ============================================================================
# Medical History
# ============================================================================

class PastHistory(_ClinicalModel):
    """Past medical history checklist plus free-text notes."""

    allergy: bool = False
    common_notes: str = ""
    anemia: bool = False
    arthritis: bool = False
    asthma: bool = False
    cancer: bool = False
    diabetes: bool = False
    heart_disease: bool = False
    hypertension: bool = False
    thyroid: bool = False
    tuberculosis: bool = False


class FamilyHistory(_ClinicalModel):
    """Family history checklist."""

    diabetes: bool = False
    hypertension: bool = False
    thyroid: bool = False
    tuberculosis: bool = False
    cancer: bool = False


class ClinicalSubRecord(_ClinicalModel):
    """Base class for the four top-level clinical sub-records.

    Subclasses declare `kind`. Validation goes through coerce_fields, which
    makes any mapping acceptable input: the result always matches the schema.
    Pass a context dict to model_validate to collect the substitutions:

        ```python
        context = {"issues": [], "strict_booleans": False}
        record = MedicalHistory.model_validate(raw, context=context)
        for issue in context["issues"]:
            ...
        ```
    """

    kind: ClassVar[ClinicalSubRecordKind]

    @model_validator(mode="before")
    @classmethod
    def coerce_fields(cls, data: Any, info: ValidationInfo) -> Any:
        if isinstance(data, BaseModel):
            return data
        context = info.context if isinstance(info.context, dict) else {}
        issues = context.setdefault("issues", [])
        strict_booleans = bool(context.get("strict_booleans", False))
        if not isinstance(data, Mapping):
            issues.append(FieldIssue("", "object", type(data).__name__))
            return {}
        return coerce_mapping(cls, data, "", strict_booleans, issues)

    def to_payload(self) -> dict[str, Any]:
        """Return the wire/storage representation (camelCase keys)."""
        return self.model_dump(by_alias=True, mode="json")


class MedicalHistory(ClinicalSubRecord):
    """Past and family medical history."""

    kind: ClassVar[ClinicalSubRecordKind] = ClinicalSubRecordKind.MEDICAL_HISTORY

    past_history: PastHistory = Field(default_factory=PastHistory)
    family_history: FamilyHistory = Field(default_factory=FamilyHistory)


class PhysicalGenerals(ClinicalSubRecord):
    """Physical generals (appetite, sleep, thirst, ...), all free text."""

    kind: ClassVar[ClinicalSubRecordKind] = ClinicalSubRecordKind.PHYSICAL_GENERALS

    appetite: str = ""
    bowel: str = ""
    urine: str = ""
    sweating: str = ""
    sleep: str = ""
    thirst: str = ""
    addictions: str = ""


class MenstrualHistory(ClinicalSubRecord):
    """Menstrual history. Only meaningful for female patients."""

    kind: ClassVar[ClinicalSubRecordKind] = ClinicalSubRecordKind.MENSTRUAL_HISTORY

    menses: str = ""
    menopause: YesNo = "No"
    leucorrhoea: str = ""
    gonorrhea: YesNo = "No"
    other_discharges: str = ""


class FoodAndHabit(ClinicalSubRecord):
    """Food habits and addictions."""

    kind: ClassVar[ClinicalSubRecordKind] = ClinicalSubRecordKind.FOOD_AND_HABIT

    food_habit: str = ""
    addictions: str = ""


KIND_MODELS: dict[ClinicalSubRecordKind, type[ClinicalSubRecord]] = {
    ClinicalSubRecordKind.MEDICAL_HISTORY: MedicalHistory,
    ClinicalSubRecordKind.PHYSICAL_GENERALS: PhysicalGenerals,
    ClinicalSubRecordKind.MENSTRUAL_HISTORY: MenstrualHistory,
    ClinicalSubRecordKind.FOOD_AND_HABIT: FoodAndHabit,
}


def model_for(kind: ClinicalSubRecordKind) -> type[ClinicalSubRecord]:
    return KIND_MODELS[kind]


def default_record(kind: ClinicalSubRecordKind, sex: Any = None) -> Optional[ClinicalSubRecord]:
    """Return the registration default for a kind.

    MenstrualHistory defaults to the absent marker (None) unless the patient
    is Female; the other kinds ignore sex.
    """
    if kind.is_sex_gated and not is_female(sex):
        return None
    return model_for(kind)()


def absent_value(kind: ClinicalSubRecordKind) -> Optional[ClinicalSubRecord]:
    """Return what an empty or NULL EncodedField means for a kind.

    Decoding has no patient context, so the sex-gated kind reads as absent.
    """
    if kind.is_sex_gated:
        return None
    return model_for(kind)()


# ============================================================================
# Field Coercion
# ============================================================================

def coerce_mapping(
    model: type[BaseModel],
    data: Mapping[str, Any],
    prefix: str,
    strict_booleans: bool,
    issues: list[FieldIssue]
) -> dict[str, Any]:
    """Coerce a mapping onto a model's declared fields.

    Keys are looked up by wire alias first, then by attribute name. Fields
    that are missing are left out so the model default applies; fields that
    cannot be coerced are left out and recorded in `issues`. Unknown keys are
    never copied.

    Parameters:
        model: The pydantic model whose fields define the schema
        data: Raw mapping from the client or from storage
        prefix: Dotted path of `data` within the top-level record
        strict_booleans: Accept only real booleans for boolean fields
        issues: Output list receiving one FieldIssue per substitution

    Returns:
        dict: Clean values keyed by wire alias
    """
    clean: dict[str, Any] = {}
    for name, field_info in model.model_fields.items():
        alias = field_info.alias or name
        if alias in data:
            raw = data[alias]
        elif name in data:
            raw = data[name]
        else:
            continue

        path = f"{prefix}.{alias}" if prefix else alias
        annotation = field_info.annotation
        value = _coerce_value(annotation, raw, path, strict_booleans, issues)
        if value is _USE_DEFAULT:
            continue
        clean[alias] = value
    return clean


def _coerce_value(
    annotation: Any,
    raw: Any,
    path: str,
    strict_booleans: bool,
    issues: list[FieldIssue]
) -> Any:
    if isinstance(annotation, type) and issubclass(annotation, BaseModel):
        if isinstance(raw, annotation):
            return raw
        if isinstance(raw, Mapping):
            return coerce_mapping(annotation, raw, path, strict_booleans, issues)
        issues.append(FieldIssue(path, "object", type(raw).__name__))
        return _USE_DEFAULT

    if annotation is bool:
        value = coerce_boolean(raw, strict=strict_booleans)
        if value is None:
            issues.append(FieldIssue(path, "boolean", type(raw).__name__))
            return _USE_DEFAULT
        return value

    if get_origin(annotation) is Literal:
        value = coerce_choice(raw, get_args(annotation))
        if value is None:
            issues.append(FieldIssue(path, "enum", type(raw).__name__))
            return _USE_DEFAULT
        return value

    if annotation is str:
        if raw is None:
            return _USE_DEFAULT
        value = coerce_text(raw)
        if value is None:
            issues.append(FieldIssue(path, "text", type(raw).__name__))
            return _USE_DEFAULT
        return value

    raise TypeError(f"Unsupported clinical field annotation at {path}: {annotation!r}")


def coerce_boolean(raw: Any, strict: bool = False) -> Optional[bool]:
    """Coerce a raw value to a boolean, or return None when impossible.

    In strict mode only real booleans are accepted.
    """
    if isinstance(raw, bool):
        return raw
    if strict:
        return None
    if isinstance(raw, int) and raw in (0, 1):
        return bool(raw)
    if isinstance(raw, str):
        token = raw.strip().lower()
        if token in _TRUE_TOKENS:
            return True
        if token in _FALSE_TOKENS:
            return False
    return None


def coerce_text(raw: Any) -> Optional[str]:
    """Coerce a raw value to text; strings that are not valid UTF-8 (lone surrogates) are rejected."""
    if isinstance(raw, str):
        try:
            raw.encode("utf-8")
        except UnicodeEncodeError:
            return None
        return raw
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return str(raw)
    return None


def coerce_choice(raw: Any, choices: tuple[str, ...]) -> Optional[str]:
    """Match a raw value against enumerated choices, case-insensitively.

    Booleans map onto Yes/No when those are the choices.
    """
    if isinstance(raw, bool) and set(choices) == {"Yes", "No"}:
        return "Yes" if raw else "No"
    if isinstance(raw, str):
        token = raw.strip().lower()
        for choice in choices:
            if choice.lower() == token:
                return choice
    return None
