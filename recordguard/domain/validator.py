"""Schema Validator for clinical sub-records.

Normalizes arbitrary client or stored input into a record that satisfies its
kind's schema exactly. Validation never raises for malformed input: it always
produces a usable record (or the absent marker) plus zero or more
ValidationError warnings that the caller may choose to treat as fatal.

Security Impact:
    - Sex gating is enforced here, before any encoding or persistence
    - Parse failures are reported with a bounded excerpt, never the payload

Architecture:
    - Pure domain service; no I/O and no logging of payload contents
    - Branches on the RawInput variant produced by raw_input.classify
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from recordguard.domain.clinical_records import (
    ClinicalSubRecord,
    FieldIssue,
    default_record,
    model_for,
)
from recordguard.domain.diagnostics import DEFAULT_EXCERPT_RADIUS, excerpt_around
from recordguard.domain.kinds import ClinicalSubRecordKind, is_female
from recordguard.domain.ports import ValidationError, ValidationIssue
from recordguard.domain.raw_input import Missing, Structured, Text, Unsupported, classify

logger = logging.getLogger(__name__)


@dataclass
class NormalizationResult:
    """Outcome of SchemaValidator.normalize.

    Attributes:
        kind: The kind that was normalized
        record: The normalized record, or None for the absent marker
        warnings: Recoverable problems found while normalizing
    """

    kind: ClinicalSubRecordKind
    record: Optional[ClinicalSubRecord]
    warnings: list[ValidationError] = field(default_factory=list)

    @property
    def parse_failure(self) -> Optional[ValidationError]:
        for warning in self.warnings:
            if warning.issue is ValidationIssue.PARSE_FAILURE:
                return warning
        return None

    @property
    def has_parse_failure(self) -> bool:
        return self.parse_failure is not None

    @property
    def is_absent(self) -> bool:
        return self.record is None


def _reject_constant(name: str) -> Any:
    raise ValueError(f"Non-finite number {name} is not allowed")


def parse_document(text: str) -> Any:
    """Parse a JSON document, rejecting NaN and Infinity.

    Raises:
        json.JSONDecodeError: On syntax errors (carries .pos)
        ValueError: On non-finite numeric constants
        RecursionError: When nesting exceeds the interpreter recursion limit
    """
    return json.loads(text, parse_constant=_reject_constant)


class SchemaValidator:
    """Validates and normalizes clinical sub-record input.

    Example Usage:
        ```python
        validator = SchemaValidator()
        result = validator.normalize(
            ClinicalSubRecordKind.MEDICAL_HISTORY,
            '{"pastHistory": {"allergy": true}}',
            "Female",
        )
        result.record.past_history.allergy   # True
        result.warnings                      # []
        ```
    """

    def __init__(self, excerpt_radius: int = DEFAULT_EXCERPT_RADIUS):
        """Initialize the validator.

        Parameters:
            excerpt_radius: Characters of context kept on each side of a parse failure
        """
        self.excerpt_radius = excerpt_radius

    def normalize(
        self,
        kind: ClinicalSubRecordKind,
        raw_input: Any,
        patient_sex: Any
    ) -> NormalizationResult:
        """Normalize raw input for one kind.

        Parameters:
            kind: The clinical sub-record kind
            raw_input: None, a string holding JSON, a mapping, or anything else
            patient_sex: The owning patient's sex (used for MenstrualHistory gating)

        Returns:
            NormalizationResult: Always a schema-conforming record or the
            absent marker, with any warnings attached
        """
        if kind.is_sex_gated and not is_female(patient_sex):
            return NormalizationResult(kind=kind, record=None)

        raw = classify(raw_input)

        if isinstance(raw, Missing):
            return NormalizationResult(kind=kind, record=default_record(kind, patient_sex))

        if isinstance(raw, Unsupported):
            warning = ValidationError(
                f"{kind.wire_key} must be an object or a JSON string, got {raw.type_name}",
                kind=kind,
                issue=ValidationIssue.SCHEMA_MISMATCH,
            )
            return NormalizationResult(
                kind=kind,
                record=default_record(kind, patient_sex),
                warnings=[warning],
            )

        if isinstance(raw, Text):
            parsed, warning = self._parse_text(kind, raw.value)
            if warning is not None:
                return NormalizationResult(
                    kind=kind,
                    record=default_record(kind, patient_sex),
                    warnings=[warning],
                )
            raw = Structured(parsed)

        record, warnings = self.coerce(kind, raw.value, strict_booleans=False)
        return NormalizationResult(kind=kind, record=record, warnings=warnings)

    def coerce(
        self,
        kind: ClinicalSubRecordKind,
        data: Any,
        strict_booleans: bool = False
    ) -> tuple[ClinicalSubRecord, list[ValidationError]]:
        """Coerce a structured value onto the kind's schema, field by field.

        Parameters:
            kind: The clinical sub-record kind
            data: Parsed structured value (normally a mapping)
            strict_booleans: Accept only true/false for boolean fields

        Returns:
            tuple: The record and one SchemaMismatch warning per substituted field
        """
        model = model_for(kind)
        context: dict[str, Any] = {"issues": [], "strict_booleans": strict_booleans}
        try:
            record = model.model_validate(data, context=context)
        except PydanticValidationError as e:
            # coerce_fields only forwards schema-typed values, so this means
            # the schema and the coercion rules disagree.
            logger.error(f"Unexpected schema rejection for {kind.wire_key}: {e.error_count()} errors")
            context["issues"].append(FieldIssue("", "object", type(data).__name__))
            record = model()

        warnings = [self._issue_to_error(kind, issue) for issue in context["issues"]]
        return record, warnings

    def _parse_text(self, kind: ClinicalSubRecordKind, text: str) -> tuple[Any, Optional[ValidationError]]:
        try:
            parsed = parse_document(text)
        except json.JSONDecodeError as e:
            return None, ValidationError(
                f"{kind.wire_key} is not valid JSON: {e.msg} at position {e.pos}",
                kind=kind,
                issue=ValidationIssue.PARSE_FAILURE,
                offset=e.pos,
                excerpt=excerpt_around(text, e.pos, self.excerpt_radius),
            )
        except ValueError as e:
            return None, ValidationError(
                f"{kind.wire_key} is not valid JSON: {e}",
                kind=kind,
                issue=ValidationIssue.PARSE_FAILURE,
                excerpt=excerpt_around(text, None, self.excerpt_radius),
            )
        except RecursionError:
            return None, ValidationError(
                f"{kind.wire_key} is not valid JSON: nesting exceeds the parser depth limit",
                kind=kind,
                issue=ValidationIssue.PARSE_FAILURE,
                excerpt=excerpt_around(text, None, self.excerpt_radius),
            )

        if not isinstance(parsed, dict):
            return None, ValidationError(
                f"{kind.wire_key} must encode a JSON object, got {type(parsed).__name__}",
                kind=kind,
                issue=ValidationIssue.PARSE_FAILURE,
                offset=0,
                excerpt=excerpt_around(text, None, self.excerpt_radius),
            )
        return parsed, None

    @staticmethod
    def _issue_to_error(kind: ClinicalSubRecordKind, issue: FieldIssue) -> ValidationError:
        return ValidationError(
            f"{kind.wire_key}.{issue.message}" if issue.path else f"{kind.wire_key}: {issue.message}",
            kind=kind,
            issue=ValidationIssue.SCHEMA_MISMATCH,
            field=issue.path or None,
        )
