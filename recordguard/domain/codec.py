"""Safe Codec for clinical sub-records.

Serializes normalized records to the compact JSON text stored in one column
per kind, and reads stored text back into records. Both directions detect
corruption at the boundary:

    - encode re-decodes its own output and refuses to return anything that
      does not round-trip to the input record
    - decode reports unparseable text, truncation and wrong root types as
      CorruptionError with a bounded excerpt, and auto-corrects non-boolean
      values in boolean fields (logged as anomalies)

Security Impact:
    - NaN/Infinity can never be written (allow_nan=False)
    - Oversized encodings are refused instead of being truncated by the column
    - Diagnostic excerpts are bounded; raw payloads never reach logs
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Optional

from recordguard.domain.clinical_records import ClinicalSubRecord, absent_value
from recordguard.domain.diagnostics import (
    DEFAULT_EXCERPT_RADIUS,
    CorruptionPattern,
    detect_patterns,
    excerpt_around,
)
from recordguard.domain.kinds import ClinicalSubRecordKind
from recordguard.domain.ports import (
    CorruptionError,
    EncodingInvariantViolation,
    ValidationError,
    ValidationIssue,
)
from recordguard.domain.validator import SchemaValidator, parse_document

logger = logging.getLogger(__name__)

# Capacity of a TEXT column, in bytes
DEFAULT_MAX_ENCODED_LENGTH = 65535


@dataclass
class DecodeOutcome:
    """A successful decode plus any auto-corrected field anomalies."""

    record: Optional[ClinicalSubRecord]
    anomalies: list[ValidationError] = field(default_factory=list)


class SafeCodec:
    """Encodes and decodes clinical sub-records with round-trip verification.

    Parameters:
        validator: Schema Validator used for decode-time coercion
        max_encoded_length: Maximum UTF-8 byte length of an EncodedField
        excerpt_radius: Characters of context kept around a failure offset

    Example Usage:
        ```python
        codec = SafeCodec()
        text = codec.encode(record)          # '{"pastHistory":{...},...}'
        assert codec.decode(text, record.kind) == record
        ```
    """

    def __init__(
        self,
        validator: Optional[SchemaValidator] = None,
        max_encoded_length: int = DEFAULT_MAX_ENCODED_LENGTH,
        excerpt_radius: int = DEFAULT_EXCERPT_RADIUS
    ):
        self.validator = validator or SchemaValidator(excerpt_radius=excerpt_radius)
        self.max_encoded_length = max_encoded_length
        self.excerpt_radius = excerpt_radius

    def encode(self, record: Optional[ClinicalSubRecord]) -> Optional[str]:
        """Serialize a normalized record to its durable text form.

        Parameters:
            record: A normalized record, or None for the absent marker

        Returns:
            Optional[str]: Compact JSON text, or None (stored as NULL)

        Raises:
            ValidationError: If the encoding exceeds max_encoded_length (Oversized)
            EncodingInvariantViolation: If the output does not decode back to
                the input record; nothing may be persisted in that case
        """
        if record is None:
            return None
        if not isinstance(record, ClinicalSubRecord):
            raise TypeError(f"encode expects a ClinicalSubRecord, got {type(record).__name__}")

        kind = record.kind
        try:
            text = json.dumps(
                record.to_payload(),
                separators=(",", ":"),
                ensure_ascii=False,
                allow_nan=False,
            )
            size = len(text.encode("utf-8"))
        except (TypeError, ValueError) as e:
            raise EncodingInvariantViolation(
                f"Failed to serialize {kind.wire_key}: {e}", kind=kind
            ) from e

        if size > self.max_encoded_length:
            raise ValidationError(
                f"{kind.wire_key} encodes to {size} bytes, exceeding the "
                f"{self.max_encoded_length}-byte limit",
                kind=kind,
                issue=ValidationIssue.OVERSIZED,
            )

        self._self_check(record, text)
        return text

    def decode(self, text: Optional[str], kind: ClinicalSubRecordKind) -> Optional[ClinicalSubRecord]:
        """Parse stored text back into a record.

        None and empty text are equivalent and mean "no data": the kind's
        absent value is returned.

        Raises:
            CorruptionError: If the text does not parse or is not a JSON object
        """
        return self.decode_with_anomalies(text, kind).record

    def decode_with_anomalies(self, text: Optional[str], kind: ClinicalSubRecordKind) -> DecodeOutcome:
        """Decode like decode(), also returning auto-corrected field anomalies.

        Raises:
            CorruptionError: If the text does not parse or is not a JSON object
        """
        if text is None or not text.strip():
            return DecodeOutcome(record=absent_value(kind))

        try:
            parsed = parse_document(text)
        except json.JSONDecodeError as e:
            raise CorruptionError(
                f"{kind.wire_key} is corrupted: {e.msg} at position {e.pos}",
                kind=kind,
                offset=e.pos,
                excerpt=excerpt_around(text, e.pos, self.excerpt_radius),
                patterns=[p.value for p in detect_patterns(text)],
                reason="invalid_json",
            ) from None
        except ValueError as e:
            raise CorruptionError(
                f"{kind.wire_key} is corrupted: {e}",
                kind=kind,
                excerpt=excerpt_around(text, None, self.excerpt_radius),
                patterns=[p.value for p in detect_patterns(text)],
                reason="non_finite_number",
            ) from None
        except RecursionError:
            raise CorruptionError(
                f"{kind.wire_key} is corrupted: nesting exceeds the parser depth limit",
                kind=kind,
                excerpt=excerpt_around(text, None, self.excerpt_radius),
                patterns=[CorruptionPattern.NESTING_TOO_DEEP.value],
                reason="nesting_too_deep",
            ) from None

        if not isinstance(parsed, dict):
            raise CorruptionError(
                f"{kind.wire_key} is corrupted: root is {type(parsed).__name__}, expected object",
                kind=kind,
                offset=0,
                excerpt=excerpt_around(text, None, self.excerpt_radius),
                patterns=[CorruptionPattern.NON_OBJECT_ROOT.value],
                reason="non_object_root",
            )

        record, anomalies = self.validator.coerce(kind, parsed, strict_booleans=True)
        for anomaly in anomalies:
            logger.warning(
                f"Auto-corrected stored field anomaly: {anomaly}",
                extra={"extra_fields": {
                    "event": "decode_anomaly",
                    "kind": kind.wire_key,
                    "path": anomaly.field,
                }}
            )
        return DecodeOutcome(record=record, anomalies=anomalies)

    def _self_check(self, record: ClinicalSubRecord, text: str) -> None:
        kind = record.kind
        try:
            outcome = self.decode_with_anomalies(text, kind)
        except CorruptionError as e:
            logger.critical(
                f"Encoded {kind.wire_key} failed its own decode check",
                extra={"extra_fields": {"event": "encoding_invariant_violation", "kind": kind.wire_key}}
            )
            raise EncodingInvariantViolation(
                f"Encoded {kind.wire_key} does not decode: {e}", kind=kind
            ) from e

        if outcome.anomalies or outcome.record != record:
            logger.critical(
                f"Encoded {kind.wire_key} does not round-trip to its input record",
                extra={"extra_fields": {"event": "encoding_invariant_violation", "kind": kind.wire_key}}
            )
            raise EncodingInvariantViolation(
                f"Encoded {kind.wire_key} does not round-trip to its input record", kind=kind
            )
