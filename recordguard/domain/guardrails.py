"""Domain Guardrails - Integrity Event Counters.

This module counts data-quality events (parse failures, stored-field
corruption, rejected writes, repairs) per clinical kind. The counters are the
system's signal of data-quality drift: a rising corruption count means some
writer is producing bad payloads again.

Architecture:
    - Pure domain logic with no infrastructure dependencies
    - Thread-safe: request handlers and audit passes share one instance
    - Process-local; each process reports its own counts since start/reset
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from threading import Lock
from typing import Optional

from recordguard.domain.kinds import ALL_KINDS, ClinicalSubRecordKind

logger = logging.getLogger(__name__)


class IntegrityEvent(str, Enum):
    """Observable integrity events."""

    PARSE_FAILURE = "parse_failures"
    SCHEMA_MISMATCH = "schema_mismatches"
    OVERSIZED = "oversized_fields"
    CORRUPTION = "corruptions"
    DECODE_ANOMALY = "decode_anomalies"
    ENCODING_VIOLATION = "encoding_violations"
    REJECTED_WRITE = "rejected_writes"
    REPAIR = "repairs"


class IntegrityMetrics:
    """Thread-safe counters of integrity events by kind.

    Example Usage:
        ```python
        metrics = IntegrityMetrics()
        metrics.record(IntegrityEvent.CORRUPTION, ClinicalSubRecordKind.FOOD_AND_HABIT)
        metrics.snapshot()["corruptions"]["foodAndHabit"]   # 1
        ```
    """

    def __init__(self):
        self._lock = Lock()
        self._counts: dict[IntegrityEvent, dict[ClinicalSubRecordKind, int]] = {}
        self._since = datetime.now(timezone.utc)
        self._reset_counts()

    def _reset_counts(self) -> None:
        self._counts = {event: {kind: 0 for kind in ALL_KINDS} for event in IntegrityEvent}

    def record(self, event: IntegrityEvent, kind: ClinicalSubRecordKind, count: int = 1) -> None:
        """Add `count` occurrences of `event` for `kind`."""
        with self._lock:
            self._counts[event][kind] += count

    def count(self, event: IntegrityEvent, kind: Optional[ClinicalSubRecordKind] = None) -> int:
        """Return the count for one kind, or the total across kinds."""
        with self._lock:
            if kind is not None:
                return self._counts[event][kind]
            return sum(self._counts[event].values())

    def snapshot(self) -> dict:
        """Return a JSON-friendly copy of all counters.

        Returns:
            dict: {"since": iso timestamp, "totals": {event: n},
                   <event>: {wire_key: n}} for every event
        """
        with self._lock:
            data: dict = {"since": self._since.isoformat()}
            totals = {}
            for event, by_kind in self._counts.items():
                data[event.value] = {kind.wire_key: n for kind, n in by_kind.items()}
                totals[event.value] = sum(by_kind.values())
            data["totals"] = totals
            return data

    def reset(self) -> None:
        """Clear all counters and restart the observation window."""
        with self._lock:
            self._reset_counts()
            self._since = datetime.now(timezone.utc)
            logger.info("Integrity metrics reset")


_default_metrics = IntegrityMetrics()


def get_integrity_metrics() -> IntegrityMetrics:
    """Return the process-wide metrics instance."""
    return _default_metrics
