"""Tests for integrity event counters."""

import threading

from recordguard.domain.guardrails import IntegrityEvent, IntegrityMetrics, get_integrity_metrics
from recordguard.domain.kinds import ClinicalSubRecordKind

FOOD = ClinicalSubRecordKind.FOOD_AND_HABIT
MEDICAL = ClinicalSubRecordKind.MEDICAL_HISTORY


class TestIntegrityMetrics:
    """Test counting, snapshots and reset."""

    def test_counts_per_kind_and_total(self):
        metrics = IntegrityMetrics()
        metrics.record(IntegrityEvent.CORRUPTION, FOOD)
        metrics.record(IntegrityEvent.CORRUPTION, FOOD)
        metrics.record(IntegrityEvent.CORRUPTION, MEDICAL, count=3)

        assert metrics.count(IntegrityEvent.CORRUPTION, FOOD) == 2
        assert metrics.count(IntegrityEvent.CORRUPTION) == 5
        assert metrics.count(IntegrityEvent.REPAIR) == 0

    def test_snapshot_shape(self):
        metrics = IntegrityMetrics()
        metrics.record(IntegrityEvent.REJECTED_WRITE, FOOD)

        snapshot = metrics.snapshot()

        assert "since" in snapshot
        assert snapshot["rejected_writes"]["foodAndHabit"] == 1
        assert snapshot["rejected_writes"]["medicalHistory"] == 0
        assert snapshot["totals"]["rejected_writes"] == 1
        assert set(snapshot["totals"]) == {event.value for event in IntegrityEvent}

    def test_reset(self):
        metrics = IntegrityMetrics()
        metrics.record(IntegrityEvent.PARSE_FAILURE, FOOD)
        since = metrics.snapshot()["since"]

        metrics.reset()

        assert metrics.count(IntegrityEvent.PARSE_FAILURE) == 0
        assert metrics.snapshot()["since"] >= since

    def test_thread_safe_counting(self):
        metrics = IntegrityMetrics()

        def worker():
            for _ in range(1000):
                metrics.record(IntegrityEvent.REPAIR, FOOD)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert metrics.count(IntegrityEvent.REPAIR, FOOD) == 8000

    def test_default_instance_is_shared(self):
        assert get_integrity_metrics() is get_integrity_metrics()
