"""Tests for per-backend performance tracking."""

import pytest

from dispatch_core.serving import PerformanceTracker
from dispatch_core.serving.performance import running_average


def test_running_average():
    assert running_average(0.0, 10.0, 1) == 10.0
    assert running_average(10.0, 20.0, 2) == 15.0


class TestPerformanceTracker:

    def test_unseen_backend_defaults(self):
        tracker = PerformanceTracker()

        perf = tracker.performance_for("A")

        assert tracker.snapshot("A") is None
        assert perf.usage_count == 0
        assert perf.success_rate == 1.0
        assert perf.average_latency_ms == 0.0

    def test_first_record_sets_values(self):
        tracker = PerformanceTracker()

        perf = tracker.record("A", 120.0, succeeded=True)

        assert perf.usage_count == 1
        assert perf.average_latency_ms == 120.0
        assert perf.success_rate == 1.0
        assert perf.last_used is not None

    def test_rolling_averages(self):
        tracker = PerformanceTracker()
        tracker.record("A", 100.0, succeeded=True)
        tracker.record("A", 200.0, succeeded=False)
        perf = tracker.record("A", 300.0, succeeded=True)

        assert perf.usage_count == 3
        assert perf.average_latency_ms == pytest.approx(200.0)
        assert perf.success_rate == pytest.approx(2 / 3)

    def test_first_failure_gives_zero_success_rate(self):
        tracker = PerformanceTracker()

        perf = tracker.record("A", 50.0, succeeded=False)

        assert perf.success_rate == 0.0

    def test_snapshot_all_fills_defaults(self):
        tracker = PerformanceTracker()
        tracker.record("A", 10.0, succeeded=True)

        snapshot = tracker.snapshot_all(["A", "B"])

        assert snapshot["A"].usage_count == 1
        assert snapshot["B"].usage_count == 0

    def test_reset(self):
        tracker = PerformanceTracker()
        tracker.record("A", 10.0, succeeded=True)
        tracker.record("B", 10.0, succeeded=True)

        tracker.reset("A")
        assert tracker.snapshot("A") is None
        assert tracker.snapshot("B") is not None

        tracker.reset()
        assert tracker.get_stats() == {}
