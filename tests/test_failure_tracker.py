"""Tests for the consecutive-failure tracker."""

from __future__ import annotations

from relay.failure_tracker import FailureTracker


class TestFailureTracker:
    def test_initial_state(self):
        tracker = FailureTracker()
        assert tracker.consecutive_failures == 0
        assert tracker.tripped is False

    def test_trips_exactly_at_threshold(self):
        tracker = FailureTracker(threshold=3)
        assert tracker.record_failure() is False
        assert tracker.record_failure() is False
        assert tracker.record_failure() is True
        assert tracker.tripped is True

    def test_trip_is_edge_triggered(self):
        tracker = FailureTracker(threshold=2)
        outcomes = [tracker.record_failure() for _ in range(5)]
        assert outcomes == [False, True, False, False, False]
        assert tracker.consecutive_failures == 5

    def test_success_resets_streak(self):
        tracker = FailureTracker(threshold=3)
        tracker.record_failure()
        tracker.record_failure()
        tracker.record_success()
        assert tracker.consecutive_failures == 0
        assert tracker.record_failure() is False
        assert tracker.record_failure() is False
        assert tracker.tripped is False

    def test_success_does_not_clear_trip(self):
        tracker = FailureTracker(threshold=1)
        tracker.record_failure()
        tracker.record_success()
        assert tracker.tripped is True
        assert tracker.record_failure() is False

    def test_reset_rearms(self):
        tracker = FailureTracker(threshold=1)
        tracker.record_failure()
        tracker.reset()
        assert tracker.tripped is False
        assert tracker.last_failure == 0.0
        assert tracker.record_failure() is True
