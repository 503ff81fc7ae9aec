"""Tests for the losing-streak tracker and its confidence cap."""

import pytest

from scout.risk.streak import StreakTracker


class TestStreakTracker:
    def test_no_cap_below_threshold(self):
        tracker = StreakTracker()
        tracker.record(False)
        assert tracker.consecutive_losses == 1
        assert tracker.confidence_cap == 100
        assert tracker.apply_cap(95) == 95

    def test_cap_steps_down_per_loss(self):
        tracker = StreakTracker()
        for _ in range(3):
            tracker.record(False)
        # 100 - 10 * 3
        assert tracker.confidence_cap == 70
        assert tracker.apply_cap(95) == 70
        assert tracker.apply_cap(60) == 60

    def test_cap_floor(self):
        tracker = StreakTracker(consecutive_losses=9)
        assert tracker.confidence_cap == 50

    def test_win_resets(self):
        tracker = StreakTracker(consecutive_losses=4)
        tracker.record(True)
        assert tracker.consecutive_losses == 0
        assert tracker.confidence_cap == 100

    def test_shadow_recovery_only_when_elevated(self):
        tracker = StreakTracker(consecutive_losses=1)
        assert tracker.shadow_recovery() is False
        assert tracker.consecutive_losses == 1

        tracker = StreakTracker(consecutive_losses=3)
        assert tracker.shadow_recovery() is True
        assert tracker.consecutive_losses == 2

    def test_reset(self):
        tracker = StreakTracker(consecutive_losses=5)
        tracker.reset()
        assert tracker.consecutive_losses == 0

    def test_rejects_negative_start(self):
        with pytest.raises(ValueError, match="non-negative"):
            StreakTracker(consecutive_losses=-1)
