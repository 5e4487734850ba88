"""Unit tests for moderation priority arithmetic."""

import pytest

from expertdesk.services.moderation_queue import (
    REASON_SEVERITY,
    REPORTER_WEIGHT,
    SUPPRESSION_THRESHOLD,
    compute_priority,
)


class TestComputePriority:
    def test_single_baseline_reporter(self):
        # 2 * 0.8 * (1 + 1/3)
        assert compute_priority("spam", [3], 3) == pytest.approx(2.1333)

    def test_corroboration_adds_weight(self):
        one = compute_priority("spam", [3], 3)
        two = compute_priority("spam", [3, 3], 3)
        assert two == pytest.approx(2 * one, abs=1e-3)

    def test_low_trust_owner_surfaces_first(self):
        assert compute_priority("harassment", [3], 1) > compute_priority("harassment", [3], 5)

    def test_low_trust_reporter_is_down_weighted_not_dropped(self):
        low = compute_priority("harassment", [1], 5)
        assert low == pytest.approx(4 * 0.4 * 1.2)
        assert 0 < low < compute_priority("harassment", [4], 5)

    def test_severity_dominates(self):
        assert compute_priority("hate_speech", [2], 3) > compute_priority("profanity", [5], 3)


class TestTables:
    def test_weights_cover_every_trust_level(self):
        assert set(REPORTER_WEIGHT) == {1, 2, 3, 4, 5}
        assert set(SUPPRESSION_THRESHOLD) == {1, 2, 3, 4, 5}

    def test_suppression_threshold_rises_with_trust(self):
        thresholds = [SUPPRESSION_THRESHOLD[level] for level in range(1, 6)]
        assert thresholds == sorted(thresholds)

    def test_other_is_lowest_severity(self):
        assert REASON_SEVERITY["other"] == min(REASON_SEVERITY.values())
