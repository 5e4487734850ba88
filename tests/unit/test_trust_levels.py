"""Unit tests for trust-level derivation and the reputation soft cap."""

import pytest

from expertdesk.services.reputation_ledger import (
    BASELINE_SCORE,
    REASON_DELTAS,
    LedgerEntry,
    compute_trust_level,
    effective_delta,
)


class TestComputeTrustLevel:
    @pytest.mark.parametrize(
        "score,level",
        [
            (-250, 1),
            (0, 1),
            (39, 1),
            (40, 2),
            (69, 2),
            (70, 3),
            (149, 3),
            (150, 4),
            (299, 4),
            (300, 5),
            (5000, 5),
        ],
    )
    def test_thresholds(self, score, level):
        assert compute_trust_level(score) == level

    def test_baseline_is_level_three(self):
        assert compute_trust_level(BASELINE_SCORE) == 3

    def test_monotonic(self):
        levels = [compute_trust_level(score) for score in range(-100, 1200)]
        assert levels == sorted(levels)


class TestEffectiveDelta:
    def test_gain_below_cap_is_unchanged(self):
        assert effective_delta(999, 5) == 5

    def test_gain_at_cap_is_quartered(self):
        assert effective_delta(1000, 5) == 1

    def test_small_gain_at_cap_rounds_down_to_zero(self):
        assert effective_delta(1400, REASON_DELTAS["question_answered"]) == 0

    def test_losses_are_never_capped(self):
        assert effective_delta(1500, -15) == -15


class TestLedgerEntry:
    def test_idempotency_key_joins_source_and_reason(self):
        entry = LedgerEntry(user_id=7, reason="content_removed", source_event_id="report:3")
        assert entry.idempotency_key == "report:3:content_removed"

    def test_payload_restores_entry(self):
        entry = LedgerEntry(
            user_id=7,
            reason="helpful_flag_confirmed",
            source_event_id="report:3:reporter:9",
            content_type="post",
            content_id=500,
            moderator_id=90,
        )
        assert LedgerEntry.from_payload(entry.to_payload()) == entry

    def test_reason_table_has_no_unbounded_gain(self):
        assert max(REASON_DELTAS.values()) <= 5
