"""Unit tests for question state machine transitions."""

from expertdesk.services.assignment_engine import VALID_TRANSITIONS, can_transition


class TestQuestionCanTransition:
    def test_new_to_routed(self):
        assert can_transition("new", "routed") is True

    def test_routed_to_answered(self):
        assert can_transition("routed", "answered") is True

    def test_answered_to_closed(self):
        assert can_transition("answered", "closed") is True

    def test_requeue_step(self):
        """routed -> new is the internal step used before re-offering."""
        assert can_transition("routed", "new") is True

    def test_any_open_state_can_close(self):
        for state in ["new", "routed", "answered"]:
            assert can_transition(state, "closed") is True

    def test_closed_is_terminal(self):
        for target in ["new", "routed", "answered"]:
            assert can_transition("closed", target) is False

    def test_no_skipping_routing(self):
        assert can_transition("new", "answered") is False

    def test_answered_never_reopens(self):
        assert can_transition("answered", "routed") is False
        assert can_transition("answered", "new") is False

    def test_unknown_state(self):
        assert can_transition("archived", "closed") is False

    def test_full_lifecycle(self):
        states = ["new", "routed", "answered", "closed"]
        for i in range(len(states) - 1):
            assert can_transition(states[i], states[i + 1]) is True

    def test_every_state_listed(self):
        assert set(VALID_TRANSITIONS) == {"new", "routed", "answered", "closed"}
