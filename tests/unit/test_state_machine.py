"""
Unit Tests for the Learning Session State Machine

Tests the transition table, exam branching and state-name helpers.
"""

import pytest
import sys
import os

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "adaptive_sat_tutor", "src"))

from adaptive_sat_tutor.state_machine import (
    SESSION_STATES,
    TRANSITIONS,
    LearningState,
    can_transition,
    exam_states,
    get_next_state,
    get_state_label,
    is_terminal,
    lesson_states,
)


class TestTransitions:
    """Test suite for can_transition."""

    def test_eighteen_states_in_loop_order(self):
        assert len(SESSION_STATES) == 18
        assert SESSION_STATES[0] == "pre_exam_pending"
        assert SESSION_STATES[-2:] == ["session_passed", "session_failed"]

    def test_table_covers_every_state(self):
        assert set(TRANSITIONS) == set(SESSION_STATES)

    def test_exactly_the_table_edges_are_allowed(self):
        for source in SESSION_STATES:
            for target in SESSION_STATES:
                assert can_transition(source, target) == (target in TRANSITIONS[source]), (source, target)

    def test_cannot_skip_states(self):
        assert not can_transition("pre_exam_pending", "pre_exam_completed")
        assert not can_transition("pre_exam_completed", "lesson_active")
        assert not can_transition("lesson_completed", "post_exam_active")

    def test_terminal_states_have_no_exits(self):
        for terminal in ("session_passed", "session_failed"):
            assert is_terminal(terminal)
            for target in SESSION_STATES:
                assert not can_transition(terminal, target)

    def test_unknown_states_rejected(self):
        assert not can_transition("nonexistent", "pre_exam_active")
        assert not can_transition("pre_exam_pending", "nonexistent")

    def test_accepts_enum_members(self):
        assert can_transition(LearningState.PRE_EXAM_PENDING, LearningState.PRE_EXAM_ACTIVE)


class TestGetNextState:
    """Test suite for post and remediation exam branching."""

    @pytest.mark.parametrize("score", [80, 81, 95, 100])
    def test_post_exam_pass(self, score):
        assert get_next_state("post_exam_completed", score) == "session_passed"

    @pytest.mark.parametrize("score", [None, 0, 60, 79])
    def test_post_exam_fail_enters_remediation(self, score):
        assert get_next_state("post_exam_completed", score) == "remediation_active"

    def test_remediation_pass_wins_over_loop_limit(self):
        assert get_next_state("remediation_exam_completed", 80, 3) == "session_passed"

    @pytest.mark.parametrize("loops", [3, 4, 10])
    def test_remediation_fail_at_loop_limit(self, loops):
        assert get_next_state("remediation_exam_completed", 50, loops) == "session_failed"

    @pytest.mark.parametrize("loops", [None, 0, 1, 2])
    def test_remediation_fail_below_limit_loops_again(self, loops):
        assert get_next_state("remediation_exam_completed", 50, loops) == "remediation_active"

    def test_non_branching_state_returns_none(self):
        assert get_next_state("lesson_active", 100) is None


class TestStateHelpers:
    """Test suite for labels and per-stage state names."""

    def test_exam_states(self):
        assert exam_states("remediation") == {
            "pending": "remediation_exam_pending",
            "active": "remediation_exam_active",
            "completed": "remediation_exam_completed",
        }

    def test_lesson_states(self):
        assert lesson_states("initial")["active"] == "lesson_active"
        assert lesson_states("remediation")["completed"] == "remediation_lesson_completed"

    def test_every_state_has_a_label(self):
        for state in SESSION_STATES:
            assert get_state_label(state) != state
        assert get_state_label("session_failed") == "Needs More Practice"
