"""
Learning Session State Machine

Explicit states and transitions for the adaptive learning loop:
pre-exam → lesson → post-exam → (pass | remediation loop).

The transition table is a strict adjacency list. Branching after an exam
is decided by get_next_state(); everything else follows the table.
"""

from enum import Enum
from typing import Dict, List, Optional, Union

from adaptive_sat_tutor.scoring import MAX_REMEDIATION_LOOPS, PASS_THRESHOLD


class LearningState(Enum):
    """Learning session states, in loop order."""
    PRE_EXAM_PENDING = "pre_exam_pending"
    PRE_EXAM_ACTIVE = "pre_exam_active"
    PRE_EXAM_COMPLETED = "pre_exam_completed"
    LESSON_PENDING = "lesson_pending"
    LESSON_ACTIVE = "lesson_active"
    LESSON_COMPLETED = "lesson_completed"
    POST_EXAM_PENDING = "post_exam_pending"
    POST_EXAM_ACTIVE = "post_exam_active"
    POST_EXAM_COMPLETED = "post_exam_completed"
    REMEDIATION_ACTIVE = "remediation_active"
    REMEDIATION_LESSON_PENDING = "remediation_lesson_pending"
    REMEDIATION_LESSON_ACTIVE = "remediation_lesson_active"
    REMEDIATION_LESSON_COMPLETED = "remediation_lesson_completed"
    REMEDIATION_EXAM_PENDING = "remediation_exam_pending"
    REMEDIATION_EXAM_ACTIVE = "remediation_exam_active"
    REMEDIATION_EXAM_COMPLETED = "remediation_exam_completed"
    SESSION_PASSED = "session_passed"
    SESSION_FAILED = "session_failed"


SESSION_STATES: List[str] = [s.value for s in LearningState]

TERMINAL_STATES = frozenset({
    LearningState.SESSION_PASSED.value,
    LearningState.SESSION_FAILED.value,
})

# Valid state transitions
TRANSITIONS: Dict[str, List[str]] = {
    "pre_exam_pending": ["pre_exam_active"],
    "pre_exam_active": ["pre_exam_completed"],
    "pre_exam_completed": ["lesson_pending"],
    "lesson_pending": ["lesson_active"],
    "lesson_active": ["lesson_completed"],
    "lesson_completed": ["post_exam_pending"],
    "post_exam_pending": ["post_exam_active"],
    "post_exam_active": ["post_exam_completed"],
    "post_exam_completed": ["session_passed", "remediation_active"],
    "remediation_active": ["remediation_lesson_pending"],
    "remediation_lesson_pending": ["remediation_lesson_active"],
    "remediation_lesson_active": ["remediation_lesson_completed"],
    "remediation_lesson_completed": ["remediation_exam_pending"],
    "remediation_exam_pending": ["remediation_exam_active"],
    "remediation_exam_active": ["remediation_exam_completed"],
    "remediation_exam_completed": ["session_passed", "remediation_active", "session_failed"],
    "session_passed": [],
    "session_failed": [],
}

STATE_LABELS: Dict[str, str] = {
    "pre_exam_pending": "Ready for Pre-Exam",
    "pre_exam_active": "Taking Pre-Exam",
    "pre_exam_completed": "Pre-Exam Complete",
    "lesson_pending": "Ready for Lesson",
    "lesson_active": "Viewing Lesson",
    "lesson_completed": "Lesson Complete",
    "post_exam_pending": "Ready for Post-Exam",
    "post_exam_active": "Taking Post-Exam",
    "post_exam_completed": "Post-Exam Complete",
    "remediation_active": "Remediation in Progress",
    "remediation_lesson_pending": "Ready for Remediation Lesson",
    "remediation_lesson_active": "Viewing Remediation Lesson",
    "remediation_lesson_completed": "Remediation Lesson Complete",
    "remediation_exam_pending": "Ready for Remediation Exam",
    "remediation_exam_active": "Taking Remediation Exam",
    "remediation_exam_completed": "Remediation Exam Complete",
    "session_passed": "Topic Passed",
    "session_failed": "Needs More Practice",
}

StateLike = Union[str, LearningState]


def _value(state: StateLike) -> str:
    return state.value if isinstance(state, LearningState) else state


def can_transition(current_state: StateLike, next_state: StateLike) -> bool:
    """True only if next_state is in the allow-list for current_state."""
    allowed = TRANSITIONS.get(_value(current_state))
    return _value(next_state) in allowed if allowed else False


def is_terminal(state: StateLike) -> bool:
    return _value(state) in TERMINAL_STATES


def get_next_state(
    current_state: StateLike,
    exam_score: Optional[int] = None,
    remediation_loop_count: Optional[int] = None,
) -> Optional[str]:
    """
    Branching decision after a completed post or remediation exam.

    Args:
        current_state: The completed exam state
        exam_score: Percentage score; None is treated as failing
        remediation_loop_count: Remediation loops entered so far (default 0)

    Returns:
        The branch target, or None for states with no branch
    """
    state = _value(current_state)
    loops = remediation_loop_count or 0
    passed = exam_score is not None and exam_score >= PASS_THRESHOLD

    if state == "post_exam_completed":
        return "session_passed" if passed else "remediation_active"

    if state == "remediation_exam_completed":
        if passed:
            return "session_passed"
        if loops >= MAX_REMEDIATION_LOOPS:
            return "session_failed"
        return "remediation_active"

    return None


def get_state_label(state: StateLike) -> str:
    value = _value(state)
    return STATE_LABELS.get(value, value)


def exam_states(exam_type: str) -> Dict[str, str]:
    """Pending/active/completed state names for an exam type."""
    return {
        "pending": f"{exam_type}_exam_pending",
        "active": f"{exam_type}_exam_active",
        "completed": f"{exam_type}_exam_completed",
    }


def lesson_states(lesson_type: str) -> Dict[str, str]:
    """Pending/active/completed state names for a lesson type (initial/remediation)."""
    prefix = "lesson" if lesson_type == "initial" else "remediation_lesson"
    return {
        "pending": f"{prefix}_pending",
        "active": f"{prefix}_active",
        "completed": f"{prefix}_completed",
    }
