"""
Exam Scoring

Pure functions for grading answers and scoring an exam.
"""

from typing import Iterable, List, Optional, Sequence

PASS_THRESHOLD = 80  # percentage
MAX_REMEDIATION_LOOPS = 3
PRE_EXAM_QUESTION_COUNT = 5
POST_EXAM_QUESTION_COUNT = 5
REMEDIATION_EXAM_QUESTION_COUNT = 3

EXAM_TYPES = ("pre", "post", "remediation")

QUESTION_COUNTS = {
    "pre": PRE_EXAM_QUESTION_COUNT,
    "post": POST_EXAM_QUESTION_COUNT,
    "remediation": REMEDIATION_EXAM_QUESTION_COUNT,
}


def calculate_score(results: Sequence[Optional[bool]]) -> int:
    """
    Percentage of correct results, rounded half-up.

    Args:
        results: Correctness flags; None counts as incorrect

    Returns:
        Integer score 0-100 (0 for an empty exam)
    """
    if len(results) == 0:
        return 0
    correct = sum(1 for r in results if r is True)
    # Integer arithmetic keeps x.5 rounding away from banker's rounding
    return (200 * correct + len(results)) // (2 * len(results))


def is_passing(score: int) -> bool:
    return score >= PASS_THRESHOLD


def grade_answer(answer: Optional[str], is_idk: bool, correct_answer: str) -> bool:
    """Exact, case-sensitive match; IDK is always wrong."""
    return not is_idk and answer is not None and answer == correct_answer


def get_wrong_questions(questions: Iterable[dict]) -> List[dict]:
    """Rows answered incorrectly or marked "I don't know"."""
    return [q for q in questions if q.get("is_correct") is False or q.get("is_idk")]


def question_count_for(exam_type: str) -> int:
    if exam_type not in QUESTION_COUNTS:
        raise ValueError(f"Unknown exam type: {exam_type}")
    return QUESTION_COUNTS[exam_type]


def attempt_number_for(exam_type: str, remediation_loop_count: int) -> int:
    """Remediation exams are numbered by loop; pre/post exams are always attempt 1."""
    if exam_type == "remediation":
        return max(1, remediation_loop_count)
    return 1
