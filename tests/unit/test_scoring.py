"""
Unit Tests for Exam Scoring

Tests answer grading, score rounding and wrong-question selection.
"""

import pytest
import sys
import os

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "adaptive_sat_tutor", "src"))

from adaptive_sat_tutor.scoring import (
    PASS_THRESHOLD,
    attempt_number_for,
    calculate_score,
    get_wrong_questions,
    grade_answer,
    is_passing,
    question_count_for,
)


class TestCalculateScore:
    """Test suite for calculate_score."""

    def test_empty_exam_scores_zero(self):
        assert calculate_score([]) == 0

    def test_all_correct_scores_100(self):
        assert calculate_score([True] * 5) == 100

    def test_all_wrong_or_missing_scores_zero(self):
        assert calculate_score([False, None, False]) == 0

    @pytest.mark.parametrize("results,expected", [
        ([True, False, False], 33),
        ([True, True, False], 67),
        ([True, True, True, True, False], 80),
        ([True, True, True, False, False], 60),
        ([True, False], 50),
    ])
    def test_rounded_percentages(self, results, expected):
        assert calculate_score(results) == expected

    def test_half_rounds_up(self):
        """1/8 = 12.5% rounds to 13, not banker's 12."""
        assert calculate_score([True] + [False] * 7) == 13
        # 5/8 = 62.5%
        assert calculate_score([True] * 5 + [False] * 3) == 63

    def test_none_counts_as_incorrect(self):
        assert calculate_score([True, None]) == 50


class TestGradeAnswer:
    """Test suite for grade_answer."""

    def test_exact_match_is_correct(self):
        assert grade_answer("B", False, "B") is True

    def test_comparison_is_case_sensitive(self):
        assert grade_answer("b", False, "B") is False

    def test_idk_is_always_wrong(self):
        assert grade_answer("B", True, "B") is False

    def test_missing_answer_is_wrong(self):
        assert grade_answer(None, False, "B") is False


class TestHelpers:
    """Test suite for pass threshold and wrong-question selection."""

    def test_pass_threshold_is_inclusive(self):
        assert PASS_THRESHOLD == 80
        assert is_passing(80)
        assert not is_passing(79)

    def test_wrong_questions_include_idk(self):
        rows = [
            {"id": "1", "is_correct": True, "is_idk": False},
            {"id": "2", "is_correct": False, "is_idk": False},
            {"id": "3", "is_correct": False, "is_idk": True},
            {"id": "4", "is_correct": None, "is_idk": False},
        ]
        assert [q["id"] for q in get_wrong_questions(rows)] == ["2", "3"]

    def test_question_counts(self):
        assert question_count_for("pre") == 5
        assert question_count_for("post") == 5
        assert question_count_for("remediation") == 3

    def test_unknown_exam_type_rejected(self):
        with pytest.raises(ValueError):
            question_count_for("final")

    def test_attempt_numbers(self):
        assert attempt_number_for("pre", 0) == 1
        assert attempt_number_for("post", 2) == 1
        assert attempt_number_for("remediation", 0) == 1
        assert attempt_number_for("remediation", 2) == 2
