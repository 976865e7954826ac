"""
Unit Tests for Exam Quality Checks

Tests each detector and the batch report fed back to the generator.
"""

import pytest
import sys
import os

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "adaptive_sat_tutor", "src"))

from adaptive_sat_tutor.exam_checks import (
    disagrees_with_validator,
    evaluate_batch,
    find_choice_for_value,
    has_duplicate_choices,
    is_graphing_not_equals_question,
    is_scalar_not_equals_solve,
    lacks_both_sides_shading,
    parse_not_equals_excluded_value,
    uses_banned_not_possible_phrasing,
)
from adaptive_sat_tutor.schemas import GeneratedQuestion

EXCLUDED_VALUE_TEXT = r"If $2x + 3 \neq 7$, which of the following is NOT a possible value of $x$?"
GRAPH_TEXT = r"Which graph represents the solution to $y \neq 3$?"


def question(text="What is $x$ if $x + 1 = 2$?", choices=None, correct="A"):
    return GeneratedQuestion(
        question_text=text,
        explanation="Subtract 1 from both sides.",
        choices=choices or {"A": "1", "B": "2", "C": "3", "D": "4"},
        correct_answer=correct,
    )


class TestDuplicateChoices:
    """Test suite for has_duplicate_choices."""

    def test_whitespace_variants_are_duplicates(self):
        q = question(choices={"A": "5", "B": " 5 ", "C": "6", "D": "7"})
        assert has_duplicate_choices(q, ["A"])

    def test_distinct_choices_pass(self):
        assert not has_duplicate_choices(question(), ["A"])


class TestValidatorAgreement:
    """Test suite for disagrees_with_validator."""

    def test_single_matching_verdict_passes(self):
        assert not disagrees_with_validator(question(), ["A"])

    @pytest.mark.parametrize("verdict", [None, [], ["B"], ["A", "B"]])
    def test_missing_wrong_or_ambiguous_verdict_fails(self, verdict):
        assert disagrees_with_validator(question(), verdict)

    def test_excluded_value_question_accepted_on_mismatch(self):
        """The solver lists the possible values; the claimed answer is the excluded one."""
        q = question(text=EXCLUDED_VALUE_TEXT, correct="B")
        assert disagrees_with_validator(q, ["A", "C", "D"]) is False

    def test_excluded_value_under_wrong_label_still_fails(self):
        q = question(text=EXCLUDED_VALUE_TEXT, correct="C")
        assert disagrees_with_validator(q, ["A", "B", "D"])

    def test_excluded_value_single_choice_mismatch_accepted(self):
        q = question(text=EXCLUDED_VALUE_TEXT, correct="B")
        assert disagrees_with_validator(q, ["D"]) is False

    @pytest.mark.parametrize("verdict", [[], ["A", "B", "C", "D"], ["A", "C"], ["B", "C"]])
    def test_excluded_value_needs_a_readable_verdict(self, verdict):
        """No correct choice, every choice, or a partial list is never tolerated."""
        q = question(text=EXCLUDED_VALUE_TEXT, correct="B")
        assert disagrees_with_validator(q, verdict)


class TestExcludedValueParsing:
    """Test suite for linear not-equals parsing."""

    def test_parses_linear_stem(self):
        assert parse_not_equals_excluded_value(EXCLUDED_VALUE_TEXT) == 2.0

    def test_negative_coefficient(self):
        text = r"If $-x + 4 \neq 1$, which is NOT a possible value of $x$?"
        assert parse_not_equals_excluded_value(text) == 3.0

    def test_requires_not_possible_phrasing(self):
        assert parse_not_equals_excluded_value(r"Solve $2x + 3 \neq 7$.") is None

    def test_find_choice_compares_numerically(self):
        assert find_choice_for_value({"A": "$1$", "B": "2.0", "C": "3", "D": "4"}, 2.0) == "B"
        assert find_choice_for_value({"A": "1", "B": "5", "C": "3", "D": "4"}, 2.0) is None


class TestNotPossiblePhrasing:
    """Test suite for uses_banned_not_possible_phrasing."""

    def test_linear_stem_allowed(self):
        assert not uses_banned_not_possible_phrasing(question(text=EXCLUDED_VALUE_TEXT), ["B"])

    def test_non_linear_stem_flagged(self):
        text = "Which of the following is NOT a possible value of $y$ if $y^2 = 4$?"
        assert uses_banned_not_possible_phrasing(question(text=text), ["A"])

    def test_plain_question_ignored(self):
        assert not uses_banned_not_possible_phrasing(question(), ["A"])


class TestGraphingNotEquals:
    """Test suite for the both-sides shading check."""

    def test_detects_graphing_question(self):
        assert is_graphing_not_equals_question(GRAPH_TEXT)
        assert not is_graphing_not_equals_question(r"Which graph represents $y < 3$?")

    def test_flags_missing_both_sides_choice(self):
        q = question(text=GRAPH_TEXT, choices={
            "A": "Dashed line at y = 3, shaded above",
            "B": "Dashed line at y = 3, shaded below",
            "C": "Solid line at y = 3, shaded above",
            "D": "Solid line at y = 3, shaded below",
        })
        assert lacks_both_sides_shading(q, ["A"])

    def test_accepts_both_sides_choice(self):
        q = question(text=GRAPH_TEXT, choices={
            "A": "Dashed line at y = 3 with shading on both sides",
            "B": "Dashed line at y = 3, shaded below",
            "C": "Solid line at y = 3, shaded above",
            "D": "Solid line at y = 3, shaded below",
        })
        assert not lacks_both_sides_shading(q, ["A"])


class TestScalarNotEqualsSolve:
    """Test suite for is_scalar_not_equals_solve."""

    def test_numeric_choices_flagged(self):
        q = question(text=r"Solve $3x - 6 \neq 9$.", choices={"A": "5", "B": "3", "C": "-5", "D": "15"})
        assert is_scalar_not_equals_solve(q, ["A"])

    def test_relation_choices_pass(self):
        q = question(text=r"Solve $3x - 6 \neq 9$.", choices={
            "A": r"$x \neq 5$",
            "B": r"$x \neq 3$",
            "C": r"$x \neq -5$",
            "D": r"$x \neq 15$",
        })
        assert not is_scalar_not_equals_solve(q, ["A"])


class TestEvaluateBatch:
    """Test suite for evaluate_batch and BatchReport."""

    def test_clean_batch_passes(self):
        report = evaluate_batch([question(), question(text="What is $x$ if $x = 1$?")], {1: ["A"], 2: ["A"]})
        assert report.passed
        assert report.invalid_indexes == []
        assert report.feedback() == ""

    def test_missing_verdict_blocks_batch(self):
        report = evaluate_batch([question(), question(text="What is $x$ if $x = 1$?")], {1: ["A"]})
        assert report.missing_validation
        assert not report.passed
        assert report.invalid_indexes == [1]
        assert report.feedback() == (
            "Validator did not return results for every question. | "
            "Invalid or non-unique correct answers in questions: 2"
        )

    def test_feedback_lists_one_based_indexes_per_check(self):
        questions = [
            question(choices={"A": "1", "B": "1", "C": "3", "D": "4"}),
            question(text="What is $x$ if $x = 1$?"),
            question(text="What is $x$ if $x = 3$?"),
        ]
        report = evaluate_batch(questions, {1: ["B"], 2: ["A"], 3: ["C"]})
        assert report.failures == {"duplicate_choices": [0], "incorrect_answers": [0, 2]}
        assert report.invalid_indexes == [0, 2]
        assert report.feedback() == (
            "Duplicate choice values in questions: 1 | "
            "Invalid or non-unique correct answers in questions: 1, 3"
        )
