"""
Exam Quality Checks

Deterministic detectors run over a generated batch after the independent
validator has answered. Each detector flags individual question indexes
(0-based); the batch passes only when nothing is flagged and the validator
returned a verdict for every question.

Detectors are registered in DEFAULT_CHECKS and can be swapped per
ExamGenerator.
"""

import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from adaptive_sat_tutor.schemas import CHOICE_LABELS, GeneratedQuestion

# Verdicts keyed by 1-based question index
ValidatorVerdicts = Dict[int, List[str]]

# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------

_NOT_EQUALS_RE = re.compile(r'\\neq|not\s+equal|is\s+not\s+equal|≠', re.IGNORECASE)
_LATEX_NOT_EQUALS_RE = re.compile(r'\\neq|≠')
_GRAPH_RE = re.compile(r'graph|graphing|represents\s+the\s+solution', re.IGNORECASE)
_OTHER_INEQUALITY_RE = re.compile(r'<|>|\\leq|\\geq|\\lt|\\gt|≤|≥')
_SINGLE_NEQ_RE = re.compile(r'(?:^|[^a-zA-Z])\s*(x|y)\s*\\neq\s*[-+]?\d')
_BOTH_SIDES_RE = (
    re.compile(r'both\s+sides', re.IGNORECASE),
    re.compile(r'shaded\s+on\s+both\s+sides', re.IGNORECASE),
    re.compile(r'shading\s+on\s+both\s+sides', re.IGNORECASE),
    re.compile(r'shade\s+on\s+both\s+sides', re.IGNORECASE),
    re.compile(r'both\s+regions', re.IGNORECASE),
)
_NOT_POSSIBLE_RE = re.compile(r'not\s+a\s+possible\s+value', re.IGNORECASE)
_EXCLUDED_VALUE_RE = re.compile(r'([+-]?\d*)x\s*([+-]\s*\d+)?\s*\\neq\s*([+-]?\d+)', re.IGNORECASE)
_SOLVE_RE = re.compile(r'\bsolv(?:e|ing)\b|\bsolution', re.IGNORECASE)
_INLINE_MATH_RE = re.compile(r'\$([^$]+)\$')
_LATEX_COMMAND_RE = re.compile(r'\\[a-zA-Z]+')
_VARIABLE_RE = re.compile(r'(?<![a-zA-Z])([a-zA-Z])(?![a-zA-Z])')
_SCALAR_CHOICE_RE = re.compile(r'^[-+]?(?:\d+(?:\.\d+)?|\\[dt]?frac\{-?\d+\}\{\d+\}|\d+/\d+)$')


def normalize_choice(value: str) -> str:
    """Trim and collapse whitespace."""
    return re.sub(r'\s+', ' ', value.strip())


def _compact(value: str) -> str:
    return re.sub(r'\s+', '', value.replace('$', ''))


def parse_not_equals_excluded_value(question_text: str) -> Optional[float]:
    """
    For "which is NOT a possible value" questions over a linear a·x + b ≠ c
    stem, return the excluded value (c - b) / a.
    """
    if not _NOT_POSSIBLE_RE.search(question_text):
        return None
    compact = re.sub(r'\s+', ' ', question_text.replace('$', ''))
    match = _EXCLUDED_VALUE_RE.search(compact)
    if not match:
        return None
    raw_a, raw_b, raw_c = match.groups()
    if raw_a in ("", "+"):
        a = 1
    elif raw_a == "-":
        a = -1
    else:
        a = int(raw_a)
    b = int(re.sub(r'\s+', '', raw_b)) if raw_b else 0
    c = int(raw_c)
    if a == 0:
        return None
    return (c - b) / a


def _as_number(value: str) -> Optional[float]:
    try:
        return float(value)
    except ValueError:
        return None


def find_choice_for_value(choices: Dict[str, str], value: float) -> Optional[str]:
    """Label whose choice text equals value (string or numeric comparison)."""
    for label, text in choices.items():
        compact = _compact(text)
        number = _as_number(compact)
        if compact == str(value) or (number is not None and number == value):
            return label
    return None


def is_graphing_not_equals_question(question_text: str) -> bool:
    return (
        bool(_NOT_EQUALS_RE.search(question_text))
        and bool(_GRAPH_RE.search(question_text))
        and not _OTHER_INEQUALITY_RE.search(question_text)
        and bool(_SINGLE_NEQ_RE.search(question_text))
    )


def mentions_both_sides_shading(text: str) -> bool:
    return any(pattern.search(text) for pattern in _BOTH_SIDES_RE)


def _math_variables(question_text: str) -> set:
    segments = _INLINE_MATH_RE.findall(question_text) or [question_text]
    variables = set()
    for segment in segments:
        variables.update(_VARIABLE_RE.findall(_LATEX_COMMAND_RE.sub(' ', segment)))
    return variables


def is_scalar_choice(value: str) -> bool:
    return bool(_SCALAR_CHOICE_RE.match(_compact(value)))


# ---------------------------------------------------------------------------
# Detectors: (question, verdict or None) -> True when the question fails
# ---------------------------------------------------------------------------

def has_duplicate_choices(question: GeneratedQuestion, verdict: Optional[List[str]]) -> bool:
    normalized = [normalize_choice(question.choices[label]) for label in CHOICE_LABELS]
    return len(set(normalized)) != len(normalized)


def disagrees_with_validator(question: GeneratedQuestion, verdict: Optional[List[str]]) -> bool:
    """
    Fails unless the solver found exactly one correct choice and it is the
    claimed answer.

    A linear "NOT a possible value" question is accepted on a mismatch when
    the excluded value sits under the claimed answer and the solver either
    picked a single choice or listed exactly the other three choices as
    possible values. An empty or all-choices verdict always fails.
    """
    if verdict is None:
        return True
    if len(verdict) == 1 and verdict[0] == question.correct_answer:
        return False
    possible_values = set(CHOICE_LABELS) - {question.correct_answer}
    if len(verdict) != 1 and set(verdict) != possible_values:
        return True
    excluded = parse_not_equals_excluded_value(question.question_text)
    if excluded is not None and find_choice_for_value(question.choices, excluded) == question.correct_answer:
        return False
    return True


def lacks_both_sides_shading(question: GeneratedQuestion, verdict: Optional[List[str]]) -> bool:
    """Graphing a single x ≠ c / y ≠ c needs a choice shading both sides."""
    if not is_graphing_not_equals_question(question.question_text):
        return False
    return not any(mentions_both_sides_shading(text) for text in question.choices.values())


def uses_banned_not_possible_phrasing(question: GeneratedQuestion, verdict: Optional[List[str]]) -> bool:
    """The NOT-a-possible-value phrasing is only allowed over a linear a·x + b ≠ c stem."""
    if not _NOT_POSSIBLE_RE.search(question.question_text):
        return False
    return parse_not_equals_excluded_value(question.question_text) is None


def is_scalar_not_equals_solve(question: GeneratedQuestion, verdict: Optional[List[str]]) -> bool:
    """Solving a single-variable ≠ relation must offer relations, not bare numbers."""
    text = question.question_text
    if not _LATEX_NOT_EQUALS_RE.search(text) or not _SOLVE_RE.search(text):
        return False
    if _OTHER_INEQUALITY_RE.search(text) or _NOT_POSSIBLE_RE.search(text):
        return False
    if len(_math_variables(text)) != 1:
        return False
    return all(is_scalar_choice(value) for value in question.choices.values())


@dataclass(frozen=True)
class QuestionCheck:
    name: str
    feedback: str
    detect: Callable[[GeneratedQuestion, Optional[List[str]]], bool]


DEFAULT_CHECKS = (
    QuestionCheck("duplicate_choices", "Duplicate choice values in questions", has_duplicate_choices),
    QuestionCheck("incorrect_answers", "Invalid or non-unique correct answers in questions", disagrees_with_validator),
    QuestionCheck(
        "graphing_not_equals",
        "Graphing not-equals questions missing both-sides shading",
        lacks_both_sides_shading,
    ),
    QuestionCheck(
        "not_possible_phrasing",
        "Disallowed 'NOT a possible value' phrasing in questions",
        uses_banned_not_possible_phrasing,
    ),
    QuestionCheck(
        "scalar_not_equals_solve",
        "Not-equals solve questions with numeric-only choices in questions",
        is_scalar_not_equals_solve,
    ),
)


# ---------------------------------------------------------------------------
# Batch evaluation
# ---------------------------------------------------------------------------

@dataclass
class BatchReport:
    """Outcome of running every check over one batch."""
    missing_validation: bool
    failures: Dict[str, List[int]] = field(default_factory=dict)
    checks: Sequence[QuestionCheck] = DEFAULT_CHECKS

    @property
    def passed(self) -> bool:
        return not self.missing_validation and not self.invalid_indexes

    @property
    def invalid_indexes(self) -> List[int]:
        return sorted({index for indexes in self.failures.values() for index in indexes})

    def feedback(self) -> str:
        """One-line summary fed back to the generator (1-based numbering)."""
        parts = []
        if self.missing_validation:
            parts.append("Validator did not return results for every question.")
        for check in self.checks:
            indexes = self.failures.get(check.name)
            if indexes:
                parts.append(f"{check.feedback}: {', '.join(str(i + 1) for i in indexes)}")
        return " | ".join(parts)


def verdicts_complete(verdicts: Optional[ValidatorVerdicts], question_count: int) -> bool:
    return verdicts is not None and all(i in verdicts for i in range(1, question_count + 1))


def evaluate_batch(
    questions: Sequence[GeneratedQuestion],
    verdicts: Optional[ValidatorVerdicts],
    checks: Sequence[QuestionCheck] = DEFAULT_CHECKS,
) -> BatchReport:
    report = BatchReport(missing_validation=not verdicts_complete(verdicts, len(questions)), checks=checks)
    for index, question in enumerate(questions):
        verdict = (verdicts or {}).get(index + 1)
        for check in checks:
            if check.detect(question, verdict):
                report.failures.setdefault(check.name, []).append(index)
    return report
