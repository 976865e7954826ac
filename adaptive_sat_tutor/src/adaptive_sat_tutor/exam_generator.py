"""
Exam Generator

Produces exactly N validated multiple-choice questions for a
(session, exam type), persists them and moves the session to the exam's
active state.

Flow:
1. Reload guard: an active session with a complete unanswered batch gets
   that batch back unchanged.
2. Gate on the state machine.
3. Race guard: adopt a complete batch written by a concurrent request.
4. Generate → validate → detectors, with bounded partial regeneration of
   failing questions and feedback-driven batch retries.
5. Shuffle choices, re-check the race guard, insert, transition.
"""

import logging
import random
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence

from adaptive_sat_tutor.config import TutorSettings
from adaptive_sat_tutor.errors import InvalidTransitionError, LLMResponseError, ValidationExhaustedError
from adaptive_sat_tutor.exam_checks import DEFAULT_CHECKS, BatchReport, QuestionCheck, ValidatorVerdicts, evaluate_batch
from adaptive_sat_tutor.llm_client import LLMClient
from adaptive_sat_tutor.math_markup import normalize_math_markup
from adaptive_sat_tutor.prompts import (
    EXAM_VALIDATOR_SYSTEM_PROMPT,
    EXAM_WRITER_SYSTEM_PROMPT,
    build_exam_prompt,
    build_exam_validation_prompt,
)
from adaptive_sat_tutor.record_store import RecordStore
from adaptive_sat_tutor.schemas import (
    CHOICE_LABELS,
    ExamGeneration,
    ExamValidation,
    GeneratedQuestion,
    GenerationErr,
    GenerationOk,
    GenerationResult,
)
from adaptive_sat_tutor.scoring import EXAM_TYPES, attempt_number_for, get_wrong_questions, question_count_for
from adaptive_sat_tutor.session_manager import SessionManager
from adaptive_sat_tutor.session_state import ExamQuestion, LearningSession, StudentModel
from adaptive_sat_tutor.state_machine import can_transition, exam_states
from adaptive_sat_tutor.student_model_manager import StudentModelManager

logger = logging.getLogger(__name__)

EXAM_TABLE = "exam_questions"

VALIDATION_FEEDBACK_TEMPLATE = (
    "\n\nVALIDATION FEEDBACK (fix these issues):\n- {feedback}\n"
    "- Ensure each question has exactly one correct choice and three incorrect distractors. "
    "Avoid ambiguous wording."
)

REGENERATION_TEMPLATE = (
    "\n\nREGENERATION INSTRUCTIONS:\n- This replaces question #{index}.\n"
    "- Ensure exactly one correct answer.\n- Avoid ambiguous wording.\n"
    "- Ensure choices are distinct values."
)

# Exam whose misses seed each exam type's prompt
PRIOR_EXAM_TYPE = {"post": "pre", "remediation": "post"}


def apply_choice_order(question: GeneratedQuestion, order: Sequence[str]) -> GeneratedQuestion:
    """
    Relabel choices so the value under order[i] moves to CHOICE_LABELS[i].
    correct_answer follows its value.
    """
    choices = {new: question.choices[old] for new, old in zip(CHOICE_LABELS, order)}
    correct = CHOICE_LABELS[list(order).index(question.correct_answer)]
    return question.model_copy(update={"choices": choices, "correct_answer": correct})


def shuffle_choices(question: GeneratedQuestion, rng: Optional[random.Random] = None) -> GeneratedQuestion:
    """Uniformly permute the four choices (Fisher-Yates via Random.shuffle)."""
    order = list(CHOICE_LABELS)
    (rng or random).shuffle(order)
    return apply_choice_order(question, order)


@dataclass
class GenerationContext:
    """Everything the exam prompt is built from."""
    topic_name: str
    topic_description: str
    exam_type: str
    question_count: int
    student_model: Optional[StudentModel] = None
    prior_wrong_questions: List[Dict[str, Any]] = field(default_factory=list)
    avoid_questions: List[str] = field(default_factory=list)

    def prompt(self) -> str:
        return build_exam_prompt(
            topic_name=self.topic_name,
            topic_description=self.topic_description,
            exam_type=self.exam_type,
            question_count=self.question_count,
            student_model=self.student_model,
            prior_wrong_questions=self.prior_wrong_questions or None,
            avoid_questions=self.avoid_questions or None,
        )

    def single(self) -> "GenerationContext":
        return replace(self, question_count=1)


class ExamGenerator:
    """Generation/validation orchestrator for pre, post and remediation exams."""

    def __init__(
        self,
        store: RecordStore,
        llm: LLMClient,
        settings: Optional[TutorSettings] = None,
        sessions: Optional[SessionManager] = None,
        student_models: Optional[StudentModelManager] = None,
        checks: Sequence[QuestionCheck] = DEFAULT_CHECKS,
        rng: Optional[random.Random] = None,
    ):
        """
        Args:
            store: Record store
            llm: Generation/validation client
            settings: Attempt budgets and temperatures
            sessions: Session manager (built from store if omitted)
            student_models: Student model manager (built from store if omitted)
            checks: Detector set run over every batch and candidate
            rng: Random source for choice shuffling
        """
        self.store = store
        self.llm = llm
        self.settings = settings or TutorSettings()
        self.sessions = sessions or SessionManager(store)
        self.student_models = student_models or StudentModelManager(store, llm, self.sessions, self.settings)
        self.checks = tuple(checks)
        self.rng = rng or random.Random()

    # ------------------------------------------------------------------
    # Top-level operation
    # ------------------------------------------------------------------

    async def generate_exam(self, user_id: str, session_id: str, exam_type: str) -> List[Dict[str, Any]]:
        """
        Return the question rows for the session's current exam, generating
        and persisting them when needed.

        Raises:
            SessionNotFoundError: no such session for this user
            InvalidTransitionError: session cannot start this exam
            ValidationExhaustedError: no clean batch within the attempt budget
            StorageError: persistence failed
        """
        if exam_type not in EXAM_TYPES:
            raise ValueError(f"Unknown exam type: {exam_type}")

        session = await self.sessions.get_session(user_id, session_id)
        states = exam_states(exam_type)
        question_count = question_count_for(exam_type)
        attempt_number = attempt_number_for(exam_type, session.remediation_loop_count)
        batch = {"session_id": session_id, "exam_type": exam_type, "attempt_number": attempt_number}

        # Reload guard
        if session.state == states["active"]:
            existing = await self._unanswered(batch)
            if len(existing) == question_count:
                logger.info(f"♻️ [ExamGenerator] Returning existing {exam_type} exam for session {session_id}")
                return existing
            if existing:
                logger.warning(
                    f"⚠️ [ExamGenerator] Found {len(existing)}/{question_count} unanswered "
                    f"{exam_type} questions; regenerating"
                )
                await self.store.delete(EXAM_TABLE, batch)

        if session.state not in (states["pending"], states["active"]) \
                and not can_transition(session.state, states["active"]):
            raise InvalidTransitionError(
                session.state,
                states["active"],
                f"Cannot start {exam_type} exam from state {session.state}",
            )

        student_model = await self.student_models.get_model(user_id, session.topic_id)
        prior_wrong = await self._prior_wrong_questions(session_id, exam_type)

        if exam_type == "remediation" and session.state != states["active"]:
            await self._clear_answered_batch(batch)

        adopted = await self._adopt_existing_batch(session, states["active"], batch, question_count)
        if adopted is not None:
            return adopted

        avoid = []
        if exam_type == "remediation" and attempt_number > 1:
            avoid = await self._previous_remediation_questions(session_id, attempt_number)

        context = GenerationContext(
            topic_name=session.topic_name,
            topic_description=session.topic_description,
            exam_type=exam_type,
            question_count=question_count,
            student_model=student_model,
            prior_wrong_questions=prior_wrong,
            avoid_questions=avoid,
        )
        questions = await self.generate_valid_batch(context)
        questions = [shuffle_choices(q, self.rng) for q in questions]

        # A concurrent request may have committed while this one was generating
        adopted = await self._adopt_existing_batch(session, states["active"], batch, question_count)
        if adopted is not None:
            return adopted

        rows = [
            ExamQuestion(
                session_id=session_id,
                user_id=user_id,
                exam_type=exam_type,
                attempt_number=attempt_number,
                question_number=index,
                question_text=normalize_math_markup(q.question_text),
                choices={label: normalize_math_markup(value) for label, value in q.choices.items()},
                correct_answer=q.correct_answer,
                explanation=normalize_math_markup(q.explanation),
            ).to_row()
            for index, q in enumerate(questions, 1)
        ]
        saved = await self.store.insert(EXAM_TABLE, rows)
        await self.sessions.set_state(session, states["active"])

        logger.info(f"✅ [ExamGenerator] Saved {len(saved)} {exam_type} questions for session {session_id}")
        return sorted(saved, key=lambda row: row["question_number"])

    # ------------------------------------------------------------------
    # Generation / validation loop
    # ------------------------------------------------------------------

    async def generate_valid_batch(self, context: GenerationContext) -> List[GeneratedQuestion]:
        """
        Run up to max_generation_attempts generate/validate rounds.

        Raises:
            ValidationExhaustedError: every round failed
        """
        feedback: Optional[str] = None

        for attempt in range(1, self.settings.max_generation_attempts + 1):
            result = await self.request_batch(context, feedback=feedback)
            if isinstance(result, GenerationErr):
                logger.warning(f"⚠️ [ExamGenerator] Attempt {attempt}: generation failed: {result.reason}")
                continue

            questions = list(result.questions)
            if len(questions) != context.question_count:
                feedback = f"Expected exactly {context.question_count} questions, received {len(questions)}."
                logger.error(f"❌ [ExamGenerator] Attempt {attempt}: {feedback}")
                continue

            report = await self.validate_batch(questions)
            if report.passed:
                logger.info(f"✅ [ExamGenerator] Batch accepted on attempt {attempt}")
                return questions

            self._log_report(attempt, questions, report)
            feedback = report.feedback()

            if not report.missing_validation:
                questions = await self.repair_batch(context, questions, report.invalid_indexes)
                report = await self.validate_batch(questions)
                if report.passed:
                    logger.info(f"✅ [ExamGenerator] Batch accepted after partial regeneration (attempt {attempt})")
                    return questions

        logger.error(f"❌ [ExamGenerator] Exam generation validation failed: {feedback}")
        raise ValidationExhaustedError(feedback)

    async def request_batch(
        self,
        context: GenerationContext,
        feedback: Optional[str] = None,
        replaces_index: Optional[int] = None,
    ) -> GenerationResult:
        """One generator call; failures come back as GenerationErr."""
        prompt = context.prompt()
        if feedback:
            prompt += VALIDATION_FEEDBACK_TEMPLATE.format(feedback=feedback)
        if replaces_index is not None:
            prompt += REGENERATION_TEMPLATE.format(index=replaces_index)

        try:
            generated = await self.llm.json_chat_completion(
                [
                    {"role": "system", "content": EXAM_WRITER_SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                ExamGeneration,
                temperature=self.settings.generation_temperature,
            )
        except LLMResponseError as e:
            return GenerationErr(reason=str(e))
        return GenerationOk(questions=generated.questions)

    async def request_verdicts(self, questions: Sequence[GeneratedQuestion]) -> Optional[ValidatorVerdicts]:
        """Independent solve of every question; None if no complete answer came back."""
        prompt = build_exam_validation_prompt([q.model_dump() for q in questions])

        for attempt in range(1, self.settings.max_validation_attempts + 1):
            try:
                validation = await self.llm.json_chat_completion(
                    [
                        {"role": "system", "content": EXAM_VALIDATOR_SYSTEM_PROMPT},
                        {"role": "user", "content": prompt},
                    ],
                    ExamValidation,
                    temperature=self.settings.validation_temperature,
                )
            except LLMResponseError as e:
                logger.warning(f"⚠️ [ExamGenerator] Validation call {attempt} failed: {e}")
                continue

            results = validation.results
            if len(results) == len(questions) and all(r.index == i for i, r in enumerate(results, 1)):
                return {r.index: list(r.correct_choices) for r in results}
            logger.warning(
                f"⚠️ [ExamGenerator] Validation call {attempt} returned "
                f"{len(results)} results for {len(questions)} questions"
            )
        return None

    async def validate_batch(self, questions: Sequence[GeneratedQuestion]) -> BatchReport:
        verdicts = await self.request_verdicts(questions)
        return evaluate_batch(questions, verdicts, self.checks)

    async def repair_batch(
        self,
        context: GenerationContext,
        questions: List[GeneratedQuestion],
        invalid_indexes: Sequence[int],
    ) -> List[GeneratedQuestion]:
        """Swap in standalone-valid replacements for the failing questions."""
        if invalid_indexes:
            logger.info(f"🔧 [ExamGenerator] Partial regeneration for questions {[i + 1 for i in invalid_indexes]}")
        repaired = list(questions)
        for index in invalid_indexes:
            candidate = await self.regenerate_question(context, index, self.settings.max_partial_regen_attempts)
            if candidate is not None:
                repaired[index] = candidate
        return repaired

    async def regenerate_question(
        self,
        context: GenerationContext,
        index: int,
        attempts_left: int,
    ) -> Optional[GeneratedQuestion]:
        """First single-question candidate that passes every check, or None."""
        if attempts_left <= 0:
            logger.error(f"❌ [ExamGenerator] Partial regeneration failed for question {index + 1}")
            return None

        result = await self.request_batch(context.single(), replaces_index=index + 1)
        if isinstance(result, GenerationOk) and result.questions:
            candidate = result.questions[0]
            if (await self.validate_batch([candidate])).passed:
                return candidate

        return await self.regenerate_question(context, index, attempts_left - 1)

    # ------------------------------------------------------------------
    # Storage helpers
    # ------------------------------------------------------------------

    async def _unanswered(self, batch: Dict[str, Any]) -> List[Dict[str, Any]]:
        return await self.store.select(EXAM_TABLE, eq=batch, is_null=("user_answer", "is_correct"), order_by="question_number")

    async def _adopt_existing_batch(
        self,
        session: LearningSession,
        active_state: str,
        batch: Dict[str, Any],
        question_count: int,
    ) -> Optional[List[Dict[str, Any]]]:
        """Adopt a complete unanswered batch; clear a partial one."""
        unanswered = await self._unanswered(batch)
        if len(unanswered) == question_count:
            logger.info(f"♻️ [ExamGenerator] Adopting existing batch for session {session.id}")
            await self.sessions.set_state(session, active_state)
            return unanswered
        if unanswered:
            await self.store.delete(EXAM_TABLE, batch)
        return None

    async def _clear_answered_batch(self, batch: Dict[str, Any]) -> None:
        """Drop a fully answered batch left over from this attempt number."""
        rows = await self.store.select(EXAM_TABLE, eq=batch)
        answered = [ExamQuestion.from_row(r).is_answered for r in rows]
        if answered and all(answered):
            logger.info(f"🧹 [ExamGenerator] Clearing answered remediation batch {batch}")
            await self.store.delete(EXAM_TABLE, batch)

    async def _prior_wrong_questions(self, session_id: str, exam_type: str) -> List[Dict[str, Any]]:
        prior_type = PRIOR_EXAM_TYPE.get(exam_type)
        if not prior_type:
            return []
        rows = await self.store.select(
            EXAM_TABLE, eq={"session_id": session_id, "exam_type": prior_type}, order_by="question_number"
        )
        return get_wrong_questions(rows)

    async def _previous_remediation_questions(self, session_id: str, attempt_number: int) -> List[str]:
        rows = await self.store.select(
            EXAM_TABLE,
            eq={"session_id": session_id, "exam_type": "remediation"},
            lt={"attempt_number": attempt_number},
            columns="question_text",
        )
        return [row["question_text"] for row in rows]

    def _log_report(self, attempt: int, questions: Sequence[GeneratedQuestion], report: BatchReport) -> None:
        failed = {name: [i + 1 for i in indexes] for name, indexes in report.failures.items()}
        logger.error(
            f"❌ [ExamGenerator] Attempt {attempt} failed validation: "
            f"missing_validation={report.missing_validation} failures={failed}"
        )
        for name, indexes in report.failures.items():
            for index in indexes:
                q = questions[index]
                logger.error(
                    f"   [{name}] #{index + 1}: {q.question_text} | choices={q.choices} "
                    f"| claimed={q.correct_answer}"
                )
