"""
Exam Submission

Grades a submitted exam, stores the graded rows and score, and moves the
session to its next state:

- pre: pre_exam_completed, or session_passed on a perfect score
- post / remediation: branch via get_next_state()

Reaching session_passed completes the topic and unlocks its dependents.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from adaptive_sat_tutor.errors import InvalidTransitionError
from adaptive_sat_tutor.progression import TopicProgressManager
from adaptive_sat_tutor.record_store import RecordStore
from adaptive_sat_tutor.scoring import EXAM_TYPES, attempt_number_for, calculate_score, grade_answer
from adaptive_sat_tutor.session_manager import SessionManager
from adaptive_sat_tutor.state_machine import LearningState, can_transition, exam_states, get_next_state

logger = logging.getLogger(__name__)

EXAM_TABLE = "exam_questions"

SCORE_FIELDS = {
    "pre": "pre_exam_score",
    "post": "post_exam_score",
    "remediation": "remediation_exam_score",
}


@dataclass
class SubmittedAnswer:
    question_id: str
    answer: Optional[str] = None
    is_idk: bool = False


@dataclass
class QuestionResult:
    question_id: str
    is_correct: bool
    is_idk: bool
    correct_answer: str
    explanation: str


@dataclass
class SubmissionResult:
    score: int
    next_state: str
    has_wrong_answers: bool
    results: List[QuestionResult] = field(default_factory=list)


class ExamGrader:
    """Runs the submit step of the learning loop."""

    def __init__(
        self,
        store: RecordStore,
        sessions: Optional[SessionManager] = None,
        progress: Optional[TopicProgressManager] = None,
    ):
        self.store = store
        self.progress = progress or TopicProgressManager(store)
        self.sessions = sessions or SessionManager(store, self.progress)

    async def submit_exam(
        self,
        user_id: str,
        session_id: str,
        exam_type: str,
        answers: Sequence[SubmittedAnswer],
    ) -> SubmissionResult:
        """
        Grade answers and advance the session.

        Answers naming a question outside this session's current exam
        (same exam type and attempt) are skipped.

        Raises:
            SessionNotFoundError: no such session for this user
            InvalidTransitionError: session is not in the exam's active state
            StorageError: persistence failed
        """
        if exam_type not in EXAM_TYPES:
            raise ValueError(f"Unknown exam type: {exam_type}")

        session = await self.sessions.get_session(user_id, session_id, with_topic=False)
        states = exam_states(exam_type)
        if session.state != states["active"]:
            raise InvalidTransitionError(
                session.state, states["completed"], f"Session not in {states['active']} state"
            )
        if not can_transition(session.state, states["completed"]):
            raise InvalidTransitionError(session.state, states["completed"])

        rows = await self.store.select(
            EXAM_TABLE,
            eq={
                "session_id": session_id,
                "user_id": user_id,
                "exam_type": exam_type,
                "attempt_number": attempt_number_for(exam_type, session.remediation_loop_count),
            },
            in_={"id": [a.question_id for a in answers]},
        )
        questions: Dict[str, Dict[str, Any]] = {row["id"]: row for row in rows}

        graded_rows = []
        results: List[QuestionResult] = []
        for answer in answers:
            question = questions.get(answer.question_id)
            if question is None:
                logger.warning(f"⚠️ [ExamGrader] Skipping unknown question {answer.question_id}")
                continue
            is_correct = grade_answer(answer.answer, answer.is_idk, question["correct_answer"])
            graded_rows.append({
                **question,
                "user_answer": answer.answer,
                "is_correct": is_correct,
                "is_idk": answer.is_idk,
            })
            results.append(QuestionResult(
                question_id=answer.question_id,
                is_correct=is_correct,
                is_idk=answer.is_idk,
                correct_answer=question["correct_answer"],
                explanation=question.get("explanation", ""),
            ))

        if graded_rows:
            await self.store.upsert(EXAM_TABLE, graded_rows, on_conflict="id")

        score = calculate_score([r.is_correct for r in results])
        has_wrong_answers = any(not r.is_correct or r.is_idk for r in results)

        updates: Dict[str, Any] = {SCORE_FIELDS[exam_type]: score}
        next_state = states["completed"]
        if exam_type == "pre":
            if score == 100:
                next_state = LearningState.SESSION_PASSED.value
        else:
            branch = get_next_state(states["completed"], score, session.remediation_loop_count)
            if branch:
                next_state = branch
            if next_state == LearningState.REMEDIATION_ACTIVE.value:
                updates["remediation_loop_count"] = session.remediation_loop_count + 1

        updates["state"] = next_state
        await self.sessions.update_session(session_id, updates)
        logger.info(
            f"✅ [ExamGrader] {exam_type} exam scored {score}% for session {session_id}: "
            f"{session.state} → {next_state}"
        )

        if next_state == LearningState.SESSION_PASSED.value:
            await self.progress.complete_topic(user_id, session.topic_id, score)

        return SubmissionResult(
            score=score,
            next_state=next_state,
            has_wrong_answers=has_wrong_answers,
            results=results,
        )
