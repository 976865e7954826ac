"""
Lesson Generator

Streams a Markdown lesson for a session. Initial lessons teach the topic
after the pre-exam; remediation lessons re-teach what the post-exam
missed, informed by the remediation dialogue.
"""

import logging
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Dict, List, Optional

from adaptive_sat_tutor.config import TutorSettings
from adaptive_sat_tutor.errors import InvalidTransitionError
from adaptive_sat_tutor.llm_client import LLMClient
from adaptive_sat_tutor.math_markup import normalize_math_markup
from adaptive_sat_tutor.prompts import build_lesson_prompt
from adaptive_sat_tutor.record_store import RecordStore
from adaptive_sat_tutor.scoring import get_wrong_questions
from adaptive_sat_tutor.session_manager import SessionManager
from adaptive_sat_tutor.session_state import LearningSession
from adaptive_sat_tutor.state_machine import LearningState, can_transition, lesson_states
from adaptive_sat_tutor.student_model_manager import StudentModelManager, collect_remediation_insights

logger = logging.getLogger(__name__)

LESSONS_TABLE = "lessons"
LESSON_TYPES = ("initial", "remediation")

# Exam whose misses the lesson addresses
SOURCE_EXAM_TYPE = {"initial": "pre", "remediation": "post"}


@dataclass
class LessonStream:
    """An open lesson: its row id and the chunk iterator to relay."""
    lesson_id: str
    chunks: AsyncGenerator[str, None]


class LessonGenerator:
    """Builds lesson prompts and streams the completion into a lessons row."""

    def __init__(
        self,
        store: RecordStore,
        llm: LLMClient,
        settings: Optional[TutorSettings] = None,
        sessions: Optional[SessionManager] = None,
        student_models: Optional[StudentModelManager] = None,
    ):
        self.store = store
        self.llm = llm
        self.settings = settings or TutorSettings()
        self.sessions = sessions or SessionManager(store)
        self.student_models = student_models or StudentModelManager(store, llm, self.sessions, self.settings)

    async def start_lesson(self, user_id: str, session_id: str, lesson_type: str = "initial") -> LessonStream:
        """
        Open a lesson stream.

        The session moves to the lesson's active state before the first
        chunk; it reaches the completed state only once the stream is
        drained and the content saved.

        Raises:
            SessionNotFoundError: no such session for this user
            InvalidTransitionError: session cannot start this lesson
        """
        if lesson_type not in LESSON_TYPES:
            raise ValueError(f"Unknown lesson type: {lesson_type}")

        session = await self.sessions.get_session(user_id, session_id)
        states = lesson_states(lesson_type)
        if not self._can_start(session.state, lesson_type, states):
            raise InvalidTransitionError(
                session.state,
                states["active"],
                f"Cannot generate {lesson_type} lesson from state {session.state}",
            )

        student_model = await self.student_models.get_model(user_id, session.topic_id)
        wrong_questions = await self._wrong_questions(session_id, SOURCE_EXAM_TYPE[lesson_type])
        insights = None
        if lesson_type == "remediation":
            insights = await collect_remediation_insights(self.store, session_id) or None

        prompt = build_lesson_prompt(
            topic_name=session.topic_name,
            topic_description=session.topic_description,
            lesson_type=lesson_type,
            session_number=session.session_number,
            wrong_questions=wrong_questions,
            student_model=student_model,
            remediation_insights=insights,
        )

        await self.sessions.set_state(session, states["active"])
        rows = await self.store.insert(LESSONS_TABLE, {
            "session_id": session_id,
            "user_id": user_id,
            "lesson_type": lesson_type,
            "content": "",
        })
        lesson_id = rows[0]["id"]
        logger.info(
            f"📝 [LessonGenerator] Streaming {lesson_type} lesson {lesson_id} "
            f"({len(wrong_questions)} missed questions) for session {session_id}"
        )
        return LessonStream(lesson_id=lesson_id, chunks=self._relay(session, lesson_id, prompt, states["completed"]))

    async def _relay(
        self,
        session: LearningSession,
        lesson_id: str,
        prompt: str,
        completed_state: str,
    ) -> AsyncGenerator[str, None]:
        parts: List[str] = []
        async for chunk in self.llm.stream_chat_completion(
            [{"role": "user", "content": prompt}],
            temperature=self.settings.chat_temperature,
            max_tokens=self.settings.lesson_max_tokens,
        ):
            parts.append(chunk)
            yield chunk

        content = normalize_math_markup("".join(parts))
        await self.store.update(LESSONS_TABLE, {"content": content}, eq={"id": lesson_id})
        await self.sessions.set_state(session, completed_state)
        logger.info(f"✅ [LessonGenerator] Saved lesson {lesson_id} ({len(content)} chars)")

    @staticmethod
    def _can_start(state: str, lesson_type: str, states: Dict[str, str]) -> bool:
        # An active lesson whose stream was cut off may be restarted
        if state in (states["pending"], states["active"]):
            return True
        if lesson_type == "initial" and state == LearningState.PRE_EXAM_COMPLETED.value:
            return True
        return can_transition(state, states["active"])

    async def _wrong_questions(self, session_id: str, exam_type: str) -> List[Dict[str, Any]]:
        rows = await self.store.select(
            "exam_questions",
            eq={"session_id": session_id, "exam_type": exam_type},
            order_by="question_number",
        )
        return get_wrong_questions(rows)
