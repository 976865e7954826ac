"""
Remediation Dialogue

Socratic coaching threads, one per (missed question, learner). A new
thread opens with a streamed hint; each learner reply gets a structured
{message, is_resolved} answer. Threads go open → resolved and never back.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Dict, List, Optional

from adaptive_sat_tutor.config import TutorSettings
from adaptive_sat_tutor.errors import SessionClosedError, SessionNotFoundError, ThreadResolvedError
from adaptive_sat_tutor.llm_client import LLMClient
from adaptive_sat_tutor.math_markup import normalize_math_markup
from adaptive_sat_tutor.prompts import build_remediation_respond_prompt, build_remediation_start_prompt
from adaptive_sat_tutor.record_store import RecordStore
from adaptive_sat_tutor.schemas import RemediationReply
from adaptive_sat_tutor.session_manager import SessionManager
from adaptive_sat_tutor.session_state import LearningSession, RemediationThread
from adaptive_sat_tutor.state_machine import is_terminal
from adaptive_sat_tutor.student_model_manager import StudentModelManager

logger = logging.getLogger(__name__)

THREADS_TABLE = "remediation_threads"
MESSAGES_TABLE = "remediation_messages"

ROLE_PREFIX_RE = re.compile(r"^(Tutor|Assistant|AI|Mentor|Helper):\s*", re.IGNORECASE)


def strip_role_prefix(text: str) -> str:
    """Drop a leading "Tutor:"-style label the model sometimes adds."""
    return ROLE_PREFIX_RE.sub("", text.strip()).strip()


def clean_assistant_text(text: str) -> str:
    return normalize_math_markup(strip_role_prefix(text))


@dataclass
class ThreadOpening:
    """
    Result of start_thread.

    `opening` is None when an existing thread was returned; otherwise it
    streams the first assistant message, which is stored once drained.
    """
    thread: RemediationThread
    opening: Optional[AsyncGenerator[str, None]] = None


class RemediationManager:
    """Opens and continues remediation threads."""

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

    async def start_thread(self, user_id: str, session_id: str, question_id: str) -> ThreadOpening:
        """
        Return the learner's thread for a question, creating it if needed.

        Raises:
            SessionNotFoundError: session or question not found for this user
            SessionClosedError: session already passed or failed
        """
        session = await self.sessions.get_session(user_id, session_id)
        if is_terminal(session.state):
            raise SessionClosedError(f"Session is closed ({session.state})")

        question = await self.store.select_one("exam_questions", eq={"id": question_id, "user_id": user_id})
        if not question or question["session_id"] != session_id:
            raise SessionNotFoundError("Question not found")

        existing = await self.store.select_one(THREADS_TABLE, eq={"question_id": question_id, "user_id": user_id})
        if existing:
            if not self._is_stale(question, session):
                messages = await self._messages(existing["id"])
                return ThreadOpening(thread=RemediationThread.from_row(existing, messages))
            logger.info(f"🧹 [RemediationManager] Replacing stale thread {existing['id']} for question {question_id}")
            await self.store.delete(MESSAGES_TABLE, eq={"thread_id": existing["id"]})
            await self.store.delete(THREADS_TABLE, eq={"id": existing["id"]})

        student_model = await self.student_models.get_model(user_id, session.topic_id)
        rows = await self.store.insert(THREADS_TABLE, {
            "question_id": question_id,
            "user_id": user_id,
            "session_id": session_id,
            "is_resolved": False,
        })
        thread = RemediationThread.from_row(rows[0])

        prompt = build_remediation_start_prompt(
            topic_name=session.topic_name,
            question=question,
            student_model=student_model,
        )
        logger.info(f"💬 [RemediationManager] Opened thread {thread.id} for question {question_id}")
        return ThreadOpening(thread=thread, opening=self._relay_opening(thread.id, prompt))

    async def respond(self, user_id: str, thread_id: str, message: str) -> RemediationReply:
        """
        Record a learner message and return the tutor's reply.

        Raises:
            SessionNotFoundError: thread not found for this user
            ThreadResolvedError: thread is already resolved
            LLMResponseError: structured completion failed
        """
        row = await self.store.select_one(THREADS_TABLE, eq={"id": thread_id, "user_id": user_id})
        if not row:
            raise SessionNotFoundError("Thread not found")
        if row.get("is_resolved"):
            raise ThreadResolvedError("Thread already resolved")

        question = await self.store.select_one("exam_questions", eq={"id": row["question_id"]})
        if not question:
            raise SessionNotFoundError("Question not found")
        session = await self.sessions.get_session(user_id, row["session_id"])

        await self.store.insert(MESSAGES_TABLE, {"thread_id": thread_id, "role": "user", "content": message})
        history = await self._messages(thread_id)

        prompt = build_remediation_respond_prompt(
            topic_name=session.topic_name,
            question=question,
            conversation_history=[{"role": m["role"], "content": m["content"]} for m in history],
            student_message=message,
        )
        reply = await self.llm.json_chat_completion(
            [{"role": "user", "content": prompt}],
            RemediationReply,
            temperature=self.settings.chat_temperature,
        )
        reply = reply.model_copy(update={"message": clean_assistant_text(reply.message)})

        await self.store.insert(MESSAGES_TABLE, {"thread_id": thread_id, "role": "assistant", "content": reply.message})
        if reply.is_resolved:
            await self.store.update(THREADS_TABLE, {"is_resolved": True}, eq={"id": thread_id})
            logger.info(f"✅ [RemediationManager] Thread {thread_id} resolved")
        return reply

    async def _relay_opening(self, thread_id: str, prompt: str) -> AsyncGenerator[str, None]:
        parts: List[str] = []
        async for chunk in self.llm.stream_chat_completion(
            [{"role": "user", "content": prompt}],
            temperature=self.settings.chat_temperature,
            max_tokens=self.settings.remediation_max_tokens,
        ):
            parts.append(chunk)
            yield chunk

        await self.store.insert(MESSAGES_TABLE, {
            "thread_id": thread_id,
            "role": "assistant",
            "content": clean_assistant_text("".join(parts)),
        })

    async def _messages(self, thread_id: str) -> List[Dict[str, Any]]:
        return await self.store.select(MESSAGES_TABLE, eq={"thread_id": thread_id}, order_by="created_at")

    @staticmethod
    def _is_stale(question: Dict[str, Any], session: LearningSession) -> bool:
        # Thread left over from an earlier remediation loop
        return (
            question.get("exam_type") == "remediation"
            and (question.get("attempt_number") or 1) < max(1, session.remediation_loop_count)
        )
