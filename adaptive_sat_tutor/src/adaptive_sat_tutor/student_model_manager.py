"""
Student Model Manager

Per (learner, topic) profile of strengths, weaknesses, misconceptions and
mastery. Read to bias exam and lesson generation; rewritten by the LLM
after an exam.
"""

import logging
from typing import Dict, List, Optional

from adaptive_sat_tutor.config import TutorSettings
from adaptive_sat_tutor.errors import NoExamResultsError
from adaptive_sat_tutor.llm_client import LLMClient
from adaptive_sat_tutor.prompts import build_student_model_update_prompt
from adaptive_sat_tutor.record_store import RecordStore
from adaptive_sat_tutor.schemas import StudentModelUpdate
from adaptive_sat_tutor.session_manager import SessionManager
from adaptive_sat_tutor.session_state import StudentModel

logger = logging.getLogger(__name__)

MODELS_TABLE = "student_models"

# Messages per remediation thread included when updating the model
INSIGHT_MESSAGES_PER_THREAD = 4


async def collect_remediation_insights(
    store: RecordStore,
    session_id: str,
    last_messages: Optional[int] = None,
) -> str:
    """
    Transcript digest of a session's remediation threads.

    Args:
        store: Record store
        session_id: Session whose threads to read
        last_messages: Keep only the last N messages per thread

    Returns:
        Text block, empty when the session has no threads
    """
    threads = await store.select("remediation_threads", eq={"session_id": session_id}, order_by="created_at")
    blocks: List[str] = []
    for thread in threads:
        messages = await store.select("remediation_messages", eq={"thread_id": thread["id"]}, order_by="created_at")
        if last_messages is not None:
            messages = messages[-last_messages:]
        transcript = "\n".join(f"{m['role']}: {m['content']}" for m in messages)
        blocks.append(f"Thread (resolved: {bool(thread.get('is_resolved'))}):\n{transcript}")
    return "\n\n".join(blocks)


class StudentModelManager:
    """Loads and updates student models."""

    def __init__(
        self,
        store: RecordStore,
        llm: Optional[LLMClient] = None,
        sessions: Optional[SessionManager] = None,
        settings: Optional[TutorSettings] = None,
    ):
        self.store = store
        self.llm = llm
        self.sessions = sessions or SessionManager(store)
        self.settings = settings or TutorSettings()

    async def get_model(self, user_id: str, topic_id: str) -> Optional[StudentModel]:
        row = await self.store.select_one(MODELS_TABLE, eq={"user_id": user_id, "topic_id": topic_id})
        return StudentModel.from_row(row) if row else None

    async def update_student_model(self, user_id: str, session_id: str, exam_type: str) -> StudentModelUpdate:
        """
        Rewrite the model from an exam's graded results plus recent
        remediation dialogue.

        Raises:
            SessionNotFoundError: no such session for this user
            NoExamResultsError: the exam has no questions
            LLMResponseError: structured completion failed
        """
        session = await self.sessions.get_session(user_id, session_id)

        current = await self.get_model(user_id, session.topic_id)
        model = current or StudentModel(user_id=user_id, topic_id=session.topic_id)

        exam_results = await self.store.select(
            "exam_questions",
            eq={"session_id": session_id, "exam_type": exam_type},
            order_by="question_number",
        )
        if not exam_results:
            raise NoExamResultsError("No exam results found")

        insights = await collect_remediation_insights(
            self.store, session_id, last_messages=INSIGHT_MESSAGES_PER_THREAD
        )
        prompt = build_student_model_update_prompt(
            topic_name=session.topic_name,
            current_model=model,
            exam_results=exam_results,
            remediation_insights=insights or None,
        )
        update = await self.llm.json_chat_completion(
            [{"role": "user", "content": prompt}],
            StudentModelUpdate,
            temperature=self.settings.chat_temperature,
        )

        values: Dict = update.model_dump()
        if current:
            await self.store.update(MODELS_TABLE, values, eq={"id": current.id})
        else:
            await self.store.insert(MODELS_TABLE, {"user_id": user_id, "topic_id": session.topic_id, **values})

        logger.info(
            f"✅ [StudentModelManager] Updated model for user {user_id} topic {session.topic_id}: "
            f"mastery {model.mastery_level} → {update.mastery_level}"
        )
        return update
