"""
Session Manager

Creates, loads and transitions learning sessions. Every lookup is scoped
to the owning user; a session owned by someone else is reported as not
found.
"""

import logging
from typing import Any, Dict, Optional

from adaptive_sat_tutor.errors import InvalidTransitionError, SessionNotFoundError
from adaptive_sat_tutor.progression import TopicProgressManager
from adaptive_sat_tutor.record_store import RecordStore
from adaptive_sat_tutor.session_state import LearningSession
from adaptive_sat_tutor.state_machine import LearningState, can_transition

logger = logging.getLogger(__name__)

SESSIONS_TABLE = "learning_sessions"


class SessionManager:
    """
    Persists LearningSession rows.

    Progress bookkeeping on session start is delegated to
    TopicProgressManager.
    """

    def __init__(
        self,
        store: RecordStore,
        progress: Optional[TopicProgressManager] = None,
        default_category_slug: str = "algebra",
    ):
        """
        Args:
            store: Record store (Supabase-backed or in-memory)
            progress: Topic progress manager (built from store if omitted)
            default_category_slug: Category seeded for topics that carry none
        """
        self.store = store
        self.progress = progress or TopicProgressManager(store)
        self.default_category_slug = default_category_slug

    async def get_session(self, user_id: str, session_id: str, with_topic: bool = True) -> LearningSession:
        """
        Load a session owned by user_id.

        Raises:
            SessionNotFoundError: no such session for this user
        """
        row = await self.store.select_one(SESSIONS_TABLE, eq={"id": session_id, "user_id": user_id})
        if not row:
            raise SessionNotFoundError("Session not found")
        topic = None
        if with_topic:
            topic = await self.store.select_one("topics", eq={"id": row["topic_id"]})
        return LearningSession.from_row(row, topic)

    async def update_session(self, session_id: str, values: Dict[str, Any]) -> None:
        await self.store.update(SESSIONS_TABLE, values, eq={"id": session_id})

    async def set_state(self, session: LearningSession, state: str) -> None:
        await self.update_session(session.id, {"state": state})
        logger.info(f"🔄 [SessionManager] Session {session.id}: {session.state} → {state}")
        session.state = state

    async def start_session(self, user_id: str, topic_id: str) -> LearningSession:
        """
        Open a new session on a topic.

        Seeds progress rows for the topic's category, numbers the session
        after the learner's previous ones on this topic, creates the
        student model on first use, and marks the topic in progress.

        Raises:
            SessionNotFoundError: topic does not exist
        """
        topic = await self.store.select_one("topics", eq={"id": topic_id})
        if not topic:
            raise SessionNotFoundError("Topic not found")

        category_slug = topic.get("category_slug") or self.default_category_slug
        await self.progress.initialize_user_progress(user_id, category_slug)

        session_count = await self.store.count(SESSIONS_TABLE, eq={"user_id": user_id, "topic_id": topic_id})
        rows = await self.store.insert(SESSIONS_TABLE, {
            "user_id": user_id,
            "topic_id": topic_id,
            "state": LearningState.PRE_EXAM_PENDING.value,
            "session_number": session_count + 1,
            "remediation_loop_count": 0,
        })

        model = await self.store.select_one("student_models", eq={"user_id": user_id, "topic_id": topic_id})
        if not model:
            await self.store.insert("student_models", {
                "user_id": user_id,
                "topic_id": topic_id,
                "strengths": [],
                "weaknesses": [],
                "misconceptions": [],
                "mastery_level": 0,
            })

        await self.progress.mark_in_progress(user_id, topic_id)

        session = LearningSession.from_row(rows[0], topic)
        logger.info(
            f"✅ [SessionManager] Started session #{session.session_number} "
            f"for user {user_id} on topic '{session.topic_name}'"
        )
        return session

    async def transition_session(self, user_id: str, session_id: str, target_state: str) -> str:
        """
        Move a session along a permitted edge.

        Raises:
            SessionNotFoundError: no such session for this user
            InvalidTransitionError: edge not in the transition table
        """
        session = await self.get_session(user_id, session_id, with_topic=False)
        if not can_transition(session.state, target_state):
            raise InvalidTransitionError(session.state, target_state)
        await self.set_state(session, target_state)
        return target_state
