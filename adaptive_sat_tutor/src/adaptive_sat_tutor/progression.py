"""
Topic Progression

Per-learner topic progress: seeding progress rows for a curriculum
category, unlocking topics whose prerequisite was just completed, and
recording attempts / best scores.
"""

import logging
from typing import Any, Dict, List, Optional

from adaptive_sat_tutor.record_store import RecordStore
from adaptive_sat_tutor.session_state import TopicProgress

logger = logging.getLogger(__name__)

PROGRESS_TABLE = "user_topic_progress"
TOPICS_TABLE = "topics"


class TopicProgressManager:
    """Reads and writes `user_topic_progress` rows through a RecordStore."""

    def __init__(self, store: RecordStore):
        self.store = store

    async def initialize_user_progress(self, user_id: str, category_slug: str = "algebra") -> int:
        """
        Create missing progress rows for every topic in a category.

        The first topic by display_order starts `available`, the rest
        `locked`. Existing rows are left untouched.

        Returns:
            Number of rows created
        """
        topics = await self.store.select(TOPICS_TABLE, eq={"category_slug": category_slug}, order_by="display_order")
        if not topics:
            return 0

        existing = await self.store.select(PROGRESS_TABLE, eq={"user_id": user_id}, columns="topic_id")
        existing_ids = {row["topic_id"] for row in existing}

        new_entries = [
            {
                "user_id": user_id,
                "topic_id": topic["id"],
                "status": "available" if index == 0 else "locked",
                "attempts": 0,
                "best_score": None,
            }
            for index, topic in enumerate(topics)
            if topic["id"] not in existing_ids
        ]
        if new_entries:
            await self.store.insert(PROGRESS_TABLE, new_entries)
            logger.info(f"✅ [TopicProgressManager] Seeded {len(new_entries)} progress rows for user {user_id}")
        return len(new_entries)

    async def unlock_next_topic(self, user_id: str, completed_topic_id: str) -> List[str]:
        """
        Flip every topic that lists completed_topic_id as its prerequisite
        from `locked` to `available`. Rows in any other status are kept.

        Returns:
            Topic ids that were unlocked
        """
        next_topics = await self.store.select(
            TOPICS_TABLE, eq={"prerequisite_topic_id": completed_topic_id}, columns="id"
        )
        unlocked = []
        for topic in next_topics:
            updated = await self.store.update(
                PROGRESS_TABLE,
                {"status": "available"},
                eq={"user_id": user_id, "topic_id": topic["id"], "status": "locked"},
            )
            if updated:
                unlocked.append(topic["id"])
        if unlocked:
            logger.info(f"🔓 [TopicProgressManager] Unlocked topics {unlocked} for user {user_id}")
        return unlocked

    async def update_topic_progress(
        self,
        user_id: str,
        topic_id: str,
        status: str,
        score: Optional[int] = None,
    ) -> TopicProgress:
        """Set status; `in_progress` counts an attempt, score keeps the best."""
        existing = await self.store.select_one(PROGRESS_TABLE, eq={"user_id": user_id, "topic_id": topic_id})

        if existing:
            updates: Dict[str, Any] = {"status": status}
            if status == "in_progress":
                updates["attempts"] = (existing.get("attempts") or 0) + 1
            if score is not None:
                best = existing.get("best_score")
                updates["best_score"] = max(best, score) if best is not None else score
            rows = await self.store.update(PROGRESS_TABLE, updates, eq={"id": existing["id"]})
            return TopicProgress.from_row(rows[0] if rows else {**existing, **updates})

        rows = await self.store.insert(
            PROGRESS_TABLE,
            {"user_id": user_id, "topic_id": topic_id, "status": status, "best_score": score, "attempts": 1},
        )
        return TopicProgress.from_row(rows[0])

    async def mark_in_progress(self, user_id: str, topic_id: str) -> None:
        """Upsert the topic to `in_progress`, counting one more attempt."""
        existing = await self.store.select_one(PROGRESS_TABLE, eq={"user_id": user_id, "topic_id": topic_id})
        attempts = (existing or {}).get("attempts") or 0
        await self.store.upsert(
            PROGRESS_TABLE,
            {"user_id": user_id, "topic_id": topic_id, "status": "in_progress", "attempts": attempts + 1},
            on_conflict="user_id,topic_id",
        )

    async def complete_topic(self, user_id: str, topic_id: str, score: Optional[int] = None) -> List[str]:
        """Mark the topic completed and unlock its dependents."""
        await self.update_topic_progress(user_id, topic_id, "completed", score)
        return await self.unlock_next_topic(user_id, topic_id)

    async def get_progress(self, user_id: str) -> List[Dict[str, Any]]:
        """Progress rows joined with topic fields and student-model mastery (0 if none)."""
        progress = await self.store.select(PROGRESS_TABLE, eq={"user_id": user_id})
        models = await self.store.select("student_models", eq={"user_id": user_id})
        mastery = {m["topic_id"]: m.get("mastery_level") or 0 for m in models}

        enriched = []
        for row in progress:
            topic = await self.store.select_one(TOPICS_TABLE, eq={"id": row["topic_id"]}) or {}
            enriched.append({
                **row,
                "topic": {key: topic.get(key) for key in ("name", "slug", "category_slug", "display_order")},
                "mastery_level": mastery.get(row["topic_id"], 0),
            })
        enriched.sort(key=lambda r: (r["topic"].get("display_order") is None, r["topic"].get("display_order") or 0))
        return enriched
