"""
Learning Loop Data Models

Dataclasses for the records the learning loop reads and writes.
Rows come from the record store as plain dicts; from_row()/to_row()
convert between the two.
"""

from dataclasses import dataclass, field, asdict
from typing import Optional, List, Dict, Any

from adaptive_sat_tutor.state_machine import SESSION_STATES


@dataclass
class LearningSession:
    """One learner's attempt at one topic."""
    id: str
    user_id: str
    topic_id: str
    state: str = "pre_exam_pending"
    session_number: int = 1
    pre_exam_score: Optional[int] = None
    post_exam_score: Optional[int] = None
    remediation_exam_score: Optional[int] = None
    remediation_loop_count: int = 0
    # Joined topic fields (name, description), when loaded with the session
    topic: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.state not in SESSION_STATES:
            raise ValueError(f"Unknown session state: {self.state}")

    @classmethod
    def from_row(cls, row: Dict[str, Any], topic: Optional[Dict[str, Any]] = None) -> "LearningSession":
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            topic_id=row["topic_id"],
            state=row.get("state", "pre_exam_pending"),
            session_number=row.get("session_number", 1),
            pre_exam_score=row.get("pre_exam_score"),
            post_exam_score=row.get("post_exam_score"),
            remediation_exam_score=row.get("remediation_exam_score"),
            remediation_loop_count=row.get("remediation_loop_count") or 0,
            topic=topic or {},
        )

    @property
    def topic_name(self) -> str:
        return self.topic.get("name", "")

    @property
    def topic_description(self) -> str:
        return self.topic.get("description") or ""


@dataclass
class ExamQuestion:
    """One generated multiple-choice item."""
    session_id: str
    user_id: str
    exam_type: str
    question_number: int
    question_text: str
    choices: Dict[str, str]
    correct_answer: str
    explanation: str
    attempt_number: int = 1
    user_answer: Optional[str] = None
    is_correct: Optional[bool] = None
    is_idk: bool = False
    id: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ExamQuestion":
        return cls(
            id=row.get("id"),
            session_id=row["session_id"],
            user_id=row["user_id"],
            exam_type=row["exam_type"],
            attempt_number=row.get("attempt_number", 1),
            question_number=row["question_number"],
            question_text=row["question_text"],
            choices=dict(row["choices"]),
            correct_answer=row["correct_answer"],
            explanation=row.get("explanation", ""),
            user_answer=row.get("user_answer"),
            is_correct=row.get("is_correct"),
            is_idk=bool(row.get("is_idk")),
        )

    def to_row(self) -> Dict[str, Any]:
        row = asdict(self)
        if row["id"] is None:
            del row["id"]
        return row

    @property
    def is_answered(self) -> bool:
        return self.user_answer is not None or self.is_correct is not None or self.is_idk


def public_question(row: Dict[str, Any]) -> Dict[str, Any]:
    """Client-visible view of a question row; unsubmitted rows hide the key."""
    answered = row.get("user_answer") is not None or row.get("is_correct") is not None or row.get("is_idk")
    if answered:
        return dict(row)
    return {k: v for k, v in row.items() if k not in ("correct_answer", "explanation")}


@dataclass
class StudentModel:
    """Per (learner, topic) profile used to bias generation."""
    user_id: str
    topic_id: str
    strengths: List[str] = field(default_factory=list)
    weaknesses: List[str] = field(default_factory=list)
    misconceptions: List[str] = field(default_factory=list)
    mastery_level: float = 0
    id: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "StudentModel":
        return cls(
            id=row.get("id"),
            user_id=row["user_id"],
            topic_id=row["topic_id"],
            strengths=list(row.get("strengths") or []),
            weaknesses=list(row.get("weaknesses") or []),
            misconceptions=list(row.get("misconceptions") or []),
            mastery_level=row.get("mastery_level") or 0,
        )

    def has_signal(self) -> bool:
        return bool(self.strengths or self.weaknesses)


@dataclass
class RemediationMessage:
    role: str  # "assistant" or "user"
    content: str


@dataclass
class RemediationThread:
    """Per (question, learner) coaching conversation."""
    id: str
    question_id: str
    user_id: str
    session_id: str
    is_resolved: bool = False
    messages: List[RemediationMessage] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: Dict[str, Any], messages: Optional[List[Dict[str, Any]]] = None) -> "RemediationThread":
        return cls(
            id=row["id"],
            question_id=row["question_id"],
            user_id=row["user_id"],
            session_id=row["session_id"],
            is_resolved=bool(row.get("is_resolved")),
            messages=[RemediationMessage(role=m["role"], content=m["content"]) for m in (messages or [])],
        )


TOPIC_PROGRESS_STATUSES = ("locked", "available", "in_progress", "completed")


@dataclass
class TopicProgress:
    user_id: str
    topic_id: str
    status: str = "locked"
    best_score: Optional[int] = None
    attempts: int = 0
    id: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "TopicProgress":
        return cls(
            id=row.get("id"),
            user_id=row["user_id"],
            topic_id=row["topic_id"],
            status=row.get("status", "locked"),
            best_score=row.get("best_score"),
            attempts=row.get("attempts") or 0,
        )
