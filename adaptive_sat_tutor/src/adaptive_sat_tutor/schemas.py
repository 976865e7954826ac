"""
Structured LLM Output Schemas

Pydantic models for every structured completion, each paired with the
strict JSON schema sent as `response_format`. The completion is parsed
into the model at the boundary; nothing downstream sees raw JSON.
"""

from dataclasses import dataclass
from typing import ClassVar, Dict, List, Literal, Union

from pydantic import BaseModel, Field, field_validator

CHOICE_LABELS = ("A", "B", "C", "D")

AnswerLabel = Literal["A", "B", "C", "D"]


def _strict_object(properties: Dict, required: List[str]) -> Dict:
    return {
        "type": "object",
        "properties": properties,
        "required": required,
        "additionalProperties": False,
    }


_CHOICES_SCHEMA = _strict_object(
    {label: {"type": "string"} for label in CHOICE_LABELS},
    list(CHOICE_LABELS),
)


class GeneratedQuestion(BaseModel):
    """One multiple-choice item as produced by the generator."""
    question_text: str
    explanation: str
    choices: Dict[str, str]
    correct_answer: AnswerLabel

    @field_validator("choices")
    @classmethod
    def _exactly_four_choices(cls, value: Dict[str, str]) -> Dict[str, str]:
        if set(value) != set(CHOICE_LABELS):
            raise ValueError("choices must have exactly the keys A, B, C, D")
        return {label: value[label] for label in CHOICE_LABELS}


class ExamGeneration(BaseModel):
    SCHEMA_NAME: ClassVar[str] = "exam_questions"
    JSON_SCHEMA: ClassVar[Dict] = _strict_object(
        {
            "questions": {
                "type": "array",
                "items": _strict_object(
                    {
                        "question_text": {"type": "string"},
                        "explanation": {"type": "string"},
                        "choices": _CHOICES_SCHEMA,
                        "correct_answer": {"type": "string", "enum": list(CHOICE_LABELS)},
                    },
                    ["question_text", "explanation", "choices", "correct_answer"],
                ),
            }
        },
        ["questions"],
    )

    questions: List[GeneratedQuestion]


class QuestionVerdict(BaseModel):
    """Independent solver's verdict for one question (1-based index)."""
    index: int
    reasoning: str = ""
    correct_choices: List[AnswerLabel] = Field(default_factory=list)


class ExamValidation(BaseModel):
    SCHEMA_NAME: ClassVar[str] = "exam_validation"
    JSON_SCHEMA: ClassVar[Dict] = _strict_object(
        {
            "results": {
                "type": "array",
                "items": _strict_object(
                    {
                        "index": {"type": "integer"},
                        "reasoning": {"type": "string"},
                        "correct_choices": {
                            "type": "array",
                            "items": {"type": "string", "enum": list(CHOICE_LABELS)},
                        },
                    },
                    ["index", "reasoning", "correct_choices"],
                ),
            }
        },
        ["results"],
    )

    results: List[QuestionVerdict]


class StudentModelUpdate(BaseModel):
    SCHEMA_NAME: ClassVar[str] = "student_model_update"
    JSON_SCHEMA: ClassVar[Dict] = _strict_object(
        {
            "strengths": {"type": "array", "items": {"type": "string"}},
            "weaknesses": {"type": "array", "items": {"type": "string"}},
            "misconceptions": {"type": "array", "items": {"type": "string"}},
            "mastery_level": {"type": "number"},
        },
        ["strengths", "weaknesses", "misconceptions", "mastery_level"],
    )

    strengths: List[str] = Field(default_factory=list)
    weaknesses: List[str] = Field(default_factory=list)
    misconceptions: List[str] = Field(default_factory=list)
    mastery_level: float = 0

    @field_validator("mastery_level")
    @classmethod
    def _clamp_mastery(cls, value: float) -> float:
        return max(0.0, min(100.0, value))


class RemediationReply(BaseModel):
    SCHEMA_NAME: ClassVar[str] = "remediation_reply"
    JSON_SCHEMA: ClassVar[Dict] = _strict_object(
        {
            "message": {"type": "string"},
            "is_resolved": {"type": "boolean"},
        },
        ["message", "is_resolved"],
    )

    message: str
    is_resolved: bool = False


# Generation outcome consumed by the exam retry loop

@dataclass
class GenerationOk:
    questions: List[GeneratedQuestion]


@dataclass
class GenerationErr:
    reason: str


GenerationResult = Union[GenerationOk, GenerationErr]
