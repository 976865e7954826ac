"""
Shared fixtures: in-memory record store, scripted LLM double, seeded curriculum.
"""

import os
import random
import sys
from typing import Dict, List, Optional

import pytest

# Add project root to path
project_root = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
sys.path.insert(0, os.path.join(project_root, "adaptive_sat_tutor", "src"))

from adaptive_sat_tutor.config import TutorSettings
from adaptive_sat_tutor.record_store import InMemoryRecordStore
from adaptive_sat_tutor.schemas import ExamGeneration, ExamValidation, GeneratedQuestion, QuestionVerdict
from adaptive_sat_tutor.services import build_services

USER_ID = "11111111-1111-4111-8111-111111111111"

TOPICS = [
    {
        "id": "22222222-0000-4000-8000-000000000001",
        "slug": "linear-equations",
        "name": "Linear Equations",
        "description": "Solving one-variable linear equations",
        "category_slug": "algebra",
        "display_order": 1,
        "prerequisite_topic_id": None,
    },
    {
        "id": "22222222-0000-4000-8000-000000000002",
        "slug": "linear-inequalities",
        "name": "Linear Inequalities",
        "description": "Solving and graphing inequalities",
        "category_slug": "algebra",
        "display_order": 2,
        "prerequisite_topic_id": "22222222-0000-4000-8000-000000000001",
    },
    {
        "id": "22222222-0000-4000-8000-000000000003",
        "slug": "systems-of-equations",
        "name": "Systems of Equations",
        "description": "Two equations in two unknowns",
        "category_slug": "algebra",
        "display_order": 3,
        "prerequisite_topic_id": "22222222-0000-4000-8000-000000000002",
    },
    {
        "id": "22222222-0000-4000-8000-000000000004",
        "slug": "angles",
        "name": "Angles",
        "description": "Angle relationships",
        "category_slug": "geometry",
        "display_order": 1,
        "prerequisite_topic_id": None,
    },
]


def build_question(tag: str, correct: str = "A", question_text: Optional[str] = None,
                   choices: Optional[Dict[str, str]] = None) -> GeneratedQuestion:
    return GeneratedQuestion(
        question_text=question_text or f"Pick the right value for item {tag}.",
        explanation=f"Worked solution for item {tag}.",
        choices=choices or {"A": "10", "B": "20", "C": "30", "D": "40"},
        correct_answer=correct,
    )


class ScriptedLLM:
    """
    Stands in for LLMClient.

    Generation calls pop queued batches. Validation calls answer from the
    questions generated so far: the claimed answer, unless overridden in
    `verdicts` (keyed by question text). Other structured replies and
    streams pop from their queues.
    """

    def __init__(self):
        self.batches: List = []
        self.replies: Dict[str, List] = {}
        self.streams: List[List] = []
        self.verdicts: Dict[str, List[str]] = {}
        self.incomplete_validations = 0
        self.known: Dict[str, GeneratedQuestion] = {}
        self.calls: List[str] = []
        self.prompts: List[str] = []

    def queue_batch(self, batch):
        self.batches.append(batch)

    def queue_reply(self, schema_name: str, payload):
        self.replies.setdefault(schema_name, []).append(payload)

    def queue_stream(self, *chunks):
        self.streams.append(list(chunks))

    def count(self, name: str) -> int:
        return self.calls.count(name)

    async def json_chat_completion(self, messages, response_model, temperature=0.7):
        name = response_model.SCHEMA_NAME
        prompt = messages[-1]["content"]
        self.calls.append(name)
        self.prompts.append(prompt)

        if response_model is ExamGeneration:
            if not self.batches:
                raise AssertionError("Unexpected exam generation call")
            batch = self.batches.pop(0)
            if isinstance(batch, Exception):
                raise batch
            for question in batch:
                self.known[question.question_text] = question
            return ExamGeneration(questions=list(batch))

        if response_model is ExamValidation:
            return self._validate(prompt)

        queue = self.replies.get(name)
        if not queue:
            raise AssertionError(f"Unexpected {name} call")
        payload = queue.pop(0)
        if isinstance(payload, Exception):
            raise payload
        return response_model.model_validate(payload)

    def _validate(self, prompt: str) -> ExamValidation:
        if self.incomplete_validations:
            self.incomplete_validations -= 1
            return ExamValidation(results=[])
        listing = prompt.split("QUESTIONS:", 1)[1]
        found = sorted((listing.find(text), text) for text in self.known if text in listing)
        return ExamValidation(results=[
            QuestionVerdict(
                index=index,
                reasoning="solved",
                correct_choices=self.verdicts.get(text, [self.known[text].correct_answer]),
            )
            for index, (_, text) in enumerate(found, 1)
        ])

    async def stream_chat_completion(self, messages, temperature=0.7, max_tokens=4096):
        self.calls.append("stream")
        self.prompts.append(messages[-1]["content"])
        if not self.streams:
            raise AssertionError("Unexpected streaming call")
        for chunk in self.streams.pop(0):
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk


@pytest.fixture
def user_id():
    return USER_ID


@pytest.fixture
def topics():
    return TOPICS


@pytest.fixture
def store():
    """In-memory store seeded with the curriculum."""
    return InMemoryRecordStore({"topics": TOPICS})


@pytest.fixture
def llm():
    return ScriptedLLM()


@pytest.fixture
def settings():
    return TutorSettings(openai_api_key="test-key")


@pytest.fixture
def services(store, llm, settings):
    return build_services(store, llm, settings, rng=random.Random(7))


@pytest.fixture
def make_question():
    return build_question


@pytest.fixture
def make_batch():
    """Batch of distinct questions tagged `<letter>1..n`, all keyed to A."""
    def _make(prefix: str, count: int) -> List[GeneratedQuestion]:
        return [build_question(f"{prefix}{i}") for i in range(1, count + 1)]
    return _make
