"""
Tutor Services

Wires one record store and one LLM client into every learning-loop
component so they share a single SessionManager and progress tracker.
"""

import random
from dataclasses import dataclass
from typing import Optional

from adaptive_sat_tutor.config import TutorSettings
from adaptive_sat_tutor.exam_generator import ExamGenerator
from adaptive_sat_tutor.exam_submission import ExamGrader
from adaptive_sat_tutor.lesson_generator import LessonGenerator
from adaptive_sat_tutor.llm_client import LLMClient
from adaptive_sat_tutor.progression import TopicProgressManager
from adaptive_sat_tutor.record_store import RecordStore
from adaptive_sat_tutor.remediation import RemediationManager
from adaptive_sat_tutor.session_manager import SessionManager
from adaptive_sat_tutor.student_model_manager import StudentModelManager


@dataclass
class TutorServices:
    store: RecordStore
    settings: TutorSettings
    progress: TopicProgressManager
    sessions: SessionManager
    student_models: StudentModelManager
    exams: ExamGenerator
    grader: ExamGrader
    lessons: LessonGenerator
    remediation: RemediationManager


def build_services(
    store: RecordStore,
    llm: LLMClient,
    settings: Optional[TutorSettings] = None,
    rng: Optional[random.Random] = None,
) -> TutorServices:
    settings = settings or TutorSettings()
    progress = TopicProgressManager(store)
    sessions = SessionManager(store, progress, settings.default_category_slug)
    student_models = StudentModelManager(store, llm, sessions, settings)
    return TutorServices(
        store=store,
        settings=settings,
        progress=progress,
        sessions=sessions,
        student_models=student_models,
        exams=ExamGenerator(store, llm, settings, sessions, student_models, rng=rng),
        grader=ExamGrader(store, sessions, progress),
        lessons=LessonGenerator(store, llm, settings, sessions, student_models),
        remediation=RemediationManager(store, llm, settings, sessions, student_models),
    )
