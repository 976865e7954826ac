"""
FastAPI Backend for the Adaptive SAT Math Tutor

Provides REST API endpoints for the learning loop:
- JWT Authentication (Supabase)
- Session start / transition
- Exam generation and submission
- Streaming lessons and remediation openings
- Remediation replies, student-model updates, topic progress
"""

from fastapi import FastAPI, HTTPException, Depends
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from typing import Optional, List, Literal, AsyncGenerator
from dataclasses import asdict
from uuid import UUID
import os
import sys
import time
import logging
import signal

# Add the adaptive_sat_tutor package to Python path
backend_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.dirname(backend_dir)

package_src = os.path.join(project_root, 'adaptive_sat_tutor', 'src')
if os.path.exists(package_src) and package_src not in sys.path:
    sys.path.insert(0, package_src)

# Setup enhanced logging with pretty formatting
from lib.logger import setup_logging, get_logger

setup_logging(level=logging.INFO, use_colors=True)

logger = get_logger("backend.main")

from lib.supabase_client import get_record_store, supabase_configured
from lib.auth import get_current_user

from adaptive_sat_tutor.config import TutorSettings
from adaptive_sat_tutor.errors import (
    InvalidTransitionError,
    LLMResponseError,
    NoExamResultsError,
    SessionClosedError,
    SessionNotFoundError,
    StorageError,
    ThreadResolvedError,
    TutorError,
    ValidationExhaustedError,
)
from adaptive_sat_tutor.exam_submission import SubmittedAnswer
from adaptive_sat_tutor.llm_client import LLMClient
from adaptive_sat_tutor.services import TutorServices, build_services
from adaptive_sat_tutor.session_state import public_question
from adaptive_sat_tutor.state_machine import get_state_label

# Singleton services container, built on first request
_services: Optional[TutorServices] = None


def get_services() -> TutorServices:
    """Get or create the shared TutorServices instance."""
    global _services
    if _services is None:
        settings = TutorSettings.from_env()
        _services = build_services(get_record_store(), LLMClient(settings), settings)
    return _services


# Initialize FastAPI app
app = FastAPI(
    title="Adaptive SAT Math Tutor API",
    description="Adaptive exam → lesson → remediation learning loop",
    version="1.0.0"
)

# CORS middleware for the web frontend
cors_origins = os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in cors_origins.split(",") if origin.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Thread-Id", "X-Lesson-Id"],
)

# ==================== Pydantic Models ====================

ExamType = Literal["pre", "post", "remediation"]


class SessionStartRequest(BaseModel):
    topic_id: UUID


class SessionTransitionRequest(BaseModel):
    session_id: UUID
    target_state: str


class ExamGenerateRequest(BaseModel):
    session_id: UUID
    exam_type: ExamType


class AnswerIn(BaseModel):
    question_id: UUID
    answer: Optional[Literal["A", "B", "C", "D"]] = None
    is_idk: bool = False


class ExamSubmitRequest(BaseModel):
    session_id: UUID
    exam_type: ExamType
    answers: List[AnswerIn]


class LessonGenerateRequest(BaseModel):
    session_id: UUID
    lesson_type: Literal["initial", "remediation"] = "initial"


class RemediationStartRequest(BaseModel):
    question_id: UUID
    session_id: UUID


class RemediationRespondRequest(BaseModel):
    thread_id: UUID
    message: str = Field(min_length=1, max_length=2000)


class StudentModelUpdateRequest(BaseModel):
    session_id: UUID
    exam_type: ExamType


# ==================== Helper Functions ====================

def to_http_exception(error: TutorError) -> HTTPException:
    """Map a learning-loop failure to its HTTP status."""
    if isinstance(error, SessionNotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, (InvalidTransitionError, ThreadResolvedError, SessionClosedError, NoExamResultsError)):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, (ValidationExhaustedError, StorageError, LLMResponseError)):
        return HTTPException(status_code=500, detail=str(error))
    return HTTPException(status_code=500, detail="Internal server error")


async def relay_stream(chunks: AsyncGenerator[str, None], path: str) -> AsyncGenerator[str, None]:
    """Pass chunks through, logging a stream that dies midway."""
    start_time = time.time()
    try:
        async for chunk in chunks:
            yield chunk
    except TutorError as e:
        logger.error("Stream interrupted", error=e, data={"path": path})
        raise
    logger.response(200, path, duration=time.time() - start_time, data={"streamed": True})


# ==================== API Endpoints ====================

@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "status": "ok",
        "service": "Adaptive SAT Math Tutor API",
        "version": "1.0.0",
        "supabase_connected": supabase_configured(),
    }


@app.post("/api/session/start")
async def start_session(
    body: SessionStartRequest,
    user: dict = Depends(get_current_user),
    services: TutorServices = Depends(get_services),
):
    """Open a new learning session on a topic."""
    logger.request("POST", "/api/session/start", user_id=user["id"], data={"topic_id": str(body.topic_id)})
    try:
        session = await services.sessions.start_session(user["id"], str(body.topic_id))
    except TutorError as e:
        logger.error("Failed to start session", error=e)
        raise to_http_exception(e)

    return {
        "session": {
            "id": session.id,
            "topic_id": session.topic_id,
            "state": session.state,
            "state_label": get_state_label(session.state),
            "session_number": session.session_number,
        }
    }


@app.post("/api/session/transition")
async def transition_session(
    body: SessionTransitionRequest,
    user: dict = Depends(get_current_user),
    services: TutorServices = Depends(get_services),
):
    """Move a session along a permitted edge of the state machine."""
    logger.request("POST", "/api/session/transition", user_id=user["id"], data={
        "session_id": str(body.session_id),
        "target_state": body.target_state,
    })
    try:
        state = await services.sessions.transition_session(user["id"], str(body.session_id), body.target_state)
    except TutorError as e:
        logger.warning(f"Transition rejected: {e}")
        raise to_http_exception(e)
    return {"state": state, "state_label": get_state_label(state)}


@app.post("/api/exam/generate")
async def generate_exam(
    body: ExamGenerateRequest,
    user: dict = Depends(get_current_user),
    services: TutorServices = Depends(get_services),
):
    """
    Return the session's current exam, generating it when needed.
    Answer keys are withheld until the exam is submitted.
    """
    start_time = time.time()
    logger.section("EXAM GENERATION", {
        "session_id": str(body.session_id),
        "exam_type": body.exam_type,
        "user_id": user["id"],
    })
    try:
        rows = await services.exams.generate_exam(user["id"], str(body.session_id), body.exam_type)
    except TutorError as e:
        logger.error("Exam generation failed", error=e)
        raise to_http_exception(e)
    finally:
        logger.end_section()

    logger.response(200, "/api/exam/generate", duration=time.time() - start_time, data={"questions": len(rows)})
    return {"questions": [public_question(row) for row in rows]}


@app.post("/api/exam/submit")
async def submit_exam(
    body: ExamSubmitRequest,
    user: dict = Depends(get_current_user),
    services: TutorServices = Depends(get_services),
):
    """Grade an exam and advance the session."""
    logger.request("POST", "/api/exam/submit", user_id=user["id"], data={
        "session_id": str(body.session_id),
        "exam_type": body.exam_type,
        "answers": len(body.answers),
    })
    answers = [
        SubmittedAnswer(question_id=str(a.question_id), answer=a.answer, is_idk=a.is_idk)
        for a in body.answers
    ]
    try:
        result = await services.grader.submit_exam(user["id"], str(body.session_id), body.exam_type, answers)
    except TutorError as e:
        logger.error("Exam submission failed", error=e)
        raise to_http_exception(e)

    logger.success("Exam graded", data={"score": result.score, "next_state": result.next_state})
    return {**asdict(result), "state_label": get_state_label(result.next_state)}


@app.post("/api/lesson/generate")
async def generate_lesson(
    body: LessonGenerateRequest,
    user: dict = Depends(get_current_user),
    services: TutorServices = Depends(get_services),
):
    """Stream a lesson as plain text."""
    logger.request("POST", "/api/lesson/generate", user_id=user["id"], data={
        "session_id": str(body.session_id),
        "lesson_type": body.lesson_type,
    })
    try:
        lesson = await services.lessons.start_lesson(user["id"], str(body.session_id), body.lesson_type)
    except TutorError as e:
        logger.error("Lesson generation failed", error=e)
        raise to_http_exception(e)

    return StreamingResponse(
        relay_stream(lesson.chunks, "/api/lesson/generate"),
        media_type="text/plain; charset=utf-8",
        headers={"X-Lesson-Id": lesson.lesson_id},
    )


@app.post("/api/remediation/start")
async def start_remediation(
    body: RemediationStartRequest,
    user: dict = Depends(get_current_user),
    services: TutorServices = Depends(get_services),
):
    """
    Existing thread → JSON with its messages.
    New thread → streamed opening message, thread id in X-Thread-Id.
    """
    logger.request("POST", "/api/remediation/start", user_id=user["id"], data={
        "session_id": str(body.session_id),
        "question_id": str(body.question_id),
    })
    try:
        opened = await services.remediation.start_thread(user["id"], str(body.session_id), str(body.question_id))
    except TutorError as e:
        logger.error("Failed to start remediation", error=e)
        raise to_http_exception(e)

    if opened.opening is None:
        thread = asdict(opened.thread)
        messages = thread.pop("messages")
        return {"thread": thread, "messages": messages}

    return StreamingResponse(
        relay_stream(opened.opening, "/api/remediation/start"),
        media_type="text/plain; charset=utf-8",
        headers={"X-Thread-Id": opened.thread.id},
    )


@app.post("/api/remediation/respond")
async def respond_remediation(
    body: RemediationRespondRequest,
    user: dict = Depends(get_current_user),
    services: TutorServices = Depends(get_services),
):
    """Answer a learner message in a remediation thread."""
    logger.request("POST", "/api/remediation/respond", user_id=user["id"], data={
        "thread_id": str(body.thread_id),
        "message_length": len(body.message),
    })
    try:
        reply = await services.remediation.respond(user["id"], str(body.thread_id), body.message)
    except TutorError as e:
        logger.error("Remediation reply failed", error=e)
        raise to_http_exception(e)
    return {"message": reply.message, "is_resolved": reply.is_resolved}


@app.post("/api/student-model/update")
async def update_student_model(
    body: StudentModelUpdateRequest,
    user: dict = Depends(get_current_user),
    services: TutorServices = Depends(get_services),
):
    """Rewrite the learner's model for the session's topic from an exam."""
    logger.request("POST", "/api/student-model/update", user_id=user["id"], data={
        "session_id": str(body.session_id),
        "exam_type": body.exam_type,
    })
    try:
        update = await services.student_models.update_student_model(
            user["id"], str(body.session_id), body.exam_type
        )
    except TutorError as e:
        logger.error("Student model update failed", error=e)
        raise to_http_exception(e)
    return {"student_model": update.model_dump()}


@app.get("/api/progress")
async def get_progress(
    user: dict = Depends(get_current_user),
    services: TutorServices = Depends(get_services),
):
    """Topic progress for the caller, with mastery per topic."""
    try:
        progress = await services.progress.get_progress(user["id"])
    except TutorError as e:
        logger.error("Failed to load progress", error=e)
        raise to_http_exception(e)
    return {"progress": progress}


if __name__ == "__main__":
    import uvicorn

    def handle_exit(*args):
        """Handle graceful shutdown."""
        logger.section("SERVER SHUTDOWN", {"reason": "signal received"})
        sys.exit(0)

    signal.signal(signal.SIGINT, handle_exit)
    signal.signal(signal.SIGTERM, handle_exit)

    try:
        uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
    except KeyboardInterrupt:
        logger.info("🛑 Server stopped.")
        sys.exit(0)
