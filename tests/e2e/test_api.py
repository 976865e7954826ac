"""
End-to-End Tests for the FastAPI Backend

Drives the HTTP endpoints with TestClient against the in-memory store and
the scripted LLM. Authentication and the services container are
overridden through FastAPI dependency overrides.
"""

import pytest
import sys
import os

from fastapi.testclient import TestClient

# Add project root and backend to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "adaptive_sat_tutor", "src"))
sys.path.insert(0, os.path.join(project_root, "backend"))

import main
from lib.auth import get_current_user

from adaptive_sat_tutor.errors import LLMResponseError

LINEAR = "22222222-0000-4000-8000-000000000001"
MISSING = "55555555-0000-4000-8000-000000000000"


@pytest.fixture
def client(services, user_id):
    main.app.dependency_overrides[main.get_services] = lambda: services
    main.app.dependency_overrides[get_current_user] = lambda: {"id": user_id, "email": "student@example.com"}
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


@pytest.fixture
def anonymous_client(services):
    main.app.dependency_overrides[main.get_services] = lambda: services
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


def set_state(store, session_id, state):
    for row in store.tables["learning_sessions"]:
        if row["id"] == session_id:
            row["state"] = state


def start_session(client):
    response = client.post("/api/session/start", json={"topic_id": LINEAR})
    assert response.status_code == 200
    return response.json()["session"]


def generate_pre_exam(client, llm, make_batch, session_id):
    llm.queue_batch(make_batch("P", 5))
    response = client.post("/api/exam/generate", json={"session_id": session_id, "exam_type": "pre"})
    assert response.status_code == 200
    return response.json()["questions"]


class TestSessionEndpoints:
    """Health, session start, transitions and progress."""

    def test_health_check(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_start_session(self, client):
        session = start_session(client)
        assert session["state"] == "pre_exam_pending"
        assert session["state_label"] == "Ready for Pre-Exam"
        assert session["session_number"] == 1

    def test_missing_token_rejected(self, anonymous_client):
        response = anonymous_client.post("/api/session/start", json={"topic_id": LINEAR})
        assert response.status_code == 401

    def test_malformed_topic_id_rejected(self, client):
        response = client.post("/api/session/start", json={"topic_id": "linear-equations"})
        assert response.status_code == 422

    def test_unknown_topic_not_found(self, client):
        response = client.post("/api/session/start", json={"topic_id": MISSING})
        assert response.status_code == 404

    def test_transition_outside_table_rejected(self, client):
        session = start_session(client)
        response = client.post("/api/session/transition", json={
            "session_id": session["id"],
            "target_state": "lesson_active",
        })
        assert response.status_code == 400

    def test_progress_lists_category(self, client):
        start_session(client)

        response = client.get("/api/progress")

        assert response.status_code == 200
        progress = response.json()["progress"]
        assert [row["topic"]["slug"] for row in progress] == [
            "linear-equations", "linear-inequalities", "systems-of-equations",
        ]
        assert progress[0]["status"] == "in_progress"
        assert progress[1]["status"] == "locked"


class TestExamEndpoints:
    """Exam generation and submission over HTTP."""

    def test_generate_hides_answer_key(self, client, llm, make_batch):
        session = start_session(client)

        questions = generate_pre_exam(client, llm, make_batch, session["id"])

        assert len(questions) == 5
        assert all("correct_answer" not in q and "explanation" not in q for q in questions)
        assert set(questions[0]["choices"]) == {"A", "B", "C", "D"}

    def test_submit_returns_results_and_next_state(self, client, llm, store, make_batch):
        session = start_session(client)
        questions = generate_pre_exam(client, llm, make_batch, session["id"])
        keys = {row["id"]: row["correct_answer"] for row in store.tables["exam_questions"]}

        response = client.post("/api/exam/submit", json={
            "session_id": session["id"],
            "exam_type": "pre",
            "answers": [{"question_id": q["id"], "answer": keys[q["id"]]} for q in questions],
        })

        assert response.status_code == 200
        body = response.json()
        assert body["score"] == 100
        assert body["next_state"] == "session_passed"
        assert body["state_label"] == "Topic Passed"
        assert body["has_wrong_answers"] is False
        assert body["results"][0]["correct_answer"] == keys[questions[0]["id"]]

    def test_invalid_exam_type_rejected(self, client):
        session = start_session(client)
        response = client.post("/api/exam/generate", json={"session_id": session["id"], "exam_type": "final"})
        assert response.status_code == 422

    def test_invalid_answer_letter_rejected(self, client, llm, make_batch):
        session = start_session(client)
        questions = generate_pre_exam(client, llm, make_batch, session["id"])
        response = client.post("/api/exam/submit", json={
            "session_id": session["id"],
            "exam_type": "pre",
            "answers": [{"question_id": questions[0]["id"], "answer": "E"}],
        })
        assert response.status_code == 422

    def test_unknown_session_not_found(self, client):
        response = client.post("/api/exam/generate", json={"session_id": MISSING, "exam_type": "pre"})
        assert response.status_code == 404

    def test_wrong_state_is_bad_request(self, client, llm):
        session = start_session(client)
        response = client.post("/api/exam/generate", json={"session_id": session["id"], "exam_type": "post"})
        assert response.status_code == 400
        assert llm.calls == []

    def test_exhausted_generation_is_server_error(self, client, llm):
        session = start_session(client)
        for _ in range(5):
            llm.queue_batch(LLMResponseError("Empty response from LLM"))

        response = client.post("/api/exam/generate", json={"session_id": session["id"], "exam_type": "pre"})

        assert response.status_code == 500
        assert response.json()["detail"] == "Failed to generate valid questions"


class TestStreamingEndpoints:
    """Lessons and remediation over HTTP."""

    def test_lesson_streams_plain_text(self, client, llm, store):
        session = start_session(client)
        set_state(store, session["id"], "pre_exam_completed")
        llm.queue_stream("# Linear Equations\n\n", "Keep both sides balanced.")

        response = client.post("/api/lesson/generate", json={"session_id": session["id"]})

        assert response.status_code == 200
        assert response.text == "# Linear Equations\n\nKeep both sides balanced."
        assert response.headers["content-type"].startswith("text/plain")
        lesson_id = response.headers["x-lesson-id"]
        assert store.tables["lessons"][0]["id"] == lesson_id
        assert store.tables["lessons"][0]["content"] != ""

    def test_lesson_from_wrong_state_rejected(self, client):
        session = start_session(client)
        response = client.post("/api/lesson/generate", json={"session_id": session["id"], "lesson_type": "remediation"})
        assert response.status_code == 400

    def test_remediation_start_streams_then_returns_thread(self, client, llm, make_batch):
        session = start_session(client)
        questions = generate_pre_exam(client, llm, make_batch, session["id"])
        payload = {"session_id": session["id"], "question_id": questions[0]["id"]}
        llm.queue_stream("Tutor: What is ", "being done to $x$?")

        first = client.post("/api/remediation/start", json=payload)

        assert first.status_code == 200
        assert first.text == "Tutor: What is being done to $x$?"
        thread_id = first.headers["x-thread-id"]

        second = client.post("/api/remediation/start", json=payload)

        assert second.status_code == 200
        body = second.json()
        assert body["thread"]["id"] == thread_id
        assert body["thread"]["is_resolved"] is False
        assert body["messages"] == [{"role": "assistant", "content": "What is being done to $x$?"}]

    def test_remediation_respond_and_resolved_guard(self, client, llm, make_batch):
        session = start_session(client)
        questions = generate_pre_exam(client, llm, make_batch, session["id"])
        llm.queue_stream("Where would you start?")
        thread_id = client.post("/api/remediation/start", json={
            "session_id": session["id"],
            "question_id": questions[0]["id"],
        }).headers["x-thread-id"]
        llm.queue_reply("remediation_reply", {"message": "That's it.", "is_resolved": True})

        response = client.post("/api/remediation/respond", json={"thread_id": thread_id, "message": "Subtract 3"})

        assert response.status_code == 200
        assert response.json() == {"message": "That's it.", "is_resolved": True}

        again = client.post("/api/remediation/respond", json={"thread_id": thread_id, "message": "And then?"})
        assert again.status_code == 400

    def test_empty_message_rejected(self, client):
        response = client.post("/api/remediation/respond", json={"thread_id": MISSING, "message": ""})
        assert response.status_code == 422

    def test_student_model_update_without_exam(self, client):
        session = start_session(client)
        response = client.post("/api/student-model/update", json={"session_id": session["id"], "exam_type": "post"})
        assert response.status_code == 400
