"""
Tutor Errors

Exception hierarchy shared by the learning-loop components.
The backend maps each class to an HTTP status.
"""

from typing import Optional


class TutorError(Exception):
    """Base class for learning-loop failures."""


class SessionNotFoundError(TutorError):
    """Session (or thread/question) does not exist or is not owned by the caller."""


class InvalidTransitionError(TutorError):
    """Requested state change is not in the allow-list for the current state."""

    def __init__(self, from_state: str, to_state: str, message: Optional[str] = None):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(message or f"Invalid transition: {from_state} → {to_state}")


class ValidationExhaustedError(TutorError):
    """Exam generation ran out of attempts without a clean batch."""

    def __init__(self, last_feedback: Optional[str] = None):
        self.last_feedback = last_feedback
        super().__init__("Failed to generate valid questions")


class StorageError(TutorError):
    """Any persistence failure."""


class LLMResponseError(TutorError):
    """Structured completion was empty or did not match its schema."""


class ThreadResolvedError(TutorError):
    """Remediation thread is already resolved."""


class SessionClosedError(TutorError):
    """Session already reached session_passed / session_failed."""


class NoExamResultsError(TutorError):
    """No graded questions exist for the requested exam."""
