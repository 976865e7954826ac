"""
Tutor Settings

Explicit configuration object passed into the orchestrators.
Values come from the environment (python-dotenv) with sane defaults.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()
load_dotenv('../.env')  # Also try parent directory


@dataclass
class TutorSettings:
    """Runtime settings for the learning loop."""
    openai_api_key: Optional[str] = None
    model: str = "gpt-4o"

    # Temperatures
    generation_temperature: float = 0.3
    validation_temperature: float = 0.0
    chat_temperature: float = 0.7

    # Streaming budgets
    lesson_max_tokens: int = 4096
    remediation_max_tokens: int = 1024

    # Exam pipeline attempt budgets
    max_generation_attempts: int = 5
    max_validation_attempts: int = 2
    max_partial_regen_attempts: int = 3

    # Curriculum
    default_category_slug: str = "algebra"

    @classmethod
    def from_env(cls) -> "TutorSettings":
        """Build settings from environment variables."""
        return cls(
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            model=os.getenv("OPENAI_MODEL", "gpt-4o"),
            generation_temperature=float(os.getenv("EXAM_GENERATION_TEMPERATURE", "0.3")),
            lesson_max_tokens=int(os.getenv("LESSON_MAX_TOKENS", "4096")),
            remediation_max_tokens=int(os.getenv("REMEDIATION_MAX_TOKENS", "1024")),
            max_generation_attempts=int(os.getenv("MAX_GENERATION_ATTEMPTS", "5")),
            max_validation_attempts=int(os.getenv("MAX_VALIDATION_ATTEMPTS", "2")),
            max_partial_regen_attempts=int(os.getenv("MAX_PARTIAL_REGEN_ATTEMPTS", "3")),
            default_category_slug=os.getenv("DEFAULT_CATEGORY_SLUG", "algebra"),
        )
