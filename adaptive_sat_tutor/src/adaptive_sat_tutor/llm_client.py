"""
LLM Client

Thin wrapper over AsyncOpenAI with the two call shapes the learning loop
needs: schema-constrained JSON completions parsed into pydantic models,
and plain streaming completions.
"""

import json
import logging
from typing import Any, AsyncGenerator, Dict, List, Optional, Type, TypeVar

from openai import APIError, AsyncOpenAI
from pydantic import BaseModel, ValidationError

from adaptive_sat_tutor.config import TutorSettings
from adaptive_sat_tutor.errors import LLMResponseError
from adaptive_sat_tutor.math_markup import fix_corrupted_latex

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

Message = Dict[str, str]


def sanitize_latex_strings(value: Any) -> Any:
    """Apply fix_corrupted_latex to every string in a decoded JSON value."""
    if isinstance(value, str):
        return fix_corrupted_latex(value)
    if isinstance(value, list):
        return [sanitize_latex_strings(item) for item in value]
    if isinstance(value, dict):
        return {key: sanitize_latex_strings(item) for key, item in value.items()}
    return value


class LLMClient:
    """
    Chat-completion collaborator.

    Pass `client` to reuse an existing AsyncOpenAI instance (or a test
    double exposing `chat.completions.create`).
    """

    def __init__(self, settings: Optional[TutorSettings] = None, client: Optional[AsyncOpenAI] = None):
        self.settings = settings or TutorSettings.from_env()
        self.model = self.settings.model
        if client is None:
            if not self.settings.openai_api_key:
                raise ValueError("OPENAI_API_KEY not found in environment variables")
            client = AsyncOpenAI(api_key=self.settings.openai_api_key)
        self.client = client

    async def json_chat_completion(
        self,
        messages: List[Message],
        response_model: Type[T],
        temperature: float = 0.7,
    ) -> T:
        """
        Request a completion constrained to response_model's JSON schema.

        Raises:
            LLMResponseError: call failed, content was empty, not JSON,
                or did not validate against response_model
        """
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
                response_format={
                    "type": "json_schema",
                    "json_schema": {
                        "name": response_model.SCHEMA_NAME,
                        "strict": True,
                        "schema": response_model.JSON_SCHEMA,
                    },
                },
            )
        except APIError as e:
            logger.warning(f"⚠️ [LLMClient] {response_model.SCHEMA_NAME} request failed: {e}")
            raise LLMResponseError(f"{response_model.SCHEMA_NAME} request failed: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise LLMResponseError(f"Empty {response_model.SCHEMA_NAME} response")

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise LLMResponseError(f"{response_model.SCHEMA_NAME} response is not JSON: {e}") from e

        try:
            return response_model.model_validate(sanitize_latex_strings(data))
        except ValidationError as e:
            raise LLMResponseError(f"{response_model.SCHEMA_NAME} response failed validation: {e}") from e

    async def stream_chat_completion(
        self,
        messages: List[Message],
        temperature: float = 0.7,
        max_tokens: int = 4096,
    ) -> AsyncGenerator[str, None]:
        """Yield content deltas as they arrive."""
        try:
            stream = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                stream=True,
                max_tokens=max_tokens,
                temperature=temperature,
            )
            async for chunk in stream:
                if chunk.choices and len(chunk.choices) > 0:
                    delta = chunk.choices[0].delta
                    if delta and delta.content:
                        yield delta.content
        except APIError as e:
            logger.error(f"❌ [LLMClient] Streaming error: {e}")
            raise LLMResponseError(f"Streaming completion failed: {e}") from e
