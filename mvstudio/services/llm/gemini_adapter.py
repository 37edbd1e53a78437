"""Gemini adapter for the LLM abstraction layer.

Wraps the google-genai client with structured output. Uses tenacity for
retry logic with configurable max_retries.
"""

import logging
from typing import Optional, Type

from google.genai import types as genai_types
from pydantic import BaseModel, ValidationError
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from mvstudio.services.genai_client import get_genai_client, is_transient_error
from mvstudio.services.llm.base import LLMAdapter

logger = logging.getLogger(__name__)


def _should_retry(exc: BaseException) -> bool:
    # Malformed JSON is worth another sample; policy refusals are not
    return is_transient_error(exc) or isinstance(exc, ValidationError)


class GeminiAdapter(LLMAdapter):
    """LLM adapter backed by the Gemini API (google-genai SDK).

    Supports structured JSON output via response_schema.
    """

    def __init__(self, model_id: str) -> None:
        self._model_id = model_id

    async def generate_text(
        self,
        prompt: str,
        schema: Type[BaseModel],
        *,
        temperature: float = 0.7,
        system_prompt: Optional[str] = None,
        max_retries: int = 3,
    ) -> BaseModel:
        """Generate structured text using Gemini.

        Args:
            prompt: User prompt to send.
            schema: Pydantic model class for structured output.
            temperature: Sampling temperature.
            system_prompt: Optional system instruction.
            max_retries: Retry attempts on failure.

        Returns:
            Validated Pydantic model instance.
        """
        @retry(
            stop=stop_after_attempt(max_retries),
            wait=wait_exponential(multiplier=1, min=2, max=30),
            retry=retry_if_exception(_should_retry),
            reraise=True,
        )
        async def _call() -> BaseModel:
            client = get_genai_client()
            config = genai_types.GenerateContentConfig(
                temperature=temperature,
                response_mime_type="application/json",
                response_schema=schema,
                system_instruction=system_prompt,
            )
            response = await client.aio.models.generate_content(
                model=self._model_id,
                contents=prompt,
                config=config,
            )
            if not response.text:
                raise ValueError(f"{self._model_id} returned an empty response")
            return schema.model_validate_json(response.text)

        return await _call()
