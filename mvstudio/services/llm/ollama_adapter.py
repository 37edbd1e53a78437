"""Ollama adapter for storyboard planning and prompt rewriting.

Ollama's format="json" guarantees JSON but not our schema, so the schema is
described in the system message and the reply is validated with pydantic.
Some models wrap the JSON in a ```json fence anyway; that is stripped first.
"""

import json
import logging
from typing import Optional, Type

import httpx
from ollama import AsyncClient, ResponseError
from pydantic import BaseModel, ValidationError
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from mvstudio.services.llm.base import LLMAdapter

logger = logging.getLogger(__name__)

MODEL_PREFIX = "ollama/"

# Bad samples, server hiccups and dropped connections are worth another try
_RETRYABLE = (ValidationError, ValueError, ResponseError, httpx.TransportError)


def _system_message(schema: Type[BaseModel], system_prompt: Optional[str]) -> str:
    schema_json = json.dumps(schema.model_json_schema(), indent=2)
    instruction = (
        "Reply with one JSON object and nothing else. It must match this "
        f"JSON schema, with every string field given as a string:\n{schema_json}"
    )
    if not system_prompt:
        return instruction
    return f"{system_prompt}\n\n{instruction}"


def _strip_code_fence(raw: str) -> str:
    """Remove a surrounding ```json fence some models add anyway."""
    stripped = raw.strip()
    if not stripped.startswith("```"):
        return raw
    first_newline = stripped.find("\n")
    if first_newline == -1:
        return raw
    stripped = stripped[first_newline + 1:]
    if stripped.endswith("```"):
        stripped = stripped[:-3].rstrip()
    return stripped


class OllamaAdapter(LLMAdapter):
    """Structured generation against a local or hosted Ollama server."""

    def __init__(
        self,
        model_id: str,
        base_url: str = "http://localhost:11434",
        api_key: Optional[str] = None,
    ) -> None:
        self._model_id = model_id
        self._ollama_model = model_id.removeprefix(MODEL_PREFIX)
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = AsyncClient(host=base_url, headers=headers)

    async def generate_text(
        self,
        prompt: str,
        schema: Type[BaseModel],
        *,
        temperature: float = 0.7,
        system_prompt: Optional[str] = None,
        max_retries: int = 3,
    ) -> BaseModel:
        messages = [
            {"role": "system", "content": _system_message(schema, system_prompt)},
            {"role": "user", "content": prompt},
        ]

        @retry(
            stop=stop_after_attempt(max_retries),
            wait=wait_exponential(multiplier=1, min=2, max=30),
            retry=retry_if_exception_type(_RETRYABLE),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async def _call() -> BaseModel:
            response = await self._client.chat(
                model=self._ollama_model,
                messages=messages,
                format="json",
                options={"temperature": temperature},
                stream=False,
            )
            content = response.message.content or ""
            if not content.strip():
                raise ValueError(f"{self._model_id} returned an empty response")
            return schema.model_validate_json(_strip_code_fence(content))

        return await _call()
