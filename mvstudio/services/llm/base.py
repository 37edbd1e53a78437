"""Text-model interface used by the storyboard planner and prompt sanitizer."""

from abc import ABC, abstractmethod
from typing import Optional, Type

from pydantic import BaseModel


class LLMAdapter(ABC):
    """A chat model that answers with an instance of a pydantic schema."""

    @abstractmethod
    async def generate_text(
        self,
        prompt: str,
        schema: Type[BaseModel],
        *,
        temperature: float = 0.7,
        system_prompt: Optional[str] = None,
        max_retries: int = 3,
    ) -> BaseModel:
        """Send `prompt` and return the reply parsed as `schema`.

        Malformed replies are re-sampled up to `max_retries` times before the
        last error propagates.
        """
        ...
