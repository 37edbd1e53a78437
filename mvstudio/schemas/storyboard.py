"""Pydantic schemas for storyboard structured output.

These schemas define the expected structure for LLM-generated storyboards,
enabling structured output constraints via response_schema parameter.
"""

from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, Field


def _coerce_to_str(v: Any) -> str:
    """Coerce list/non-str values to comma-separated string.

    Some LLM providers (e.g. Ollama) return arrays for fields declared as
    string in the JSON schema.
    """
    if isinstance(v, list):
        return ", ".join(str(item) for item in v)
    return v


CoercedStr = Annotated[str, BeforeValidator(_coerce_to_str)]


class PlannedScene(BaseModel):
    """A single scene as proposed by the planner model."""

    id: str = Field(default="", description="Scene identifier, e.g. 'scene-0'")
    start_time: float = Field(default=0, description="Scene start in seconds")
    end_time: float = Field(default=0, description="Scene end in seconds")
    description: CoercedStr = Field(
        default="Scene", description="Short human-readable label for the scene"
    )
    visual_prompt: CoercedStr = Field(
        description="Detailed, policy-safe video generation prompt for this scene"
    )


class StoryboardOutput(BaseModel):
    """Complete storyboard returned by the planner."""

    scenes: list[PlannedScene] = Field(
        description="Ordered scenes covering the whole song"
    )


class SanitizedPrompt(BaseModel):
    """Rewritten, policy-safe video prompt."""

    rewritten_prompt: CoercedStr = Field(
        description="The rewritten prompt text only, with no commentary"
    )
