"""Storyboard planning from lyrics and audio length.

This module implements the planner step:
- Ask the planner LLM for exactly ceil(audio_duration / clip_length) scenes
- Steer prompts away from content video models reject
- Lay scenes out back to back on the audio timeline, clamped to its end

Scene timings come from the scene index, not from the model's answer, so
the timeline is always contiguous.

Usage:
    from mvstudio.pipeline.storyboard import plan_storyboard

    scenes = await plan_storyboard(project)
"""

import logging
import math
from typing import Optional

from mvstudio import MissingCredentialError
from mvstudio.config import settings
from mvstudio.schemas.project import ProjectState, Scene, SceneStatus
from mvstudio.schemas.storyboard import StoryboardOutput
from mvstudio.services.llm import LLMAdapter, get_adapter

logger = logging.getLogger(__name__)

class PlannerError(RuntimeError):
    """Raised when the planner model call fails."""


PLANNER_USER_PROMPT = "Plan the music video storyboard."

STORYBOARD_SYSTEM_PROMPT = """You are a professional Music Video Director creating content for AI video generation.
TASK: Create a visual storyboard for a song that is {duration} seconds long.
The video MUST be broken down into exactly {num_clips} sequential scenes, each approx {clip_length} seconds.

INPUT CONTEXT:
Lyrics/Vibe: "{lyrics}"
Aspect Ratio: {aspect_ratio}

CRITICAL SAFETY REQUIREMENTS (the video model rejects prompts with any of these):
- NO money, cash, bills, counting money, or wealth displays
   -> BUT luxury items (cars, jewelry, fashion) are OK
- NO drugs, smoking, haze (use "atmospheric fog" or "stage lighting" instead)
   -> Stage fog, LED haze, backlight mist are acceptable
- NO weapons, violence, or aggressive imagery
- NO explicit/suggestive content
- NO alcohol or substance references
- "Rapper" and "hip-hop artist" are acceptable genre terms
- Use "success" metaphors like achievements, stages, spotlights instead of material wealth

ENCOURAGED ELEMENTS:
- Urban architecture, graffiti murals, street art
- Fashion: designer clothes, jewelry (chains, watches), sneakers
- Performance: stages, crowds, microphones, studio booths
- Cinematography: low angles, "shot on 35mm", "anamorphic lens", dramatic lighting, slow motion
- Vehicles: luxury cars as backdrop (not for racing/stunts)

INSTRUCTIONS:
1. Analyze the flow (Intro, Verse, Chorus) based on input.
2. Write a safe, artistic visual_prompt for EACH scene.
3. STYLE: Focus on cinematic camera work, lighting, color grading, urban architecture, and artistic metaphors.
4. CONSISTENCY: Maintain character/color consistency throughout.
"""


def scene_count(audio_duration: float, clip_length: float) -> int:
    return math.ceil(audio_duration / clip_length)


async def plan_storyboard(
    project: ProjectState,
    adapter: Optional[LLMAdapter] = None,
) -> list[Scene]:
    """Generate pending scenes covering the whole audio track.

    Raises:
        ValueError: If the project has no audio duration or no lyrics, or
            the planner returns no scenes.
        PlannerError: If the planner model call fails.
    """
    if not project.audio_duration or project.audio_duration <= 0:
        raise ValueError("Project has no audio duration; load an audio track first")
    if not project.lyrics.strip():
        raise ValueError("Project has no lyrics or vibe description")

    num_clips = scene_count(project.audio_duration, project.clip_length)
    model_id = project.planner_model or settings.models.planner_llm
    adapter = adapter or get_adapter(model_id)

    system_prompt = STORYBOARD_SYSTEM_PROMPT.format(
        duration=round(project.audio_duration),
        num_clips=num_clips,
        clip_length=project.clip_length,
        lyrics=project.lyrics.strip(),
        aspect_ratio=project.aspect_ratio,
    )

    logger.info(f"Planning {num_clips} scene(s) with {model_id}")
    try:
        storyboard: StoryboardOutput = await adapter.generate_text(
            PLANNER_USER_PROMPT,
            StoryboardOutput,
            system_prompt=system_prompt,
        )
    except MissingCredentialError:
        raise
    except Exception as e:
        raise PlannerError(f"Planner {model_id} failed: {e}") from e

    planned = storyboard.scenes
    if not planned:
        raise ValueError("Planner returned no scenes")
    if len(planned) != num_clips:
        logger.warning(f"Planner returned {len(planned)} scene(s), expected {num_clips}")
    planned = planned[:num_clips]

    scenes = [
        Scene(
            id=f"scene-{index}",
            start_time=index * project.clip_length,
            end_time=min((index + 1) * project.clip_length, project.audio_duration),
            description=item.description or "Scene",
            visual_prompt=item.visual_prompt,
            status=SceneStatus.PENDING,
        )
        for index, item in enumerate(planned)
    ]
    logger.info(f"Storyboard created with {len(scenes)} scene(s)")
    return scenes
