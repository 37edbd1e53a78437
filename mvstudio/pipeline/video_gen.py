"""Scene clip rendering with content-safety recovery.

This module implements the per-scene render loop:
- Submit a video job for the scene prompt (plus optional style image)
- Poll the long-running operation at a fixed interval with a poll budget
- Treat filtered output, provider errors and empty results as failures
- Download the finished clip and store it through FileManager
- Escalating recovery between attempts (bounded by render.max_attempts):
  After attempt 1: drop the style image, generate a safe reference still,
                   or rewrite the prompt when no still comes back
  After attempt 2+: replace the prompt with a generic fallback

Every status change goes through ProjectStore.update_scene().

Usage:
    from mvstudio.pipeline.video_gen import render_scene

    ok = await render_scene("scene-3", store=store, provider=provider)
"""

import asyncio
import logging
from typing import Optional

from mvstudio import MissingCredentialError
from mvstudio.config import RenderConfig, settings
from mvstudio.orchestrator.store import ProjectStore, SceneNotFoundError
from mvstudio.pipeline.safety import (
    RecoveryStrategy,
    classify,
    is_policy_message,
    is_retryable,
    select_strategy,
)
from mvstudio.schemas.project import SceneStatus, StyleImage
from mvstudio.services.file_manager import FileManager
from mvstudio.services.prompt_sanitizer import sanitize_prompt
from mvstudio.services.providers.base import (
    GenerativeProvider,
    NoVideoError,
    OperationFailedError,
    PollTimeoutError,
    SafetyRejection,
    SanitizerError,
    VideoOperation,
)
from mvstudio.services.reference_image import generate_safe_reference

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Request / poll / download primitives
# ---------------------------------------------------------------------------
async def submit_video(
    provider: GenerativeProvider,
    prompt: str,
    aspect_ratio: str,
    style_image: Optional[StyleImage] = None,
) -> VideoOperation:
    """Start a video job; rejections on submit propagate unchanged."""
    logger.debug(
        f"Submitting video job (aspect={aspect_ratio}, "
        f"style_image={'yes' if style_image else 'no'}): {prompt[:80]}"
    )
    return await provider.submit_video(prompt, aspect_ratio, style_image)


def _check_finished(operation: VideoOperation) -> VideoOperation:
    """Raise for finished operations that did not produce usable output."""
    if operation.filtered_count:
        reasons = "; ".join(operation.filtered_reasons) or "no reason given"
        raise SafetyRejection(f"Safety filter blocked the video: {reasons}")

    if operation.error:
        if is_policy_message(operation.error):
            raise SafetyRejection(f"Safety rejection: {operation.error}")
        raise OperationFailedError(f"Video generation failed: {operation.error}")

    return operation


async def poll_video_operation(
    provider: GenerativeProvider,
    operation: VideoOperation,
    *,
    max_polls: int,
    interval: float,
) -> VideoOperation:
    """Poll `operation` until it is done or the poll budget is spent.

    Each poll waits `interval` seconds before querying. A failed status query
    is logged and counted as a poll; on the final poll it propagates.

    Raises:
        PollTimeoutError: If the operation is still running after max_polls.
        SafetyRejection: If the provider filtered the output.
        OperationFailedError: If the operation finished with an error.
    """
    polls = 0
    while not operation.done:
        if polls >= max_polls:
            raise PollTimeoutError()

        await asyncio.sleep(interval)
        polls += 1

        try:
            operation = await provider.poll_video(operation)
        except MissingCredentialError:
            raise
        except Exception as e:
            if polls >= max_polls:
                raise
            logger.warning(
                f"Poll {polls}/{max_polls} for {operation.name} failed, "
                f"retrying: {type(e).__name__}: {e}"
            )
            continue

        logger.debug(f"Poll {polls}/{max_polls} for {operation.name}: done={operation.done}")

    return _check_finished(operation)


async def download_video(provider: GenerativeProvider, uri: str) -> bytes:
    """Fetch clip bytes; empty payloads are rejected by the provider."""
    data = await provider.download_video(uri)
    logger.info(f"Downloaded clip ({len(data) / 1024 / 1024:.2f} MB)")
    return data


async def _generate_clip(
    provider: GenerativeProvider,
    prompt: str,
    aspect_ratio: str,
    style_image: Optional[StyleImage],
    config: RenderConfig,
) -> tuple[str, bytes]:
    """One full attempt: submit, poll, require a URI, download."""
    operation = await submit_video(provider, prompt, aspect_ratio, style_image)
    operation = await poll_video_operation(
        provider,
        operation,
        max_polls=config.poll_max,
        interval=config.poll_interval,
    )
    if not operation.video_uri:
        raise NoVideoError()
    data = await download_video(provider, operation.video_uri)
    return operation.video_uri, data


# ---------------------------------------------------------------------------
# Recovery strategies
# ---------------------------------------------------------------------------
async def _apply_recovery(
    strategy: RecoveryStrategy,
    provider: GenerativeProvider,
    scene_id: str,
    prompt: str,
    style_image: Optional[StyleImage],
    aspect_ratio: str,
    config: RenderConfig,
) -> tuple[str, Optional[StyleImage]]:
    """Return the (prompt, style_image) pair for the next attempt."""
    if strategy is RecoveryStrategy.HARD_FALLBACK:
        logger.warning(f"Scene {scene_id}: applying generic fallback prompt")
        return config.fallback_prompt, style_image

    if style_image is not None:
        logger.info(f"Scene {scene_id}: dropping style image")

    reference = await generate_safe_reference(provider, prompt, aspect_ratio)
    if reference is not None:
        logger.info(f"Scene {scene_id}: using generated safe reference image")
        return prompt, reference

    logger.info(f"Scene {scene_id}: no reference image, sanitizing prompt")
    try:
        return await sanitize_prompt(provider, prompt), None
    except SanitizerError as e:
        logger.warning(f"Scene {scene_id}: {e}; using fallback prompt")
        return config.fallback_prompt, None


# ---------------------------------------------------------------------------
# Scene render state machine
# ---------------------------------------------------------------------------
async def render_scene(
    scene_id: str,
    *,
    store: ProjectStore,
    provider: GenerativeProvider,
    file_manager: Optional[FileManager] = None,
    config: Optional[RenderConfig] = None,
) -> bool:
    """Render one scene to a clip, recovering from safety rejections.

    Returns True when the scene ends in done, False when it ends in error.

    Raises:
        SceneNotFoundError: If the scene id is unknown.
    """
    config = config or settings.render
    file_manager = file_manager or FileManager()

    scene = store.get_scene(scene_id)
    if scene is None:
        raise SceneNotFoundError(scene_id)

    project = store.project
    aspect_ratio = project.aspect_ratio
    style_image = project.style_image
    current_prompt = scene.visual_prompt

    store.update_scene(scene_id, {"status": SceneStatus.GENERATING, "error_msg": None})
    logger.info(
        f"Scene {scene_id}: render started "
        f"(style_image={'yes' if style_image else 'no'}, aspect={aspect_ratio})"
    )

    attempt = 0
    try:
        while attempt < config.max_attempts:
            attempt += 1
            logger.info(f"Scene {scene_id}: attempt {attempt}/{config.max_attempts}")

            try:
                video_uri, data = await _generate_clip(
                    provider, current_prompt, aspect_ratio, style_image, config
                )
                clip_path = file_manager.save_clip(store.project_id, scene_id, data)
            except Exception as e:
                message = str(e) or type(e).__name__
                if is_retryable(e) and attempt >= config.max_attempts:
                    logger.warning(f"Scene {scene_id}: final attempt blocked: {message}")
                    break
                if is_retryable(e):
                    category = classify(message)
                    strategy = select_strategy(attempt)
                    logger.warning(
                        f"Scene {scene_id}: attempt {attempt} blocked "
                        f"({category.value}): {message}; next: {strategy.value}"
                    )
                    store.update_scene(scene_id, {"status": SceneStatus.SANITIZING})
                    current_prompt, style_image = await _apply_recovery(
                        strategy, provider, scene_id, current_prompt,
                        style_image, aspect_ratio, config,
                    )
                    store.update_scene(scene_id, {"status": SceneStatus.GENERATING})
                    continue

                logger.error(f"Scene {scene_id}: render failed on attempt {attempt}: {message}")
                store.update_scene(
                    scene_id, {"status": SceneStatus.ERROR, "error_msg": message}
                )
                return False

            store.update_scene(scene_id, {
                "status": SceneStatus.DONE,
                "video_uri": video_uri,
                "video_url": FileManager.to_url(clip_path),
                "visual_prompt": current_prompt,
                "error_msg": None,
            })
            logger.info(f"Scene {scene_id}: done after {attempt} attempt(s)")
            return True
    except asyncio.CancelledError:
        store.update_scene(
            scene_id, {"status": SceneStatus.ERROR, "error_msg": "Render cancelled"}
        )
        raise

    logger.error(f"Scene {scene_id}: all {config.max_attempts} attempts exhausted")
    store.update_scene(
        scene_id, {"status": SceneStatus.ERROR, "error_msg": "Max retry attempts reached"}
    )
    return False
