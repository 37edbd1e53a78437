"""Gemini API provider: Veo for video, Imagen for stills, Gemini for text.

Transport-level failures (429, 5xx, dropped connections) are retried here
with tenacity and never surface as render attempts. Content-policy refusals
on submit are raised as SafetyRejection for the scene state machine.
"""

import logging
from typing import Optional, Type

import httpx
from google.genai import types
from google.genai.errors import ClientError
from pydantic import BaseModel
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from mvstudio import resolve_api_key
from mvstudio.config import settings
from mvstudio.pipeline.safety import is_policy_message
from mvstudio.schemas.project import StyleImage
from mvstudio.services.genai_client import get_genai_client, is_transient_error
from mvstudio.services.llm import LLMAdapter, get_adapter
from mvstudio.services.providers.base import (
    DownloadError,
    EmptyDownloadError,
    GenerativeProvider,
    SafetyRejection,
    VideoOperation,
)

logger = logging.getLogger(__name__)

DOWNLOAD_TIMEOUT_SECONDS = 300


def _is_content_policy_exception(exc: BaseException) -> bool:
    """Check if exception is a content-policy rejection (not transient)."""
    return isinstance(exc, ClientError) and is_policy_message(str(exc))


def _image_aspect_ratio(aspect_ratio: str) -> str:
    return "9:16" if aspect_ratio == "9:16" else "16:9"


def _operation_error_message(error) -> Optional[str]:
    if not error:
        return None
    if isinstance(error, dict):
        return str(error.get("message") or error)
    return str(error)


def to_video_operation(operation) -> VideoOperation:
    """Convert an SDK GenerateVideosOperation into a VideoOperation."""
    video_uri = None
    filtered_count = 0
    filtered_reasons: list[str] = []

    response = getattr(operation, "response", None) or getattr(operation, "result", None)
    if response is not None:
        filtered_count = getattr(response, "rai_media_filtered_count", None) or 0
        filtered_reasons = list(getattr(response, "rai_media_filtered_reasons", None) or [])
        generated = getattr(response, "generated_videos", None) or []
        if generated and generated[0].video is not None:
            video_uri = generated[0].video.uri

    return VideoOperation(
        name=operation.name,
        done=bool(operation.done),
        video_uri=video_uri,
        error=_operation_error_message(getattr(operation, "error", None)),
        filtered_count=filtered_count,
        filtered_reasons=filtered_reasons,
        raw=operation,
    )


# ---------------------------------------------------------------------------
# Retry-decorated RPCs (guard against 429/5xx)
# ---------------------------------------------------------------------------
@retry(
    stop=stop_after_attempt(7),
    wait=wait_exponential(multiplier=2, min=4, max=120) + wait_random(0, 5),
    retry=retry_if_exception(is_transient_error),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
async def _submit_video_job(client, model: str, prompt: str, config, image):
    """Submit a Veo job. Content-policy errors are NOT retried here."""
    return await client.aio.models.generate_videos(
        model=model,
        prompt=prompt,
        image=image,
        config=config,
    )


@retry(
    stop=stop_after_attempt(7),
    wait=wait_exponential(multiplier=2, min=4, max=120) + wait_random(0, 5),
    retry=retry_if_exception(is_transient_error),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
async def _poll_operation_get(client, operation_name: str):
    """Fetch operation status with retry on transient HTTP errors (429/5xx)."""
    op_obj = types.GenerateVideosOperation(name=operation_name)
    return await client.aio.operations.get(operation=op_obj)


class GeminiProvider(GenerativeProvider):
    """GenerativeProvider backed by the Gemini Developer API."""

    def __init__(
        self,
        *,
        video_model: Optional[str] = None,
        image_model: Optional[str] = None,
        text_adapter: Optional[LLMAdapter] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        api_key: Optional[str] = None,
    ) -> None:
        self.video_model = video_model or settings.models.video_gen
        self.image_model = image_model or settings.models.image_gen
        self._text_adapter = text_adapter
        self._http_client = http_client
        self._api_key = api_key

    @property
    def client(self):
        return get_genai_client(self._api_key)

    @property
    def text_adapter(self) -> LLMAdapter:
        if self._text_adapter is None:
            self._text_adapter = get_adapter(settings.models.sanitizer_llm)
        return self._text_adapter

    async def generate_text(
        self,
        system_instruction: str,
        user_message: str,
        schema: Type[BaseModel],
        *,
        temperature: float = 0.7,
    ) -> BaseModel:
        return await self.text_adapter.generate_text(
            user_message,
            schema,
            temperature=temperature,
            system_prompt=system_instruction,
        )

    async def generate_image(self, prompt: str, aspect_ratio: str) -> Optional[StyleImage]:
        response = await self.client.aio.models.generate_images(
            model=self.image_model,
            prompt=prompt,
            config=types.GenerateImagesConfig(
                number_of_images=1,
                aspect_ratio=_image_aspect_ratio(aspect_ratio),
                output_mime_type="image/png",
            ),
        )
        images = response.generated_images or []
        if not images or images[0].image is None or not images[0].image.image_bytes:
            return None
        image = images[0].image
        return StyleImage(data=image.image_bytes, mime_type=image.mime_type or "image/png")

    async def submit_video(
        self,
        prompt: str,
        aspect_ratio: str,
        style_image: Optional[StyleImage] = None,
    ) -> VideoOperation:
        config = types.GenerateVideosConfig(
            number_of_videos=1,
            resolution=settings.render.video_resolution,
            aspect_ratio=aspect_ratio,
        )
        image = None
        if style_image is not None:
            image = types.Image(image_bytes=style_image.data, mime_type=style_image.mime_type)

        try:
            operation = await _submit_video_job(
                self.client, self.video_model, prompt, config, image
            )
        except ClientError as e:
            if _is_content_policy_exception(e):
                raise SafetyRejection(f"Safety rejection on submit: {e}") from e
            raise

        logger.info(f"Submitted {self.video_model} job {operation.name}")
        return to_video_operation(operation)

    async def poll_video(self, operation: VideoOperation) -> VideoOperation:
        refreshed = await _poll_operation_get(self.client, operation.name)
        return to_video_operation(refreshed)

    async def download_video(self, uri: str) -> bytes:
        headers = {}
        key = self._api_key or resolve_api_key()
        if key:
            headers["x-goog-api-key"] = key

        if self._http_client is not None:
            response = await self._http_client.get(uri, headers=headers)
        else:
            async with httpx.AsyncClient(
                timeout=DOWNLOAD_TIMEOUT_SECONDS, follow_redirects=True
            ) as client:
                response = await client.get(uri, headers=headers)

        if response.status_code >= 400:
            raise DownloadError(
                f"Failed to download video: {response.status_code} {response.reason_phrase}"
            )
        if not response.content:
            raise EmptyDownloadError()
        return response.content

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
