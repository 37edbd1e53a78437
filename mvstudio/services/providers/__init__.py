"""Generative media providers.

Usage:
    from mvstudio.services.providers import get_provider

    provider = get_provider()
    op = await provider.submit_video(prompt, "16:9")
"""

from typing import Optional

from mvstudio.services.providers.base import (
    DownloadError,
    EmptyDownloadError,
    GenerativeProvider,
    NoVideoError,
    OperationFailedError,
    PollTimeoutError,
    RenderError,
    SafetyRejection,
    SanitizerError,
    VideoOperation,
)


def get_provider(video_model: Optional[str] = None) -> GenerativeProvider:
    """Return the default provider, optionally pinned to a video model."""
    from mvstudio.services.providers.gemini import GeminiProvider

    return GeminiProvider(video_model=video_model)


__all__ = [
    "DownloadError",
    "EmptyDownloadError",
    "GenerativeProvider",
    "NoVideoError",
    "OperationFailedError",
    "PollTimeoutError",
    "RenderError",
    "SafetyRejection",
    "SanitizerError",
    "VideoOperation",
    "get_provider",
]
