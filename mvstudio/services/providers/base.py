"""Abstract capability interface for generative media providers.

The render pipeline talks only to GenerativeProvider, so a vendor swap (or a
scripted fake in tests) never touches the state machine. Render failures are
reported through the RenderError hierarchy defined here.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional, Type

from pydantic import BaseModel

from mvstudio.schemas.project import StyleImage


# ---------------------------------------------------------------------------
# Render errors
# ---------------------------------------------------------------------------
class RenderError(Exception):
    """Base class for failures inside a single scene render."""


class SafetyRejection(RenderError):
    """The provider refused the request or filtered its output on policy grounds."""


class NoVideoError(RenderError):
    """A finished operation carried no video locator."""

    def __init__(self, message: str = "Provider returned no video (possible safety block)"):
        super().__init__(message)


class OperationFailedError(RenderError):
    """A finished operation reported a provider-side error."""


class PollTimeoutError(RenderError):
    """The operation did not finish within the poll budget."""

    def __init__(self, message: str = "Video generation timed out after maximum polling attempts"):
        super().__init__(message)


class DownloadError(RenderError):
    """Fetching the finished clip failed at the transport level."""


class EmptyDownloadError(DownloadError):
    """The clip download succeeded but returned zero bytes."""

    def __init__(self, message: str = "Downloaded video is empty (no video data)"):
        super().__init__(message)


class SanitizerError(RenderError):
    """The prompt sanitizer produced no usable rewrite."""


# ---------------------------------------------------------------------------
# Operation handle
# ---------------------------------------------------------------------------
@dataclass
class VideoOperation:
    """Provider-agnostic view of a long-running video generation job."""

    name: str
    done: bool = False
    video_uri: Optional[str] = None
    error: Optional[str] = None
    filtered_count: int = 0
    filtered_reasons: list[str] = field(default_factory=list)
    raw: Any = None


class GenerativeProvider(ABC):
    """Capabilities the scene pipeline needs from a generative media vendor."""

    @abstractmethod
    async def generate_text(
        self,
        system_instruction: str,
        user_message: str,
        schema: Type[BaseModel],
        *,
        temperature: float = 0.7,
    ) -> BaseModel:
        """Run one structured text generation call and return the parsed schema."""
        ...

    @abstractmethod
    async def generate_image(self, prompt: str, aspect_ratio: str) -> Optional[StyleImage]:
        """Generate a single image; None when the provider returned nothing.

        Providers map `aspect_ratio` onto a ratio their image model supports.
        """
        ...

    @abstractmethod
    async def submit_video(
        self,
        prompt: str,
        aspect_ratio: str,
        style_image: Optional[StyleImage] = None,
    ) -> VideoOperation:
        """Start a video generation job.

        Raises SafetyRejection when the request itself is refused.
        """
        ...

    @abstractmethod
    async def poll_video(self, operation: VideoOperation) -> VideoOperation:
        """Return a refreshed view of a running operation."""
        ...

    @abstractmethod
    async def download_video(self, uri: str) -> bytes:
        """Fetch the bytes of a finished clip.

        Raises DownloadError on a non-OK response and EmptyDownloadError on a
        zero-length body.
        """
        ...

    async def aclose(self) -> None:
        """Release network resources held by the provider."""
        return None
