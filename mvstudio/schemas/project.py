"""Pydantic models for project and scene state.

Scene records are the unit the render pipeline works on. video_url is a
local playable handle derived from video_uri and is never persisted; see
ProjectState.snapshot().
"""

import base64
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from mvstudio.config import SUPPORTED_ASPECT_RATIOS

logger = logging.getLogger(__name__)


class SceneStatus(str, Enum):
    PENDING = "pending"
    GENERATING = "generating"
    SANITIZING = "sanitizing"
    DONE = "done"
    ERROR = "error"


_STATUS_VALUES = frozenset(s.value for s in SceneStatus)


class TransitionType(str, Enum):
    CUT = "cut"
    CROSSFADE = "crossfade"
    FADEBLACK = "fadeblack"


@dataclass(frozen=True)
class StyleImage:
    """Inline reference image sent alongside a video request."""

    data: bytes
    mime_type: str = "image/png"

    @classmethod
    def from_base64(cls, encoded: str, mime_type: str) -> "StyleImage":
        return cls(data=base64.b64decode(encoded), mime_type=mime_type)

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode()


class Scene(BaseModel):
    """One storyboard segment mapped to a single generated clip."""

    id: str
    start_time: float = Field(ge=0)
    end_time: float
    description: str = "Scene"
    visual_prompt: str
    status: SceneStatus = SceneStatus.PENDING
    video_uri: Optional[str] = None
    video_url: Optional[str] = None
    error_msg: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def unknown_status_is_pending(cls, v: Any) -> Any:
        if isinstance(v, SceneStatus):
            return v
        # Records written by older builds may carry statuses we no longer use
        if isinstance(v, str) and v not in _STATUS_VALUES:
            logger.warning(f"Unknown scene status {v!r}, resetting to pending")
            return SceneStatus.PENDING
        return v

    @model_validator(mode="after")
    def check_time_range(self) -> "Scene":
        if self.end_time <= self.start_time:
            raise ValueError(
                f"Scene {self.id}: end_time ({self.end_time}) must be greater "
                f"than start_time ({self.start_time})"
            )
        return self

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


class ProjectState(BaseModel):
    """Project-wide configuration plus its ordered scene list."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    title: Optional[str] = None
    lyrics: str = ""
    clip_length: float = Field(default=5, gt=0)
    audio_duration: float = Field(default=0, ge=0)
    aspect_ratio: str = "16:9"
    style_image_base64: Optional[str] = None
    style_image_mime: Optional[str] = None
    transition_type: TransitionType = TransitionType.CUT
    planner_model: Optional[str] = None
    video_model: Optional[str] = None
    scenes: list[Scene] = Field(default_factory=list)
    last_saved_at: Optional[datetime] = None

    @field_validator("aspect_ratio", mode="before")
    @classmethod
    def normalize_aspect_ratio(cls, v: Any) -> str:
        if v not in SUPPORTED_ASPECT_RATIOS:
            logger.warning(f"Unsupported aspect ratio {v!r}, using 16:9")
            return "16:9"
        return v

    @model_validator(mode="after")
    def check_scene_bounds(self) -> "ProjectState":
        seen: set[str] = set()
        for scene in self.scenes:
            if scene.id in seen:
                raise ValueError(f"Duplicate scene id {scene.id}")
            seen.add(scene.id)
            if self.audio_duration and scene.end_time > self.audio_duration + 1e-6:
                raise ValueError(
                    f"Scene {scene.id} ends at {scene.end_time}s, past the "
                    f"audio duration ({self.audio_duration}s)"
                )
        return self

    @property
    def style_image(self) -> Optional[StyleImage]:
        """Decoded style image, or None when the project has none."""
        if not self.style_image_base64:
            return None
        return StyleImage.from_base64(
            self.style_image_base64, self.style_image_mime or "image/png"
        )

    def snapshot(self) -> dict:
        """Serializable form for persistence, without local playback handles."""
        data = self.model_dump(mode="json", exclude={"scenes"})
        data["scenes"] = [
            scene.model_dump(mode="json", exclude={"video_url"}) for scene in self.scenes
        ]
        return data
