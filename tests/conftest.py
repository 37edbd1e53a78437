"""Shared fixtures: a scripted fake provider, stores and a temp database."""

from dataclasses import dataclass
from typing import Optional

import pytest

from mvstudio.config import RenderConfig
from mvstudio.db import init_database
from mvstudio.db.engine import build_engine, build_sessionmaker
from mvstudio.orchestrator.store import ProjectStore
from mvstudio.schemas.project import ProjectState, Scene, StyleImage
from mvstudio.services.file_manager import FileManager
from mvstudio.services.persistence import ProjectRepository
from mvstudio.services.providers.base import (
    EmptyDownloadError,
    GenerativeProvider,
    VideoOperation,
)

VIDEO_BYTES = b"\x00\x00\x00\x18ftypmp42fake-clip"
STYLE_IMAGE = StyleImage(data=b"style-png", mime_type="image/png")
REFERENCE_IMAGE = StyleImage(data=b"reference-png", mime_type="image/png")


@dataclass
class Submission:
    prompt: str
    aspect_ratio: str
    style_image: Optional[StyleImage]


class FakeProvider(GenerativeProvider):
    """Provider whose video outcomes are scripted per prompt.

    Outcomes are consumed in submission order for each prompt:
      "ok"        finished operation with a URI
      "filtered"  finished, output removed by the safety filter
      "no_uri"    finished with neither URI nor error
      "empty"     finished with a URI whose download is zero bytes
      "pending"   never finishes
      "error:MSG" finished with a provider error message
      Exception   raised from submit_video
    Prompts with no script left render "ok".
    """

    def __init__(
        self,
        script: Optional[dict] = None,
        *,
        reference_image: Optional[StyleImage] = None,
        reference_error: Optional[Exception] = None,
        rewrite: str = "sanitized prompt",
        rewrite_error: Optional[Exception] = None,
        polls_until_done: int = 1,
        video_bytes: bytes = VIDEO_BYTES,
    ):
        self.script = {k: list(v) for k, v in (script or {}).items()}
        self.reference_image = reference_image
        self.reference_error = reference_error
        self.rewrite = rewrite
        self.rewrite_error = rewrite_error
        self.polls_until_done = polls_until_done
        self.video_bytes = video_bytes

        self.submissions: list[Submission] = []
        self.image_prompts: list[str] = []
        self.text_calls: list[tuple[str, str]] = []
        self.downloads: list[str] = []
        self.poll_errors: list[Exception] = []
        self._ops: dict[str, list] = {}

    async def generate_text(self, system_instruction, user_message, schema, *, temperature=0.7):
        self.text_calls.append((system_instruction, user_message))
        if self.rewrite_error is not None:
            raise self.rewrite_error
        return schema(rewritten_prompt=self.rewrite)

    async def generate_image(self, prompt, aspect_ratio):
        self.image_prompts.append(prompt)
        if self.reference_error is not None:
            raise self.reference_error
        return self.reference_image

    async def submit_video(self, prompt, aspect_ratio, style_image=None):
        self.submissions.append(Submission(prompt, aspect_ratio, style_image))
        queue = self.script.get(prompt)
        outcome = queue.pop(0) if queue else "ok"
        if isinstance(outcome, BaseException):
            raise outcome
        name = f"operations/op-{len(self.submissions)}"
        self._ops[name] = [outcome, self.polls_until_done]
        return VideoOperation(name=name)

    async def poll_video(self, operation):
        if self.poll_errors:
            raise self.poll_errors.pop(0)
        state = self._ops[operation.name]
        state[1] -= 1
        outcome = state[0]
        if state[1] > 0 or outcome == "pending":
            return VideoOperation(name=operation.name)
        if outcome == "ok":
            return VideoOperation(name=operation.name, done=True, video_uri=f"https://fake/{operation.name}")
        if outcome == "empty":
            return VideoOperation(name=operation.name, done=True, video_uri=f"https://fake/empty/{operation.name}")
        if outcome == "no_uri":
            return VideoOperation(name=operation.name, done=True)
        if outcome == "filtered":
            return VideoOperation(
                name=operation.name, done=True, filtered_count=1,
                filtered_reasons=["Output was blocked by safety settings"],
            )
        if outcome.startswith("error:"):
            return VideoOperation(name=operation.name, done=True, error=outcome[len("error:"):])
        raise AssertionError(f"unknown scripted outcome {outcome!r}")

    async def download_video(self, uri):
        self.downloads.append(uri)
        if "/empty/" in uri:
            raise EmptyDownloadError()
        return self.video_bytes


def make_scenes(count: int, clip_length: float = 5.0) -> list[Scene]:
    return [
        Scene(
            id=f"scene-{i}",
            start_time=i * clip_length,
            end_time=(i + 1) * clip_length,
            description=f"Scene {i}",
            visual_prompt=f"prompt {i}",
        )
        for i in range(count)
    ]


def make_project(count: int = 3, *, style_image: Optional[StyleImage] = None, **fields) -> ProjectState:
    data = dict(
        lyrics="city lights, late night verses",
        clip_length=5.0,
        audio_duration=count * 5.0,
        aspect_ratio="16:9",
        scenes=make_scenes(count),
    )
    if style_image is not None:
        data["style_image_base64"] = style_image.to_base64()
        data["style_image_mime"] = style_image.mime_type
    data.update(fields)
    return ProjectState(**data)


@pytest.fixture(autouse=True)
def api_key(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")
    return "test-key"


@pytest.fixture
def render_config() -> RenderConfig:
    return RenderConfig(max_attempts=3, poll_interval=0, poll_max=5, concurrency=2, stagger_seconds=0)


@pytest.fixture
def file_manager(tmp_path) -> FileManager:
    return FileManager(tmp_path / "clips")


@pytest.fixture
def store() -> ProjectStore:
    return ProjectStore(make_project(3))


@pytest.fixture
async def repository(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_database(engine)
    yield ProjectRepository(build_sessionmaker(engine))
    await engine.dispose()
