"""Tests for storyboard planning with a stubbed planner LLM."""

import pytest

from conftest import FakeProvider, make_project
from mvstudio.config import settings
from mvstudio.orchestrator.pipeline import RenderController, SceneBusyError
from mvstudio.orchestrator.store import ProjectStore
from mvstudio.pipeline import storyboard
from mvstudio.pipeline.storyboard import PlannerError, plan_storyboard, scene_count
from mvstudio.schemas.project import SceneStatus
from mvstudio.schemas.storyboard import StoryboardOutput
from mvstudio.services.llm.base import LLMAdapter


class StubAdapter(LLMAdapter):
    def __init__(self, scenes):
        self.scenes = scenes
        self.calls = []

    async def generate_text(self, prompt, schema, *, temperature=0.7, system_prompt=None, max_retries=3):
        self.calls.append((prompt, system_prompt))
        return schema.model_validate({"scenes": self.scenes})


class FailingAdapter(LLMAdapter):
    def __init__(self):
        self.calls = 0

    async def generate_text(self, prompt, schema, *, temperature=0.7, system_prompt=None, max_retries=3):
        self.calls += 1
        raise ConnectionError("model not found")


def _planned(count):
    return [
        {"id": f"x{i}", "start_time": 99, "end_time": 100, "description": f"Part {i}",
         "visual_prompt": ["neon street", f"shot {i}"]}
        for i in range(count)
    ]


@pytest.mark.parametrize(
    "duration, clip_length, expected",
    [(30, 5, 6), (31, 5, 7), (4, 5, 1), (12.5, 2.5, 5)],
)
def test_scene_count(duration, clip_length, expected):
    assert scene_count(duration, clip_length) == expected


@pytest.mark.asyncio
async def test_scenes_cover_the_track():
    project = make_project(0, audio_duration=12, clip_length=5, lyrics="late night drive")
    adapter = StubAdapter(_planned(3))

    scenes = await plan_storyboard(project, adapter)

    assert [s.id for s in scenes] == ["scene-0", "scene-1", "scene-2"]
    assert [(s.start_time, s.end_time) for s in scenes] == [(0, 5), (5, 10), (10, 12)]
    assert all(s.status == SceneStatus.PENDING for s in scenes)
    assert scenes[1].visual_prompt == "neon street, shot 1"
    assert scenes[1].description == "Part 1"
    prompt, system_prompt = adapter.calls[0]
    assert "exactly 3 sequential scenes" in system_prompt
    assert "late night drive" in system_prompt


@pytest.mark.asyncio
async def test_extra_planned_scenes_are_dropped():
    project = make_project(0, audio_duration=10, clip_length=5)

    scenes = await plan_storyboard(project, StubAdapter(_planned(4)))

    assert len(scenes) == 2
    assert scenes[-1].end_time == 10


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "fields, planned",
    [
        ({"audio_duration": 0}, 1),
        ({"audio_duration": 10, "lyrics": "   "}, 1),
        ({"audio_duration": 10}, 0),
    ],
)
async def test_invalid_inputs(fields, planned):
    project = make_project(0, **fields)
    with pytest.raises(ValueError):
        await plan_storyboard(project, StubAdapter(_planned(planned)))


def test_storyboard_schema_coerces_lists():
    output = StoryboardOutput.model_validate({"scenes": [{"visual_prompt": ["a", "b"]}]})
    assert output.scenes[0].visual_prompt == "a, b"


@pytest.mark.asyncio
async def test_controller_plan_replaces_scenes(file_manager, render_config):
    store = ProjectStore(make_project(2, audio_duration=15))
    controller = RenderController(store, FakeProvider(), file_manager=file_manager, config=render_config)

    await controller.plan(StubAdapter(_planned(3)))

    assert [s.visual_prompt for s in store.scenes()] == [
        "neon street, shot 0", "neon street, shot 1", "neon street, shot 2",
    ]


@pytest.mark.asyncio
async def test_controller_refuses_to_replan_while_rendering(file_manager, render_config):
    store = ProjectStore(make_project(2))
    store.update_scene("scene-0", {"status": SceneStatus.GENERATING})
    controller = RenderController(store, FakeProvider(), file_manager=file_manager, config=render_config)

    with pytest.raises(SceneBusyError):
        await controller.plan(StubAdapter(_planned(2)))


@pytest.mark.asyncio
async def test_planner_failure_is_wrapped():
    project = make_project(0, audio_duration=10)

    with pytest.raises(PlannerError, match="model not found"):
        await plan_storyboard(project, FailingAdapter())


@pytest.mark.asyncio
async def test_custom_planner_falls_back_to_default(monkeypatch, file_manager, render_config):
    store = ProjectStore(make_project(0, audio_duration=10, planner_model="llama3:8b"))
    controller = RenderController(store, FakeProvider(), file_manager=file_manager, config=render_config)
    failing = FailingAdapter()
    default = StubAdapter(_planned(2))
    requested = []

    def get_adapter(model_id):
        requested.append(model_id)
        return default

    monkeypatch.setattr(storyboard, "get_adapter", get_adapter)

    scenes = await controller.plan(failing)

    assert failing.calls == 1
    assert requested == [settings.models.planner_llm]
    assert len(default.calls) == 1
    assert [s.id for s in scenes] == ["scene-0", "scene-1"]
    assert [s.id for s in store.scenes()] == ["scene-0", "scene-1"]
    assert store.project.planner_model == settings.models.planner_llm


@pytest.mark.asyncio
async def test_default_planner_failure_is_not_retried(monkeypatch, file_manager, render_config):
    store = ProjectStore(make_project(1, audio_duration=10))
    controller = RenderController(store, FakeProvider(), file_manager=file_manager, config=render_config)
    monkeypatch.setattr(storyboard, "get_adapter", lambda model_id: pytest.fail("unexpected fallback"))
    failing = FailingAdapter()

    with pytest.raises(PlannerError):
        await controller.plan(failing)

    assert failing.calls == 1
    assert store.project.planner_model is None
    assert [s.id for s in store.scenes()] == ["scene-0"]
