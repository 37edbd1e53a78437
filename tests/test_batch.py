"""Tests for bounded-concurrency batch rendering."""

import asyncio

import pytest

from conftest import FakeProvider, make_project
from mvstudio import MissingCredentialError
from mvstudio.config import FALLBACK_PROMPT, settings
from mvstudio.orchestrator.pipeline import RenderController
from mvstudio.orchestrator.store import ProjectStore
from mvstudio.pipeline.batch import render_all
from mvstudio.schemas.project import SceneStatus


@pytest.mark.asyncio
async def test_concurrency_ceiling_is_respected():
    in_flight = 0
    peak = 0

    async def render(scene_id):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return True

    result = await render_all([f"scene-{i}" for i in range(7)], render, concurrency=2, stagger_seconds=0)

    assert peak == 2
    assert result.succeeded == 7
    assert result.failed == 0


@pytest.mark.asyncio
async def test_failures_are_isolated():
    async def render(scene_id):
        if scene_id == "scene-1":
            raise RuntimeError("boom")
        return scene_id != "scene-3"

    result = await render_all([f"scene-{i}" for i in range(5)], render, concurrency=3, stagger_seconds=0)

    assert result.succeeded == 3
    assert result.failed == 2
    assert sorted(result.failed_scene_ids) == ["scene-1", "scene-3"]
    assert result.total == 5


@pytest.mark.asyncio
async def test_dispatches_are_staggered():
    loop = asyncio.get_running_loop()
    started = []

    async def render(scene_id):
        started.append(loop.time())
        await asyncio.sleep(0.2)
        return True

    await render_all(["a", "b", "c"], render, concurrency=3, stagger_seconds=0.05)

    gaps = [b - a for a, b in zip(started, started[1:])]
    assert all(gap >= 0.04 for gap in gaps)


@pytest.mark.asyncio
async def test_empty_batch():
    async def render(scene_id):
        raise AssertionError("should not be called")

    result = await render_all([], render)

    assert result.total == 0


@pytest.mark.asyncio
async def test_invalid_concurrency():
    async def render(scene_id):
        return True

    with pytest.raises(ValueError):
        await render_all(["a"], render, concurrency=0)


@pytest.mark.asyncio
async def test_render_all_skips_done_and_in_flight_scenes(file_manager, render_config):
    store = ProjectStore(make_project(4))
    store.update_scene("scene-0", {"status": SceneStatus.GENERATING})
    store.update_scene("scene-0", {"status": SceneStatus.DONE, "video_uri": "https://fake/old"})
    store.update_scene("scene-1", {"status": SceneStatus.GENERATING})
    store.update_scene("scene-3", {"status": SceneStatus.ERROR, "error_msg": "old"})
    provider = FakeProvider()
    controller = RenderController(store, provider, file_manager=file_manager, config=render_config)

    result = await controller.render_all_scenes()

    assert result.succeeded == 2
    assert sorted(s.prompt for s in provider.submissions) == ["prompt 2", "prompt 3"]
    assert store.get_scene("scene-0").video_uri == "https://fake/old"
    assert store.get_scene("scene-1").status == SceneStatus.GENERATING
    assert store.get_scene("scene-3").status == SceneStatus.DONE


@pytest.mark.asyncio
async def test_one_blocked_scene_does_not_affect_the_rest(file_manager, render_config):
    store = ProjectStore(make_project(5))
    provider = FakeProvider({
        "prompt 2": ["filtered"],
        "sanitized prompt": ["filtered"],
        FALLBACK_PROMPT: ["filtered"],
    })
    controller = RenderController(store, provider, file_manager=file_manager, config=render_config)

    result = await controller.render_all_scenes()

    assert result.succeeded == 4
    assert result.failed_scene_ids == ["scene-2"]
    statuses = {s.id: s.status for s in store.scenes()}
    assert statuses.pop("scene-2") == SceneStatus.ERROR
    assert set(statuses.values()) == {SceneStatus.DONE}


@pytest.mark.asyncio
async def test_render_all_requires_credentials(monkeypatch, store, file_manager, render_config):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
    monkeypatch.setattr(settings.google, "api_key", None)
    provider = FakeProvider()
    controller = RenderController(store, provider, file_manager=file_manager, config=render_config)

    with pytest.raises(MissingCredentialError):
        await controller.render_all_scenes()
    assert provider.submissions == []
