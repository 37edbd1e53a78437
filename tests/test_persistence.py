"""Tests for project persistence and playback URL hydration."""

import pytest

from conftest import STYLE_IMAGE, VIDEO_BYTES, FakeProvider, make_project
from mvstudio.orchestrator.pipeline import ProjectNotFoundError, ProjectRegistry, RenderController
from mvstudio.orchestrator.store import ProjectStore
from mvstudio.schemas.project import SceneStatus
from mvstudio.services.file_manager import FileManager
from mvstudio.services.persistence import ProjectPersister


@pytest.mark.asyncio
async def test_save_and_load_roundtrip(repository):
    project = make_project(3, style_image=STYLE_IMAGE, title="Night Drive", transition_type="crossfade")
    store = ProjectStore(project)
    store.update_scene("scene-1", {"status": SceneStatus.GENERATING})
    store.update_scene("scene-1", {
        "status": SceneStatus.DONE,
        "video_uri": "https://fake/clip-1",
        "video_url": "file:///tmp/clip-1.mp4",
    })

    await repository.save(store.snapshot())
    loaded = await repository.load(project.id)

    assert loaded.title == "Night Drive"
    assert loaded.transition_type.value == "crossfade"
    assert loaded.style_image == STYLE_IMAGE
    assert [s.id for s in loaded.scenes] == ["scene-0", "scene-1", "scene-2"]
    scene = loaded.scenes[1]
    assert scene.status == SceneStatus.DONE
    assert scene.video_uri == "https://fake/clip-1"
    assert scene.video_url is None
    assert loaded.last_saved_at is not None


@pytest.mark.asyncio
async def test_interrupted_renders_load_as_pending(repository):
    store = ProjectStore(make_project(2))
    store.update_scene("scene-0", {"status": SceneStatus.GENERATING})
    store.update_scene("scene-1", {"status": SceneStatus.GENERATING})
    store.update_scene("scene-1", {"status": SceneStatus.SANITIZING})

    await repository.save(store.snapshot())
    loaded = await repository.load(store.project_id)

    assert [s.status for s in loaded.scenes] == [SceneStatus.PENDING, SceneStatus.PENDING]


@pytest.mark.asyncio
async def test_resave_replaces_scenes(repository):
    store = ProjectStore(make_project(3))
    await repository.save(store.snapshot())
    store.replace_scenes(make_project(1).scenes)

    await repository.save(store.snapshot())
    loaded = await repository.load(store.project_id)

    assert [s.id for s in loaded.scenes] == ["scene-0"]


@pytest.mark.asyncio
async def test_list_and_delete(repository):
    first = ProjectStore(make_project(2, title="First"))
    first.update_scene("scene-0", {"status": SceneStatus.GENERATING})
    first.update_scene("scene-0", {"status": SceneStatus.DONE, "video_uri": "https://fake/a"})
    second = ProjectStore(make_project(1, title="Second"))
    await repository.save(first.snapshot())
    await repository.save(second.snapshot())

    summaries = {p["id"]: p for p in await repository.list_projects()}

    assert summaries[first.project_id]["scene_count"] == 2
    assert summaries[first.project_id]["done_count"] == 1
    assert summaries[second.project_id]["title"] == "Second"

    assert await repository.delete(first.project_id) is True
    assert await repository.delete(first.project_id) is False
    assert await repository.load(first.project_id) is None


@pytest.mark.asyncio
async def test_load_missing_project(repository):
    assert await repository.load("does-not-exist") is None


@pytest.mark.asyncio
async def test_persister_saves_every_change(repository):
    store = ProjectStore(make_project(2))
    persister = ProjectPersister(store, repository)
    persister.attach()

    store.update_scene("scene-0", {"status": SceneStatus.GENERATING})
    store.update_scene("scene-0", {"status": SceneStatus.DONE, "video_uri": "https://fake/x"})
    store.update_project(title="Renamed")
    await persister.flush()

    loaded = await repository.load(store.project_id)
    assert loaded.title == "Renamed"
    assert loaded.scenes[0].status == SceneStatus.DONE
    assert loaded.scenes[0].video_uri == "https://fake/x"


@pytest.mark.asyncio
async def test_persist_failure_does_not_interrupt_updates(store):
    class BrokenRepository:
        async def save(self, snapshot):
            raise RuntimeError("disk full")

    persister = ProjectPersister(store, BrokenRepository())
    persister.attach()

    store.update_scene("scene-0", {"status": SceneStatus.GENERATING})
    await persister.flush()

    assert store.get_scene("scene-0").status == SceneStatus.GENERATING


@pytest.mark.asyncio
async def test_registry_reopens_saved_project(repository, file_manager, render_config):
    providers = []

    def factory(project):
        providers.append(FakeProvider())
        return providers[-1]

    registry = ProjectRegistry(
        repository, provider_factory=factory, file_manager=file_manager, config=render_config
    )
    controller = await registry.create(make_project(2))
    project_id = controller.store.project_id
    assert await registry.open(project_id) is controller

    await controller.render_single_scene("scene-0")
    await registry.close()

    reopened = ProjectRegistry(
        repository, provider_factory=factory, file_manager=file_manager, config=render_config
    )
    controller = await reopened.open(project_id)
    scene = controller.store.get_scene("scene-0")
    assert scene.status == SceneStatus.DONE
    assert scene.video_uri
    # Playback URL comes back from the clip still on disk
    clip = file_manager.find_clip(project_id, "scene-0")
    assert scene.video_url == FileManager.to_url(clip)
    assert providers[-1].downloads == []
    assert controller.store.get_scene("scene-1").video_url is None

    with pytest.raises(ProjectNotFoundError):
        await reopened.open("missing")
    await reopened.close()


@pytest.mark.asyncio
async def test_registry_open_downloads_missing_clip(repository, file_manager, render_config):
    providers = []

    def factory(project):
        providers.append(FakeProvider())
        return providers[-1]

    registry = ProjectRegistry(
        repository, provider_factory=factory, file_manager=file_manager, config=render_config
    )
    controller = await registry.create(make_project(1))
    project_id = controller.store.project_id
    await controller.render_single_scene("scene-0")
    uri = controller.store.get_scene("scene-0").video_uri
    await registry.close()
    file_manager.find_clip(project_id, "scene-0").unlink()

    reopened = ProjectRegistry(
        repository, provider_factory=factory, file_manager=file_manager, config=render_config
    )
    controller = await reopened.open(project_id)

    assert providers[-1].downloads == [uri]
    clip = file_manager.find_clip(project_id, "scene-0")
    assert clip.read_bytes() == VIDEO_BYTES
    assert controller.store.get_scene("scene-0").video_url == FileManager.to_url(clip)
    # Already-open projects are returned as-is
    assert await reopened.open(project_id) is controller
    assert len(providers[-1].downloads) == 1
    await reopened.close()


# ---------------------------------------------------------------------------
# Hydration
# ---------------------------------------------------------------------------
def _rendered_store(count=2):
    store = ProjectStore(make_project(count))
    for i in range(count):
        store.update_scene(f"scene-{i}", {"status": SceneStatus.GENERATING})
        store.update_scene(f"scene-{i}", {"status": SceneStatus.DONE, "video_uri": f"https://fake/clip-{i}"})
    return store


@pytest.mark.asyncio
async def test_hydrate_prefers_local_clip(file_manager, render_config):
    store = _rendered_store()
    path = file_manager.save_clip(store.project_id, "scene-0", b"local")
    provider = FakeProvider()
    controller = RenderController(store, provider, file_manager=file_manager, config=render_config)

    restored = await controller.hydrate()

    assert restored == 2
    assert provider.downloads == ["https://fake/clip-1"]
    assert store.get_scene("scene-0").video_url == path.as_uri()
    assert file_manager.find_clip(store.project_id, "scene-1").read_bytes() == VIDEO_BYTES


@pytest.mark.asyncio
async def test_hydrate_failure_leaves_scene_unchanged(file_manager, render_config):
    store = _rendered_store(1)
    store.update_scene("scene-0", {"video_uri": "https://fake/empty/clip-0"})
    controller = RenderController(store, FakeProvider(), file_manager=file_manager, config=render_config)

    restored = await controller.hydrate()

    assert restored == 0
    scene = store.get_scene("scene-0")
    assert scene.video_url is None
    assert scene.status == SceneStatus.DONE


@pytest.mark.asyncio
async def test_hydrate_skips_scenes_with_url(file_manager, render_config):
    store = _rendered_store(1)
    store.update_scene("scene-0", {"video_url": "file:///already/here.mp4"})
    provider = FakeProvider()
    controller = RenderController(store, provider, file_manager=file_manager, config=render_config)

    assert await controller.hydrate() == 0
    assert provider.downloads == []
