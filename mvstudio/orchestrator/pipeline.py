"""Render orchestration entry points for the CLI and API.

RenderController binds one ProjectStore to a provider and exposes the
user-facing operations:
- plan(): generate the storyboard and replace the scene list
- render_single_scene(): render one scene through the recovery loop
- render_all_scenes(): render every scene that still needs it, with
  bounded concurrency
- hydrate(): re-derive local playback URLs for scenes rendered earlier

ProjectRegistry keeps one controller per open project, loading projects
from the database on first use and persisting every store change.
"""

import asyncio
import logging
from typing import Callable, Optional

from mvstudio import validate_credentials
from mvstudio.config import RenderConfig, settings
from mvstudio.orchestrator.state import can_render, needs_render
from mvstudio.orchestrator.store import ProjectStore, SceneNotFoundError
from mvstudio.pipeline.batch import BatchResult, render_all
from mvstudio.pipeline.storyboard import PlannerError, plan_storyboard
from mvstudio.pipeline.video_gen import download_video, render_scene
from mvstudio.schemas.project import ProjectState, Scene
from mvstudio.services.file_manager import FileManager
from mvstudio.services.llm import LLMAdapter
from mvstudio.services.persistence import ProjectPersister, ProjectRepository
from mvstudio.services.providers import GenerativeProvider, get_provider

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[ProjectState], GenerativeProvider]


class SceneBusyError(RuntimeError):
    """Raised when a render is requested for a scene that is already rendering."""


class ProjectNotFoundError(LookupError):
    """Raised when a project id is not in the database."""


def _default_provider(project: ProjectState) -> GenerativeProvider:
    return get_provider(video_model=project.video_model)


class RenderController:
    """User-facing render operations for one project."""

    def __init__(
        self,
        store: ProjectStore,
        provider: GenerativeProvider,
        *,
        file_manager: Optional[FileManager] = None,
        config: Optional[RenderConfig] = None,
    ):
        self.store = store
        self.provider = provider
        self.file_manager = file_manager or FileManager()
        self.config = config or settings.render
        self._hydrating: set[str] = set()

    async def plan(self, adapter: Optional[LLMAdapter] = None) -> list[Scene]:
        """Plan a storyboard for the project and replace its scenes.

        If a custom planner model fails, planning is retried once with the
        default planner model, which then becomes the project's model.
        """
        if any(not can_render(scene.status) for scene in self.store.scenes()):
            raise SceneBusyError("Cannot re-plan while scenes are rendering")
        project = self.store.project
        try:
            scenes = await plan_storyboard(project, adapter)
        except PlannerError as e:
            default_model = settings.models.planner_llm
            if not project.planner_model or project.planner_model == default_model:
                raise
            logger.warning(f"{e}; retrying with default planner {default_model}")
            scenes = await plan_storyboard(
                project.model_copy(update={"planner_model": default_model})
            )
            self.store.update_project(planner_model=default_model)
        self.store.replace_scenes(scenes)
        return scenes

    async def render_single_scene(self, scene_id: str) -> bool:
        """Render one scene; resolves once it reaches done or error.

        Raises:
            MissingCredentialError: If no API key is configured.
            SceneNotFoundError: If the scene id is unknown.
            SceneBusyError: If the scene is already rendering.
        """
        validate_credentials()
        scene = self.store.get_scene(scene_id)
        if scene is None:
            raise SceneNotFoundError(scene_id)
        if not can_render(scene.status):
            raise SceneBusyError(f"Scene {scene_id} is already {scene.status.value}")
        return await self._render(scene_id)

    async def render_all_scenes(self) -> BatchResult:
        """Render every scene that is not done or in flight.

        Raises:
            MissingCredentialError: If no API key is configured.
        """
        validate_credentials()
        scene_ids = [s.id for s in self.store.scenes() if needs_render(s.status)]
        logger.info(
            f"Project {self.store.project_id}: {len(scene_ids)} scene(s) queued for rendering"
        )
        return await render_all(
            scene_ids,
            self._render_if_idle,
            concurrency=self.config.concurrency,
            stagger_seconds=self.config.stagger_seconds,
        )

    async def _render_if_idle(self, scene_id: str) -> bool:
        # A single-scene render may have started while this one was queued
        scene = self.store.get_scene(scene_id)
        if scene is None or not can_render(scene.status):
            logger.info(f"Scene {scene_id} no longer renderable, skipping")
            return False
        return await self._render(scene_id)

    async def _render(self, scene_id: str) -> bool:
        return await render_scene(
            scene_id,
            store=self.store,
            provider=self.provider,
            file_manager=self.file_manager,
            config=self.config,
        )

    async def hydrate(self) -> int:
        """Restore video_url for scenes that have a video_uri but no local URL.

        Uses the stored clip when it is still on disk, otherwise downloads it
        again. Failures are logged and leave the scene unchanged.

        Returns:
            Number of scenes whose URL was restored.
        """
        restored = 0
        for scene in self.store.scenes():
            if not scene.video_uri or scene.video_url or scene.id in self._hydrating:
                continue
            self._hydrating.add(scene.id)
            try:
                path = self.file_manager.find_clip(self.store.project_id, scene.id)
                if path is None:
                    data = await download_video(self.provider, scene.video_uri)
                    path = self.file_manager.save_clip(self.store.project_id, scene.id, data)
                self.store.update_scene(scene.id, {"video_url": FileManager.to_url(path)})
                restored += 1
            except Exception as e:
                logger.warning(f"Could not restore video for scene {scene.id}: {e}")
            finally:
                self._hydrating.discard(scene.id)
        if restored:
            logger.info(f"Restored playback URLs for {restored} scene(s)")
        return restored


class ProjectRegistry:
    """Open projects keyed by id, each with a controller and a persister."""

    def __init__(
        self,
        repository: Optional[ProjectRepository] = None,
        *,
        provider_factory: ProviderFactory = _default_provider,
        file_manager: Optional[FileManager] = None,
        config: Optional[RenderConfig] = None,
    ):
        self.repository = repository or ProjectRepository()
        self._provider_factory = provider_factory
        self._file_manager = file_manager
        self._config = config
        self._open: dict[str, tuple[RenderController, ProjectPersister, Callable[[], None]]] = {}
        self._lock = asyncio.Lock()

    async def create(self, project: ProjectState) -> RenderController:
        """Persist a new project and open it."""
        await self.repository.save(project.snapshot())
        async with self._lock:
            return self._register(project)

    async def open(self, project_id: str) -> RenderController:
        """Return the controller for a project, loading it if needed.

        A freshly loaded project has no playback URLs (they are never
        stored), so it is hydrated before being returned.

        Raises:
            ProjectNotFoundError: If the project is not stored.
        """
        async with self._lock:
            if project_id in self._open:
                return self._open[project_id][0]
            project = await self.repository.load(project_id)
            if project is None:
                raise ProjectNotFoundError(project_id)
            controller = self._register(project)
        await controller.hydrate()
        return controller

    def _register(self, project: ProjectState) -> RenderController:
        store = ProjectStore(project)
        controller = RenderController(
            store,
            self._provider_factory(project),
            file_manager=self._file_manager,
            config=self._config,
        )
        persister = ProjectPersister(store, self.repository)
        unsubscribe = persister.attach()
        self._open[project.id] = (controller, persister, unsubscribe)
        return controller

    async def flush(self) -> None:
        for _, persister, _ in list(self._open.values()):
            await persister.flush()

    async def close(self) -> None:
        """Flush pending saves and release providers."""
        for controller, persister, unsubscribe in list(self._open.values()):
            await persister.flush()
            unsubscribe()
            await controller.provider.aclose()
        self._open.clear()
