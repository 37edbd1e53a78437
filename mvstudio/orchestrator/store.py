"""Observable in-memory project store.

Single owner of ProjectState. Every scene mutation goes through
update_scene(), which runs synchronously inside one event-loop step, so
concurrent renders never interleave partial writes. Mutations are keyed by
scene id and re-read current state, so a renderer never writes back a stale
copy it held across an await.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

from mvstudio.orchestrator.state import can_transition
from mvstudio.schemas.project import ProjectState, Scene

logger = logging.getLogger(__name__)

SceneMutation = Union[dict[str, Any], Callable[[Scene], Optional[dict[str, Any]]]]


class SceneNotFoundError(KeyError):
    """Raised when a scene id is not part of the project."""


@dataclass(frozen=True)
class StoreEvent:
    """Change notification delivered to subscribers.

    kind is "scene" for a single-scene update, "project" for a change of
    project settings, and "scenes" when the scene list is replaced.
    """

    kind: str
    project: ProjectState
    scene_id: Optional[str] = None
    scene: Optional[Scene] = None
    previous: Optional[Scene] = None


Listener = Callable[[StoreEvent], None]


class ProjectStore:
    """Holds one project's state and notifies subscribers on change."""

    def __init__(self, project: ProjectState):
        self._project = project
        self._listeners: list[Listener] = []

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    @property
    def project(self) -> ProjectState:
        """Deep copy of the current project state."""
        return self._project.model_copy(deep=True)

    @property
    def project_id(self) -> str:
        return self._project.id

    def scenes(self) -> list[Scene]:
        return [scene.model_copy(deep=True) for scene in self._project.scenes]

    def get_scene(self, scene_id: str) -> Optional[Scene]:
        for scene in self._project.scenes:
            if scene.id == scene_id:
                return scene.model_copy(deep=True)
        return None

    def snapshot(self) -> dict:
        """Persistable dict of the project, without local video URLs."""
        return self._project.snapshot()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def update_scene(self, scene_id: str, mutation: SceneMutation) -> Scene:
        """Apply `mutation` to one scene and notify subscribers.

        `mutation` is either a dict of field values or a callable that gets a
        copy of the current scene, may edit it in place, and may return a
        dict of further field values.

        Raises:
            SceneNotFoundError: If no scene has this id.
            pydantic.ValidationError: If the result is not a valid Scene.
        """
        index = self._index_of(scene_id)
        current = self._project.scenes[index]

        draft = current.model_copy(deep=True)
        if callable(mutation):
            changes = mutation(draft) or {}
        else:
            changes = dict(mutation)
        changes.pop("id", None)

        updated = Scene.model_validate({**draft.model_dump(), **changes})
        if not can_transition(current.status, updated.status):
            logger.warning(
                f"Scene {scene_id}: unexpected transition "
                f"{current.status.value} -> {updated.status.value}"
            )

        scenes = list(self._project.scenes)
        scenes[index] = updated
        self._project = self._project.model_copy(update={"scenes": scenes})
        self._notify(StoreEvent(
            kind="scene",
            project=self._project,
            scene_id=scene_id,
            scene=updated,
            previous=current,
        ))
        return updated.model_copy(deep=True)

    def update_project(self, **fields: Any) -> ProjectState:
        """Change project-level settings (aspect ratio, style image, ...)."""
        fields.pop("id", None)
        fields.pop("scenes", None)
        data = self._project.model_dump()
        data.update(fields)
        self._project = ProjectState.model_validate(data)
        self._notify(StoreEvent(kind="project", project=self._project))
        return self.project

    def replace_scenes(self, scenes: list[Scene]) -> None:
        """Swap in a new scene list, e.g. after planning a storyboard."""
        data = self._project.model_dump()
        data["scenes"] = [scene.model_dump() for scene in scenes]
        self._project = ProjectState.model_validate(data)
        self._notify(StoreEvent(kind="scenes", project=self._project))

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------
    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register `listener`; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, event: StoreEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(f"Store listener {listener!r} failed on {event.kind} event")

    def _index_of(self, scene_id: str) -> int:
        for index, scene in enumerate(self._project.scenes):
            if scene.id == scene_id:
                return index
        raise SceneNotFoundError(scene_id)
