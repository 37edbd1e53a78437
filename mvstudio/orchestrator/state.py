"""Scene state constants and transition logic for the render orchestrator.

A scene moves pending -> generating -> (sanitizing -> generating)* and ends
in done or error. Terminal scenes may be rendered again, which restarts
them at generating.
"""

from typing import Iterable

from mvstudio.schemas.project import Scene, SceneStatus

SCENE_STATES = {
    SceneStatus.PENDING: "Planned, not yet rendered",
    SceneStatus.GENERATING: "Video request submitted or polling",
    SceneStatus.SANITIZING: "Applying a safety recovery step",
    SceneStatus.DONE: "Clip rendered and downloaded",
    SceneStatus.ERROR: "Render failed",
}

SCENE_TRANSITIONS = {
    SceneStatus.PENDING: {SceneStatus.GENERATING},
    SceneStatus.GENERATING: {SceneStatus.SANITIZING, SceneStatus.DONE, SceneStatus.ERROR},
    SceneStatus.SANITIZING: {SceneStatus.GENERATING, SceneStatus.ERROR},
    SceneStatus.DONE: {SceneStatus.GENERATING},
    SceneStatus.ERROR: {SceneStatus.GENERATING},
}

# A render is already running for scenes in these states
IN_FLIGHT_STATES = {SceneStatus.GENERATING, SceneStatus.SANITIZING}

# render-all leaves these alone
BATCH_SKIP_STATES = IN_FLIGHT_STATES | {SceneStatus.DONE}


def can_transition(current: SceneStatus, target: SceneStatus) -> bool:
    """Check whether `current -> target` is a legal scene transition."""
    if current == target:
        return True
    return target in SCENE_TRANSITIONS.get(current, set())


def can_render(status: SceneStatus) -> bool:
    """A scene can be (re-)rendered unless a render is already in flight."""
    return status not in IN_FLIGHT_STATES


def needs_render(status: SceneStatus) -> bool:
    """True for scenes render-all should pick up."""
    return status not in BATCH_SKIP_STATES


def reset_interrupted(scenes: Iterable[Scene]) -> list[Scene]:
    """Return scenes with stale in-flight statuses reset to pending.

    A project loaded from storage cannot have a live render, so a
    generating/sanitizing status means the previous process stopped
    mid-render.
    """
    reset = []
    for scene in scenes:
        if scene.status in IN_FLIGHT_STATES:
            scene = scene.model_copy(update={"status": SceneStatus.PENDING})
        reset.append(scene)
    return reset
