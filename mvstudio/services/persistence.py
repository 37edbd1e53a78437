"""Project persistence on top of the async database layer.

ProjectRepository reads and writes whole project snapshots. ProjectPersister
subscribes to a ProjectStore and saves after every change, one save at a
time: changes arriving while a save runs are folded into the next one.
Persist failures are logged and never interrupt a render.
"""

import asyncio
import logging
from typing import Any, Callable, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mvstudio.db import STATE_VERSION, ProjectRow, SceneRow, async_session
from mvstudio.orchestrator.state import reset_interrupted
from mvstudio.orchestrator.store import ProjectStore, StoreEvent
from mvstudio.schemas.project import ProjectState, Scene

logger = logging.getLogger(__name__)

_PROJECT_FIELDS = (
    "title",
    "lyrics",
    "clip_length",
    "audio_duration",
    "aspect_ratio",
    "style_image_base64",
    "style_image_mime",
    "transition_type",
    "planner_model",
    "video_model",
)


class ProjectRepository:
    """Load and save ProjectState snapshots."""

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_factory = session_factory or async_session

    async def save(self, snapshot: dict[str, Any]) -> None:
        """Upsert a project snapshot (as produced by ProjectState.snapshot())."""
        project_id = snapshot["id"]
        async with self._session_factory() as session:
            row = await session.get(ProjectRow, project_id)
            if row is None:
                row = ProjectRow(id=project_id)
                session.add(row)
            for name in _PROJECT_FIELDS:
                setattr(row, name, snapshot.get(name))
            row.state_version = STATE_VERSION
            row.updated_at = func.now()

            await session.execute(delete(SceneRow).where(SceneRow.project_id == project_id))
            for position, scene in enumerate(snapshot.get("scenes", [])):
                session.add(SceneRow(
                    project_id=project_id,
                    scene_id=scene["id"],
                    position=position,
                    start_time=scene["start_time"],
                    end_time=scene["end_time"],
                    description=scene.get("description") or "Scene",
                    visual_prompt=scene.get("visual_prompt") or "",
                    status=scene.get("status") or "pending",
                    video_uri=scene.get("video_uri"),
                    error_msg=scene.get("error_msg"),
                ))
            await session.commit()

    async def load(self, project_id: str) -> Optional[ProjectState]:
        """Load a project; in-flight statuses from a dead process reset to pending."""
        async with self._session_factory() as session:
            row = await session.get(ProjectRow, project_id)
            if row is None:
                return None
            result = await session.execute(
                select(SceneRow)
                .where(SceneRow.project_id == project_id)
                .order_by(SceneRow.position)
            )
            scene_rows = result.scalars().all()

        if row.state_version != STATE_VERSION:
            logger.warning(
                f"Project {project_id} stored with state version {row.state_version}, "
                f"expected {STATE_VERSION}"
            )

        scenes = [
            Scene(
                id=s.scene_id,
                start_time=s.start_time,
                end_time=s.end_time,
                description=s.description or "Scene",
                visual_prompt=s.visual_prompt or "",
                status=s.status,
                video_uri=s.video_uri,
                error_msg=s.error_msg,
            )
            for s in scene_rows
        ]
        data = {name: getattr(row, name) for name in _PROJECT_FIELDS}
        data = {k: v for k, v in data.items() if v is not None}
        return ProjectState(
            id=row.id,
            scenes=reset_interrupted(scenes),
            last_saved_at=row.updated_at,
            **data,
        )

    async def list_projects(self) -> list[dict[str, Any]]:
        """Summaries of all stored projects, newest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(ProjectRow).order_by(ProjectRow.updated_at.desc())
            )
            projects = result.scalars().all()
            summaries = []
            for row in projects:
                statuses = (await session.execute(
                    select(SceneRow.status).where(SceneRow.project_id == row.id)
                )).scalars().all()
                summaries.append({
                    "id": row.id,
                    "title": row.title,
                    "aspect_ratio": row.aspect_ratio,
                    "scene_count": len(statuses),
                    "done_count": sum(1 for s in statuses if s == "done"),
                    "updated_at": row.updated_at,
                })
            return summaries

    async def delete(self, project_id: str) -> bool:
        async with self._session_factory() as session:
            row = await session.get(ProjectRow, project_id)
            if row is None:
                return False
            await session.execute(delete(SceneRow).where(SceneRow.project_id == project_id))
            await session.delete(row)
            await session.commit()
            return True


class ProjectPersister:
    """Store subscriber that writes snapshots through a ProjectRepository."""

    def __init__(self, store: ProjectStore, repository: ProjectRepository):
        self._store = store
        self._repository = repository
        self._dirty = False
        self._task: Optional[asyncio.Task] = None

    def attach(self) -> Callable[[], None]:
        """Start persisting store changes; returns the unsubscribe function."""
        return self._store.subscribe(self._on_change)

    def _on_change(self, event: StoreEvent) -> None:
        self._dirty = True
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: flush() will write the pending change
            return
        if self._task is None or self._task.done():
            self._task = loop.create_task(self._drain())

    async def _drain(self) -> None:
        while self._dirty:
            self._dirty = False
            try:
                await self._repository.save(self._store.snapshot())
            except Exception:
                logger.exception(f"Failed to persist project {self._store.project_id}")

    async def flush(self) -> None:
        """Wait until every change seen so far has been written."""
        if self._task is not None and not self._task.done():
            await self._task
        if self._dirty:
            await self._drain()
