"""API route handlers and Pydantic request/response schemas."""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from fastapi.responses import FileResponse
from pydantic import BaseModel, Field

from mvstudio import MissingCredentialError, __version__, validate_credentials
from mvstudio.config import SUPPORTED_ASPECT_RATIOS
from mvstudio.orchestrator.pipeline import (
    ProjectNotFoundError,
    ProjectRegistry,
    RenderController,
    SceneBusyError,
)
from mvstudio.orchestrator.state import can_render, needs_render
from mvstudio.pipeline.storyboard import PlannerError
from mvstudio.schemas.project import ProjectState, Scene, TransitionType

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


# ============================================================================
# Request / Response Schemas
# ============================================================================

class CreateProjectRequest(BaseModel):
    lyrics: str = Field(min_length=1)
    audio_duration: float = Field(gt=0)
    title: Optional[str] = None
    clip_length: float = Field(default=5, gt=0)
    aspect_ratio: str = "16:9"
    transition_type: TransitionType = TransitionType.CUT
    planner_model: Optional[str] = None
    video_model: Optional[str] = None
    style_image_base64: Optional[str] = None
    style_image_mime: Optional[str] = None


class UpdateProjectRequest(BaseModel):
    title: Optional[str] = None
    lyrics: Optional[str] = None
    audio_duration: Optional[float] = Field(default=None, gt=0)
    clip_length: Optional[float] = Field(default=None, gt=0)
    aspect_ratio: Optional[str] = None
    transition_type: Optional[TransitionType] = None
    style_image_base64: Optional[str] = None
    style_image_mime: Optional[str] = None
    clear_style_image: bool = False


class SceneResponse(BaseModel):
    id: str
    start_time: float
    end_time: float
    description: str
    visual_prompt: str
    status: str
    video_uri: Optional[str] = None
    clip_url: Optional[str] = None
    error_msg: Optional[str] = None


class ProjectResponse(BaseModel):
    id: str
    title: Optional[str]
    lyrics: str
    clip_length: float
    audio_duration: float
    aspect_ratio: str
    transition_type: str
    has_style_image: bool
    planner_model: Optional[str]
    video_model: Optional[str]
    last_saved_at: Optional[datetime]
    scenes: list[SceneResponse]


class ProjectListItem(BaseModel):
    id: str
    title: Optional[str]
    aspect_ratio: str
    scene_count: int
    done_count: int
    updated_at: Optional[datetime]


class RenderAcceptedResponse(BaseModel):
    project_id: str
    scene_ids: list[str]
    status_url: str


class HydrateResponse(BaseModel):
    restored: int


# ============================================================================
# Dependencies and helpers
# ============================================================================

def get_registry(request: Request) -> ProjectRegistry:
    return request.app.state.registry


async def _open_project(registry: ProjectRegistry, project_id: str) -> RenderController:
    try:
        return await registry.open(project_id)
    except ProjectNotFoundError:
        raise HTTPException(status_code=404, detail="Project not found")


def _scene_to_response(project_id: str, scene: Scene) -> SceneResponse:
    return SceneResponse(
        id=scene.id,
        start_time=scene.start_time,
        end_time=scene.end_time,
        description=scene.description,
        visual_prompt=scene.visual_prompt,
        status=scene.status.value,
        video_uri=scene.video_uri,
        clip_url=(
            f"/api/projects/{project_id}/scenes/{scene.id}/clip" if scene.video_url else None
        ),
        error_msg=scene.error_msg,
    )


def _project_to_response(project: ProjectState) -> ProjectResponse:
    return ProjectResponse(
        id=project.id,
        title=project.title,
        lyrics=project.lyrics,
        clip_length=project.clip_length,
        audio_duration=project.audio_duration,
        aspect_ratio=project.aspect_ratio,
        transition_type=project.transition_type.value,
        has_style_image=bool(project.style_image_base64),
        planner_model=project.planner_model,
        video_model=project.video_model,
        last_saved_at=project.last_saved_at,
        scenes=[_scene_to_response(project.id, s) for s in project.scenes],
    )


def _require_credentials() -> None:
    try:
        validate_credentials()
    except MissingCredentialError as e:
        raise HTTPException(status_code=400, detail=str(e))


async def _run_scene_render(controller: RenderController, scene_id: str) -> None:
    try:
        await controller.render_single_scene(scene_id)
    except SceneBusyError as e:
        logger.warning(f"Render request for {scene_id} dropped: {e}")


async def _run_batch_render(controller: RenderController) -> None:
    result = await controller.render_all_scenes()
    logger.info(
        f"Project {controller.store.project_id}: batch finished "
        f"({result.succeeded} succeeded, {result.failed} failed)"
    )


# ============================================================================
# Endpoints
# ============================================================================

@router.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "ok",
        "version": __version__,
    }


@router.get("/projects", response_model=list[ProjectListItem])
async def list_projects(registry: ProjectRegistry = Depends(get_registry)):
    """List stored projects, newest first."""
    return [ProjectListItem(**p) for p in await registry.repository.list_projects()]


@router.post("/projects", status_code=201, response_model=ProjectResponse)
async def create_project(
    request: CreateProjectRequest,
    registry: ProjectRegistry = Depends(get_registry),
):
    """Create a project. Scenes are added by the storyboard endpoint."""
    if request.aspect_ratio not in SUPPORTED_ASPECT_RATIOS:
        raise HTTPException(
            status_code=422,
            detail=f"aspect_ratio must be 16:9 or 9:16, got {request.aspect_ratio}",
        )
    project = ProjectState(**request.model_dump())
    controller = await registry.create(project)
    return _project_to_response(controller.store.project)


@router.get("/projects/{project_id}", response_model=ProjectResponse)
async def get_project(project_id: str, registry: ProjectRegistry = Depends(get_registry)):
    """Project settings and live scene statuses."""
    controller = await _open_project(registry, project_id)
    return _project_to_response(controller.store.project)


@router.patch("/projects/{project_id}", response_model=ProjectResponse)
async def update_project(
    project_id: str,
    request: UpdateProjectRequest,
    registry: ProjectRegistry = Depends(get_registry),
):
    """Change project settings."""
    controller = await _open_project(registry, project_id)
    fields = request.model_dump(exclude_none=True, exclude={"clear_style_image"})
    if request.clear_style_image:
        fields["style_image_base64"] = None
        fields["style_image_mime"] = None
    if "aspect_ratio" in fields and fields["aspect_ratio"] not in SUPPORTED_ASPECT_RATIOS:
        raise HTTPException(status_code=422, detail="aspect_ratio must be 16:9 or 9:16")
    try:
        controller.store.update_project(**fields)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return _project_to_response(controller.store.project)


@router.post("/projects/{project_id}/storyboard", response_model=ProjectResponse)
async def plan_project_storyboard(
    project_id: str,
    registry: ProjectRegistry = Depends(get_registry),
):
    """Generate the storyboard, replacing existing scenes."""
    controller = await _open_project(registry, project_id)
    _require_credentials()
    try:
        await controller.plan()
    except SceneBusyError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except PlannerError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return _project_to_response(controller.store.project)


@router.post(
    "/projects/{project_id}/scenes/{scene_id}/render",
    status_code=202,
    response_model=RenderAcceptedResponse,
)
async def render_scene_endpoint(
    project_id: str,
    scene_id: str,
    background_tasks: BackgroundTasks,
    registry: ProjectRegistry = Depends(get_registry),
):
    """Start rendering one scene in the background.

    Returns 409 if the scene is already rendering.
    """
    controller = await _open_project(registry, project_id)
    _require_credentials()
    scene = controller.store.get_scene(scene_id)
    if scene is None:
        raise HTTPException(status_code=404, detail="Scene not found")
    if not can_render(scene.status):
        raise HTTPException(
            status_code=409,
            detail=f"Scene {scene_id} is already {scene.status.value}",
        )

    background_tasks.add_task(_run_scene_render, controller, scene_id)
    return RenderAcceptedResponse(
        project_id=project_id,
        scene_ids=[scene_id],
        status_url=f"/api/projects/{project_id}",
    )


@router.post(
    "/projects/{project_id}/render-all",
    status_code=202,
    response_model=RenderAcceptedResponse,
)
async def render_all_endpoint(
    project_id: str,
    background_tasks: BackgroundTasks,
    registry: ProjectRegistry = Depends(get_registry),
):
    """Start rendering every scene that is not done or in flight."""
    controller = await _open_project(registry, project_id)
    _require_credentials()
    queued = [s.id for s in controller.store.scenes() if needs_render(s.status)]
    background_tasks.add_task(_run_batch_render, controller)
    return RenderAcceptedResponse(
        project_id=project_id,
        scene_ids=queued,
        status_url=f"/api/projects/{project_id}",
    )


@router.post("/projects/{project_id}/hydrate", response_model=HydrateResponse)
async def hydrate_project(project_id: str, registry: ProjectRegistry = Depends(get_registry)):
    """Restore local clips for scenes rendered in an earlier session."""
    controller = await _open_project(registry, project_id)
    return HydrateResponse(restored=await controller.hydrate())


@router.get("/projects/{project_id}/scenes/{scene_id}/clip")
async def get_scene_clip(
    project_id: str,
    scene_id: str,
    registry: ProjectRegistry = Depends(get_registry),
):
    """Serve a rendered scene clip from disk."""
    controller = await _open_project(registry, project_id)
    scene = controller.store.get_scene(scene_id)
    if scene is None:
        raise HTTPException(status_code=404, detail="Scene not found")
    try:
        path = controller.file_manager.find_clip(project_id, scene_id)
    except ValueError:
        raise HTTPException(status_code=404, detail="Clip not found")
    if path is None:
        raise HTTPException(status_code=404, detail="Clip file not found on disk")
    return FileResponse(path=str(path), media_type="video/mp4")

