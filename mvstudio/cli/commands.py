"""CLI commands for mvstudio using Typer and Rich.

Commands:
- new: Create a project from lyrics and an audio duration
- plan: Generate the storyboard for a project
- render: Render a single scene
- render-all: Render every scene that still needs it
- hydrate: Restore local playback URLs for rendered scenes
- status: Show project details and the scene table
- list: List all projects
- set-style-image: Attach a global style image
- serve: Run the HTTP API
"""

import asyncio
import base64
import logging
import mimetypes
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from mvstudio import MissingCredentialError, validate_credentials
from mvstudio.config import SUPPORTED_ASPECT_RATIOS, settings
from mvstudio.db import init_database, shutdown
from mvstudio.orchestrator.pipeline import (
    ProjectNotFoundError,
    ProjectRegistry,
    RenderController,
    SceneBusyError,
)
from mvstudio.orchestrator.store import SceneNotFoundError, StoreEvent
from mvstudio.pipeline.storyboard import PlannerError
from mvstudio.schemas.project import ProjectState, SceneStatus, TransitionType

app = typer.Typer(name="mvstudio", help="AI music-video studio: plan and render scenes")
console = Console()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Configure logging for every command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(name)s: %(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


@asynccontextmanager
async def _registry():
    await init_database()
    registry = ProjectRegistry()
    try:
        yield registry
    finally:
        await registry.close()
        await shutdown()


async def _open(registry: ProjectRegistry, project_id: str) -> RenderController:
    try:
        return await registry.open(project_id)
    except ProjectNotFoundError:
        console.print(f"[red]Error:[/red] Project not found: {project_id}")
        raise typer.Exit(code=1)


def _require_credentials() -> None:
    try:
        validate_credentials()
    except MissingCredentialError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)


def _print_transition(event: StoreEvent) -> None:
    if event.kind != "scene" or event.previous is None or event.scene is None:
        return
    if event.previous.status == event.scene.status:
        return
    color = _get_status_color(event.scene.status)
    console.print(
        f"  {event.scene_id}: {event.previous.status.value} -> "
        f"[{color}]{event.scene.status.value}[/{color}]"
    )


# ---------------------------------------------------------------------------
# Project creation and planning
# ---------------------------------------------------------------------------
@app.command()
def new(
    duration: float = typer.Option(..., "--duration", "-d", help="Audio track length in seconds"),
    lyrics: Optional[str] = typer.Option(None, "--lyrics", "-l", help="Lyrics or vibe description"),
    lyrics_file: Optional[Path] = typer.Option(None, "--lyrics-file", help="Read lyrics from a file"),
    title: Optional[str] = typer.Option(None, "--title", "-t", help="Project title"),
    clip_length: float = typer.Option(
        settings.render.default_clip_length, "--clip-length", "-c", help="Seconds per scene"
    ),
    aspect_ratio: str = typer.Option(
        settings.render.default_aspect_ratio, "--aspect-ratio", "-a", help="16:9 or 9:16"
    ),
    transition: TransitionType = typer.Option(TransitionType.CUT, "--transition", help="Scene transition"),
    video_model: Optional[str] = typer.Option(None, "--video-model", help="Video generation model"),
    planner_model: Optional[str] = typer.Option(None, "--planner-model", help="Storyboard LLM"),
):
    """Create a new project."""
    if lyrics_file is not None:
        lyrics = lyrics_file.read_text(encoding="utf-8")
    if not lyrics or not lyrics.strip():
        console.print("[red]Error:[/red] Provide --lyrics or --lyrics-file")
        raise typer.Exit(code=1)
    if aspect_ratio not in SUPPORTED_ASPECT_RATIOS:
        console.print(f"[red]Error:[/red] Invalid aspect ratio: {aspect_ratio}")
        console.print(f"Allowed: {', '.join(SUPPORTED_ASPECT_RATIOS)}")
        raise typer.Exit(code=1)
    if duration <= 0 or clip_length <= 0:
        console.print("[red]Error:[/red] --duration and --clip-length must be positive")
        raise typer.Exit(code=1)

    project = ProjectState(
        title=title,
        lyrics=lyrics,
        audio_duration=duration,
        clip_length=clip_length,
        aspect_ratio=aspect_ratio,
        transition_type=transition,
        video_model=video_model,
        planner_model=planner_model,
    )
    asyncio.run(_new_async(project))


async def _new_async(project: ProjectState):
    async with _registry() as registry:
        await registry.create(project)
    console.print(f"[green]Created project:[/green] {project.id}")
    console.print(f"Next: mvstudio plan {project.id}")


@app.command()
def plan(
    project_id: str = typer.Argument(..., help="Project ID"),
):
    """Generate the storyboard for a project (replaces existing scenes)."""
    _require_credentials()
    asyncio.run(_plan_async(project_id))


async def _plan_async(project_id: str):
    async with _registry() as registry:
        controller = await _open(registry, project_id)
        try:
            with console.status("[bold green]Director planning..."):
                scenes = await controller.plan()
        except (ValueError, PlannerError, SceneBusyError) as e:
            console.print(f"[red]✗ Planning failed:[/red] {e}")
            raise typer.Exit(code=1)
        console.print(f"[green]✓[/green] Storyboard created with {len(scenes)} scenes")
        _print_scene_table(controller.store.project)


@app.command("set-style-image")
def set_style_image(
    project_id: str = typer.Argument(..., help="Project ID"),
    image: Optional[Path] = typer.Argument(None, help="PNG/JPEG file; omit to clear"),
):
    """Attach (or clear) the project's global style image."""
    encoded = mime = None
    if image is not None:
        if not image.is_file():
            console.print(f"[red]Error:[/red] File not found: {image}")
            raise typer.Exit(code=1)
        encoded = base64.b64encode(image.read_bytes()).decode()
        mime = mimetypes.guess_type(image.name)[0] or "image/png"
    asyncio.run(_set_style_image_async(project_id, encoded, mime))


async def _set_style_image_async(project_id: str, encoded: Optional[str], mime: Optional[str]):
    async with _registry() as registry:
        controller = await _open(registry, project_id)
        controller.store.update_project(style_image_base64=encoded, style_image_mime=mime)
    console.print("[green]✓[/green] Style image " + ("updated" if encoded else "cleared"))


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------
@app.command()
def render(
    project_id: str = typer.Argument(..., help="Project ID"),
    scene_id: str = typer.Argument(..., help="Scene ID, e.g. scene-0"),
):
    """Render a single scene."""
    _require_credentials()
    asyncio.run(_render_async(project_id, scene_id))


async def _render_async(project_id: str, scene_id: str):
    async with _registry() as registry:
        controller = await _open(registry, project_id)
        unsubscribe = controller.store.subscribe(_print_transition)
        try:
            ok = await controller.render_single_scene(scene_id)
        except (SceneNotFoundError, SceneBusyError) as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(code=1)
        finally:
            unsubscribe()

        scene = controller.store.get_scene(scene_id)
        if ok:
            console.print(f"[green]✓[/green] {scene_id} rendered: {scene.video_url}")
        else:
            console.print(f"[red]✗ {scene_id} failed:[/red] {scene.error_msg}")
            raise typer.Exit(code=1)


@app.command("render-all")
def render_all_command(
    project_id: str = typer.Argument(..., help="Project ID"),
    concurrency: Optional[int] = typer.Option(
        None, "--concurrency", "-j", help="Parallel renders (default from config)"
    ),
):
    """Render every scene that is not already done."""
    _require_credentials()
    asyncio.run(_render_all_async(project_id, concurrency))


async def _render_all_async(project_id: str, concurrency: Optional[int]):
    async with _registry() as registry:
        controller = await _open(registry, project_id)
        if concurrency is not None:
            controller.config = controller.config.model_copy(update={"concurrency": max(1, concurrency)})

        unsubscribe = controller.store.subscribe(_print_transition)
        try:
            result = await controller.render_all_scenes()
        finally:
            unsubscribe()

        console.print()
        console.print(
            f"Batch rendering complete. [green]{result.succeeded} succeeded[/green], "
            f"[red]{result.failed} failed[/red]."
        )
        _print_scene_table(controller.store.project)
        if result.failed:
            raise typer.Exit(code=1)


@app.command()
def hydrate(
    project_id: str = typer.Argument(..., help="Project ID"),
):
    """Restore local playback files for scenes rendered earlier."""
    asyncio.run(_hydrate_async(project_id))


async def _hydrate_async(project_id: str):
    async with _registry() as registry:
        # Opening already restores what it can; retry whatever is still missing
        controller = await _open(registry, project_id)
        await controller.hydrate()
        scenes = [s for s in controller.store.scenes() if s.video_uri]

    available = sum(1 for s in scenes if s.video_url)
    console.print(f"[green]✓[/green] {available}/{len(scenes)} rendered clip(s) available locally")
    if available < len(scenes):
        console.print("[yellow]Some clips could not be restored; re-render those scenes[/yellow]")
        raise typer.Exit(code=1)


# ---------------------------------------------------------------------------
# Inspection
# ---------------------------------------------------------------------------
@app.command()
def status(
    project_id: str = typer.Argument(..., help="Project ID"),
):
    """Show project details and scene statuses."""
    asyncio.run(_status_async(project_id))


async def _status_async(project_id: str):
    async with _registry() as registry:
        controller = await _open(registry, project_id)
        project = controller.store.project

    lyrics_display = project.lyrics if len(project.lyrics) <= 80 else project.lyrics[:77] + "..."
    info_lines = [
        f"[bold]ID:[/bold] {project.id}",
        f"[bold]Title:[/bold] {project.title or '-'}",
        f"[bold]Lyrics:[/bold] {lyrics_display}",
        f"[bold]Audio Duration:[/bold] {project.audio_duration:.1f}s",
        f"[bold]Clip Length:[/bold] {project.clip_length}s",
        f"[bold]Aspect Ratio:[/bold] {project.aspect_ratio}",
        f"[bold]Transition:[/bold] {project.transition_type.value}",
        f"[bold]Style Image:[/bold] {'yes' if project.style_image_base64 else 'no'}",
        f"[bold]Video Model:[/bold] {project.video_model or settings.models.video_gen}",
    ]
    if project.last_saved_at:
        info_lines.append(f"[bold]Saved:[/bold] {project.last_saved_at.strftime('%Y-%m-%d %H:%M:%S')}")

    console.print(Panel(
        "\n".join(info_lines),
        title="[bold]Project Status[/bold]",
        border_style="blue",
    ))
    _print_scene_table(project)


@app.command(name="list")
def list_projects():
    """List all projects."""
    asyncio.run(_list_async())


async def _list_async():
    async with _registry() as registry:
        projects = await registry.repository.list_projects()

    if not projects:
        console.print("[yellow]No projects found[/yellow]")
        return

    table = Table(show_header=True, header_style="bold blue")
    table.add_column("ID", style="dim")
    table.add_column("Title")
    table.add_column("Aspect")
    table.add_column("Scenes")
    table.add_column("Updated")
    for p in projects:
        updated = p["updated_at"].strftime("%Y-%m-%d %H:%M") if p["updated_at"] else "-"
        table.add_row(
            p["id"],
            p["title"] or "-",
            p["aspect_ratio"],
            f"{p['done_count']}/{p['scene_count']} done",
            updated,
        )
    console.print(table)


@app.command()
def serve():
    """Run the HTTP API server."""
    import uvicorn

    uvicorn.run(
        "mvstudio.api.app:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=False,
    )


def _print_scene_table(project: ProjectState) -> None:
    if not project.scenes:
        console.print("[yellow]No scenes yet. Run plan first.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold blue")
    table.add_column("Scene", style="dim")
    table.add_column("Time")
    table.add_column("Description")
    table.add_column("Status")
    table.add_column("Detail")
    for scene in project.scenes:
        color = _get_status_color(scene.status)
        detail = scene.error_msg or scene.video_url or ""
        if len(detail) > 60:
            detail = detail[:57] + "..."
        table.add_row(
            scene.id,
            f"{scene.start_time:.1f}-{scene.end_time:.1f}s",
            scene.description,
            f"[{color}]{scene.status.value}[/{color}]",
            detail,
        )
    console.print(table)


def _get_status_color(status: SceneStatus) -> str:
    """Get Rich color for a scene status."""
    if status == SceneStatus.DONE:
        return "green"
    elif status == SceneStatus.ERROR:
        return "red"
    elif status in (SceneStatus.GENERATING, SceneStatus.SANITIZING):
        return "yellow"
    elif status == SceneStatus.PENDING:
        return "dim"
    else:
        return "white"
