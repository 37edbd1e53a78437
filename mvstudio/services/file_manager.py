"""
File management service for mvstudio.

Handles structured filesystem storage of downloaded clips with path
traversal protection. Each project gets {base_dir}/{project_id}/clips/.
"""
from pathlib import Path
from typing import Optional

from mvstudio.config import settings


class FileManager:
    """
    Manage downloaded scene clips on the local filesystem.

    Clips are stored as {base_dir}/{project_id}/clips/{scene_id}.mp4 and
    exposed to players as file:// URLs.
    """

    def __init__(self, base_dir: str | Path | None = None):
        if base_dir is None:
            base_dir = settings.storage.tmp_dir

        self.base_dir = Path(base_dir).resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _safe_child(self, parent: Path, name: str) -> Path:
        child = (parent / name).resolve()
        if not child.is_relative_to(parent):
            raise ValueError(f"Invalid path component: {name!r}")
        return child

    def get_project_dir(self, project_id: str) -> Path:
        """
        Get or create the project directory and its clips/ subdirectory.

        Raises:
            ValueError: If project_id resolves outside base_dir
        """
        project_dir = self._safe_child(self.base_dir, str(project_id))
        project_dir.mkdir(exist_ok=True)
        (project_dir / "clips").mkdir(exist_ok=True)
        return project_dir

    def clip_path(self, project_id: str, scene_id: str) -> Path:
        clips_dir = self.get_project_dir(project_id) / "clips"
        return self._safe_child(clips_dir, f"{scene_id}.mp4")

    def save_clip(self, project_id: str, scene_id: str, data: bytes) -> Path:
        """
        Save a video clip for a scene, replacing any previous render.

        Returns:
            Path to saved clip file
        """
        filepath = self.clip_path(project_id, scene_id)
        tmp_path = filepath.with_suffix(".mp4.part")
        tmp_path.write_bytes(data)
        tmp_path.replace(filepath)
        return filepath

    def find_clip(self, project_id: str, scene_id: str) -> Optional[Path]:
        """Return the stored clip for a scene, if one exists on disk."""
        filepath = self.clip_path(project_id, scene_id)
        return filepath if filepath.exists() else None

    @staticmethod
    def to_url(path: Path) -> str:
        return path.resolve().as_uri()
