"""SQLAlchemy 2.0 ORM models for mvstudio projects."""

from datetime import datetime
from typing import Optional

from sqlalchemy import Float, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Bumped when the persisted layout changes incompatibly
STATE_VERSION = 3


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


class ProjectRow(Base):
    """Project settings. Scenes live in their own table."""
    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    lyrics: Mapped[str] = mapped_column(Text, default="")
    clip_length: Mapped[float] = mapped_column(Float, default=5.0)
    audio_duration: Mapped[float] = mapped_column(Float, default=0.0)
    aspect_ratio: Mapped[str] = mapped_column(String(10), default="16:9")
    style_image_base64: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    style_image_mime: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    transition_type: Mapped[str] = mapped_column(String(20), default="cut")
    planner_model: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    video_model: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    state_version: Mapped[int] = mapped_column(Integer, default=STATE_VERSION)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        onupdate=func.now()
    )


class SceneRow(Base):
    """One storyboard scene.

    Only the provider locator (video_uri) is stored; the local playback URL
    is derived again when the project is opened.
    """
    __tablename__ = "scenes"

    project_id: Mapped[str] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"), primary_key=True
    )
    scene_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    position: Mapped[int] = mapped_column(Integer)
    start_time: Mapped[float] = mapped_column(Float)
    end_time: Mapped[float] = mapped_column(Float)
    description: Mapped[str] = mapped_column(Text, default="Scene")
    visual_prompt: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[str] = mapped_column(String(20), default="pending")
    video_uri: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    error_msg: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
