"""Settings for mvstudio, layered from environment, .env and a YAML file."""

import os
from pathlib import Path
from typing import Any, ClassVar, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

FALLBACK_PROMPT = (
    "Abstract cinematic music video scene, atmospheric lighting, moody, high quality, 4k"
)

SUPPORTED_ASPECT_RATIOS = ("16:9", "9:16")

CONFIG_PATH_ENV = "MVSTUDIO_CONFIG"


class YamlConfigSettingsSource(PydanticBaseSettingsSource):
    """Reads settings sections from a YAML file.

    The file is MVSTUDIO_CONFIG when set, else config.yaml in the working
    directory. A missing file yields no values.
    """

    def _load(self) -> dict[str, Any]:
        path = Path(os.environ.get(CONFIG_PATH_ENV, "config.yaml"))
        if not path.is_file():
            return {}
        with path.open(encoding="utf-8") as f:
            return yaml.safe_load(f) or {}

    def get_field_value(self, field, field_name: str) -> tuple[Any, str, bool]:
        data = self._load()
        return data.get(field_name), field_name, False

    def __call__(self) -> dict[str, Any]:
        data = self._load()
        return {
            name: value
            for name, value in data.items()
            if name in self.settings_cls.model_fields and value is not None
        }


class GoogleConfig(BaseModel):
    """Gemini API credentials.

    api_key may be left empty here and supplied through GEMINI_API_KEY or
    GOOGLE_API_KEY instead; see mvstudio.validate_credentials().
    """

    api_key: Optional[str] = None


class ModelsConfig(BaseModel):
    """AI model identifiers."""

    planner_llm: str = "gemini-2.5-flash"
    sanitizer_llm: str = "gemini-2.5-flash"
    image_gen: str = "imagen-3.0-generate-002"
    video_gen: str = "veo-3.1-generate-preview"


class OllamaConfig(BaseModel):
    """Ollama endpoint used for ollama/-prefixed text models."""

    endpoint: str = "http://localhost:11434"
    api_key: Optional[str] = None


class RenderConfig(BaseModel):
    """Scene render and batch scheduling parameters."""

    max_attempts: int = Field(default=3, ge=1)
    poll_interval: float = Field(default=10, ge=0)
    poll_max: int = Field(default=60, ge=1)
    concurrency: int = Field(default=2, ge=1)
    stagger_seconds: float = Field(default=0.5, ge=0)
    fallback_prompt: str = FALLBACK_PROMPT
    default_aspect_ratio: str = "16:9"
    default_clip_length: float = Field(default=5, gt=0)
    video_resolution: str = "1080p"

    @field_validator("default_aspect_ratio")
    @classmethod
    def check_aspect_ratio(cls, v: str) -> str:
        if v not in SUPPORTED_ASPECT_RATIOS:
            raise ValueError(f"aspect ratio must be one of {SUPPORTED_ASPECT_RATIOS}")
        return v


class StorageConfig(BaseModel):
    """Database location and the directory downloaded clips are kept in."""

    database_url: str = "sqlite+aiosqlite:///mvstudio.db"
    tmp_dir: Path = Path("tmp")


class ServerConfig(BaseModel):
    """Bind address for `mvstudio serve`."""

    host: str = "0.0.0.0"
    port: int = 8000


class Settings(BaseSettings):
    """mvstudio settings.

    Later sources fill only what earlier ones leave unset: constructor
    arguments, MVSTUDIO_* environment variables (nested with __, e.g.
    MVSTUDIO_RENDER__CONCURRENCY=4), .env, the YAML file, then defaults.
    """

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_nested_delimiter="__",
        env_prefix="MVSTUDIO_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    google: GoogleConfig = GoogleConfig()
    models: ModelsConfig = ModelsConfig()
    ollama: OllamaConfig = OllamaConfig()
    render: RenderConfig = RenderConfig()
    storage: StorageConfig = StorageConfig()
    server: ServerConfig = ServerConfig()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
        )


settings = Settings()
