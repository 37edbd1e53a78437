"""Settings layering tests."""

import pytest
from pydantic import ValidationError

from mvstudio.config import RenderConfig, Settings


@pytest.fixture
def yaml_config(tmp_path, monkeypatch):
    path = tmp_path / "mvstudio.yaml"
    path.write_text(
        "render:\n"
        "  concurrency: 3\n"
        "  max_attempts: 5\n"
        "storage:\n"
        "  tmp_dir: clips\n"
        "unrelated: true\n"
    )
    monkeypatch.setenv("MVSTUDIO_CONFIG", str(path))
    return path


def test_yaml_values_are_loaded(yaml_config):
    settings = Settings()

    assert settings.render.concurrency == 3
    assert settings.render.max_attempts == 5
    assert settings.storage.tmp_dir.name == "clips"
    assert settings.render.poll_interval == 10


def test_environment_overrides_yaml(yaml_config, monkeypatch):
    monkeypatch.setenv("MVSTUDIO_RENDER__CONCURRENCY", "4")

    assert Settings().render.concurrency == 4


def test_missing_yaml_uses_defaults(tmp_path, monkeypatch):
    monkeypatch.setenv("MVSTUDIO_CONFIG", str(tmp_path / "absent.yaml"))

    settings = Settings()

    assert settings.render.max_attempts == 3
    assert settings.models.video_gen == "veo-3.1-generate-preview"


def test_render_config_rejects_unsupported_aspect_ratio():
    with pytest.raises(ValidationError):
        RenderConfig(default_aspect_ratio="1:1")
