"""mvstudio - AI music-video studio.

Plans a storyboard from lyrics and audio length, then renders every scene
through a generative video model with content-safety recovery.
Call validate_credentials() before any render so a missing API key fails
fast instead of surfacing as a per-scene error.
"""

import logging
import os
from typing import Optional

__version__ = "0.1.0"

logger = logging.getLogger(__name__)

_API_KEY_ENV_VARS = ("GEMINI_API_KEY", "GOOGLE_API_KEY")


class MissingCredentialError(RuntimeError):
    """Raised when no provider API key is configured."""


def resolve_api_key() -> Optional[str]:
    """Return the configured Gemini API key, or None."""
    from mvstudio.config import settings

    if settings.google.api_key:
        return settings.google.api_key
    for name in _API_KEY_ENV_VARS:
        value = os.environ.get(name)
        if value:
            return value
    return None


def validate_credentials() -> str:
    """Validate a provider API key is available.

    Raises:
        MissingCredentialError: If no key is set in config or environment.
    """
    key = resolve_api_key()
    if not key:
        raise MissingCredentialError(
            "No Gemini API key configured. Set MVSTUDIO_GOOGLE__API_KEY, "
            "GEMINI_API_KEY or GOOGLE_API_KEY, or google.api_key in config.yaml"
        )
    logger.debug("Gemini API key found")
    return key
