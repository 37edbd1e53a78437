"""Gemini API client wrapper using google-genai SDK.

Authentication uses an API key (Gemini Developer API), the same key that
signs clip downloads. Clients are cached per key.

Usage:
    from mvstudio.services.genai_client import get_genai_client

    client = get_genai_client()
"""

from pathlib import Path

import httpx
from dotenv import load_dotenv
from google import genai
from google.genai.errors import ClientError, ServerError

from mvstudio import validate_credentials

# Load .env so GEMINI_API_KEY / GOOGLE_API_KEY are visible
load_dotenv(Path.cwd() / ".env")

_clients: dict[str, genai.Client] = {}


def is_transient_error(exc: BaseException) -> bool:
    """Return True only for transient errors worth retrying (429, 5xx, network)."""
    if isinstance(exc, ServerError):
        return True
    if isinstance(exc, ClientError):
        return getattr(exc, "code", 0) == 429
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, (ConnectionError, TimeoutError)):
        return True
    return False


def get_genai_client(api_key: str | None = None) -> genai.Client:
    """Get or create a Gemini API client.

    Args:
        api_key: Explicit key. Defaults to the configured key.

    Returns:
        genai.Client: Configured client instance

    Raises:
        MissingCredentialError: If no key is configured.
    """
    key = api_key or validate_credentials()

    if key not in _clients:
        _clients[key] = genai.Client(api_key=key)

    return _clients[key]
