"""LLM provider abstraction layer.

Provides a unified async interface for structured text generation across
Gemini and Ollama.

Usage:
    from mvstudio.services.llm import get_adapter

    adapter = get_adapter("gemini-2.5-flash")
    result = await adapter.generate_text(prompt, MySchema)
"""

from mvstudio.services.llm.base import LLMAdapter
from mvstudio.services.llm.registry import get_adapter

__all__ = ["LLMAdapter", "get_adapter"]
