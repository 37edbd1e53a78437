"""Prompt sanitizer: rewrites a rejected video prompt into a policy-safe one.

One text-generation call with a fixed rewriting instruction. Genre
vocabulary is preserved so the scene keeps its look; content that commonly
trips video safety filters is removed or re-contextualised.
"""

import logging

from mvstudio.schemas.storyboard import SanitizedPrompt
from mvstudio.services.providers.base import GenerativeProvider, SanitizerError

logger = logging.getLogger(__name__)

SANITIZER_SYSTEM_PROMPT = """You are a prompt safety editor for an AI music video generator.
Rewrite the user's video prompt so it passes strict content-safety filters
while keeping its mood, setting and camera work.

RULES:
1. Remove any mention of money, cash, currency or counting bills
2. Remove drugs, smoking, vaping, alcohol and any paraphernalia
3. Remove weapons, violence, blood and threatening gestures
4. Remove explicit, sexual or suggestive content
5. KEEP genre words such as "rapper", "hip-hop", "urban", "street", "graffiti"
6. Replace "haze" or "smoke" with "atmospheric stage fog"
7. Replace "gritty" with "cinematic film grain"
8. Add: "shot on 35mm, anamorphic, depth of field, 4k, color graded"
9. Return ONLY the rewritten prompt text, with no preamble or explanation
"""

SANITIZER_TEMPERATURE = 0.5


async def sanitize_prompt(provider: GenerativeProvider, prompt: str) -> str:
    """Rewrite `prompt` to be safe for video generation.

    Raises:
        SanitizerError: If the call fails or returns empty text.
    """
    try:
        result = await provider.generate_text(
            SANITIZER_SYSTEM_PROMPT,
            f'Rewrite this prompt to be safe: "{prompt}"',
            SanitizedPrompt,
            temperature=SANITIZER_TEMPERATURE,
        )
    except Exception as e:
        raise SanitizerError(f"Prompt sanitizer failed: {e}") from e

    rewritten = (result.rewritten_prompt or "").strip()
    if not rewritten:
        raise SanitizerError("Sanitizer returned empty prompt")

    logger.info(f"Sanitized prompt: {rewritten[:120]}")
    return rewritten
