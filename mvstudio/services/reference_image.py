"""Safe reference still generation for the REFERENCE_SWAP recovery step."""

import logging
from typing import Optional

from mvstudio.schemas.project import StyleImage
from mvstudio.services.providers.base import GenerativeProvider

logger = logging.getLogger(__name__)

REFERENCE_PROMPT_TEMPLATE = "Cinematic still, high quality, professional music video shot: {prompt}"


async def generate_safe_reference(
    provider: GenerativeProvider,
    prompt: str,
    aspect_ratio: str,
) -> Optional[StyleImage]:
    """Generate a fresh reference still for `prompt`, or None on any failure."""
    try:
        image = await provider.generate_image(
            REFERENCE_PROMPT_TEMPLATE.format(prompt=prompt), aspect_ratio
        )
    except Exception as e:
        logger.warning(f"Reference image generation failed: {e}")
        return None

    if image is None or not image.data:
        logger.warning("Reference image generation returned no image")
        return None
    return image
