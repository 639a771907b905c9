"""
Image Describer

One structured call to a vision model: describe the screenshot and estimate
how likely it is to come from the named game.
"""

import logging
from typing import Awaitable, Optional

from pydantic import ValidationError as PydanticValidationError

from .cancellation import CancellationToken
from .config import load_prompt_template
from .errors import ParseError, ValidationError
from .models import IMAGE_DESCRIPTION_SCHEMA, ImageDescription, RawImage
from .providers import LLMBackend

logger = logging.getLogger(__name__)

USER_MESSAGE = "Analyze this image and assess its relevance to the specified game."


class ImageDescriber:
    """Single-shot image to description + relevance."""

    def __init__(self, temperature: float = 0.7):
        self.temperature = temperature
        self.prompt_template = load_prompt_template("image_description")

    def build_system_prompt(self, domain_name: str) -> str:
        return self.prompt_template.format(game_name=domain_name)

    def describe(
        self,
        image: RawImage,
        domain_name: str,
        provider: LLMBackend,
        cancellation_token: Optional[CancellationToken] = None,
    ) -> Awaitable[ImageDescription]:
        """
        Validate inputs immediately, then return the awaitable provider call.

        Raises:
            ValidationError: Synchronously, before any I/O, when the image,
                domain name or provider is missing or invalid
        """
        if not isinstance(image, RawImage):
            raise ValidationError("Image data cannot be null or empty")
        if not domain_name or not domain_name.strip():
            raise ValidationError("Game name cannot be null or empty")
        if provider is None:
            raise ValidationError("Provider cannot be null")

        png_image = image.convert_to_png()
        return self._describe(png_image, domain_name.strip(), provider, cancellation_token)

    async def _describe(
        self,
        image: RawImage,
        domain_name: str,
        provider: LLMBackend,
        cancellation_token: Optional[CancellationToken],
    ) -> ImageDescription:
        logger.info(f"Analyzing image for game relevance: {domain_name}, type: {image.mime_type} using {provider.name}")

        data = await provider.generate_json(
            system_prompt=self.build_system_prompt(domain_name),
            user_text=USER_MESSAGE,
            schema=IMAGE_DESCRIPTION_SCHEMA,
            image=image,
            temperature=self.temperature,
            label="describe-image",
            cancellation_token=cancellation_token,
        )

        try:
            result = ImageDescription.model_validate(data)
        except PydanticValidationError as e:
            raise ParseError(f"Invalid image description response: {e}") from e

        logger.info(f"Analysis complete. Game relevance: {result.relevance:.0%}")
        return result
