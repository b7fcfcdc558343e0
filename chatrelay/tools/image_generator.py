"""
Image generation tool.

Calls the image-capable Gemini variant through LiteLLM and returns the first
image as binary media. The model-facing summary only confirms success; the
image itself is spliced into the final turn by the orchestrator, because the
provider's tool-result channel does not carry binary payloads.
"""

from __future__ import annotations

import base64
import binascii
from typing import Any

from litellm import aimage_generation

from chatrelay.config.logging import get_logger
from chatrelay.errors import ToolExecutionError
from chatrelay.llm.models import InlineMedia, ToolCallResult
from chatrelay.tools.base import Tool
from chatrelay.tools.registry import GENERATE_IMAGE_DECLARATION

logger = get_logger(__name__)

_MAGIC_NUMBERS = (
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF8", "image/gif"),
    (b"RIFF", "image/webp"),
)


def _sniff_mime_type(data: bytes) -> str:
    for magic, mime_type in _MAGIC_NUMBERS:
        if data.startswith(magic):
            return mime_type
    return "image/png"


class ImageGenerationTool(Tool):
    """
    generate_image(prompt) backed by LiteLLM aimage_generation().

    Args:
        model: LiteLLM image model string, e.g. "gemini/imagen-3.0-generate-002"
        api_key: Credential for the image service
    """

    declaration = GENERATE_IMAGE_DECLARATION

    def __init__(self, model: str, api_key: str):
        self._model = model
        self._api_key = api_key

    async def run(self, arguments: dict[str, Any]) -> ToolCallResult:
        prompt = str(arguments["prompt"]).strip()

        try:
            response = await aimage_generation(
                model=self._model,
                prompt=prompt,
                n=1,
                api_key=self._api_key,
            )
        except Exception as e:
            raise ToolExecutionError(f"Image generation failed: {e}", cause=e)

        media = self._first_image(response)
        if media is None:
            raise ToolExecutionError("The image service returned no image for this prompt.")

        logger.info(f"Generated {media.mime_type} image for prompt ({len(prompt)} chars)")
        return ToolCallResult(
            tool_name=self.name,
            succeeded=True,
            human_readable_summary=(
                "The image was generated successfully and is shown to the user below your reply. "
                "Briefly tell the user what you created; do not try to output the image yourself."
            ),
            structured_payload={"prompt": prompt, "mimeType": media.mime_type},
            binary_media=media,
        )

    @staticmethod
    def _first_image(response: Any) -> InlineMedia | None:
        """Extract the first base64 image from a LiteLLM ImageResponse."""
        for item in getattr(response, "data", None) or []:
            encoded = getattr(item, "b64_json", None)
            if not encoded:
                continue
            try:
                raw = base64.b64decode(encoded, validate=True)
            except (binascii.Error, ValueError):
                logger.warning("Skipping image entry with invalid base64 payload")
                continue
            return InlineMedia(mime_type=_sniff_mime_type(raw), data=encoded)
        return None
