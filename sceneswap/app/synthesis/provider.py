"""
External synthesis provider adapter.

The provider receives the scene's base image plus both reference photos
and returns a single generated image. It is the slowest and least
reliable collaborator in the system; callers bound it with a timeout
and treat every failure as a decline.
"""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Protocol

from openai import AsyncOpenAI, OpenAIError

from sceneswap.app.core.errors import ProviderError

logger = logging.getLogger("sceneswap.provider")


FACE_SWAP_PROMPT = (
    "Replace the main person's face in the scene with the person from the "
    "two reference photos. Natural blend, keep pose/body/lighting."
)


_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/heic": "heic",
    "image/heif": "heif",
}


class SynthesisProvider(Protocol):
    async def generate(
        self,
        *,
        base_image: bytes,
        source_photo: bytes,
        target_photo: bytes,
        size: str,
        source_content_type: str = "image/png",
        target_content_type: str = "image/png",
    ) -> bytes:
        ...


class OpenAIImageProvider:
    """
    OpenAI Images implementation of SynthesisProvider.

    Uses the image edit endpoint with three input images:
      1. the scene (composition, pose, lighting)
      2. the source photo (identity reference)
      3. the target photo (second identity reference)
    """

    def __init__(
        self,
        *,
        api_key: str,
        model: str = "gpt-image-1",
        timeout_seconds: float = 60.0,
        prompt: str = FACE_SWAP_PROMPT,
    ) -> None:
        self._model = model
        self._prompt = prompt
        self._client = AsyncOpenAI(
            api_key=api_key,
            timeout=timeout_seconds,
            max_retries=0,
        )

    @property
    def model(self) -> str:
        return self._model

    async def generate(
        self,
        *,
        base_image: bytes,
        source_photo: bytes,
        target_photo: bytes,
        size: str,
        source_content_type: str = "image/png",
        target_content_type: str = "image/png",
    ) -> bytes:
        images = [
            ("scene.png", base_image, "image/png"),
            (
                f"source.{_EXTENSIONS.get(source_content_type, 'png')}",
                source_photo,
                source_content_type,
            ),
            (
                f"target.{_EXTENSIONS.get(target_content_type, 'png')}",
                target_photo,
                target_content_type,
            ),
        ]

        try:
            response = await self._client.images.edit(
                model=self._model,
                image=images,
                prompt=self._prompt,
                size=size,
            )
        except OpenAIError as exc:
            raise ProviderError(
                f"Provider call failed: {type(exc).__name__}"
            ) from exc

        data = getattr(response, "data", None) or []
        b64 = getattr(data[0], "b64_json", None) if data else None
        if not b64:
            raise ProviderError("Provider returned an empty image payload")

        try:
            image_bytes = base64.b64decode(b64, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ProviderError("Provider returned invalid base64 data") from exc

        if not image_bytes:
            raise ProviderError("Provider returned an empty image payload")

        return image_bytes

    async def close(self) -> None:
        await self._client.close()
