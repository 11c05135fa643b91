"""
Synthesis strategies.

A strategy turns (scene, photos) into an Artifact, or declines by
returning None. Strategies are interchangeable and ordered by the
chain; each one tags its artifact with the degradation level it
represents:

    ProviderStrategy            FULL                 external provider
    SyntheticCompositeStrategy  SYNTHETIC_COMPOSITE  local Pillow overlay
    CatalogOnlyStrategy         CATALOG_ONLY         unmodified scene
    EchoStrategy                ECHO                 caller's source photo

Strategies decline on expected failures. They may still raise on
programming errors; the chain treats those as declines as well.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol, Tuple

import anyio
import anyio.to_thread

from sceneswap.app.catalog.catalog import SceneCatalog
from sceneswap.app.core.errors import ProviderError
from sceneswap.app.schemas.batch import (
    Artifact,
    DegradationLevel,
    SceneDescriptor,
    SourcePhotos,
)
from sceneswap.app.synthesis.compositor import ImageCompositor
from sceneswap.app.synthesis.provider import SynthesisProvider

logger = logging.getLogger("sceneswap.strategies")


class SynthesisStrategy(Protocol):
    """
    Interface for a single fallback tier.

    A strategy:
    - returns an Artifact tagged with its own degradation level, or
    - returns None to decline
    """

    name: str
    level: DegradationLevel
    terminal: bool

    async def attempt(
        self,
        scene: SceneDescriptor,
        photos: SourcePhotos,
    ) -> Optional[Artifact]:
        ...


# ----------------------------------------------------------------------
# 1. External provider
# ----------------------------------------------------------------------

class ProviderStrategy:
    name = "provider"
    level = DegradationLevel.FULL
    terminal = False

    def __init__(
        self,
        *,
        provider: SynthesisProvider,
        catalog: SceneCatalog,
        size: str = "1024x1024",
        timeout_seconds: float = 60.0,
        compositor: Optional[ImageCompositor] = None,
        photo_max_side: int = 1024,
    ) -> None:
        self._provider = provider
        self._catalog = catalog
        self._size = size
        self._timeout_seconds = timeout_seconds
        self._compositor = compositor
        self._photo_max_side = photo_max_side

    async def attempt(
        self,
        scene: SceneDescriptor,
        photos: SourcePhotos,
    ) -> Optional[Artifact]:
        base_image = self._catalog.read_asset(scene)
        if base_image is None:
            return None

        if self._compositor is not None:
            photos = await anyio.to_thread.run_sync(self._downscale, photos)

        try:
            with anyio.fail_after(self._timeout_seconds):
                image_bytes = await self._provider.generate(
                    base_image=base_image,
                    source_photo=photos.source,
                    target_photo=photos.target,
                    size=self._size,
                    source_content_type=photos.source_content_type,
                    target_content_type=photos.target_content_type,
                )
        except TimeoutError:
            logger.warning(
                "provider_timeout",
                extra={
                    "scene": scene.name,
                    "timeout_seconds": self._timeout_seconds,
                },
            )
            return None
        except ProviderError as exc:
            logger.warning(
                "provider_failed",
                extra={"scene": scene.name, "error": exc.message},
            )
            return None

        if not image_bytes:
            return None

        return Artifact(
            scene=scene,
            image_bytes=image_bytes,
            degradation_level=self.level,
            strategy=self.name,
        )

    # ------------------------------------------------------------------
    # Upload preparation
    # ------------------------------------------------------------------

    def _downscale(self, photos: SourcePhotos) -> SourcePhotos:
        """Shrink phone-camera photos to the provider's working size."""
        source, source_type = self._shrink(
            photos.source, photos.source_content_type
        )
        target, target_type = self._shrink(
            photos.target, photos.target_content_type
        )
        return SourcePhotos(
            source=source,
            target=target,
            source_content_type=source_type,
            target_content_type=target_type,
        )

    def _shrink(self, photo: bytes, content_type: str) -> Tuple[bytes, str]:
        try:
            width, height, _ = self._compositor.metadata(photo)
            if max(width, height) <= self._photo_max_side:
                return photo, content_type
            return self._compositor.resize(photo, self._photo_max_side), "image/png"
        except (OSError, ValueError):
            # Formats Pillow cannot open (e.g. HEIC) go out unchanged
            return photo, content_type


# ----------------------------------------------------------------------
# 2. Local synthetic composite
# ----------------------------------------------------------------------

class SyntheticCompositeStrategy:
    name = "synthetic_composite"
    level = DegradationLevel.SYNTHETIC_COMPOSITE
    terminal = False

    def __init__(
        self,
        *,
        catalog: SceneCatalog,
        compositor: Optional[ImageCompositor],
        available: bool = True,
    ) -> None:
        self._catalog = catalog
        self._compositor = compositor
        self._available = available and compositor is not None

    async def attempt(
        self,
        scene: SceneDescriptor,
        photos: SourcePhotos,
    ) -> Optional[Artifact]:
        if not self._available:
            return None

        base_image = self._catalog.read_asset(scene)
        if base_image is None:
            return None

        try:
            image_bytes = await anyio.to_thread.run_sync(
                self._compositor.composite,
                base_image,
                photos.source,
                scene.label,
            )
        except (OSError, ValueError) as exc:
            # Undecodable scene or photo (PIL raises OSError subclasses)
            logger.warning(
                "composite_failed",
                extra={
                    "scene": scene.name,
                    "error_type": type(exc).__name__,
                },
            )
            return None

        return Artifact(
            scene=scene,
            image_bytes=image_bytes,
            degradation_level=self.level,
            strategy=self.name,
        )


# ----------------------------------------------------------------------
# 3. Catalog only
# ----------------------------------------------------------------------

class CatalogOnlyStrategy:
    name = "catalog_only"
    level = DegradationLevel.CATALOG_ONLY
    terminal = False

    def __init__(self, *, catalog: SceneCatalog) -> None:
        self._catalog = catalog

    async def attempt(
        self,
        scene: SceneDescriptor,
        photos: SourcePhotos,
    ) -> Optional[Artifact]:
        base_image = self._catalog.read_asset(scene)
        if not base_image:
            return None

        return Artifact(
            scene=scene,
            image_bytes=base_image,
            degradation_level=self.level,
            strategy=self.name,
        )


# ----------------------------------------------------------------------
# 4. Echo (terminal)
# ----------------------------------------------------------------------

class EchoStrategy:
    name = "echo"
    level = DegradationLevel.ECHO
    terminal = True

    async def attempt(
        self,
        scene: SceneDescriptor,
        photos: SourcePhotos,
    ) -> Optional[Artifact]:
        return Artifact(
            scene=scene,
            image_bytes=photos.source,
            degradation_level=self.level,
            strategy=self.name,
        )
