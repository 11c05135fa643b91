"""
Synthesis strategy chain.

The chain is an ordered, declarative list of strategies tried per
scene until one produces an artifact. Adding or removing a fallback
tier is a list edit.

HARD GUARANTEE:
    produce() never raises and always returns exactly one Artifact.
    The last strategy must be terminal (it cannot decline). Should every
    strategy still fail, a MISSING artifact with empty bytes is returned
    and the document assembler renders a placeholder page for it.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from sceneswap.app.catalog.catalog import SceneCatalog
from sceneswap.app.core.capabilities import Capabilities
from sceneswap.app.schemas.batch import (
    Artifact,
    DegradationLevel,
    SceneDescriptor,
    SourcePhotos,
)
from sceneswap.app.synthesis.compositor import ImageCompositor
from sceneswap.app.synthesis.provider import SynthesisProvider
from sceneswap.app.synthesis.strategies import (
    CatalogOnlyStrategy,
    EchoStrategy,
    ProviderStrategy,
    SynthesisStrategy,
    SyntheticCompositeStrategy,
)

logger = logging.getLogger("sceneswap.chain")


class StrategyChain:
    def __init__(self, strategies: Sequence[SynthesisStrategy]) -> None:
        if not strategies:
            raise ValueError("A strategy chain needs at least one strategy")
        if not strategies[-1].terminal:
            raise ValueError(
                "The last strategy of a chain must be terminal "
                f"(got '{strategies[-1].name}')"
            )

        self._strategies = list(strategies)  # freeze order

    @property
    def strategy_names(self) -> List[str]:
        return [s.name for s in self._strategies]

    # ------------------------------------------------------------------
    # Composition root
    # ------------------------------------------------------------------

    @classmethod
    def from_capabilities(
        cls,
        capabilities: Capabilities,
        *,
        catalog: SceneCatalog,
        provider: Optional[SynthesisProvider] = None,
        compositor: Optional[ImageCompositor] = None,
        provider_size: str = "1024x1024",
        provider_timeout_seconds: float = 60.0,
        provider_photo_max_side: int = 1024,
    ) -> "StrategyChain":
        """
        Build the standard four-tier chain.

        The provider tier is only present when the capability probe
        enabled it, echo is not forced and a provider instance was wired.
        When a compositor is wired the provider tier also uses it to
        downscale oversized photos before upload.
        """
        strategies: List[SynthesisStrategy] = []

        if (
            capabilities.provider_enabled
            and not capabilities.echo_forced
            and provider is not None
        ):
            strategies.append(
                ProviderStrategy(
                    provider=provider,
                    catalog=catalog,
                    size=provider_size,
                    timeout_seconds=provider_timeout_seconds,
                    compositor=compositor,
                    photo_max_side=provider_photo_max_side,
                )
            )

        strategies.append(
            SyntheticCompositeStrategy(
                catalog=catalog,
                compositor=compositor,
                available=capabilities.compositor_available,
            )
        )
        strategies.append(CatalogOnlyStrategy(catalog=catalog))
        strategies.append(EchoStrategy())

        return cls(strategies)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def produce(
        self,
        scene: SceneDescriptor,
        photos: SourcePhotos,
    ) -> Artifact:
        for strategy in self._strategies:
            try:
                artifact = await strategy.attempt(scene, photos)
            except Exception:
                logger.exception(
                    "strategy_raised",
                    extra={"scene": scene.name, "strategy": strategy.name},
                )
                artifact = None

            if artifact is not None:
                return artifact

            logger.info(
                "strategy_declined",
                extra={"scene": scene.name, "strategy": strategy.name},
            )

        logger.error("all_strategies_declined", extra={"scene": scene.name})
        return Artifact(
            scene=scene,
            image_bytes=b"",
            degradation_level=DegradationLevel.MISSING,
            strategy=None,
        )
