"""
Capability probe.

Strategy availability is decided exactly once, at startup, from the
configuration and the runtime environment. The resulting record is
passed explicitly into the synthesis strategy chain so that the chain
never reads global flags on its own.
"""

from __future__ import annotations

import importlib.util
import logging

from pydantic import BaseModel, ConfigDict

from sceneswap.app.core.config import Settings

logger = logging.getLogger("sceneswap.capabilities")


class Capabilities(BaseModel):
    """Immutable strategy availability flags."""

    provider_enabled: bool
    echo_forced: bool
    compositor_available: bool

    model_config = ConfigDict(frozen=True, extra="forbid")


def compositor_library_present() -> bool:
    return importlib.util.find_spec("PIL") is not None


def probe_capabilities(settings: Settings) -> Capabilities:
    has_key = bool(
        settings.openai_api_key is not None
        and settings.openai_api_key.get_secret_value().strip()
    )

    capabilities = Capabilities(
        provider_enabled=has_key and not settings.use_echo,
        echo_forced=settings.use_echo,
        compositor_available=compositor_library_present(),
    )

    logger.info(
        "capabilities_probed",
        extra=capabilities.model_dump(),
    )
    return capabilities
