from __future__ import annotations

import logging
from typing import Protocol

from sceneswap.app.events.models import BatchEvent

logger = logging.getLogger("sceneswap.events")


class BatchEventEmitter(Protocol):
    """
    Interface for broadcasting batch observations.

    Implementations must be:
    - non-blocking (or minimally blocking)
    - fail-safe (emission failures must not crash the batch)
    - observational only
    """

    async def emit(self, event: BatchEvent) -> None:
        ...


class NullEventEmitter:
    """
    A safe no-op emitter.

    Used when nobody listens, e.g. quota reads and tests that do not
    care about events.
    """

    async def emit(self, event: BatchEvent) -> None:
        return


class LoggingEventEmitter:
    """Writes every event to the ``sceneswap.events`` logger."""

    def __init__(self, level: int = logging.INFO) -> None:
        self._level = level

    async def emit(self, event: BatchEvent) -> None:
        try:
            logger.log(
                self._level,
                event.event_type.value,
                extra={
                    "batch_id": event.batch_id,
                    "details": event.details or {},
                },
            )
        except Exception:
            # Fail-safe: never let observability break the batch
            return
