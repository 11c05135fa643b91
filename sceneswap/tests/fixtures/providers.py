from typing import List, Tuple

import anyio

from sceneswap.app.core.errors import ProviderError
from sceneswap.tests.fixtures.images import png_bytes


class StaticProvider:
    """Returns the same generated image for every scene."""

    def __init__(self, image: bytes = b"") -> None:
        self.image = image or png_bytes(80, 80, (10, 200, 10))
        self.calls: List[int] = []
        self.sources: List[Tuple[bytes, str]] = []

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
        self.calls.append(len(base_image))
        self.sources.append((source_photo, source_content_type))
        return self.image


class FailingProvider:
    def __init__(self) -> None:
        self.calls = 0

    async def generate(self, **kwargs) -> bytes:
        self.calls += 1
        raise ProviderError("upstream 500")


class SlowProvider:
    def __init__(self, delay: float = 1.0) -> None:
        self.delay = delay
        self.calls = 0

    async def generate(self, **kwargs) -> bytes:
        self.calls += 1
        await anyio.sleep(self.delay)
        return png_bytes()


class BrokenProvider:
    """Raises something no strategy expects."""

    async def generate(self, **kwargs) -> bytes:
        raise RuntimeError("programming error")


class StallsOnceProvider(StaticProvider):
    """Hangs on its first call, then answers immediately."""

    def __init__(self, delay: float = 2.0) -> None:
        super().__init__()
        self.delay = delay

    async def generate(self, **kwargs) -> bytes:
        stall = not self.calls
        image = await super().generate(**kwargs)
        if stall:
            await anyio.sleep(self.delay)
        return image
