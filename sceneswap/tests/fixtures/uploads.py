from typing import Optional

from sceneswap.app.core.errors import InputError
from sceneswap.app.schemas.batch import SourcePhotos
from sceneswap.tests.fixtures.images import png_bytes


class FakePhotoSource:
    """
    PhotoSource double that tracks whether it was read and released.
    """

    def __init__(
        self,
        photos: Optional[SourcePhotos] = None,
        *,
        error: Optional[InputError] = None,
    ) -> None:
        self.photos = photos or SourcePhotos(
            source=png_bytes(40, 40, (255, 0, 0)),
            target=png_bytes(40, 40, (0, 0, 255)),
        )
        self.error = error
        self.read_count = 0
        self.release_count = 0

    @property
    def released(self) -> bool:
        return self.release_count > 0

    async def read(self) -> SourcePhotos:
        self.read_count += 1
        if self.error is not None:
            raise self.error
        return self.photos

    async def release(self) -> None:
        self.release_count += 1
