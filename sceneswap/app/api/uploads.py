"""
Upload boundary.

Multipart fields may carry one file or several under the same name.
The pair is normalized here into the fixed-arity SourcePhotos structure
and rejected early (InputError) when the arity, type or size is wrong.

The uploaded files live in temporary spool storage owned by the
request. PhotoUpload.release() closes (and thereby deletes) all of
them, exactly once, on whichever exit path comes first.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional, Sequence

from fastapi import UploadFile

from sceneswap.app.core.errors import InputError
from sceneswap.app.schemas.batch import SourcePhotos

logger = logging.getLogger("sceneswap.uploads")

ACCEPTED_CONTENT_TYPE = re.compile(r"^image/(jpeg|png|webp|heic|heif)$")


def _content_type(upload: UploadFile) -> str:
    return (upload.content_type or "").split(";")[0].strip().lower()


class PhotoUpload:
    """Scoped temporary resource holding the caller's two photos."""

    def __init__(
        self,
        *,
        source: Optional[Sequence[UploadFile]],
        target: Optional[Sequence[UploadFile]],
        max_bytes: int,
    ) -> None:
        self._source = [f for f in (source or []) if f is not None]
        self._target = [f for f in (target or []) if f is not None]
        self._max_bytes = max_bytes
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def read(self) -> SourcePhotos:
        if self._released:
            raise RuntimeError("Upload already released")

        if len(self._source) != 1 or len(self._target) != 1:
            raise InputError("Need two photos")

        source, target = self._source[0], self._target[0]
        source_bytes = await self._read_one(source, "source")
        target_bytes = await self._read_one(target, "target")

        return SourcePhotos(
            source=source_bytes,
            target=target_bytes,
            source_content_type=_content_type(source),
            target_content_type=_content_type(target),
        )

    async def release(self) -> None:
        if self._released:
            return
        self._released = True

        for upload in self._all_files():
            try:
                await upload.close()
            except OSError:
                logger.warning(
                    "upload_release_failed",
                    extra={"upload_name": upload.filename or ""},
                )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _all_files(self) -> List[UploadFile]:
        return [*self._source, *self._target]

    async def _read_one(self, upload: UploadFile, field: str) -> bytes:
        if not ACCEPTED_CONTENT_TYPE.match(_content_type(upload)):
            raise InputError("Unsupported image type", field=field)

        data = await upload.read(self._max_bytes + 1)

        if not data:
            raise InputError("Empty upload", field=field)
        if len(data) > self._max_bytes:
            raise InputError(
                "File too large",
                field=field,
                max_bytes=self._max_bytes,
            )
        return data
