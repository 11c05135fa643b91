"""
Local, in-process image compositing (Pillow).

Used by the synthetic-composite strategy to personalise a scene without
any network call: a bordered thumbnail of the caller's photo is placed
in the bottom-right corner of the scene and a label box naming the
scene is drawn in the top-left corner. The result is deterministic for
identical inputs.
"""

from __future__ import annotations

import io
from typing import Tuple

from PIL import Image, ImageDraw, ImageFont, ImageOps


class ImageCompositor:
    def __init__(
        self,
        *,
        thumbnail_ratio: float = 0.28,
        border_px: int = 6,
        margin_ratio: float = 0.03,
    ) -> None:
        if not 0 < thumbnail_ratio < 1:
            raise ValueError("thumbnail_ratio must be between 0 and 1")

        self.thumbnail_ratio = thumbnail_ratio
        self.border_px = border_px
        self.margin_ratio = margin_ratio

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def metadata(self, image_bytes: bytes) -> Tuple[int, int, str]:
        """Return (width, height, format) without decoding pixel data."""
        with Image.open(io.BytesIO(image_bytes)) as img:
            return img.width, img.height, (img.format or "UNKNOWN")

    def resize(self, image_bytes: bytes, max_side: int) -> bytes:
        """Downscale so the longest side is at most ``max_side`` pixels."""
        if max_side < 1:
            raise ValueError("max_side must be positive")

        with Image.open(io.BytesIO(image_bytes)) as img:
            img = ImageOps.exif_transpose(img)
            img.thumbnail((max_side, max_side))
            return self._encode_png(img)

    def composite(
        self,
        base_image: bytes,
        photo: bytes,
        label: str,
    ) -> bytes:
        with Image.open(io.BytesIO(base_image)) as base_src:
            base = ImageOps.exif_transpose(base_src).convert("RGBA")

        with Image.open(io.BytesIO(photo)) as photo_src:
            thumb = ImageOps.exif_transpose(photo_src).convert("RGB")

        width, height = base.size
        side = max(16, int(width * self.thumbnail_ratio))
        thumb.thumbnail((side, side))
        framed = ImageOps.expand(thumb, border=self.border_px, fill="white")

        margin = max(4, int(width * self.margin_ratio))
        x = max(0, width - framed.width - margin)
        y = max(0, height - framed.height - margin)
        base.paste(framed, (x, y))

        self._draw_label(base, label, margin)

        return self._encode_png(base.convert("RGB"))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _draw_label(self, canvas: Image.Image, label: str, margin: int) -> None:
        overlay = Image.new("RGBA", canvas.size, (0, 0, 0, 0))
        draw = ImageDraw.Draw(overlay)
        font = ImageFont.load_default()

        left, top, right, bottom = draw.textbbox((0, 0), label, font=font)
        pad = 6
        box = (
            margin,
            margin,
            margin + (right - left) + 2 * pad,
            margin + (bottom - top) + 2 * pad,
        )
        draw.rectangle(box, fill=(0, 0, 0, 140))
        draw.text(
            (margin + pad - left, margin + pad - top),
            label,
            font=font,
            fill=(255, 255, 255, 255),
        )
        canvas.alpha_composite(overlay)

    @staticmethod
    def _encode_png(img: Image.Image) -> bytes:
        buffer = io.BytesIO()
        img.save(buffer, format="PNG")
        return buffer.getvalue()
