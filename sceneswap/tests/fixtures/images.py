import io
from pathlib import Path
from typing import Iterable, Tuple

from PIL import Image


# ------------------------------------------------------------------
# Encoded image builders
# ------------------------------------------------------------------

def png_bytes(
    width: int = 64,
    height: int = 48,
    color: Tuple[int, int, int] = (200, 80, 40),
) -> bytes:
    """A solid-colour RGB PNG of the requested pixel size."""
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


def jpeg_bytes(width: int = 64, height: int = 48) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), (30, 120, 220)).save(buffer, format="JPEG")
    return buffer.getvalue()


def corrupt_image_bytes() -> bytes:
    """Starts like a PNG, then stops making sense."""
    return b"\x89PNG\r\n\x1a\n" + b"not really a png" * 8


# ------------------------------------------------------------------
# Scene directory builder
# ------------------------------------------------------------------

def write_scene_dir(
    directory: Path,
    names: Iterable[str],
    size: Tuple[int, int] = (120, 90),
) -> Path:
    """Write one PNG per scene name into ``directory``."""
    directory.mkdir(parents=True, exist_ok=True)
    for index, name in enumerate(names):
        shade = (40 + index * 20) % 256
        (directory / name).write_bytes(
            png_bytes(size[0], size[1], (shade, 100, 160))
        )
    return directory
