"""
Preview document assembler.

Turns the ordered artifact list of a batch into a paginated PDF:

    decode image bytes  ->  native pixel size  ->  page of that size
    ->  image at full bleed  ->  translucent PREVIEW watermark
    ->  scene caption in the footer

Failure isolation:
    Every artifact is decoded before anything is drawn for it. An
    artifact that cannot be decoded (or drawn) produces a fixed-size
    placeholder page naming the scene instead, and assembly continues.
    Page count and page order always match the artifact list.

Memory:
    Artifacts are decoded one at a time and released after their page
    is drawn. Pages are not pushed to the sink as they are finished:
    reportlab keeps the whole encoded document in memory and writes it
    to the sink only in save(). The HTTP layer spools that output and
    streams it in chunks, so the response starts once the document is
    complete.

Trust boundary:
    This module does NOT know about identities, quotas or providers.
"""

from __future__ import annotations

import io
import logging
from typing import BinaryIO, Iterable, Iterator, List, Tuple

from PIL import Image
from pydantic import BaseModel, ConfigDict, Field
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen.canvas import Canvas

from sceneswap.app.core.errors import RenderError
from sceneswap.app.schemas.batch import Artifact, SceneDescriptor

logger = logging.getLogger("sceneswap.assembler")


DEFAULT_WATERMARK = "PREVIEW • NON-COMMERCIAL USE"
PLACEHOLDER_TITLE = "Image render failed"


class AssemblyReport(BaseModel):
    """Summary of one assembled document."""

    page_count: int = 0
    placeholder_scenes: List[str] = Field(default_factory=list)
    page_sizes: List[Tuple[float, float]] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")


class DocumentAssembler:
    def __init__(
        self,
        *,
        watermark_text: str = DEFAULT_WATERMARK,
        title: str = "SceneSwap preview",
        author: str = "sceneswap",
    ) -> None:
        self.watermark_text = watermark_text
        self.title = title
        self.author = author

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def write(
        self,
        artifacts: Iterable[Artifact],
        sink: BinaryIO,
    ) -> AssemblyReport:
        """
        Render one page per artifact, in order, into ``sink``.

        Never raises for a bad artifact; see the module docstring.
        """
        pdf = Canvas(sink, pageCompression=1)
        pdf.setTitle(self.title)
        pdf.setAuthor(self.author)
        pdf.setCreator(self.author)

        report = AssemblyReport()

        for artifact in artifacts:
            page_size = self._render_page(pdf, artifact, report)
            report.page_sizes.append(page_size)
            report.page_count += 1
            pdf.showPage()

        pdf.save()

        logger.info(
            "document_assembled",
            extra={
                "page_count": report.page_count,
                "placeholders": len(report.placeholder_scenes),
            },
        )
        return report

    # ------------------------------------------------------------------
    # Page rendering
    # ------------------------------------------------------------------

    def _render_page(
        self,
        pdf: Canvas,
        artifact: Artifact,
        report: AssemblyReport,
    ) -> Tuple[float, float]:
        try:
            image = self._decode(artifact)
        except RenderError as exc:
            return self._placeholder(pdf, artifact.scene, report, exc)

        try:
            return self._draw_image_page(pdf, image, artifact.scene)
        except Exception as exc:
            return self._placeholder(pdf, artifact.scene, report, exc)
        finally:
            image.close()

    def _decode(self, artifact: Artifact) -> Image.Image:
        if not artifact.image_bytes:
            raise RenderError(f"No image bytes for scene '{artifact.scene.name}'")

        try:
            with Image.open(io.BytesIO(artifact.image_bytes)) as src:
                src.load()
                if src.mode in ("RGB", "RGBA", "L"):
                    return src.copy()
                has_alpha = src.mode in ("LA", "PA") or (
                    "transparency" in src.info
                )
                return src.convert("RGBA" if has_alpha else "RGB")
        except Exception as exc:
            # PIL signals corrupt data with OSError, SyntaxError, ValueError
            # or DecompressionBombError depending on the codec.
            raise RenderError(
                f"Cannot decode image for scene '{artifact.scene.name}': "
                f"{type(exc).__name__}"
            ) from exc

    def _draw_image_page(
        self,
        pdf: Canvas,
        image: Image.Image,
        scene: SceneDescriptor,
    ) -> Tuple[float, float]:
        width, height = float(image.width), float(image.height)
        pdf.setPageSize((width, height))

        pdf.drawImage(
            ImageReader(image),
            0,
            0,
            width=width,
            height=height,
            mask="auto",
        )

        # Watermark
        font_size = max(24, int(width * 0.03))
        pdf.saveState()
        pdf.setFillColor(colors.white)
        pdf.setFillAlpha(0.6)
        pdf.setFont("Helvetica-Bold", font_size)
        pdf.drawString(20, height - 20 - font_size, self.watermark_text)
        pdf.restoreState()

        # Scene caption
        pdf.saveState()
        pdf.setFillColor(colors.black)
        pdf.setFillAlpha(0.7)
        pdf.setFont("Helvetica", 14)
        pdf.drawString(20, 22, scene.label)
        pdf.restoreState()

        return width, height

    def _placeholder(
        self,
        pdf: Canvas,
        scene: SceneDescriptor,
        report: AssemblyReport,
        exc: Exception,
    ) -> Tuple[float, float]:
        logger.warning(
            "render_failed_placeholder_emitted",
            extra={
                "scene": scene.name,
                "error_type": type(exc).__name__,
            },
        )
        report.placeholder_scenes.append(scene.name)

        width, height = A4
        pdf.setPageSize((width, height))

        pdf.setFillColor(colors.HexColor("#333333"))
        pdf.setFont("Helvetica-Bold", 18)
        pdf.drawCentredString(width / 2, height - 120, PLACEHOLDER_TITLE)

        pdf.setFillColor(colors.HexColor("#666666"))
        pdf.setFont("Helvetica", 12)
        pdf.drawCentredString(width / 2, height - 150, f"Scene: {scene.name}")

        return width, height


def iter_chunks(
    stream: BinaryIO,
    chunk_size: int = 64 * 1024,
) -> Iterator[bytes]:
    """Yield a seekable document stream from the start, chunk by chunk."""
    stream.seek(0)
    while True:
        chunk = stream.read(chunk_size)
        if not chunk:
            break
        yield chunk
