"""
PDF export for comics.

Renders one panel per A4 page: the panel image on top, dialogue and
narration below. Uses reportlab's built-in STSong-Light CID font so that
Chinese text renders without shipping font files.
"""

import io
import logging
import os
from typing import List, Optional

from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.cidfonts import UnicodeCIDFont
from reportlab.lib.colors import black, HexColor
from reportlab.lib.utils import ImageReader

from src.core.models import ComicPanel, MultiPanelComic

logger = logging.getLogger(__name__)

CJK_FONT = "STSong-Light"

_font_registered = False


def _ensure_font() -> str:
    global _font_registered
    if not _font_registered:
        pdfmetrics.registerFont(UnicodeCIDFont(CJK_FONT))
        _font_registered = True
    return CJK_FONT


def wrap_text(text: str, font_name: str, font_size: float, max_width: float) -> List[str]:
    """Wrap text to max_width. Words wider than a line are split per character (CJK text has no spaces)."""
    lines: List[str] = []
    current = ""

    for word in text.split():
        candidate = f"{current} {word}" if current else word
        if pdfmetrics.stringWidth(candidate, font_name, font_size) <= max_width:
            current = candidate
            continue

        if current:
            lines.append(current)
            current = ""

        for char in word:
            candidate = current + char
            if current and pdfmetrics.stringWidth(candidate, font_name, font_size) > max_width:
                lines.append(current)
                current = char
            else:
                current = candidate

    if current:
        lines.append(current)
    return lines if lines else [text]


class ComicPDFGenerator:
    """Generate a sequential PDF with one comic panel per page."""

    def __init__(
        self,
        images_dir: str,
        title_font_size: int = 26,
        font_size: int = 14,
        margin: float = 18 * mm,
        background_color: Optional[str] = None,
    ):
        self.images_dir = images_dir
        self.title_font_size = title_font_size
        self.font_size = font_size
        self.margin = margin
        self.background_color = background_color
        self.font = _ensure_font()

    def _image_reader(self, panel: ComicPanel) -> Optional[ImageReader]:
        path = os.path.join(self.images_dir, panel.image_file)
        if not os.path.exists(path):
            logger.warning(f"Panel {panel.order}: image {panel.image_file} missing, exporting text only")
            return None
        return ImageReader(path)

    def _draw_background(self, c: canvas.Canvas, width: float, height: float) -> None:
        if self.background_color:
            c.setFillColor(HexColor(self.background_color))
            c.rect(0, 0, width, height, stroke=0, fill=1)
            c.setFillColor(black)

    def _draw_cover(self, c: canvas.Canvas, comic: MultiPanelComic, width: float, height: float) -> None:
        self._draw_background(c, width, height)
        c.setFont(self.font, self.title_font_size)
        lines = wrap_text(comic.title, self.font, self.title_font_size, width - 2 * self.margin)
        line_height = self.title_font_size * 1.3
        start_y = height / 2 + len(lines) * line_height / 2
        for i, line in enumerate(lines):
            c.drawCentredString(width / 2, start_y - i * line_height, line)

        c.setFont(self.font, self.font_size)
        c.drawCentredString(width / 2, start_y - len(lines) * line_height - self.font_size * 2, comic.math_concept)

    def _draw_panel(self, c: canvas.Canvas, panel: ComicPanel, width: float, height: float) -> None:
        self._draw_background(c, width, height)
        available_width = width - 2 * self.margin
        image_area_height = (height - 2 * self.margin) * 0.60

        reader = self._image_reader(panel)
        if reader is not None:
            img_width, img_height = reader.getSize()
            aspect_ratio = img_width / img_height
            if aspect_ratio > (available_width / image_area_height):
                draw_width = available_width
                draw_height = draw_width / aspect_ratio
            else:
                draw_height = image_area_height
                draw_width = draw_height * aspect_ratio
            c.drawImage(
                reader,
                (width - draw_width) / 2,
                height - self.margin - draw_height,
                width=draw_width,
                height=draw_height,
                preserveAspectRatio=True,
                anchor='sw'
            )

        text_lines: List[str] = []
        for line in panel.content.dialogue:
            text_lines.extend(wrap_text(f"“{line}”", self.font, self.font_size, available_width))
        if panel.content.narration:
            text_lines.extend(wrap_text(panel.content.narration, self.font, self.font_size, available_width))

        c.setFont(self.font, self.font_size)
        line_height = self.font_size * 1.5
        y = height - self.margin - image_area_height - line_height * 1.5
        for line in text_lines:
            if y < self.margin:
                break
            c.drawString(self.margin, y, line)
            y -= line_height

        c.setFont(self.font, self.font_size - 4)
        c.drawCentredString(width / 2, self.margin / 2, str(panel.order))

    def generate(self, comic: MultiPanelComic) -> bytes:
        buffer = io.BytesIO()
        width, height = A4
        c = canvas.Canvas(buffer, pagesize=A4)
        c.setTitle(comic.title)

        self._draw_cover(c, comic, width, height)
        c.showPage()
        for panel in comic.panels:
            self._draw_panel(c, panel, width, height)
            c.showPage()

        c.save()
        return buffer.getvalue()
