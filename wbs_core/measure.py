"""
Label width measurement for auto-fit.

PillowTextMeasurer measures with a real font; HeuristicTextMeasurer uses
per-character widths and is deterministic across machines.
"""

import logging
from typing import Optional, Protocol

from PIL import ImageFont

logger = logging.getLogger(__name__)


DEFAULT_FONT_CANDIDATES = ("DejaVuSans.ttf", "Arial.ttf", "LiberationSans-Regular.ttf")


class TextMeasurer(Protocol):
    def measure(self, text: str, font_size: float) -> float:
        """Rendered width of a single line of text, in pixels."""
        ...


class HeuristicTextMeasurer:
    """Average glyph widths as fractions of the font size."""

    def measure(self, text: str, font_size: float) -> float:
        width = 0.0
        for ch in text:
            if ch.isspace():
                width += font_size * 0.33
            elif ch in "il":
                width += font_size * 0.3
            elif ch in "mwMW@#":
                width += font_size * 0.9
            else:
                width += font_size * 0.6
        return width


class PillowTextMeasurer:
    """
    Measures text with a TrueType font loaded through Pillow.

    Fonts are cached per size. When none of the candidate fonts can be
    opened, Pillow's bundled default font is used at the requested size.
    """

    def __init__(self, font_path: Optional[str] = None):
        self._candidates = ((font_path,) if font_path else ()) + DEFAULT_FONT_CANDIDATES
        self._fonts: dict[int, "ImageFont.FreeTypeFont | ImageFont.ImageFont"] = {}

    def font(self, font_size: float):
        size = max(1, int(round(font_size)))
        if size in self._fonts:
            return self._fonts[size]

        font = None
        for path in self._candidates:
            try:
                font = ImageFont.truetype(path, size)
                break
            except OSError:
                continue
        if font is None:
            logger.debug("No TrueType font found, using Pillow default at %dpx", size)
            font = ImageFont.load_default(size=size)

        self._fonts[size] = font
        return font

    def measure(self, text: str, font_size: float) -> float:
        return float(self.font(font_size).getlength(text))
