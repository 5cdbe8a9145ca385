"""Font metrics for text layout.

Text is wrapped on the server, not in the browser, so every output encoding
breaks lines at the same places. Widths come from Pillow: a declared font with
a local ``file`` is measured with that face, anything else with Pillow's
bundled scalable default font at the requested size.
"""

import logging
from functools import lru_cache

from PIL import ImageFont

from schemas import Template

logger = logging.getLogger(__name__)

_BOLD_WEIGHTS = frozenset({"bold", "bolder", "600", "700", "800", "900"})

# Applied to the default face only; a declared file is measured as-is
_SYNTHETIC_BOLD_FACTOR = 1.06


@lru_cache(maxsize=256)
def _load_font(
    path: str | None, size: float
) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    if path:
        try:
            return ImageFont.truetype(path, size=size)
        except OSError:
            logger.warning("fonts.load.failed", extra={"path": path, "size": size})
    return ImageFont.load_default(size=size)


class FontMetrics:
    """Measures text for the fonts declared by one template."""

    def __init__(self, template: Template) -> None:
        self._files = {font.family: font.file for font in template.fonts}

    def text_width(
        self,
        text: str,
        *,
        family: str,
        size: float,
        weight: str = "normal",
    ) -> float:
        if not text:
            return 0.0
        path = self._files.get(family)
        width = float(_load_font(path, size).getlength(text))
        if path is None and weight.lower() in _BOLD_WEIGHTS:
            width *= _SYNTHETIC_BOLD_FACTOR
        return width


def clear_font_cache() -> None:
    """For testing."""
    _load_font.cache_clear()
