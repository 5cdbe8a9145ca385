"""Layout/composition engine.

Resolves a bound template into absolute page geometry. The result is computed
once per certificate and shared by every output encoding (preview markup,
vector capture, raster capture, manual fallback), so all of them show the
same line breaks, the same clipping and the same image placement.

Rules:
- Element positions are page coordinates. Page margins describe the safe
  area; elements leaving it are flagged, never moved.
- Painting order is ascending z-index, ties broken by declaration order.
- Text wraps inside the declared width using server-side font metrics and is
  clipped at the declared height. There is no auto-shrink.
- Images are fit per declared mode (cover, contain, stretch).
- QR codes are drawn as the largest centered square inside their box.

The engine is a pure function of its input: no clock, no randomness, and all
coordinates are rounded so repeated runs produce equal results.
"""

from collections.abc import Callable
from dataclasses import dataclass

from rendering.fonts import FontMetrics
from schemas import (
    Element,
    FontDeclaration,
    ImageElement,
    QRCodeElement,
    Template,
    TextElement,
)

_PRECISION = 3
_FIT_EPSILON = 0.01


def _r(value: float) -> float:
    return round(value + 0.0, _PRECISION)


@dataclass(frozen=True)
class Box:
    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    def contains(self, other: "Box") -> bool:
        return (
            other.x >= self.x - _FIT_EPSILON
            and other.y >= self.y - _FIT_EPSILON
            and other.right <= self.right + _FIT_EPSILON
            and other.bottom <= self.bottom + _FIT_EPSILON
        )

    def intersect(self, other: "Box") -> "Box | None":
        left = max(self.x, other.x)
        top = max(self.y, other.y)
        right = min(self.right, other.right)
        bottom = min(self.bottom, other.bottom)
        if right <= left or bottom <= top:
            return None
        return Box(_r(left), _r(top), _r(right - left), _r(bottom - top))


@dataclass(frozen=True)
class TextLine:
    """One wrapped line; offsets are relative to the element box."""

    text: str
    x: float
    y: float
    width: float


@dataclass(frozen=True)
class ResolvedElement:
    """Final geometry of one element.

    ``box`` is in page coordinates. ``lines``, ``image_rect`` and ``qr_rect``
    are relative to ``box``.
    """

    element: Element
    paint_order: int
    box: Box
    visible: bool
    outside_safe_area: bool
    lines: tuple[TextLine, ...] = ()
    line_height: float = 0.0
    overflowed: bool = False
    image_rect: Box | None = None
    qr_rect: Box | None = None

    @property
    def id(self) -> str:
        return self.element.id

    @property
    def kind(self) -> str:
        return self.element.type


@dataclass(frozen=True)
class ResolvedLayout:
    title: str
    width: int
    height: int
    safe_area: Box
    background_color: str | None
    background_image: str | None
    fonts: tuple[FontDeclaration, ...]
    elements: tuple[ResolvedElement, ...]

    def element(self, element_id: str) -> ResolvedElement:
        for resolved in self.elements:
            if resolved.id == element_id:
                return resolved
        raise KeyError(element_id)


def wrap_text(
    text: str, max_width: float, measure: Callable[[str], float]
) -> list[str]:
    """Greedy word wrap.

    Paragraphs are split on newlines; runs of whitespace collapse to one
    space. A word wider than ``max_width`` is broken between characters.
    """
    lines: list[str] = []
    limit = max_width + _FIT_EPSILON

    for paragraph in text.split("\n"):
        words = paragraph.split()
        if not words:
            lines.append("")
            continue

        current = ""
        for word in words:
            candidate = f"{current} {word}" if current else word
            if measure(candidate) <= limit:
                current = candidate
                continue

            if current:
                lines.append(current)
                current = ""

            if measure(word) <= limit:
                current = word
                continue

            piece = ""
            for char in word:
                if piece and measure(piece + char) > limit:
                    lines.append(piece)
                    piece = char
                else:
                    piece += char
            current = piece

        lines.append(current)

    return lines


def _layout_text(
    element: TextElement, box: Box, metrics: FontMetrics
) -> tuple[tuple[TextLine, ...], float, bool]:
    def measure(value: str) -> float:
        return metrics.text_width(
            value,
            family=element.font_family,
            size=element.font_size,
            weight=element.font_weight,
        )

    line_height = element.font_size * element.line_height
    wrapped = wrap_text(element.content, box.width, measure)

    lines: list[TextLine] = []
    for index, text in enumerate(wrapped):
        top = index * line_height
        # Lines starting below the box are dropped; a partial last line is
        # clipped by the box itself.
        if top >= box.height:
            break
        width = measure(text)
        if element.text_align == "center":
            offset = (box.width - width) / 2
        elif element.text_align == "right":
            offset = box.width - width
        else:
            offset = 0.0
        lines.append(TextLine(text=text, x=_r(offset), y=_r(top), width=_r(width)))

    overflowed = (
        len(lines) < len(wrapped)
        or len(wrapped) * line_height > box.height + _FIT_EPSILON
    )
    return tuple(lines), _r(line_height), overflowed


def fit_image(
    mode: str,
    box_width: float,
    box_height: float,
    natural_width: float,
    natural_height: float,
) -> Box:
    """Draw rectangle of an image inside its box, relative to the box."""
    if mode == "stretch":
        return Box(0.0, 0.0, _r(box_width), _r(box_height))

    scale_x = box_width / natural_width
    scale_y = box_height / natural_height
    scale = max(scale_x, scale_y) if mode == "cover" else min(scale_x, scale_y)
    width = natural_width * scale
    height = natural_height * scale
    return Box(
        _r((box_width - width) / 2),
        _r((box_height - height) / 2),
        _r(width),
        _r(height),
    )


def _qr_rect(box: Box) -> Box:
    side = min(box.width, box.height)
    return Box(
        _r((box.width - side) / 2), _r((box.height - side) / 2), _r(side), _r(side)
    )


def compute_layout(
    template: Template, metrics: FontMetrics | None = None
) -> ResolvedLayout:
    """Resolve every element of a bound template to page geometry."""
    metrics = metrics or FontMetrics(template)
    page_settings = template.page_settings
    margin = page_settings.margin

    page = Box(0.0, 0.0, float(page_settings.width), float(page_settings.height))
    safe_area = Box(
        _r(margin.left),
        _r(margin.top),
        _r(max(page.width - margin.left - margin.right, 0.0)),
        _r(max(page.height - margin.top - margin.bottom, 0.0)),
    )

    ordered = sorted(
        enumerate(template.elements),
        key=lambda pair: (pair[1].z_index, pair[0]),
    )

    resolved: list[ResolvedElement] = []
    for paint_order, (_, element) in enumerate(ordered):
        position = element.position
        box = Box(
            _r(position.x), _r(position.y), _r(position.width), _r(position.height)
        )

        extra: dict = {}
        if isinstance(element, TextElement):
            lines, line_height, overflowed = _layout_text(element, box, metrics)
            extra = {
                "lines": lines,
                "line_height": line_height,
                "overflowed": overflowed,
            }
        elif isinstance(element, ImageElement):
            if element.natural_width and element.natural_height:
                extra = {
                    "image_rect": fit_image(
                        element.fit,
                        box.width,
                        box.height,
                        element.natural_width,
                        element.natural_height,
                    )
                }
        elif isinstance(element, QRCodeElement):
            extra = {"qr_rect": _qr_rect(box)}

        resolved.append(
            ResolvedElement(
                element=element,
                paint_order=paint_order,
                box=box,
                visible=page.intersect(box) is not None,
                outside_safe_area=not safe_area.contains(box),
                **extra,
            )
        )

    background = page_settings.background
    return ResolvedLayout(
        title=template.name,
        width=page_settings.width,
        height=page_settings.height,
        safe_area=safe_area,
        background_color=background.color,
        background_image=background.image,
        fonts=template.fonts,
        elements=tuple(resolved),
    )
