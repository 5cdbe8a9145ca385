"""Markup renderer - resolved layout to HTML.

The same document serves as the interactive preview and as the exact page
the headless browser captures. Output is representation-stable: identical
layouts produce byte-identical HTML (no timestamps, no random ids, fixed
number formatting), which makes snapshot tests and caching safe.

The manual fallback document embeds the very same certificate fragment, so a
degraded result looks like the automated one.
"""

import re
from dataclasses import dataclass
from functools import lru_cache

import qrcode
from qrcode.constants import ERROR_CORRECT_M

from core.templates import templates
from rendering.layout import Box, ResolvedElement, ResolvedLayout
from schemas import FontDeclaration, ImageElement, ShapeElement, TextElement

ROOT_ELEMENT_ID = "certificate"
ROOT_SELECTOR = f"#{ROOT_ELEMENT_ID}"

_FONT_FILE_SUFFIXES = (".woff2", ".woff", ".ttf", ".otf")
_UNSAFE_CSS = re.compile(r"[;{}<>\"\\]")
_FIT_TO_OBJECT_FIT = {"cover": "cover", "contain": "contain", "stretch": "fill"}


@dataclass(frozen=True)
class RenderDocument:
    """A self-contained HTML page sized exactly to the certificate."""

    html: str
    width: int
    height: int
    selector: str = ROOT_SELECTOR


def _num(value: float) -> str:
    text = f"{value:.3f}".rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") else text


def _px(value: float) -> str:
    return f"{_num(value)}px"


def _css(value: str) -> str:
    """Strip characters that could break out of a CSS declaration."""
    return _UNSAFE_CSS.sub("", value).strip()


def _css_url(value: str) -> str:
    return _css(value).replace("'", "%27")


def _family(name: str) -> str:
    return "'" + _css(name).replace("'", "") + "'"


def _declarations(**props: str | None) -> str:
    return ";".join(
        f"{name.replace('_', '-')}:{value}"
        for name, value in props.items()
        if value is not None and value != ""
    )


def _box_style(box: Box) -> dict[str, str]:
    return {
        "left": _px(box.x),
        "top": _px(box.y),
        "width": _px(box.width),
        "height": _px(box.height),
    }


@lru_cache(maxsize=512)
def qr_path(data: str) -> tuple[int, str]:
    """QR modules for ``data`` as (modules per side, SVG path data).

    Dark modules are merged into horizontal runs; the quiet zone is left to
    the surrounding layout.
    """
    qr = qrcode.QRCode(error_correction=ERROR_CORRECT_M, box_size=1, border=0)
    qr.add_data(data)
    qr.make(fit=True)
    matrix = qr.get_matrix()

    segments: list[str] = []
    for y, row in enumerate(matrix):
        x = 0
        while x < len(row):
            if not row[x]:
                x += 1
                continue
            start = x
            while x < len(row) and row[x]:
                x += 1
            run = x - start
            segments.append(f"M{start} {y}h{run}v1h-{run}z")
    return len(matrix), "".join(segments)


def _element_view(resolved: ResolvedElement) -> dict:
    element = resolved.element
    style = element.style

    wrapper = _box_style(resolved.box)
    wrapper.update(
        {
            "opacity": _num(style.opacity) if style.opacity < 1 else None,
            "transform": f"rotate({_num(style.rotation)}deg)"
            if style.rotation
            else None,
            "background_color": _css(style.background_color)
            if style.background_color
            else None,
        }
    )

    view: dict = {"id": element.id, "kind": element.type}

    if isinstance(element, TextElement):
        wrapper.update(
            {
                "overflow": "hidden",
                "font_family": _family(element.font_family),
                "font_size": _px(element.font_size),
                "font_weight": _css(element.font_weight),
                "font_style": element.font_style,
                "line_height": _px(resolved.line_height),
                "color": _css(style.color),
            }
        )
        # Breaks and tops come from the layout; horizontal alignment is left to
        # the browser so it uses the real glyph widths of web fonts.
        view["lines"] = [
            {
                "text": line.text,
                "style": _declarations(
                    left="0",
                    top=_px(line.y),
                    width="100%",
                    text_align=element.text_align,
                ),
            }
            for line in resolved.lines
        ]

    elif isinstance(element, ImageElement):
        wrapper["overflow"] = "hidden"
        view["src"] = element.src
        if resolved.image_rect is not None:
            view["image_style"] = _declarations(**_box_style(resolved.image_rect))
        else:
            view["image_style"] = _declarations(
                left="0",
                top="0",
                width="100%",
                height="100%",
                object_fit=_FIT_TO_OBJECT_FIT[element.fit],
            )

    elif isinstance(element, ShapeElement):
        view["shape_style"] = _shape_style(element, resolved.box)

    else:
        size, path = qr_path(element.data)
        view["qr"] = {
            "size": size,
            "path": path,
            "foreground": _css(element.foreground),
            "background": _css(element.background),
            "style": _declarations(**_box_style(resolved.qr_rect)),
            "width": _num(resolved.qr_rect.width),
            "height": _num(resolved.qr_rect.height),
        }

    view["style"] = _declarations(**wrapper)
    return view


def _shape_style(element: ShapeElement, box: Box) -> str:
    stroke = (
        f"{_px(element.stroke_width)} solid {_css(element.stroke_color)}"
        if element.stroke_width and element.stroke_color
        else None
    )
    if element.shape == "line":
        thickness = element.stroke_width or 1.0
        return _declarations(
            left="0",
            top=_px((box.height - thickness) / 2),
            width="100%",
            height=_px(thickness),
            background_color=_css(element.stroke_color or element.fill or "#000000"),
        )

    radius = "50%" if element.shape == "ellipse" else _px(element.border_radius)
    return _declarations(
        left="0",
        top="0",
        width="100%",
        height="100%",
        box_sizing="border-box",
        background_color=_css(element.fill) if element.fill else None,
        border=stroke,
        border_radius=radius if radius != "0px" else None,
    )


def _font_views(fonts: tuple[FontDeclaration, ...]) -> tuple[list[dict], list[str]]:
    faces: list[dict] = []
    stylesheets: list[str] = []
    for font in fonts:
        if not font.url:
            continue
        if font.url.lower().split("?", 1)[0].endswith(_FONT_FILE_SUFFIXES):
            faces.append({"family": _family(font.family), "url": _css_url(font.url)})
        elif font.url not in stylesheets:
            stylesheets.append(font.url)
    return faces, stylesheets


def _page_context(layout: ResolvedLayout) -> dict:
    faces, stylesheets = _font_views(layout.fonts)
    root_style = _declarations(
        width=_px(layout.width),
        height=_px(layout.height),
        background_color=_css(layout.background_color)
        if layout.background_color
        else None,
        background_image=f"url('{_css_url(layout.background_image)}')"
        if layout.background_image
        else None,
        background_size="cover" if layout.background_image else None,
        background_position="center" if layout.background_image else None,
    )
    return {
        "title": layout.title,
        "width": _num(layout.width),
        "height": _num(layout.height),
        "root_id": ROOT_ELEMENT_ID,
        "root_style": root_style,
        "font_faces": faces,
        "stylesheets": stylesheets,
        "elements": [_element_view(e) for e in layout.elements if e.visible],
    }


def render_document(layout: ResolvedLayout) -> RenderDocument:
    """Render the preview/capture document for a resolved layout."""
    html = templates.get_template("certificate.html").render(**_page_context(layout))
    return RenderDocument(html=html, width=layout.width, height=layout.height)


def render_fallback_document(
    layout: ResolvedLayout,
    *,
    document_title: str,
    requested_format: str,
    reason: str,
) -> str:
    """Standalone, print-oriented page with manual save instructions.

    Used when automated capture is unavailable. The certificate itself is the
    same fragment ``render_document`` produces.
    """
    context = _page_context(layout)
    context.update(
        {
            "document_title": document_title,
            "requested_format": requested_format.upper(),
            "reason": reason,
        }
    )
    return templates.get_template("fallback.html").render(**context)
