"""Placeholder binding.

Substitutes ``{{key}}`` tokens in a template with recipient/certificate data.
Binding never mutates its input: it builds a new ``Template`` whose bound
elements are fresh copies, so a template shared between concurrent exports is
never touched.

Keys missing from the data map are left in place verbatim. A visible
``{{recipientName}}`` on a proof is easier to catch than a silently blank
line.
"""

import re
from collections.abc import Mapping

from schemas import ImageElement, QRCodeElement, Template, TextElement

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_.-]*)\s*\}\}")


def substitute(text: str, data: Mapping[str, str]) -> str:
    """Replace every ``{{key}}`` whose key is present in ``data``."""

    def _replace(match: re.Match[str]) -> str:
        key = match.group(1)
        if key in data:
            return str(data[key])
        return match.group(0)

    return PLACEHOLDER_PATTERN.sub(_replace, text)


def find_placeholders(template: Template) -> set[str]:
    """All placeholder keys referenced anywhere in the template.

    On a bound template these are exactly the keys the data map lacked.
    """
    keys: set[str] = set()
    for element in template.elements:
        for text in _bindable_fields(element).values():
            keys.update(PLACEHOLDER_PATTERN.findall(text))
    return keys


def _bindable_fields(element) -> dict[str, str]:
    if isinstance(element, TextElement):
        return {"content": element.content}
    if isinstance(element, QRCodeElement):
        return {"data": element.data}
    if isinstance(element, ImageElement):
        return {"src": element.src}
    return {}


def bind_template(template: Template, data: Mapping[str, str]) -> Template:
    """Return a new template with ``data`` merged into every placeholder.

    Text content, QR payloads and image sources are bound; shapes carry no
    text. The input template is left untouched.
    """
    bound_elements = []
    for element in template.elements:
        fields = _bindable_fields(element)
        update = {name: substitute(value, data) for name, value in fields.items()}
        bound_elements.append(element.model_copy(update=update, deep=True))

    return template.model_copy(update={"elements": tuple(bound_elements)}, deep=True)
