"""Template validation.

Turns an untrusted template definition (JSON from the designer or the
database) into an immutable ``Template``. Validation is all-or-nothing: every
problem is collected first and reported together, and nothing is returned
unless the whole definition is sound.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from schemas import Element, FontDeclaration, PageSettings, Template, TextElement

_element_adapter: TypeAdapter = TypeAdapter(Element)


@dataclass(frozen=True)
class TemplateIssue:
    """One problem in a template definition.

    ``index`` is the element's position in the declared element list, or None
    for template-level problems (page settings, fonts, name).
    """

    index: int | None
    element_id: str | None
    message: str


class TemplateValidationError(Exception):
    """Raised when a template definition is malformed."""

    def __init__(self, issues: list[TemplateIssue]):
        self.issues = issues
        indices = sorted({i.index for i in issues if i.index is not None})
        summary = f"{len(issues)} problem(s) in template"
        if indices:
            summary += f"; offending element indices: {indices}"
        super().__init__(summary)

    @property
    def element_indices(self) -> list[int]:
        return sorted({i.index for i in self.issues if i.index is not None})


def _format_pydantic_error(exc: PydanticValidationError) -> str:
    parts = []
    for error in exc.errors():
        loc = ".".join(str(p) for p in error["loc"])
        parts.append(f"{loc}: {error['msg']}" if loc else error["msg"])
    return "; ".join(parts)


def _raw_element_id(raw: Any) -> str | None:
    if isinstance(raw, Mapping):
        value = raw.get("id")
        return str(value) if value is not None else None
    return None


def validate_template(definition: Mapping[str, Any] | Template) -> Template:
    """Validate a template definition and return the immutable model.

    Checks:
    - every element parses as one of the known variants (text, image, shape, qr)
    - element ids are unique
    - every text element references a declared font family
    - page settings and font declarations are well formed

    Raises:
        TemplateValidationError: listing every offending element index.
    """
    if isinstance(definition, Template):
        definition = definition.model_dump(mode="json")

    issues: list[TemplateIssue] = []

    raw_elements = definition.get("elements", [])
    if not isinstance(raw_elements, list | tuple):
        issues.append(TemplateIssue(None, None, "elements: must be a list"))
        raw_elements = []

    elements = []
    for index, raw in enumerate(raw_elements):
        try:
            elements.append((index, _element_adapter.validate_python(raw)))
        except PydanticValidationError as e:
            issues.append(
                TemplateIssue(index, _raw_element_id(raw), _format_pydantic_error(e))
            )

    raw_page = definition.get("page_settings", definition.get("pageSettings"))
    if raw_page is None:
        issues.append(TemplateIssue(None, None, "pageSettings: field required"))
    else:
        try:
            PageSettings.model_validate(raw_page)
        except PydanticValidationError as e:
            issues.append(
                TemplateIssue(None, None, f"pageSettings: {_format_pydantic_error(e)}")
            )

    declared_families: set[str] = set()
    for raw_font in definition.get("fonts", []) or []:
        try:
            declared_families.add(FontDeclaration.model_validate(raw_font).family)
        except PydanticValidationError as e:
            issues.append(
                TemplateIssue(None, None, f"fonts: {_format_pydantic_error(e)}")
            )

    seen_ids: dict[str, int] = {}
    for index, element in elements:
        if element.id in seen_ids:
            first = seen_ids[element.id]
            issues.append(
                TemplateIssue(
                    index,
                    element.id,
                    f"duplicate element id (first used at index {first})",
                )
            )
        else:
            seen_ids[element.id] = index

        if (
            isinstance(element, TextElement)
            and element.font_family not in declared_families
        ):
            issues.append(
                TemplateIssue(
                    index,
                    element.id,
                    f"font family '{element.font_family}' is not declared in fonts",
                )
            )

    if issues:
        raise TemplateValidationError(issues)

    try:
        return Template.model_validate(definition)
    except PydanticValidationError as e:
        raise TemplateValidationError(
            [TemplateIssue(None, None, _format_pydantic_error(e))]
        ) from e
