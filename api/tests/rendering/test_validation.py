"""Unit tests for rendering.validation."""

import pytest
from pydantic import ValidationError

from rendering.validation import TemplateValidationError, validate_template
from schemas import QRCodeElement, ShapeElement, Template, TextElement
from tests.factories import build_template_definition

pytestmark = pytest.mark.unit


class TestValidTemplates:
    def test_returns_immutable_template(self):
        template = validate_template(build_template_definition())

        assert isinstance(template, Template)
        assert isinstance(template.elements, tuple)
        assert [type(e) for e in template.elements] == [
            ShapeElement,
            TextElement,
            TextElement,
            QRCodeElement,
        ]
        with pytest.raises(ValidationError):
            template.name = "changed"

    def test_accepts_snake_case_keys(self):
        definition = build_template_definition()
        definition["page_settings"] = definition.pop("pageSettings")

        template = validate_template(definition)

        assert template.page_settings.width == 1200

    def test_accepts_existing_template(self):
        template = validate_template(build_template_definition())
        assert validate_template(template) == template

    def test_qr_data_defaults_to_verification_url(self):
        template = validate_template(build_template_definition())
        qr = next(e for e in template.elements if e.id == "qr")
        assert qr.data == "{{verificationUrl}}"


class TestInvalidTemplates:
    def test_reports_every_offending_index(self):
        definition = build_template_definition()
        definition["elements"][1] = {"id": "mystery", "type": "video"}
        definition["elements"][2]["fontFamily"] = "Comic Sans"

        with pytest.raises(TemplateValidationError) as exc_info:
            validate_template(definition)

        assert exc_info.value.element_indices == [1, 2]
        assert "[1, 2]" in str(exc_info.value)

    def test_duplicate_element_ids(self):
        definition = build_template_definition()
        definition["elements"][2]["id"] = "recipient"

        with pytest.raises(TemplateValidationError) as exc_info:
            validate_template(definition)

        (issue,) = exc_info.value.issues
        assert issue.index == 2
        assert issue.element_id == "recipient"
        assert "index 1" in issue.message

    def test_missing_page_settings_is_template_level(self):
        definition = build_template_definition()
        del definition["pageSettings"]

        with pytest.raises(TemplateValidationError) as exc_info:
            validate_template(definition)

        assert exc_info.value.element_indices == []
        assert exc_info.value.issues[0].index is None

    def test_non_positive_size_is_rejected(self):
        definition = build_template_definition()
        definition["elements"][0]["position"]["width"] = 0

        with pytest.raises(TemplateValidationError) as exc_info:
            validate_template(definition)

        assert exc_info.value.element_indices == [0]

    def test_elements_must_be_a_list(self):
        definition = build_template_definition(elements="nope")

        with pytest.raises(TemplateValidationError):
            validate_template(definition)
