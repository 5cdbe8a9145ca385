"""Unit tests for placeholder binding."""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from rendering.binding import bind_template, find_placeholders, substitute
from rendering.validation import validate_template
from tests.factories import build_template_definition

pytestmark = pytest.mark.unit


class TestSubstitute:
    def test_replaces_known_keys(self):
        assert substitute("Hello {{name}}!", {"name": "Jane"}) == "Hello Jane!"

    def test_tolerates_inner_whitespace(self):
        assert substitute("{{ name }}", {"name": "Jane"}) == "Jane"

    def test_missing_key_is_left_verbatim(self):
        assert substitute("Hi {{nickname}}", {"name": "Jane"}) == "Hi {{nickname}}"

    def test_replacement_is_not_rescanned(self):
        assert substitute("{{a}}", {"a": "{{b}}", "b": "x"}) == "{{b}}"

    @given(st.text(alphabet=st.characters(blacklist_characters="{}")))
    def test_text_without_braces_is_unchanged(self, text):
        assert substitute(text, {"name": "Jane"}) == text

    @given(
        key=st.from_regex(r"[A-Za-z_][A-Za-z0-9_]{0,12}", fullmatch=True),
        value=st.text(),
    )
    def test_bound_value_appears_verbatim(self, key, value):
        assert substitute(f"<{{{{{key}}}}}>", {key: value}) == f"<{value}>"


class TestBindTemplate:
    def test_binds_text_qr_and_image(self):
        definition = build_template_definition()
        definition["elements"].append(
            {
                "id": "logo",
                "type": "image",
                "position": {"x": 50, "y": 50, "width": 100, "height": 100},
                "src": "https://cdn.example.com/{{orgSlug}}.png",
            }
        )
        template = validate_template(definition)

        bound = bind_template(
            template,
            {
                "recipientName": "Jane Doe",
                "verificationUrl": "https://certs.example.com/verify/ABC-DEFG",
                "orgSlug": "acme",
            },
        )

        by_id = {e.id: e for e in bound.elements}
        assert by_id["recipient"].content == "Jane Doe"
        assert by_id["qr"].data == "https://certs.example.com/verify/ABC-DEFG"
        assert by_id["logo"].src == "https://cdn.example.com/acme.png"

    def test_input_template_is_untouched(self):
        template = validate_template(build_template_definition())
        before = template.model_dump()

        bind_template(template, {"recipientName": "Jane Doe"})

        assert template.model_dump() == before

    def test_find_placeholders_lists_unbound_keys(self):
        template = validate_template(build_template_definition())
        assert find_placeholders(template) == {
            "recipientName",
            "issuerName",
            "issueDate",
            "verificationUrl",
        }

        bound = bind_template(template, {"recipientName": "Jane", "issueDate": "x"})

        assert find_placeholders(bound) == {"issuerName", "verificationUrl"}
