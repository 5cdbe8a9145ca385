"""Integration tests for template routes."""

import pytest

from tests.factories import build_template_definition

pytestmark = pytest.mark.integration


class TestValidateTemplate:
    async def test_valid(self, client):
        response = await client.post(
            "/api/templates/validate", json=build_template_definition()
        )

        body = response.json()
        assert response.status_code == 200
        assert body["is_valid"] is True
        assert body["issues"] == []
        assert body["template"]["name"] == "Course Completion"

    async def test_invalid_lists_issues(self, client):
        definition = build_template_definition()
        definition["elements"][3]["position"]["height"] = -5

        response = await client.post("/api/templates/validate", json=definition)

        body = response.json()
        assert response.status_code == 200
        assert body["is_valid"] is False
        assert body["template"] is None
        assert [issue["index"] for issue in body["issues"]] == [3]
        assert body["issues"][0]["element_id"] == "qr"


class TestCreateTemplate:
    async def test_create_and_get(self, client):
        created = await client.post("/api/templates", json=build_template_definition())

        assert created.status_code == 201
        template_id = created.json()["id"]

        fetched = await client.get(f"/api/templates/{template_id}")
        assert fetched.status_code == 200
        assert fetched.json()["definition"]["pageSettings"]["width"] == 1200

    async def test_create_invalid(self, client):
        definition = build_template_definition()
        definition["elements"][1]["fontFamily"] = "Nope"

        response = await client.post("/api/templates", json=definition)

        assert response.status_code == 422
        assert response.json()["detail"]["issues"][0]["index"] == 1

    async def test_get_missing(self, client):
        response = await client.get("/api/templates/missing")
        assert response.status_code == 404
