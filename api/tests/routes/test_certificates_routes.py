"""Integration tests for certificate routes.

Exports go through the fake render driver wired in conftest, so these run
without a browser.
"""

import io
import zipfile

import pytest
from httpx import AsyncClient
from PIL import Image

from core.config import clear_settings_cache
from tests.fakes import FAKE_PDF, FakeRenderDriver

pytestmark = pytest.mark.integration


def _issue_payload(template_id: str, **overrides) -> dict:
    payload = {
        "template_id": template_id,
        "recipient_first_name": "Jane",
        "recipient_last_name": "Doe",
        "recipient_email": "jane@example.com",
        "issuer_name": "Cloud Academy",
        "issue_date": "2026-03-14",
        "category": "APP",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
async def issued(client: AsyncClient, stored_template) -> dict:
    response = await client.post(
        "/api/certificates", json=_issue_payload(stored_template.id)
    )
    assert response.status_code == 201
    return response.json()


class TestIssueCertificate:
    async def test_issue(self, client, stored_template):
        response = await client.post(
            "/api/certificates", json=_issue_payload(stored_template.id)
        )

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "active"
        assert body["certificate_number"].startswith("CERT-2026-APP-")
        assert body["qr_payload"].endswith(body["verification_id"])
        assert "snapshot" not in body

    async def test_unknown_template(self, client):
        response = await client.post(
            "/api/certificates", json=_issue_payload("missing")
        )
        assert response.status_code == 404

    async def test_invalid_payload(self, client, stored_template):
        response = await client.post(
            "/api/certificates",
            json=_issue_payload(
                stored_template.id,
                recipient_email="not-an-email",
                category="TOOLONG",
            ),
        )
        assert response.status_code == 422

    async def test_expiry_before_issue(self, client, stored_template):
        response = await client.post(
            "/api/certificates",
            json=_issue_payload(stored_template.id, expiry_date="2026-01-01"),
        )
        assert response.status_code == 422


class TestReadAndVerify:
    async def test_get(self, client, issued):
        response = await client.get(f"/api/certificates/{issued['id']}")

        assert response.status_code == 200
        assert response.json()["verification_id"] == issued["verification_id"]

    async def test_get_missing(self, client):
        response = await client.get("/api/certificates/missing")
        assert response.status_code == 404

    async def test_verify(self, client, issued):
        response = await client.get(
            f"/api/certificates/verify/{issued['verification_id']}"
        )

        body = response.json()
        assert response.status_code == 200
        assert body["is_valid"] is True
        assert body["certificate"]["id"] == issued["id"]

    async def test_verify_rejects_malformed_id(self, client):
        response = await client.get("/api/certificates/verify/ABC")
        assert response.status_code == 422

    async def test_preview(self, client, issued):
        response = await client.get(f"/api/certificates/{issued['id']}/preview")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/html")
        assert response.headers["cache-control"] == "no-store"
        assert ">Jane Doe</span>" in response.text


class TestDownload:
    async def test_pdf(self, client, issued):
        response = await client.get(f"/api/certificates/{issued['id']}/download")

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pdf"
        assert response.content == FAKE_PDF
        disposition = response.headers["content-disposition"]
        assert disposition.startswith("attachment;")
        assert "Course-Completion_Jane-Doe_" in disposition
        assert "x-export-degraded" not in response.headers

    async def test_html_is_inline(self, client, issued):
        response = await client.get(
            f"/api/certificates/{issued['id']}/download", params={"format": "html"}
        )

        assert response.status_code == 200
        assert response.headers["content-disposition"].startswith("inline;")
        assert 'id="certificate"' in response.text

    async def test_degraded_download_is_flagged(
        self, client, issued, render_driver: FakeRenderDriver
    ):
        render_driver.fail_times = 99

        response = await client.get(
            f"/api/certificates/{issued['id']}/download", params={"format": "png"}
        )

        assert response.status_code == 200
        assert response.headers["x-export-degraded"] == "true"
        assert response.headers["x-export-reason"] == (
            "The rendering engine is unavailable"
        )
        assert response.headers["content-type"].startswith("text/html")
        assert "Save your certificate as PNG" in response.text

    async def test_unknown_format(self, client, issued):
        response = await client.get(
            f"/api/certificates/{issued['id']}/download", params={"format": "gif"}
        )
        assert response.status_code == 422

    async def test_missing(self, client):
        response = await client.get("/api/certificates/missing/download")
        assert response.status_code == 404


class TestBulkDownload:
    async def test_zip(self, client, stored_template):
        ids = []
        for first in ("Ada", "Grace", "Alan"):
            response = await client.post(
                "/api/certificates",
                json=_issue_payload(stored_template.id, recipient_first_name=first),
            )
            ids.append(response.json()["id"])

        response = await client.post(
            "/api/certificates/bulk-download",
            json={"certificate_ids": [*ids, "missing"], "format": "pdf"},
        )

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/zip"
        assert response.headers["x-total-certificates"] == "4"
        assert response.headers["x-successful-certificates"] == "3"
        assert response.headers["x-failed-certificates"] == "missing"
        assert response.headers["x-failed-count"] == "1"
        assert "_3files.zip" in response.headers["content-disposition"]
        with zipfile.ZipFile(io.BytesIO(response.content)) as zf:
            assert len(zf.namelist()) == 3

    async def test_html_is_rejected(self, client, issued):
        response = await client.post(
            "/api/certificates/bulk-download",
            json={"certificate_ids": [issued["id"]], "format": "html"},
        )
        assert response.status_code == 422

    async def test_too_many(self, client, issued, monkeypatch):
        monkeypatch.setenv("BATCH_MAX_ITEMS", "1")
        clear_settings_cache()

        response = await client.post(
            "/api/certificates/bulk-download",
            json={"certificate_ids": [issued["id"], "other"], "format": "pdf"},
        )
        assert response.status_code == 422


class TestLifecycle:
    async def test_publish_without_asset_store(self, client, issued):
        response = await client.post(f"/api/certificates/{issued['id']}/publish")

        assert response.status_code == 200
        body = response.json()
        assert body["published"] is False
        assert body["degraded"] is False
        assert body["url"] is None

    async def test_publish_html_is_rejected(self, client, issued):
        response = await client.post(
            f"/api/certificates/{issued['id']}/publish", params={"format": "html"}
        )
        assert response.status_code == 422

    async def test_revoke_then_publish_conflicts(self, client, issued):
        response = await client.post(f"/api/certificates/{issued['id']}/revoke")
        assert response.status_code == 200
        assert response.json()["status"] == "revoked"

        response = await client.post(f"/api/certificates/{issued['id']}/publish")
        assert response.status_code == 409

        verify = await client.get(
            f"/api/certificates/verify/{issued['verification_id']}"
        )
        assert verify.json()["is_valid"] is False

    async def test_delete(self, client, issued):
        response = await client.delete(f"/api/certificates/{issued['id']}")
        assert response.status_code == 204

        response = await client.get(f"/api/certificates/{issued['id']}")
        assert response.status_code == 404

        response = await client.delete(f"/api/certificates/{issued['id']}")
        assert response.status_code == 404


class TestEndToEnd:
    """Template in, pixels out."""

    async def test_template_to_png(self, client):
        template = await client.post(
            "/api/templates",
            json={
                "name": "Workshop",
                "pageSettings": {"width": 800, "height": 600},
                "fonts": [{"family": "Inter"}],
                "elements": [
                    {
                        "id": "name",
                        "type": "text",
                        "position": {"x": 120, "y": 240, "width": 560, "height": 60},
                        "content": "{{recipientName}}",
                        "fontFamily": "Inter",
                        "fontSize": 36,
                    },
                    {
                        "id": "qr",
                        "type": "qr",
                        "position": {"x": 680, "y": 480, "width": 100, "height": 100},
                    },
                ],
            },
        )
        assert template.status_code == 201

        issued = await client.post(
            "/api/certificates", json=_issue_payload(template.json()["id"])
        )
        certificate_id = issued.json()["id"]

        preview = await client.get(f"/api/certificates/{certificate_id}/preview")
        assert "left:120px;top:240px;width:560px;height:60px" in preview.text
        assert ">Jane Doe</span>" in preview.text

        png = await client.get(
            f"/api/certificates/{certificate_id}/download", params={"format": "png"}
        )
        assert png.status_code == 200
        image = Image.open(io.BytesIO(png.content))
        assert image.size == (1600, 1200)


class TestBulkLifecycle:
    async def test_bulk_revoke(self, client, issued):
        response = await client.post(
            "/api/certificates/bulk-revoke",
            json={"certificate_ids": [issued["id"], "missing"]},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["total_requested"] == 2
        assert body["revoked"] == [issued["id"]]
        assert body["not_found"] == ["missing"]

        response = await client.post(f"/api/certificates/{issued['id']}/publish")
        assert response.status_code == 409

    async def test_bulk_revoke_twice_reports_already_revoked(self, client, issued):
        payload = {"certificate_ids": [issued["id"]]}
        await client.post("/api/certificates/bulk-revoke", json=payload)

        response = await client.post("/api/certificates/bulk-revoke", json=payload)

        assert response.json()["already_revoked"] == [issued["id"]]

    async def test_bulk_delete(self, client, issued):
        response = await client.post(
            "/api/certificates/bulk-delete",
            json={"certificate_ids": [issued["id"], "missing"]},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["deleted"] == [issued["id"]]
        assert body["not_found"] == ["missing"]
        assert body["file_errors"] == 0

        response = await client.get(f"/api/certificates/{issued['id']}")
        assert response.status_code == 404

    async def test_empty_id_list_is_rejected(self, client):
        response = await client.post(
            "/api/certificates/bulk-revoke", json={"certificate_ids": []}
        )
        assert response.status_code == 422
