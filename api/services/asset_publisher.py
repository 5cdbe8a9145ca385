"""Remote asset store for rendered certificates.

Rendered PDFs/PNGs can be pushed to an external asset API so they have a
stable download URL. Publishing is optional (disabled unless
ASSET_PUBLISHER_URL is set) and never changes an export's outcome: a failed
upload is logged and the caller still gets the rendered file.

SCALABILITY:
- Circuit breaker fails fast when the asset API is down (5 failures -> 60s recovery)
- Retry with exponential backoff for transient failures (3 attempts)
- Connection pooling via one httpx.AsyncClient per publisher
"""

import json
import logging
from dataclasses import dataclass

import httpx
from circuitbreaker import CircuitBreakerError, circuit
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from core.config import get_settings
from models import CertificateStatus
from repositories.artifact_repository import PublishedArtifactRepository
from schemas import ExportFormat
from services.certificates_service import CertificateRevokedError
from services.export_service import CertificateExporter, ExportResult

logger = logging.getLogger(__name__)


class AssetPublishError(Exception):
    """Raised when the asset API rejects a request (not retriable)."""


class AssetServerError(AssetPublishError):
    """Raised when the asset API returns a 5xx error or 429 (retriable)."""


# Exceptions that should trigger retry and circuit breaker
RETRIABLE_EXCEPTIONS: tuple[type[Exception], ...] = (
    httpx.RequestError,
    httpx.TimeoutException,
    AssetServerError,
)


@dataclass(frozen=True)
class PublishedAsset:
    asset_id: str
    url: str


class HttpAssetPublisher:
    """Client for the asset API (upload, lookup, delete)."""

    UPLOAD_PATH = "/api/v1/assets/upload"
    ASSET_PATH = "/api/v1/assets/{asset_id}"

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        project: str = "certificates",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.project = project
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers={"Authorization": f"Bearer {token}"} if token else None,
            limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
        )

    async def aclose(self) -> None:
        if not self._client.is_closed:
            await self._client.aclose()

    @circuit(
        failure_threshold=5,
        recovery_timeout=60,
        expected_exception=RETRIABLE_EXCEPTIONS,
        name="asset_publisher_circuit",
    )
    @retry(
        retry=retry_if_exception_type(RETRIABLE_EXCEPTIONS),
        stop=stop_after_attempt(3),
        wait=wait_random_exponential(multiplier=0.5, max=4),
        reraise=True,
    )
    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        response = await self._client.request(method, path, **kwargs)

        # 5xx and 429 are retriable - raise to trigger retry/circuit breaker
        if response.status_code >= 500 or response.status_code == 429:
            raise AssetServerError(f"Asset API returned {response.status_code}")

        if response.status_code >= 400:
            raise AssetPublishError(
                f"Asset API rejected {method} {path}: {response.status_code}"
            )
        return response

    async def publish(
        self,
        content: bytes,
        *,
        filename: str,
        media_type: str,
        metadata: dict[str, str] | None = None,
    ) -> PublishedAsset:
        asset_type = "document" if media_type == "application/pdf" else "image"
        response = await self._request(
            "POST",
            self.UPLOAD_PATH,
            files={"file": (filename, content, media_type)},
            data={
                "project_name": self.project,
                "asset_type": asset_type,
                "metadata": json.dumps(metadata or {}, sort_keys=True),
            },
        )
        body = response.json()
        asset = PublishedAsset(asset_id=str(body["id"]), url=body["access_url"])
        logger.info(
            "asset.published",
            extra={"asset_id": asset.asset_id, "asset_filename": filename},
        )
        return asset

    async def delete(self, asset_id: str) -> None:
        await self._request("DELETE", self.ASSET_PATH.format(asset_id=asset_id))
        logger.info("asset.deleted", extra={"asset_id": asset_id})


def create_asset_publisher() -> HttpAssetPublisher | None:
    """Publisher from settings, or None when publishing is disabled."""
    settings = get_settings()
    if not settings.publisher_enabled:
        return None
    return HttpAssetPublisher(
        settings.asset_publisher_url,
        settings.asset_publisher_token,
        project=settings.asset_publisher_project,
        timeout=settings.http_timeout,
    )


async def export_and_publish(
    exporter: CertificateExporter,
    publisher: HttpAssetPublisher | None,
    session_maker: async_sessionmaker[AsyncSession],
    certificate_id: str,
    fmt: ExportFormat | str,
) -> tuple[ExportResult, PublishedAsset | None]:
    """Export a certificate and push the file to the asset store.

    Only automated captures are published; a degraded result is returned
    unpublished. Upload failures are logged and leave the export untouched.

    Raises:
        CertificateNotFoundError: If the certificate does not exist
        CertificateRevokedError: If the certificate has been revoked
    """
    # Status is read from the database, never the render cache
    job = await exporter.resolver.resolve(certificate_id, fresh=True)
    if job.certificate.status == CertificateStatus.REVOKED:
        raise CertificateRevokedError(certificate_id)

    result = await exporter.export(certificate_id, fmt)
    if publisher is None or result.degraded or result.format is ExportFormat.HTML:
        return result, None

    certificate = job.certificate
    try:
        asset = await publisher.publish(
            result.content,
            filename=result.filename,
            media_type=result.media_type,
            metadata={
                "certificate_id": certificate.id,
                "certificate_number": certificate.certificate_number,
                "recipient_name": certificate.recipient_name,
                "template_name": certificate.template_name,
                "issue_date": certificate.issue_date.isoformat(),
            },
        )
    except (*RETRIABLE_EXCEPTIONS, AssetPublishError, CircuitBreakerError) as e:
        logger.warning(
            "asset.publish.failed",
            extra={"certificate_id": certificate_id, "error": str(e)},
        )
        return result, None

    async with session_maker() as db:
        await PublishedArtifactRepository(db).add(
            certificate_id=certificate_id,
            format=result.format.value,
            asset_id=asset.asset_id,
            url=asset.url,
        )
        await db.commit()

    return result, asset
