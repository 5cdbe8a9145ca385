"""Multi-format export with a fallback chain.

Every export request walks a small state machine:

    PRIMARY_RENDER  -> capture with the headless driver
    ON_DEMAND_RETRY -> re-resolve the certificate (bypassing the render
                       cache) and capture once more
    MANUAL_FALLBACK -> return a print-ready HTML page with save instructions

The caller always gets something usable. A fallback is returned as a
``DegradedResult`` so routes and the batch orchestrator can tell it apart
from a real capture; it is never reported as a plain success.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from enum import StrEnum

from core.logger import log_context
from rendering.capture import (
    EngineError,
    RenderDriver,
    RenderDriverError,
    RenderTimeoutError,
    StructureError,
)
from rendering.markup import render_fallback_document
from schemas import ExportFormat
from services.certificates_service import CertificateResolver, RenderJob

logger = logging.getLogger(__name__)

_PDF_MAGIC = b"%PDF-"
_PNG_MAGIC = b"\x89PNG\r\n\x1a\n"
_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9\s-]")
_WHITESPACE = re.compile(r"\s+")

# User-facing reasons; the raw driver error only goes to the logs
_FAILURE_REASONS: dict[type[RenderDriverError], str] = {
    RenderTimeoutError: "Rendering timed out",
    StructureError: "The certificate layout could not be captured",
    EngineError: "The rendering engine is unavailable",
}


class ExportState(StrEnum):
    PRIMARY_RENDER = "primary_render"
    ON_DEMAND_RETRY = "on_demand_retry"
    MANUAL_FALLBACK = "manual_fallback"


@dataclass(frozen=True)
class ExportResult:
    certificate_id: str
    format: ExportFormat
    content: bytes
    media_type: str
    filename: str
    state: ExportState

    @property
    def degraded(self) -> bool:
        return False


@dataclass(frozen=True)
class RenderedResult(ExportResult):
    """Automated capture in the requested format."""


@dataclass(frozen=True)
class DegradedResult(ExportResult):
    """Manual fallback document standing in for the requested format."""

    reason: str

    @property
    def degraded(self) -> bool:
        return True

    @property
    def requested_format(self) -> ExportFormat:
        return self.format


def sanitize_filename_part(value: str) -> str:
    cleaned = _UNSAFE_FILENAME_CHARS.sub("", value).strip()
    return _WHITESPACE.sub("-", cleaned)


def build_export_filename(
    template_name: str,
    recipient_name: str,
    certificate_id: str,
    extension: str,
) -> str:
    """``{template}_{recipient}_{id suffix}.{ext}`` with unsafe characters removed."""
    parts = [
        sanitize_filename_part(template_name) or "certificate",
        sanitize_filename_part(recipient_name) or "recipient",
        sanitize_filename_part(certificate_id[-8:]) or "unknown",
    ]
    return f"{'_'.join(parts)}.{extension}"


def _filename(job: RenderJob, extension: str) -> str:
    certificate = job.certificate
    return build_export_filename(
        certificate.template_name,
        certificate.recipient_name,
        certificate.id,
        extension,
    )


def _check_output(fmt: ExportFormat, content: bytes) -> None:
    magic = _PDF_MAGIC if fmt is ExportFormat.PDF else _PNG_MAGIC
    if not content or not content.startswith(magic):
        raise EngineError(f"Driver returned an invalid {fmt.value} document")


class CertificateExporter:
    """Exports certificates through the driver, falling back when it fails."""

    def __init__(
        self,
        driver: RenderDriver,
        resolver: CertificateResolver,
        *,
        timeout: float | None = 60.0,
    ) -> None:
        self.driver = driver
        self.resolver = resolver
        self.timeout = timeout

    async def _capture(self, job: RenderJob, fmt: ExportFormat) -> bytes:
        try:
            async with asyncio.timeout(self.timeout):
                if fmt is ExportFormat.PDF:
                    content = await self.driver.render_pdf(job.document)
                else:
                    content = await self.driver.render_png(job.document)
        except TimeoutError as e:
            raise RenderTimeoutError(
                f"Export exceeded {self.timeout}s for {fmt.value}"
            ) from e
        _check_output(fmt, content)
        return content

    def _rendered(
        self,
        job: RenderJob,
        fmt: ExportFormat,
        content: bytes,
        state: ExportState,
    ) -> RenderedResult:
        return RenderedResult(
            certificate_id=job.certificate.id,
            format=fmt,
            content=content,
            media_type=fmt.media_type,
            filename=_filename(job, fmt.value),
            state=state,
        )

    def _fallback(
        self, job: RenderJob, fmt: ExportFormat, reason: str
    ) -> DegradedResult:
        certificate = job.certificate
        title = f"{certificate.template_name} - {certificate.recipient_name}"
        html = render_fallback_document(
            job.layout,
            document_title=title,
            requested_format=fmt.value,
            reason=reason,
        )
        return DegradedResult(
            certificate_id=certificate.id,
            format=fmt,
            content=html.encode("utf-8"),
            media_type=ExportFormat.HTML.media_type,
            filename=_filename(job, ExportFormat.HTML.value),
            state=ExportState.MANUAL_FALLBACK,
            reason=reason,
        )

    async def export(
        self, certificate_id: str, fmt: ExportFormat | str
    ) -> ExportResult:
        """Export one certificate.

        Raises:
            CertificateNotFoundError: If the certificate does not exist. Driver
                failures never escape; they end in a ``DegradedResult``.
        """
        fmt = ExportFormat(fmt)
        with log_context(certificate_id=certificate_id, export_format=fmt.value):
            return await self._export(certificate_id, fmt)

    async def _export(self, certificate_id: str, fmt: ExportFormat) -> ExportResult:
        job = await self.resolver.resolve(certificate_id)

        if fmt is ExportFormat.HTML:
            html = job.document.html.encode("utf-8")
            return self._rendered(job, fmt, html, ExportState.PRIMARY_RENDER)

        try:
            content = await self._capture(job, fmt)
            return self._rendered(job, fmt, content, ExportState.PRIMARY_RENDER)
        except RenderDriverError as e:
            logger.warning(
                "export.primary.failed",
                extra={
                    "certificate_id": certificate_id,
                    "format": fmt.value,
                    "error_type": type(e).__name__,
                    "error": str(e),
                },
            )

        job = await self.resolver.resolve(certificate_id, fresh=True)
        try:
            content = await self._capture(job, fmt)
            logger.info(
                "export.retry.succeeded",
                extra={"certificate_id": certificate_id, "format": fmt.value},
            )
            return self._rendered(job, fmt, content, ExportState.ON_DEMAND_RETRY)
        except RenderDriverError as e:
            reason = _FAILURE_REASONS.get(type(e), "Automated rendering failed")
            logger.error(
                "export.retry.failed",
                extra={
                    "certificate_id": certificate_id,
                    "format": fmt.value,
                    "error_type": type(e).__name__,
                    "error": str(e),
                },
            )

        logger.warning(
            "export.degraded",
            extra={"certificate_id": certificate_id, "format": fmt.value},
        )
        return self._fallback(job, fmt, reason)
