"""Bulk export into a ZIP archive.

Each certificate runs the full export fallback chain independently, bounded
by a semaphore sized to the number of browser contexts we can afford.
Failures are collected per id and never abort the rest of the batch.

Files are added to the archive in completion order, so callers must not
rely on entry order.
"""

import asyncio
import io
import logging
import uuid
import zipfile
from collections.abc import Sequence
from dataclasses import dataclass

from core.config import get_settings
from core.logger import log_context
from schemas import BatchManifest, ExportFormat
from services.export_service import (
    CertificateExporter,
    DegradedResult,
    ExportResult,
)

logger = logging.getLogger(__name__)


class BatchTooLargeError(ValueError):
    """Raised when a batch request exceeds the configured item limit."""

    def __init__(self, requested: int, limit: int):
        self.requested = requested
        self.limit = limit
        super().__init__(
            f"Batch of {requested} certificates exceeds the limit of {limit}"
        )


@dataclass(frozen=True)
class BatchExport:
    archive: bytes
    manifest: BatchManifest
    filenames: list[str]


@dataclass(frozen=True)
class _ItemOutcome:
    certificate_id: str
    result: ExportResult | None = None
    error: str | None = None


def _unique_name(filename: str, used: set[str]) -> str:
    if filename not in used:
        return filename
    stem, dot, extension = filename.rpartition(".")
    counter = 2
    while f"{stem}-{counter}{dot}{extension}" in used:
        counter += 1
    return f"{stem}-{counter}{dot}{extension}"


def build_archive(results: Sequence[ExportResult]) -> tuple[bytes, list[str]]:
    """Pack results into a DEFLATE ZIP in the given order."""
    buffer = io.BytesIO()
    used: set[str] = set()
    names: list[str] = []
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for result in results:
            name = _unique_name(result.filename, used)
            used.add(name)
            names.append(name)
            archive.writestr(name, result.content)
    return buffer.getvalue(), names


async def export_batch(
    certificate_ids: Sequence[str],
    fmt: ExportFormat | str,
    exporter: CertificateExporter,
    *,
    max_workers: int | None = None,
    max_items: int | None = None,
) -> BatchExport:
    """Export many certificates into one archive.

    Duplicate ids are collapsed (first occurrence wins). A degraded export
    counts as a failure: the archive only carries automated captures.

    Raises:
        BatchTooLargeError: If more than ``max_items`` distinct ids are given
    """
    settings = get_settings()
    max_workers = max_workers or settings.batch_max_workers
    max_items = max_items or settings.batch_max_items
    fmt = ExportFormat(fmt)

    unique_ids = list(dict.fromkeys(certificate_ids))
    if len(unique_ids) > max_items:
        raise BatchTooLargeError(len(unique_ids), max_items)

    semaphore = asyncio.Semaphore(max_workers)

    async def run(certificate_id: str) -> _ItemOutcome:
        async with semaphore:
            try:
                result = await exporter.export(certificate_id, fmt)
            except Exception as e:
                logger.warning(
                    "batch.item.failed",
                    extra={
                        "certificate_id": certificate_id,
                        "error_type": type(e).__name__,
                        "error": str(e),
                    },
                )
                return _ItemOutcome(certificate_id, error=str(e))

        if isinstance(result, DegradedResult):
            logger.warning(
                "batch.item.degraded", extra={"certificate_id": certificate_id}
            )
            return _ItemOutcome(certificate_id, error=result.reason)
        return _ItemOutcome(certificate_id, result=result)

    # Tasks copy the current context, so every item logs the batch id
    with log_context(batch_id=uuid.uuid4().hex[:12], batch_format=fmt.value):
        tasks = [asyncio.create_task(run(cid)) for cid in unique_ids]
        outcomes: list[_ItemOutcome] = []
        try:
            for next_done in asyncio.as_completed(tasks):
                outcomes.append(await next_done)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()

    succeeded = [o.result for o in outcomes if o.result is not None]
    failed_ids = [o.certificate_id for o in outcomes if o.result is None]
    archive, filenames = build_archive(succeeded)

    manifest = BatchManifest(
        total_requested=len(unique_ids),
        succeeded=len(succeeded),
        failed_ids=failed_ids,
    )
    logger.info(
        "batch.completed",
        extra={
            "format": fmt.value,
            "total": manifest.total_requested,
            "succeeded": manifest.succeeded,
            "failed": manifest.failed,
        },
    )
    return BatchExport(archive=archive, manifest=manifest, filenames=filenames)
