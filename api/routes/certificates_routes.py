"""Certificate issuance, verification and export endpoints.

Route ordering note: Literal path segments (/verify/, /bulk-download,
/bulk-revoke, /bulk-delete) are defined before parameterized segments
(/{certificate_id}/) to prevent routing conflicts.
"""

from datetime import UTC, datetime

from fastapi import APIRouter, HTTPException, Path, Query, Request, Response
from fastapi.responses import HTMLResponse

from core.database import DbSession
from core.ratelimit import BULK_EXPORT_LIMIT, EXPORT_LIMIT, ISSUE_LIMIT, limiter
from rendering.validation import TemplateValidationError
from schemas import (
    BulkCertificateRequest,
    BulkDownloadRequest,
    BulkPurgeResponse,
    BulkRevokeResponse,
    CertificateResponse,
    CertificateVerifyResponse,
    ExportFormat,
    IssueCertificateRequest,
    PublishResponse,
)
from services.asset_publisher import export_and_publish
from services.batch_service import BatchTooLargeError, export_batch
from services.certificates_service import (
    CertificateNotFoundError,
    CertificateRevokedError,
    TemplateNotFoundError,
    get_certificate,
    issue_certificate,
    purge_certificate,
    purge_certificates,
    revoke_certificate,
    revoke_certificates,
    verify_certificate,
)
from services.export_service import (
    CertificateExporter,
    DegradedResult,
    ExportResult,
)
from services.verification_service import AllocationExhaustedError

router = APIRouter(prefix="/api/certificates", tags=["certificates"])


def _exporter(request: Request) -> CertificateExporter:
    return request.app.state.exporter


def _not_found(e: CertificateNotFoundError) -> HTTPException:
    return HTTPException(status_code=404, detail=str(e))


def _export_response(
    result: ExportResult, disposition: str = "attachment"
) -> Response:
    headers = {
        "Content-Disposition": f'{disposition}; filename="{result.filename}"',
        "Cache-Control": "no-store",
    }
    if isinstance(result, DegradedResult):
        headers["X-Export-Degraded"] = "true"
        headers["X-Export-Reason"] = result.reason
    return Response(
        content=result.content,
        media_type=result.media_type,
        headers=headers,
    )


# --- Collection endpoints ---


@router.post(
    "",
    response_model=CertificateResponse,
    status_code=201,
    responses={
        404: {"description": "Template not found"},
        422: {"description": "Template definition is invalid"},
        503: {"description": "Verification id space exhausted"},
    },
)
@limiter.limit(ISSUE_LIMIT)
async def issue_certificate_endpoint(
    request: Request,
    body: IssueCertificateRequest,
    db: DbSession,
) -> CertificateResponse:
    """Issue a certificate from a stored template."""
    try:
        certificate = await issue_certificate(db, body)
    except TemplateNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except TemplateValidationError as e:
        raise HTTPException(
            status_code=422,
            detail={
                "message": str(e),
                "issues": [
                    {
                        "index": issue.index,
                        "element_id": issue.element_id,
                        "message": issue.message,
                    }
                    for issue in e.issues
                ],
            },
        ) from e
    except AllocationExhaustedError as e:
        raise HTTPException(status_code=503, detail=str(e)) from e

    return CertificateResponse.model_validate(certificate, from_attributes=True)


# --- Literal path routes (before parameterized) ---


@router.get(
    "/verify/{verification_id}",
    response_model=CertificateVerifyResponse,
    responses={422: {"description": "Validation error - id too short or long"}},
)
async def verify_certificate_endpoint(
    db: DbSession,
    verification_id: str = Path(min_length=8, max_length=16),
) -> CertificateVerifyResponse:
    """Verify a certificate by its verification id (public endpoint)."""
    return await verify_certificate(db, verification_id)


@router.post(
    "/bulk-download",
    responses={
        200: {"content": {"application/zip": {}}, "description": "ZIP archive"},
        422: {"description": "Invalid format or too many certificates"},
    },
)
@limiter.limit(BULK_EXPORT_LIMIT)
async def bulk_download_endpoint(
    request: Request,
    body: BulkDownloadRequest,
) -> Response:
    """Export many certificates as one ZIP archive.

    Certificates that fail (or could only be produced as a manual fallback)
    are left out of the archive and listed in the X-Failed-Certificates
    header.
    """
    try:
        batch = await export_batch(
            body.certificate_ids, body.format, _exporter(request)
        )
    except BatchTooLargeError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e

    manifest = batch.manifest
    stamp = datetime.now(UTC).strftime("%Y%m%d")
    zip_filename = (
        f"certificates_{body.format.value}_{stamp}_{manifest.succeeded}files.zip"
    )

    headers = {
        "Content-Disposition": f'attachment; filename="{zip_filename}"',
        "X-Total-Certificates": str(manifest.total_requested),
        "X-Successful-Certificates": str(manifest.succeeded),
    }
    if manifest.failed_ids:
        headers["X-Failed-Certificates"] = ",".join(manifest.failed_ids)
        headers["X-Failed-Count"] = str(manifest.failed)

    return Response(
        content=batch.archive, media_type="application/zip", headers=headers
    )


@router.post("/bulk-revoke", response_model=BulkRevokeResponse)
async def bulk_revoke_endpoint(
    body: BulkCertificateRequest,
    db: DbSession,
) -> BulkRevokeResponse:
    """Revoke many certificates. Unknown ids are reported, not rejected."""
    return await revoke_certificates(db, body.certificate_ids)


@router.post("/bulk-delete", response_model=BulkPurgeResponse)
async def bulk_purge_endpoint(
    request: Request,
    body: BulkCertificateRequest,
    db: DbSession,
) -> BulkPurgeResponse:
    """Permanently delete many certificates and their published files."""
    return await purge_certificates(
        db, body.certificate_ids, publisher=request.app.state.asset_publisher
    )


# --- Parameterized routes ---


@router.get(
    "/{certificate_id}",
    response_model=CertificateResponse,
    responses={404: {"description": "Certificate not found"}},
)
async def get_certificate_endpoint(
    certificate_id: str,
    db: DbSession,
) -> CertificateResponse:
    try:
        certificate = await get_certificate(db, certificate_id)
    except CertificateNotFoundError as e:
        raise _not_found(e) from e
    return CertificateResponse.model_validate(certificate, from_attributes=True)


@router.get(
    "/{certificate_id}/preview",
    response_class=HTMLResponse,
    responses={404: {"description": "Certificate not found"}},
)
async def preview_certificate_endpoint(
    request: Request,
    certificate_id: str,
) -> HTMLResponse:
    """Serve the composed certificate page.

    This is the same document the headless browser captures, so what the
    preview shows is what the PDF/PNG contain.
    """
    try:
        job = await _exporter(request).resolver.resolve(certificate_id)
    except CertificateNotFoundError as e:
        raise _not_found(e) from e
    return HTMLResponse(
        content=job.document.html, headers={"Cache-Control": "no-store"}
    )


@router.get(
    "/{certificate_id}/download",
    responses={
        200: {
            "content": {"application/pdf": {}, "image/png": {}, "text/html": {}},
            "description": "Certificate file, or a manual fallback page when "
            "X-Export-Degraded is set",
        },
        404: {"description": "Certificate not found"},
    },
)
@limiter.limit(EXPORT_LIMIT)
async def download_certificate_endpoint(
    request: Request,
    certificate_id: str,
    fmt: ExportFormat = Query(ExportFormat.PDF, alias="format"),
) -> Response:
    """Download a certificate as PDF, PNG or HTML."""
    try:
        result = await _exporter(request).export(certificate_id, fmt)
    except CertificateNotFoundError as e:
        raise _not_found(e) from e

    is_html = result.media_type.startswith("text/html")
    return _export_response(result, "inline" if is_html else "attachment")


@router.post(
    "/{certificate_id}/publish",
    response_model=PublishResponse,
    responses={
        404: {"description": "Certificate not found"},
        409: {"description": "Certificate has been revoked"},
        422: {"description": "Only pdf and png can be published"},
    },
)
@limiter.limit(EXPORT_LIMIT)
async def publish_certificate_endpoint(
    request: Request,
    certificate_id: str,
    fmt: ExportFormat = Query(ExportFormat.PDF, alias="format"),
) -> PublishResponse:
    """Render a certificate and push it to the asset store."""
    if fmt is ExportFormat.HTML:
        raise HTTPException(
            status_code=422, detail="Invalid format. Must be 'pdf' or 'png'"
        )

    try:
        result, asset = await export_and_publish(
            _exporter(request),
            request.app.state.asset_publisher,
            request.app.state.session_maker,
            certificate_id,
            fmt,
        )
    except CertificateNotFoundError as e:
        raise _not_found(e) from e
    except CertificateRevokedError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e

    return PublishResponse(
        certificate_id=certificate_id,
        format=fmt,
        published=asset is not None,
        degraded=result.degraded,
        asset_id=asset.asset_id if asset else None,
        url=asset.url if asset else None,
    )


@router.post(
    "/{certificate_id}/revoke",
    response_model=CertificateResponse,
    responses={404: {"description": "Certificate not found"}},
)
async def revoke_certificate_endpoint(
    certificate_id: str,
    db: DbSession,
) -> CertificateResponse:
    """Revoke a certificate. Revoking an already revoked certificate is a no-op."""
    try:
        certificate = await revoke_certificate(db, certificate_id)
    except CertificateNotFoundError as e:
        raise _not_found(e) from e
    return CertificateResponse.model_validate(certificate, from_attributes=True)


@router.delete(
    "/{certificate_id}",
    status_code=204,
    responses={404: {"description": "Certificate not found"}},
)
async def purge_certificate_endpoint(
    request: Request,
    certificate_id: str,
    db: DbSession,
) -> Response:
    """Permanently delete a certificate and its published files."""
    try:
        await purge_certificate(
            db, certificate_id, publisher=request.app.state.asset_publisher
        )
    except CertificateNotFoundError as e:
        raise _not_found(e) from e
    return Response(status_code=204)
