"""Certificate business logic.

This module handles the certificate lifecycle:
- Issuance: validate + bind the template, allocate ids, sign, freeze snapshot
- Revocation and purge
- Public verification
- Resolving an issued certificate into a render job (layout + markup)

The snapshot stored at issuance is the bound template itself. Later edits to
the source template never change what an issued certificate renders to.

Routes should delegate all certificate business logic to this module.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.cache import (
    get_cached_render_job,
    invalidate_render_job,
    set_cached_render_job,
)
from models import CertificateStatus, new_id
from rendering.binding import bind_template, find_placeholders
from rendering.layout import ResolvedLayout, compute_layout
from rendering.markup import RenderDocument, render_document
from rendering.validation import validate_template
from repositories.artifact_repository import PublishedArtifactRepository
from repositories.certificate_repository import CertificateRepository
from repositories.template_repository import TemplateRepository
from schemas import (
    BulkPurgeResponse,
    BulkRevokeResponse,
    CertificateData,
    CertificateResponse,
    CertificateVerifyResponse,
    IssueCertificateRequest,
    Template,
)
from services.verification_service import (
    VerificationIdAllocator,
    build_certificate_number,
    build_qr_payload,
    sign_certificate,
    verify_signature,
)

logger = logging.getLogger(__name__)

DATE_FORMAT = "%B %d, %Y"


class CertificateNotFoundError(Exception):
    """Raised when a certificate id does not exist."""

    def __init__(self, certificate_id: str):
        self.certificate_id = certificate_id
        super().__init__(f"Certificate {certificate_id} not found")


class TemplateNotFoundError(Exception):
    """Raised when issuing against a template id that does not exist."""

    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__(f"Template {template_id} not found")


class CertificateRevokedError(Exception):
    """Raised when an operation requires an active certificate."""

    def __init__(self, certificate_id: str):
        self.certificate_id = certificate_id
        super().__init__(f"Certificate {certificate_id} has been revoked")


def _to_certificate_data(certificate) -> CertificateData:
    return CertificateData.model_validate(certificate)


def build_placeholder_map(
    *,
    certificate_id: str,
    certificate_number: str,
    verification_id: str,
    verification_url: str,
    request: IssueCertificateRequest,
    issue_date: date,
) -> dict[str, str]:
    """Standard placeholder values, overridable by the caller's custom fields."""
    data = {
        "recipientName": (
            f"{request.recipient_first_name} {request.recipient_last_name}"
        ),
        "firstName": request.recipient_first_name,
        "lastName": request.recipient_last_name,
        "recipientEmail": request.recipient_email,
        "issuerName": request.issuer_name,
        "issueDate": issue_date.strftime(DATE_FORMAT),
        "certificateId": certificate_id,
        "certificateNumber": certificate_number,
        "verificationId": verification_id,
        "verificationUrl": verification_url,
    }
    if request.expiry_date:
        data["expiryDate"] = request.expiry_date.strftime(DATE_FORMAT)
    data.update(request.custom_fields)
    return data


async def issue_certificate(
    db: AsyncSession,
    request: IssueCertificateRequest,
    *,
    allocator: VerificationIdAllocator | None = None,
) -> CertificateData:
    """Issue a certificate from a stored template.

    Args:
        db: Database session
        request: Recipient, issuer and template details
        allocator: Verification id allocator (one per transaction)

    Returns:
        The persisted certificate

    Raises:
        TemplateNotFoundError: If the template id is unknown
        TemplateValidationError: If the stored definition is malformed
        AllocationExhaustedError: If no unique verification id could be found
    """
    template_row = await TemplateRepository(db).get_by_id(request.template_id)
    if template_row is None:
        raise TemplateNotFoundError(request.template_id)

    template = validate_template(template_row.definition)

    cert_repo = CertificateRepository(db)
    allocator = allocator or VerificationIdAllocator(cert_repo.verification_id_exists)
    verification_id = await allocator.allocate()
    qr_payload = build_qr_payload(verification_id)

    certificate_id = new_id()
    issue_date = request.issue_date or date.today()
    certificate_number = build_certificate_number(
        request.category, sequence=request.sequence_number, year=issue_date.year
    )

    data = build_placeholder_map(
        certificate_id=certificate_id,
        certificate_number=certificate_number,
        verification_id=verification_id,
        verification_url=qr_payload,
        request=request,
        issue_date=issue_date,
    )
    bound = bind_template(template, data)

    missing = find_placeholders(bound)
    if missing:
        logger.warning(
            "certificate.placeholders.unbound",
            extra={"template_id": request.template_id, "keys": sorted(missing)},
        )

    signature = sign_certificate(
        certificate_id=certificate_id,
        recipient_name=data["recipientName"],
        template_name=template.name,
        issue_date=issue_date,
        issuer_name=request.issuer_name,
    )

    certificate = await cert_repo.create(
        certificate_id=certificate_id,
        template_id=template_row.id,
        certificate_number=certificate_number,
        recipient_first_name=request.recipient_first_name,
        recipient_last_name=request.recipient_last_name,
        recipient_email=request.recipient_email,
        issuer_name=request.issuer_name,
        issue_date=issue_date,
        expiry_date=request.expiry_date,
        verification_id=verification_id,
        qr_payload=qr_payload,
        signature=signature,
        snapshot=bound.model_dump(mode="json", by_alias=True),
    )

    logger.info(
        "certificate.issued",
        extra={
            "certificate_id": certificate.id,
            "template_id": template_row.id,
            "verification_id": verification_id,
        },
    )
    return _to_certificate_data(certificate)


async def get_certificate(db: AsyncSession, certificate_id: str) -> CertificateData:
    certificate = await CertificateRepository(db).get_by_id(certificate_id)
    if certificate is None:
        raise CertificateNotFoundError(certificate_id)
    return _to_certificate_data(certificate)


def _invalidate_on_commit(db: AsyncSession, certificate_ids: Sequence[str]) -> None:
    """Drop cached render jobs now and again once the transaction commits.

    A resolve running between the flush and the commit still reads the old
    status and caches it; the second pass removes that entry.
    """
    ids = list(certificate_ids)
    for certificate_id in ids:
        invalidate_render_job(certificate_id)

    @event.listens_for(db.sync_session, "after_commit", once=True)
    def _after_commit(session) -> None:
        for certificate_id in ids:
            invalidate_render_job(certificate_id)


async def revoke_certificate(db: AsyncSession, certificate_id: str) -> CertificateData:
    """Mark a certificate revoked. Revoking twice is a no-op."""
    cert_repo = CertificateRepository(db)
    certificate = await cert_repo.get_by_id(certificate_id)
    if certificate is None:
        raise CertificateNotFoundError(certificate_id)

    if certificate.status != CertificateStatus.REVOKED:
        await cert_repo.update_status(certificate, CertificateStatus.REVOKED)
        logger.info("certificate.revoked", extra={"certificate_id": certificate_id})

    _invalidate_on_commit(db, [certificate_id])
    return _to_certificate_data(certificate)


async def revoke_certificates(
    db: AsyncSession,
    certificate_ids: Sequence[str],
) -> BulkRevokeResponse:
    """Revoke many certificates, reporting the outcome per id.

    Unknown ids are reported, not raised, so one bad id does not block the
    rest of the batch.
    """
    unique_ids = list(dict.fromkeys(certificate_ids))
    cert_repo = CertificateRepository(db)
    found = {c.id: c for c in await cert_repo.get_many(unique_ids)}

    response = BulkRevokeResponse(total_requested=len(unique_ids))
    for certificate_id in unique_ids:
        certificate = found.get(certificate_id)
        if certificate is None:
            response.not_found.append(certificate_id)
        elif certificate.status == CertificateStatus.REVOKED:
            response.already_revoked.append(certificate_id)
        else:
            await cert_repo.update_status(certificate, CertificateStatus.REVOKED)
            response.revoked.append(certificate_id)

    _invalidate_on_commit(db, list(found))
    logger.info(
        "certificate.bulk_revoked",
        extra={
            "requested": response.total_requested,
            "revoked": len(response.revoked),
            "not_found": len(response.not_found),
        },
    )
    return response


async def _delete_published_assets(
    db: AsyncSession,
    certificate_id: str,
    publisher,
) -> tuple[int, int]:
    """Best-effort removal of a certificate's remote files.

    Returns (deleted, failed). Failures are logged and never raised.
    """
    if publisher is None:
        return 0, 0

    deleted = failed = 0
    artifacts = await PublishedArtifactRepository(db).list_for_certificate(
        certificate_id
    )
    for artifact in artifacts:
        try:
            await publisher.delete(artifact.asset_id)
        except Exception as e:
            failed += 1
            logger.warning(
                "certificate.purge.asset_delete_failed",
                extra={
                    "certificate_id": certificate_id,
                    "asset_id": artifact.asset_id,
                    "error": str(e),
                },
            )
        else:
            deleted += 1
    return deleted, failed


async def purge_certificate(
    db: AsyncSession,
    certificate_id: str,
    publisher=None,
) -> None:
    """Hard-delete a certificate and, best effort, its published files.

    Remote deletion failures are logged and do not stop the purge; the
    local record is the source of truth.
    """
    cert_repo = CertificateRepository(db)
    if await cert_repo.get_by_id(certificate_id) is None:
        raise CertificateNotFoundError(certificate_id)

    await _delete_published_assets(db, certificate_id, publisher)
    await cert_repo.delete(certificate_id)
    _invalidate_on_commit(db, [certificate_id])
    logger.info("certificate.purged", extra={"certificate_id": certificate_id})


async def purge_certificates(
    db: AsyncSession,
    certificate_ids: Sequence[str],
    publisher=None,
) -> BulkPurgeResponse:
    """Hard-delete many certificates, reporting the outcome per id."""
    unique_ids = list(dict.fromkeys(certificate_ids))
    cert_repo = CertificateRepository(db)
    found = {c.id for c in await cert_repo.get_many(unique_ids)}

    response = BulkPurgeResponse(total_requested=len(unique_ids))
    for certificate_id in unique_ids:
        if certificate_id not in found:
            response.not_found.append(certificate_id)
            continue
        deleted, failed = await _delete_published_assets(
            db, certificate_id, publisher
        )
        response.files_deleted += deleted
        response.file_errors += failed
        await cert_repo.delete(certificate_id)
        response.deleted.append(certificate_id)

    _invalidate_on_commit(db, response.deleted)
    logger.info(
        "certificate.bulk_purged",
        extra={
            "requested": response.total_requested,
            "deleted": len(response.deleted),
            "file_errors": response.file_errors,
        },
    )
    return response


async def verify_certificate(
    db: AsyncSession,
    verification_id: str,
) -> CertificateVerifyResponse:
    """Verify a certificate and return a user-friendly result.

    A certificate is valid when it exists, is not revoked, has not expired
    and its signature still matches the stored fields.
    """
    certificate = await CertificateRepository(db).get_by_verification_id(
        verification_id.strip().upper()
    )

    if certificate is None:
        return CertificateVerifyResponse(
            is_valid=False,
            certificate=None,
            message="Certificate not found. Please check the verification code.",
        )

    data = _to_certificate_data(certificate)
    response = CertificateResponse.model_validate(certificate)

    if data.status == CertificateStatus.REVOKED:
        return CertificateVerifyResponse(
            is_valid=False,
            certificate=response,
            message="This certificate has been revoked by the issuer.",
        )

    if data.expiry_date and data.expiry_date < date.today():
        expired_on = data.expiry_date.strftime(DATE_FORMAT)
        return CertificateVerifyResponse(
            is_valid=False,
            certificate=response,
            message=f"This certificate expired on {expired_on}.",
        )

    signature_ok = verify_signature(
        data.signature,
        certificate_id=data.id,
        recipient_name=data.recipient_name,
        template_name=data.template_name,
        issue_date=data.issue_date,
        issuer_name=data.issuer_name,
    )
    if not signature_ok:
        logger.warning(
            "certificate.signature.mismatch", extra={"certificate_id": data.id}
        )
        return CertificateVerifyResponse(
            is_valid=False,
            certificate=response,
            message="This certificate failed its integrity check.",
        )

    return CertificateVerifyResponse(
        is_valid=True,
        certificate=response,
        message=(
            f"Valid {data.template_name} issued to {data.recipient_name}"
            f" on {data.issue_date.strftime(DATE_FORMAT)}"
        ),
    )


# ============ Render jobs ============


@dataclass(frozen=True)
class RenderJob:
    """Everything needed to export one certificate, computed once."""

    certificate: CertificateData
    template: Template
    layout: ResolvedLayout
    document: RenderDocument


def build_render_job(certificate: CertificateData) -> RenderJob:
    """Rebuild the frozen snapshot and resolve layout and markup."""
    template = Template.model_validate(certificate.snapshot)
    layout = compute_layout(template)
    return RenderJob(
        certificate=certificate,
        template=template,
        layout=layout,
        document=render_document(layout),
    )


class CertificateResolver:
    """Loads certificates into render jobs, with a short-lived cache.

    Owns its sessions so it can be shared by exports that outlive a request
    (batch workers, retries).
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        self._session_maker = session_maker

    async def resolve(self, certificate_id: str, *, fresh: bool = False) -> RenderJob:
        """Return the render job for a certificate.

        ``fresh=True`` skips the cache and replaces the cached entry.

        Raises:
            CertificateNotFoundError: If the id is unknown
        """
        if not fresh:
            cached = get_cached_render_job(certificate_id)
            if cached is not None:
                return cached

        async with self._session_maker() as db:
            certificate = await CertificateRepository(db).get_by_id(certificate_id)
            if certificate is None:
                raise CertificateNotFoundError(certificate_id)
            data = _to_certificate_data(certificate)

        job = build_render_job(data)
        set_cached_render_job(certificate_id, job)
        logger.debug(
            "certificate.resolved",
            extra={"certificate_id": certificate_id, "fresh": fresh},
        )
        return job
