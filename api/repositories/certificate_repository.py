"""Repository for certificate operations."""

from collections.abc import Sequence
from datetime import date

from sqlalchemy import delete, exists, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from models import Certificate, CertificateStatus, PublishedArtifact, utcnow
from repositories.utils import log_slow_query


class CertificateRepository:
    """Repository for certificate CRUD operations.

    Methods flush but never commit; the caller owns the transaction.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    @log_slow_query("get_certificate_by_id")
    async def get_by_id(self, certificate_id: str) -> Certificate | None:
        result = await self.db.execute(
            select(Certificate).where(Certificate.id == certificate_id)
        )
        return result.scalar_one_or_none()

    async def get_by_verification_id(
        self,
        verification_id: str,
    ) -> Certificate | None:
        """Get a certificate by its verification id (for public verification)."""
        result = await self.db.execute(
            select(Certificate).where(Certificate.verification_id == verification_id)
        )
        return result.scalar_one_or_none()

    @log_slow_query("get_certificates_by_ids")
    async def get_many(self, certificate_ids: Sequence[str]) -> Sequence[Certificate]:
        """Get certificates by id; unknown ids are silently absent."""
        if not certificate_ids:
            return []
        result = await self.db.execute(
            select(Certificate).where(Certificate.id.in_(certificate_ids))
        )
        return result.scalars().all()

    async def verification_id_exists(self, verification_id: str) -> bool:
        result = await self.db.execute(
            select(exists().where(Certificate.verification_id == verification_id))
        )
        return bool(result.scalar())

    async def create(
        self,
        *,
        template_id: str,
        certificate_number: str,
        recipient_first_name: str,
        recipient_last_name: str,
        recipient_email: str,
        issuer_name: str,
        issue_date: date,
        expiry_date: date | None,
        verification_id: str,
        qr_payload: str,
        signature: str,
        snapshot: dict,
        certificate_id: str | None = None,
    ) -> Certificate:
        """Create a new certificate with its template snapshot.

        Sets issued_at to current UTC time. Calls flush() but does NOT commit;
        the caller is responsible for transaction management.
        """
        certificate = Certificate(
            template_id=template_id,
            certificate_number=certificate_number,
            recipient_first_name=recipient_first_name,
            recipient_last_name=recipient_last_name,
            recipient_email=recipient_email,
            issuer_name=issuer_name,
            issue_date=issue_date,
            expiry_date=expiry_date,
            status=CertificateStatus.ACTIVE,
            verification_id=verification_id,
            qr_payload=qr_payload,
            signature=signature,
            snapshot=snapshot,
            issued_at=utcnow(),
        )
        if certificate_id is not None:
            certificate.id = certificate_id
        self.db.add(certificate)
        await self.db.flush()
        return certificate

    async def update_status(
        self,
        certificate: Certificate,
        status: CertificateStatus,
    ) -> Certificate:
        """Change lifecycle status. Only status and revoked_at are touched."""
        certificate.status = status
        revoked = status == CertificateStatus.REVOKED
        certificate.revoked_at = utcnow() if revoked else None
        await self.db.flush()
        return certificate

    @log_slow_query("delete_certificate")
    async def delete(self, certificate_id: str) -> bool:
        """Hard-delete a certificate and its artifact records.

        Returns False when no certificate matched.
        """
        await self.db.execute(
            delete(PublishedArtifact).where(
                PublishedArtifact.certificate_id == certificate_id
            )
        )
        result = await self.db.execute(
            delete(Certificate).where(Certificate.id == certificate_id)
        )
        await self.db.flush()
        return result.rowcount > 0

    async def count_by_status(self) -> dict[CertificateStatus, int]:
        result = await self.db.execute(
            select(Certificate.status, func.count()).group_by(Certificate.status)
        )
        counts = {status: 0 for status in CertificateStatus}
        for status, count in result.all():
            counts[CertificateStatus(status)] = count
        return counts
