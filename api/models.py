"""SQLAlchemy models for certificate templates and issued certificates."""

import uuid
from datetime import UTC, date, datetime
from enum import Enum as PyEnum

from sqlalchemy import (
    JSON,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    String,
    Text,
    event,
)
from sqlalchemy.orm import Mapped, declared_attr, mapped_column, relationship
from sqlalchemy.orm.attributes import get_history

from core.database import Base


def utcnow() -> datetime:
    """Return current UTC time (timezone-aware)."""
    return datetime.now(UTC)


def new_id() -> str:
    return uuid.uuid4().hex


class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamp columns.

    Use this for any model that needs audit timestamps.
    """

    @declared_attr
    def created_at(cls) -> Mapped[datetime]:
        return mapped_column(DateTime(timezone=True), default=utcnow)

    @declared_attr
    def updated_at(cls) -> Mapped[datetime]:
        return mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class CertificateStatus(str, PyEnum):
    """Lifecycle state of an issued certificate.

    A certificate is only ever moved from ACTIVE to REVOKED; expiry is derived
    from ``expiry_date`` at read time and never stored.
    """

    ACTIVE = "active"
    REVOKED = "revoked"


class SnapshotImmutableError(Exception):
    """Raised when code tries to change the frozen snapshot of an issued certificate."""


class CertificateTemplate(TimestampMixin, Base):
    """Editable template definition, owned by content managers."""

    __tablename__ = "certificate_templates"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    definition: Mapped[dict] = mapped_column(JSON, nullable=False)

    certificates: Mapped[list["Certificate"]] = relationship(back_populates="template")


class Certificate(TimestampMixin, Base):
    """An issued certificate with its template snapshot frozen at issuance."""

    __tablename__ = "certificates"
    __table_args__ = (
        Index("ix_certificates_status", "status"),
        Index("ix_certificates_template", "template_id"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    template_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("certificate_templates.id", ondelete="RESTRICT"),
        nullable=False,
    )
    certificate_number: Mapped[str] = mapped_column(String(40), nullable=False)
    recipient_first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    recipient_last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    recipient_email: Mapped[str] = mapped_column(String(255), nullable=False)
    issuer_name: Mapped[str] = mapped_column(String(200), nullable=False)
    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[CertificateStatus] = mapped_column(
        Enum(
            CertificateStatus,
            name="certificate_status",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=CertificateStatus.ACTIVE,
    )
    verification_id: Mapped[str] = mapped_column(
        String(16), nullable=False, unique=True
    )
    qr_payload: Mapped[str] = mapped_column(String(500), nullable=False)
    signature: Mapped[str] = mapped_column(String(64), nullable=False)
    snapshot: Mapped[dict] = mapped_column(JSON, nullable=False)
    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    revoked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    template: Mapped["CertificateTemplate"] = relationship(
        back_populates="certificates"
    )
    artifacts: Mapped[list["PublishedArtifact"]] = relationship(
        back_populates="certificate",
        cascade="all, delete-orphan",
    )

    @property
    def template_name(self) -> str:
        """Name of the template as it was when the certificate was issued."""
        return str(self.snapshot.get("name") or "Certificate")


class PublishedArtifact(TimestampMixin, Base):
    """A rendered file pushed to the external asset store."""

    __tablename__ = "published_artifacts"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    certificate_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("certificates.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    format: Mapped[str] = mapped_column(String(10), nullable=False)
    asset_id: Mapped[str] = mapped_column(String(255), nullable=False)
    url: Mapped[str] = mapped_column(String(1000), nullable=False)

    certificate: Mapped["Certificate"] = relationship(back_populates="artifacts")


_FROZEN_CERTIFICATE_FIELDS = (
    "snapshot",
    "verification_id",
    "qr_payload",
    "signature",
    "template_id",
    "recipient_first_name",
    "recipient_last_name",
    "issue_date",
)


@event.listens_for(Certificate, "before_update")
def _guard_frozen_fields(mapper, connection, target: Certificate) -> None:
    for field in _FROZEN_CERTIFICATE_FIELDS:
        if get_history(target, field).has_changes():
            raise SnapshotImmutableError(
                f"Certificate {target.id}: '{field}' is frozen at issuance"
            )
