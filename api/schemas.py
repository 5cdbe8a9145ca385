"""Pydantic schemas for certificate templates and API request/response validation.

Template schemas are immutable value objects: every model is frozen and
collections are tuples, so a bound template can be shared across concurrent
exports without any copy being mutated in place. Inputs accept both
snake_case and the camelCase keys produced by the template designer.
"""

import re
from datetime import date, datetime
from enum import StrEnum
from typing import Annotated, Literal, Self

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from models import CertificateStatus

# ============ Template Model ============


class _TemplateModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )


class Position(_TemplateModel):
    """Element box in page pixels."""

    x: float
    y: float
    width: float = Field(gt=0)
    height: float = Field(gt=0)


class ElementStyle(_TemplateModel):
    color: str = "#000000"
    opacity: float = Field(default=1.0, ge=0.0, le=1.0)
    rotation: float = 0.0  # degrees, clockwise, around the box center
    background_color: str | None = None


class _ElementBase(_TemplateModel):
    id: str = Field(min_length=1, max_length=100)
    position: Position
    z_index: int = 0
    style: ElementStyle = ElementStyle()


class TextElement(_ElementBase):
    type: Literal["text"] = "text"
    content: str
    font_family: str
    font_size: float = Field(default=16.0, gt=0)
    font_weight: str = "normal"
    font_style: Literal["normal", "italic"] = "normal"
    text_align: Literal["left", "center", "right"] = "left"
    line_height: float = Field(default=1.2, gt=0)


class ImageElement(_ElementBase):
    type: Literal["image"] = "image"
    src: str = Field(min_length=1)
    fit: Literal["cover", "contain", "stretch"] = "contain"
    # Intrinsic size; when known the layout computes the exact draw rectangle
    natural_width: float | None = Field(default=None, gt=0)
    natural_height: float | None = Field(default=None, gt=0)


class ShapeElement(_ElementBase):
    type: Literal["shape"] = "shape"
    shape: Literal["rectangle", "ellipse", "line"] = "rectangle"
    fill: str | None = None
    stroke_color: str | None = None
    stroke_width: float = Field(default=0.0, ge=0)
    border_radius: float = Field(default=0.0, ge=0)


class QRCodeElement(_ElementBase):
    type: Literal["qr"] = "qr"
    data: str = "{{verificationUrl}}"
    foreground: str = "#000000"
    background: str = "#ffffff"


Element = Annotated[
    TextElement | ImageElement | ShapeElement | QRCodeElement,
    Field(discriminator="type"),
]


class Margin(_TemplateModel):
    top: float = Field(default=0.0, ge=0)
    right: float = Field(default=0.0, ge=0)
    bottom: float = Field(default=0.0, ge=0)
    left: float = Field(default=0.0, ge=0)


class Background(_TemplateModel):
    color: str | None = "#ffffff"
    image: str | None = None


class PageSettings(_TemplateModel):
    width: int = Field(gt=0, le=10000)
    height: int = Field(gt=0, le=10000)
    margin: Margin = Margin()
    background: Background = Background()


class FontDeclaration(_TemplateModel):
    """A font the template may use.

    ``url`` is loaded by the browser (stylesheet or font file); ``file`` is a
    local TrueType/OpenType path used for text measurement.
    """

    family: str = Field(min_length=1)
    variants: tuple[str, ...] = ("normal",)
    url: str | None = None
    file: str | None = None


class Template(_TemplateModel):
    """Declarative certificate layout."""

    name: str = Field(min_length=1, max_length=200)
    description: str = ""
    elements: tuple[Element, ...] = ()
    page_settings: PageSettings
    fonts: tuple[FontDeclaration, ...] = ()

    def font(self, family: str) -> FontDeclaration | None:
        for declaration in self.fonts:
            if declaration.family == family:
                return declaration
        return None


# ============ Export ============


class ExportFormat(StrEnum):
    PDF = "pdf"
    PNG = "png"
    HTML = "html"

    @property
    def media_type(self) -> str:
        return {
            ExportFormat.PDF: "application/pdf",
            ExportFormat.PNG: "image/png",
            ExportFormat.HTML: "text/html; charset=utf-8",
        }[self]


class BatchManifest(BaseModel):
    """Outcome of a bulk export."""

    total_requested: int
    succeeded: int
    failed_ids: list[str]

    @property
    def failed(self) -> int:
        return len(self.failed_ids)


# ============ Certificates ============


class CertificateData(BaseModel):
    """Read model of an issued certificate."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str
    template_id: str
    template_name: str
    certificate_number: str
    recipient_first_name: str
    recipient_last_name: str
    recipient_email: str
    issuer_name: str
    issue_date: date
    expiry_date: date | None = None
    status: CertificateStatus
    verification_id: str
    qr_payload: str
    signature: str
    snapshot: dict
    issued_at: datetime

    @property
    def recipient_name(self) -> str:
        return f"{self.recipient_first_name} {self.recipient_last_name}".strip()


_CATEGORY_PATTERN = re.compile(r"^[A-Z]{3}$")
_EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"


class IssueCertificateRequest(BaseModel):
    """Request to issue a certificate from a stored template."""

    template_id: str
    recipient_first_name: str = Field(min_length=1, max_length=100)
    recipient_last_name: str = Field(min_length=1, max_length=100)
    recipient_email: str = Field(pattern=_EMAIL_PATTERN, max_length=255)
    issuer_name: str = Field(min_length=1, max_length=200)
    issue_date: date | None = None
    expiry_date: date | None = None
    # Explicit three-letter type code used in the certificate number (e.g. "APP")
    category: str = Field(default="GEN")
    sequence_number: int | None = Field(default=None, ge=0, le=9999)
    custom_fields: dict[str, str] = Field(default_factory=dict)

    @field_validator("recipient_first_name", "recipient_last_name", "issuer_name")
    @classmethod
    def clean_name(cls, v: str) -> str:
        cleaned = " ".join(v.strip().split())
        if not cleaned:
            raise ValueError("Name must not be blank")
        return cleaned

    @field_validator("category")
    @classmethod
    def validate_category(cls, v: str) -> str:
        v = v.strip().upper()
        if not _CATEGORY_PATTERN.match(v):
            raise ValueError("Category must be three letters, e.g. 'APP'")
        return v

    @model_validator(mode="after")
    def validate_dates(self) -> Self:
        if self.expiry_date and self.issue_date and self.expiry_date < self.issue_date:
            raise ValueError("expiry_date must not be before issue_date")
        return self


class CertificateResponse(BaseModel):
    """Response containing certificate data (snapshot omitted)."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    template_id: str
    certificate_number: str
    recipient_first_name: str
    recipient_last_name: str
    recipient_email: str
    issuer_name: str
    issue_date: date
    expiry_date: date | None = None
    status: CertificateStatus
    verification_id: str
    qr_payload: str
    issued_at: datetime


class CertificateVerifyResponse(BaseModel):
    """Response for certificate verification."""

    is_valid: bool
    certificate: CertificateResponse | None = None
    message: str


class BulkDownloadRequest(BaseModel):
    certificate_ids: list[str] = Field(min_length=1)
    format: ExportFormat = ExportFormat.PDF

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: ExportFormat) -> ExportFormat:
        if v is ExportFormat.HTML:
            raise ValueError("Invalid format. Must be 'pdf' or 'png'")
        return v


class BulkCertificateRequest(BaseModel):
    """Ids for a bulk revoke or purge. Duplicates are processed once."""

    certificate_ids: list[str] = Field(min_length=1, max_length=500)


class BulkRevokeResponse(BaseModel):
    total_requested: int
    revoked: list[str] = Field(default_factory=list)
    already_revoked: list[str] = Field(default_factory=list)
    not_found: list[str] = Field(default_factory=list)


class BulkPurgeResponse(BaseModel):
    total_requested: int
    deleted: list[str] = Field(default_factory=list)
    not_found: list[str] = Field(default_factory=list)
    files_deleted: int = 0
    file_errors: int = 0


class PublishResponse(BaseModel):
    """Outcome of exporting and publishing one certificate."""

    certificate_id: str
    format: ExportFormat
    published: bool
    degraded: bool
    asset_id: str | None = None
    url: str | None = None


class TemplateIssueResponse(BaseModel):
    index: int | None
    element_id: str | None
    message: str


class TemplateResponse(BaseModel):
    """A stored template with its normalized definition."""

    id: str
    name: str
    description: str
    definition: Template
    created_at: datetime


class TemplateValidationResponse(BaseModel):
    is_valid: bool
    issues: list[TemplateIssueResponse] = Field(default_factory=list)
    template: Template | None = None


# ============ Health ============


class HealthResponse(BaseModel):
    status: str
    service: str


class DetailedHealthResponse(BaseModel):
    status: str
    service: str
    database: bool
    render_engine: bool
