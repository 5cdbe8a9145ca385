"""Verification identifiers, QR payloads, certificate numbers and signatures.

Verification ids are short and human-shareable (``XXX-XXXX``) and drawn from
an alphabet without look-alike characters (no 0/O, 1/I/L). Uniqueness is
checked against the certificate store and retried a bounded number of times;
running out of attempts means the id space is under pressure, which is a
capacity problem and not something to retry blindly.
"""

import hashlib
import hmac
import logging
import secrets
import time
from collections.abc import Awaitable, Callable
from datetime import date

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from core.config import get_settings

logger = logging.getLogger(__name__)

VERIFICATION_ALPHABET = "23456789ABCDEFGHJKMNPQRSTUVWXYZ"
VERIFICATION_ID_PATTERN = r"^[2-9A-HJKMNP-Z]{3}-[2-9A-HJKMNP-Z]{4}$"


class AllocationExhaustedError(Exception):
    """Raised when no unused verification id was found within the attempt bound."""

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(
            f"Could not allocate a unique verification id after {attempts} attempts"
        )


class _VerificationIdTaken(Exception):
    pass


def _random_chars(length: int) -> str:
    return "".join(secrets.choice(VERIFICATION_ALPHABET) for _ in range(length))


def generate_verification_id() -> str:
    """Random candidate id in the form ``XXX-XXXX``."""
    return f"{_random_chars(3)}-{_random_chars(4)}"


class VerificationIdAllocator:
    """Allocates verification ids that are unique in the certificate store.

    ``is_taken`` is the uniqueness check (normally
    ``CertificateRepository.verification_id_exists``). Ids handed out by this
    allocator are also remembered, so a batch issued inside one transaction
    never receives the same id twice before it is flushed.
    """

    def __init__(
        self,
        is_taken: Callable[[str], Awaitable[bool]],
        *,
        max_attempts: int | None = None,
        generate: Callable[[], str] = generate_verification_id,
    ) -> None:
        if max_attempts is None:
            max_attempts = get_settings().verification_id_max_attempts
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self._is_taken = is_taken
        self._generate = generate
        self._reserved: set[str] = set()

    async def allocate(self) -> str:
        """Return a fresh verification id.

        Raises:
            AllocationExhaustedError: every attempt collided.
        """
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(_VerificationIdTaken),
                stop=stop_after_attempt(self.max_attempts),
                reraise=True,
            ):
                with attempt:
                    candidate = self._generate()
                    if candidate in self._reserved or await self._is_taken(candidate):
                        logger.debug(
                            "verification_id.collision",
                            extra={
                                "attempt": attempt.retry_state.attempt_number,
                            },
                        )
                        raise _VerificationIdTaken(candidate)
                    self._reserved.add(candidate)
                    return candidate
        except _VerificationIdTaken as e:
            logger.error(
                "verification_id.exhausted",
                extra={"max_attempts": self.max_attempts},
            )
            raise AllocationExhaustedError(self.max_attempts) from e


def build_qr_payload(verification_id: str) -> str:
    """Canonical public verification URL for a verification id."""
    return f"{get_settings().verification_url_prefix}/{verification_id}"


def build_certificate_number(
    category: str,
    *,
    sequence: int | None = None,
    year: int | None = None,
    prefix: str | None = None,
) -> str:
    """Human-facing certificate number: ``ORG-YYYY-CAT-NNNN-XX``.

    ``category`` is the caller's three-letter type code. Without an explicit
    ``sequence`` a clock-derived value is used; the two-character random tail
    keeps numbers distinct either way.
    """
    prefix = prefix or get_settings().organization_prefix
    year = year or date.today().year
    if sequence is None:
        sequence = time.time_ns() // 1_000_000 % 10_000
    return f"{prefix}-{year}-{category}-{sequence:04d}-{_random_chars(2)}"


def _signing_payload(
    certificate_id: str,
    recipient_name: str,
    template_name: str,
    issue_date: date,
    issuer_name: str,
) -> bytes:
    fields = [
        certificate_id,
        recipient_name,
        template_name,
        issue_date.isoformat(),
        issuer_name,
    ]
    return "|".join(fields).encode("utf-8")


def sign_certificate(
    *,
    certificate_id: str,
    recipient_name: str,
    template_name: str,
    issue_date: date,
    issuer_name: str,
    key: str | None = None,
) -> str:
    """HMAC-SHA256 over the identifying fields, hex encoded."""
    key = key or get_settings().certificate_signing_key
    payload = _signing_payload(
        certificate_id, recipient_name, template_name, issue_date, issuer_name
    )
    return hmac.new(key.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_signature(
    signature: str,
    *,
    certificate_id: str,
    recipient_name: str,
    template_name: str,
    issue_date: date,
    issuer_name: str,
    key: str | None = None,
) -> bool:
    expected = sign_certificate(
        certificate_id=certificate_id,
        recipient_name=recipient_name,
        template_name=template_name,
        issue_date=issue_date,
        issuer_name=issuer_name,
        key=key,
    )
    return hmac.compare_digest(expected, signature)
