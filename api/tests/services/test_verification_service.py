"""Unit tests for verification ids, certificate numbers and signatures."""

import re
from datetime import date
from unittest.mock import AsyncMock

import pytest

from core.config import clear_settings_cache
from services.verification_service import (
    VERIFICATION_ALPHABET,
    VERIFICATION_ID_PATTERN,
    AllocationExhaustedError,
    VerificationIdAllocator,
    build_certificate_number,
    build_qr_payload,
    generate_verification_id,
    sign_certificate,
    verify_signature,
)

pytestmark = pytest.mark.unit


class TestGenerateVerificationId:
    def test_format(self):
        for _ in range(200):
            assert re.match(VERIFICATION_ID_PATTERN, generate_verification_id())

    def test_alphabet_has_no_look_alikes(self):
        assert not set("01ILO") & set(VERIFICATION_ALPHABET)
        assert len(VERIFICATION_ALPHABET) == 31


class TestVerificationIdAllocator:
    async def test_returns_unused_id(self):
        is_taken = AsyncMock(return_value=False)
        allocator = VerificationIdAllocator(is_taken, max_attempts=3)

        verification_id = await allocator.allocate()

        assert re.match(VERIFICATION_ID_PATTERN, verification_id)
        is_taken.assert_awaited_once_with(verification_id)

    async def test_never_hands_out_the_same_id_twice(self):
        candidates = iter(["AAA-AAAA", "AAA-AAAA", "BBB-BBBB"])
        allocator = VerificationIdAllocator(
            AsyncMock(return_value=False),
            max_attempts=3,
            generate=lambda: next(candidates),
        )

        assert await allocator.allocate() == "AAA-AAAA"
        assert await allocator.allocate() == "BBB-BBBB"

    async def test_retries_past_stored_ids(self):
        candidates = iter(["AAA-AAAA", "BBB-BBBB"])
        allocator = VerificationIdAllocator(
            AsyncMock(side_effect=lambda vid: vid == "AAA-AAAA"),
            max_attempts=2,
            generate=lambda: next(candidates),
        )

        assert await allocator.allocate() == "BBB-BBBB"

    async def test_exhaustion_is_a_distinct_error(self):
        is_taken = AsyncMock(return_value=True)
        allocator = VerificationIdAllocator(is_taken, max_attempts=4)

        with pytest.raises(AllocationExhaustedError) as exc_info:
            await allocator.allocate()

        assert exc_info.value.attempts == 4
        assert is_taken.await_count == 4

    def test_max_attempts_defaults_to_settings(self):
        allocator = VerificationIdAllocator(AsyncMock(return_value=False))
        assert allocator.max_attempts == 5

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            VerificationIdAllocator(AsyncMock(), max_attempts=0)


class TestQrPayload:
    def test_uses_configured_base(self):
        assert (
            build_qr_payload("ABC-DEFG")
            == "https://certs.example.com/api/certificates/verify/ABC-DEFG"
        )

    def test_base_and_path_are_normalized(self, monkeypatch):
        monkeypatch.setenv("VERIFICATION_BASE_URL", "https://verify.example.org/")
        monkeypatch.setenv("VERIFICATION_PATH", "v/")
        clear_settings_cache()

        assert build_qr_payload("ABC-DEFG") == "https://verify.example.org/v/ABC-DEFG"


class TestCertificateNumber:
    def test_explicit_sequence(self):
        number = build_certificate_number("APP", sequence=42, year=2026)
        assert re.match(r"^CERT-2026-APP-0042-[2-9A-HJ-NP-Z]{2}$", number)

    def test_clock_derived_sequence(self):
        number = build_certificate_number("GEN", prefix="ACME")
        assert re.match(r"^ACME-\d{4}-GEN-\d{4}-[2-9A-HJ-NP-Z]{2}$", number)


class TestSignature:
    FIELDS = {
        "certificate_id": "0123456789abcdef",
        "recipient_name": "Jane Doe",
        "template_name": "Course Completion",
        "issue_date": date(2026, 3, 14),
        "issuer_name": "Cloud Academy",
    }

    def test_round_trip(self):
        signature = sign_certificate(**self.FIELDS)

        assert len(signature) == 64
        assert verify_signature(signature, **self.FIELDS)

    def test_tampered_field_fails(self):
        signature = sign_certificate(**self.FIELDS)
        tampered = {**self.FIELDS, "recipient_name": "John Doe"}

        assert not verify_signature(signature, **tampered)

    def test_different_key_fails(self):
        signature = sign_certificate(**self.FIELDS, key="another-key")
        assert not verify_signature(signature, **self.FIELDS)
