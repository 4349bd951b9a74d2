"""
Unit tests for OTP issuance and validation.
"""

from unittest.mock import patch

from src.domain.otp import OtpCheck, OtpService, generate_code, otp_key
from src.domain.ports import VerificationChannel
from tests.fakes import InMemoryStore


class TestOtpKey:
    def test_key_layout(self) -> None:
        assert otp_key("email", "jane@x.com") == "otp:email:jane@x.com"

    def test_key_accepts_channel_enum(self) -> None:
        assert otp_key(VerificationChannel.MOBILE, "9876543210") == "otp:mobile:9876543210"

    def test_identifier_is_normalized(self) -> None:
        assert otp_key("email", "  Jane@X.com ") == "otp:email:jane@x.com"


class TestGenerateCode:
    def test_code_length_and_digits(self) -> None:
        for length in (4, 6, 8):
            code = generate_code(length)
            assert len(code) == length
            assert code.isdigit()

    def test_code_preserves_leading_zeros(self) -> None:
        with patch("src.domain.otp.secrets.choice", return_value="0"):
            assert generate_code(6) == "000000"

    def test_codes_vary(self) -> None:
        codes = {generate_code(6) for _ in range(50)}
        assert len(codes) > 1


class TestOtpService:
    async def test_issue_stores_code_with_ttl(self, store: InMemoryStore) -> None:
        otp = OtpService(store, length=6, ttl_seconds=300)

        code = await otp.issue("email", "jane@x.com")

        assert store.peek("otp:email:jane@x.com") == code
        assert store.ttl("otp:email:jane@x.com") == 300

    async def test_issue_overwrites_previous_code(self, store: InMemoryStore) -> None:
        otp = OtpService(store)
        with patch("src.domain.otp.generate_code", side_effect=["111111", "222222"]):
            await otp.issue("email", "jane@x.com")
            await otp.issue("email", "jane@x.com")

        assert store.peek("otp:email:jane@x.com") == "222222"

    async def test_validate_outcomes(self, store: InMemoryStore) -> None:
        otp = OtpService(store)
        await store.set_with_ttl("otp:email:jane@x.com", "123456", 300)

        assert await otp.validate("email", "jane@x.com", "123456") is OtpCheck.MATCHED
        assert await otp.validate("email", "jane@x.com", " 123456 ") is OtpCheck.MATCHED
        assert await otp.validate("email", "jane@x.com", "654321") is OtpCheck.MISMATCHED
        assert await otp.validate("mobile", "9876543210", "123456") is OtpCheck.MISSING

    async def test_validate_does_not_consume(self, store: InMemoryStore) -> None:
        otp = OtpService(store)
        await store.set_with_ttl("otp:email:jane@x.com", "123456", 300)

        await otp.validate("email", "jane@x.com", "123456")

        assert store.peek("otp:email:jane@x.com") == "123456"

    async def test_expired_code_is_missing(self, store: InMemoryStore, clock) -> None:
        otp = OtpService(store, ttl_seconds=300)
        code = await otp.issue("email", "jane@x.com")
        clock.advance(300)

        assert await otp.validate("email", "jane@x.com", code) is OtpCheck.MISSING

    async def test_invalidate(self, store: InMemoryStore) -> None:
        otp = OtpService(store)
        await otp.issue("mobile", "9876543210")

        await otp.invalidate("mobile", "9876543210")

        assert store.peek("otp:mobile:9876543210") is None

    async def test_invalidate_op_folds_into_batch(self, store: InMemoryStore) -> None:
        otp = OtpService(store)
        await otp.issue("email", "jane@x.com")
        await otp.issue("mobile", "9876543210")

        await store.batch(
            [otp.invalidate_op("email", " Jane@X.com "), otp.invalidate_op("mobile", "9876543210")]
        )

        assert store.peek("otp:email:jane@x.com") is None
        assert store.peek("otp:mobile:9876543210") is None
