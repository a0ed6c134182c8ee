"""Unit tests for auth/totp.py -- RFC 6238 codes, enrollment and the test pair.

Reference codes are the SHA-1 vectors from RFC 6238 Appendix B, truncated to
six digits (the RFC lists eight).
"""

import base64

import pytest

from auth.totp import INTERVAL, TotpManager

RFC_SECRET = base64.b32encode(b"12345678901234567890").decode("ascii")


@pytest.fixture
def totp(settings):
    return TotpManager(settings)


@pytest.mark.parametrize(
    "for_time,expected",
    [
        (59, "287082"),
        (1111111109, "081804"),
        (1234567890, "005924"),
    ],
)
def test_rfc6238_vectors(totp, for_time, expected):
    assert totp.code_at(RFC_SECRET, for_time) == expected


class TestVerify:
    def test_current_code(self, totp):
        assert totp.verify(RFC_SECRET, "005924", for_time=1234567890) is True

    def test_one_step_of_skew_accepted(self, totp):
        previous = totp.code_at(RFC_SECRET, 1234567890 - INTERVAL)
        following = totp.code_at(RFC_SECRET, 1234567890 + INTERVAL)
        assert totp.verify(RFC_SECRET, previous, for_time=1234567890) is True
        assert totp.verify(RFC_SECRET, following, for_time=1234567890) is True

    def test_two_steps_rejected(self, totp):
        stale = totp.code_at(RFC_SECRET, 1234567890 - 2 * INTERVAL)
        assert stale != totp.code_at(RFC_SECRET, 1234567890)
        assert totp.verify(RFC_SECRET, stale, for_time=1234567890) is False

    @pytest.mark.parametrize("code", ["", "12345", "1234567", "abcdef", None])
    def test_malformed_codes(self, totp, code):
        assert totp.verify(RFC_SECRET, code, for_time=1234567890) is False

    def test_invalid_secret(self, totp):
        assert totp.verify("not base32 !!", "123456") is False

    def test_lowercase_unpadded_secret(self, totp):
        assert totp.verify(RFC_SECRET.lower().rstrip("="), "005924", for_time=1234567890) is True


class TestEnrollment:
    def test_generate(self, totp):
        enrollment = totp.generate("ada@example.com")
        assert len(enrollment.secret) == 32  # 160 bits of base32, unpadded
        assert "=" not in enrollment.secret
        assert enrollment.otpauth_uri.startswith("otpauth://totp/AuthGate:ada%40example.com?")
        assert f"secret={enrollment.secret}" in enrollment.otpauth_uri
        assert enrollment.qr.startswith("data:image/svg+xml;base64,")
        svg = base64.b64decode(enrollment.qr.split(",", 1)[1]).decode("utf-8")
        assert "<svg" in svg

    def test_secrets_are_unique(self, totp):
        assert totp.generate("a").secret != totp.generate("a").secret

    def test_generated_secret_verifies(self, totp):
        secret = totp.generate("a").secret
        assert totp.verify(secret, totp.code_at(secret, 1_700_000_000), for_time=1_700_000_000) is True


class TestTestIdentity:
    def test_secret_for_test_user(self, totp, settings):
        assert totp.secret_for(settings.test_user_username, "GENERATED") == settings.test_user_secret
        assert totp.secret_for("someone-else", "GENERATED") == "GENERATED"

    def test_bypass_pair(self, totp, settings):
        assert totp.is_test_bypass(settings.test_user_secret, settings.test_user_code) is True
        assert totp.is_test_bypass(settings.test_user_secret, "000000") is False
        assert totp.is_test_bypass("OTHERSECRET", settings.test_user_code) is False

    def test_bypass_inert_outside_test_env(self, settings_factory):
        prod = settings_factory(app_env="production")
        manager = TotpManager(prod)
        assert manager.is_test_bypass(prod.test_user_secret, prod.test_user_code) is False
        assert manager.secret_for(prod.test_user_username, "GENERATED") == "GENERATED"
