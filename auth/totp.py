"""
auth/totp.py -- Time-based one-time passwords (RFC 6238) for 2FA.

Code generation and verification are delegated to pyotp with the
authenticator-app defaults: HMAC-SHA1, 6 digits, 30 second step, base32
secrets. verify() accepts the current step and one step on either side to
absorb clock skew between server and phone.

Enrollment produces pyotp's otpauth:// URI and the same URI rendered as an
SVG QR code (data URI) with the qrcode library, so the client can show it
directly in an <img> tag.

Test identity:
  In the test environment one configured username always receives the
  configured fixed secret, and the configured (secret, code) pair verifies
  without running the HMAC. Outside the test environment the bypass is inert.

Layer rule: no imports from api/. Settings are passed in, not looked up.
"""

from __future__ import annotations

import base64
import hmac
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import pyotp
import qrcode
from qrcode.image.svg import SvgPathImage

if TYPE_CHECKING:
    from core.config import Settings

DIGITS = 6
INTERVAL = 30
VALID_WINDOW = 1


@dataclass(frozen=True)
class TotpEnrollment:
    secret: str
    otpauth_uri: str
    qr: str  # data:image/svg+xml;base64,...


class TotpManager:
    def __init__(self, settings: Settings) -> None:
        self.issuer = settings.totp_issuer
        self.test_username = settings.test_user_username
        self.test_secret = settings.test_user_secret
        self.test_code = settings.test_user_code
        self.test_mode = settings.is_test

    # ------------------------------------------------------------------
    # Provisioning
    # ------------------------------------------------------------------

    def generate(self, label: str) -> TotpEnrollment:
        """Create a fresh secret and its enrollment artifacts for label (usually the e-mail)."""
        return self.enrollment(pyotp.random_base32(), label)

    def enrollment(self, secret: str, label: str) -> TotpEnrollment:
        uri = self.provisioning_uri(secret, label)
        return TotpEnrollment(secret=secret, otpauth_uri=uri, qr=_svg_data_uri(uri))

    def provisioning_uri(self, secret: str, label: str) -> str:
        return _totp(secret).provisioning_uri(name=label, issuer_name=self.issuer)

    def secret_for(self, username: str, generated: str) -> str:
        """Return the secret to persist for username.

        The configured test user always gets the fixed test secret so its
        codes are predictable.
        """
        if self.test_mode and username == self.test_username:
            return self.test_secret
        return generated

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def code_at(self, secret: str, for_time: float) -> str:
        """Return the code valid at the given Unix time."""
        return _totp(secret).at(_utc(for_time))

    def verify(self, secret: str, code: str, for_time: float | None = None) -> bool:
        """Return True if code is valid for secret within +-VALID_WINDOW steps."""
        code = (code or "").strip()
        if len(code) != DIGITS or not (code.isascii() and code.isdigit()):
            return False
        totp = _totp(secret)
        try:
            totp.byte_secret()
        except ValueError:  # binascii.Error on a malformed base32 secret
            return False
        when = None if for_time is None else _utc(for_time)
        return totp.verify(code, for_time=when, valid_window=VALID_WINDOW)

    def is_test_bypass(self, secret: str, code: str) -> bool:
        if not self.test_mode:
            return False
        return hmac.compare_digest(secret.encode(), self.test_secret.encode()) and hmac.compare_digest(
            str(code).encode(), self.test_code.encode()
        )


def _totp(secret: str) -> pyotp.TOTP:
    # pyotp pads and case-folds, but does not drop the spaces apps display.
    return pyotp.TOTP(secret.replace(" ", ""), digits=DIGITS, interval=INTERVAL)


def _utc(for_time: float) -> datetime:
    return datetime.fromtimestamp(int(for_time), tz=timezone.utc)


def _svg_data_uri(data: str) -> str:
    qr = qrcode.QRCode(image_factory=SvgPathImage, box_size=10, border=2)
    qr.add_data(data)
    qr.make(fit=True)
    svg = qr.make_image().to_string(encoding="unicode")
    return "data:image/svg+xml;base64," + base64.b64encode(svg.encode("utf-8")).decode("ascii")
