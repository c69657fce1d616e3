"""
TOTP helpers (RFC 6238) built on pyotp.

Codes are six digits over a TOTP_PERIOD-second step. Verification accepts
the previous, current and next step (TOTP_VALID_WINDOW = 1) to absorb clock
drift between the server and the authenticator app. pyotp compares the
candidate against each derived code with hmac.compare_digest.
"""

from datetime import datetime

import pyotp

from bankledger.config import settings

OTP_DIGITS = 6


def generate_secret() -> str:
    """A fresh 160-bit base32 secret."""
    return pyotp.random_base32(length=32)


def _totp(secret: str) -> pyotp.TOTP:
    return pyotp.TOTP(
        secret,
        digits=OTP_DIGITS,
        interval=settings.TOTP_PERIOD,
        issuer=settings.TOTP_ISSUER,
    )


def build_otpauth_url(secret: str, label: str) -> str:
    """otpauth:// provisioning URI for QR codes."""
    return _totp(secret).provisioning_uri(name=label or "user", issuer_name=settings.TOTP_ISSUER)


def verify_code(secret: str | None, code: str | None, for_time: datetime | None = None) -> bool:
    if not secret or not code:
        return False
    code = code.strip()
    if len(code) != OTP_DIGITS or not code.isdigit():
        return False
    return _totp(secret).verify(code, for_time=for_time, valid_window=settings.TOTP_VALID_WINDOW)


def current_code(secret: str, for_time: datetime | None = None) -> str:
    totp = _totp(secret)
    return totp.at(for_time) if for_time is not None else totp.now()


def format_secret_for_display(secret: str) -> str:
    """Group the secret in blocks of four for manual entry: ABCD EFGH ..."""
    secret = secret.upper()
    return " ".join(secret[i:i + 4] for i in range(0, len(secret), 4))
