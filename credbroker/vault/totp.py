"""
TOTP (RFC 6238) enrollment secrets and code checks, via pyotp.

Fixed parameters: 30-second step, 6 digits, HMAC-SHA1 — what every
authenticator app assumes for a bare otpauth:// URI.
"""

from __future__ import annotations

import re
from datetime import datetime

import pyotp
from pyotp.utils import strings_equal

STEP_SECONDS = 30
DIGITS = 6
SECRET_LENGTH = 32  # base32 chars → 160 bits

_CODE_RE = re.compile(rf"^\d{{{DIGITS}}}$")


def generate_secret() -> str:
    """New random base32 shared secret."""
    return pyotp.random_base32(length=SECRET_LENGTH)


def provisioning_uri(secret: str, issuer: str, account: str) -> str:
    """otpauth://totp/... URI for QR codes / manual entry."""
    return pyotp.TOTP(secret, digits=DIGITS, interval=STEP_SECONDS).provisioning_uri(
        name=account, issuer_name=issuer
    )


def current_code(secret: str, now: datetime) -> str:
    return pyotp.TOTP(secret, digits=DIGITS, interval=STEP_SECONDS).at(now)


def matched_step(code: str, secret: str, now: datetime, window: int = 1) -> int | None:
    """Time-step counter the code belongs to (within ±window of now), else None.

    strings_equal compares with hmac.compare_digest.
    """
    code = (code or "").strip().replace(" ", "")
    if not _CODE_RE.match(code):
        return None
    t = pyotp.TOTP(secret, digits=DIGITS, interval=STEP_SECONDS)
    current = t.timecode(now)
    for offset in range(-window, window + 1):
        if strings_equal(code, t.at(now, offset)):
            return current + offset
    return None


def verify(code: str, secret: str, now: datetime, window: int = 1) -> bool:
    """Check code against the step containing now, ±window steps."""
    return matched_step(code, secret, now, window) is not None
