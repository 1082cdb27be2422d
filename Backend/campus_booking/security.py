"""
Security utilities for the booking form.

Normalization of identity keys, device fingerprinting and honeypot
detection. Everything here is pure; persistence lives in client_records
and evidence.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional

# ASCII digits only
_NON_DIGITS = re.compile(r"[^0-9]")
_BASE36_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"

# Checked in this order; the first filled field is reported
HONEYPOT_FIELDS = ("website", "url", "company", "fax", "hp_field", "address2")

FINGERPRINT_SEPARATOR = "|"


# ────────────────────────────────────────────────────────────────
# Normalization
# ────────────────────────────────────────────────────────────────

def normalize_phone(phone: Optional[str]) -> str:
    """Strip non-digits and keep the last 10, so '+1 (517) 332-5353' == '5173325353'."""
    if not phone:
        return ""
    return _NON_DIGITS.sub("", phone)[-10:]


def normalize_email(email: Optional[str]) -> str:
    if not email:
        return ""
    return email.strip().lower()


# ────────────────────────────────────────────────────────────────
# Fingerprinting
# ────────────────────────────────────────────────────────────────

def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def _utf16_units(text: str):
    data = text.encode("utf-16-le", "surrogatepass")
    for i in range(0, len(data), 2):
        yield data[i] | (data[i + 1] << 8)


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36_ALPHABET[rem])
    return "".join(reversed(digits))


def generate_fingerprint(
    user_agent: Optional[str],
    accept_language: Optional[str] = None,
    screen_resolution: Optional[str] = None,
    timezone: Optional[str] = None,
    ip: Optional[str] = None,
) -> str:
    """
    Build a short deterministic identifier from device characteristics.

    Used to recognize returning clients without passwords. ``ip`` is
    accepted for call-site symmetry but never hashed: a phone hopping
    between networks must keep its fingerprint.

    This is a similarity key, not a security hash.
    """
    raw = FINGERPRINT_SEPARATOR.join([
        user_agent or "",
        accept_language or "",
        screen_resolution or "",
        timezone or "",
    ])

    # Same rolling hash a browser computes over charCodeAt() units
    value = 0
    for unit in _utf16_units(raw):
        value = _to_int32(value * 31 + unit)

    return _base36(abs(value))


# ────────────────────────────────────────────────────────────────
# Honeypot
# ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class HoneypotResult:
    triggered: bool
    value: Optional[str] = None
    field: Optional[str] = None


def is_honeypot_triggered(fields: Mapping[str, Any]) -> HoneypotResult:
    """
    Check whether any decoy field was filled in (bot detection).

    ``fields`` may be a plain dict or a Starlette ``FormData``; both
    expose ``.get``. Fields outside HONEYPOT_FIELDS are ignored.
    """
    for name in HONEYPOT_FIELDS:
        value = fields.get(name)
        if isinstance(value, str) and value.strip():
            return HoneypotResult(triggered=True, value=value, field=name)

    return HoneypotResult(triggered=False)
