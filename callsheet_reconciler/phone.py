"""Phone number canonicalization."""
from __future__ import annotations

import re
from typing import Optional, Sequence

_STRIP_RE = re.compile(r"[\s\-().]")
_VALID_RE = re.compile(r"^\+?[0-9]{7,15}$")
_FLOAT_SUFFIX_RE = re.compile(r"\.0+$")

DEFAULT_COUNTRY_CODE = "971"
DEFAULT_MOBILE_PREFIXES = ("5",)


def strip_phone(raw: object) -> str:
    """Remove whitespace, dashes, parentheses and dots."""

    if raw is None:
        return ""
    return _STRIP_RE.sub("", str(raw))


def normalize_phone(
    raw: object,
    *,
    country_code: Optional[str] = DEFAULT_COUNTRY_CODE,
    mobile_prefixes: Sequence[str] = DEFAULT_MOBILE_PREFIXES,
) -> str:
    """Return the canonical form of ``raw``.

    ``050-123-4567``, ``0501234567``, ``501234567`` and ``00971501234567`` all
    become ``+971501234567`` with the default country code. Applying the
    function to its own output returns the same string.
    """

    cleaned = strip_phone(raw)
    if cleaned.startswith("00"):
        cleaned = "+" + cleaned[2:]

    if not country_code or not cleaned.isdigit():
        return cleaned

    if len(cleaned) == 10 and cleaned.startswith("0"):
        return f"+{country_code}{cleaned[1:]}"
    if len(cleaned) == 9 and cleaned[0] in tuple(mobile_prefixes):
        return f"+{country_code}{cleaned}"
    return cleaned


def is_valid_phone(raw: object) -> bool:
    return bool(_VALID_RE.match(strip_phone(raw)))


def deep_clean_phone(raw: object) -> str:
    """Aggressive cleanup used by auto-fix.

    Drops a trailing ``.0`` left by spreadsheet number cells and every
    character that is not a digit, keeping a leading ``+``.
    """

    text = _FLOAT_SUFFIX_RE.sub("", str(raw or "").strip())
    plus = text.lstrip().startswith("+")
    digits = "".join(char for char in text if char.isdigit())
    return f"+{digits}" if plus and digits else digits


def mask_phone(phone: Optional[str]) -> str:
    if not phone or len(phone) < 4:
        return "****"
    return f"****{phone[-4:]}"


__all__ = ["deep_clean_phone", "is_valid_phone", "mask_phone", "normalize_phone", "strip_phone"]
