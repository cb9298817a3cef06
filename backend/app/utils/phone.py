"""
Phone number normalization to E.164.

Local numbers (leading 0 or bare 9 digits) are assumed to belong to the
configured default country. Input that cannot be a mobile number after
normalization yields None.
"""

import re
from typing import Optional

_NON_DIALABLE = re.compile(r"[^\d+]")
_E164 = re.compile(r"^\+[1-9]\d{7,14}$")


def normalize_phone(raw: Optional[str], country_code: str = "972") -> Optional[str]:
    """
    0501234567      -> +972501234567
    050-123-4567    -> +972501234567
    972501234567    -> +972501234567
    +972501234567   -> +972501234567
    """
    if not raw:
        return None

    cleaned = _NON_DIALABLE.sub("", raw.strip())
    if cleaned.startswith("00"):
        cleaned = "+" + cleaned[2:]

    if cleaned.startswith("+"):
        candidate = cleaned
    elif cleaned.startswith(country_code):
        candidate = "+" + cleaned
    elif cleaned.startswith("0"):
        candidate = f"+{country_code}{cleaned[1:]}"
    elif len(cleaned) == 9:
        candidate = f"+{country_code}{cleaned}"
    else:
        candidate = "+" + cleaned

    if "+" in candidate[1:] or not _E164.match(candidate):
        return None
    return candidate


def mask_phone(phone: Optional[str]) -> str:
    """+972501234567 -> 050-***-4567 for local numbers, +1***4567 otherwise."""
    if not phone:
        return ""
    digits = re.sub(r"\D", "", phone)
    if len(digits) < 7:
        return phone
    if phone.startswith("+972"):
        local = "0" + digits[3:]
        return f"{local[:3]}-***-{local[-4:]}"
    return f"+{digits[:2]}***{digits[-4:]}"
