"""
Turns a raw scanned (or pasted) string into a guest access token.

Three historical encodings are accepted, tried in this order:
  1. JSON payload  {"t": "<app tag>", "tk": "<token>"}
  2. URL with a `token` query parameter
  3. URL whose fragment is exactly 32 hex characters (the token never
     reaches a server through the query string)

Resolution never raises; callers always get a TokenResolution back.
"""

import json
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qs, urlsplit

INVALID_CODE = "invalid code"

_HEX_FRAGMENT = re.compile(r"^[0-9A-Fa-f]{32}$")


@dataclass(frozen=True)
class TokenResolution:
    token: Optional[str] = None
    encoding: Optional[str] = None  # payload, query, fragment
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.token is not None


def _from_payload(raw: str, app_tag: str) -> Optional[str]:
    try:
        parsed = json.loads(raw)
    except (ValueError, TypeError):
        return None
    if not isinstance(parsed, dict) or parsed.get("t") != app_tag:
        return None
    token = parsed.get("tk")
    if isinstance(token, str) and token.strip():
        return token.strip()
    return None


def _split_url(raw: str):
    try:
        parts = urlsplit(raw)
    except ValueError:
        return None
    if not parts.scheme or not parts.netloc:
        return None
    return parts


def _from_query(raw: str) -> Optional[str]:
    parts = _split_url(raw)
    if parts is None:
        return None
    values = parse_qs(parts.query).get("token") or []
    for value in values:
        if value.strip():
            return value.strip()
    return None


def _from_fragment(raw: str) -> Optional[str]:
    parts = _split_url(raw)
    if parts is None:
        return None
    if _HEX_FRAGMENT.match(parts.fragment):
        return parts.fragment
    return None


def qr_payload(token: str, app_tag: str) -> str:
    """The string printed into a guest's QR code."""
    return json.dumps({"t": app_tag, "tk": token}, separators=(",", ":"))


def landing_url(token: str, base_url: str) -> str:
    """Shareable link; the token rides in the fragment so servers never log it."""
    return f"{base_url.rstrip('/')}/p/landing#{token}"


def resolve_token(raw: Optional[str], app_tag: str) -> TokenResolution:
    if not raw or not isinstance(raw, str):
        return TokenResolution(reason=INVALID_CODE)

    text = raw.strip()

    token = _from_payload(text, app_tag)
    if token:
        return TokenResolution(token=token, encoding="payload")

    token = _from_query(text)
    if token:
        return TokenResolution(token=token, encoding="query")

    token = _from_fragment(text)
    if token:
        return TokenResolution(token=token, encoding="fragment")

    return TokenResolution(reason=INVALID_CODE)
