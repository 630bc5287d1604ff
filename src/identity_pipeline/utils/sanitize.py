from __future__ import annotations

import re
from typing import Final, Mapping
from urllib.parse import urlsplit, urlunsplit

REDACTED: Final[str] = "REDACTED"

_SECRET_KEYS: Final[frozenset[str]] = frozenset(
    {
        "authorization",
        "access_token",
        "refresh_token",
        "client_secret",
        "client_assertion",
        "user_assertion",
        "secret",
        "x-identity-header",
        "token",
    }
)

_BEARER_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"\b(Bearer|PoP|Basic)\s+[A-Za-z0-9\-\._~\+/=]+",
    flags=re.IGNORECASE,
)

_CONTROL_CHARS: Final[frozenset[str]] = frozenset(
    chr(code) for code in range(0x00, 0x20) if chr(code) not in {"\t", "\n"}
)


def is_secret_key(key: str) -> bool:
    return key.lower() in _SECRET_KEYS


def redact_value(value: object) -> object:
    """Mask credential material embedded in free-form log values."""

    if isinstance(value, str):
        return _BEARER_PATTERN.sub(lambda m: f"{m.group(1)} {REDACTED}", value)
    return value


def sanitize_headers(headers: Mapping[str, str] | None) -> dict[str, str]:
    """Return a copy of ``headers`` safe to log."""

    if not headers:
        return {}
    sanitized: dict[str, str] = {}
    for key, value in headers.items():
        if is_secret_key(key):
            sanitized[key] = REDACTED
            continue
        sanitized[key] = str(value)
    return sanitized


def sanitize_url(url: str, *, include_query: bool = False) -> str:
    """Drop the query string from ``url`` unless support logging is enabled."""

    if include_query:
        return url
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


def sanitize_log_message(value: str) -> str:
    """Normalise log messages by stripping control characters and CR sequences."""

    normalised = value.replace("\r\n", "\n").replace("\r", "\n")
    return "".join(ch for ch in normalised if ch not in _CONTROL_CHARS)


__all__ = [
    "REDACTED",
    "is_secret_key",
    "redact_value",
    "sanitize_headers",
    "sanitize_url",
    "sanitize_log_message",
]
