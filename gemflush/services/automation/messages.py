"""User-facing error message shaping."""

from __future__ import annotations

import re

from gemflush.settings import settings

_SENSITIVE_PATTERNS = (
    re.compile(r"Bearer\s+[A-Za-z0-9\-._~+/]+=*"),
    re.compile(r"api[_-]?keys?[\"\s:=]+[A-Za-z0-9\-._~+/]+=*", re.IGNORECASE),
    re.compile(r"passwords?[\"\s:=]+[^\s\"]+", re.IGNORECASE),
    re.compile(r"tokens?[\"\s:=]+[A-Za-z0-9\-._~+/]+=*", re.IGNORECASE),
)

_KNOWN_REWRITES = (
    ("already has label", "Business already exists in Wikidata. Updating existing entry..."),
    ("Bad value type", "Data format error. Please contact support if this persists."),
)

UNKNOWN_ERROR_MESSAGE = "Unknown error occurred"


def redact_sensitive(value: str) -> str:
    redacted = value
    for pattern in _SENSITIVE_PATTERNS:
        redacted = pattern.sub("[REDACTED]", redacted)
    return redacted


def user_safe_error_message(error: BaseException | str | None, *, max_chars: int | None = None) -> str:
    """Return a message that is safe to store on a record and show to users."""
    if error is None:
        return UNKNOWN_ERROR_MESSAGE
    message = str(error).strip()
    if not message:
        return UNKNOWN_ERROR_MESSAGE
    for needle, replacement in _KNOWN_REWRITES:
        if needle in message:
            return replacement
    message = redact_sensitive(message)
    limit = settings.publish_error_message_max_chars if max_chars is None else max_chars
    limit = max(1, int(limit))
    if len(message) > limit:
        return message[:limit] + "..."
    return message
