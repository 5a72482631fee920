"""Masking of sensitive web-storage values before they leave the snapshot layer."""

from __future__ import annotations

import re

MASKED_PLACEHOLDER = "[masked]"

MAX_UNMASKED_LENGTH = 256

_EMAIL_RE = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")

# Dotted day-first dates need a four-digit year: 3.10.12 is a version.
_DATE_RE = re.compile(
    r"\b\d{4}-\d{2}-\d{2}(?:[T ]\d{2}:\d{2}(?::\d{2})?)?"
    r"|(?<![\d/])\d{1,2}/\d{1,2}/(?:\d{4}|\d{2})(?![\d/])"
    r"|(?<![\d.])(?:0?[1-9]|[12]\d|3[01])\.(?:0?[1-9]|1[0-2])\.(?:19|20)\d{2}(?!\.?\d)"
)


def is_sensitive(value: str) -> bool:
    """True for email-like, date-like or oversized values."""
    if len(value) > MAX_UNMASKED_LENGTH:
        return True
    return bool(_EMAIL_RE.search(value) or _DATE_RE.search(value))


def mask_storage_value(value: str) -> tuple[str, bool]:
    """Return ``(value_or_placeholder, masked)`` for a storage value."""
    if is_sensitive(value):
        return MASKED_PLACEHOLDER, True
    return value, False
