"""
``Set-Cookie`` header parsing.

Browsers report raw response headers with repeated ``Set-Cookie``
values joined by newlines, so a single header entry may describe
several cookies.
"""

from __future__ import annotations

from datetime import UTC
from email import utils as email_utils
from typing import Any

from consentdiff.models import evidence
from consentdiff.utils import url as url_mod


def set_cookie_values(headers: dict[str, Any] | None) -> list[str]:
    """Return every individual ``Set-Cookie`` value in *headers*."""
    if not headers:
        return []
    values: list[str] = []
    for key, raw in headers.items():
        if key.lower() != "set-cookie" or raw is None:
            continue
        for line in str(raw).split("\n"):
            if line.strip():
                values.append(line.strip())
    return values


def _parse_expires(value: str) -> int | None:
    """Parse an ``Expires`` attribute into epoch milliseconds."""
    # Netscape-style dates use dashes: "Wed, 21-Oct-2026 07:28:00 GMT".
    normalized = value.strip().replace("-", " ")
    try:
        parsed = email_utils.parsedate_to_datetime(normalized)
    except (TypeError, ValueError, IndexError, OverflowError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return int(parsed.timestamp() * 1000)


def parse_set_cookie(
    header: str,
    *,
    now_ms: int,
    default_domain: str = "",
    session_id: str | None = None,
    phase: evidence.Phase | None = None,
    request_url: str | None = None,
) -> evidence.SetCookieRecord | None:
    """Parse one ``Set-Cookie`` value.

    The first ``;`` segment is ``name=value``.  Attribute names are
    matched case-insensitively; ``Max-Age`` wins over ``Expires``
    regardless of order.  Returns ``None`` when there is no name.
    """
    segments = header.split(";")
    first = segments[0]
    if "=" not in first:
        return None
    name, _, value = first.partition("=")
    name = name.strip()
    if not name:
        return None

    domain = default_domain
    path = "/"
    expires_ms: int | None = None
    max_age_ms: int | None = None
    http_only = False
    secure = False
    same_site: str | None = None

    for segment in segments[1:]:
        attr, _, attr_value = segment.partition("=")
        attr = attr.strip().lower()
        attr_value = attr_value.strip()
        if attr == "domain" and attr_value:
            domain = url_mod.normalize_domain(attr_value)
        elif attr == "path" and attr_value:
            path = attr_value
        elif attr == "expires" and attr_value:
            expires_ms = _parse_expires(attr_value)
        elif attr == "max-age" and attr_value:
            try:
                max_age_ms = now_ms + int(attr_value) * 1000
            except ValueError:
                continue
        elif attr == "httponly":
            http_only = True
        elif attr == "secure":
            secure = True
        elif attr == "samesite" and attr_value:
            same_site = attr_value.capitalize()

    return evidence.SetCookieRecord(
        name=name,
        value=value.strip(),
        domain=domain,
        path=path,
        expires_epoch_ms=max_age_ms if max_age_ms is not None else expires_ms,
        http_only=http_only,
        secure=secure,
        same_site=same_site,
        session_id=session_id,
        phase=phase,
        request_url=request_url,
    )
