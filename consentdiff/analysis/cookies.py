"""
Cookie evidence merge and classification.

Jar cookies, ``Set-Cookie`` headers and ``document.cookie`` names
rarely agree.  They are merged on ``name|domain|path``; a cookie is
*persisted* only when the jar held it, and its expiry is the
longest one any source reported.
"""

from __future__ import annotations

import math
import re
import time

from consentdiff.models import analysis, evidence, quality
from consentdiff.utils import url as url_mod

_DAY_MS = 86_400_000

_MARKETING_RE = re.compile(r"^(_fbp|_fbc|fbc|fr$|li_|ajs_|_gcl_|_uet|_ttp|ide$|test_cookie)")
_ANALYTICS_RE = re.compile(r"^(_ga|_gid|_gat|_pin_unauth|_sp_|_clck|_clsk|_hj|mp_|amplitude)")
_TECHNICAL_RE = re.compile(
    r"^(euconsent|cookiescriptconsent|optanonconsent|optanonalertboxclosed|cookieyes|"
    r"cookieconsent|didomi_token|borlabs|tarteaucitron|phpsessid|jsessionid|__cf|cf_)"
)

PERCENTILE_CATEGORIES: tuple[quality.CookieCategory, ...] = ("technical", "analytics", "marketing")


def categorize_cookie(name: str) -> quality.CookieCategory:
    """Classify a cookie by name pattern."""
    lower = name.lower()
    if _MARKETING_RE.match(lower):
        return "marketing"
    if _ANALYTICS_RE.match(lower):
        return "analytics"
    if _TECHNICAL_RE.match(lower):
        return "technical"
    return "unknown"


def expiry_days(expires_epoch_ms: float | None, now_ms: int) -> int | None:
    """Days until *expires_epoch_ms*, rounded up; ``None`` for session cookies."""
    if not expires_epoch_ms or expires_epoch_ms <= 0:
        return None
    return math.ceil((expires_epoch_ms - now_ms) / _DAY_MS)


class CookieMerger:
    """Accumulates cookie sightings keyed by ``name|domain|path``."""

    def __init__(self, main_domain: str, *, now_ms: int | None = None) -> None:
        self.main_domain = url_mod.get_base_domain(main_domain)
        self.now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
        self._cookies: dict[str, analysis.MergedCookie] = {}

    def add(
        self,
        name: str,
        domain: str,
        path: str,
        expires_epoch_ms: float | None,
        source: str,
    ) -> None:
        """Record one sighting of a cookie from *source* (jar, setCookie or document)."""
        normalized = url_mod.normalize_domain(domain or self.main_domain)
        path = path or "/"
        expires = expires_epoch_ms if expires_epoch_ms and expires_epoch_ms > 0 else None
        key = f"{name}|{normalized}|{path}"

        existing = self._cookies.get(key)
        if existing is None:
            existing = analysis.MergedCookie(
                name=name,
                normalized_domain=normalized,
                path=path,
                expires_epoch_ms=expires,
                expiry_days=expiry_days(expires, self.now_ms),
                category=categorize_cookie(name),
                is_first_party=url_mod.is_first_party(normalized, self.main_domain),
            )
            self._cookies[key] = existing
        elif expires is not None and (existing.expires_epoch_ms is None or expires > existing.expires_epoch_ms):
            existing.expires_epoch_ms = expires
            existing.expiry_days = expiry_days(expires, self.now_ms)

        if source == "jar":
            existing.sources.jar = True
            existing.persisted = True
        elif source == "setCookie":
            existing.sources.set_cookie = True
        else:
            existing.sources.document = True

    def add_snapshot(self, snapshot: evidence.Snapshot) -> None:
        """Add jar, header and ``document.cookie`` sightings from *snapshot*."""
        for jar_cookie in snapshot.jar_cookies:
            expires = jar_cookie.expires * 1000 if jar_cookie.expires > 0 else None
            self.add(jar_cookie.name, jar_cookie.domain, jar_cookie.path, expires, "jar")
        for header in snapshot.set_cookie_headers:
            self.add(header.name, header.domain, header.path, header.expires_epoch_ms, "setCookie")
        for name in snapshot.document_cookies:
            self.add(name, self.main_domain, "/", None, "document")

    def cookies(self) -> list[analysis.MergedCookie]:
        return list(self._cookies.values())


def merge_cookies(
    snapshots: list[evidence.Snapshot],
    main_domain: str,
    *,
    now_ms: int | None = None,
) -> list[analysis.MergedCookie]:
    """Merge cookie evidence from every snapshot into one list."""
    merger = CookieMerger(main_domain, now_ms=now_ms)
    for snapshot in snapshots:
        merger.add_snapshot(snapshot)
    return merger.cookies()


def _percentiles(values: list[int]) -> quality.ExpiryPercentiles:
    if not values:
        return quality.ExpiryPercentiles()
    if len(values) < 3:
        return quality.ExpiryPercentiles(max=max(values))
    ordered = sorted(values)
    n = len(ordered)
    return quality.ExpiryPercentiles(
        min=ordered[0],
        p50=ordered[int(n * 0.5)],
        p95=ordered[int(n * 0.95)],
        max=ordered[-1],
    )


def expiry_percentiles(cookies: list[analysis.MergedCookie]) -> dict[str, quality.ExpiryPercentiles]:
    """Expiry distribution overall and, with at least three values, per category.

    Session cookies are excluded.  With fewer than three values only
    ``max`` is reported.
    """
    timed = [c for c in cookies if c.expiry_days is not None]
    stats = {"overall": _percentiles([c.expiry_days for c in timed])}
    for category in PERCENTILE_CATEGORIES:
        values = [c.expiry_days for c in timed if c.category == category]
        if len(values) >= 3:
            stats[category] = _percentiles(values)
    return stats
