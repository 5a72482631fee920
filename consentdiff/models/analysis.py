"""Pydantic models for merged cookies, third-party hosts and tracker beacons."""

from __future__ import annotations

import pydantic

from consentdiff.models import quality
from consentdiff.utils.serialization import snake_to_camel


class CookieSources(pydantic.BaseModel):
    """Which evidence sources reported a cookie."""

    model_config = pydantic.ConfigDict(populate_by_name=True)

    jar: bool = False
    set_cookie: bool = pydantic.Field(default=False, alias="setCookie")
    document: bool = False


class MergedCookie(pydantic.BaseModel):
    """One cookie identity (``name|domain|path``) across every source.

    ``persisted`` is true only when the browser's jar held the
    cookie; a cookie seen only in ``Set-Cookie`` headers was
    attempted but may have been refused.
    """

    model_config = pydantic.ConfigDict(alias_generator=snake_to_camel, populate_by_name=True)

    name: str
    normalized_domain: str
    path: str
    expires_epoch_ms: float | None = None
    expiry_days: int | None = None
    category: quality.CookieCategory = "unknown"
    is_first_party: bool
    sources: CookieSources = pydantic.Field(default_factory=CookieSources)
    persisted: bool = False

    @property
    def key(self) -> str:
        return f"{self.name}|{self.normalized_domain}|{self.path}"


class ThirdPartyHost(pydantic.BaseModel):
    """A host outside the site's registrable domain, with request samples."""

    model_config = pydantic.ConfigDict(alias_generator=snake_to_camel, populate_by_name=True)

    host: str
    count: int = 0
    sample_urls: list[str] = pydantic.Field(default_factory=list)


class TrackerBeacon(pydantic.BaseModel):
    """A third-party request that carried query or body parameters."""

    model_config = pydantic.ConfigDict(alias_generator=snake_to_camel, populate_by_name=True)

    host: str
    url: str
    params: list[str] = pydantic.Field(default_factory=list)
