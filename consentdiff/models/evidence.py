"""Pydantic models for captured evidence: requests, cookies, storage and snapshots."""

from __future__ import annotations

from typing import Any, Literal
from urllib import parse

import pydantic

from consentdiff.utils import serialization

Phase = Literal["pre", "post_accept", "post_reject"]

PathMode = Literal["accept", "reject"]

StorageKind = Literal["local", "session"]

ConsentMethod = Literal["structural", "text", "none"]


class _CamelModel(pydantic.BaseModel):
    """Base for evidence models serialised with camelCase keys."""

    model_config = pydantic.ConfigDict(alias_generator=serialization.snake_to_camel, populate_by_name=True)


class Session(_CamelModel):
    """Handle for one attached page inside an isolated browser context."""

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel,
        populate_by_name=True,
        frozen=True,
    )

    session_id: str
    target_id: str
    context_id: str


class RequestRecord(_CamelModel):
    """One network request observed on the active session.

    Header keys are stored lower-cased so lookups are
    case-insensitive.  ``post_data`` may arrive after the record
    was created when the browser only exposes the body on demand.
    """

    id: str
    url: str
    method: str
    headers: dict[str, str] = pydantic.Field(default_factory=dict)
    query_params: dict[str, list[str]] = pydantic.Field(default_factory=dict)
    has_post_data: bool = False
    post_data: str | None = None
    post_data_parsed: dict[str, Any] | list[Any] | None = None
    resource_type: str | None = None
    session_id: str
    phase: Phase
    timestamp_ms: int

    def header(self, name: str) -> str | None:
        """Return a request header by case-insensitive *name*."""
        return self.headers.get(name.lower())

    def query_names(self) -> list[str]:
        """Query parameter names, read from the URL when none were recorded."""
        if self.query_params:
            return list(self.query_params)
        return list(parse.parse_qs(parse.urlparse(self.url).query, keep_blank_values=True))

    @property
    def has_params(self) -> bool:
        """True when the request carried query or body parameters."""
        return bool(self.query_names()) or bool(self.post_data) or bool(self.post_data_parsed)


class SetCookieRecord(_CamelModel):
    """A cookie a response *tried* to set via its ``Set-Cookie`` header."""

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel,
        populate_by_name=True,
        frozen=True,
    )

    name: str
    value: str
    domain: str = ""
    path: str = "/"
    expires_epoch_ms: int | None = None
    http_only: bool = False
    secure: bool = False
    same_site: str | None = None
    session_id: str | None = None
    phase: Phase | None = None
    request_url: str | None = None


class JarCookie(_CamelModel):
    """A cookie persisted in the browser context's cookie jar."""

    name: str
    value: str
    domain: str
    path: str = "/"
    expires: float = -1
    http_only: bool = False
    secure: bool = False
    same_site: str | None = None
    session: bool = True

    @classmethod
    def from_protocol(cls, raw: dict[str, Any]) -> JarCookie:
        """Build from a debugging-protocol ``Network.Cookie`` object."""
        return cls(
            name=raw.get("name", ""),
            value=raw.get("value", ""),
            domain=raw.get("domain", ""),
            path=raw.get("path", "/") or "/",
            expires=raw.get("expires", -1),
            http_only=raw.get("httpOnly", False),
            secure=raw.get("secure", False),
            same_site=raw.get("sameSite"),
            session=raw.get("session", raw.get("expires", -1) in (-1, 0, None)),
        )


class StorageItem(_CamelModel):
    """A localStorage or sessionStorage entry, masked when sensitive."""

    kind: StorageKind
    key: str
    value: str
    masked: bool = False


class Snapshot(_CamelModel):
    """Immutable evidence for one phase of one browser context."""

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel,
        populate_by_name=True,
        frozen=True,
    )

    phase: Phase
    session_id: str
    requests: list[RequestRecord] = pydantic.Field(default_factory=list)
    jar_cookies: list[JarCookie] = pydantic.Field(default_factory=list)
    set_cookie_headers: list[SetCookieRecord] = pydantic.Field(default_factory=list)
    storage: list[StorageItem] = pydantic.Field(default_factory=list)
    document_cookies: list[str] = pydantic.Field(default_factory=list)
    timestamp_ms: int


class ConsentAttempt(_CamelModel):
    """Outcome of searching for and triggering a consent control."""

    action: PathMode
    found: bool
    clicked: bool
    method: ConsentMethod
    selector: str | None = None
    text: str | None = None

    @classmethod
    def not_found(cls, action: PathMode) -> ConsentAttempt:
        """Return the *no control discovered* outcome."""
        return cls(action=action, found=False, clicked=False, method="none")


class CmpSignal(_CamelModel):
    """A known consent-manager cookie seen before any interaction."""

    detected: bool = False
    cookie_name: str = ""
    cookie_value: str = ""


class NavigationResult(_CamelModel):
    """Result of a navigation attempt."""

    success: bool
    url: str
    error_text: str | None = None


class PhaseSnapshots(_CamelModel):
    """The pre snapshot and, unless the run was partial, the post snapshot."""

    pre: Snapshot
    post: Snapshot | None = None


class PhaseDurations(_CamelModel):
    """Wall-clock time spent in each phase, in milliseconds."""

    pre: int
    post: int | None = None


class ProbeResult(_CamelModel):
    """Merged two-phase evidence for one run."""

    trace_id: str
    final_url: str
    path_mode: PathMode
    snapshots: PhaseSnapshots
    phase_durations_ms: PhaseDurations
    partial: bool
    navigation_ok: bool = True
    consent: ConsentAttempt | None = None
    cmp: CmpSignal = pydantic.Field(default_factory=CmpSignal)

    def all_requests(self) -> list[RequestRecord]:
        """Requests from every captured phase, pre first."""
        requests = list(self.snapshots.pre.requests)
        if self.snapshots.post is not None:
            requests.extend(self.snapshots.post.requests)
        return requests

    def all_snapshots(self) -> list[Snapshot]:
        """Captured snapshots in phase order."""
        return [s for s in (self.snapshots.pre, self.snapshots.post) if s is not None]
