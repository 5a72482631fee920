"""
Runtime configuration for the probe.

Centralises every environment variable name, default value and
derived setting: the remote browser host and its credentials, the
time-budget and wait thresholds used by the orchestrator, and the
optional run-metadata sink.

Uses ``pydantic_settings.BaseSettings`` for automatic environment
variable binding, type coercion, and validation.  The wait
thresholds are empirically tuned; treat them as knobs, not as
semantics.
"""

from __future__ import annotations

from urllib import parse

import pydantic
import pydantic_settings

DEFAULT_BROWSER_BASE = "https://production-sfo.browserless.io"


def normalize_token(token: str | None) -> str:
    """Trim whitespace and one layer of surrounding quotes from *token*."""
    if not token:
        return ""
    token = token.strip()
    if len(token) >= 2 and token[0] == token[-1] and token[0] in "\"'":
        token = token[1:-1]
    return token


def mask_token(token: str) -> str:
    """Return a display-safe ``abcd...wxyz`` form of *token*."""
    if len(token) <= 8:
        return "*" * len(token)
    return f"{token[:4]}...{token[-4:]}"


class BrowserHostConfig(pydantic_settings.BaseSettings):
    """Connection settings for the remote debugging-protocol host.

    Attributes:
        base: HTTP(S) base URL of the browser host.
        token: Primary API token (``BROWSERLESS_TOKEN``).
        api_key: Fallback token (``BROWSERLESS_API_KEY``).
    """

    model_config = pydantic_settings.SettingsConfigDict(populate_by_name=True)

    base: str = pydantic.Field(default=DEFAULT_BROWSER_BASE, validation_alias="BROWSERLESS_BASE")
    token: str = pydantic.Field(default="", validation_alias="BROWSERLESS_TOKEN")
    api_key: str = pydantic.Field(default="", validation_alias="BROWSERLESS_API_KEY")

    @property
    def active_token(self) -> str:
        """The token that will be used, preferring ``BROWSERLESS_TOKEN``."""
        return normalize_token(self.token) or normalize_token(self.api_key)

    @property
    def token_source(self) -> str | None:
        """Name of the environment variable the active token came from."""
        if normalize_token(self.token):
            return "BROWSERLESS_TOKEN"
        if normalize_token(self.api_key):
            return "BROWSERLESS_API_KEY"
        return None

    def masked_token(self) -> str:
        """Display-safe form of the active token, or an empty string."""
        token = self.active_token
        return mask_token(token) if token else ""

    def validate_config(self) -> bool:
        """Check that a token is present.

        Returns:
            True when either token variable is set.
        """
        return bool(self.active_token)

    def http_base(self) -> str:
        """Base URL with surrounding whitespace and trailing slash removed."""
        return (self.base.strip() or DEFAULT_BROWSER_BASE).rstrip("/")

    def websocket_url(self) -> str:
        """Browser-level websocket endpoint including the token query."""
        parsed = parse.urlparse(self.http_base())
        scheme = "ws" if parsed.scheme in ("http", "ws") else "wss"
        query = parse.urlencode({"token": self.active_token}) if self.active_token else ""
        return parse.urlunparse((scheme, parsed.netloc, parsed.path or "", "", query, ""))


class ProbeSettings(pydantic_settings.BaseSettings):
    """Time budget and wait thresholds for a two-phase run.

    Attributes:
        budget_ms: Hard wall-clock ceiling for the whole run.
        min_phase_b_ms: Budget that must remain to attempt phase B.
        allocate_floor_ms: Smallest wait the governor hands out.
        navigation_timeout_ms: Upper bound for a load-event wait.
        idle_hold_ms: Zero-in-flight time that counts as idle.
        idle_max_ms: Upper bound for a single idle wait.
        post_click_settle_ms: Settle window after a consent click.
        wait_buffer_ms: Budget kept in reserve by each allocation.
        idle_poll_ms: Poll interval of the idle tracker.
        outer_timeout_s: Outer safety net applied by the API layer.
        max_retention_days: Default retention claim for self-check.
    """

    model_config = pydantic_settings.SettingsConfigDict(populate_by_name=True)

    budget_ms: int = pydantic.Field(default=35_000, validation_alias="PROBE_BUDGET_MS", gt=0)
    min_phase_b_ms: int = pydantic.Field(default=12_000, validation_alias="PROBE_MIN_PHASE_B_MS", ge=0)
    allocate_floor_ms: int = pydantic.Field(default=250, validation_alias="PROBE_ALLOCATE_FLOOR_MS", ge=0)
    navigation_timeout_ms: int = pydantic.Field(default=15_000, validation_alias="PROBE_NAVIGATION_TIMEOUT_MS", gt=0)
    idle_hold_ms: int = pydantic.Field(default=500, validation_alias="PROBE_IDLE_HOLD_MS", ge=0)
    idle_max_ms: int = pydantic.Field(default=5_000, validation_alias="PROBE_IDLE_MAX_MS", gt=0)
    post_click_settle_ms: int = pydantic.Field(default=3_000, validation_alias="PROBE_POST_CLICK_SETTLE_MS", ge=0)
    wait_buffer_ms: int = pydantic.Field(default=1_000, validation_alias="PROBE_WAIT_BUFFER_MS", ge=0)
    idle_poll_ms: int = pydantic.Field(default=100, validation_alias="PROBE_IDLE_POLL_MS", gt=0)
    outer_timeout_s: float = pydantic.Field(default=60.0, validation_alias="PROBE_OUTER_TIMEOUT_S", gt=0)
    max_retention_days: int = pydantic.Field(default=365, validation_alias="PROBE_MAX_RETENTION_DAYS", gt=0)


class SinkConfig(pydantic_settings.BaseSettings):
    """Settings for the Supabase-backed run-metadata sink.

    Attributes:
        supabase_url: Project URL, e.g. ``https://xyz.supabase.co``.
        service_role_key: Service-role key allowed to insert rows.
    """

    model_config = pydantic_settings.SettingsConfigDict(populate_by_name=True)

    supabase_url: str = pydantic.Field(default="", validation_alias="SUPABASE_URL")
    service_role_key: str = pydantic.Field(default="", validation_alias="SUPABASE_SERVICE_ROLE_KEY")

    def validate_config(self) -> bool:
        """True when both the URL and the key are set."""
        return bool(self.supabase_url and self.service_role_key)
