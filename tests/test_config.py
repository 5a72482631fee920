"""Tests for consentdiff.config: token handling, host URLs and environment binding."""

from __future__ import annotations

import pytest

from consentdiff import config


class TestTokenHelpers:
    """Tests for normalize_token() and mask_token()."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("abc", "abc"),
            ("  abc \n", "abc"),
            ('"abc"', "abc"),
            ("'abc'", "abc"),
            ('"abc', '"abc'),
            (None, ""),
            ("", ""),
        ],
    )
    def test_normalize(self, raw: str | None, expected: str) -> None:
        assert config.normalize_token(raw) == expected

    def test_mask_long_token(self) -> None:
        assert config.mask_token("abcd1234efgh5678") == "abcd...5678"

    def test_mask_short_token(self) -> None:
        assert config.mask_token("short") == "*****"


class TestBrowserHostConfig:
    """Tests for BrowserHostConfig."""

    def test_token_preferred_over_api_key(self) -> None:
        host = config.BrowserHostConfig(token="primary-token", api_key="fallback-key")
        assert host.active_token == "primary-token"
        assert host.token_source == "BROWSERLESS_TOKEN"

    def test_api_key_fallback(self) -> None:
        host = config.BrowserHostConfig(token="  ", api_key="'fallback-key'")
        assert host.active_token == "fallback-key"
        assert host.token_source == "BROWSERLESS_API_KEY"
        assert host.validate_config()

    def test_no_token(self) -> None:
        host = config.BrowserHostConfig(token="", api_key="")
        assert host.token_source is None
        assert not host.validate_config()
        assert host.masked_token() == ""

    def test_masked_token(self) -> None:
        assert config.BrowserHostConfig(token="abcd1234efgh5678").masked_token() == "abcd...5678"

    def test_websocket_url_secure(self) -> None:
        host = config.BrowserHostConfig(base="https://chrome.example.net/", token="t0k3n")
        assert host.websocket_url() == "wss://chrome.example.net?token=t0k3n"

    def test_websocket_url_plain(self) -> None:
        host = config.BrowserHostConfig(base="http://localhost:3000", token="t")
        assert host.websocket_url() == "ws://localhost:3000?token=t"

    def test_blank_base_uses_default(self) -> None:
        host = config.BrowserHostConfig(base="  ", token="t")
        assert host.http_base() == config.DEFAULT_BROWSER_BASE

    def test_reads_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BROWSERLESS_BASE", "https://lon.browser.example")
        monkeypatch.setenv("BROWSERLESS_TOKEN", "env-token")
        host = config.BrowserHostConfig()
        assert host.http_base() == "https://lon.browser.example"
        assert host.active_token == "env-token"


class TestProbeSettings:
    """Tests for ProbeSettings."""

    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        for name in ("PROBE_BUDGET_MS", "PROBE_MIN_PHASE_B_MS", "PROBE_ALLOCATE_FLOOR_MS"):
            monkeypatch.delenv(name, raising=False)
        settings = config.ProbeSettings()
        assert settings.budget_ms == 35_000
        assert settings.min_phase_b_ms == 12_000
        assert settings.allocate_floor_ms == 250

    def test_environment_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PROBE_BUDGET_MS", "20000")
        monkeypatch.setenv("PROBE_OUTER_TIMEOUT_S", "45.5")
        settings = config.ProbeSettings()
        assert settings.budget_ms == 20_000
        assert settings.outer_timeout_s == 45.5

    def test_rejects_non_positive_budget(self) -> None:
        with pytest.raises(ValueError):
            config.ProbeSettings(budget_ms=0)


class TestSinkConfig:
    """Tests for SinkConfig."""

    def test_requires_url_and_key(self) -> None:
        assert not config.SinkConfig(supabase_url="https://x.supabase.co", service_role_key="").validate_config()
        assert config.SinkConfig(supabase_url="https://x.supabase.co", service_role_key="k").validate_config()
