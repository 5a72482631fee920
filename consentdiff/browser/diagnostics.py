"""
Browser-host diagnostics.

Checks token presence and tries the host three ways: ``/json/version``
with the token as a query parameter, the same endpoint with an
``X-API-Key`` header, and a bare websocket handshake.  Nothing here
raises; every failure becomes part of the report.
"""

from __future__ import annotations

from datetime import UTC, datetime
from urllib import parse

import aiohttp

from consentdiff import config
from consentdiff.models import api
from consentdiff.utils import errors, logger

log = logger.create_logger("Diagnostics")

_HTTP_TIMEOUT = aiohttp.ClientTimeout(total=10)
_RESPONSE_PREVIEW = 256


def _token_info(raw: str) -> api.TokenInfo:
    token = config.normalize_token(raw)
    if not token:
        return api.TokenInfo(present=False)
    return api.TokenInfo(present=True, masked=config.mask_token(token), length=len(token))


async def _check_http(
    session: aiohttp.ClientSession,
    method: str,
    url: str,
    headers: dict[str, str] | None = None,
) -> api.HealthCheck:
    try:
        async with session.get(url, headers=headers) as response:
            body = await response.text()
            return api.HealthCheck(
                method=method,
                ok=response.status < 400,
                status=response.status,
                response_text=body[:_RESPONSE_PREVIEW],
            )
    except (aiohttp.ClientError, TimeoutError, OSError) as exc:
        return api.HealthCheck(method=method, ok=False, error=errors.get_error_message(exc))


async def _check_websocket(session: aiohttp.ClientSession, websocket_url: str) -> api.HealthCheck:
    try:
        ws = await session.ws_connect(websocket_url)
    except aiohttp.WSServerHandshakeError as exc:
        return api.HealthCheck(method="websocket", ok=False, status=exc.status, error=f"Handshake rejected: {exc.status}")
    except (aiohttp.ClientError, TimeoutError, OSError) as exc:
        return api.HealthCheck(method="websocket", ok=False, error=errors.get_error_message(exc))
    await ws.close()
    return api.HealthCheck(method="websocket", ok=True, status=101)


def classify(checks: list[api.HealthCheck]) -> api.DiagnosticsStatus:
    """``working`` if any check passed, ``token_error`` on 401/403, else ``connection_error``."""
    if any(c.ok for c in checks):
        return "working"
    if any(c.status in (401, 403) for c in checks):
        return "token_error"
    return "connection_error"


async def run_diagnostics(host_config: config.BrowserHostConfig | None = None) -> api.DiagnosticsReport:
    """Probe the configured browser host and report what works."""
    host_config = host_config or config.BrowserHostConfig()
    base = host_config.http_base()
    report = api.DiagnosticsReport(
        status="missing_token",
        timestamp=datetime.now(UTC),
        base=base,
        tokens={
            "BROWSERLESS_TOKEN": _token_info(host_config.token),
            "BROWSERLESS_API_KEY": _token_info(host_config.api_key),
        },
        active_token_source=host_config.token_source,
    )

    token = host_config.active_token
    if not token:
        log.warn("No browser host token configured")
        return report

    version_url = f"{base}/json/version"
    async with aiohttp.ClientSession(timeout=_HTTP_TIMEOUT) as session:
        report.health_checks.append(
            await _check_http(session, "query_param", f"{version_url}?{parse.urlencode({'token': token})}")
        )
        report.health_checks.append(await _check_http(session, "x_api_key", version_url, {"X-API-Key": token}))
        report.health_checks.append(await _check_websocket(session, host_config.websocket_url()))

    report.status = classify(report.health_checks)
    log.info(
        "Diagnostics complete",
        {"status": report.status, "checks": ", ".join(f"{c.method}={c.status or c.error}" for c in report.health_checks)},
    )
    return report
