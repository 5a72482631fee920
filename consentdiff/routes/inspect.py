"""
HTTP routes for running probes, re-checking results and host diagnostics.

Run failures are part of the response body, not the status code:
``/api/inspect`` answers 200 with ``success: false`` and an error
code so callers can branch on the code alone.
"""

from __future__ import annotations

from typing import Any

import fastapi

from consentdiff import config
from consentdiff.browser import diagnostics
from consentdiff.models import api
from consentdiff.persistence import run_sink
from consentdiff.pipeline import probe
from consentdiff.quality import self_check
from consentdiff.utils import logger, serialization

log = logger.create_logger("Routes")

router = fastapi.APIRouter(prefix="/api")

_sink: run_sink.RunSink | None = None


def get_sink() -> run_sink.RunSink:
    """Process-wide run sink, built from the environment on first use."""
    global _sink
    if _sink is None:
        _sink = run_sink.sink_from_config()
    return _sink


@router.post("/inspect")
async def inspect_endpoint(body: api.InspectRequest) -> dict[str, Any]:
    """Run a two-phase probe against ``body.url``."""
    log.info("Incoming inspect request", {"url": body.url, "pathMode": body.path_mode})
    response = await probe.inspect(
        body.url,
        body.path_mode,
        host_config=config.BrowserHostConfig(),
        settings=config.ProbeSettings(),
        sink=get_sink(),
    )
    return serialization.to_wire(response)


@router.post("/self-check")
async def self_check_endpoint(body: api.SelfCheckRequest) -> dict[str, Any]:
    """Re-run the quality gates against figures a downstream layer reported."""
    check = self_check.evaluate_result(body.result, body.reported)
    return {
        "success": True,
        "incomplete": self_check.has_blocking_failure(check.gates),
        "selfCheck": serialization.to_wire(check),
    }


@router.get("/diagnostics")
async def diagnostics_endpoint() -> dict[str, Any]:
    """Token presence and connectivity of the configured browser host."""
    report = await diagnostics.run_diagnostics(config.BrowserHostConfig())
    return {"success": report.status != "missing_token", **serialization.to_wire(report)}
