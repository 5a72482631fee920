"""Pydantic models for the HTTP surface, run metadata and host diagnostics."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

import pydantic

from consentdiff.models import evidence, quality
from consentdiff.utils import errors
from consentdiff.utils.serialization import snake_to_camel

RunStatus = Literal["success", "partial", "error"]

DiagnosticsStatus = Literal["working", "token_error", "connection_error", "missing_token"]


class _ApiModel(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(alias_generator=snake_to_camel, populate_by_name=True)


# ============================================================================
# Inspect
# ============================================================================


class InspectRequest(_ApiModel):
    """Body of ``POST /api/inspect``."""

    url: str = ""
    path_mode: evidence.PathMode = "accept"


class InspectMetrics(_ApiModel):
    """Headline counts computed by the orchestrator."""

    requests_total: int
    requests_pre_consent: int
    third_parties_count: int
    cookies_pre_count: int
    cookies_post_count: int


class InspectSuccess(_ApiModel):
    """Successful run: evidence, metrics and quality gates."""

    success: Literal[True] = True
    trace_id: str
    final_url: str
    path_mode: evidence.PathMode
    metrics: InspectMetrics
    data: evidence.PhaseSnapshots
    phase_durations_ms: evidence.PhaseDurations
    partial: bool
    gates: list[quality.QualityGate]
    consent: evidence.ConsentAttempt | None = None
    cmp: evidence.CmpSignal
    self_check: quality.SelfCheck


class InspectFailure(_ApiModel):
    """Aborted run with a closed error code."""

    success: Literal[False] = False
    error_code: errors.ErrorCode
    details: str
    trace_id: str


class SelfCheckRequest(_ApiModel):
    """Body of ``POST /api/self-check``."""

    result: evidence.ProbeResult
    reported: quality.ReportedFigures | None = None


# ============================================================================
# Run metadata
# ============================================================================


class RunMetadata(pydantic.BaseModel):
    """One row of run metadata, written once per run."""

    trace_id: str
    status: RunStatus
    mode: evidence.PathMode
    input_url: str
    final_url: str | None = None
    started_at: datetime
    ended_at: datetime
    duration_ms: int
    error_code: errors.ErrorCode | None = None
    error_message: str | None = None
    timings: dict[str, int | None] = pydantic.Field(default_factory=dict)
    counts: InspectMetrics | None = None

    def to_row(self) -> dict[str, Any]:
        """Flatten into the ``audit_runs`` column layout."""
        row: dict[str, Any] = {
            "trace_id": self.trace_id,
            "input_url": self.input_url,
            "normalized_url": self.final_url,
            "status": self.status,
            "mode": self.mode,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat(),
            "duration_ms": self.duration_ms,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "meta": {"timings": self.timings},
        }
        if self.counts is not None:
            row.update(self.counts.model_dump())
        return row


# ============================================================================
# Diagnostics
# ============================================================================


class TokenInfo(_ApiModel):
    present: bool
    masked: str | None = None
    length: int | None = None


class HealthCheck(_ApiModel):
    """Result of one connectivity probe against the browser host."""

    method: Literal["query_param", "x_api_key", "websocket"]
    ok: bool
    status: int | None = None
    response_text: str | None = None
    error: str | None = None


class DiagnosticsReport(_ApiModel):
    """Token presence and connectivity of the configured browser host."""

    status: DiagnosticsStatus
    timestamp: datetime
    base: str
    tokens: dict[str, TokenInfo]
    active_token_source: str | None = None
    health_checks: list[HealthCheck] = pydantic.Field(default_factory=list)
