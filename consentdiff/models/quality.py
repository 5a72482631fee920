"""Pydantic models for self-check summaries and quality gates."""

from __future__ import annotations

from typing import Any, Literal

import pydantic

from consentdiff.utils import serialization

GateSeverity = Literal["info", "warn", "error"]

GateId = Literal[
    "network_capture",
    "hosts_consistency",
    "cookies_consistency",
    "third_party_cookies_blocked",
    "data_extraction",
    "retention_contradiction",
    "party_classification",
    "consent_scenarios",
]

CookieCategory = Literal["technical", "analytics", "marketing", "unknown"]


class QualityGate(pydantic.BaseModel):
    """A named, machine-checkable finding about the evidence."""

    model_config = pydantic.ConfigDict(frozen=True)

    id: GateId
    severity: GateSeverity
    passed: bool
    message: str
    details: dict[str, Any] = pydantic.Field(default_factory=dict)


class ReportedFigures(pydantic.BaseModel):
    """Figures a downstream layer reported, checked against raw evidence.

    ``None`` means the figure was not reported, in which case the
    matching consistency gate has nothing to contradict.
    """

    model_config = pydantic.ConfigDict(alias_generator=serialization.snake_to_camel, populate_by_name=True)

    third_party_hosts: int | None = None
    cookie_table_total: int | None = None
    beacons_with_params: int | None = None
    max_retention_days: int = 365


class SelfCheckSummary(pydantic.BaseModel):
    """Counts recomputed independently from raw evidence."""

    model_config = pydantic.ConfigDict(alias_generator=serialization.snake_to_camel, populate_by_name=True)

    requests_pre: int
    requests_post: int | None
    cookies_total: int
    cookies_1p: int
    cookies_3p: int
    cookies_3p_persisted: int
    cookies_3p_attempted: int
    third_parties_unique: int
    trackers_with_params: int


class ExpiryPercentiles(pydantic.BaseModel):
    """Cookie lifetime distribution in days."""

    min: int | None = None
    p50: int | None = None
    p95: int | None = None
    max: int | None = None


class SelfCheck(pydantic.BaseModel):
    """Summary, gates and retention statistics for a completed run."""

    model_config = pydantic.ConfigDict(alias_generator=serialization.snake_to_camel, populate_by_name=True)

    summary: SelfCheckSummary
    gates: list[QualityGate]
    expiry_days: dict[str, ExpiryPercentiles] = pydantic.Field(default_factory=dict)
