"""
Self-check of a completed run.

Every count is recomputed from the raw snapshots, never taken from
the orchestrator's own metrics, and each gate is evaluated on its
own.  A figure that the downstream layer did not report cannot be
contradicted, so its comparison passes with ``reported: None``.
The result is read, never modified.
"""

from __future__ import annotations

import time

from consentdiff.analysis import cookies as cookies_mod
from consentdiff.analysis import third_parties
from consentdiff.models import analysis, evidence, quality
from consentdiff.utils import logger
from consentdiff.utils import url as url_mod

log = logger.create_logger("SelfCheck")

MAX_LISTED_OFFENDERS = 20


def _main_domain(result: evidence.ProbeResult) -> str:
    """Site host from the final URL, or from the first request if unreadable."""
    host = url_mod.extract_domain(result.final_url)
    if host == "unknown":
        for request in result.all_requests():
            host = url_mod.extract_domain(request.url)
            if host != "unknown":
                break
    return host


def _cookie_keys(snapshot: evidence.Snapshot) -> set[str]:
    keys = {f"{c.name}|{url_mod.normalize_domain(c.domain)}|{c.path}" for c in snapshot.jar_cookies}
    keys.update(f"{c.name}|{c.domain}|{c.path}" for c in snapshot.set_cookie_headers)
    return keys


def _storage_keys(snapshot: evidence.Snapshot) -> set[str]:
    return {f"{item.kind}:{item.key}" for item in snapshot.storage}


# ============================================================================
# Gates
# ============================================================================


def _gate_network_capture(result: evidence.ProbeResult) -> quality.QualityGate:
    pre = len(result.snapshots.pre.requests)
    post = len(result.snapshots.post.requests) if result.snapshots.post else None
    passed = pre + (post or 0) > 0 or result.navigation_ok
    return quality.QualityGate(
        id="network_capture",
        severity="error",
        passed=passed,
        message="Network capture successful" if passed else "Incomplete: no requests captured and navigation failed",
        details={"pre": pre, "post": post, "navigationOk": result.navigation_ok},
    )


def _gate_hosts_consistency(
    hosts: list[analysis.ThirdPartyHost],
    reported: quality.ReportedFigures,
) -> quality.QualityGate:
    counted = len(hosts)
    listed = reported.third_party_hosts
    passed = listed is None or counted == listed
    diff = None
    if not passed:
        diff = {
            "missingInTable": max(0, counted - listed),
            "extraInTable": max(0, listed - counted),
        }
    return quality.QualityGate(
        id="hosts_consistency",
        severity="warn",
        passed=passed,
        message="Host enumeration consistent" if passed else "Incomplete: host enumeration mismatch",
        details={"counted": counted, "reported": listed, "diff": diff},
    )


def _gate_cookies_consistency(
    summary: quality.SelfCheckSummary,
    reported: quality.ReportedFigures,
) -> quality.QualityGate:
    table = reported.cookie_table_total
    additive = summary.cookies_1p + summary.cookies_3p == summary.cookies_total
    passed = additive and (table is None or table == summary.cookies_total)
    return quality.QualityGate(
        id="cookies_consistency",
        severity="warn",
        passed=passed,
        message="Cookie enumeration consistent" if passed else "Incomplete: cookie enumeration mismatch",
        details={
            "total": summary.cookies_total,
            "reported": table,
            "firstParty": summary.cookies_1p,
            "thirdParty": summary.cookies_3p,
            "persisted": summary.cookies_3p_persisted,
            "attempted": summary.cookies_3p_attempted,
        },
    )


def _gate_third_party_cookies_blocked(summary: quality.SelfCheckSummary) -> quality.QualityGate:
    blocked = (
        summary.third_parties_unique > 0
        and summary.cookies_3p_attempted > 0
        and summary.cookies_3p_persisted == 0
    )
    return quality.QualityGate(
        id="third_party_cookies_blocked",
        severity="warn",
        passed=not blocked,
        message=(
            "Third-party cookies were attempted but none persisted; the browser likely blocked them"
            if blocked
            else "Third-party cookies not blocked"
        ),
        details={
            "thirdParties": summary.third_parties_unique,
            "cookies3pAttempted": summary.cookies_3p_attempted,
            "cookies3pPersisted": summary.cookies_3p_persisted,
        },
    )


def _gate_data_extraction(
    summary: quality.SelfCheckSummary,
    reported: quality.ReportedFigures,
) -> quality.QualityGate:
    listed = reported.beacons_with_params
    passed = summary.trackers_with_params == 0 or listed is None or listed > 0
    return quality.QualityGate(
        id="data_extraction",
        severity="warn",
        passed=passed,
        message=(
            "Parameter extraction complete"
            if passed
            else "Parameter extraction missing: trackers sent parameters but none were listed"
        ),
        details={"trackersWithParams": summary.trackers_with_params, "reported": listed},
    )


def _gate_retention(
    merged: list[analysis.MergedCookie],
    reported: quality.ReportedFigures,
) -> quality.QualityGate:
    limit = reported.max_retention_days
    offenders = sorted(
        (c for c in merged if c.expiry_days is not None and c.expiry_days > limit),
        key=lambda c: c.expiry_days or 0,
        reverse=True,
    )
    max_days = max((c.expiry_days for c in merged if c.expiry_days is not None), default=None)
    passed = not offenders
    return quality.QualityGate(
        id="retention_contradiction",
        severity="error",
        passed=passed,
        message=(
            "Retention periods valid"
            if passed
            else f"Retention claim contradicted: {len(offenders)} cookie(s) expire after {limit} days"
        ),
        details={
            "maxDays": max_days,
            "limitDays": limit,
            "offenders": [
                {"name": c.name, "domain": c.normalized_domain, "days": c.expiry_days}
                for c in offenders[:MAX_LISTED_OFFENDERS]
            ],
        },
    )


def _gate_party_classification(summary: quality.SelfCheckSummary) -> quality.QualityGate:
    passed = summary.cookies_1p + summary.cookies_3p == summary.cookies_total
    return quality.QualityGate(
        id="party_classification",
        severity="error",
        passed=passed,
        message=(
            "First/third-party classification consistent"
            if passed
            else "First/third-party classification inconsistent"
        ),
        details={
            "total": summary.cookies_total,
            "firstParty": summary.cookies_1p,
            "thirdParty": summary.cookies_3p,
        },
    )


def _gate_consent_scenarios(result: evidence.ProbeResult) -> quality.QualityGate:
    pre = result.snapshots.pre
    post = result.snapshots.post
    pre_cookie_keys = _cookie_keys(pre)
    pre_storage_keys = _storage_keys(pre)
    details: dict[str, object] = {
        "pathMode": result.path_mode,
        "pre": {"requests": len(pre.requests), "cookies": len(pre_cookie_keys), "storage": len(pre_storage_keys)},
        "post": None,
    }

    if post is None:
        return quality.QualityGate(
            id="consent_scenarios",
            severity="info",
            passed=False,
            message="Consent scenario inconclusive: post-consent phase missing (partial run)",
            details=details,
        )

    post_cookie_keys = _cookie_keys(post)
    post_storage_keys = _storage_keys(post)
    details["post"] = {
        "requests": len(post.requests),
        "cookies": len(post_cookie_keys),
        "storage": len(post_storage_keys),
    }

    pre_activity = bool(pre.requests or pre_cookie_keys or pre_storage_keys)
    delta = bool(post.requests) or post_cookie_keys != pre_cookie_keys or post_storage_keys != pre_storage_keys
    passed = not pre_activity or delta
    return quality.QualityGate(
        id="consent_scenarios",
        severity="info",
        passed=passed,
        message="Consent scenario conclusive" if passed else "Consent scenario inconclusive: no measurable delta",
        details=details,
    )


# ============================================================================
# Entry points
# ============================================================================


def build_summary(
    result: evidence.ProbeResult,
    merged: list[analysis.MergedCookie],
    hosts: list[analysis.ThirdPartyHost],
    beacons: list[analysis.TrackerBeacon],
) -> quality.SelfCheckSummary:
    """Counts recomputed from raw evidence."""
    third_party = [c for c in merged if not c.is_first_party]
    return quality.SelfCheckSummary(
        requests_pre=len(result.snapshots.pre.requests),
        requests_post=len(result.snapshots.post.requests) if result.snapshots.post else None,
        cookies_total=len(merged),
        cookies_1p=sum(1 for c in merged if c.is_first_party),
        cookies_3p=len(third_party),
        cookies_3p_persisted=sum(1 for c in third_party if c.persisted),
        cookies_3p_attempted=sum(1 for c in third_party if c.sources.set_cookie),
        third_parties_unique=len(hosts),
        trackers_with_params=len({b.host for b in beacons}),
    )


def evaluate_result(
    result: evidence.ProbeResult,
    reported: quality.ReportedFigures | None = None,
    *,
    now_ms: int | None = None,
) -> quality.SelfCheck:
    """Run every quality gate against *result*.

    Args:
        result: Merged two-phase evidence.
        reported: Figures a downstream layer derived; omitted figures
            are not compared.
        now_ms: Reference time for cookie lifetimes.

    Returns:
        Summary counts, gates in a fixed order and expiry statistics.
    """
    reported = reported or quality.ReportedFigures()
    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    main_domain = _main_domain(result)

    merged = cookies_mod.merge_cookies(result.all_snapshots(), main_domain, now_ms=now_ms)
    requests = result.all_requests()
    hosts = third_parties.analyze_third_parties(requests, main_domain)
    beacons = third_parties.tracker_beacons(requests, main_domain)
    summary = build_summary(result, merged, hosts, beacons)

    gates = [
        _gate_network_capture(result),
        _gate_hosts_consistency(hosts, reported),
        _gate_cookies_consistency(summary, reported),
        _gate_third_party_cookies_blocked(summary),
        _gate_data_extraction(summary, reported),
        _gate_retention(merged, reported),
        _gate_party_classification(summary),
        _gate_consent_scenarios(result),
    ]

    failed = [g.id for g in gates if not g.passed]
    if failed:
        log.warn("Quality gates failed", {"failed": ", ".join(failed), "blocking": has_blocking_failure(gates)})
    else:
        log.success("All quality gates passed", {"gates": len(gates)})

    return quality.SelfCheck(
        summary=summary,
        gates=gates,
        expiry_days=cookies_mod.expiry_percentiles(merged),
    )


def has_blocking_failure(gates: list[quality.QualityGate]) -> bool:
    """True when any error-severity gate failed; the evidence is then incomplete."""
    return any(g.severity == "error" and not g.passed for g in gates)
