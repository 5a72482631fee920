"""Tests for consentdiff.quality.self_check: every gate against hand-built evidence."""

from __future__ import annotations

from consentdiff.browser.set_cookie import parse_set_cookie
from consentdiff.models.evidence import ProbeResult, StorageItem
from consentdiff.models.quality import QualityGate, ReportedFigures
from consentdiff.quality.self_check import evaluate_result, has_blocking_failure
from conftest import make_jar_cookie, make_request, make_result, make_snapshot

NOW_MS = 1_700_000_000_000
DAY_MS = 86_400_000

GATE_ORDER = [
    "network_capture",
    "hosts_consistency",
    "cookies_consistency",
    "third_party_cookies_blocked",
    "data_extraction",
    "retention_contradiction",
    "party_classification",
    "consent_scenarios",
]


def _gates(result: ProbeResult, reported: ReportedFigures | None = None) -> dict[str, QualityGate]:
    return {g.id: g for g in evaluate_result(result, reported, now_ms=NOW_MS).gates}


def _busy_result() -> ProbeResult:
    """A site with one first-party and two third-party hosts, cookies before and after consent."""
    pre = make_snapshot(
        "pre",
        requests=[
            make_request("https://example.com/", request_id="1"),
            make_request("https://cdn.cmp.net/banner.js", request_id="2"),
        ],
        jar=[make_jar_cookie("sid", "example.com")],
    )
    post = make_snapshot(
        "post_accept",
        session_id="session-b",
        requests=[
            make_request(
                "https://www.google-analytics.com/g/collect?tid=G-1&cid=42",
                request_id="9",
                phase="post_accept",
                session_id="session-b",
            ),
        ],
        jar=[
            make_jar_cookie("sid", "example.com"),
            make_jar_cookie("_ga", ".example.com", expires=(NOW_MS + 400 * DAY_MS) / 1000),
        ],
    )
    return make_result(pre, post)


# ── Shape ───────────────────────────────────────────────────────


class TestEvaluateResult:
    """Tests for evaluate_result() as a whole."""

    def test_gate_order(self) -> None:
        check = evaluate_result(_busy_result(), now_ms=NOW_MS)
        assert [g.id for g in check.gates] == GATE_ORDER

    def test_empty_successful_page_passes(self) -> None:
        result = make_result(make_snapshot("pre"), make_snapshot("post_accept", session_id="session-b"))
        gates = _gates(result)
        assert all(g.passed for g in gates.values())

    def test_result_not_mutated(self) -> None:
        result = _busy_result()
        before = result.model_dump(mode="json")
        evaluate_result(result, ReportedFigures(third_party_hosts=7), now_ms=NOW_MS)
        assert result.model_dump(mode="json") == before

    def test_summary_counts(self) -> None:
        summary = evaluate_result(_busy_result(), now_ms=NOW_MS).summary
        assert summary.requests_pre == 2
        assert summary.requests_post == 1
        assert summary.cookies_total == 2
        assert summary.cookies_1p == 2
        assert summary.cookies_3p == 0
        assert summary.third_parties_unique == 2
        assert summary.trackers_with_params == 1

    def test_expiry_statistics(self) -> None:
        check = evaluate_result(_busy_result(), now_ms=NOW_MS)
        assert check.expiry_days["overall"].max == 400

    def test_main_domain_falls_back_to_first_request(self) -> None:
        pre = make_snapshot("pre", requests=[make_request("https://example.com/")])
        post = make_snapshot(
            "post_accept",
            requests=[make_request("https://example.com/next", request_id="2", phase="post_accept")],
        )
        result = make_result(pre, post, final_url="")
        assert _gates(result)["hosts_consistency"].details["counted"] == 0


# ── Individual gates ────────────────────────────────────────────


class TestNetworkCapture:
    """Tests for the network_capture gate."""

    def test_fails_without_requests_and_navigation(self) -> None:
        result = make_result(make_snapshot("pre"), navigation_ok=False)
        gates = evaluate_result(result, now_ms=NOW_MS).gates
        network = next(g for g in gates if g.id == "network_capture")
        assert not network.passed
        assert network.severity == "error"
        assert has_blocking_failure(gates)

    def test_requests_alone_are_enough(self) -> None:
        result = make_result(make_snapshot("pre", requests=[make_request("https://example.com/")]), navigation_ok=False)
        assert _gates(result)["network_capture"].passed


class TestHostsConsistency:
    """Tests for the hosts_consistency gate."""

    def test_not_reported_passes(self) -> None:
        gate = _gates(_busy_result())["hosts_consistency"]
        assert gate.passed
        assert gate.details["reported"] is None

    def test_match(self) -> None:
        assert _gates(_busy_result(), ReportedFigures(third_party_hosts=2))["hosts_consistency"].passed

    def test_mismatch_diff(self) -> None:
        gate = _gates(_busy_result(), ReportedFigures(third_party_hosts=3))["hosts_consistency"]
        assert not gate.passed
        assert gate.severity == "warn"
        assert gate.details["diff"] == {"missingInTable": 0, "extraInTable": 1}


class TestCookiesConsistency:
    """Tests for the cookies_consistency gate."""

    def test_reported_table_mismatch(self) -> None:
        gate = _gates(_busy_result(), ReportedFigures(cookie_table_total=5))["cookies_consistency"]
        assert not gate.passed
        assert gate.details["total"] == 2

    def test_reported_table_match(self) -> None:
        assert _gates(_busy_result(), ReportedFigures(cookie_table_total=2))["cookies_consistency"].passed


class TestThirdPartyCookiesBlocked:
    """Tests for the third_party_cookies_blocked gate."""

    def test_attempted_but_not_persisted(self) -> None:
        header = parse_set_cookie("uid=1; Domain=.tracker.net; Max-Age=600", now_ms=NOW_MS)
        pre = make_snapshot(
            "pre",
            requests=[make_request("https://example.com/"), make_request("https://px.tracker.net/p", request_id="2")],
            set_cookies=[header],
        )
        gates = _gates(make_result(pre, make_snapshot("post_accept")))
        gate = gates["third_party_cookies_blocked"]
        assert not gate.passed
        assert gate.details == {"thirdParties": 1, "cookies3pAttempted": 1, "cookies3pPersisted": 0}

    def test_persisted_cookie_passes(self) -> None:
        pre = make_snapshot(
            "pre",
            requests=[make_request("https://px.tracker.net/p")],
            jar=[make_jar_cookie("uid", "tracker.net")],
            set_cookies=[parse_set_cookie("uid=1; Domain=.tracker.net", now_ms=NOW_MS)],
        )
        assert _gates(make_result(pre, make_snapshot("post_accept")))["third_party_cookies_blocked"].passed


class TestDataExtraction:
    """Tests for the data_extraction gate."""

    def test_params_but_none_listed(self) -> None:
        gate = _gates(_busy_result(), ReportedFigures(beacons_with_params=0))["data_extraction"]
        assert not gate.passed
        assert gate.details["trackersWithParams"] == 1

    def test_not_reported_passes(self) -> None:
        assert _gates(_busy_result())["data_extraction"].passed


class TestRetention:
    """Tests for the retention_contradiction gate."""

    def test_offender_listed(self) -> None:
        check = evaluate_result(_busy_result(), ReportedFigures(max_retention_days=365), now_ms=NOW_MS)
        gate = next(g for g in check.gates if g.id == "retention_contradiction")
        assert not gate.passed
        assert gate.details["offenders"] == [{"name": "_ga", "domain": "example.com", "days": 400}]
        assert gate.details["maxDays"] == 400
        assert has_blocking_failure(check.gates)

    def test_generous_limit_passes(self) -> None:
        assert _gates(_busy_result(), ReportedFigures(max_retention_days=730))["retention_contradiction"].passed


class TestConsentScenarios:
    """Tests for the consent_scenarios gate."""

    def test_partial_run_inconclusive(self) -> None:
        gate = _gates(make_result(make_snapshot("pre", requests=[make_request("https://example.com/")])))[
            "consent_scenarios"
        ]
        assert not gate.passed
        assert gate.severity == "info"
        assert gate.details["post"] is None

    def test_no_delta_inconclusive(self) -> None:
        storage = [StorageItem(kind="local", key="theme", value="dark")]
        pre = make_snapshot("pre", requests=[make_request("https://example.com/")], storage=storage)
        post = make_snapshot("post_reject", storage=storage)
        gate = _gates(make_result(pre, post, path_mode="reject"))["consent_scenarios"]
        assert not gate.passed

    def test_new_storage_key_is_delta(self) -> None:
        pre = make_snapshot("pre", requests=[make_request("https://example.com/")])
        post = make_snapshot("post_reject", storage=[StorageItem(kind="local", key="consent", value="rejected")])
        assert _gates(make_result(pre, post, path_mode="reject"))["consent_scenarios"].passed

    def test_post_requests_are_delta(self) -> None:
        assert _gates(_busy_result())["consent_scenarios"].passed

    def test_failure_is_not_blocking(self) -> None:
        gates = evaluate_result(make_result(make_snapshot("pre")), now_ms=NOW_MS).gates
        assert not next(g for g in gates if g.id == "consent_scenarios").passed
        assert not has_blocking_failure(gates)
