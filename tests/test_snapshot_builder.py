"""Tests for consentdiff.snapshot.builder: per-phase snapshots over a scripted browser."""

from __future__ import annotations

import asyncio

from consentdiff.browser.events import EventPipeline
from consentdiff.browser.phase import PhaseController
from consentdiff.browser.targets import TargetManager
from consentdiff.browser.transport import CDPTransport
from consentdiff.models.evidence import Snapshot
from consentdiff.snapshot.builder import SnapshotBuilder
from conftest import FakeBrowser, FakePage

URL = "https://example.sk/"

PAGE = FakePage(
    requests=[
        {"id": "r1", "url": URL, "type": "Document", "setCookies": ["sid=abc; Path=/; HttpOnly"]},
        {
            "id": "r2",
            "url": "https://stats.tracker.net/collect?tid=UA-1",
            "method": "POST",
            "hasPostData": True,
            "headers": {"Content-Type": "application/x-www-form-urlencoded"},
            "setCookies": ["uid=42; Domain=.tracker.net; Max-Age=31536000"],
        },
    ],
    post_data={"r2": "ev=pageview&uid=42"},
    jar=[{"name": "sid", "value": "abc", "domain": "example.sk", "path": "/", "expires": -1, "session": True}],
    storage={"local": {"theme": "dark", "profile": "jan@example.sk"}, "session": {"visit": "2024-05-01T10:00:00"}},
    document_cookies=["_ga"],
)


def _snapshots(browser: FakeBrowser, builds: int = 1) -> list[Snapshot]:
    async def scenario() -> list[Snapshot]:
        transport = CDPTransport(browser.ws)
        pipeline = EventPipeline(transport, PhaseController())
        pipeline.attach()
        manager = TargetManager(transport)
        try:
            opened = await manager.open_context(URL, on_attached=pipeline.activate)
            await manager.wait_for_load(opened.session, 500)
            pipeline.deactivate()
            builder = SnapshotBuilder(transport, pipeline, clock_ms=lambda: 1_700_000_000_000)
            return [await builder.build("pre", opened.session) for _ in range(builds)]
        finally:
            pipeline.detach()
            manager.close()
            await transport.close()

    return asyncio.run(scenario())


def _snapshot(browser: FakeBrowser) -> Snapshot:
    return _snapshots(browser)[0]


class TestSnapshotBuilder:
    """Tests for SnapshotBuilder.build()."""

    def test_requests_and_post_bodies(self) -> None:
        snapshot = _snapshot(FakeBrowser({URL: PAGE}))
        assert snapshot.phase == "pre"
        assert [r.id for r in snapshot.requests] == ["r1", "r2"]
        beacon = snapshot.requests[1]
        assert beacon.post_data == "ev=pageview&uid=42"
        assert beacon.post_data_parsed == {"ev": "pageview", "uid": "42"}
        assert beacon.query_params == {"tid": ["UA-1"]}

    def test_cookie_sources(self) -> None:
        snapshot = _snapshot(FakeBrowser({URL: PAGE}))
        assert [c.name for c in snapshot.jar_cookies] == ["sid"]
        assert [(c.name, c.domain) for c in snapshot.set_cookie_headers] == [
            ("sid", "example.sk"),
            ("uid", "tracker.net"),
        ]
        assert snapshot.document_cookies == ["_ga"]

    def test_storage_masked(self) -> None:
        snapshot = _snapshot(FakeBrowser({URL: PAGE}))
        items = {(i.kind, i.key): (i.value, i.masked) for i in snapshot.storage}
        assert items == {
            ("local", "theme"): ("dark", False),
            ("local", "profile"): ("[masked]", True),
            ("session", "visit"): ("[masked]", True),
        }

    def test_session_and_timestamp(self) -> None:
        snapshot = _snapshot(FakeBrowser({URL: PAGE}))
        assert snapshot.session_id.startswith("session-")
        assert snapshot.timestamp_ms == 1_700_000_000_000
        assert all(r.session_id == snapshot.session_id for r in snapshot.requests)

    def test_read_failures_degrade_to_empty(self) -> None:
        browser = FakeBrowser({URL: PAGE})
        browser.fail_methods["Storage.getCookies"] = {"code": -32000, "message": "Browser context not found"}
        browser.fail_methods["Runtime.evaluate"] = {"code": -32000, "message": "Execution context was destroyed"}
        snapshot = _snapshot(browser)
        assert snapshot.jar_cookies == []
        assert snapshot.storage == []
        assert snapshot.document_cookies == []
        assert len(snapshot.requests) == 2

    def test_repeated_builds_agree(self) -> None:
        first, second = _snapshots(FakeBrowser({URL: PAGE}), builds=2)
        assert first == second
