"""Shared fixtures for the test suite: a scripted browser peer and evidence factories."""

from __future__ import annotations

import asyncio
import json
import types
from typing import Any

import aiohttp
import pytest

from consentdiff.browser import page_scripts
from consentdiff.models import evidence

# ── Fake clock ──────────────────────────────────────────────────


class FakeClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


# ── Fake websocket ──────────────────────────────────────────────


def _frame(kind: aiohttp.WSMsgType, data: Any = None) -> types.SimpleNamespace:
    return types.SimpleNamespace(type=kind, data=data, extra=None)


class FakeWebSocket:
    """In-memory websocket; outgoing frames go to *on_send*."""

    def __init__(self, on_send=None) -> None:
        self.inbox: asyncio.Queue[types.SimpleNamespace] = asyncio.Queue()
        self.sent: list[dict[str, Any]] = []
        self.on_send = on_send
        self.closed = False

    async def send_str(self, data: str) -> None:
        if self.closed:
            raise ConnectionResetError("socket closed")
        message = json.loads(data)
        self.sent.append(message)
        if self.on_send is not None:
            self.on_send(message)

    async def receive(self) -> types.SimpleNamespace:
        return await self.inbox.get()

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.inbox.put_nowait(_frame(aiohttp.WSMsgType.CLOSED))

    def push(self, message: dict[str, Any]) -> None:
        self.inbox.put_nowait(_frame(aiohttp.WSMsgType.TEXT, json.dumps(message)))

    def push_raw(self, text: str) -> None:
        self.inbox.put_nowait(_frame(aiohttp.WSMsgType.TEXT, text))

    def drop(self) -> None:
        """Simulate the remote end going away."""
        self.inbox.put_nowait(_frame(aiohttp.WSMsgType.CLOSE))


# ── Scripted browser ────────────────────────────────────────────


class FakePage:
    """What one URL does when loaded and when its consent control is clicked.

    ``requests`` entries are dicts with ``id`` and ``url`` plus optional
    ``method``, ``headers``, ``postData``, ``hasPostData``, ``type``
    and ``setCookies`` (list of raw ``Set-Cookie`` values).
    """

    def __init__(
        self,
        *,
        final_url: str | None = None,
        requests: list[dict[str, Any]] | None = None,
        jar: list[dict[str, Any]] | None = None,
        storage: dict[str, dict[str, str]] | None = None,
        document_cookies: list[str] | None = None,
        selectors: list[str] | None = None,
        button_texts: list[str] | None = None,
        post_click_requests: list[dict[str, Any]] | None = None,
        post_click_jar: list[dict[str, Any]] | None = None,
        post_click_storage: dict[str, dict[str, str]] | None = None,
        post_data: dict[str, str] | None = None,
        navigate_cost_ms: float = 0,
        navigate_error: str | None = None,
        fire_load: bool = True,
    ) -> None:
        self.final_url = final_url
        self.requests = requests or []
        self.jar = jar or []
        self.storage = storage or {"local": {}, "session": {}}
        self.document_cookies = document_cookies or []
        self.selectors = selectors or []
        self.button_texts = button_texts or []
        self.post_click_requests = post_click_requests or []
        self.post_click_jar = post_click_jar or []
        self.post_click_storage = post_click_storage
        self.post_data = post_data or {}
        self.navigate_cost_ms = navigate_cost_ms
        self.navigate_error = navigate_error
        self.fire_load = fire_load


class FakeBrowser:
    """Answers debugging-protocol commands the way a remote Chrome would.

    Every context gets its own jar and storage.  Request ids restart at
    the same values in each context, as they may on a real host.
    """

    POST_CLICK_DELAY_S = 0.01

    def __init__(self, pages: dict[str, FakePage] | None = None, clock: FakeClock | None = None) -> None:
        self.pages = pages or {}
        self.clock = clock or FakeClock()
        self.ws = FakeWebSocket(on_send=self._on_command)
        self._counter = 0
        self.contexts: dict[str, dict[str, Any]] = {}
        self.sessions: dict[str, str] = {}
        self.disposed: list[str] = []
        self.fail_methods: dict[str, dict[str, Any]] = {}
        self.silent_methods: set[str] = set()
        self.drop_on: set[str] = set()

    # ── helpers ──

    def _next(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}-{self._counter}"

    def methods(self) -> list[str]:
        return [m["method"] for m in self.ws.sent]

    def _reply(self, msg_id: int, result: dict[str, Any]) -> None:
        self.ws.push({"id": msg_id, "result": result})

    def _event(self, session_id: str, method: str, params: dict[str, Any]) -> None:
        self.ws.push({"method": method, "params": params, "sessionId": session_id})

    def _emit_requests(self, session_id: str, requests: list[dict[str, Any]]) -> None:
        for req in requests:
            request: dict[str, Any] = {
                "url": req["url"],
                "method": req.get("method", "GET"),
                "headers": req.get("headers", {}),
            }
            if "postData" in req:
                request["postData"] = req["postData"]
            if req.get("hasPostData"):
                request["hasPostData"] = True
            params = {"requestId": req["id"], "request": request, "type": req.get("type", "Other")}
            self._event(session_id, "Network.requestWillBeSent", params)
            if req.get("setCookies"):
                self._event(
                    session_id,
                    "Network.responseReceivedExtraInfo",
                    {"requestId": req["id"], "headers": {"Set-Cookie": "\n".join(req["setCookies"])}},
                )
            self._event(session_id, "Network.loadingFinished", {"requestId": req["id"]})

    def _page_for(self, session_id: str) -> FakePage:
        ctx = self.contexts[self.sessions[session_id]]
        return self.pages.get(ctx["url"], FakePage())

    # ── command handling ──

    def _on_command(self, message: dict[str, Any]) -> None:
        method = message["method"]
        params = message.get("params", {})
        msg_id = message["id"]
        session_id = message.get("sessionId")

        if method in self.drop_on:
            self.ws.drop()
            return
        if method in self.silent_methods:
            return
        if method in self.fail_methods:
            self.ws.push({"id": msg_id, "error": self.fail_methods[method]})
            return

        if method == "Target.createBrowserContext":
            ctx_id = self._next("ctx")
            self.contexts[ctx_id] = {"jar": [], "storage": {"local": {}, "session": {}}, "url": ""}
            self._reply(msg_id, {"browserContextId": ctx_id})
        elif method == "Target.createTarget":
            self._reply(msg_id, {"targetId": self._next("target") + "|" + params["browserContextId"]})
        elif method == "Target.attachToTarget":
            session = self._next("session")
            self.sessions[session] = params["targetId"].split("|", 1)[1]
            self._reply(msg_id, {"sessionId": session})
        elif method == "Target.disposeBrowserContext":
            self.disposed.append(params["browserContextId"])
            self._reply(msg_id, {})
        elif method == "Page.navigate":
            self._navigate(msg_id, session_id, params["url"])
        elif method == "Storage.getCookies":
            self._reply(msg_id, {"cookies": list(self.contexts[params["browserContextId"]]["jar"])})
        elif method == "Network.getRequestPostData":
            body = self._page_for(session_id).post_data.get(params["requestId"])
            if body is None:
                self.ws.push({"id": msg_id, "error": {"code": -32000, "message": "No post data available"}})
            else:
                self._reply(msg_id, {"postData": body})
        elif method == "Runtime.evaluate":
            self._evaluate(msg_id, session_id, params["expression"])
        else:
            self._reply(msg_id, {})

    def _navigate(self, msg_id: int, session_id: str, url: str) -> None:
        ctx = self.contexts[self.sessions[session_id]]
        ctx["url"] = url
        page = self.pages.get(url, FakePage())
        self.clock.advance(page.navigate_cost_ms)
        if page.navigate_error:
            self._reply(msg_id, {"frameId": "frame", "errorText": page.navigate_error})
            return
        self._reply(msg_id, {"frameId": "frame", "loaderId": "loader"})
        ctx["jar"].extend(page.jar)
        ctx["storage"] = {k: dict(v) for k, v in page.storage.items()}
        self._emit_requests(session_id, page.requests)
        if page.fire_load:
            self._event(session_id, "Page.loadEventFired", {"timestamp": 1.0})

    def _click(self, session_id: str) -> None:
        ctx = self.contexts[self.sessions[session_id]]
        page = self._page_for(session_id)

        def _after_click() -> None:
            ctx["jar"].extend(page.post_click_jar)
            if page.post_click_storage is not None:
                ctx["storage"] = {k: dict(v) for k, v in page.post_click_storage.items()}
            self._emit_requests(session_id, page.post_click_requests)

        asyncio.get_running_loop().call_later(self.POST_CLICK_DELAY_S, _after_click)

    def _evaluate(self, msg_id: int, session_id: str, expression: str) -> None:
        page = self._page_for(session_id)
        ctx = self.contexts[self.sessions[session_id]]
        operations = {
            "read_storage": page_scripts.READ_STORAGE_JS,
            "read_document_cookies": page_scripts.READ_DOCUMENT_COOKIES_JS,
            "current_url": page_scripts.CURRENT_URL_JS,
            "click_first_selector": page_scripts.CLICK_FIRST_SELECTOR_JS,
            "click_by_text": page_scripts.CLICK_BY_TEXT_JS,
        }
        name = None
        args: list[Any] = []
        for op, source in operations.items():
            prefix = f"({source.strip()})("
            if expression.startswith(prefix):
                name = op
                args = json.loads(f"[{expression[len(prefix):-1]}]")
                break

        value: Any = None
        if name == "read_storage":
            value = ctx["storage"]
        elif name == "read_document_cookies":
            value = list(page.document_cookies)
        elif name == "current_url":
            value = page.final_url or ctx["url"]
        elif name == "click_first_selector":
            value = next((s for s in args[0] if s in page.selectors), None)
            if value:
                self._click(session_id)
        elif name == "click_by_text":
            wanted = set(args[0])
            value = next(
                (page_scripts.normalize_phrase(t) for t in page.button_texts if page_scripts.normalize_phrase(t) in wanted),
                None,
            )
            if value:
                self._click(session_id)
        else:
            self._reply(msg_id, {"result": {"type": "undefined"}, "exceptionDetails": {"text": "unknown operation"}})
            return
        self._reply(msg_id, {"result": {"type": "object", "value": value}})


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


# ── Evidence factories ──────────────────────────────────────────


def make_request(
    url: str,
    *,
    request_id: str = "1",
    phase: evidence.Phase = "pre",
    session_id: str = "session-a",
    query: dict[str, list[str]] | None = None,
    post_data: str | None = None,
) -> evidence.RequestRecord:
    return evidence.RequestRecord(
        id=request_id,
        url=url,
        method="POST" if post_data else "GET",
        query_params=query or {},
        has_post_data=post_data is not None,
        post_data=post_data,
        session_id=session_id,
        phase=phase,
        timestamp_ms=1_700_000_000_000,
    )


def make_jar_cookie(name: str, domain: str, *, expires: float = -1, value: str = "v") -> evidence.JarCookie:
    return evidence.JarCookie(name=name, value=value, domain=domain, expires=expires, session=expires <= 0)


def make_snapshot(
    phase: evidence.Phase = "pre",
    *,
    requests: list[evidence.RequestRecord] | None = None,
    jar: list[evidence.JarCookie] | None = None,
    set_cookies: list[evidence.SetCookieRecord] | None = None,
    storage: list[evidence.StorageItem] | None = None,
    document_cookies: list[str] | None = None,
    session_id: str = "session-a",
) -> evidence.Snapshot:
    return evidence.Snapshot(
        phase=phase,
        session_id=session_id,
        requests=requests or [],
        jar_cookies=jar or [],
        set_cookie_headers=set_cookies or [],
        storage=storage or [],
        document_cookies=document_cookies or [],
        timestamp_ms=1_700_000_000_000,
    )


def make_result(
    pre: evidence.Snapshot,
    post: evidence.Snapshot | None = None,
    *,
    final_url: str = "https://example.com/",
    path_mode: evidence.PathMode = "accept",
    navigation_ok: bool = True,
) -> evidence.ProbeResult:
    return evidence.ProbeResult(
        trace_id="trace-0000",
        final_url=final_url,
        path_mode=path_mode,
        snapshots=evidence.PhaseSnapshots(pre=pre, post=post),
        phase_durations_ms=evidence.PhaseDurations(pre=1000, post=1000 if post else None),
        partial=post is None,
        navigation_ok=navigation_ok,
    )
