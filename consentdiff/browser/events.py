"""
Event pipeline: turns protocol events into phase-tagged evidence.

Every event is checked against the explicitly activated session
before anything is recorded, and every record is stamped with the
phase controller's value at the moment the event arrived.  The
request map lives for the whole run; snapshots select from it by
phase and session instead of clearing it between phases.
"""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Callable
from typing import Any
from urllib import parse

from consentdiff.browser import phase as phase_mod
from consentdiff.browser import set_cookie
from consentdiff.browser import transport as transport_mod
from consentdiff.models import evidence
from consentdiff.utils import errors, logger
from consentdiff.utils import url as url_mod

log = logger.create_logger("Events")

MAX_TRACKED_REQUESTS = 5000


def _record_key(session_id: str, request_id: str) -> str:
    return f"{session_id}:{request_id}"


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


def parse_post_data(body: str, content_type: str | None) -> dict[str, Any] | list[Any] | None:
    """Decode JSON or form-encoded request bodies; ``None`` for anything else."""
    content_type = (content_type or "").lower()
    if "application/json" in content_type or "text/plain" in content_type and body[:1] in "{[":
        try:
            parsed = json.loads(body)
        except (json.JSONDecodeError, ValueError):
            return None
        return parsed if isinstance(parsed, (dict, list)) else None
    if "application/x-www-form-urlencoded" in content_type:
        return dict(parse.parse_qsl(body, keep_blank_values=True))
    return None


# ============================================================================
# Idle detection
# ============================================================================


class NetworkIdleTracker:
    """In-flight request counter for the active session.

    Request ids are tracked as a set so a redirect chain, which
    reuses one id, counts once.
    """

    def __init__(self, clock: Callable[[], float] = _monotonic_ms) -> None:
        self._clock = clock
        self._in_flight: set[str] = set()
        self._idle_since: float | None = clock()

    @property
    def in_flight(self) -> int:
        """Number of requests started but not yet finished or failed."""
        return len(self._in_flight)

    def reset(self) -> None:
        """Forget everything in flight; the network counts as idle from now."""
        self._in_flight.clear()
        self._idle_since = self._clock()

    def started(self, request_id: str) -> None:
        self._in_flight.add(request_id)
        self._idle_since = None

    def finished(self, request_id: str) -> None:
        if request_id not in self._in_flight:
            return
        self._in_flight.discard(request_id)
        if not self._in_flight:
            self._idle_since = self._clock()

    def idle_for_ms(self) -> float:
        """How long the counter has been at zero, or 0 while busy."""
        if self._idle_since is None:
            return 0.0
        return self._clock() - self._idle_since

    async def wait_for_idle(self, hold_ms: int, max_ms: int, poll_ms: int = 100) -> bool:
        """Wait until idle for *hold_ms*, giving up after *max_ms*.

        Returns:
            True when idleness was reached, False on timeout.
        """
        deadline = self._clock() + max_ms
        while True:
            if self._idle_since is not None and self.idle_for_ms() >= hold_ms:
                return True
            now = self._clock()
            if now >= deadline:
                return False
            await asyncio.sleep(min(poll_ms, max(deadline - now, 1)) / 1000)


# ============================================================================
# Pipeline
# ============================================================================


class EventPipeline:
    """Builds request and ``Set-Cookie`` records for the active session."""

    def __init__(
        self,
        transport: transport_mod.CDPTransport,
        phase: phase_mod.PhaseController,
        *,
        clock_ms: Callable[[], int] = _wall_clock_ms,
        idle: NetworkIdleTracker | None = None,
    ) -> None:
        self._transport = transport
        self._phase = phase
        self._clock_ms = clock_ms
        self.idle = idle or NetworkIdleTracker()
        self.active_session: str | None = None
        self._records: dict[str, evidence.RequestRecord] = {}
        self._set_cookies: dict[evidence.Phase, list[evidence.SetCookieRecord]] = {
            "pre": [],
            "post_accept": [],
            "post_reject": [],
        }
        self._post_data_tasks: set[asyncio.Task[None]] = set()
        self._redirect_hops: dict[str, int] = {}
        self._unsubscribe: Callable[[], None] | None = None

    # ==========================================================================
    # Lifecycle
    # ==========================================================================

    def attach(self) -> None:
        """Subscribe to the transport's event stream."""
        if self._unsubscribe is None:
            self._unsubscribe = self._transport.on_event(self.handle)

    def detach(self) -> None:
        """Stop receiving events."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def activate(self, session: evidence.Session) -> None:
        """Accept events from *session* only, from now on."""
        self.active_session = session.session_id
        self.idle.reset()
        log.debug("Session activated", {"session": session.session_id[:12], "phase": self._phase.current})

    def deactivate(self) -> None:
        """Discard every event until the next ``activate``."""
        self.active_session = None
        self.idle.reset()

    async def drain(self) -> None:
        """Wait for outstanding POST-body fetches to settle."""
        if self._post_data_tasks:
            await asyncio.gather(*self._post_data_tasks, return_exceptions=True)

    # ==========================================================================
    # Reads
    # ==========================================================================

    @property
    def request_count(self) -> int:
        return len(self._records)

    def get_record(self, session_id: str, request_id: str) -> evidence.RequestRecord | None:
        return self._records.get(_record_key(session_id, request_id))

    def records_for(self, phase: evidence.Phase, session_id: str) -> list[evidence.RequestRecord]:
        """Copies of the records captured for *phase* on *session_id*, in arrival order."""
        return [
            r.model_copy(deep=True)
            for r in self._records.values()
            if r.phase == phase and r.session_id == session_id
        ]

    def set_cookies_for(self, phase: evidence.Phase, session_id: str) -> list[evidence.SetCookieRecord]:
        """``Set-Cookie`` records captured for *phase* on *session_id*, in arrival order."""
        return [c for c in self._set_cookies[phase] if c.session_id == session_id]

    # ==========================================================================
    # Dispatch
    # ==========================================================================

    def handle(self, message: dict[str, Any]) -> None:
        """Entry point registered with the transport."""
        session_id = message.get("sessionId")
        if session_id is None or session_id != self.active_session:
            return

        method = message.get("method")
        params = message.get("params") or {}
        if method == "Network.requestWillBeSent":
            self._on_request_will_be_sent(params, session_id)
        elif method in ("Network.loadingFinished", "Network.loadingFailed"):
            self.idle.finished(params.get("requestId", ""))
        elif method == "Network.responseReceivedExtraInfo":
            self._on_response_extra_info(params, session_id)

    def _on_request_will_be_sent(self, params: dict[str, Any], session_id: str) -> None:
        request_id = params.get("requestId")
        request = params.get("request") or {}
        url = request.get("url", "")
        if not request_id or not url or url.startswith("data:"):
            return

        key = _record_key(session_id, request_id)
        if key in self._records and params.get("redirectResponse"):
            hop = self._redirect_hops.get(key, 0) + 1
            self._redirect_hops[key] = hop
            previous = self._records.pop(key)
            hop_id = f"{request_id}.r{hop}"
            self._records[_record_key(session_id, hop_id)] = previous.model_copy(update={"id": hop_id})
        elif len(self._records) >= MAX_TRACKED_REQUESTS:
            if len(self._records) == MAX_TRACKED_REQUESTS:
                log.debug("Request tracking limit reached", {"limit": MAX_TRACKED_REQUESTS})
            return

        headers = {str(k).lower(): str(v) for k, v in (request.get("headers") or {}).items()}
        try:
            query = parse.parse_qs(parse.urlparse(url).query, keep_blank_values=True)
        except ValueError:
            query = {}

        post_data = request.get("postData")
        has_post_data = bool(request.get("hasPostData")) or post_data is not None
        wall_time = params.get("wallTime")

        record = evidence.RequestRecord(
            id=request_id,
            url=url,
            method=request.get("method", "GET"),
            headers=headers,
            query_params=query,
            has_post_data=has_post_data,
            post_data=post_data,
            post_data_parsed=parse_post_data(post_data, headers.get("content-type")) if post_data else None,
            resource_type=params.get("type"),
            session_id=session_id,
            phase=self._phase.current,
            timestamp_ms=int(wall_time * 1000) if wall_time else self._clock_ms(),
        )
        self._records[key] = record
        self.idle.started(request_id)

        if has_post_data and post_data is None:
            task = asyncio.get_running_loop().create_task(self._fetch_post_data(request_id, session_id))
            self._post_data_tasks.add(task)
            task.add_done_callback(self._post_data_tasks.discard)

    async def _fetch_post_data(self, request_id: str, session_id: str) -> None:
        """Fill in a body the browser only exposes on demand."""
        try:
            result = await self._transport.send(
                "Network.getRequestPostData", {"requestId": request_id}, session_id
            )
        except (errors.ProtocolError, errors.TransportFailedError) as exc:
            log.debug("POST body unavailable", {"requestId": request_id, "error": errors.get_error_message(exc)})
            return

        record = self._records.get(_record_key(session_id, request_id))
        body = result.get("postData")
        if record is None or body is None or record.post_data is not None:
            return
        record.post_data = body
        record.post_data_parsed = parse_post_data(body, record.header("content-type"))

    def _on_response_extra_info(self, params: dict[str, Any], session_id: str) -> None:
        values = set_cookie.set_cookie_values(params.get("headers"))
        if not values:
            return

        request_id = params.get("requestId", "")
        record = self._records.get(_record_key(session_id, request_id))
        request_url = record.url if record else None
        default_domain = url_mod.extract_domain(request_url) if request_url else ""
        phase = self._phase.current
        now_ms = self._clock_ms()

        for value in values:
            parsed = set_cookie.parse_set_cookie(
                value,
                now_ms=now_ms,
                default_domain="" if default_domain == "unknown" else default_domain,
                session_id=session_id,
                phase=phase,
                request_url=request_url,
            )
            if parsed is None:
                log.debug("Unparseable Set-Cookie header", {"requestId": request_id})
                continue
            self._set_cookies[phase].append(parsed)
