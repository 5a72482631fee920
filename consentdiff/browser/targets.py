"""
Isolated browser contexts, their attached page sessions and navigation.

Each phase of a run gets a fresh context created through the
debugging protocol, so phase B never inherits cookies or storage
from phase A.  Contexts are disposed explicitly; a failed dispose
is logged and otherwise ignored.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import pydantic

from consentdiff.browser import page_scripts
from consentdiff.browser import transport as transport_mod
from consentdiff.models import evidence
from consentdiff.utils import errors, logger

log = logger.create_logger("Targets")

# Heavy static assets that carry no consent evidence.  Images stay
# unblocked: tracking pixels are images.
_BLOCKED_EXTENSIONS: tuple[str, ...] = (
    "woff", "woff2", "ttf", "otf", "eot",
    "mp4", "webm", "m4v", "mov", "avi", "mp3", "wav", "ogg", "flac",
    "zip", "gz", "rar", "7z", "tar", "dmg", "exe", "iso",
)

# Each extension is blocked bare and with a query string (``font.woff2?v=3``).
BLOCKED_URL_PATTERNS: tuple[str, ...] = tuple(
    pattern for ext in _BLOCKED_EXTENSIONS for pattern in (f"*.{ext}", f"*.{ext}?*")
)


class OpenedContext(pydantic.BaseModel):
    """A browser context with one attached page and its first navigation."""

    model_config = pydantic.ConfigDict(frozen=True)

    context_id: str
    session: evidence.Session
    navigation: evidence.NavigationResult


class TargetManager:
    """Creates, navigates and disposes isolated browser contexts."""

    def __init__(self, transport: transport_mod.CDPTransport) -> None:
        self._transport = transport
        self._load_events: dict[str, asyncio.Event] = {}
        self._unsubscribe = transport.on_event(self._on_event)

    def close(self) -> None:
        """Stop listening for page events."""
        self._unsubscribe()
        self._load_events.clear()

    # ==========================================================================
    # Context lifecycle
    # ==========================================================================

    async def open_context(
        self,
        url: str,
        *,
        on_attached: Callable[[evidence.Session], None] | None = None,
    ) -> OpenedContext:
        """Create a context, attach to a blank page and navigate to *url*.

        *on_attached* runs after the protocol domains are enabled and
        before navigation starts, so no navigation request is missed.

        Raises:
            ProtocolError: A setup command was rejected.
            TransportFailedError: The connection failed.
        """
        created = await self._transport.send("Target.createBrowserContext", {"disposeOnDetach": True})
        context_id = created["browserContextId"]
        try:
            target = await self._transport.send(
                "Target.createTarget",
                {"url": "about:blank", "browserContextId": context_id},
            )
            attached = await self._transport.send(
                "Target.attachToTarget",
                {"targetId": target["targetId"], "flatten": True},
            )
            session = evidence.Session(
                session_id=attached["sessionId"],
                target_id=target["targetId"],
                context_id=context_id,
            )
            self._load_events[session.session_id] = asyncio.Event()
            await self._prepare_session(session)
        except Exception:
            await self.dispose_context(context_id)
            raise

        log.debug("Context opened", {"context": context_id[:12], "session": session.session_id[:12]})
        if on_attached is not None:
            on_attached(session)

        navigation = await self.navigate(session, url)
        return OpenedContext(context_id=context_id, session=session, navigation=navigation)

    async def _prepare_session(self, session: evidence.Session) -> None:
        sid = session.session_id
        await self._transport.send("Network.enable", {}, sid)
        await self._transport.send("Page.enable", {}, sid)
        await self._transport.send("Runtime.enable", {}, sid)
        await self._transport.send("Network.setBlockedURLs", {"urls": list(BLOCKED_URL_PATTERNS)}, sid)

    async def dispose_context(self, context: OpenedContext | str) -> None:
        """Dispose *context*; failures are logged and swallowed."""
        context_id = context.context_id if isinstance(context, OpenedContext) else context
        if isinstance(context, OpenedContext):
            self._load_events.pop(context.session.session_id, None)
        try:
            await self._transport.send("Target.disposeBrowserContext", {"browserContextId": context_id})
            log.debug("Context disposed", {"context": context_id[:12]})
        except (errors.ProtocolError, errors.TransportFailedError) as exc:
            log.warn("Context dispose failed", {"context": context_id[:12], "error": errors.get_error_message(exc)})

    # ==========================================================================
    # Navigation
    # ==========================================================================

    async def navigate(self, session: evidence.Session, url: str) -> evidence.NavigationResult:
        """Start navigation; does not wait for the load event."""
        load_event = self._load_events.setdefault(session.session_id, asyncio.Event())
        load_event.clear()
        try:
            result = await self._transport.send("Page.navigate", {"url": url}, session.session_id)
        except errors.ProtocolError as exc:
            log.warn("Navigation rejected", {"url": url, "error": exc.protocol_message})
            return evidence.NavigationResult(success=False, url=url, error_text=exc.protocol_message)

        error_text = result.get("errorText")
        if error_text:
            log.warn("Navigation failed", {"url": url, "error": error_text})
            return evidence.NavigationResult(success=False, url=url, error_text=error_text)
        return evidence.NavigationResult(success=True, url=url)

    async def wait_for_load(self, session: evidence.Session, timeout_ms: int) -> bool:
        """Wait up to *timeout_ms* for the page's load event.

        Returns:
            True if the load event fired, False on timeout.
        """
        load_event = self._load_events.setdefault(session.session_id, asyncio.Event())
        try:
            async with asyncio.timeout(timeout_ms / 1000):
                await load_event.wait()
        except TimeoutError:
            log.debug("Load event not seen in time", {"timeoutMs": timeout_ms})
            return False
        return True

    async def current_url(self, session: evidence.Session) -> str:
        """The page's URL after redirects, or an empty string if unreadable."""
        try:
            return await page_scripts.current_url(self._transport, session.session_id)
        except (errors.ProtocolError, errors.PageScriptError) as exc:
            log.debug("Could not read current URL", {"error": errors.get_error_message(exc)})
            return ""

    def _on_event(self, message: dict[str, Any]) -> None:
        if message.get("method") != "Page.loadEventFired":
            return
        load_event = self._load_events.get(message.get("sessionId", ""))
        if load_event is not None:
            load_event.set()
