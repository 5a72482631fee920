"""
Debugging-protocol transport over a single websocket.

Owns the connection to the remote browser host, correlates every
outgoing command with its response by request id, and fans out
unsolicited events to subscribers in arrival order.  Subscribers
filter by session themselves.

A dropped connection rejects every pending command with
``TransportClosedError``; retrying is left to the caller.
"""

from __future__ import annotations

import asyncio
import itertools
import json
from collections.abc import Callable
from typing import Any, Protocol

import aiohttp

from consentdiff.utils import errors, logger

log = logger.create_logger("Transport")

EventHandler = Callable[[dict[str, Any]], None]

# Remote hosts answer the websocket upgrade within a few seconds;
# anything slower is treated as an unreachable host.
_CONNECT_TIMEOUT = aiohttp.ClientTimeout(total=15)

# Large pages produce multi-megabyte protocol frames (cookie jars,
# response headers); aiohttp's 4 MB default is too small.
_MAX_MESSAGE_SIZE = 64 * 1024 * 1024


class WebSocketLike(Protocol):
    """The subset of ``aiohttp.ClientWebSocketResponse`` the transport uses."""

    async def send_str(self, data: str) -> None: ...

    async def receive(self) -> aiohttp.WSMessage: ...

    async def close(self) -> Any: ...


class CDPTransport:
    """Command/response correlation and event fan-out for one connection."""

    def __init__(
        self,
        ws: WebSocketLike,
        http_session: aiohttp.ClientSession | None = None,
    ) -> None:
        """Wrap an already-open websocket and start the reader task."""
        self._ws = ws
        self._http_session = http_session
        self._ids = itertools.count(1)
        self._pending: dict[int, tuple[str, asyncio.Future[dict[str, Any]]]] = {}
        self._handlers: list[EventHandler] = []
        self._closed: asyncio.Future[BaseException | None] = asyncio.get_running_loop().create_future()
        self._reader = asyncio.create_task(self._read_loop(), name="cdp-reader")

    # ==========================================================================
    # Connection
    # ==========================================================================

    @classmethod
    async def connect(cls, websocket_url: str) -> CDPTransport:
        """Open a websocket to *websocket_url* and return a live transport.

        Raises:
            AuthFailedError: The host rejected the credentials (401/403).
            TransportFailedError: The host could not be reached.
        """
        http_session = aiohttp.ClientSession(timeout=_CONNECT_TIMEOUT)
        try:
            ws = await http_session.ws_connect(
                websocket_url,
                max_msg_size=_MAX_MESSAGE_SIZE,
                autoping=True,
            )
        except aiohttp.WSServerHandshakeError as exc:
            await http_session.close()
            if exc.status in (401, 403):
                raise errors.AuthFailedError(
                    f"Browser host rejected credentials ({exc.status})",
                    details={"status": exc.status},
                ) from exc
            raise errors.TransportFailedError(
                f"Browser host refused websocket upgrade ({exc.status})",
                details={"status": exc.status},
            ) from exc
        except (aiohttp.ClientError, TimeoutError, OSError) as exc:
            await http_session.close()
            raise errors.TransportFailedError(
                f"Could not connect to browser host: {errors.get_error_message(exc)}"
            ) from exc

        log.success("Connected to browser host")
        return cls(ws, http_session)

    @property
    def closed(self) -> asyncio.Future[BaseException | None]:
        """Resolves once the connection is gone, with the cause if any."""
        return self._closed

    @property
    def is_open(self) -> bool:
        """True until the connection drops or ``close`` is called."""
        return not self._closed.done()

    async def close(self) -> None:
        """Stop the reader and close the websocket and HTTP session."""
        if not self._reader.done():
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
        self._shutdown(None)
        try:
            await self._ws.close()
        except (aiohttp.ClientError, OSError) as exc:
            log.debug("Websocket close error (non-fatal)", {"error": str(exc)})
        if self._http_session is not None:
            await self._http_session.close()
            self._http_session = None

    # ==========================================================================
    # Commands and events
    # ==========================================================================

    async def send(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        session_id: str | None = None,
    ) -> dict[str, Any]:
        """Issue *method* and wait for its correlated response.

        Args:
            method: Protocol method, e.g. ``"Network.enable"``.
            params: Command parameters.
            session_id: Flattened session to scope the command to.

        Returns:
            The ``result`` payload of the response.

        Raises:
            ProtocolError: The browser answered with an error.
            TransportClosedError: The connection is, or became, closed.
        """
        if not self.is_open:
            raise errors.TransportClosedError(f"Cannot send {method}: connection closed")

        msg_id = next(self._ids)
        message: dict[str, Any] = {"id": msg_id, "method": method, "params": params or {}}
        if session_id:
            message["sessionId"] = session_id

        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending[msg_id] = (method, future)
        try:
            await self._ws.send_str(json.dumps(message))
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as exc:
            self._pending.pop(msg_id, None)
            raise errors.TransportClosedError(f"Send failed for {method}: {exc}") from exc

        try:
            return await future
        finally:
            self._pending.pop(msg_id, None)

    def on_event(self, handler: EventHandler) -> Callable[[], None]:
        """Subscribe *handler* to every event; returns an unsubscribe callable."""
        self._handlers.append(handler)

        def _unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return _unsubscribe

    @property
    def pending_count(self) -> int:
        """Number of commands still awaiting a response."""
        return len(self._pending)

    # ==========================================================================
    # Reader
    # ==========================================================================

    async def _read_loop(self) -> None:
        """Receive frames until the socket closes, dispatching each one."""
        cause: BaseException | None = None
        try:
            while True:
                msg = await self._ws.receive()
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._dispatch(msg.data)
                elif msg.type == aiohttp.WSMsgType.BINARY:
                    self._dispatch(msg.data.decode("utf-8", errors="replace"))
                elif msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED):
                    log.warn("Browser host closed the connection")
                    break
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    cause = msg.data if isinstance(msg.data, BaseException) else None
                    log.error("Websocket error", {"error": str(msg.data)})
                    break
        except asyncio.CancelledError:
            raise
        except (aiohttp.ClientError, ConnectionError) as exc:
            cause = exc
            log.error("Websocket read failed", {"error": str(exc)})
        finally:
            self._shutdown(cause)

    def _dispatch(self, raw: str) -> None:
        """Route one frame to its pending command or to the subscribers."""
        try:
            message = json.loads(raw)
        except json.JSONDecodeError:
            log.debug("Dropping non-JSON frame", {"size": len(raw)})
            return

        msg_id = message.get("id")
        if msg_id is not None:
            entry = self._pending.get(msg_id)
            if entry is None:
                log.debug("Response for unknown command id", {"id": msg_id})
                return
            method, future = entry
            if future.done():
                return
            if "error" in message:
                future.set_exception(errors.ProtocolError(method, message["error"]))
            else:
                future.set_result(message.get("result", {}))
            return

        for handler in list(self._handlers):
            try:
                handler(message)
            except Exception as exc:
                log.error(
                    "Event handler failed",
                    {"method": message.get("method"), "error": errors.get_error_message(exc)},
                )

    def _shutdown(self, cause: BaseException | None) -> None:
        """Reject every pending command and mark the transport closed."""
        for method, future in list(self._pending.values()):
            if not future.done():
                future.set_exception(errors.TransportClosedError(f"Connection closed while awaiting {method}"))
        self._pending.clear()
        if not self._closed.done():
            self._closed.set_result(cause)
