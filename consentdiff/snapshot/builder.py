"""
Per-phase evidence snapshots.

A snapshot combines what the event pipeline recorded for one phase
and session with what the browser reports on demand: the context's
cookie jar, web storage and ``document.cookie`` names.  Reading is
pure; repeated builds over the same state give the same evidence.
"""

from __future__ import annotations

import time
from collections.abc import Callable

from consentdiff.browser import events, page_scripts
from consentdiff.browser import transport as transport_mod
from consentdiff.models import evidence
from consentdiff.snapshot import masking
from consentdiff.utils import errors, logger

log = logger.create_logger("Snapshot")

_READ_ERRORS = (errors.ProtocolError, errors.PageScriptError)


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


class SnapshotBuilder:
    """Assembles immutable snapshots from pipeline state and live reads."""

    def __init__(
        self,
        transport: transport_mod.CDPTransport,
        pipeline: events.EventPipeline,
        *,
        clock_ms: Callable[[], int] = _wall_clock_ms,
    ) -> None:
        self._transport = transport
        self._pipeline = pipeline
        self._clock_ms = clock_ms

    async def build(self, phase: evidence.Phase, session: evidence.Session) -> evidence.Snapshot:
        """Build the snapshot for *phase* on *session*.

        Cookie and storage read failures degrade to empty lists.
        """
        await self._pipeline.drain()

        jar = await self.read_jar(session)
        storage = await self.read_storage(session)
        document_cookies = await self.read_document_cookies(session)
        requests = self._pipeline.records_for(phase, session.session_id)
        set_cookies = self._pipeline.set_cookies_for(phase, session.session_id)

        snapshot = evidence.Snapshot(
            phase=phase,
            session_id=session.session_id,
            requests=requests,
            jar_cookies=jar,
            set_cookie_headers=set_cookies,
            storage=storage,
            document_cookies=document_cookies,
            timestamp_ms=self._clock_ms(),
        )
        log.info(
            "Snapshot built",
            {
                "phase": phase,
                "requests": len(requests),
                "jarCookies": len(jar),
                "setCookies": len(set_cookies),
                "storage": len(storage),
            },
        )
        return snapshot

    async def read_jar(self, session: evidence.Session) -> list[evidence.JarCookie]:
        """Cookies persisted in the session's browser context."""
        try:
            result = await self._transport.send(
                "Storage.getCookies", {"browserContextId": session.context_id}
            )
        except _READ_ERRORS as exc:
            log.warn("Cookie jar read failed", {"error": errors.get_error_message(exc)})
            return []
        return [evidence.JarCookie.from_protocol(raw) for raw in result.get("cookies", [])]

    async def read_storage(self, session: evidence.Session) -> list[evidence.StorageItem]:
        """localStorage and sessionStorage entries with sensitive values masked."""
        try:
            stores = await page_scripts.read_storage(self._transport, session.session_id)
        except _READ_ERRORS as exc:
            log.warn("Storage read failed", {"error": errors.get_error_message(exc)})
            return []

        items: list[evidence.StorageItem] = []
        for kind in ("local", "session"):
            for key, raw_value in stores[kind].items():
                value, masked = masking.mask_storage_value(raw_value)
                items.append(evidence.StorageItem(kind=kind, key=key, value=value, masked=masked))
        return items

    async def read_document_cookies(self, session: evidence.Session) -> list[str]:
        try:
            return await page_scripts.read_document_cookies(self._transport, session.session_id)
        except _READ_ERRORS as exc:
            log.debug("document.cookie read failed", {"error": errors.get_error_message(exc)})
            return []
