"""
Consent-control discovery and activation.

Two passes, stopping at the first click:

1. **Structural**: known consent-manager selectors, tried in order
   by a single in-page operation.
2. **Text**: button-like elements whose visible text equals one
   of the multilingual phrases for the requested action.

Not finding a control is a normal outcome and is returned as data.
"""

from __future__ import annotations

from collections.abc import Awaitable

from consentdiff.browser import page_scripts
from consentdiff.browser import transport as transport_mod
from consentdiff.consent import constants
from consentdiff.models import evidence
from consentdiff.utils import errors, logger

log = logger.create_logger("ConsentHunter")


class ConsentHunter:
    """Finds and clicks the accept or reject control on the current page."""

    def __init__(
        self,
        transport: transport_mod.CDPTransport,
        *,
        selectors: dict[evidence.PathMode, tuple[str, ...]] | None = None,
        phrases: dict[evidence.PathMode, tuple[str, ...]] | None = None,
    ) -> None:
        self._transport = transport
        self._selectors = selectors or {a: constants.selectors_for(a) for a in ("accept", "reject")}
        self._phrases = phrases or {a: constants.phrases_for(a) for a in ("accept", "reject")}

    async def find(self, action: evidence.PathMode, session: evidence.Session) -> evidence.ConsentAttempt:
        """Try each pass in order and report what happened."""
        sid = session.session_id

        selector = await self._run_pass(
            "structural",
            page_scripts.click_first_selector(self._transport, sid, self._selectors[action]),
        )
        if selector:
            log.success("Consent control clicked", {"action": action, "method": "structural", "selector": selector})
            return evidence.ConsentAttempt(
                action=action, found=True, clicked=True, method="structural", selector=selector
            )

        text = await self._run_pass(
            "text",
            page_scripts.click_by_text(self._transport, sid, self._phrases[action]),
        )
        if text:
            log.success("Consent control clicked", {"action": action, "method": "text", "text": text})
            return evidence.ConsentAttempt(action=action, found=True, clicked=True, method="text", text=text)

        log.warn("No consent control found", {"action": action})
        return evidence.ConsentAttempt.not_found(action)

    async def _run_pass(self, name: str, operation: Awaitable[str | None]) -> str | None:
        """Await one pass; evaluation failures count as no match."""
        try:
            return await operation
        except (errors.ProtocolError, errors.PageScriptError) as exc:
            log.debug(f"{name.capitalize()} pass failed", {"error": errors.get_error_message(exc)})
            return None
