"""
Structured in-page operations.

Each operation is a fixed JavaScript function; callers only supply
JSON-encoded arguments, so page-side code is never assembled from
strings at runtime.  Results come back by value.
"""

from __future__ import annotations

import json
from typing import Any

from consentdiff.browser import transport as transport_mod
from consentdiff.utils import errors

# ============================================================================
# Page-side functions
# ============================================================================

READ_STORAGE_JS = r"""
() => {
    const dump = (store) => {
        const out = {};
        try {
            for (let i = 0; i < store.length; i++) {
                const key = store.key(i);
                if (key !== null) out[key] = String(store.getItem(key));
            }
        } catch (e) {}
        return out;
    };
    return { local: dump(window.localStorage), session: dump(window.sessionStorage) };
}
"""

READ_DOCUMENT_COOKIES_JS = r"""
() => {
    try {
        return document.cookie
            .split(';')
            .map((part) => part.split('=')[0].trim())
            .filter((name) => name.length > 0);
    } catch (e) {
        return [];
    }
}
"""

CURRENT_URL_JS = r"""
() => String(location.href)
"""

# Tries selectors in order; the first visible match is clicked.
CLICK_FIRST_SELECTOR_JS = r"""
(selectors) => {
    const visible = (el) => {
        const rect = el.getBoundingClientRect();
        const style = window.getComputedStyle(el);
        return rect.width > 0 && rect.height > 0
            && style.visibility !== 'hidden' && style.display !== 'none';
    };
    for (const selector of selectors) {
        let el = null;
        try {
            el = document.querySelector(selector);
        } catch (e) {
            continue;
        }
        if (el && visible(el)) {
            el.click();
            return selector;
        }
    }
    return null;
}
"""

# Exact match of normalized element text against lower-cased phrases.
CLICK_BY_TEXT_JS = r"""
(phrases) => {
    const wanted = new Set(phrases);
    const normalize = (s) => (s || '').replace(/\s+/g, ' ').trim().toLowerCase();
    const candidates = document.querySelectorAll(
        'button, a, [role="button"], input[type="button"], input[type="submit"]'
    );
    for (const el of candidates) {
        const labels = [el.innerText, el.textContent, el.value, el.getAttribute('aria-label')];
        for (const label of labels) {
            const text = normalize(label);
            if (text && wanted.has(text)) {
                el.click();
                return text;
            }
        }
    }
    return null;
}
"""


def normalize_phrase(text: str) -> str:
    """Trim, collapse whitespace and lower-case *text* the way the page does."""
    return " ".join(text.split()).lower()


def build_expression(function_source: str, *args: Any) -> str:
    """Return a call expression for *function_source* with JSON-encoded *args*."""
    encoded = ", ".join(json.dumps(arg, ensure_ascii=False) for arg in args)
    return f"({function_source.strip()})({encoded})"


async def evaluate(
    transport: transport_mod.CDPTransport,
    session_id: str,
    operation: str,
    function_source: str,
    *args: Any,
) -> Any:
    """Run one page-side function and return its value.

    Raises:
        PageScriptError: The function threw inside the page.
        ProtocolError: The browser rejected the evaluation.
    """
    result = await transport.send(
        "Runtime.evaluate",
        {
            "expression": build_expression(function_source, *args),
            "returnByValue": True,
            "awaitPromise": True,
        },
        session_id,
    )
    details = result.get("exceptionDetails")
    if details:
        exception = details.get("exception") or {}
        description = exception.get("description") or details.get("text") or "unknown exception"
        raise errors.PageScriptError(operation, str(description))
    return (result.get("result") or {}).get("value")


# ============================================================================
# Operations
# ============================================================================


async def read_storage(transport: transport_mod.CDPTransport, session_id: str) -> dict[str, dict[str, str]]:
    """Return ``{"local": {...}, "session": {...}}`` for the page's origin."""
    value = await evaluate(transport, session_id, "read_storage", READ_STORAGE_JS)
    if not isinstance(value, dict):
        return {"local": {}, "session": {}}
    return {
        "local": dict(value.get("local") or {}),
        "session": dict(value.get("session") or {}),
    }


async def read_document_cookies(transport: transport_mod.CDPTransport, session_id: str) -> list[str]:
    """Names of the cookies visible to page scripts."""
    value = await evaluate(transport, session_id, "read_document_cookies", READ_DOCUMENT_COOKIES_JS)
    return [str(name) for name in value] if isinstance(value, list) else []


async def current_url(transport: transport_mod.CDPTransport, session_id: str) -> str:
    value = await evaluate(transport, session_id, "current_url", CURRENT_URL_JS)
    return str(value) if value else ""


async def click_first_selector(
    transport: transport_mod.CDPTransport,
    session_id: str,
    selectors: list[str] | tuple[str, ...],
) -> str | None:
    """Click the first visible element matching *selectors*, in order.

    Returns:
        The selector that was clicked, or ``None``.
    """
    value = await evaluate(transport, session_id, "click_first_selector", CLICK_FIRST_SELECTOR_JS, list(selectors))
    return str(value) if value else None


async def click_by_text(
    transport: transport_mod.CDPTransport,
    session_id: str,
    phrases: list[str] | tuple[str, ...],
) -> str | None:
    """Click the first button-like element whose text equals one of *phrases*.

    Returns:
        The normalized text that matched, or ``None``.
    """
    normalized = [normalize_phrase(p) for p in phrases if p.strip()]
    value = await evaluate(transport, session_id, "click_by_text", CLICK_BY_TEXT_JS, normalized)
    return str(value) if value else None
