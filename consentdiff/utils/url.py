"""
URL and domain utility functions for party classification.

Registrable domains (eTLD+1) are resolved against the public suffix
list via ``tldextract`` so multi-label suffixes such as ``co.uk`` or
``com.au`` are never mistaken for the site itself.
"""

from __future__ import annotations

import re
from urllib import parse

import tldextract

# Bundled snapshot only: a probe run must never block on fetching
# the live suffix list.
_extract = tldextract.TLDExtract(suffix_list_urls=(), cache_dir=None)


def extract_domain(url: str) -> str:
    """Extract the lower-cased hostname from a URL string."""
    try:
        parsed = parse.urlparse(url)
        return (parsed.hostname or "unknown").lower()
    except ValueError:
        return "unknown"


def normalize_domain(domain: str) -> str:
    """Lower-case a cookie domain and strip its leading dot."""
    return domain.strip().lower().lstrip(".")


def get_base_domain(domain: str) -> str:
    """Return the registrable base domain (eTLD+1) of a hostname.

    Strips a leading ``www.`` and any cookie-style leading dot.
    Hosts without a public suffix (``localhost``, bare IPs) are
    returned unchanged.

    Args:
        domain: A hostname like ``"www.example.co.uk"``.

    Returns:
        The base domain, e.g. ``"example.co.uk"``.
    """
    clean = re.sub(r"^www\.", "", normalize_domain(domain))
    if not clean:
        return clean
    parts = _extract(clean)
    if parts.domain and parts.suffix:
        return f"{parts.domain}.{parts.suffix}"
    return clean


def is_first_party(host: str, main_domain: str) -> bool:
    """Return ``True`` when *host* shares the registrable domain of *main_domain*."""
    return get_base_domain(host) == get_base_domain(main_domain)
