"""Third-party host enumeration and parameter-carrying tracker requests."""

from __future__ import annotations

from consentdiff.models import analysis, evidence
from consentdiff.utils import url as url_mod


MAX_SAMPLE_URLS = 3


def analyze_third_parties(
    requests: list[evidence.RequestRecord],
    main_domain: str,
) -> list[analysis.ThirdPartyHost]:
    """Group requests to hosts outside *main_domain*'s registrable domain."""
    base = url_mod.get_base_domain(main_domain)
    hosts: dict[str, analysis.ThirdPartyHost] = {}

    for request in requests:
        host = url_mod.extract_domain(request.url)
        if host == "unknown" or url_mod.get_base_domain(host) == base:
            continue
        entry = hosts.setdefault(host, analysis.ThirdPartyHost(host=host))
        entry.count += 1
        if len(entry.sample_urls) < MAX_SAMPLE_URLS:
            entry.sample_urls.append(request.url)

    return list(hosts.values())


def _param_names(request: evidence.RequestRecord) -> list[str]:
    if not request.has_params:
        return []
    names = request.query_names()
    if isinstance(request.post_data_parsed, dict):
        names.extend(k for k in request.post_data_parsed if k not in names)
    elif request.post_data and not names:
        names.append("<body>")
    return names


def tracker_beacons(
    requests: list[evidence.RequestRecord],
    main_domain: str,
) -> list[analysis.TrackerBeacon]:
    """Third-party requests that sent query or body parameters."""
    base = url_mod.get_base_domain(main_domain)
    beacons: list[analysis.TrackerBeacon] = []
    for request in requests:
        host = url_mod.extract_domain(request.url)
        if host == "unknown" or url_mod.get_base_domain(host) == base:
            continue
        params = _param_names(request)
        if params:
            beacons.append(analysis.TrackerBeacon(host=host, url=request.url, params=params))
    return beacons
