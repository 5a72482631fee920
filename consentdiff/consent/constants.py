"""Consent-manager selectors, phrases and cookie signatures."""

from __future__ import annotations

import re

from consentdiff.models import evidence

# Ordered: vendor-specific ids first, generic attribute matches last.
ACCEPT_SELECTORS: tuple[str, ...] = (
    "#onetrust-accept-btn-handler",  # OneTrust
    "#accept-recommended-btn-handler",  # OneTrust preference centre
    "#CybotCookiebotDialogBodyLevelButtonLevelOptinAllowAll",  # Cookiebot
    "#CybotCookiebotDialogBodyButtonAccept",  # Cookiebot
    "a[data-cb-accept]",  # Cookiebot
    ".cky-btn-accept",  # CookieYes
    "#didomi-notice-agree-button",  # Didomi
    "[data-testid='notice-accept-btn']",  # Didomi
    "[data-testid='GDPR-CTA-accept']",  # Quantcast
    ".qc-cmp2-summary-buttons button[mode='primary']",  # Quantcast
    "#cookiescript_accept",  # CookieScript
    ".cookiescript_accept",  # CookieScript
    ".osano-cm-accept-all",  # Osano
    "[data-tid='banner-accept']",  # Termly
    ".cc-allow",  # Cookie Consent (Osano OSS)
    "#tarteaucitronPersonalize2",  # tarteaucitron
    ".cookie-accept",
    "[data-testid*='accept']",
    "button[id*='accept']",
    "button[class*='accept']",
    "[id*='accept-all']",
    "[class*='accept-all']",
)

REJECT_SELECTORS: tuple[str, ...] = (
    "#onetrust-reject-all-handler",  # OneTrust
    ".ot-pc-refuse-all-handler",  # OneTrust preference centre
    "#CybotCookiebotDialogBodyButtonDecline",  # Cookiebot
    "#CybotCookiebotDialogBodyLevelButtonLevelOptinDeclineAll",  # Cookiebot
    "a[data-cb-decline]",  # Cookiebot
    ".cky-btn-reject",  # CookieYes
    "#didomi-notice-disagree-button",  # Didomi
    "[data-testid='notice-disagree-btn']",  # Didomi
    "[data-testid='GDPR-CTA-refuse']",  # Quantcast
    ".qc-cmp2-summary-buttons button[mode='secondary']",  # Quantcast
    "#cookiescript_reject",  # CookieScript
    ".cookiescript_reject",  # CookieScript
    ".osano-cm-denyAll",  # Osano
    ".osano-cm-deny",  # Osano
    "[data-tid='banner-decline']",  # Termly
    ".cc-deny",  # Cookie Consent (Osano OSS)
    "#tarteaucitronAllDenied2",  # tarteaucitron
    ".cookie-reject",
    "[data-testid*='reject']",
    "button[id*='reject']",
    "button[class*='reject']",
    "[id*='reject-all']",
    "[class*='reject-all']",
)

# Matched exactly after trimming, collapsing whitespace and lower-casing.
ACCEPT_PHRASES: tuple[str, ...] = (
    # English
    "Accept",
    "Accept all",
    "Accept all cookies",
    "Accept cookies",
    "Allow all",
    "Allow all cookies",
    "Allow cookies",
    "I accept",
    "I agree",
    "Agree",
    "Agree and close",
    "Got it",
    "OK",
    # Slovak
    "Prijať",
    "Prijať všetko",
    "Prijať všetky",
    "Prijať všetky cookies",
    "Súhlasím",
    "Povoliť všetko",
    "Povoliť všetky",
    # Czech
    "Přijmout",
    "Přijmout vše",
    "Přijmout všechny",
    "Souhlasím",
    "Povolit vše",
    "Povolit všechny",
    # German
    "Akzeptieren",
    "Alle akzeptieren",
    "Alles akzeptieren",
    "Alle Cookies akzeptieren",
    "Zustimmen",
    "Alle zulassen",
    "Einverstanden",
)

REJECT_PHRASES: tuple[str, ...] = (
    # English
    "Reject",
    "Reject all",
    "Reject all cookies",
    "Decline",
    "Decline all",
    "Deny",
    "Deny all",
    "Refuse",
    "Refuse all",
    "Only necessary",
    "Necessary only",
    "Use necessary cookies only",
    "Only essential",
    "Essential only",
    # Slovak
    "Odmietnuť",
    "Odmietnuť všetko",
    "Odmietnuť všetky",
    "Nesúhlasím",
    "Len nevyhnutné",
    "Iba nevyhnutné",
    # Czech
    "Odmítnout",
    "Odmítnout vše",
    "Odmítnout všechny",
    "Nesouhlasím",
    "Pouze nezbytné",
    # German
    "Ablehnen",
    "Alle ablehnen",
    "Alles ablehnen",
    "Nur notwendige",
    "Nur notwendige Cookies",
    "Nur essenzielle Cookies",
)

# Cookies written by well-known consent managers.
CMP_COOKIE_RE: re.Pattern[str] = re.compile(
    r"CookieScriptConsent|OptanonConsent|euconsent-v2|CookieConsent|tarteaucitron|cookieyes-consent",
)

CMP_COOKIE_VALUE_MAX = 100


def selectors_for(action: evidence.PathMode) -> tuple[str, ...]:
    """Structural selectors for *action*, in priority order."""
    return ACCEPT_SELECTORS if action == "accept" else REJECT_SELECTORS


def phrases_for(action: evidence.PathMode) -> tuple[str, ...]:
    """Visible-text phrases for *action*."""
    return ACCEPT_PHRASES if action == "accept" else REJECT_PHRASES
