"""
Privacy indicator rules.

Each indicator is decided by an ordered list of ``IndicatorRule``
entries evaluated against the newline-joined corpus of every request
URL the page issued, by cookie-name prefixes, or by literal and regex
patterns over the lower-cased rendered HTML.  The rule tables are data
so they can be extended and tested without touching control flow.
"""

from __future__ import annotations

import dataclasses
import re
from collections.abc import Iterable
from typing import Literal

IndicatorName = Literal[
    "uses_external_fonts",
    "uses_analytics",
    "uses_social_pixel",
    "sets_tracking_cookie",
    "has_legal_notice",
    "has_privacy_policy",
]


@dataclasses.dataclass(frozen=True)
class IndicatorRule:
    """A substring matcher that raises one indicator."""

    indicator: IndicatorName
    category: str
    needle: str

    def matches(self, corpus: str) -> bool:
        return self.needle in corpus


# ============================================================================
# Request URL Rules
# ============================================================================

REQUEST_RULES: tuple[IndicatorRule, ...] = (
    IndicatorRule("uses_external_fonts", "Fonts", "fonts.googleapis.com"),
    IndicatorRule("uses_external_fonts", "Fonts", "fonts.gstatic.com"),
    IndicatorRule("uses_analytics", "Analytics", "googletagmanager.com"),
    IndicatorRule("uses_analytics", "Analytics", "google-analytics.com"),
    IndicatorRule("uses_analytics", "Analytics", "gtag/js"),
    IndicatorRule("uses_social_pixel", "Social", "connect.facebook.net"),
    IndicatorRule("uses_social_pixel", "Social", "fbevents.js"),
)

# ============================================================================
# Cookie Rules
# ============================================================================

TRACKING_COOKIE_PREFIXES: tuple[str, ...] = ("_ga", "_gid", "_fbp", "_fbc")

# ============================================================================
# Legal Page Patterns (matched against lower-cased HTML)
# ============================================================================

LEGAL_NOTICE_LITERALS: tuple[str, ...] = (
    ">impressum<",
    'href="/impressum',
    'href="./impressum',
    ">imprint<",
    ">legal notice<",
)
LEGAL_NOTICE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r">\s*impressum\s*<"),
    re.compile(r">\s*imprint\s*<"),
)

PRIVACY_POLICY_LITERALS: tuple[str, ...] = (
    ">datenschutz<",
    'href="/datenschutz',
    'href="./datenschutz',
    "datenschutzerklärung",
    "datenschutzerkl&auml;rung",
    ">privacy policy<",
    'href="/privacy',
)
PRIVACY_POLICY_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r">\s*datenschutz\s*<"),
    re.compile(r">\s*privacy\s+policy\s*<"),
)


# ============================================================================
# Evaluation
# ============================================================================


def build_request_corpus(request_urls: Iterable[str]) -> str:
    """Join request URLs into the single corpus the rules search."""
    return "\n".join(request_urls)


def matched_rules(corpus: str, rules: Iterable[IndicatorRule] = REQUEST_RULES) -> list[IndicatorRule]:
    """Rules whose needle occurs in *corpus*, in rule order."""
    return [rule for rule in rules if rule.matches(corpus)]


def request_indicators(request_urls: Iterable[str]) -> dict[IndicatorName, bool]:
    """Fonts/analytics/social-pixel flags derived from request URLs."""
    corpus = build_request_corpus(request_urls)
    hits = {rule.indicator for rule in matched_rules(corpus)}
    return {
        "uses_external_fonts": "uses_external_fonts" in hits,
        "uses_analytics": "uses_analytics" in hits,
        "uses_social_pixel": "uses_social_pixel" in hits,
    }


def is_tracking_cookie(name: str) -> bool:
    """Whether a cookie name starts with a known tracking prefix."""
    return name.startswith(TRACKING_COOKIE_PREFIXES)


def sets_tracking_cookie(cookie_names: Iterable[str]) -> bool:
    return any(is_tracking_cookie(name) for name in cookie_names)


def _html_matches(html: str, literals: tuple[str, ...], patterns: tuple[re.Pattern[str], ...]) -> bool:
    if any(literal in html for literal in literals):
        return True
    return any(pattern.search(html) for pattern in patterns)


def has_legal_notice(html: str) -> bool:
    """Whether the page links to or shows an imprint / legal notice."""
    return _html_matches(html.lower(), LEGAL_NOTICE_LITERALS, LEGAL_NOTICE_PATTERNS)


def has_privacy_policy(html: str) -> bool:
    """Whether the page links to or shows a privacy policy."""
    return _html_matches(html.lower(), PRIVACY_POLICY_LITERALS, PRIVACY_POLICY_PATTERNS)
