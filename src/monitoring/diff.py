"""
Scan diffing for monitoring alerts.

Only regressions are reported: an indicator switching on, a legal
page disappearing, a new external host or a new cookie name.
Improvements are recognised but deliberately never surfaced.
"""

from __future__ import annotations

from src.models import monitoring, scan

# (field, label) for indicators where False -> True is a regression.
RISK_INDICATORS: tuple[tuple[str, str], ...] = (
    ("uses_external_fonts", "External fonts (Google Fonts requests detected)"),
    ("uses_analytics", "Google Analytics / Tag Manager detected"),
    ("uses_social_pixel", "Facebook Pixel detected"),
    ("sets_tracking_cookie", "Tracking cookies set (_ga, _gid, _fbp)"),
)

# (field, label) for required pages where True -> False is a regression.
REQUIRED_PAGES: tuple[tuple[str, str], ...] = (
    ("has_legal_notice", "Legal notice (imprint) no longer found"),
    ("has_privacy_policy", "Privacy policy no longer found"),
)


def new_risk_flags(previous: scan.ScanResult, current: scan.ScanResult) -> list[str]:
    """Labels of indicators that got worse, in fixed indicator order."""
    flags = [
        label
        for field, label in RISK_INDICATORS
        if not getattr(previous, field) and getattr(current, field)
    ]
    flags.extend(
        label
        for field, label in REQUIRED_PAGES
        if getattr(previous, field) and not getattr(current, field)
    )
    return flags


def improvements(previous: scan.ScanResult, current: scan.ScanResult) -> list[str]:
    """Field names that got better. Logged only, never alerted on."""
    better = [field for field, _ in RISK_INDICATORS if getattr(previous, field) and not getattr(current, field)]
    better.extend(field for field, _ in REQUIRED_PAGES if not getattr(previous, field) and getattr(current, field))
    return better


def new_external_hosts(previous: scan.ScanResult, current: scan.ScanResult) -> list[str]:
    """Hosts contacted now that were not contacted before, sorted."""
    return sorted(set(current.external_hosts) - set(previous.external_hosts))


def new_cookies(previous: scan.ScanResult, current: scan.ScanResult) -> list[str]:
    """``"name (domain)"`` for cookies whose name is new, in first-seen order."""
    known = {cookie.name for cookie in previous.cookies}
    seen: set[tuple[str, str]] = set()
    labels: list[str] = []
    for cookie in current.cookies:
        if cookie.name in known or (cookie.name, cookie.domain) in seen:
            continue
        seen.add((cookie.name, cookie.domain))
        labels.append(f"{cookie.name} ({cookie.domain})")
    return labels


def diff_scans(previous: scan.ScanResult, current: scan.ScanResult) -> monitoring.ScanDiff:
    """Compare two results of the same site and report new risk only."""
    hosts = new_external_hosts(previous, current)
    flags = new_risk_flags(previous, current)
    cookies = new_cookies(previous, current)
    return monitoring.ScanDiff(
        has_changes=bool(hosts or flags or cookies),
        new_external_hosts=hosts,
        new_risk_flags=flags,
        new_cookies=cookies,
    )
