"""
Single-page privacy scan.

Runs the strictly sequential chain for one target:

1. static URL guard (no network I/O)
2. pre-flight DNS-rebind guard
3. isolated browser load with request and cookie capture
4. landed-address re-check after redirects
5. fixed observation window for late trackers
6. indicator extraction into a ``ScanResult``

The browser session is released on every exit path, including
cancellation by an outer timeout.
"""

from __future__ import annotations

import time
from collections.abc import Callable

from src.analysis import indicators
from src.browser import session as browser_session
from src.config import ScannerSettings
from src.models import scan
from src.security import dns_guard, url_guard
from src.utils import logger
from src.utils import url as url_mod

log = logger.create_logger("Scan")

SessionFactory = Callable[[ScannerSettings], browser_session.BrowserSession]


def build_result(
    target: scan.ValidatedTarget,
    final_url: str,
    http_status: int | None,
    request_urls: list[str],
    cookies: list[scan.ObservedCookie],
    html: str,
    duration_ms: int,
) -> scan.ScanResult:
    """Derive indicators and counts from raw capture data."""
    flags = indicators.request_indicators(request_urls)
    external_hosts = url_mod.collect_external_hosts(request_urls, target.hostname)

    return scan.ScanResult(
        uses_external_fonts=flags["uses_external_fonts"],
        uses_analytics=flags["uses_analytics"],
        uses_social_pixel=flags["uses_social_pixel"],
        sets_tracking_cookie=indicators.sets_tracking_cookie(c.name for c in cookies),
        has_legal_notice=indicators.has_legal_notice(html),
        has_privacy_policy=indicators.has_privacy_policy(html),
        external_hosts=external_hosts,
        cookies=cookies,
        meta=scan.ScanMeta(
            final_url=final_url,
            http_status=http_status,
            duration_ms=duration_ms,
            request_count=len(request_urls),
            external_host_count=len(external_hosts),
            cookie_count=len(cookies),
        ),
    )


async def run_scan(
    raw_url: str,
    settings: ScannerSettings,
    lookup: dns_guard.Lookup | None = None,
    session_factory: SessionFactory = browser_session.BrowserSession,
) -> scan.ScanResult:
    """Validate, load and analyse *raw_url*.

    Raises:
        errors.ScanError: with the taxonomy code of whichever step failed.
    """
    started = time.monotonic()

    target = url_guard.normalize_url(raw_url, allow_dev_ports=settings.allow_dev_ports)
    await dns_guard.ensure_not_rebound(target.hostname, settings.dns_timeout_seconds, lookup)

    log.start_timer("browser-scan")
    async with session_factory(settings) as session:
        outcome = await session.navigate(target.url)
        await dns_guard.check_landing(
            outcome.final_url,
            target.hostname,
            outcome.server_address,
            settings.dns_timeout_seconds,
            lookup,
        )

        await session.observe(settings.observation_window_seconds)

        # Script-driven redirects can fire during the observation window.
        final_url = session.get_current_url() or outcome.final_url
        if final_url != outcome.final_url:
            await dns_guard.check_landing(
                final_url, target.hostname, None, settings.dns_timeout_seconds, lookup
            )

        cookies = await session.collect_cookies()
        html = await session.get_page_content()
        request_urls = session.get_request_urls()
    log.end_timer("browser-scan", "Browser scan finished")

    result = build_result(
        target,
        final_url=final_url,
        http_status=outcome.http_status,
        request_urls=request_urls,
        cookies=cookies,
        html=html,
        duration_ms=int((time.monotonic() - started) * 1000),
    )
    log.info("Scan result", {
        "externalHosts": result.meta.external_host_count,
        "cookies": result.meta.cookie_count,
        "requests": result.meta.request_count,
    })
    return result
