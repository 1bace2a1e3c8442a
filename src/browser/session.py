"""
Browser session management for isolated privacy scans.
Each BrowserSession owns its own Playwright driver, browser and
context, so no cookies or cache leak between scan targets.  The
session is an async context manager: leaving the block always tears
everything down, whether the scan succeeded, failed or was
cancelled by a timeout.
"""

from __future__ import annotations

import asyncio
import dataclasses

from playwright import async_api

from src.config import ScannerSettings
from src.models import scan
from src.security import url_guard
from src.utils import errors, logger
from src.utils import url as url_mod

log = logger.create_logger("BrowserSession")

# ============================================================================
# Constants
# ============================================================================

MAX_TRACKED_REQUESTS = 5000

# Resource types aborted before they hit the network.
BLOCKED_RESOURCE_TYPES = frozenset({"media"})

_NAME_NOT_RESOLVED_MARKERS = ("net::ERR_NAME_NOT_RESOLVED", "ENOTFOUND")
_BLOCKED_MARKERS = ("net::ERR_BLOCKED_BY_CLIENT",)


@dataclasses.dataclass
class NavigationOutcome:
    """Where the main document ended up after redirects."""

    final_url: str
    http_status: int | None
    server_address: str | None


def classify_navigation_error(error: BaseException) -> errors.ScanError:
    """Map a raw engine navigation failure into the scan error taxonomy."""
    msg = errors.get_error_message(error)
    if isinstance(error, async_api.TimeoutError) or "timeout" in msg.lower():
        return errors.ScanError("navigation_timeout", f"Page did not respond in time: {msg}")
    if any(marker in msg for marker in _NAME_NOT_RESOLVED_MARKERS):
        return errors.ScanError("dns_failed", f"Domain not reachable: {msg}")
    if any(marker in msg for marker in _BLOCKED_MARKERS):
        return errors.ScanError("blocked_url", f"Navigation to a blocked address was aborted: {msg}")
    return errors.ScanError("browser_failed", f"Navigation failed: {msg}")


class BrowserSession:
    """
    Manages an isolated, sandboxed browser for a single scan.
    """

    def __init__(self, settings: ScannerSettings) -> None:
        """Initialise an unlaunched session with empty capture state."""
        self._settings = settings
        self._playwright: async_api.Playwright | None = None
        self._browser: async_api.Browser | None = None
        self._context: async_api.BrowserContext | None = None
        self._page: async_api.Page | None = None
        self._request_urls: list[str] = []
        self._closed = False

    async def __aenter__(self) -> BrowserSession:
        try:
            await self.launch()
        except BaseException:
            await self.close()
            raise
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ==========================================================================
    # State Getters
    # ==========================================================================

    @property
    def closed(self) -> bool:
        """True once every browser resource has been released."""
        return self._closed

    def get_request_urls(self) -> list[str]:
        """Every outbound request URL observed so far, in order."""
        return list(self._request_urls)

    def get_current_url(self) -> str:
        """URL of the document currently shown, or an empty string."""
        return self._page.url if self._page else ""

    # ==========================================================================
    # Browser Lifecycle
    # ==========================================================================

    async def launch(self) -> None:
        """Start Chromium with a fresh context and attach the listeners.

        Raises:
            errors.ScanError: ``browser_failed`` when the engine cannot start.
        """
        log.info("Launching browser", {"sandbox": self._settings.browser_sandbox})
        try:
            await self._start()
        except async_api.Error as error:
            raise errors.ScanError("browser_failed", f"Browser launch failed: {error}") from error

    async def _start(self) -> None:
        settings = self._settings
        self._playwright = await async_api.async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=True,
            chromium_sandbox=settings.browser_sandbox,
            args=["--disable-dev-shm-usage"],
        )
        self._context = await self._browser.new_context(
            user_agent=settings.user_agent,
            locale=settings.browser_locale,
        )
        self._context.set_default_navigation_timeout(settings.navigation_timeout_seconds * 1000)
        self._context.set_default_timeout(settings.action_timeout_seconds * 1000)

        await self._context.route("**/*", self._filter_route)

        self._page = await self._context.new_page()
        # Subscribe before navigation so nothing issued during load is missed.
        self._page.on("request", self._on_request)

    async def _filter_route(self, route: async_api.Route) -> None:
        """Abort large media and any request aimed at a private host."""
        request = route.request
        if request.resource_type in BLOCKED_RESOURCE_TYPES:
            await route.abort()
            return

        host = url_mod.extract_hostname(request.url)
        if host and (
            url_guard.is_reserved_hostname(host)
            or (url_guard.is_ip_literal(host) and url_guard.is_private_ip(host))
        ):
            log.warn("Aborted request to private host", {"url": request.url})
            await route.abort("blockedbyclient")
            return

        await route.continue_()

    def _on_request(self, request: async_api.Request) -> None:
        """Record every outbound request URL verbatim."""
        if len(self._request_urls) < MAX_TRACKED_REQUESTS:
            self._request_urls.append(request.url)
        elif len(self._request_urls) == MAX_TRACKED_REQUESTS:
            log.debug("Request tracking limit reached", {"limit": MAX_TRACKED_REQUESTS})

    # ==========================================================================
    # Navigation
    # ==========================================================================

    async def navigate(self, url: str) -> NavigationOutcome:
        """Load *url* until DOM content is ready.

        Raises:
            errors.ScanError: ``navigation_timeout``, ``dns_failed``,
                ``blocked_url`` or ``browser_failed``.
        """
        if not self._page:
            raise errors.ScanError("browser_failed", "No browser session active")

        timeout_ms = self._settings.navigation_timeout_seconds * 1000
        log.debug("Navigating", {"url": url, "timeoutMs": timeout_ms})
        try:
            response = await self._page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
        except async_api.Error as error:
            log.warn("Navigation error", {"url": url, "error": str(error)})
            raise classify_navigation_error(error) from error

        final_url = self._page.url
        if final_url != url:
            log.info("Redirected", {"from": url, "to": final_url})

        return NavigationOutcome(
            final_url=final_url,
            http_status=response.status if response else None,
            server_address=await self._server_address(response),
        )

    @staticmethod
    async def _server_address(response: async_api.Response | None) -> str | None:
        """Remote IP the main document was served from, when known."""
        if response is None:
            return None
        try:
            addr = await response.server_addr()
        except async_api.Error as exc:
            log.debug("Server address unavailable", {"error": str(exc)})
            return None
        return addr["ipAddress"] if addr else None

    async def observe(self, seconds: float) -> None:
        """Hold the page open so late-firing trackers are captured.

        Uses ``asyncio.sleep`` rather than Playwright's
        ``page.wait_for_timeout``, which is meant for debugging.
        """
        log.debug("Observing page", {"seconds": seconds})
        await asyncio.sleep(seconds)

    # ==========================================================================
    # Data Capture
    # ==========================================================================

    async def collect_cookies(self) -> list[scan.ObservedCookie]:
        """All cookies visible to the context, in the order the browser reports them."""
        if not self._context:
            return []
        try:
            raw = await self._context.cookies()
        except async_api.Error as error:
            raise errors.ScanError("browser_failed", f"Cookie capture failed: {error}") from error
        log.debug("Captured cookies", {"count": len(raw)})
        return [
            scan.ObservedCookie(
                name=cookie.get("name", ""),
                domain=cookie.get("domain", ""),
                value=cookie.get("value", ""),
            )
            for cookie in raw
        ]

    async def get_page_content(self) -> str:
        """Full rendered HTML of the current document."""
        if not self._page:
            raise errors.ScanError("browser_failed", "No browser session active")
        try:
            return await self._page.content()
        except async_api.Error as error:
            raise errors.ScanError("browser_failed", f"Page content unavailable: {error}") from error

    # ==========================================================================
    # Cleanup
    # ==========================================================================

    async def close(self) -> None:
        """Close the browser and release all resources. Safe to call twice."""
        log.debug("Closing browser session")
        if self._page:
            self._page.remove_listener("request", self._on_request)
            self._page = None

        if self._context:
            try:
                await self._context.close()
            except async_api.Error as exc:
                log.debug("Context close error (non-fatal)", {"error": str(exc)})
            self._context = None

        if self._browser:
            try:
                await self._browser.close()
            except async_api.Error as exc:
                log.debug("Browser close error (non-fatal)", {"error": str(exc)})
            self._browser = None

        if self._playwright:
            try:
                await self._playwright.stop()
            except async_api.Error as exc:
                log.debug("Playwright stop error (non-fatal)", {"error": str(exc)})
            self._playwright = None

        self._closed = True
        log.debug("Browser session closed")
