"""Shared fixtures for the test suite."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import dns.exception
import pytest

from src.config import ScannerSettings
from src.jobs import repository
from src.models import scan
from src.security import dns_guard

# ── Settings ────────────────────────────────────────────────────


@pytest.fixture()
def settings() -> ScannerSettings:
    """Settings with short timeouts and no observation wait."""
    return ScannerSettings(
        environment="development",
        dns_timeout_seconds=1.0,
        navigation_timeout_seconds=2.0,
        observation_window_seconds=0.0,
        job_timeout_seconds=5.0,
        resend_api_key="",
        monitor_cron_secret="",
    )


# ── DNS Doubles ─────────────────────────────────────────────────


def _make_lookup(
    records: dict[str, dict[str, list[str]]],
) -> Callable[..., Any]:
    """A resolver double: ``records[hostname][record_type]``.

    Missing hosts or record types raise a DNS error, like NXDOMAIN
    or an empty answer would.
    """

    async def lookup(hostname: str, record_type: str) -> list[str]:
        by_type = records.get(hostname, {})
        if record_type not in by_type:
            raise dns.exception.DNSException(f"no {record_type} record for {hostname}")
        return list(by_type[record_type])

    return lookup


@pytest.fixture()
def public_lookup() -> dns_guard.Lookup:
    """Every name resolves to one public IPv4 address."""

    async def lookup(hostname: str, record_type: str) -> list[str]:
        if record_type == "A":
            return ["93.184.216.34"]
        raise dns.exception.DNSException("no AAAA record")

    return lookup


# ── Scan Result Factories ───────────────────────────────────────


def _make_result(
    *,
    uses_external_fonts: bool = False,
    uses_analytics: bool = False,
    uses_social_pixel: bool = False,
    sets_tracking_cookie: bool = False,
    has_legal_notice: bool = True,
    has_privacy_policy: bool = True,
    external_hosts: list[str] | None = None,
    cookies: list[tuple[str, str]] | None = None,
    final_url: str = "https://example.com/",
) -> scan.ScanResult:
    """Build a consistent ``ScanResult`` from just the interesting fields."""
    hosts = external_hosts or []
    observed = [scan.ObservedCookie(name=name, domain=domain, value="x") for name, domain in cookies or []]
    return scan.ScanResult(
        uses_external_fonts=uses_external_fonts,
        uses_analytics=uses_analytics,
        uses_social_pixel=uses_social_pixel,
        sets_tracking_cookie=sets_tracking_cookie,
        has_legal_notice=has_legal_notice,
        has_privacy_policy=has_privacy_policy,
        external_hosts=hosts,
        cookies=observed,
        meta=scan.ScanMeta(
            final_url=final_url,
            http_status=200,
            duration_ms=1200,
            request_count=len(hosts) + 1,
            external_host_count=len(set(hosts)),
            cookie_count=len(observed),
        ),
    )


@pytest.fixture()
def clean_result() -> scan.ScanResult:
    """A site with no trackers and both legal pages."""
    return _make_result()


@pytest.fixture()
def tracked_result() -> scan.ScanResult:
    """A site with every tracker present."""
    return _make_result(
        uses_external_fonts=True,
        uses_analytics=True,
        uses_social_pixel=True,
        sets_tracking_cookie=True,
        external_hosts=["connect.facebook.net", "fonts.googleapis.com", "www.googletagmanager.com"],
        cookies=[("_ga", "example.com"), ("_fbp", "example.com")],
    )


# ── Repositories ────────────────────────────────────────────────


@pytest.fixture()
def jobs() -> repository.InMemoryScanRepository:
    return repository.InMemoryScanRepository()


@pytest.fixture()
def sites() -> repository.InMemoryMonitoredSiteRepository:
    return repository.InMemoryMonitoredSiteRepository()


class _FailingScanRepository(repository.InMemoryScanRepository):
    """Job store whose updates fail for the listed target statuses."""

    def __init__(self, fail_on: set[str]) -> None:
        super().__init__()
        self.fail_on = fail_on

    async def update_job(self, job_id: str, update: scan.JobUpdate) -> None:
        if update.status in self.fail_on:
            raise repository.RepositoryError(f"write failed for {update.status}")
        await super().update_job(job_id, update)


# ── Factory Fixtures ────────────────────────────────────────────


@pytest.fixture()
def make_result() -> Callable[..., scan.ScanResult]:
    """Factory for ``ScanResult`` objects; see ``_make_result``."""
    return _make_result


@pytest.fixture()
def make_lookup() -> Callable[..., Any]:
    """Factory for table-driven resolver doubles; see ``_make_lookup``."""
    return _make_lookup


@pytest.fixture()
def failing_jobs() -> Callable[[set[str]], repository.InMemoryScanRepository]:
    """Factory for job stores that refuse writes of the given statuses."""
    return _FailingScanRepository
