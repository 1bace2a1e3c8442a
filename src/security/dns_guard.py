"""
DNS-rebind guard.

The static guard only validates the *name*.  This module resolves
what the name currently points to and fails closed when any A or
AAAA record is in a private or reserved range.  It runs once before
the browser is launched and again against the address the browser
actually landed on after redirects.

Both address families are looked up as independent attempts bounded
by one shared deadline; the result is the union of whichever
attempts succeeded in time.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import dns.asyncresolver
import dns.exception
import pydantic

from src.security import url_guard
from src.utils import errors, logger
from src.utils import url as url_mod

log = logger.create_logger("DnsGuard")

DNS_TIMEOUT_SECONDS = 5.0

RECORD_TYPES = ("A", "AAAA")

Lookup = Callable[[str, str], Awaitable[list[str]]]


class RebindCheck(pydantic.BaseModel):
    """Outcome of a rebind check: safe, or unsafe with a taxonomy code."""

    safe: bool
    code: errors.ErrorKind | None = None
    reason: str | None = None
    addresses: list[str] = pydantic.Field(default_factory=list)


class FamilyResolution(pydantic.BaseModel):
    """One address-family lookup: its addresses or why it failed."""

    record_type: str
    addresses: list[str] = pydantic.Field(default_factory=list)
    error: str | None = None


async def dnspython_lookup(hostname: str, record_type: str) -> list[str]:
    """Resolve *record_type* records for *hostname* with dnspython."""
    answer = await dns.asyncresolver.resolve(hostname, record_type)
    return [rdata.to_text() for rdata in answer]


async def _resolve_family(lookup: Lookup, hostname: str, record_type: str) -> FamilyResolution:
    try:
        addresses = await lookup(hostname, record_type)
    except (dns.exception.DNSException, OSError) as exc:
        return FamilyResolution(record_type=record_type, error=errors.get_error_message(exc))
    return FamilyResolution(record_type=record_type, addresses=list(addresses))


async def resolve_addresses(
    hostname: str,
    timeout: float = DNS_TIMEOUT_SECONDS,
    lookup: Lookup | None = None,
) -> list[FamilyResolution]:
    """Look up every record type concurrently; keep what finished in time.

    Lookups still pending at the deadline are cancelled and reported
    as timed out.  Nothing here raises for resolution failures.
    """
    lookup = lookup or dnspython_lookup
    tasks = {
        asyncio.ensure_future(_resolve_family(lookup, hostname, record_type)): record_type
        for record_type in RECORD_TYPES
    }
    done, pending = await asyncio.wait(tasks, timeout=timeout)

    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)

    resolutions: list[FamilyResolution] = []
    for task, record_type in tasks.items():
        if task in done:
            resolutions.append(task.result())
        else:
            resolutions.append(FamilyResolution(record_type=record_type, error="timeout"))
    return resolutions


async def check_rebind(
    hostname: str,
    timeout: float = DNS_TIMEOUT_SECONDS,
    lookup: Lookup | None = None,
) -> RebindCheck:
    """Resolve *hostname* and decide whether it is safe to fetch.

    Returns ``dns_failed`` when nothing resolved before *timeout*, and
    ``blocked_url`` when any resolved address is private or reserved.
    """
    resolutions = await resolve_addresses(hostname, timeout, lookup)
    addresses = [addr for res in resolutions for addr in res.addresses]

    if not addresses:
        failures = ", ".join(f"{res.record_type}={res.error}" for res in resolutions if res.error)
        log.warn("DNS resolution produced no addresses", {"hostname": hostname, "failures": failures})
        return RebindCheck(
            safe=False,
            code="dns_failed",
            reason=f'DNS resolution failed: no addresses found for "{hostname}" ({failures or "empty answer"})',
        )

    for address in addresses:
        if url_guard.is_private_ip(address):
            log.warn("Hostname resolves to a private address", {"hostname": hostname, "address": address})
            return RebindCheck(
                safe=False,
                code="blocked_url",
                reason=f'Blocked: "{hostname}" resolves to a private address ({address})',
                addresses=addresses,
            )

    log.debug("DNS check passed", {"hostname": hostname, "addresses": addresses})
    return RebindCheck(safe=True, addresses=addresses)


async def ensure_not_rebound(
    hostname: str,
    timeout: float = DNS_TIMEOUT_SECONDS,
    lookup: Lookup | None = None,
) -> list[str]:
    """Like :func:`check_rebind` but raises on an unsafe result.

    Raises:
        errors.ScanError: with the check's ``dns_failed``/``blocked_url`` code.
    """
    result = await check_rebind(hostname, timeout, lookup)
    if not result.safe:
        raise errors.ScanError(result.code or "blocked_url", result.reason or "DNS check failed")
    return result.addresses


async def check_landing(
    final_url: str,
    original_host: str,
    server_address: str | None = None,
    timeout: float = DNS_TIMEOUT_SECONDS,
    lookup: Lookup | None = None,
) -> None:
    """Re-validate where the browser actually ended up after redirects.

    Applies the static host rules to the landed host, checks the
    remote address the main document was served from, and re-resolves
    the landed host when a redirect moved off the original host.

    Raises:
        errors.ScanError: ``blocked_url`` when the landing is unsafe.
    """
    if not final_url.lower().startswith(("http://", "https://")):
        return

    landed_host = url_mod.extract_hostname(final_url)
    if not landed_host:
        raise errors.ScanError("blocked_url", f"Redirect to unparseable address blocked: {final_url}")

    try:
        url_guard.check_host(landed_host)
    except errors.ScanError as exc:
        raise errors.ScanError("blocked_url", f"Redirect to blocked address: {final_url}") from exc

    if server_address and url_guard.is_private_ip(server_address):
        raise errors.ScanError(
            "blocked_url",
            f"Blocked: page was served from a private address ({server_address}) for {final_url}",
        )

    if landed_host != original_host.lower():
        result = await check_rebind(landed_host, timeout, lookup)
        if not result.safe and result.code == "blocked_url":
            raise errors.ScanError("blocked_url", f"Redirect to blocked address: {final_url} ({result.reason})")
        if not result.safe:
            log.warn("Landing host could not be re-resolved", {"host": landed_host, "reason": result.reason})
