"""
URL and hostname helpers shared by the guards and the scan pipeline.
"""

from __future__ import annotations

from urllib import parse


def extract_hostname(url: str) -> str | None:
    """Return the lower-cased hostname of *url*, or ``None`` if it has none."""
    try:
        return parse.urlsplit(url).hostname or None
    except ValueError:
        return None


def strip_www(hostname: str) -> str:
    """Drop a single leading ``www.`` label."""
    return hostname.lower().removeprefix("www.")


def is_external_host(hostname: str, target_host: str) -> bool:
    """Whether *hostname* belongs to someone other than the scanned site.

    The target host and its ``www.`` variant count as first party;
    everything else (including other subdomains) is external.
    """
    if not hostname:
        return False
    host = hostname.lower()
    target = target_host.lower()
    return host != target and strip_www(host) != strip_www(target)


def collect_external_hosts(request_urls: list[str], target_host: str) -> list[str]:
    """Deduplicated, sorted external hostnames seen in *request_urls*."""
    hosts: set[str] = set()
    for request_url in request_urls:
        host = extract_hostname(request_url)
        if host and is_external_host(host, target_host):
            hosts.add(host)
    return sorted(hosts)
