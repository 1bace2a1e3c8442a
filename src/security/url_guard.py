"""
Static URL normalisation and SSRF guard.

Pure, synchronous checks that run before any network I/O.  A raw
user string is turned into a canonical absolute URL, or rejected
with ``blocked_url`` when its structure alone is unsafe:

- scheme other than http/https
- embedded credentials (``user:pass@host``)
- a port other than 80/443 (8080/8443 when dev ports are enabled)
- any IP literal, public or private, in any notation
- ``localhost`` and the reserved ``.local``, ``.internal`` and
  ``.localhost`` suffixes

IP literals are refused outright: a public literal can still reach
cloud metadata endpoints from inside a VM.
"""

from __future__ import annotations

import ipaddress
import re
from urllib import parse

from src.models import scan
from src.utils import errors

ALLOWED_SCHEMES = frozenset({"http", "https"})
DEFAULT_PORTS = frozenset({80, 443})
DEV_PORTS = frozenset({8080, 8443})

_RESERVED_HOSTNAMES = frozenset({"localhost", "localhost.localdomain"})
_RESERVED_SUFFIXES = (".local", ".internal", ".localhost")

_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.\-]*://", re.I)
_DOTTED_QUAD_RE = re.compile(r"^\d{1,3}(\.\d{1,3}){3}$")
_NUMERIC_LABEL_RE = re.compile(r"^(0x[0-9a-f]*|\d+)$", re.I)

# Ranges not covered (or not consistently covered) by ipaddress flags.
_EXTRA_BLOCKED_NETWORKS = (
    ipaddress.ip_network("0.0.0.0/8"),
    ipaddress.ip_network("100.64.0.0/10"),
    ipaddress.ip_network("fc00::/7"),
    ipaddress.ip_network("fe80::/10"),
)

# Well-known NAT64 prefix; the last 32 bits carry an IPv4 address.
_NAT64_PREFIX = ipaddress.ip_network("64:ff9b::/96")


# ============================================================================
# Predicates
# ============================================================================


def is_private_ip(address: str) -> bool:
    """Whether *address* is private, loopback, link-local, CGNAT or reserved.

    Unparseable input counts as private so callers fail closed.
    IPv4-mapped, NAT64 and 6to4 IPv6 addresses are judged by the IPv4
    address they embed.
    """
    try:
        ip = ipaddress.ip_address(address.strip("[]").split("%", 1)[0])
    except ValueError:
        return True

    if isinstance(ip, ipaddress.IPv6Address):
        ip = _embedded_ipv4(ip) or ip

    if (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_multicast
        or ip.is_reserved
        or ip.is_unspecified
    ):
        return True
    return any(ip.version == net.version and ip in net for net in _EXTRA_BLOCKED_NETWORKS)


def _embedded_ipv4(ip: ipaddress.IPv6Address) -> ipaddress.IPv4Address | None:
    if ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    if ip in _NAT64_PREFIX:
        return ipaddress.IPv4Address(int(ip) & 0xFFFFFFFF)
    return ip.sixtofour


def is_ip_literal(hostname: str) -> bool:
    """Whether *hostname* is an IP address in any notation a browser accepts.

    Covers dotted quads, bracketed and bare IPv6, and the numeric
    IPv4 shorthands (``2130706433``, ``0x7f.1``, ``127.1``) that
    browsers resolve without DNS.
    """
    host = hostname.strip().rstrip(".")
    if not host:
        return False
    if host.startswith("[") or ":" in host:
        return True
    if _DOTTED_QUAD_RE.match(host):
        return True
    try:
        ipaddress.ip_address(host)
        return True
    except ValueError:
        pass
    last_label = host.rsplit(".", 1)[-1]
    return bool(_NUMERIC_LABEL_RE.match(last_label))


def is_reserved_hostname(hostname: str) -> bool:
    """Whether *hostname* names the local machine or a reserved pseudo-TLD."""
    host = hostname.lower().rstrip(".")
    return host in _RESERVED_HOSTNAMES or host.endswith(_RESERVED_SUFFIXES)


def is_port_allowed(port: int | None, allow_dev_ports: bool = False) -> bool:
    """Whether an explicit *port* may be scanned."""
    if port is None or port in DEFAULT_PORTS:
        return True
    return allow_dev_ports and port in DEV_PORTS


def check_host(hostname: str) -> None:
    """Reject literal or reserved hosts; shared by pre-flight and landing checks.

    Raises:
        errors.ScanError: ``blocked_url`` when the host is unsafe.
    """
    if is_ip_literal(hostname):
        raise errors.ScanError(
            "blocked_url", f"Direct IP addresses are not allowed: {hostname}"
        )
    if is_reserved_hostname(hostname):
        raise errors.ScanError(
            "blocked_url", f"Local or private address blocked: {hostname}"
        )


# ============================================================================
# Normalisation
# ============================================================================


def _to_ascii_host(hostname: str) -> str:
    try:
        return hostname.encode("idna").decode("ascii").lower()
    except UnicodeError as exc:
        raise errors.ScanError("blocked_url", f"Invalid hostname: {hostname}") from exc


def normalize_url(raw: str, allow_dev_ports: bool = False) -> scan.ValidatedTarget:
    """Canonicalise *raw* into a scan target or raise ``blocked_url``.

    A missing scheme defaults to https.  The returned URL drops the
    fragment and any default port, and always has a path.

    Raises:
        errors.ScanError: ``blocked_url`` for every structural rejection.
    """
    text = (raw or "").strip()
    if not text:
        raise errors.ScanError("blocked_url", "Please enter a URL")

    with_scheme = text if _SCHEME_RE.match(text) else f"https://{text}"

    try:
        parts = parse.urlsplit(with_scheme)
        port = parts.port
    except ValueError as exc:
        raise errors.ScanError("blocked_url", f'Invalid URL: "{raw}"') from exc

    scheme = parts.scheme.lower()
    if scheme not in ALLOWED_SCHEMES:
        raise errors.ScanError("blocked_url", f"Scheme not allowed: {scheme}")

    if parts.username is not None or parts.password is not None:
        raise errors.ScanError(
            "blocked_url", "URLs with embedded credentials (user:pass@host) are not allowed"
        )

    # urlsplit strips the brackets from IPv6 hosts; look at netloc too.
    host_part = parts.netloc.rpartition("@")[2]
    if host_part.startswith("["):
        raise errors.ScanError("blocked_url", f"Direct IP addresses are not allowed: {host_part}")

    hostname = (parts.hostname or "").rstrip(".")
    if not hostname:
        raise errors.ScanError("blocked_url", f'Invalid URL: "{raw}"')

    if not is_port_allowed(port, allow_dev_ports):
        allowed = "80, 443" + (", 8080, 8443" if allow_dev_ports else "")
        raise errors.ScanError("blocked_url", f"Port {port} is not allowed. Allowed: {allowed}.")

    check_host(hostname)
    hostname = _to_ascii_host(hostname)
    # IDNA mapping can turn look-alike characters into a literal or reserved name.
    check_host(hostname)

    netloc = hostname
    if port is not None and not (
        (scheme == "http" and port == 80) or (scheme == "https" and port == 443)
    ):
        netloc = f"{hostname}:{port}"

    url = parse.urlunsplit((scheme, netloc, parts.path or "/", parts.query, ""))
    return scan.ValidatedTarget(url=url, hostname=hostname)
