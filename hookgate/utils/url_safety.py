"""
Outbound URL validation (SSRF protection) for outgoing webhook delivery.
"""
import asyncio
import ipaddress
import logging
import socket
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

_ALLOWED_SCHEMES = frozenset({"http", "https"})
_BLOCKED_HOSTNAMES = frozenset({
    "localhost", "metadata.google.internal",
})


class UnsafeURLError(ValueError):
    """Target URL is malformed or resolves to a non-public address."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Unsafe target URL: {reason}")


def _check_ip(hostname: str, ip_str: str, url: str) -> None:
    try:
        ip = ipaddress.ip_address(ip_str.split("%", 1)[0])
    except ValueError:
        raise UnsafeURLError(url, f"unparseable address {ip_str}")

    # Unwrap IPv4-mapped IPv6 (::ffff:10.0.0.1) before classifying
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped

    # Catches private, loopback, link-local, reserved, CGNAT (100.64/10)
    if not ip.is_global or ip.is_multicast:
        logger.warning("SSRF blocked: %s resolves to non-public IP %s", hostname, ip)
        raise UnsafeURLError(url, f"{hostname} resolves to non-public address {ip}")


async def validate_target_url(url: str) -> None:
    """
    Validate that a URL doesn't target internal/private networks.

    Resolves the hostname and checks all resolved IPs are globally routable.
    Blocks private, loopback, link-local, reserved, CGNAT, and multicast ranges.
    Raises UnsafeURLError on the first violation.

    Note: DNS rebinding is a residual risk (the HTTP client resolves again).
    Network-level egress controls blocking RFC-1918 ranges provide the
    strongest defense against that attack.
    """
    try:
        parsed = urlparse(url)
    except ValueError:
        raise UnsafeURLError(url, "malformed URL")

    if parsed.scheme not in _ALLOWED_SCHEMES:
        raise UnsafeURLError(url, f"scheme {parsed.scheme!r} not allowed")

    hostname = parsed.hostname
    if not hostname:
        raise UnsafeURLError(url, "missing hostname")
    if hostname.lower() in _BLOCKED_HOSTNAMES:
        raise UnsafeURLError(url, f"hostname {hostname} is blocked")

    # IP literals skip DNS
    try:
        ipaddress.ip_address(hostname)
    except ValueError:
        pass
    else:
        _check_ip(hostname, hostname, url)
        return

    try:
        loop = asyncio.get_running_loop()
        addr_infos = await loop.run_in_executor(None, socket.getaddrinfo, hostname, None)
    except socket.gaierror:
        raise UnsafeURLError(url, f"cannot resolve {hostname}")

    if not addr_infos:
        raise UnsafeURLError(url, f"cannot resolve {hostname}")

    for addr_info in addr_infos:
        _check_ip(hostname, addr_info[4][0], url)


async def is_safe_url(url: str) -> bool:
    try:
        await validate_target_url(url)
    except UnsafeURLError:
        return False
    return True
