"""
URL validation utilities to prevent SSRF attacks.

Validates URLs before fetching to block requests to private/internal
networks, cloud metadata endpoints, and other dangerous targets.
"""

import asyncio
import ipaddress
import socket
from typing import Awaitable, Callable, Optional
from urllib.parse import SplitResult, urlsplit

from marginalia.utils.exceptions import FetchBlockedError
from marginalia.utils.logging import get_logger

logger = get_logger(__name__)

# Resolves a hostname to a list of IP address strings
Resolver = Callable[[str], Awaitable[list[str]]]

# Blocked hostnames that should never be fetched
_BLOCKED_HOSTNAMES = frozenset({
    "localhost",
    "metadata.google.internal",
    "metadata.google",
    "metadata",
})

# Suffixes that indicate local/internal networks
_BLOCKED_SUFFIXES = (
    ".localhost",
    ".local",
    ".internal",
    ".corp",
    ".lan",
    ".intranet",
    ".home.arpa",
)

_ALLOWED_SCHEMES = frozenset({"http", "https"})


def _is_dangerous_ip(addr: ipaddress.IPv4Address | ipaddress.IPv6Address) -> bool:
    """Check if an IP address is private, loopback, link-local, or otherwise reserved."""
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        return _is_dangerous_ip(addr.ipv4_mapped)
    return (
        addr.is_private
        or addr.is_loopback
        or addr.is_link_local
        or addr.is_unspecified
        or addr.is_reserved
        or addr.is_multicast
    )


def check_url_syntax(url: str) -> Optional[str]:
    """
    Validate everything about a URL that needs no network access.

    Returns None if the URL passes, or the reason it is blocked.
    """
    try:
        parsed = urlsplit(url)
        hostname = parsed.hostname
    except ValueError:
        return "Invalid URL"

    if parsed.scheme.lower() not in _ALLOWED_SCHEMES:
        return f"Blocked URL protocol '{parsed.scheme}'"

    if not hostname:
        return "URL has no hostname"

    hostname = hostname.lower().rstrip(".")
    if hostname in _BLOCKED_HOSTNAMES:
        return f"Blocked hostname: {hostname}"

    if hostname.endswith(_BLOCKED_SUFFIXES):
        return f"Blocked local hostname: {hostname}"

    try:
        addr = ipaddress.ip_address(hostname)
    except ValueError:
        return None

    if _is_dangerous_ip(addr):
        return f"Blocked private IP: {hostname}"
    return None


async def system_resolver(hostname: str) -> list[str]:
    """Resolve a hostname with the event loop's non-blocking getaddrinfo."""
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(hostname, None, type=socket.SOCK_STREAM)
    return [sockaddr[0] for _family, _type, _proto, _canon, sockaddr in infos]


async def ensure_public_url(url: str, resolver: Optional[Resolver] = None) -> SplitResult:
    """
    Validate a URL against SSRF rules, resolving its hostname via DNS.

    Raises:
        FetchBlockedError: if the URL is malformed, uses a non-HTTP scheme,
            names a local host, or resolves to any private/reserved address.

    Returns:
        The parsed URL.
    """
    reason = check_url_syntax(url)
    if reason:
        logger.warning(f"SSRF protection blocked URL: {url} ({reason})")
        raise FetchBlockedError(url, reason)

    parsed = urlsplit(url)
    hostname = parsed.hostname.lower().rstrip(".")

    try:
        ipaddress.ip_address(hostname)
        return parsed  # literal IP already checked
    except ValueError:
        pass

    resolve = resolver or system_resolver
    try:
        addresses = await resolve(hostname)
    except (OSError, UnicodeError) as e:
        raise FetchBlockedError(url, f"DNS lookup failed for {hostname}") from e

    if not addresses:
        raise FetchBlockedError(url, f"DNS lookup returned no addresses for {hostname}")

    for ip_str in addresses:
        try:
            addr = ipaddress.ip_address(ip_str.split("%", 1)[0])
        except ValueError:
            continue
        if _is_dangerous_ip(addr):
            logger.warning(f"SSRF blocked: {hostname} resolves to private IP {ip_str}")
            raise FetchBlockedError(url, "Blocked private IP")

    return parsed
