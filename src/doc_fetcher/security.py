"""Outbound URL guard against requests to local or private hosts (SSRF).

Documentation URLs come from registries, llms.txt files and sitemaps written by
third parties, so every request made with ``block_private_hosts`` goes
through :func:`is_safe_url` first.
"""

import ipaddress
import socket
from urllib.parse import urlparse

from loguru import logger

ALLOWED_SCHEMES = ("http", "https")

_LOCAL_HOSTNAMES = frozenset({"localhost", "localhost.localdomain", "ip6-localhost"})


def is_blocked_address(address: str) -> bool:
    """Whether an IP literal is private, loopback, link-local, reserved or multicast."""
    try:
        ip = ipaddress.ip_address(address.split("%", 1)[0])
    except ValueError:
        return False
    return (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_reserved
        or ip.is_multicast
        or ip.is_unspecified
    )


def resolve_addresses(hostname: str) -> list[str]:
    """Every address *hostname* resolves to; empty when resolution fails."""
    try:
        infos = socket.getaddrinfo(hostname, None)
    except socket.gaierror:
        return []
    return [str(info[4][0]) for info in infos]


def is_safe_url(url: str, *, resolve: bool = True) -> bool:
    """Whether *url* may be requested.

    Rejects non-http(s) schemes, local hostnames and IP literals in blocked
    ranges. With *resolve*, hostnames are also looked up so a public name
    pointing at a private address is caught. Names that do not resolve are
    let through; the request itself then fails and is classified as a
    network error.
    """
    try:
        parsed = urlparse(url)
        hostname = parsed.hostname
    except ValueError:
        return False

    if parsed.scheme not in ALLOWED_SCHEMES:
        logger.warning(f"Blocked unsafe scheme: {parsed.scheme or '(none)'}")
        return False
    if not hostname:
        return False

    hostname = hostname.lower().rstrip(".")
    if hostname in _LOCAL_HOSTNAMES:
        logger.warning(f"Blocked local host: {hostname}")
        return False

    try:
        ipaddress.ip_address(hostname.split("%", 1)[0])
        is_literal = True
    except ValueError:
        is_literal = False

    if is_literal:
        candidates = [hostname]
    elif resolve:
        try:
            candidates = resolve_addresses(hostname)
        except OSError as e:
            logger.error(f"Error resolving {hostname}: {e}")
            return False
    else:
        candidates = []

    for address in candidates:
        if is_blocked_address(address):
            logger.warning(f"Blocked private address {address} for host {hostname}")
            return False
    return True
