"""Security utilities for API authentication and scrape target validation."""

import ipaddress
import socket
from typing import Annotated, Optional, Union
from urllib.parse import urlparse

import httpx
from fastapi import Header, HTTPException, status

from kbchat.core.config import Settings, settings
from kbchat.core.constants import INTERNAL_HOST_SUFFIXES, METADATA_HOSTS
from kbchat.core.errors import BlockedUrlError, InvalidUrlError


async def verify_api_key(x_api_key: Annotated[str, Header()]) -> str:
    """Verify API key from header."""
    if x_api_key != settings.api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )
    return x_api_key


def _ip_literal(hostname: str) -> Optional[Union[ipaddress.IPv4Address, ipaddress.IPv6Address]]:
    """Parse a host as an IP address, including the decimal, hex and short IPv4 forms resolvers accept."""
    try:
        return ipaddress.ip_address(hostname)
    except ValueError:
        pass
    try:
        return ipaddress.IPv4Address(socket.inet_aton(hostname))
    except (OSError, ValueError):
        return None


def check_url_allowed(url: str) -> None:
    """Reject loopback, private, link-local, metadata and internal hosts."""
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise InvalidUrlError("Only HTTP and HTTPS protocols are allowed")

    hostname = (parsed.hostname or "").lower()
    if not hostname:
        raise InvalidUrlError(f"Invalid URL: {url}")

    if hostname == "localhost" or hostname in METADATA_HOSTS:
        raise BlockedUrlError(f"Scraping {hostname} is not allowed")
    if hostname.endswith(INTERNAL_HOST_SUFFIXES):
        raise BlockedUrlError("Internal hostnames are not allowed")

    address = _ip_literal(hostname)
    if address is None:
        return
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped:
        address = address.ipv4_mapped

    if (
        address.is_loopback
        or address.is_private
        or address.is_link_local
        or address.is_unspecified
        or str(address) in METADATA_HOSTS
    ):
        raise BlockedUrlError(f"Private or reserved address {hostname} is not allowed")


async def _check_request_target(request: httpx.Request) -> None:
    # Request hooks run for every hop, so redirect targets are checked too
    check_url_allowed(str(request.url))


def build_scrape_client(
    config: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """HTTP client for fetching user-supplied URLs."""
    config = config or settings
    event_hooks = {} if config.allow_private_hosts else {"request": [_check_request_target]}
    return httpx.AsyncClient(follow_redirects=True, event_hooks=event_hooks, transport=transport)
