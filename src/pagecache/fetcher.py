"""HTTP fetcher for remote assets (web fonts, avatars) with SSRF protection.

All network I/O goes through a single Fetcher instance owned by the
application state. The Fetcher receives an httpx.AsyncClient via constructor
injection; the server lifespan owns the client lifecycle.

Fetching is fail-soft: network errors, timeouts, non-2xx responses, SSRF
blocks and empty bodies all return ``None`` so callers leave the original
reference untouched.
"""

from __future__ import annotations

import ipaddress
from typing import TYPE_CHECKING
from urllib.parse import urljoin, urlparse

import httpx
import structlog

if TYPE_CHECKING:
    from pagecache.config import FetcherSettings

log = structlog.get_logger()

PRIVATE_NETWORKS: list[ipaddress.IPv4Network | ipaddress.IPv6Network] = [
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("169.254.0.0/16"),
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("fc00::/7"),
]


def build_http_client(settings: FetcherSettings) -> httpx.AsyncClient:
    """Create the shared httpx client. Called once at startup."""
    return httpx.AsyncClient(
        follow_redirects=False,
        timeout=httpx.Timeout(settings.timeout_seconds),
        headers={"User-Agent": settings.user_agent},
        limits=httpx.Limits(
            max_connections=10,
            max_keepalive_connections=5,
        ),
    )


def build_allowlist(settings: FetcherSettings) -> frozenset[str]:
    """Hosts that remote assets may be downloaded from."""
    hosts = (
        *settings.font_stylesheet_hosts,
        *settings.font_file_hosts,
        *settings.avatar_hosts,
    )
    return frozenset(host.strip().lower().rstrip(".") for host in hosts if host.strip())


def is_url_allowed(url: str, allowlist: frozenset[str]) -> bool:
    """Check whether a URL is permitted by the host allowlist.

    A host matches an entry exactly or as a subdomain of it. Private IP
    ranges are blocked unconditionally, regardless of allowlist.
    """
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        return False
    hostname = (parsed.hostname or "").lower().rstrip(".")

    # Block private IPs unconditionally
    try:
        addr = ipaddress.ip_address(hostname)
        if any(addr in net for net in PRIVATE_NETWORKS):
            return False
    except ValueError:
        pass  # hostname is a domain name, not an IP, proceed to allowlist check

    return any(hostname == allowed or hostname.endswith("." + allowed) for allowed in allowlist)


class Fetcher:
    """Remote asset fetcher with SSRF-safe redirect handling."""

    def __init__(self, client: httpx.AsyncClient, max_redirects: int = 3) -> None:
        self._client = client
        self._max_redirects = max_redirects

    async def fetch(self, url: str, allowlist: frozenset[str]) -> bytes | None:
        """Fetch a URL with per-hop SSRF validation.

        Returns the response body on a non-empty 2xx response, ``None``
        otherwise.
        """
        current_url = url

        try:
            for hop in range(self._max_redirects + 1):
                if not is_url_allowed(current_url, allowlist):
                    log.warning("ssrf_blocked", url=current_url, reason="not_in_allowlist")
                    return None

                response = await self._client.get(current_url)

                if response.is_redirect and "location" in response.headers:
                    if hop == self._max_redirects:
                        log.warning("fetch_too_many_redirects", url=url)
                        return None
                    current_url = urljoin(current_url, response.headers["location"])
                    continue

                if not 200 <= response.status_code < 300:
                    log.warning("fetch_failed", url=url, status_code=response.status_code)
                    return None

                content = response.content
                if not content:
                    log.warning("fetch_empty_body", url=url)
                    return None

                log.info(
                    "fetch_complete",
                    url=url,
                    status_code=response.status_code,
                    content_length=len(content),
                )
                return content

        except httpx.HTTPError:
            log.warning("fetch_network_error", url=url, exc_info=True)
            return None

        return None
