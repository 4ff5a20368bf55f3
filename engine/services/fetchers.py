"""Outbound HTTP for data nodes, guarded against server-side request forgery.

Every hop (including each redirect) is checked: http/https only, no internal
hostnames, and neither literal nor DNS-resolved private addresses. Bodies are
streamed and cut off at a byte ceiling. Successful GET bodies can be cached
through the shared ``CacheService``.
"""

import asyncio
import ipaddress
import socket
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional
from urllib.parse import urljoin, urlsplit

import httpx

from core.cache import CacheService
from core.config import Settings
from core.logging import get_logger, log_execution_time

logger = get_logger(__name__)

BLOCKED_HOSTNAMES = frozenset({"localhost", "localhost.localdomain", "metadata.google.internal"})
BLOCKED_SUFFIXES = (".local", ".internal")
REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})
CGNAT_NETWORK = ipaddress.ip_network("100.64.0.0/10")

USER_AGENT = "NovaMissionEngine/1.0"

Resolver = Callable[[str], Awaitable[List[str]]]


class UnsafeURLError(ValueError):
    """The URL targets a scheme, host or address that outbound fetches may not reach."""


class ResponseTooLargeError(ValueError):
    pass


@dataclass
class FetchResponse:
    status: int
    text: str
    final_url: str
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


def normalize_hostname(hostname: str) -> str:
    host = str(hostname or "").strip().lower().rstrip(".")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    return host


def is_private_address(address: str) -> bool:
    """Loopback, private, link-local, CGNAT, unspecified and unique-local ranges."""
    try:
        ip = ipaddress.ip_address(normalize_hostname(address).split("%", 1)[0])
    except ValueError:
        return False
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    if isinstance(ip, ipaddress.IPv4Address) and ip in CGNAT_NETWORK:
        return True
    return ip.is_private or ip.is_loopback or ip.is_link_local or ip.is_unspecified or ip.is_reserved


def is_blocked_hostname(hostname: str) -> bool:
    host = normalize_hostname(hostname)
    if not host or host in BLOCKED_HOSTNAMES:
        return True
    return host.endswith(BLOCKED_SUFFIXES)


async def system_resolve(hostname: str) -> List[str]:
    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(hostname, None, type=socket.SOCK_STREAM)
    except socket.gaierror:
        return []
    return [info[4][0] for info in infos]


class HttpFetcher:
    """SSRF-guarded fetcher on a shared ``httpx.AsyncClient``."""

    def __init__(
        self,
        settings: Settings,
        cache: CacheService,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        resolver: Resolver = system_resolve,
    ):
        self.settings = settings
        self.cache = cache
        self.timeout = settings.workflow_http_timeout_ms / 1000
        self.max_redirects = settings.workflow_http_max_redirects
        self._transport = transport
        self._resolve = resolver
        self._client: Optional[httpx.AsyncClient] = None

    async def startup(self):
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=False,
                transport=self._transport,
                headers={"User-Agent": USER_AGENT},
            )

    async def shutdown(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _client_or_start(self) -> httpx.AsyncClient:
        if self._client is None:
            await self.startup()
        return self._client

    async def assert_safe_url(self, url: str) -> str:
        parts = urlsplit(url)
        if parts.scheme not in ("http", "https"):
            raise UnsafeURLError("Only http(s) URLs are allowed.")
        host = normalize_hostname(parts.hostname or "")
        if is_blocked_hostname(host):
            raise UnsafeURLError(f"Blocked hostname: {host}")
        try:
            ipaddress.ip_address(host)
        except ValueError:
            addresses = await self._resolve(host)
            if not addresses:
                raise UnsafeURLError(f"Failed to resolve hostname: {host}")
            for address in addresses:
                if is_private_address(address):
                    raise UnsafeURLError(f"Blocked private DNS resolution for {host}: {address}")
            return url
        if is_private_address(host):
            raise UnsafeURLError(f"Blocked private IP target: {host}")
        return url

    async def fetch(
        self,
        url: str,
        method: str = "GET",
        headers: Optional[Dict[str, str]] = None,
        body: Optional[str] = None,
        max_bytes: Optional[int] = None,
        use_cache: bool = False,
    ) -> FetchResponse:
        """Fetch ``url``, following at most ``max_redirects`` re-checked redirects."""
        method = (method or "GET").upper()
        limit = max_bytes or self.settings.workflow_http_response_max_bytes
        cache_key = f"fetch:{method}:{url}"
        cacheable = use_cache and method == "GET"
        if cacheable:
            cached = await self.cache.get(cache_key)
            if cached is not None:
                return cached

        start_time = time.time()
        response = await self._fetch_following_redirects(url, method, headers or {}, body, limit)
        log_execution_time(logger, "http_fetch", start_time, time.time(),
                           url=response.final_url, status=response.status)

        if cacheable and response.ok:
            await self.cache.set(cache_key, response)
        return response

    async def _fetch_following_redirects(self, url, method, headers, body, limit) -> FetchResponse:
        client = await self._client_or_start()
        visited = set()
        current = url
        for _ in range(self.max_redirects + 1):
            await self.assert_safe_url(current)
            async with client.stream(method, current, headers=headers, content=body) as response:
                if response.status_code in REDIRECT_STATUSES:
                    location = response.headers.get("location")
                    if not location:
                        raise httpx.HTTPError(f"Redirect missing location header ({response.status_code}).")
                    next_url = urljoin(current, location)
                    if next_url in visited:
                        raise httpx.HTTPError("Redirect loop detected.")
                    visited.add(next_url)
                    current = next_url
                    if response.status_code == 303:
                        method, body = "GET", None
                    continue
                text = await self._read_limited(response, limit)
                return FetchResponse(
                    status=response.status_code,
                    text=text,
                    final_url=str(response.url),
                    headers=dict(response.headers),
                )
        raise httpx.TooManyRedirects(f"Too many redirects (limit: {self.max_redirects}).")

    @staticmethod
    async def _read_limited(response: httpx.Response, limit: int) -> str:
        received = bytearray()
        async for chunk in response.aiter_bytes():
            received.extend(chunk)
            if len(received) > limit:
                raise ResponseTooLargeError(f"Response exceeds size limit ({limit} bytes).")
        return bytes(received).decode(response.encoding or "utf-8", errors="replace")
