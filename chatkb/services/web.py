"""Descarga de páginas para fuentes tipo URL, con protección SSRF.

Solo http(s). Se rechazan loopback, redes privadas y link-local tanto si la
URL trae una IP literal como si el hostname resuelve a una de ellas. Los
redirects se siguen a mano para validar cada salto.
"""

from __future__ import annotations

import asyncio
import ipaddress
import socket
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable
from urllib.parse import urljoin, urlparse

import httpx

from chatkb.core.errors import ContentError, FetchError, SSRFRejection
from chatkb.core.logging import get_logger
from chatkb.services.extract import html_to_text

logger = get_logger(__name__)

ALLOWED_SCHEMES = ("http", "https")
BLOCKED_HOSTNAMES = {"localhost", "localhost.localdomain"}
BLOCKED_NETWORKS = [
    ipaddress.ip_network(n)
    for n in (
        "0.0.0.0/8",
        "10.0.0.0/8",
        "127.0.0.0/8",
        "169.254.0.0/16",
        "172.16.0.0/12",
        "192.168.0.0/16",
        "::1/128",
        "::/128",
        "fc00::/7",
        "fe80::/10",
    )
]
MAX_REDIRECTS = 5
DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; chatkb/1.0)",
    "Accept": "text/html,application/xhtml+xml;q=0.9,*/*;q=0.5",
}

Resolver = Callable[[str], Awaitable[Iterable[str]]]


def _is_blocked_ip(ip: ipaddress.IPv4Address | ipaddress.IPv6Address) -> bool:
    # IPv4 mapeada en IPv6 (::ffff:127.0.0.1) se evalúa como IPv4
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return any(ip in net for net in BLOCKED_NETWORKS if ip.version == net.version)


def validate_public_url(url: str) -> str:
    """Chequeo sincrónico (sin DNS). Devuelve el hostname o lanza ``SSRFRejection``."""
    try:
        parsed = urlparse((url or "").strip())
    except ValueError as e:
        raise SSRFRejection(f"Invalid URL: {url}") from e

    if parsed.scheme.lower() not in ALLOWED_SCHEMES:
        raise SSRFRejection(f"URL scheme not allowed: {parsed.scheme or '(none)'}")
    host = (parsed.hostname or "").lower().rstrip(".")
    if not host:
        raise SSRFRejection("URL has no host")
    if host in BLOCKED_HOSTNAMES or host.endswith(".localhost"):
        raise SSRFRejection(f"Host not allowed: {host}")

    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return host
    if _is_blocked_ip(ip):
        raise SSRFRejection(f"Address not allowed: {host}")
    return host


async def system_resolver(host: str) -> list[str]:
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, None, type=socket.SOCK_STREAM)
    return [info[4][0] for info in infos]


async def ensure_public_target(url: str, resolver: Resolver = system_resolver) -> str:
    """Como ``validate_public_url`` pero además resuelve el host y valida cada IP.

    Devuelve la IP validada; la conexión se hace a esa IP y no a una nueva
    resolución del hostname (DNS rebinding).
    """
    host = validate_public_url(url)
    try:
        ipaddress.ip_address(host)
        return host
    except ValueError:
        pass

    try:
        addresses = list(await resolver(host))
    except OSError as e:
        raise FetchError(f"Could not resolve host {host}: {e}") from e
    if not addresses:
        raise FetchError(f"Could not resolve host {host}")
    pinned: list[str] = []
    for addr in addresses:
        # getaddrinfo puede devolver 'fe80::1%eth0'
        ip = ipaddress.ip_address(addr.split("%", 1)[0])
        if _is_blocked_ip(ip):
            raise SSRFRejection(f"Host {host} resolves to a disallowed address")
        pinned.append(str(ip))
    return pinned[0]


@dataclass(frozen=True)
class FetchedPage:
    url: str
    title: str
    text: str


class PageFetcher:
    """Descarga una URL pública y extrae título + texto visible."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        max_bytes: int = 5 * 1024 * 1024,
        resolver: Resolver = system_resolver,
    ) -> None:
        self._client = client
        self._max_bytes = max_bytes
        self._resolver = resolver

    async def fetch(self, url: str) -> FetchedPage:
        current = url
        for _ in range(MAX_REDIRECTS + 1):
            address = await ensure_public_target(current, self._resolver)
            body, status, location = await self._get(current, address)
            if status in (301, 302, 303, 307, 308) and location:
                current = urljoin(current, location)
                logger.debug("fetch_redirect", url=url, location=current)
                continue
            if status < 200 or status >= 300:
                raise FetchError(f"Failed to fetch: {status}")
            return self._parse(current, body)
        raise FetchError(f"Too many redirects for {url}")

    async def _get(self, url: str, address: str) -> tuple[str, int, str | None]:
        """GET contra ``address`` (IP ya validada) con Host y SNI del hostname original."""
        target = httpx.URL(url)
        pinned = target.copy_with(host=f"[{address}]" if ":" in address else address)
        headers = {**DEFAULT_HEADERS, "Host": target.netloc.decode("ascii")}
        extensions = {"sni_hostname": target.raw_host.decode("ascii")} if target.scheme == "https" else {}
        try:
            async with self._client.stream(
                "GET", pinned, headers=headers, extensions=extensions, follow_redirects=False
            ) as resp:
                if resp.is_redirect or not resp.is_success:
                    return "", resp.status_code, resp.headers.get("location")
                chunks: list[bytes] = []
                size = 0
                async for part in resp.aiter_bytes():
                    size += len(part)
                    if size > self._max_bytes:
                        raise FetchError(f"Page exceeds {self._max_bytes} bytes")
                    chunks.append(part)
                encoding = resp.encoding or "utf-8"
                return b"".join(chunks).decode(encoding, errors="replace"), resp.status_code, None
        except httpx.TimeoutException as e:
            raise FetchError(f"Timeout fetching {url}") from e
        except httpx.HTTPError as e:
            raise FetchError(f"HTTP error fetching {url}: {e}") from e

    def _parse(self, url: str, html: str) -> FetchedPage:
        title, text = html_to_text(html)
        if not text:
            raise ContentError("No content found")
        host = urlparse(url).hostname or url
        logger.info("page_fetched", url=url, title=title, chars=len(text))
        return FetchedPage(url=url, title=title or host, text=text)
