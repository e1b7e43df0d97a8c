"""Unit tests for URL validation (SSRF) and PageFetcher with a mocked transport."""

from __future__ import annotations

import httpx
import pytest

from chatkb.core.errors import ContentError, FetchError, SSRFRejection
from chatkb.services.web import PageFetcher, ensure_public_target, validate_public_url

PAGE = (
    "<html><head><title>Cat Facts</title><style>.x{}</style></head>"
    "<body><nav>Home | About</nav><h1>Cats</h1><p>Cats   eat fish.</p>"
    "<script>var x = 1;</script><footer>(c) 2024</footer></body></html>"
)


def _resolver(table: dict[str, list[str]]):
    async def resolve(host: str) -> list[str]:
        if host not in table:
            raise OSError(f"unknown host {host}")
        return table[host]

    return resolve


PUBLIC_DNS = _resolver({"example.com": ["93.184.216.34"], "docs.example.com": ["93.184.216.35"]})


def _fetcher(handler, *, resolver=PUBLIC_DNS, max_bytes: int = 1024 * 1024) -> tuple[PageFetcher, list[str]]:
    seen: list[str] = []

    def recording(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        return handler(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(recording))
    return PageFetcher(client, max_bytes=max_bytes, resolver=resolver), seen


class TestValidatePublicUrl:
    @pytest.mark.parametrize(
        "url",
        [
            "http://127.0.0.1/admin",
            "http://169.254.169.254/latest/meta-data",
            "ftp://example.com/file",
            "http://192.168.1.1/",
            "http://10.0.0.8:8080/",
            "http://172.20.1.1/",
            "http://localhost:3000/",
            "http://[::1]/",
            "http://[fe80::1]/",
            "http://0.0.0.0/",
            "file:///etc/passwd",
            "not a url",
        ],
    )
    def test_rejects_unsafe_targets(self, url: str) -> None:
        with pytest.raises(SSRFRejection):
            validate_public_url(url)

    def test_accepts_public_url(self) -> None:
        assert validate_public_url("https://Example.com/path?q=1") == "example.com"

    @pytest.mark.asyncio
    async def test_rejects_hostname_resolving_to_private_address(self) -> None:
        resolver = _resolver({"intranet.example.com": ["10.1.2.3"]})
        with pytest.raises(SSRFRejection):
            await ensure_public_target("http://intranet.example.com/", resolver)

    @pytest.mark.asyncio
    async def test_returns_the_validated_address(self) -> None:
        assert await ensure_public_target("https://example.com/", PUBLIC_DNS) == "93.184.216.34"
        assert await ensure_public_target("http://8.8.8.8/", _resolver({})) == "8.8.8.8"

    @pytest.mark.asyncio
    async def test_every_resolved_address_must_be_public(self) -> None:
        resolver = _resolver({"mixed.example.com": ["93.184.216.34", "127.0.0.1"]})
        with pytest.raises(SSRFRejection):
            await ensure_public_target("http://mixed.example.com/", resolver)

    @pytest.mark.asyncio
    async def test_unresolvable_host_is_fetch_error(self) -> None:
        with pytest.raises(FetchError):
            await ensure_public_target("http://nowhere.invalid/", _resolver({}))


class TestPageFetcher:
    @pytest.mark.asyncio
    async def test_extracts_title_and_visible_text(self) -> None:
        fetcher, _ = _fetcher(lambda req: httpx.Response(200, html=PAGE))

        page = await fetcher.fetch("https://example.com/cats")

        assert page.title == "Cat Facts"
        assert "Cats eat fish." in page.text
        assert "Home | About" not in page.text
        assert "var x" not in page.text
        assert "(c) 2024" not in page.text

    @pytest.mark.asyncio
    async def test_title_falls_back_to_hostname(self) -> None:
        fetcher, _ = _fetcher(lambda req: httpx.Response(200, html="<html><body><p>Just text</p></body></html>"))

        page = await fetcher.fetch("https://docs.example.com/")

        assert page.title == "docs.example.com"
        assert page.text == "Just text"

    @pytest.mark.asyncio
    async def test_empty_page_is_content_error(self) -> None:
        fetcher, _ = _fetcher(lambda req: httpx.Response(200, html="<html><body><script>x()</script></body></html>"))

        with pytest.raises(ContentError, match="No content found"):
            await fetcher.fetch("https://example.com/")

    @pytest.mark.asyncio
    async def test_non_success_status_is_fetch_error(self) -> None:
        fetcher, _ = _fetcher(lambda req: httpx.Response(404, text="nope"))

        with pytest.raises(FetchError, match="404"):
            await fetcher.fetch("https://example.com/missing")

    @pytest.mark.asyncio
    async def test_private_address_never_requested(self) -> None:
        fetcher, seen = _fetcher(lambda req: httpx.Response(200, html=PAGE))

        with pytest.raises(SSRFRejection):
            await fetcher.fetch("http://127.0.0.1/admin")
        assert seen == []

    @pytest.mark.asyncio
    async def test_follows_public_redirect(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/old":
                return httpx.Response(301, headers={"location": "/new"})
            return httpx.Response(200, html=PAGE)

        fetcher, seen = _fetcher(handler)
        page = await fetcher.fetch("https://example.com/old")

        assert page.url == "https://example.com/new"
        assert seen == ["https://93.184.216.34/old", "https://93.184.216.34/new"]

    @pytest.mark.asyncio
    async def test_redirect_to_private_address_is_rejected(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(302, headers={"location": "http://169.254.169.254/latest/meta-data"})

        fetcher, seen = _fetcher(handler)

        with pytest.raises(SSRFRejection):
            await fetcher.fetch("https://example.com/")
        assert seen == ["https://93.184.216.34/"]

    @pytest.mark.asyncio
    async def test_redirect_loop_gives_up(self) -> None:
        fetcher, seen = _fetcher(lambda req: httpx.Response(302, headers={"location": "https://example.com/loop"}))

        with pytest.raises(FetchError, match="Too many redirects"):
            await fetcher.fetch("https://example.com/loop")
        assert len(seen) == 6

    @pytest.mark.asyncio
    async def test_oversized_body_is_rejected(self) -> None:
        fetcher, _ = _fetcher(lambda req: httpx.Response(200, html="<p>" + "a" * 5000 + "</p>"), max_bytes=1000)

        with pytest.raises(FetchError, match="exceeds"):
            await fetcher.fetch("https://example.com/big")


class TestAddressPinning:
    """La conexión va a la IP validada, nunca a una segunda resolución del hostname."""

    @pytest.mark.asyncio
    async def test_request_goes_to_validated_address(self) -> None:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            # cualquier destino que no sea la IP validada sería la red interna
            if request.url.host != "93.184.216.34":
                return httpx.Response(200, html="<title>INTERNAL</title><p>secret admin panel</p>")
            return httpx.Response(200, html=PAGE)

        resolver = _resolver({"rebind.example.com": ["93.184.216.34"]})
        fetcher, _ = _fetcher(handler, resolver=resolver)

        page = await fetcher.fetch("http://rebind.example.com:8080/admin")

        assert page.title == "Cat Facts"
        assert "secret admin panel" not in page.text
        sent = requests[0]
        assert sent.url.host == "93.184.216.34"
        assert sent.url.port == 8080
        assert sent.url.path == "/admin"
        assert sent.headers["host"] == "rebind.example.com:8080"

    @pytest.mark.asyncio
    async def test_https_keeps_hostname_for_tls(self) -> None:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, html=PAGE)

        fetcher, _ = _fetcher(handler)
        await fetcher.fetch("https://example.com/cats?page=2")

        sent = requests[0]
        assert str(sent.url) == "https://93.184.216.34/cats?page=2"
        assert sent.headers["host"] == "example.com"
        assert sent.extensions["sni_hostname"] == "example.com"

    @pytest.mark.asyncio
    async def test_redirect_hop_is_pinned_to_its_own_address(self) -> None:
        hosts: list[tuple[str, str]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            hosts.append((request.url.host, request.headers["host"]))
            if request.headers["host"] == "example.com":
                return httpx.Response(302, headers={"location": "https://docs.example.com/guide"})
            return httpx.Response(200, html=PAGE)

        fetcher, _ = _fetcher(handler)
        page = await fetcher.fetch("https://example.com/")

        assert page.url == "https://docs.example.com/guide"
        assert hosts == [("93.184.216.34", "example.com"), ("93.184.216.35", "docs.example.com")]
