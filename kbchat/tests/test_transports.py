"""Tests for the transport cascade."""

import asyncio
from urllib.parse import unquote

import httpx
import pytest

from conftest import StaticTransport, make_settings
from kbchat.core.errors import ScrapeUnavailable, TransportFailure
from kbchat.core.security import build_scrape_client
from kbchat.ingestion.transports import (
    DirectFetchTransport,
    ManagedFetchTransport,
    Transport,
    TransportResolver,
)

PAGE = "Acme Plumbing offers emergency repairs, drain cleaning and water heater installs. " * 3


class SlowTransport(Transport):
    name = "slow"

    async def fetch(self, url: str) -> str:
        await asyncio.sleep(5)
        return PAGE


def test_first_successful_transport_wins():
    """Transports after the first success are never called."""
    first = StaticTransport("relay:a", error="HTTP 403")
    second = StaticTransport("relay:b", content=PAGE)
    third = StaticTransport("reader", content=PAGE)
    resolver = TransportResolver([first, second, third], min_content_chars=100)

    result = asyncio.run(resolver.resolve("https://acme.example/services"))

    assert result.transport == "relay:b"
    assert result.attempts == 2
    assert result.content == PAGE
    assert third.calls == []


def test_short_content_counts_as_failure():
    """Content under the floor moves on to the next transport."""
    short = StaticTransport("relay:a", content="Access denied")
    good = StaticTransport("reader", content=PAGE)
    resolver = TransportResolver([short, good], min_content_chars=100)

    result = asyncio.run(resolver.resolve("acme.example"))

    assert result.transport == "reader"
    assert result.url == "https://acme.example"


def test_all_transports_fail_raises_scrape_unavailable():
    """Exhausting the cascade raises with the attempt count and a suggestion."""
    transports = [StaticTransport(f"t{i}", error="HTTP 500") for i in range(4)]
    resolver = TransportResolver(transports)

    with pytest.raises(ScrapeUnavailable) as exc_info:
        asyncio.run(resolver.resolve("https://acme.example"))

    payload = exc_info.value.to_payload()
    assert exc_info.value.attempts == 4
    assert payload["attempts"] == 4
    assert payload["suggestion"]
    assert "acme.example" in payload["error"]


def test_each_attempt_has_its_own_timeout():
    """A hanging transport times out and the cascade continues."""
    slow = SlowTransport(timeout=0.05)
    good = StaticTransport("reader", content=PAGE)
    resolver = TransportResolver([slow, good])

    result = asyncio.run(resolver.resolve("https://acme.example"))

    assert result.transport == "reader"
    assert result.attempts == 2


def test_cascade_order_from_settings():
    """Managed first when a session exists, then relays, reader, direct."""
    anonymous = TransportResolver.from_settings(make_settings(), httpx.AsyncClient())
    names = [t.name for t in anonymous.transports]
    assert names == [
        "relay:corsproxy.io",
        "relay:api.allorigins.win",
        "relay:api.codetabs.com",
        "reader",
        "direct",
    ]

    signed_in = TransportResolver.from_settings(
        make_settings(managed_base_url="https://backend.example", managed_session_token="tok"),
        httpx.AsyncClient(),
    )
    assert signed_in.transports[0].name == "managed"

    no_direct = TransportResolver.from_settings(make_settings(enable_direct_fetch=False), httpx.AsyncClient())
    assert no_direct.transports[-1].name == "reader"


def test_relay_wraps_reader_url():
    """Relays receive the reader URL, percent-encoded."""
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        if request.url.host == "corsproxy.io":
            return httpx.Response(502, text="bad gateway")
        return httpx.Response(200, text=PAGE)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    resolver = TransportResolver.from_settings(make_settings(), client)

    result = asyncio.run(resolver.resolve("https://acme.example/about"))

    assert result.transport == "relay:api.allorigins.win"
    assert result.attempts == 2
    assert seen[0].startswith("https://corsproxy.io/?")
    assert unquote(seen[0]).endswith("https://r.jina.ai/https://acme.example/about")


def test_managed_transport_posts_url_with_session():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["auth"] = request.headers.get("authorization")
        captured["body"] = request.read()
        return httpx.Response(200, json={"content": PAGE})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    transport = ManagedFetchTransport(client, "https://backend.example/functions/v1/scrape-url", "tok")

    content = asyncio.run(transport.fetch("https://acme.example"))

    assert content == PAGE
    assert captured["auth"] == "Bearer tok"
    assert b'"summarize":false' in captured["body"].replace(b" ", b"")


def test_direct_fetch_reduces_html_to_text():
    html = (
        "<!DOCTYPE html><html><head><title>Acme</title><script>var x = 1;</script></head>"
        f"<body><nav>Home | About</nav><article><p>{PAGE}</p></article></body></html>"
    )
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, text=html)))

    content = asyncio.run(DirectFetchTransport(client).fetch("https://acme.example"))

    assert "emergency repairs" in content
    assert "<p>" not in content
    assert "var x" not in content


def test_direct_fetch_keeps_page_links():
    html = (
        "<!DOCTYPE html><html><body>"
        '<nav><a href="/about">About</a> <a href="https://acme.example/pricing#plans">Pricing</a></nav>'
        f"<article><p>{PAGE}</p></article></body></html>"
    )
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, text=html)))

    content = asyncio.run(DirectFetchTransport(client).fetch("https://acme.example/"))

    assert "emergency repairs" in content
    assert "[https://acme.example/about](https://acme.example/about)" in content
    assert "(https://acme.example/pricing)" in content


def test_redirect_to_metadata_host_is_not_followed():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(str(request.url))
        if request.url.host == "acme.example":
            return httpx.Response(302, headers={"Location": "http://169.254.169.254/latest/meta-data"})
        return httpx.Response(200, text=PAGE)

    client = build_scrape_client(make_settings(), transport=httpx.MockTransport(handler))

    with pytest.raises(TransportFailure, match="not allowed"):
        asyncio.run(DirectFetchTransport(client).fetch("https://acme.example/"))

    assert requests == ["https://acme.example/"]


def test_redirects_followed_when_private_hosts_allowed():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "acme.example":
            return httpx.Response(302, headers={"Location": "http://10.0.0.5/page"})
        return httpx.Response(200, text=PAGE)

    client = build_scrape_client(make_settings(allow_private_hosts=True), transport=httpx.MockTransport(handler))

    assert asyncio.run(DirectFetchTransport(client).fetch("https://acme.example/")) == PAGE
