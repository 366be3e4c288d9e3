"""Transport cascade for fetching a URL's content."""

import asyncio
import logging
import time
from typing import Optional, Sequence
from urllib.parse import quote, urlparse

import httpx

from kbchat.core.config import Settings, get_settings
from kbchat.core.constants import TRANSPORT_DIRECT, TRANSPORT_MANAGED, TRANSPORT_READER_DIRECT
from kbchat.core.errors import BlockedUrlError, ScrapeUnavailable, TransportFailure
from kbchat.core.security import build_scrape_client
from kbchat.core.utils import normalize_url
from kbchat.ingestion.models import FetchResult, ScrapeAttempt
from kbchat.ingestion.parse_html import html_to_text, links_as_markdown, looks_like_html

logger = logging.getLogger(__name__)

BROWSER_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
}


class Transport:
    """One strategy for fetching a URL."""

    name = "transport"

    def __init__(self, timeout: float = 20.0):
        self.timeout = timeout

    async def fetch(self, url: str) -> str:
        """Return raw content or raise TransportFailure."""
        raise NotImplementedError


class HttpTransport(Transport):
    """Transport backed by a shared httpx client."""

    def __init__(self, client: httpx.AsyncClient, timeout: float = 20.0):
        super().__init__(timeout=timeout)
        self.client = client

    async def _get_text(self, url: str, target: str, headers: Optional[dict] = None) -> str:
        try:
            response = await self.client.get(target, headers=headers, timeout=self.timeout)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise TransportFailure(self.name, url, f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise TransportFailure(self.name, url, f"{type(e).__name__}: {e}") from e
        except BlockedUrlError as e:
            raise TransportFailure(self.name, url, e.message) from e
        return response.text


class ManagedFetchTransport(HttpTransport):
    """Server-side fetch through the managed backend; needs an authenticated session."""

    name = TRANSPORT_MANAGED

    def __init__(self, client: httpx.AsyncClient, endpoint: str, session_token: str, timeout: float = 20.0):
        super().__init__(client, timeout=timeout)
        self.endpoint = endpoint
        self.session_token = session_token

    async def fetch(self, url: str) -> str:
        try:
            response = await self.client.post(
                self.endpoint,
                json={"url": url, "summarize": False},
                headers={"Authorization": f"Bearer {self.session_token}"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise TransportFailure(self.name, url, f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise TransportFailure(self.name, url, f"{type(e).__name__}: {e}") from e
        except ValueError as e:
            raise TransportFailure(self.name, url, "invalid JSON response") from e

        content = data.get("content") if isinstance(data, dict) else None
        if not isinstance(content, str):
            raise TransportFailure(self.name, url, "response has no content")
        return content


class ReaderRelayTransport(HttpTransport):
    """Reader transform service wrapped through one relay proxy."""

    def __init__(self, client: httpx.AsyncClient, reader_base_url: str, relay_template: str, timeout: float = 20.0):
        super().__init__(client, timeout=timeout)
        self.reader_base_url = reader_base_url
        self.relay_template = relay_template
        self.name = f"relay:{urlparse(relay_template).netloc or relay_template}"

    async def fetch(self, url: str) -> str:
        reader_url = f"{self.reader_base_url}{url}"
        target = self.relay_template.format(url=quote(reader_url, safe=""))
        return await self._get_text(url, target, headers={"Accept": "text/plain"})


class ReaderDirectTransport(HttpTransport):
    """Reader transform service called without a relay."""

    name = TRANSPORT_READER_DIRECT

    def __init__(self, client: httpx.AsyncClient, reader_base_url: str, user_agent: str, timeout: float = 20.0):
        super().__init__(client, timeout=timeout)
        self.reader_base_url = reader_base_url
        self.user_agent = user_agent

    async def fetch(self, url: str) -> str:
        return await self._get_text(
            url,
            f"{self.reader_base_url}{url}",
            headers={"Accept": "text/plain", "User-Agent": self.user_agent},
        )


class DirectFetchTransport(HttpTransport):
    """Plain GET of the target page, HTML reduced to text plus its links."""

    name = TRANSPORT_DIRECT

    async def fetch(self, url: str) -> str:
        body = await self._get_text(url, url, headers=BROWSER_HEADERS)
        if not looks_like_html(body):
            return body
        text = html_to_text(body)
        # Keep hrefs the way reader output does, for crawl link discovery
        links = links_as_markdown(body, url)
        return f"{text}\n\n{links}" if links else text


class TransportResolver:
    """Try transports in priority order and return the first usable content."""

    def __init__(self, transports: Sequence[Transport], min_content_chars: int = 100):
        self.transports = list(transports)
        self.min_content_chars = min_content_chars

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None, client: Optional[httpx.AsyncClient] = None) -> "TransportResolver":
        """Build the standard cascade: managed, reader via each relay, reader, direct."""
        config = config or get_settings()
        client = client or build_scrape_client(config)
        timeout = config.transport_timeout_seconds

        transports: list[Transport] = []
        if config.has_managed_session:
            transports.append(
                ManagedFetchTransport(
                    client,
                    endpoint=config.managed_base_url.rstrip("/") + config.managed_scrape_path,
                    session_token=config.managed_session_token,
                    timeout=timeout,
                )
            )
        for template in config.relay_proxies:
            transports.append(ReaderRelayTransport(client, config.reader_base_url, template, timeout=timeout))
        transports.append(ReaderDirectTransport(client, config.reader_base_url, config.user_agent, timeout=timeout))
        if config.enable_direct_fetch:
            transports.append(DirectFetchTransport(client, timeout=timeout))

        return cls(transports, min_content_chars=config.min_content_chars)

    async def _attempt(self, transport: Transport, url: str) -> tuple[ScrapeAttempt, Optional[str]]:
        started = time.perf_counter()
        try:
            content = await asyncio.wait_for(transport.fetch(url), timeout=transport.timeout)
            if len(content.strip()) < self.min_content_chars:
                raise TransportFailure(
                    transport.name, url, f"content below {self.min_content_chars} chars ({len(content.strip())})"
                )
        except asyncio.TimeoutError:
            error = f"timed out after {transport.timeout}s"
        except TransportFailure as e:
            error = e.reason
        except Exception as e:
            logger.exception(f"Unexpected error in transport {transport.name} for {url}")
            error = f"{type(e).__name__}: {e}"
        else:
            latency = (time.perf_counter() - started) * 1000
            return ScrapeAttempt(transport=transport.name, success=True, latency_ms=latency, size=len(content)), content

        latency = (time.perf_counter() - started) * 1000
        return ScrapeAttempt(transport=transport.name, success=False, latency_ms=latency, error=error), None

    async def resolve(self, url: str) -> FetchResult:
        """Fetch a URL through the cascade; raise ScrapeUnavailable when all transports fail."""
        url = normalize_url(url)
        attempts: list[ScrapeAttempt] = []

        for transport in self.transports:
            attempt, content = await self._attempt(transport, url)
            attempts.append(attempt)
            if attempt.success:
                logger.info(
                    f"Fetched {url} via {transport.name} ({attempt.size} chars, "
                    f"{attempt.latency_ms:.0f}ms, attempt {len(attempts)})"
                )
                return FetchResult(url=url, content=content, transport=transport.name, attempts=len(attempts))
            logger.warning(f"Transport {transport.name} failed for {url}: {attempt.error}")

        last_error = attempts[-1].error if attempts else "no transports configured"
        logger.error(f"All {len(attempts)} transports failed for {url}")
        raise ScrapeUnavailable(url, attempts=len(attempts), last_error=last_error)
