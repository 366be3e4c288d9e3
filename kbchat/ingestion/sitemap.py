"""Sitemap fetching and URL discovery."""

import logging
import re
from typing import Optional
from xml.etree import ElementTree as ET

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from kbchat.core.errors import BlockedUrlError, InvalidUrlError, SitemapError
from kbchat.core.security import check_url_allowed
from kbchat.core.utils import normalize_url

logger = logging.getLogger(__name__)

SITEMAP_NS = "{http://www.sitemaps.org/schemas/sitemap/0.9}"
_LOC_RE = re.compile(r"<loc>\s*(.*?)\s*</loc>", re.IGNORECASE | re.DOTALL)


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_exception_type(httpx.TransportError),
    reraise=True,
)
async def fetch_sitemap(client: httpx.AsyncClient, sitemap_url: str, timeout: float = 30.0) -> str:
    """Fetch the sitemap document; connection errors are retried."""
    response = await client.get(sitemap_url, timeout=timeout, follow_redirects=True)
    response.raise_for_status()
    return response.text


def _loc_values(xml: str) -> tuple[bool, list[str]]:
    """Return (is_sitemap_index, loc values in document order)."""
    try:
        root = ET.fromstring(xml.strip().encode("utf-8"))
    except ET.ParseError:
        logger.warning("Sitemap is not well-formed XML; falling back to <loc> pattern match")
        return False, [m.strip() for m in _LOC_RE.findall(xml)]

    is_index = root.tag.endswith("sitemapindex")
    locs = []
    for elem in root.iter():
        # Namespaced or plain <loc>
        if elem.tag in (f"{SITEMAP_NS}loc", "loc") and elem.text:
            locs.append(elem.text.strip())
    return is_index, locs


def parse_sitemap_locations(xml: str, max_urls: Optional[int] = None) -> list[str]:
    """Extract http(s) page URLs from a sitemap, de-duplicated, in order, capped."""
    _, locs = _loc_values(xml)
    urls: list[str] = []
    seen: set[str] = set()
    for loc in locs:
        if not loc.lower().startswith(("http://", "https://")):
            continue
        try:
            url = normalize_url(loc)
        except InvalidUrlError:
            continue
        if url in seen:
            continue
        if max_urls is not None and len(urls) >= max_urls:
            break
        seen.add(url)
        urls.append(url)
    return urls


async def discover_sitemap_urls(
    client: httpx.AsyncClient,
    sitemap_url: str,
    max_urls: int = 10,
    timeout: float = 30.0,
    allow_private: bool = False,
) -> list[str]:
    """Fetch a sitemap (following one level of sitemap index) and return page URLs.

    Unless allow_private is set, the sitemap and every child sitemap must pass
    check_url_allowed; a blocked sitemap raises BlockedUrlError, blocked children
    are skipped.
    """
    sitemap_url = normalize_url(sitemap_url)
    if not allow_private:
        check_url_allowed(sitemap_url)
    try:
        xml = await fetch_sitemap(client, sitemap_url, timeout)
    except httpx.HTTPStatusError as e:
        raise SitemapError(f"Failed to fetch sitemap: HTTP {e.response.status_code}") from e
    except httpx.HTTPError as e:
        raise SitemapError(f"Failed to fetch sitemap: {type(e).__name__}: {e}") from e

    is_index, _ = _loc_values(xml)
    if not is_index:
        urls = parse_sitemap_locations(xml, max_urls)
    else:
        urls = []
        for child in parse_sitemap_locations(xml):
            if len(urls) >= max_urls:
                break
            if not allow_private:
                try:
                    check_url_allowed(child)
                except BlockedUrlError as e:
                    logger.warning(f"Skipping child sitemap {child}: {e.message}")
                    continue
            try:
                child_xml = await fetch_sitemap(client, child, timeout)
            except (httpx.HTTPError, BlockedUrlError) as e:
                logger.warning(f"Skipping child sitemap {child}: {e}")
                continue
            for url in parse_sitemap_locations(child_xml):
                if url not in urls:
                    urls.append(url)
        urls = urls[:max_urls]

    if not urls:
        raise SitemapError("No valid URLs found in sitemap")

    logger.info(f"Discovered {len(urls)} URLs in sitemap {sitemap_url}")
    return urls
