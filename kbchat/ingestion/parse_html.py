"""HTML parsing and extraction."""

import logging
import re
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup
from readability import Document

from kbchat.core.utils import normalize_block_text

logger = logging.getLogger(__name__)

_NOISE_TAGS = ["script", "style", "nav", "footer", "iframe", "noscript", "svg", "form"]
_MARKDOWN_LINK_RE = re.compile(r"\[[^\]]*\]\((https?://[^)\s]+)\)")
_HREF_RE = re.compile(r"""href\s*=\s*["']([^"'#][^"']*)["']""", re.IGNORECASE)


def looks_like_html(content: str) -> bool:
    """Cheap check for markup in fetched content."""
    head = content[:2000].lower()
    return "<html" in head or "<body" in head or "<!doctype html" in head


def _soup_text(html: str) -> str:
    soup = BeautifulSoup(html, "lxml")
    for tag in soup.find_all(_NOISE_TAGS):
        tag.decompose()
    return normalize_block_text(soup.get_text("\n"))


def html_to_text(html: str) -> str:
    """Convert an HTML page to readable text, main content first."""
    try:
        # Use readability to extract main content
        main_content = Document(html).summary()
        text = _soup_text(main_content)
    except Exception as e:
        logger.warning(f"Readability extraction failed, using full page text: {e}")
        text = ""

    full_text = _soup_text(html)
    # Readability can drop most of a short landing page
    if len(text) < len(full_text) // 3:
        return full_text
    return text


def extract_links(content: str, base_url: str) -> list[str]:
    """Collect absolute http(s) links from markdown or HTML content, in order."""
    links: list[str] = []
    seen: set[str] = set()

    candidates = _MARKDOWN_LINK_RE.findall(content)
    candidates.extend(urljoin(base_url, href) for href in _HREF_RE.findall(content))

    for link in candidates:
        parsed = urlparse(link)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            continue
        # Drop fragments so anchors on one page collapse
        link = link.split("#", 1)[0]
        if link not in seen:
            seen.add(link)
            links.append(link)

    return links


def links_as_markdown(html: str, base_url: str) -> str:
    """Page links rendered as a markdown list; empty when the page has none."""
    links = extract_links(html, base_url)
    if not links:
        return ""
    return "Links:\n" + "\n".join(f"- [{link}]({link})" for link in links)
