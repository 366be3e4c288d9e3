"""Utility functions."""

import math
import re
from typing import Iterable, Optional
from urllib.parse import urljoin, urlparse

import tldextract

from kbchat.core.constants import CHARS_PER_TOKEN
from kbchat.core.errors import InvalidUrlError

# Offline extractor: bundled public suffix snapshot, no network fetch
_tld_extract = tldextract.TLDExtract(suffix_list_urls=())

_URL_IN_TEXT_RE = re.compile(r"https?://[^\s<>\"]+|www\.[^\s<>\"]+")


def normalize_url(url: str, base_url: Optional[str] = None) -> str:
    """Normalize a user-submitted URL: trim, resolve, prefix a scheme when missing."""
    url = (url or "").strip()
    if not url:
        raise InvalidUrlError("URL is empty")
    if base_url:
        url = urljoin(base_url, url)
    if not url.lower().startswith(("http://", "https://")):
        if "://" in url:
            raise InvalidUrlError(f"Only http and https URLs are supported: {url}")
        url = "https://" + url.lstrip("/")

    parsed = urlparse(url)
    if not parsed.netloc or " " in parsed.netloc:
        raise InvalidUrlError(f"Invalid URL: {url}")

    # Drop fragment, keep query
    normalized = f"{parsed.scheme.lower()}://{parsed.netloc.lower()}{parsed.path}"
    if parsed.query:
        normalized += f"?{parsed.query}"
    return normalized


def site_key(url: str) -> tuple[str, str]:
    """Registered domain of a URL as (domain, suffix)."""
    extracted = _tld_extract(url)
    if not extracted.suffix:
        # IPs and single-label hosts compare by full host
        return (urlparse(url).hostname or "", "")
    return (extracted.domain, extracted.suffix)


def is_same_site(url: str, other: str) -> bool:
    """Check whether two URLs share a registered domain."""
    try:
        return site_key(url) == site_key(other)
    except Exception:
        return False


def clean_url_list(urls: Iterable[str]) -> list[str]:
    """Trim, scheme-prefix, validate and de-duplicate URLs, preserving order."""
    seen: set[str] = set()
    cleaned: list[str] = []
    for raw in urls:
        if not raw or not raw.strip():
            continue
        try:
            url = normalize_url(raw)
        except InvalidUrlError:
            continue
        if url not in seen:
            seen.add(url)
            cleaned.append(url)
    return cleaned


def extract_urls_from_text(text: str) -> list[str]:
    """Find URLs mentioned in free text."""
    matches = [m.rstrip(".,;:)]") for m in _URL_IN_TEXT_RE.findall(text or "")]
    return clean_url_list(matches)


def estimate_tokens(text: str) -> int:
    """Estimate token count (rough approximation: ~4 chars per token, rounded up)."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def normalize_block_text(text: str) -> str:
    """Collapse runs of spaces while keeping paragraph breaks."""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"[ \t\f\v]+", " ", text)
    text = re.sub(r" ?\n ?", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def truncate_text(text: str, max_length: int, suffix: str = "...") -> str:
    """Truncate text to max length with suffix."""
    if len(text) <= max_length:
        return text
    if not suffix:
        return text[:max_length]
    return text[: max_length - len(suffix)] + suffix
