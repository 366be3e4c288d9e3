"""Exception taxonomy for ingestion and scraping."""

from typing import Any, Optional

from kbchat.core.constants import SCRAPE_SUGGESTION


class KbChatError(Exception):
    """Base error; carries an HTTP status and a JSON-safe payload."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.message}


class InvalidUrlError(KbChatError):
    """URL cannot be parsed or uses an unsupported scheme."""

    status_code = 400


class BlockedUrlError(KbChatError):
    """URL points at a host that must never be fetched (loopback, private, metadata)."""

    status_code = 403


class InvalidSourceError(KbChatError):
    """Submitted content is empty or of an unsupported type."""

    status_code = 400


class TransportFailure(KbChatError):
    """One transport strategy failed for one URL; recoverable via the cascade."""

    status_code = 502

    def __init__(self, transport: str, url: str, reason: str):
        super().__init__(f"{transport} failed for {url}: {reason}")
        self.transport = transport
        self.url = url
        self.reason = reason


class ScrapeUnavailable(KbChatError):
    """Every transport was exhausted for a URL."""

    status_code = 422

    def __init__(self, url: str, attempts: int, last_error: Optional[str] = None):
        super().__init__(
            f"Failed to scrape {url} after {attempts} attempt(s). The site may block automated "
            "access, require authentication, or be temporarily unavailable."
        )
        self.url = url
        self.attempts = attempts
        self.last_error = last_error
        self.suggestion = SCRAPE_SUGGESTION

    def to_payload(self) -> dict[str, Any]:
        return {
            "error": self.message,
            "suggestion": self.suggestion,
            "url": self.url,
            "attempts": self.attempts,
        }


class SitemapError(KbChatError):
    """Sitemap could not be fetched or held no usable locations."""

    status_code = 422
