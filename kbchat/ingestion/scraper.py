"""Scrape one URL into a KnowledgeDocument."""

import logging
from typing import Optional

import httpx

from kbchat.core.config import Settings, get_settings
from kbchat.core.security import check_url_allowed
from kbchat.core.utils import normalize_url
from kbchat.ingestion.extractor import ContentExtractor
from kbchat.ingestion.models import KnowledgeDocument, Source, SourceKind
from kbchat.ingestion.transports import TransportResolver

logger = logging.getLogger(__name__)


class WebScraper:
    """Transport cascade followed by content extraction."""

    def __init__(
        self,
        resolver: Optional[TransportResolver] = None,
        extractor: Optional[ContentExtractor] = None,
        config: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = config or get_settings()
        self.resolver = resolver or TransportResolver.from_settings(self.settings, client)
        self.extractor = extractor or ContentExtractor(config=self.settings)

    async def scrape(self, url: str, bot_id: Optional[str] = None, structured: bool = False) -> KnowledgeDocument:
        """Fetch and summarize a URL; raises ScrapeUnavailable, InvalidUrlError or BlockedUrlError."""
        url = normalize_url(url)
        if not self.settings.allow_private_hosts:
            check_url_allowed(url)

        fetched = await self.resolver.resolve(url)
        extraction = await self.extractor.extract(fetched.content, url=fetched.url, structured=structured)

        source = Source(
            kind=SourceKind.URL,
            bot_id=bot_id,
            locator=fetched.url,
            size=len(fetched.content),
            media_type="text/plain",
        )
        return KnowledgeDocument(
            source=source,
            text=extraction.text,
            raw_length=len(fetched.content),
            transport=fetched.transport,
            summarized=extraction.summarized,
            facts=extraction.facts,
            raw_content=fetched.content,
        )
