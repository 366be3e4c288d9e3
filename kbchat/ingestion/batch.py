"""Serial batch scraping: URL lists, sitemaps and shallow crawls."""

import asyncio
import logging
from typing import Callable, Optional

import httpx

from kbchat.core.config import Settings, get_settings
from kbchat.core.constants import (
    MODE_CRAWL,
    MODE_LIST,
    MODE_SITEMAP,
    STAGE_CANCELLED,
    STAGE_COMPLETE,
    STAGE_EXTRACTING_LINKS,
    STAGE_FAILED,
    STAGE_FETCHING_SITEMAP,
    STAGE_SCRAPED,
    STAGE_SCRAPING,
    STAGE_STOPPED,
)
from kbchat.core.errors import BlockedUrlError, KbChatError, SitemapError
from kbchat.core.security import build_scrape_client
from kbchat.core.utils import is_same_site, normalize_url
from kbchat.ingestion.models import BatchJob, BatchProgress, UrlOutcome, utcnow
from kbchat.ingestion.parse_html import extract_links
from kbchat.ingestion.scraper import WebScraper
from kbchat.ingestion.sitemap import discover_sitemap_urls

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[BatchProgress], None]


class BatchScraper:
    """Scrapes URLs one at a time with a fixed delay between attempts."""

    def __init__(
        self,
        scraper: Optional[WebScraper] = None,
        config: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = config or get_settings()
        self.client = client or build_scrape_client(self.settings)
        self.scraper = scraper or WebScraper(config=self.settings, client=self.client)

    def _report(self, job: BatchJob, on_progress: Optional[ProgressCallback]) -> None:
        if on_progress is None:
            return
        try:
            on_progress(job.progress())
        except Exception:
            logger.exception(f"Progress callback failed for job {job.job_id}")

    async def _scrape_one(self, url: str) -> UrlOutcome:
        try:
            document = await self.scraper.scrape(url)
        except KbChatError as e:
            logger.warning(f"Batch item failed for {url}: {e.message}")
            return UrlOutcome(url=url, success=False, error=e.message)
        except Exception as e:
            logger.error(f"Unexpected error scraping {url}: {e}", exc_info=True)
            return UrlOutcome(url=url, success=False, error=str(e) or type(e).__name__)

        return UrlOutcome(
            url=url,
            success=True,
            content=document.text,
            content_size=len(document.text),
            transport=document.transport,
            summarized=document.summarized,
            document=document,
        )

    async def _scrape_pending(
        self,
        job: BatchJob,
        delay: float,
        on_progress: Optional[ProgressCallback],
        stop_on_error: bool,
        cancel_event: Optional[asyncio.Event],
    ) -> None:
        """Scrape job.urls that have no outcome yet, in order."""
        while job.completed < job.total:
            if cancel_event is not None and cancel_event.is_set():
                job.cancelled = True
                return

            if job.completed > 0 and delay > 0:
                await asyncio.sleep(delay)
                if cancel_event is not None and cancel_event.is_set():
                    job.cancelled = True
                    return

            url = job.urls[job.completed]
            job.current_url = url
            job.stage = STAGE_SCRAPING
            self._report(job, on_progress)

            outcome = await self._scrape_one(url)
            job.outcomes.append(outcome)
            job.stage = STAGE_SCRAPED
            self._report(job, on_progress)

            if not outcome.success and stop_on_error:
                job.stopped_early = True
                logger.info(f"Stopping job {job.job_id} after failure on {url}")
                return

    def _finish(self, job: BatchJob, on_progress: Optional[ProgressCallback]) -> BatchJob:
        if job.cancelled:
            job.stage = STAGE_CANCELLED
        elif job.stopped_early:
            job.stage = STAGE_STOPPED
        else:
            job.stage = STAGE_COMPLETE
        job.current_url = None
        job.finished_at = utcnow()
        self._report(job, on_progress)
        logger.info(
            f"Job {job.job_id} {job.stage}: {job.succeeded} succeeded, "
            f"{job.failed} failed of {job.total}"
        )
        return job

    async def scrape_urls(
        self,
        urls: list[str],
        on_progress: Optional[ProgressCallback] = None,
        delay: Optional[float] = None,
        stop_on_error: bool = False,
        cancel_event: Optional[asyncio.Event] = None,
        job: Optional[BatchJob] = None,
    ) -> BatchJob:
        """Scrape every URL in submission order; failures become failed outcomes."""
        if job is None:
            job = BatchJob(mode=MODE_LIST, urls=list(urls))
        delay = self.settings.batch_delay_seconds if delay is None else delay

        await self._scrape_pending(job, delay, on_progress, stop_on_error, cancel_event)
        return self._finish(job, on_progress)

    async def scrape_sitemap(
        self,
        sitemap_url: str,
        max_urls: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
        delay: Optional[float] = None,
        stop_on_error: bool = False,
        cancel_event: Optional[asyncio.Event] = None,
        job: Optional[BatchJob] = None,
    ) -> BatchJob:
        """Scrape the first max_urls page URLs listed in a sitemap."""
        if job is None:
            job = BatchJob(mode=MODE_SITEMAP)
        max_urls = self.settings.sitemap_max_urls if max_urls is None else max_urls
        delay = self.settings.sitemap_delay_seconds if delay is None else delay
        if max_urls < 1:
            return self._finish(job, on_progress)

        job.stage = STAGE_FETCHING_SITEMAP
        job.current_url = sitemap_url
        self._report(job, on_progress)

        try:
            urls = await discover_sitemap_urls(
                self.client,
                sitemap_url,
                max_urls,
                timeout=self.settings.transport_timeout_seconds,
                allow_private=self.settings.allow_private_hosts,
            )
        except KbChatError as e:
            job.stage = STAGE_FAILED
            job.error = e.message
            job.current_url = None
            job.finished_at = utcnow()
            self._report(job, on_progress)
            if isinstance(e, (SitemapError, BlockedUrlError)):
                raise
            raise SitemapError(e.message) from e

        job.urls = urls
        await self._scrape_pending(job, delay, on_progress, stop_on_error, cancel_event)
        return self._finish(job, on_progress)

    def _linked_urls(self, job: BatchJob, seed: UrlOutcome, limit: int) -> list[str]:
        document = seed.document
        content = (document.raw_content or document.text) if document else ""
        links: list[str] = []
        for link in extract_links(content, seed.url):
            try:
                url = normalize_url(link)
            except KbChatError:
                continue
            if url == seed.url or url in links or url in job.urls:
                continue
            if not is_same_site(url, seed.url):
                continue
            links.append(url)
            if len(links) >= limit:
                break
        return links

    async def crawl(
        self,
        start_url: str,
        max_pages: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
        delay: Optional[float] = None,
        stop_on_error: bool = False,
        cancel_event: Optional[asyncio.Event] = None,
        job: Optional[BatchJob] = None,
    ) -> BatchJob:
        """Scrape a seed page, then up to max_pages - 1 same-site pages it links to."""
        seed_url = normalize_url(start_url)
        if job is None:
            job = BatchJob(mode=MODE_CRAWL)
        max_pages = self.settings.crawl_max_pages if max_pages is None else max_pages
        delay = self.settings.crawl_delay_seconds if delay is None else delay
        if max_pages < 1:
            return self._finish(job, on_progress)
        job.urls = [seed_url]

        await self._scrape_pending(job, delay, on_progress, stop_on_error, cancel_event)

        seed = job.outcomes[0] if job.outcomes else None
        if seed is None or not seed.success or max_pages <= 1 or job.cancelled:
            return self._finish(job, on_progress)

        job.stage = STAGE_EXTRACTING_LINKS
        job.current_url = seed_url
        self._report(job, on_progress)
        try:
            links = self._linked_urls(job, seed, max_pages - 1)
        except Exception as e:
            logger.warning(f"Link extraction failed for {seed_url}; keeping seed result: {e}")
            links = []

        logger.info(f"Crawl from {seed_url} found {len(links)} same-site links")
        job.urls.extend(links)
        await self._scrape_pending(job, delay, on_progress, stop_on_error, cancel_event)
        return self._finish(job, on_progress)

    async def close(self) -> None:
        await self.client.aclose()
