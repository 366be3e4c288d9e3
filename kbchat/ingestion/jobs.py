"""In-process registry of background batch scrape jobs."""

import asyncio
import logging
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Optional

from kbchat.core.constants import MODE_CRAWL, MODE_LIST, MODE_SITEMAP, STAGE_FAILED
from kbchat.core.errors import KbChatError
from kbchat.ingestion.batch import BatchScraper
from kbchat.ingestion.models import BatchJob, utcnow

logger = logging.getLogger(__name__)

JobRunner = Callable[..., Awaitable[BatchJob]]


class BatchJobRegistry:
    """Runs batch jobs as asyncio tasks and tracks them by job_id."""

    def __init__(self, batch_scraper: BatchScraper, max_jobs: int = 100):
        self.batch_scraper = batch_scraper
        self.max_jobs = max_jobs
        self._jobs: "OrderedDict[str, BatchJob]" = OrderedDict()
        self._tasks: dict[str, asyncio.Task] = {}
        self._cancel_events: dict[str, asyncio.Event] = {}

    def _evict(self) -> None:
        # Oldest finished jobs go first; running jobs are never dropped
        for job_id in list(self._jobs):
            if len(self._jobs) <= self.max_jobs:
                break
            if self._jobs[job_id].finished:
                del self._jobs[job_id]
                self._cancel_events.pop(job_id, None)

    async def _run(self, job: BatchJob, runner: JobRunner, *args: Any, **kwargs: Any) -> None:
        try:
            await runner(*args, job=job, cancel_event=self._cancel_events[job.job_id], **kwargs)
        except KbChatError as e:
            logger.warning(f"Job {job.job_id} failed: {e.message}")
        except Exception as e:
            logger.error(f"Job {job.job_id} crashed: {e}", exc_info=True)
            job.stage = STAGE_FAILED
            job.error = str(e) or type(e).__name__
            job.finished_at = utcnow()
        finally:
            self._tasks.pop(job.job_id, None)

    def _start(self, job: BatchJob, runner: JobRunner, *args: Any, **kwargs: Any) -> BatchJob:
        self._jobs[job.job_id] = job
        self._cancel_events[job.job_id] = asyncio.Event()
        self._tasks[job.job_id] = asyncio.create_task(self._run(job, runner, *args, **kwargs))
        self._evict()
        logger.info(f"Started {job.mode} job {job.job_id}")
        return job

    def start_urls(self, urls: list[str], stop_on_error: bool = False, delay: Optional[float] = None) -> BatchJob:
        job = BatchJob(mode=MODE_LIST, urls=list(urls))
        return self._start(
            job, self.batch_scraper.scrape_urls, job.urls, delay=delay, stop_on_error=stop_on_error
        )

    def start_sitemap(
        self, sitemap_url: str, max_urls: Optional[int] = None, stop_on_error: bool = False
    ) -> BatchJob:
        job = BatchJob(mode=MODE_SITEMAP)
        return self._start(
            job, self.batch_scraper.scrape_sitemap, sitemap_url, max_urls=max_urls, stop_on_error=stop_on_error
        )

    def start_crawl(self, url: str, max_pages: Optional[int] = None, stop_on_error: bool = False) -> BatchJob:
        job = BatchJob(mode=MODE_CRAWL, urls=[url])
        return self._start(job, self.batch_scraper.crawl, url, max_pages=max_pages, stop_on_error=stop_on_error)

    def get(self, job_id: str) -> Optional[BatchJob]:
        return self._jobs.get(job_id)

    def cancel(self, job_id: str) -> bool:
        """Request cancellation; the job stops before its next URL."""
        job = self._jobs.get(job_id)
        if job is None or job.finished:
            return False
        self._cancel_events[job_id].set()
        logger.info(f"Cancellation requested for job {job_id}")
        return True

    async def wait(self, job_id: str) -> Optional[BatchJob]:
        task = self._tasks.get(job_id)
        if task is not None:
            await task
        return self._jobs.get(job_id)

    async def shutdown(self) -> None:
        for event in self._cancel_events.values():
            event.set()
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
