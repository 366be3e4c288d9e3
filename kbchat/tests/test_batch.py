"""Tests for batch, sitemap and crawl orchestration."""

import asyncio

import httpx
import pytest

from conftest import FakeScraper, ScriptedBackend, make_settings
from kbchat.core.constants import STAGE_CANCELLED, STAGE_COMPLETE, STAGE_SCRAPED, STAGE_SCRAPING, STAGE_STOPPED
from kbchat.core.errors import BlockedUrlError, ScrapeUnavailable, SitemapError
from kbchat.ingestion.batch import BatchScraper
from kbchat.ingestion.extractor import ContentExtractor
from kbchat.ingestion.jobs import BatchJobRegistry
from kbchat.ingestion.models import BatchJob
from kbchat.ingestion.scraper import WebScraper
from kbchat.ingestion.transports import DirectFetchTransport, TransportResolver

GOOD = "Plenty of useful business content about services and opening hours. " * 3
URLS = ["https://a.example", "https://bad.example", "https://c.example"]


def make_batch(pages: dict, client=None) -> BatchScraper:
    client = client or httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(404)))
    return BatchScraper(FakeScraper(pages), make_settings(), client)


def three_url_pages():
    return {
        URLS[0]: GOOD,
        URLS[1]: ScrapeUnavailable(URLS[1], attempts=5),
        URLS[2]: GOOD,
    }


def test_three_url_batch_outcomes_in_order():
    """Middle URL fails: 3 completed, 2 succeeded, 1 failed, submission order kept."""
    reports = []
    batch = make_batch(three_url_pages())

    job = asyncio.run(batch.scrape_urls(URLS, on_progress=reports.append, delay=0))

    assert [o.url for o in job.outcomes] == URLS
    assert [o.success for o in job.outcomes] == [True, False, True]
    assert (job.completed, job.succeeded, job.failed) == (3, 2, 1)
    assert "after 5 attempt(s)" in job.outcomes[1].error
    assert job.outcomes[0].content == "Summary of https://a.example"
    assert job.outcomes[0].content_size == len(job.outcomes[0].content)

    final = reports[-1]
    assert final.stage == STAGE_COMPLETE
    assert (final.total, final.completed, final.succeeded, final.failed) == (3, 3, 2, 1)
    assert final.current_url is None


def test_progress_reports_only_known_outcomes():
    reports = []
    batch = make_batch(three_url_pages())

    asyncio.run(batch.scrape_urls(URLS, on_progress=reports.append, delay=0))

    scraping = [r for r in reports if r.stage == STAGE_SCRAPING]
    scraped = [r for r in reports if r.stage == STAGE_SCRAPED]
    assert [r.completed for r in scraping] == [0, 1, 2]
    assert [r.current_url for r in scraping] == URLS
    assert [r.completed for r in scraped] == [1, 2, 3]
    assert [(r.succeeded, r.failed) for r in scraped] == [(1, 0), (1, 1), (2, 1)]


def test_delay_between_urls_not_after_last(monkeypatch):
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    monkeypatch.setattr("kbchat.ingestion.batch.asyncio.sleep", fake_sleep)
    batch = make_batch(three_url_pages())

    asyncio.run(batch.scrape_urls(URLS, delay=2.0))

    assert sleeps == [2.0, 2.0]


def test_default_delay_comes_from_settings(monkeypatch):
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    monkeypatch.setattr("kbchat.ingestion.batch.asyncio.sleep", fake_sleep)
    batch = BatchScraper(FakeScraper(three_url_pages()), make_settings(batch_delay_seconds=2.0), httpx.AsyncClient())

    asyncio.run(batch.scrape_urls(URLS))

    assert sleeps == [2.0, 2.0]


def test_stop_on_error():
    batch = make_batch(three_url_pages())

    job = asyncio.run(batch.scrape_urls(URLS, delay=0, stop_on_error=True))

    assert job.stage == STAGE_STOPPED
    assert job.stopped_early
    assert (job.total, job.completed, job.failed) == (3, 2, 1)
    assert batch.scraper.calls == URLS[:2]


def test_cancellation_stops_before_next_url():
    async def scenario():
        cancel = asyncio.Event()
        batch = make_batch(three_url_pages())

        def on_progress(progress):
            if progress.stage == STAGE_SCRAPED:
                cancel.set()

        job = await batch.scrape_urls(URLS, on_progress=on_progress, delay=0, cancel_event=cancel)
        return batch, job

    batch, job = asyncio.run(scenario())

    assert job.stage == STAGE_CANCELLED
    assert job.cancelled
    assert job.completed == 1
    assert batch.scraper.calls == URLS[:1]


def test_unexpected_error_becomes_failed_outcome():
    batch = make_batch({URLS[0]: ValueError("parser exploded"), URLS[2]: GOOD})

    job = asyncio.run(batch.scrape_urls([URLS[0], URLS[2]], delay=0))

    assert [o.success for o in job.outcomes] == [False, True]
    assert job.outcomes[0].error == "parser exploded"


def test_progress_callback_errors_do_not_stop_batch():
    def broken(progress):
        raise RuntimeError("ui went away")

    job = asyncio.run(make_batch(three_url_pages()).scrape_urls(URLS, on_progress=broken, delay=0))

    assert job.completed == 3


SEED_PAGE = """
# Acme Plumbing
[Services](https://acme-plumbing.com/services) and [Pricing](https://acme-plumbing.com/pricing)
[Services again](https://acme-plumbing.com/services#top)
[Partner](https://partner-supplies.com/deal)
[Blog](https://blog.acme-plumbing.com/news)
<a href="/contact">Contact</a>
[Home](https://acme-plumbing.com/)
""" + GOOD


def test_crawl_follows_same_site_links():
    """Same registered domain (subdomains included), seed and duplicates excluded, capped."""
    pages = {
        "https://acme-plumbing.com/": SEED_PAGE,
        "https://acme-plumbing.com/services": GOOD,
        "https://acme-plumbing.com/pricing": GOOD,
        "https://blog.acme-plumbing.com/news": GOOD,
        "https://acme-plumbing.com/contact": GOOD,
    }
    batch = make_batch(pages)

    job = asyncio.run(batch.crawl("acme-plumbing.com/", max_pages=4, delay=0))

    assert job.urls == [
        "https://acme-plumbing.com/",
        "https://acme-plumbing.com/services",
        "https://acme-plumbing.com/pricing",
        "https://blog.acme-plumbing.com/news",
    ]
    assert job.succeeded == 4
    assert job.stage == STAGE_COMPLETE


def test_crawl_picks_up_relative_hrefs():
    pages = {"https://acme-plumbing.com/": SEED_PAGE}
    pages.update({url: GOOD for url in [
        "https://acme-plumbing.com/services",
        "https://acme-plumbing.com/pricing",
        "https://blog.acme-plumbing.com/news",
        "https://acme-plumbing.com/contact",
    ]})

    job = asyncio.run(make_batch(pages).crawl("https://acme-plumbing.com/", max_pages=10, delay=0))

    assert job.urls[-1] == "https://acme-plumbing.com/contact"
    assert "https://partner-supplies.com/deal" not in job.urls
    assert job.total == 5


def test_crawl_seed_failure_returns_seed_only():
    seed = "https://acme-plumbing.com/"
    batch = make_batch({seed: ScrapeUnavailable(seed, attempts=5)})

    job = asyncio.run(batch.crawl(seed, max_pages=5, delay=0))

    assert job.total == 1
    assert job.failed == 1


def test_crawl_single_page():
    batch = make_batch({"https://acme-plumbing.com/": SEED_PAGE})

    job = asyncio.run(batch.crawl("https://acme-plumbing.com/", max_pages=1, delay=0))

    assert job.urls == ["https://acme-plumbing.com/"]


SITEMAP = """<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
<url><loc>https://acme.example/a</loc></url>
<url><loc>https://acme.example/b</loc></url>
<url><loc>https://acme.example/c</loc></url>
</urlset>"""


def test_sitemap_mode_scrapes_listed_urls():
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(lambda r: httpx.Response(200, text=SITEMAP))
    )
    pages = {f"https://acme.example/{p}": GOOD for p in "abc"}
    batch = make_batch(pages, client=client)

    job = asyncio.run(batch.scrape_sitemap("https://acme.example/sitemap.xml", max_urls=2, delay=0))

    assert job.mode == "sitemap"
    assert job.urls == ["https://acme.example/a", "https://acme.example/b"]
    assert job.succeeded == 2


def test_sitemap_failure_marks_job_failed():
    from kbchat.ingestion.models import BatchJob

    job = BatchJob(mode="sitemap")
    with pytest.raises(SitemapError):
        asyncio.run(make_batch({}).scrape_sitemap("https://acme.example/sitemap.xml", job=job))

    assert job.stage == "failed"
    assert job.finished
    assert "404" in job.error


def test_registry_runs_and_cancels_jobs():
    async def scenario():
        gate = asyncio.Event()

        class GatedScraper(FakeScraper):
            async def scrape(self, url, bot_id=None, structured=False):
                await gate.wait()
                return await super().scrape(url, bot_id, structured)

        batch = BatchScraper(GatedScraper({u: GOOD for u in URLS}), make_settings(), httpx.AsyncClient())
        registry = BatchJobRegistry(batch)

        job = registry.start_urls(URLS, delay=0)
        await asyncio.sleep(0)
        assert registry.get(job.job_id) is job
        assert registry.cancel(job.job_id)
        gate.set()
        finished = await registry.wait(job.job_id)
        return registry, finished

    registry, job = asyncio.run(scenario())

    assert job.stage == STAGE_CANCELLED
    assert job.completed == 1
    assert registry.cancel(job.job_id) is False
    assert registry.get("missing") is None


def recording_client(requests: list, response: httpx.Response = None) -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(str(request.url))
        return response or httpx.Response(200, text=SITEMAP)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_sitemap_on_metadata_host_is_never_fetched():
    requests = []
    job = BatchJob(mode="sitemap")
    batch = make_batch({}, client=recording_client(requests))

    with pytest.raises(BlockedUrlError):
        asyncio.run(batch.scrape_sitemap("http://169.254.169.254/latest/sitemap.xml", delay=0, job=job))

    assert requests == []
    assert job.stage == "failed"


def test_zero_caps_scrape_nothing():
    requests = []
    batch = make_batch({"https://acme-plumbing.com/": SEED_PAGE}, client=recording_client(requests))

    sitemap_job = asyncio.run(batch.scrape_sitemap("https://acme.example/sitemap.xml", max_urls=0, delay=0))
    crawl_job = asyncio.run(batch.crawl("https://acme-plumbing.com/", max_pages=0, delay=0))

    assert requests == []
    assert sitemap_job.total == 0 and sitemap_job.stage == STAGE_COMPLETE
    assert crawl_job.total == 0 and crawl_job.stage == STAGE_COMPLETE


DIRECT_SEED_HTML = (
    "<!DOCTYPE html><html><head><title>Acme</title></head><body>"
    '<nav><a href="/about">About</a> <a href="https://acme.example/pricing">Pricing</a> '
    '<a href="https://elsewhere.example/">Partner</a></nav>'
    f"<article><p>{GOOD}</p></article></body></html>"
)


def test_crawl_finds_links_when_seed_comes_from_direct_fetch():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/":
            return httpx.Response(200, text=DIRECT_SEED_HTML)
        return httpx.Response(200, text=f"<!DOCTYPE html><html><body><p>{GOOD}</p></body></html>")

    settings = make_settings()
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    scraper = WebScraper(
        resolver=TransportResolver([DirectFetchTransport(client)]),
        extractor=ContentExtractor(ScriptedBackend(), settings),
        config=settings,
    )

    job = asyncio.run(BatchScraper(scraper, settings, client).crawl("https://acme.example/", max_pages=3, delay=0))

    assert job.urls == ["https://acme.example/", "https://acme.example/about", "https://acme.example/pricing"]
    assert job.succeeded == 3
