"""Scraping and knowledge ingestion routes."""

import logging

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile, status

from kbchat.api.deps import get_ingestor, get_job_registry, get_web_scraper, limiter
from kbchat.core.config import settings
from kbchat.core.errors import InvalidUrlError
from kbchat.core.schemas import (
    BatchJobAccepted,
    BatchScrapeRequest,
    CrawlRequest,
    EmbedRequest,
    EmbedResponse,
    ScrapeRequest,
    ScrapeResponse,
    SitemapScrapeRequest,
)
from kbchat.core.security import check_url_allowed, verify_api_key
from kbchat.core.utils import clean_url_list, normalize_url
from kbchat.ingestion.jobs import BatchJobRegistry
from kbchat.ingestion.knowledge import KnowledgeIngestor
from kbchat.ingestion.models import EmbedReport
from kbchat.ingestion.scraper import WebScraper

logger = logging.getLogger(__name__)
router = APIRouter(dependencies=[Depends(verify_api_key)])

MAX_UPLOAD_BYTES = 10 * 1024 * 1024


def _embed_response(report: EmbedReport) -> EmbedResponse:
    return EmbedResponse(
        file_name=report.file_name,
        chunks_processed=report.chunks_processed,
        chunks_failed=report.chunks_failed,
        total_tokens=report.total_tokens,
    )


@router.post("/scrape", response_model=ScrapeResponse)
@limiter.limit(settings.scrape_rate_limit)
async def scrape(
    request: Request,
    payload: ScrapeRequest,
    scraper: WebScraper = Depends(get_web_scraper),
):
    """Scrape one URL and return its extracted knowledge text."""
    document = await scraper.scrape(payload.url, structured=payload.structured)
    return ScrapeResponse(
        url=document.source.locator,
        content=document.text,
        transport=document.transport,
        raw_length=document.raw_length,
        summarized=document.summarized,
    )


@router.post("/scrape/batch", response_model=BatchJobAccepted, status_code=status.HTTP_202_ACCEPTED)
@limiter.limit(settings.scrape_rate_limit)
async def scrape_batch(
    request: Request,
    payload: BatchScrapeRequest,
    registry: BatchJobRegistry = Depends(get_job_registry),
):
    """Start a list-mode batch job."""
    urls = clean_url_list(payload.urls)
    if not urls:
        raise InvalidUrlError("No valid URLs supplied")
    job = registry.start_urls(urls, stop_on_error=payload.stop_on_error, delay=payload.delay_seconds)
    return BatchJobAccepted(job_id=job.job_id, status=job.stage)


@router.post("/scrape/sitemap", response_model=BatchJobAccepted, status_code=status.HTTP_202_ACCEPTED)
@limiter.limit(settings.scrape_rate_limit)
async def scrape_sitemap(
    request: Request,
    payload: SitemapScrapeRequest,
    registry: BatchJobRegistry = Depends(get_job_registry),
):
    """Start a sitemap-mode batch job."""
    sitemap_url = normalize_url(payload.sitemap_url)
    if not settings.allow_private_hosts:
        check_url_allowed(sitemap_url)
    job = registry.start_sitemap(sitemap_url, max_urls=payload.max_urls, stop_on_error=payload.stop_on_error)
    return BatchJobAccepted(job_id=job.job_id, status=job.stage)


@router.post("/scrape/crawl", response_model=BatchJobAccepted, status_code=status.HTTP_202_ACCEPTED)
@limiter.limit(settings.scrape_rate_limit)
async def scrape_crawl(
    request: Request,
    payload: CrawlRequest,
    registry: BatchJobRegistry = Depends(get_job_registry),
):
    """Start a crawl-mode batch job."""
    url = normalize_url(payload.url)
    if not settings.allow_private_hosts:
        check_url_allowed(url)
    job = registry.start_crawl(url, max_pages=payload.max_pages, stop_on_error=payload.stop_on_error)
    return BatchJobAccepted(job_id=job.job_id, status=job.stage)


@router.get("/scrape/jobs/{job_id}")
async def get_job(job_id: str, registry: BatchJobRegistry = Depends(get_job_registry)):
    """Job progress and per-URL outcomes."""
    job = registry.get(job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return job.model_dump(mode="json")


@router.delete("/scrape/jobs/{job_id}")
async def cancel_job(job_id: str, registry: BatchJobRegistry = Depends(get_job_registry)):
    """Cancel a running job before its next URL."""
    job = registry.get(job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return {"job_id": job_id, "cancelled": registry.cancel(job_id), "stage": job.stage}


@router.post("/knowledge/embed", response_model=EmbedResponse)
async def embed_knowledge(payload: EmbedRequest, ingestor: KnowledgeIngestor = Depends(get_ingestor)):
    """Chunk and embed manually supplied text."""
    report = await ingestor.embed_text(
        payload.bot_id,
        payload.content,
        payload.file_name,
        file_type=payload.file_type or "text",
        file_url=payload.file_url,
        chunk_size=payload.chunk_size,
    )
    return _embed_response(report)


@router.post("/knowledge/upload", response_model=EmbedResponse)
async def upload_knowledge(
    bot_id: str = Form(..., alias="botId"),
    file: UploadFile = File(...),
    ingestor: KnowledgeIngestor = Depends(get_ingestor),
):
    """Extract text from an uploaded PDF, HTML or text file and embed it."""
    data = await file.read()
    if len(data) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="File too large")
    report = await ingestor.ingest_file(bot_id, file.filename or "upload", data, media_type=file.content_type)
    return _embed_response(report)


@router.delete("/knowledge/{bot_id}")
async def delete_knowledge(bot_id: str, ingestor: KnowledgeIngestor = Depends(get_ingestor)):
    """Remove every stored chunk for a bot."""
    await ingestor.store.delete_bot(bot_id)
    return {"bot_id": bot_id, "deleted": True}
