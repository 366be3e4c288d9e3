"""Ingestion CLI script."""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import httpx
import orjson
import typer
from tqdm import tqdm

from kbchat.core.config import settings
from kbchat.core.errors import KbChatError
from kbchat.core.logging import setup_logging
from kbchat.core.utils import clean_url_list, extract_urls_from_text
from kbchat.ingestion.batch import BatchScraper
from kbchat.ingestion.knowledge import KnowledgeIngestor
from kbchat.ingestion.models import BatchJob, BatchProgress
from kbchat.ingestion.scraper import WebScraper

setup_logging()
logger = logging.getLogger(__name__)

app = typer.Typer(help="Scrape websites and embed knowledge for a bot.")


def _read_url_file(url_file: Optional[str]) -> list[str]:
    if not url_file:
        return []
    p = Path(url_file)
    if not p.exists():
        logger.warning(f"URL file not found: {url_file}")
        return []
    out: list[str] = []
    for line in p.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        out.extend(extract_urls_from_text(line) or [line])
    return out


class _ProgressBar:
    """tqdm bar driven by batch progress reports."""

    def __init__(self, desc: str):
        self.bar = tqdm(total=0, desc=desc, unit="url")

    def __call__(self, progress: BatchProgress) -> None:
        self.bar.total = progress.total
        self.bar.n = progress.completed
        self.bar.set_postfix(ok=progress.succeeded, failed=progress.failed, stage=progress.stage)
        self.bar.refresh()

    def close(self) -> None:
        self.bar.close()


def _write_outcomes(job: BatchJob, output: Optional[str]) -> None:
    if not output:
        return
    with open(output, "ab") as f:
        for outcome in job.outcomes:
            f.write(orjson.dumps(outcome.model_dump(mode="json")) + b"\n")
    logger.info(f"Wrote {job.completed} outcomes to {output}")


async def _embed_outcomes(job: BatchJob, bot_id: str) -> None:
    ingestor = KnowledgeIngestor(config=settings)
    for outcome in job.outcomes:
        if not outcome.success or outcome.document is None:
            continue
        report = await ingestor.ingest_document(bot_id, outcome.document)
        typer.echo(
            f"Embedded {outcome.url}: {report.chunks_processed} chunks, "
            f"{report.chunks_failed} failed, {report.total_tokens} tokens"
        )


async def _run_batch(mode: str, target, embed: bool, bot_id: Optional[str], output: Optional[str], **kwargs) -> BatchJob:
    async with httpx.AsyncClient(follow_redirects=True) as client:
        batch = BatchScraper(config=settings, client=client)
        progress = _ProgressBar(desc=f"Scraping ({mode})")
        try:
            if mode == "sitemap":
                job = await batch.scrape_sitemap(target, on_progress=progress, **kwargs)
            elif mode == "crawl":
                job = await batch.crawl(target, on_progress=progress, **kwargs)
            else:
                job = await batch.scrape_urls(target, on_progress=progress, **kwargs)
        finally:
            progress.close()

    _write_outcomes(job, output)
    if embed:
        await _embed_outcomes(job, bot_id)
    return job


def _summarize(job: BatchJob) -> None:
    typer.echo(f"{job.stage}: {job.succeeded} succeeded, {job.failed} failed of {job.total}")
    for outcome in job.outcomes:
        if not outcome.success:
            typer.echo(f"  FAILED {outcome.url}: {outcome.error}")


def _check_embed(embed: bool, bot_id: Optional[str]) -> None:
    if embed and not bot_id:
        raise typer.BadParameter("--bot-id is required with --embed")


@app.command()
def scrape(
    url: str = typer.Argument(..., help="URL to scrape"),
    structured: bool = typer.Option(False, help="Ask for structured JSON facts"),
    embed: bool = typer.Option(False, help="Embed the result into the knowledge store"),
    bot_id: Optional[str] = typer.Option(None, help="Bot that owns the knowledge"),
):
    """Scrape a single URL and print the extracted knowledge."""
    _check_embed(embed, bot_id)

    async def run():
        async with httpx.AsyncClient(follow_redirects=True) as client:
            document = await WebScraper(config=settings, client=client).scrape(url, structured=structured)
        typer.echo(document.text)
        typer.echo(f"\n[{document.transport}, {document.raw_length} raw chars, summarized={document.summarized}]")
        if embed:
            report = await KnowledgeIngestor(config=settings).ingest_document(bot_id, document)
            typer.echo(f"Embedded {report.chunks_processed} chunks ({report.total_tokens} tokens)")

    try:
        asyncio.run(run())
    except KbChatError as e:
        typer.echo(f"Error: {e.message}", err=True)
        suggestion = getattr(e, "suggestion", None)
        if suggestion:
            typer.echo(suggestion, err=True)
        raise typer.Exit(code=1)


@app.command()
def batch(
    urls: Optional[list[str]] = typer.Argument(None, help="URLs to scrape"),
    url_file: Optional[str] = typer.Option(None, help="File with URLs, one per line"),
    delay: float = typer.Option(settings.batch_delay_seconds, help="Seconds between requests"),
    stop_on_error: bool = typer.Option(False, help="Stop at the first failed URL"),
    output: Optional[str] = typer.Option(None, help="Append outcomes to this JSONL file"),
    embed: bool = typer.Option(False, help="Embed successful pages"),
    bot_id: Optional[str] = typer.Option(None, help="Bot that owns the knowledge"),
):
    """Scrape a list of URLs one at a time."""
    _check_embed(embed, bot_id)
    targets = clean_url_list(list(urls or []) + _read_url_file(url_file))
    if not targets:
        typer.echo("No valid URLs supplied", err=True)
        raise typer.Exit(code=1)

    job = asyncio.run(
        _run_batch("list", targets, embed, bot_id, output, delay=delay, stop_on_error=stop_on_error)
    )
    _summarize(job)


@app.command()
def sitemap(
    sitemap_url: str = typer.Argument(..., help="sitemap.xml URL"),
    max_urls: int = typer.Option(settings.sitemap_max_urls, help="Maximum pages to scrape"),
    delay: float = typer.Option(settings.sitemap_delay_seconds, help="Seconds between requests"),
    output: Optional[str] = typer.Option(None, help="Append outcomes to this JSONL file"),
    embed: bool = typer.Option(False, help="Embed successful pages"),
    bot_id: Optional[str] = typer.Option(None, help="Bot that owns the knowledge"),
):
    """Scrape the pages listed in a sitemap."""
    _check_embed(embed, bot_id)
    try:
        job = asyncio.run(_run_batch("sitemap", sitemap_url, embed, bot_id, output, max_urls=max_urls, delay=delay))
    except KbChatError as e:
        typer.echo(f"Error: {e.message}", err=True)
        raise typer.Exit(code=1)
    _summarize(job)


@app.command()
def crawl(
    url: str = typer.Argument(..., help="Seed URL"),
    max_pages: int = typer.Option(settings.crawl_max_pages, help="Maximum pages including the seed"),
    delay: float = typer.Option(settings.crawl_delay_seconds, help="Seconds between requests"),
    output: Optional[str] = typer.Option(None, help="Append outcomes to this JSONL file"),
    embed: bool = typer.Option(False, help="Embed successful pages"),
    bot_id: Optional[str] = typer.Option(None, help="Bot that owns the knowledge"),
):
    """Scrape a page and the same-site pages it links to."""
    _check_embed(embed, bot_id)
    try:
        job = asyncio.run(_run_batch("crawl", url, embed, bot_id, output, max_pages=max_pages, delay=delay))
    except KbChatError as e:
        typer.echo(f"Error: {e.message}", err=True)
        raise typer.Exit(code=1)
    _summarize(job)


@app.command()
def embed(
    bot_id: str = typer.Option(..., help="Bot that owns the knowledge"),
    file: Optional[Path] = typer.Option(None, exists=True, dir_okay=False, help="PDF, HTML or text file"),
    text: Optional[str] = typer.Option(None, help="Inline text to embed"),
    file_name: Optional[str] = typer.Option(None, help="Label stored with the chunks"),
    chunk_size: Optional[int] = typer.Option(None, help="Maximum tokens per chunk"),
):
    """Chunk and embed a file or inline text."""
    if (file is None) == (text is None):
        raise typer.BadParameter("Pass exactly one of --file or --text")

    async def run():
        ingestor = KnowledgeIngestor(config=settings)
        if file is not None:
            return await ingestor.ingest_file(bot_id, file_name or file.name, file.read_bytes(), chunk_size=chunk_size)
        return await ingestor.embed_text(bot_id, text, file_name or "manual-entry", chunk_size=chunk_size)

    try:
        report = asyncio.run(run())
    except KbChatError as e:
        typer.echo(f"Error: {e.message}", err=True)
        raise typer.Exit(code=1)

    typer.echo(
        f"{report.file_name}: {report.chunks_processed} chunks embedded, "
        f"{report.chunks_failed} failed, {report.total_tokens} tokens"
    )
    if report.partial:
        raise typer.Exit(code=2)


if __name__ == "__main__":
    app()
