"""Tests for chunk embedding, storage and retrieval."""

import asyncio

import pytest
from qdrant_client import AsyncQdrantClient

from conftest import VECTOR_SIZE, HashEmbeddingProvider, make_settings
from kbchat.core.errors import InvalidSourceError
from kbchat.ingestion.knowledge import KnowledgeIngestor, detect_file_type
from kbchat.ingestion.models import KnowledgeDocument, Source, SourceKind
from kbchat.vector.qdrant_client import QdrantKnowledgeStore
from kbchat.vector.retriever import KnowledgeRetriever

PARAGRAPHS = "\n\n".join(
    f"Section {i}. Acme Plumbing answers question {i} about drains, boilers and pricing." * 4 for i in range(6)
)


def make_ingestor(provider=None, settings=None):
    settings = settings or make_settings(chunk_max_tokens=100)
    provider = provider or HashEmbeddingProvider()
    store = QdrantKnowledgeStore(
        client=AsyncQdrantClient(location=":memory:"),
        collection="test_knowledge",
        vector_size=VECTOR_SIZE,
        config=settings,
    )
    return KnowledgeIngestor(provider, store, settings)


def test_embed_text_reports_counts_and_contiguous_sequences():
    ingestor = make_ingestor()

    report = asyncio.run(ingestor.embed_text("bot-1", PARAGRAPHS, "faq.txt"))

    assert report.chunks_processed == len(report.chunks) > 1
    assert report.chunks_failed == 0
    assert not report.partial
    assert [c.sequence for c in report.chunks] == list(range(report.chunks_processed))
    assert report.total_tokens == sum(c.token_count for c in report.chunks)
    assert all(c.token_count <= 100 for c in report.chunks)
    assert all(c.bot_id == "bot-1" and c.file_name == "faq.txt" for c in report.chunks)


def test_failed_chunk_is_counted_not_fatal():
    """One failing chunk leaves the rest embedded."""
    ingestor = make_ingestor(provider=HashEmbeddingProvider(fail_marker="question 3 "))

    report = asyncio.run(ingestor.embed_text("bot-1", PARAGRAPHS, "faq.txt"))

    assert report.partial
    assert report.chunks_failed >= 1
    assert report.chunks_processed >= 1
    assert report.chunks_processed + report.chunks_failed == len(ingestor.provider.calls)


def test_chunk_size_override():
    ingestor = make_ingestor()

    small = asyncio.run(ingestor.embed_text("bot-1", PARAGRAPHS, "a.txt", chunk_size=50))
    large = asyncio.run(ingestor.embed_text("bot-1", PARAGRAPHS, "b.txt", chunk_size=2000))

    assert small.chunks_processed > large.chunks_processed
    assert large.chunks_processed == 1


def test_empty_content_rejected():
    with pytest.raises(InvalidSourceError):
        asyncio.run(make_ingestor().embed_text("bot-1", "   ", "empty.txt"))


def test_ingest_html_file():
    html = (
        b"<html><head><title>Hours</title></head><body><script>track()</script>"
        b"<main><p>We are open Monday to Friday from 8am to 6pm.</p>"
        b"<p>Weekend emergency call-outs are available for an extra fee.</p></main></body></html>"
    )
    ingestor = make_ingestor()

    report = asyncio.run(ingestor.ingest_file("bot-1", "hours.html", html, "text/html"))

    assert report.chunks_processed == 1
    chunk = report.chunks[0]
    assert chunk.file_type == "html"
    assert "Monday to Friday" in chunk.text
    assert "track()" not in chunk.text


def test_ingest_unreadable_pdf():
    with pytest.raises(InvalidSourceError):
        asyncio.run(make_ingestor().ingest_file("bot-1", "broken.pdf", b"not a pdf", "application/pdf"))


def test_detect_file_type():
    assert detect_file_type("Menu.PDF") == "pdf"
    assert detect_file_type("upload", "application/pdf") == "pdf"
    assert detect_file_type("index.htm") == "html"
    assert detect_file_type("notes.md", "text/markdown") == "text"


def test_ingest_document_uses_source_url():
    ingestor = make_ingestor()
    source = Source(kind=SourceKind.URL, locator="https://acme.example/faq")
    document = KnowledgeDocument(source=source, text=PARAGRAPHS, raw_length=20000, transport="reader")

    report = asyncio.run(ingestor.ingest_document("bot-1", document))

    assert report.file_name == "https://acme.example/faq"
    assert all(c.file_type == "url" for c in report.chunks)
    assert all(c.file_url == "https://acme.example/faq" for c in report.chunks)
    assert all(c.source_id == source.source_id for c in report.chunks)


def test_retrieval_is_filtered_by_bot():
    async def scenario():
        ingestor = make_ingestor()
        await ingestor.embed_text("bot-1", "Our boiler service costs 90 dollars.", "pricing.txt")
        await ingestor.embed_text("bot-2", "Bot two sells garden furniture.", "garden.txt")
        retriever = KnowledgeRetriever(ingestor.provider, ingestor.store, make_settings(similarity_cutoff=0.0))

        hits = await retriever.retrieve("bot-1", "Our boiler service costs 90 dollars.")
        context = await retriever.retrieve_context("bot-1", "Our boiler service costs 90 dollars.")
        return hits, context

    hits, context = asyncio.run(scenario())

    assert hits
    assert all(hit["file_name"] == "pricing.txt" for hit in hits)
    assert hits[0]["score"] == pytest.approx(1.0, abs=1e-3)
    assert "boiler service" in context
    assert "garden" not in context


def test_delete_bot_removes_only_that_bot():
    async def scenario():
        ingestor = make_ingestor()
        await ingestor.embed_text("bot-1", "Our boiler service costs 90 dollars.", "pricing.txt")
        await ingestor.embed_text("bot-2", "Bot two sells garden furniture.", "garden.txt")
        await ingestor.store.delete_bot("bot-1")

        query = await ingestor.provider.embed("Bot two sells garden furniture.")
        gone = await ingestor.store.search("bot-1", query.vector)
        kept = await ingestor.store.search("bot-2", query.vector)
        return gone, kept

    gone, kept = asyncio.run(scenario())

    assert gone == []
    assert [hit["file_name"] for hit in kept] == ["garden.txt"]
