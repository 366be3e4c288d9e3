"""Chunk, embed and store knowledge for a bot."""

import logging
import uuid
from typing import Optional

from kbchat.core.config import Settings, get_settings
from kbchat.core.constants import FILE_TYPE_HTML, FILE_TYPE_PDF, FILE_TYPE_TEXT, FILE_TYPE_URL
from kbchat.core.errors import InvalidSourceError
from kbchat.ingestion.chunker import chunk_text
from kbchat.ingestion.models import EmbedReport, KnowledgeChunk, KnowledgeDocument
from kbchat.ingestion.parse_html import html_to_text, looks_like_html
from kbchat.ingestion.parse_pdf import extract_pdf_text
from kbchat.vector.embeddings import EmbeddingProvider, get_embedding_provider
from kbchat.vector.qdrant_client import QdrantKnowledgeStore

logger = logging.getLogger(__name__)


def detect_file_type(file_name: str, media_type: Optional[str] = None) -> str:
    """Classify an upload as pdf, html or text."""
    name = file_name.lower()
    media_type = (media_type or "").lower()
    if name.endswith(".pdf") or media_type == "application/pdf":
        return FILE_TYPE_PDF
    if name.endswith((".html", ".htm")) or media_type == "text/html":
        return FILE_TYPE_HTML
    return FILE_TYPE_TEXT


class KnowledgeIngestor:
    """Chunker/Embedder: splits text, embeds each chunk and upserts it."""

    def __init__(
        self,
        provider: Optional[EmbeddingProvider] = None,
        store: Optional[QdrantKnowledgeStore] = None,
        config: Optional[Settings] = None,
    ):
        self.settings = config or get_settings()
        self.provider = provider or get_embedding_provider(self.settings)
        self.store = store or QdrantKnowledgeStore(vector_size=self.provider.vector_size, config=self.settings)

    async def embed_text(
        self,
        bot_id: str,
        content: str,
        file_name: str,
        file_type: str = FILE_TYPE_TEXT,
        file_url: Optional[str] = None,
        chunk_size: Optional[int] = None,
        source_id: Optional[str] = None,
    ) -> EmbedReport:
        """Embed every chunk; a failing chunk is counted, never fatal."""
        if not content or not content.strip():
            raise InvalidSourceError(f"{file_name} has no text to embed")

        max_tokens = chunk_size or self.settings.chunk_max_tokens
        source_id = source_id or uuid.uuid4().hex
        pieces = chunk_text(content, max_tokens)
        report = EmbedReport(file_name=file_name)

        for sequence, piece in enumerate(pieces):
            chunk = KnowledgeChunk(
                chunk_id=uuid.uuid4().hex,
                bot_id=bot_id,
                source_id=source_id,
                file_name=file_name,
                file_type=file_type,
                file_url=file_url,
                sequence=sequence,
                text=piece,
                token_count=0,
            )
            try:
                result = await self.provider.embed(piece)
                chunk.token_count = result.tokens
                await self.store.upsert(chunk, result.vector)
            except Exception as e:
                report.chunks_failed += 1
                logger.warning(f"Chunk {sequence} of {file_name} failed to embed: {e}")
                continue

            report.chunks_processed += 1
            report.total_tokens += result.tokens
            report.chunks.append(chunk)

        if report.partial:
            logger.warning(
                f"Partial embedding for {file_name}: "
                f"{report.chunks_processed} stored, {report.chunks_failed} failed"
            )
        else:
            logger.info(f"Embedded {file_name}: {report.chunks_processed} chunks, {report.total_tokens} tokens")
        return report

    async def ingest_file(
        self,
        bot_id: str,
        file_name: str,
        data: bytes,
        media_type: Optional[str] = None,
        chunk_size: Optional[int] = None,
    ) -> EmbedReport:
        """Extract text from an uploaded file and embed it."""
        file_type = detect_file_type(file_name, media_type)
        if file_type == FILE_TYPE_PDF:
            text, metadata = extract_pdf_text(data)
            logger.info(f"Extracted {metadata.get('page_count', 0)} pages from {file_name}")
        else:
            try:
                text = data.decode("utf-8")
            except UnicodeDecodeError as e:
                raise InvalidSourceError(f"{file_name} is not UTF-8 text") from e
            if file_type == FILE_TYPE_HTML or looks_like_html(text):
                file_type = FILE_TYPE_HTML
                text = html_to_text(text)

        return await self.embed_text(bot_id, text, file_name, file_type=file_type, chunk_size=chunk_size)

    async def ingest_document(
        self, bot_id: str, document: KnowledgeDocument, chunk_size: Optional[int] = None
    ) -> EmbedReport:
        """Embed a scraped document's extracted text."""
        return await self.embed_text(
            bot_id,
            document.text,
            file_name=document.source.locator,
            file_type=FILE_TYPE_URL,
            file_url=document.source.locator,
            chunk_size=chunk_size,
            source_id=document.source.source_id,
        )
