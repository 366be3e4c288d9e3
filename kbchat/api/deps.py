"""FastAPI dependencies."""

from functools import lru_cache

import httpx
from slowapi import Limiter
from slowapi.util import get_remote_address

from kbchat.core.config import settings
from kbchat.core.security import build_scrape_client
from kbchat.generation.gateway import CompletionGateway
from kbchat.generation.llm import ManagedChatBackend, OpenAIChatBackend
from kbchat.generation.pipeline import ChatPipeline
from kbchat.ingestion.batch import BatchScraper
from kbchat.ingestion.extractor import ContentExtractor
from kbchat.ingestion.jobs import BatchJobRegistry
from kbchat.ingestion.knowledge import KnowledgeIngestor
from kbchat.ingestion.scraper import WebScraper
from kbchat.leads.sink import get_lead_sink
from kbchat.vector.embeddings import get_embedding_provider
from kbchat.vector.qdrant_client import QdrantKnowledgeStore
from kbchat.vector.retriever import KnowledgeRetriever

# Rate limiter
limiter = Limiter(key_func=get_remote_address)


@lru_cache
def get_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(follow_redirects=True)


@lru_cache
def get_scrape_client() -> httpx.AsyncClient:
    return build_scrape_client(settings)


@lru_cache
def get_web_scraper() -> WebScraper:
    client = get_scrape_client()
    extractor = ContentExtractor(OpenAIChatBackend(settings), settings)
    return WebScraper(extractor=extractor, config=settings, client=client)


@lru_cache
def get_batch_scraper() -> BatchScraper:
    return BatchScraper(get_web_scraper(), settings, get_scrape_client())


@lru_cache
def get_job_registry() -> BatchJobRegistry:
    return BatchJobRegistry(get_batch_scraper())


@lru_cache
def get_knowledge_store() -> QdrantKnowledgeStore:
    provider = get_embedding_provider(settings)
    return QdrantKnowledgeStore(vector_size=provider.vector_size, config=settings)


@lru_cache
def get_ingestor() -> KnowledgeIngestor:
    return KnowledgeIngestor(get_embedding_provider(settings), get_knowledge_store(), settings)


@lru_cache
def get_chat_pipeline() -> ChatPipeline:
    client = get_http_client()
    gateway = CompletionGateway(
        managed=ManagedChatBackend(settings, client),
        direct=OpenAIChatBackend(settings),
        config=settings,
    )
    retriever = KnowledgeRetriever(get_embedding_provider(settings), get_knowledge_store(), settings)
    return ChatPipeline(gateway, retriever, get_lead_sink(settings, client), settings)
