"""Shared fakes and settings helpers for the test suite."""

import hashlib
from typing import Optional

import numpy as np

from kbchat.core.config import Settings
from kbchat.core.errors import TransportFailure
from kbchat.generation.llm import ChatBackend, CompletionErrorKind, CompletionFailure, CompletionRequest, CompletionSuccess
from kbchat.ingestion.models import KnowledgeDocument, Source, SourceKind
from kbchat.ingestion.transports import Transport
from kbchat.vector.embeddings import EmbeddingProvider, EmbeddingResult

VECTOR_SIZE = 8


def make_settings(**overrides) -> Settings:
    """Settings isolated from the environment's credentials and delays."""
    values = dict(
        openai_api_key="",
        managed_base_url="",
        managed_session_token="",
        qdrant_url=":memory:",
        batch_delay_seconds=0,
        sitemap_delay_seconds=0,
        crawl_delay_seconds=0,
        response_delay_min_ms=0,
        response_delay_max_ms=0,
        allow_private_hosts=False,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


class StaticTransport(Transport):
    """Returns fixed content, or fails with the given reason."""

    def __init__(self, name: str, content: Optional[str] = None, error: Optional[str] = None, timeout: float = 5.0):
        super().__init__(timeout=timeout)
        self.name = name
        self.content = content
        self.error = error
        self.calls: list[str] = []

    async def fetch(self, url: str) -> str:
        self.calls.append(url)
        if self.error is not None:
            raise TransportFailure(self.name, url, self.error)
        return self.content


class ScriptedBackend(ChatBackend):
    """Completion backend that replays queued results and records requests."""

    def __init__(self, name: str = "fake", results=None, available: bool = True):
        self.name = name
        self.results = list(results or [])
        self._available = available
        self.requests: list[CompletionRequest] = []

    @property
    def available(self) -> bool:
        return self._available

    async def complete(self, request: CompletionRequest):
        self.requests.append(request)
        if not self.results:
            return CompletionFailure(CompletionErrorKind.BACKEND, "no scripted result", self.name)
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        if isinstance(result, str):
            return CompletionSuccess(text=result, backend=self.name, usage={"total_tokens": 10})
        return result


class HashEmbeddingProvider(EmbeddingProvider):
    """Deterministic embeddings; texts containing a marker fail."""

    def __init__(self, fail_marker: Optional[str] = None):
        super().__init__()
        self.model_name = "hash-embed"
        self.vector_size = VECTOR_SIZE
        self.fail_marker = fail_marker
        self.calls: list[str] = []

    async def embed(self, text: str) -> EmbeddingResult:
        self.calls.append(text)
        if self.fail_marker and self.fail_marker in text:
            raise RuntimeError("embedding service unavailable")
        seed = int(hashlib.sha256(text.encode("utf-8")).hexdigest()[:8], 16)
        vector = np.random.default_rng(seed).random(VECTOR_SIZE).astype(np.float32) + 0.01
        return EmbeddingResult(vector=vector, tokens=max(1, len(text) // 4))


class FakeScraper:
    """Stands in for WebScraper: maps URL to page text or to an exception."""

    def __init__(self, pages: dict):
        self.pages = pages
        self.calls: list[str] = []

    async def scrape(self, url: str, bot_id=None, structured: bool = False) -> KnowledgeDocument:
        self.calls.append(url)
        page = self.pages.get(url)
        if page is None:
            raise RuntimeError(f"no page for {url}")
        if isinstance(page, Exception):
            raise page
        source = Source(kind=SourceKind.URL, locator=url, size=len(page))
        return KnowledgeDocument(
            source=source,
            text=f"Summary of {url}",
            raw_length=len(page),
            transport="reader",
            raw_content=page,
        )
