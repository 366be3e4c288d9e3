"""Data models for ingestion pipeline."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

from kbchat.core.constants import MODE_LIST, STAGE_PENDING


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SourceKind(str, Enum):
    """Origin of knowledge content."""

    URL = "url"
    FILE = "file"
    TEXT = "text"


class Source(BaseModel):
    """A content origin, captured once; re-scrapes create a new Source."""

    model_config = ConfigDict(frozen=True)

    source_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    kind: SourceKind
    bot_id: Optional[str] = None
    locator: str
    size: int = 0
    media_type: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class ScrapeAttempt(BaseModel):
    """One transport try against a URL."""

    transport: str
    success: bool
    latency_ms: float
    size: int = 0
    error: Optional[str] = None


class FetchResult(BaseModel):
    """Content returned by the first transport that succeeded."""

    url: str
    content: str
    transport: str
    attempts: int


class KnowledgeDocument(BaseModel):
    """Extracted, readable summary of a Source."""

    source: Source
    text: str
    raw_length: int
    transport: Optional[str] = None
    summarized: bool = True
    facts: Optional[dict[str, Any]] = None
    extracted_at: datetime = Field(default_factory=utcnow)
    raw_content: str = Field(default="", exclude=True, repr=False)


class KnowledgeChunk(BaseModel):
    """Bounded slice of a document prepared for retrieval."""

    chunk_id: str
    bot_id: str
    source_id: str
    file_name: str
    file_type: str
    file_url: Optional[str] = None
    sequence: int
    text: str
    token_count: int
    embedding: Optional[list[float]] = Field(default=None, exclude=True, repr=False)


class EmbedReport(BaseModel):
    """Outcome of chunking and embedding one block of text."""

    file_name: str
    chunks_processed: int = 0
    chunks_failed: int = 0
    total_tokens: int = 0
    chunks: list[KnowledgeChunk] = Field(default_factory=list)

    @property
    def partial(self) -> bool:
        return self.chunks_failed > 0


class UrlOutcome(BaseModel):
    """Terminal result for one URL in a batch."""

    url: str
    success: bool
    content: Optional[str] = None
    content_size: Optional[int] = None
    transport: Optional[str] = None
    summarized: Optional[bool] = None
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)
    document: Optional[KnowledgeDocument] = Field(default=None, exclude=True, repr=False)


class BatchProgress(BaseModel):
    """Snapshot handed to progress callbacks."""

    total: int
    completed: int
    succeeded: int
    failed: int
    current_url: Optional[str] = None
    stage: str


class BatchJob(BaseModel):
    """A tracked multi-URL scrape."""

    job_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    mode: str = MODE_LIST
    urls: list[str] = Field(default_factory=list)
    outcomes: list[UrlOutcome] = Field(default_factory=list)
    stage: str = STAGE_PENDING
    current_url: Optional[str] = None
    stopped_early: bool = False
    cancelled: bool = False
    error: Optional[str] = None
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None

    @computed_field
    @property
    def total(self) -> int:
        return len(self.urls)

    @computed_field
    @property
    def completed(self) -> int:
        return len(self.outcomes)

    @computed_field
    @property
    def succeeded(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.success)

    @computed_field
    @property
    def failed(self) -> int:
        return sum(1 for outcome in self.outcomes if not outcome.success)

    @property
    def finished(self) -> bool:
        return self.finished_at is not None

    def progress(self) -> BatchProgress:
        return BatchProgress(
            total=self.total,
            completed=self.completed,
            succeeded=self.succeeded,
            failed=self.failed,
            current_url=self.current_url,
            stage=self.stage,
        )
