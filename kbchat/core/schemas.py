"""Pydantic schemas for conversation turns and API requests/responses."""

from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ConversationTurn(BaseModel):
    """Single conversation turn."""

    model_config = ConfigDict(populate_by_name=True)

    role: Literal["user", "assistant"]
    text: str = Field(..., alias="content")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("role", mode="before")
    @classmethod
    def _map_model_role(cls, value: Any) -> Any:
        # Chat widgets label assistant turns "model"
        if value == "model":
            return "assistant"
        return value


class CamelModel(BaseModel):
    """Request/response body accepting camelCase keys from the chat widgets."""

    model_config = ConfigDict(populate_by_name=True)


class ChatRequest(CamelModel):
    """Chat request schema."""

    bot_id: str = Field(..., alias="botId", min_length=1)
    session_id: str = Field(..., alias="sessionId", min_length=1)
    message: str = Field(..., min_length=1, max_length=4000)
    conversation_history: list[ConversationTurn] = Field(default_factory=list, alias="conversationHistory")
    system_prompt: str = Field("You are a helpful assistant.", alias="systemPrompt")
    model: Optional[str] = None
    context: Optional[str] = None
    response_delay_ms: Optional[int] = Field(None, alias="responseDelayMs", ge=0, le=10000)


class ChatResponse(CamelModel):
    """Chat response schema."""

    message: str
    session_id: str = Field(..., alias="sessionId")
    backend: Optional[str] = None
    usage: Optional[dict[str, int]] = None


class ScrapeRequest(BaseModel):
    """Single URL scrape request."""

    url: str = Field(..., min_length=1)
    structured: bool = False


class ScrapeResponse(BaseModel):
    """Single URL scrape response."""

    url: str
    content: str
    transport: Optional[str] = None
    raw_length: int
    summarized: bool


class BatchScrapeRequest(BaseModel):
    """List-mode batch request."""

    urls: list[str] = Field(..., min_length=1)
    stop_on_error: bool = False
    delay_seconds: Optional[float] = Field(None, ge=0)


class SitemapScrapeRequest(BaseModel):
    """Sitemap-mode batch request."""

    sitemap_url: str
    max_urls: Optional[int] = Field(None, ge=1, le=200)
    stop_on_error: bool = False


class CrawlRequest(BaseModel):
    """Crawl-mode batch request."""

    url: str
    max_pages: Optional[int] = Field(None, ge=1, le=100)
    stop_on_error: bool = False


class BatchJobAccepted(BaseModel):
    """Returned when a batch job is queued."""

    job_id: str
    status: str


class EmbedRequest(CamelModel):
    """Knowledge embedding request."""

    bot_id: str = Field(..., alias="botId", min_length=1)
    content: str = Field(..., min_length=1)
    file_name: str = Field(..., alias="fileName", min_length=1)
    file_type: Optional[str] = Field(None, alias="fileType")
    file_url: Optional[str] = Field(None, alias="fileUrl")
    chunk_size: Optional[int] = Field(None, alias="chunkSize", ge=50, le=8000)


class EmbedResponse(CamelModel):
    """Knowledge embedding response."""

    file_name: str = Field(..., alias="fileName")
    chunks_processed: int = Field(..., alias="chunksProcessed")
    chunks_failed: int = Field(0, alias="chunksFailed")
    total_tokens: int = Field(..., alias="totalTokens")
