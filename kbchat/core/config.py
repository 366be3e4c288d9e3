"""Application configuration using Pydantic Settings."""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    env: str = "dev"

    # API Security
    api_key: str = "dev-secret"

    # OpenAI (direct provider, client-held key)
    openai_api_key: str = ""
    openai_base_url: Optional[str] = None
    openai_embed_model: str = "text-embedding-3-small"
    openai_chat_model: str = "gpt-4o-mini"

    # Managed backend (server-mediated, quota-aware)
    managed_base_url: str = ""
    managed_session_token: str = ""
    managed_scrape_path: str = "/functions/v1/scrape-url"
    managed_complete_path: str = "/functions/v1/ai-complete"
    managed_lead_path: str = "/functions/v1/create-lead"

    # Scraping transports
    reader_base_url: str = "https://r.jina.ai/"
    relay_proxies: list[str] = [
        "https://corsproxy.io/?{url}",
        "https://api.allorigins.win/raw?url={url}",
        "https://api.codetabs.com/v1/proxy?quest={url}",
    ]
    enable_direct_fetch: bool = True
    transport_timeout_seconds: float = 20.0
    min_content_chars: int = 100
    user_agent: str = "Mozilla/5.0 (compatible; kbchat/1.0)"
    allow_private_hosts: bool = False

    # Extraction
    extract_max_chars: int = 15000
    extract_fallback_chars: int = 8000
    extract_max_tokens: int = 2000

    # Batch scraping
    batch_delay_seconds: float = 2.0
    sitemap_delay_seconds: float = 3.0
    crawl_delay_seconds: float = 3.0
    sitemap_max_urls: int = 10
    crawl_max_pages: int = 5

    # Chunking / embeddings
    chunk_max_tokens: int = 500

    # Qdrant
    qdrant_url: str = "http://qdrant:6333"
    qdrant_api_key: str = ""
    collection_name: str = "kbchat_knowledge_v1"

    # Retrieval
    similarity_cutoff: float = 0.22
    top_k: int = 5

    # Completion
    completion_timeout_seconds: float = 30.0
    completion_temperature: float = 0.7
    completion_max_tokens: int = 500
    response_delay_min_ms: int = 500
    response_delay_max_ms: int = 1500

    # Leads
    lead_default_score: int = 75
    lead_default_name: str = "Chat Visitor"
    lead_session_cap: int = 10000

    # Rate limits (slowapi notation)
    chat_rate_limit: str = "30/minute"
    scrape_rate_limit: str = "10/minute"

    # Logging
    log_level: str = "INFO"

    @property
    def has_managed_session(self) -> bool:
        """Check if an authenticated managed-backend session is configured."""
        return bool(self.managed_base_url and self.managed_session_token)

    @property
    def has_direct_key(self) -> bool:
        """Check if a direct provider key is configured."""
        return bool(self.openai_api_key)


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Return the process-wide default settings."""
    return settings
