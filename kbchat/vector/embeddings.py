"""Embedding provider abstraction."""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx
import numpy as np
from openai import AsyncOpenAI

from kbchat.core.config import Settings, get_settings
from kbchat.core.utils import estimate_tokens

logger = logging.getLogger(__name__)

MODEL_SIZES = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}


@dataclass
class EmbeddingResult:
    """Vector for one text plus the tokens the provider billed for it."""

    vector: np.ndarray
    tokens: int


class EmbeddingProvider:
    """Abstract embedding provider."""

    def __init__(self):
        self.model_name = ""
        self.vector_size = 0

    async def embed(self, text: str) -> EmbeddingResult:
        """Generate the embedding for a single text."""
        raise NotImplementedError


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """OpenAI embedding provider."""

    def __init__(
        self,
        config: Optional[Settings] = None,
        client: Optional[AsyncOpenAI] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__()
        self.settings = config or get_settings()
        self.model_name = self.settings.openai_embed_model
        self.vector_size = MODEL_SIZES.get(self.model_name, 1536)
        self.client = client or AsyncOpenAI(
            api_key=self.settings.openai_api_key,
            base_url=self.settings.openai_base_url,
            max_retries=0,
            http_client=http_client,
        )

    async def embed(self, text: str) -> EmbeddingResult:
        """Generate an embedding using the OpenAI API."""
        try:
            response = await self.client.embeddings.create(model=self.model_name, input=text)
        except Exception as e:
            logger.error(f"Error generating OpenAI embedding: {e}")
            raise

        vector = np.array(response.data[0].embedding, dtype=np.float32)
        tokens = response.usage.total_tokens if response.usage else estimate_tokens(text)
        return EmbeddingResult(vector=vector, tokens=tokens)


def get_embedding_provider(config: Optional[Settings] = None) -> EmbeddingProvider:
    """Get configured embedding provider."""
    config = config or get_settings()
    if not config.openai_api_key:
        logger.warning("OpenAI API key not set; embedding calls will fail until one is configured")
    return OpenAIEmbeddingProvider(config)
