"""Vector retrieval with bot filtering and similarity cutoff."""

import logging
from typing import Any, Optional

from kbchat.core.config import Settings, get_settings
from kbchat.vector.embeddings import EmbeddingProvider, get_embedding_provider
from kbchat.vector.qdrant_client import QdrantKnowledgeStore

logger = logging.getLogger(__name__)


class KnowledgeRetriever:
    """Nearest-neighbour lookup over a bot's stored chunks."""

    def __init__(
        self,
        provider: Optional[EmbeddingProvider] = None,
        store: Optional[QdrantKnowledgeStore] = None,
        config: Optional[Settings] = None,
    ):
        self.settings = config or get_settings()
        self.provider = provider or get_embedding_provider(self.settings)
        self.store = store or QdrantKnowledgeStore(vector_size=self.provider.vector_size, config=self.settings)

    async def retrieve(
        self,
        bot_id: str,
        query: str,
        top_k: Optional[int] = None,
        cutoff: Optional[float] = None,
    ) -> list[dict[str, Any]]:
        """Retrieve chunks scoring at or above the cutoff, best first."""
        if top_k is None:
            top_k = self.settings.top_k
        if cutoff is None:
            cutoff = self.settings.similarity_cutoff

        embedding = await self.provider.embed(query)
        return await self.store.search(bot_id, embedding.vector, limit=top_k, cutoff=cutoff)

    async def retrieve_context(self, bot_id: str, query: str, top_k: Optional[int] = None) -> str:
        """Retrieved chunk texts joined into one context block."""
        hits = await self.retrieve(bot_id, query, top_k=top_k)
        return "\n\n---\n\n".join(hit["text"] for hit in hits if hit.get("text"))
