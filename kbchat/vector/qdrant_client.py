"""Qdrant client and knowledge chunk storage."""

import logging
import uuid
from typing import Any, Optional, Union

import numpy as np
from qdrant_client import AsyncQdrantClient
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    MatchValue,
    OptimizersConfigDiff,
    PointStruct,
    VectorParams,
)

from kbchat.core.config import Settings, get_settings
from kbchat.ingestion.models import KnowledgeChunk

logger = logging.getLogger(__name__)


def get_client(url: Optional[str] = None, api_key: Optional[str] = None) -> AsyncQdrantClient:
    """Get Qdrant client instance; ":memory:" gives a local in-process store."""
    config = get_settings()
    url = url or config.qdrant_url
    api_key = api_key or config.qdrant_api_key or None

    if url == ":memory:":
        return AsyncQdrantClient(location=":memory:")
    return AsyncQdrantClient(url=url, api_key=api_key)


def point_id(chunk: KnowledgeChunk) -> str:
    """Stable point ID; re-embedding the same chunk overwrites it."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"{chunk.bot_id}:{chunk.source_id}:{chunk.sequence}"))


class QdrantKnowledgeStore:
    """Per-bot knowledge chunks in one Qdrant collection, filtered by bot_id."""

    def __init__(
        self,
        client: Optional[AsyncQdrantClient] = None,
        collection: Optional[str] = None,
        vector_size: int = 1536,
        config: Optional[Settings] = None,
    ):
        self.settings = config or get_settings()
        self.client = client or get_client(self.settings.qdrant_url, self.settings.qdrant_api_key)
        self.collection = collection or self.settings.collection_name
        self.vector_size = vector_size
        self._ready = False

    async def ensure_collection(self) -> None:
        """Ensure the collection exists with cosine distance."""
        if self._ready:
            return
        collections = (await self.client.get_collections()).collections
        if self.collection not in [c.name for c in collections]:
            logger.info(f"Creating collection: {self.collection}")
            await self.client.create_collection(
                collection_name=self.collection,
                vectors_config=VectorParams(size=self.vector_size, distance=Distance.COSINE),
                optimizers_config=OptimizersConfigDiff(memmap_threshold=20000),
            )
            logger.info(f"Collection {self.collection} created with vector size {self.vector_size}")
        self._ready = True

    async def upsert(self, chunk: KnowledgeChunk, vector: Union[list[float], np.ndarray]) -> str:
        """Store one chunk with its vector."""
        await self.ensure_collection()
        if isinstance(vector, np.ndarray):
            vector = vector.tolist()

        pid = point_id(chunk)
        await self.client.upsert(
            collection_name=self.collection,
            points=[PointStruct(id=pid, vector=vector, payload=chunk.model_dump(mode="json"))],
        )
        return pid

    async def search(
        self,
        bot_id: str,
        vector: Union[list[float], np.ndarray],
        limit: int = 5,
        cutoff: float = 0.0,
    ) -> list[dict[str, Any]]:
        """Nearest chunks for one bot with score >= cutoff."""
        await self.ensure_collection()
        if isinstance(vector, np.ndarray):
            vector = vector.tolist()

        response = await self.client.query_points(
            collection_name=self.collection,
            query=vector,
            query_filter=Filter(must=[FieldCondition(key="bot_id", match=MatchValue(value=bot_id))]),
            limit=limit,
            with_payload=True,
            score_threshold=cutoff,
        )

        results = []
        for point in response.points:
            payload = point.payload or {}
            results.append(
                {
                    "id": point.id,
                    "score": point.score,
                    "text": payload.get("text", ""),
                    "file_name": payload.get("file_name", ""),
                    "file_type": payload.get("file_type", ""),
                    "file_url": payload.get("file_url"),
                    "source_id": payload.get("source_id", ""),
                    "sequence": payload.get("sequence", 0),
                }
            )
        logger.info(f"Retrieved {len(results)} chunks for bot {bot_id} (cutoff={cutoff})")
        return results

    async def delete_bot(self, bot_id: str) -> None:
        """Remove every chunk belonging to a bot."""
        await self.ensure_collection()
        await self.client.delete(
            collection_name=self.collection,
            points_selector=Filter(must=[FieldCondition(key="bot_id", match=MatchValue(value=bot_id))]),
        )
        logger.info(f"Deleted knowledge for bot {bot_id}")

    async def close(self) -> None:
        await self.client.close()
