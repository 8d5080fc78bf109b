"""Nearest-chunk retrieval served to the agent as its document search tool."""

from __future__ import annotations

import asyncio
import logging

from agent_chat.config import RetrievalConfig
from agent_chat.ingest.embedder import Embedder
from agent_chat.store import SqliteStore
from agent_chat.types import ScoredChunk

logger = logging.getLogger(__name__)

NO_RESULTS = "No relevant information found."
CHUNK_SEPARATOR = "\n\n---\n\n"


class DocumentRetriever:
    """Embeds a query and looks up the agent's closest chunks by cosine distance."""

    def __init__(
        self,
        store: SqliteStore,
        embedder: Embedder,
        config: RetrievalConfig | None = None,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.config = config or RetrievalConfig()

    async def retrieve(
        self, agent_id: str, query: str, *, top_k: int | None = None
    ) -> list[ScoredChunk]:
        k = top_k or self.config.top_k
        query_embedding = await self.embedder.embed_query(query)
        return await asyncio.to_thread(
            self.store.nearest_chunks, agent_id, query_embedding, k
        )

    async def search(self, agent_id: str, query: str, *, top_k: int | None = None) -> str:
        """Return the nearest chunk texts, or `NO_RESULTS` when nothing is indexed."""

        hits = await self.retrieve(agent_id, query, top_k=top_k)
        if not hits:
            logger.info(f"No chunks indexed for agent {agent_id}")
            return NO_RESULTS
        return CHUNK_SEPARATOR.join(hit.chunk.text for hit in hits)
