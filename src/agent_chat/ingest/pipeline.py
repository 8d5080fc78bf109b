"""End-to-end ingest pipeline: extract -> chunk -> embed -> store."""

from __future__ import annotations

import asyncio
import logging
import uuid

from agent_chat.ingest.chunker import RecursiveChunker
from agent_chat.ingest.embedder import Embedder
from agent_chat.ingest.parser import ExtractorRegistry
from agent_chat.store import SqliteStore
from agent_chat.types import DocumentRecord, ParsedDocument

logger = logging.getLogger(__name__)


class IngestPipeline:
    """Coordinates extractor/chunker/embedder/store stages for one upload."""

    def __init__(
        self,
        extractors: ExtractorRegistry,
        chunker: RecursiveChunker,
        embedder: Embedder,
        store: SqliteStore,
    ) -> None:
        self._extractors = extractors
        self._chunker = chunker
        self._embedder = embedder
        self._store = store

    async def ingest(
        self,
        *,
        agent_id: str,
        name: str,
        content_type: str,
        data: bytes,
    ) -> DocumentRecord:
        """Ingest one uploaded file and return the stored document record.

        Raises:
            UnsupportedDocumentType: for anything other than plain text or PDF;
                raised before any chunking or embedding work.
            InvalidDocument: when a PDF cannot be parsed.
        """

        text = self._extractors.extract(data, content_type)
        parsed = ParsedDocument(
            doc_id=str(uuid.uuid4()),
            text=text,
            metadata={"name": name, "content_type": content_type},
        )

        chunks = self._chunker.chunk_document(parsed)
        logger.info(f"Split {name!r} into {len(chunks)} chunks")
        embeddings = (
            await self._embedder.embed_documents([chunk.text for chunk in chunks])
            if chunks
            else []
        )
        return await asyncio.to_thread(
            self._store.create_document,
            doc_id=parsed.doc_id,
            agent_id=agent_id,
            name=name,
            content_type=content_type,
            size=len(data),
            chunks=chunks,
            embeddings=embeddings,
        )
