"""Recursive character chunking with overlap."""

from __future__ import annotations

from langchain_text_splitters import RecursiveCharacterTextSplitter

from agent_chat.config import ChunkingConfig
from agent_chat.types import DocumentChunk, ParsedDocument


class RecursiveChunker:
    """Splits documents into overlapping, order-preserving chunks.

    Design notes:
    1. Paragraph boundaries first.
       The text is split on the first separator (`"\\n\\n"`). Any piece still
       longer than `chunk_size` is split again with the next separator (line,
       then space, then single characters), so a chunk only ever breaks a
       paragraph or a word when nothing coarser fits.

    2. Packing with overlap.
       Adjacent pieces are merged back up to `chunk_size` characters. When a
       chunk is finalized, its trailing pieces totalling at most
       `chunk_overlap` characters seed the next chunk, which keeps cross-chunk
       context available for retrieval.

    The splitter is deterministic: identical input yields identical chunk
    boundaries, so re-ingesting a document reproduces the same chunks.
    """

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self.config = config or ChunkingConfig()
        if self.config.chunk_overlap >= self.config.chunk_size:
            raise ValueError("chunk_overlap must be less than chunk_size")
        self._splitter = RecursiveCharacterTextSplitter(
            chunk_size=self.config.chunk_size,
            chunk_overlap=self.config.chunk_overlap,
            separators=list(self.config.separators),
            length_function=len,
        )

    def split_text(self, text: str) -> list[str]:
        return self._splitter.split_text(text)

    def chunk_document(self, document: ParsedDocument) -> list[DocumentChunk]:
        """Chunk extracted text; chunk `index` records the origin order."""

        return [
            DocumentChunk(
                chunk_id=f"{document.doc_id}-chunk-{index:04d}",
                doc_id=document.doc_id,
                text=text,
                index=index,
            )
            for index, text in enumerate(self.split_text(document.text))
        ]
