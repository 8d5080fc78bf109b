"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from agent_chat.agent.descriptors import ToolDescriptor


@dataclass(slots=True)
class ParsedDocument:
    """Extracted source text before chunking."""

    doc_id: str
    text: str
    metadata: dict[str, Any]


@dataclass(frozen=True, slots=True)
class DocumentChunk:
    """A chunked section of a source document."""

    chunk_id: str
    doc_id: str
    text: str
    index: int
    embedding: list[float] = field(default_factory=list)


@dataclass(slots=True)
class ScoredChunk:
    """A retrieval hit; lower distance means more similar."""

    chunk: DocumentChunk
    distance: float
    rank: int = 0


@dataclass(slots=True)
class ToolTrace:
    """Trace record for an executed tool call."""

    name: str
    input_payload: dict[str, Any]
    output_preview: str
    latency_ms: float


@dataclass(slots=True)
class AgentRecord:
    id: str
    user_id: str
    name: str
    description: str | None
    created_at: str


@dataclass(slots=True)
class DocumentRecord:
    id: str
    agent_id: str
    name: str
    content_type: str
    size: int
    chunk_count: int
    created_at: str


@dataclass(slots=True)
class OpenAPIIntegration:
    id: str
    agent_id: str
    name: str
    schema_url: str
    api_url: str
    tools: list[ToolDescriptor]
    created_at: str


@dataclass(slots=True)
class ToolServerConfig:
    id: str
    agent_id: str
    name: str
    transport: str
    url: str
    created_at: str
