"""SQLite persistence for agents, integrations, documents and chunk vectors."""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from math import sqrt
from pathlib import Path
from typing import Any

from agent_chat.agent.descriptors import ToolDescriptor
from agent_chat.types import (
    AgentRecord,
    DocumentChunk,
    DocumentRecord,
    OpenAPIIntegration,
    ScoredChunk,
    ToolServerConfig,
)

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS agents (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    name TEXT NOT NULL,
    description TEXT,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS documents (
    id TEXT PRIMARY KEY,
    agent_id TEXT NOT NULL REFERENCES agents(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    content_type TEXT NOT NULL,
    size INTEGER NOT NULL,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS document_chunks (
    id TEXT PRIMARY KEY,
    document_id TEXT NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
    chunk_text TEXT NOT NULL,
    chunk_index INTEGER NOT NULL,
    embedding TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_chunks_document ON document_chunks(document_id);
CREATE TABLE IF NOT EXISTS openapis (
    id TEXT PRIMARY KEY,
    agent_id TEXT NOT NULL REFERENCES agents(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    schema_url TEXT NOT NULL,
    api_url TEXT NOT NULL,
    tools_schema TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS tool_servers (
    id TEXT PRIMARY KEY,
    agent_id TEXT NOT NULL REFERENCES agents(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    transport TEXT NOT NULL,
    url TEXT NOT NULL,
    created_at TEXT NOT NULL
);
"""


class SqliteStore:
    """Relational store used by the API layer and the retrieval pipeline.

    Every public method opens its own connection, so the store can be shared
    across threads. Writes that touch several tables run in one transaction.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = str(path)
        with self._connect() as conn:
            conn.executescript(_SCHEMA)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    # agents

    def create_agent(
        self, *, user_id: str, name: str, description: str | None = None
    ) -> AgentRecord:
        record = AgentRecord(
            id=_new_id(),
            user_id=user_id,
            name=name,
            description=description,
            created_at=_now(),
        )
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO agents(id, user_id, name, description, created_at) "
                "VALUES(?, ?, ?, ?, ?)",
                (record.id, record.user_id, record.name, record.description, record.created_at),
            )
        return record

    def get_agent(self, agent_id: str, user_id: str) -> AgentRecord | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM agents WHERE id = ? AND user_id = ?", (agent_id, user_id)
            ).fetchone()
        return _agent(row) if row else None

    def list_agents(self, user_id: str) -> list[AgentRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM agents WHERE user_id = ? ORDER BY created_at DESC",
                (user_id,),
            ).fetchall()
        return [_agent(row) for row in rows]

    def update_agent(
        self,
        agent_id: str,
        *,
        name: str | None = None,
        description: str | None = None,
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE agents SET name = COALESCE(?, name), "
                "description = COALESCE(?, description) WHERE id = ?",
                (name, description, agent_id),
            )

    def delete_agent(self, agent_id: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM agents WHERE id = ?", (agent_id,))

    # documents and chunks

    def create_document(
        self,
        *,
        doc_id: str,
        agent_id: str,
        name: str,
        content_type: str,
        size: int,
        chunks: list[DocumentChunk],
        embeddings: list[list[float]],
    ) -> DocumentRecord:
        """Insert a document and all of its chunks atomically.

        A failure while writing chunks rolls back the document row as well, so
        a document never exists without its chunks.
        """

        record = DocumentRecord(
            id=doc_id,
            agent_id=agent_id,
            name=name,
            content_type=content_type,
            size=size,
            chunk_count=len(chunks),
            created_at=_now(),
        )
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO documents(id, agent_id, name, content_type, size, created_at) "
                "VALUES(?, ?, ?, ?, ?, ?)",
                (record.id, agent_id, name, content_type, size, record.created_at),
            )
            conn.executemany(
                "INSERT INTO document_chunks(id, document_id, chunk_text, chunk_index, embedding) "
                "VALUES(?, ?, ?, ?, ?)",
                [
                    (chunk.chunk_id, doc_id, chunk.text, chunk.index, json.dumps(embedding))
                    for chunk, embedding in zip(chunks, embeddings, strict=True)
                ],
            )
        logger.info(f"Stored document {doc_id} with {len(chunks)} chunks")
        return record

    def list_documents(self, agent_id: str) -> list[DocumentRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT d.*, (SELECT COUNT(*) FROM document_chunks c WHERE c.document_id = d.id) "
                "AS chunk_count FROM documents d WHERE d.agent_id = ? ORDER BY d.created_at DESC",
                (agent_id,),
            ).fetchall()
        return [_document(row) for row in rows]

    def delete_document(self, agent_id: str, doc_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM documents WHERE id = ? AND agent_id = ?", (doc_id, agent_id)
            )
        return cursor.rowcount > 0

    def list_chunks(self, doc_id: str) -> list[DocumentChunk]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM document_chunks WHERE document_id = ? ORDER BY chunk_index",
                (doc_id,),
            ).fetchall()
        return [_chunk(row) for row in rows]

    def nearest_chunks(
        self, agent_id: str, query_embedding: list[float], k: int
    ) -> list[ScoredChunk]:
        """Rank the agent's chunks by cosine distance, most similar first."""

        with self._connect() as conn:
            rows = conn.execute(
                "SELECT c.* FROM document_chunks c JOIN documents d ON d.id = c.document_id "
                "WHERE d.agent_id = ?",
                (agent_id,),
            ).fetchall()

        ranked = sorted(
            (
                ScoredChunk(chunk=chunk, distance=cosine_distance(query_embedding, chunk.embedding))
                for chunk in map(_chunk, rows)
            ),
            key=lambda item: (item.distance, item.chunk.doc_id, item.chunk.index),
        )
        return [
            ScoredChunk(chunk=item.chunk, distance=item.distance, rank=i + 1)
            for i, item in enumerate(ranked[:k])
        ]

    # openapi integrations

    def create_openapi(
        self,
        *,
        agent_id: str,
        name: str,
        schema_url: str,
        api_url: str,
        tools: list[ToolDescriptor],
    ) -> OpenAPIIntegration:
        record = OpenAPIIntegration(
            id=_new_id(),
            agent_id=agent_id,
            name=name,
            schema_url=schema_url,
            api_url=api_url,
            tools=tools,
            created_at=_now(),
        )
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO openapis(id, agent_id, name, schema_url, api_url, tools_schema, created_at) "
                "VALUES(?, ?, ?, ?, ?, ?, ?)",
                (
                    record.id,
                    agent_id,
                    name,
                    schema_url,
                    api_url,
                    _dump_tools(tools),
                    record.created_at,
                ),
            )
        return record

    def get_openapi(self, agent_id: str, openapi_id: str) -> OpenAPIIntegration | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM openapis WHERE id = ? AND agent_id = ?", (openapi_id, agent_id)
            ).fetchone()
        return _openapi(row) if row else None

    def list_openapis(self, agent_id: str) -> list[OpenAPIIntegration]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM openapis WHERE agent_id = ? ORDER BY created_at DESC",
                (agent_id,),
            ).fetchall()
        return [_openapi(row) for row in rows]

    def update_openapi(
        self,
        agent_id: str,
        openapi_id: str,
        *,
        name: str | None = None,
        schema_url: str | None = None,
        api_url: str | None = None,
        tools: list[ToolDescriptor] | None = None,
    ) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE openapis SET name = COALESCE(?, name), schema_url = COALESCE(?, schema_url), "
                "api_url = COALESCE(?, api_url), tools_schema = COALESCE(?, tools_schema) "
                "WHERE id = ? AND agent_id = ?",
                (
                    name,
                    schema_url,
                    api_url,
                    _dump_tools(tools) if tools is not None else None,
                    openapi_id,
                    agent_id,
                ),
            )
        return cursor.rowcount > 0

    def delete_openapi(self, agent_id: str, openapi_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM openapis WHERE id = ? AND agent_id = ?", (openapi_id, agent_id)
            )
        return cursor.rowcount > 0

    # tool servers

    def create_tool_server(
        self, *, agent_id: str, name: str, transport: str, url: str
    ) -> ToolServerConfig:
        record = ToolServerConfig(
            id=_new_id(),
            agent_id=agent_id,
            name=name,
            transport=transport,
            url=url,
            created_at=_now(),
        )
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO tool_servers(id, agent_id, name, transport, url, created_at) "
                "VALUES(?, ?, ?, ?, ?, ?)",
                (record.id, agent_id, name, transport, url, record.created_at),
            )
        return record

    def get_tool_server(self, agent_id: str, server_id: str) -> ToolServerConfig | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM tool_servers WHERE id = ? AND agent_id = ?", (server_id, agent_id)
            ).fetchone()
        return _tool_server(row) if row else None

    def list_tool_servers(self, agent_id: str) -> list[ToolServerConfig]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM tool_servers WHERE agent_id = ? ORDER BY created_at DESC",
                (agent_id,),
            ).fetchall()
        return [_tool_server(row) for row in rows]

    def update_tool_server(
        self,
        agent_id: str,
        server_id: str,
        *,
        name: str | None = None,
        transport: str | None = None,
        url: str | None = None,
    ) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE tool_servers SET name = COALESCE(?, name), transport = COALESCE(?, transport), "
                "url = COALESCE(?, url) WHERE id = ? AND agent_id = ?",
                (name, transport, url, server_id, agent_id),
            )
        return cursor.rowcount > 0

    def delete_tool_server(self, agent_id: str, server_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM tool_servers WHERE id = ? AND agent_id = ?", (server_id, agent_id)
            )
        return cursor.rowcount > 0


def cosine_distance(a: list[float], b: list[float]) -> float:
    """`1 - cosine similarity`; mismatched or zero vectors are maximally distant."""

    if not a or not b or len(a) != len(b):
        return 1.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 1.0
    return 1.0 - numerator / (norm_a * norm_b)


def _new_id() -> str:
    return str(uuid.uuid4())


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _dump_tools(tools: list[ToolDescriptor]) -> str:
    return json.dumps([tool.model_dump(mode="json") for tool in tools])


def _agent(row: sqlite3.Row) -> AgentRecord:
    return AgentRecord(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        description=row["description"],
        created_at=row["created_at"],
    )


def _document(row: sqlite3.Row) -> DocumentRecord:
    return DocumentRecord(
        id=row["id"],
        agent_id=row["agent_id"],
        name=row["name"],
        content_type=row["content_type"],
        size=row["size"],
        chunk_count=row["chunk_count"],
        created_at=row["created_at"],
    )


def _chunk(row: sqlite3.Row) -> DocumentChunk:
    embedding: Any = json.loads(row["embedding"])
    return DocumentChunk(
        chunk_id=row["id"],
        doc_id=row["document_id"],
        text=row["chunk_text"],
        index=row["chunk_index"],
        embedding=[float(value) for value in embedding],
    )


def _openapi(row: sqlite3.Row) -> OpenAPIIntegration:
    return OpenAPIIntegration(
        id=row["id"],
        agent_id=row["agent_id"],
        name=row["name"],
        schema_url=row["schema_url"],
        api_url=row["api_url"],
        tools=[ToolDescriptor.model_validate(item) for item in json.loads(row["tools_schema"])],
        created_at=row["created_at"],
    )


def _tool_server(row: sqlite3.Row) -> ToolServerConfig:
    return ToolServerConfig(
        id=row["id"],
        agent_id=row["agent_id"],
        name=row["name"],
        transport=row["transport"],
        url=row["url"],
        created_at=row["created_at"],
    )
