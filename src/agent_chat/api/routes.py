"""HTTP routes: agent configuration, document ingestion and streaming chat."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from typing import Any

import httpx
from fastapi import APIRouter, Depends, File, Header, Request, Response, UploadFile
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from agent_chat.agent.loop import OrchestrationLoop
from agent_chat.agent.stream import stream_events
from agent_chat.agent.tools import ToolServerLoader, build_tool_registry
from agent_chat.api.schemas import (
    AgentCreateRequest,
    AgentUpdateRequest,
    ChatRequest,
    OpenAPICreateRequest,
    OpenAPIUpdateRequest,
    SearchRequest,
    ToolServerCreateRequest,
    ToolServerUpdateRequest,
    openapi_payload,
)
from agent_chat.config import Settings
from agent_chat.errors import APIError, ErrorCode
from agent_chat.ingest.pipeline import IngestPipeline
from agent_chat.openapi.translator import translate_openapi
from agent_chat.retrieval.retriever import DocumentRetriever
from agent_chat.store import SqliteStore
from agent_chat.types import AgentRecord, ToolTrace

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


@dataclass(slots=True)
class Services:
    settings: Settings
    store: SqliteStore
    retriever: DocumentRetriever
    ingest_pipeline: IngestPipeline
    http_client: httpx.AsyncClient
    tool_server_loader: ToolServerLoader
    llm: Any | None


def get_services(request: Request) -> Services:
    return request.app.state.services


def current_user(x_user_id: str | None = Header(default=None)) -> str:
    if not x_user_id or not x_user_id.strip():
        raise APIError(ErrorCode.UNAUTHORIZED)
    return x_user_id.strip()


def _require_agent(services: Services, agent_id: str, user_id: str) -> AgentRecord:
    agent = services.store.get_agent(agent_id, user_id)
    if agent is None:
        raise APIError(ErrorCode.AGENT_NOT_FOUND)
    return agent


async def _require_agent_async(services: Services, agent_id: str, user_id: str) -> AgentRecord:
    return await asyncio.to_thread(_require_agent, services, agent_id, user_id)


async def _fetch_openapi_document(client: httpx.AsyncClient, schema_url: str) -> Any:
    try:
        response = await client.get(schema_url)
        response.raise_for_status()
        return response.json()
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning(f"Could not load OpenAPI schema from {schema_url}: {exc}")
        raise APIError(ErrorCode.INVALID_REQUEST, f"Could not load schema: {exc}") from exc


@router.get("/health")
def health(services: Services = Depends(get_services)) -> dict[str, Any]:
    return {"status": "ok", "llm_configured": services.llm is not None}


# agents


@router.post("/agents", status_code=201)
def create_agent(
    body: AgentCreateRequest,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    agent = services.store.create_agent(
        user_id=user_id,
        name=body.name,
        description=(body.description or "").strip() or None,
    )
    return asdict(agent)


@router.get("/agents")
def list_agents(
    user_id: str = Depends(current_user), services: Services = Depends(get_services)
) -> list[dict[str, Any]]:
    return [asdict(agent) for agent in services.store.list_agents(user_id)]


@router.get("/agents/{agent_id}")
def get_agent(
    agent_id: str,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    return asdict(_require_agent(services, agent_id, user_id))


@router.patch("/agents/{agent_id}")
def update_agent(
    agent_id: str,
    body: AgentUpdateRequest,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    _require_agent(services, agent_id, user_id)
    services.store.update_agent(
        agent_id,
        name=(body.name or "").strip() or None,
        description=(body.description or "").strip() or None,
    )
    return asdict(_require_agent(services, agent_id, user_id))


@router.delete("/agents/{agent_id}", status_code=204)
def delete_agent(
    agent_id: str,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> Response:
    _require_agent(services, agent_id, user_id)
    services.store.delete_agent(agent_id)
    return Response(status_code=204)


# documents


@router.post("/agents/{agent_id}/documents", status_code=201)
async def upload_document(
    agent_id: str,
    file: UploadFile = File(...),
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    await _require_agent_async(services, agent_id, user_id)
    data = await file.read()
    document = await services.ingest_pipeline.ingest(
        agent_id=agent_id,
        name=file.filename or "document",
        content_type=file.content_type or "",
        data=data,
    )
    return asdict(document)


@router.get("/agents/{agent_id}/documents")
def list_documents(
    agent_id: str,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> list[dict[str, Any]]:
    _require_agent(services, agent_id, user_id)
    return [asdict(document) for document in services.store.list_documents(agent_id)]


@router.delete("/agents/{agent_id}/documents/{document_id}", status_code=204)
def delete_document(
    agent_id: str,
    document_id: str,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> Response:
    _require_agent(services, agent_id, user_id)
    if not services.store.delete_document(agent_id, document_id):
        raise APIError(ErrorCode.DOCUMENT_NOT_FOUND)
    return Response(status_code=204)


@router.post("/agents/{agent_id}/search")
async def search_documents(
    agent_id: str,
    body: SearchRequest,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    await _require_agent_async(services, agent_id, user_id)
    hits = await services.retriever.retrieve(agent_id, body.query, top_k=body.top_k)
    return {
        "items": [
            {
                "chunk_id": hit.chunk.chunk_id,
                "doc_id": hit.chunk.doc_id,
                "index": hit.chunk.index,
                "distance": hit.distance,
                "text": hit.chunk.text,
            }
            for hit in hits
        ]
    }


# openapi integrations


@router.post("/agents/{agent_id}/openapis", status_code=201)
async def create_openapi(
    agent_id: str,
    body: OpenAPICreateRequest,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    await _require_agent_async(services, agent_id, user_id)
    document = await _fetch_openapi_document(services.http_client, body.schema_url.strip())
    tools = translate_openapi(document)
    integration = await asyncio.to_thread(
        services.store.create_openapi,
        agent_id=agent_id,
        name=body.name.strip(),
        schema_url=body.schema_url.strip(),
        api_url=body.api_url.strip(),
        tools=tools,
    )
    return openapi_payload(integration)


@router.get("/agents/{agent_id}/openapis")
def list_openapis(
    agent_id: str,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> list[dict[str, Any]]:
    _require_agent(services, agent_id, user_id)
    return [openapi_payload(item) for item in services.store.list_openapis(agent_id)]


@router.get("/agents/{agent_id}/openapis/{openapi_id}")
def get_openapi(
    agent_id: str,
    openapi_id: str,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    _require_agent(services, agent_id, user_id)
    integration = services.store.get_openapi(agent_id, openapi_id)
    if integration is None:
        raise APIError(ErrorCode.OPENAPI_NOT_FOUND)
    return openapi_payload(integration)


@router.patch("/agents/{agent_id}/openapis/{openapi_id}")
async def update_openapi(
    agent_id: str,
    openapi_id: str,
    body: OpenAPIUpdateRequest,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    await _require_agent_async(services, agent_id, user_id)
    schema_url = (body.schema_url or "").strip() or None
    tools = None
    if schema_url:
        tools = translate_openapi(
            await _fetch_openapi_document(services.http_client, schema_url)
        )
    updated = await asyncio.to_thread(
        services.store.update_openapi,
        agent_id,
        openapi_id,
        name=(body.name or "").strip() or None,
        schema_url=schema_url,
        api_url=(body.api_url or "").strip() or None,
        tools=tools,
    )
    if not updated:
        raise APIError(ErrorCode.OPENAPI_NOT_FOUND)
    integration = await asyncio.to_thread(services.store.get_openapi, agent_id, openapi_id)
    return openapi_payload(integration)


@router.delete("/agents/{agent_id}/openapis/{openapi_id}", status_code=204)
def delete_openapi(
    agent_id: str,
    openapi_id: str,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> Response:
    _require_agent(services, agent_id, user_id)
    if not services.store.delete_openapi(agent_id, openapi_id):
        raise APIError(ErrorCode.OPENAPI_NOT_FOUND)
    return Response(status_code=204)


# tool servers


@router.post("/agents/{agent_id}/tool-servers", status_code=201)
def create_tool_server(
    agent_id: str,
    body: ToolServerCreateRequest,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    _require_agent(services, agent_id, user_id)
    server = services.store.create_tool_server(
        agent_id=agent_id,
        name=body.name.strip(),
        transport=body.transport,
        url=body.url.strip(),
    )
    return asdict(server)


@router.get("/agents/{agent_id}/tool-servers")
def list_tool_servers(
    agent_id: str,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> list[dict[str, Any]]:
    _require_agent(services, agent_id, user_id)
    return [asdict(server) for server in services.store.list_tool_servers(agent_id)]


@router.get("/agents/{agent_id}/tool-servers/{server_id}")
def get_tool_server(
    agent_id: str,
    server_id: str,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    _require_agent(services, agent_id, user_id)
    server = services.store.get_tool_server(agent_id, server_id)
    if server is None:
        raise APIError(ErrorCode.TOOL_SERVER_NOT_FOUND)
    return asdict(server)


@router.patch("/agents/{agent_id}/tool-servers/{server_id}")
def update_tool_server(
    agent_id: str,
    server_id: str,
    body: ToolServerUpdateRequest,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    _require_agent(services, agent_id, user_id)
    updated = services.store.update_tool_server(
        agent_id,
        server_id,
        name=(body.name or "").strip() or None,
        transport=body.transport,
        url=(body.url or "").strip() or None,
    )
    if not updated:
        raise APIError(ErrorCode.TOOL_SERVER_NOT_FOUND)
    return asdict(services.store.get_tool_server(agent_id, server_id))


@router.delete("/agents/{agent_id}/tool-servers/{server_id}", status_code=204)
def delete_tool_server(
    agent_id: str,
    server_id: str,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> Response:
    _require_agent(services, agent_id, user_id)
    if not services.store.delete_tool_server(agent_id, server_id):
        raise APIError(ErrorCode.TOOL_SERVER_NOT_FOUND)
    return Response(status_code=204)


# chat


@router.post("/agents/{agent_id}/chat")
async def chat(
    agent_id: str,
    body: ChatRequest,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> StreamingResponse:
    """Stream one agent run as newline-delimited JSON events."""

    await _require_agent_async(services, agent_id, user_id)
    if services.llm is None:
        raise APIError(ErrorCode.MODEL_NOT_CONFIGURED)

    openapis = await asyncio.to_thread(services.store.list_openapis, agent_id)
    tool_servers = await asyncio.to_thread(services.store.list_tool_servers, agent_id)

    async def _run(emit: Callable[[BaseModel], Awaitable[None]]) -> None:
        registry = await build_tool_registry(
            agent_id=agent_id,
            openapis=openapis,
            tool_servers=tool_servers,
            retriever=services.retriever,
            http_client=services.http_client,
            tool_server_loader=services.tool_server_loader,
            retrieval_top_k=services.settings.retrieval.top_k,
        )
        registry.set_observer(_log_tool_trace)
        loop = OrchestrationLoop(
            llm=services.llm,
            tool_registry=registry,
            config=services.settings.agent,
        )
        await loop.run(body.message, emit)

    return StreamingResponse(
        stream_events(_run, max_buffered=services.settings.agent.stream_buffer_size),
        media_type="application/x-ndjson",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


def _log_tool_trace(trace: ToolTrace) -> None:
    logger.info(f"Tool {trace.name} finished in {trace.latency_ms:.1f}ms")
