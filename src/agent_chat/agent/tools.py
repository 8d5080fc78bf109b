"""Per-request assembly of an agent's tool registry."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

import httpx
from langchain_core.tools import BaseTool

from agent_chat.agent.descriptors import (
    ParameterProperty,
    ParameterSchema,
    RetrievalBinding,
    ToolDescriptor,
)
from agent_chat.agent.registry import ToolRegistry
from agent_chat.agent.tool_servers import descriptor_from_server_tool, load_tool_server_tools
from agent_chat.retrieval.retriever import DocumentRetriever
from agent_chat.types import OpenAPIIntegration, ToolServerConfig

logger = logging.getLogger(__name__)

DOC_SEARCH_TOOL = "doc_search"

ToolServerLoader = Callable[[list[ToolServerConfig]], Awaitable[list[tuple[str, BaseTool]]]]


def doc_search_descriptor(agent_id: str, *, top_k: int = 1) -> ToolDescriptor:
    return ToolDescriptor(
        name=DOC_SEARCH_TOOL,
        description="Search for relevant information in the documents",
        parameters=ParameterSchema(
            properties={"query": ParameterProperty(description="The query to search for")},
            required=("query",),
        ),
        binding=RetrievalBinding(agent_id=agent_id, top_k=top_k),
    )


async def build_tool_registry(
    *,
    agent_id: str,
    openapis: list[OpenAPIIntegration],
    tool_servers: list[ToolServerConfig],
    retriever: DocumentRetriever,
    http_client: httpx.AsyncClient,
    tool_server_loader: ToolServerLoader = load_tool_server_tools,
    retrieval_top_k: int = 1,
) -> ToolRegistry:
    """Register tools in precedence order; later names replace earlier ones.

    Order: OpenAPI operations, then tool-server tools, then `doc_search`.
    """

    registry = ToolRegistry(http_client=http_client, retriever=retriever)

    for integration in openapis:
        for descriptor in integration.tools:
            registry.register(descriptor.with_base_url(integration.api_url))

    for server_name, tool in await tool_server_loader(tool_servers):
        registry.register(descriptor_from_server_tool(server_name, tool), server_tool=tool)

    registry.register(doc_search_descriptor(agent_id, top_k=retrieval_top_k))
    logger.info(f"Built registry for agent {agent_id} with tools {registry.names()}")
    return registry
