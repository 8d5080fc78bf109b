"""External tool-server integration over the MCP adapters."""

from __future__ import annotations

import logging
from typing import Any

from langchain_core.tools import BaseTool
from langchain_mcp_adapters.client import MultiServerMCPClient

from agent_chat.agent.descriptors import ToolDescriptor, ToolServerBinding
from agent_chat.errors import UnsupportedTransport
from agent_chat.openapi.translator import parameter_schema_from_json_schema
from agent_chat.types import ToolServerConfig

logger = logging.getLogger(__name__)

SUPPORTED_TRANSPORTS = ("sse", "http")

# The adapters library names the plain HTTP transport "streamable_http".
_ADAPTER_TRANSPORTS = {"sse": "sse", "http": "streamable_http"}


def validate_transport(transport: str) -> str:
    normalized = transport.strip().lower()
    if normalized not in SUPPORTED_TRANSPORTS:
        raise UnsupportedTransport(
            f"Unsupported tool-server transport {transport!r}; "
            f"expected one of {', '.join(SUPPORTED_TRANSPORTS)}"
        )
    return normalized


async def load_tool_server_tools(
    servers: list[ToolServerConfig],
) -> list[tuple[str, BaseTool]]:
    """Ask every configured server for its tool catalogue, once."""

    if not servers:
        return []

    connections: dict[str, Any] = {
        server.name: {
            "transport": _ADAPTER_TRANSPORTS[server.transport],
            "url": server.url,
        }
        for server in servers
    }
    client = MultiServerMCPClient(connections)

    loaded: list[tuple[str, BaseTool]] = []
    for server_name in connections:
        tools = await client.get_tools(server_name=server_name)
        logger.info(f"Tool server {server_name!r} exposed {len(tools)} tools")
        loaded.extend((server_name, tool) for tool in tools)
    return loaded


def descriptor_from_server_tool(server_name: str, tool: BaseTool) -> ToolDescriptor:
    args_schema = tool.args_schema
    if isinstance(args_schema, dict):
        json_schema: Any = args_schema
    elif args_schema is not None:
        json_schema = args_schema.model_json_schema()
    else:
        json_schema = {}

    return ToolDescriptor(
        name=tool.name,
        description=tool.description or tool.name,
        parameters=parameter_schema_from_json_schema(json_schema, document=json_schema),
        binding=ToolServerBinding(server=server_name, tool=tool.name),
    )
