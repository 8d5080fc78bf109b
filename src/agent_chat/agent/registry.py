"""Tool registry and invocation dispatcher."""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from time import perf_counter
from typing import TYPE_CHECKING, Any

import httpx
from langchain_core.tools import BaseTool
from pydantic import BaseModel, ValidationError

from agent_chat.agent.descriptors import (
    OpenAPIBinding,
    RetrievalBinding,
    ToolDescriptor,
    ToolServerBinding,
    build_args_model,
)
from agent_chat.types import ToolTrace

if TYPE_CHECKING:
    from agent_chat.retrieval.retriever import DocumentRetriever

logger = logging.getLogger(__name__)

ToolHandler = Callable[[dict[str, Any]], Awaitable[str]]


@dataclass(slots=True)
class RegisteredTool:
    descriptor: ToolDescriptor
    args_schema: type[BaseModel]
    handler: ToolHandler


class ToolRegistry:
    """Maps tool names to descriptors and resolved async handlers.

    Handlers are resolved from the descriptor's binding once, at registration.
    `invoke` never raises: every failure is returned as an `Error: ...` text
    so the orchestration loop can keep reasoning.
    """

    def __init__(
        self,
        *,
        http_client: httpx.AsyncClient | None = None,
        retriever: DocumentRetriever | None = None,
    ) -> None:
        self._tools: dict[str, RegisteredTool] = {}
        self._http_client = http_client
        self._retriever = retriever
        self._observer: Callable[[ToolTrace], None] | None = None

    def register(
        self, descriptor: ToolDescriptor, *, server_tool: BaseTool | None = None
    ) -> None:
        """Register a descriptor; a later registration of the same name wins."""

        if descriptor.name in self._tools:
            logger.warning(f"Tool {descriptor.name!r} registered twice, keeping the latest")
        self._tools[descriptor.name] = RegisteredTool(
            descriptor=descriptor,
            args_schema=build_args_model(descriptor),
            handler=self._resolve_handler(descriptor, server_tool),
        )

    def set_observer(self, observer: Callable[[ToolTrace], None] | None) -> None:
        """Set an optional callback invoked after each tool execution."""
        self._observer = observer

    def names(self) -> list[str]:
        return list(self._tools)

    def descriptors(self) -> list[ToolDescriptor]:
        return [tool.descriptor for tool in self._tools.values()]

    def openai_tools(self) -> list[dict[str, Any]]:
        """Function-tool schemas in the shape accepted by `bind_tools`."""
        return [tool.descriptor.to_openai_tool() for tool in self._tools.values()]

    async def invoke(self, name: str, payload: dict[str, Any]) -> str:
        start = perf_counter()
        output = await self._invoke(name, payload)
        latency_ms = (perf_counter() - start) * 1000.0

        if self._observer is not None:
            self._observer(
                ToolTrace(
                    name=name,
                    input_payload=payload,
                    output_preview=output[:320],
                    latency_ms=latency_ms,
                )
            )
        return output

    async def _invoke(self, name: str, payload: dict[str, Any]) -> str:
        tool = self._tools.get(name)
        if tool is None:
            logger.error(f"Model requested unknown tool {name!r}")
            return f"Error: unknown tool '{name}'"

        try:
            arguments = tool.args_schema.model_validate(payload).model_dump(
                by_alias=True, exclude_none=True
            )
        except ValidationError as exc:
            return f"Error: invalid arguments for tool '{name}': {exc}"

        try:
            return await tool.handler(arguments)
        except Exception as exc:
            logger.warning(f"Tool {name!r} failed: {exc}", exc_info=True)
            return f"Error: tool '{name}' failed: {exc}"

    def _resolve_handler(
        self, descriptor: ToolDescriptor, server_tool: BaseTool | None
    ) -> ToolHandler:
        binding = descriptor.binding
        if isinstance(binding, OpenAPIBinding):
            if self._http_client is None:
                raise ValueError(f"Tool {descriptor.name!r} needs an HTTP client")
            return self._openapi_handler(binding)
        if isinstance(binding, ToolServerBinding):
            if server_tool is None:
                raise ValueError(f"Tool {descriptor.name!r} needs its tool-server tool")
            return _tool_server_handler(server_tool)
        if isinstance(binding, RetrievalBinding):
            if self._retriever is None:
                raise ValueError(f"Tool {descriptor.name!r} needs a retriever")
            return self._retrieval_handler(binding)
        raise TypeError(f"Unsupported tool binding: {type(binding).__name__}")

    def _openapi_handler(self, binding: OpenAPIBinding) -> ToolHandler:
        client = self._http_client
        url = f"{binding.base_url}{binding.path}"

        async def _call(arguments: dict[str, Any]) -> str:
            response = await client.get(url, params=_query_params(arguments))
            response.raise_for_status()
            try:
                return json.dumps(response.json(), ensure_ascii=False)
            except ValueError:
                return response.text

        return _call

    def _retrieval_handler(self, binding: RetrievalBinding) -> ToolHandler:
        retriever = self._retriever

        async def _call(arguments: dict[str, Any]) -> str:
            return await retriever.search(
                binding.agent_id, str(arguments.get("query", "")), top_k=binding.top_k
            )

        return _call


def _tool_server_handler(server_tool: BaseTool) -> ToolHandler:
    async def _call(arguments: dict[str, Any]) -> str:
        result = await server_tool.ainvoke(arguments)
        if isinstance(result, str):
            return result
        return json.dumps(result, ensure_ascii=False, default=str)

    return _call


def _query_params(arguments: dict[str, Any]) -> dict[str, Any]:
    params: dict[str, Any] = {}
    for key, value in arguments.items():
        if isinstance(value, (dict, list)):
            params[key] = json.dumps(value, ensure_ascii=False)
        elif isinstance(value, bool):
            params[key] = "true" if value else "false"
        else:
            params[key] = value
    return params
