"""Tool-calling orchestration loop with incremental event emission."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from langchain_core.messages import (
    AIMessage,
    AIMessageChunk,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)
from pydantic import BaseModel

from agent_chat.agent.events import (
    DoneEvent,
    ErrorEvent,
    TokenEvent,
    ToolCallEvent,
    ToolResultEvent,
)
from agent_chat.agent.registry import ToolRegistry
from agent_chat.config import AgentConfig

logger = logging.getLogger(__name__)

Emit = Callable[[BaseModel], Awaitable[None]]

_SYSTEM_PROMPT = """
You are a helpful assistant that answers the user's question using the tools provided.

Rules:
1) Only use the tools provided. You do not have access to external knowledge.
2) You may use more than one tool to answer, and call independent tools together.
3) Use `doc_search` only if no other tool gives you enough information.
4) Always use `doc_search` before telling the user you do not have enough information.
5) If no tool can answer the question, say you do not have enough information.
6) Be concise and provide accurate information.
""".strip()


class LoopState(str, Enum):
    AWAITING_MODEL = "awaiting_model"
    MODEL_EMITTING = "model_emitting"
    INVOKING_TOOLS = "invoking_tools"
    TERMINAL = "terminal"


@dataclass(slots=True)
class _PendingCall:
    id: str
    name: str
    args: dict[str, Any]
    error: str | None = None


class OrchestrationLoop:
    """Runs one chat request from the user's message to `done` or `error`.

    The model's streamed chunks are relayed as `token` events. When a model
    turn ends with tool calls, every call is announced with a `tool_call`
    event, the batch is invoked concurrently, each `tool_result` is emitted as
    soon as its invocation finishes, and the model is called again with the
    results appended. A turn without tool calls is the final answer.

    The loop keeps no state between runs; `llm` is any LangChain chat model
    supporting `bind_tools` and `astream`.
    """

    def __init__(
        self,
        *,
        llm: Any,
        tool_registry: ToolRegistry,
        config: AgentConfig | None = None,
        system_prompt: str = _SYSTEM_PROMPT,
    ) -> None:
        self.tool_registry = tool_registry
        self.config = config or AgentConfig()
        self.system_prompt = system_prompt
        self.state = LoopState.AWAITING_MODEL

        tools = self.tool_registry.openai_tools()
        self._model = llm.bind_tools(tools) if tools else llm

    async def run(self, message: str, emit: Emit) -> None:
        messages: list[BaseMessage] = [
            SystemMessage(content=self.system_prompt),
            HumanMessage(content=message),
        ]
        turns = 0

        while True:
            limit = self.config.max_iterations
            if limit is not None and turns >= limit:
                self._transition(LoopState.TERMINAL)
                await emit(ErrorEvent(message=f"No final answer after {turns} model turns"))
                return
            turns += 1

            self._transition(LoopState.AWAITING_MODEL)
            try:
                reply = await self._stream_model(messages, emit)
            except Exception as exc:
                logger.error(f"Model service failed: {exc}", exc_info=True)
                self._transition(LoopState.TERMINAL)
                await emit(ErrorEvent(message=f"Model service failed: {exc}"))
                return

            calls = _pending_calls(reply)
            if not calls:
                self._transition(LoopState.TERMINAL)
                await emit(DoneEvent())
                return

            self._transition(LoopState.INVOKING_TOOLS)
            messages.append(
                AIMessage(
                    content=reply.content,
                    tool_calls=[
                        {"name": call.name, "args": call.args, "id": call.id} for call in calls
                    ],
                )
            )
            results = await self._invoke_batch(calls, emit)
            messages.extend(
                ToolMessage(content=results[call.id], tool_call_id=call.id, name=call.name)
                for call in calls
            )

    async def _stream_model(self, messages: list[BaseMessage], emit: Emit) -> AIMessageChunk:
        aggregate: AIMessageChunk | None = None
        async for chunk in self._model.astream(messages):
            if self.state is not LoopState.MODEL_EMITTING:
                self._transition(LoopState.MODEL_EMITTING)
            text = _chunk_text(chunk)
            if text:
                await emit(TokenEvent(content=text))
            aggregate = chunk if aggregate is None else aggregate + chunk
        return aggregate if aggregate is not None else AIMessageChunk(content="")

    async def _invoke_batch(self, calls: list[_PendingCall], emit: Emit) -> dict[str, str]:
        for call in calls:
            await emit(ToolCallEvent(tool=call.name, args=call.args, id=call.id))

        tasks = [asyncio.create_task(self._invoke_one(call)) for call in calls]
        results: dict[str, str] = {}
        try:
            for finished in asyncio.as_completed(tasks):
                call, output = await finished
                results[call.id] = output
                await emit(ToolResultEvent(tool=call.name, content=output, id=call.id))
        finally:
            for task in tasks:
                task.cancel()
        return results

    async def _invoke_one(self, call: _PendingCall) -> tuple[_PendingCall, str]:
        if call.error is not None:
            return call, call.error
        return call, await self.tool_registry.invoke(call.name, call.args)

    def _transition(self, state: LoopState) -> None:
        logger.debug(f"Loop state {self.state.value} -> {state.value}")
        self.state = state


def _pending_calls(reply: AIMessageChunk) -> list[_PendingCall]:
    calls: list[_PendingCall] = []
    for tool_call in reply.tool_calls:
        calls.append(
            _PendingCall(
                id=tool_call.get("id") or _new_call_id(),
                name=tool_call["name"],
                args=dict(tool_call.get("args") or {}),
            )
        )
    for invalid in reply.invalid_tool_calls:
        name = invalid.get("name") or "unknown"
        calls.append(
            _PendingCall(
                id=invalid.get("id") or _new_call_id(),
                name=name,
                args={},
                error=f"Error: could not parse arguments for tool '{name}': "
                f"{invalid.get('error') or invalid.get('args')}",
            )
        )
    return calls


def _new_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:24]}"


def _chunk_text(chunk: Any) -> str:
    content = getattr(chunk, "content", "")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and item.get("type", "text") == "text" and "text" in item:
                parts.append(str(item["text"]))
            elif isinstance(item, str):
                parts.append(item)
        return "".join(parts)
    return ""
