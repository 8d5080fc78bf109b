from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any

import pytest
from langchain_core.messages import AIMessageChunk, BaseMessage
from langchain_core.messages.tool import tool_call_chunk

from agent_chat.ingest.embedder import HashingEmbedder
from agent_chat.store import SqliteStore


class ScriptedChatModel:
    """Chat model double that replays one scripted turn per `astream` call.

    A turn is a list of `AIMessageChunk`s or an exception to raise.
    """

    def __init__(self, turns: list[Any]) -> None:
        self.turns = list(turns)
        self.bound_tools: list[dict[str, Any]] | None = None
        self.calls: list[list[BaseMessage]] = []

    def bind_tools(self, tools: list[dict[str, Any]], **_: Any) -> "ScriptedChatModel":
        self.bound_tools = tools
        return self

    async def astream(self, messages: list[BaseMessage]) -> AsyncIterator[AIMessageChunk]:
        self.calls.append(list(messages))
        if not self.turns:
            raise AssertionError("model called more times than scripted")
        turn = self.turns.pop(0)
        if isinstance(turn, Exception):
            raise turn
        for chunk in turn:
            yield chunk


def text_turn(*parts: str) -> list[AIMessageChunk]:
    return [AIMessageChunk(content=part) for part in parts]


def tool_turn(*calls: tuple[str, dict[str, Any], str]) -> list[AIMessageChunk]:
    return [
        AIMessageChunk(
            content="",
            tool_call_chunks=[
                tool_call_chunk(name=name, args=json.dumps(args), id=call_id, index=index)
                for index, (name, args, call_id) in enumerate(calls)
            ],
        )
    ]


@pytest.fixture
def store(tmp_path) -> SqliteStore:
    return SqliteStore(tmp_path / "agent_chat.db")


@pytest.fixture
def embedder() -> HashingEmbedder:
    return HashingEmbedder(dimension=128)


@pytest.fixture
def agent_id(store: SqliteStore) -> str:
    return store.create_agent(user_id="user-1", name="support").id
