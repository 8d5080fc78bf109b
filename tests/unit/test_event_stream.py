import asyncio
import json

from pydantic import TypeAdapter

from agent_chat.agent.events import (
    DoneEvent,
    ErrorEvent,
    StreamEvent,
    TokenEvent,
    ToolCallEvent,
    encode_event,
)
from agent_chat.agent.stream import stream_events


async def _collect(producer, **kwargs) -> list[dict]:
    return [json.loads(line) async for line in stream_events(producer, **kwargs)]


def test_events_are_encoded_as_ndjson_lines() -> None:
    line = encode_event(ToolCallEvent(tool="getWeather", args={"city": "Oslo"}, id="call_1"))

    assert line.endswith("\n")
    assert json.loads(line) == {
        "type": "tool_call",
        "tool": "getWeather",
        "args": {"city": "Oslo"},
        "id": "call_1",
    }


def test_nothing_is_delivered_after_done() -> None:
    async def producer(emit) -> None:
        await emit(TokenEvent(content="hi"))
        await emit(DoneEvent())
        await emit(TokenEvent(content="late"))

    events = asyncio.run(_collect(producer))

    assert events == [{"type": "token", "content": "hi"}, {"type": "done"}]


def test_producer_exception_becomes_error_event() -> None:
    async def producer(emit) -> None:
        await emit(TokenEvent(content="partial"))
        raise ConnectionError("tool server unreachable")

    events = asyncio.run(_collect(producer))

    assert events[0] == {"type": "token", "content": "partial"}
    assert events[-1] == {"type": "error", "message": "tool server unreachable"}


def test_stream_ends_when_producer_returns_without_terminal_event() -> None:
    async def producer(emit) -> None:
        await emit(TokenEvent(content="only"))

    assert asyncio.run(_collect(producer)) == [{"type": "token", "content": "only"}]


def test_bounded_channel_suspends_the_producer() -> None:
    emitted: list[int] = []

    async def producer(emit) -> None:
        for i in range(10):
            await emit(TokenEvent(content=str(i)))
            emitted.append(i)
        await emit(DoneEvent())

    async def scenario() -> int:
        stream = stream_events(producer, max_buffered=2)
        await stream.__anext__()
        await asyncio.sleep(0.01)
        buffered = len(emitted)
        await stream.aclose()
        return buffered

    assert asyncio.run(scenario()) < 10


def test_closing_the_stream_cancels_the_producer() -> None:
    state = {"cancelled": False}

    async def producer(emit) -> None:
        await emit(TokenEvent(content="start"))
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            state["cancelled"] = True
            raise
        await emit(ErrorEvent(message="unreachable"))

    async def scenario() -> None:
        stream = stream_events(producer)
        first = await stream.__anext__()
        assert json.loads(first)["content"] == "start"
        await asyncio.sleep(0)
        await stream.aclose()

    asyncio.run(scenario())

    assert state["cancelled"] is True


def test_wire_lines_parse_back_into_typed_events() -> None:
    adapter = TypeAdapter(StreamEvent)

    event = adapter.validate_json(encode_event(ErrorEvent(message="boom")))

    assert isinstance(event, ErrorEvent)
    assert event.message == "boom"
