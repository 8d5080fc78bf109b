"""Bounded channel between an orchestration run and the NDJSON response."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import cast

from pydantic import BaseModel

from agent_chat.agent.events import TERMINAL_EVENT_TYPES, ErrorEvent, encode_event

logger = logging.getLogger(__name__)

Producer = Callable[[Callable[[BaseModel], Awaitable[None]]], Awaitable[None]]

_CLOSED = object()


async def stream_events(producer: Producer, *, max_buffered: int = 64) -> AsyncIterator[str]:
    """Run `producer` in a task and yield its events as NDJSON lines.

    The producer receives an async `emit` callable that blocks while the
    channel holds `max_buffered` undelivered events. The stream stops after
    the first `done` or `error` event. An exception escaping the producer is
    reported as a final `error` event. Closing or cancelling the returned
    iterator (client disconnect) cancels the producer and anything it awaits.
    """

    channel: asyncio.Queue[object] = asyncio.Queue(maxsize=max_buffered)

    async def _produce() -> None:
        try:
            await producer(channel.put)
        except Exception as exc:
            logger.error(f"Chat run failed: {exc}", exc_info=True)
            await channel.put(ErrorEvent(message=str(exc) or type(exc).__name__))
        await channel.put(_CLOSED)

    task = asyncio.create_task(_produce())
    try:
        while True:
            item = await channel.get()
            if item is _CLOSED:
                return
            yield encode_event(cast(BaseModel, item))
            if getattr(item, "type", None) in TERMINAL_EVENT_TYPES:
                return
    finally:
        if not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
