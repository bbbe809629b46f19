"""Decoupled live side channel for narration and tool-activity telemetry.

Publishing never blocks and never raises. Handlers run on a consumer task;
a failing handler is logged and skipped.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from dealflow.events.models import DealEvent, utc_now_iso

logger = logging.getLogger(__name__)


class ChannelMessageKind(str, Enum):
    EVENT = "event"
    TOOL_ACTIVITY = "tool_activity"


class ChannelMessage(BaseModel):
    kind: ChannelMessageKind
    deal_id: str
    ts: str = Field(default_factory=utc_now_iso)
    data: Dict[str, Any] = Field(default_factory=dict)


ChannelHandler = Callable[[ChannelMessage], Union[None, Awaitable[None]]]


class EventChannel:
    """Bounded in-process queue fanned out to subscribers."""

    def __init__(self, max_queue: int = 1000):
        self._queue: "asyncio.Queue[ChannelMessage]" = asyncio.Queue(maxsize=max_queue)
        self._handlers: List[ChannelHandler] = []
        self._consumer: Optional[asyncio.Task] = None
        self.dropped = 0

    def subscribe(self, handler: ChannelHandler) -> None:
        self._handlers.append(handler)

    def publish(self, message: ChannelMessage) -> None:
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.debug("Channel queue full, dropping message", extra={"component": "EventChannel"})

    def publish_event(self, event: DealEvent) -> None:
        """EventStore subscriber hook."""
        self.publish(ChannelMessage(
            kind=ChannelMessageKind.EVENT,
            deal_id=event.deal_id,
            data=event.model_dump(mode="json"),
        ))

    def publish_tool_activity(self, deal_id: str, task_id: str, tool: str, detail: str = "") -> None:
        self.publish(ChannelMessage(
            kind=ChannelMessageKind.TOOL_ACTIVITY,
            deal_id=deal_id,
            data={"task_id": task_id, "tool": tool, "detail": detail},
        ))

    def start(self) -> None:
        if self._consumer is None or self._consumer.done():
            self._consumer = asyncio.get_running_loop().create_task(self._consume())

    async def stop(self, drain_timeout: float = 1.0) -> None:
        """Give handlers a bounded chance to drain, then cancel the consumer."""
        if self._consumer is None:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=drain_timeout)
        except asyncio.TimeoutError:
            logger.debug("Channel drain timed out", extra={"component": "EventChannel"})
        self._consumer.cancel()
        try:
            await self._consumer
        except asyncio.CancelledError:
            pass
        self._consumer = None

    async def _consume(self) -> None:
        while True:
            message = await self._queue.get()
            try:
                await self._dispatch(message)
            finally:
                self._queue.task_done()

    async def _dispatch(self, message: ChannelMessage) -> None:
        for handler in list(self._handlers):
            try:
                result = handler(message)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.warning(
                    "Channel handler failed",
                    extra={"component": "EventChannel", "data": {"error": str(exc), "kind": message.kind.value}},
                )
