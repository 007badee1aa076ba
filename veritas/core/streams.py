"""
Veritas Event Streams — queue-based producer/consumer channels.

A stream owns the producer tasks that feed it and any child streams it
merges. ``close()`` is synchronous: it cancels every producer and child
before returning, so no polling timer outlives its consumer.

Events:  DATA (payload is a RawPost or NarrativeInsight)
         ERROR (error is the exception raised by the producer)
"""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional

logger = logging.getLogger(__name__)


class StreamEventType(str, Enum):
    DATA = "data"
    ERROR = "error"


@dataclass
class StreamEvent:
    kind: StreamEventType
    source: str
    payload: Any = None
    error: Optional[BaseException] = None
    timestamp: float = field(default_factory=time.time)

    @property
    def is_error(self) -> bool:
        return self.kind == StreamEventType.ERROR


_END = object()


class EventStream:
    """Async-iterable stream of StreamEvents with explicit cancellation."""

    def __init__(self, source: str, on_close: Optional[Callable[[], None]] = None):
        self.source = source
        self.subscription_id = uuid.uuid4().hex
        self._queue: asyncio.Queue = asyncio.Queue()
        self._tasks: List[asyncio.Task] = []
        self._children: List["EventStream"] = []
        self._on_close = on_close
        self._closed = False
        self._ended = False

    # ── Producer side ────────────────────────────────────────────────────

    def attach(self, task: asyncio.Task) -> None:
        """Bind a producer task; it is cancelled when the stream closes."""
        if self._closed:
            task.cancel()
            return
        self._tasks.append(task)

    def adopt(self, child: "EventStream") -> None:
        """Bind a child stream; it is closed when this stream closes."""
        if self._closed:
            child.close()
            return
        self._children.append(child)

    def publish(self, payload: Any) -> bool:
        return self.publish_event(StreamEvent(StreamEventType.DATA, self.source, payload=payload))

    def publish_error(self, error: BaseException, source: Optional[str] = None) -> bool:
        return self.publish_event(
            StreamEvent(StreamEventType.ERROR, source or self.source, error=error)
        )

    def publish_event(self, event: StreamEvent) -> bool:
        if self._closed or self._ended:
            return False
        self._queue.put_nowait(event)
        return True

    def finish(self) -> None:
        """Producer is done; consumers drain what is queued, then stop."""
        if self._closed or self._ended:
            return
        self._ended = True
        self._queue.put_nowait(_END)

    # ── Consumer side ────────────────────────────────────────────────────

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def ended(self) -> bool:
        return self._ended

    @property
    def producers(self) -> List[asyncio.Task]:
        return list(self._tasks)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for task in self._tasks:
            task.cancel()
        for child in self._children:
            child.close()
        self._queue.put_nowait(_END)
        if self._on_close is not None:
            self._on_close()
        logger.debug(f"Stream {self.source}/{self.subscription_id} closed")

    async def aclose(self) -> None:
        """Close and wait until every producer task has finished."""
        self.close()
        tasks = self._tasks + [t for child in self._children for t in child.producers]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def next_event(self, timeout: Optional[float] = None) -> Optional[StreamEvent]:
        """Next event, or None once the stream is closed or ended."""
        if self._closed:
            return None
        item = await asyncio.wait_for(self._queue.get(), timeout)
        if item is _END or self._closed:
            return None
        return item

    def __aiter__(self):
        return self

    async def __anext__(self) -> StreamEvent:
        event = await self.next_event()
        if event is None:
            raise StopAsyncIteration
        return event

    async def __aenter__(self) -> "EventStream":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()
