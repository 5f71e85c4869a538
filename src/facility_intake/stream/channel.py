"""Bounded one-way event channel between a run and its transport.

The producing run never blocks: when the queue is full the oldest
undelivered event is dropped. Consumers may come and go; each queued event
is taken at most once, in emission order. A short history is kept so a late
subscriber can be replayed what earlier consumers already took.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import AsyncIterator, Mapping
import logging
from typing import Any

from facility_intake.constants import EVENT_HISTORY_SIZE, EVENT_QUEUE_SIZE
from facility_intake.stream.events import EventType, StreamEvent

log = logging.getLogger(__name__)

_CLOSED = object()


class EventChannel:
    """Bounded queue of :class:`StreamEvent` with a close marker."""

    def __init__(
        self,
        maxsize: int = EVENT_QUEUE_SIZE,
        *,
        history_size: int = EVENT_HISTORY_SIZE,
    ) -> None:
        if maxsize < 1:
            raise ValueError("maxsize must be at least 1")
        # One extra slot is reserved for the close marker.
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize + 1)
        self._maxsize = maxsize
        self._history: deque[StreamEvent] = deque(maxlen=history_size)
        self._sequence = 0
        self._last_taken = 0
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def history(self) -> tuple[StreamEvent, ...]:
        return tuple(self._history)

    def taken(self) -> tuple[StreamEvent, ...]:
        """Recent history up to the last event a consumer took."""
        return tuple(e for e in self._history if e.sequence <= self._last_taken)

    def emit(self, event_type: EventType, data: Mapping[str, Any] | None = None) -> None:
        """Enqueue an event; matches the ``Emit`` callable shape."""
        self.publish(StreamEvent(type=event_type, data=dict(data or {})))

    def publish(self, event: StreamEvent) -> StreamEvent | None:
        """Enqueue ``event`` without blocking.

        Returns the sequenced event, or None when the channel is closed.
        """
        if self._closed:
            log.debug("Dropping %s on closed channel", event.type.value)
            return None
        self._sequence += 1
        sequenced = StreamEvent(
            type=event.type,
            data=dict(event.data or {}),
            timestamp=event.timestamp,
            sequence=self._sequence,
        )
        if self._queue.qsize() >= self._maxsize:
            self._queue.get_nowait()
            self.dropped += 1
            log.warning("Event queue full; dropped oldest event")
        self._queue.put_nowait(sequenced)
        self._history.append(sequenced)
        return sequenced

    def close(self) -> None:
        """Mark the end of the stream. Later events are dropped."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    async def next(self, timeout: float | None = None) -> StreamEvent | None:
        """Wait for the next event.

        Returns None when the channel is closed and drained.

        Raises:
            TimeoutError: If ``timeout`` elapses with nothing to deliver.
        """
        if timeout is None:
            item = await self._queue.get()
        else:
            item = await asyncio.wait_for(self._queue.get(), timeout)
        if item is _CLOSED:
            # Leave the marker for any other consumer.
            self._queue.put_nowait(_CLOSED)
            return None
        self._last_taken = item.sequence
        return item

    async def __aiter__(self) -> AsyncIterator[StreamEvent]:
        while True:
            event = await self.next()
            if event is None:
                return
            yield event
