"""Progress events streamed from a run to its client."""

from .channel import EventChannel
from .events import TERMINAL_EVENTS, Emit, EventType, StreamEvent, discard, format_sse

__all__ = [
    "TERMINAL_EVENTS",
    "Emit",
    "EventChannel",
    "EventType",
    "StreamEvent",
    "discard",
    "format_sse",
]
