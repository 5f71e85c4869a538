"""Typed progress events and their server-sent-event encoding."""

from __future__ import annotations

from collections.abc import Callable, Mapping
import dataclasses
from enum import Enum
import json
import time
from typing import Any

from facility_intake.core.types import _freeze_mapping


class EventType(str, Enum):
    SESSION_STARTED = "session_started"
    DOCUMENT_STARTED = "document_started"
    PASS_STARTED = "pass_started"
    PASS_PROGRESS = "pass_progress"
    PASS_COMPLETED = "pass_completed"
    DOCUMENT_COMPLETED = "document_completed"
    FACILITY_DETECTED = "facility_detected"
    PERIOD_EXTRACTED = "period_extracted"
    CONFLICT_DETECTED = "conflict_detected"
    CLARIFICATION_NEEDED = "clarification_needed"
    CLARIFICATION_RESOLVED = "clarification_resolved"
    SESSION_COMPLETED = "session_completed"
    SESSION_FAILED = "session_failed"
    ERROR = "error"
    HEARTBEAT = "heartbeat"


TERMINAL_EVENTS = frozenset({EventType.SESSION_COMPLETED, EventType.SESSION_FAILED})


@dataclasses.dataclass(frozen=True, slots=True)
class StreamEvent:
    """One event on a run's stream. ``sequence`` is assigned by the channel."""

    type: EventType
    data: Mapping[str, Any] = dataclasses.field(default_factory=dict)
    timestamp: float = dataclasses.field(default_factory=time.time)
    sequence: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "data", _freeze_mapping(self.data))

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "sequence": self.sequence,
            "timestamp": self.timestamp,
            "data": dict(self.data or {}),
        }


def format_sse(event: StreamEvent) -> str:
    """Encode ``event`` as an SSE frame: ``event: <type>\\ndata: <json>\\n\\n``."""
    payload = json.dumps(event.to_dict(), default=_json_default, separators=(",", ":"))
    return f"event: {event.type.value}\ndata: {payload}\n\n"


def _json_default(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Mapping):
        return dict(value)
    if isinstance(value, tuple | set | frozenset):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


Emit = Callable[[EventType, Mapping[str, Any]], None]


def discard(event_type: EventType, data: Mapping[str, Any]) -> None:  # noqa: ARG001
    """Emitter that drops everything."""
