"""Timing scopes and counters for the router and the chunk extractor.

A context is live only when ``INTAKE_TELEMETRY=1`` (or ``DEBUG=1``) is set and
at least one reporter is given; otherwise every call lands on a shared no-op.
Live scopes nest per task: a chunk scope opened inside a sheet scope reports
as ``extraction.sheet.extraction.chunk``.
"""

from collections import deque
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
import logging
import os
import time
from types import TracebackType
from typing import Any, Protocol, Self, runtime_checkable

log = logging.getLogger(__name__)

_ENABLE_FLAGS = ("INTAKE_TELEMETRY", "DEBUG")

_active_scopes: ContextVar[tuple[str, ...]] = ContextVar("intake_active_scopes", default=())


def telemetry_enabled() -> bool:
    return any(os.getenv(flag) == "1" for flag in _ENABLE_FLAGS)


def _path(name: str) -> str:
    return ".".join((*_active_scopes.get(), name))


@runtime_checkable
class TelemetryReporter(Protocol):
    """Receives finished scope timings and recorded metrics."""

    def record_timing(self, scope: str, duration: float, **metadata: Any) -> None: ...  # noqa: D102
    def record_metric(self, scope: str, value: Any, **metadata: Any) -> None: ...  # noqa: D102


@dataclass(frozen=True, slots=True)
class _NoOpTelemetryContext:
    def __call__(self, name: str, **metadata: Any) -> Self:  # noqa: ARG002
        return self

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        return None

    def metric(self, name: str, value: Any, **metadata: Any) -> None:
        pass

    def count(self, name: str, increment: int = 1, **metadata: Any) -> None:
        pass


class _LiveTelemetryContext:
    __slots__ = ("reporters",)

    def __init__(self, *reporters: TelemetryReporter):
        self.reporters = reporters

    def __call__(self, name: str, **metadata: Any) -> AbstractContextManager[Self]:
        if not isinstance(name, str) or not name:
            raise ValueError("Scope name must be a non-empty string")
        return self._timed(name, metadata)

    @contextmanager
    def _timed(self, name: str, metadata: dict[str, Any]) -> Iterator[Self]:
        parents = _active_scopes.get()
        token = _active_scopes.set((*parents, name))
        started = time.perf_counter()
        try:
            yield self
        finally:
            elapsed = time.perf_counter() - started
            _active_scopes.reset(token)
            self._fan_out(
                "record_timing",
                ".".join((*parents, name)),
                elapsed,
                {"depth": len(parents), **metadata},
            )

    def _fan_out(
        self, method: str, scope: str, value: Any, metadata: dict[str, Any]
    ) -> None:
        # Reporter failures never propagate.
        for reporter in self.reporters:
            try:
                getattr(reporter, method)(scope, value, **metadata)
            except Exception:
                log.exception(
                    "Telemetry reporter %s failed on %s", type(reporter).__name__, scope
                )

    def metric(self, name: str, value: Any, **metadata: Any) -> None:
        """Record ``value`` under the current scope path."""
        self._fan_out("record_metric", _path(name), value, metadata)

    def count(self, name: str, increment: int = 1, **metadata: Any) -> None:
        self.metric(name, increment, metric_type="counter", **metadata)


_NO_OP = _NoOpTelemetryContext()

type TelemetryContextProtocol = _LiveTelemetryContext | _NoOpTelemetryContext


def TelemetryContext(*reporters: TelemetryReporter) -> TelemetryContextProtocol:  # noqa: N802
    """Return a live context, or the shared no-op when telemetry is off."""
    if reporters and telemetry_enabled():
        return _LiveTelemetryContext(*reporters)
    return _NO_OP


class InMemoryReporter:
    """Keeps the most recent entries per scope for inspection."""

    def __init__(self, max_entries_per_scope: int = 1000):
        self.max_entries = max_entries_per_scope
        self.timings: dict[str, deque[tuple[float, dict[str, Any]]]] = {}
        self.metrics: dict[str, deque[tuple[Any, dict[str, Any]]]] = {}

    def _bucket(self, table: dict[str, deque], scope: str) -> deque:
        if scope not in table:
            table[scope] = deque(maxlen=self.max_entries)
        return table[scope]

    def record_timing(self, scope: str, duration: float, **metadata: Any) -> None:
        self._bucket(self.timings, scope).append((duration, metadata))

    def record_metric(self, scope: str, value: Any, **metadata: Any) -> None:
        self._bucket(self.metrics, scope).append((value, metadata))

    def total(self, scope: str) -> float:
        """Sum of the numeric values recorded for ``scope``."""
        return sum(v for v, _ in self.metrics.get(scope, ()) if isinstance(v, int | float))
