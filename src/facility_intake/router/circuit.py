"""Circuit breaker for providers that keep failing."""

from __future__ import annotations

from collections import deque
from enum import Enum
import logging
import time

from facility_intake.constants import (
    CIRCUIT_FAILURE_THRESHOLD,
    CIRCUIT_FAILURE_WINDOW,
    CIRCUIT_OPEN_SECONDS,
)
from facility_intake.router.limits import Clock

log = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Opens after repeated failures, then admits a single trial call.

    ``failure_threshold`` failures inside ``window_seconds`` open the circuit
    for ``open_seconds``. The first call after that runs half-open; its
    success closes the circuit and its failure reopens it. A half-open call
    that settles neither way frees its slot for the next caller.
    """

    def __init__(
        self,
        name: str,
        *,
        failure_threshold: int = CIRCUIT_FAILURE_THRESHOLD,
        window_seconds: float = CIRCUIT_FAILURE_WINDOW,
        open_seconds: float = CIRCUIT_OPEN_SECONDS,
        clock: Clock = time.monotonic,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.window_seconds = window_seconds
        self.open_seconds = open_seconds
        self._clock = clock
        self._failures: deque[float] = deque()
        self._state = CircuitState.CLOSED
        self._opened_at = 0.0
        self._probe_in_flight = False

    @property
    def state(self) -> CircuitState:
        return self._state

    def allow(self) -> bool:
        """Whether a call may be attempted now."""
        if self._state is CircuitState.CLOSED:
            return True
        if self._state is CircuitState.OPEN:
            if self._clock() - self._opened_at < self.open_seconds:
                return False
            self._state = CircuitState.HALF_OPEN
            self._probe_in_flight = False
        if self._probe_in_flight:
            return False
        self._probe_in_flight = True
        return True

    def record_success(self) -> None:
        if self._state is not CircuitState.CLOSED:
            log.info("Circuit for %s closed", self.name)
        self._state = CircuitState.CLOSED
        self._failures.clear()
        self._probe_in_flight = False

    def release_half_open_slot(self) -> None:
        """Free the half-open slot without deciding the circuit state."""
        if self._state is CircuitState.HALF_OPEN:
            self._probe_in_flight = False

    def record_failure(self) -> None:
        now = self._clock()
        if self._state is CircuitState.HALF_OPEN:
            self._open(now)
            return
        self._failures.append(now)
        while self._failures and now - self._failures[0] > self.window_seconds:
            self._failures.popleft()
        if len(self._failures) >= self.failure_threshold:
            self._open(now)

    def _open(self, now: float) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = now
        self._probe_in_flight = False
        self._failures.clear()
        log.warning(
            "Circuit for %s opened for %.0fs after repeated failures",
            self.name,
            self.open_seconds,
        )
