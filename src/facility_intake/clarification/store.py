"""Per-run storage of clarification requests and their resolutions."""

from __future__ import annotations

from collections.abc import Callable, Iterable
import dataclasses
import logging
import time
from typing import Any, Protocol, runtime_checkable

from facility_intake.clarification.models import (
    ClarificationRequest,
    ClarificationStatus,
)
from facility_intake.core.models import facility_key
from facility_intake.exceptions import ClarificationNotFoundError, InvalidTransitionError

log = logging.getLogger(__name__)


@runtime_checkable
class LearningSink(Protocol):
    """Receives every resolution so future extractions can learn from it."""

    def record_resolution(self, request: ClarificationRequest) -> None: ...  # noqa: D102


class LoggingLearningSink:
    """Default sink: logs each resolution at INFO."""

    def record_resolution(self, request: ClarificationRequest) -> None:
        log.info(
            "Clarification %s resolved: %s %s = %r (was %r)",
            request.id,
            request.facility_name,
            request.field_path,
            request.resolved_value,
            request.extracted_value,
        )


@dataclasses.dataclass(frozen=True, slots=True)
class Resolution:
    clarification_id: str
    value: Any
    note: str | None = None


class ClarificationStore:
    """Holds one run's requests in creation order."""

    def __init__(
        self,
        run_id: str,
        *,
        learning: LearningSink | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.run_id = run_id
        self._learning: LearningSink = learning or LoggingLearningSink()
        self._clock = clock
        self._requests: dict[str, ClarificationRequest] = {}

    def add(self, requests: Iterable[ClarificationRequest]) -> list[ClarificationRequest]:
        added = []
        for request in requests:
            if request.id in self._requests:
                raise ValueError(f"Duplicate clarification id {request.id}")
            self._requests[request.id] = request
            added.append(request)
        return added

    def get(self, clarification_id: str) -> ClarificationRequest:
        try:
            return self._requests[clarification_id]
        except KeyError:
            raise ClarificationNotFoundError(
                f"Unknown clarification {clarification_id} for run {self.run_id}"
            ) from None

    def all(self) -> list[ClarificationRequest]:
        return list(self._requests.values())

    def pending(self) -> list[ClarificationRequest]:
        """Pending requests, highest priority first."""
        pending = [r for r in self._requests.values() if r.is_pending]
        return sorted(pending, key=lambda r: -r.priority)

    def resolve(
        self,
        clarification_id: str,
        value: Any,
        *,
        resolved_by: str | None = None,
        note: str | None = None,
    ) -> ClarificationRequest:
        """Resolve one request.

        Raises:
            ClarificationNotFoundError: If the id is unknown.
            InvalidTransitionError: If the request is no longer pending.
        """
        resolved = self.get(clarification_id).resolve(
            value, resolved_by=resolved_by, note=note, at=self._clock()
        )
        self._requests[clarification_id] = resolved
        self._learning.record_resolution(resolved)
        return resolved

    def resolve_many(
        self, resolutions: Iterable[Resolution], *, resolved_by: str | None = None
    ) -> list[ClarificationRequest]:
        """Resolve several requests; nothing is applied unless all are valid."""
        batch = list(resolutions)
        seen: set[str] = set()
        for r in batch:
            request = self.get(r.clarification_id)
            if not request.is_pending or r.clarification_id in seen:
                raise InvalidTransitionError(
                    f"Clarification {r.clarification_id} cannot be resolved twice"
                )
            seen.add(r.clarification_id)
        return [
            self.resolve(r.clarification_id, r.value, resolved_by=resolved_by, note=r.note)
            for r in batch
        ]

    def supersede(self, facility_keys: Iterable[str]) -> list[ClarificationRequest]:
        """Supersede pending requests for the given facility keys."""
        keys = set(facility_keys)
        superseded = []
        for request_id, request in list(self._requests.items()):
            if request.is_pending and facility_key(request.facility_name) in keys:
                updated = request.supersede(at=self._clock())
                self._requests[request_id] = updated
                superseded.append(updated)
        if superseded:
            log.info("Run %s: superseded %d clarification(s)", self.run_id, len(superseded))
        return superseded

    def blocking(self, threshold: int) -> list[ClarificationRequest]:
        return [r for r in self.pending() if r.priority >= threshold]

    def counts(self, high_priority_threshold: int) -> dict[str, int]:
        by_status = {status: 0 for status in ClarificationStatus}
        for request in self._requests.values():
            by_status[request.status] += 1
        return {
            "total": len(self._requests),
            "pending": by_status[ClarificationStatus.PENDING],
            "resolved": by_status[ClarificationStatus.RESOLVED],
            "superseded": by_status[ClarificationStatus.SUPERSEDED],
            "high_priority": len(self.blocking(high_priority_threshold)),
        }
