"""Clarification requests and their lifecycle.

A request starts ``pending`` and ends either ``resolved`` (a reviewer
supplied a value) or ``superseded`` (a later run re-extracted the facility).
Both end states are terminal.
"""

from __future__ import annotations

from collections.abc import Mapping
import dataclasses
from enum import Enum
import time
from typing import Any

from facility_intake.core.models import facility_key
from facility_intake.core.types import _freeze_mapping, _require
from facility_intake.exceptions import InvalidTransitionError


class ClarificationType(str, Enum):
    LOW_CONFIDENCE = "low_confidence"
    OUT_OF_RANGE = "out_of_range"
    CONFLICT = "conflict"
    MISSING = "missing"


class ClarificationStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    SUPERSEDED = "superseded"


@dataclasses.dataclass(frozen=True, slots=True)
class Suggestion:
    """A candidate value and where it came from."""

    value: Any
    provenance: str
    confidence: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "value": self.value,
            "provenance": self.provenance,
            "confidence": self.confidence,
        }


@dataclasses.dataclass(frozen=True, slots=True)
class ClarificationRequest:
    """One uncertainty a reviewer can resolve without the source document."""

    id: str
    run_id: str
    facility_name: str
    document_name: str
    field_path: str
    type: ClarificationType
    priority: int
    reason: str
    extracted_value: Any = None
    extracted_confidence: float | None = None
    suggestions: tuple[Suggestion, ...] = ()
    benchmark: Mapping[str, float] | None = None
    status: ClarificationStatus = ClarificationStatus.PENDING
    created_at: float = dataclasses.field(default_factory=time.time)
    resolved_value: Any = None
    resolved_by: str | None = None
    resolution_note: str | None = None
    resolved_at: float | None = None

    def __post_init__(self) -> None:
        _require(
            condition=1 <= self.priority <= 10,
            message="must be within [1, 10]",
            field_name="priority",
        )
        object.__setattr__(self, "benchmark", _freeze_mapping(self.benchmark))

    @property
    def is_pending(self) -> bool:
        return self.status is ClarificationStatus.PENDING

    @property
    def dedup_key(self) -> tuple[str, str, ClarificationType]:
        return (facility_key(self.facility_name), self.field_path, self.type)

    def resolve(
        self,
        value: Any,
        *,
        resolved_by: str | None = None,
        note: str | None = None,
        at: float | None = None,
    ) -> ClarificationRequest:
        """Return the resolved copy of this request.

        Raises:
            InvalidTransitionError: If the request is not pending.
        """
        self._require_pending("resolve")
        return dataclasses.replace(
            self,
            status=ClarificationStatus.RESOLVED,
            resolved_value=value,
            resolved_by=resolved_by,
            resolution_note=note,
            resolved_at=at if at is not None else time.time(),
        )

    def supersede(self, *, at: float | None = None) -> ClarificationRequest:
        self._require_pending("supersede")
        return dataclasses.replace(
            self,
            status=ClarificationStatus.SUPERSEDED,
            resolved_at=at if at is not None else time.time(),
        )

    def _require_pending(self, action: str) -> None:
        if not self.is_pending:
            raise InvalidTransitionError(
                f"Cannot {action} clarification {self.id}: it is {self.status.value}"
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "run_id": self.run_id,
            "facility_name": self.facility_name,
            "document_name": self.document_name,
            "field_path": self.field_path,
            "type": self.type.value,
            "priority": self.priority,
            "reason": self.reason,
            "extracted_value": self.extracted_value,
            "extracted_confidence": self.extracted_confidence,
            "suggestions": [s.to_dict() for s in self.suggestions],
            "benchmark": dict(self.benchmark) if self.benchmark else None,
            "status": self.status.value,
            "created_at": self.created_at,
            "resolved_value": self.resolved_value,
            "resolved_by": self.resolved_by,
            "resolution_note": self.resolution_note,
            "resolved_at": self.resolved_at,
        }
