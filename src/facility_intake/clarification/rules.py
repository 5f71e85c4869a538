"""Rules that turn merged facilities into clarification requests."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
import logging
from typing import Any
import uuid

from facility_intake import constants
from facility_intake.clarification.models import (
    ClarificationRequest,
    ClarificationType,
    Suggestion,
)
from facility_intake.config.types import FrozenConfig
from facility_intake.core.models import (
    Facility,
    FieldConflict,
    LineItem,
    LineItemCategory,
    SheetType,
    facility_key,
)
from facility_intake.extraction.merge import line_item_path
from facility_intake.extraction.orchestrator import ScopedSuggestion

log = logging.getLogger(__name__)

AI_PROVENANCE = "AI suggestion"
AI_SUGGESTION_CONFIDENCE = 0.6

_PAYER_REVENUE = frozenset(
    {
        "medicare_revenue",
        "medicaid_revenue",
        "private_revenue",
        "managed_care_revenue",
        "hospice_revenue",
    }
)

IdFactory = Callable[[], str]


def _new_id() -> str:
    return uuid.uuid4().hex


class ClarificationRules:
    """Evaluates facilities against the review rules.

    Thresholds come from the frozen configuration; nothing here is stateful.
    """

    def __init__(self, config: FrozenConfig, *, id_factory: IdFactory = _new_id) -> None:
        self._config = config
        self._new_id = id_factory

    def evaluate(
        self,
        run_id: str,
        facilities: Sequence[Facility],
        suggestions: Iterable[ScopedSuggestion] = (),
    ) -> list[ClarificationRequest]:
        """Requests for ``facilities``, highest priority first.

        Requests are unique per (facility, field path, type).
        """
        requests: list[ClarificationRequest] = []
        for facility in facilities:
            requests.extend(self.low_confidence(run_id, facility))
            requests.extend(self.out_of_range(run_id, facility))
            requests.extend(self.missing(run_id, facility))
            requests.extend(self.conflicts(run_id, facility))
        requests.extend(self.from_suggestions(run_id, facilities, suggestions))

        unique: dict[tuple, ClarificationRequest] = {}
        for request in requests:
            unique.setdefault(request.dedup_key, request)
        ordered = sorted(unique.values(), key=lambda r: -r.priority)
        log.debug("Run %s: %d clarification(s)", run_id, len(ordered))
        return ordered

    # --- Individual rules ---

    def low_confidence(self, run_id: str, facility: Facility) -> list[ClarificationRequest]:
        threshold = self._config.low_confidence_threshold
        out: list[ClarificationRequest] = []

        if facility.line_items and facility.confidence < threshold:
            revenue = _total_revenue(facility)
            out.append(
                self._request(
                    run_id,
                    facility,
                    field_path="financial.overall",
                    kind=ClarificationType.LOW_CONFIDENCE,
                    priority=constants.PRIORITY_LOW_CONFIDENCE,
                    reason=(
                        f"Overall financial data for {facility.name} was extracted "
                        f"with confidence {facility.confidence:.2f}"
                    ),
                    value=_amount(revenue) if revenue else None,
                    confidence=facility.confidence,
                )
            )

        for item in facility.line_items:
            if item.confidence < threshold:
                out.append(
                    self._request(
                        run_id,
                        facility,
                        field_path=line_item_path(item),
                        kind=ClarificationType.LOW_CONFIDENCE,
                        priority=constants.PRIORITY_LOW_CONFIDENCE,
                        reason=f"'{item.label}' was extracted with confidence {item.confidence:.2f}",
                        value=_amount(item),
                        confidence=item.confidence,
                    )
                )

        rates = facility.payer_rates
        if rates is not None:
            for field, value in rates.populated().items():
                confidence = rates.confidence_for(field)
                if confidence is not None and confidence < threshold:
                    out.append(
                        self._request(
                            run_id,
                            facility,
                            field_path=f"payer_rates.{field}",
                            kind=ClarificationType.LOW_CONFIDENCE,
                            priority=constants.PRIORITY_LOW_CONFIDENCE,
                            reason=(
                                f"{_label(field)} rate {value:,.2f} was extracted with "
                                f"confidence {confidence:.2f}"
                            ),
                            value=value,
                            confidence=confidence,
                        )
                    )

        census = facility.census
        if census is not None and census.confidence is not None and census.confidence < threshold:
            out.append(
                self._request(
                    run_id,
                    facility,
                    field_path="census",
                    kind=ClarificationType.LOW_CONFIDENCE,
                    priority=constants.PRIORITY_LOW_CONFIDENCE,
                    reason=f"Census data was extracted with confidence {census.confidence:.2f}",
                    confidence=census.confidence,
                )
            )
        return out

    def out_of_range(self, run_id: str, facility: Facility) -> list[ClarificationRequest]:
        census = facility.census
        if census is None:
            return []
        low, high = constants.OCCUPANCY_VALID_RANGE
        bench_low, bench_high, median = constants.OCCUPANCY_BENCHMARK
        out: list[ClarificationRequest] = []
        for position, occupancy in enumerate(census.occupancy):
            if occupancy is None or occupancy <= 0 or low <= occupancy <= high:
                continue
            period = census.periods[position] if position < len(census.periods) else str(position)
            out.append(
                self._request(
                    run_id,
                    facility,
                    field_path=f"census.occupancy[{period}]",
                    kind=ClarificationType.OUT_OF_RANGE,
                    priority=constants.PRIORITY_OUT_OF_RANGE,
                    reason=(
                        f"Occupancy {occupancy:.1%} for {period} is outside the expected "
                        f"{low:.0%}-{high:.0%} range"
                    ),
                    value=occupancy,
                    confidence=census.confidence,
                    benchmark={"min": bench_low, "max": bench_high, "median": median},
                )
            )
        return out

    def missing(self, run_id: str, facility: Facility) -> list[ClarificationRequest]:
        """Fields expected for the facility's sheet types that merge left empty."""
        kinds = facility.sheet_types
        out: list[ClarificationRequest] = []

        if SheetType.CENSUS in kinds and not _has_occupancy(facility):
            out.append(
                self._missing(
                    run_id,
                    facility,
                    "census.occupancy",
                    "A census sheet was found but no occupancy could be extracted or derived",
                )
            )
        if SheetType.RATES in kinds and (
            facility.payer_rates is None or not facility.payer_rates.populated()
        ):
            out.append(
                self._missing(
                    run_id,
                    facility,
                    "payer_rates",
                    "A rate sheet was found but no payer rates were extracted",
                )
            )
        if SheetType.PL in kinds:
            revenue = _total_revenue(facility)
            if revenue is None:
                out.append(
                    self._missing(
                        run_id,
                        facility,
                        "revenue.total",
                        "A P&L sheet was found but no total revenue was extracted",
                    )
                )
            else:
                total = _amount(revenue)
                by_payer = sum(
                    _amount(i) or 0.0
                    for i in facility.line_items
                    if i.subcategory in _PAYER_REVENUE
                )
                if total and total > 0 and by_payer < total * 0.5:
                    out.append(
                        self._missing(
                            run_id,
                            facility,
                            "revenue.by_payer",
                            "Less than half of total revenue is broken down by payer",
                            value=by_payer,
                        )
                    )
        return out

    def conflicts(self, run_id: str, facility: Facility) -> list[ClarificationRequest]:
        out: list[ClarificationRequest] = []
        for conflict in facility.conflicts:
            if not self._beyond_tolerance(conflict):
                continue
            kept = conflict.kept
            sources = ", ".join(o.source for o in conflict.observations)
            out.append(
                self._request(
                    run_id,
                    facility,
                    field_path=conflict.field_path,
                    kind=ClarificationType.CONFLICT,
                    priority=constants.PRIORITY_CONFLICT,
                    reason=f"Sources disagree on {conflict.field_path}: {sources}",
                    value=kept.value,
                    confidence=kept.confidence,
                    suggestions=tuple(
                        Suggestion(o.value, o.source, o.confidence)
                        for o in conflict.observations
                    ),
                    document=kept.source,
                )
            )
        return out

    def from_suggestions(
        self,
        run_id: str,
        facilities: Sequence[Facility],
        suggestions: Iterable[ScopedSuggestion],
    ) -> list[ClarificationRequest]:
        """Requests the model raised about its own output.

        A question about a value already extracted at or above
        ``auto_accept_threshold`` is dropped. Below ``suggest_threshold`` the
        extracted value is shown beside the model's answers; in between it is
        shown alone. Questions about absent values are ``missing`` requests.
        """
        by_key = {f.key: f for f in facilities}
        out: list[ClarificationRequest] = []
        for scoped in suggestions:
            s = scoped.suggestion
            facility = by_key.get(facility_key(scoped.facility_name or ""))
            if facility is None and len(facilities) == 1:
                facility = facilities[0]
            answers = tuple(
                Suggestion(a, AI_PROVENANCE, AI_SUGGESTION_CONFIDENCE)
                for a in s.suggested_answers
            )
            kind = ClarificationType.MISSING
            value = confidence = None
            extracted = _extracted(facility, s.field) if facility else None
            if extracted is not None:
                value, confidence = extracted
                if confidence >= self._config.auto_accept_threshold:
                    log.debug(
                        "Accepted %s for %s at confidence %.2f",
                        s.field,
                        facility.name,
                        confidence,
                    )
                    continue
                kind = ClarificationType.LOW_CONFIDENCE
                if confidence >= self._config.suggest_threshold:
                    answers = ()
            out.append(
                ClarificationRequest(
                    id=self._new_id(),
                    run_id=run_id,
                    facility_name=facility.name if facility else scoped.source.document_name,
                    document_name=scoped.source.document_name,
                    field_path=s.field,
                    type=kind,
                    priority=s.priority,
                    reason=s.question,
                    extracted_value=value,
                    extracted_confidence=confidence,
                    suggestions=answers,
                )
            )
        return out

    # --- Helpers ---

    def _beyond_tolerance(self, conflict: FieldConflict) -> bool:
        kept = conflict.kept.value
        for other in conflict.alternates:
            if isinstance(kept, int | float) and isinstance(other.value, int | float):
                scale = max(abs(kept), abs(other.value))
                if scale and abs(kept - other.value) / scale > self._config.conflict_tolerance:
                    return True
            elif str(kept).strip().casefold() != str(other.value).strip().casefold():
                return True
        return False

    def _missing(
        self,
        run_id: str,
        facility: Facility,
        field_path: str,
        reason: str,
        *,
        value: Any = None,
    ) -> ClarificationRequest:
        return self._request(
            run_id,
            facility,
            field_path=field_path,
            kind=ClarificationType.MISSING,
            priority=constants.PRIORITY_MISSING,
            reason=reason,
            value=value,
        )

    def _request(
        self,
        run_id: str,
        facility: Facility,
        *,
        field_path: str,
        kind: ClarificationType,
        priority: int,
        reason: str,
        value: Any = None,
        confidence: float | None = None,
        suggestions: tuple[Suggestion, ...] = (),
        benchmark: dict[str, float] | None = None,
        document: str | None = None,
    ) -> ClarificationRequest:
        return ClarificationRequest(
            id=self._new_id(),
            run_id=run_id,
            facility_name=facility.name,
            document_name=document or facility.source_label(),
            field_path=field_path,
            type=kind,
            priority=priority,
            reason=reason,
            extracted_value=value,
            extracted_confidence=confidence,
            suggestions=suggestions,
            benchmark=benchmark,
        )


def _label(field: str) -> str:
    return field.removesuffix("_ppd").replace("_", " ").title()


def _amount(item: LineItem) -> float | None:
    if item.annual is not None:
        return item.annual
    values = [pv.value for pv in item.values if pv.value is not None]
    return sum(values) if values else None


def _total_revenue(facility: Facility) -> LineItem | None:
    for item in facility.line_items:
        if item.category is not LineItemCategory.REVENUE:
            continue
        if item.subcategory == "total_revenue" or "total revenue" in item.label.lower():
            return item
    return None


def _has_occupancy(facility: Facility) -> bool:
    census = facility.census
    if census is None:
        return False
    if any(v is not None for v in census.occupancy):
        return True
    beds = census.beds or facility.beds
    return bool(beds) and any(v is not None for v in census.avg_daily_census)


def _extracted(facility: Facility, path: str) -> tuple[Any, float] | None:
    """The value at ``path`` and its confidence, when one was extracted."""
    if path.startswith("payer_rates."):
        rates = facility.payer_rates
        field = path.removeprefix("payer_rates.")
        value = rates.populated().get(field) if rates is not None else None
        if value is None:
            return None
        confidence = rates.confidence_for(field)
        return value, facility.confidence if confidence is None else confidence
    for item in facility.line_items:
        if line_item_path(item) == path:
            return _amount(item), item.confidence
    return None
