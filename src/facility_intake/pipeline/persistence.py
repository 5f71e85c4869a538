"""Collaborator seams for document input and record output.

Documents come from a :class:`DocumentSource`; normalized rows go to a
:class:`RecordSink`. Both are owned elsewhere. In-memory implementations
back tests and local runs.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
import dataclasses
import logging
from typing import Any, Protocol, runtime_checkable

from facility_intake.core.models import (
    CENSUS_SERIES,
    Facility,
    LineItem,
    LineItemCategory,
    SheetType,
)
from facility_intake.core.types import Document, _freeze_mapping

log = logging.getLogger(__name__)

PROVENANCE_EXTRACTED = "extracted"

_TOTAL_SUBCATEGORIES = {
    LineItemCategory.REVENUE: "total_revenue",
    LineItemCategory.EXPENSE: "total_expenses",
}


@runtime_checkable
class DocumentSource(Protocol):
    async def get_documents(self, document_ids: Sequence[str]) -> list[Document]:
        """Documents for ``document_ids``; unknown ids are omitted."""
        ...


@runtime_checkable
class RecordSink(Protocol):
    async def write_rows(self, rows: Sequence[Row]) -> None:
        """Persist normalized rows."""
        ...

    async def update_field(
        self,
        facility_name: str,
        field_path: str,
        value: Any,
        *,
        document_ids: Sequence[str],
    ) -> None:
        """Overwrite one field after a reviewer resolved it."""
        ...


@dataclasses.dataclass(frozen=True, slots=True)
class FinancialPeriodRow:
    facility_name: str
    period: str
    source_document_id: str
    start_date: str | None = None
    end_date: str | None = None
    total_revenue: float | None = None
    total_expenses: float | None = None
    line_items: Mapping[str, float] | None = None
    provenance: str = PROVENANCE_EXTRACTED

    def __post_init__(self) -> None:
        object.__setattr__(self, "line_items", _freeze_mapping(self.line_items))


@dataclasses.dataclass(frozen=True, slots=True)
class CensusPeriodRow:
    facility_name: str
    period: str
    source_document_id: str
    values: Mapping[str, float] | None = None
    beds: int | None = None
    provenance: str = PROVENANCE_EXTRACTED

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", _freeze_mapping(self.values))


@dataclasses.dataclass(frozen=True, slots=True)
class PayerRateRow:
    facility_name: str
    source_document_id: str
    rates: Mapping[str, float] | None = None
    effective_date: str | None = None
    provenance: str = PROVENANCE_EXTRACTED

    def __post_init__(self) -> None:
        object.__setattr__(self, "rates", _freeze_mapping(self.rates))


Row = FinancialPeriodRow | CensusPeriodRow | PayerRateRow


def rows_for_facilities(facilities: Iterable[Facility]) -> list[Row]:
    rows: list[Row] = []
    for facility in facilities:
        rows.extend(financial_rows(facility))
        rows.extend(census_rows(facility))
        rows.extend(payer_rate_rows(facility))
    return rows


def _document_for(facility: Facility, sheet_type: SheetType) -> str:
    for source in facility.sources:
        if source.sheet_type is sheet_type:
            return source.document_id
    ids = facility.document_ids()
    return ids[0] if ids else ""


def financial_rows(facility: Facility) -> list[FinancialPeriodRow]:
    """One row per reporting period that has at least one line-item value."""
    labels = [p.label for p in facility.periods]
    for item in facility.line_items:
        labels.extend(pv.period for pv in item.values if pv.period not in labels)
    periods = {p.label: p for p in facility.periods}
    document_id = _document_for(facility, SheetType.PL)

    rows = []
    for label in labels:
        values = {
            item.label: value
            for item in facility.line_items
            if (value := item.value_for(label)) is not None
        }
        if not values:
            continue
        period = periods.get(label)
        rows.append(
            FinancialPeriodRow(
                facility_name=facility.name,
                period=label,
                source_document_id=document_id,
                start_date=period.start_date if period else None,
                end_date=period.end_date if period else None,
                total_revenue=_total(facility.line_items, LineItemCategory.REVENUE, label),
                total_expenses=_total(facility.line_items, LineItemCategory.EXPENSE, label),
                line_items=values,
            )
        )
    return rows


def _total(items: Sequence[LineItem], category: LineItemCategory, period: str) -> float | None:
    """Reported total when present, otherwise the sum of the category's items."""
    in_category = [i for i in items if i.category is category]
    for item in in_category:
        if item.subcategory == _TOTAL_SUBCATEGORIES[category] or item.label.lower().startswith(
            "total"
        ):
            value = item.value_for(period)
            if value is not None:
                return value
    values = [v for i in in_category if (v := i.value_for(period)) is not None]
    return sum(values) if values else None


def census_rows(facility: Facility) -> list[CensusPeriodRow]:
    census = facility.census
    if census is None:
        return []
    document_id = _document_for(facility, SheetType.CENSUS)
    rows = []
    for position, period in enumerate(census.periods):
        values = {}
        for name in CENSUS_SERIES:
            series = getattr(census, name)
            if position < len(series) and series[position] is not None:
                values[name] = series[position]
        if values:
            rows.append(
                CensusPeriodRow(
                    facility_name=facility.name,
                    period=period,
                    source_document_id=document_id,
                    values=values,
                    beds=census.beds or facility.beds,
                )
            )
    return rows


def payer_rate_rows(facility: Facility) -> list[PayerRateRow]:
    rates = facility.payer_rates
    if rates is None or not rates.populated():
        return []
    return [
        PayerRateRow(
            facility_name=facility.name,
            source_document_id=_document_for(facility, SheetType.RATES),
            rates=rates.populated(),
            effective_date=rates.effective_date,
        )
    ]


class InMemoryDocumentSource:
    def __init__(self, documents: Iterable[Document] = ()) -> None:
        self._documents = {d.document_id: d for d in documents}

    def add(self, document: Document) -> None:
        self._documents[document.document_id] = document

    async def get_documents(self, document_ids: Sequence[str]) -> list[Document]:
        return [self._documents[i] for i in document_ids if i in self._documents]


class InMemoryRecordSink:
    def __init__(self) -> None:
        self.rows: list[Row] = []
        self.updates: list[tuple[str, str, Any, tuple[str, ...]]] = []

    async def write_rows(self, rows: Sequence[Row]) -> None:
        self.rows.extend(rows)
        log.debug("Stored %d row(s)", len(rows))

    async def update_field(
        self,
        facility_name: str,
        field_path: str,
        value: Any,
        *,
        document_ids: Sequence[str],
    ) -> None:
        self.updates.append((facility_name, field_path, value, tuple(document_ids)))
