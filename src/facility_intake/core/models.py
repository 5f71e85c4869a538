"""Domain records produced by extraction and consumed by merge and review.

All records are frozen. Merge and clarification resolution build new
records instead of editing existing ones.
"""

from __future__ import annotations

import dataclasses
from enum import Enum
import typing

from facility_intake.core.types import _freeze_mapping, _require


def facility_key(name: str) -> str:
    """Normalize a facility name into its merge key.

    Lowercases, trims and collapses internal whitespace. Every grouping site
    uses this function so that normalization never diverges between them.
    """
    return " ".join(name.split()).lower()


class LineItemCategory(str, Enum):
    REVENUE = "revenue"
    EXPENSE = "expense"
    METRIC = "metric"


class SheetType(str, Enum):
    """Coarse classification of a sheet's contents."""

    PL = "pl"
    CENSUS = "census"
    RATES = "rates"
    SUMMARY = "summary"
    UNKNOWN = "unknown"


@dataclasses.dataclass(frozen=True, slots=True)
class SourceRef:
    """Where a partial record was extracted from."""

    document_id: str
    document_name: str
    sheet_name: str
    chunk_index: int = 0
    sheet_type: SheetType = SheetType.UNKNOWN

    def describe(self) -> str:
        return f"{self.document_name} / {self.sheet_name}"


@dataclasses.dataclass(frozen=True, slots=True)
class Period:
    label: str
    start_date: str | None = None
    end_date: str | None = None
    period_type: str | None = None  # month, quarter, year, ttm

    def __post_init__(self) -> None:
        _require(
            condition=bool(self.label.strip()),
            message="cannot be empty",
            field_name="label",
        )


@dataclasses.dataclass(frozen=True, slots=True)
class PeriodValue:
    period: str
    value: float | None


@dataclasses.dataclass(frozen=True, slots=True)
class LineItem:
    category: LineItemCategory
    subcategory: str
    label: str
    values: tuple[PeriodValue, ...] = ()
    annual: float | None = None
    ppd: float | None = None
    percent_revenue: float | None = None
    notes: str | None = None
    confidence: float = 0.7

    def __post_init__(self) -> None:
        _require(
            condition=isinstance(self.category, LineItemCategory),
            message="must be a LineItemCategory",
            field_name="category",
            exc=TypeError,
        )
        _require(
            condition=isinstance(self.values, tuple),
            message="must be a tuple",
            field_name="values",
            exc=TypeError,
        )
        _require(
            condition=0.0 <= self.confidence <= 1.0,
            message="must be within [0, 1]",
            field_name="confidence",
        )

    @property
    def key(self) -> tuple[LineItemCategory, str]:
        """Deduplication identity within a facility."""
        return (self.category, self.label)

    def value_for(self, period: str) -> float | None:
        for pv in self.values:
            if pv.period == period:
                return pv.value
        return None


CENSUS_SERIES: tuple[str, ...] = (
    "medicare_part_a_days",
    "medicare_advantage_days",
    "managed_care_days",
    "medicaid_days",
    "managed_medicaid_days",
    "private_days",
    "va_contract_days",
    "hospice_days",
    "other_days",
    "total_days",
    "avg_daily_census",
    "occupancy",
)

Series = tuple[float | None, ...]


@dataclasses.dataclass(frozen=True, slots=True)
class Census:
    """Patient-day series aligned to ``periods``."""

    periods: tuple[str, ...] = ()
    medicare_part_a_days: Series = ()
    medicare_advantage_days: Series = ()
    managed_care_days: Series = ()
    medicaid_days: Series = ()
    managed_medicaid_days: Series = ()
    private_days: Series = ()
    va_contract_days: Series = ()
    hospice_days: Series = ()
    other_days: Series = ()
    total_days: Series = ()
    avg_daily_census: Series = ()
    occupancy: Series = ()
    beds: int | None = None
    confidence: float | None = None

    def data_field_count(self) -> int:
        """Number of series carrying at least one value, plus beds."""
        count = sum(
            1
            for name in CENSUS_SERIES
            if any(v is not None for v in getattr(self, name))
        )
        return count + (1 if self.beds is not None else 0)

    def has_days(self) -> bool:
        return any(v is not None for v in self.total_days) or any(
            any(v is not None for v in getattr(self, name))
            for name in CENSUS_SERIES[:9]
        )


RATE_FIELDS: tuple[str, ...] = (
    "medicare_part_a_ppd",
    "medicare_advantage_ppd",
    "managed_care_ppd",
    "medicaid_ppd",
    "managed_medicaid_ppd",
    "private_ppd",
    "hospice_ppd",
    "va_contract_ppd",
    "blended_ppd",
)


@dataclasses.dataclass(frozen=True, slots=True)
class PayerRates:
    """Per-patient-day rates by payer.

    ``field_confidence`` carries per-rate confidence where the extractor
    reported one; other rates fall back to ``confidence``.
    """

    effective_date: str | None = None
    medicare_part_a_ppd: float | None = None
    medicare_advantage_ppd: float | None = None
    managed_care_ppd: float | None = None
    medicaid_ppd: float | None = None
    managed_medicaid_ppd: float | None = None
    private_ppd: float | None = None
    hospice_ppd: float | None = None
    va_contract_ppd: float | None = None
    blended_ppd: float | None = None
    confidence: float | None = None
    field_confidence: typing.Mapping[str, float] | None = None

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "field_confidence", _freeze_mapping(self.field_confidence)
        )

    def __hash__(self) -> int:
        fc = tuple(sorted((self.field_confidence or {}).items()))
        return hash((*self.populated().items(), self.effective_date, fc))

    def populated(self) -> dict[str, float]:
        return {
            name: value
            for name in RATE_FIELDS
            if (value := getattr(self, name)) is not None
        }

    def data_field_count(self) -> int:
        return len(self.populated()) + (1 if self.effective_date else 0)

    def confidence_for(self, field_name: str) -> float | None:
        if self.field_confidence and field_name in self.field_confidence:
            return self.field_confidence[field_name]
        return self.confidence


@dataclasses.dataclass(frozen=True, slots=True)
class Observation:
    """One source's value for a field."""

    value: float | str
    source: str
    confidence: float | None = None


@dataclasses.dataclass(frozen=True, slots=True)
class FieldConflict:
    """Two or more sources disagreed on ``field_path``.

    The first observation is the value merge kept.
    """

    field_path: str
    observations: tuple[Observation, ...]

    @property
    def kept(self) -> Observation:
        return self.observations[0]

    @property
    def alternates(self) -> tuple[Observation, ...]:
        return self.observations[1:]


@dataclasses.dataclass(frozen=True, slots=True)
class Facility:
    """Canonical record for one facility within a document set."""

    name: str
    code: str | None = None
    state: str | None = None
    city: str | None = None
    beds: int | None = None
    periods: tuple[Period, ...] = ()
    line_items: tuple[LineItem, ...] = ()
    census: Census | None = None
    payer_rates: PayerRates | None = None
    confidence: float = 0.0
    sources: tuple[SourceRef, ...] = ()
    conflicts: tuple[FieldConflict, ...] = ()

    def __post_init__(self) -> None:
        _require(
            condition=bool(self.name.strip()),
            message="cannot be empty",
            field_name="name",
        )
        _require(
            condition=0.0 <= self.confidence <= 1.0,
            message="must be within [0, 1]",
            field_name="confidence",
        )

    @property
    def key(self) -> str:
        return facility_key(self.name)

    @property
    def sheet_types(self) -> frozenset[SheetType]:
        return frozenset(s.sheet_type for s in self.sources)

    def source_label(self) -> str:
        seen: list[str] = []
        for src in self.sources:
            label = src.describe()
            if label not in seen:
                seen.append(label)
        return ", ".join(seen) or "unknown source"

    def document_ids(self) -> tuple[str, ...]:
        return tuple(dict.fromkeys(s.document_id for s in self.sources))
