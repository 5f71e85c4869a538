"""Conversion of decoded model payloads into typed facility records.

Model payloads use camelCase keys, spreadsheet number formatting and loose
confidence scales. Everything here is lenient: malformed entries are
skipped with a warning instead of failing the chunk.
"""

from __future__ import annotations

import dataclasses
import logging
import math
import re
from typing import Any

from facility_intake import constants
from facility_intake.core.models import (
    CENSUS_SERIES,
    RATE_FIELDS,
    Census,
    Facility,
    LineItem,
    LineItemCategory,
    PayerRates,
    Period,
    PeriodValue,
    SheetType,
    SourceRef,
)
from facility_intake.core.types import Chunk

log = logging.getLogger(__name__)

_SHEET_NAME_PATTERNS: tuple[tuple[SheetType, re.Pattern[str]], ...] = (
    (SheetType.PL, re.compile(r"p\s*&?\s*l|profit|loss|income\s+statement|operating")),
    (SheetType.CENSUS, re.compile(r"census|patient\s*day|occupancy|adc")),
    (SheetType.RATES, re.compile(r"rate|ppd|per\s*patient|per\s*diem|payer")),
    (SheetType.SUMMARY, re.compile(r"summary|overview|dashboard|kpi")),
)


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(p.capitalize() for p in rest)


_CENSUS_KEYS = {name: _camel(name) for name in CENSUS_SERIES}
# camelCase of "medicare_part_a_ppd" is "medicarePartAPpd"
_RATE_KEYS = {name: _camel(name) for name in RATE_FIELDS}
_RATE_FIELD_BY_KEY = {v: k for k, v in _RATE_KEYS.items()}


@dataclasses.dataclass(frozen=True, slots=True)
class ModelSuggestion:
    """An open question the model raised alongside its extraction."""

    field: str
    question: str
    suggested_answers: tuple[str, ...] = ()
    priority: int = constants.PRIORITY_MISSING


@dataclasses.dataclass(frozen=True, slots=True)
class ExtractionResult:
    """Decoded output of one chunk."""

    chunk: Chunk
    facilities: tuple[Facility, ...] = ()
    reported_sheet_type: SheetType = SheetType.UNKNOWN
    suggestions: tuple[ModelSuggestion, ...] = ()
    warnings: tuple[str, ...] = ()
    decode_stage: str = "well_formed"


# --- Scalar coercion ---


def to_number(value: Any) -> float | None:
    """Coerce spreadsheet-style numbers; ``(1,234)`` is negative."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        try:
            number = float(value)
        except OverflowError:
            return None
        return number if math.isfinite(number) else None
    if not isinstance(value, str):
        return None
    text = value.strip().replace(",", "").replace("$", "").replace("%", "")
    negative = text.startswith("(") and text.endswith(")")
    if negative:
        text = text[1:-1].strip()
    if not text or text in {"-", "—", "n/a", "N/A"}:
        return None
    try:
        number = float(text)
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    return -number if negative else number


def to_confidence(value: Any, default: float) -> float:
    """Coerce a confidence onto [0, 1]; percentages are accepted."""
    number = to_number(value)
    if number is None:
        return default
    if 1.0 < number <= 100.0:
        number /= 100.0
    return min(max(number, 0.0), 1.0)


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _int(value: Any) -> int | None:
    number = to_number(value)
    return int(round(number)) if number is not None else None


# --- Records ---


def _period(raw: Any) -> Period | None:
    if isinstance(raw, str):
        return Period(label=raw.strip()) if raw.strip() else None
    if not isinstance(raw, dict):
        return None
    label = _text(raw.get("label"))
    if label is None:
        return None
    return Period(
        label=label,
        start_date=_text(raw.get("startDate")),
        end_date=_text(raw.get("endDate")),
        period_type=_text(raw.get("type")),
    )


def _category(raw: Any) -> LineItemCategory:
    try:
        return LineItemCategory(str(raw).strip().lower())
    except ValueError:
        return LineItemCategory.METRIC


def _entries(raw: dict[str, Any], key: str, where: str, warnings: list[str]) -> list[Any]:
    """Return ``raw[key]`` when it is a list; any other shape is dropped with a warning."""
    value = raw.get(key)
    if value is None:
        return []
    if isinstance(value, list):
        return value
    warnings.append(f"{where}: ignored '{key}', expected a list not {type(value).__name__}")
    return []


def _period_labels(raw: dict[str, Any], where: str, warnings: list[str]) -> list[Any]:
    # A lone label is a one-period list.
    if isinstance(raw.get("periods"), str):
        return [raw["periods"]]
    return _entries(raw, "periods", where, warnings)


def _line_item(raw: dict[str, Any], index: int, where: str, warnings: list[str]) -> LineItem:
    values: list[PeriodValue] = []
    seen: set[str] = set()
    for entry in _entries(raw, "values", f"{where} line item {index + 1}", warnings):
        if not isinstance(entry, dict):
            continue
        period = _text(entry.get("period"))
        if period is None or period in seen:
            continue
        seen.add(period)
        values.append(PeriodValue(period=period, value=to_number(entry.get("value"))))
    return LineItem(
        category=_category(raw.get("category")),
        subcategory=_text(raw.get("subcategory")) or "other",
        label=_text(raw.get("label")) or f"Item {index + 1}",
        values=tuple(values),
        annual=to_number(raw.get("annual")),
        ppd=to_number(raw.get("ppd")),
        percent_revenue=to_number(raw.get("percentRevenue")),
        notes=_text(raw.get("notes")),
        confidence=to_confidence(
            raw.get("confidence"), constants.DEFAULT_LINE_ITEM_CONFIDENCE
        ),
    )


def _series(raw: Any) -> tuple[float | None, ...]:
    if isinstance(raw, list):
        return tuple(to_number(v) for v in raw)
    number = to_number(raw)
    return (number,) if number is not None else ()


def _census(raw: Any, where: str, warnings: list[str]) -> Census | None:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        warnings.append(f"{where}: ignored 'census', expected an object")
        return None
    periods = tuple(
        str(p).strip()
        for p in _period_labels(raw, f"{where} census", warnings)
        if not isinstance(p, dict | list) and str(p).strip()
    )
    series = {name: _series(raw.get(key)) for name, key in _CENSUS_KEYS.items()}
    census = Census(
        periods=periods,
        beds=_int(raw.get("beds")),
        confidence=(
            to_confidence(raw["confidence"], 0.0) if raw.get("confidence") is not None else None
        ),
        **series,
    )
    return census if census.data_field_count() else None


def _payer_rates(raw: Any, where: str, warnings: list[str]) -> PayerRates | None:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        warnings.append(f"{where}: ignored 'payerRates', expected an object")
        return None
    rates = {name: to_number(raw.get(key)) for name, key in _RATE_KEYS.items()}
    raw_confidence = raw.get("fieldConfidence")
    if raw_confidence is not None and not isinstance(raw_confidence, dict):
        warnings.append(f"{where}: ignored 'fieldConfidence', expected an object")
        raw_confidence = None
    field_confidence: dict[str, float] = {}
    for key, value in (raw_confidence or {}).items():
        name = _RATE_FIELD_BY_KEY.get(key, key if key in RATE_FIELDS else None)
        if name is not None and to_number(value) is not None:
            field_confidence[name] = to_confidence(value, 0.0)
    result = PayerRates(
        effective_date=_text(raw.get("effectiveDate")),
        confidence=(
            to_confidence(raw["confidence"], 0.0) if raw.get("confidence") is not None else None
        ),
        field_confidence=field_confidence or None,
        **rates,
    )
    return result if result.data_field_count() else None


def facilities_from_payload(
    payload: dict[str, Any], *, source: SourceRef
) -> tuple[list[Facility], list[str]]:
    """Build facility records from a decoded payload.

    Unnamed facilities take the document name. Fields of the wrong shape are
    dropped with a warning, and an entry that still cannot be built is
    skipped without affecting its siblings.
    """
    facilities: list[Facility] = []
    warnings: list[str] = []
    raw_facilities = payload.get("facilities")
    if raw_facilities is None:
        return facilities, warnings
    if not isinstance(raw_facilities, list):
        return facilities, [f"{source.sheet_name}: 'facilities' is not a list"]

    for position, raw in enumerate(raw_facilities):
        where = f"{source.sheet_name} facility {position + 1}"
        if not isinstance(raw, dict):
            warnings.append(f"{source.sheet_name}: skipped facility entry {position + 1}")
            continue
        try:
            facilities.append(_facility(raw, source, where, warnings))
        except (TypeError, ValueError, AttributeError) as e:
            log.debug("Skipping %s: %s", where, e)
            warnings.append(f"{where}: skipped unreadable entry ({e})")
    return facilities, warnings


def _facility(
    raw: dict[str, Any], source: SourceRef, where: str, warnings: list[str]
) -> Facility:
    periods: list[Period] = []
    for p in _period_labels(raw, where, warnings):
        period = _period(p)
        if period is not None and all(x.label != period.label for x in periods):
            periods.append(period)
    items = [
        _line_item(item, i, where, warnings)
        for i, item in enumerate(_entries(raw, "lineItems", where, warnings))
        if isinstance(item, dict)
    ]
    return Facility(
        name=_text(raw.get("name")) or source.document_name,
        code=_text(raw.get("code") or raw.get("ccn")),
        state=_text(raw.get("state")),
        city=_text(raw.get("city")),
        beds=_int(raw.get("beds")),
        periods=tuple(periods),
        line_items=tuple(items),
        census=_census(raw.get("census"), where, warnings),
        payer_rates=_payer_rates(raw.get("payerRates"), where, warnings),
        confidence=to_confidence(
            raw.get("confidence"), constants.DEFAULT_LINE_ITEM_CONFIDENCE
        ),
        sources=(source,),
    )


def suggestions_from_payload(payload: dict[str, Any]) -> list[ModelSuggestion]:
    suggestions: list[ModelSuggestion] = []
    raw_suggestions = payload.get("clarifications")
    if not isinstance(raw_suggestions, list):
        return suggestions
    for raw in raw_suggestions:
        if not isinstance(raw, dict):
            continue
        field = _text(raw.get("field"))
        question = _text(raw.get("question"))
        if field is None or question is None:
            continue
        answers = raw.get("suggestedAnswers") or ()
        priority = _int(raw.get("priority"))
        suggestions.append(
            ModelSuggestion(
                field=field,
                question=question,
                suggested_answers=tuple(str(a) for a in answers if a is not None)
                if isinstance(answers, list)
                else (),
                priority=min(max(priority, 1), 10)
                if priority is not None
                else constants.PRIORITY_MISSING,
            )
        )
    return suggestions


def reported_sheet_type(payload: dict[str, Any]) -> SheetType:
    try:
        return SheetType(str(payload.get("sheetType", "unknown")).lower())
    except ValueError:
        return SheetType.UNKNOWN


def infer_sheet_type(
    sheet_name: str,
    facilities: list[Facility] | tuple[Facility, ...],
    reported: SheetType = SheetType.UNKNOWN,
) -> SheetType:
    """Classify a sheet by its name, then the model's report, then content."""
    lower = sheet_name.lower()
    for sheet_type, pattern in _SHEET_NAME_PATTERNS:
        if pattern.search(lower):
            return sheet_type
    if reported is not SheetType.UNKNOWN:
        return reported
    if any(f.census and any(v is not None for v in f.census.total_days) for f in facilities):
        return SheetType.CENSUS
    if any(f.payer_rates and f.payer_rates.medicare_part_a_ppd for f in facilities):
        return SheetType.RATES
    if any(len(f.line_items) > 3 for f in facilities):
        return SheetType.PL
    return SheetType.UNKNOWN


def retag(facilities: list[Facility], sheet_type: SheetType) -> list[Facility]:
    """Stamp ``sheet_type`` onto every source reference."""
    return [
        dataclasses.replace(
            f,
            sources=tuple(dataclasses.replace(s, sheet_type=sheet_type) for s in f.sources),
        )
        for f in facilities
    ]


def placeholder_facility(document_name: str, source: SourceRef) -> Facility:
    name = re.sub(r"\.(xlsx|xls|csv|pdf)$", "", document_name, flags=re.IGNORECASE)
    return Facility(
        name=name or "Unknown",
        confidence=constants.PLACEHOLDER_FACILITY_CONFIDENCE,
        sources=(source,),
    )


def document_confidence(facilities: list[Facility] | tuple[Facility, ...]) -> float:
    """Mean facility confidence with an uplift for rich extractions."""
    if not facilities:
        return 0.0
    confidence = sum(f.confidence for f in facilities) / len(facilities)
    if any(len(f.line_items) > 5 for f in facilities):
        confidence += constants.CONFIDENCE_UPLIFT
    if any(f.census and f.census.has_days() for f in facilities):
        confidence += constants.CONFIDENCE_UPLIFT
    if any(f.payer_rates and f.payer_rates.medicare_part_a_ppd for f in facilities):
        confidence += constants.CONFIDENCE_UPLIFT
    return min(confidence, 1.0)
