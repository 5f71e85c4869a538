"""Reduction of partial facility records into one record per facility.

Records are grouped by :func:`facility_key`. A singleton group passes
through untouched. A larger group is reduced as a whole:

- line items are deduplicated by ``(category, label)``; their period values
  are unioned, the first record's value winning for a period both carry;
- periods are deduplicated by label;
- census and payer-rate sub-records: the one with more populated fields
  wins, ties keep the first seen;
- confidence is the mean over the group.

Disagreements found along the way are kept on the merged record as
:class:`FieldConflict` entries so the review stage can raise them.
The same function serves the intra-sheet and cross-sheet passes.
"""

from __future__ import annotations

from collections.abc import Iterable
import logging

from facility_intake.core.models import (
    RATE_FIELDS,
    Facility,
    FieldConflict,
    LineItem,
    Observation,
    PayerRates,
    Period,
    PeriodValue,
    facility_key,
)

log = logging.getLogger(__name__)


def merge_facilities(records: Iterable[Facility]) -> list[Facility]:
    """Merge records that name the same facility.

    Returns:
        One facility per distinct key, in order of first appearance.
    """
    groups: dict[str, list[Facility]] = {}
    for record in records:
        groups.setdefault(facility_key(record.name), []).append(record)
    merged = [group[0] if len(group) == 1 else _merge_group(group) for group in groups.values()]
    log.debug("Merged %d group(s)", len(merged))
    return merged


class _ConflictLog:
    """Collects observations per field path, preserving first-seen order."""

    def __init__(self) -> None:
        self._observations: dict[str, list[Observation]] = {}

    def extend(self, conflicts: Iterable[FieldConflict]) -> None:
        for conflict in conflicts:
            for obs in conflict.observations:
                self._add(conflict.field_path, obs)

    def record(self, path: str, kept: Observation, other: Observation) -> None:
        self._add(path, kept)
        self._add(path, other)

    def _add(self, path: str, obs: Observation) -> None:
        bucket = self._observations.setdefault(path, [])
        if obs not in bucket:
            bucket.append(obs)

    def conflicts(self) -> tuple[FieldConflict, ...]:
        return tuple(
            FieldConflict(field_path=path, observations=tuple(observations))
            for path, observations in self._observations.items()
            if len({o.value for o in observations}) > 1
        )


def line_item_path(item: LineItem, period: str | None = None) -> str:
    path = f"line_items[{item.category.value}:{item.label}]"
    return f"{path}.values[{period}]" if period is not None else path


def _merge_group(group: list[Facility]) -> Facility:
    conflicts = _ConflictLog()
    for record in group:
        conflicts.extend(record.conflicts)

    base = group[0]
    return Facility(
        name=base.name,
        code=_first_scalar(group, "code", conflicts),
        state=_first_scalar(group, "state", conflicts),
        city=_first_scalar(group, "city", conflicts),
        beds=_first_scalar(group, "beds", conflicts),
        periods=_merge_periods(group),
        line_items=_merge_line_items(group, conflicts),
        census=_richest([r.census for r in group]),
        payer_rates=_merge_rates(group, conflicts),
        confidence=sum(r.confidence for r in group) / len(group),
        sources=tuple(dict.fromkeys(s for r in group for s in r.sources)),
        conflicts=conflicts.conflicts(),
    )


def _same(a: object, b: object) -> bool:
    if isinstance(a, str) and isinstance(b, str):
        return a.strip().casefold() == b.strip().casefold()
    return a == b


def _first_scalar(group: list[Facility], field: str, conflicts: _ConflictLog):  # noqa: ANN202
    kept_value = None
    kept_record: Facility | None = None
    for record in group:
        value = getattr(record, field)
        if value is None:
            continue
        if kept_record is None:
            kept_value, kept_record = value, record
        elif not _same(kept_value, value):
            conflicts.record(
                field,
                Observation(kept_value, kept_record.source_label(), kept_record.confidence),
                Observation(value, record.source_label(), record.confidence),
            )
    return kept_value


def _merge_periods(group: list[Facility]) -> tuple[Period, ...]:
    seen: dict[str, Period] = {}
    for record in group:
        for period in record.periods:
            seen.setdefault(period.label, period)
    return tuple(seen.values())


def _merge_line_items(
    group: list[Facility], conflicts: _ConflictLog
) -> tuple[LineItem, ...]:
    by_key: dict[tuple, list[tuple[LineItem, Facility]]] = {}
    for record in group:
        for item in record.line_items:
            by_key.setdefault(item.key, []).append((item, record))
    return tuple(_merge_item(entries, conflicts) for entries in by_key.values())


def _merge_item(
    entries: list[tuple[LineItem, Facility]], conflicts: _ConflictLog
) -> LineItem:
    first, _ = entries[0]
    if len(entries) == 1:
        return first

    values: list[PeriodValue] = []
    position: dict[str, int] = {}
    origin: dict[str, tuple[LineItem, Facility]] = {}
    for item, record in entries:
        for pv in item.values:
            if pv.period not in position:
                position[pv.period] = len(values)
                values.append(pv)
                origin[pv.period] = (item, record)
                continue
            kept = values[position[pv.period]]
            if kept.value is None and pv.value is not None:
                # Fill a hole; nothing is overwritten.
                values[position[pv.period]] = pv
                origin[pv.period] = (item, record)
            elif pv.value is not None and kept.value != pv.value:
                kept_item, kept_record = origin[pv.period]
                conflicts.record(
                    line_item_path(first, pv.period),
                    Observation(kept.value, kept_record.source_label(), kept_item.confidence),
                    Observation(pv.value, record.source_label(), item.confidence),
                )

    items = [item for item, _ in entries]
    return LineItem(
        category=first.category,
        subcategory=_first_not_none(i.subcategory for i in items) or "other",
        label=first.label,
        values=tuple(values),
        annual=_first_not_none(i.annual for i in items),
        ppd=_first_not_none(i.ppd for i in items),
        percent_revenue=_first_not_none(i.percent_revenue for i in items),
        notes=_first_not_none(i.notes for i in items),
        confidence=sum(i.confidence for i in items) / len(items),
    )


def _first_not_none(values: Iterable):  # noqa: ANN202
    return next((v for v in values if v is not None), None)


def _richest(candidates):  # noqa: ANN001, ANN202
    """Sub-record with the most populated fields; ties keep the first."""
    best = None
    for candidate in candidates:
        if candidate is None:
            continue
        if best is None or candidate.data_field_count() > best.data_field_count():
            best = candidate
    return best


def _merge_rates(group: list[Facility], conflicts: _ConflictLog) -> PayerRates | None:
    chosen = _richest([r.payer_rates for r in group])
    if chosen is None:
        return None
    chosen_record = next(r for r in group if r.payer_rates is chosen)
    for record in group:
        rates = record.payer_rates
        if rates is None or rates is chosen:
            continue
        for field in RATE_FIELDS:
            kept = getattr(chosen, field)
            other = getattr(rates, field)
            if kept is not None and other is not None and kept != other:
                conflicts.record(
                    f"payer_rates.{field}",
                    Observation(
                        kept,
                        chosen_record.source_label(),
                        chosen.confidence_for(field),
                    ),
                    Observation(other, record.source_label(), rates.confidence_for(field)),
                )
    return chosen
