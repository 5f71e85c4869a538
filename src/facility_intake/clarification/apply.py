"""Writing a reviewer's answer back onto a facility record.

Resolution never re-runs merge. It replaces the one field a request points
at, raises that field's confidence to 1.0 and drops the matching conflict.
Paths this module does not understand leave the facility unchanged.
"""

from __future__ import annotations

import dataclasses
import logging
import re
from typing import Any

from facility_intake.clarification.models import ClarificationRequest
from facility_intake.core.models import (
    RATE_FIELDS,
    Census,
    Facility,
    LineItem,
    PayerRates,
    PeriodValue,
)
from facility_intake.extraction.normalize import to_number

log = logging.getLogger(__name__)

_LINE_ITEM_PATH = re.compile(
    r"^line_items\[(?P<category>[a-z]+):(?P<label>.+?)\](?:\.values\[(?P<period>.+)\])?$"
)
_OCCUPANCY_PATH = re.compile(r"^census\.occupancy(?:\[(?P<period>.+)\])?$")
_SCALARS = {"code", "state", "city", "beds"}


def apply_resolution(facility: Facility, request: ClarificationRequest) -> Facility:
    """Return ``facility`` with the resolved value written to the request's field."""
    value = request.resolved_value
    path = request.field_path
    updated = _apply(facility, path, value)
    if updated is None:
        log.debug("No field to update for %s on %s", path, facility.name)
        return facility
    return dataclasses.replace(
        updated,
        conflicts=tuple(c for c in updated.conflicts if c.field_path != path),
    )


def _apply(facility: Facility, path: str, value: Any) -> Facility | None:
    if path in _SCALARS:
        if path == "beds":
            number = to_number(value)
            return dataclasses.replace(facility, beds=int(number)) if number is not None else None
        return dataclasses.replace(facility, **{path: str(value).strip() or None})

    if path.startswith("payer_rates."):
        field = path.removeprefix("payer_rates.")
        number = to_number(value)
        if field not in RATE_FIELDS or number is None:
            return None
        rates = facility.payer_rates or PayerRates()
        confidence = dict(rates.field_confidence or {})
        confidence[field] = 1.0
        return dataclasses.replace(
            facility,
            payer_rates=dataclasses.replace(rates, field_confidence=confidence, **{field: number}),
        )

    match = _OCCUPANCY_PATH.match(path)
    if match:
        number = to_number(value)
        if number is None:
            return None
        if number > 1.0:
            number /= 100.0
        return dataclasses.replace(
            facility, census=_set_occupancy(facility.census, match["period"], number)
        )

    match = _LINE_ITEM_PATH.match(path)
    if match:
        items = list(facility.line_items)
        for position, item in enumerate(items):
            if item.category.value == match["category"] and item.label == match["label"]:
                replaced = _set_line_item(item, match["period"], to_number(value))
                if replaced is None:
                    return None
                items[position] = replaced
                return dataclasses.replace(facility, line_items=tuple(items))
        return None

    if path == "financial.overall":
        return dataclasses.replace(facility, confidence=1.0)
    if path == "census" and facility.census is not None:
        return dataclasses.replace(
            facility, census=dataclasses.replace(facility.census, confidence=1.0)
        )
    return None


def _set_occupancy(census: Census | None, period: str | None, value: float) -> Census:
    census = census or Census()
    if period is None:
        return dataclasses.replace(census, occupancy=(value,) * max(1, len(census.periods)))
    periods = list(census.periods)
    occupancy = list(census.occupancy)
    if period in periods:
        position = periods.index(period)
    else:
        periods.append(period)
        position = len(periods) - 1
    occupancy.extend([None] * (position + 1 - len(occupancy)))
    occupancy[position] = value
    return dataclasses.replace(census, periods=tuple(periods), occupancy=tuple(occupancy))


def _set_line_item(item: LineItem, period: str | None, value: float | None) -> LineItem | None:
    if period is None:
        if value is None:
            # Confirming a low-confidence item as-is.
            return dataclasses.replace(item, confidence=1.0)
        return dataclasses.replace(item, annual=value, confidence=1.0)
    if value is None:
        return None
    values = [pv for pv in item.values if pv.period != period]
    position = next((i for i, pv in enumerate(item.values) if pv.period == period), len(values))
    values.insert(position, PeriodValue(period=period, value=value))
    return dataclasses.replace(item, values=tuple(values), confidence=1.0)
