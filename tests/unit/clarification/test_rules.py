import itertools

import pytest

from facility_intake.clarification import ClarificationRules, ClarificationType
from facility_intake.config import FrozenConfig
from facility_intake.core.models import (
    Census,
    FieldConflict,
    LineItemCategory,
    Observation,
    PayerRates,
    SheetType,
)
from facility_intake.extraction import ScopedSuggestion
from facility_intake.extraction.merge import line_item_path
from facility_intake.extraction.normalize import ModelSuggestion
from tests.helpers import facility, line_item, source

pytestmark = pytest.mark.unit


@pytest.fixture
def rules(config):
    counter = itertools.count(1)
    return ClarificationRules(config, id_factory=lambda: f"c{next(counter)}")


def _rates_facility(**rates):
    return facility(
        "Sunrise SNF",
        payer_rates=PayerRates(**rates),
        sources=(source("Rates", sheet_type=SheetType.RATES),),
    )


def test_single_low_confidence_rate_yields_exactly_one_request(rules):
    """Only the rate whose own confidence is under the threshold is raised."""
    subject = _rates_facility(
        medicare_part_a_ppd=650.0,
        medicaid_ppd=245.0,
        private_ppd=310.0,
        confidence=0.92,
        field_confidence={"medicare_part_a_ppd": 0.6},
    )

    requests = rules.evaluate("run-1", [subject])

    assert len(requests) == 1
    (request,) = requests
    assert request.type is ClarificationType.LOW_CONFIDENCE
    assert request.field_path == "payer_rates.medicare_part_a_ppd"
    assert request.extracted_value == 650.0
    assert request.extracted_confidence == 0.6
    assert request.priority == 7
    assert request.run_id == "run-1"
    assert request.is_pending


def test_thresholds_come_from_configuration():
    subject = _rates_facility(
        medicare_part_a_ppd=650.0, field_confidence={"medicare_part_a_ppd": 0.6}
    )
    lenient = ClarificationRules(FrozenConfig(low_confidence_threshold=0.5))

    assert lenient.evaluate("run-1", [subject]) == []


def test_rate_without_any_confidence_is_not_raised(rules):
    subject = _rates_facility(medicare_part_a_ppd=650.0)

    assert rules.evaluate("run-1", [subject]) == []


class TestLowConfidence:
    def test_line_items_and_overall(self, rules):
        subject = facility(
            "Oak Grove",
            line_item("Medicare Revenue", {"Jan": 100.0, "Feb": 50.0}, confidence=0.5),
            line_item("Rent", {"Jan": 10.0}, category=LineItemCategory.EXPENSE, confidence=0.95),
            confidence=0.6,
        )

        paths = {r.field_path: r for r in rules.low_confidence("run-1", subject)}

        assert set(paths) == {"financial.overall", "line_items[revenue:Medicare Revenue]"}
        assert paths["line_items[revenue:Medicare Revenue]"].extracted_value == 150.0

    def test_facility_without_line_items_has_no_overall_request(self, rules):
        subject = facility("Oak Grove", confidence=0.2)

        assert rules.low_confidence("run-1", subject) == []

    def test_census_confidence(self, rules):
        subject = facility(
            "Oak Grove", census=Census(periods=("Jan",), total_days=(900.0,), confidence=0.4)
        )

        (request,) = rules.low_confidence("run-1", subject)

        assert request.field_path == "census"


def test_out_of_range_occupancy(rules):
    subject = facility(
        "Oak Grove",
        census=Census(
            periods=("Jan", "Feb", "Mar", "Apr"),
            occupancy=(0.45, 0.85, 1.2, 0.0),
            confidence=0.9,
        ),
    )

    requests = rules.out_of_range("run-1", subject)

    assert [r.field_path for r in requests] == ["census.occupancy[Jan]", "census.occupancy[Mar]"]
    assert requests[0].type is ClarificationType.OUT_OF_RANGE
    assert dict(requests[0].benchmark) == {"min": 0.70, "max": 0.95, "median": 0.82}


class TestMissing:
    def test_census_sheet_without_occupancy(self, rules):
        subject = facility(
            "Oak Grove",
            census=Census(periods=("Jan",), total_days=(900.0,)),
            sources=(source("Census", sheet_type=SheetType.CENSUS),),
        )

        (request,) = rules.missing("run-1", subject)

        assert request.field_path == "census.occupancy"
        assert request.type is ClarificationType.MISSING
        assert request.priority == 5

    def test_occupancy_derivable_from_adc_and_beds(self, rules):
        subject = facility(
            "Oak Grove",
            beds=120,
            census=Census(periods=("Jan",), avg_daily_census=(100.0,)),
            sources=(source("Census", sheet_type=SheetType.CENSUS),),
        )

        assert rules.missing("run-1", subject) == []

    def test_rate_sheet_without_rates(self, rules):
        subject = facility("Oak Grove", sources=(source("Rates", sheet_type=SheetType.RATES),))

        (request,) = rules.missing("run-1", subject)

        assert request.field_path == "payer_rates"

    def test_pl_without_total_revenue(self, rules):
        subject = facility(
            "Oak Grove",
            line_item("Rent", {"Jan": 10.0}, category=LineItemCategory.EXPENSE),
            sources=(source("P&L", sheet_type=SheetType.PL),),
        )

        (request,) = rules.missing("run-1", subject)

        assert request.field_path == "revenue.total"

    def test_pl_with_little_payer_breakdown(self, rules):
        subject = facility(
            "Oak Grove",
            line_item("Total Revenue", {"Jan": 1000.0}, subcategory="total_revenue"),
            line_item("Medicare", {"Jan": 300.0}, subcategory="medicare_revenue"),
            sources=(source("P&L", sheet_type=SheetType.PL),),
        )

        (request,) = rules.missing("run-1", subject)

        assert request.field_path == "revenue.by_payer"
        assert request.extracted_value == 300.0

    def test_pl_with_payer_breakdown_is_complete(self, rules):
        subject = facility(
            "Oak Grove",
            line_item("Total Revenue", {"Jan": 1000.0}, subcategory="total_revenue"),
            line_item("Medicare", {"Jan": 600.0}, subcategory="medicare_revenue"),
            sources=(source("P&L", sheet_type=SheetType.PL),),
        )

        assert rules.missing("run-1", subject) == []


class TestConflicts:
    def _with_conflict(self, *values):
        observations = tuple(
            Observation(v, f"doc.xlsx / Sheet {i}", 0.9) for i, v in enumerate(values)
        )
        return facility(
            "Oak Grove",
            conflicts=(FieldConflict("beds", observations),),
        )

    def test_difference_within_tolerance_is_ignored(self, rules):
        assert rules.conflicts("run-1", self._with_conflict(100.0, 103.0)) == []

    def test_difference_beyond_tolerance_is_raised(self, rules):
        (request,) = rules.conflicts("run-1", self._with_conflict(100.0, 110.0))

        assert request.type is ClarificationType.CONFLICT
        assert request.priority == 8
        assert request.extracted_value == 100.0
        assert [s.value for s in request.suggestions] == [100.0, 110.0]
        assert request.document_name == "doc.xlsx / Sheet 0"

    def test_string_disagreement_is_raised(self, rules):
        assert len(rules.conflicts("run-1", self._with_conflict("TX", "OK"))) == 1


def test_model_suggestions_become_missing_requests(rules):
    subject = facility("Oak Grove")
    scoped = ScopedSuggestion(
        suggestion=ModelSuggestion("census.beds", "How many licensed beds?", ("120",), 6),
        source=source("Census"),
    )

    (request,) = rules.from_suggestions("run-1", [subject], [scoped])

    assert request.facility_name == "Oak Grove"
    assert request.field_path == "census.beds"
    assert request.priority == 6
    assert request.suggestions[0].provenance == "AI suggestion"
    assert request.suggestions[0].confidence == 0.6


class TestSuggestionThresholds:
    @staticmethod
    def _ask(field):
        return ScopedSuggestion(
            suggestion=ModelSuggestion(field, "Is this right?", ("640",), 6),
            source=source("Rates"),
        )

    def test_confident_value_is_accepted_without_review(self, rules):
        subject = _rates_facility(
            medicare_part_a_ppd=650.0,
            field_confidence={"medicare_part_a_ppd": 0.95},
        )

        assert rules.from_suggestions(
            "run-1", [subject], [self._ask("payer_rates.medicare_part_a_ppd")]
        ) == []

    def test_value_below_suggest_threshold_shows_alternatives(self, rules):
        subject = _rates_facility(
            medicare_part_a_ppd=650.0,
            field_confidence={"medicare_part_a_ppd": 0.72},
        )

        (request,) = rules.from_suggestions(
            "run-1", [subject], [self._ask("payer_rates.medicare_part_a_ppd")]
        )

        assert request.type is ClarificationType.LOW_CONFIDENCE
        assert request.extracted_value == 650.0
        assert request.extracted_confidence == 0.72
        assert [s.value for s in request.suggestions] == ["640"]

    def test_value_between_thresholds_is_shown_alone(self, rules):
        item = line_item("Medicare", {"Jan": 1.0}, confidence=0.8)
        subject = facility("Oak Grove", item)

        (request,) = rules.from_suggestions(
            "run-1", [subject], [self._ask(line_item_path(item))]
        )

        assert request.type is ClarificationType.LOW_CONFIDENCE
        assert request.extracted_value == 1.0
        assert request.suggestions == ()

    def test_thresholds_come_from_config(self):
        strict = ClarificationRules(FrozenConfig(auto_accept_threshold=0.99))
        subject = _rates_facility(
            medicare_part_a_ppd=650.0,
            field_confidence={"medicare_part_a_ppd": 0.95},
        )

        (request,) = strict.from_suggestions(
            "run-1", [subject], [self._ask("payer_rates.medicare_part_a_ppd")]
        )

        assert request.type is ClarificationType.LOW_CONFIDENCE
        assert request.suggestions == ()


def test_evaluate_deduplicates_and_orders_by_priority(rules):
    subject = facility(
        "Oak Grove",
        line_item("Medicare", {"Jan": 1.0}, confidence=0.5),
        conflicts=(
            FieldConflict(
                "beds",
                (Observation(100, "a", 0.9), Observation(140, "b", 0.9)),
            ),
        ),
    )
    duplicate = ScopedSuggestion(
        ModelSuggestion("census.beds", "How many beds?"), source(), "oak grove"
    )

    requests = rules.evaluate("run-1", [subject], [duplicate, duplicate])

    priorities = [r.priority for r in requests]
    assert priorities == sorted(priorities, reverse=True)
    assert requests[0].type is ClarificationType.CONFLICT
    assert len({r.dedup_key for r in requests}) == len(requests)
    assert sum(r.field_path == "census.beds" for r in requests) == 1
    assert len({r.id for r in requests}) == len(requests)
