import pytest

from facility_intake.core.models import (
    Census,
    LineItemCategory,
    PayerRates,
    Period,
    SheetType,
)
from facility_intake.core.types import Document
from facility_intake.pipeline import (
    CensusPeriodRow,
    FinancialPeriodRow,
    InMemoryDocumentSource,
    InMemoryRecordSink,
    PayerRateRow,
    rows_for_facilities,
)
from tests.helpers import facility, line_item, source

pytestmark = pytest.mark.unit


def _subject():
    return facility(
        "Sunrise SNF",
        line_item("Total Revenue", {"Jan": 1000.0}, subcategory="total_revenue"),
        line_item("Medicare", {"Jan": 600.0, "Feb": 650.0}, subcategory="medicare_revenue"),
        line_item("Rent", {"Jan": 100.0}, category=LineItemCategory.EXPENSE),
        line_item("Food", {"Jan": 50.0, "Feb": None}, category=LineItemCategory.EXPENSE),
        periods=(Period("Jan", start_date="2024-01-01", end_date="2024-01-31"),),
        beds=120,
        census=Census(periods=("Jan", "Feb"), total_days=(3100.0, None), occupancy=(0.83,)),
        payer_rates=PayerRates(medicare_part_a_ppd=650.0, effective_date="2024-01-01"),
        sources=(
            source("P&L", document="pl-doc", sheet_type=SheetType.PL),
            source("Census", document="census-doc", sheet_type=SheetType.CENSUS),
            source("Rates", document="rates-doc", sheet_type=SheetType.RATES),
        ),
    )


def test_financial_rows_per_period():
    rows = [r for r in rows_for_facilities([_subject()]) if isinstance(r, FinancialPeriodRow)]

    assert [r.period for r in rows] == ["Jan", "Feb"]
    jan, feb = rows
    assert jan.total_revenue == 1000.0
    assert jan.total_expenses == 150.0
    assert jan.start_date == "2024-01-01"
    assert jan.source_document_id == "pl-doc"
    assert dict(jan.line_items) == {
        "Total Revenue": 1000.0,
        "Medicare": 600.0,
        "Rent": 100.0,
        "Food": 50.0,
    }
    assert feb.total_revenue == 650.0
    assert feb.total_expenses is None
    assert all(r.provenance == "extracted" for r in rows)


def test_census_rows_skip_empty_periods():
    rows = [r for r in rows_for_facilities([_subject()]) if isinstance(r, CensusPeriodRow)]

    (row,) = rows
    assert row.period == "Jan"
    assert dict(row.values) == {"total_days": 3100.0, "occupancy": 0.83}
    assert row.beds == 120
    assert row.source_document_id == "census-doc"


def test_payer_rate_row():
    rows = [r for r in rows_for_facilities([_subject()]) if isinstance(r, PayerRateRow)]

    (row,) = rows
    assert dict(row.rates) == {"medicare_part_a_ppd": 650.0}
    assert row.effective_date == "2024-01-01"
    assert row.source_document_id == "rates-doc"


def test_bare_facility_produces_no_rows():
    assert rows_for_facilities([facility("Empty")]) == []


@pytest.mark.asyncio
async def test_in_memory_document_source_omits_unknown_ids():
    documents = InMemoryDocumentSource([Document(document_id="a", name="a.xlsx", text="x")])
    documents.add(Document(document_id="b", name="b.xlsx", text="y"))

    found = await documents.get_documents(["b", "missing", "a"])

    assert [d.document_id for d in found] == ["b", "a"]


@pytest.mark.asyncio
async def test_in_memory_record_sink_records_writes_and_updates():
    sink = InMemoryRecordSink()

    await sink.write_rows(rows_for_facilities([_subject()]))
    await sink.update_field("Sunrise SNF", "beds", 118, document_ids=["census-doc"])

    assert len(sink.rows) == 4
    assert sink.updates == [("Sunrise SNF", "beds", 118, ("census-doc",))]
