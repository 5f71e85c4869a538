"""Prompt text for extraction requests."""

from __future__ import annotations

from facility_intake.core.types import Chunk

SHEET_EXTRACTION_SYSTEM = """\
You extract financial data from healthcare facility documents (skilled nursing,
assisted living and independent living) supplied during acquisition due
diligence. You receive the text of one spreadsheet sheet, or one section of a
large sheet. Extract every line item, number and metric present; do not
summarize or skip rows.

Respond with a single JSON object of this shape:
{
  "sheetType": "pl|census|rates|summary|unknown",
  "facilities": [{
    "name": "Facility name as written",
    "code": "optional facility identifier",
    "state": "XX",
    "city": "City",
    "beds": 120,
    "periods": [
      {"label": "Jan 2024", "startDate": "2024-01-01", "endDate": "2024-01-31", "type": "month"}
    ],
    "lineItems": [{
      "category": "revenue|expense|metric",
      "subcategory": "medicaid_revenue",
      "label": "Label exactly as written",
      "values": [{"period": "Jan 2024", "value": 123456.78}],
      "annual": 1481472,
      "ppd": 34.56,
      "percentRevenue": 45.2,
      "notes": "optional",
      "confidence": 0.95
    }],
    "census": {
      "periods": ["Jan 2024"],
      "medicarePartADays": [450], "medicareAdvantageDays": [180],
      "managedCareDays": [300], "medicaidDays": [1800],
      "managedMedicaidDays": [200], "privateDays": [360],
      "vaContractDays": [50], "hospiceDays": [100], "otherDays": [20],
      "totalDays": [3460], "avgDailyCensus": [111.6], "occupancy": [0.85],
      "beds": 120, "confidence": 0.9
    },
    "payerRates": {
      "effectiveDate": "2024-01-01",
      "medicarePartAPpd": 625.0, "medicareAdvantagePpd": 480.0,
      "managedCarePpd": 420.0, "medicaidPpd": 185.0,
      "managedMedicaidPpd": 195.0, "privatePpd": 285.0,
      "hospicePpd": 165.0, "vaContractPpd": 450.0, "blendedPpd": 291.0,
      "confidence": 0.9,
      "fieldConfidence": {"medicarePartAPpd": 0.95}
    },
    "confidence": 0.9
  }],
  "clarifications": [
    {"field": "census.occupancy", "question": "...", "suggestedAnswers": ["0.85"], "priority": 5}
  ],
  "warnings": [],
  "confidence": 0.9
}

Rules:
- One facility entry per facility; a sheet may describe several.
- Numbers in parentheses such as (1,234) are negative.
- Period labels read like "Jan 2024", "Q1 2024", "FY 2024" or "TTM Jun 2024".
- Keep subtotals and totals (Total Revenue, Total Expenses, EBITDAR, EBITDA,
  Net Income, NOI) as line items.
- Fill "census" when patient-day data is present and "payerRates" when
  per-patient-day rates are present.
- Lower "confidence" (0 to 1) for any value you had to infer; list open
  questions under "clarifications".

Subcategories:
revenue: medicare_revenue, medicaid_revenue, private_revenue,
managed_care_revenue, ancillary_revenue, therapy_revenue, hospice_revenue,
other_revenue, total_revenue
expense: labor_nursing, labor_dietary, labor_housekeeping, labor_admin,
labor_therapy, labor_agency, labor_benefits, labor_total, dietary,
housekeeping, utilities, maintenance, insurance, property_tax,
management_fee, rent, supplies, pharmacy, other_expense, depreciation,
amortization, interest, total_expenses
metric: ebitdar, ebitda, noi, net_income, occupancy, adc, total_patient_days

Return only the JSON object, starting with { and ending with }.
"""

IMAGE_EXTRACTION_SYSTEM = """\
You extract data from images of healthcare facility financial documents
(skilled nursing, assisted living and independent living). Read every label
and number visible, preserving table structure, and respond with one JSON
object using the same shape as a sheet extraction: "facilities" (with
"periods", "lineItems", optional "census" and "payerRates"), "warnings"
and "confidence". Numbers in parentheses are negative. Return only the JSON
object.
"""

IMAGE_EXTRACTION_PROMPT = (
    "Extract all facility, financial, census and rate data visible in this image."
)


def chunk_prompt(chunk: Chunk, document_name: str) -> str:
    """User prompt for one chunk of one sheet."""
    if chunk.total > 1:
        return (
            f"Extract all financial data from section {chunk.index + 1} of "
            f"{chunk.total} of sheet \"{chunk.sheet_name}\" in document "
            f"\"{document_name}\". The sheet continues outside this section; "
            f"extract everything present here.\n\n{chunk.content}"
        )
    return (
        f"Extract all financial data from sheet \"{chunk.sheet_name}\" in "
        f"document \"{document_name}\".\n\n{chunk.content}"
    )
