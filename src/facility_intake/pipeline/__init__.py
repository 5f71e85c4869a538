"""Extraction runs: lifecycle, registry and persistence seams."""

from .persistence import (
    PROVENANCE_EXTRACTED,
    CensusPeriodRow,
    DocumentSource,
    FinancialPeriodRow,
    InMemoryDocumentSource,
    InMemoryRecordSink,
    PayerRateRow,
    RecordSink,
    Row,
    rows_for_facilities,
)
from .registry import RunRegistry
from .run import ExtractionRun, RunStatus

__all__ = [
    "PROVENANCE_EXTRACTED",
    "CensusPeriodRow",
    "DocumentSource",
    "ExtractionRun",
    "FinancialPeriodRow",
    "InMemoryDocumentSource",
    "InMemoryRecordSink",
    "PayerRateRow",
    "RecordSink",
    "Row",
    "RunRegistry",
    "RunStatus",
    "rows_for_facilities",
]
