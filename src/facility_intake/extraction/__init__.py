"""Segmentation, extraction, decoding and merging of document content."""

from .decoder import Decoded, Repaired, Unrecoverable, WellFormed, decode_response
from .merge import merge_facilities
from .normalize import ExtractionResult, ModelSuggestion
from .orchestrator import (
    ChunkExtractor,
    DocumentExtraction,
    ScopedSuggestion,
    SheetExtraction,
)
from .segmenter import chunk_sheet, sheets_for_document, split_sheets

__all__ = [
    "ChunkExtractor",
    "Decoded",
    "DocumentExtraction",
    "ExtractionResult",
    "ModelSuggestion",
    "Repaired",
    "ScopedSuggestion",
    "SheetExtraction",
    "Unrecoverable",
    "WellFormed",
    "chunk_sheet",
    "decode_response",
    "merge_facilities",
    "sheets_for_document",
    "split_sheets",
]
