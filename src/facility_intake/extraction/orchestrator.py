"""Chunk extraction across the sheets of one document.

Each sheet is chunked and its chunks are sent through the router in batches
of ``chunk_concurrency``. A batch is an all-settled join: a chunk whose
providers all fail becomes a warning and its siblings are unaffected.
Batches of a sheet run in index order. When a sheet's batches are done its
records are merged; once every sheet is done the per-sheet results are
merged again across sheets.

Cancellation is cooperative. It is checked before every batch; results that
arrive after it is observed are discarded.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
import dataclasses
import logging
from typing import Any

from facility_intake import constants
from facility_intake.config.types import FrozenConfig
from facility_intake.core.models import Facility, SheetType, SourceRef
from facility_intake.core.types import (
    Chunk,
    Document,
    Failure,
    LLMRequest,
    Result,
    Sheet,
    Success,
    TaskType,
)
from facility_intake.exceptions import AllProvidersFailedError, RoutingError
from facility_intake.extraction import normalize, prompts
from facility_intake.extraction.decoder import Repaired, Unrecoverable, decode_response
from facility_intake.extraction.merge import merge_facilities
from facility_intake.extraction.normalize import ExtractionResult, ModelSuggestion
from facility_intake.extraction.segmenter import (
    chunk_sheet,
    is_substantive,
    sheets_for_document,
)
from facility_intake.router.router import LLMRouter
from facility_intake.stream.events import Emit, EventType, discard
from facility_intake.telemetry import TelemetryContext, TelemetryContextProtocol

log = logging.getLogger(__name__)

T_CHUNK = "extraction.chunk"
T_SHEET = "extraction.sheet"


@dataclasses.dataclass(frozen=True, slots=True)
class ScopedSuggestion:
    """A model suggestion with the facility it most likely concerns."""

    suggestion: ModelSuggestion
    source: SourceRef
    facility_name: str | None = None


@dataclasses.dataclass(frozen=True, slots=True)
class SheetExtraction:
    sheet_name: str
    sheet_type: SheetType
    facilities: tuple[Facility, ...]
    suggestions: tuple[ScopedSuggestion, ...] = ()
    warnings: tuple[str, ...] = ()
    chunks_total: int = 0
    chunks_failed: int = 0


@dataclasses.dataclass(frozen=True, slots=True)
class DocumentExtraction:
    """Merged output of one document."""

    document_id: str
    document_name: str
    facilities: tuple[Facility, ...] = ()
    sheets: tuple[SheetExtraction, ...] = ()
    suggestions: tuple[ScopedSuggestion, ...] = ()
    warnings: tuple[str, ...] = ()
    confidence: float = 0.0
    cancelled: bool = False

    @property
    def chunks_total(self) -> int:
        return sum(s.chunks_total for s in self.sheets)

    @property
    def chunks_failed(self) -> int:
        return sum(s.chunks_failed for s in self.sheets)

    @property
    def sheet_types(self) -> Mapping[str, SheetType]:
        return {s.sheet_name: s.sheet_type for s in self.sheets}


class ChunkExtractor:
    """Runs the extraction requests for documents through a router."""

    def __init__(
        self,
        router: LLMRouter,
        config: FrozenConfig,
        *,
        emit: Emit = discard,
        telemetry: TelemetryContextProtocol | None = None,
    ) -> None:
        self._router = router
        self._config = config
        self._emit = emit
        self._telemetry = telemetry or TelemetryContext()

    async def extract_document(
        self, document: Document, cancel: asyncio.Event | None = None
    ) -> DocumentExtraction:
        """Extract, merge and score one document.

        Never raises for provider or decode failures; those become warnings.
        """
        cancel = cancel or asyncio.Event()
        if document.is_image:
            return await self._extract_image(document, cancel)

        sheets = sheets_for_document(document)
        warnings: list[str] = []
        results: list[SheetExtraction] = []
        for position, sheet in enumerate(sheets):
            if cancel.is_set():
                break
            if not is_substantive(sheet, self._config.min_sheet_chars):
                warnings.append(f"Skipped sheet '{sheet.name}': no substantive content")
                continue
            self._emit(
                EventType.PASS_STARTED,
                {
                    "phase": "sheet_extraction",
                    "document_id": document.document_id,
                    "sheet": sheet.name,
                    "sheet_index": position,
                    "sheet_count": len(sheets),
                },
            )
            result = await self.extract_sheet(sheet, document, cancel)
            results.append(result)
            warnings.extend(result.warnings)
            self._emit(
                EventType.PASS_COMPLETED,
                {
                    "phase": "sheet_extraction",
                    "document_id": document.document_id,
                    "sheet": sheet.name,
                    "sheet_type": result.sheet_type.value,
                    "facilities": len(result.facilities),
                    "chunks_failed": result.chunks_failed,
                },
            )

        if cancel.is_set():
            log.info("Extraction of %s cancelled", document.name)
            return DocumentExtraction(
                document_id=document.document_id,
                document_name=document.name,
                warnings=tuple(warnings),
                cancelled=True,
            )

        # Every sheet is merged at this point; merge across sheets.
        facilities = merge_facilities(f for r in results for f in r.facilities)
        substantive = sum(len(s.content.strip()) for s in sheets)
        if not facilities and substantive > constants.MIN_SUBSTANTIVE_TEXT:
            facilities = [
                normalize.placeholder_facility(
                    document.name,
                    SourceRef(
                        document_id=document.document_id,
                        document_name=document.name,
                        sheet_name=sheets[0].name if sheets else constants.DEFAULT_SHEET_NAME,
                    ),
                )
            ]
            warnings.append("No facilities extracted; created a placeholder from the document name")

        return DocumentExtraction(
            document_id=document.document_id,
            document_name=document.name,
            facilities=tuple(facilities),
            sheets=tuple(results),
            suggestions=tuple(s for r in results for s in r.suggestions),
            warnings=tuple(warnings),
            confidence=normalize.document_confidence(facilities),
        )

    async def extract_sheet(
        self, sheet: Sheet, document: Document, cancel: asyncio.Event
    ) -> SheetExtraction:
        chunks = chunk_sheet(sheet, self._config.max_chunk_size)
        width = self._config.chunk_concurrency
        extracted: list[ExtractionResult] = []
        warnings: list[str] = []
        failed = 0

        with self._telemetry(T_SHEET, sheet=sheet.name, chunks=len(chunks)):
            for start in range(0, len(chunks), width):
                if cancel.is_set():
                    break
                batch = chunks[start : start + width]
                settled = await asyncio.gather(
                    *(self.extract_chunk(chunk, document) for chunk in batch),
                    return_exceptions=True,
                )
                if cancel.is_set():
                    # Results that land after cancellation are dropped.
                    break
                for chunk, outcome in zip(batch, settled, strict=True):
                    if isinstance(outcome, asyncio.CancelledError):
                        raise outcome
                    if isinstance(outcome, Success):
                        extracted.append(outcome.value)
                        warnings.extend(outcome.value.warnings)
                        continue
                    failed += 1
                    if isinstance(outcome, Failure):
                        warnings.append(str(outcome.error))
                    else:
                        log.error(
                            "Unexpected error extracting %s", chunk.label, exc_info=outcome
                        )
                        warnings.append(f"{chunk.label}: extraction failed: {outcome}")
                done = min(start + width, len(chunks))
                self._emit(
                    EventType.PASS_PROGRESS,
                    {
                        "phase": "sheet_extraction",
                        "document_id": document.document_id,
                        "sheet": sheet.name,
                        "completed": done,
                        "total": len(chunks),
                        "percent": round(100 * done / len(chunks)),
                    },
                )

        records = [f for r in extracted for f in r.facilities]
        reported = next(
            (r.reported_sheet_type for r in extracted if r.reported_sheet_type is not SheetType.UNKNOWN),
            SheetType.UNKNOWN,
        )
        sheet_type = normalize.infer_sheet_type(sheet.name, records, reported)
        merged = normalize.retag(merge_facilities(records), sheet_type)
        suggestions = tuple(
            ScopedSuggestion(
                suggestion=s,
                source=dataclasses.replace(_source(r.chunk, document), sheet_type=sheet_type),
                facility_name=r.facilities[0].name if len(r.facilities) == 1 else None,
            )
            for r in extracted
            for s in r.suggestions
        )
        return SheetExtraction(
            sheet_name=sheet.name,
            sheet_type=sheet_type,
            facilities=tuple(merged),
            suggestions=suggestions,
            warnings=tuple(warnings),
            chunks_total=len(chunks),
            chunks_failed=failed,
        )

    async def extract_chunk(
        self, chunk: Chunk, document: Document
    ) -> Result[ExtractionResult, Exception]:
        """Extract one chunk. Provider exhaustion is returned, not raised."""
        request = LLMRequest(
            task_type=TaskType.DATA_EXTRACTION,
            prompt=prompts.chunk_prompt(chunk, document.name),
            system_prompt=prompts.SHEET_EXTRACTION_SYSTEM,
            max_tokens=self._config.text_max_tokens,
            response_format="json",
        )
        with self._telemetry(T_CHUNK, sheet=chunk.sheet_name, index=chunk.index):
            try:
                response = await self._router.route(request)
            except (AllProvidersFailedError, RoutingError) as e:
                log.warning("Chunk %s of %s failed: %s", chunk.label, document.name, e)
                return Failure(_ChunkFailed(chunk, e))
        return Success(self._to_result(chunk, document, response.content))

    async def _extract_image(
        self, document: Document, cancel: asyncio.Event
    ) -> DocumentExtraction:
        assert document.image is not None  # noqa: S101
        request = LLMRequest(
            task_type=TaskType.VISION_EXTRACTION,
            prompt=prompts.IMAGE_EXTRACTION_PROMPT,
            system_prompt=prompts.IMAGE_EXTRACTION_SYSTEM,
            images=(document.image,),
            max_tokens=self._config.image_max_tokens,
            response_format="json",
        )
        chunk = Chunk(
            sheet_name=constants.DEFAULT_SHEET_NAME,
            content="",
            index=0,
            total=1,
            document_id=document.document_id,
        )
        try:
            response = await self._router.route(request)
        except (AllProvidersFailedError, RoutingError) as e:
            log.warning("Image extraction of %s failed: %s", document.name, e)
            return DocumentExtraction(
                document_id=document.document_id,
                document_name=document.name,
                warnings=(str(_ChunkFailed(chunk, e)),),
            )
        if cancel.is_set():
            return DocumentExtraction(
                document_id=document.document_id,
                document_name=document.name,
                cancelled=True,
            )

        result = self._to_result(chunk, document, response.content)
        sheet_type = normalize.infer_sheet_type("", result.facilities, result.reported_sheet_type)
        facilities = normalize.retag(merge_facilities(result.facilities), sheet_type)
        sheet = SheetExtraction(
            sheet_name=chunk.sheet_name,
            sheet_type=sheet_type,
            facilities=tuple(facilities),
            suggestions=tuple(
                ScopedSuggestion(s, _source(chunk, document)) for s in result.suggestions
            ),
            warnings=result.warnings,
            chunks_total=1,
        )
        return DocumentExtraction(
            document_id=document.document_id,
            document_name=document.name,
            facilities=sheet.facilities,
            sheets=(sheet,),
            suggestions=sheet.suggestions,
            warnings=sheet.warnings,
            confidence=normalize.document_confidence(facilities),
        )

    def _to_result(self, chunk: Chunk, document: Document, content: str) -> ExtractionResult:
        decoded = decode_response(content)
        source = _source(chunk, document)
        warnings = [f"{chunk.label}: {w}" for w in decoded.warnings]
        payload: dict[str, Any] = decoded.payload
        facilities, notes = normalize.facilities_from_payload(payload, source=source)
        warnings.extend(notes)
        model_warnings = payload.get("warnings")
        if isinstance(model_warnings, list):
            warnings.extend(f"{chunk.label}: {w}" for w in model_warnings if isinstance(w, str))

        match decoded:
            case Unrecoverable():
                stage = "unrecoverable"
            case Repaired(stage=repair_stage):
                stage = repair_stage
            case _:
                stage = "well_formed"
        return ExtractionResult(
            chunk=chunk,
            facilities=tuple(facilities),
            reported_sheet_type=normalize.reported_sheet_type(payload),
            suggestions=tuple(normalize.suggestions_from_payload(payload)),
            warnings=tuple(warnings),
            decode_stage=stage,
        )


class _ChunkFailed(Exception):
    def __init__(self, chunk: Chunk, cause: Exception) -> None:
        self.chunk = chunk
        self.cause = cause
        super().__init__(f"{chunk.label}: extraction failed: {cause}")


def _source(chunk: Chunk, document: Document) -> SourceRef:
    return SourceRef(
        document_id=document.document_id,
        document_name=document.name,
        sheet_name=chunk.sheet_name,
        chunk_index=chunk.index,
    )
