"""One extraction run over a set of documents.

A run moves through ``initializing -> processing -> awaiting_clarifications
-> completed``; it ends ``failed`` on a run-fatal error and ``cancelled``
when the caller abandons it. Progress is published to the run's
:class:`EventChannel`; nothing here knows how events are delivered.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable, Sequence
from enum import Enum
import logging
import time
from typing import Any

from facility_intake.clarification import (
    ClarificationRequest,
    ClarificationRules,
    ClarificationStore,
    ClarificationType,
    LearningSink,
    Resolution,
    apply_resolution,
)
from facility_intake.config.types import FrozenConfig
from facility_intake.core.models import Facility, facility_key
from facility_intake.exceptions import FacilityIntakeError, InvalidTransitionError, RunFailedError
from facility_intake.extraction import ChunkExtractor, DocumentExtraction, merge_facilities
from facility_intake.pipeline.persistence import (
    DocumentSource,
    RecordSink,
    rows_for_facilities,
)
from facility_intake.router.router import LLMRouter
from facility_intake.stream import EventChannel, EventType

log = logging.getLogger(__name__)


class RunStatus(str, Enum):
    INITIALIZING = "initializing"
    PROCESSING = "processing"
    AWAITING_CLARIFICATIONS = "awaiting_clarifications"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED)


FacilitiesHook = Callable[["ExtractionRun", Sequence[Facility]], None]


class ExtractionRun:
    """Drives extraction, review and persistence for one document set."""

    def __init__(
        self,
        run_id: str,
        document_ids: Sequence[str],
        *,
        router: LLMRouter,
        config: FrozenConfig,
        document_source: DocumentSource,
        record_sink: RecordSink,
        learning: LearningSink | None = None,
        rules: ClarificationRules | None = None,
        on_facilities: FacilitiesHook | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.run_id = run_id
        self.document_ids = tuple(document_ids)
        self.config = config
        self.status = RunStatus.INITIALIZING
        self.channel = EventChannel(config.event_queue_size)
        self.store = ClarificationStore(run_id, learning=learning)
        self.facilities: list[Facility] = []
        self.documents: list[DocumentExtraction] = []
        self.warnings: list[str] = []
        self.error: str | None = None
        self._router = router
        self._source = document_source
        self._sink = record_sink
        self._rules = rules or ClarificationRules(config)
        self._on_facilities = on_facilities
        self._clock = clock
        self._cancel = asyncio.Event()
        self._continue = asyncio.Event()
        self._started_at: float | None = None
        self._finished_at: float | None = None

    # --- Lifecycle ---

    async def execute(self) -> RunStatus:
        """Run the whole pipeline. Failures end the run; they are not raised."""
        self._started_at = self._clock()
        self.status = RunStatus.PROCESSING
        try:
            await self._execute()
        except FacilityIntakeError as e:
            self._fail(str(e))
        except Exception as e:
            log.exception("Run %s failed unexpectedly", self.run_id)
            self._fail(f"Unexpected error: {e}")
        finally:
            self._finished_at = self._clock()
            self.channel.close()
        return self.status

    def cancel(self) -> bool:
        """Abandon the run. In-flight provider calls finish but are discarded."""
        if self.status.terminal:
            return False
        log.info("Run %s cancelled", self.run_id)
        self._cancel.set()
        self._continue.set()
        return True

    def continue_run(self) -> None:
        """Unblock a run paused on high-priority clarifications.

        Raises:
            InvalidTransitionError: If the run already ended.
        """
        if self.status.terminal:
            raise InvalidTransitionError(f"Run {self.run_id} is {self.status.value}")
        self._continue.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    # --- Clarifications ---

    async def resolve(
        self,
        clarification_id: str,
        value: Any,
        *,
        resolved_by: str | None = None,
        note: str | None = None,
    ) -> ClarificationRequest:
        resolved = self.store.resolve(
            clarification_id, value, resolved_by=resolved_by, note=note
        )
        await self._after_resolution([resolved])
        return resolved

    async def resolve_many(
        self,
        resolutions: Iterable[Resolution],
        *,
        resolved_by: str | None = None,
        continue_after: bool = False,
    ) -> list[ClarificationRequest]:
        resolved = self.store.resolve_many(resolutions, resolved_by=resolved_by)
        await self._after_resolution(resolved)
        if continue_after and not self.status.terminal:
            self._continue.set()
        return resolved

    def supersede(self, facility_keys: Iterable[str]) -> list[ClarificationRequest]:
        superseded = self.store.supersede(facility_keys)
        if superseded and self.status is RunStatus.AWAITING_CLARIFICATIONS:
            self._check_unblocked()
        return superseded

    # --- Reporting ---

    def summary(self) -> dict[str, Any]:
        end = self._finished_at if self._finished_at is not None else self._clock()
        elapsed = end - self._started_at if self._started_at is not None else 0.0
        return {
            "run_id": self.run_id,
            "status": self.status.value,
            "document_ids": list(self.document_ids),
            "documents_processed": len(self.documents),
            "facilities": len(self.facilities),
            "line_items": sum(len(f.line_items) for f in self.facilities),
            "periods": sum(len(f.periods) for f in self.facilities),
            "confidence": self._confidence(),
            "elapsed_seconds": round(elapsed, 3),
            "warnings": list(self.warnings),
            "clarifications": self.store.counts(self.config.high_priority_threshold),
            "error": self.error,
        }

    # --- Internal ---

    async def _execute(self) -> None:
        self._emit(
            EventType.SESSION_STARTED,
            run_id=self.run_id,
            document_count=len(self.document_ids),
        )
        try:
            documents = await self._source.get_documents(self.document_ids)
        except OSError as e:
            raise RunFailedError(f"Document storage unavailable: {e}") from e
        if not documents:
            raise RunFailedError("No documents found")

        extractor = ChunkExtractor(self._router, self.config, emit=self.channel.emit)
        for index, document in enumerate(documents):
            if self.cancelled:
                break
            self._emit(
                EventType.DOCUMENT_STARTED,
                index=index,
                document_id=document.document_id,
                name=document.name,
            )
            extraction = await extractor.extract_document(document, self._cancel)
            if extraction.cancelled:
                break
            self.documents.append(extraction)
            self.warnings.extend(f"{document.name}: {w}" for w in extraction.warnings)
            self._emit(
                EventType.DOCUMENT_COMPLETED,
                index=index,
                document_id=document.document_id,
                facilities=len(extraction.facilities),
                chunks=extraction.chunks_total,
                chunks_failed=extraction.chunks_failed,
                warnings=len(extraction.warnings),
                confidence=round(extraction.confidence, 3),
            )

        if self.cancelled:
            self._finish_cancelled()
            return

        self.facilities = merge_facilities(f for d in self.documents for f in d.facilities)
        for facility in self.facilities:
            self._emit(
                EventType.FACILITY_DETECTED,
                name=facility.name,
                confidence=round(facility.confidence, 3),
                line_items=len(facility.line_items),
                periods=len(facility.periods),
                sheet_types=sorted(t.value for t in facility.sheet_types),
            )
            for period in facility.periods:
                self._emit(EventType.PERIOD_EXTRACTED, facility=facility.name, period=period.label)
        if self._on_facilities is not None:
            self._on_facilities(self, self.facilities)

        requests = self.store.add(
            self._rules.evaluate(
                self.run_id,
                self.facilities,
                (s for d in self.documents for s in d.suggestions),
            )
        )
        for request in requests:
            if request.type is ClarificationType.CONFLICT:
                self._emit(
                    EventType.CONFLICT_DETECTED,
                    clarification_id=request.id,
                    facility=request.facility_name,
                    field_path=request.field_path,
                    values=[s.to_dict() for s in request.suggestions],
                )
            self._emit(EventType.CLARIFICATION_NEEDED, **request.to_dict())

        rows = rows_for_facilities(self.facilities)
        try:
            await self._sink.write_rows(rows)
        except OSError as e:
            raise RunFailedError(f"Record storage unavailable: {e}") from e

        if self.store.blocking(self.config.high_priority_threshold):
            self.status = RunStatus.AWAITING_CLARIFICATIONS
            self._emit(
                EventType.PASS_STARTED,
                phase="awaiting_clarifications",
                **self.store.counts(self.config.high_priority_threshold),
            )
            await self._continue.wait()
            if self.cancelled:
                self._finish_cancelled()
                return

        self.status = RunStatus.COMPLETED
        log.info("Run %s completed: %d facilities", self.run_id, len(self.facilities))
        summary = self.summary()
        summary.pop("error")
        self._emit(EventType.SESSION_COMPLETED, **summary)

    async def _after_resolution(self, resolved: list[ClarificationRequest]) -> None:
        for request in resolved:
            self._apply(request)
            self._emit(
                EventType.CLARIFICATION_RESOLVED,
                clarification_id=request.id,
                facility=request.facility_name,
                field_path=request.field_path,
                value=request.resolved_value,
            )
            facility = self._facility(request.facility_name)
            await self._sink.update_field(
                request.facility_name,
                request.field_path,
                request.resolved_value,
                document_ids=facility.document_ids() if facility else (),
            )
        self._check_unblocked()

    def _apply(self, request: ClarificationRequest) -> None:
        key = facility_key(request.facility_name)
        self.facilities = [
            apply_resolution(f, request) if f.key == key else f for f in self.facilities
        ]

    def _facility(self, name: str) -> Facility | None:
        key = facility_key(name)
        return next((f for f in self.facilities if f.key == key), None)

    def _check_unblocked(self) -> None:
        if not self.store.blocking(self.config.high_priority_threshold):
            self._continue.set()

    def _confidence(self) -> float:
        if not self.documents:
            return 0.0
        return round(sum(d.confidence for d in self.documents) / len(self.documents), 3)

    def _finish_cancelled(self) -> None:
        self.status = RunStatus.CANCELLED
        self._emit(EventType.SESSION_FAILED, error="Run cancelled", cancelled=True)

    def _fail(self, message: str) -> None:
        log.warning("Run %s failed: %s", self.run_id, message)
        self.status = RunStatus.FAILED
        self.error = message
        self._emit(EventType.SESSION_FAILED, error=message)

    def _emit(self, event_type: EventType, **data: Any) -> None:
        self.channel.emit(event_type, data)
