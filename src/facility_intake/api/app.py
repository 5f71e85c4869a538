"""HTTP surface: run control, event stream and clarification review."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from facility_intake.clarification import LearningSink, Resolution
from facility_intake.config import FrozenConfig, resolve_config
from facility_intake.exceptions import (
    ClarificationNotFoundError,
    InvalidTransitionError,
    RunNotFoundError,
)
from facility_intake.pipeline import (
    DocumentSource,
    ExtractionRun,
    InMemoryDocumentSource,
    InMemoryRecordSink,
    RecordSink,
    RunRegistry,
)
from facility_intake.router import LLMRouter
from facility_intake.stream import EventChannel, EventType, StreamEvent, format_sse

log = logging.getLogger(__name__)

API_VERSION = "1.0"


# --- Request and response models ---


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    version: str
    providers: list[str]


class StartRunRequest(BaseModel):
    document_ids: list[str] = Field(min_length=1)


class StartRunResponse(BaseModel):
    run_id: str
    status: str


class ResolveRequest(BaseModel):
    value: Any
    note: str | None = None
    resolved_by: str | None = None


class BulkResolutionItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    clarification_id: str = Field(alias="clarificationId")
    resolved_value: Any = Field(alias="resolvedValue")
    note: str | None = None


class BulkResolveRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    resolutions: list[BulkResolutionItem] = Field(min_length=1)
    resolved_by: str | None = Field(default=None, alias="resolvedBy")
    continue_after_resolution: bool = Field(default=False, alias="continueAfterResolution")


def create_app(
    config: FrozenConfig | None = None,
    document_source: DocumentSource | None = None,
    record_sink: RecordSink | None = None,
    *,
    router: LLMRouter | None = None,
    learning: LearningSink | None = None,
) -> FastAPI:
    """Build the application around one run registry."""
    config = config or resolve_config()
    router = router or LLMRouter.from_config(config)
    registry = RunRegistry(
        config,
        router,
        document_source or InMemoryDocumentSource(),
        record_sink or InMemoryRecordSink(),
        learning=learning,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        log.info("Facility intake API starting; providers: %s", router.available_providers())
        try:
            yield
        finally:
            await registry.aclose()
            await router.aclose()
            log.info("Facility intake API stopped")

    app = FastAPI(
        title="Facility Intake API",
        description="Extraction runs over facility financial documents",
        version=API_VERSION,
        lifespan=lifespan,
    )
    app.state.registry = registry
    app.state.config = config

    @app.exception_handler(RunNotFoundError)
    @app.exception_handler(ClarificationNotFoundError)
    async def _not_found(request: Request, exc: Exception) -> JSONResponse:  # noqa: ARG001
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(InvalidTransitionError)
    async def _conflict(request: Request, exc: Exception) -> JSONResponse:  # noqa: ARG001
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(
            status="healthy",
            timestamp=datetime.now(UTC).isoformat(),
            version=API_VERSION,
            providers=[p.value for p in router.available_providers()],
        )

    @app.post("/runs", response_model=StartRunResponse, status_code=202)
    async def start_run(body: StartRunRequest) -> StartRunResponse:
        run = registry.start(body.document_ids)
        return StartRunResponse(run_id=run.run_id, status=run.status.value)

    @app.get("/runs/{run_id}")
    async def get_run(run_id: str) -> dict[str, Any]:
        return registry.get(run_id).summary()

    @app.delete("/runs/{run_id}")
    async def cancel_run(run_id: str) -> dict[str, Any]:
        cancelled = registry.cancel(run_id)
        return {"run_id": run_id, "cancelled": cancelled}

    @app.get("/runs/{run_id}/events")
    async def run_events(run_id: str) -> StreamingResponse:
        run = registry.get(run_id)
        return StreamingResponse(
            _sse(run.channel, config.heartbeat_seconds),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    @app.get("/runs/{run_id}/clarifications")
    async def list_clarifications(run_id: str) -> dict[str, Any]:
        run = registry.get(run_id)
        return _clarification_listing(run)

    @app.post("/runs/{run_id}/clarifications/{clarification_id}/resolve")
    async def resolve_clarification(
        run_id: str, clarification_id: str, body: ResolveRequest
    ) -> dict[str, Any]:
        run = registry.get(run_id)
        resolved = await run.resolve(
            clarification_id, body.value, resolved_by=body.resolved_by, note=body.note
        )
        return {
            "clarification": resolved.to_dict(),
            "counts": run.store.counts(config.high_priority_threshold),
        }

    @app.put("/runs/{run_id}/clarifications")
    async def resolve_many(run_id: str, body: BulkResolveRequest) -> dict[str, Any]:
        run = registry.get(run_id)
        resolved = await run.resolve_many(
            [
                Resolution(item.clarification_id, item.resolved_value, item.note)
                for item in body.resolutions
            ],
            resolved_by=body.resolved_by,
            continue_after=body.continue_after_resolution,
        )
        return {
            "resolved": [r.to_dict() for r in resolved],
            "counts": run.store.counts(config.high_priority_threshold),
        }

    @app.post("/runs/{run_id}/continue")
    async def continue_run(run_id: str) -> dict[str, Any]:
        run = registry.get(run_id)
        run.continue_run()
        return {"run_id": run_id, "status": run.status.value}

    @app.get("/providers/metrics")
    async def provider_metrics() -> dict[str, Any]:
        return {
            "providers": router.metrics(),
            "routing": {
                task.value: [p.value for p in router.provider_chain(task)]
                for task in router.routing_rules()
            },
        }

    return app


def _clarification_listing(run: ExtractionRun) -> dict[str, Any]:
    return {
        "run_id": run.run_id,
        "status": run.status.value,
        "clarifications": [r.to_dict() for r in run.store.pending()],
        "counts": run.store.counts(run.config.high_priority_threshold),
    }


async def _sse(channel: EventChannel, heartbeat_seconds: float) -> AsyncIterator[str]:
    """Forward channel events as SSE frames, with heartbeats while idle.

    A subscriber first gets the recent events earlier subscribers already
    took. A client disconnect stops this generator only; the run carries on.
    """
    for event in channel.taken():
        yield format_sse(event)
    while True:
        try:
            event = await channel.next(timeout=heartbeat_seconds)
        except TimeoutError:
            yield format_sse(StreamEvent(type=EventType.HEARTBEAT))
            continue
        if event is None:
            return
        yield format_sse(event)
