import asyncio
import json

import pytest

from facility_intake.config import FrozenConfig
from facility_intake.core.models import SheetType
from facility_intake.core.types import Document, ImagePart, LLMRequest, ProviderName, TaskType
from facility_intake.extraction import ChunkExtractor
from facility_intake.stream import EventType
from tests.helpers import (
    ScriptedAdapter,
    extraction_payload,
    fast_configs,
    make_router,
    server_error,
)

pytestmark = pytest.mark.unit

A = ProviderName.ANTHROPIC

ROWS = "".join(f"row {n} value 1234567890 abcdefghij\n" for n in range(1, 6))
DOCUMENT = Document("doc-1", "Sunrise.xlsx", "=== Sheet: Data ===\n" + ROWS)
CONFIG = FrozenConfig(max_chunk_size=40, chunk_concurrency=2)

PAYLOAD = extraction_payload(
    {"name": "Sunrise SNF", "beds": 120, "confidence": 0.9},
    clarifications=[
        {
            "field": "beds",
            "question": "How many licensed beds?",
            "suggestedAnswers": [120],
            "priority": 6,
        }
    ],
)


def _extractor(adapter, config=CONFIG, events=None, **router_kwargs) -> ChunkExtractor:
    router_kwargs.setdefault("provider_configs", fast_configs(timeout=1.0))
    router = make_router(adapter, **router_kwargs)
    if events is None:
        return ChunkExtractor(router, config)
    return ChunkExtractor(router, config, emit=lambda t, d: events.append((t, dict(d))))


@pytest.mark.asyncio
async def test_chunks_run_in_batches_of_chunk_concurrency():
    active = 0
    peak = 0

    async def respond(_: LLMRequest) -> str:
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.01)
        active -= 1
        return PAYLOAD

    events: list = []
    adapter = ScriptedAdapter(A, respond)

    result = await _extractor(adapter, events=events).extract_document(DOCUMENT)

    assert len(adapter.calls) == 5
    assert peak == 2
    progress = [d for t, d in events if t is EventType.PASS_PROGRESS]
    assert [d["completed"] for d in progress] == [2, 4, 5]
    assert [d["percent"] for d in progress] == [40, 80, 100]
    assert result.chunks_total == 5
    assert result.chunks_failed == 0


@pytest.mark.asyncio
async def test_chunk_records_merge_into_one_facility():
    result = await _extractor(ScriptedAdapter(A, PAYLOAD)).extract_document(DOCUMENT)

    (facility,) = result.facilities
    assert facility.name == "Sunrise SNF"
    assert facility.beds == 120
    assert [s.chunk_index for s in facility.sources] == [0, 1, 2, 3, 4]
    assert result.confidence == pytest.approx(0.9)
    assert result.sheet_types == {"Data": SheetType.UNKNOWN}


@pytest.mark.asyncio
async def test_model_suggestions_are_scoped_to_the_facility():
    result = await _extractor(ScriptedAdapter(A, PAYLOAD)).extract_document(DOCUMENT)

    assert len(result.suggestions) == 5
    scoped = result.suggestions[0]
    assert scoped.facility_name == "Sunrise SNF"
    assert scoped.suggestion.suggested_answers == ("120",)
    assert scoped.source.document_id == "doc-1"


@pytest.mark.asyncio
async def test_failed_chunk_leaves_siblings_intact():
    async def respond(request: LLMRequest) -> str:
        if "row 3 " in request.prompt:
            raise server_error(A)
        return PAYLOAD

    result = await _extractor(ScriptedAdapter(A, respond)).extract_document(DOCUMENT)

    assert result.chunks_failed == 1
    assert [f.name for f in result.facilities] == ["Sunrise SNF"]
    (warning,) = [w for w in result.warnings if "extraction failed" in w]
    assert warning.startswith("Data [3/5]: extraction failed")


@pytest.mark.asyncio
async def test_cancellation_discards_the_current_batch():
    cancel = asyncio.Event()

    async def respond(_: LLMRequest) -> str:
        cancel.set()
        return PAYLOAD

    adapter = ScriptedAdapter(A, respond)

    result = await _extractor(adapter).extract_document(DOCUMENT, cancel)

    assert result.cancelled
    assert result.facilities == ()
    assert len(adapter.calls) == 2


@pytest.mark.asyncio
async def test_cancelled_before_start_sends_nothing():
    cancel = asyncio.Event()
    cancel.set()
    adapter = ScriptedAdapter(A, PAYLOAD)

    result = await _extractor(adapter).extract_document(DOCUMENT, cancel)

    assert result.cancelled
    assert adapter.calls == []


@pytest.mark.asyncio
async def test_short_sheets_are_skipped_with_a_warning():
    document = Document(
        "doc-1", "Sunrise.xlsx", "=== Sheet: Cover ===\nhi\n=== Sheet: Data ===\n" + ROWS
    )
    adapter = ScriptedAdapter(A, PAYLOAD)

    result = await _extractor(adapter).extract_document(document)

    assert "Skipped sheet 'Cover': no substantive content" in result.warnings
    assert [s.sheet_name for s in result.sheets] == ["Data"]


@pytest.mark.asyncio
async def test_unreadable_responses_yield_a_placeholder():
    result = await _extractor(ScriptedAdapter(A, "I could not find any data")).extract_document(
        DOCUMENT
    )

    (facility,) = result.facilities
    assert facility.name == "Sunrise"
    assert facility.confidence == pytest.approx(0.3)
    assert any("parse failed" in w for w in result.warnings)


@pytest.mark.asyncio
async def test_image_document_uses_a_single_vision_request():
    document = Document("img-1", "scan.png", image=ImagePart(b"\x89PNG"))
    adapter = ScriptedAdapter(A, PAYLOAD)

    result = await _extractor(adapter, task=TaskType.VISION_EXTRACTION).extract_document(
        document
    )

    ((request, _),) = adapter.calls
    assert request.task_type is TaskType.VISION_EXTRACTION
    assert request.images == (ImagePart(b"\x89PNG"),)
    assert [f.name for f in result.facilities] == ["Sunrise SNF"]
    assert result.chunks_total == 1


@pytest.mark.asyncio
async def test_wrong_shaped_field_keeps_the_rest_of_the_chunk():
    payload = json.dumps(
        {
            "facilities": [
                {"name": "Good Home"},
                {"name": "Odd Home", "lineItems": [{"label": "Rent", "values": 5}]},
            ]
        }
    )

    result = await _extractor(ScriptedAdapter(A, payload)).extract_document(DOCUMENT)

    assert result.chunks_failed == 0
    assert sorted(f.name for f in result.facilities) == ["Good Home", "Odd Home"]
    assert any("ignored 'values'" in w for w in result.warnings)
