import json
import time

from fastapi.testclient import TestClient
import pytest

from facility_intake.api import create_app
from facility_intake.config import FrozenConfig
from facility_intake.core.types import Document, LLMRequest, ProviderName
from facility_intake.pipeline import InMemoryDocumentSource, InMemoryRecordSink
from tests.helpers import ScriptedAdapter, extraction_payload, make_router

pytestmark = pytest.mark.integration


async def _respond(request: LLMRequest) -> str:
    for beds in (100, 120):
        if f"Licensed beds,{beds}" in request.prompt:
            return extraction_payload({"name": "Sunrise SNF", "beds": beds, "confidence": 0.9})
    return "{}"


def _sheet(beds: int) -> str:
    return f"=== Sheet: Facility ===\nSunrise SNF\nLicensed beds,{beds}\n"


@pytest.fixture
def sink():
    return InMemoryRecordSink()


@pytest.fixture
def client(sink):
    documents = InMemoryDocumentSource(
        [
            Document("doc-a", "a.xlsx", _sheet(100)),
            Document("doc-b", "b.xlsx", _sheet(120)),
        ]
    )
    router = make_router(ScriptedAdapter(ProviderName.ANTHROPIC, _respond))
    app = create_app(FrozenConfig(heartbeat_seconds=0.5), documents, sink, router=router)
    with TestClient(app) as test_client:
        yield test_client


def _wait_for(client: TestClient, run_id: str, status: str) -> dict:
    deadline = time.monotonic() + 5.0
    while time.monotonic() < deadline:
        body = client.get(f"/runs/{run_id}").json()
        if body["status"] == status:
            return body
        time.sleep(0.01)
    raise AssertionError(f"run {run_id} never reached {status}")


def _start(client: TestClient, *document_ids: str) -> str:
    response = client.post("/runs", json={"document_ids": list(document_ids)})
    assert response.status_code == 202
    return response.json()["run_id"]


def _frames(text: str) -> list[tuple[str, dict]]:
    frames = []
    for block in text.strip().split("\n\n"):
        event_line, data_line = block.split("\n")[:2]
        frames.append(
            (event_line.removeprefix("event: "), json.loads(data_line.removeprefix("data: ")))
        )
    return frames


def _conflict_id(client: TestClient, run_id: str) -> str:
    listing = client.get(f"/runs/{run_id}/clarifications").json()
    (conflict,) = [c for c in listing["clarifications"] if c["type"] == "conflict"]
    return conflict["id"]


def test_health_lists_available_providers(client):
    body = client.get("/health").json()

    assert body["status"] == "healthy"
    assert body["providers"] == ["anthropic"]
    assert body["version"] == "1.0"


def test_start_run_requires_documents(client):
    assert client.post("/runs", json={"document_ids": []}).status_code == 422


def test_completed_run_streams_its_events(client, sink):
    run_id = _start(client, "doc-a")
    summary = _wait_for(client, run_id, "completed")

    response = client.get(f"/runs/{run_id}/events")

    assert summary["facilities"] == 1
    assert response.headers["content-type"].startswith("text/event-stream")
    frames = _frames(response.text)
    assert frames[0][0] == "session_started"
    assert frames[-1][0] == "session_completed"
    assert frames[-1][1]["data"]["facilities"] == 1
    assert sink.rows == []


def test_late_subscriber_is_replayed_earlier_events(client):
    run_id = _start(client, "doc-a")
    _wait_for(client, run_id, "completed")

    first = _frames(client.get(f"/runs/{run_id}/events").text)
    second = _frames(client.get(f"/runs/{run_id}/events").text)

    assert second == first
    assert second[-1][0] == "session_completed"


def test_blocking_conflict_resolved_in_bulk(client, sink):
    run_id = _start(client, "doc-a", "doc-b")
    awaiting = _wait_for(client, run_id, "awaiting_clarifications")
    assert awaiting["clarifications"]["high_priority"] == 1

    conflict_id = _conflict_id(client, run_id)
    response = client.put(
        f"/runs/{run_id}/clarifications",
        json={
            "resolutions": [{"clarificationId": conflict_id, "resolvedValue": 120}],
            "resolvedBy": "analyst",
            "continueAfterResolution": True,
        },
    )

    assert response.status_code == 200
    (resolved,) = response.json()["resolved"]
    assert resolved["status"] == "resolved"
    assert resolved["resolved_by"] == "analyst"
    _wait_for(client, run_id, "completed")
    assert sink.updates[0][:3] == ("Sunrise SNF", "beds", 120)


def test_single_resolution_then_repeat_is_a_conflict(client):
    run_id = _start(client, "doc-a", "doc-b")
    _wait_for(client, run_id, "awaiting_clarifications")
    conflict_id = _conflict_id(client, run_id)
    url = f"/runs/{run_id}/clarifications/{conflict_id}/resolve"

    first = client.post(url, json={"value": 100, "note": "checked the license"})
    second = client.post(url, json={"value": 120})

    assert first.status_code == 200
    assert first.json()["clarification"]["resolution_note"] == "checked the license"
    assert first.json()["counts"]["high_priority"] == 0
    assert second.status_code == 409
    _wait_for(client, run_id, "completed")


def test_continue_unblocks_and_then_conflicts(client):
    run_id = _start(client, "doc-a", "doc-b")
    _wait_for(client, run_id, "awaiting_clarifications")

    assert client.post(f"/runs/{run_id}/continue").status_code == 200
    _wait_for(client, run_id, "completed")
    assert client.post(f"/runs/{run_id}/continue").status_code == 409


def test_cancel_run(client):
    run_id = _start(client, "doc-a", "doc-b")
    _wait_for(client, run_id, "awaiting_clarifications")

    assert client.delete(f"/runs/{run_id}").json() == {"run_id": run_id, "cancelled": True}
    _wait_for(client, run_id, "cancelled")


def test_unknown_ids_are_not_found(client):
    assert client.get("/runs/nope").status_code == 404
    assert client.get("/runs/nope/clarifications").status_code == 404

    run_id = _start(client, "doc-a")
    _wait_for(client, run_id, "completed")
    response = client.post(f"/runs/{run_id}/clarifications/nope/resolve", json={"value": 1})
    assert response.status_code == 404


def test_provider_metrics(client):
    body = client.get("/providers/metrics").json()

    assert set(body["providers"]) == {"anthropic"}
    assert body["routing"] == {"data_extraction": ["anthropic"]}
