import pytest

from facility_intake.core.types import LLMRequest, ProviderName, TaskType
from facility_intake.telemetry import InMemoryReporter, TelemetryContext
from tests.helpers import ScriptedAdapter, make_router, server_error

pytestmark = pytest.mark.unit


def test_disabled_without_environment_flag():
    reporter = InMemoryReporter()
    ctx = TelemetryContext(reporter)

    with ctx("outer"):
        ctx.count("things")

    assert reporter.timings == {}
    assert reporter.metrics == {}


def test_nested_scopes_and_counters(monkeypatch):
    monkeypatch.setenv("INTAKE_TELEMETRY", "1")
    reporter = InMemoryReporter()
    ctx = TelemetryContext(reporter)

    with ctx("outer"):
        with ctx("inner", sheet="P&L"):
            ctx.count("chunks", 2)
        ctx.metric("queue", 4.0)

    assert set(reporter.timings) == {"outer", "outer.inner"}
    _, metadata = reporter.timings["outer.inner"][0]
    assert metadata == {"depth": 1, "sheet": "P&L"}
    assert reporter.total("outer.inner.chunks") == 2
    assert reporter.metrics["outer.queue"][0] == (4.0, {})


def test_failing_reporter_does_not_break_the_scope(monkeypatch):
    monkeypatch.setenv("DEBUG", "1")

    class Broken:
        def record_timing(self, scope, duration, **metadata):
            raise RuntimeError("reporter down")

        def record_metric(self, scope, value, **metadata):
            raise RuntimeError("reporter down")

    good = InMemoryReporter()
    ctx = TelemetryContext(Broken(), good)

    with ctx("work"):
        ctx.count("items")

    assert "work" in good.timings
    assert good.total("work.items") == 1


def test_empty_scope_name_is_rejected(monkeypatch):
    monkeypatch.setenv("INTAKE_TELEMETRY", "1")
    ctx = TelemetryContext(InMemoryReporter())

    with pytest.raises(ValueError):
        with ctx(""):
            pass


@pytest.mark.asyncio
async def test_router_reports_attempts_and_retries(monkeypatch):
    monkeypatch.setenv("INTAKE_TELEMETRY", "1")
    reporter = InMemoryReporter()
    adapter = ScriptedAdapter(ProviderName.ANTHROPIC, server_error(ProviderName.ANTHROPIC), "{}")
    router = make_router(adapter, telemetry=TelemetryContext(reporter))

    await router.route(LLMRequest(TaskType.DATA_EXTRACTION, "extract"))

    attempts = [s for s in reporter.timings if s.endswith("router.attempt")]
    assert sum(len(reporter.timings[s]) for s in attempts) == 2
    retries = [s for s in reporter.metrics if s.endswith("router.retry")]
    assert sum(reporter.total(s) for s in retries) == 1
