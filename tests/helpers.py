"""Test doubles shared across the suite."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
import json
from typing import Any

from facility_intake.config.routing import DEFAULT_PROVIDER_CONFIGS
from facility_intake.core.models import (
    Facility,
    LineItem,
    LineItemCategory,
    PeriodValue,
    SheetType,
    SourceRef,
)
from facility_intake.core.types import (
    LLMRequest,
    LLMResponse,
    ProviderConfig,
    ProviderName,
    RoutingRule,
    TaskType,
    TokenUsage,
)
from facility_intake.exceptions import FailureClass, ProviderError
from facility_intake.router import LLMRouter

Step = str | Exception | Callable[[LLMRequest], Awaitable[str]]


class FakeClock:
    """Manual monotonic clock whose ``sleep`` advances time instantly."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += max(seconds, 0.0)
        await asyncio.sleep(0)


class ScriptedAdapter:
    """Adapter that plays back a script of outcomes, one per call.

    Each step is response text, an exception to raise, or an async callable
    producing the text. The last step repeats once the script runs out.
    """

    def __init__(self, name: ProviderName, *steps: Step) -> None:
        self.name = name
        self._steps = list(steps) or ["{}"]
        self.calls: list[tuple[LLMRequest, str]] = []

    async def complete(self, request: LLMRequest, *, model: str) -> LLMResponse:
        step = self._steps[min(len(self.calls), len(self._steps) - 1)]
        self.calls.append((request, model))
        if isinstance(step, Exception):
            raise step
        content = step if isinstance(step, str) else await step(request)
        return LLMResponse(
            content=content,
            provider=self.name,
            model=model,
            usage=TokenUsage(input_tokens=10, output_tokens=5),
        )


async def hang(_: LLMRequest) -> str:
    await asyncio.sleep(60)
    return "{}"


def server_error(provider: ProviderName, status: int = 503) -> ProviderError:
    return ProviderError.from_status(provider.value, status, f"status {status}")


def bad_request(provider: ProviderName) -> ProviderError:
    return ProviderError(
        provider.value, "invalid request", failure_class=FailureClass.MALFORMED_REQUEST
    )


def fast_configs(**overrides: Any) -> dict[ProviderName, ProviderConfig]:
    """Provider configs with short timeouts and no retry delay."""
    values = {"timeout": 0.05, "retry_delay": 0.0, "max_retries": 1} | overrides
    return {
        name: ProviderConfig(default_model=cfg.default_model, **values)
        for name, cfg in DEFAULT_PROVIDER_CONFIGS.items()
    }


def make_router(
    *adapters: ScriptedAdapter,
    chain: Iterable[ProviderName] | None = None,
    task: TaskType = TaskType.DATA_EXTRACTION,
    **kwargs: Any,
) -> LLMRouter:
    """Router over ``adapters`` with one rule routing ``task`` through ``chain``."""
    order = tuple(chain or (a.name for a in adapters))
    rules = {task: RoutingRule(task, order[0], order[1:], response_format="json")}
    kwargs.setdefault("provider_configs", fast_configs())
    return LLMRouter({a.name: a for a in adapters}, rules=rules, **kwargs)


def extraction_payload(*facilities: dict[str, Any], **extra: Any) -> str:
    return json.dumps({"facilities": list(facilities), **extra})


def source(
    sheet: str = "P&L",
    document: str = "doc-1",
    chunk: int = 0,
    sheet_type: SheetType = SheetType.UNKNOWN,
) -> SourceRef:
    return SourceRef(
        document_id=document,
        document_name=f"{document}.xlsx",
        sheet_name=sheet,
        chunk_index=chunk,
        sheet_type=sheet_type,
    )


def line_item(
    label: str,
    values: dict[str, float | None],
    *,
    category: LineItemCategory = LineItemCategory.REVENUE,
    confidence: float = 0.9,
    **kwargs: Any,
) -> LineItem:
    return LineItem(
        category=category,
        subcategory=kwargs.pop("subcategory", "other"),
        label=label,
        values=tuple(PeriodValue(p, v) for p, v in values.items()),
        confidence=confidence,
        **kwargs,
    )


def facility(name: str = "Sunrise SNF", *items: LineItem, **kwargs: Any) -> Facility:
    kwargs.setdefault("confidence", 0.9)
    kwargs.setdefault("sources", (source(),))
    return Facility(name=name, line_items=items, **kwargs)
