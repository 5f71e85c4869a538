"""Per-provider request metrics.

Metrics are observational only; routing decisions never read them.
"""

from __future__ import annotations

import dataclasses
from datetime import UTC, datetime
from typing import Any

from facility_intake.core.types import LLMResponse

# USD per 1K tokens: (input, output)
COST_PER_1K_TOKENS: dict[str, tuple[float, float]] = {
    "claude-sonnet-4-20250514": (0.003, 0.015),
    "claude-3-haiku-20240307": (0.00025, 0.00125),
    "gpt-4o": (0.0025, 0.01),
    "gpt-4o-mini": (0.00015, 0.0006),
    "gemini-2.0-flash": (0.0001, 0.0004),
    "gemini-2.0-pro": (0.00125, 0.005),
    "grok-3": (0.003, 0.015),
    "grok-3-mini": (0.0003, 0.0005),
}


def estimate_cost(response: LLMResponse) -> float:
    rates = COST_PER_1K_TOKENS.get(response.model)
    if rates is None:
        return 0.0
    return (
        response.usage.input_tokens / 1000 * rates[0]
        + response.usage.output_tokens / 1000 * rates[1]
    )


@dataclasses.dataclass(slots=True)
class ProviderMetrics:
    """Running counters for one provider."""

    provider: str
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    retries: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    avg_latency_ms: float = 0.0
    estimated_cost: float = 0.0
    last_error: str | None = None
    last_error_at: datetime | None = None

    def record_success(self, response: LLMResponse) -> None:
        self.total_requests += 1
        self.successful_requests += 1
        self.input_tokens += response.usage.input_tokens
        self.output_tokens += response.usage.output_tokens
        # Incremental mean over successful requests
        n = self.successful_requests
        self.avg_latency_ms += (response.latency_ms - self.avg_latency_ms) / n
        self.estimated_cost += estimate_cost(response)

    def record_failure(self, message: str) -> None:
        self.total_requests += 1
        self.failed_requests += 1
        self.last_error = message
        self.last_error_at = datetime.now(UTC)

    def snapshot(self) -> dict[str, Any]:
        data = dataclasses.asdict(self)
        if self.last_error_at is not None:
            data["last_error_at"] = self.last_error_at.isoformat()
        data["avg_latency_ms"] = round(self.avg_latency_ms, 2)
        data["estimated_cost"] = round(self.estimated_cost, 6)
        return data
