"""Deterministic adapter used when real providers are disabled (no network)."""

from __future__ import annotations

import json

from facility_intake.core.types import (
    LLMRequest,
    LLMResponse,
    ProviderName,
    TokenUsage,
)


class MockAdapter:
    """Answers every request locally.

    JSON requests receive an empty extraction payload; text requests are
    echoed back. Token usage is a rough character-based estimate.
    """

    def __init__(self, name: ProviderName = ProviderName.ANTHROPIC) -> None:
        self.name = name

    async def complete(self, request: LLMRequest, *, model: str) -> LLMResponse:
        if request.response_format == "json":
            content = json.dumps(
                {
                    "sheetType": "unknown",
                    "facilities": [],
                    "warnings": ["mock provider: no extraction performed"],
                    "confidence": 0,
                }
            )
        else:
            content = f"echo: {request.prompt[:200]}"
        return LLMResponse(
            content=content,
            provider=self.name,
            model=model,
            usage=TokenUsage(
                input_tokens=max(1, len(request.prompt) // 4),
                output_tokens=max(1, len(content) // 4),
            ),
            latency_ms=0.0,
            finish_reason="stop",
        )
