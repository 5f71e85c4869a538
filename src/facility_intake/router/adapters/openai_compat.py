"""Adapter for OpenAI and OpenAI-compatible endpoints such as xAI Grok."""

from __future__ import annotations

import base64
from typing import Any

from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
)

from facility_intake.core.types import (
    LLMRequest,
    LLMResponse,
    ProviderName,
    TokenUsage,
)
from facility_intake.exceptions import FailureClass, ProviderError

GROK_BASE_URL = "https://api.x.ai/v1"


class OpenAICompatibleAdapter:
    """Chat-completions adapter.

    SDK-level retries are disabled; the router retries with its own policy.
    """

    def __init__(
        self,
        api_key: str,
        *,
        name: ProviderName = ProviderName.OPENAI,
        base_url: str | None = None,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self.name = name
        self._client = client or AsyncOpenAI(
            api_key=api_key, base_url=base_url, max_retries=0
        )

    @classmethod
    def grok(cls, api_key: str) -> OpenAICompatibleAdapter:
        return cls(api_key, name=ProviderName.GROK, base_url=GROK_BASE_URL)

    def _messages(self, request: LLMRequest) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        if not request.images:
            messages.append({"role": "user", "content": request.prompt})
            return messages
        content: list[dict[str, Any]] = [
            {
                "type": "image_url",
                "image_url": {
                    "url": f"data:{image.mime_type};base64,"
                    + base64.b64encode(image.data).decode("ascii")
                },
            }
            for image in request.images
        ]
        if request.prompt:
            content.append({"type": "text", "text": request.prompt})
        messages.append({"role": "user", "content": content})
        return messages

    async def complete(self, request: LLMRequest, *, model: str) -> LLMResponse:
        kwargs: dict[str, Any] = {"model": model, "messages": self._messages(request)}
        if request.max_tokens is not None:
            kwargs["max_tokens"] = request.max_tokens
        if request.temperature is not None:
            kwargs["temperature"] = request.temperature
        if request.response_format == "json":
            kwargs["response_format"] = {"type": "json_object"}

        provider = self.name.value
        try:
            completion = await self._client.chat.completions.create(**kwargs)
        except APITimeoutError as e:
            raise ProviderError(
                provider, "request timed out", failure_class=FailureClass.TIMEOUT
            ) from e
        except APIConnectionError as e:
            raise ProviderError(
                provider,
                f"connection failed: {e}",
                failure_class=FailureClass.SERVER_ERROR,
            ) from e
        except APIStatusError as e:
            raise ProviderError.from_status(provider, e.status_code, e.message) from e

        choice = completion.choices[0] if completion.choices else None
        usage = completion.usage
        return LLMResponse(
            content=(choice.message.content or "") if choice else "",
            provider=self.name,
            model=completion.model or model,
            usage=TokenUsage(
                input_tokens=usage.prompt_tokens if usage else 0,
                output_tokens=usage.completion_tokens if usage else 0,
            ),
            finish_reason=choice.finish_reason if choice else None,
        )
